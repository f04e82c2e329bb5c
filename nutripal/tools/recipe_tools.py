from google.genai import types

from nutripal.utils.fuzzy_matcher import resolve_matches


def search_saved_recipes(ctx, query: str, requested_servings: float = None) -> dict:
    """Fuzzy search over the user's saved recipes. ``requested_servings`` is read by the loop."""
    candidates = ctx.matcher.search(query, ctx.user_id)
    resolution = resolve_matches(candidates)
    return {
        "success": True,
        "status": resolution.status,
        "matches": [{"id": c.id, "recipe_name": c.name, "score": c.score} for c in resolution.candidates],
        "_resolution": resolution,
        "_query": query,
    }


def get_recipe_details(ctx, recipe_id: str) -> dict:
    """Per-serving nutrition and ingredients of one saved recipe."""
    recipe = ctx.db.get_recipe(ctx.user_id, recipe_id)
    if recipe is None:
        return {"success": False, "message": f"No saved recipe with id {recipe_id}."}
    ingredients = ctx.db.get_recipe_ingredients(recipe_id)
    keys = ("recipe_name", "servings", "calories", "protein_g", "fat_total_g", "carbs_g", "instructions")
    return {
        "success": True,
        "recipe": {k: recipe.get(k) for k in keys},
        "ingredients": [{k: i.get(k) for k in ("name", "quantity", "unit", "calories")} for i in ingredients],
    }


def analyze_recipe(ctx, recipe_text: str, recipe_name: str = None) -> dict:
    """Starts the recipe flow (parse, duplicate check, sizing, nutrition)."""
    outcome = ctx.recipe_flow.start(ctx.user_id, recipe_text, recipe_name=recipe_name)
    response = outcome.response
    return {
        "success": response.status != "error",
        "status": response.response_type.value,
        "message": response.message,
        "_outcome": outcome,
    }


schema_search_saved_recipes = types.FunctionDeclaration(
    name="search_saved_recipes",
    description="Searches the user's saved recipes by (fuzzy) name. Call this whenever the user refers to a recipe of theirs.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "query": types.Schema(type=types.Type.STRING, description="What the user called it, e.g. 'morning shake'."),
            "requested_servings": types.Schema(type=types.Type.NUMBER, description="Servings the user wants to log, if they said."),
        },
        required=["query"],
    ),
)

schema_get_recipe_details = types.FunctionDeclaration(
    name="get_recipe_details",
    description="Returns ingredients and per-serving nutrition of one saved recipe.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={"recipe_id": types.Schema(type=types.Type.STRING)},
        required=["recipe_id"],
    ),
)

schema_analyze_recipe = types.FunctionDeclaration(
    name="analyze_recipe",
    description="Analyzes a recipe the user pasted: parses ingredients, checks for duplicates and prices nutrition.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "recipe_text": types.Schema(type=types.Type.STRING, description="The full recipe or ingredient list."),
            "recipe_name": types.Schema(type=types.Type.STRING),
        },
        required=["recipe_text"],
    ),
)
