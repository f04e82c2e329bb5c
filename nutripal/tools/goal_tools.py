from google.genai import types

from nutripal.models.pending_actions import GoalUpdateAction, GoalUpdatePayload
from nutripal.models.user_logic import ACTIVITY_MULTIPLIERS, GOALS, UserProfile

NUTRIENT_UNITS = {
    "calories": "kcal", "protein_g": "g", "fat_total_g": "g", "carbs_g": "g",
    "fiber_g": "g", "sugar_g": "g", "sodium_mg": "mg",
}

NUTRIENT_ALIASES = {
    "calorie": "calories", "kcal": "calories", "energy": "calories",
    "protein": "protein_g", "fat": "fat_total_g", "fats": "fat_total_g",
    "carb": "carbs_g", "carbs": "carbs_g", "carbohydrates": "carbs_g",
    "fiber": "fiber_g", "fibre": "fiber_g", "sugar": "sugar_g", "sodium": "sodium_mg", "salt": "sodium_mg",
}


def normalize_nutrient(name: str):
    key = (name or "").strip().lower()
    if key in NUTRIENT_UNITS:
        return key
    return NUTRIENT_ALIASES.get(key)


def get_user_goals(ctx) -> dict:
    """The user's current daily targets."""
    goals = ctx.db.get_user_goals(ctx.user_id)
    return {
        "success": True,
        "goals": [{k: g.get(k) for k in ("nutrient", "target_value", "unit")} for g in goals],
    }


def propose_goal_update(ctx, nutrient: str, target_value: float, unit: str = None) -> dict:
    """Proposes a new daily target; the user must confirm it."""
    key = normalize_nutrient(nutrient)
    if key is None:
        return {"success": False, "message": f"Unknown nutrient '{nutrient}'. Use one of {list(NUTRIENT_UNITS)}."}
    try:
        value = float(target_value)
    except (TypeError, ValueError):
        return {"success": False, "message": "target_value must be a number."}
    if value <= 0:
        return {"success": False, "message": "target_value must be positive."}
    action = GoalUpdateAction(data=GoalUpdatePayload(nutrient=key, target_value=value, unit=unit or NUTRIENT_UNITS[key]))
    return {"success": True, "proposed": True, "summary": f"{key} -> {value:g}, awaiting user confirmation", "_action": action}


def calculate_recommended_goals(ctx, goal: str = "maintain", sex: str = None, height_cm: float = None,
                                age: float = None, weight_kg: float = None, activity_level: str = None) -> dict:
    """Suggested calorie and macro targets from the user's profile (or the given body stats)."""
    row = dict(ctx.db.get_user_profile(ctx.user_id) or {})
    overrides = {"sex": sex, "height_cm": height_cm, "age": age, "weight_kg": weight_kg, "activity_level": activity_level}
    row.update({k: v for k, v in overrides.items() if v is not None})
    missing = [k for k in ("sex", "height_cm", "age", "weight_kg") if not (row.get(k) or (k == "sex" and row.get("gender")))]
    if missing:
        return {"success": False, "message": f"Need {', '.join(missing)} to calculate targets."}
    try:
        targets = UserProfile.from_row(row).recommended_goals(goal)
    except (ValueError, KeyError) as e:
        return {"success": False, "message": str(e)}
    return {"success": True, "goal": goal, "recommended": targets}


schema_get_user_goals = types.FunctionDeclaration(
    name="get_user_goals",
    description="Returns the user's current daily nutrition targets.",
    parameters=types.Schema(type=types.Type.OBJECT, properties={}),
)

schema_propose_goal_update = types.FunctionDeclaration(
    name="propose_goal_update",
    description="Proposes changing one daily target. The user must confirm before it is saved.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "nutrient": types.Schema(type=types.Type.STRING, description="calories, protein_g, carbs_g, fat_total_g, fiber_g, sugar_g or sodium_mg"),
            "target_value": types.Schema(type=types.Type.NUMBER),
            "unit": types.Schema(type=types.Type.STRING, description="kcal, g or mg"),
        },
        required=["nutrient", "target_value"],
    ),
)

schema_calculate_recommended_goals = types.FunctionDeclaration(
    name="calculate_recommended_goals",
    description="Calculates recommended calorie and macro targets (Mifflin-St Jeor). Uses the saved profile unless body stats are given.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "goal": types.Schema(type=types.Type.STRING, enum=list(GOALS)),
            "sex": types.Schema(type=types.Type.STRING, enum=["male", "female"]),
            "height_cm": types.Schema(type=types.Type.NUMBER),
            "age": types.Schema(type=types.Type.NUMBER),
            "weight_kg": types.Schema(type=types.Type.NUMBER),
            "activity_level": types.Schema(type=types.Type.STRING, enum=list(ACTIVITY_MULTIPLIERS)),
        },
        required=["goal"],
    ),
)
