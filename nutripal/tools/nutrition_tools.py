"""
Nutrition and diary tools for the reasoning loop.

Keys starting with "_" carry Python objects for the loop's interception
step and are stripped before the result is sent back to the model.
"""
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from google.genai import types

from nutripal.models.pending_actions import FoodLogAction, FoodLogPayload
from nutripal.models.schemas import NUTRIENT_KEYS, NutritionData


def _zone(name: str):
    try:
        return ZoneInfo(name or "UTC")
    except ZoneInfoNotFoundError:
        return ZoneInfo("UTC")


def _today_bounds(tz_name: str) -> tuple[datetime, datetime]:
    tz = _zone(tz_name)
    start = datetime.combine(datetime.now(tz).date(), time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


def lookup_nutrition(ctx, food_name: str, portion: str = None) -> dict:
    """Looks up a food in the USDA database, optionally scaled to the user's portion."""
    result = ctx.nutrition.lookup.lookup(food_name)

    if result.status == "success" and result.nutrition_data:
        reference = result.nutrition_data
        scaled = ctx.nutrition.for_portion(reference, portion) if portion else None
        return {
            "success": True,
            "status": "success",
            "product_name": result.product_name,
            "confidence": result.confidence_score,
            "reference_serving": reference.serving_size,
            "nutrition": (scaled or reference).model_dump(exclude_none=True),
            "_reference": reference,
            "_scaled": scaled,
            "_portion": portion,
            "_confidence": result.confidence_score,
        }

    if result.status == "ambiguous":
        return {
            "success": True,
            "status": "ambiguous",
            "options": [o.product_name for o in result.options],
            "_options": result.options,
            "_query": food_name,
            "_portion": portion,
        }

    return {
        "success": False,
        "status": result.status,
        "message": "Not in the nutrition database. Call estimate_nutrition instead.",
    }


def estimate_nutrition(ctx, food_name: str, portion: str = None) -> dict:
    """Estimates nutrition for a food when the database has no match."""
    data = ctx.language.estimate_nutrition(food_name, portion)
    return {"success": True, "nutrition": data.model_dump(exclude_none=True)}


def propose_food_log(ctx, items: list) -> dict:
    """Proposes diary entries; nothing is written until the user confirms."""
    entries = [NutritionData.model_validate(item) for item in items or []]
    if not entries:
        return {"success": False, "message": "No items to log."}
    action = FoodLogAction(data=FoodLogPayload(items=entries))
    total = sum(e.calories for e in entries)
    return {
        "success": True,
        "proposed": True,
        "summary": f"{len(entries)} item(s), {round(total)} kcal, awaiting user confirmation",
        "_action": action,
    }


def get_today_progress(ctx) -> dict:
    """Today's totals against the user's goals."""
    start, end = _today_bounds(ctx.timezone)
    entries = ctx.db.get_food_log(ctx.user_id, start, end)
    totals = {k: 0.0 for k in NUTRIENT_KEYS}
    for entry in entries:
        for key in NUTRIENT_KEYS:
            totals[key] += float(entry.get(key) or 0)
    totals = {k: round(v, 1) for k, v in totals.items() if v}

    goals = {g["nutrient"]: g for g in ctx.db.get_user_goals(ctx.user_id)}
    progress = {}
    for nutrient, goal in goals.items():
        eaten = totals.get(nutrient, 0)
        progress[nutrient] = {
            "eaten": eaten,
            "target": goal["target_value"],
            "unit": goal.get("unit"),
            "remaining": round(float(goal["target_value"]) - eaten, 1),
        }
    return {"success": True, "entries": len(entries), "totals": totals, "goals": progress}


def get_food_history(ctx, days: int = 7) -> dict:
    """Recent diary entries, newest first."""
    days = max(1, min(int(days or 7), 30))
    entries = ctx.db.get_recent_food_log(ctx.user_id, days=days)
    rows = [
        {k: e.get(k) for k in ("food_name", "portion", "calories", "protein_g", "log_time")}
        for e in entries[:50]
    ]
    return {"success": True, "count": len(entries), "entries": rows}


_nutrition_item = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "food_name": types.Schema(type=types.Type.STRING),
        "portion": types.Schema(type=types.Type.STRING),
        "calories": types.Schema(type=types.Type.NUMBER),
        "protein_g": types.Schema(type=types.Type.NUMBER),
        "fat_total_g": types.Schema(type=types.Type.NUMBER),
        "carbs_g": types.Schema(type=types.Type.NUMBER),
    },
    required=["food_name", "calories"],
)

schema_lookup_nutrition = types.FunctionDeclaration(
    name="lookup_nutrition",
    description="Looks up a single food in the USDA nutrition database. Always try this before estimate_nutrition.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "food_name": types.Schema(type=types.Type.STRING, description="The food, e.g. 'banana' or 'greek yogurt'."),
            "portion": types.Schema(type=types.Type.STRING, description="The amount eaten if stated, e.g. '1 medium' or '150g'."),
        },
        required=["food_name"],
    ),
)

schema_estimate_nutrition = types.FunctionDeclaration(
    name="estimate_nutrition",
    description="Estimates nutrition for a food or dish that lookup_nutrition could not find.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "food_name": types.Schema(type=types.Type.STRING),
            "portion": types.Schema(type=types.Type.STRING),
        },
        required=["food_name"],
    ),
)

schema_propose_food_log = types.FunctionDeclaration(
    name="propose_food_log",
    description="Proposes food diary entries. The user must confirm before anything is saved.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={"items": types.Schema(type=types.Type.ARRAY, items=_nutrition_item)},
        required=["items"],
    ),
)

schema_get_today_progress = types.FunctionDeclaration(
    name="get_today_progress",
    description="Returns what the user has eaten today and how it compares to their goals.",
    parameters=types.Schema(type=types.Type.OBJECT, properties={}),
)

schema_get_food_history = types.FunctionDeclaration(
    name="get_food_history",
    description="Returns the user's food diary for the last few days.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={"days": types.Schema(type=types.Type.INTEGER, description="How many days back (1-30). Default 7.")},
    ),
)
