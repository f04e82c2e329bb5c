import json
import logging

from google.genai import types

from nutripal.tools.calculator import calculate, schema_calculate
from nutripal.tools.goal_tools import (
    get_user_goals, propose_goal_update, calculate_recommended_goals,
    schema_get_user_goals, schema_propose_goal_update, schema_calculate_recommended_goals,
)
from nutripal.tools.nutrition_tools import (
    lookup_nutrition, estimate_nutrition, propose_food_log, get_today_progress, get_food_history,
    schema_lookup_nutrition, schema_estimate_nutrition, schema_propose_food_log,
    schema_get_today_progress, schema_get_food_history,
)
from nutripal.tools.recipe_tools import (
    search_saved_recipes, get_recipe_details, analyze_recipe,
    schema_search_saved_recipes, schema_get_recipe_details, schema_analyze_recipe,
)

logger = logging.getLogger(__name__)

AVAILABLE_FUNCTIONS = {
    "get_user_goals": get_user_goals,
    "get_today_progress": get_today_progress,
    "get_food_history": get_food_history,
    "lookup_nutrition": lookup_nutrition,
    "estimate_nutrition": estimate_nutrition,
    "search_saved_recipes": search_saved_recipes,
    "get_recipe_details": get_recipe_details,
    "analyze_recipe": analyze_recipe,
    "propose_food_log": propose_food_log,
    "propose_goal_update": propose_goal_update,
    "calculate_recommended_goals": calculate_recommended_goals,
    "calculate": calculate,
}

tools = [
    types.Tool(
        function_declarations=[
            schema_get_user_goals,
            schema_get_today_progress,
            schema_get_food_history,
            schema_lookup_nutrition,
            schema_estimate_nutrition,
            schema_search_saved_recipes,
            schema_get_recipe_details,
            schema_analyze_recipe,
            schema_propose_food_log,
            schema_propose_goal_update,
            schema_calculate_recommended_goals,
            schema_calculate,
        ]
    )
]


def public_result(result: dict) -> dict:
    """Drop the "_" keys that only the loop reads."""
    return {k: v for k, v in result.items() if not k.startswith("_")}


def call_function(function_call: types.FunctionCall, ctx) -> dict:
    """Run one requested tool. Failures come back as an error-shaped result, never raised."""
    function_name = function_call.name
    function_to_call = AVAILABLE_FUNCTIONS.get(function_name)
    if not function_to_call:
        return {"error": True, "message": f"Function '{function_name}' is not available."}

    function_args = dict(function_call.args or {})
    logger.info(f"🔧 Calling tool {function_name} with args: {json.dumps(function_args, default=str)[:200]}")
    try:
        result = function_to_call(ctx, **function_args)
    except Exception as e:
        logger.error(f"❌ Tool {function_name} failed: {e}")
        return {"error": True, "message": f"{function_name} failed. Try another approach."}
    logger.info(f"✅ Tool {function_name} -> {json.dumps(public_result(result), default=str)[:200]}")
    return result


def to_tool_content(function_name: str, result: dict) -> types.Content:
    """Wrap a tool result for the genai library."""
    return types.Content(
        role="tool",
        parts=[
            types.Part(
                function_response=types.FunctionResponse(
                    name=function_name,
                    response={"result": public_result(result)},
                )
            )
        ],
    )
