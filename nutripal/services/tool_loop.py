import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from google.genai import types

from nutripal.core import config
from nutripal.core.prompts import system_prompt
from nutripal.models.pending_actions import (
    AwaitingClarificationAction, AwaitingServingSizeAction, ClarificationPayload, FoodLogAction,
    FoodLogPayload, QueuedFood, RecipeOption, RecipeSaveAction, RecipeSavePayload, SavedRecipeLogAction,
    SavedRecipeLogPayload, ServingSizePayload,
)
from nutripal.models.schemas import ChatResponse, ResponseType
from nutripal.services.language_service import history_to_contents
from nutripal.tools.call_function import call_function, to_tool_content, tools
from nutripal.utils.confirmation_policy import ActionType, confirmation_message

logger = logging.getLogger(__name__)

MALFORMED_NUDGE = (
    "Error: your last function call was malformed. Retry with valid JSON arguments "
    "that match the declared parameters."
)
GAVE_UP = "Sorry, I couldn't work that out. Could you rephrase it?"


@dataclass
class LoopResult:
    response: ChatResponse
    pending_action: Optional[object] = None
    tools_used: list[str] = field(default_factory=list)


def food_log_proposal(items) -> tuple[FoodLogAction, ChatResponse]:
    action = FoodLogAction(data=FoodLogPayload(items=items))
    names = " and ".join(f"{i.portion or i.serving_size or ''} {i.food_name}".strip() for i in items)
    total = sum(i.calories for i in items)
    message = f"{confirmation_message(ActionType.LOG_FOOD, names)} That's about {round(total)} kcal."
    response = ChatResponse(
        message=message,
        response_type=ResponseType.CONFIRMATION_FOOD_LOG,
        data={"items": [i.model_dump(exclude_none=True) for i in items], "total_calories": round(total)},
    )
    return action, response


def serving_size_question(reference) -> tuple[AwaitingServingSizeAction, ChatResponse]:
    action = AwaitingServingSizeAction(data=ServingSizePayload(food_name=reference.food_name, reference_nutrition=reference))
    response = ChatResponse(
        status="clarification",
        message=(f"I found **{reference.food_name}** ({reference.calories:g} kcal per {reference.serving_size}). "
                 f"How much did you have?"),
        response_type=ResponseType.AWAITING_SERVING_SIZE,
        data={"food_name": reference.food_name, "reference": reference.model_dump(exclude_none=True)},
    )
    return action, response


def product_question(query, options, portion=None, resolved=None,
                     remaining=None) -> tuple[AwaitingClarificationAction, ChatResponse]:
    action = AwaitingClarificationAction(data=ClarificationPayload(
        kind="product", query=query, portion=portion, product_options=options,
        resolved_items=list(resolved or []),
        remaining=[QueuedFood(food_name=food, portion=p) for food, p in (remaining or [])],
    ))
    listing = "\n".join(f"{n}. {o.product_name}" + (f" ({o.brand})" if o.brand else "")
                        for n, o in enumerate(options, 1))
    response = ChatResponse(
        status="ambiguous",
        message=f"I found a few matches for \"{query}\". Which one did you mean?\n{listing}",
        response_type=ResponseType.AMBIGUOUS_PRODUCT,
        data={"options": [o.product_name for o in options]},
    )
    return action, response


def saved_recipe_prompt(recipe_id, recipe_name, servings=1.0) -> tuple[SavedRecipeLogAction, ChatResponse]:
    action = SavedRecipeLogAction(data=SavedRecipeLogPayload(
        recipe_id=str(recipe_id), recipe_name=recipe_name, requested_servings=servings,
    ))
    response = ChatResponse(
        message=f"I found your recipe **{recipe_name}**. Log {servings:g} serving(s)?",
        response_type=ResponseType.SAVED_RECIPE_CONFIRMATION_PROMPT,
        data={"recipe_id": str(recipe_id), "recipe_name": recipe_name, "servings": servings},
    )
    return action, response


def recipe_choice_question(query, candidates, servings=1.0) -> tuple[AwaitingClarificationAction, ChatResponse]:
    options = [RecipeOption(recipe_id=str(c.id), recipe_name=c.name, score=c.score) for c in candidates]
    action = AwaitingClarificationAction(data=ClarificationPayload(
        kind="recipe", query=query, requested_servings=servings, recipe_options=options,
    ))
    listing = "\n".join(f"{n}. {o.recipe_name}" for n, o in enumerate(options, 1))
    response = ChatResponse(
        status="ambiguous",
        message=f"A few of your recipes match \"{query}\". Which one?\n{listing}",
        response_type=ResponseType.SAVED_RECIPE_FOUND_MULTIPLE,
        data={"options": [o.recipe_name for o in options]},
    )
    return action, response


class ToolLoop:
    """
    Drives the reasoning model through tool rounds until it answers in text.

    A few tool outcomes end the turn on the spot with a fixed question and a
    new pending action; the model is not asked to narrate those.
    """

    def __init__(self, language, max_iterations: int = None, workers: int = None):
        self.language = language
        self.max_iterations = max_iterations or config.MAX_TOOL_ITERATIONS
        self.workers = workers or config.TOOL_WORKERS

    def run(self, ctx, message: str, history=None) -> LoopResult:
        contents = history_to_contents(history)
        contents.append(types.Content(role="user", parts=[types.Part(text=message)]))
        proposal = None
        used = []

        for iteration in range(1, self.max_iterations + 1):
            logger.info(f"🔄 Tool loop iteration {iteration}")
            response = self.language.chat(contents, tools, system_prompt)
            candidate = response.candidates[0] if response.candidates else None

            if candidate is None or not candidate.content or not candidate.content.parts:
                reason = str(getattr(candidate, "finish_reason", ""))
                if "MALFORMED_FUNCTION_CALL" in reason:
                    logger.warning("⚠️ Model generated a malformed function call. Asking it to retry")
                    contents.append(types.Content(role="user", parts=[types.Part(text=MALFORMED_NUDGE)]))
                    continue
                logger.warning(f"⚠️ Empty model response (finish reason: {reason})")
                break

            contents.append(candidate.content)
            parts = candidate.content.parts
            calls = [p.function_call for p in parts if getattr(p, "function_call", None) and p.function_call.name]
            texts = [p.text for p in parts if getattr(p, "text", None)]

            if not calls:
                return self._finish("\n".join(texts).strip(), proposal, used)

            results = self._execute(calls, ctx)
            used.extend(call.name for call in calls)

            intercepted = self._intercept(calls, results)
            if intercepted is not None:
                intercepted.tools_used = used
                logger.info(f"⏩ Intercepted {intercepted.response.response_type.value}")
                return intercepted

            for call, result in zip(calls, results):
                if result.get("_action") is not None:
                    proposal = result["_action"]
                contents.append(to_tool_content(call.name, result))

        logger.warning(f"⚠️ Tool loop stopped after {self.max_iterations} iterations")
        return self._finish("", proposal, used, fallback=GAVE_UP)

    def _execute(self, calls, ctx) -> list[dict]:
        """Run every call of one round concurrently; results keep call order."""
        if len(calls) == 1:
            return [call_function(calls[0], ctx)]
        with ThreadPoolExecutor(max_workers=min(self.workers, len(calls))) as pool:
            return list(pool.map(lambda call: call_function(call, ctx), calls))

    def _intercept(self, calls, results) -> Optional[LoopResult]:
        """First interceptable outcome in call order wins; portioned lookups in one round merge."""
        portioned = []
        for call, result in zip(calls, results):
            if result.get("error"):
                continue
            name = call.name

            if name == "analyze_recipe":
                outcome = result.get("_outcome")
                if outcome is not None and outcome.flow is not None:
                    action = RecipeSaveAction(data=RecipeSavePayload(flow=outcome.flow))
                    return LoopResult(outcome.response, action)

            elif name == "search_saved_recipes":
                resolution = result.get("_resolution")
                servings = float(dict(call.args or {}).get("requested_servings") or 1)
                if resolution is not None and resolution.status == "single":
                    action, response = saved_recipe_prompt(resolution.best.id, resolution.best.name, servings)
                    return LoopResult(response, action)
                if resolution is not None and resolution.status == "ambiguous":
                    action, response = recipe_choice_question(result["_query"], resolution.candidates, servings)
                    return LoopResult(response, action)

            elif name == "lookup_nutrition":
                if result.get("status") == "success" and result.get("_confidence", 0) >= config.PRODUCT_MATCH_THRESHOLD:
                    if result.get("_scaled") is not None:
                        portioned.append(result["_scaled"])
                        continue
                    if not portioned:
                        action, response = serving_size_question(result["_reference"])
                        return LoopResult(response, action)
                elif result.get("status") == "ambiguous" and not portioned:
                    action, response = product_question(result["_query"], result["_options"], result.get("_portion"))
                    return LoopResult(response, action)

        if portioned:
            action, response = food_log_proposal(portioned)
            return LoopResult(response, action)
        return None

    def _finish(self, text: str, proposal, used, fallback: str = "") -> LoopResult:
        if proposal is not None:
            response_type = {
                "food_log": ResponseType.CONFIRMATION_FOOD_LOG,
                "goal_update": ResponseType.CONFIRMATION_GOAL_UPDATE,
            }[proposal.type]
            response = ChatResponse(message=text or fallback, response_type=response_type,
                                    data=proposal.data.model_dump(mode="json"))
            return LoopResult(response, proposal, used)
        return LoopResult(ChatResponse(message=text or fallback), None, used)
