"""
One chat turn, end to end.

Order of business: fast paths (closing remarks, UI buttons, stale
confirmations), then the pending action if there is one, then intent
classification and the matching handler, falling back to the tool loop.
Nothing is written to the food log, goals or recipes without a proposal the
user confirmed.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from nutripal.core import config
from nutripal.core.errors import CollaboratorError
from nutripal.models.pending_actions import (
    GoalUpdateAction, GoalUpdatePayload, RecipeSaveAction, RecipeSavePayload,
)
from nutripal.models.schemas import ChatResponse, IntentResult, ResponseType
from nutripal.models.session import Session
from nutripal.services.db_service import DbService, food_log_row
from nutripal.services.language_service import LanguageService
from nutripal.services.nutrition_lookup import NutritionLookupService
from nutripal.services.nutrition_service import NutritionService
from nutripal.services.pending_action_store import PendingActionStore
from nutripal.services.recipe_flow import FlowOutcome, RecipeFlow, recipe_log_entry
from nutripal.services.session_service import SessionService
from nutripal.services.tool_loop import (
    ToolLoop, food_log_proposal, product_question, recipe_choice_question,
    saved_recipe_prompt, serving_size_question,
)
from nutripal.tools.context import ToolContext
from nutripal.tools.goal_tools import NUTRIENT_UNITS, normalize_nutrient
from nutripal.utils.confirmation_policy import ActionType, confirmation_message
from nutripal.utils.fuzzy_matcher import RecipeMatcher, resolve_matches, select_option
from nutripal.utils.nutrition_scaler import parse_amount, parse_portion
from nutripal.utils.servings import parse_servings_reply
from nutripal.utils.text_signals import (
    is_affirmative, is_closing_remark, is_decline, looks_like_topic_switch, parse_ui_token,
)

logger = logging.getLogger(__name__)

CLOSING_REPLY = "You're welcome! Let me know whenever you want to log something."
OFF_TOPIC_REPLY = "I can help with logging food, saving recipes and tracking your nutrition goals."
SERVICE_UNAVAILABLE_REPLY = "Something on my side isn't responding right now. Please try again in a moment."
FATAL_REPLY = "Sorry, something went wrong while handling that. Please try again."
FALLBACK_REPLY = "Hi! I can log meals, save your recipes and keep track of your goals."

# replies longer than this are treated as new requests, not answers
SHORT_REPLY_WORDS = 5

_user_locks: dict[str, threading.Lock] = {}
_user_locks_guard = threading.Lock()
_log_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="turn-log")


def user_lock(user_id: str) -> threading.Lock:
    """One lock per user: a user's turns run one at a time."""
    with _user_locks_guard:
        return _user_locks.setdefault(user_id, threading.Lock())


@dataclass
class Turn:
    user_id: str
    message: str
    history: list = field(default_factory=list)
    timezone: str = "UTC"
    session: Optional[Session] = None
    pending: Optional[object] = None
    intent: Optional[str] = None
    agent: Optional[str] = None
    tools: list[str] = field(default_factory=list)
    foods: list[str] = field(default_factory=list)


def _is_short(reply: str) -> bool:
    return len((reply or "").split()) <= SHORT_REPLY_WORDS and not looks_like_topic_switch(reply)


class Orchestrator:
    def __init__(self, db=None, store=None, sessions=None, language=None, lookup=None,
                 tool_loop=None, log_executor=None):
        self.db = db or DbService()
        self.store = store or PendingActionStore()
        self.sessions = sessions or SessionService()
        self.language = language or LanguageService()
        self.nutrition = NutritionService(lookup or NutritionLookupService(), self.language)
        self.matcher = RecipeMatcher(self.db)
        self.recipe_flow = RecipeFlow(self.db, self.language)
        self.tool_loop = tool_loop or ToolLoop(self.language)
        self.log_executor = log_executor or _log_executor

    def handle_message(self, user_id: str, message: str, session_id: str = None, history=None,
                       timezone: str = "UTC", client_pending_action: dict = None) -> ChatResponse:
        started = time.monotonic()
        message = (message or "").strip()
        if len(message) > config.MAX_MESSAGE_CHARS:
            logger.warning(f"⚠️ Message truncated from {len(message)} characters")
            message = message[:config.MAX_MESSAGE_CHARS]
        turn = Turn(user_id=user_id, message=message, history=list(history or []), timezone=timezone)

        with user_lock(user_id):
            try:
                response = self._handle(turn, client_pending_action)
                if not response.message:
                    response.message = self._phrase(turn, response)
            except CollaboratorError as e:
                logger.error(f"❌ Collaborator failure ({e.service}): {e}")
                response = ChatResponse(status="error", response_type=ResponseType.SERVICE_UNAVAILABLE,
                                        message=SERVICE_UNAVAILABLE_REPLY)
            except Exception:
                logger.exception("❌ Unhandled error while handling a chat turn")
                response = ChatResponse(status="error", response_type=ResponseType.FATAL_ERROR,
                                        message=FATAL_REPLY)
            self._remember(turn, response)

        self._log_turn(turn, response, session_id, time.monotonic() - started)
        return response

    # --- routing ---

    def _handle(self, turn: Turn, client_pending_action: Optional[dict]) -> ChatResponse:
        if not turn.message:
            return ChatResponse(status="clarification", response_type=ResponseType.CLARIFICATION_NEEDED,
                                message="What would you like to do?")

        turn.session = self.sessions.get_session(turn.user_id)
        turn.pending = self.store.get(turn.user_id)

        if is_closing_remark(turn.message):
            return ChatResponse(message=CLOSING_REPLY)

        token = parse_ui_token(turn.message)
        if token is not None:
            return self._on_ui_token(turn, token)

        echoed_id = (client_pending_action or {}).get("id")
        if echoed_id and is_affirmative(turn.message):
            if turn.pending is None or turn.pending.id != echoed_id:
                return self._stale(turn)

        if turn.pending is not None:
            response = self._route_pending(turn, turn.message)
            if response is not None:
                return response
        return self._dispatch(turn)

    def _on_ui_token(self, turn: Turn, token) -> ChatResponse:
        pending = turn.pending
        if token.proposal_id and (pending is None or pending.id != token.proposal_id):
            return self._stale(turn)
        if pending is None:
            if token.action == "cancel":
                return ChatResponse(response_type=ResponseType.ACTION_CANCELLED, message="There's nothing to cancel.")
            return self._nothing_to_confirm()
        if token.action == "cancel":
            return self._cancel(turn)

        response = self._route_pending(turn, token.portion or token.choice or "yes")
        if response is None:
            return ChatResponse(status="clarification", response_type=ResponseType.CLARIFICATION_NEEDED,
                                message="Please pick one of the options, or press Cancel.")
        return response

    def _route_pending(self, turn: Turn, reply: str) -> Optional[ChatResponse]:
        """Answer to the stored action, or None when the reply is something else."""
        pending = turn.pending
        handlers = {
            "recipe_save": self._on_recipe_reply,
            "confirm_log_saved_recipe": self._on_saved_recipe_reply,
            "awaiting_serving_size": self._on_serving_size_reply,
            "awaiting_clarification": self._on_clarification_reply,
            "food_log": self._on_proposal_reply,
            "goal_update": self._on_proposal_reply,
        }
        if pending.type not in handlers:
            raise ValueError(f"No handler for pending action type {pending.type}")
        logger.info(f"📌 Routing reply to pending {pending.type}")
        return handlers[pending.type](turn, pending, reply)

    def _dispatch(self, turn: Turn) -> ChatResponse:
        intent = self.language.classify_intent(turn.message, turn.history)
        turn.intent = intent.intent
        logger.info(f"🎯 Intent {intent.intent} ({intent.confidence:g})")

        handler = {
            "log_food": self._handle_log_food,
            "log_recipe": self._handle_log_recipe,
            "save_recipe": self._handle_save_recipe,
            "update_goals": self._handle_update_goals,
            "confirm": self._handle_confirm,
            "decline": self._handle_decline,
            "greet": self._handle_greet,
            "off_topic": self._handle_off_topic,
        }.get(intent.intent)
        response = handler(turn, intent) if handler else None
        if response is None:
            response = self._run_tool_loop(turn)
        return response

    # --- pending action replies ---

    def _on_recipe_reply(self, turn: Turn, pending, reply: str) -> Optional[ChatResponse]:
        flow = pending.data.flow
        # a new request never counts as an answer, even when it holds a number or "log"
        if looks_like_topic_switch(reply):
            logger.info("↪️ Topic switch, abandoning the recipe flow")
            self.store.clear(turn.user_id)
            turn.pending = None
            return None
        if not self.recipe_flow.understands(flow, reply) and is_decline(reply):
            return self._cancel(turn)

        turn.agent = "recipe"
        working = flow.model_copy(deep=True)

        def resumable():
            retry_from = self.recipe_flow.retry_state(working)
            if retry_from is None:
                return pending
            return pending.model_copy(update={"data": RecipeSavePayload(flow=retry_from)})

        outcome = self._commit(turn, pending, lambda: self.recipe_flow.resume(turn.user_id, working, reply),
                               restore=resumable)
        return self._flow_response(turn, outcome)

    def _on_saved_recipe_reply(self, turn: Turn, pending, reply: str) -> Optional[ChatResponse]:
        answer = parse_servings_reply(reply)
        if is_affirmative(reply) or (answer.servings and _is_short(reply)):
            servings = answer.servings or pending.data.requested_servings
            turn.agent = "recipe"
            return self._commit(turn, pending, lambda: self._log_saved_recipe(turn, pending.data.recipe_id, servings))
        if is_decline(reply):
            return self._cancel(turn)
        return None

    def _on_serving_size_reply(self, turn: Turn, pending, reply: str) -> Optional[ChatResponse]:
        reference = pending.data.reference_nutrition
        portion = None
        if is_affirmative(reply):
            portion = reference.serving_size
        elif _is_short(reply) and parse_portion(reply)[0] is not None:
            portion = reply.strip()

        if portion is None:
            if is_decline(reply):
                return self._cancel(turn)
            return None
        turn.agent = "nutrition"
        turn.foods.append(reference.food_name)
        return self._propose(turn, *food_log_proposal([self.nutrition.for_portion(reference, portion)]))

    def _on_clarification_reply(self, turn: Turn, pending, reply: str) -> Optional[ChatResponse]:
        payload = pending.data
        index = select_option(reply, payload.labels)
        if index is None:
            if is_decline(reply):
                return self._cancel(turn)
            return None

        if payload.kind == "recipe":
            option = payload.recipe_options[index]
            logger.info(f"👉 Picked recipe {option.recipe_name}")
            return self._propose(turn, *saved_recipe_prompt(option.recipe_id, option.recipe_name,
                                                            payload.requested_servings))

        option = payload.product_options[index]
        logger.info(f"👉 Picked product {option.product_name}")
        reference = option.nutrition_data
        turn.agent = "nutrition"
        others = payload.resolved_items or payload.remaining
        if payload.portion:
            picked = self.nutrition.for_portion(reference, payload.portion)
        elif not others:
            turn.foods.append(reference.food_name)
            return self._propose(turn, *serving_size_question(reference))
        else:
            picked = reference.model_copy(update={"portion": reference.serving_size})
        turn.foods.append(picked.food_name)
        queue = [(q.food_name, q.portion) for q in payload.remaining]
        return self._resolve_foods(turn, queue, payload.resolved_items + [picked])

    def _on_proposal_reply(self, turn: Turn, pending, reply: str) -> Optional[ChatResponse]:
        if is_affirmative(reply):
            if pending.type == "food_log":
                return self._commit(turn, pending, lambda: self._log_foods(turn, pending.data.items))
            return self._commit(turn, pending, lambda: self._save_goal(turn, pending.data))
        if is_decline(reply):
            return self._cancel(turn)
        return None

    # --- intent handlers ---

    def _handle_log_food(self, turn: Turn, intent: IntentResult) -> Optional[ChatResponse]:
        foods = [f.strip() for f in intent.food_items if f and f.strip()]
        if not foods:
            return None
        turn.agent = "nutrition"
        portions = list(intent.portions) + [None] * len(foods)

        queue = []
        for food, portion in zip(foods, portions):
            if not portion:
                amount, rest = parse_amount(food)
                if amount is not None and rest:
                    food, portion = rest, food
            queue.append((food, portion or None))
        return self._resolve_foods(turn, queue, [])

    def _resolve_foods(self, turn: Turn, queue: list, items: list) -> ChatResponse:
        """
        Resolve each queued (food, portion) onto ``items`` and propose them all.
        The first ambiguous food becomes a question that carries both the
        resolved items and the rest of the queue.
        """
        items = list(items)
        for n, (food, portion) in enumerate(queue):
            resolution = self.nutrition.resolve(food, portion)
            if resolution.status == "ambiguous":
                return self._propose(turn, *product_question(food, resolution.options, portion,
                                                             resolved=items, remaining=queue[n + 1:]))
            if resolution.status == "error":
                raise CollaboratorError("nutrition", f"no nutrition for {food}")
            if not portion and resolution.source != "estimate" and len(queue) == 1 and not items:
                return self._propose(turn, *serving_size_question(resolution.nutrition))
            items.append(resolution.nutrition)
            turn.foods.append(resolution.nutrition.food_name)
        return self._propose(turn, *food_log_proposal(items))

    def _handle_log_recipe(self, turn: Turn, intent: IntentResult) -> Optional[ChatResponse]:
        query = intent.recipe_name or (intent.food_items[0] if intent.food_items else None)
        servings = intent.servings or 1.0
        turn.agent = "recipe"

        resolution = resolve_matches(self.matcher.search(query, turn.user_id)) if query else None
        if resolution is not None and resolution.status == "single":
            return self._propose(turn, *saved_recipe_prompt(resolution.best.id, resolution.best.name, servings))
        if resolution is not None and resolution.status == "ambiguous":
            return self._propose(turn, *recipe_choice_question(query, resolution.candidates, servings))

        if intent.recipe_text:
            outcome = self.recipe_flow.start(turn.user_id, intent.recipe_text, intent.recipe_name,
                                             log_after_save=True, log_servings=servings)
            return self._flow_response(turn, outcome)
        return ChatResponse(
            status="clarification",
            response_type=ResponseType.SAVED_RECIPE_NOT_FOUND,
            message=f"I couldn't find a saved recipe called \"{query or turn.message}\". "
                    f"Paste the ingredients and I'll save it for you.",
        )

    def _handle_save_recipe(self, turn: Turn, intent: IntentResult) -> ChatResponse:
        turn.agent = "recipe"
        outcome = self.recipe_flow.start(turn.user_id, intent.recipe_text or turn.message, intent.recipe_name)
        return self._flow_response(turn, outcome)

    def _handle_update_goals(self, turn: Turn, intent: IntentResult) -> Optional[ChatResponse]:
        nutrient = normalize_nutrient(intent.nutrient)
        if nutrient is None or not intent.target_value or intent.target_value <= 0:
            return None
        turn.agent = "goals"
        unit = intent.unit or NUTRIENT_UNITS[nutrient]
        action = GoalUpdateAction(data=GoalUpdatePayload(nutrient=nutrient, target_value=intent.target_value, unit=unit))
        label = nutrient.replace("_g", "").replace("_mg", "").replace("_", " ")
        response = ChatResponse(
            message=confirmation_message(ActionType.UPDATE_GOAL, f"{label} to {intent.target_value:g} {unit}"),
            response_type=ResponseType.CONFIRMATION_GOAL_UPDATE,
            data=action.data.model_dump(),
        )
        return self._propose(turn, action, response)

    def _handle_confirm(self, turn: Turn, intent: IntentResult) -> ChatResponse:
        if turn.pending is not None:
            response = self._route_pending(turn, "yes")
            if response is not None:
                return response
        return self._nothing_to_confirm()

    def _handle_decline(self, turn: Turn, intent: IntentResult) -> ChatResponse:
        if turn.pending is not None:
            return self._cancel(turn)
        return ChatResponse(response_type=ResponseType.ACTION_CANCELLED, message="No problem.")

    def _handle_greet(self, turn: Turn, intent: IntentResult) -> ChatResponse:
        return ChatResponse()

    def _handle_off_topic(self, turn: Turn, intent: IntentResult) -> ChatResponse:
        return ChatResponse(message=OFF_TOPIC_REPLY)

    def _run_tool_loop(self, turn: Turn) -> ChatResponse:
        turn.agent = turn.agent or "reasoning"
        ctx = ToolContext(
            user_id=turn.user_id, db=self.db, language=self.language, nutrition=self.nutrition,
            matcher=self.matcher, recipe_flow=self.recipe_flow, timezone=turn.timezone,
        )
        result = self.tool_loop.run(ctx, turn.message, turn.history)
        turn.tools = result.tools_used
        if result.pending_action is not None:
            return self._propose(turn, result.pending_action, result.response)
        return result.response

    # --- commits ---

    def _commit(self, turn: Turn, pending, commit, restore=None):
        """
        Clear the slot, then run ``commit``. A collaborator failure puts the
        action back: the same one, or ``restore()`` when part of the commit
        already landed and a retry must not repeat it.
        """
        self.store.clear(turn.user_id)
        turn.pending = None
        try:
            return commit()
        except CollaboratorError:
            action = restore() if restore is not None else pending
            logger.error(f"❌ Commit of {pending.type} failed, restoring the pending action")
            self.store.set(turn.user_id, action)
            turn.pending = action
            raise

    def _log_foods(self, turn: Turn, items) -> ChatResponse:
        rows = [food_log_row(item) for item in items]
        self.db.insert_food_log(turn.user_id, rows)
        turn.foods.extend(item.food_name for item in items)
        total = round(sum(item.calories for item in items))
        names = ", ".join(item.food_name for item in items)
        logger.info(f"✅ Logged {len(rows)} food item(s) for {turn.user_id}")
        return ChatResponse(
            message=f"Logged {names} ({total} kcal).",
            response_type=ResponseType.FOOD_LOGGED,
            data={"items": rows, "total_calories": total},
        )

    def _save_goal(self, turn: Turn, goal: GoalUpdatePayload) -> ChatResponse:
        self.db.upsert_user_goal(turn.user_id, goal.nutrient, goal.target_value, goal.unit)
        logger.info(f"✅ Goal {goal.nutrient} set to {goal.target_value:g} for {turn.user_id}")
        return ChatResponse(
            message=f"Done. Your daily {goal.nutrient} target is now {goal.target_value:g} {goal.unit}.",
            response_type=ResponseType.GOAL_UPDATED,
            data=goal.model_dump(),
        )

    def _log_saved_recipe(self, turn: Turn, recipe_id: str, servings: float) -> ChatResponse:
        recipe = self.db.get_recipe(turn.user_id, recipe_id)
        if recipe is None:
            return ChatResponse(status="error", response_type=ResponseType.SAVED_RECIPE_NOT_FOUND,
                                message="I couldn't find that saved recipe any more.")
        entry = recipe_log_entry(recipe, servings)
        self.db.insert_food_log(turn.user_id, [entry])
        turn.foods.append(recipe["recipe_name"])
        logger.info(f"✅ Logged {servings:g} serving(s) of recipe {recipe_id}")
        return ChatResponse(
            message=f"Logged {servings:g} serving(s) of **{recipe['recipe_name']}** ({entry['calories']:g} kcal).",
            response_type=ResponseType.RECIPE_LOGGED,
            data={"recipe_id": str(recipe["id"]), "logged": entry},
        )

    # --- helpers ---

    def _propose(self, turn: Turn, action, response: ChatResponse) -> ChatResponse:
        """Store ``action`` as the user's only pending action, superseding any older one."""
        self.store.set(turn.user_id, action)
        turn.pending = action
        response.data = {**(response.data or {}), "proposal_id": action.id, "pending_action": action.type}
        return response

    def _flow_response(self, turn: Turn, outcome: FlowOutcome) -> ChatResponse:
        if outcome.flow is not None:
            return self._propose(turn, RecipeSaveAction(data=RecipeSavePayload(flow=outcome.flow)), outcome.response)
        return outcome.response

    def _cancel(self, turn: Turn) -> ChatResponse:
        cancelled = turn.pending.type if turn.pending is not None else None
        self.store.clear(turn.user_id)
        turn.pending = None
        if turn.session is not None:
            self.sessions.reset(turn.session)
        logger.info(f"🚫 Cancelled pending {cancelled}")
        return ChatResponse(response_type=ResponseType.ACTION_CANCELLED, message="Okay, I've cancelled that.")

    def _stale(self, turn: Turn) -> ChatResponse:
        logger.warning(f"⚠️ Stale confirmation from {turn.user_id}")
        data = {"proposal_id": turn.pending.id} if turn.pending is not None else None
        return ChatResponse(
            response_type=ResponseType.STALE_CONFIRMATION,
            message="That confirmation was for an older proposal, so I didn't change anything.",
            data=data,
        )

    def _nothing_to_confirm(self) -> ChatResponse:
        return ChatResponse(response_type=ResponseType.NOTHING_TO_CONFIRM,
                            message="There's nothing waiting for confirmation right now.")

    def _phrase(self, turn: Turn, response: ChatResponse) -> str:
        outcome = {"response_type": response.response_type.value, "data": response.data}
        try:
            text = self.language.generate_response(turn.message, turn.intent, outcome, turn.history)
        except CollaboratorError as e:
            logger.warning(f"⚠️ Response generation failed, using a fixed reply: {e}")
            return FALLBACK_REPLY
        return text or FALLBACK_REPLY

    # --- context and logs ---

    def _remember(self, turn: Turn, response: ChatResponse) -> None:
        if turn.session is None:
            return
        if turn.pending is None:
            mode = "idle"
        elif turn.pending.type == "recipe_save":
            mode = "recipe_flow"
        else:
            mode = "awaiting_confirmation"
        try:
            self.sessions.update_context(turn.session, intent=turn.intent, agent=turn.agent,
                                         response_type=response.response_type.value, mode=mode)
            if turn.foods or turn.intent:
                self.sessions.update_buffer(turn.session, recent_foods=turn.foods, last_topic=turn.intent)
        except CollaboratorError as e:
            logger.warning(f"⚠️ Session context not saved: {e}")

    def _log_turn(self, turn: Turn, response: ChatResponse, session_id: Optional[str], elapsed: float) -> None:
        now = datetime.now(timezone.utc).isoformat()
        execution = {
            "user_id": turn.user_id,
            "session_id": session_id,
            "intent": turn.intent,
            "agents_involved": [a for a in (turn.agent,) if a],
            "tools_used": turn.tools,
            "execution_time_ms": round(elapsed * 1000),
            "status": response.status,
            "response_type": response.response_type.value,
            "input_text": turn.message,
            "output_text": response.message,
            "created_at": now,
        }
        messages = [
            {"user_id": turn.user_id, "session_id": session_id, "role": "user", "content": turn.message, "created_at": now},
            {"user_id": turn.user_id, "session_id": session_id, "role": "assistant", "content": response.message,
             "response_type": response.response_type.value, "created_at": now},
        ]
        self.log_executor.submit(self._write_logs, execution, messages)

    def _write_logs(self, execution: dict, messages: list[dict]) -> None:
        try:
            self.db.insert_execution_log(execution)
            self.db.insert_chat_messages(messages)
        except Exception as e:
            logger.warning(f"⚠️ Turn log not written: {e}")
