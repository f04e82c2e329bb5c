"""
Recipe authoring: parse -> duplicate check -> batch size -> servings -> save.

Every step that needs the user's answer returns a ``FlowOutcome`` holding
the flow state; the caller stores it as a ``recipe_save`` pending action
and hands it back to ``resume`` with the next reply.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional

from nutripal.core.errors import CollaboratorError, RecipeParseError
from nutripal.models.recipe_flow import RecipeEvent as E, RecipeFlowState, RecipeStep as S
from nutripal.models.schemas import ChatResponse, Ingredient, NutritionData, ParsedRecipe, ResponseType
from nutripal.services.db_service import food_log_row
from nutripal.utils.confirmation_policy import ActionType, decide
from nutripal.utils.fingerprint import fingerprint
from nutripal.utils.nutrition_scaler import GRAMS_PER_UNIT, parse_amount, scale_nutrition
from nutripal.utils.nutrition_validation import zero_calorie_warnings
from nutripal.utils.servings import (
    ML_PER_UNIT, BatchSize, batch_confirmation_prompt, calculate_batch_size,
    detect_servings, parse_batch_size_reply, parse_servings_reply, servings_prompt,
)
from nutripal.utils.text_signals import is_affirmative, looks_like_topic_switch

logger = logging.getLogger(__name__)

_KNOWN_UNITS = set(GRAMS_PER_UNIT) | set(ML_PER_UNIT) | {
    "cups", "tbsps", "tsps", "tablespoons", "teaspoons", "liters", "litres", "pinch",
    "slice", "slices", "clove", "cloves", "can", "cans", "scoop", "scoops", "handful",
}
_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")

DUPLICATE_CHOICES = {
    "log": ("log", "use existing", "use it", "existing", "just log"),
    "update": ("update", "overwrite", "replace"),
    "new": ("new", "save as new", "separate", "different", "another"),
}


@dataclass
class FlowOutcome:
    response: ChatResponse
    flow: Optional[RecipeFlowState] = None  # set while the flow waits for the user
    terminal: bool = False


def parse_ingredient_lines(text: str, recipe_name: str = None) -> ParsedRecipe:
    """Rule-based fallback: one ``<qty> <unit> <name>`` per comma, semicolon or line."""
    name = recipe_name
    ingredients = []
    for raw in re.split(r"[,;\n]", text or ""):
        line = _BULLET.sub("", raw).strip()
        if not line or not re.search(r"[a-zA-Z]", line):
            continue
        if line.endswith(":"):
            name = name or line[:-1].strip()
            continue
        quantity, rest = parse_amount(line)
        if quantity is None:
            quantity, rest = 1.0, line.lower()
        words = rest.split()
        unit = ""
        if len(words) > 1 and words[0].strip(".") in _KNOWN_UNITS:
            unit = words.pop(0).strip(".")
        if words and words[0] == "of":
            words.pop(0)
        if words:
            ingredients.append(Ingredient(name=" ".join(words), quantity=quantity, unit=unit))

    if not name and ingredients:
        name = "Recipe with " + ", ".join(i.name for i in ingredients[:2])
    return ParsedRecipe(recipe_name=name or "My recipe", ingredients=ingredients)


def parse_duplicate_choice(reply: str) -> Optional[str]:
    lower = (reply or "").lower().strip()
    for choice, phrases in DUPLICATE_CHOICES.items():
        if any(re.search(rf"\b{re.escape(p)}\b", lower) for p in phrases):
            return choice
    return None


def per_serving(batch: NutritionData, servings: float) -> NutritionData:
    return scale_nutrition(batch, 1 / servings if servings else 1)


def recipe_log_entry(recipe: dict, servings: float) -> dict:
    """``food_log`` row for ``servings`` servings of a saved recipe."""
    one = NutritionData(
        food_name=recipe["recipe_name"],
        **{k: recipe[k] for k in ("calories", "protein_g", "fat_total_g", "carbs_g",
                                  "fiber_g", "sugar_g", "sodium_mg") if recipe.get(k) is not None},
    )
    eaten = scale_nutrition(one, servings)
    label = "serving" if servings == 1 else "servings"
    return food_log_row(eaten, portion=f"{servings:g} {label}", source="recipe", recipe_id=recipe["id"])


class RecipeFlow:
    def __init__(self, db, language):
        self.db = db
        self.language = language

    # --- entry points ---

    def start(self, user_id: str, text: str, recipe_name: str = None,
              log_after_save: bool = False, log_servings: float = 1.0) -> FlowOutcome:
        try:
            parsed = self.parse(text, recipe_name)
        except RecipeParseError:
            return FlowOutcome(ChatResponse(
                status="clarification",
                response_type=ResponseType.CLARIFICATION_NEEDED,
                message="I couldn't find any ingredients in that. Could you list them, "
                        "like \"2 cups flour, 1 egg, 100g butter\"?",
            ))

        flow = RecipeFlowState(
            parsed=parsed,
            source_text=text,
            servings_explicit=parsed.servings is not None,
            log_after_save=log_after_save,
            log_servings=log_servings,
        )
        duplicate = self.find_duplicate(user_id, parsed)
        if duplicate:
            flow.existing_recipe_id = str(duplicate["id"])
            flow.existing_recipe_name = duplicate["recipe_name"]
            flow.advance(E.DUPLICATE_FOUND)
            return self._ask(flow, self._duplicate_question(flow))
        return self._size(user_id, flow)

    def resume(self, user_id: str, flow: RecipeFlowState, reply: str) -> FlowOutcome:
        if flow.step == S.PENDING_DUPLICATE_CONFIRM:
            return self._on_duplicate_reply(user_id, flow, reply)
        if flow.step == S.PENDING_BATCH_CONFIRM:
            return self._on_batch_reply(user_id, flow, reply)
        if flow.step == S.PENDING_SERVINGS_CONFIRM:
            return self._on_servings_reply(user_id, flow, reply)
        if flow.step == S.READY_TO_SAVE:
            return self._on_save_reply(user_id, flow, reply)
        raise ValueError(f"Recipe flow cannot resume from step {flow.step}")

    def understands(self, flow: RecipeFlowState, reply: str) -> bool:
        """Is ``reply`` a usable answer to the question of the current step?"""
        if looks_like_topic_switch(reply):
            return False
        if flow.step == S.PENDING_DUPLICATE_CONFIRM:
            return parse_duplicate_choice(reply) is not None
        if flow.step == S.PENDING_BATCH_CONFIRM:
            answer = parse_batch_size_reply(reply)
            return bool(answer.confirmed or answer.grams or answer.ml)
        servings = parse_servings_reply(reply)
        if flow.step == S.PENDING_SERVINGS_CONFIRM:
            return bool(servings.confirmed or servings.servings)
        return is_affirmative(reply) or bool(servings.servings)

    def retry_state(self, flow: RecipeFlowState) -> Optional[RecipeFlowState]:
        """
        Where to pick up after a save that failed part-way, or None when
        nothing was written and the original proposal can simply be restored.
        """
        if not flow.saved_recipe_id:
            return None
        # the failed SAVE_CONFIRMED is undone; the recipe row is kept and reused
        return flow.model_copy(update={"step": S.READY_TO_SAVE}, deep=True)

    # --- parse / dedupe ---

    def parse(self, text: str, recipe_name: str = None) -> ParsedRecipe:
        parsed = None
        try:
            parsed = self.language.parse_recipe(text)
        except CollaboratorError as e:
            logger.warning(f"⚠️ Recipe parse via language service failed, using line parser: {e}")
        if parsed is None or not parsed.ingredients:
            parsed = parse_ingredient_lines(text, recipe_name)
        if not parsed.ingredients:
            raise RecipeParseError("No ingredients found")
        if recipe_name:
            parsed.recipe_name = recipe_name
        parsed.fingerprint = fingerprint(parsed.ingredients)
        logger.info(f"🍳 Parsed '{parsed.recipe_name}': {len(parsed.ingredients)} ingredients")
        return parsed

    def find_duplicate(self, user_id: str, parsed: ParsedRecipe) -> Optional[dict]:
        """First hit wins: fingerprint, exact name, substring, then all words."""
        hit = self.db.find_recipe_by_fingerprint(user_id, parsed.fingerprint)
        if hit:
            logger.info(f"🔁 Duplicate by fingerprint: {hit['recipe_name']}")
            return hit
        for mode in ("exact", "substring", "words"):
            hit = self.db.find_recipe_by_name(user_id, parsed.recipe_name, mode=mode)
            if hit:
                logger.info(f"🔁 Duplicate by {mode} name: {hit['recipe_name']}")
                return hit
        return None

    def unique_name(self, user_id: str, name: str) -> str:
        n = 2
        candidate = f"{name} ({n})"
        while self.db.recipe_name_exists(user_id, candidate):
            n += 1
            candidate = f"{name} ({n})"
        return candidate

    # --- sizing ---

    def _size(self, user_id: str, flow: RecipeFlowState) -> FlowOutcome:
        batch = calculate_batch_size(flow.parsed.ingredients)
        flow.batch_size_grams = batch.total_grams
        flow.batch_size_ml = batch.total_ml
        flow.batch_confidence = batch.confidence
        if batch.confidence == "low" and not flow.servings_explicit:
            flow.advance(E.NEEDS_BATCH)
            return self._ask(flow, batch_confirmation_prompt(batch))
        return self._servings(user_id, flow)

    def _servings(self, user_id: str, flow: RecipeFlowState) -> FlowOutcome:
        if flow.servings_explicit:
            flow.advance(E.SERVINGS_KNOWN)
            return self._ready(user_id, flow)

        if flow.confirmed_batch_size is not None:
            batch = BatchSize(total_grams=flow.confirmed_batch_size, total_ml=flow.batch_size_ml or 0,
                              confidence="high")
        else:
            batch = BatchSize(total_grams=flow.batch_size_grams or 0, total_ml=flow.batch_size_ml or 0,
                              confidence=flow.batch_confidence or "low")
        detection = detect_servings(flow.parsed.ingredients, flow.parsed.recipe_name, flow.source_text, batch=batch)
        flow.suggested_servings = detection.suggested_servings
        flow.servings_confidence = detection.confidence

        if detection.confidence == "high":
            flow.advance(E.SERVINGS_KNOWN)
            return self._ready(user_id, flow)
        flow.advance(E.NEEDS_SERVINGS)
        return self._ask(flow, servings_prompt(detection))

    # --- nutrition / save ---

    def _price(self, flow: RecipeFlowState) -> None:
        items = self.language.estimate_ingredients(flow.parsed.ingredients)
        totals = {k: 0.0 for k in ("calories", "protein_g", "fat_total_g", "carbs_g")}
        for item in items:
            for key in totals:
                totals[key] += getattr(item, key) or 0
        flow.ingredients_with_nutrition = items
        flow.warnings = zero_calorie_warnings(items)
        size = flow.confirmed_batch_size or flow.batch_size_grams
        flow.batch_nutrition = NutritionData(
            food_name=flow.parsed.recipe_name,
            serving_size=f"1 batch ({round(size)}g)" if size else "1 batch",
            calories=round(totals["calories"]),
            protein_g=round(totals["protein_g"], 1),
            fat_total_g=round(totals["fat_total_g"], 1),
            carbs_g=round(totals["carbs_g"], 1),
            source="estimate",
        )

    def _ready(self, user_id: str, flow: RecipeFlowState, confirmed_now: bool = False) -> FlowOutcome:
        if flow.batch_nutrition is None:
            self._price(flow)
        overwrites = flow.duplicate_choice == "update"
        decision = decide(
            ActionType.SAVE_RECIPE,
            confidence=100 if confirmed_now else 0,
            is_high_impact=overwrites,
            has_complete_data=bool(flow.batch_nutrition and flow.batch_nutrition.calories),
            item_name=flow.parsed.recipe_name,
        )
        if not decision.require_confirmation:
            flow.advance(E.SAVE_CONFIRMED)
            return self._save(user_id, flow)

        each = per_serving(flow.batch_nutrition, flow.servings)
        verb = f'update "{flow.existing_recipe_name}"' if overwrites else "save it"
        message = (
            f"**{flow.parsed.recipe_name}** makes {flow.servings:g} serving(s) at about "
            f"{each.calories:g} kcal, {each.protein_g:g}g protein, {each.carbs_g:g}g carbs and "
            f"{each.fat_total_g:g}g fat each. Shall I {verb}?"
        )
        if flow.warnings:
            message += "\n\n" + "\n".join(f"⚠️ {w}" for w in flow.warnings)
        return self._ask(flow, message)

    def _save(self, user_id: str, flow: RecipeFlowState) -> FlowOutcome:
        servings = flow.servings
        each = per_serving(flow.batch_nutrition, servings)
        row = {
            "user_id": user_id,
            "recipe_name": flow.parsed.recipe_name,
            "servings": servings,
            "fingerprint": flow.parsed.fingerprint,
            "instructions": flow.parsed.instructions,
            "nutrition_data": flow.batch_nutrition.model_dump(exclude_none=True),
            **each.nutrients(),
        }
        if flow.duplicate_choice == "update" and flow.existing_recipe_id:
            saved = self.db.update_recipe(user_id, flow.existing_recipe_id, row)
            response_type, verb = ResponseType.RECIPE_UPDATED, "Updated"
        elif flow.saved_recipe_id:
            saved = self.db.update_recipe(user_id, flow.saved_recipe_id, row)
            response_type, verb = ResponseType.RECIPE_SAVED, "Saved"
        else:
            saved = self.db.insert_recipe(row)
            response_type, verb = ResponseType.RECIPE_SAVED, "Saved"
        recipe_id = str(saved["id"])
        flow.saved_recipe_id = recipe_id
        self.db.replace_recipe_ingredients(recipe_id, [
            i.model_dump() for i in flow.ingredients_with_nutrition
        ] or [i.model_dump() for i in flow.parsed.ingredients])
        logger.info(f"✅ {verb} recipe '{flow.parsed.recipe_name}' ({recipe_id})")

        message = f"{verb} **{flow.parsed.recipe_name}** ({servings:g} serving(s), {each.calories:g} kcal each)."
        data = {"recipe_id": recipe_id, "recipe_name": flow.parsed.recipe_name,
                "servings": servings, "nutrition": each.model_dump(exclude_none=True)}
        if flow.log_after_save:
            entry = recipe_log_entry({"id": recipe_id, **row}, flow.log_servings)
            self.db.insert_food_log(user_id, [entry])
            message += f" Also logged {flow.log_servings:g} serving(s) to today's diary."
            data["logged"] = entry
        return FlowOutcome(ChatResponse(message=message, response_type=response_type, data=data), terminal=True)

    def _log_existing(self, user_id: str, flow: RecipeFlowState) -> FlowOutcome:
        recipe = self.db.get_recipe(user_id, flow.existing_recipe_id)
        if recipe is None:
            return FlowOutcome(ChatResponse(
                status="error", response_type=ResponseType.SAVED_RECIPE_NOT_FOUND,
                message="I couldn't find that saved recipe any more.",
            ), terminal=True)
        entry = recipe_log_entry(recipe, flow.log_servings)
        self.db.insert_food_log(user_id, [entry])
        return FlowOutcome(ChatResponse(
            message=f"Logged {flow.log_servings:g} serving(s) of **{recipe['recipe_name']}**.",
            response_type=ResponseType.RECIPE_LOGGED,
            data={"recipe_id": str(recipe["id"]), "logged": entry},
        ), terminal=True)

    # --- replies ---

    def _on_duplicate_reply(self, user_id, flow, reply) -> FlowOutcome:
        choice = parse_duplicate_choice(reply)
        if choice is None:
            return self._reprompt(flow, self._duplicate_question(flow))
        if choice == "log":
            flow.advance(E.CHOSE_LOG)
            return self._log_existing(user_id, flow)
        flow.duplicate_choice = choice
        if choice == "new":
            flow.parsed.recipe_name = self.unique_name(user_id, flow.parsed.recipe_name)
        return self._size(user_id, flow)

    def _on_batch_reply(self, user_id, flow, reply) -> FlowOutcome:
        answer = parse_batch_size_reply(reply)
        if answer.grams:
            flow.confirmed_batch_size = answer.grams
        elif answer.ml:
            flow.confirmed_batch_size = answer.ml
            flow.batch_size_ml = answer.ml
        elif answer.confirmed:
            flow.confirmed_batch_size = flow.batch_size_grams
        else:
            return self._reprompt(flow, "Roughly how much does the whole recipe make? For example \"1.5kg\" or \"2 liters\".")
        return self._servings(user_id, flow)

    def _on_servings_reply(self, user_id, flow, reply) -> FlowOutcome:
        answer = parse_servings_reply(reply)
        if answer.servings:
            flow.confirmed_servings = answer.servings
        elif answer.confirmed and flow.suggested_servings:
            flow.confirmed_servings = flow.suggested_servings
        else:
            return self._reprompt(flow, "How many servings does this recipe make? A number like 4 is perfect.")
        flow.advance(E.SERVINGS_CONFIRMED)
        return self._ready(user_id, flow, confirmed_now=True)

    def _on_save_reply(self, user_id, flow, reply) -> FlowOutcome:
        if is_affirmative(reply):
            flow.advance(E.SAVE_CONFIRMED)
            return self._save(user_id, flow)
        answer = parse_servings_reply(reply)
        if answer.servings:
            # a changed serving count re-shows the same proposal
            flow.confirmed_servings = answer.servings
            flow.advance(E.UNPARSEABLE)
            return self._ready(user_id, flow)
        return self._reprompt(flow, f'Should I save **{flow.parsed.recipe_name}**? Reply "yes" to save or "cancel".')

    # --- responses ---

    def _duplicate_question(self, flow: RecipeFlowState) -> str:
        return (
            f'This looks like your saved recipe **{flow.existing_recipe_name}**. '
            f'Do you want to **log** that one, **update** it with these ingredients, '
            f'or save this as a **new** recipe?'
        )

    def _payload(self, flow: RecipeFlowState) -> dict:
        data = {
            "step": flow.step.value,
            "recipe_name": flow.parsed.recipe_name,
            "ingredients": [i.model_dump() for i in flow.parsed.ingredients],
            "batch_size_grams": flow.confirmed_batch_size or flow.batch_size_grams,
            "suggested_servings": flow.suggested_servings,
            "servings": flow.servings,
            "warnings": flow.warnings,
        }
        if flow.existing_recipe_id:
            data["existing_recipe"] = {"id": flow.existing_recipe_id, "name": flow.existing_recipe_name}
        if flow.batch_nutrition:
            data["batch_nutrition"] = flow.batch_nutrition.model_dump(exclude_none=True)
            data["nutrition"] = per_serving(flow.batch_nutrition, flow.servings).model_dump(exclude_none=True)
        return data

    def _ask(self, flow: RecipeFlowState, message: str) -> FlowOutcome:
        response = ChatResponse(message=message, response_type=ResponseType(flow.step.value), data=self._payload(flow))
        return FlowOutcome(response, flow=flow)

    def _reprompt(self, flow: RecipeFlowState, message: str) -> FlowOutcome:
        flow.advance(E.UNPARSEABLE)
        outcome = self._ask(flow, "Sorry, I didn't catch that. " + message)
        outcome.response.status = "clarification"
        return outcome
