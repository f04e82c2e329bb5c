import json
import logging
import re

from google import genai
from google.genai import types

from nutripal.core import config
from nutripal.core.prompts import (
    intent_prompt, recipe_parse_prompt, nutrition_estimate_prompt,
    ingredients_estimate_prompt, multiplier_prompt, response_prompt,
)
from nutripal.core.retry import with_retry
from nutripal.models.recipe_flow import IngredientNutrition
from nutripal.models.schemas import IntentResult, ParsedRecipe, NutritionData

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def _parse_json(text: str) -> dict:
    cleaned = _FENCE.sub("", (text or "").strip())
    return json.loads(cleaned)


def history_to_contents(history, limit: int = None) -> list[types.Content]:
    """Last ``limit`` chat turns as genai contents ("assistant" becomes "model")."""
    limit = config.MAX_HISTORY_MESSAGES if limit is None else limit
    contents = []
    for message in (history or [])[-limit:]:
        role = "model" if message.role == "assistant" else "user"
        contents.append(types.Content(role=role, parts=[types.Part(text=message.content)]))
    return contents


class LanguageService:
    """Every call NutriPal makes to Gemini."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            if not config.GEMINI_API_KEY:
                raise EnvironmentError("GEMINI_API_KEY not found")
            self._client = genai.Client(api_key=config.GEMINI_API_KEY)
        return self._client

    def _json_call(self, model: str, system_instruction: str, contents) -> dict:
        response = self.client.models.generate_content(
            model=model,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=system_instruction,
                response_mime_type="application/json",
            ),
        )
        return _parse_json(response.text)

    @with_retry("language")
    def classify_intent(self, message: str, history=None) -> IntentResult:
        contents = history_to_contents(history)
        contents.append(types.Content(role="user", parts=[types.Part(text=message)]))
        data = self._json_call(config.INTENT_MODEL, intent_prompt, contents)
        result = IntentResult.model_validate(data)
        logger.info(f"🧭 Intent '{result.intent}' ({result.confidence})")
        return result

    @with_retry("language")
    def chat(self, contents: list, tools: list, system_instruction: str):
        """One tool-calling round; returns the raw genai response."""
        return self.client.models.generate_content(
            model=config.REASONING_MODEL,
            contents=contents,
            config=types.GenerateContentConfig(tools=tools, system_instruction=system_instruction),
        )

    @with_retry("language")
    def parse_recipe(self, text: str) -> ParsedRecipe:
        data = self._json_call(config.REASONING_MODEL, recipe_parse_prompt, text)
        return ParsedRecipe.model_validate(data)

    @with_retry("language")
    def estimate_nutrition(self, description: str, portion: str = None) -> NutritionData:
        prompt = f"Food: {description}\nPortion: {portion or '1 typical serving'}"
        data = self._json_call(config.REASONING_MODEL, nutrition_estimate_prompt, prompt)
        data.setdefault("food_name", description)
        data["portion"] = portion
        data["source"] = "estimate"
        return NutritionData.model_validate(data)

    @with_retry("language")
    def estimate_ingredients(self, ingredients) -> list[IngredientNutrition]:
        listing = "\n".join(f"- {i.quantity} {i.unit} {i.name}".replace("  ", " ") for i in ingredients)
        data = self._json_call(config.REASONING_MODEL, ingredients_estimate_prompt, listing)
        return [IngredientNutrition.model_validate(item) for item in data.get("ingredients", [])]

    @with_retry("language")
    def estimate_multiplier(self, user_portion: str, reference: str) -> float:
        response = self.client.models.generate_content(
            model=config.REASONING_MODEL,
            contents=multiplier_prompt.format(portion=user_portion, reference=reference),
        )
        match = re.search(r"\d+(?:\.\d+)?", response.text or "")
        if not match:
            raise ValueError(f"No number in multiplier reply: {response.text!r}")
        return float(match.group(0))

    @with_retry("language")
    def generate_response(self, user_message: str, intent: str, outcome: dict, history=None) -> str:
        contents = history_to_contents(history, limit=4)
        contents.append(types.Content(role="user", parts=[types.Part(text=(
            f"User said: {user_message}\nIntent: {intent}\n"
            f"Outcome (already final): {json.dumps(outcome, default=str)}"
        ))]))
        response = self.client.models.generate_content(
            model=config.RESPONSE_MODEL,
            contents=contents,
            config=types.GenerateContentConfig(system_instruction=response_prompt),
        )
        return (response.text or "").strip()
