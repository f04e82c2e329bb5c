"""
USDA FoodData Central product search.

Descriptions are ranked with fuzzywuzzy against the query and the ranked
list goes through the same ambiguity policy as saved-recipe search.
"""
import logging

import requests
from fuzzywuzzy import fuzz, process
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from nutripal.core import config
from nutripal.core.errors import CollaboratorError
from nutripal.core.retry import with_retry
from nutripal.models.schemas import LookupResult, NutritionData, ProductOption
from nutripal.utils.fuzzy_matcher import MatchCandidate, resolve_matches

logger = logging.getLogger(__name__)

# FDC nutrient ids -> NutritionData fields
NUTRIENT_IDS = {
    1008: "calories",
    1003: "protein_g",
    1004: "fat_total_g",
    1005: "carbs_g",
    1079: "fiber_g",
    2000: "sugar_g",
    1093: "sodium_mg",
    1253: "cholesterol_mg",
    1258: "fat_saturated_g",
    1092: "potassium_mg",
}

GENERIC_DATA_TYPES = ("Foundation", "SR Legacy", "Survey (FNDDS)")


def food_to_nutrition(food: dict) -> NutritionData:
    """Nutrition for the product's own reference serving (100g for generic foods)."""
    if food.get("servingSize"):
        serving = f"{float(food['servingSize']):g}{(food.get('servingSizeUnit') or 'g').lower()}"
    elif food.get("householdServingFullText"):
        serving = food["householdServingFullText"]
    else:
        serving = "100g"

    values = {}
    for nutrient in food.get("foodNutrients", []):
        field = NUTRIENT_IDS.get(nutrient.get("nutrientId"))
        value = nutrient.get("value", nutrient.get("amount"))
        if field and value is not None:
            values[field] = round(float(value), 1)
    if "calories" in values:
        values["calories"] = round(values["calories"])

    return NutritionData(
        food_name=food.get("description", "").strip(),
        serving_size=serving,
        source="usda_fdc",
        **values,
    )


class NutritionLookupService:
    RETRY_BACKOFF_FACTOR = 0.5
    RETRY_STATUS_FORCELIST = [429, 500, 502, 503, 504]

    def __init__(self, session: requests.Session = None, api_key: str = None):
        self.session = session or self._build_session()
        self.api_key = api_key or config.FDC_API_KEY

    def _build_session(self) -> requests.Session:
        session = requests.Session()

        # Transport retries (connection errors and 429/5xx) happen in the adapter
        retry_strategy = Retry(
            total=max(config.RETRY_MAX_ATTEMPTS - 1, 0),
            backoff_factor=self.RETRY_BACKOFF_FACTOR,
            status_forcelist=self.RETRY_STATUS_FORCELIST,
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    # one attempt: the adapter already retried, this only maps the failure
    @with_retry("nutrition_lookup", max_attempts=1, retry_on=(requests.RequestException,))
    def _search(self, query: str) -> list[dict]:
        response = self.session.get(
            config.FDC_SEARCH_URL,
            params={
                "api_key": self.api_key,
                "query": query,
                "dataType": ",".join(("Branded",) + GENERIC_DATA_TYPES),
                "pageSize": 15,
            },
            timeout=config.HTTP_TIMEOUT,
        )
        response.raise_for_status()
        return response.json().get("foods", [])

    def lookup(self, food_name: str) -> LookupResult:
        if not food_name or not food_name.strip():
            return LookupResult(status="not_found", message="Nothing to look up")
        try:
            foods = self._search(food_name)
        except CollaboratorError as e:
            logger.error(f"❌ FDC search failed for '{food_name}': {e}")
            return LookupResult(status="error", message="Nutrition database unavailable")

        usable = [f for f in foods if any(n.get("nutrientId") == 1008 for n in f.get("foodNutrients", []))]
        if not usable:
            logger.info(f"🔎 FDC: nothing usable for '{food_name}'")
            return LookupResult(status="not_found")

        # one option per distinct description, generic foods preferred
        by_name = {}
        for food in sorted(usable, key=lambda f: f.get("dataType") not in GENERIC_DATA_TYPES):
            by_name.setdefault(food.get("description", "").strip().lower(), food)
        names = list(by_name)

        ranked = process.extract(food_name.lower(), names, scorer=fuzz.token_set_ratio, limit=5)
        candidates = [
            MatchCandidate(id=name, name=by_name[name]["description"], score=score,
                           extra={"food": by_name[name]})
            for name, score in ranked
            if score >= config.PRODUCT_MATCH_THRESHOLD
        ]
        resolution = resolve_matches(candidates)

        if resolution.status == "none":
            return LookupResult(status="not_found")

        if resolution.status == "single":
            best = resolution.best
            logger.info(f"✅ FDC match for '{food_name}': {best.name} ({best.score})")
            return LookupResult(
                status="success",
                product_name=best.name,
                nutrition_data=food_to_nutrition(best.extra["food"]),
                confidence_score=best.score,
                source="usda_fdc",
            )

        options = [
            ProductOption(
                product_name=c.name,
                brand=c.extra["food"].get("brandOwner"),
                score=c.score,
                nutrition_data=food_to_nutrition(c.extra["food"]),
            )
            for c in resolution.candidates
        ]
        logger.info(f"⚠️ FDC: {len(options)} close matches for '{food_name}'")
        return LookupResult(status="ambiguous", options=options, source="usda_fdc")
