import logging
from dataclasses import dataclass, field
from typing import Optional

from nutripal.core.errors import CollaboratorError
from nutripal.models.schemas import NutritionData, ProductOption
from nutripal.utils.nutrition_scaler import NutritionScaler, scale_nutrition

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    status: str  # "success" | "ambiguous" | "error"
    nutrition: Optional[NutritionData] = None
    options: list[ProductOption] = field(default_factory=list)
    source: Optional[str] = None
    confidence: float = 0


class NutritionService:
    """Turns a (food, portion) pair into nutrition for that portion."""

    def __init__(self, lookup, language):
        self.lookup = lookup
        self.language = language
        self.scaler = NutritionScaler(language)

    def for_portion(self, reference: NutritionData, portion: str) -> NutritionData:
        multiplier = self.scaler.multiplier(portion, reference.serving_size or "")
        scaled = scale_nutrition(reference, multiplier)
        return scaled.model_copy(update={"portion": portion or reference.serving_size})

    def resolve(self, food_name: str, portion: str = None) -> Resolution:
        result = self.lookup.lookup(food_name)

        if result.status == "success" and result.nutrition_data:
            data = result.nutrition_data
            if portion:
                data = self.for_portion(data, portion)
            return Resolution("success", data, source=result.source, confidence=result.confidence_score)

        if result.status == "ambiguous":
            return Resolution("ambiguous", options=result.options, source=result.source)

        # not_found / error: fall back to an estimate
        try:
            estimate = self.language.estimate_nutrition(food_name, portion)
        except CollaboratorError as e:
            logger.error(f"❌ No nutrition for '{food_name}': {e}")
            return Resolution("error")
        logger.info(f"🤖 Estimated nutrition for '{food_name}' ({portion or 'default portion'})")
        return Resolution("success", estimate, source="estimate", confidence=70)
