from enum import Enum
from typing import Optional, Any, Literal

from pydantic import BaseModel, Field


class ResponseType(str, Enum):
    """Closed vocabulary the UI switches on. Do not rename members."""
    FOOD_LOGGED = "food_logged"
    CONFIRMATION_FOOD_LOG = "confirmation_food_log"
    PENDING_BATCH_CONFIRM = "pending_batch_confirm"
    PENDING_SERVINGS_CONFIRM = "pending_servings_confirm"
    PENDING_DUPLICATE_CONFIRM = "pending_duplicate_confirm"
    READY_TO_SAVE = "ready_to_save"
    CONFIRMATION_RECIPE_SAVE = "confirmation_recipe_save"
    RECIPE_SAVED = "recipe_saved"
    RECIPE_UPDATED = "recipe_updated"
    RECIPE_LOGGED = "recipe_logged"
    GOAL_UPDATED = "goal_updated"
    CONFIRMATION_GOAL_UPDATE = "confirmation_goal_update"
    ACTION_CANCELLED = "action_cancelled"
    FATAL_ERROR = "fatal_error"
    CONFIRMATION_FAILED = "confirmation_failed"
    CHAT_RESPONSE = "chat_response"
    CLARIFICATION_NEEDED = "clarification_needed"
    SAVED_RECIPE_CONFIRMATION_PROMPT = "saved_recipe_confirmation_prompt"
    SAVED_RECIPE_FOUND_MULTIPLE = "saved_recipe_found_multiple"
    SAVED_RECIPE_NOT_FOUND = "saved_recipe_not_found"
    AWAITING_SERVING_SIZE = "awaiting_serving_size"
    AMBIGUOUS_PRODUCT = "ambiguous_product"
    NUTRITION_INFO = "nutrition_info"
    NOTHING_TO_CONFIRM = "nothing_to_confirm"
    STALE_CONFIRMATION = "stale_confirmation"
    SERVICE_UNAVAILABLE = "service_unavailable"


Status = Literal["success", "error", "ambiguous", "clarification"]


class ChatMessage(BaseModel):
    role: str  # "user" or "assistant"
    content: str


class ChatRequest(BaseModel):
    message: str
    session_id: Optional[str] = None
    pending_action: Optional[dict[str, Any]] = None  # echoed by the UI; never trusted
    conversation_history: list[ChatMessage] = Field(default_factory=list)
    timezone: str = "UTC"


class ChatResponse(BaseModel):
    status: Status = "success"
    message: str = ""
    response_type: ResponseType = ResponseType.CHAT_RESPONSE
    data: Optional[dict[str, Any]] = None


class Ingredient(BaseModel):
    name: str
    quantity: float = 1.0
    unit: str = ""


class ParsedRecipe(BaseModel):
    recipe_name: str
    servings: Optional[float] = None  # None = not stated in the text
    ingredients: list[Ingredient] = Field(default_factory=list)
    instructions: Optional[str] = None
    fingerprint: str = ""


NUTRIENT_KEYS = (
    "calories", "protein_g", "fat_total_g", "carbs_g", "fiber_g", "sugar_g",
    "sodium_mg", "fat_saturated_g", "cholesterol_mg", "potassium_mg",
)


class NutritionData(BaseModel):
    food_name: str
    portion: Optional[str] = None
    serving_size: Optional[str] = None
    calories: float = 0
    protein_g: float = 0
    fat_total_g: float = 0
    carbs_g: float = 0
    fiber_g: Optional[float] = None
    sugar_g: Optional[float] = None
    sodium_mg: Optional[float] = None
    fat_saturated_g: Optional[float] = None
    cholesterol_mg: Optional[float] = None
    potassium_mg: Optional[float] = None
    source: Optional[str] = None

    def nutrients(self) -> dict[str, float]:
        """Only the nutrient fields that have a value."""
        return {k: getattr(self, k) for k in NUTRIENT_KEYS if getattr(self, k) is not None}


class IntentResult(BaseModel):
    intent: str = "off_topic"
    confidence: float = 0
    food_items: list[str] = Field(default_factory=list)
    portions: list[str] = Field(default_factory=list)
    recipe_text: Optional[str] = None
    recipe_name: Optional[str] = None
    nutrient: Optional[str] = None
    target_value: Optional[float] = None
    unit: Optional[str] = None
    servings: Optional[float] = None


class ProductOption(BaseModel):
    product_name: str
    brand: Optional[str] = None
    score: float = 0
    nutrition_data: Optional[NutritionData] = None


class LookupResult(BaseModel):
    status: Literal["success", "ambiguous", "not_found", "error"]
    product_name: Optional[str] = None
    nutrition_data: Optional[NutritionData] = None
    confidence_score: float = 0
    options: list[ProductOption] = Field(default_factory=list)
    source: Optional[str] = None
    message: str = ""
