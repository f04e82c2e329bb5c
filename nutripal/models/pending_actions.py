import json
import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from nutripal.core.errors import PendingActionError
from nutripal.models.recipe_flow import RecipeFlowState
from nutripal.models.schemas import NutritionData, ProductOption


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Base(BaseModel):
    id: str = Field(default_factory=_new_id)
    created_at: datetime = Field(default_factory=_now)


# --- Payloads (one shape per variant) ---

class FoodLogPayload(BaseModel):
    items: list[NutritionData]


class RecipeSavePayload(BaseModel):
    flow: RecipeFlowState


class GoalUpdatePayload(BaseModel):
    nutrient: str
    target_value: float
    unit: str


class SavedRecipeLogPayload(BaseModel):
    recipe_id: str
    recipe_name: str
    requested_servings: float = 1.0


class ServingSizePayload(BaseModel):
    food_name: str
    reference_nutrition: NutritionData


class RecipeOption(BaseModel):
    recipe_id: str
    recipe_name: str
    score: float = 0


class QueuedFood(BaseModel):
    food_name: str
    portion: Optional[str] = None


class ClarificationPayload(BaseModel):
    kind: Literal["product", "recipe"]
    query: str
    portion: Optional[str] = None
    requested_servings: float = 1.0
    product_options: list[ProductOption] = Field(default_factory=list)
    recipe_options: list[RecipeOption] = Field(default_factory=list)
    # other foods of the same message: already resolved, and still to look up
    resolved_items: list[NutritionData] = Field(default_factory=list)
    remaining: list[QueuedFood] = Field(default_factory=list)

    @property
    def labels(self) -> list[str]:
        if self.kind == "product":
            return [o.product_name for o in self.product_options]
        return [o.recipe_name for o in self.recipe_options]


# --- Variants ---

class FoodLogAction(_Base):
    type: Literal["food_log"] = "food_log"
    data: FoodLogPayload


class RecipeSaveAction(_Base):
    type: Literal["recipe_save"] = "recipe_save"
    data: RecipeSavePayload


class GoalUpdateAction(_Base):
    type: Literal["goal_update"] = "goal_update"
    data: GoalUpdatePayload


class SavedRecipeLogAction(_Base):
    type: Literal["confirm_log_saved_recipe"] = "confirm_log_saved_recipe"
    data: SavedRecipeLogPayload


class AwaitingServingSizeAction(_Base):
    type: Literal["awaiting_serving_size"] = "awaiting_serving_size"
    data: ServingSizePayload


class AwaitingClarificationAction(_Base):
    type: Literal["awaiting_clarification"] = "awaiting_clarification"
    data: ClarificationPayload


PendingAction = Annotated[
    Union[
        FoodLogAction,
        RecipeSaveAction,
        GoalUpdateAction,
        SavedRecipeLogAction,
        AwaitingServingSizeAction,
        AwaitingClarificationAction,
    ],
    Field(discriminator="type"),
]

_adapter = TypeAdapter(PendingAction)


def encode(action) -> str:
    """Serialize a pending action for the text column of ``pending_actions``."""
    # Re-validating on the way in catches "2"-style numbers set by callers.
    validated = _adapter.validate_python(action.model_dump())
    return validated.model_dump_json()


def decode(raw) -> PendingAction:
    """Parse a stored pending action. Numeric payload fields come back as numbers."""
    try:
        if isinstance(raw, (str, bytes)):
            return _adapter.validate_json(raw)
        return _adapter.validate_python(raw)
    except (ValidationError, json.JSONDecodeError) as e:
        raise PendingActionError(f"Unreadable pending action: {e}") from e
