from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from nutripal.core.errors import InvalidTransitionError
from nutripal.models.schemas import ParsedRecipe, NutritionData


class RecipeStep(str, Enum):
    PENDING_DUPLICATE_CONFIRM = "pending_duplicate_confirm"
    PENDING_BATCH_CONFIRM = "pending_batch_confirm"
    PENDING_SERVINGS_CONFIRM = "pending_servings_confirm"
    READY_TO_SAVE = "ready_to_save"
    # terminal
    SAVED = "saved"
    LOGGED_EXISTING = "logged_existing"


class RecipeEvent(str, Enum):
    DUPLICATE_FOUND = "duplicate_found"
    NEEDS_BATCH = "needs_batch"
    NEEDS_SERVINGS = "needs_servings"
    SERVINGS_KNOWN = "servings_known"
    CHOSE_LOG = "chose_log"
    SERVINGS_CONFIRMED = "servings_confirmed"
    SAVE_CONFIRMED = "save_confirmed"
    UNPARSEABLE = "unparseable"


S, E = RecipeStep, RecipeEvent

# step=None is the freshly parsed recipe, before any question has been asked.
TRANSITIONS: dict[tuple[Optional[RecipeStep], RecipeEvent], RecipeStep] = {
    (None, E.DUPLICATE_FOUND): S.PENDING_DUPLICATE_CONFIRM,
    (None, E.NEEDS_BATCH): S.PENDING_BATCH_CONFIRM,
    (None, E.NEEDS_SERVINGS): S.PENDING_SERVINGS_CONFIRM,
    (None, E.SERVINGS_KNOWN): S.READY_TO_SAVE,

    (S.PENDING_DUPLICATE_CONFIRM, E.CHOSE_LOG): S.LOGGED_EXISTING,
    (S.PENDING_DUPLICATE_CONFIRM, E.UNPARSEABLE): S.PENDING_DUPLICATE_CONFIRM,
    # update/new re-enter sizing with the duplicate question answered
    (S.PENDING_DUPLICATE_CONFIRM, E.NEEDS_BATCH): S.PENDING_BATCH_CONFIRM,
    (S.PENDING_DUPLICATE_CONFIRM, E.NEEDS_SERVINGS): S.PENDING_SERVINGS_CONFIRM,
    (S.PENDING_DUPLICATE_CONFIRM, E.SERVINGS_KNOWN): S.READY_TO_SAVE,

    (S.PENDING_BATCH_CONFIRM, E.UNPARSEABLE): S.PENDING_BATCH_CONFIRM,
    (S.PENDING_BATCH_CONFIRM, E.NEEDS_SERVINGS): S.PENDING_SERVINGS_CONFIRM,
    (S.PENDING_BATCH_CONFIRM, E.SERVINGS_KNOWN): S.READY_TO_SAVE,

    (S.PENDING_SERVINGS_CONFIRM, E.UNPARSEABLE): S.PENDING_SERVINGS_CONFIRM,
    (S.PENDING_SERVINGS_CONFIRM, E.SERVINGS_CONFIRMED): S.READY_TO_SAVE,

    (S.READY_TO_SAVE, E.UNPARSEABLE): S.READY_TO_SAVE,
    (S.READY_TO_SAVE, E.SAVE_CONFIRMED): S.SAVED,
}


class IngredientNutrition(BaseModel):
    name: str
    quantity: float = 1.0
    unit: str = ""
    calories: float = 0
    protein_g: float = 0
    fat_total_g: float = 0
    carbs_g: float = 0


class RecipeFlowState(BaseModel):
    """Working state of one recipe authoring flow.

    Lives inside a ``recipe_save`` pending action between turns, so every
    field must survive a JSON round trip.
    """
    step: Optional[RecipeStep] = None
    parsed: ParsedRecipe
    source_text: str = ""
    servings_explicit: bool = False

    batch_size_grams: Optional[float] = None
    batch_size_ml: Optional[float] = None
    batch_confidence: Optional[str] = None
    confirmed_batch_size: Optional[float] = None

    suggested_servings: Optional[float] = None
    servings_confidence: Optional[str] = None
    confirmed_servings: Optional[float] = None

    batch_nutrition: Optional[NutritionData] = None
    ingredients_with_nutrition: list[IngredientNutrition] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    existing_recipe_id: Optional[str] = None
    existing_recipe_name: Optional[str] = None
    duplicate_choice: Optional[str] = None
    # set once the recipe row exists, so a retried save updates it instead of inserting again
    saved_recipe_id: Optional[str] = None

    log_after_save: bool = False
    log_servings: float = 1.0

    def advance(self, event: RecipeEvent) -> RecipeStep:
        next_step = TRANSITIONS.get((self.step, event))
        if next_step is None:
            raise InvalidTransitionError(self.step, event)
        self.step = next_step
        return next_step

    def accepts(self, event: RecipeEvent) -> bool:
        return (self.step, event) in TRANSITIONS

    @property
    def servings(self) -> float:
        return self.confirmed_servings or self.parsed.servings or self.suggested_servings or 1

    @property
    def is_terminal(self) -> bool:
        return self.step in (S.SAVED, S.LOGGED_EXISTING)
