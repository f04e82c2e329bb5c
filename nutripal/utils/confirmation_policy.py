from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ActionType(str, Enum):
    LOG_FOOD = "log_food"
    DELETE_FOOD = "delete_food"
    SAVE_RECIPE = "save_recipe"
    LOG_RECIPE = "log_recipe"
    UPDATE_GOAL = "update_goal"
    ANALYZE_RECIPE = "analyze_recipe"


# Confidence (0-100) at or above which a complete action may skip the question
CONFIRMATION_THRESHOLDS = {
    ActionType.LOG_FOOD: 90,
    ActionType.DELETE_FOOD: 100,
    ActionType.SAVE_RECIPE: 80,
    ActionType.LOG_RECIPE: 90,
    ActionType.UPDATE_GOAL: 95,
    ActionType.ANALYZE_RECIPE: 70,
}

DEFAULT_THRESHOLD = 90

_TEMPLATES = {
    ActionType.LOG_FOOD: "Would you like to log {item}?",
    ActionType.DELETE_FOOD: "Are you sure you want to delete {item} from your food log?",
    ActionType.SAVE_RECIPE: 'Would you like to save this as "{item}" for future use?',
    ActionType.LOG_RECIPE: "Would you like to log {item} now?",
    ActionType.UPDATE_GOAL: "Would you like to set {item} as your goal?",
    ActionType.ANALYZE_RECIPE: "Would you like me to analyze the nutritional content of {item}?",
}


@dataclass
class ConfirmationDecision:
    require_confirmation: bool
    message: Optional[str]
    threshold: int


def confirmation_message(action_type: ActionType, item_name: str = None) -> str:
    template = _TEMPLATES.get(action_type, "Would you like to proceed with this action?")
    return template.format(item=item_name or "this item")


def decide(action_type, confidence: float = 0, is_high_impact: bool = False,
           has_complete_data: bool = False, item_name: str = None,
           thresholds: dict = None) -> ConfirmationDecision:
    """
    Must this action be confirmed, or may it go ahead?

    Deletions and high-impact actions always ask. Anything else proceeds
    only with complete data and confidence at or above its threshold.
    """
    action_type = ActionType(action_type)
    table = thresholds if thresholds is not None else CONFIRMATION_THRESHOLDS
    threshold = table.get(action_type, DEFAULT_THRESHOLD)

    if is_high_impact or action_type == ActionType.DELETE_FOOD:
        return ConfirmationDecision(True, confirmation_message(action_type, item_name), 100)

    if has_complete_data and confidence >= threshold:
        return ConfirmationDecision(False, None, threshold)

    return ConfirmationDecision(True, confirmation_message(action_type, item_name), threshold)
