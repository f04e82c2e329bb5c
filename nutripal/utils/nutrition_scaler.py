import logging
import re
from typing import Optional

from nutripal.core.errors import CollaboratorError
from nutripal.models.schemas import NutritionData

logger = logging.getLogger(__name__)

GRAMS_PER_UNIT = {
    "g": 1.0, "gram": 1.0, "grams": 1.0,
    "kg": 1000.0, "kilogram": 1000.0, "kilograms": 1000.0,
    "oz": 28.3495, "ounce": 28.3495, "ounces": 28.3495,
    "lb": 453.592, "lbs": 453.592, "pound": 453.592, "pounds": 453.592,
}

NUMBER_WORDS = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
    "half": 0.5, "a half": 0.5, "quarter": 0.25, "a quarter": 0.25,
    "a couple": 2, "couple": 2, "a dozen": 12, "dozen": 12,
}

UNICODE_FRACTIONS = {"½": 0.5, "¼": 0.25, "¾": 0.75, "⅓": 1 / 3, "⅔": 2 / 3, "⅛": 0.125}

_MIXED = re.compile(r"^(\d+)\s+(\d+)/(\d+)")
_FRACTION = re.compile(r"^(\d+)/(\d+)")
_DECIMAL = re.compile(r"^(\d+(?:\.\d+)?)")


def parse_amount(text: str) -> tuple[Optional[float], str]:
    """Leading quantity of ``text`` and whatever follows it."""
    s = (text or "").strip().lower()
    if not s:
        return None, ""

    for symbol, value in UNICODE_FRACTIONS.items():
        if s.startswith(symbol):
            return value, s[len(symbol):].strip()
        m = re.match(rf"^(\d+)\s*{symbol}", s)
        if m:
            return int(m.group(1)) + value, s[m.end():].strip()

    m = _MIXED.match(s)
    if m and int(m.group(3)):
        return int(m.group(1)) + int(m.group(2)) / int(m.group(3)), s[m.end():].strip()
    m = _FRACTION.match(s)
    if m and int(m.group(2)):
        return int(m.group(1)) / int(m.group(2)), s[m.end():].strip()
    m = _DECIMAL.match(s)
    if m:
        return float(m.group(1)), s[m.end():].strip()

    # longest phrase first so "a half" beats "a"
    for word in sorted(NUMBER_WORDS, key=len, reverse=True):
        if s == word or s.startswith(word + " "):
            rest = s[len(word):].strip()
            rest = re.sub(r"^(of |a |an )", "", rest)
            return float(NUMBER_WORDS[word]), rest
    return None, s


def parse_portion(text: str) -> tuple[Optional[float], str]:
    """
    Split a portion like "1 1/2 cups", "150g" or "two slices" into (amount, unit).

    The unit is the first word after the number, lowercased and with a
    trailing plural "s" removed for everything except mass abbreviations.
    """
    amount, rest = parse_amount(text)
    unit = rest.split()[0] if rest else ""
    unit = unit.strip(".,()")
    if unit not in GRAMS_PER_UNIT and unit.endswith("s") and len(unit) > 2:
        unit = unit[:-1]
    return amount, unit


def to_grams(amount: Optional[float], unit: str) -> Optional[float]:
    factor = GRAMS_PER_UNIT.get(unit)
    if amount is None or factor is None:
        return None
    return amount * factor


class NutritionScaler:
    """Portion-to-reference multiplier: rules first, the language service last."""

    def __init__(self, language=None):
        self.language = language

    def multiplier(self, user_portion: str, reference_serving: str) -> float:
        if not user_portion or not reference_serving:
            return 1.0
        if user_portion.strip().lower() == reference_serving.strip().lower():
            return 1.0

        user_amount, user_unit = parse_portion(user_portion)
        ref_amount, ref_unit = parse_portion(reference_serving)

        if user_amount is not None and ref_amount and user_unit == ref_unit:
            return user_amount / ref_amount

        user_g, ref_g = to_grams(user_amount, user_unit), to_grams(ref_amount, ref_unit)
        if user_g is not None and ref_g:
            return user_g / ref_g

        return self._estimate(user_portion, reference_serving)

    def _estimate(self, user_portion: str, reference_serving: str) -> float:
        if self.language is None:
            return 1.0
        try:
            value = float(self.language.estimate_multiplier(user_portion, reference_serving))
        except (CollaboratorError, TypeError, ValueError) as e:
            logger.warning(f"⚠️ Multiplier estimate failed for '{user_portion}' vs '{reference_serving}': {e}")
            return 1.0
        return value if value > 0 else 1.0


def scale_nutrition(data: NutritionData, multiplier: float) -> NutritionData:
    """Multiply every nutrient. A multiplier of exactly 1 returns ``data`` untouched."""
    if multiplier == 1:
        return data
    updates = {}
    for key, value in data.nutrients().items():
        scaled = value * multiplier
        updates[key] = round(scaled) if key == "calories" else round(scaled, 1)
    return data.model_copy(update=updates)
