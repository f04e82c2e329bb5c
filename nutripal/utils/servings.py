"""
Batch size and serving-count heuristics for recipes, plus the parsers for
the user's answers to "how big is this batch?" and "how many servings?".
"""
import re
from dataclasses import dataclass, field
from typing import Optional

from nutripal.utils.fingerprint import singularize
from nutripal.utils.nutrition_scaler import GRAMS_PER_UNIT, NUMBER_WORDS, parse_amount

SINGLE_SERVING_MAX_GRAMS = 600
SINGLE_SERVING_MAX_ML = 500
TYPICAL_SERVING_GRAMS = 300

ML_PER_UNIT = {
    "ml": 1.0, "milliliter": 1.0, "millilitre": 1.0,
    "l": 1000.0, "liter": 1000.0, "litre": 1000.0,
    "cup": 236.6, "tbsp": 14.8, "tablespoon": 14.8, "tsp": 4.9, "teaspoon": 4.9,
    "fl oz": 29.6, "pint": 473.2, "quart": 946.4,
}

# g per ml for dry goods measured by volume; liquids default to 1.0
DENSITY = {
    "flour": 0.53, "sugar": 0.85, "brown sugar": 0.93, "oat": 0.34, "rice": 0.79,
    "salt": 1.2, "cocoa": 0.42, "butter": 0.96, "oil": 0.92, "honey": 1.42,
    "peanut butter": 1.08, "cheese": 0.45, "spinach": 0.13, "berry": 0.6,
}

# average grams for one unit of a countable ingredient
COUNTABLE_GRAMS = {
    "egg": 50, "banana": 118, "apple": 182, "onion": 110, "carrot": 61,
    "tomato": 123, "potato": 213, "avocado": 150, "lemon": 58, "lime": 44,
    "garlic": 5, "clove": 5, "chicken breast": 174, "tortilla": 45,
    "slice": 30, "bread": 30, "pepper": 119, "orange": 131,
}

COUNT_UNITS = {"", "whole", "large", "medium", "small", "piece", "item", "each"}

SINGLE_SERVING_KEYWORDS = (
    "my breakfast", "my lunch", "my dinner", "my snack", "for myself", "for me",
    "single serving", "one portion", "bowl", "plate", "personal", "quick meal",
)
BATCH_KEYWORDS = (
    "batch", "family", "meal prep", "large pot", "serves", "portions", "freeze",
    "leftovers", "big batch", "make ahead", "for the week", "party",
)


def _norm_unit(unit: str) -> str:
    unit = (unit or "").strip().lower().rstrip(".")
    if unit in GRAMS_PER_UNIT or unit in ML_PER_UNIT:
        return unit
    if unit.endswith("s") and unit[:-1] in (set(ML_PER_UNIT) | COUNT_UNITS):
        return unit[:-1]
    if unit in ("lbs",):
        return "lb"
    return unit


def _lookup(name: str, table: dict) -> Optional[float]:
    words = [singularize(w) for w in re.sub(r"[^a-z ]", " ", name.lower()).split()]
    phrase = " ".join(words)
    # multi-word keys first ("chicken breast" before "chicken")
    for key in sorted(table, key=len, reverse=True):
        if key in phrase.split() or (" " in key and key in phrase):
            return table[key]
    return None


@dataclass
class BatchSize:
    total_grams: float = 0
    total_ml: float = 0
    estimated_size: str = ""
    unconverted_ingredients: list[str] = field(default_factory=list)
    confidence: str = "low"


def _format_size(grams: float, ml: float) -> str:
    if grams > 0:
        return f"{grams / 1000:.1f}kg" if grams >= 1000 else f"{round(grams)}g"
    if ml > 0:
        return f"{ml / 1000:.1f}L" if ml >= 1000 else f"{round(ml)}ml"
    return "unknown"


def calculate_batch_size(ingredients) -> BatchSize:
    """
    Sum ingredient quantities into a total weight (and liquid volume).

    Volume measures of liquids count once in ``total_ml`` and once in
    ``total_grams`` at water density; dry goods measured by cup use
    ``DENSITY``.
    """
    grams = ml = 0.0
    unconverted = []
    for ing in ingredients:
        qty = float(ing.quantity or 0) or 1.0
        unit = _norm_unit(ing.unit)

        if unit in GRAMS_PER_UNIT:
            grams += qty * GRAMS_PER_UNIT[unit]
            continue
        if unit in ML_PER_UNIT:
            volume = qty * ML_PER_UNIT[unit]
            density = _lookup(ing.name, DENSITY)
            if density is None:
                ml += volume
                grams += volume
            else:
                grams += volume * density
            continue
        each = _lookup(ing.name, COUNTABLE_GRAMS) or (
            _lookup(unit, COUNTABLE_GRAMS) if unit not in COUNT_UNITS else None
        )
        if each is not None:
            grams += qty * each
            continue
        unconverted.append(ing.name)

    converted_share = 1 - len(unconverted) / len(ingredients) if ingredients else 0
    if converted_share == 1:
        confidence = "high"
    elif converted_share >= 0.5:
        confidence = "medium"
    else:
        confidence = "low"

    return BatchSize(
        total_grams=round(grams, 1),
        total_ml=round(ml, 1),
        estimated_size=_format_size(grams, ml),
        unconverted_ingredients=unconverted,
        confidence=confidence,
    )


def batch_confirmation_prompt(batch: BatchSize) -> str:
    if batch.confidence == "low" and batch.unconverted_ingredients:
        missing = ", ".join(batch.unconverted_ingredients)
        return (
            f"I estimate this batch at about {batch.estimated_size}, but I couldn't measure: "
            f"{missing}. Is this correct, or roughly how much does the whole recipe make?"
        )
    return f"This recipe makes about {batch.estimated_size} in total. Is this correct?"


@dataclass
class BatchSizeReply:
    confirmed: bool = False
    grams: Optional[float] = None
    ml: Optional[float] = None


_BATCH_CONFIRM = ("yes", "yeah", "yep", "correct", "that's right", "looks good", "ok", "okay", "right")
_SIZE = re.compile(r"(\d+(?:\.\d+)?)\s*(kg|kilograms?|g|grams?|lbs?|pounds?|oz|ml|milliliters?|l|liters?|litres?|cups?)\b")


def parse_batch_size_reply(reply: str) -> BatchSizeReply:
    lower = (reply or "").lower().strip()
    match = _SIZE.search(lower)
    if match:
        amount, unit = float(match.group(1)), _norm_unit(match.group(2))
        if unit in GRAMS_PER_UNIT:
            return BatchSizeReply(grams=round(amount * GRAMS_PER_UNIT[unit], 1))
        return BatchSizeReply(ml=round(amount * ML_PER_UNIT[unit], 1))
    if any(lower == p or lower.startswith(p) for p in _BATCH_CONFIRM):
        return BatchSizeReply(confirmed=True)
    return BatchSizeReply()


@dataclass
class ServingDetection:
    is_single_serving: bool
    suggested_servings: float
    confidence: str
    total_grams: float
    reasons: list[str] = field(default_factory=list)


def estimate_servings(grams: float, ml: float = 0) -> int:
    effective = grams if grams > 0 else ml
    if effective <= 0:
        return 4
    raw = effective / TYPICAL_SERVING_GRAMS
    if raw <= 1.5:
        return 1
    if raw <= 2.5:
        return 2
    if raw <= 3.5:
        return 3
    if raw <= 5:
        return 4
    if raw <= 7:
        return 6
    if raw <= 10:
        return 8
    return round(raw / 2) * 2


def detect_servings(ingredients, recipe_name: str = "", recipe_text: str = "",
                    batch: BatchSize = None) -> ServingDetection:
    """Score single-serving against batch evidence and suggest a serving count."""
    batch = batch or calculate_batch_size(ingredients)
    grams, ml = batch.total_grams, batch.total_ml
    text = f"{recipe_name or ''} {recipe_text or ''}".lower()
    has_single = any(kw in text for kw in SINGLE_SERVING_KEYWORDS)
    has_batch = any(kw in text for kw in BATCH_KEYWORDS)

    single = multi = 0
    reasons = []

    # mostly-liquid recipes (soups, drinks) are judged by volume
    if ml > 0 and ml >= grams:
        if ml <= SINGLE_SERVING_MAX_ML:
            single += 2
            reasons.append(f"Volume ({round(ml)}ml) suggests single serving")
        elif ml <= 1500:
            multi += 1
            reasons.append(f"Volume ({round(ml)}ml) suggests 2-4 servings")
        else:
            multi += 3
            reasons.append(f"Volume ({round(ml)}ml) suggests large batch")
    elif grams > 0:
        if grams <= SINGLE_SERVING_MAX_GRAMS:
            single += 3
            reasons.append(f"Total weight ({round(grams)}g) is within single-serving range")
        elif grams <= 1000:
            multi += 1
            reasons.append(f"Total weight ({round(grams)}g) suggests 2-3 servings")
        elif grams <= 2000:
            multi += 2
            reasons.append(f"Total weight ({round(grams)}g) suggests 4-6 servings")
        else:
            multi += 3
            reasons.append(f"Total weight ({round(grams)}g) suggests large batch")

    if has_single and not has_batch:
        single += 2
        reasons.append("Recipe description suggests single serving")
    if has_batch and not has_single:
        multi += 2
        reasons.append("Recipe description suggests batch/multiple servings")

    if len(ingredients) >= 8:
        multi += 1
        reasons.append(f"Recipe has {len(ingredients)} ingredients")
    elif len(ingredients) <= 4:
        single += 1
        reasons.append(f"Simple recipe with {len(ingredients)} ingredients")

    is_single = single > multi
    suggested = 1 if is_single else estimate_servings(grams, ml)

    diff = abs(single - multi)
    if diff >= 3 and batch.confidence != "low":
        confidence = "high"
    elif diff >= 2 or batch.confidence == "medium":
        confidence = "medium"
    else:
        confidence = "low"

    return ServingDetection(is_single, suggested, confidence, grams, reasons)


def servings_prompt(detection: ServingDetection) -> str:
    total = round(detection.total_grams)
    per = round(total / detection.suggested_servings) if detection.suggested_servings else total
    if detection.is_single_serving and detection.confidence == "high":
        return f"This looks like a single-serving recipe ({total}g total). Is this correct?"
    if detection.is_single_serving:
        return "This looks like it might be a single-serving recipe. Is this one serving, or does it make more?"
    if detection.confidence == "high":
        return (f"I estimate this recipe makes about **{detection.suggested_servings} servings** "
                f"(~{per}g per serving, {total}g total). Is this correct?")
    return (f"How many servings does this recipe make? I'd estimate around "
            f"{detection.suggested_servings} (~{per}g each), but please let me know.")


@dataclass
class ServingsReply:
    confirmed: bool = False
    servings: Optional[float] = None


_SERVINGS_CONFIRM = ("yes", "yeah", "yep", "correct", "that's right", "looks good", "ok", "okay", "sure")


def parse_servings_reply(reply: str) -> ServingsReply:
    """
    A confirmation of the suggested count, an explicit count, or neither.

    Integers, decimals, number words and "half"/"a quarter" are understood;
    anything else is left for a re-prompt.
    """
    lower = (reply or "").lower().strip().rstrip(".!")
    match = re.search(r"\d+(?:\.\d+)?(?:\s*/\s*\d+)?", lower)
    if match:
        amount, _ = parse_amount(match.group(0).replace(" ", ""))
        if amount:
            return ServingsReply(servings=amount)

    for word in sorted(NUMBER_WORDS, key=len, reverse=True):
        if word in ("a", "an", "a couple"):
            continue
        if re.search(rf"\b{re.escape(word)}\b", lower):
            return ServingsReply(servings=float(NUMBER_WORDS[word]))

    if any(lower == p or lower.startswith(p + " ") or lower.startswith(p + ",") for p in _SERVINGS_CONFIRM):
        return ServingsReply(confirmed=True)
    return ServingsReply()
