import re

STOP_WORDS = frozenset([
    "of", "a", "an", "the", "large", "small", "medium", "fresh", "dried", "ground",
    "chopped", "sliced", "diced", "minced", "clove", "cloves", "and", "with", "optional",
    "raw", "cooked", "rolled", "whole", "piece", "pieces", "scoop", "scoops", "pinch",
    "handful", "to", "taste", "protein",
    # units
    "cup", "cups", "tbsp", "tsp", "tablespoon", "tablespoons", "teaspoon", "teaspoons",
    "g", "gram", "grams", "kg", "mg", "ml", "l", "liter", "liters", "litre", "litres",
    "oz", "ounce", "ounces", "lb", "lbs", "pound", "pounds", "can", "cans",
])


def singularize(word: str) -> str:
    if len(word) <= 3 or word.endswith("ss"):
        return word
    if word.endswith("ies"):
        return word[:-3] + "y"
    if word.endswith("oes") or re.search(r"(ch|sh|x)es$", word):
        return word[:-2]
    if word.endswith("s"):
        return word[:-1]
    return word


def _normalize_name(name: str) -> str:
    # digits and punctuation become separators so "50g" and "1/2" drop out
    cleaned = re.sub(r"[^a-z ]", " ", name.strip().lower())
    parts = [
        singularize(p) for p in cleaned.split()
        if p not in STOP_WORDS and len(p) > 1
    ]
    return " ".join(parts)


def fingerprint(ingredients) -> str:
    """
    Order-independent signature of an ingredient list.

    Accepts plain strings ("2 cups flour") or objects/dicts with a ``name``.
    Quantities, units and brands are dropped on purpose, so two lists of
    the same core ingredients collide.
    """
    names = []
    for ing in ingredients or []:
        if isinstance(ing, str):
            names.append(ing)
        elif isinstance(ing, dict):
            names.append(ing.get("name", ""))
        else:
            names.append(getattr(ing, "name", ""))
    normalized = [n for n in (_normalize_name(n) for n in names) if n]
    return ",".join(sorted(normalized))
