import re

# Ingredient names that almost never carry zero calories
CALORIC_PATTERNS = (
    r"\b(oil|butter|ghee|lard|margarine)\b",
    r"\b(sugar|honey|syrup|jam|chocolate)\b",
    r"\b(flour|bread|pasta|rice|oats?|noodles?|tortillas?)\b",
    r"\b(cheese|cream|milk|yogh?urt)\b",
    r"\b(chicken|beef|pork|lamb|turkey|salmon|tuna|bacon|sausage|eggs?)\b",
    r"\b(nuts?|almonds?|peanuts?|walnuts?|cashews?|seeds?|avocados?)\b",
    r"\b(bananas?|potato(es)?|beans?|lentils?|chickpeas?)\b",
)


def zero_calorie_warnings(items) -> list[str]:
    """Warning strings for ingredients priced at 0 kcal that look caloric."""
    warnings = []
    for item in items:
        name = (item.name or "").lower()
        if (item.calories or 0) > 0:
            continue
        if any(re.search(p, name) for p in CALORIC_PATTERNS):
            warnings.append(f"'{item.name}' came back with 0 calories, which looks wrong. Please double-check it.")
    return warnings
