import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import Levenshtein
import pandas as pd

from nutripal.core import config

logger = logging.getLogger(__name__)

STOPWORDS = frozenset([
    "a", "an", "the", "and", "or", "but", "if", "then", "else", "when",
    "at", "from", "by", "for", "with", "about", "against", "between",
    "into", "through", "during", "before", "after", "above", "below",
    "to", "of", "in", "on", "my", "our", "your", "their", "it", "its",
    "is", "are", "was", "were", "be", "been", "being", "have", "has",
    "had", "do", "does", "did", "can", "could", "will", "would", "should",
    "i", "you", "he", "she", "we", "they",
])

FOOD_SYNONYMS = {
    # time of day
    "breakfast": ["morning", "dawn", "sunrise", "am"],
    "lunch": ["midday", "noon", "afternoon"],
    "dinner": ["evening", "night", "supper", "pm"],
    # dish types
    "smoothie": ["shake", "blend", "blended", "drink", "beverage"],
    "salad": ["slaw", "greens", "bowl"],
    "soup": ["broth", "stew", "chowder"],
    "sandwich": ["sub", "hero", "hoagie", "wrap"],
    # ingredients
    "chicken": ["poultry", "fowl", "hen"],
    "beef": ["steak", "meat", "cow"],
    "fish": ["seafood", "salmon", "tuna"],
    # concepts
    "drink": ["smoothie", "shake", "beverage", "juice"],
    "pasta": ["noodle", "spaghetti", "fettuccine", "macaroni"],
    "rice": ["grain", "fried rice", "risotto"],
    "avocado": ["avo", "guacamole"],
    "vegetable": ["veggie", "veg", "plant-based"],
    "workout": ["exercise", "gym", "fitness", "post-workout", "training"],
}


MIN_PATTERN_CHARS = 2


def tokenize(text: str) -> list[str]:
    if not text:
        return []
    cleaned = re.sub(r"[^\w\s]", " ", text.lower())
    return [t for t in cleaned.split() if t and t not in STOPWORDS]


def jaccard_similarity(a: str, b: str) -> float:
    set_a = set(a.lower().split(" "))
    set_b = set(b.lower().split(" "))
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def token_containment(a: str, b: str) -> float:
    """Share of the shorter token list found (as substring, either way) in the longer one."""
    tokens_a, tokens_b = tokenize(a), tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0
    shorter, longer = (tokens_a, tokens_b) if len(tokens_a) <= len(tokens_b) else (tokens_b, tokens_a)
    matched = [t for t in shorter if any(t == o or t in o or o in t for o in longer)]
    return len(matched) / len(shorter)


def similarity(a: str, b: str) -> int:
    """Blended 0-100 similarity: 30% edit distance, 30% Jaccard, 40% token containment."""
    if not a or not b:
        return 0
    a, b = a.lower().strip(), b.lower().strip()
    if a == b:
        return 100

    max_len = max(len(a), len(b))
    lev = 100 * (1 - Levenshtein.distance(a, b) / max_len) if max_len else 0
    jac = jaccard_similarity(a, b) * 100
    contain = token_containment(a, b) * 100

    return round(lev * 0.3 + jac * 0.3 + contain * 0.4)


def expand_with_synonyms(term: str) -> list[str]:
    tokens = tokenize(term)
    expanded = list(tokens)

    for token in tokens:
        for word, synonyms in FOOD_SYNONYMS.items():
            if token == word:
                expanded.extend(synonyms)
            elif token in synonyms:
                expanded.append(word)

    lower = term.lower()
    if ("breakfast" in lower or "morning" in lower) and ("drink" in lower or "beverage" in lower):
        expanded.extend(["smoothie", "shake"])
    if any(w in lower for w in ("workout", "gym", "exercise")) and ("drink" in lower or "shake" in lower):
        expanded.extend(["protein", "post workout shake"])
    if "pasta" in lower or "noodle" in lower:
        expanded.extend(["spaghetti", "fettuccine", "macaroni"])

    # keep first-seen order
    return list(dict.fromkeys(expanded))


@dataclass
class MatchCandidate:
    id: Any
    name: str
    score: float
    extra: dict = field(default_factory=dict)


@dataclass
class MatchResolution:
    status: str  # "none" | "single" | "ambiguous"
    best: Optional[MatchCandidate] = None
    candidates: list[MatchCandidate] = field(default_factory=list)


def resolve_matches(candidates: list[MatchCandidate], margin: float = None,
                    ratio: float = None) -> MatchResolution:
    """
    Decide whether a ranked candidate list names one thing or needs a question.

    Shared by saved-recipe search and external product lookup; only the
    corpus differs.
    """
    margin = config.AMBIGUITY_MARGIN if margin is None else margin
    ratio = config.AMBIGUITY_RATIO if ratio is None else ratio

    ranked = sorted(candidates, key=lambda c: c.score, reverse=True)
    if not ranked:
        return MatchResolution(status="none")
    if len(ranked) == 1:
        return MatchResolution(status="single", best=ranked[0], candidates=ranked)

    top, runner_up = ranked[0].score, ranked[1].score
    too_close = (top - runner_up) <= margin or (top > 0 and runner_up / top > ratio)
    if too_close:
        return MatchResolution(status="ambiguous", candidates=ranked)
    return MatchResolution(status="single", best=ranked[0], candidates=ranked)


class RecipeMatcher:
    """Fuzzy search over one user's saved recipes."""

    def __init__(self, db, threshold: int = None):
        self.db = db
        self.threshold = config.RECIPE_MATCH_THRESHOLD if threshold is None else threshold

    def search(self, query: str, owner_id: str, limit: int = 5) -> list[MatchCandidate]:
        if not query or not owner_id:
            return []

        # "am"/"pm"-style tokens would match inside unrelated names ("Ham ...")
        patterns = [query] + [t for t in expand_with_synonyms(query) if len(t) > MIN_PATTERN_CHARS]
        rows = self.db.find_recipe_candidates(owner_id, patterns, limit=config.RECIPE_CANDIDATE_LIMIT)
        if not rows:
            logger.info(f"🔎 No recipe candidates for '{query}'")
            return []

        df = pd.DataFrame(rows)
        df["score"] = df["recipe_name"].apply(lambda name: similarity(query, name))
        df = (
            df[df["score"] >= self.threshold]
            .sort_values("score", ascending=False, kind="stable")
            .head(limit)
        )
        logger.info(f"🔎 '{query}': {len(rows)} candidates, {len(df)} above {self.threshold}")

        return [
            MatchCandidate(id=row["id"], name=row["recipe_name"], score=float(row["score"]))
            for row in df.to_dict(orient="records")
        ]


ORDINALS = {
    "first": 0, "1st": 0, "second": 1, "2nd": 1, "third": 2, "3rd": 2,
    "fourth": 3, "4th": 3, "fifth": 4, "5th": 4, "last": -1,
}


def select_option(reply: str, labels: list[str]) -> Optional[int]:
    """Index of the option a reply picks: "2", "the second one", or a close-enough name."""
    if not labels:
        return None
    lower = (reply or "").lower().strip()

    number = re.search(r"\b(\d+)\b", lower)
    if number and 1 <= int(number.group(1)) <= len(labels):
        return int(number.group(1)) - 1
    for word, index in ORDINALS.items():
        if re.search(rf"\b{word}\b", lower) and index < len(labels):
            return index % len(labels)

    candidates = [MatchCandidate(id=i, name=label, score=similarity(lower, label)) for i, label in enumerate(labels)]
    resolution = resolve_matches([c for c in candidates if c.score >= config.RECIPE_MATCH_THRESHOLD])
    return resolution.best.id if resolution.status == "single" else None
