"""
Pytest Configuration and Fixtures
=================================

Everything here is in-memory:
- FakeSupabase stands in for the PostgREST query builder
- FakeLanguageService returns scripted intents and estimates
- FakeLookup returns canned product lookups

No test talks to Supabase, Gemini or FoodData Central.
"""
import re
import uuid
from types import SimpleNamespace

import pytest

from nutripal.core import config
from nutripal.models.recipe_flow import IngredientNutrition
from nutripal.models.schemas import IntentResult, LookupResult, NutritionData
from nutripal.services.db_service import DbService
from nutripal.services.orchestrator import Orchestrator
from nutripal.services.pending_action_store import PendingActionStore
from nutripal.services.session_service import SessionService


# =============================================================================
# Fake Supabase
# =============================================================================

def _like_to_regex(pattern: str) -> re.Pattern:
    out, i = [], 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        out.append(".*" if ch == "%" else "." if ch == "_" else re.escape(ch))
        i += 1
    return re.compile("^" + "".join(out) + "$", re.IGNORECASE | re.DOTALL)


class FakeQuery:
    def __init__(self, db, name):
        self.db = db
        self.name = name
        self.rows = db.tables.setdefault(name, [])
        self.op = "select"
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self._order = None
        self._limit = None

    # --- operations ---

    def select(self, *columns):
        self.op = "select"
        return self

    def insert(self, rows):
        self.op, self.payload = "insert", rows
        return self

    def update(self, row):
        self.op, self.payload = "update", row
        return self

    def upsert(self, row, on_conflict="id"):
        self.op, self.payload, self.on_conflict = "upsert", row, on_conflict
        return self

    def delete(self):
        self.op = "delete"
        return self

    # --- filters ---

    def eq(self, column, value):
        self.filters.append(lambda r: str(r.get(column)) == str(value))
        return self

    def ilike(self, column, pattern):
        regex = _like_to_regex(pattern)
        self.filters.append(lambda r: bool(regex.match(str(r.get(column) or ""))))
        return self

    def or_(self, expression):
        clauses = []
        for part in expression.split(","):
            column, op, pattern = part.split(".", 2)
            assert op == "ilike"
            clauses.append((column, _like_to_regex(pattern)))
        self.filters.append(lambda r: any(rx.match(str(r.get(c) or "")) for c, rx in clauses))
        return self

    def gte(self, column, value):
        self.filters.append(lambda r: str(r.get(column)) >= str(value))
        return self

    def lte(self, column, value):
        self.filters.append(lambda r: str(r.get(column)) <= str(value))
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    # --- execution ---

    def _matching(self):
        return [r for r in self.rows if all(f(r) for f in self.filters)]

    def execute(self):
        self.db.calls.append((self.name, self.op))
        if self.db.fail_tables.get(self.name):
            raise ConnectionError(f"{self.name} unavailable")

        if self.op == "insert":
            rows = self.payload if isinstance(self.payload, list) else [self.payload]
            created = [{"id": uuid.uuid4().hex, **row} for row in rows]
            self.rows.extend(created)
            return SimpleNamespace(data=[dict(r) for r in created])

        if self.op == "upsert":
            keys = self.on_conflict.split(",")
            row = self.payload
            for existing in self.rows:
                if all(str(existing.get(k)) == str(row.get(k)) for k in keys):
                    existing.update(row)
                    return SimpleNamespace(data=[dict(existing)])
            created = {"id": uuid.uuid4().hex, **row}
            self.rows.append(created)
            return SimpleNamespace(data=[dict(created)])

        matching = self._matching()
        if self.op == "update":
            for row in matching:
                row.update(self.payload)
            return SimpleNamespace(data=[dict(r) for r in matching])
        if self.op == "delete":
            for row in matching:
                self.rows.remove(row)
            return SimpleNamespace(data=[dict(r) for r in matching])

        if self._order:
            column, desc = self._order
            matching = sorted(matching, key=lambda r: str(r.get(column)), reverse=desc)
        if self._limit is not None:
            matching = matching[:self._limit]
        return SimpleNamespace(data=[dict(r) for r in matching])


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.calls = []
        self.fail_tables = {}

    def table(self, name):
        return FakeQuery(self, name)

    def rows(self, name):
        return self.tables.get(name, [])


# =============================================================================
# Fake collaborators
# =============================================================================

class FakeLanguageService:
    """Scripted stand-in for LanguageService. Queue intents and chat responses before the call."""

    def __init__(self):
        self.intents = []
        self.chat_responses = []
        self.recipe = None
        self.ingredient_calories = {}
        self.estimate_calories = 100
        self.multiplier = 1.0
        self.reply = "Here you go."
        self.calls = []

    def classify_intent(self, message, history=None):
        self.calls.append(("classify_intent", message))
        return self.intents.pop(0) if self.intents else IntentResult(intent="off_topic")

    def chat(self, contents, tools, system_instruction):
        self.calls.append(("chat", len(contents)))
        return self.chat_responses.pop(0)

    def parse_recipe(self, text):
        # None makes the recipe flow use its line parser
        return self.recipe.model_copy(deep=True) if self.recipe else None

    def estimate_nutrition(self, description, portion=None):
        self.calls.append(("estimate_nutrition", description))
        return NutritionData(food_name=description, portion=portion, calories=self.estimate_calories,
                             protein_g=5, fat_total_g=2, carbs_g=15, source="estimate")

    def estimate_ingredients(self, ingredients):
        return [
            IngredientNutrition(name=i.name, quantity=i.quantity, unit=i.unit,
                                calories=self.ingredient_calories.get(i.name, 100),
                                protein_g=4, fat_total_g=3, carbs_g=10)
            for i in ingredients
        ]

    def estimate_multiplier(self, user_portion, reference):
        self.calls.append(("estimate_multiplier", user_portion))
        return self.multiplier

    def generate_response(self, user_message, intent, outcome, history=None):
        self.calls.append(("generate_response", intent))
        return self.reply


class FakeLookup:
    def __init__(self):
        self.results = {}
        self.calls = []

    def lookup(self, food_name):
        self.calls.append(food_name)
        return self.results.get(food_name.lower(), LookupResult(status="not_found"))


class ImmediateExecutor:
    """Runs submitted work inline so turn logs are visible to assertions."""

    def submit(self, fn, *args, **kwargs):
        fn(*args, **kwargs)


def banana() -> NutritionData:
    return NutritionData(food_name="Banana, raw", serving_size="1 medium", calories=105,
                         protein_g=1.3, fat_total_g=0.4, carbs_g=27, source="usda")


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch):
    monkeypatch.setattr(config, "RETRY_BASE_DELAY", 0)
    monkeypatch.setattr(config, "RETRY_MAX_ATTEMPTS", 2)


@pytest.fixture
def supabase():
    return FakeSupabase()


@pytest.fixture
def language():
    return FakeLanguageService()


@pytest.fixture
def lookup():
    return FakeLookup()


@pytest.fixture
def db(supabase):
    return DbService(client=supabase)


@pytest.fixture
def store(supabase):
    return PendingActionStore(client=supabase)


@pytest.fixture
def orchestrator(supabase, db, store, language, lookup):
    return Orchestrator(
        db=db,
        store=store,
        sessions=SessionService(client=supabase),
        language=language,
        lookup=lookup,
        log_executor=ImmediateExecutor(),
    )


@pytest.fixture
def saved_recipe(supabase):
    """One saved recipe with per-serving values, owned by user-1."""
    row = {
        "id": "recipe-1", "user_id": "user-1", "recipe_name": "Morning Smoothie", "servings": 2,
        "fingerprint": "banana,milk,oat", "calories": 250, "protein_g": 10, "fat_total_g": 5, "carbs_g": 40,
    }
    supabase.tables.setdefault("user_recipes", []).append(row)
    return row
