"""
Row access for every collection the dialogue core touches.

All calls go through the PostgREST builder and are wrapped with
``with_retry``, so callers only ever see a ``CollaboratorError``.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from nutripal.core.retry import with_retry
from nutripal.services.supabase_client import get_supabase

logger = logging.getLogger(__name__)

RECIPE_COLUMNS = (
    "id, user_id, recipe_name, servings, fingerprint, instructions, nutrition_data, "
    "calories, protein_g, fat_total_g, carbs_g, fiber_g, sugar_g, sodium_mg"
)


def food_log_row(nutrition, **extra) -> dict:
    """A ``food_log`` row (without ``user_id``) from a NutritionData."""
    row = {
        "food_name": nutrition.food_name,
        "portion": nutrition.portion or nutrition.serving_size,
        "source": nutrition.source,
        "log_time": datetime.now(timezone.utc).isoformat(),
        **nutrition.nutrients(),
    }
    row.update(extra)
    return row


def _escape_pattern(term: str) -> str:
    """Literal text for an ilike() filter."""
    return term.replace("%", r"\%").replace("_", r"\_").strip()


def _escape_like(term: str) -> str:
    # commas and parentheses break the or_() filter grammar
    return term.replace(",", " ").replace("(", " ").replace(")", " ").replace("%", "").strip()


class DbService:
    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase()
        return self._client

    # --- food_log ---

    @with_retry("db")
    def insert_food_log(self, user_id: str, entries: list[dict]) -> list[dict]:
        rows = [{"user_id": user_id, **entry} for entry in entries]
        response = self.client.table("food_log").insert(rows).execute()
        logger.info(f"✅ Logged {len(rows)} food item(s) for {user_id}")
        return response.data

    @with_retry("db")
    def get_food_log(self, user_id: str, start: datetime, end: datetime) -> list[dict]:
        response = (
            self.client.table("food_log")
            .select("*")
            .eq("user_id", user_id)
            .gte("log_time", start.isoformat())
            .lte("log_time", end.isoformat())
            .order("log_time", desc=True)
            .execute()
        )
        return response.data or []

    def get_recent_food_log(self, user_id: str, days: int = 7) -> list[dict]:
        end = datetime.now(timezone.utc)
        return self.get_food_log(user_id, end - timedelta(days=days), end)

    # --- goals / profile ---

    @with_retry("db")
    def get_user_goals(self, user_id: str) -> list[dict]:
        response = self.client.table("user_goals").select("*").eq("user_id", user_id).execute()
        return response.data or []

    @with_retry("db")
    def upsert_user_goal(self, user_id: str, nutrient: str, target_value: float, unit: str) -> list[dict]:
        row = {"user_id": user_id, "nutrient": nutrient, "target_value": target_value, "unit": unit}
        response = self.client.table("user_goals").upsert(row, on_conflict="user_id,nutrient").execute()
        logger.info(f"🎯 Goal {nutrient}={target_value}{unit} saved for {user_id}")
        return response.data

    @with_retry("db")
    def get_user_profile(self, user_id: str) -> Optional[dict]:
        response = self.client.table("user_profiles").select("*").eq("id", user_id).limit(1).execute()
        return response.data[0] if response.data else None

    # --- recipes ---

    @with_retry("db")
    def find_recipe_by_fingerprint(self, user_id: str, fingerprint: str) -> Optional[dict]:
        if not fingerprint:
            return None
        response = (
            self.client.table("user_recipes").select(RECIPE_COLUMNS)
            .eq("user_id", user_id).eq("fingerprint", fingerprint).limit(1).execute()
        )
        return response.data[0] if response.data else None

    @with_retry("db")
    def find_recipe_by_name(self, user_id: str, name: str, mode: str = "exact") -> Optional[dict]:
        """Case-insensitive name lookup; ``mode`` is "exact", "substring" or "words"."""
        query = self.client.table("user_recipes").select(RECIPE_COLUMNS).eq("user_id", user_id)
        clean = _escape_like(name)
        if mode == "exact":
            query = query.ilike("recipe_name", _escape_pattern(name))
        elif mode == "substring":
            query = query.ilike("recipe_name", f"%{clean}%")
        else:
            words = [w for w in clean.split() if len(w) > 2]
            if len(words) < 2:
                return None
            for word in words:
                query = query.ilike("recipe_name", f"%{word}%")
        response = query.limit(1).execute()
        return response.data[0] if response.data else None

    @with_retry("db")
    def find_recipe_candidates(self, user_id: str, terms: list[str], limit: int = 500) -> list[dict]:
        patterns = [_escape_like(t) for t in terms if _escape_like(t)]
        if not patterns:
            return []
        or_filter = ",".join(f"recipe_name.ilike.%{p}%" for p in patterns)
        response = (
            self.client.table("user_recipes").select("id, recipe_name")
            .eq("user_id", user_id).or_(or_filter).limit(limit).execute()
        )
        return response.data or []

    @with_retry("db")
    def recipe_name_exists(self, user_id: str, name: str) -> bool:
        response = (
            self.client.table("user_recipes").select("id")
            .eq("user_id", user_id).ilike("recipe_name", _escape_pattern(name)).limit(1).execute()
        )
        return bool(response.data)

    @with_retry("db")
    def get_recipe(self, user_id: str, recipe_id: str) -> Optional[dict]:
        response = (
            self.client.table("user_recipes").select(RECIPE_COLUMNS)
            .eq("user_id", user_id).eq("id", recipe_id).limit(1).execute()
        )
        return response.data[0] if response.data else None

    @with_retry("db")
    def get_recipe_ingredients(self, recipe_id: str) -> list[dict]:
        response = self.client.table("recipe_ingredients").select("*").eq("recipe_id", recipe_id).execute()
        return response.data or []

    @with_retry("db")
    def insert_recipe(self, row: dict) -> dict:
        response = self.client.table("user_recipes").insert(row).execute()
        return response.data[0]

    @with_retry("db")
    def update_recipe(self, user_id: str, recipe_id: str, row: dict) -> dict:
        response = (
            self.client.table("user_recipes").update(row)
            .eq("user_id", user_id).eq("id", recipe_id).execute()
        )
        return response.data[0] if response.data else {"id": recipe_id, **row}

    @with_retry("db")
    def replace_recipe_ingredients(self, recipe_id: str, rows: list[dict]) -> None:
        self.client.table("recipe_ingredients").delete().eq("recipe_id", recipe_id).execute()
        if rows:
            self.client.table("recipe_ingredients").insert(
                [{"recipe_id": recipe_id, **r} for r in rows]
            ).execute()

    # --- logging ---

    @with_retry("db", max_attempts=1)
    def insert_execution_log(self, row: dict) -> None:
        self.client.table("agent_execution_logs").insert(row).execute()

    @with_retry("db", max_attempts=1)
    def insert_chat_messages(self, rows: list[dict]) -> None:
        self.client.table("chat_messages").insert(rows).execute()
