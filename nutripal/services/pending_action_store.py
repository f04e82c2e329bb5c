import logging
from datetime import datetime, timezone
from typing import Optional

from nutripal.core.errors import PendingActionError
from nutripal.core.retry import with_retry
from nutripal.models import pending_actions
from nutripal.services.supabase_client import get_supabase

logger = logging.getLogger(__name__)

TABLE = "pending_actions"


class PendingActionStore:
    """
    One pending action per user, kept in the ``pending_actions`` table.

    ``set`` is an upsert keyed on ``user_id``: a new proposal supersedes the
    old one. Nothing expires; a proposal lives until it is confirmed,
    declined or replaced.
    """

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase()
        return self._client

    @with_retry("pending_actions")
    def set(self, user_id: str, action) -> None:
        row = {
            "user_id": user_id,
            "action": pending_actions.encode(action),
            "action_type": action.type,
            "created_at": action.created_at.isoformat(),
        }
        self.client.table(TABLE).upsert(row, on_conflict="user_id").execute()
        logger.info(f"📝 Pending {action.type} ({action.id}) set for {user_id}")

    @with_retry("pending_actions")
    def _fetch(self, user_id: str) -> Optional[dict]:
        response = self.client.table(TABLE).select("*").eq("user_id", user_id).limit(1).execute()
        return response.data[0] if response.data else None

    def get(self, user_id: str):
        row = self._fetch(user_id)
        if not row or not row.get("action"):
            return None
        try:
            return pending_actions.decode(row["action"])
        except PendingActionError as e:
            # An unreadable slot can never be confirmed; free it
            logger.error(f"❌ Dropping unreadable pending action for {user_id}: {e}")
            self.clear(user_id)
            return None

    @with_retry("pending_actions")
    def clear(self, user_id: str) -> None:
        self.client.table(TABLE).delete().eq("user_id", user_id).execute()
        logger.info(f"🧹 Pending action cleared for {user_id}")


def age_seconds(action, now: datetime = None) -> float:
    now = now or datetime.now(timezone.utc)
    return (now - action.created_at).total_seconds()
