import logging
from datetime import datetime, timezone

from nutripal.core.retry import with_retry
from nutripal.models.session import Session
from nutripal.services.supabase_client import get_supabase

logger = logging.getLogger(__name__)

TABLE = "chat_sessions"
MAX_RECENT_FOODS = 10


class SessionService:
    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase()
        return self._client

    @with_retry("sessions")
    def get_session(self, user_id: str) -> Session:
        response = self.client.table(TABLE).select("*").eq("user_id", user_id).limit(1).execute()
        if response.data:
            row = response.data[0]
            return Session(
                user_id=user_id,
                current_mode=row.get("current_mode") or "idle",
                buffer=row.get("buffer") or {},
                last_intent=row.get("last_intent"),
                last_agent=row.get("last_agent"),
                last_response_type=row.get("last_response_type"),
            )
        session = Session(user_id=user_id)
        self._save(session)
        logger.info(f"🆕 Session created for {user_id}")
        return session

    @with_retry("sessions")
    def _save(self, session: Session) -> None:
        row = session.model_dump()
        row["updated_at"] = datetime.now(timezone.utc).isoformat()
        self.client.table(TABLE).upsert(row, on_conflict="user_id").execute()

    def update_context(self, session: Session, intent: str = None, agent: str = None,
                       response_type: str = None, mode: str = None) -> Session:
        if intent:
            session.last_intent = intent
        if agent:
            session.last_agent = agent
        if response_type:
            session.last_response_type = response_type
        if mode:
            session.current_mode = mode
        self._save(session)
        return session

    def update_buffer(self, session: Session, recent_foods: list[str] = None,
                      last_topic: str = None, correction: str = None) -> Session:
        buffer = dict(session.buffer)
        if recent_foods:
            merged = list(dict.fromkeys(list(recent_foods) + buffer.get("recent_foods", [])))
            buffer["recent_foods"] = merged[:MAX_RECENT_FOODS]
        if last_topic:
            buffer["last_topic"] = last_topic
        if correction:
            buffer["corrections"] = (buffer.get("corrections", []) + [correction])[-5:]
        session.buffer = buffer
        self._save(session)
        return session

    def reset(self, session: Session) -> Session:
        """Back to idle. Sessions are never deleted."""
        session.current_mode = "idle"
        session.buffer = {k: v for k, v in session.buffer.items() if k == "recent_foods"}
        self._save(session)
        return session
