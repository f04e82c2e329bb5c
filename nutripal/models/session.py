from typing import Any, Optional

from pydantic import BaseModel, Field


class Session(BaseModel):
    user_id: str
    current_mode: str = "idle"
    buffer: dict[str, Any] = Field(default_factory=dict)
    last_intent: Optional[str] = None
    last_agent: Optional[str] = None
    last_response_type: Optional[str] = None
    # Filled from the pending action store on load, not a chat_sessions column
    pending_action: Optional[Any] = Field(default=None, exclude=True)
