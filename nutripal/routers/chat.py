import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends

from nutripal.core.security import current_user_id
from nutripal.models.schemas import ChatRequest, ChatResponse
from nutripal.services.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/chat",
    tags=["Chat"],
)


@lru_cache(maxsize=1)
def get_orchestrator() -> Orchestrator:
    return Orchestrator()


@router.post("", response_model=ChatResponse)
def chat(request: ChatRequest, user_id: str = Depends(current_user_id),
         orchestrator: Orchestrator = Depends(get_orchestrator)) -> ChatResponse:
    """
    One conversational turn. Always answers 200; failures are reported in
    ``status`` and ``response_type``.
    """
    logger.info(f"💬 Chat turn for user {user_id}")
    history = list(request.conversation_history)
    return orchestrator.handle_message(
        user_id,
        request.message,
        session_id=request.session_id,
        history=history,
        timezone=request.timezone,
        client_pending_action=request.pending_action,
    )


@router.get("/pending")
def get_pending(user_id: str = Depends(current_user_id),
                orchestrator: Orchestrator = Depends(get_orchestrator)) -> Optional[dict]:
    """The caller's current pending action, or null."""
    action = orchestrator.store.get(user_id)
    return action.model_dump(mode="json") if action is not None else None
