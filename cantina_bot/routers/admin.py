"""Operator endpoints: inspect sessions and hand them back to the bot."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel

from cantina_bot.config import Settings
from cantina_bot.dependencies import get_app_settings, get_engine
from cantina_bot.schemas.webhook import normalize_phone
from cantina_bot.services.conversation_service import ConversationEngine

router = APIRouter(prefix="/admin")


class SessionInfo(BaseModel):
    phone: str
    state: str
    unit: Optional[str] = None
    last_issue: Optional[str] = None
    last_interaction_at: str
    timer_pending: bool


class SessionListResponse(BaseModel):
    total: int
    sessions: List[SessionInfo]


def require_admin_token(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    settings: Settings = Depends(get_app_settings),
) -> None:
    expected = settings.admin_api_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="ADMIN_API_TOKEN not configured",
        )
    if not x_admin_token or x_admin_token != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


@router.get("/sessions", response_model=SessionListResponse, dependencies=[Depends(require_admin_token)])
def list_sessions(engine: ConversationEngine = Depends(get_engine)):
    sessions = [SessionInfo(**session.snapshot()) for session in engine.store.all()]
    return SessionListResponse(total=len(sessions), sessions=sessions)


@router.post(
    "/sessions/{phone}/release",
    response_model=SessionInfo,
    dependencies=[Depends(require_admin_token)],
)
def release_session(phone: str, engine: ConversationEngine = Depends(get_engine)):
    session = engine.release(normalize_phone(phone))
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return SessionInfo(**session.snapshot())
