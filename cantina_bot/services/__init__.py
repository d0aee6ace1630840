from cantina_bot.services.conversation_service import ConversationEngine
from cantina_bot.services.result import Result
from cantina_bot.services.session_store import Session, SessionStore
from cantina_bot.services.state_machine import (
    InvalidTransitionError,
    SessionState,
    can_transition,
    escalate,
    transition,
)
