"""In-memory session store with per-session inactivity timers.

Sessions live for the life of the process; nothing is evicted. Each session has
at most one pending timer, always cancelled before a new one is scheduled.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Set

from cantina_bot.logging_config import get_logger
from cantina_bot.services.state_machine import SessionState

logger = get_logger("session_store")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    phone: str
    state: SessionState = SessionState.INIT
    unit: Optional[str] = None
    last_issue: Optional[str] = None
    last_interaction_at: datetime = field(default_factory=_now)
    # Token of the live inactivity timer; the handle itself stays in the store.
    timer_token: Optional[int] = None
    # Titles of the last option list sent, for numbered replies.
    last_options: List[str] = field(default_factory=list)

    def snapshot(self) -> dict:
        return {
            "phone": self.phone,
            "state": self.state.value,
            "unit": self.unit,
            "last_issue": self.last_issue,
            "last_interaction_at": self.last_interaction_at.isoformat(),
            "timer_pending": self.timer_token is not None,
        }


InactivityHandler = Callable[[Session], Awaitable[None]]


class SessionStore:
    def __init__(self, inactivity_seconds: float, on_inactivity: Optional[InactivityHandler] = None):
        self.inactivity_seconds = inactivity_seconds
        self._on_inactivity = on_inactivity
        self._sessions: Dict[str, Session] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._tokens = itertools.count(1)
        self._firing: Set[asyncio.Task] = set()

    def set_inactivity_handler(self, handler: InactivityHandler) -> None:
        self._on_inactivity = handler

    def get(self, phone: str) -> Optional[Session]:
        return self._sessions.get(phone)

    def all(self) -> List[Session]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def get_or_create(self, phone: str) -> Session:
        """Return the session for phone, creating it in INIT with a fresh timer."""
        session = self._sessions.get(phone)
        if session is not None:
            return session

        session = Session(phone=phone)
        self._sessions[phone] = session
        logger.info("Session created", extra={"context": {"phone": phone}})
        self._schedule(session)
        return session

    def reset_timer(self, phone: str) -> None:
        """Cancel the pending timer (if any) and schedule a new one."""
        session = self._sessions.get(phone)
        if session is None:
            logger.warning("reset_timer for unknown session", extra={"context": {"phone": phone}})
            return
        session.last_interaction_at = _now()
        self._schedule(session)

    def cancel_timer(self, phone: str) -> None:
        handle = self._timers.pop(phone, None)
        if handle is not None:
            handle.cancel()
        session = self._sessions.get(phone)
        if session is not None:
            session.timer_token = None

    def pending_timers(self) -> int:
        return len(self._timers)

    async def close(self) -> None:
        """Cancel every pending timer and any expiry still being handled."""
        for phone in list(self._timers):
            self.cancel_timer(phone)
        for task in list(self._firing):
            task.cancel()
        if self._firing:
            await asyncio.gather(*self._firing, return_exceptions=True)
        self._firing.clear()

    def _schedule(self, session: Session) -> None:
        self.cancel_timer(session.phone)
        token = next(self._tokens)
        loop = asyncio.get_running_loop()
        self._timers[session.phone] = loop.call_later(
            self.inactivity_seconds, self._on_timer, session.phone, token
        )
        session.timer_token = token

    def _on_timer(self, phone: str, token: int) -> None:
        session = self._sessions.get(phone)
        if session is None or session.timer_token != token:
            return
        self._timers.pop(phone, None)
        session.timer_token = None

        if self._on_inactivity is None:
            logger.warning("Inactivity timer fired without handler", extra={"context": {"phone": phone}})
            return

        task = asyncio.get_running_loop().create_task(self._fire(session))
        self._firing.add(task)
        task.add_done_callback(self._firing.discard)

    async def _fire(self, session: Session) -> None:
        logger.info(
            "Inactivity timer fired",
            extra={"context": {"phone": session.phone, "state": session.state.value}},
        )
        try:
            await self._on_inactivity(session)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Inactivity handler failed", extra={"context": {"phone": session.phone}})
