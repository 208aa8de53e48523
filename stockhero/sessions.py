"""Session registry: the only cross-request mutable state of the debate core."""

import logging
import threading
import time
import uuid
from collections.abc import Callable
from datetime import date

from stockhero.debate import DebateOrchestrator
from stockhero.errors import UnknownSessionError
from stockhero.models import SessionState

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[str, str, str, float], DebateOrchestrator]


def new_session_id(symbol: str, day: date | None = None) -> str:
    day = day or date.today()
    return f"session-{symbol}-{day.isoformat()}-{uuid.uuid4().hex[:12]}"


class SessionRegistry:
    """Concurrency-safe map of session id -> DebateOrchestrator.

    The lock guards map operations only and is never held while a round is
    running, so one session's adapter calls never block another session.
    Sessions idle longer than `idle_timeout_sec` are evicted by `evict_idle`.
    """

    def __init__(
        self,
        factory: OrchestratorFactory,
        idle_timeout_sec: float = 1800,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self._idle_timeout_sec = idle_timeout_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, DebateOrchestrator] = {}
        self._last_used: dict[str, float] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def get_or_create(
        self,
        session_id: str,
        symbol: str,
        symbol_name: str,
        current_price: float,
        on_create: Callable[[], object] | None = None,
    ) -> tuple[DebateOrchestrator, bool]:
        """Return the session's orchestrator, creating it on first use.

        Insert-if-absent is atomic: concurrent callers with the same new id
        get the same orchestrator and exactly one sees `created=True`.
        `on_create` runs inside the critical section before insertion; if it
        raises, nothing is inserted and the error propagates.
        """
        with self._lock:
            existing = self._sessions.get(session_id)
            if existing is not None:
                if existing.symbol != symbol:
                    logger.warning(
                        "[%s] get_or_create for %s ignored, session tracks %s",
                        session_id, symbol, existing.symbol,
                    )
                self._last_used[session_id] = self._clock()
                return existing, False
            if on_create is not None:
                on_create()
            orchestrator = self._factory(session_id, symbol, symbol_name, current_price)
            self._sessions[session_id] = orchestrator
            self._last_used[session_id] = self._clock()
        logger.info("[%s] Session created for %s (%s)", session_id, symbol, symbol_name)
        return orchestrator, True

    def get(self, session_id: str, symbol: str | None = None) -> DebateOrchestrator:
        """Look up an existing session.

        Raises:
            UnknownSessionError: If the id was never created (or was evicted),
                or `symbol` differs from the symbol the session was opened for.
        """
        with self._lock:
            orchestrator = self._sessions.get(session_id)
            if orchestrator is None:
                raise UnknownSessionError(session_id)
            if symbol is not None and orchestrator.symbol != symbol:
                raise UnknownSessionError(
                    session_id, f"Session {session_id} was not initialized for symbol {symbol}"
                )
            self._last_used[session_id] = self._clock()
            return orchestrator

    def remove(self, session_id: str) -> bool:
        with self._lock:
            orchestrator = self._sessions.pop(session_id, None)
            self._last_used.pop(session_id, None)
        if orchestrator is None:
            return False
        orchestrator.close()
        return True

    def evict_idle(self, now: float | None = None) -> list[str]:
        """Close and drop sessions idle past the timeout. Rounds in flight are kept."""
        now = self._clock() if now is None else now
        evicted: list[DebateOrchestrator] = []
        with self._lock:
            for session_id, last_used in list(self._last_used.items()):
                orchestrator = self._sessions[session_id]
                if now - last_used < self._idle_timeout_sec:
                    continue
                if orchestrator.state == SessionState.ROUND_ACTIVE:
                    continue
                evicted.append(self._sessions.pop(session_id))
                del self._last_used[session_id]
        for orchestrator in evicted:
            orchestrator.close()
        if evicted:
            logger.info("Evicted %d idle session(s)", len(evicted))
        return [o.session_id for o in evicted]
