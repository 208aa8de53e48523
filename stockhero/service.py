"""Request-level entry points: quota precondition, session lookup, round streaming."""

import logging
from collections.abc import Mapping

from config.config_loader import AppConfig, DebateSettings
from stockhero.debate import DebateOrchestrator
from stockhero.events import RoundStream
from stockhero.models import PersonaId, UsageCheck
from stockhero.providers.base import GenerationAdapter
from stockhero.sessions import SessionRegistry, new_session_id
from stockhero.usage import UsageGuard

logger = logging.getLogger(__name__)


class DebateService:
    """What a request handler calls. Transport and persistence stay outside.

    Starting a new debate consumes one use of the plan's debate feature;
    reopening an existing session is free. Structural errors (QuotaExceededError,
    UpgradeRequiredError, UnknownSessionError, InvalidRoundTransition) are
    raised before any generation starts.
    """

    def __init__(self, registry: SessionRegistry, guard: UsageGuard, settings: DebateSettings) -> None:
        self.registry = registry
        self.guard = guard
        self.settings = settings

    def start_debate(
        self,
        user_id: str,
        plan: str,
        symbol: str,
        symbol_name: str,
        current_price: float,
        session_id: str | None = None,
    ) -> tuple[DebateOrchestrator, bool]:
        """Open (or reopen) a session. Returns (orchestrator, created).

        Raises:
            UpgradeRequiredError: If the plan has no debates at all.
            QuotaExceededError: If a new session would exceed the daily limit.
        """
        session_id = session_id or new_session_id(symbol, self.guard.today())
        feature = self.settings.debate_feature
        return self.registry.get_or_create(
            session_id,
            symbol,
            symbol_name,
            current_price,
            on_create=lambda: self.guard.require(user_id, plan, feature),
        )

    def advance_round(
        self,
        session_id: str,
        symbol: str | None = None,
        round_number: int | None = None,
        current_price: float | None = None,
        timeout_sec: float | None = None,
    ) -> RoundStream:
        """Start the session's next round and return its event stream.

        Raises:
            UnknownSessionError: For unknown sessions or a symbol mismatch.
            InvalidRoundTransition: If a round is in flight or the debate is over.
        """
        orchestrator = self.registry.get(session_id, symbol)
        return orchestrator.stream_round(round_number, timeout_sec, current_price)

    def snapshot(self, session_id: str) -> dict:
        return self.registry.get(session_id).snapshot()

    def usage(self, user_id: str, plan: str, feature_key: str | None = None) -> UsageCheck:
        feature = feature_key or self.settings.debate_feature
        return self.guard.peek(user_id, feature, self.guard.limit_for(plan, feature))

    def end_debate(self, session_id: str) -> bool:
        return self.registry.remove(session_id)


def build_service(config: AppConfig, adapters: Mapping[PersonaId, GenerationAdapter]) -> DebateService:
    """Wire a registry, a guard and the adapters from loaded config."""
    settings = config.debate

    def factory(session_id: str, symbol: str, symbol_name: str, current_price: float) -> DebateOrchestrator:
        return DebateOrchestrator(session_id, symbol, symbol_name, current_price, adapters, settings)

    registry = SessionRegistry(factory, idle_timeout_sec=settings.idle_timeout_sec)
    guard = UsageGuard(config.plans, tz_name=settings.timezone)
    return DebateService(registry, guard, settings)
