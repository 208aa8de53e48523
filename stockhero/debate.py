"""Debate orchestration: one session's round state machine.

Each round calls the three persona adapters one after another, in
DEBATE_ORDER, because every persona is shown what the earlier personas said
in the same round. Rounds run in a driver task that publishes typed events
to a RoundStream; the caller consumes the stream.
"""

import asyncio
import logging
import math
from collections.abc import Mapping
from datetime import datetime, timezone

from config.config_loader import DebateSettings
from stockhero.errors import InvalidRoundTransition
from stockhero.events import (
    FatalErrorEvent,
    MessageEvent,
    PersonaErrorEvent,
    RoundCompleteEvent,
    RoundEvent,
    RoundStream,
)
from stockhero.models import (
    DebateMessage,
    GenerationRequest,
    GenerationResult,
    PersonaFailure,
    PersonaId,
    SessionState,
    SymbolEvaluation,
    TargetSummary,
)
from stockhero.personas import DEBATE_ORDER, PERSONAS
from stockhero.providers.base import FatalGenerationError, GenerationAdapter, GenerationError, MalformedOutputError
from stockhero.selection import build_evaluation

logger = logging.getLogger(__name__)

_MIN_SCORE = 1
_MAX_SCORE = 5


def validate_result(persona_id: PersonaId, result: GenerationResult) -> GenerationResult:
    """Reject adapter output that is out of range or missing fields.

    Raises:
        MalformedOutputError: On any invalid field.
    """
    name = persona_id.value
    score = result.score
    if isinstance(score, bool) or not isinstance(score, int):
        raise MalformedOutputError(name, f"Score is not an integer: {score!r}")
    if not _MIN_SCORE <= score <= _MAX_SCORE:
        raise MalformedOutputError(name, f"Score {score} outside [{_MIN_SCORE}, {_MAX_SCORE}]")
    target = result.target_price
    if isinstance(target, bool) or not isinstance(target, (int, float)) or not math.isfinite(target) or target <= 0:
        raise MalformedOutputError(name, f"Invalid target price: {target!r}")
    if not isinstance(result.content, str) or not result.content.strip():
        raise MalformedOutputError(name, "Empty content")
    if not isinstance(result.risks, (list, tuple)) or not all(isinstance(r, str) for r in result.risks):
        raise MalformedOutputError(name, "Risks must be a list of strings")
    return result


class DebateOrchestrator:
    """Owns the state of a single debate session.

    State machine: CREATED -> ROUND_ACTIVE -> ROUND_COMPLETE ->
    (ROUND_ACTIVE | COMPLETED) -> TERMINAL. At most one round is in flight.
    """

    def __init__(
        self,
        session_id: str,
        symbol: str,
        symbol_name: str,
        current_price: float,
        adapters: Mapping[PersonaId, GenerationAdapter],
        settings: DebateSettings | None = None,
    ) -> None:
        missing = set(PersonaId) - set(adapters)
        if missing:
            raise ValueError(f"No adapter for personas: {', '.join(sorted(p.value for p in missing))}")
        self.session_id = session_id
        self.symbol = symbol
        self.symbol_name = symbol_name
        self.created_at = datetime.now(timezone.utc)
        self._adapters = dict(adapters)
        self._settings = settings or DebateSettings()
        self._current_price = 0.0
        self.set_current_price(current_price)

        self._state = SessionState.CREATED
        self._current_round = 0
        self._latest_scores: dict[PersonaId, int] = {}
        self._latest_targets: dict[PersonaId, float] = {}
        self._latest_risks: dict[PersonaId, tuple[str, ...]] = {}
        self._messages: list[DebateMessage] = []
        self._failures: list[PersonaFailure] = []
        self._driver: asyncio.Task | None = None

    # --- accessors ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_round(self) -> int:
        return self._current_round

    @property
    def current_price(self) -> float:
        return self._current_price

    @property
    def max_rounds(self) -> int:
        return self._settings.max_rounds

    @property
    def is_complete(self) -> bool:
        return self._current_round >= self._settings.max_rounds and self._state != SessionState.ROUND_ACTIVE

    @property
    def messages(self) -> tuple[DebateMessage, ...]:
        return tuple(self._messages)

    @property
    def failures(self) -> tuple[PersonaFailure, ...]:
        return tuple(self._failures)

    @property
    def latest_scores(self) -> dict[PersonaId, int]:
        return dict(self._latest_scores)

    def round_messages(self, round_number: int) -> list[DebateMessage]:
        return [m for m in self._messages if m.round_number == round_number]

    def set_current_price(self, price: float) -> None:
        if isinstance(price, bool) or not isinstance(price, (int, float)) or not math.isfinite(price) or price <= 0:
            raise ValueError(f"Current price must be a positive number, got {price!r}")
        self._current_price = float(price)

    def get_consensus(self) -> float | None:
        """Mean of the latest score of every persona that has ever scored."""
        if not self._latest_scores:
            return None
        return sum(self._latest_scores.values()) / len(self._latest_scores)

    @property
    def has_consensus(self) -> bool:
        """True when at least two personas scored and none differ by more than the allowed spread."""
        scores = list(self._latest_scores.values())
        if len(scores) < 2:
            return False
        return max(scores) - min(scores) <= self._settings.consensus_max_spread

    def get_targets(self) -> TargetSummary:
        per_persona = {p: self._latest_targets[p] for p in DEBATE_ORDER if p in self._latest_targets}
        if not per_persona:
            return TargetSummary(per_persona={}, mean=None, spread_pct=None)
        values = list(per_persona.values())
        mean = sum(values) / len(values)
        spread_pct = (max(values) - min(values)) / mean * 100
        return TargetSummary(per_persona=per_persona, mean=mean, spread_pct=spread_pct)

    def to_evaluation(self, sector: str = "") -> SymbolEvaluation:
        """Fold the latest persona views into a SymbolEvaluation for ranking."""
        return build_evaluation(
            symbol_id=self.symbol,
            scores=self._latest_scores,
            risks=[self._latest_risks[p] for p in DEBATE_ORDER if p in self._latest_risks],
            unanimous_threshold=self._settings.unanimous_threshold,
            name=self.symbol_name,
            sector=sector,
        )

    def snapshot(self) -> dict:
        targets = self.get_targets()
        return {
            "sessionId": self.session_id,
            "symbol": self.symbol,
            "symbolName": self.symbol_name,
            "round": self._current_round,
            "state": self._state.value,
            "currentPrice": self._current_price,
            "targets": {
                "perPersona": {p.value: t for p, t in targets.per_persona.items()},
                "mean": targets.mean,
                "spreadPct": targets.spread_pct,
            },
            "consensus": self.get_consensus(),
            "hasConsensus": self.has_consensus,
            "isComplete": self.is_complete,
        }

    # --- transitions ---

    def begin_round(self, round_number: int | None = None) -> int:
        """Atomically claim the next round.

        Raises:
            InvalidRoundTransition: If a round is in flight, the session is
                finished, or `round_number` is not the next round.
        """
        if self._state == SessionState.ROUND_ACTIVE:
            raise InvalidRoundTransition(self.session_id, f"Round {self._current_round} is still in flight")
        if self._state in (SessionState.COMPLETED, SessionState.TERMINAL):
            raise InvalidRoundTransition(self.session_id, f"Session is {self._state.value}")
        next_round = self._current_round + 1
        if round_number is not None and round_number != next_round:
            raise InvalidRoundTransition(
                self.session_id, f"Requested round {round_number}, next round is {next_round}"
            )
        if next_round > self._settings.max_rounds:
            raise InvalidRoundTransition(self.session_id, f"Max rounds ({self._settings.max_rounds}) reached")
        self._current_round = next_round
        self._state = SessionState.ROUND_ACTIVE
        logger.info("[%s] Starting round %d for %s", self.session_id, next_round, self.symbol)
        return next_round

    def stream_round(
        self,
        round_number: int | None = None,
        timeout_sec: float | None = None,
        current_price: float | None = None,
    ) -> RoundStream:
        """Start the next round and return its event stream.

        Must be called from a running event loop. Validation errors are
        raised here, before any adapter is called. `current_price` updates
        the quote only once the round has been claimed.
        """
        loop = asyncio.get_running_loop()
        previous_price = self._current_price
        if current_price is not None:
            self.set_current_price(current_price)
        try:
            number = self.begin_round(round_number)
        except InvalidRoundTransition:
            self._current_price = previous_price
            raise
        stream = RoundStream(self.session_id, number)
        self._driver = loop.create_task(self._drive_round(number, stream, timeout_sec))
        stream.attach_driver(self._driver)
        return stream

    async def run_round(self, round_number: int | None = None, timeout_sec: float | None = None) -> list[RoundEvent]:
        """Run the next round to completion and return all of its events."""
        return await self.stream_round(round_number, timeout_sec).collect()

    def close(self) -> None:
        if self._state != SessionState.TERMINAL:
            logger.info("[%s] Session closed at round %d", self.session_id, self._current_round)
        self._state = SessionState.TERMINAL

    # --- round driver ---

    async def _call_adapter(
        self,
        persona_id: PersonaId,
        request: GenerationRequest,
        sequence_index: int,
        timeout_sec: float | None,
    ) -> DebateMessage | PersonaFailure:
        """Call one persona's adapter once, without retrying.

        Never raises for per-persona problems; returns a PersonaFailure.
        FatalGenerationError propagates and aborts the round.
        """
        adapter = self._adapters[persona_id]
        if timeout_sec is None:
            timeout_sec = adapter.timeout_sec()
        try:
            result = await asyncio.wait_for(adapter.generate(request), timeout=timeout_sec)
            validate_result(persona_id, result)
        except FatalGenerationError:
            raise
        except TimeoutError:
            reason = f"Timed out after {timeout_sec}s"
        except GenerationError as exc:
            reason = str(exc)
        except Exception as exc:
            reason = f"Unexpected error: {exc}"
        else:
            return DebateMessage(
                session_id=self.session_id,
                persona=persona_id,
                round_number=request.round_number,
                content=result.content.strip(),
                score=result.score,
                target_price=float(result.target_price),
                risks=tuple(r.strip() for r in result.risks if r.strip()),
                sequence_index=sequence_index,
            )

        logger.warning(
            "[%s] %s failed in round %d: %s",
            self.session_id, persona_id.value, request.round_number, reason,
        )
        return PersonaFailure(
            session_id=self.session_id,
            persona=persona_id,
            round_number=request.round_number,
            reason=reason,
        )

    async def _run_personas(self, number: int, stream: RoundStream, timeout_sec: float | None) -> None:
        transcript = tuple(self._messages)
        this_round: list[DebateMessage] = []

        for index, persona_id in enumerate(DEBATE_ORDER):
            request = GenerationRequest(
                persona=PERSONAS[persona_id],
                symbol=self.symbol,
                symbol_name=self.symbol_name,
                round_number=number,
                current_price=self._current_price,
                prior_messages=tuple(this_round),
                transcript=transcript,
                previous_target=self._latest_targets.get(persona_id),
            )
            outcome = await self._call_adapter(persona_id, request, index, timeout_sec)

            if isinstance(outcome, DebateMessage):
                this_round.append(outcome)
                self._messages.append(outcome)
                self._latest_scores[persona_id] = outcome.score
                self._latest_targets[persona_id] = outcome.target_price
                self._latest_risks[persona_id] = outcome.risks
                stream.publish(MessageEvent(message=outcome))
            else:
                self._failures.append(outcome)
                stream.publish(
                    PersonaErrorEvent(persona=persona_id, round_number=number, reason=outcome.reason)
                )

    def _settle_round(self, number: int) -> None:
        if self._state != SessionState.ROUND_ACTIVE:
            return  # closed while the round was running
        if number >= self._settings.max_rounds:
            self._state = SessionState.COMPLETED
        else:
            self._state = SessionState.ROUND_COMPLETE

    async def _drive_round(self, number: int, stream: RoundStream, timeout_sec: float | None) -> None:
        try:
            await self._run_personas(number, stream, timeout_sec)
        except FatalGenerationError as exc:
            logger.error("[%s] Round %d aborted: %s", self.session_id, number, exc)
            self._settle_round(number)
            stream.publish(FatalErrorEvent(reason=str(exc)))
        except asyncio.CancelledError:
            self._settle_round(number)
            stream.publish(FatalErrorEvent(reason="Round cancelled"))
            raise
        else:
            self._settle_round(number)
            consensus = self.get_consensus()
            event = RoundCompleteEvent(
                round_number=number,
                targets=self.get_targets(),
                consensus_score=consensus,
                has_consensus=self.has_consensus,
                is_session_complete=number >= self._settings.max_rounds,
            )
            logger.info(
                "[%s] Round %d complete: consensus %s, agreement %s",
                self.session_id,
                number,
                f"{consensus:.2f}" if consensus is not None else "n/a",
                event.has_consensus,
            )
            stream.publish(event)
        finally:
            stream.finish()
