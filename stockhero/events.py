"""Typed round events and the single-consumer channel that carries them."""

import asyncio
import logging
from dataclasses import dataclass
from typing import ClassVar, Union

from stockhero.models import DebateMessage, PersonaId, TargetSummary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageEvent:
    type: ClassVar[str] = "message"
    message: DebateMessage

    def to_dict(self) -> dict:
        m = self.message
        return {
            "type": self.type,
            "persona": m.persona.value,
            "round": m.round_number,
            "content": m.content,
            "score": m.score,
            "targetPrice": m.target_price,
            "risks": list(m.risks),
            "sequenceIndex": m.sequence_index,
        }


@dataclass(frozen=True)
class PersonaErrorEvent:
    type: ClassVar[str] = "persona_error"
    persona: PersonaId
    round_number: int
    reason: str

    def to_dict(self) -> dict:
        return {"type": self.type, "persona": self.persona.value, "round": self.round_number, "reason": self.reason}


@dataclass(frozen=True)
class RoundCompleteEvent:
    type: ClassVar[str] = "round_complete"
    round_number: int
    targets: TargetSummary
    consensus_score: float | None
    has_consensus: bool
    is_session_complete: bool

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "round": self.round_number,
            "targets": {
                "perPersona": {p.value: t for p, t in self.targets.per_persona.items()},
                "mean": self.targets.mean,
                "spreadPct": self.targets.spread_pct,
            },
            "consensusScore": self.consensus_score,
            "hasConsensus": self.has_consensus,
            "isSessionComplete": self.is_session_complete,
        }


@dataclass(frozen=True)
class FatalErrorEvent:
    type: ClassVar[str] = "fatal_error"
    reason: str

    def to_dict(self) -> dict:
        return {"type": self.type, "reason": self.reason}


RoundEvent = Union[MessageEvent, PersonaErrorEvent, RoundCompleteEvent, FatalErrorEvent]

_END = object()


class RoundStream:
    """Async iterator over one round's events.

    The round driver publishes into an unbounded queue so it never waits on
    the consumer. Closing the stream detaches the consumer only: the driver
    runs to completion and later events are dropped.
    """

    def __init__(self, session_id: str, round_number: int) -> None:
        self.session_id = session_id
        self.round_number = round_number
        self._queue: asyncio.Queue = asyncio.Queue()
        self._detached = False
        self._finished = False
        self._driver: asyncio.Task | None = None

    def attach_driver(self, driver: asyncio.Task) -> None:
        self._driver = driver

    @property
    def detached(self) -> bool:
        return self._detached

    def publish(self, event: RoundEvent) -> None:
        if self._detached:
            logger.debug("[%s] consumer gone, dropping %s event", self.session_id, event.type)
            return
        self._queue.put_nowait(event)

    def finish(self) -> None:
        self._queue.put_nowait(_END)

    def __aiter__(self) -> "RoundStream":
        return self

    async def __anext__(self) -> RoundEvent:
        if self._finished or self._detached:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._finished = True
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        """Stop delivering events. The round itself keeps running."""
        if not self._finished and not self._detached:
            logger.info("[%s] consumer detached during round %d", self.session_id, self.round_number)
        self._detached = True

    async def wait_finished(self) -> None:
        """Wait for the round driver to finish, delivered or not."""
        if self._driver is not None:
            await asyncio.shield(self._driver)

    async def collect(self) -> list[RoundEvent]:
        return [event async for event in self]

    async def __aenter__(self) -> "RoundStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
