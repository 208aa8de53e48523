"""Pure dataclasses for the StockHero debate core. No logic, no deps."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class PersonaId(str, Enum):
    CLAUDE = "claude"
    GEMINI = "gemini"
    GPT = "gpt"


class RiskBias(str, Enum):
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"
    CONSERVATIVE = "conservative"


class SessionState(str, Enum):
    CREATED = "created"
    ROUND_ACTIVE = "round_active"
    ROUND_COMPLETE = "round_complete"
    COMPLETED = "completed"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class Persona:
    id: PersonaId
    name: str
    title: str
    style: str
    focus: tuple[str, ...]
    risk_bias: RiskBias


@dataclass(frozen=True)
class DebateMessage:
    session_id: str
    persona: PersonaId
    round_number: int
    content: str
    score: int                 # 1-5
    target_price: float
    risks: tuple[str, ...]
    sequence_index: int        # position within the round, 0-based


@dataclass(frozen=True)
class PersonaFailure:
    session_id: str
    persona: PersonaId
    round_number: int
    reason: str


@dataclass(frozen=True)
class GenerationRequest:
    persona: Persona
    symbol: str
    symbol_name: str
    round_number: int
    current_price: float
    prior_messages: tuple[DebateMessage, ...] = ()    # this round, earlier personas
    transcript: tuple[DebateMessage, ...] = ()        # earlier rounds
    previous_target: float | None = None


@dataclass
class GenerationResult:
    """Raw adapter output. Validated by the orchestrator before use."""

    content: str
    score: int
    target_price: float
    risks: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TargetSummary:
    per_persona: dict[PersonaId, float]
    mean: float | None
    spread_pct: float | None   # (max - min) / mean * 100


@dataclass(frozen=True)
class SymbolEvaluation:
    symbol_id: str
    scores: dict[PersonaId, int]
    avg_score: float
    has_unanimous: bool
    risk_flags: tuple[str, ...] = ()
    name: str = ""
    sector: str = ""


@dataclass(frozen=True)
class RankedPick:
    rank: int
    symbol_id: str
    avg_score: float
    has_unanimous: bool
    rationale: str
    evaluation: SymbolEvaluation


@dataclass(frozen=True)
class Top5Result:
    picks: list[RankedPick]
    total_candidates: int
    unanimous_count: int
    summary: str = ""


@dataclass
class UsageRecord:
    user_id: str
    feature_key: str
    day: date
    count: int = 0


@dataclass(frozen=True)
class UsageCheck:
    allowed: bool
    used: int
    limit: int                 # -1 = unlimited
    remaining: int             # -1 = unlimited
    reset_at: datetime
