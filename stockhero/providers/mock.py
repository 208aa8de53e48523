"""Deterministic offline adapter, used when a persona has no API key."""

import asyncio
import logging
import random

from stockhero.models import GenerationRequest, GenerationResult, PersonaId
from stockhero.personas import BIAS_SCORE_SHIFT, PERSONAS, persona_name
from stockhero.providers.base import FatalGenerationError, GenerationAdapter

logger = logging.getLogger(__name__)

# (min, max) upside multiplier on the current price for a first target.
TARGET_MULTIPLIERS: dict[PersonaId, tuple[float, float]] = {
    PersonaId.CLAUDE: (1.10, 1.20),
    PersonaId.GEMINI: (1.25, 1.45),
    PersonaId.GPT: (1.05, 1.15),
}

RISK_TEMPLATES: dict[PersonaId, list[list[str]]] = {
    PersonaId.CLAUDE: [
        ["Valuation premium at current PER", "Price correction if earnings growth slows"],
        ["Intensifying competition within the sector", "Raw material and FX swings"],
        ["Global slowdown exposure", "Demand outlook uncertainty"],
    ],
    PersonaId.GEMINI: [
        ["Falling behind the innovation curve", "Delayed monetization of new businesses"],
        ["Competitors catching up", "Regulatory shifts"],
        ["Missed market expectations", "Uncertain ROI on AI investment"],
    ],
    PersonaId.GPT: [
        ["Prolonged high rates pressuring valuation", "Demand collapse in a recession", "Geopolitical escalation"],
        ["Rising FX volatility", "Supply chain restructuring costs", "Inflation rebound"],
        ["Policy uncertainty", "Tightening liquidity", "Credit stress"],
    ],
}

OPENINGS: dict[PersonaId, list[str]] = {
    PersonaId.CLAUDE: [
        "Looking at the fundamentals of {name}, margins and cash flow tell a steady story.",
        "The numbers for {name} do not lie: the balance sheet supports the current multiple.",
        "On a sector-relative valuation basis, {name} sits close to its historical band.",
    ],
    PersonaId.GEMINI: [
        "{name} is sitting on a growth runway the market is still underpricing.",
        "The trend lines for {name} point up; new business lines could rerate the stock.",
        "Forget the trailing PER, {name} is a story about the next three years.",
    ],
    PersonaId.GPT: [
        "Before we get excited about {name}, consider where rates and FX are heading.",
        "I have seen many cycles; {name} needs a margin of safety in this macro backdrop.",
        "The macro picture for {name} is mixed and the downside scenarios deserve weight.",
    ],
}


def _round_to_tick(value: float, reference: float) -> float:
    if reference >= 10_000:
        return float(round(value / 100) * 100)
    if reference >= 100:
        return float(round(value))
    return round(value, 2)


class MockAdapter(GenerationAdapter):
    """Seeded, reproducible stand-in for a live model.

    The same (symbol, round, persona) always yields the same result. Pass
    `known_symbols` to make unknown symbols abort the round, and `delay_sec`
    to simulate network latency.
    """

    def __init__(
        self,
        persona_id: PersonaId,
        delay_sec: float = 0.0,
        known_symbols: set[str] | None = None,
    ) -> None:
        self._persona_id = persona_id
        self._delay_sec = delay_sec
        self._known_symbols = known_symbols

    def name(self) -> str:
        return self._persona_id.value

    def model_string(self) -> str:
        return "mock"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        if self._known_symbols is not None and request.symbol not in self._known_symbols:
            raise FatalGenerationError(f"Unknown symbol: {request.symbol}")

        persona = PERSONAS[self._persona_id]
        rng = random.Random(f"{request.symbol}-{request.round_number}-{self._persona_id.value}")

        base = 3.5 + rng.random() * 1.5 + BIAS_SCORE_SHIFT[persona.risk_bias]
        score = int(min(5, max(1, round(base))))

        if request.previous_target is not None and request.round_number > 1:
            # Revise the previous view by at most +/-3%.
            adjusted = request.previous_target * (1 + (rng.random() - 0.5) * 0.06)
            target = _round_to_tick(adjusted, request.current_price)
        else:
            low, high = TARGET_MULTIPLIERS[self._persona_id]
            target = _round_to_tick(request.current_price * (low + rng.random() * (high - low)), request.current_price)

        risks = list(rng.choice(RISK_TEMPLATES[self._persona_id]))
        content = rng.choice(OPENINGS[self._persona_id]).format(name=request.symbol_name)
        if request.prior_messages:
            last = request.prior_messages[-1]
            content = (
                f"{persona_name(last.persona)} gives it {last.score}/5, "
                f"I land at {score}/5. " + content
            )

        if self._delay_sec:
            await asyncio.sleep(self._delay_sec)

        logger.debug("Mock %s round %d on %s: score %d", self._persona_id.value, request.round_number, request.symbol, score)
        return GenerationResult(content=content, score=score, target_price=target, risks=risks)
