"""Shared pytest fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import AppConfig, DebateSettings, ModelConfig, PromptsConfig
from stockhero.debate import DebateOrchestrator
from stockhero.models import DebateMessage, GenerationRequest, GenerationResult, PersonaId
from stockhero.personas import PERSONAS
from stockhero.providers.base import GenerationAdapter
from stockhero.providers.mock import MockAdapter


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="claude",
        sdk="anthropic",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        opening="You are {name}, {title}. Open on {symbol_name} ({symbol}) at {current_price}, round {round}.",
        rebuttal=(
            "You are {name}. Round {round} on {symbol_name}. Previous target: {previous_target}.\n"
            "Earlier:\n{transcript}\nThis round:\n{prior_messages}"
        ),
        format_instructions='Reply as JSON: {"content": "...", "score": 1, "target_price": 1, "risks": []}',
    )


@pytest.fixture
def debate_settings(tmp_path: Path) -> DebateSettings:
    return DebateSettings(output_dir=tmp_path / "output")


@pytest.fixture
def sample_app_config(
    debate_settings: DebateSettings,
    sample_prompts_config: PromptsConfig,
) -> AppConfig:
    models = {
        p.value: ModelConfig(
            name=p.value,
            sdk=sdk,
            model=f"{p.value}-test",
            api_key_env=f"TEST_{p.value.upper()}_KEY",
            timeout_sec=60,
            max_tokens=1500,
        )
        for p, sdk in ((PersonaId.CLAUDE, "anthropic"), (PersonaId.GEMINI, "gemini"), (PersonaId.GPT, "openai"))
    }
    return AppConfig(
        debate=debate_settings,
        models=models,
        prompts=sample_prompts_config,
        plans={
            "free": {"debates": 1, "reports": 0},
            "pro": {"debates": 20, "reports": 10},
            "vip": {"debates": -1, "reports": -1},
        },
        available_personas=set(),
    )


def make_request(
    persona_id: PersonaId = PersonaId.CLAUDE,
    symbol: str = "005930",
    round_number: int = 1,
    current_price: float = 70000.0,
    prior_messages: tuple[DebateMessage, ...] = (),
    transcript: tuple[DebateMessage, ...] = (),
    previous_target: float | None = None,
) -> GenerationRequest:
    return GenerationRequest(
        persona=PERSONAS[persona_id],
        symbol=symbol,
        symbol_name="Samsung Electronics",
        round_number=round_number,
        current_price=current_price,
        prior_messages=prior_messages,
        transcript=transcript,
        previous_target=previous_target,
    )


class ScriptedAdapter(GenerationAdapter):
    """Test double GenerationAdapter with a fixed reply."""

    def __init__(
        self,
        persona_id: PersonaId,
        score: int = 4,
        target_price: float = 80000.0,
        content: str | None = None,
        risks: list[str] | None = None,
    ) -> None:
        self._persona_id = persona_id
        # Shadow the class methods with AsyncMocks at the instance level.
        self.generate = AsyncMock(  # type: ignore[assignment]
            return_value=GenerationResult(
                content=content or f"{persona_id.value} view",
                score=score,
                target_price=target_price,
                risks=list(risks) if risks is not None else [f"{persona_id.value} risk"],
            )
        )
        self.ping = AsyncMock(return_value=None)  # type: ignore[assignment]

    def name(self) -> str:
        return self._persona_id.value

    def model_string(self) -> str:
        return "scripted"

    async def generate(self, request: GenerationRequest) -> GenerationResult:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return GenerationResult(content="view", score=3, target_price=1.0, risks=[])


@pytest.fixture
def scripted_adapters() -> dict[PersonaId, ScriptedAdapter]:
    """Claude 4, Gemini 5, GPT 3."""
    return {
        PersonaId.CLAUDE: ScriptedAdapter(PersonaId.CLAUDE, score=4, target_price=80000.0),
        PersonaId.GEMINI: ScriptedAdapter(PersonaId.GEMINI, score=5, target_price=90000.0),
        PersonaId.GPT: ScriptedAdapter(PersonaId.GPT, score=3, target_price=76000.0),
    }


@pytest.fixture
def mock_adapters() -> dict[PersonaId, MockAdapter]:
    return {p: MockAdapter(p) for p in PersonaId}


@pytest.fixture
def make_orchestrator(debate_settings: DebateSettings):
    def _make(adapters, session_id: str = "session-test", symbol: str = "005930", price: float = 70000.0):
        return DebateOrchestrator(
            session_id=session_id,
            symbol=symbol,
            symbol_name="Samsung Electronics",
            current_price=price,
            adapters=adapters,
            settings=debate_settings,
        )

    return _make
