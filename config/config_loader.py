"""Load settings.yaml into typed dataclasses. Detects persona API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

UNLIMITED = -1


@dataclass
class ModelConfig:
    name: str              # persona key: "claude", "gemini", "gpt"
    sdk: str               # "anthropic", "openai", "gemini", "mock"
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class PromptsConfig:
    opening: str
    rebuttal: str
    format_instructions: str = ""


@dataclass
class DebateSettings:
    max_rounds: int = 4
    default_rounds: int = 4
    unanimous_threshold: int = 4
    consensus_max_spread: int = 1
    top_n: int = 5
    idle_timeout_sec: int = 1800
    timezone: str = "Asia/Seoul"
    output_dir: Path = Path("./output")
    debate_feature: str = "debates"
    screening_concurrency: int = 4


@dataclass
class AppConfig:
    debate: DebateSettings
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    plans: dict[str, dict[str, int]] = field(default_factory=dict)
    available_personas: set[str] = field(default_factory=set)


def _load_plans(plans_raw: dict) -> dict[str, dict[str, int]]:
    plans: dict[str, dict[str, int]] = {}
    for plan_name, features in plans_raw.items():
        limits = {str(k): int(v) for k, v in (features or {}).items()}
        for feature, limit in limits.items():
            if limit < UNLIMITED:
                raise ValueError(f"Invalid limit {limit} for {plan_name}.{feature} (use -1 for unlimited)")
        plans[str(plan_name)] = limits
    return plans


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Personas without an API key are logged, not rejected; callers fall back
    to the mock adapter for them.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    debate_raw = raw.get("debate", {})
    debate = DebateSettings(
        max_rounds=int(debate_raw.get("max_rounds", 4)),
        default_rounds=int(debate_raw.get("default_rounds", debate_raw.get("max_rounds", 4))),
        unanimous_threshold=int(debate_raw.get("unanimous_threshold", 4)),
        consensus_max_spread=int(debate_raw.get("consensus_max_spread", 1)),
        top_n=int(debate_raw.get("top_n", 5)),
        idle_timeout_sec=int(debate_raw.get("idle_timeout_sec", 1800)),
        timezone=str(debate_raw.get("timezone", "Asia/Seoul")),
        output_dir=Path(debate_raw.get("output_dir", "./output")),
        debate_feature=str(debate_raw.get("debate_feature", "debates")),
        screening_concurrency=int(debate_raw.get("screening_concurrency", 4)),
    )
    if debate.default_rounds > debate.max_rounds:
        raise ValueError(
            f"default_rounds ({debate.default_rounds}) exceeds max_rounds ({debate.max_rounds})"
        )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        opening=prompts_raw["opening"],
        rebuttal=prompts_raw["rebuttal"],
        format_instructions=prompts_raw.get("format_instructions", ""),
    )

    models: dict[str, ModelConfig] = {}
    available_personas: set[str] = set()

    for persona_key, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=persona_key,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
        )
        models[persona_key] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_personas.add(persona_key)
            logger.info("Live model available for persona: %s", persona_key)
        else:
            logger.info(
                "No API key for persona %s (set %s in .env), mock adapter will be used",
                persona_key,
                model_raw["api_key_env"],
            )

    return AppConfig(
        debate=debate,
        models=models,
        prompts=prompts,
        plans=_load_plans(raw.get("plans", {})),
        available_personas=available_personas,
    )
