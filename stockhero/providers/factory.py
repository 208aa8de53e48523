"""Build one generation adapter per persona from config."""

import logging

from config.config_loader import AppConfig
from stockhero.models import PersonaId
from stockhero.providers.anthropic import AnthropicAdapter
from stockhero.providers.base import GenerationAdapter, LLMAdapter
from stockhero.providers.gemini import GeminiAdapter
from stockhero.providers.mock import MockAdapter
from stockhero.providers.openai_provider import OpenAIAdapter

logger = logging.getLogger(__name__)

ADAPTER_CLASSES: dict[str, type[LLMAdapter]] = {
    "anthropic": AnthropicAdapter,
    "openai": OpenAIAdapter,
    "gemini": GeminiAdapter,
}


def build_adapters(
    config: AppConfig,
    use_mock: bool = False,
    mock_delay_sec: float = 0.0,
) -> dict[PersonaId, GenerationAdapter]:
    """Return an adapter for every persona, falling back to MockAdapter.

    A persona gets the mock adapter when `use_mock` is set, when its API key
    is missing, when its sdk is unknown, or when the client fails to build.
    """
    adapters: dict[PersonaId, GenerationAdapter] = {}
    for persona_id in PersonaId:
        model_cfg = config.models.get(persona_id.value)
        if use_mock or model_cfg is None or persona_id.value not in config.available_personas:
            adapters[persona_id] = MockAdapter(persona_id, delay_sec=mock_delay_sec)
            continue
        adapter_cls = ADAPTER_CLASSES.get(model_cfg.sdk)
        if adapter_cls is None:
            logger.warning("Unknown sdk '%s' for persona %s, using mock", model_cfg.sdk, persona_id.value)
            adapters[persona_id] = MockAdapter(persona_id, delay_sec=mock_delay_sec)
            continue
        try:
            adapters[persona_id] = adapter_cls(model_cfg, config.prompts)
        except Exception as exc:
            logger.warning("Failed to build adapter for %s: %s, using mock", persona_id.value, exc)
            adapters[persona_id] = MockAdapter(persona_id, delay_sec=mock_delay_sec)
    return adapters
