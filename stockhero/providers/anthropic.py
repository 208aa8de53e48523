"""Claude persona adapter on the anthropic SDK (native async)."""

import logging

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig, PromptsConfig
from stockhero.providers.base import GenerationError, LLMAdapter

logger = logging.getLogger(__name__)


class AnthropicAdapter(LLMAdapter):
    def __init__(self, config: ModelConfig, prompts: PromptsConfig) -> None:
        super().__init__(config, prompts)
        self._client = anthropic_sdk.AsyncAnthropic(api_key=self._require_api_key())

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        response = await self._send(
            self._client.messages.create(
                model=self._config.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        )
        text = "\n".join(b.text for b in response.content or [] if b.type == "text")
        if not text.strip():
            raise GenerationError(self._config.name, "No text blocks in response")

        if response.usage:
            logger.debug(
                "Anthropic usage: %d in / %d out tokens",
                response.usage.input_tokens,
                response.usage.output_tokens,
            )
        return text
