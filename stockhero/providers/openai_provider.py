"""GPT persona adapter on the openai SDK. `base_url` points it at any compatible API."""

import logging

from openai import AsyncOpenAI

from config.config_loader import ModelConfig, PromptsConfig
from stockhero.providers.base import GenerationError, LLMAdapter

logger = logging.getLogger(__name__)


class OpenAIAdapter(LLMAdapter):
    def __init__(self, config: ModelConfig, prompts: PromptsConfig) -> None:
        super().__init__(config, prompts)
        client_kwargs = {"api_key": self._require_api_key()}
        if config.base_url:
            client_kwargs["base_url"] = config.base_url
        self._client = AsyncOpenAI(**client_kwargs)

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        response = await self._send(
            self._client.chat.completions.create(
                model=self._config.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
            )
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise GenerationError(self._config.name, "Empty response content")

        if response.usage:
            logger.debug("OpenAI usage: %d tokens", response.usage.total_tokens)
        return content
