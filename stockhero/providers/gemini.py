"""Gemini persona adapter on the google-genai SDK (client.aio)."""

import logging

from google import genai
from google.genai import types as genai_types

from config.config_loader import ModelConfig, PromptsConfig
from stockhero.providers.base import GenerationError, LLMAdapter

logger = logging.getLogger(__name__)


class GeminiAdapter(LLMAdapter):
    def __init__(self, config: ModelConfig, prompts: PromptsConfig) -> None:
        super().__init__(config, prompts)
        self._client = genai.Client(api_key=self._require_api_key())

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        response = await self._send(
            self._client.aio.models.generate_content(
                model=self._config.model,
                contents=prompt,
                config=genai_types.GenerateContentConfig(max_output_tokens=max_tokens),
            )
        )
        if not response.text:
            raise GenerationError(self._config.name, "Empty response text")

        if response.usage_metadata:
            logger.debug("Gemini usage: %s tokens", response.usage_metadata.total_token_count)
        return response.text
