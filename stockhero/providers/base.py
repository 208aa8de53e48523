"""Generation adapter boundary: abstract base, prompt building, reply parsing."""

import asyncio
import json
import logging
import math
import os
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import Any

from config.config_loader import ModelConfig, PromptsConfig
from stockhero.models import DebateMessage, GenerationRequest, GenerationResult
from stockhero.personas import persona_name

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


class GenerationError(Exception):
    """Raised when one persona's generation fails. Never fatal to a round."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class MalformedOutputError(GenerationError):
    """Adapter replied, but the reply is missing fields or out of range."""


class FatalGenerationError(Exception):
    """Aborts the whole round (e.g. the symbol is not tradable)."""


class GenerationAdapter(ABC):
    """Produces one persona's structured analysis for one round."""

    @abstractmethod
    def name(self) -> str:
        """Return the short adapter name (e.g. 'claude', 'mock')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate a structured result for the given request.

        Raises:
            GenerationError: On API failure, timeout, or unparseable reply.
            FatalGenerationError: When the round cannot proceed at all.
        """
        ...

    def timeout_sec(self) -> float | None:
        """Per-call bound the orchestrator applies when the caller gives none."""
        return None

    async def ping(self) -> None:
        """Cheap connectivity check. Raises on failure."""
        return None


def _format_messages(messages: tuple[DebateMessage, ...]) -> str:
    if not messages:
        return "(none)"
    return "\n\n".join(
        f"{persona_name(m.persona)} (round {m.round_number}, score {m.score}/5, "
        f"target {m.target_price:,.0f}): {m.content}"
        for m in messages
    )


def build_prompt(prompts: PromptsConfig, request: GenerationRequest) -> str:
    """Render the opening or rebuttal template for a request.

    The first persona of the first round gets the opening template; everyone
    who can see earlier messages gets the rebuttal template.
    """
    persona = request.persona
    template = prompts.rebuttal if (request.prior_messages or request.transcript) else prompts.opening
    previous_target = f"{request.previous_target:,.0f}" if request.previous_target is not None else "none yet"
    body = template.format(
        name=persona.name,
        title=persona.title,
        style=persona.style,
        focus=", ".join(persona.focus),
        symbol=request.symbol,
        symbol_name=request.symbol_name,
        current_price=f"{request.current_price:,.0f}",
        round=request.round_number,
        previous_target=previous_target,
        transcript=_format_messages(request.transcript),
        prior_messages=_format_messages(request.prior_messages),
    )
    if prompts.format_instructions:
        body = f"{body.rstrip()}\n\n{prompts.format_instructions.strip()}"
    return body


def _number(value: object, field_name: str, provider_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise MalformedOutputError(provider_name, f"'{field_name}' is not a number: {value!r}")
    try:
        number = float(str(value).replace(",", ""))
    except ValueError as exc:
        raise MalformedOutputError(provider_name, f"'{field_name}' is not a number: {value!r}") from exc
    if not math.isfinite(number):
        raise MalformedOutputError(provider_name, f"'{field_name}' is not finite: {value!r}")
    return number


def parse_generation(text: str, provider_name: str) -> GenerationResult:
    """Extract the JSON object from a model reply.

    Accepts fenced or bare JSON, with prose around it. Risks may be a list or
    a comma-separated string. Range checks happen in the orchestrator.

    Raises:
        MalformedOutputError: If no object is found or a field is missing
            or invalid.
    """
    cleaned = _FENCE_RE.sub("", text.strip())
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise MalformedOutputError(provider_name, "No JSON object in reply")
    try:
        data = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as exc:
        raise MalformedOutputError(provider_name, f"Invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedOutputError(provider_name, "Reply is not a JSON object")

    missing = [k for k in ("content", "score", "target_price") if k not in data]
    if missing:
        raise MalformedOutputError(provider_name, f"Missing fields: {', '.join(missing)}")

    content = data["content"]
    if not isinstance(content, str):
        raise MalformedOutputError(provider_name, "'content' is not a string")

    risks_raw = data.get("risks", [])
    if isinstance(risks_raw, str):
        risks = [r.strip() for r in risks_raw.split(",") if r.strip()]
    elif isinstance(risks_raw, list):
        risks = [str(r).strip() for r in risks_raw if str(r).strip()]
    else:
        raise MalformedOutputError(provider_name, "'risks' is neither a list nor a string")

    return GenerationResult(
        content=content.strip(),
        score=round(_number(data["score"], "score", provider_name)),
        target_price=_number(data["target_price"], "target_price", provider_name),
        risks=risks,
    )


class LLMAdapter(GenerationAdapter):
    """Shared prompt/parse flow for SDK-backed adapters.

    Subclasses implement `_complete`, which sends one prompt and returns the
    reply text, raising GenerationError on timeout or API failure.
    """

    def __init__(self, config: ModelConfig, prompts: PromptsConfig) -> None:
        self._config = config
        self._prompts = prompts

    def _require_api_key(self) -> str:
        api_key = os.environ.get(self._config.api_key_env, "").strip()
        if not api_key:
            raise GenerationError(self._config.name, f"Missing API key: {self._config.api_key_env}")
        return api_key

    async def _send(self, call: Awaitable[Any]) -> Any:
        """Await one SDK call under the configured timeout."""
        try:
            return await asyncio.wait_for(call, timeout=self._config.timeout_sec)
        except TimeoutError as exc:
            raise GenerationError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise GenerationError(self._config.name, f"API call failed: {exc}") from exc

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    def timeout_sec(self) -> float | None:
        return float(self._config.timeout_sec)

    @abstractmethod
    async def _complete(self, prompt: str, max_tokens: int) -> str:
        ...

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        prompt = build_prompt(self._prompts, request)
        start = time.monotonic()
        text = await self._complete(prompt, self._config.max_tokens)
        result = parse_generation(text, self._config.name)
        logger.info(
            "%s round %d on %s: %.2fs, score %s",
            self._config.name,
            request.round_number,
            request.symbol,
            time.monotonic() - start,
            result.score,
        )
        return result

    async def ping(self) -> None:
        await self._complete(_PING_PROMPT, 16)
