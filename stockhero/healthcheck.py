"""Adapter health checks: ping every persona's model before a debate."""

import asyncio
import logging

from stockhero.models import PersonaId
from stockhero.providers.base import GenerationAdapter

logger = logging.getLogger(__name__)

_TIMEOUT_SEC = 15.0


async def _check_one(persona_id: PersonaId, adapter: GenerationAdapter) -> tuple[PersonaId, bool, str]:
    """Ping a single adapter. Returns (persona, ok, error_message)."""
    try:
        await asyncio.wait_for(adapter.ping(), timeout=_TIMEOUT_SEC)
        return persona_id, True, ""
    except TimeoutError:
        return persona_id, False, f"No reply within {_TIMEOUT_SEC}s"
    except Exception as exc:
        return persona_id, False, str(exc)


async def run_health_checks(
    adapters: dict[PersonaId, GenerationAdapter],
) -> dict[PersonaId, tuple[bool, str]]:
    """Ping all adapters in parallel.

    Returns:
        Dict mapping persona -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(p, a) for p, a in adapters.items()))
    for persona_id, ok, err in results:
        if not ok:
            logger.warning("Health check failed for %s: %s", persona_id.value, err)
    return {persona_id: (ok, err) for persona_id, ok, err in results}
