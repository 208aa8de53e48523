"""Daily screening: debate every candidate, then rank them into a Top-5."""

import asyncio
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from pathlib import Path

import yaml

from config.config_loader import DebateSettings
from stockhero.debate import DebateOrchestrator
from stockhero.events import FatalErrorEvent
from stockhero.models import PersonaId, SymbolEvaluation, Top5Result
from stockhero.providers.base import GenerationAdapter
from stockhero.selection import select_top5

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    symbol: str
    name: str
    current_price: float
    sector: str = ""


def load_candidates(path: Path) -> list[Candidate]:
    """Read a YAML candidate list.

    Accepts either a top-level list or a mapping with a `candidates` list.
    Each entry needs `symbol`, `name` and `price`; `sector` is optional.
    Repeated symbols keep their first entry.

    Raises:
        FileNotFoundError: If the file is missing.
        ValueError: If an entry is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Candidates file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or []
    if isinstance(raw, dict):
        raw = raw.get("candidates", [])
    if not isinstance(raw, list):
        raise ValueError(f"Expected a list of candidates in {path}")

    candidates: list[Candidate] = []
    seen: set[str] = set()
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict) or not {"symbol", "name", "price"} <= entry.keys():
            raise ValueError(f"Candidate #{i + 1} in {path} needs symbol, name and price")
        symbol = str(entry["symbol"])
        if symbol in seen:
            logger.warning("Duplicate candidate %s in %s, keeping the first", symbol, path)
            continue
        try:
            price = float(entry["price"])
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Candidate {symbol} in {path} has a non-numeric price: {entry['price']!r}") from exc
        if not math.isfinite(price) or price <= 0:
            raise ValueError(f"Candidate {symbol} in {path} needs a positive price, got {entry['price']!r}")
        seen.add(symbol)
        candidates.append(
            Candidate(
                symbol=symbol,
                name=str(entry["name"]),
                current_price=price,
                sector=str(entry.get("sector", "")),
            )
        )
    return candidates


async def evaluate_candidate(
    candidate: Candidate,
    adapters: Mapping[PersonaId, GenerationAdapter],
    settings: DebateSettings,
    rounds: int = 1,
    timeout_sec: float | None = None,
) -> SymbolEvaluation | None:
    """Debate one candidate for `rounds` rounds and fold the result.

    Returns None when no persona ever produced a score.
    """
    orchestrator = DebateOrchestrator(
        session_id=f"screen-{candidate.symbol}-{date.today().isoformat()}",
        symbol=candidate.symbol,
        symbol_name=candidate.name,
        current_price=candidate.current_price,
        adapters=adapters,
        settings=settings,
    )
    for _ in range(rounds):
        events = await orchestrator.run_round(timeout_sec=timeout_sec)
        if any(isinstance(e, FatalErrorEvent) for e in events):
            logger.warning("Screening of %s stopped at round %d", candidate.symbol, orchestrator.current_round)
            break
    orchestrator.close()

    if not orchestrator.latest_scores:
        logger.warning("No persona scored %s, skipping", candidate.symbol)
        return None
    return orchestrator.to_evaluation(sector=candidate.sector)


async def evaluate_candidates(
    candidates: list[Candidate],
    adapters: Mapping[PersonaId, GenerationAdapter],
    settings: DebateSettings,
    rounds: int = 1,
    concurrency: int | None = None,
    timeout_sec: float | None = None,
) -> list[SymbolEvaluation]:
    """Evaluate candidates concurrently, one independent session each.

    A candidate whose debate raises is logged and left out of the results.
    """
    if not 1 <= rounds <= settings.max_rounds:
        raise ValueError(f"rounds must be between 1 and {settings.max_rounds}, got {rounds}")
    semaphore = asyncio.Semaphore(concurrency or settings.screening_concurrency)

    async def _bounded(candidate: Candidate) -> SymbolEvaluation | None:
        async with semaphore:
            try:
                return await evaluate_candidate(candidate, adapters, settings, rounds, timeout_sec)
            except Exception:
                logger.exception("Screening of %s failed, skipping", candidate.symbol)
                return None

    results = await asyncio.gather(*(_bounded(c) for c in candidates))
    return [r for r in results if r is not None]


async def run_daily_top5(
    candidates: list[Candidate],
    adapters: Mapping[PersonaId, GenerationAdapter],
    settings: DebateSettings,
    rounds: int = 1,
    concurrency: int | None = None,
    timeout_sec: float | None = None,
) -> Top5Result:
    logger.info("Screening %d candidates over %d round(s)", len(candidates), rounds)
    evaluations = await evaluate_candidates(candidates, adapters, settings, rounds, concurrency, timeout_sec)
    result = select_top5(evaluations, limit=settings.top_n)
    logger.info(
        "Top-%d selected from %d evaluated (%d unanimous)",
        len(result.picks),
        result.total_candidates,
        result.unanimous_count,
    )
    return result
