"""Cross-instrument Top-5 selection. Pure functions, no I/O."""

from collections.abc import Iterable, Mapping

from stockhero.models import PersonaId, RankedPick, SymbolEvaluation, Top5Result

DEFAULT_UNANIMOUS_THRESHOLD = 4
DEFAULT_TOP_N = 5
_RATIONALE_RISKS = 2


def build_evaluation(
    symbol_id: str,
    scores: Mapping[PersonaId, int],
    risks: Iterable[Iterable[str]] = (),
    unanimous_threshold: int = DEFAULT_UNANIMOUS_THRESHOLD,
    name: str = "",
    sector: str = "",
) -> SymbolEvaluation:
    """Build a SymbolEvaluation from 1-3 persona scores.

    `avg_score` is the exact mean of the given scores. Unanimity needs all
    three personas at or above the threshold. Risk lists are merged in order,
    without duplicates.

    Raises:
        ValueError: If there are no scores or a score is outside [1, 5].
    """
    if not scores:
        raise ValueError(f"No persona scores for {symbol_id}")
    for persona_id, score in scores.items():
        if isinstance(score, bool) or not isinstance(score, int) or not 1 <= score <= 5:
            raise ValueError(f"Score for {persona_id.value} on {symbol_id} outside [1, 5]: {score!r}")

    values = list(scores.values())
    has_unanimous = len(values) == len(PersonaId) and all(s >= unanimous_threshold for s in values)

    flags: list[str] = []
    for persona_risks in risks:
        for risk in persona_risks:
            risk = risk.strip()
            if risk and risk not in flags:
                flags.append(risk)

    return SymbolEvaluation(
        symbol_id=symbol_id,
        scores=dict(scores),
        avg_score=sum(values) / len(values),
        has_unanimous=has_unanimous,
        risk_flags=tuple(flags),
        name=name,
        sector=sector,
    )


def _rank_key(evaluation: SymbolEvaluation) -> tuple:
    return (
        -evaluation.avg_score,
        not evaluation.has_unanimous,
        len(evaluation.risk_flags),
        evaluation.symbol_id,
    )


def rationale_for(evaluation: SymbolEvaluation) -> str:
    """Template rationale: average score, unanimity, up to two risk flags."""
    analysts = len(evaluation.scores)
    parts = [f"Average score {evaluation.avg_score:.2f}/5 from {analysts} analyst{'s' if analysts != 1 else ''}"]
    if evaluation.has_unanimous:
        parts.append("unanimous positive view")
    else:
        parts.append("not unanimous")
    text = "; ".join(parts) + "."
    watch = evaluation.risk_flags[:_RATIONALE_RISKS]
    if watch:
        text += f" Watch: {', '.join(watch)}."
    return text


def summarize(picks: list[RankedPick]) -> str:
    """One-paragraph summary of a selection."""
    if not picks:
        return "No candidates were evaluated."

    unanimous = sum(1 for p in picks if p.has_unanimous)
    if unanimous == len(picks):
        text = f"All {len(picks)} picks earned a unanimous positive score from the three analysts."
    elif unanimous:
        text = f"{unanimous} of {len(picks)} picks earned unanimous agreement."
    else:
        text = "No unanimous picks; ranked by average score and risk profile."

    sectors: list[str] = []
    for pick in picks:
        sector = pick.evaluation.sector
        if sector and sector not in sectors:
            sectors.append(sector)
    if sectors and len(sectors) <= 2:
        text += f" Preference is concentrated in {', '.join(sectors)}."
    elif sectors:
        text += f" Picks are spread across {len(sectors)} sectors."
    return text


def select_top5(evaluations: Iterable[SymbolEvaluation], limit: int = DEFAULT_TOP_N) -> Top5Result:
    """Rank evaluations and keep the best `limit`.

    Order: average score descending, then unanimous first, then fewer risk
    flags, then symbol id ascending. The result does not depend on input
    order. `unanimous_count` counts every evaluation, not just the picks.

    Raises:
        ValueError: If two evaluations share a symbol id.
    """
    evaluations = list(evaluations)
    seen: set[str] = set()
    for evaluation in evaluations:
        if evaluation.symbol_id in seen:
            raise ValueError(f"Duplicate evaluation for {evaluation.symbol_id}")
        seen.add(evaluation.symbol_id)

    ordered = sorted(evaluations, key=_rank_key)[: max(0, limit)]
    picks = [
        RankedPick(
            rank=rank,
            symbol_id=evaluation.symbol_id,
            avg_score=evaluation.avg_score,
            has_unanimous=evaluation.has_unanimous,
            rationale=rationale_for(evaluation),
            evaluation=evaluation,
        )
        for rank, evaluation in enumerate(ordered, start=1)
    ]
    return Top5Result(
        picks=picks,
        total_candidates=len(evaluations),
        unanimous_count=sum(1 for e in evaluations if e.has_unanimous),
        summary=summarize(picks),
    )
