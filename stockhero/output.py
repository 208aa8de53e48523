"""Rich console output and markdown transcript save for debates and Top-5 runs."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from stockhero.debate import DebateOrchestrator
from stockhero.events import FatalErrorEvent, MessageEvent, PersonaErrorEvent, RoundCompleteEvent, RoundEvent
from stockhero.models import DebateMessage, Top5Result
from stockhero.personas import persona_name

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _format_price(value: float | None) -> str:
    return "n/a" if value is None else f"{value:,.0f}"


def _message_preview(message: DebateMessage, words: int = 60) -> str:
    """Return first N words of a message."""
    all_words = message.content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def print_event(event: RoundEvent) -> None:
    """Render one streamed round event."""
    if isinstance(event, MessageEvent):
        m = event.message
        risks = "; ".join(m.risks) if m.risks else "none listed"
        console.print(
            Panel(
                f"{_message_preview(m)}\n\n[dim]Risks: {risks}[/dim]",
                title=f"[bold]{persona_name(m.persona)}[/bold] | score {m.score}/5",
                subtitle=f"target {_format_price(m.target_price)}",
                border_style="cyan",
            )
        )
    elif isinstance(event, PersonaErrorEvent):
        console.print(f"  [yellow]{persona_name(event.persona)} sat this round out:[/yellow] {event.reason}")
    elif isinstance(event, RoundCompleteEvent):
        print_round_summary(event)
    elif isinstance(event, FatalErrorEvent):
        console.print(f"[bold red]Round aborted:[/bold red] {event.reason}")


def print_round_summary(event: RoundCompleteEvent) -> None:
    console.print(Rule(f"[bold cyan]Round {event.round_number} Summary[/bold cyan]"))
    consensus = "n/a" if event.consensus_score is None else f"{event.consensus_score:.2f}/5"
    agreement = "[green]agreement[/green]" if event.has_consensus else "[yellow]split[/yellow]"
    targets = ", ".join(
        f"{persona_name(p)} {_format_price(t)}" for p, t in event.targets.per_persona.items()
    ) or "none"
    console.print(
        Text.from_markup(
            f"Consensus: {consensus} ({agreement}) | Mean target: {_format_price(event.targets.mean)} | {targets}"
        )
    )
    if event.is_session_complete:
        console.print("[bold green]Debate complete.[/bold green]")


def print_top5(result: Top5Result) -> None:
    """Print the ranked selection as a table."""
    console.print(Rule("[bold green]Daily Top 5[/bold green]"))
    table = Table(show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Symbol")
    table.add_column("Name")
    table.add_column("Avg", justify="right")
    table.add_column("Unanimous", justify="center")
    table.add_column("Rationale")
    for pick in result.picks:
        table.add_row(
            str(pick.rank),
            pick.symbol_id,
            pick.evaluation.name,
            f"{pick.avg_score:.2f}",
            "yes" if pick.has_unanimous else "-",
            pick.rationale,
        )
    console.print(table)
    console.print(
        Text(
            f"{result.total_candidates} candidates | {result.unanimous_count} unanimous | {result.summary}",
            style="dim",
        )
    )


def save_transcript(orchestrator: DebateOrchestrator, output_dir: Path) -> Path:
    """Save the session's messages and final consensus as a markdown file.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"{timestamp}_{_slug(orchestrator.symbol + '-' + orchestrator.symbol_name)}.md"
    filepath = output_dir / filename

    targets = orchestrator.get_targets()
    consensus = orchestrator.get_consensus()
    lines: list[str] = [
        f"# StockHero Debate: {orchestrator.symbol_name} ({orchestrator.symbol})",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Session:** {orchestrator.session_id}",
        f"**Current price:** {_format_price(orchestrator.current_price)}",
        f"**Rounds:** {orchestrator.current_round}/{orchestrator.max_rounds}",
        f"**Consensus:** {'n/a' if consensus is None else f'{consensus:.2f}/5'}"
        + (" (agreement)" if orchestrator.has_consensus else " (split)"),
        f"**Mean target:** {_format_price(targets.mean)}",
        "",
        "---",
        "",
    ]

    for round_number in range(1, orchestrator.current_round + 1):
        lines.append(f"## Round {round_number}")
        lines.append("")
        for message in orchestrator.round_messages(round_number):
            lines.append(f"### {persona_name(message.persona)}")
            lines.append("")
            lines.append(message.content)
            lines.append("")
            lines.append(f"*Score: {message.score}/5 | Target: {_format_price(message.target_price)}*")
            if message.risks:
                lines.append("")
                lines.extend(f"- {risk}" for risk in message.risks)
            lines.append("")
        for failure in orchestrator.failures:
            if failure.round_number == round_number:
                lines.append(f"> {persona_name(failure.persona)} did not respond: {failure.reason}")
                lines.append("")

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Debate saved to: %s", filepath)
    return filepath
