"""Click CLI: loads config, builds persona adapters, runs debates and the daily Top-5."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from stockhero.errors import ArenaError, QuotaExceededError, UpgradeRequiredError
from stockhero.healthcheck import run_health_checks
from stockhero.models import PersonaId
from stockhero.output import print_event, print_top5, save_transcript
from stockhero.personas import persona_name
from stockhero.providers.base import GenerationAdapter
from stockhero.providers.factory import build_adapters
from stockhero.providers.mock import MockAdapter
from stockhero.screening import load_candidates, run_daily_top5
from stockhero.service import DebateService, build_service

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _load_config_or_exit() -> AppConfig:
    try:
        return load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)


def _check_adapters(adapters: dict[PersonaId, GenerationAdapter]) -> dict[PersonaId, GenerationAdapter]:
    """Run health checks, print results, and ask what to do on failures.

    Every persona must take part, so a failed persona is swapped for its
    offline mock analyst. Exits if the user declines.
    """
    console.print("\n[bold]Checking analysts...[/bold]")
    results = asyncio.run(run_health_checks(adapters))

    failed: list[PersonaId] = []
    for persona_id in sorted(results, key=lambda p: p.value):
        ok, err = results[persona_id]
        label = f"{persona_name(persona_id)} ({adapters[persona_id].model_string()})"
        if ok:
            console.print(f"  [green]OK  [/green] {label}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {label}: {short_err}")
            failed.append(persona_id)

    if not failed:
        console.print()
        return adapters

    console.print(f"\n[yellow]{len(failed)} analyst(s) failed:[/yellow] {', '.join(p.value for p in failed)}")
    if not click.confirm("Continue with offline mock analysts in their place?", default=True):
        sys.exit(0)

    console.print()
    return {p: (MockAdapter(p) if p in failed else a) for p, a in adapters.items()}


async def _run_debate(
    service: DebateService,
    user_id: str,
    plan: str,
    symbol: str,
    symbol_name: str,
    price: float,
    rounds: int,
    output_dir: Path,
) -> Path:
    """Open a session, stream each round to the console and save the transcript."""
    orchestrator, _ = service.start_debate(user_id, plan, symbol, symbol_name, price)
    usage = service.usage(user_id, plan)
    limit = "unlimited" if usage.limit < 0 else str(usage.limit)
    console.print(
        f"\n[bold cyan]StockHero Arena[/bold cyan] - {symbol_name} ({symbol}) at {price:,.0f}, {rounds} round(s)"
    )
    console.print(f"[dim]Plan {plan}: {usage.used}/{limit} debates used today[/dim]\n")

    try:
        for _ in range(rounds):
            stream = service.advance_round(orchestrator.session_id, symbol)
            async with stream:
                async for event in stream:
                    print_event(event)
            if orchestrator.is_complete:
                break
        return save_transcript(orchestrator, output_dir)
    finally:
        service.end_debate(orchestrator.session_id)


@click.group()
def cli() -> None:
    """StockHero Arena -- three AI analysts debate a stock."""


@cli.command()
@click.argument("symbol")
@click.option("--name", "symbol_name", default=None, help="Display name of the stock (default: SYMBOL)")
@click.option("--price", required=True, type=float, help="Current share price")
@click.option("--rounds", default=None, type=int, help="Number of rounds (default: from config)")
@click.option("--user", "user_id", default="local", help="User id charged for the debate")
@click.option("--plan", default="free", help="Subscription plan of the user")
@click.option("--mock", "use_mock", is_flag=True, help="Use offline mock analysts only")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the API connectivity check")
def debate(
    symbol: str,
    symbol_name: str | None,
    price: float,
    rounds: int | None,
    user_id: str,
    plan: str,
    use_mock: bool,
    output_path: str | None,
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Run a multi-round debate on SYMBOL.

    \b
    Examples:
      stockhero debate 005930 --name "Samsung Electronics" --price 71500 --mock
      stockhero debate 000660 --price 182000 --rounds 2 --plan pro
    """
    load_dotenv()
    _setup_logging(verbose)
    config = _load_config_or_exit()

    effective_rounds = rounds if rounds is not None else config.debate.default_rounds
    if not 1 <= effective_rounds <= config.debate.max_rounds:
        raise click.BadParameter(
            f"must be between 1 and {config.debate.max_rounds}", param_hint="--rounds"
        )
    if price <= 0:
        raise click.BadParameter("must be positive", param_hint="--price")
    effective_output = Path(output_path) if output_path else config.debate.output_dir

    adapters = build_adapters(config, use_mock=use_mock)
    if not use_mock and not skip_health_check:
        adapters = _check_adapters(adapters)

    service = build_service(config, adapters)
    try:
        saved = asyncio.run(
            _run_debate(
                service,
                user_id=user_id,
                plan=plan,
                symbol=symbol,
                symbol_name=symbol_name or symbol,
                price=price,
                rounds=effective_rounds,
                output_dir=effective_output,
            )
        )
    except QuotaExceededError as exc:
        console.print(
            f"[bold red]Quota exceeded:[/bold red] {exc.used}/{exc.limit} debates used today; "
            f"resets at {exc.reset_at:%Y-%m-%d %H:%M %Z}"
        )
        sys.exit(2)
    except UpgradeRequiredError as exc:
        console.print(f"[bold red]Upgrade required:[/bold red] {exc}")
        sys.exit(2)
    except ArenaError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)
    console.print(f"\n[dim]Saved to: {saved}[/dim]")


@cli.command()
@click.argument("candidates_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--rounds", default=1, show_default=True, type=int, help="Debate rounds per candidate")
@click.option("--concurrency", default=None, type=int, help="Candidates debated at once (default: from config)")
@click.option("--mock", "use_mock", is_flag=True, help="Use offline mock analysts only")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def top5(candidates_file: Path, rounds: int, concurrency: int | None, use_mock: bool, verbose: bool) -> None:
    """Screen the candidates in CANDIDATES_FILE and print the daily Top-5."""
    load_dotenv()
    _setup_logging(verbose)
    config = _load_config_or_exit()

    if not 1 <= rounds <= config.debate.max_rounds:
        raise click.BadParameter(f"must be between 1 and {config.debate.max_rounds}", param_hint="--rounds")
    try:
        candidates = load_candidates(candidates_file)
    except ValueError as exc:
        console.print(f"[bold red]Candidates error:[/bold red] {exc}")
        sys.exit(1)

    adapters = build_adapters(config, use_mock=use_mock)
    result = asyncio.run(run_daily_top5(candidates, adapters, config.debate, rounds, concurrency))
    print_top5(result)


def main() -> None:
    # Model replies may contain characters the Windows console codepage cannot encode.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")
    cli()


if __name__ == "__main__":
    main()
