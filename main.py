"""
AdRoom - Main Entry Point

CLI for running the AdRoom automation passes: optimization, content
execution, the autonomous worker, platform intelligence, and strategy
generation. `serve` runs every pass on its own interval.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adroom.config.loader import load_settings, missing_env_vars
from adroom.config.schema import AdRoomSettings
from adroom.exceptions import AdRoomError, ConfigurationError
from adroom.observability.logging_config import configure_logging

# Load environment (override=True to ensure .env values take precedence)
root_env = Path(__file__).parent / ".env"
if root_env.exists():
    load_dotenv(root_env, override=True)
else:
    load_dotenv(override=True)

app = typer.Typer(
    name="adroom",
    help="AdRoom - autonomous ad optimization and engagement",
)
console = Console()

configure_logging()
logger = logging.getLogger("adroom")


def _get_settings(config_path: Optional[Path] = None) -> AdRoomSettings:
    """Load settings, with a friendly error on failure."""
    try:
        return load_settings(config_path)
    except ConfigurationError as e:
        console.print(Panel(
            f"[red]Invalid settings:[/] {e}",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)


def _check_env_key(var_name: str, label: str) -> str:
    """Check that an environment variable is set. Shows a friendly error if missing."""
    value = os.environ.get(var_name, "").strip()
    if not value:
        console.print(Panel(
            f"[red]Missing required key:[/] [bold]{var_name}[/]\n\n"
            f"This key is needed for: [cyan]{label}[/]\n\n"
            f"Set it in your .env file:\n"
            f"  [dim]{var_name}=your_key_here[/]",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)
    return value


def _init_db():
    from adroom.integrations.supabase_client import AdRoomDB

    _check_env_key("SUPABASE_URL", "Database connection")
    _check_env_key("SUPABASE_SERVICE_KEY", "Database authentication")
    return AdRoomDB()


def _init_text_client(settings: AdRoomSettings):
    from openai import OpenAI

    from adroom.llm.text_client import TextClient

    _check_env_key("OPENAI_API_KEY", "Content and strategy generation (OpenAI)")
    return TextClient(openai_client=OpenAI(), settings=settings.llm)


def _init_components(settings: AdRoomSettings):
    """Initialize the store, ad platform and text clients."""
    from adroom.integrations.facebook_client import FacebookAdsClient

    db = _init_db()
    text_client = _init_text_client(settings)
    return db, FacebookAdsClient(), text_client


def _build_passes(settings: AdRoomSettings):
    from adroom.intelligence.platform_intelligence import PlatformIntelligenceEngine
    from adroom.optimization.execution_engine import ExecutionEngine
    from adroom.optimization.optimization_loop import OptimizationLoop
    from adroom.safety.moderation import ContentModerator
    from adroom.strategy.learning_loop import LearningLoop
    from adroom.workers.autonomous_worker import AutonomousWorker

    db, ads, text_client = _init_components(settings)
    return {
        "worker": AutonomousWorker(
            db, ads, text_client,
            moderator=ContentModerator(),
            settings=settings.worker,
        ),
        "execution": ExecutionEngine(db, ads),
        "intelligence": PlatformIntelligenceEngine(
            db, text_client, settings.intelligence
        ),
        "optimization": OptimizationLoop(db, ads, settings.optimization),
        "learning": LearningLoop(db, text_client, settings.learning),
    }


# =========================================================================
# Commands
# =========================================================================


@app.command(name="check-config")
def check_config(
    config: Optional[Path] = typer.Option(None, help="Path to adroom.yaml"),
):
    """Validate settings and report missing environment variables."""
    settings = _get_settings(config)
    missing = missing_env_vars()

    table = Table(title="AdRoom Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Environment", settings.environment)
    table.add_row("LLM model", settings.llm.model)
    table.add_row("Default target ROAS", f"{settings.optimization.default_target_roas:.2f}")
    table.add_row("Fallback daily budget", str(settings.optimization.fallback_daily_budget))
    table.add_row("Post window", f"{settings.worker.post_window_hours}h")
    table.add_row("Lead follow-up after", f"{settings.worker.follow_up_after_hours}h")
    table.add_row("Intelligence sources", str(len(settings.intelligence.sources)))
    table.add_row(
        "Schedule (min)",
        f"worker={settings.schedule.worker_minutes} "
        f"execution={settings.schedule.execution_minutes} "
        f"intelligence={settings.schedule.intelligence_minutes} "
        f"optimization={settings.schedule.optimization_minutes} "
        f"learning={settings.schedule.learning_minutes}",
    )
    console.print(table)

    if missing:
        console.print(f"[red]Missing environment variables:[/] {', '.join(missing)}")
        raise typer.Exit(code=1)
    console.print("[green]Configuration valid![/]")


@app.command()
def optimize(
    config: Optional[Path] = typer.Option(None, help="Path to adroom.yaml"),
):
    """Run one optimization pass over active paid strategies."""

    async def _run():
        from adroom.integrations.facebook_client import FacebookAdsClient
        from adroom.optimization.optimization_loop import OptimizationLoop

        settings = _get_settings(config)
        loop = OptimizationLoop(_init_db(), FacebookAdsClient(), settings.optimization)
        results = await loop.run()

        if not results:
            console.print("[yellow]No optimization actions triggered.[/]")
            return

        table = Table(title=f"Optimization Actions: {len(results)}")
        table.add_column("Strategy", style="cyan")
        table.add_column("Action", style="white")
        table.add_column("Ratio", style="yellow")
        table.add_column("Budget", style="green")
        table.add_column("API", style="blue")

        for r in results:
            budget = (
                f"{r.budget_before} → {r.budget_after}"
                if r.budget_after is not None else "-"
            )
            table.add_row(
                r.strategy_id,
                r.action.value,
                f"{r.performance_ratio:.2f}",
                budget,
                "[green]yes[/]" if r.api_executed else "[red]no[/]",
            )
        console.print(table)

    asyncio.run(_run())


@app.command()
def execute(
    config: Optional[Path] = typer.Option(None, help="Path to adroom.yaml"),
):
    """Publish due calendar posts, ingest metrics, enforce budgets."""

    async def _run():
        from adroom.integrations.facebook_client import FacebookAdsClient
        from adroom.optimization.execution_engine import ExecutionEngine

        _get_settings(config)
        engine = ExecutionEngine(_init_db(), FacebookAdsClient())
        report = await engine.run()

        table = Table(title="Execution Results")
        table.add_column("Metric", style="cyan")
        table.add_column("Count", style="white")
        table.add_row("[green]Posts Published[/]", str(len(report.posts_published)))
        table.add_row("[red]Posts Failed[/]", str(len(report.posts_failed)))
        table.add_row("Metrics Updated", str(len(report.metrics_updated)))
        table.add_row("[yellow]Paused (budget)[/]", str(len(report.strategies_paused)))
        console.print(table)

        for failure in report.posts_failed:
            console.print(
                f"  [red]FAILED[/] {failure['strategy_id']}/{failure['post_id']}: "
                f"{failure['error']}"
            )

    asyncio.run(_run())


@app.command()
def worker(
    event: Optional[Path] = typer.Option(
        None, help="Handle one webhook payload (JSON file) instead of a sweep"
    ),
    config: Optional[Path] = typer.Option(None, help="Path to adroom.yaml"),
):
    """Run one autonomous worker sweep (daily posts, replies, follow-ups)."""

    async def _run():
        from adroom.safety.moderation import ContentModerator
        from adroom.workers.autonomous_worker import AutonomousWorker

        settings = _get_settings(config)
        db, ads, text_client = _init_components(settings)
        autonomous = AutonomousWorker(
            db, ads, text_client,
            moderator=ContentModerator(),
            settings=settings.worker,
        )

        if event is not None:
            payload = json.loads(event.read_text())
            result = await autonomous.handle_event(payload)
            console.print_json(data=result)
            return

        report = await autonomous.run()

        table = Table(title="Worker Sweep")
        table.add_column("Metric", style="cyan")
        table.add_column("Count", style="white")
        table.add_row("[green]Posts Published[/]", str(report.posts_published))
        table.add_row("Posts Skipped (recent)", str(report.posts_skipped))
        table.add_row("[yellow]Posts Blocked[/]", str(report.posts_blocked))
        table.add_row("No Ad Config", str(report.users_without_config))
        table.add_row("Interactions Handled", str(report.interactions_handled))
        table.add_row("Leads Followed Up", str(report.leads_followed_up))
        table.add_row("[red]Errors[/]", str(len(report.errors)))
        console.print(table)

    asyncio.run(_run())


@app.command()
def intelligence(
    config: Optional[Path] = typer.Option(None, help="Path to adroom.yaml"),
):
    """Run one platform intelligence cycle."""

    async def _run():
        from adroom.intelligence.platform_intelligence import PlatformIntelligenceEngine

        settings = _get_settings(config)
        engine = PlatformIntelligenceEngine(
            _init_db(), _init_text_client(settings), settings.intelligence
        )
        result = await engine.run_cycle()

        table = Table(title="Intelligence Cycle")
        table.add_column("Signal", style="cyan")
        table.add_column("Count", style="white")
        table.add_row("Algorithm Shifts", str(len(result.shifts)))
        table.add_row("Trend Forecasts", str(len(result.trends)))
        table.add_row("Opportunities", str(len(result.opportunities)))
        table.add_row("Compliance Risks", str(len(result.risks)))
        table.add_row("[green]Logged[/]", str(result.dispatched))
        console.print(table)

    asyncio.run(_run())


@app.command()
def learn(
    config: Optional[Path] = typer.Option(None, help="Path to adroom.yaml"),
):
    """Learn from recently finished strategies."""

    async def _run():
        from adroom.strategy.learning_loop import LearningLoop

        settings = _get_settings(config)
        loop = LearningLoop(
            _init_db(), _init_text_client(settings), settings.learning
        )
        report = await loop.run()

        table = Table(title="Learning Loop")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Strategies Analyzed", str(report.strategies_analyzed))
        table.add_row("Profiles Updated", str(report.profiles_updated))
        table.add_row("Global Stats Updated", str(report.global_updates))
        table.add_row("[red]Errors[/]", str(len(report.errors)))
        console.print(table)

    asyncio.run(_run())


@app.command()
def strategy(
    user_id: str = typer.Argument(..., help="User ID"),
    goal: str = typer.Option(..., help="Marketing goal (e.g. 'sales')"),
    duration: int = typer.Option(30, help="Duration in days"),
    context_id: Optional[str] = typer.Option(None, help="Product/service/brand ID"),
    context_type: str = typer.Option("product", help="product, service or brand"),
    config: Optional[Path] = typer.Option(None, help="Path to adroom.yaml"),
):
    """Generate a free vs. paid strategy for a user."""

    async def _run():
        from adroom.memory.retriever import MemoryRetriever
        from adroom.strategy.decision_engine import DecisionEngine

        settings = _get_settings(config)
        db = _init_db()
        context = MemoryRetriever(db).get_context(user_id, context_id, context_type)
        if context.is_degraded:
            console.print(
                f"[yellow]⚠ Some memory reads failed: {', '.join(context.errors)}[/]"
            )

        engine = DecisionEngine(_init_text_client(settings))
        decision = await engine.generate_strategy(context, goal, duration)

        console.print(Panel(
            f"[bold]Free:[/] {', '.join(decision.free_strategy.platforms)}\n"
            f"[bold]Paid:[/] {', '.join(decision.paid_strategy.platforms)} "
            f"(budget {decision.paid_strategy.budget_recommendation:,.0f})\n\n"
            f"{decision.comparison.summary}\n\n"
            f"[cyan]Recommendation:[/] {decision.comparison.recommendation}",
            title=f"Strategy: {goal} / {duration} days",
            border_style="blue",
        ))
        console.print_json(data=decision.model_dump(mode="json"))

    try:
        asyncio.run(_run())
    except (AdRoomError, ValueError) as e:
        console.print(f"[red]Strategy generation failed:[/] {e}")
        raise typer.Exit(1)


@app.command()
def risk(
    content: str = typer.Argument(..., help="Ad copy to assess"),
    platform: str = typer.Option("facebook", help="Target platform"),
    config: Optional[Path] = typer.Option(None, help="Path to adroom.yaml"),
):
    """Check ad copy against local rules and the model's policy review."""

    async def _run():
        from adroom.safety.moderation import ContentModerator
        from adroom.strategy.decision_engine import DecisionEngine

        local = ContentModerator().analyze(content)
        style = "green" if local.is_safe else "yellow"
        console.print(Panel(
            "\n".join(local.issues + local.suggestions) or "No rule violations.",
            title=f"[{style}]Local moderation: {'safe' if local.is_safe else 'flagged'}[/{style}]",
        ))

        settings = _get_settings(config)
        engine = DecisionEngine(_init_text_client(settings))
        assessment = await engine.evaluate_risk(content, platform)
        style = "green" if assessment.compliant else "red"
        console.print(Panel(
            "\n".join(assessment.issues) or "No issues reported.",
            title=f"[{style}]{platform}: {assessment.risk_level} risk[/{style}]",
        ))

    try:
        asyncio.run(_run())
    except AdRoomError as e:
        console.print(f"[red]Risk assessment failed:[/] {e}")
        raise typer.Exit(1)


@app.command()
def serve(
    config: Optional[Path] = typer.Option(None, help="Path to adroom.yaml"),
):
    """Run every pass on its configured interval until interrupted."""
    from adroom.scheduler import Scheduler

    settings = _get_settings(config)
    passes = _build_passes(settings)
    schedule = settings.schedule

    async def _run():
        # built inside the running loop so APScheduler binds to it
        scheduler = Scheduler()
        scheduler.add_job("worker", passes["worker"].run, minutes=schedule.worker_minutes)
        scheduler.add_job("execution", passes["execution"].run, minutes=schedule.execution_minutes)
        scheduler.add_job(
            "intelligence", passes["intelligence"].run_cycle,
            minutes=schedule.intelligence_minutes,
        )
        scheduler.add_job(
            "optimization", passes["optimization"].run,
            minutes=schedule.optimization_minutes,
        )
        scheduler.add_job(
            "learning", passes["learning"].run,
            minutes=schedule.learning_minutes,
        )

        console.print(Panel(
            "\n".join(
                f"{job.name}: every {job.interval_seconds / 60:g} min"
                for job in scheduler.jobs
            ),
            title="AdRoom Scheduler",
        ))
        await scheduler.run_forever()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[yellow]Scheduler stopped.[/]")


if __name__ == "__main__":
    app()
