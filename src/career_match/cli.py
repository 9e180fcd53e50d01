"""Command-line interface for Career Match."""

from typing import Optional

import httpx
import typer
from rich.console import Console
from rich.table import Table

from career_match.config import settings

app = typer.Typer(
    name="career-match",
    help="Career Match - adaptive job matching with throttled application dispatch",
    add_completion=False,
)
console = Console()


@app.command()
def serve(
    host: str = typer.Option(settings.host, help="Host to bind to"),
    port: int = typer.Option(settings.port, help="Port to bind to"),
    reload: bool = typer.Option(settings.reload, help="Enable auto-reload"),
) -> None:
    """Start the API server."""
    import uvicorn

    console.print(f"Starting Career Match on {host}:{port}")
    uvicorn.run(
        "career_match.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_config=None,
    )


@app.command()
def config() -> None:
    """Show current configuration."""
    table = Table(title="Career Match Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Debug Mode", str(settings.debug))
    table.add_row("Log Level", settings.log_level)
    table.add_row("Surfacing Threshold", str(settings.surfacing_threshold))
    table.add_row("Similarity Floor", str(settings.similarity_floor))
    table.add_row("Queue Size", str(settings.queue_size))
    table.add_row("Scoring Batch Size", str(settings.scoring_batch_size))
    table.add_row("Feedback Activation", str(settings.feedback_activation_threshold))
    table.add_row("Learning Rate", str(settings.learning_rate))
    for channel, (window, limit) in settings.throttle_limits().items():
        table.add_row(f"{channel} Throttle", f"{limit} per {window}s")
    table.add_row("Max Send Attempts", str(settings.max_send_attempts))
    table.add_row("Scheduler Interval", f"{settings.scheduler_interval_seconds}s")
    table.add_row("Email Relay", "configured" if settings.email_relay_url else "not configured")
    table.add_row("LinkedIn Relay", "configured" if settings.linkedin_relay_url else "not configured")

    console.print(table)


@app.command()
def quota(
    user_id: str = typer.Argument(..., help="User to inspect"),
    api_url: Optional[str] = typer.Option(None, help="Base URL of a running API server"),
) -> None:
    """Show a user's remaining sends per channel from a running server."""
    base_url = api_url or f"http://{'localhost' if settings.host == '0.0.0.0' else settings.host}:{settings.port}"
    try:
        response = httpx.get(f"{base_url}/api/v1/users/{user_id}/quota", timeout=10.0)
        response.raise_for_status()
    except httpx.HTTPError as e:
        console.print(f"[red]Could not fetch quota: {e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title=f"Send quota for {user_id}")
    table.add_column("Channel", style="cyan")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Window", justify="right")
    table.add_column("Resets At", style="green")
    for row in response.json():
        table.add_row(
            row["channel"],
            str(row["used"]),
            str(row["limit"]),
            f"{row['window_seconds']:.0f}s",
            row.get("resets_at") or "-"
        )
    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    from career_match import __version__
    console.print(f"Career Match v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
