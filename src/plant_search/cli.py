"""CLI interface for the plant search federation."""

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from .config import Settings, load_settings
from .exceptions import ConfigurationError
from .logging import configure_logging

app = typer.Typer(
    name="plant-search",
    help="Federated plant name search with a local cache",
    add_completion=False,
)
console = Console()


def get_settings() -> Settings:
    """Load settings from the environment, exiting on configuration errors."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)
    configure_logging(settings.log_level)
    return settings


def get_orchestrator(settings: Settings):
    from .federation import FederationOrchestrator

    return FederationOrchestrator.from_settings(settings)


def _parse_filters(raw: str | None):
    from pydantic import ValidationError

    from .models.search import SearchFilters

    if not raw:
        return None
    try:
        return SearchFilters.model_validate_json(raw)
    except ValidationError as e:
        console.print(f"[red]Invalid filters: {e.errors()[0]['msg']}[/red]")
        raise typer.Exit(1)


@app.command()
def search(
    query: str = typer.Argument(..., help="Plant name, scientific or common"),
    limit: int = typer.Option(10, "--limit", "-l", help="Maximum results (1-100)"),
    language: str = typer.Option("en", "--language", help="Language for common names"),
    filters: str = typer.Option(None, "--filters", "-f", help='JSON filters, e.g. \'{"indoor": true}\''),
):
    """Search the cache, then the configured providers."""
    from .models.search import SearchQuery

    settings = get_settings()
    search_query = SearchQuery(text=query, limit=limit, language=language, filters=_parse_filters(filters))

    async def run():
        async with get_orchestrator(settings) as orchestrator:
            return await orchestrator.search(search_query)

    result = asyncio.run(run())
    console.print_json(json.dumps(result.to_api()))


@app.command()
def details(
    token: str = typer.Argument(..., help="Access token from a search result"),
):
    """Hydrate one plant from its access token."""
    settings = get_settings()

    async def run():
        async with get_orchestrator(settings) as orchestrator:
            return await orchestrator.get_details(token)

    entity = asyncio.run(run())
    if entity is None:
        console.print(f"[yellow]No plant found for token '{token}'[/yellow]")
        raise typer.Exit(1)
    console.print_json(json.dumps(entity.to_api()))


@app.command()
def providers():
    """Show configured providers and their availability."""
    settings = get_settings()

    async def run():
        async with get_orchestrator(settings) as orchestrator:
            return await orchestrator.provider_info()

    infos = asyncio.run(run())

    table = Table(title="Providers")
    table.add_column("Type")
    table.add_column("Name")
    table.add_column("Available")
    table.add_column("Details")

    for info in infos:
        table.add_row(
            info["type"],
            info["name"],
            "[green]yes[/green]" if info["available"] else "[red]no[/red]",
            info.get("error") or info.get("info", {}).get("description", ""),
        )

    console.print(table)


@app.command()
def stats(
    days: int = typer.Option(7, "--days", "-d", help="Days of history"),
    provider: str = typer.Option(None, "--provider", "-p", help="Only this provider"),
):
    """Show per-provider reliability statistics."""
    settings = get_settings()
    orchestrator = get_orchestrator(settings)
    rows = orchestrator.provider_stats(provider, days)

    if not rows:
        console.print(f"[yellow]No provider statistics in the last {days} days[/yellow]")
        return

    table = Table(title=f"Provider Statistics (last {days} days)")
    table.add_column("Provider")
    table.add_column("Date")
    table.add_column("Requests")
    table.add_column("Success Rate")
    table.add_column("Avg Time (ms)")
    table.add_column("Avg Results")

    for row in rows:
        table.add_row(
            row.provider_name,
            row.date.isoformat(),
            str(row.total_requests),
            f"{row.success_rate:.0%}",
            f"{row.avg_response_time_ms:.1f}",
            f"{row.avg_results_returned:.1f}",
        )

    console.print(table)

    summary = orchestrator.search_summary(days)
    console.print(
        f"[dim]{summary['total_searches']} searches, {summary['unique_queries']} unique queries, "
        f"{summary['cached_hits']} cache hits[/dim]"
    )


@app.command()
def popular(
    limit: int = typer.Option(10, "--limit", "-l", help="Maximum queries"),
):
    """List the most frequent queries."""
    settings = get_settings()
    queries = get_orchestrator(settings).popular_queries(limit)

    if not queries:
        console.print("[yellow]No queries recorded yet[/yellow]")
        return

    table = Table(title="Popular Queries")
    table.add_column("Query")
    table.add_column("Count")
    table.add_column("Last Searched")

    for q in queries:
        table.add_row(q["query"], str(q["count"]), q["last_searched_at"])

    console.print(table)


@app.command()
def cleanup(
    days: int = typer.Option(90, "--days", "-d", help="Keep queries newer than this"),
):
    """Remove old single-use queries and their result links."""
    settings = get_settings()
    removed = get_orchestrator(settings).cleanup(days)
    console.print(
        f"[green]Removed {removed['removed_queries']} queries and "
        f"{removed['removed_results']} result links[/green]"
    )


@app.command()
def validate():
    """Check that every configured provider has its credentials."""
    settings = get_settings()
    errors = settings.validate_credentials()

    chain = ", ".join(tag.value for tag in settings.search_chain)
    console.print(f"Search chain: {chain}")

    if errors:
        for error in errors:
            console.print(f"[red]  • {error}[/red]")
        raise typer.Exit(1)

    console.print("[green]Configuration is valid[/green]")


if __name__ == "__main__":
    app()
