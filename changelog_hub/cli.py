"""
Command-line interface for changelog-hub.

Provides commands to initialize the database, manage repository sources,
run an aggregation and check service health.

Usage:
    changelog-hub init-db               # Create tables
    changelog-hub seed-sources FILE     # Load sources from a JSON array
    changelog-hub sources --page ID     # List configured sources
    changelog-hub fetch --page ID       # Print the unified changelog JSON
    changelog-hub health                # Check database connectivity
"""

import asyncio
import json
import sys

import click

from changelog_hub.config.settings import get_settings
from changelog_hub.observability.logging import bind_context, clear_context, setup_logging
from changelog_hub.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Changelog Hub - unified release feeds across git hosting providers."""
    setup_logging("DEBUG" if debug else None)


@main.command("init-db")
def init_db() -> None:
    """Create the repo_sources and changelog_snapshots tables."""
    from changelog_hub.snapshots.repository import SnapshotRepository
    from changelog_hub.sources.repository import SourcesRepository
    from changelog_hub.storage.database import Database

    async def run():
        db = Database()
        await db.connect()
        try:
            await SourcesRepository(db).create_table()
            await SnapshotRepository(db).create_table()
            click.echo("Database initialized successfully")
        finally:
            await db.close()

    asyncio.run(run())


@main.command("seed-sources")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def seed_sources(path: str) -> None:
    """Upsert repository sources from a JSON array file."""
    from pydantic import ValidationError

    from changelog_hub.sources.repository import SourcesRepository, source_from_dict
    from changelog_hub.storage.database import Database

    with open(path, encoding="utf-8") as f:
        try:
            entries = json.load(f)
        except json.JSONDecodeError as e:
            raise click.ClickException(f"Invalid JSON in {path}: {e}")

    if not isinstance(entries, list):
        raise click.ClickException("Seed file must contain a JSON array of sources")

    try:
        sources = [source_from_dict(entry) for entry in entries]
    except (TypeError, ValidationError) as e:
        raise click.ClickException(f"Invalid source entry: {e}")

    async def run():
        db = Database()
        await db.connect()
        try:
            count = await SourcesRepository(db).bulk_upsert(sources)
            click.echo(f"Seeded {count} sources")
        finally:
            await db.close()

    asyncio.run(run())


@main.command()
@click.option("--page", "page_id", default=None, help="Only list sources of this page")
def sources(page_id: str | None) -> None:
    """List configured repository sources."""
    from changelog_hub.sources.repository import SourcesRepository
    from changelog_hub.storage.database import Database

    async def run():
        db = Database()
        await db.connect()
        try:
            rows = await SourcesRepository(db).list_sources(page_id)
        finally:
            await db.close()

        if not rows:
            click.echo("No sources configured")
            return

        click.echo(f"\n{'ID':<20} {'PAGE':<16} {'PROVIDER':<10} {'REPOSITORY':<36} ENABLED")
        click.echo("-" * 92)
        for source in rows:
            enabled = click.style("yes", fg="green") if source.enabled else click.style("no", fg="red")
            click.echo(
                f"{source.id:<20} {source.page_id:<16} {source.provider.value:<10} "
                f"{source.repository:<36} {enabled}"
            )
        click.echo(f"\nTotal: {len(rows)} sources")

    asyncio.run(run())


@main.command()
@click.option("--page", "page_id", default=None, help="Page to aggregate (default page if omitted)")
@click.option("--force", is_flag=True, help="Bypass the cache and fresh snapshot")
@click.option("--pretty", is_flag=True, help="Indent the JSON output")
@click.option("--metrics/--no-metrics", default=False, help="Expose Prometheus metrics while fetching")
def fetch(page_id: str | None, force: bool, pretty: bool, metrics: bool) -> None:
    """Aggregate a page and print the unified changelog as JSON."""
    from changelog_hub.aggregation.service import ChangelogService
    from changelog_hub.ingestion.http_client import RetryClient
    from changelog_hub.ingestion.registry import AdapterRegistry
    from changelog_hub.snapshots.repository import SnapshotRepository
    from changelog_hub.sources.repository import SourcesRepository
    from changelog_hub.storage.database import Database

    page_id = page_id or get_settings().default_page_id

    async def run():
        if metrics:
            get_metrics().start_server()

        bind_context(page_id=page_id)
        db = Database()
        await db.connect()
        try:
            async with RetryClient() as client:
                service = ChangelogService(
                    sources=SourcesRepository(db),
                    snapshots=SnapshotRepository(db),
                    adapters=AdapterRegistry(client),
                )
                return await service.get_unified_changelog(page_id, force_refresh=force)
        finally:
            await db.close()
            clear_context()

    changelog = asyncio.run(run())
    click.echo(json.dumps(changelog.to_json_dict(), indent=2 if pretty else None))

    if changelog.errors:
        for error in changelog.errors:
            click.echo(
                click.style(f"{error.source_name} ({error.repository}): {error.message}", fg="yellow"),
                err=True,
            )


@main.command()
def health() -> None:
    """Check database connectivity."""
    import structlog

    logger = structlog.get_logger()

    async def check():
        from changelog_hub.storage.database import Database

        healthy = False
        db = Database()
        try:
            await db.connect()
            healthy = await db.health_check()
        except Exception as e:
            logger.error("Postgres health check failed", error=str(e))
        finally:
            await db.close()

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)
        icon = "✓" if healthy else "✗"
        color = "green" if healthy else "red"
        click.echo(click.style(f"  {icon} postgres: {healthy}", fg=color))
        click.echo("-" * 40)

        if healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        click.echo(click.style("Some services unhealthy!", fg="red"))
        sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
