"""CLI module for SQL Server schema comparison.

Provides commands for listing connection profiles and their databases,
and for comparing the schema of two databases.

Usage:
    db-compare profiles
    db-compare databases prod
    db-compare compare prod Sales staging Sales
    db-compare compare prod Sales staging Sales --json
    db-compare compare prod Sales staging Sales --detail dbo.GetUser
    db-compare --verbose --config ./db.toml compare prod Sales prod Sales_v2

Commands:
    profiles   - List connection profiles from db.toml
    databases  - List databases available on a connection
    compare    - Compare source database schema against target
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from db_compare.config.loader import load_compare_config
from db_compare.errors import DatabaseConnectionError
from db_compare.factory import create_session, get_provider
from db_compare.schema.models import ChangeType, ComparisonEndpoint

console = Console()

CHANGE_STYLES = {
    ChangeType.ADD: "green",
    ChangeType.CHANGE: "yellow",
    ChangeType.DELETE: "red",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _config_path(args: argparse.Namespace) -> Path | None:
    config = getattr(args, "config", None)
    return Path(config) if config else None


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_databases(args: argparse.Namespace) -> int:
    """Async implementation for databases command.

    Args:
        args: Parsed arguments with connection and config.

    Returns:
        0 on success, 1 on failure.
    """
    try:
        provider = get_provider(load_compare_config(_config_path(args)))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        databases = await provider.list_databases(args.connection)
    except DatabaseConnectionError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    finally:
        await provider.dispose()

    table = Table(title=f"Databases on {args.connection}", show_header=True, header_style="bold")
    table.add_column("Database")
    for name in databases:
        table.add_row(name)
    console.print(table)
    return 0


async def _async_compare(args: argparse.Namespace) -> int:
    """Async implementation for compare command.

    Args:
        args: Parsed arguments with source/target connection and database,
            json, detail and config.

    Returns:
        0 on success (with or without differences), 1 on failure.
    """
    try:
        session, provider = create_session(_config_path(args))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    def on_started(source: ComparisonEndpoint, target: ComparisonEndpoint) -> None:
        if not args.json:
            console.print(
                f"Comparing [bold cyan]{source}[/bold cyan] -> "
                f"[bold cyan]{target}[/bold cyan]...",
                style="dim",
            )

    try:
        result = await session.start_comparison(
            args.source_connection,
            args.source_db,
            args.target_connection,
            args.target_db,
            on_started=on_started,
        )
    finally:
        await provider.dispose()

    if args.json:
        console.print_json(data=result.model_dump(mode="json"))
        return 0 if result.success else 1

    if not result.success:
        console.print()
        console.print(f"[bold red]x[/bold red] {result.error}")
        return 1

    console.print()
    if not result.changes:
        console.print("[bold green]v[/bold green] Schemas are identical")
    else:
        table = Table(
            title=f"Schema Differences ({result.change_count})",
            show_header=True,
            header_style="bold",
        )
        table.add_column("Change")
        table.add_column("Type", style="dim")
        table.add_column("Object")
        table.add_column("Description")
        table.add_column("Details", style="dim")

        for change in result.changes:
            style = CHANGE_STYLES[change.change_type]
            table.add_row(
                f"[{style}]{change.change_type.value.upper()}[/{style}]",
                change.object_type.value,
                change.object_name,
                change.description,
                change.details or "",
            )
        console.print(table)

    if result.skipped:
        console.print(
            f"\n[yellow]Not compared (definition unavailable):[/yellow] "
            f"{', '.join(result.skipped)}"
        )

    if args.detail:
        matches = [c for c in result.changes if c.object_name == args.detail]
        if not matches:
            console.print(f"\n[yellow]No change found for {args.detail}[/yellow]")
            return 0
        for change in matches:
            detail = session.get_change_detail(change)
            console.print(f"\n[bold]Source ({result.source}):[/bold]")
            console.print(detail.before, markup=False, highlight=False)
            console.print(f"\n[bold]Target ({result.target}):[/bold]")
            console.print(detail.after, markup=False, highlight=False)

    return 0


# ============================================================================
# Sync command wrappers (cmd_profiles reads local files only)
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List connection profiles from db.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if db.toml not found or invalid.
    """
    try:
        config = load_compare_config(_config_path(args))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    table = Table(title="Connection Profiles", show_header=True, header_style="bold")
    table.add_column("Connection")
    table.add_column("Provider")
    table.add_column("Scope")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        table.add_row(
            f"[bold cyan]{name}[/bold cyan]",
            profile.provider,
            profile.connection_type,
            profile.description or "",
        )

    console.print(table)
    return 0


def cmd_databases(args: argparse.Namespace) -> int:
    """List databases on a connection.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_databases(args))


def cmd_compare(args: argparse.Namespace) -> int:
    """Compare two database schemas.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_compare(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="db-compare",
        description="SQL Server schema comparison",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to db.toml (default: $DB_COMPARE_CONFIG or ./db.toml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log progress to stderr",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # profiles command
    p_profiles = subparsers.add_parser("profiles", help="List connection profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    # databases command
    p_databases = subparsers.add_parser(
        "databases",
        help="List databases available on a connection",
    )
    p_databases.add_argument("connection", help="Connection profile name")
    p_databases.set_defaults(func=cmd_databases)

    # compare command
    p_compare = subparsers.add_parser(
        "compare",
        help="Compare source database schema against target",
    )
    p_compare.add_argument("source_connection", help="Source connection profile")
    p_compare.add_argument("source_db", help="Source database")
    p_compare.add_argument("target_connection", help="Target connection profile")
    p_compare.add_argument("target_db", help="Target database")
    p_compare.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON",
    )
    p_compare.add_argument(
        "--detail",
        metavar="OBJECT_NAME",
        default=None,
        help="Show before/after definitions for a changed object (e.g. dbo.GetUser)",
    )
    p_compare.set_defaults(func=cmd_compare)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
