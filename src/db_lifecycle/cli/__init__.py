"""CLI for the database schema/index lifecycle.

Usage:
    DB_PROFILE=local db-lifecycle setup
    db-lifecycle --config db.toml health --json
    db-lifecycle strategy
    db-lifecycle optimize --table users --aggressive
    db-lifecycle cleanup
    db-lifecycle info --table users
    db-lifecycle diagnose
    db-lifecycle fix-constraints --seed-file seeds.json

Commands:
    setup            - Run the full startup sequence
    health           - Sample database, model, index, and performance health
    strategy         - Show which migration strategy would be selected
    optimize         - Remove redundant indexes from one table
    cleanup          - Emergency aggressive index cleanup across all tables
    info             - Show table metadata (columns, indexes, ceiling headroom)
    diagnose         - Compare every model against its live table
    fix-constraints  - Load seed data in foreign key dependency order
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from db_lifecycle.config.loader import ProfileNotFoundError, load_db_config
from db_lifecycle.errors import LifecycleError
from db_lifecycle.health.models import HealthStatus
from db_lifecycle.indexes.models import OptimizationPolicy
from db_lifecycle.manager import DatabaseManager, connect_manager
from db_lifecycle.migrations.source import SqlDirectorySource
from db_lifecycle.migrations.strategy import migration_files_available, select_strategy
from db_lifecycle.schema.fix import SeedStep
from db_lifecycle.schema.models import TableInfo

console = Console()

_STATUS_STYLE = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.WARNING: "yellow",
    HealthStatus.CRITICAL: "red",
}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _config_path(args: argparse.Namespace) -> Path | None:
    return Path(args.config) if getattr(args, "config", None) else None


async def _open_manager(args: argparse.Namespace) -> DatabaseManager | None:
    """Connect using the global CLI options; prints the error on failure."""
    try:
        return await connect_manager(
            profile_name=getattr(args, "profile", None),
            config_path=_config_path(args),
            env_prefix=getattr(args, "env_prefix", ""),
        )
    except (FileNotFoundError, ProfileNotFoundError, KeyError, ValueError, LifecycleError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return None


def _load_seed_steps(seed_file: str | Path) -> list[SeedStep]:
    """Read ``[{"table": ..., "rows": [...]}, ...]`` (or ``{"steps": [...]}``)."""
    data = json.loads(Path(seed_file).read_text())
    if isinstance(data, dict):
        data = data.get("steps", [])
    return [SeedStep(table=entry["table"], rows=list(entry.get("rows", []))) for entry in data]


def _print_table_info(info: TableInfo) -> None:
    if not info.exists:
        console.print(f"[yellow]{info.table}[/yellow]: table does not exist")
        return

    console.print(
        f"\n[bold cyan]{info.table}[/bold cyan]"
        + (f" [dim](model {info.model})[/dim]" if info.model else "")
    )
    console.print(
        f"  Primary key: {', '.join(info.primary_key) or '-'}   "
        f"Indexes: {info.index_count}/{info.index_ceiling} "
        f"(headroom {info.headroom})"
    )

    table = Table(show_header=True, header_style="bold")
    table.add_column("Index")
    table.add_column("Columns")
    table.add_column("Unique")
    table.add_column("Constraint")
    for idx in info.indexes:
        table.add_row(
            idx.name,
            ", ".join(idx.columns),
            "yes" if idx.is_unique else "",
            "yes" if idx.is_constraint else "",
        )
    if info.indexes:
        console.print(table)

    for fk in info.foreign_keys:
        console.print(
            f"  FK {fk.name}: ({', '.join(fk.columns)}) -> "
            f"{fk.references_table} ({', '.join(fk.references_columns or [])})"
        )


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_setup(args: argparse.Namespace) -> int:
    manager = await _open_manager(args)
    if manager is None:
        return 1

    async with manager:
        manager.config.start_health_monitor = False
        ok = await manager.setup_database()
        result = manager.last_setup

        if not ok:
            console.print(f"\n[bold red]x[/bold red] Setup failed: {result.error}")
            return 1

        change_set = result.change_set
        console.print(
            f"\n[bold green]v[/bold green] Setup complete "
            f"(strategy: [bold cyan]{result.strategy.value}[/bold cyan])"
        )
        console.print(f"  Migrations applied: {len(change_set.migrations_applied)}")
        console.print(f"  Tables created: {len(change_set.tables_created)}")
        console.print(f"  Columns added: {len(change_set.columns_added)}")
        console.print(f"  Indexes created: {len(change_set.indexes_created)}")
        console.print(
            f"  Redundant indexes removed: {sum(o.removed for o in result.optimizations)}"
        )
        for note in change_set.notes:
            console.print(f"  [yellow]{note}[/yellow]")
        for skipped in change_set.skipped:
            console.print(f"  [yellow]Skipped:[/yellow] {skipped}")
        for warning in result.warnings:
            console.print(f"  [yellow]{warning}[/yellow]")
        return 0


async def _async_health(args: argparse.Namespace) -> int:
    manager = await _open_manager(args)
    if manager is None:
        return 1

    async with manager:
        report = await manager.get_health()

    if args.json:
        print(json.dumps(report.to_wire(), indent=2, default=str))
    else:
        table = Table(title="Database Health", show_header=True, header_style="bold")
        table.add_column("Check")
        table.add_column("Status")
        table.add_column("Details")
        for name, check in report.checks.items():
            style = _STATUS_STYLE[check.status]
            table.add_row(
                name,
                f"[{style}]{check.status.value}[/{style}]",
                json.dumps(check.details, default=str),
            )
        console.print(table)

    return 0 if report.overall is not HealthStatus.CRITICAL else 1


async def _async_optimize(args: argparse.Namespace) -> int:
    manager = await _open_manager(args)
    if manager is None:
        return 1

    policy = OptimizationPolicy.AGGRESSIVE if args.aggressive else OptimizationPolicy.CONSERVATIVE
    async with manager:
        try:
            result = await manager.optimize_table_indexes(args.table, policy)
        except LifecycleError as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1

    console.print(
        f"Optimized [bold cyan]{result.table}[/bold cyan] ({result.policy.value}): "
        f"removed {result.removed} of {result.inspected} indexes, {result.remaining} remain"
    )
    for name in result.removed_indexes:
        console.print(f"  - {name}")
    if result.error:
        console.print(f"[red]{result.error}[/red]")
    if result.ceiling_exceeded:
        console.print("[yellow]Table is still above the index ceiling[/yellow]")
    return 0 if result.success else 1


async def _async_cleanup(args: argparse.Namespace) -> int:
    manager = await _open_manager(args)
    if manager is None:
        return 1

    async with manager:
        removed = await manager.emergency_index_cleanup()
        summary = manager.last_cleanup

    table = Table(title="Emergency Index Cleanup", show_header=True, header_style="bold")
    table.add_column("Table", style="dim")
    table.add_column("Removed", justify="right")
    table.add_column("Remaining", justify="right")
    for result in summary.results:
        table.add_row(result.table, str(result.removed), str(result.remaining))
    console.print(table)
    console.print(f"\nTotal removed: [bold]{removed}[/bold]")
    if summary.skipped_tables:
        console.print(f"[dim]Skipped (no table): {', '.join(summary.skipped_tables)}[/dim]")
    for error in summary.errors:
        console.print(f"[red]{error}[/red]")
    return 0 if summary.success else 1


async def _async_info(args: argparse.Namespace) -> int:
    manager = await _open_manager(args)
    if manager is None:
        return 1

    async with manager:
        try:
            info = await manager.get_table_info(args.table)
        except LifecycleError as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1

    infos = [info] if isinstance(info, TableInfo) else list(info.values())
    for item in infos:
        _print_table_info(item)
    return 0


async def _async_diagnose(args: argparse.Namespace) -> int:
    manager = await _open_manager(args)
    if manager is None:
        return 1

    async with manager:
        try:
            diagnoses = await manager.diagnose_models()
        except LifecycleError as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1

    table = Table(title="Model Diagnosis", show_header=True, header_style="bold")
    table.add_column("Model")
    table.add_column("Table", style="dim")
    table.add_column("Status")
    table.add_column("Problems")
    for d in diagnoses:
        problems = []
        if d.missing_columns:
            problems.append(f"missing columns: {', '.join(d.missing_columns)}")
        if d.missing_indexes:
            problems.append(f"missing indexes: {', '.join(d.missing_indexes)}")
        if d.relaxable_not_null:
            problems.append(f"NOT NULL to relax: {', '.join(d.relaxable_not_null)}")
        if d.type_mismatches:
            problems.append(f"type mismatches: {'; '.join(d.type_mismatches)}")
        if not d.exists:
            status = "[red]missing table[/red]"
        elif d.healthy:
            status = "[green]ok[/green]"
        else:
            status = "[yellow]drift[/yellow]"
        table.add_row(d.name, d.table, status, "\n".join(problems))
    console.print(table)
    return 0 if all(d.healthy for d in diagnoses) else 1


async def _async_fix_constraints(args: argparse.Namespace) -> int:
    try:
        steps = _load_seed_steps(args.seed_file)
    except (FileNotFoundError, json.JSONDecodeError, KeyError, TypeError) as e:
        console.print(f"[red]Error reading seed file: {e}[/red]")
        return 1

    manager = await _open_manager(args)
    if manager is None:
        return 1

    async with manager:
        ok = await manager.fix_seeding_constraints(steps)

    if ok:
        console.print(f"[bold green]v[/bold green] Loaded {len(steps)} seed steps")
        return 0
    console.print("[bold red]x[/bold red] Seeding failed (see log)")
    return 1


# ============================================================================
# Command wrappers
# ============================================================================


def cmd_setup(args: argparse.Namespace) -> int:
    """Run the full startup sequence."""
    return asyncio.run(_async_setup(args))


def cmd_health(args: argparse.Namespace) -> int:
    """Sample health once.  Exit code 1 when any check is critical."""
    return asyncio.run(_async_health(args))


def cmd_strategy(args: argparse.Namespace) -> int:
    """Show the migration strategy the current configuration selects.

    Needs no database connection.
    """
    try:
        config = load_db_config(_config_path(args), env_prefix=args.env_prefix).lifecycle
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    file_count = SqlDirectorySource(config.migrations_dir).count()
    has_files = migration_files_available(config, file_count)
    console.print(f"Environment: [bold]{config.environment.value}[/bold]")
    console.print(f"Migration files: {file_count} ({'used' if has_files else 'not used'})")
    console.print(f"Sync allowed in production: {config.allow_sync_in_production}")
    try:
        strategy = select_strategy(
            config.environment, has_files, config.allow_sync_in_production
        )
    except LifecycleError as e:
        console.print(f"\n[bold red]x[/bold red] {e}")
        return 1
    console.print(f"\nStrategy: [bold cyan]{strategy.value}[/bold cyan]")
    return 0


def cmd_optimize(args: argparse.Namespace) -> int:
    """Remove redundant indexes from one table."""
    return asyncio.run(_async_optimize(args))


def cmd_cleanup(args: argparse.Namespace) -> int:
    """Aggressive index cleanup across every registered table."""
    return asyncio.run(_async_cleanup(args))


def cmd_info(args: argparse.Namespace) -> int:
    """Show table metadata."""
    return asyncio.run(_async_info(args))


def cmd_diagnose(args: argparse.Namespace) -> int:
    """Compare every model against its live table."""
    return asyncio.run(_async_diagnose(args))


def cmd_fix_constraints(args: argparse.Namespace) -> int:
    """Load seed data in dependency order with FK checks disabled."""
    return asyncio.run(_async_fix_constraints(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="db-lifecycle",
        description="Database schema and index lifecycle manager",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to db.toml (default: ./db.toml)",
    )
    parser.add_argument(
        "--profile",
        default=None,
        help="Profile from db.toml (default: DB_PROFILE env var)",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_setup = subparsers.add_parser("setup", help="Run the full startup sequence")
    p_setup.set_defaults(func=cmd_setup)

    p_health = subparsers.add_parser("health", help="Sample database health")
    p_health.add_argument("--json", action="store_true", help="Print the report as JSON")
    p_health.set_defaults(func=cmd_health)

    p_strategy = subparsers.add_parser(
        "strategy", help="Show which migration strategy would be selected"
    )
    p_strategy.set_defaults(func=cmd_strategy)

    p_optimize = subparsers.add_parser("optimize", help="Remove redundant indexes from one table")
    p_optimize.add_argument("--table", required=True, help="Table to optimize")
    p_optimize.add_argument(
        "--aggressive",
        action="store_true",
        help="Also remove prefix-redundant indexes and enforce the ceiling",
    )
    p_optimize.set_defaults(func=cmd_optimize)

    p_cleanup = subparsers.add_parser(
        "cleanup", help="Emergency index cleanup across all registered tables"
    )
    p_cleanup.set_defaults(func=cmd_cleanup)

    p_info = subparsers.add_parser("info", help="Show table metadata")
    p_info.add_argument("--table", default=None, help="Table (default: every registered table)")
    p_info.set_defaults(func=cmd_info)

    p_diagnose = subparsers.add_parser("diagnose", help="Compare models against live tables")
    p_diagnose.set_defaults(func=cmd_diagnose)

    p_fix = subparsers.add_parser(
        "fix-constraints", help="Load seed data in foreign key dependency order"
    )
    p_fix.add_argument(
        "--seed-file",
        required=True,
        help='JSON file: [{"table": "authors", "rows": [{...}]}, ...]',
    )
    p_fix.set_defaults(func=cmd_fix_constraints)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    _configure_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
