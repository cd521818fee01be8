"""
Dazzle Admin CLI.

Commands:
- serve:     Run the admin server over a SQLite database
- resources: Show the resources and fields the admin would expose
- init-db:   Create tables for resources declared in Python
- version:   Show the installed version
"""

from __future__ import annotations

import importlib
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from dazzle_admin._version import get_version
from dazzle_admin.runtime.config import AdminConfig
from dazzle_admin.runtime.introspection import SQLiteIntrospector, StaticIntrospector
from dazzle_admin.runtime.logging import setup_logging
from dazzle_admin.runtime.registry import ResourceRegistry
from dazzle_admin.runtime.store import SQLiteDataStore
from dazzle_admin.specs.resource import FileFieldSpec, RelationFieldSpec, ScalarFieldSpec

app = typer.Typer(
    help="Auto-generated admin interface for relational data",
    no_args_is_help=True,
)

console = Console()

_RESOURCES_HELP = (
    "Python path to declared resources ('module:attribute'), a list of ResourceSpec "
    "or a ResourceRegistry. Defaults to introspecting the database."
)


def load_registry(db_path: Path, resources: str | None = None) -> ResourceRegistry:
    """
    Build a registry from declared resources or from the database schema.

    Raises:
        typer.BadParameter: If the import path cannot be resolved
    """
    if resources is None:
        if not db_path.exists():
            raise typer.BadParameter(f"Database not found: {db_path}", param_hint="--db")
        return ResourceRegistry.from_introspector(SQLiteIntrospector(db_path))

    module_name, sep, attr = resources.partition(":")
    if not sep or not attr:
        raise typer.BadParameter("Expected 'module:attribute'", param_hint="--resources")
    try:
        target = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise typer.BadParameter(f"Cannot load {resources}: {e}", param_hint="--resources")

    if isinstance(target, ResourceRegistry):
        return target
    return ResourceRegistry.from_introspector(StaticIntrospector(list(target)))


def _describe_kind(field: object) -> str:
    if isinstance(field, ScalarFieldSpec):
        return str(field.scalar_type)
    if isinstance(field, RelationFieldSpec):
        return f"{'many' if field.many else 'one'} -> {field.target}"
    if isinstance(field, FileFieldSpec):
        return "file"
    return "?"


@app.command(name="serve")
def serve_command(
    db: Path = typer.Option(Path(".dazzle/admin.db"), "--db", help="SQLite database file"),
    resources: str | None = typer.Option(None, "--resources", "-r", help=_RESOURCES_HELP),
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    base_path: str = typer.Option("/admin", "--base-path", help="URL prefix of the admin"),
    env: str = typer.Option(
        "production", "--env", help="Environment: development, test or production"
    ),
    uploads: Path = typer.Option(
        Path(".dazzle/uploads"), "--uploads", help="Directory for uploaded files"
    ),
    log_dir: Path | None = typer.Option(None, "--log-dir", help="Directory for JSONL logs"),
) -> None:
    """Run the admin server."""
    from dazzle_admin.runtime.app_factory import run_app

    config = AdminConfig(
        environment=env,
        base_path=base_path,
        db_path=db,
        uploads_path=uploads,
        log_dir=log_dir,
    )
    setup_logging(log_dir=config.log_dir, level=config.log_level)
    registry = load_registry(db, resources)

    console.print(
        f"[green]Serving {len(registry)} resources at http://{host}:{port}{config.base_path}[/green]"
    )
    run_app(registry, config, host=host, port=port)


@app.command(name="resources")
def resources_command(
    db: Path = typer.Option(Path(".dazzle/admin.db"), "--db", help="SQLite database file"),
    resources: str | None = typer.Option(None, "--resources", "-r", help=_RESOURCES_HELP),
) -> None:
    """Show the resources and fields the admin exposes."""
    registry = load_registry(db, resources)
    if not len(registry):
        console.print("[yellow]No resources found[/yellow]")
        raise typer.Exit(1)

    for resource in registry:
        table = Table(title=f"{resource.title} ({resource.slug})", title_justify="left")
        table.add_column("Field", style="cyan")
        table.add_column("Kind")
        table.add_column("Required")
        table.add_column("Label", style="dim")
        for field in resource.fields:
            name = f"{field.name} (id)" if field.name == resource.id_field else field.name
            table.add_row(
                name,
                _describe_kind(field),
                "yes" if field.required else "",
                field.display_name,
            )
        console.print(table)


@app.command(name="init-db")
def init_db_command(
    resources: str = typer.Option(..., "--resources", "-r", help=_RESOURCES_HELP),
    db: Path = typer.Option(Path(".dazzle/admin.db"), "--db", help="SQLite database file"),
) -> None:
    """Create tables for declared resources."""
    from dazzle_admin.runtime.errors import StoreError

    registry = load_registry(db, resources)
    try:
        SQLiteDataStore(db).create_tables(registry)
    except StoreError as e:
        console.print(f"[red]Failed to create tables: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Created tables for {len(registry)} resources in {db}[/green]")


@app.command(name="version")
def version_command() -> None:
    """Show the installed version."""
    console.print(f"dazzle-admin {get_version()}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
