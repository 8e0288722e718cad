"""Thin CLI wrapper for storeapp_builder.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console

from storeapp_builder import __version__
from storeapp_builder.config import Settings, get_settings, print_settings_json

app = typer.Typer(
    name="storeapp-builder",
    help="Storefront App Builder - package tenant storefronts as native apps",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"storeapp-builder version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Storefront App Builder - package tenant storefronts as native apps."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
        return

    project_display = str(settings.project_dir) if settings.project_dir else (
        "(auto-discover)" if settings.project_autodiscovery else "(none, simulated)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Artifacts directory: {settings.artifacts_dir}")
    console.print(f"  Work directory:      {settings.work_dir}")
    console.print(f"  Lock directory:      {settings.lock_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print(f"  Native project:      {project_display}")
    console.print(f"  Strict project dir:  {settings.project_dir_strict}")
    console.print()
    console.print("[bold]Services:[/bold]")
    console.print(f"  Cloud builds:        {settings.cloud_configured}")
    console.print(f"  Cloud API URL:       {settings.cloud_api_url}")
    console.print(f"  PWA packaging URL:   {settings.pwa_api_url}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Public URL prefix:   {settings.public_url_prefix}")
    console.print(f"  Build TTL:           {settings.build_ttl}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Cloud poll interval: {settings.cloud_poll_interval}")
    console.print(f"  PWA timeout:         {settings.pwa_timeout}")
    console.print(f"  Toolchain timeout:   {settings.toolchain_timeout}")
    console.print(f"  Lock timeout:        {settings.lock_timeout}")


def _load_json_option(value: str | None, path: Path | None) -> dict[str, Any] | None:
    """Load a JSON object given inline or as a file path."""
    if value is None and path is None:
        return None
    try:
        raw = path.read_text(encoding="utf-8") if path is not None else value
        data = json.loads(raw or "")
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Invalid JSON input: {e}[/red]")
        raise typer.Exit(code=1) from None
    if not isinstance(data, dict):
        console.print("[red]JSON input must be an object[/red]")
        raise typer.Exit(code=1)
    return data


async def _run_build(
    settings: Settings, tenant_id: str, build_input: dict[str, Any]
) -> dict[str, Any]:
    """Run one build to completion and return its final state."""
    from storeapp_builder.builds.orchestrator import create_orchestrator

    orchestrator = create_orchestrator(settings)
    try:
        build_id = orchestrator.start_build(tenant_id, build_input)
        job = await orchestrator.wait_for(build_id)
    finally:
        await orchestrator.shutdown()
    return job.to_dict() if job else {"build_id": build_id, "status": "unknown"}


@app.command()
def build(
    tenant_id: Annotated[str, typer.Argument(help="Tenant ID")],
    store_url: Annotated[
        str,
        typer.Option("--store-url", "-u", help="Storefront URL the app loads"),
    ],
    app_name: Annotated[
        str,
        typer.Option("--app-name", "-n", help="App display name"),
    ] = "My Store",
    package_id: Annotated[
        str | None,
        typer.Option("--package-id", help="Package identifier (derived if omitted)"),
    ] = None,
    primary_color: Annotated[
        str,
        typer.Option("--primary-color", help="Theme color"),
    ] = "#6366f1",
    icon_url: Annotated[
        str | None,
        typer.Option("--icon-url", help="Icon URL or data URI"),
    ] = None,
    platform: Annotated[
        str,
        typer.Option("--platform", "-p", help="Target platform (android, ios, both)"),
    ] = "android",
    app_version: Annotated[
        str,
        typer.Option("--app-version", help="App version"),
    ] = "1.0.0",
    runtime_config: Annotated[
        Path | None,
        typer.Option("--config-file", help="JSON file injected as runtime config"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build a native app for a tenant storefront and wait for the result."""
    from storeapp_builder.builds.errors import BuildValidationError

    build_input: dict[str, Any] = {
        "app_name": app_name,
        "package_id": package_id,
        "store_url": store_url,
        "primary_color": primary_color,
        "icon_url": icon_url,
        "platform": platform,
        "app_version": app_version,
        "config": _load_json_option(None, runtime_config),
    }

    if not json_output:
        console.print(f"[blue]Building {app_name} for tenant {tenant_id}...[/blue]")
    try:
        result = asyncio.run(_run_build(get_settings(), tenant_id, build_input))
    except BuildValidationError as e:
        console.print(f"[red]Invalid build input: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(json.dumps(result, indent=2))
    elif result["status"] == "success":
        console.print(f"[green]✓ {result['status_message']}[/green]")
        if result.get("download_url"):
            console.print(f"  Android package: {result['download_url']}")
        if result.get("ios_download_url"):
            console.print(f"  iOS package:     {result['ios_download_url']}")
        if result.get("is_simulated"):
            console.print("  [yellow](simulated build)[/yellow]")
        console.print(f"  Strategy:        {result.get('strategy')}")
    else:
        console.print(f"[red]✗ {result.get('error') or result['status']}[/red]")

    if result["status"] != "success":
        raise typer.Exit(code=1)


app_config_app = typer.Typer(help="Manage tenant build settings")
app.add_typer(app_config_app, name="app-config")


def _config_service(settings: Settings) -> Any:
    from storeapp_builder.db import create_all_tables, get_engine, get_session_factory
    from storeapp_builder.tenants.store import SqlTenantSettingsStore
    from storeapp_builder.tenants.vault import ConfigVault, TenantConfigService

    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    store = SqlTenantSettingsStore(get_session_factory(engine))
    return TenantConfigService(store, ConfigVault.from_settings(settings))


@app_config_app.command("get")
def app_config_get(
    tenant_id: Annotated[str, typer.Argument(help="Tenant ID")],
) -> None:
    """Show a tenant's saved build settings as JSON."""
    service = _config_service(get_settings())
    typer.echo(json.dumps(service.get_config(tenant_id), indent=2))


@app_config_app.command("set")
def app_config_set(
    tenant_id: Annotated[str, typer.Argument(help="Tenant ID")],
    data: Annotated[
        str | None,
        typer.Option("--data", "-d", help="Settings as a JSON object"),
    ] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="Read settings from a JSON file"),
    ] = None,
    create: Annotated[
        bool,
        typer.Option("--create", help="Create the tenant record if missing"),
    ] = False,
) -> None:
    """Encrypt and save a tenant's build settings."""
    from storeapp_builder.tenants.store import TenantNotFoundError

    settings_data = _load_json_option(data, file)
    if settings_data is None:
        console.print("[red]Provide settings with --data or --file[/red]")
        raise typer.Exit(code=1)

    service = _config_service(get_settings())
    if create:
        service.store.create_tenant(tenant_id)
    try:
        service.save_config(tenant_id, settings_data)
    except TenantNotFoundError:
        console.print(f"[red]Tenant not found: {tenant_id}[/red]")
        console.print("Use --create to create the tenant record")
        raise typer.Exit(code=1) from None
    console.print(f"[green]✓ Saved build settings for {tenant_id}[/green]")


if __name__ == "__main__":
    app()
