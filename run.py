"""Entry-point for the Admin Console application."""

from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import List, Optional

import uvicorn
import typer

from admin_console.bootstrap import initialize_app
from admin_console.editing.bulk import BulkAction, BulkMutationCoordinator
from admin_console.editing.errors import EmptySelection, InvalidBulkAction
from admin_console.logging_utils import build_formatter, configure_logging, get_log_file_path
from admin_console.services.api_client import AdminApiClient, ApiError
from admin_console.services.export import EXPORT_FORMATS, ExportError, write_export
from admin_console.ui.modern import ModernUI
from admin_console.web import create_app


LOGGER = logging.getLogger("admin_console.cli")


cli = typer.Typer(add_completion=False, help="Admin Console management commands")


def _prepare_logging(log_root: Path) -> None:
    log_file = get_log_file_path(log_root)
    formatter = build_formatter()
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(handlers=[file_handler, stream_handler])


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    normalized = normalized.rstrip("/")
    if normalized == "":
        return ""
    return normalized


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="ADMIN_CONSOLE_ROOT_PATH",
    ),
) -> None:
    """Run the FastAPI editing service."""

    app_config = initialize_app()
    _prepare_logging(app_config.log_root)

    normalized_root = _normalize_root_path(root_path)
    app = create_app(config=app_config, root_path=normalized_root)

    config_kwargs = {}
    if app_config.max_upload_bytes > 0:
        config_signature = inspect.signature(uvicorn.Config.__init__)
        if "limit_max_request_size" in config_signature.parameters:
            config_kwargs["limit_max_request_size"] = app_config.max_upload_bytes
        else:
            LOGGER.debug(
                "uvicorn.Config does not support 'limit_max_request_size'; "
                "upload size is enforced by the upload manager only.",
            )

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
        **config_kwargs,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    server.run()


@cli.command()
def show(
    collection: str = typer.Argument(..., help="Collection name, e.g. 'users'"),
    search: Optional[str] = typer.Option(None, help="Search term forwarded to the API"),
    page: int = typer.Option(1, min=1, help="Page to fetch"),
    limit: Optional[int] = typer.Option(None, min=1, help="Records per page"),
) -> None:
    """Print one page of *collection* as a table."""

    config = initialize_app()
    _prepare_logging(config.log_root)

    async def _fetch():
        async with AdminApiClient.from_config(config) as client:
            return await client.resource(collection).list(
                page=page, limit=limit or config.page_size, search=search
            )

    try:
        listing = asyncio.run(_fetch())
    except ApiError as error:
        typer.echo(f"Could not load {collection}: {error}")
        raise typer.Exit(code=1) from error

    ModernUI().show_collection(collection, listing.items, total=listing.total)


@cli.command()
def export(
    collection: str = typer.Argument(..., help="Collection name, e.g. 'users'"),
    fmt: str = typer.Option("csv", "--format", "-f", help="One of json, csv or pdf"),
    search: Optional[str] = typer.Option(None, help="Search term forwarded to the API"),
    limit: Optional[int] = typer.Option(None, min=1, help="Maximum records to export"),
) -> None:
    """Download *collection* and write it to the export directory."""

    normalized = fmt.lower().strip()
    if normalized not in EXPORT_FORMATS:
        raise typer.BadParameter(
            f"Unsupported format '{fmt}'. Choose from: {', '.join(EXPORT_FORMATS)}.",
            param_hint="--format",
        )

    config = initialize_app()
    _prepare_logging(config.log_root)

    async def _fetch():
        async with AdminApiClient.from_config(config) as client:
            return await client.resource(collection).list(limit=limit, search=search)

    try:
        listing = asyncio.run(_fetch())
        target = write_export(
            listing.items,
            normalized,
            destination=config.export_root,
            stem=f"{collection}-export",
        )
    except ApiError as error:
        typer.echo(f"Could not load {collection}: {error}")
        raise typer.Exit(code=1) from error
    except ExportError as error:
        typer.echo(f"Export failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(f"Exported {len(listing.items)} record(s) to: {target}")


@cli.command()
def bulk(
    collection: str = typer.Argument(..., help="Collection name, e.g. 'users'"),
    action: str = typer.Argument(..., help="delete, set_status, activate or deactivate"),
    ids: List[str] = typer.Argument(..., help="Record ids the action applies to"),
    value: Optional[str] = typer.Option(None, help="Status value for set_status"),
) -> None:
    """Apply one action to many records and report every outcome."""

    try:
        bulk_action = BulkAction.parse(action, value)
    except InvalidBulkAction as error:
        raise typer.BadParameter(str(error), param_hint="ACTION") from error

    config = initialize_app()
    _prepare_logging(config.log_root)

    async def _run():
        async with AdminApiClient.from_config(config) as client:
            coordinator = BulkMutationCoordinator(client.resource(collection))
            return await coordinator.run_bulk(ids, bulk_action)

    try:
        result = asyncio.run(_run())
    except EmptySelection as error:
        raise typer.BadParameter(str(error), param_hint="IDS") from error

    ModernUI().show_bulk_result(result)
    if not result.all_succeeded:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    cli()
