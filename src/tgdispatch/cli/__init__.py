from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import NoReturn

import anyio
import typer

from .. import __version__
from ..client import TelegramClient
from ..config import ConfigError, load_settings, require_bot_token
from ..errors import PollerUnauthorized
from ..logging import get_logger, setup_logging
from ..polling import Backoff, Poller
from ..router import Router
from ..settings import DispatchSettings
from ..webhook import WebhookServer

logger = get_logger(__name__)

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Run a tgdispatch router with long polling or a webhook.",
)

_CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to tgdispatch.toml (defaults to ./tgdispatch.toml).",
)
_DEBUG_OPTION = typer.Option(False, "--debug", help="Human-readable debug logs.")
_TARGET_ARGUMENT = typer.Argument(
    ..., help="Router to run, as 'package.module:attribute'."
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    _ = version


def load_router(target: str) -> Router:
    """Import ``module:attr``; ``attr`` is a Router or a zero-argument factory."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Invalid router target {target!r}; expected 'module:attribute'.")
    if "" not in sys.path and str(Path.cwd()) not in sys.path:
        sys.path.insert(0, str(Path.cwd()))
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"Failed to import {module_name!r}: {exc}") from exc
    try:
        obj = getattr(module, attr)
    except AttributeError:
        raise ConfigError(f"Module {module_name!r} has no attribute {attr!r}.") from None
    if not isinstance(obj, Router) and callable(obj):
        obj = obj()
    if not isinstance(obj, Router):
        raise ConfigError(f"{target!r} is not a Router (got {type(obj).__name__}).")
    return obj


def _exit_config_error(exc: ConfigError) -> NoReturn:
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(code=1)


def _prepare(
    target: str, config: Path | None, debug: bool
) -> tuple[Router, DispatchSettings, TelegramClient]:
    setup_logging(debug=debug)
    try:
        settings, config_path = load_settings(config)
        token = require_bot_token(settings, config_path)
        router = load_router(target)
    except ConfigError as exc:
        _exit_config_error(exc)
    client = TelegramClient(token, base_url=settings.api_base_url)
    return router, settings, client


async def _run_poller(poller: Poller, client: TelegramClient) -> None:
    try:
        await poller.run()
    finally:
        await client.close()


@app.command()
def poll(
    target: str = _TARGET_ARGUMENT,
    config: Path | None = _CONFIG_OPTION,
    debug: bool = _DEBUG_OPTION,
    drop_pending_updates: bool | None = typer.Option(
        None,
        "--drop-pending-updates/--keep-pending-updates",
        help="Discard updates queued while the bot was offline.",
    ),
) -> None:
    """Receive updates with getUpdates long polling."""
    router, settings, client = _prepare(target, config, debug)
    cfg = settings.polling
    poller = Poller(
        router,
        client,
        limit=cfg.limit,
        timeout_s=cfg.timeout_s,
        allowed_updates=cfg.allowed_updates,
        backoff=Backoff(
            initial=cfg.backoff_initial_s,
            maximum=cfg.backoff_max_s,
            jitter=cfg.backoff_jitter,
        ),
        handler_timeout=cfg.handler_timeout_s,
        drop_pending_updates=(
            cfg.drop_pending_updates
            if drop_pending_updates is None
            else drop_pending_updates
        ),
    )
    try:
        anyio.run(_run_poller, poller, client)
    except PollerUnauthorized as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    except KeyboardInterrupt:
        logger.info("cli.interrupted")


async def _run_webhook(
    server: WebhookServer,
    client: TelegramClient,
    host: str,
    port: int,
    setup: bool,
    force_setup: bool,
) -> None:
    try:
        await server.serve(host, port, setup=setup, force_setup=force_setup)
    finally:
        await client.close()


@app.command()
def webhook(
    target: str = _TARGET_ARGUMENT,
    config: Path | None = _CONFIG_OPTION,
    debug: bool = _DEBUG_OPTION,
    url: str | None = typer.Option(None, "--url", help="Public webhook URL."),
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
    setup: bool = typer.Option(
        True, "--setup/--no-setup", help="Call setWebhook before serving."
    ),
    force_setup: bool = typer.Option(
        False,
        "--force-setup",
        help="Call setWebhook even when the registered webhook looks current.",
    ),
) -> None:
    """Serve a webhook endpoint and receive pushed updates."""
    router, settings, client = _prepare(target, config, debug)
    cfg = settings.webhook
    resolved_url = url or cfg.url
    if setup and not resolved_url:
        _exit_config_error(
            ConfigError("Missing webhook url. Pass --url or set `webhook.url`.")
        )
    server = WebhookServer(
        router,
        client,
        url=resolved_url,
        path=cfg.path,
        secret_token=(
            cfg.secret_token.get_secret_value() if cfg.secret_token is not None else None
        ),
        drop_pending_updates=cfg.drop_pending_updates,
        error_policy=cfg.error_policy,
        background=cfg.background,
        allowed_updates=cfg.allowed_updates,
        max_connections=cfg.max_connections,
        ip_address=cfg.ip_address,
        security_subnets=cfg.security_subnets,
        handler_timeout=cfg.handler_timeout_s,
    )
    try:
        anyio.run(
            _run_webhook,
            server,
            client,
            host or cfg.host,
            port or cfg.port,
            setup,
            force_setup,
        )
    except KeyboardInterrupt:
        logger.info("cli.interrupted")
