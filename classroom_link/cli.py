"""CLI entry point for classroom-link."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Coroutine, NoReturn, TypeVar

import click

from . import __version__
from .config import Config, load_config
from .oauth import (
    AlreadyAuthorizedError,
    AuthorizationContext,
    AuthorizationError,
    BrowserPresenter,
    CallbackError,
    InvalidConfigurationError,
    NotAuthorizedError,
)
from .oauth.callback import DEFAULT_TIMEOUT
from .output import OutputHandler
from .store import UserStore, UserStoreError

logger = logging.getLogger("classroom-link")

T = TypeVar("T")

# Help shown next to the error kinds a user can act on
HELP_TEXT: dict[type[Exception], str] = {
    AlreadyAuthorizedError: "Run 'classroom-link auth revoke' first to re-link.",
    NotAuthorizedError: "Run 'classroom-link auth login' to link Google Classroom.",
    InvalidConfigurationError: (
        "Check the 'oauth' section of classroom-link.json or the "
        "CLASSROOM_LINK_* environment variables."
    ),
    UserStoreError: "Run 'classroom-link user clear --all' and sign in again.",
}


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Path to classroom-link.json")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, config_path: str | None, env_path: str | None, verbose: bool) -> None:
    """classroom-link - Link your portal account to Google Classroom."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["output"] = OutputHandler(json_mode)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_config(ctx: click.Context) -> Config | NoReturn:
    """Get config from context, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        return load_config(ctx.obj["config_path"], ctx.obj["env_path"])
    except json.JSONDecodeError as e:
        output.error(
            e,
            error_type="ConfigParseError",
            help_text="The config file contains invalid JSON. Check for syntax errors.",
        )
        raise SystemExit(1)  # Never reached due to sys.exit in output.error
    except ValueError as e:
        output.error(e, error_type="ConfigError")
        raise SystemExit(1)


def get_user_store(ctx: click.Context) -> UserStore | NoReturn:
    """Open the local user store, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        return UserStore()
    except (OSError, UserStoreError) as e:
        output.error(e, help_text="Could not open the local user store.")
        raise SystemExit(1)


def run_async(ctx: click.Context, coro: Coroutine[Any, Any, T]) -> T | NoReturn:
    """Run a coroutine, reporting engine and store errors through the output handler."""
    output: OutputHandler = ctx.obj["output"]
    try:
        return asyncio.run(coro)
    except (AuthorizationError, UserStoreError, CallbackError) as e:
        help_text = next(
            (text for cls, text in HELP_TEXT.items() if isinstance(e, cls)), None
        )
        output.error(e, help_text=help_text)
        raise SystemExit(1)


# User commands


@main.group()
@click.pass_context
def user(ctx: click.Context) -> None:
    """Manage the signed-in portal user."""
    pass


@user.command("set")
@click.argument("user_id")
@click.option("--name", "display_name", help="Display name to show in status output")
@click.pass_context
def user_set(ctx: click.Context, user_id: str, display_name: str | None) -> None:
    """Sign in as USER_ID (the portal username)."""
    output: OutputHandler = ctx.obj["output"]
    store = get_user_store(ctx)

    try:
        store.set_user(user_id, display_name)
    except UserStoreError as e:
        output.error(e, help_text=HELP_TEXT[UserStoreError])
        return

    output.success(
        {"user_id": user_id.strip(), "display_name": display_name},
        human_message=f"Signed in as {user_id.strip()}",
    )


@user.command("show")
@click.pass_context
def user_show(ctx: click.Context) -> None:
    """Show the signed-in portal user."""
    output: OutputHandler = ctx.obj["output"]
    store = get_user_store(ctx)

    try:
        user_id = store.get_user_id()
        display_name = store.get_display_name()
        link = store.get_link_status(user_id) if user_id else None
    except UserStoreError as e:
        output.error(e, help_text=HELP_TEXT[UserStoreError])
        return

    data: dict[str, Any] = {
        "user_id": user_id,
        "display_name": display_name,
        "classroom_linked": link.authorized if link else None,
    }

    if ctx.obj["json_mode"]:
        output.success(data)
    elif not user_id:
        click.echo("No portal user is signed in.")
    else:
        name = f" ({display_name})" if display_name else ""
        click.secho(f"{user_id}{name}", bold=True)
        if link is None:
            click.echo("  Classroom: unknown (run 'classroom-link auth status')")
        else:
            click.echo(f"  Classroom: {'linked' if link.authorized else 'not linked'}")


@user.command("clear")
@click.option("--all", "clear_all", is_flag=True, help="Also forget recorded link statuses")
@click.pass_context
def user_clear(ctx: click.Context, clear_all: bool) -> None:
    """Sign the portal user out."""
    output: OutputHandler = ctx.obj["output"]
    store = get_user_store(ctx)

    if clear_all:
        # Works even when the store file can no longer be decrypted
        store.clear_all()
        output.success({"cleared": True}, human_message="Cleared local user store.")
        return

    try:
        cleared = store.clear_user()
    except UserStoreError as e:
        output.error(e, help_text=HELP_TEXT[UserStoreError])
        return

    output.success(
        {"cleared": cleared},
        human_message="Signed out." if cleared else "No portal user was signed in.",
    )


# Auth commands


@main.group()
@click.pass_context
def auth(ctx: click.Context) -> None:
    """Link, inspect or unlink Google Classroom."""
    pass


@auth.command("login")
@click.option("--timeout", "-t", default=DEFAULT_TIMEOUT, help="Seconds to wait for the browser redirect")
@click.option("--no-browser", is_flag=True, help="Print the authorization URL instead of opening a browser")
@click.pass_context
def auth_login(ctx: click.Context, timeout: int, no_browser: bool) -> None:
    """Authorize read-only Google Classroom access."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    store = get_user_store(ctx)

    async def login() -> Any:
        async with BrowserPresenter(
            timeout=timeout, open_browser=not no_browser, on_status=output.status
        ) as presenter:
            # Only the loopback redirect can be captured from a terminal
            config.oauth = replace(config.oauth, redirect_uri=presenter.redirect_uri)
            async with AuthorizationContext(config, user_store=store) as auth_ctx:
                session = auth_ctx.current_session()
                return await session.authorize(presenter)

    outcome = run_async(ctx, login())

    if outcome.cancelled:
        output.error(
            click.ClickException("Authorization was cancelled"),
            error_type="AuthorizationCancelled",
            help_text="Run 'classroom-link auth login' again when ready.",
        )
        return
    if outcome.error is not None:
        output.error(outcome.error, help_text=HELP_TEXT.get(type(outcome.error)))
        return

    if ctx.obj["json_mode"]:
        output.success(outcome.to_dict())
    else:
        click.secho(f"Google Classroom linked for {outcome.user_id}.", fg="green")
        if outcome.warning is not None:
            click.secho(
                f"Warning: {outcome.warning}\n"
                f"The portal server did not record the link; try again later.",
                fg="yellow",
            )


@auth.command("status")
@click.option("--offline", is_flag=True, help="Show the last known status without asking the server")
@click.pass_context
def auth_status(ctx: click.Context, offline: bool) -> None:
    """Show whether Google Classroom is linked."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    store = get_user_store(ctx)

    async def status() -> dict[str, Any]:
        async with AuthorizationContext(config, user_store=store) as auth_ctx:
            session = auth_ctx.current_session()
            server_error = None
            if not offline:
                try:
                    await session.refresh_status()
                except AuthorizationError as e:
                    logger.warning(f"Status check failed: {e}")
                    server_error = e.to_dict()
            info = auth_ctx.status_info(session.user_id or "")
            info["server_checked"] = not offline and server_error is None
            info["server_error"] = server_error
            return info

    info = run_async(ctx, status())

    if ctx.obj["json_mode"]:
        output.success(info)
        return

    linked = info["authorized"]
    click.secho(f"[{info['user_id']}] ", fg="cyan", nl=False)
    click.secho("linked" if linked else "not linked", fg="green" if linked else "yellow")
    if info["updated_ago_human"]:
        click.echo(f"  Last updated: {info['updated_ago_human']}")
    if info["server_error"]:
        click.secho(
            f"  Could not reach the portal server: {info['server_error']['message']}",
            fg="red",
        )
    elif offline:
        click.echo("  (last known status; server not checked)")


@auth.command("revoke")
@click.pass_context
def auth_revoke(ctx: click.Context) -> None:
    """Unlink Google Classroom for the signed-in user."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    store = get_user_store(ctx)

    async def revoke() -> Any:
        async with AuthorizationContext(config, user_store=store) as auth_ctx:
            session = auth_ctx.current_session()
            if not session.is_authorized:
                # The server may hold a grant this machine never saw
                try:
                    await session.refresh_status()
                except AuthorizationError as e:
                    logger.warning(f"Status check before revoke failed: {e}")
            return await session.revoke()

    outcome = run_async(ctx, revoke())

    if ctx.obj["json_mode"]:
        output.success(outcome.to_dict())
    elif outcome.succeeded:
        click.secho(f"Google Classroom unlinked for {outcome.user_id}.", fg="green")
    else:
        click.secho(f"Unlinked locally for {outcome.user_id}.", fg="green")
        click.secho(
            f"Warning: the portal server could not be updated: {outcome.error}", fg="yellow"
        )


if __name__ == "__main__":
    main()
