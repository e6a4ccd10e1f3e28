"""Click CLI for the Server酱³ Bot channel bridge."""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

import click

from src.accounts.resolver import list_account_ids, resolve_account
from src.bot.api import probe_bot
from src.config import DEFAULT_CONFIG_PATH, configure_logging, load_config
from src.gateway.outbound import normalize_target, notify_approval, send_text
from src.gateway.status import collect_status_issues, describe_account
from src.models import ServerChanBotError


@click.group()
@click.option(
    "--config",
    "config_path",
    default=lambda: os.environ.get("SERVERCHAN_BOT_CONFIG", DEFAULT_CONFIG_PATH),
    help="Path to the OpenClaw JSON config.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """Server酱³ Bot channel bridge CLI."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    if Path(config_path).exists():
        try:
            ctx.obj["config"] = load_config(config_path)
        except ServerChanBotError as exc:
            raise click.ClickException(str(exc)) from exc
    else:
        ctx.obj["config"] = {}


@cli.command()
@click.pass_context
def accounts(ctx: click.Context) -> None:
    """List configured accounts and configuration issues."""
    cfg = ctx.obj["config"]
    snapshots = [describe_account(resolve_account(cfg, a)) for a in list_account_ids(cfg)]
    output = {
        "accounts": [s.model_dump(mode="json", exclude_none=True) for s in snapshots],
        "issues": [i.model_dump(mode="json") for i in collect_status_issues(snapshots)],
    }
    click.echo(json.dumps(output, indent=2, ensure_ascii=False))


@cli.command()
@click.option("--account", "account_id", default=None, help="Account id.")
@click.pass_context
def probe(ctx: click.Context, account_id: str | None) -> None:
    """Verify the bot token with getMe."""
    account = resolve_account(ctx.obj["config"], account_id)
    result = asyncio.run(probe_bot(account.config.bot_token))
    click.echo(result.model_dump_json(indent=2, exclude_none=True))
    if not result.ok:
        ctx.exit(1)


@cli.command()
@click.argument("to")
@click.argument("text")
@click.option("--account", "account_id", default=None, help="Account id.")
@click.pass_context
def send(ctx: click.Context, to: str, text: str, account_id: str | None) -> None:
    """Send TEXT to chat TO."""
    target = normalize_target(to)
    if target is None:
        raise click.BadParameter(f"not a numeric user id: {to}", param_hint="TO")
    try:
        result = asyncio.run(send_text(ctx.obj["config"], target, text, account_id))
    except ServerChanBotError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Sent message {result.message_id} to {result.to}")


@cli.command()
@click.argument("user_id")
@click.pass_context
def approve(ctx: click.Context, user_id: str) -> None:
    """Notify USER_ID that they were approved."""
    target = normalize_target(user_id)
    if target is None:
        raise click.BadParameter(f"not a numeric user id: {user_id}", param_hint="USER_ID")
    try:
        asyncio.run(notify_approval(ctx.obj["config"], target))
    except ServerChanBotError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Approval sent to: {target}")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address.")
@click.option("--port", default=18790, type=int, help="Bind port.")
@click.option("--log-level", default="info", help="Log level.")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, log_level: str) -> None:
    """Run the webhook listener and account gateway."""
    import uvicorn

    os.environ["SERVERCHAN_BOT_CONFIG"] = ctx.obj["config_path"]
    configure_logging(log_level.upper())
    uvicorn.run(
        "src.proxy.app:create_app_from_env",
        factory=True,
        host=host,
        port=port,
        log_level=log_level,
    )
