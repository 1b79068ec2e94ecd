from __future__ import annotations

import json
import sys
from typing import Any

import click
from loguru import logger

from lp_custody.core.config import load_config
from lp_custody.core.custody.errors import PositionNotFound
from lp_custody.core.custody.ledger import SqlitePositionLedger
from lp_custody.core.custody.policy import CustodySettings


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _open_ledger(ctx: click.Context, ledger_path: str | None) -> SqlitePositionLedger:
    path = ledger_path or ctx.obj["settings"].ledger_path
    if not path:
        raise click.UsageError("no ledger: pass --ledger or set custody.ledger_path")
    return SqlitePositionLedger(path)


@click.group(name="lp-custody", help="Inspect the LP position custody ledger.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Config file (defaults to LP_CUSTODY_CONFIG_PATH or ./config.json).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, log_level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=str(log_level).upper())
    load_config(config_path)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = CustodySettings.from_config()


@main.command(name="positions", help="List recorded positions.")
@click.option("--ledger", "ledger_path", default=None)
@click.option("--owner", default=None, help="Only positions minted by this address.")
@click.pass_context
def positions_cmd(ctx: click.Context, ledger_path: str | None, owner: str | None) -> None:
    ledger = _open_ledger(ctx, ledger_path)
    try:
        records = ledger.positions_of(owner) if owner else list(ledger)
        _echo_json({"ok": True, "result": [r.as_dict() for r in records]})
    finally:
        ledger.close()


@main.command(name="owner", help="Show the owner of a position.")
@click.argument("position_id", type=int)
@click.option("--ledger", "ledger_path", default=None)
@click.pass_context
def owner_cmd(ctx: click.Context, position_id: int, ledger_path: str | None) -> None:
    ledger = _open_ledger(ctx, ledger_path)
    try:
        owner = ledger.owner_of(position_id)
    except PositionNotFound as exc:
        _echo_json({"ok": False, "error": "position_not_found", "details": str(exc)})
        ctx.exit(1)
    else:
        _echo_json({"ok": True, "result": {"position_id": position_id, "owner": owner}})
    finally:
        ledger.close()


@main.command(name="show-config", help="Print the effective custody settings.")
@click.pass_context
def show_config_cmd(ctx: click.Context) -> None:
    _echo_json({"ok": True, "result": ctx.obj["settings"].model_dump(mode="json")})


if __name__ == "__main__":
    main()
