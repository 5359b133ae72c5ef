from __future__ import annotations

import json
from typing import Any, NoReturn

from dotenv import load_dotenv
import typer

from bolso.adapters.db.facade import DB
from bolso.core.config import (
    configure_logging,
    database_url_from_env,
    load_gateway_config_from_env,
    load_pluggy_config_from_env,
)
from bolso.errors import BolsoError
from bolso.infra.clients.gateway import GatewayClient
from bolso.infra.clients.pluggy import PluggyClient
from bolso.tools.ledger.ledger_tool import LedgerService
from bolso.tools.recategorize.recategorize_tool import Recategorizer
from bolso.tools.sync.sync_tool import SyncOrchestrator
from bolso.tools.sync.transactions import USER_SYNC_WINDOW_DAYS

# Load environment variables from .env
load_dotenv()

app = typer.Typer(help="Bolso: bank sync and voice ledger CLI.")


@app.callback()
def main_callback(
    log_level: str | None = typer.Option(
        None, help="Log level (defaults to BOLSO_LOG_LEVEL or INFO)"
    ),
) -> None:
    configure_logging(log_level)


def _db(url: str | None = None) -> DB:
    return DB(url or database_url_from_env())


def _echo_json(data: dict[str, Any]) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _fail(error: BolsoError) -> NoReturn:
    typer.echo(f"Error: {error.message}", err=True)
    raise typer.Exit(code=1)


@app.command("init-db")
def init_db(url: str | None = typer.Option(None, help="Database URL")) -> None:
    """Create every table in the configured database."""
    _db(url).create_schema()
    typer.echo("Database schema created")


@app.command("sync")
def sync(
    item_id: str,
    user: str = typer.Option(..., help="Local user the item belongs to"),
    window_days: int = typer.Option(
        USER_SYNC_WINDOW_DAYS, help="Days of transactions to import"
    ),
) -> None:
    """Synchronize one Pluggy item into the local database."""
    orchestrator = SyncOrchestrator(
        PluggyClient.from_config(load_pluggy_config_from_env()), _db()
    )
    try:
        summary = orchestrator.sync_item(
            user_id=user, item_id=item_id, window_days=window_days
        )
    except BolsoError as e:
        _fail(e)
    _echo_json(summary.to_dict())


@app.command("recategorize")
def recategorize(
    user: str = typer.Option(..., help="User whose transactions to re-categorize"),
) -> None:
    """Re-categorize transactions still tagged Geral or Outros."""
    config = load_gateway_config_from_env()
    gateway = GatewayClient.from_config(config, model=config.categorize_model)
    result = Recategorizer(gateway, _db()).recategorize(user)
    _echo_json(result.to_dict())


@app.command("totals")
def totals(user: str = typer.Option(..., help="User to summarize")) -> None:
    """Print income, expense, reserve and balance totals."""
    _echo_json(LedgerService(_db()).totals(user).to_dict())


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),  # noqa: S104
    port: int = typer.Option(8000, help="Port"),
) -> None:
    """Start the HTTP API."""
    from bolso.ui.api.server import main as serve_main

    serve_main(host=host, port=port)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
