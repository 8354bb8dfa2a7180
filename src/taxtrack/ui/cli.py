from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
import json
import sys
from typing import Any

from dotenv import load_dotenv
from loguru import logger
import typer

from taxtrack.adapters.db.facade import DB
from taxtrack.core.config import AppConfig, load_app_config_from_env
from taxtrack.errors import NotFoundError, TaxtrackError
from taxtrack.infra.clients.plaid import PlaidClient, PlaidClientError
from taxtrack.services.catalog import CategoryService, RuleService
from taxtrack.services.connections import BankLinkProvider, ConnectionService
from taxtrack.services.reports import ReportService
from taxtrack.services.rules.engine import RuleEngine
from taxtrack.services.sync.reconciler import SyncReconciler
from taxtrack.services.transactions import TransactionService

# Load environment variables from .env
load_dotenv()

app = typer.Typer(help="Taxtrack - tax expense tracking CLI.", no_args_is_help=True)
connections_app = typer.Typer(help="Manage linked bank accounts.")
rules_app = typer.Typer(help="Manage and apply auto-categorization rules.")
categories_app = typer.Typer(help="Manage expense categories.")
report_app = typer.Typer(help="Tax reports.")
app.add_typer(connections_app, name="connections")
app.add_typer(rules_app, name="rules")
app.add_typer(categories_app, name="categories")
app.add_typer(report_app, name="report")

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} [{level}] {name}: {message}"

UserOption = typer.Option(..., "--user", envvar="TAXTRACK_USER_ID", help="Owner ID")


@dataclass
class CliState:
    config: AppConfig
    provider_factory: Callable[[], BankLinkProvider] = PlaidClient.from_env

    def db(self) -> DB:
        return DB(self.config.database_url)

    def connection_service(self, db: DB) -> ConnectionService:
        provider = self.provider_factory()
        reconciler = SyncReconciler(
            db,
            provider,
            lease_seconds=self.config.sync_lease_seconds,
            removed_policy=self.config.removed_policy,
        )
        return ConnectionService(db, provider, reconciler)


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level)


@contextmanager
def _reported_failures() -> Iterator[None]:
    """Print typed failures as ``CODE: message`` and exit 1."""
    try:
        yield
    except TaxtrackError as e:
        typer.echo(f"{e.code}: {e.message}", err=True)
        raise typer.Exit(1) from None
    except PlaidClientError as e:
        typer.echo(f"{e.error_code or 'PROVIDER_ERROR'}: {e.error_message}", err=True)
        raise typer.Exit(1) from None


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _state(ctx: typer.Context) -> CliState:
    state = ctx.find_object(CliState)
    if state is None:
        raise RuntimeError("CLI state was not initialized")
    return state


@app.callback()
def main_callback(ctx: typer.Context) -> None:
    """Load configuration and set up logging for every command."""
    if isinstance(ctx.obj, CliState):
        return
    try:
        config = load_app_config_from_env()
    except ValueError as e:
        typer.echo(f"CONFIG_ERROR: {e}", err=True)
        raise typer.Exit(1) from None
    configure_logging(config.log_level)
    ctx.obj = CliState(config=config)


@app.command("init-db")
def init_db(ctx: typer.Context) -> None:
    """Create tables and seed the default categories."""
    with _reported_failures():
        db = _state(ctx).db()
        db.create_schema()
        inserted = db.seed_default_categories()
    typer.echo(f"Database ready ({inserted} default categories added)")


@app.command("sync")
def sync(
    ctx: typer.Context,
    connection_id: int = typer.Argument(..., help="Bank connection ID"),
    user_id: str = UserOption,
    drain: bool = typer.Option(
        True, "--drain/--no-drain", help="Keep syncing while more pages remain"
    ),
) -> None:
    """Pull new, changed and removed transactions for one connection."""
    state = _state(ctx)
    with _reported_failures():
        service = state.connection_service(state.db())
        if drain:
            counts = service.sync_all_pages(user_id, connection_id)
        else:
            counts = service.sync(user_id, connection_id)
    _echo_json(counts.to_dict())


@connections_app.command("list")
def connections_list(ctx: typer.Context, user_id: str = UserOption) -> None:
    with _reported_failures():
        db = _state(ctx).db()
        connections = db.list_bank_connections(user_id=user_id)
    _echo_json([connection.to_public_dict() for connection in connections])


@connections_app.command("link")
def connections_link(
    ctx: typer.Context,
    public_token: str = typer.Argument(..., help="Public token from Plaid Link"),
    account_id: str = typer.Argument(..., help="Plaid account ID to connect"),
    user_id: str = UserOption,
) -> None:
    """Link one account of a Plaid item and run its first sync."""
    state = _state(ctx)
    with _reported_failures():
        service = state.connection_service(state.db())
        result = service.link_account(user_id, public_token, account_id)
    _echo_json(result.to_dict())


@connections_app.command("disconnect")
def connections_disconnect(
    ctx: typer.Context,
    connection_id: int = typer.Argument(..., help="Bank connection ID"),
    user_id: str = UserOption,
) -> None:
    with _reported_failures():
        db = _state(ctx).db()
        if not db.disconnect_bank_connection(connection_id, user_id=user_id):
            raise NotFoundError("Bank connection not found or access denied")
    typer.echo(f"Disconnected connection {connection_id}")


@rules_app.command("list")
def rules_list(ctx: typer.Context, user_id: str = UserOption) -> None:
    with _reported_failures():
        rules = RuleService(_state(ctx).db()).list_rules(user_id)
    _echo_json(
        [
            {
                "id": rule.id,
                "name": rule.name,
                "pattern": rule.pattern,
                "category_id": rule.category_id,
                "priority": rule.priority,
                "enabled": rule.enabled,
            }
            for rule in rules
        ]
    )


@rules_app.command("add")
def rules_add(
    ctx: typer.Context,
    name: str = typer.Option(..., help="Rule name"),
    pattern: str = typer.Option(..., help="Case-insensitive regular expression"),
    category_id: int = typer.Option(..., help="Category to assign on match"),
    priority: int = typer.Option(0, help="Higher priorities are evaluated first"),
    enabled: bool = typer.Option(True, "--enabled/--disabled"),
    user_id: str = UserOption,
) -> None:
    with _reported_failures():
        rule = RuleService(_state(ctx).db()).create_rule(
            user_id,
            {
                "name": name,
                "pattern": pattern,
                "category_id": category_id,
                "priority": priority,
                "enabled": enabled,
            },
        )
    typer.echo(f"Created rule {rule.id} ({rule.name})")


@rules_app.command("apply")
def rules_apply(
    ctx: typer.Context,
    transaction_ids: list[int] | None = typer.Option(  # noqa: B008
        None, "--transaction-id", help="Limit to these transactions"
    ),
    user_id: str = UserOption,
) -> None:
    """Categorize transactions with the owner's enabled rules."""
    with _reported_failures():
        result = RuleEngine(_state(ctx).db()).apply(user_id, transaction_ids or None)
    _echo_json(result.to_dict())


@categories_app.command("list")
def categories_list(ctx: typer.Context, user_id: str = UserOption) -> None:
    with _reported_failures():
        categories = CategoryService(_state(ctx).db()).list_categories(user_id)
    _echo_json(
        [
            {
                "id": category.id,
                "name": category.name,
                "color": category.color,
                "is_default": category.is_default,
            }
            for category in categories
        ]
    )


@categories_app.command("add")
def categories_add(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Category name"),
    color: str = typer.Option("#6B7280", help="Hex color, e.g. #3B82F6"),
    description: str | None = typer.Option(None, help="Optional description"),
    user_id: str = UserOption,
) -> None:
    with _reported_failures():
        category = CategoryService(_state(ctx).db()).create_category(
            user_id, {"name": name, "color": color, "description": description}
        )
    typer.echo(f"Created category {category.id} ({category.name})")


@app.command("suggest-category")
def suggest_category(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Free-text category name, e.g. from OCR"),
    user_id: str = UserOption,
) -> None:
    """Map a free-text category name onto a known category."""
    with _reported_failures():
        category = TransactionService(_state(ctx).db()).suggest_category(user_id, name)
    if category is None:
        typer.echo("No matching category")
        return
    typer.echo(f"{category.id}\t{category.name}")


@report_app.command("summary")
def report_summary(
    ctx: typer.Context,
    from_date: str | None = typer.Option(None, "--from", help="YYYY-MM-DD"),
    to_date: str | None = typer.Option(None, "--to", help="YYYY-MM-DD"),
    user_id: str = UserOption,
) -> None:
    """Income, expenses and deductible expenses for a period."""
    with _reported_failures():
        summary = ReportService(_state(ctx).db()).tax_summary(
            user_id, from_date, to_date
        )
    _echo_json(summary.to_dict())


@report_app.command("stats")
def report_stats(ctx: typer.Context, user_id: str = UserOption) -> None:
    with _reported_failures():
        stats = ReportService(_state(ctx).db()).user_stats(user_id)
    _echo_json(stats.to_dict())
