"""Upsert synchronizers for the four aggregator entity types.

All four share one contract: map each provider record to local columns,
upsert it keyed on the provider ID (last writer wins), and sum the entity's
primary magnitudes over the records that were stored. A failed upsert is
logged and skipped; it never aborts the rest of the batch.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, TypeVar

import loguru
from loguru import logger
import pydantic

from bolso.adapters.db.facade import DB
from bolso.errors import BolsoError, PersistenceError
from bolso.infra.clients.pluggy import (
    PluggyAccount,
    PluggyClient,
    PluggyCreditCard,
    PluggyInvestment,
    PluggyLoan,
)

R = TypeVar("R")

ZERO = Decimal("0")


@dataclass(frozen=True)
class SyncContext:
    """Who and what a batch of provider records belongs to."""

    user_id: str
    item_id: str
    bank_name: str
    synced_at: datetime


@dataclass(frozen=True)
class EntitySpec(Generic[R]):
    """Parameterises :class:`EntitySynchronizer` for one entity type."""

    name: str
    stage: str
    fetch: Callable[[PluggyClient, str], list[R]]
    to_row: Callable[[R, SyncContext], dict[str, Any]]
    upsert: Callable[[DB, dict[str, Any]], object]
    magnitudes: tuple[str, ...]


@dataclass
class EntitySyncResult:
    entity: str
    count: int = 0
    failed: int = 0
    totals: dict[str, Decimal] = field(default_factory=dict)
    error: str | None = None

    def total(self, column: str) -> Decimal:
        return self.totals.get(column, ZERO)


def _as_date(value: datetime | None) -> date | None:
    return value.date() if value is not None else None


def account_row(account: PluggyAccount, ctx: SyncContext) -> dict[str, Any]:
    return {
        "pluggy_account_id": account.id,
        "pluggy_item_id": ctx.item_id,
        "user_id": ctx.user_id,
        "bank_name": ctx.bank_name,
        "account_type": account.type or "CHECKING",
        "balance": account.balance or ZERO,
        "currency": account.currency_code or "BRL",
        "last_sync_at": ctx.synced_at,
    }


def credit_card_row(card: PluggyCreditCard, ctx: SyncContext) -> dict[str, Any]:
    return {
        "pluggy_card_id": card.id,
        "user_id": ctx.user_id,
        "bank_name": ctx.bank_name,
        "card_name": card.name or card.brand or "Cartão de Crédito",
        "limit_total": card.credit_limit or ZERO,
        "limit_available": card.available_credit_limit or ZERO,
        "current_bill": card.balance or ZERO,
        "due_date": _as_date(card.balance_due_date),
        "closing_date": _as_date(card.balance_close_date),
    }


def loan_row(loan: PluggyLoan, ctx: SyncContext) -> dict[str, Any]:
    return {
        "pluggy_loan_id": loan.id,
        "user_id": ctx.user_id,
        "bank_name": ctx.bank_name,
        "loan_type": loan.type or loan.contract_type or "Personal",
        "amount_available": loan.contracted_amount or ZERO,
        "amount_taken": loan.principal_amount or loan.contracted_amount or ZERO,
        "interest_rate": loan.interest_rate or ZERO,
        "monthly_payment": loan.installment_amount or ZERO,
        "due_date": _as_date(loan.due_date),
    }


def investment_row(investment: PluggyInvestment, ctx: SyncContext) -> dict[str, Any]:
    return {
        "pluggy_investment_id": investment.id,
        "user_id": ctx.user_id,
        "bank_name": ctx.bank_name,
        "investment_type": investment.type or investment.subtype or "Other",
        "name": investment.name or "Investimento",
        "total_saved": investment.balance or investment.value or ZERO,
        "currency": investment.currency_code or "BRL",
        "annual_rate": investment.annual_rate or ZERO,
    }


ACCOUNTS: EntitySpec[PluggyAccount] = EntitySpec(
    name="accounts",
    stage="ACCOUNTS",
    fetch=lambda client, item_id: client.fetch_accounts(item_id),
    to_row=account_row,
    upsert=lambda db, values: db.upsert_bank_account(values),
    magnitudes=("balance",),
)

CREDIT_CARDS: EntitySpec[PluggyCreditCard] = EntitySpec(
    name="credit_cards",
    stage="CREDIT_CARDS",
    fetch=lambda client, item_id: client.fetch_credit_cards(item_id),
    to_row=credit_card_row,
    upsert=lambda db, values: db.upsert_credit_card(values),
    magnitudes=("limit_total", "limit_available"),
)

LOANS: EntitySpec[PluggyLoan] = EntitySpec(
    name="loans",
    stage="LOANS",
    fetch=lambda client, item_id: client.fetch_loans(item_id),
    to_row=loan_row,
    upsert=lambda db, values: db.upsert_loan(values),
    magnitudes=("amount_taken",),
)

INVESTMENTS: EntitySpec[PluggyInvestment] = EntitySpec(
    name="investments",
    stage="INVESTMENTS",
    fetch=lambda client, item_id: client.fetch_investments(item_id),
    to_row=investment_row,
    upsert=lambda db, values: db.upsert_investment(values),
    magnitudes=("total_saved",),
)


class EntitySyncLogger:
    """Handles all logging for entity synchronizers."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def upsert_failed(self, entity: str, provider_id: str, error: Exception) -> None:
        self._logger.bind(entity=entity, provider_id=provider_id).error(
            "Failed to save {} {}: {}", entity, provider_id, error
        )

    def hook_failed(self, entity: str, provider_id: str, error: Exception) -> None:
        self._logger.bind(entity=entity, provider_id=provider_id).error(
            "Follow-up sync for {} {} failed: {}", entity, provider_id, error
        )

    def batch_complete(self, result: EntitySyncResult) -> None:
        self._logger.bind(
            entity=result.entity, count=result.count, failed=result.failed
        ).info(
            "Synced {} {} ({} failed)", result.count, result.entity, result.failed
        )


class EntitySynchronizer(Generic[R]):
    """Upserts one batch of provider records for a single entity type."""

    def __init__(
        self,
        spec: EntitySpec[R],
        db: DB,
        *,
        after_upsert: Callable[[R, SyncContext], object] | None = None,
        logger_instance: EntitySyncLogger | None = None,
    ) -> None:
        """
        Args:
            spec: Entity parameters (mapper, upsert target, summed columns)
            db: Database facade
            after_upsert: Optional per-record follow-up, called after every
                upsert attempt (used to sync an account's transactions)
            logger_instance: Logger override for tests
        """
        self._spec = spec
        self._db = db
        self._after_upsert = after_upsert
        self._logger = logger_instance or EntitySyncLogger()

    @property
    def spec(self) -> EntitySpec[R]:
        return self._spec

    def fetch(self, client: PluggyClient, item_id: str) -> list[R]:
        return self._spec.fetch(client, item_id)

    def sync(self, records: Sequence[R], ctx: SyncContext) -> EntitySyncResult:
        result = EntitySyncResult(
            entity=self._spec.name,
            totals={column: ZERO for column in self._spec.magnitudes},
        )

        for record in records:
            values = self._spec.to_row(record, ctx)
            provider_id = str(getattr(record, "id", "?"))
            try:
                self._spec.upsert(self._db, values)
            except PersistenceError as e:
                self._logger.upsert_failed(self._spec.name, provider_id, e)
                result.failed += 1
            else:
                result.count += 1
                for column in self._spec.magnitudes:
                    result.totals[column] += Decimal(values[column])

            if self._after_upsert is not None:
                try:
                    self._after_upsert(record, ctx)
                except (BolsoError, pydantic.ValidationError) as e:
                    self._logger.hook_failed(self._spec.name, provider_id, e)

        self._logger.batch_complete(result)
        return result
