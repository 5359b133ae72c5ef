from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import loguru
from loguru import logger

from bolso.adapters.db.facade import DB
from bolso.adapters.db.models import TransactionType
from bolso.errors import PersistenceError, UpstreamError
from bolso.infra.clients.pluggy import PluggyClient, PluggyTransaction
from bolso.taxonomy.categorize import smart_categorize

BANK_PAYMENT_METHOD = "Banco"
FALLBACK_DESCRIPTION = "Transação bancária"

USER_SYNC_WINDOW_DAYS = 30
WEBHOOK_SYNC_WINDOW_DAYS = 90

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class LedgerEntry:
    """A provider transaction translated to ledger terms."""

    item: str
    valor: Decimal
    tipo: TransactionType
    categoria: str
    created_at: datetime


@dataclass
class TransactionSyncResult:
    account_id: str
    fetched: int = 0
    inserted: int = 0
    duplicates: int = 0
    zero_amount: int = 0
    failed: int = 0
    error: str | None = None


def classify(amount: Decimal) -> TransactionType:
    """Positive (and zero) provider amounts are credits."""
    return TransactionType.INCOME if amount >= 0 else TransactionType.EXPENSE


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def to_ledger_entry(txn: PluggyTransaction) -> LedgerEntry:
    item = txn.description or txn.description_raw or FALLBACK_DESCRIPTION
    return LedgerEntry(
        item=item,
        valor=abs(txn.amount).quantize(CENTS),
        tipo=classify(txn.amount),
        categoria=smart_categorize(item, txn.category or ""),
        created_at=_naive_utc(txn.date),
    )


class TransactionSyncLogger:
    """Handles all logging for TransactionSynchronizer."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def fetch_start(self, account_id: str, since: date) -> None:
        self._logger.bind(account_id=account_id, since=since.isoformat()).info(
            "Fetching transactions for account {} since {}", account_id, since
        )

    def fetch_failed(self, account_id: str, error: Exception) -> None:
        self._logger.bind(account_id=account_id).error(
            "Failed to fetch transactions for account {}: {}", account_id, error
        )

    def insert_failed(self, account_id: str, item: str, error: Exception) -> None:
        self._logger.bind(account_id=account_id, item=item).error(
            "Failed to insert transaction '{}' for account {}: {}",
            item,
            account_id,
            error,
        )

    def account_complete(self, result: TransactionSyncResult) -> None:
        self._logger.bind(
            account_id=result.account_id,
            inserted=result.inserted,
            duplicates=result.duplicates,
            failed=result.failed,
        ).info(
            "Account {}: {} inserted, {} skipped (duplicates), {} failed",
            result.account_id,
            result.inserted,
            result.duplicates,
            result.failed,
        )


class TransactionSynchronizer:
    """Imports a trailing window of an account's transactions into the ledger.

    Rows already present with the same (user, description, amount, date) are
    skipped. The check is a lookup before insert, not a constraint, so two
    syncs racing on the same account can still both insert a row.
    """

    def __init__(
        self,
        client: PluggyClient,
        db: DB,
        *,
        window_days: int = USER_SYNC_WINDOW_DAYS,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._client = client
        self._db = db
        self._window_days = window_days
        self._today = today or (lambda: datetime.now(UTC).date())
        self._logger = TransactionSyncLogger()

    @property
    def window_days(self) -> int:
        return self._window_days

    def since(self) -> date:
        return self._today() - timedelta(days=self._window_days)

    def sync_account(self, account_id: str, *, user_id: str) -> TransactionSyncResult:
        result = TransactionSyncResult(account_id=account_id)
        since = self.since()
        self._logger.fetch_start(account_id, since)

        try:
            provider_txns = self._client.fetch_transactions(account_id, since=since)
        except UpstreamError as e:
            self._logger.fetch_failed(account_id, e)
            result.error = str(e)
            return result

        result.fetched = len(provider_txns)
        for provider_txn in provider_txns:
            entry = to_ledger_entry(provider_txn)
            if entry.valor == 0:
                # Stored amounts are strictly positive.
                result.zero_amount += 1
                continue
            self._store(entry, user_id=user_id, result=result)

        self._logger.account_complete(result)
        return result

    def _store(
        self, entry: LedgerEntry, *, user_id: str, result: TransactionSyncResult
    ) -> None:
        try:
            existing = self._db.find_duplicate_transaction(
                user_id=user_id,
                item=entry.item,
                valor=entry.valor,
                created_at=entry.created_at,
            )
            if existing is not None:
                result.duplicates += 1
                return
            self._db.insert_transaction(
                user_id=user_id,
                item=entry.item,
                valor=entry.valor,
                tipo=entry.tipo,
                categoria=entry.categoria,
                forma_pagamento=BANK_PAYMENT_METHOD,
                created_at=entry.created_at,
            )
        except PersistenceError as e:
            self._logger.insert_failed(result.account_id, entry.item, e)
            result.failed += 1
        else:
            result.inserted += 1
