from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
import json
from typing import Any

import loguru
from loguru import logger

from bolso.adapters.db.facade import DB, utc_now
from bolso.errors import BolsoError
from bolso.infra.clients.pluggy import PluggyAccount, PluggyClient, PluggyItem
from bolso.tools.base import StandardTool, ToolInputSchema
from bolso.tools.sync.entities import (
    ACCOUNTS,
    CREDIT_CARDS,
    INVESTMENTS,
    LOANS,
    EntitySpec,
    EntitySynchronizer,
    EntitySyncResult,
    SyncContext,
)
from bolso.tools.sync.transactions import (
    USER_SYNC_WINDOW_DAYS,
    TransactionSynchronizer,
)

SYNC_FUNCTION_NAME = "sync-bank-data"

AfterUpsert = Callable[[Any, SyncContext], object]


def _json_safe(details: dict[str, Any] | None) -> dict[str, Any] | None:
    if details is None:
        return None
    return json.loads(json.dumps(details, default=str))


class SyncStageRecorder:
    """Records each sync stage transition to loguru and the debug_logs table.

    Persisting a stage record is best effort: a failure to write it is
    logged and otherwise ignored so it can never block the sync.
    """

    def __init__(
        self,
        db: DB | None,
        *,
        user_id: str,
        function_name: str = SYNC_FUNCTION_NAME,
        logger_instance: loguru.Logger = logger,
    ) -> None:
        self._db = db
        self._user_id = user_id
        self._function_name = function_name
        self._logger = logger_instance

    def record(
        self,
        stage: str,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        level: str = "info",
    ) -> None:
        safe_details = _json_safe(details)
        self._logger.bind(
            stage=stage, user_id=self._user_id, details=safe_details
        ).log(level.upper(), "[{}] {}", stage, message)
        if self._db is None:
            return
        try:
            self._db.record_debug_log(
                user_id=self._user_id,
                function_name=self._function_name,
                stage=stage,
                message=message,
                details=safe_details,
                level=level,
            )
        except Exception as e:  # noqa: BLE001 - diagnostics must not fail a sync
            self._logger.bind(stage=stage).warning(
                "Failed to save debug log for stage {}: {}", stage, e
            )


@dataclass
class SyncSummary:
    """Per-entity counts and aggregate totals for one synced item."""

    bank_name: str
    results: dict[str, EntitySyncResult] = field(default_factory=dict)
    transactions_inserted: int = 0
    transactions_skipped: int = 0

    def count(self, entity: str) -> int:
        result = self.results.get(entity)
        return result.count if result else 0

    def total(self, entity: str, column: str) -> Decimal:
        result = self.results.get(entity)
        return result.total(column) if result else Decimal("0")

    @property
    def errors(self) -> dict[str, str]:
        return {
            name: result.error
            for name, result in self.results.items()
            if result.error is not None
        }

    def to_dict(self) -> dict[str, Any]:
        summary: dict[str, Any] = {
            "success": True,
            "bankName": self.bank_name,
            "synced": {
                "accounts": self.count(ACCOUNTS.name),
                "creditCards": self.count(CREDIT_CARDS.name),
                "loans": self.count(LOANS.name),
                "investments": self.count(INVESTMENTS.name),
                "transactions": self.transactions_inserted,
            },
            "totals": {
                "balance": float(self.total(ACCOUNTS.name, "balance")),
                "creditLimit": float(self.total(CREDIT_CARDS.name, "limit_total")),
                "creditAvailable": float(
                    self.total(CREDIT_CARDS.name, "limit_available")
                ),
                "loans": float(self.total(LOANS.name, "amount_taken")),
                "investments": float(self.total(INVESTMENTS.name, "total_saved")),
            },
        }
        if self.errors:
            summary["errors"] = self.errors
        return summary


class SyncOrchestrator:
    """
    Synchronizes one aggregator item into local storage.

    Stages run strictly in sequence: authenticate, resolve the item, then
    accounts (each account's transactions right after it), credit cards,
    loans and investments. Authentication and item resolution are fatal;
    every later stage is isolated, so a failing stage is recorded and the
    next one still runs.
    """

    def __init__(
        self,
        client: PluggyClient,
        db: DB,
        *,
        record_debug_logs: bool = True,
        today: Callable[[], date] | None = None,
    ) -> None:
        """
        Args:
            client: Pluggy client for the request (holds the API key)
            db: Database facade
            record_debug_logs: Persist stage records to debug_logs
            today: Clock override for the transaction window
        """
        self._client = client
        self._db = db
        self._record_debug_logs = record_debug_logs
        self._today = today

    def sync_item(
        self,
        *,
        user_id: str,
        item_id: str,
        window_days: int = USER_SYNC_WINDOW_DAYS,
        function_name: str = SYNC_FUNCTION_NAME,
        item: PluggyItem | None = None,
    ) -> SyncSummary:
        """
        Run every sync stage for ``item_id`` on behalf of ``user_id``.

        Pass ``item`` when the caller has already authenticated and fetched
        it; the authentication and item stages are then not repeated.

        Returns:
            SyncSummary; counts silently exclude records from failed stages

        Raises:
            UpstreamAuthError: If the aggregator rejects the service credentials
            ResolutionError: If the item cannot be fetched
        """
        recorder = SyncStageRecorder(
            self._db if self._record_debug_logs else None,
            user_id=user_id,
            function_name=function_name,
        )
        recorder.record("SYNC_START", "Starting sync", {"itemId": item_id})

        if item is None:
            item = self._resolve(item_id, recorder)
        else:
            self._record_item_found(item, recorder)
        ctx = SyncContext(
            user_id=user_id,
            item_id=item_id,
            bank_name=item.bank_name,
            synced_at=utc_now(),
        )
        summary = SyncSummary(bank_name=item.bank_name)
        transaction_sync = TransactionSynchronizer(
            self._client, self._db, window_days=window_days, today=self._today
        )

        def sync_account_transactions(
            account: PluggyAccount, ctx: SyncContext
        ) -> None:
            result = transaction_sync.sync_account(account.id, user_id=ctx.user_id)
            summary.transactions_inserted += result.inserted
            summary.transactions_skipped += result.duplicates
            if result.error is not None:
                recorder.record(
                    "TRANSACTIONS_ERROR",
                    f"Failed to fetch transactions for account {account.id}",
                    {"accountId": account.id, "error": result.error},
                    level="error",
                )

        stages: list[tuple[EntitySpec[Any], AfterUpsert | None]] = [
            (ACCOUNTS, sync_account_transactions),
            (CREDIT_CARDS, None),
            (LOANS, None),
            (INVESTMENTS, None),
        ]
        for spec, after_upsert in stages:
            synchronizer = EntitySynchronizer(
                spec, self._db, after_upsert=after_upsert
            )
            summary.results[spec.name] = self._run_stage(synchronizer, ctx, recorder)

        recorder.record("SYNC_COMPLETE", "Sync finished", summary.to_dict())
        return summary

    def _resolve(self, item_id: str, recorder: SyncStageRecorder) -> PluggyItem:
        recorder.record("PLUGGY_AUTH", "Authenticating with Pluggy")
        try:
            self._client.authenticate()
        except BolsoError as e:
            recorder.record(
                "PLUGGY_AUTH_ERROR", str(e), {"error": str(e)}, level="error"
            )
            raise
        recorder.record("PLUGGY_AUTH_SUCCESS", "Authenticated with Pluggy")

        recorder.record("FETCH_ITEM", "Fetching item details", {"itemId": item_id})
        try:
            item = self._client.fetch_item(item_id)
        except BolsoError as e:
            recorder.record(
                "FETCH_ITEM_ERROR",
                str(e),
                {"itemId": item_id, "error": str(e)},
                level="error",
            )
            raise

        self._record_item_found(item, recorder)
        return item

    def _record_item_found(self, item: PluggyItem, recorder: SyncStageRecorder) -> None:
        recorder.record(
            "FETCH_ITEM_SUCCESS",
            f"Item found: {item.bank_name}",
            {
                "itemId": item.id,
                "bankName": item.bank_name,
                "connectorId": item.connector_id,
            },
        )

    def _run_stage(
        self,
        synchronizer: EntitySynchronizer[Any],
        ctx: SyncContext,
        recorder: SyncStageRecorder,
    ) -> EntitySyncResult:
        stage = synchronizer.spec.stage
        recorder.record(f"FETCH_{stage}", f"Fetching {synchronizer.spec.name}")
        try:
            records = synchronizer.fetch(self._client, ctx.item_id)
            result = synchronizer.sync(records, ctx)
        except Exception as e:  # noqa: BLE001 - one stage must not abort the next
            recorder.record(
                f"{stage}_ERROR",
                f"Failed to sync {synchronizer.spec.name}: {e}",
                {"error": str(e)},
                level="error",
            )
            return EntitySyncResult(entity=synchronizer.spec.name, error=str(e))

        recorder.record(
            f"{stage}_SYNC_DONE",
            f"Synced {result.count} {synchronizer.spec.name}",
            {"count": result.count, "failed": result.failed, "totals": result.totals},
        )
        return result


class SyncBankDataTool(StandardTool):
    """Tool wrapper exposing :class:`SyncOrchestrator` to the API and CLI."""

    _name = "sync_bank_data"
    _description = (
        "Synchronize accounts, transactions, credit cards, loans and "
        "investments of one connected bank item."
    )
    _input_schema: ToolInputSchema = {
        "type": "object",
        "properties": {
            "itemId": {"type": "string", "description": "Pluggy item ID"},
        },
        "required": ["itemId"],
    }

    def __init__(self, orchestrator: SyncOrchestrator) -> None:
        self._orchestrator = orchestrator

    def _execute_impl(self, *, user_id: str, **kwargs: Any) -> dict[str, Any]:
        summary = self._orchestrator.sync_item(
            user_id=user_id, item_id=kwargs["itemId"]
        )
        return summary.to_dict()
