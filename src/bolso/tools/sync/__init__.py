"""Bank sync tools package."""

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
from bolso.tools.sync.sync_tool import (
    SyncBankDataTool,
    SyncOrchestrator,
    SyncStageRecorder,
    SyncSummary,
)
from bolso.tools.sync.transactions import (
    TransactionSynchronizer,
    TransactionSyncResult,
)

__all__ = [
    # Orchestration
    "SyncOrchestrator",
    "SyncBankDataTool",
    "SyncStageRecorder",
    "SyncSummary",
    # Entity synchronizers
    "ACCOUNTS",
    "CREDIT_CARDS",
    "LOANS",
    "INVESTMENTS",
    "EntitySpec",
    "EntitySynchronizer",
    "EntitySyncResult",
    "SyncContext",
    # Transactions
    "TransactionSynchronizer",
    "TransactionSyncResult",
]
