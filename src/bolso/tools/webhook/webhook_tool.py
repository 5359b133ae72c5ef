from __future__ import annotations

from typing import Any

import loguru
from loguru import logger

from bolso.adapters.db.facade import DB
from bolso.infra.clients.pluggy import PluggyClient
from bolso.tools.sync.sync_tool import SyncOrchestrator, SyncSummary
from bolso.tools.sync.transactions import WEBHOOK_SYNC_WINDOW_DAYS

WEBHOOK_FUNCTION_NAME = "pluggy-webhook"

ITEM_CREATED = "item/created"
ITEM_UPDATED = "item/updated"
ITEM_DELETED = "item/deleted"
CONNECTOR_STATUS_UPDATED = "connector/status_updated"


class WebhookLogger:
    """Handles all logging for the aggregator webhook handler."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def received(self, event: str | None, item_id: str | None) -> None:
        self._logger.bind(event=event, item_id=item_id).info(
            "Pluggy webhook received: {} (item {})", event, item_id
        )

    def no_owner(self, item_id: str) -> None:
        self._logger.bind(item_id=item_id).warning(
            "No clientUserId found for item {}, skipping", item_id
        )

    def connector_status(self, data: Any) -> None:
        self._logger.bind(data=data).info("Connector status updated: {}", data)

    def accounts_removed(self, item_id: str, count: int) -> None:
        self._logger.bind(item_id=item_id, count=count).info(
            "Removed {} bank accounts for deleted item {}", count, item_id
        )

    def ignored(self, event: str | None) -> None:
        self._logger.bind(event=event).info("Ignoring webhook event {}", event)


class WebhookHandler:
    """
    Reacts to aggregator callbacks.

    Item creation and updates trigger a full sync (90-day transaction window)
    attributed to the item's ``clientUserId``; the callback itself carries no
    local identity. Item deletion removes the local bank accounts of that
    item. Other events are only logged.
    """

    def __init__(
        self,
        client: PluggyClient,
        db: DB,
        *,
        orchestrator: SyncOrchestrator | None = None,
    ) -> None:
        self._client = client
        self._db = db
        self._orchestrator = orchestrator or SyncOrchestrator(client, db)
        self._logger = WebhookLogger()

    def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        event = payload.get("event")
        item_id = payload.get("itemId")
        self._logger.received(event, item_id)

        if event in (ITEM_CREATED, ITEM_UPDATED) and item_id:
            summary = self.sync_item(item_id)
            response: dict[str, Any] = {"success": True}
            if summary is not None:
                response["summary"] = summary.to_dict()
            return response

        if event == ITEM_DELETED and item_id:
            deleted = self._db.delete_bank_accounts_for_item(item_id)
            self._logger.accounts_removed(item_id, deleted)
            return {"success": True, "deleted": deleted}

        if event == CONNECTOR_STATUS_UPDATED:
            self._logger.connector_status(payload.get("data"))
        else:
            self._logger.ignored(event)
        return {"success": True}

    def sync_item(self, item_id: str) -> SyncSummary | None:
        """Sync ``item_id`` for its owner. None when the item has no owner.

        Raises:
            UpstreamAuthError: If the aggregator rejects the service credentials
            ResolutionError: If the item cannot be fetched
        """
        self._client.authenticate()
        item = self._client.fetch_item(item_id)
        if not item.client_user_id:
            self._logger.no_owner(item_id)
            return None
        return self._orchestrator.sync_item(
            user_id=item.client_user_id,
            item_id=item_id,
            window_days=WEBHOOK_SYNC_WINDOW_DAYS,
            function_name=WEBHOOK_FUNCTION_NAME,
            item=item,
        )
