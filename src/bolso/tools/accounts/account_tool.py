"""Bank connection and account lifecycle operations."""

from __future__ import annotations

from typing import Any

import loguru
from loguru import logger

from bolso.adapters.db.facade import DB
from bolso.errors import UpstreamError, ValidationError
from bolso.infra.clients.pluggy import PluggyClient
from bolso.tools.base import StandardTool, ToolInputSchema

DELETE_CONFIRMATION = "DELETE_MY_ACCOUNT"


class AccountToolLogger:
    """Handles all logging for account lifecycle tools."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def item_already_gone(self, item_id: str) -> None:
        self._logger.bind(item_id=item_id).info(
            "Item {} was already deleted at Pluggy", item_id
        )

    def item_delete_failed(self, item_id: str, error: Exception) -> None:
        self._logger.bind(item_id=item_id).error(
            "Failed to delete item {} at Pluggy: {}", item_id, error
        )

    def aggregator_unavailable(self, user_id: str, error: Exception) -> None:
        self._logger.bind(user_id=user_id).error(
            "Skipping Pluggy disconnection for user {}: {}", user_id, error
        )

    def disconnected(self, user_id: str, item_id: str, accounts: int) -> None:
        self._logger.bind(user_id=user_id, item_id=item_id, accounts=accounts).info(
            "Disconnected bank item {} for user {} ({} accounts removed)",
            item_id,
            user_id,
            accounts,
        )

    def user_deleted(self, user_id: str, counts: dict[str, int]) -> None:
        self._logger.bind(user_id=user_id, **counts).info(
            "Deleted all data for user {}: {}", user_id, counts
        )


class ConnectTokenTool(StandardTool):
    """Mints a connect token binding the aggregator session to the caller."""

    _name = "pluggy_connect_token"
    _description = "Create a Pluggy connect token for the bank-linking widget."
    _input_schema: ToolInputSchema = {
        "type": "object",
        "properties": {},
        "required": [],
    }

    def __init__(self, client: PluggyClient, *, webhook_url: str | None) -> None:
        self._client = client
        self._webhook_url = webhook_url

    def _execute_impl(self, *, user_id: str, **kwargs: Any) -> dict[str, Any]:
        self._client.authenticate()
        token = self._client.mint_connect_token(user_id, self._webhook_url)
        return {"connectToken": token, "userId": user_id}


class AccountService:
    """Disconnects bank items and deletes user accounts."""

    def __init__(self, client: PluggyClient | None, db: DB) -> None:
        """
        Args:
            client: Pluggy client; None when aggregator credentials are not
                configured (account deletion then skips the aggregator)
            db: Database facade
        """
        self._client = client
        self._db = db
        self._logger = AccountToolLogger()

    def disconnect_bank(self, user_id: str, item_id: str) -> dict[str, Any]:
        """Delete the item at the aggregator, then its local bank accounts.

        An item the aggregator no longer knows is treated as deleted; any
        other aggregator failure is logged and the local cleanup still runs.

        Raises:
            UpstreamAuthError: If the aggregator rejects the service credentials
        """
        if self._client is None:
            raise UpstreamError("Pluggy credentials not configured")
        self._client.authenticate()
        self._delete_item(item_id)

        removed = self._db.delete_bank_accounts_for_item(item_id, user_id=user_id)
        self._logger.disconnected(user_id, item_id, removed)
        return {"success": True, "removedAccounts": removed}

    def delete_user_account(
        self, user_id: str, confirmation: str | None
    ) -> dict[str, Any]:
        """Remove every row owned by ``user_id``.

        Aggregator disconnection of each linked item is best effort.

        Raises:
            ValidationError: If ``confirmation`` is not the literal code
        """
        if confirmation != DELETE_CONFIRMATION:
            raise ValidationError("Invalid confirmation code")

        item_ids = self._db.list_item_ids(user_id)
        if self._client is not None and item_ids:
            try:
                self._client.authenticate()
            except UpstreamError as e:
                self._logger.aggregator_unavailable(user_id, e)
            else:
                for item_id in item_ids:
                    self._delete_item(item_id)

        counts = self._db.delete_user_data(user_id)
        self._logger.user_deleted(user_id, counts)
        return {"success": True, "deleted": counts}

    def _delete_item(self, item_id: str) -> None:
        try:
            existed = self._client.delete_item(item_id) if self._client else False
        except UpstreamError as e:
            self._logger.item_delete_failed(item_id, e)
            return
        if not existed:
            self._logger.item_already_gone(item_id)


class DisconnectBankTool(StandardTool):
    _name = "disconnect_bank"
    _description = "Disconnect one bank item and remove its local accounts."
    _input_schema: ToolInputSchema = {
        "type": "object",
        "properties": {
            "itemId": {"type": "string", "description": "Pluggy item ID"},
        },
        "required": ["itemId"],
    }

    def __init__(self, service: AccountService) -> None:
        self._service = service

    def _execute_impl(self, *, user_id: str, **kwargs: Any) -> dict[str, Any]:
        return self._service.disconnect_bank(user_id, kwargs["itemId"])


class DeleteUserAccountTool(StandardTool):
    _name = "delete_user_account"
    _description = "Delete every record owned by the caller."
    _input_schema: ToolInputSchema = {
        "type": "object",
        "properties": {
            "confirmation": {
                "type": "string",
                "description": f"Must be {DELETE_CONFIRMATION}",
            },
        },
        "required": [],
    }

    def __init__(self, service: AccountService) -> None:
        self._service = service

    def _execute_impl(self, *, user_id: str, **kwargs: Any) -> dict[str, Any]:
        return self._service.delete_user_account(user_id, kwargs.get("confirmation"))
