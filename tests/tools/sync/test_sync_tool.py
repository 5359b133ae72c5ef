from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from unittest.mock import patch

from loguru import logger
import pytest

from bolso.adapters.db.facade import DB
from bolso.adapters.db.models import BankAccount, CreditCard
from bolso.errors import (
    ResolutionError,
    UpstreamAuthError,
    UpstreamError,
    ValidationError,
)
from bolso.infra.clients.pluggy import PluggyClient
from bolso.tools.sync.sync_tool import (
    SyncBankDataTool,
    SyncOrchestrator,
    SyncStageRecorder,
    SyncSummary,
)
from fakes import (
    FakePluggyClient,
    create_account,
    create_credit_card,
    create_investment,
    create_item,
    create_loan,
    create_transaction,
)

# Helper functions


def create_full_client(**overrides: Any) -> FakePluggyClient:
    """Aggregator with one of each entity and two account transactions."""
    kwargs: dict[str, Any] = {
        "item": create_item("item-1", bank_name="Itaú"),
        "accounts": [create_account("acc-1", balance="1500.00")],
        "credit_cards": [create_credit_card("card-1")],
        "loans": [create_loan("loan-1", principal="10000.00")],
        "investments": [create_investment("inv-1", balance="2500.50")],
        "transactions": {
            "acc-1": [
                create_transaction(description="UBER *TRIP", amount="-25.90"),
                create_transaction(description="SALARIO ACME", amount="5000.00"),
            ]
        },
    }
    kwargs.update(overrides)
    return FakePluggyClient(**kwargs)


def create_orchestrator(client: FakePluggyClient, db: DB) -> SyncOrchestrator:
    return SyncOrchestrator(
        client,  # type: ignore[arg-type]
        db,
        today=lambda: date(2024, 1, 31),
    )


def stages(db: DB, user_id: str = "user-1") -> list[str]:
    return [log.stage for log in reversed(db.list_debug_logs(user_id))]


class FailingDB:
    """Only the debug log write is broken."""

    def record_debug_log(self, **kwargs: Any) -> None:
        raise RuntimeError("debug_logs table missing")


# Tests


def test_sync_item_stores_every_entity(db: DB) -> None:
    """A full sync reports counts and totals per entity type."""
    # setup
    client = create_full_client()

    # act
    summary = create_orchestrator(client, db).sync_item(
        user_id="user-1", item_id="item-1"
    )

    # expected
    expected = {
        "success": True,
        "bankName": "Itaú",
        "synced": {
            "accounts": 1,
            "creditCards": 1,
            "loans": 1,
            "investments": 1,
            "transactions": 2,
        },
        "totals": {
            "balance": 1500.0,
            "creditLimit": 5000.0,
            "creditAvailable": 3200.0,
            "loans": 10000.0,
            "investments": 2500.5,
        },
    }

    # assert
    assert summary.to_dict() == expected
    accounts = db.list_entities(BankAccount, "user-1")
    assert accounts[0].bank_name == "Itaú"
    assert accounts[0].pluggy_item_id == "item-1"
    assert accounts[0].last_sync_at is not None


def test_failing_stage_does_not_stop_later_stages(db: DB) -> None:
    """A credit card failure is recorded; loans and investments still sync."""
    # setup
    client = create_full_client(
        failures={"fetch_credit_cards": UpstreamError("Pluggy API error (500)")}
    )

    # act
    summary = create_orchestrator(client, db).sync_item(
        user_id="user-1", item_id="item-1"
    )

    # assert
    output = summary.to_dict()
    assert output["synced"]["creditCards"] == 0
    assert output["synced"]["loans"] == 1
    assert output["synced"]["investments"] == 1
    assert output["totals"]["creditLimit"] == 0.0
    assert output["errors"] == {"credit_cards": "Pluggy API error (500)"}
    assert db.list_entities(CreditCard, "user-1") == []
    assert "CREDIT_CARDS_ERROR" in stages(db)
    assert "LOANS_SYNC_DONE" in stages(db)


def test_transaction_fetch_failure_keeps_account(db: DB) -> None:
    # setup
    client = create_full_client(
        failures={"fetch_transactions": UpstreamError("timeout")}
    )

    # act
    summary = create_orchestrator(client, db).sync_item(
        user_id="user-1", item_id="item-1"
    )

    # assert
    assert summary.count("accounts") == 1
    assert summary.transactions_inserted == 0
    assert "TRANSACTIONS_ERROR" in stages(db)


def test_malformed_provider_transaction_is_contained(db: DB) -> None:
    """One bad transaction does not cost the other account or the balance."""
    # setup
    client = PluggyClient(client_id="id", client_secret="secret")  # noqa: S106
    responses: dict[str, Any] = {
        "/auth": {"apiKey": "key"},
        "/items/item-1": {"id": "item-1", "connector": {"name": "Nubank"}},
        "/accounts": {
            "results": [
                {"id": "acc-1", "balance": 1500},
                {"id": "acc-2", "balance": 300},
            ]
        },
        "/transactions:acc-1": {
            "results": [
                {"description": "X", "date": "2024-01-15T12:00:00Z"},
                {"description": "PIX", "amount": -20, "date": "2024-01-15T12:00:00Z"},
            ]
        },
        "/transactions:acc-2": {
            "results": [
                {"description": "TED", "amount": 80, "date": "2024-01-16T12:00:00Z"}
            ]
        },
    }

    def route(method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        query = kwargs.get("query") or {}
        if path == "/transactions":
            path = f"{path}:{query['accountId']}"
        return responses.get(path, {"results": []})

    # act
    with patch.object(client, "_request", side_effect=route):
        summary = SyncOrchestrator(
            client, db, today=lambda: date(2024, 1, 31)
        ).sync_item(user_id="user-1", item_id="item-1")

    # assert
    output = summary.to_dict()
    assert output["synced"]["accounts"] == 2
    assert output["synced"]["transactions"] == 2
    assert output["totals"]["balance"] == 1800.0
    assert "errors" not in output
    assert len(db.list_entities(BankAccount, "user-1")) == 2


def test_resync_skips_existing_transactions(db: DB) -> None:
    # setup
    client = create_full_client()
    orchestrator = create_orchestrator(client, db)
    orchestrator.sync_item(user_id="user-1", item_id="item-1")

    # act
    summary = orchestrator.sync_item(user_id="user-1", item_id="item-1")

    # assert
    assert summary.transactions_inserted == 0
    assert summary.transactions_skipped == 2
    assert len(db.list_transactions("user-1")) == 2
    assert len(db.list_entities(BankAccount, "user-1")) == 1


def test_authentication_failure_is_fatal(db: DB) -> None:
    # setup
    client = create_full_client(
        failures={"authenticate": UpstreamAuthError("bad credentials")}
    )

    # act / assert
    with pytest.raises(UpstreamAuthError):
        create_orchestrator(client, db).sync_item(user_id="user-1", item_id="item-1")

    assert stages(db) == ["SYNC_START", "PLUGGY_AUTH", "PLUGGY_AUTH_ERROR"]
    assert client.called("fetch_accounts") == []


def test_unknown_item_is_fatal(db: DB) -> None:
    # setup
    client = create_full_client()

    # act / assert
    with pytest.raises(ResolutionError):
        create_orchestrator(client, db).sync_item(
            user_id="user-1", item_id="missing-item"
        )

    assert stages(db)[-1] == "FETCH_ITEM_ERROR"
    assert db.list_entities(BankAccount, "user-1") == []


def test_stage_records_are_persisted_in_order(db: DB) -> None:
    # setup
    client = create_full_client()

    # act
    create_orchestrator(client, db).sync_item(user_id="user-1", item_id="item-1")

    # expected
    expected = [
        "SYNC_START",
        "PLUGGY_AUTH",
        "PLUGGY_AUTH_SUCCESS",
        "FETCH_ITEM",
        "FETCH_ITEM_SUCCESS",
        "FETCH_ACCOUNTS",
        "ACCOUNTS_SYNC_DONE",
        "FETCH_CREDIT_CARDS",
        "CREDIT_CARDS_SYNC_DONE",
        "FETCH_LOANS",
        "LOANS_SYNC_DONE",
        "FETCH_INVESTMENTS",
        "INVESTMENTS_SYNC_DONE",
        "SYNC_COMPLETE",
    ]

    # assert
    assert stages(db) == expected
    logs = db.list_debug_logs("user-1")
    assert {log.function_name for log in logs} == {"sync-bank-data"}


def test_debug_logs_can_be_disabled(db: DB) -> None:
    # setup
    orchestrator = SyncOrchestrator(
        create_full_client(),  # type: ignore[arg-type]
        db,
        record_debug_logs=False,
        today=lambda: date(2024, 1, 31),
    )

    # act
    orchestrator.sync_item(user_id="user-1", item_id="item-1")

    # assert
    assert db.list_debug_logs("user-1") == []


def test_recorder_survives_debug_log_write_failure() -> None:
    # setup
    messages: list[str] = []
    handler_id = logger.add(messages.append, level="WARNING", format="{message}")
    recorder = SyncStageRecorder(
        FailingDB(), user_id="user-1"  # type: ignore[arg-type]
    )

    # act
    try:
        recorder.record("SYNC_START", "Starting sync", {"amount": Decimal("1.50")})
    finally:
        logger.remove(handler_id)

    # assert
    assert any("Failed to save debug log" in message for message in messages)


def test_summary_totals_default_to_zero() -> None:
    # act
    output = SyncSummary(bank_name="Nubank").to_dict()

    # assert
    assert output["synced"]["accounts"] == 0
    assert output["totals"]["balance"] == 0.0
    assert "errors" not in output


def test_tool_requires_item_id(db: DB) -> None:
    # setup
    tool = SyncBankDataTool(create_orchestrator(create_full_client(), db))

    # act / assert
    with pytest.raises(ValidationError, match="itemId is required"):
        tool.execute(user_id="user-1")


def test_tool_returns_summary(db: DB) -> None:
    # setup
    tool = SyncBankDataTool(create_orchestrator(create_full_client(), db))

    # act
    output = tool.execute(user_id="user-1", itemId="item-1")

    # assert
    assert output["success"] is True
    assert output["synced"]["transactions"] == 2
