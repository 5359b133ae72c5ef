from __future__ import annotations

from decimal import Decimal

import pytest

from bolso.adapters.db.facade import DB
from bolso.errors import ValidationError
from bolso.tools.ledger.ledger_tool import (
    AddTransactionTool,
    LedgerService,
    ListTransactionsTool,
)


def test_add_transaction_normalises_input(db: DB) -> None:
    # setup
    service = LedgerService(db)

    # act
    txn = service.add_transaction(
        "user-1", item="  mercado ", valor="80.456", tipo="DESPESA"
    )

    # assert
    assert txn.item == "mercado"
    assert txn.valor == Decimal("80.46")
    assert txn.categoria == "Outros"
    assert txn.forma_pagamento is None


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"item": " ", "valor": 10, "tipo": "DESPESA"}, "item is required"),
        ({"item": "mercado", "valor": 10, "tipo": "despesa"}, "Tipo de transação"),
        ({"item": "mercado", "valor": -10, "tipo": "DESPESA"}, "Valor inválido"),
        ({"item": "casa", "valor": 1e30, "tipo": "DESPESA"}, "Valor inválido"),
    ],
)
def test_add_transaction_rejects(
    db: DB, kwargs: dict[str, object], message: str
) -> None:
    # act / assert
    with pytest.raises(ValidationError, match=message):
        LedgerService(db).add_transaction("user-1", **kwargs)  # type: ignore[arg-type]

    assert db.list_transactions("user-1") == []


def test_totals_separate_reserves_from_balance(db: DB) -> None:
    # setup
    service = LedgerService(db)
    service.add_transaction("user-1", item="salário", valor=5000, tipo="RECEITA")
    service.add_transaction("user-1", item="aluguel", valor=1500, tipo="DESPESA")
    service.add_transaction("user-1", item="mercado", valor=499.9, tipo="DESPESA")
    service.add_transaction("user-1", item="poupança", valor=1000, tipo="RESERVA")
    service.add_transaction("user-2", item="outro", valor=999, tipo="RECEITA")

    # act
    totals = service.totals("user-1")

    # expected
    expected = {
        "receitas": 5000.0,
        "despesas": 1999.9,
        "reservas": 1000.0,
        "saldo": 3000.1,
    }

    # assert
    assert totals.to_dict() == expected


def test_delete_transaction(db: DB) -> None:
    # setup
    service = LedgerService(db)
    txn = service.add_transaction("user-1", item="café", valor=7, tipo="DESPESA")

    # act
    first = service.delete_transaction("user-1", txn.id)
    second = service.delete_transaction("user-1", txn.id)

    # assert
    assert first is True
    assert second is False


def test_add_tool_requires_fields(db: DB) -> None:
    # setup
    tool = AddTransactionTool(LedgerService(db))

    # act / assert
    with pytest.raises(ValidationError, match="valor is required"):
        tool.execute(user_id="user-1", item="café", tipo="DESPESA")


def test_list_tool_limits_rows_but_totals_everything(db: DB) -> None:
    # setup
    service = LedgerService(db)
    for valor in (10, 20, 30):
        service.add_transaction("user-1", item="café", valor=valor, tipo="DESPESA")
    tool = ListTransactionsTool(service)

    # act
    output = tool.execute(user_id="user-1", limit=2)

    # assert
    assert len(output["transactions"]) == 2
    assert output["totals"]["despesas"] == 60.0
