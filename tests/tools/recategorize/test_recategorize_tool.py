from __future__ import annotations

from decimal import Decimal

from bolso.adapters.db.facade import DB
from bolso.adapters.db.models import Transaction, TransactionType
from bolso.errors import QuotaExceededError
from bolso.tools.recategorize.recategorize_tool import (
    CATEGORIZATION_PROMPT,
    Recategorizer,
    RecategorizeTransactionsTool,
)
from fakes import FakeGateway


def insert(db: DB, item: str, categoria: str = "Geral") -> Transaction:
    return db.insert_transaction(
        user_id="user-1",
        item=item,
        valor=Decimal("20.00"),
        tipo=TransactionType.EXPENSE,
        categoria=categoria,
    )


def categories(db: DB) -> dict[str, str]:
    return {row.item: row.categoria for row in db.list_transactions("user-1")}


def create_recategorizer(gateway: FakeGateway, db: DB, **kwargs: int) -> Recategorizer:
    return Recategorizer(gateway, db, **kwargs)  # type: ignore[arg-type]


def test_keyword_match_skips_the_model(db: DB) -> None:
    # setup
    insert(db, "UBER EATS *PEDIDO")
    gateway = FakeGateway()

    # act
    result = create_recategorizer(gateway, db).recategorize("user-1")

    # assert
    assert result.updated == 1
    assert result.by_keyword == 1
    assert gateway.completions == []
    assert categories(db) == {"UBER EATS *PEDIDO": "Alimentação"}


def test_model_answers_when_keywords_do_not(db: DB) -> None:
    # setup
    insert(db, "Padaria Real", categoria="Outros")
    gateway = FakeGateway(replies=["  Alimentação\n"])

    # act
    result = create_recategorizer(gateway, db).recategorize("user-1")

    # assert
    assert result.by_model == 1
    assert categories(db) == {"Padaria Real": "Alimentação"}
    call = gateway.completions[0]
    assert call["system_prompt"] == CATEGORIZATION_PROMPT
    assert call["user_text"] == "Padaria Real"
    assert call["max_tokens"] == 50


def test_fallback_answers_are_not_written(db: DB) -> None:
    """A model answer of Outros/Geral or nothing leaves the row alone."""
    # setup
    insert(db, "Loja A")
    insert(db, "Loja B")
    insert(db, "Loja C")
    gateway = FakeGateway(replies=["Outros", "Geral", ""])

    # act
    result = create_recategorizer(gateway, db).recategorize("user-1")

    # assert
    assert result.total == 3
    assert result.updated == 0
    assert set(categories(db).values()) == {"Geral"}


def test_gateway_failure_skips_row_and_continues(db: DB) -> None:
    # setup
    insert(db, "Loja A")
    insert(db, "NETFLIX.COM")
    gateway = FakeGateway(failures={"complete": QuotaExceededError("sem créditos")})

    # act
    result = create_recategorizer(gateway, db).recategorize("user-1")

    # assert
    assert result.failed == 1
    assert result.updated == 1
    assert categories(db)["NETFLIX.COM"] == "Lazer"


def test_categorized_rows_are_not_revisited(db: DB) -> None:
    # setup
    insert(db, "Padaria Real", categoria="Alimentação")
    gateway = FakeGateway()

    # act
    result = create_recategorizer(gateway, db).recategorize("user-1")

    # assert
    assert result.total == 0
    assert result.message == "Nenhuma transação para recategorizar"


def test_batch_size_limits_rows(db: DB) -> None:
    # setup
    for i in range(5):
        insert(db, f"PIX {i}")

    # act
    result = create_recategorizer(FakeGateway(), db, batch_size=3).recategorize(
        "user-1"
    )

    # assert
    assert result.total == 3
    assert result.updated == 3


def test_tool_output(db: DB) -> None:
    # setup
    insert(db, "PIX enviado")
    tool = RecategorizeTransactionsTool(create_recategorizer(FakeGateway(), db))

    # act
    output = tool.execute(user_id="user-1")

    # assert
    assert output == {
        "updated": 1,
        "total": 1,
        "message": "1 transações recategorizadas",
    }
