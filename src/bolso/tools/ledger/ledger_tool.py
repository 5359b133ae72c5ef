"""Manual ledger entries, listing and summary totals."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import loguru
from loguru import logger

from bolso.adapters.db.facade import DB
from bolso.adapters.db.models import Transaction, TransactionType
from bolso.errors import ValidationError
from bolso.tools.base import StandardTool, ToolInputSchema
from bolso.tools.voice.extraction import (
    FALLBACK_CATEGORY,
    INVALID_TIPO_MESSAGE,
    INVALID_VALOR_MESSAGE,
    parse_tipo,
    parse_valor,
)

ZERO = Decimal("0")


@dataclass(frozen=True)
class LedgerTotals:
    receitas: Decimal = ZERO
    despesas: Decimal = ZERO
    reservas: Decimal = ZERO

    @property
    def saldo(self) -> Decimal:
        # Reserves are neither income nor spending.
        return self.receitas - self.despesas

    def to_dict(self) -> dict[str, float]:
        return {
            "receitas": float(self.receitas),
            "despesas": float(self.despesas),
            "reservas": float(self.reservas),
            "saldo": float(self.saldo),
        }


def compute_totals(transactions: list[Transaction]) -> LedgerTotals:
    sums = {tipo: ZERO for tipo in TransactionType}
    for txn in transactions:
        sums[txn.tipo] += Decimal(txn.valor)
    return LedgerTotals(
        receitas=sums[TransactionType.INCOME],
        despesas=sums[TransactionType.EXPENSE],
        reservas=sums[TransactionType.RESERVE],
    )


class LedgerLogger:
    """Handles all logging for ledger operations."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def added(self, user_id: str, txn: Transaction) -> None:
        self._logger.bind(user_id=user_id, transaction_id=txn.id).info(
            "Added {} of {} for user {}", txn.tipo.value, txn.valor, user_id
        )

    def deleted(self, user_id: str, transaction_id: int, found: bool) -> None:
        self._logger.bind(user_id=user_id, transaction_id=transaction_id).info(
            "Delete transaction {} for user {}: {}",
            transaction_id,
            user_id,
            "deleted" if found else "not found",
        )


class LedgerService:
    def __init__(self, db: DB) -> None:
        self._db = db
        self._logger = LedgerLogger()

    def add_transaction(
        self,
        user_id: str,
        *,
        item: str | None,
        valor: Any,
        tipo: str | None,
        categoria: str | None = None,
        forma_pagamento: str | None = None,
    ) -> Transaction:
        """Insert a manually entered transaction dated now.

        Raises:
            ValidationError: If ``item`` is blank, ``tipo`` is unknown or
                ``valor`` is not a positive number
        """
        description = (item or "").strip()
        if not description:
            raise ValidationError("item is required")
        parsed_tipo = parse_tipo(tipo or "")
        if parsed_tipo is None:
            raise ValidationError(INVALID_TIPO_MESSAGE)
        parsed_valor = parse_valor(valor)
        if parsed_valor is None:
            raise ValidationError(INVALID_VALOR_MESSAGE)

        txn = self._db.insert_transaction(
            user_id=user_id,
            item=description,
            valor=parsed_valor,
            tipo=parsed_tipo,
            categoria=(categoria or "").strip() or FALLBACK_CATEGORY,
            forma_pagamento=forma_pagamento or None,
        )
        self._logger.added(user_id, txn)
        return txn

    def list_transactions(
        self, user_id: str, *, limit: int | None = None
    ) -> list[Transaction]:
        return self._db.list_transactions(user_id, limit=limit)

    def totals(self, user_id: str) -> LedgerTotals:
        return compute_totals(self._db.list_transactions(user_id))

    def delete_transaction(self, user_id: str, transaction_id: int) -> bool:
        found = self._db.delete_transaction(transaction_id, user_id=user_id)
        self._logger.deleted(user_id, transaction_id, found)
        return found


class AddTransactionTool(StandardTool):
    _name = "add_transaction"
    _description = "Record a manually entered transaction."
    _input_schema: ToolInputSchema = {
        "type": "object",
        "properties": {
            "item": {"type": "string", "description": "What was bought or received"},
            "valor": {"type": "number", "description": "Positive amount"},
            "tipo": {
                "type": "string",
                "description": "Transaction direction",
                "enum": [t.value for t in TransactionType],
            },
            "categoria": {"type": "string", "description": "Category name"},
            "forma_pagamento": {"type": "string", "description": "Payment method"},
        },
        "required": ["item", "valor", "tipo"],
    }

    def __init__(self, service: LedgerService) -> None:
        self._service = service

    def _execute_impl(self, *, user_id: str, **kwargs: Any) -> dict[str, Any]:
        txn = self._service.add_transaction(
            user_id,
            item=kwargs["item"],
            valor=kwargs["valor"],
            tipo=kwargs["tipo"],
            categoria=kwargs.get("categoria"),
            forma_pagamento=kwargs.get("forma_pagamento"),
        )
        return {"success": True, "transaction": txn.to_dict()}


class ListTransactionsTool(StandardTool):
    _name = "list_transactions"
    _description = "List the caller's transactions, newest first, with totals."
    _input_schema: ToolInputSchema = {
        "type": "object",
        "properties": {
            "limit": {"type": "integer", "description": "Maximum rows to return"},
        },
        "required": [],
    }

    def __init__(self, service: LedgerService) -> None:
        self._service = service

    def _execute_impl(self, *, user_id: str, **kwargs: Any) -> dict[str, Any]:
        transactions = self._service.list_transactions(user_id)
        limit = kwargs.get("limit")
        shown = transactions[:limit] if limit is not None else transactions
        return {
            "transactions": [txn.to_dict() for txn in shown],
            "totals": compute_totals(transactions).to_dict(),
        }
