from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
import enum
from typing import Any

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Date,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

MONEY = Numeric(14, 2)
RATE = Numeric(10, 4)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class TransactionType(str, enum.Enum):
    """Direction of a ledger entry. The amount itself is always positive."""

    INCOME = "RECEITA"
    EXPENSE = "DESPESA"
    RESERVE = "RESERVA"

    @property
    def label(self) -> str:
        return {
            TransactionType.INCOME: "Receita",
            TransactionType.EXPENSE: "Despesa",
            TransactionType.RESERVE: "Reserva",
        }[self]


class Transaction(Base):
    """Ledger entry. Inserted or deleted, never updated in place."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    item: Mapped[str] = mapped_column(Text, nullable=False)
    valor: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tipo: Mapped[TransactionType] = mapped_column(
        Enum(
            TransactionType,
            name="transaction_type",
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
    )
    categoria: Mapped[str] = mapped_column(String, nullable=False)
    forma_pagamento: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "item": self.item,
            "valor": float(self.valor),
            "tipo": self.tipo.value,
            "categoria": self.categoria,
            "forma_pagamento": self.forma_pagamento,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class BankAccount(Base):
    __tablename__ = "bank_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pluggy_account_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    pluggy_item_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    bank_name: Mapped[str] = mapped_column(String, nullable=False)
    account_type: Mapped[str] = mapped_column(String, nullable=False)
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String, nullable=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)


class CreditCard(Base):
    __tablename__ = "credit_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pluggy_card_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    bank_name: Mapped[str] = mapped_column(String, nullable=False)
    card_name: Mapped[str] = mapped_column(String, nullable=False)
    limit_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    limit_available: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    current_bill: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    closing_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class Loan(Base):
    __tablename__ = "loans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pluggy_loan_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    bank_name: Mapped[str] = mapped_column(String, nullable=False)
    loan_type: Mapped[str] = mapped_column(String, nullable=False)
    amount_available: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    amount_taken: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    monthly_payment: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class Investment(Base):
    __tablename__ = "investments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pluggy_investment_id: Mapped[str] = mapped_column(
        String, unique=True, nullable=False
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    bank_name: Mapped[str] = mapped_column(String, nullable=False)
    investment_type: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    total_saved: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String, nullable=False)
    annual_rate: Mapped[Decimal] = mapped_column(RATE, nullable=False)


class DebugLog(Base):
    """Append-only diagnostic record of a sync stage."""

    __tablename__ = "debug_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    function_name: Mapped[str] = mapped_column(String, nullable=False)
    stage: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    level: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "function_name": self.function_name,
            "stage": self.stage,
            "message": self.message,
            "details": self.details,
            "level": self.level,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# Upsert conflict target per synced entity.
PROVIDER_KEYS: dict[type[Base], str] = {
    BankAccount: "pluggy_account_id",
    CreditCard: "pluggy_card_id",
    Loan: "pluggy_loan_id",
    Investment: "pluggy_investment_id",
}
