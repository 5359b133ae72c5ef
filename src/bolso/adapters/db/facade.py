from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, TypeVar

from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bolso.adapters.db.models import (
    PROVIDER_KEYS,
    Base,
    BankAccount,
    CreditCard,
    DebugLog,
    Investment,
    Loan,
    Transaction,
    TransactionType,
)
from bolso.errors import PersistenceError
from bolso.taxonomy.categorize import UNCATEGORIZED

M = TypeVar("M", bound=Base)


def utc_now() -> datetime:
    """Naive UTC timestamp, the form every TIMESTAMP column stores."""
    return datetime.now(UTC).replace(tzinfo=None)


class DB:
    """Database service layer providing ORM models and helper methods."""

    def __init__(self, url: str) -> None:
        """Initialize database connection.

        Args:
            url: Database URL (e.g., "sqlite:///bolso.db")
        """
        self._url = url
        engine_kwargs: dict[str, Any] = {"echo": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same in-memory DB.
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        self._engine = create_engine(url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self._engine, class_=Session)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        Base.metadata.create_all(self._engine)

    # Synced entities -----------------------------------------------------

    def _upsert(self, model: type[M], values: dict[str, Any]) -> M:
        """Insert or overwrite a row keyed by its provider ID.

        Every supplied field is overwritten; there is no merge and no
        conflict detection between concurrent writers.
        """
        key_column = PROVIDER_KEYS[model]
        key_value = values[key_column]
        try:
            with self.session() as session:  # type: Session
                row = session.scalars(
                    select(model).where(getattr(model, key_column) == key_value)
                ).first()
                if row is None:
                    row = model(**values)
                    session.add(row)
                else:
                    for field, value in values.items():
                        setattr(row, field, value)
                session.flush()
                session.refresh(row)
                session.expunge(row)
                return row
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to upsert {model.__tablename__} {key_value}: {e}"
            ) from e

    def upsert_bank_account(self, values: dict[str, Any]) -> BankAccount:
        return self._upsert(BankAccount, values)

    def upsert_credit_card(self, values: dict[str, Any]) -> CreditCard:
        return self._upsert(CreditCard, values)

    def upsert_loan(self, values: dict[str, Any]) -> Loan:
        return self._upsert(Loan, values)

    def upsert_investment(self, values: dict[str, Any]) -> Investment:
        return self._upsert(Investment, values)

    def list_entities(self, model: type[M], user_id: str) -> list[M]:
        with self.session() as session:  # type: Session
            rows = list(
                session.scalars(
                    select(model)
                    .where(getattr(model, "user_id") == user_id)
                    .order_by(getattr(model, "id"))
                )
            )
            for row in rows:
                session.expunge(row)
            return rows

    def list_item_ids(self, user_id: str) -> list[str]:
        """Distinct aggregator item IDs referenced by the user's bank accounts."""
        with self.session() as session:  # type: Session
            return list(
                session.scalars(
                    select(BankAccount.pluggy_item_id)
                    .where(BankAccount.user_id == user_id)
                    .distinct()
                    .order_by(BankAccount.pluggy_item_id)
                )
            )

    def delete_bank_accounts_for_item(
        self, item_id: str, *, user_id: str | None = None
    ) -> int:
        with self.session() as session:  # type: Session
            query = session.query(BankAccount).filter(
                BankAccount.pluggy_item_id == item_id
            )
            if user_id is not None:
                query = query.filter(BankAccount.user_id == user_id)
            return query.delete(synchronize_session=False)

    # Transactions --------------------------------------------------------

    def find_duplicate_transaction(
        self,
        *,
        user_id: str,
        item: str,
        valor: Decimal,
        created_at: datetime,
    ) -> int | None:
        """Return the ID of an exactly matching transaction, if any."""
        try:
            with self.session() as session:  # type: Session
                return session.scalars(
                    select(Transaction.id)
                    .where(
                        Transaction.user_id == user_id,
                        Transaction.item == item,
                        Transaction.valor == valor,
                        Transaction.created_at == created_at,
                    )
                    .limit(1)
                ).first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to look up transaction: {e}") from e

    def insert_transaction(
        self,
        *,
        user_id: str,
        item: str,
        valor: Decimal,
        tipo: TransactionType,
        categoria: str,
        forma_pagamento: str | None = None,
        created_at: datetime | None = None,
    ) -> Transaction:
        """Insert a ledger entry.

        Raises:
            PersistenceError: If the insert fails
        """
        try:
            with self.session() as session:  # type: Session
                txn = Transaction(
                    user_id=user_id,
                    item=item,
                    valor=valor,
                    tipo=tipo,
                    categoria=categoria,
                    forma_pagamento=forma_pagamento,
                    created_at=created_at or utc_now(),
                )
                session.add(txn)
                session.flush()
                session.refresh(txn)
                session.expunge(txn)
                return txn
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to insert transaction: {e}") from e

    def list_transactions(
        self, user_id: str, *, limit: int | None = None
    ) -> list[Transaction]:
        """Return the user's transactions, newest first."""
        with self.session() as session:  # type: Session
            stmt = (
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = list(session.scalars(stmt))
            for row in rows:
                session.expunge(row)
            return rows

    def latest_transaction(self, user_id: str) -> Transaction | None:
        rows = self.list_transactions(user_id, limit=1)
        return rows[0] if rows else None

    def delete_transaction(self, transaction_id: int, *, user_id: str) -> bool:
        with self.session() as session:  # type: Session
            deleted = (
                session.query(Transaction)
                .filter(
                    Transaction.id == transaction_id, Transaction.user_id == user_id
                )
                .delete(synchronize_session=False)
            )
            return deleted > 0

    def delete_last_transaction(self, user_id: str) -> Transaction | None:
        """Delete the user's most recently created transaction.

        Returns the deleted row, or None when the user has no transactions.
        Lookup and delete are separate statements; a concurrent insert can
        land in between.
        """
        last = self.latest_transaction(user_id)
        if last is None:
            return None
        self.delete_transaction(last.id, user_id=user_id)
        return last

    def list_uncategorized(
        self, user_id: str, *, limit: int = 50
    ) -> list[Transaction]:
        with self.session() as session:  # type: Session
            rows = list(
                session.scalars(
                    select(Transaction)
                    .where(
                        Transaction.user_id == user_id,
                        Transaction.categoria.in_(sorted(UNCATEGORIZED)),
                    )
                    .order_by(Transaction.id)
                    .limit(limit)
                )
            )
            for row in rows:
                session.expunge(row)
            return rows

    def update_category(
        self, transaction_id: int, *, user_id: str, categoria: str
    ) -> bool:
        try:
            with self.session() as session:  # type: Session
                updated = (
                    session.query(Transaction)
                    .filter(
                        Transaction.id == transaction_id,
                        Transaction.user_id == user_id,
                    )
                    .update({"categoria": categoria}, synchronize_session=False)
                )
                return updated > 0
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to update category of transaction {transaction_id}: {e}"
            ) from e

    # Account lifecycle ---------------------------------------------------

    def delete_user_data(self, user_id: str) -> dict[str, int]:
        """Delete every row owned by ``user_id``. Returns counts per table."""
        counts: dict[str, int] = {}
        with self.session() as session:  # type: Session
            for model in (Transaction, BankAccount, CreditCard, Loan, Investment):
                counts[model.__tablename__] = (
                    session.query(model)
                    .filter(getattr(model, "user_id") == user_id)
                    .delete(synchronize_session=False)
                )
        return counts

    # Diagnostics ---------------------------------------------------------

    def record_debug_log(
        self,
        *,
        user_id: str,
        function_name: str,
        stage: str,
        message: str,
        details: dict[str, Any] | None = None,
        level: str = "info",
    ) -> None:
        with self.session() as session:  # type: Session
            session.add(
                DebugLog(
                    user_id=user_id,
                    function_name=function_name,
                    stage=stage,
                    message=message,
                    details=details,
                    level=level,
                    created_at=utc_now(),
                )
            )

    def list_debug_logs(self, user_id: str, *, limit: int = 100) -> list[DebugLog]:
        with self.session() as session:  # type: Session
            rows = list(
                session.scalars(
                    select(DebugLog)
                    .where(DebugLog.user_id == user_id)
                    .order_by(DebugLog.id.desc())
                    .limit(limit)
                )
            )
            for row in rows:
                session.expunge(row)
            return rows
