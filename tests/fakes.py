"""Hand-written stand-ins for the aggregator and gateway clients."""

from __future__ import annotations

from datetime import date
from typing import Any

from bolso.adapters.db.facade import DB
from bolso.errors import ResolutionError, UpstreamError
from bolso.infra.clients.gateway import AudioPayload
from bolso.infra.clients.pluggy import (
    PluggyAccount,
    PluggyCreditCard,
    PluggyInvestment,
    PluggyItem,
    PluggyLoan,
    PluggyTransaction,
)


def create_db() -> DB:
    """Create an in-memory database with every table."""
    db = DB("sqlite://")
    db.create_schema()
    return db


def create_item(
    item_id: str = "item-1",
    *,
    bank_name: str | None = "Nubank",
    client_user_id: str | None = "user-1",
) -> PluggyItem:
    connector = {"id": 212, "name": bank_name} if bank_name else None
    return PluggyItem.parse(
        {"id": item_id, "connector": connector, "clientUserId": client_user_id}
    )


def create_account(
    account_id: str = "acc-1", *, balance: str = "1500.00"
) -> PluggyAccount:
    return PluggyAccount.parse(
        {"id": account_id, "type": "BANK", "balance": balance, "currencyCode": "BRL"}
    )


def create_credit_card(
    card_id: str = "card-1",
    *,
    credit_limit: str = "5000.00",
    available: str = "3200.00",
    balance: str = "1800.00",
) -> PluggyCreditCard:
    return PluggyCreditCard.parse(
        {
            "id": card_id,
            "name": "Ultravioleta",
            "brand": "MASTERCARD",
            "creditLimit": credit_limit,
            "availableCreditLimit": available,
            "balance": balance,
            "balanceDueDate": "2024-03-10T00:00:00.000Z",
            "balanceCloseDate": "2024-03-03T00:00:00.000Z",
        }
    )


def create_loan(loan_id: str = "loan-1", *, principal: str = "10000.00") -> PluggyLoan:
    return PluggyLoan.parse(
        {
            "id": loan_id,
            "type": "PERSONAL_LOAN",
            "contractedAmount": "12000.00",
            "principalAmount": principal,
            "interestRate": "2.5",
            "installmentAmount": "650.00",
        }
    )


def create_investment(
    investment_id: str = "inv-1", *, balance: str = "2500.50"
) -> PluggyInvestment:
    return PluggyInvestment.parse(
        {
            "id": investment_id,
            "type": "FIXED_INCOME",
            "name": "CDB Banco",
            "balance": balance,
            "currencyCode": "BRL",
            "annualRate": "12.5",
        }
    )


def create_transaction(
    *,
    description: str | None = "UBER *TRIP",
    amount: str = "-25.90",
    when: str = "2024-01-15T12:00:00.000Z",
    category: str | None = None,
    account_id: str = "acc-1",
) -> PluggyTransaction:
    return PluggyTransaction.parse(
        {
            "id": f"txn-{description}-{amount}",
            "accountId": account_id,
            "description": description,
            "amount": amount,
            "date": when,
            "category": category,
        }
    )


class FakePluggyClient:
    """In-memory aggregator. ``failures`` maps a method name to the error
    it should raise."""

    def __init__(
        self,
        *,
        item: PluggyItem | None = None,
        accounts: list[PluggyAccount] | None = None,
        credit_cards: list[PluggyCreditCard] | None = None,
        loans: list[PluggyLoan] | None = None,
        investments: list[PluggyInvestment] | None = None,
        transactions: dict[str, list[PluggyTransaction]] | None = None,
        failures: dict[str, Exception] | None = None,
        missing_items: set[str] | None = None,
    ) -> None:
        self.item = item or create_item()
        self.accounts = accounts or []
        self.credit_cards = credit_cards or []
        self.loans = loans or []
        self.investments = investments or []
        self.transactions = transactions or {}
        self.failures = failures or {}
        self.missing_items = missing_items or set()
        self.calls: list[tuple[str, Any]] = []

    def _call(self, name: str, arg: Any = None) -> None:
        self.calls.append((name, arg))
        if name in self.failures:
            raise self.failures[name]

    def called(self, name: str) -> list[Any]:
        return [arg for call, arg in self.calls if call == name]

    def authenticate(self) -> str:
        self._call("authenticate")
        return "api-key"

    def fetch_item(self, item_id: str) -> PluggyItem:
        self._call("fetch_item", item_id)
        if item_id != self.item.id:
            raise ResolutionError(
                f"Pluggy API error (404) on GET /items/{item_id}",
                upstream_status=404,
            )
        return self.item

    def fetch_accounts(self, item_id: str) -> list[PluggyAccount]:
        self._call("fetch_accounts", item_id)
        return list(self.accounts)

    def fetch_credit_cards(self, item_id: str) -> list[PluggyCreditCard]:
        self._call("fetch_credit_cards", item_id)
        return list(self.credit_cards)

    def fetch_loans(self, item_id: str) -> list[PluggyLoan]:
        self._call("fetch_loans", item_id)
        return list(self.loans)

    def fetch_investments(self, item_id: str) -> list[PluggyInvestment]:
        self._call("fetch_investments", item_id)
        return list(self.investments)

    def fetch_transactions(
        self, account_id: str, *, since: date
    ) -> list[PluggyTransaction]:
        self._call("fetch_transactions", (account_id, since))
        return list(self.transactions.get(account_id, []))

    def delete_item(self, item_id: str) -> bool:
        self._call("delete_item", item_id)
        return item_id not in self.missing_items

    def mint_connect_token(self, user_id: str, webhook_url: str | None) -> str:
        self._call("mint_connect_token", (user_id, webhook_url))
        return f"connect-token-{user_id}"


class FakeGateway:
    """Scripted gateway: returns ``transcription`` and then each queued reply."""

    def __init__(
        self,
        *,
        transcription: str = "",
        replies: list[str] | None = None,
        failures: dict[str, Exception] | None = None,
    ) -> None:
        self.transcription = transcription
        self.replies = list(replies or [])
        self.failures = failures or {}
        self.transcribed: list[AudioPayload] = []
        self.completions: list[dict[str, Any]] = []

    def transcribe(self, audio: AudioPayload) -> str:
        self.transcribed.append(audio)
        if "transcribe" in self.failures:
            raise self.failures["transcribe"]
        return self.transcription

    def complete(
        self,
        system_prompt: str,
        user_text: str,
        *,
        max_tokens: int | None = None,
        purpose: str = "completion",
    ) -> str:
        self.completions.append(
            {
                "system_prompt": system_prompt,
                "user_text": user_text,
                "max_tokens": max_tokens,
                "purpose": purpose,
            }
        )
        if "complete" in self.failures:
            raise self.failures["complete"]
        if not self.replies:
            raise UpstreamError("No scripted reply left")
        return self.replies.pop(0)
