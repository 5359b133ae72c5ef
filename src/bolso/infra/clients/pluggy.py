from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
import json
from typing import Any, Self, TypeVar, cast
import urllib.error
import urllib.parse
import urllib.request

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bolso.core.config import DEFAULT_PLUGGY_BASE_URL, PluggyConfig
from bolso.errors import (
    RateLimitError,
    ResolutionError,
    UpstreamAuthError,
    UpstreamError,
)

UNKNOWN_BANK = "Unknown Bank"

M = TypeVar("M", bound="PluggyBaseModel")


class PluggyBaseModel(BaseModel):
    """Shared base for Pluggy response models with a short parse alias."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class AuthResponse(PluggyBaseModel):
    api_key: str = Field(alias="apiKey")


class ConnectTokenResponse(PluggyBaseModel):
    access_token: str = Field(alias="accessToken")


class PluggyConnector(PluggyBaseModel):
    id: int | None = None
    name: str | None = None


class PluggyItem(PluggyBaseModel):
    id: str
    connector: PluggyConnector | None = None
    client_user_id: str | None = Field(default=None, alias="clientUserId")

    @property
    def bank_name(self) -> str:
        if self.connector and self.connector.name:
            return self.connector.name
        return UNKNOWN_BANK

    @property
    def connector_id(self) -> int | None:
        return self.connector.id if self.connector else None


class PluggyAccount(PluggyBaseModel):
    id: str
    type: str | None = None
    balance: Decimal | None = None
    currency_code: str | None = Field(default=None, alias="currencyCode")


class PluggyCreditCard(PluggyBaseModel):
    id: str
    name: str | None = None
    brand: str | None = None
    credit_limit: Decimal | None = Field(default=None, alias="creditLimit")
    available_credit_limit: Decimal | None = Field(
        default=None, alias="availableCreditLimit"
    )
    balance: Decimal | None = None
    balance_due_date: datetime | None = Field(default=None, alias="balanceDueDate")
    balance_close_date: datetime | None = Field(
        default=None, alias="balanceCloseDate"
    )


class PluggyLoan(PluggyBaseModel):
    id: str
    type: str | None = None
    contract_type: str | None = Field(default=None, alias="contractType")
    contracted_amount: Decimal | None = Field(default=None, alias="contractedAmount")
    principal_amount: Decimal | None = Field(default=None, alias="principalAmount")
    interest_rate: Decimal | None = Field(default=None, alias="interestRate")
    installment_amount: Decimal | None = Field(
        default=None, alias="installmentAmount"
    )
    due_date: datetime | None = Field(default=None, alias="dueDate")


class PluggyInvestment(PluggyBaseModel):
    id: str
    type: str | None = None
    subtype: str | None = None
    name: str | None = None
    balance: Decimal | None = None
    value: Decimal | None = None
    currency_code: str | None = Field(default=None, alias="currencyCode")
    annual_rate: Decimal | None = Field(default=None, alias="annualRate")


class PluggyTransaction(PluggyBaseModel):
    id: str | None = None
    account_id: str | None = Field(default=None, alias="accountId")
    description: str | None = None
    description_raw: str | None = Field(default=None, alias="descriptionRaw")
    amount: Decimal
    date: datetime
    category: str | None = None


class ResultsPage(PluggyBaseModel):
    results: list[dict[str, Any]] = Field(default_factory=list)


class PluggyClient:
    """Thin client for the Pluggy open-banking API.

    The API key obtained by :meth:`authenticate` is kept on the instance for
    the remainder of the request; every other call sends it as ``X-API-KEY``.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        base_url: str = DEFAULT_PLUGGY_BASE_URL,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._base_url = base_url.rstrip("/")
        self._api_key: str | None = None

    @classmethod
    def from_config(cls, config: PluggyConfig) -> PluggyClient:
        return cls(
            client_id=config.client_id,
            client_secret=config.client_secret,
            base_url=config.base_url,
        )

    # Transport -----------------------------------------------------------

    def _parse_json_response(self, body: str) -> dict[str, Any]:
        if not body:
            return {}
        try:
            return cast(dict[str, Any], json.loads(body))
        except json.JSONDecodeError as e:
            raise UpstreamError(
                f"Failed to parse Pluggy response as JSON: {e}: {body[:200]}"
            ) from e

    def _request(
        self,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | None = None,
        query: dict[str, str] | None = None,
        error_cls: type[UpstreamError] = UpstreamError,
        authenticated: bool = True,
    ) -> dict[str, Any]:
        url = self._base_url + path
        if query:
            url += "?" + urllib.parse.urlencode(query)

        headers = {"Content-Type": "application/json"}
        if authenticated:
            headers["X-API-KEY"] = self._require_api_key()

        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(  # noqa: S310
            url, data=data, headers=headers, method=method
        )

        try:
            with urllib.request.urlopen(req) as resp:  # noqa: S310 - external HTTPS
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            err_body = e.read().decode("utf-8", "ignore")
            if e.code == 429:
                raise RateLimitError(
                    f"Pluggy rate limit on {method} {path}: {err_body}",
                    upstream_status=e.code,
                ) from e
            raise error_cls(
                f"Pluggy API error ({e.code}) on {method} {path}: {err_body}",
                upstream_status=e.code,
            ) from e
        except urllib.error.URLError as e:
            raise error_cls(f"Network error calling Pluggy API: {e}") from e

        return self._parse_json_response(body)

    def _require_api_key(self) -> str:
        if self._api_key is None:
            self.authenticate()
        return cast(str, self._api_key)

    def _list(self, model: type[M], path: str, query: dict[str, str]) -> list[M]:
        """GET a results page and parse each record on its own.

        Records the model rejects are logged and left out so one malformed
        row cannot sink the rest of the page.
        """
        data = self._request("GET", path, query=query)
        try:
            page = ResultsPage.parse(data)
        except ValidationError as e:
            raise UpstreamError(f"Unexpected Pluggy response for {path}: {e}") from e
        records: list[M] = []
        for raw in page.results:
            try:
                records.append(model.parse(raw))
            except ValidationError as e:
                logger.bind(path=path, record_id=raw.get("id")).warning(
                    "Skipping malformed {} record {} ({} validation errors)",
                    model.__name__,
                    raw.get("id"),
                    e.error_count(),
                )
        return records

    # Credential/token broker ---------------------------------------------

    def obtain_api_key(self, client_id: str, client_secret: str) -> str:
        """Exchange service credentials for a short-lived API key."""
        resp = AuthResponse.parse(
            self._request(
                "POST",
                "/auth",
                payload={"clientId": client_id, "clientSecret": client_secret},
                error_cls=UpstreamAuthError,
                authenticated=False,
            )
        )
        return resp.api_key

    def authenticate(self) -> str:
        """Obtain an API key with the configured credentials and keep it."""
        self._api_key = self.obtain_api_key(self._client_id, self._client_secret)
        logger.bind(base_url=self._base_url).debug("Authenticated with Pluggy")
        return self._api_key

    def mint_connect_token(self, user_id: str, webhook_url: str | None) -> str:
        """Create a connect token bound to ``user_id`` for the linking widget."""
        payload: dict[str, Any] = {"clientUserId": user_id}
        if webhook_url:
            payload["webhookUrl"] = webhook_url
        resp = ConnectTokenResponse.parse(
            self._request("POST", "/connect_token", payload=payload)
        )
        return resp.access_token

    # Item/account resolver -----------------------------------------------

    def fetch_item(self, item_id: str) -> PluggyItem:
        quoted = urllib.parse.quote(item_id, safe="")
        data = self._request("GET", f"/items/{quoted}", error_cls=ResolutionError)
        return PluggyItem.parse(data)

    def fetch_accounts(self, item_id: str) -> list[PluggyAccount]:
        return self._list(PluggyAccount, "/accounts", {"itemId": item_id})

    def fetch_credit_cards(self, item_id: str) -> list[PluggyCreditCard]:
        return self._list(PluggyCreditCard, "/credit-cards", {"itemId": item_id})

    def fetch_loans(self, item_id: str) -> list[PluggyLoan]:
        return self._list(PluggyLoan, "/loans", {"itemId": item_id})

    def fetch_investments(self, item_id: str) -> list[PluggyInvestment]:
        return self._list(PluggyInvestment, "/investments", {"itemId": item_id})

    def fetch_transactions(
        self, account_id: str, *, since: date
    ) -> list[PluggyTransaction]:
        query = {"accountId": account_id, "from": since.isoformat()}
        return self._list(PluggyTransaction, "/transactions", query)

    def delete_item(self, item_id: str) -> bool:
        """Delete an item at the aggregator. Returns False if it was already gone."""
        quoted = urllib.parse.quote(item_id, safe="")
        try:
            self._request("DELETE", f"/items/{quoted}")
        except UpstreamError as e:
            if e.upstream_status == 404:
                return False
            raise
        return True
