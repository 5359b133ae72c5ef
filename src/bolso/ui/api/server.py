"""HTTP interface: one JSON endpoint per tool.

Caller identity comes from the ``X-User-Id`` header, set by the
authenticating proxy in front of this service. Every failure is answered
with ``{"error": ..., "transcription"?: ...}``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import os
from typing import Any

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from loguru import logger

from bolso.adapters.db.facade import DB
from bolso.core.config import (
    configure_logging,
    database_url_from_env,
    load_gateway_config_from_env,
    load_pluggy_config_from_env,
)
from bolso.errors import BolsoError, UnauthorizedError, UpstreamError
from bolso.infra.clients.gateway import GatewayClient
from bolso.infra.clients.pluggy import PluggyClient
from bolso.tools.accounts.account_tool import (
    AccountService,
    ConnectTokenTool,
    DeleteUserAccountTool,
    DisconnectBankTool,
)
from bolso.tools.base import StandardTool
from bolso.tools.ledger.ledger_tool import (
    AddTransactionTool,
    LedgerService,
    ListTransactionsTool,
)
from bolso.tools.recategorize.recategorize_tool import (
    Recategorizer,
    RecategorizeTransactionsTool,
)
from bolso.tools.sync.sync_tool import SyncBankDataTool, SyncOrchestrator
from bolso.tools.voice.extraction import ExtractionPolicy
from bolso.tools.voice.pipeline import ProcessVoiceTool, VoicePipeline
from bolso.tools.webhook.webhook_tool import WebhookHandler

JsonBody = dict[str, Any]


@dataclass
class Services:
    """Collaborators the HTTP layer builds tools from.

    ``pluggy_factory`` returns a fresh client per request so a cached API
    key never outlives the request that obtained it. A None collaborator
    means its credentials are not configured.
    """

    db: DB
    pluggy_factory: Callable[[], PluggyClient] | None = None
    voice_gateway: GatewayClient | None = None
    categorize_gateway: GatewayClient | None = None
    webhook_url: str | None = None
    extraction_policy: ExtractionPolicy = ExtractionPolicy.STRICT

    @classmethod
    def from_env(cls) -> Services:
        db = DB(database_url_from_env())
        services = cls(db=db)

        has_pluggy = os.environ.get("PLUGGY_CLIENT_ID") and os.environ.get(
            "PLUGGY_CLIENT_SECRET"
        )
        if has_pluggy:
            pluggy_config = load_pluggy_config_from_env()
            services.pluggy_factory = lambda: PluggyClient.from_config(pluggy_config)
            services.webhook_url = pluggy_config.webhook_url
        else:
            logger.warning("Pluggy credentials not configured; bank sync disabled")

        if os.environ.get("LLM_GATEWAY_API_KEY"):
            gateway_config = load_gateway_config_from_env()
            services.voice_gateway = GatewayClient.from_config(gateway_config)
            services.categorize_gateway = GatewayClient.from_config(
                gateway_config, model=gateway_config.categorize_model
            )
            services.extraction_policy = ExtractionPolicy(
                gateway_config.extraction_policy
            )
        else:
            logger.warning("LLM_GATEWAY_API_KEY not configured; voice disabled")

        return services

    def pluggy(self) -> PluggyClient:
        if self.pluggy_factory is None:
            raise UpstreamError("Pluggy credentials not configured")
        return self.pluggy_factory()

    def require_voice_gateway(self) -> GatewayClient:
        if self.voice_gateway is None:
            raise UpstreamError("LLM_GATEWAY_API_KEY is not configured")
        return self.voice_gateway

    def require_categorize_gateway(self) -> GatewayClient:
        if self.categorize_gateway is None:
            raise UpstreamError("LLM_GATEWAY_API_KEY is not configured")
        return self.categorize_gateway


def current_user(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id:
        raise UnauthorizedError("Unauthorized")
    return x_user_id


def _run(tool: StandardTool, user_id: str, payload: JsonBody) -> JsonBody:
    known = tool.input_schema["properties"]
    args = {key: value for key, value in payload.items() if key in known}
    return tool.execute(user_id=user_id, **args)


def create_app(services: Services) -> FastAPI:
    app = FastAPI(title="Bolso")
    db = services.db

    @app.exception_handler(BolsoError)
    async def bolso_error_handler(request: Request, exc: BolsoError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.bind(path=request.url.path).error(
                "Request to {} failed: {}", request.url.path, exc.message
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.bind(path=request.url.path).exception(
            "Unexpected error on {}", request.url.path
        )
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.post("/sync-bank-data")
    def sync_bank_data(
        payload: JsonBody | None = Body(default=None),  # noqa: B008
        user_id: str = Depends(current_user),  # noqa: B008
    ) -> JsonBody:
        tool = SyncBankDataTool(SyncOrchestrator(services.pluggy(), db))
        return _run(tool, user_id, payload or {})

    @app.post("/pluggy-connect-token")
    def pluggy_connect_token(
        user_id: str = Depends(current_user),  # noqa: B008
    ) -> JsonBody:
        tool = ConnectTokenTool(services.pluggy(), webhook_url=services.webhook_url)
        return _run(tool, user_id, {})

    @app.post("/pluggy-webhook")
    def pluggy_webhook(
        payload: JsonBody | None = Body(default=None),  # noqa: B008
    ) -> JsonBody:
        return WebhookHandler(services.pluggy(), db).handle(payload or {})

    @app.post("/process-voice")
    def process_voice(
        payload: JsonBody | None = Body(default=None),  # noqa: B008
        user_id: str = Depends(current_user),  # noqa: B008
    ) -> JsonBody:
        pipeline = VoicePipeline(
            services.require_voice_gateway(), db, policy=services.extraction_policy
        )
        return _run(ProcessVoiceTool(pipeline), user_id, payload or {})

    @app.post("/disconnect-bank")
    def disconnect_bank(
        payload: JsonBody | None = Body(default=None),  # noqa: B008
        user_id: str = Depends(current_user),  # noqa: B008
    ) -> JsonBody:
        tool = DisconnectBankTool(AccountService(services.pluggy(), db))
        return _run(tool, user_id, payload or {})

    @app.post("/delete-user-account")
    def delete_user_account(
        payload: JsonBody | None = Body(default=None),  # noqa: B008
        user_id: str = Depends(current_user),  # noqa: B008
    ) -> JsonBody:
        client = services.pluggy() if services.pluggy_factory else None
        tool = DeleteUserAccountTool(AccountService(client, db))
        return _run(tool, user_id, payload or {})

    @app.post("/recategorize-transactions")
    def recategorize_transactions(
        user_id: str = Depends(current_user),  # noqa: B008
    ) -> JsonBody:
        recategorizer = Recategorizer(services.require_categorize_gateway(), db)
        return _run(RecategorizeTransactionsTool(recategorizer), user_id, {})

    @app.post("/transactions")
    def add_transaction(
        payload: JsonBody | None = Body(default=None),  # noqa: B008
        user_id: str = Depends(current_user),  # noqa: B008
    ) -> JsonBody:
        return _run(AddTransactionTool(LedgerService(db)), user_id, payload or {})

    @app.get("/transactions")
    def list_transactions(
        limit: int | None = None,
        user_id: str = Depends(current_user),  # noqa: B008
    ) -> JsonBody:
        query: JsonBody = {"limit": limit} if limit is not None else {}
        return _run(ListTransactionsTool(LedgerService(db)), user_id, query)

    @app.delete("/transactions/{transaction_id}")
    def delete_transaction(
        transaction_id: int,
        user_id: str = Depends(current_user),  # noqa: B008
    ) -> JsonBody:
        found = LedgerService(db).delete_transaction(user_id, transaction_id)
        return {"success": found}

    @app.get("/debug-logs")
    def debug_logs(
        limit: int = 100,
        user_id: str = Depends(current_user),  # noqa: B008
    ) -> JsonBody:
        logs = db.list_debug_logs(user_id, limit=limit)
        return {"logs": [log.to_dict() for log in logs]}

    return app


def main(host: str = "0.0.0.0", port: int = 8000) -> None:  # noqa: S104
    """Run the HTTP server."""
    import uvicorn

    load_dotenv(override=False)
    configure_logging()
    services = Services.from_env()
    services.db.create_schema()
    uvicorn.run(create_app(services), host=host, port=port)


if __name__ == "__main__":
    main()
