from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import loguru
from loguru import logger

from bolso.adapters.db.facade import DB
from bolso.errors import BolsoError
from bolso.infra.clients.gateway import GatewayClient
from bolso.taxonomy.categorize import is_uncategorized, smart_categorize
from bolso.tools.base import StandardTool, ToolInputSchema

RECATEGORIZE_BATCH_SIZE = 50
CATEGORY_MAX_TOKENS = 50

CATEGORIZATION_PROMPT = """Você é um especialista em categorização de transações financeiras brasileiras.

Analise a descrição da transação e retorne APENAS o nome da categoria mais apropriada.

CATEGORIAS DISPONÍVEIS:
- Alimentação (restaurantes, iFood, supermercados, padarias, delivery)
- Transporte (Uber, 99, combustível, estacionamento, táxi, pedágio)
- Moradia (aluguel, condomínio, IPTU, reformas)
- Utilidades (luz, água, gás, internet, telefone)
- Saúde (farmácia, médico, dentista, exames, plano de saúde)
- Educação (escola, faculdade, cursos, livros)
- Lazer (cinema, streaming, jogos, viagens, esportes)
- Compras (roupas, eletrônicos, móveis, shopping)
- Transferências (PIX, TED, DOC)
- Salário (pagamento, remuneração, pró-labore)
- Investimentos (aplicação, resgate, dividendos)
- Assinaturas (Netflix, Spotify, Amazon Prime, clubes)
- Taxas (IOF, tarifas bancárias, anuidade)
- Outros

PADRÕES CONHECIDOS:
- IFD*IFOOD, IFOOD* → Alimentação
- UBER*, 99* → Transporte
- PAG*JOE, PICPAY* → analise o contexto
- PIX*, TED* → Transferências
- NETFLIX, SPOTIFY, AMAZON PRIME → Assinaturas
- FARMACIA*, DROGARIA* → Saúde
- POSTO*, SHELL*, IPIRANGA* → Transporte

Retorne SOMENTE o nome da categoria, sem explicações."""


@dataclass
class RecategorizeResult:
    total: int = 0
    updated: int = 0
    by_keyword: int = 0
    by_model: int = 0
    failed: int = 0

    @property
    def message(self) -> str:
        if self.total == 0:
            return "Nenhuma transação para recategorizar"
        return f"{self.updated} transações recategorizadas"

    def to_dict(self) -> dict[str, Any]:
        return {
            "updated": self.updated,
            "total": self.total,
            "message": self.message,
        }


class RecategorizeLogger:
    """Handles all logging for the re-categorization tool."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def batch_start(self, user_id: str, count: int) -> None:
        self._logger.bind(user_id=user_id, count=count).info(
            "Re-categorizing {} transactions for user {}", count, user_id
        )

    def categorized(self, item: str, category: str, source: str) -> None:
        self._logger.bind(source=source).info(
            'Categorized "{}" → {} ({})', item, category, source
        )

    def row_failed(self, transaction_id: int, error: Exception) -> None:
        self._logger.bind(transaction_id=transaction_id).error(
            "Error processing transaction {}: {}", transaction_id, error
        )


class Recategorizer:
    """
    Retries categorization of rows still tagged with a fallback category.

    The keyword categorizer runs first and the gateway is only asked when it
    has no answer. A row is updated only when the new category is a real
    one; per-row failures are logged and the batch continues.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        db: DB,
        *,
        batch_size: int = RECATEGORIZE_BATCH_SIZE,
    ) -> None:
        self._gateway = gateway
        self._db = db
        self._batch_size = batch_size
        self._logger = RecategorizeLogger()

    def recategorize(self, user_id: str) -> RecategorizeResult:
        rows = self._db.list_uncategorized(user_id, limit=self._batch_size)
        result = RecategorizeResult(total=len(rows))
        if not rows:
            return result

        self._logger.batch_start(user_id, len(rows))
        for row in rows:
            try:
                category, source = self._categorize(row.item)
                if not category or is_uncategorized(category):
                    continue
                updated = self._db.update_category(
                    row.id, user_id=user_id, categoria=category
                )
                if updated:
                    result.updated += 1
                    if source == "keyword":
                        result.by_keyword += 1
                    else:
                        result.by_model += 1
                    self._logger.categorized(row.item, category, source)
            except BolsoError as e:
                self._logger.row_failed(row.id, e)
                result.failed += 1
        return result

    def _categorize(self, item: str) -> tuple[str, str]:
        category = smart_categorize(item)
        if not is_uncategorized(category):
            return category, "keyword"
        answer = self._gateway.complete(
            CATEGORIZATION_PROMPT,
            item,
            max_tokens=CATEGORY_MAX_TOKENS,
            purpose="categorization",
        )
        return answer.strip(), "model"


class RecategorizeTransactionsTool(StandardTool):
    _name = "recategorize_transactions"
    _description = (
        "Re-categorize up to 50 of the caller's transactions still tagged "
        "Geral or Outros."
    )
    _input_schema: ToolInputSchema = {
        "type": "object",
        "properties": {},
        "required": [],
    }

    def __init__(self, recategorizer: Recategorizer) -> None:
        self._recategorizer = recategorizer

    def _execute_impl(self, *, user_id: str, **kwargs: Any) -> dict[str, Any]:
        return self._recategorizer.recategorize(user_id).to_dict()
