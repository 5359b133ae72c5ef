"""Decoding and validation of the gateway's structured extraction reply.

The model is asked for exactly one JSON object in one of three shapes:

- a transaction: ``{item, valor, tipo, categoria, forma_pagamento?}``
- a delete command: ``{"action": "DELETE_LAST"}``
- a refusal: ``{"error": "<reason>"}``

``decode_extraction`` maps the reply onto :data:`ExtractionResult` and
rejects anything else as a parse failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import enum
import json
import re
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict

from bolso.adapters.db.models import TransactionType
from bolso.errors import ValidationError
from bolso.taxonomy.categorize import OTHER

NO_FINANCIAL_DATA_MESSAGE = "Nenhuma transação financeira identificada no áudio."
PARSE_FAILURE_MESSAGE = (
    "Não entendi o que você disse. Tente novamente com um valor e descrição claros."
)
INCOMPLETE_MESSAGE = (
    "Dados incompletos. Informe o que você gastou/recebeu e o valor."
)
INVALID_TIPO_MESSAGE = "Tipo de transação inválido. Use: receita, despesa ou reserva."
INVALID_VALOR_MESSAGE = "Valor inválido. Informe um número positivo."

DELETE_LAST = "DELETE_LAST"
FALLBACK_CATEGORY = OTHER

_TRANSACTION_KEYS = frozenset({"item", "valor", "tipo", "categoria", "forma_pagamento"})
_CODE_FENCE = re.compile(r"```(?:json)?\n?")
_CENTS = Decimal("0.01")
# Largest amount a Numeric(14, 2) column holds.
MAX_VALOR = Decimal("999999999999.99")


class ExtractionPolicy(str, enum.Enum):
    """How eagerly the model should find a transaction in a transcript."""

    STRICT = "strict"
    PERMISSIVE = "permissive"


_JSON_FORMAT = f"""FORMATO JSON (sem markdown):
1) Transação: {{"item": "desc", "valor": numero, "tipo": "RECEITA|DESPESA|RESERVA", "categoria": "...", "forma_pagamento": "..."}}
2) Deletar: {{"action": "{DELETE_LAST}"}} (se mencionar "apagar/deletar/remover último")"""

STRICT_PROMPT = f"""Você é um assistente financeiro que registra transações ditas em voz alta.

Só extraia uma transação quando a fala tiver INTENÇÃO FINANCEIRA CLARA:
- um verbo ou termo financeiro explícito (gastei, paguei, comprei, recebi, ganhei, vendi, guardei, investi, depositei, saquei, transferi, reais, R$, salário), E
- um valor numérico (por extenso ou em dígitos), E
- o que foi comprado, pago ou recebido.

REJEITE:
- Conversa casual, perguntas, cumprimentos, testes de microfone.
- Números soltos sem intenção financeira ("liga às 3", "tenho 2 filhos").
- Falas ambíguas em que não dá para saber o valor ou o item.

REGRAS:
- Converta valores por extenso: "cinquenta" → 50, "três mil" → 3000.
- Tipo: RECEITA para entradas, DESPESA para gastos, RESERVA para dinheiro guardado ou investido.
- Sem categoria clara? Use "{FALLBACK_CATEGORY}".
- Sem forma de pagamento? Use null.

{_JSON_FORMAT}
3) Erro: {{"error": "{NO_FINANCIAL_DATA_MESSAGE}"}} (sempre que faltar intenção financeira clara)"""

PERMISSIVE_PROMPT = f"""Você é um assistente financeiro EXTREMAMENTE FLEXÍVEL. Sua missão é ENCONTRAR transações a qualquer custo.

REGRA DE OURO: Se existe um VALOR (número) e um ITEM (qualquer coisa), isso É uma transação. Extraia sempre.

SEJA ULTRA-FLEXÍVEL:
- Transcrições curtas, bagunçadas, com ruído? NÃO IMPORTA. Se tem número + algo, extraia.
- "Cinquenta mercado" → {{"item": "mercado", "valor": 50, "tipo": "DESPESA", "categoria": "Alimentação"}}
- "Recebi 3000" → {{"item": "receita", "valor": 3000, "tipo": "RECEITA", "categoria": "Outros"}}
- "200 luz" → {{"item": "luz", "valor": 200, "tipo": "DESPESA", "categoria": "Contas"}}
- Converta valores por extenso: "cinquenta" → 50, "três mil" → 3000, "duzentos e cinquenta" → 250.

INFERÊNCIA INTELIGENTE:
- Sem tipo explícito? Use DESPESA (mais comum).
- Sem categoria? Use "{FALLBACK_CATEGORY}".
- Sem forma de pagamento? Use null.
- Tem número mas descrição vaga? Invente algo genérico como "compra" ou "pagamento".

{_JSON_FORMAT}
3) Erro: {{"error": "{NO_FINANCIAL_DATA_MESSAGE}"}} (SOMENTE se ZERO números E ZERO intenção financeira)"""

_PROMPTS = {
    ExtractionPolicy.STRICT: STRICT_PROMPT,
    ExtractionPolicy.PERMISSIVE: PERMISSIVE_PROMPT,
}


def prompt_for(policy: ExtractionPolicy) -> str:
    return _PROMPTS[policy]


class ExtractedTransaction(BaseModel):
    """A transaction candidate, not yet validated."""

    model_config = ConfigDict(extra="ignore")

    kind: Literal["transaction"] = "transaction"
    item: str | None = None
    valor: int | float | str | None = None
    tipo: str | None = None
    categoria: str | None = None
    forma_pagamento: str | None = None


class DeleteCommand(BaseModel):
    kind: Literal["delete_last"] = "delete_last"


class ExtractionFailure(BaseModel):
    """The model found no financial data in the transcript."""

    kind: Literal["failure"] = "failure"
    reason: str


ExtractionResult = ExtractedTransaction | DeleteCommand | ExtractionFailure


@dataclass(frozen=True)
class ValidTransaction:
    item: str
    valor: Decimal
    tipo: TransactionType
    categoria: str
    forma_pagamento: str | None


def strip_code_fence(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = _CODE_FENCE.sub("", text).replace("```", "").strip()
    return text


def decode_extraction(
    raw: str, *, transcription: str | None = None
) -> ExtractionResult:
    """Decode the model's reply into one of the three extraction shapes.

    Raises:
        ValidationError: If the reply is not a JSON object of a known shape
    """
    try:
        data: Any = json.loads(strip_code_fence(raw))
    except json.JSONDecodeError as e:
        raise ValidationError(PARSE_FAILURE_MESSAGE, transcription=transcription) from e

    if not isinstance(data, dict):
        raise ValidationError(PARSE_FAILURE_MESSAGE, transcription=transcription)

    if data.get("error"):
        return ExtractionFailure(reason=str(data["error"]))
    if data.get("action") == DELETE_LAST:
        return DeleteCommand()
    if not _TRANSACTION_KEYS & data.keys():
        raise ValidationError(PARSE_FAILURE_MESSAGE, transcription=transcription)

    try:
        return ExtractedTransaction.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(INCOMPLETE_MESSAGE, transcription=transcription) from e


def parse_valor(value: Any) -> Decimal | None:
    """Parse a positive finite amount, rounded to cents. None if invalid."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not amount.is_finite() or not 0 < amount <= MAX_VALOR:
        return None
    amount = amount.quantize(_CENTS)
    return amount if 0 < amount <= MAX_VALOR else None


def parse_tipo(value: str) -> TransactionType | None:
    try:
        return TransactionType(value)
    except ValueError:
        return None


def validate_transaction(
    candidate: ExtractedTransaction, *, transcription: str | None = None
) -> ValidTransaction:
    """Check required fields and normalise the candidate.

    Raises:
        ValidationError: With a field-specific message and the transcript
    """
    item = (candidate.item or "").strip()
    if not item or candidate.valor is None or not candidate.tipo:
        raise ValidationError(INCOMPLETE_MESSAGE, transcription=transcription)

    tipo = parse_tipo(candidate.tipo)
    if tipo is None:
        raise ValidationError(INVALID_TIPO_MESSAGE, transcription=transcription)

    valor = parse_valor(candidate.valor)
    if valor is None:
        raise ValidationError(INVALID_VALOR_MESSAGE, transcription=transcription)

    return ValidTransaction(
        item=item,
        valor=valor,
        tipo=tipo,
        categoria=candidate.categoria or FALLBACK_CATEGORY,
        forma_pagamento=candidate.forma_pagamento or None,
    )
