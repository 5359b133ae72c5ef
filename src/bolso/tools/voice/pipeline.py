from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import loguru
from loguru import logger

from bolso.adapters.db.facade import DB
from bolso.adapters.db.models import Transaction
from bolso.errors import BolsoError, ValidationError
from bolso.infra.clients.gateway import GatewayClient
from bolso.tools.base import StandardTool, ToolInputSchema
from bolso.tools.voice.audio import parse_audio_input
from bolso.tools.voice.extraction import (
    DELETE_LAST,
    NO_FINANCIAL_DATA_MESSAGE,
    DeleteCommand,
    ExtractionFailure,
    ExtractionPolicy,
    ValidTransaction,
    decode_extraction,
    prompt_for,
    validate_transaction,
)

MISSING_AUDIO_MESSAGE = "Dados de áudio são obrigatórios"
DELETED_MESSAGE = "Última transação deletada"
NOTHING_TO_DELETE_MESSAGE = "Nenhuma transação para deletar"


@dataclass
class VoiceResult:
    success: bool
    message: str
    transaction: Transaction | None = None
    transcription: str | None = None
    action: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.transaction is not None:
            payload["transaction"] = self.transaction.to_dict()
        if self.transcription is not None:
            payload["transcription"] = self.transcription
        if self.action is not None:
            payload["action"] = self.action
        return payload


def confirmation_message(entry: ValidTransaction) -> str:
    return f"{entry.tipo.label} de R$ {entry.valor:.2f} registrada: {entry.item}"


class VoicePipelineLogger:
    """Handles all logging for the voice pipeline."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def audio_received(self, user_id: str, audio_format: str, mime_type: str) -> None:
        self._logger.bind(user_id=user_id, format=audio_format).info(
            "Audio input format: {} (MIME {})", audio_format, mime_type
        )

    def transcribed(self, user_id: str, transcription: str) -> None:
        self._logger.bind(user_id=user_id).info("Transcribed text: {}", transcription)

    def extraction_reply(self, user_id: str, raw: str) -> None:
        self._logger.bind(user_id=user_id).debug("Raw extraction reply: {}", raw)

    def rejected(self, user_id: str, error: BolsoError) -> None:
        self._logger.bind(user_id=user_id).warning(
            "Voice request rejected: {}", error.message
        )

    def deleted_last(self, user_id: str, transaction_id: int | None) -> None:
        self._logger.bind(user_id=user_id, transaction_id=transaction_id).info(
            "Delete-last for user {}: {}",
            user_id,
            transaction_id if transaction_id is not None else "nothing to delete",
        )

    def inserted(self, user_id: str, txn: Transaction) -> None:
        self._logger.bind(user_id=user_id, transaction_id=txn.id).info(
            "Inserted voice transaction {} ({} {})", txn.id, txn.tipo.value, txn.valor
        )


class VoicePipeline:
    """
    Turns one recorded voice command into a ledger change.

    Transcription completes before extraction starts. The extraction prompt
    is fixed per pipeline by ``policy``. Every error raised after
    transcription carries the transcript so the caller can show what was
    heard.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        db: DB,
        *,
        policy: ExtractionPolicy = ExtractionPolicy.STRICT,
    ) -> None:
        self._gateway = gateway
        self._db = db
        self._policy = policy
        self._prompt = prompt_for(policy)
        self._logger = VoicePipelineLogger()

    @property
    def policy(self) -> ExtractionPolicy:
        return self._policy

    def process(
        self,
        *,
        user_id: str,
        audio: str | None = None,
        action: str | None = None,
    ) -> VoiceResult:
        """
        Handle a voice request.

        Args:
            user_id: Owner of the ledger being changed
            audio: Raw base64 or data-URL audio
            action: ``"DELETE_LAST"`` skips audio and removes the newest row

        Raises:
            ValidationError: Missing audio, unusable extraction, or invalid fields
            TranscriptionError: The gateway returned no transcript
            RateLimitError: The gateway throttled the request
            QuotaExceededError: Gateway credits are exhausted
            UpstreamError: Any other gateway failure
        """
        if action == DELETE_LAST:
            return self._delete_last(user_id)

        if not audio:
            raise ValidationError(MISSING_AUDIO_MESSAGE)
        payload = parse_audio_input(audio)
        if not payload.base64:
            raise ValidationError(MISSING_AUDIO_MESSAGE)
        self._logger.audio_received(user_id, payload.format, payload.mime_type)

        transcription = self._gateway.transcribe(payload)
        self._logger.transcribed(user_id, transcription)

        try:
            return self._apply_transcription(user_id, transcription)
        except BolsoError as e:
            if e.transcription is None:
                e.transcription = transcription
            self._logger.rejected(user_id, e)
            raise

    def _apply_transcription(self, user_id: str, transcription: str) -> VoiceResult:
        raw = self._gateway.complete(
            self._prompt, transcription, purpose="extraction"
        )
        self._logger.extraction_reply(user_id, raw)

        extracted = decode_extraction(raw, transcription=transcription)
        if isinstance(extracted, ExtractionFailure):
            raise ValidationError(
                NO_FINANCIAL_DATA_MESSAGE, transcription=transcription
            )
        if isinstance(extracted, DeleteCommand):
            return self._delete_last(user_id, transcription=transcription)

        entry = validate_transaction(extracted, transcription=transcription)
        txn = self._db.insert_transaction(
            user_id=user_id,
            item=entry.item,
            valor=entry.valor,
            tipo=entry.tipo,
            categoria=entry.categoria,
            forma_pagamento=entry.forma_pagamento,
        )
        self._logger.inserted(user_id, txn)
        return VoiceResult(
            success=True,
            message=confirmation_message(entry),
            transaction=txn,
            transcription=transcription,
        )

    def _delete_last(
        self, user_id: str, *, transcription: str | None = None
    ) -> VoiceResult:
        deleted = self._db.delete_last_transaction(user_id)
        self._logger.deleted_last(user_id, deleted.id if deleted else None)
        return VoiceResult(
            success=True,
            message=DELETED_MESSAGE if deleted else NOTHING_TO_DELETE_MESSAGE,
            transaction=deleted,
            transcription=transcription,
            action=DELETE_LAST,
        )


class ProcessVoiceTool(StandardTool):
    _name = "process_voice"
    _description = (
        "Transcribe a voice recording and record the transaction it describes, "
        "or delete the most recent transaction."
    )
    _input_schema: ToolInputSchema = {
        "type": "object",
        "properties": {
            "audioBase64": {
                "type": "string",
                "description": "Raw base64 audio or a data URL",
            },
            "action": {
                "type": "string",
                "description": "Explicit command that bypasses audio",
                "enum": [DELETE_LAST],
            },
        },
        "required": [],
    }

    def __init__(self, pipeline: VoicePipeline) -> None:
        self._pipeline = pipeline

    def _execute_impl(self, *, user_id: str, **kwargs: Any) -> dict[str, Any]:
        result = self._pipeline.process(
            user_id=user_id,
            audio=kwargs.get("audioBase64"),
            action=kwargs.get("action"),
        )
        return result.to_dict()
