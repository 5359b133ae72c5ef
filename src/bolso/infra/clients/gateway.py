from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import loguru
from loguru import logger
import openai
from openai import OpenAI

from bolso.core.config import GatewayConfig
from bolso.errors import (
    QuotaExceededError,
    RateLimitError,
    TranscriptionError,
    UpstreamAuthError,
    UpstreamError,
)

TRANSCRIPTION_INSTRUCTION = (
    "Transcreva este áudio em português brasileiro. Retorne APENAS a "
    "transcrição literal, sem formatação ou explicações."
)


@dataclass(frozen=True)
class AudioPayload:
    """Base64 audio plus the format token the gateway expects."""

    base64: str
    mime_type: str
    format: str


class GatewayLogger:
    """Handles all logging for the gateway client."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def request(self, purpose: str, model: str) -> None:
        self._logger.bind(purpose=purpose, model=model).debug(
            "Calling LLM gateway for {} ({})", purpose, model
        )

    def failure(self, purpose: str, error: Exception) -> None:
        self._logger.bind(purpose=purpose).error(
            "LLM gateway call for {} failed: {}", purpose, error
        )


class GatewayClient:
    """Client for the OpenAI-compatible speech/LLM gateway.

    Used twice per voice request (transcribe, then extract) and once per row
    by the re-categorization tool. Failures are translated into the Bolso
    error taxonomy; nothing is retried.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str = "google/gemini-2.5-flash",
        client: OpenAI | None = None,
    ) -> None:
        self._model = model
        self._client = client or OpenAI(
            api_key=api_key, base_url=base_url, max_retries=0
        )
        self._logger = GatewayLogger()

    @classmethod
    def from_config(
        cls, config: GatewayConfig, *, model: str | None = None
    ) -> GatewayClient:
        return cls(
            api_key=config.api_key,
            base_url=config.base_url,
            model=model or config.voice_model,
        )

    @property
    def model(self) -> str:
        return self._model

    def transcribe(self, audio: AudioPayload) -> str:
        """Return the literal transcript of ``audio``.

        Raises:
            TranscriptionError: If the gateway fails or returns an empty transcript
        """
        messages: list[dict[str, Any]] = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": TRANSCRIPTION_INSTRUCTION},
                    {
                        "type": "input_audio",
                        "input_audio": {"data": audio.base64, "format": audio.format},
                    },
                ],
            }
        ]
        try:
            text = self._chat(messages, purpose="transcription")
        except (RateLimitError, QuotaExceededError, UpstreamAuthError):
            raise
        except UpstreamError as e:
            raise TranscriptionError(
                "Falha ao transcrever áudio", upstream_status=e.upstream_status
            ) from e

        if not text:
            raise TranscriptionError("Não foi possível transcrever o áudio")
        return text

    def complete(
        self,
        system_prompt: str,
        user_text: str,
        *,
        max_tokens: int | None = None,
        purpose: str = "completion",
    ) -> str:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_text},
        ]
        return self._chat(messages, purpose=purpose, max_tokens=max_tokens)

    def _chat(
        self,
        messages: list[dict[str, Any]],
        *,
        purpose: str,
        max_tokens: int | None = None,
    ) -> str:
        self._logger.request(purpose, self._model)
        kwargs: dict[str, Any] = {"model": self._model, "messages": messages}
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        with self._translate_errors(purpose):
            resp = self._client.chat.completions.create(**kwargs)

        if not resp.choices:
            return ""
        content = resp.choices[0].message.content
        return (content or "").strip()

    @contextmanager
    def _translate_errors(self, purpose: str) -> Iterator[None]:
        try:
            yield
        except openai.RateLimitError as e:
            self._logger.failure(purpose, e)
            raise RateLimitError(
                "Limite de requisições excedido. Tente novamente em alguns segundos.",
                upstream_status=429,
            ) from e
        except openai.AuthenticationError as e:
            self._logger.failure(purpose, e)
            raise UpstreamAuthError(
                "LLM gateway rejected the API key", upstream_status=e.status_code
            ) from e
        except openai.APIStatusError as e:
            self._logger.failure(purpose, e)
            if e.status_code == 402:
                raise QuotaExceededError(
                    "Créditos insuficientes. Entre em contato com o suporte.",
                    upstream_status=402,
                ) from e
            raise UpstreamError(
                f"LLM gateway error ({e.status_code}) during {purpose}",
                upstream_status=e.status_code,
            ) from e
        except openai.APIError as e:
            self._logger.failure(purpose, e)
            raise UpstreamError(f"LLM gateway error during {purpose}: {e}") from e
