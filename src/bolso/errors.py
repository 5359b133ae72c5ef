"""Error taxonomy shared by the sync, voice and HTTP layers."""

from __future__ import annotations


class BolsoError(Exception):
    """Base error for Bolso failures.

    ``status_code`` is the HTTP status the API layer answers with.
    """

    status_code: int = 500

    def __init__(self, message: str, *, transcription: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.transcription = transcription

    def to_envelope(self) -> dict[str, str]:
        envelope = {"error": self.message}
        if self.transcription:
            envelope["transcription"] = self.transcription
        return envelope


class UpstreamError(BolsoError):
    """An external provider (aggregator or LLM gateway) call failed.

    ``upstream_status`` holds the provider's HTTP status when there was one.
    """

    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
        transcription: str | None = None,
    ) -> None:
        super().__init__(message, transcription=transcription)
        self.upstream_status = upstream_status


class UpstreamAuthError(UpstreamError):
    """Service credentials were rejected by an external provider."""


class ResolutionError(UpstreamError):
    """An aggregator item could not be resolved."""


class RateLimitError(UpstreamError):
    status_code = 429


class QuotaExceededError(UpstreamError):
    status_code = 402


class TranscriptionError(UpstreamError):
    """The gateway returned no usable transcript."""

    status_code = 400


class ValidationError(BolsoError):
    """Input or extracted data is malformed or incomplete."""

    status_code = 400


class PersistenceError(BolsoError):
    """A local insert/upsert/delete failed."""


class UnauthorizedError(BolsoError):
    """The request carries no caller identity."""

    status_code = 401
