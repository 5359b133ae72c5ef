from __future__ import annotations

from dataclasses import dataclass
import os
import sys
from typing import Literal

from loguru import logger

ExtractionPolicyName = Literal["strict", "permissive"]

DEFAULT_PLUGGY_BASE_URL = "https://api.pluggy.ai"
DEFAULT_GATEWAY_BASE_URL = "https://ai.gateway.lovable.dev/v1"
DEFAULT_DATABASE_URL = "sqlite:///bolso.db"


@dataclass(frozen=True, slots=True)
class PluggyConfig:
    """Aggregator service credentials."""

    client_id: str
    client_secret: str
    base_url: str = DEFAULT_PLUGGY_BASE_URL
    webhook_url: str | None = None


@dataclass(frozen=True, slots=True)
class GatewayConfig:
    """LLM/speech gateway settings."""

    api_key: str
    base_url: str = DEFAULT_GATEWAY_BASE_URL
    voice_model: str = "google/gemini-2.5-flash"
    categorize_model: str = "google/gemini-3-flash-preview"
    extraction_policy: ExtractionPolicyName = "strict"


def _require_env(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value


def load_pluggy_config_from_env() -> PluggyConfig:
    """Load aggregator credentials; both client id and secret are required."""
    webhook_url = os.environ.get("BOLSO_WEBHOOK_URL", "").strip() or None
    return PluggyConfig(
        client_id=_require_env("PLUGGY_CLIENT_ID"),
        client_secret=_require_env("PLUGGY_CLIENT_SECRET"),
        base_url=os.environ.get("PLUGGY_BASE_URL", DEFAULT_PLUGGY_BASE_URL).strip(),
        webhook_url=webhook_url,
    )


def load_gateway_config_from_env() -> GatewayConfig:
    policy = os.environ.get("BOLSO_EXTRACTION_POLICY", "strict").strip().lower()
    if policy not in {"strict", "permissive"}:
        raise ValueError("BOLSO_EXTRACTION_POLICY must be one of: strict, permissive")

    return GatewayConfig(
        api_key=_require_env("LLM_GATEWAY_API_KEY"),
        base_url=os.environ.get(
            "LLM_GATEWAY_BASE_URL", DEFAULT_GATEWAY_BASE_URL
        ).strip(),
        voice_model=os.environ.get(
            "BOLSO_VOICE_MODEL", "google/gemini-2.5-flash"
        ).strip(),
        categorize_model=os.environ.get(
            "BOLSO_CATEGORIZE_MODEL", "google/gemini-3-flash-preview"
        ).strip(),
        extraction_policy=policy,  # type: ignore[arg-type]
    )


def database_url_from_env() -> str:
    return os.environ.get("DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL


def configure_logging(level: str | None = None) -> None:
    """Send loguru output to stderr at ``BOLSO_LOG_LEVEL`` (default INFO)."""
    resolved = (level or os.environ.get("BOLSO_LOG_LEVEL", "") or "INFO").upper()
    logger.remove()
    logger.add(
        sys.stderr,
        format="{time:YYYY-MM-DD HH:mm:ss} [{level}] {name}: {message}",
        level=resolved,
    )
