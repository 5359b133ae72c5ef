from __future__ import annotations

import pytest

from bolso.core.config import (
    DEFAULT_DATABASE_URL,
    DEFAULT_PLUGGY_BASE_URL,
    database_url_from_env,
    load_gateway_config_from_env,
    load_pluggy_config_from_env,
)


def test_pluggy_config_requires_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    # setup
    monkeypatch.setenv("PLUGGY_CLIENT_ID", "client")
    monkeypatch.delenv("PLUGGY_CLIENT_SECRET", raising=False)

    # act / assert
    with pytest.raises(ValueError, match="PLUGGY_CLIENT_SECRET"):
        load_pluggy_config_from_env()


def test_pluggy_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    # setup
    monkeypatch.setenv("PLUGGY_CLIENT_ID", "client")
    monkeypatch.setenv("PLUGGY_CLIENT_SECRET", "secret")
    monkeypatch.delenv("PLUGGY_BASE_URL", raising=False)
    monkeypatch.delenv("BOLSO_WEBHOOK_URL", raising=False)

    # act
    config = load_pluggy_config_from_env()

    # assert
    assert config.base_url == DEFAULT_PLUGGY_BASE_URL
    assert config.webhook_url is None


def test_gateway_config_reads_policy(monkeypatch: pytest.MonkeyPatch) -> None:
    # setup
    monkeypatch.setenv("LLM_GATEWAY_API_KEY", "key")
    monkeypatch.setenv("BOLSO_EXTRACTION_POLICY", " Permissive ")

    # act
    config = load_gateway_config_from_env()

    # assert
    assert config.extraction_policy == "permissive"
    assert config.api_key == "key"


def test_gateway_config_rejects_unknown_policy(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    # setup
    monkeypatch.setenv("LLM_GATEWAY_API_KEY", "key")
    monkeypatch.setenv("BOLSO_EXTRACTION_POLICY", "lenient")

    # act / assert
    with pytest.raises(ValueError, match="BOLSO_EXTRACTION_POLICY"):
        load_gateway_config_from_env()


def test_database_url_default(monkeypatch: pytest.MonkeyPatch) -> None:
    # setup
    monkeypatch.delenv("DATABASE_URL", raising=False)

    # act
    url = database_url_from_env()

    # assert
    assert url == DEFAULT_DATABASE_URL
