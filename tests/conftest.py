"""Shared test fixtures."""

from __future__ import annotations

import pytest

from bolso.adapters.db.facade import DB
from fakes import create_db


@pytest.fixture
def db() -> DB:
    """Fresh in-memory database per test."""
    return create_db()
