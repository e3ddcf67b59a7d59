from __future__ import annotations

import os
import tempfile
from pathlib import Path

import pytest

# Test-mode runtime: throwaway SQLite database and upload dir, no real model traffic.
_TMP = Path(tempfile.mkdtemp(prefix="socratic-tutor-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["UPLOAD_DIR"] = str(_TMP / "uploads")
os.environ.setdefault("JWT_SECRET_KEY", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET_KEY", "test-refresh-secret")
os.environ.setdefault("GEMINI_API_KEY", "test-key")
os.environ["ADVANCE_DELAY_SECONDS"] = "0"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from fakes import FakeOracle  # noqa: E402


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def client(oracle):
    from fastapi.testclient import TestClient

    from socratic_tutor.dependencies import get_oracle
    from socratic_tutor.main import app

    app.dependency_overrides[get_oracle] = lambda: oracle
    with TestClient(app) as tc:
        yield tc
    app.dependency_overrides.clear()
