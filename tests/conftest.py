import os
import sys
from unittest.mock import MagicMock

import pytest

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.tools.market_data import build_market_registry


@pytest.fixture
def registry():
    return build_market_registry()

@pytest.fixture
def orats_token(monkeypatch):
    monkeypatch.setenv("ORATS_API_TOKEN", "test-token")
    return "test-token"

@pytest.fixture
def make_response():
    def _make(status=200, reason="OK", payload=None):
        r = MagicMock()
        r.status_code = status
        r.reason = reason
        r.ok = 200 <= status < 300
        r.json.return_value = payload
        return r
    return _make
