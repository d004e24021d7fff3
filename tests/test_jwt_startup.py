"""
tests/test_jwt_startup — JWT Secret Validation at Import
=========================================================
The API refuses to start when JWT_SECRET is missing, blank, too short,
or a known weak default.
"""

from __future__ import annotations

import importlib
import os
from unittest.mock import patch

import pytest


def _reload_deps():
    import taskledger.api.deps as deps_mod

    return importlib.reload(deps_mod)


@pytest.fixture(autouse=True)
def _restore_jwt_secret():
    """Reload deps with the suite's secret so later tests keep working."""
    original = os.environ.get("JWT_SECRET")
    yield
    if original is not None:
        os.environ["JWT_SECRET"] = original
    else:
        os.environ.pop("JWT_SECRET", None)
    try:
        _reload_deps()
    except RuntimeError:
        pass  # no valid secret in this environment


@pytest.mark.parametrize("secret,message", [
    ("", "environment variable is not set"),
    ("taskledger-dev-secret-change-me", "known weak default"),
    ("change-me", "known weak default"),
    ("tooshort", "too short"),
])
def test_rejects_bad_secret(secret, message):
    with patch.dict(os.environ, {"JWT_SECRET": secret}):
        with pytest.raises(RuntimeError, match=message):
            _reload_deps()


def test_rejects_missing_secret():
    with patch.dict(os.environ, {}, clear=False):
        os.environ.pop("JWT_SECRET", None)
        with pytest.raises(RuntimeError, match="environment variable is not set"):
            _reload_deps()


def test_accepts_strong_secret():
    with patch.dict(os.environ, {"JWT_SECRET": "a" * 64}):
        assert _reload_deps().JWT_SECRET == "a" * 64


@pytest.mark.parametrize("sub,expected", [("42", 42), ("abc", 0), (None, 0)])
def test_admin_id_from_token(sub, expected):
    from taskledger.api.deps import admin_id

    assert admin_id({"sub": sub}) == expected
