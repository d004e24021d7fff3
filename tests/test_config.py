"""
tests/test_config.py — YAML Configuration & Engine Factory Tests
=================================================================
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from taskledger.config import DEFAULT_TELEGRAM_API_BASE, load_config
from taskledger.database.engine import create_db_engine


def _write(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_full_file(self, tmp_path):
        cfg = load_config(_write(tmp_path, """
community_name: "Rewards"
api_port: 9000
required_chats: ["@chan", -100123]
admin_chat_id: 4242
telegram_api_base: "https://tg.example"
"""))
        assert cfg.community_name == "Rewards"
        assert cfg.api_port == 9000
        assert cfg.required_chats == ("@chan", "-100123")
        assert cfg.admin_chat_id == 4242
        assert cfg.telegram_api_base == "https://tg.example"

    def test_optional_keys_default(self, tmp_path):
        cfg = load_config(_write(tmp_path, "community_name: R\napi_port: 8000\n"))
        assert cfg.required_chats == ()
        assert cfg.admin_chat_id is None
        assert cfg.telegram_api_base == DEFAULT_TELEGRAM_API_BASE

    def test_missing_file_has_hint(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "nope.yaml")

    def test_missing_required_key(self, tmp_path):
        with pytest.raises(KeyError):
            load_config(_write(tmp_path, "community_name: R\n"))

    def test_config_is_frozen(self, tmp_path):
        cfg = load_config(_write(tmp_path, "community_name: R\napi_port: 8000\n"))
        with pytest.raises(AttributeError):
            cfg.api_port = 1


class TestCreateDbEngine:
    def test_requires_database_url(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("DATABASE_URL", None)
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                create_db_engine()
