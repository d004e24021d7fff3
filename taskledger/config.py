"""
taskledger.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for **infrastructure-only** settings (community
identity, API port, which chats a member must belong to, where admin
alerts go).  All economy tuning values (points per task, quotas, delays,
withdrawal bounds) live in the ``settings`` database table, editable from
the admin API.

Usage::

    from taskledger.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "Task Rewards"
    print(cfg.required_chats)    # ("@rewards_channel", "@rewards_group")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_TELEGRAM_API_BASE = "https://api.telegram.org"


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure/identity only.
# Economy tuning lives in the DB ``settings`` table.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LedgerConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # API
    api_port: int

    # Chats a member must have joined before claiming or withdrawing.
    # Empty means no membership gate.
    required_chats: tuple[str, ...] = field(default_factory=tuple)

    # Optional
    admin_chat_id: int | None = None  # Receives new-withdrawal alerts
    telegram_api_base: str = DEFAULT_TELEGRAM_API_BASE


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> LedgerConfig:
    """Read *path* and return a :class:`LedgerConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return LedgerConfig(
        community_name=raw["community_name"],
        api_port=int(raw["api_port"]),
        required_chats=tuple(str(c) for c in raw.get("required_chats") or ()),
        admin_chat_id=(
            int(raw["admin_chat_id"]) if raw.get("admin_chat_id") else None
        ),
        telegram_api_base=raw.get("telegram_api_base") or DEFAULT_TELEGRAM_API_BASE,
    )
