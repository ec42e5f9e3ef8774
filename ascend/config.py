"""
ascend.config — YAML Configuration Loader
==========================================

Reads ``config.yaml`` for infrastructure and tuning settings (grant
limits, leaderboard caching, notification endpoint, cache backend).
Connection strings and secrets stay in the environment.

Usage::

    from ascend.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.app_name)              # "Ascend"
    print(cfg.max_xp_per_grant)      # 10000
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ascend.constants import (
    LEADERBOARD_CACHE_TTL,
    LEADERBOARD_DEFAULT_LIMIT,
    LEADERBOARD_MAX_LIMIT,
    MAX_XP_PER_GRANT,
    MIN_XP_PER_GRANT,
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AscendConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    app_name: str

    # Grant limits
    min_xp_per_grant: int = MIN_XP_PER_GRANT
    max_xp_per_grant: int = MAX_XP_PER_GRANT

    # Leaderboard
    leaderboard_cache_ttl: int = LEADERBOARD_CACHE_TTL
    leaderboard_default_limit: int = LEADERBOARD_DEFAULT_LIMIT
    leaderboard_max_limit: int = LEADERBOARD_MAX_LIMIT

    # Notifications (None → log-only dispatcher)
    notification_url: str | None = None
    notification_timeout: float = 5.0

    # Cache backend (None → in-process cache)
    redis_url: str | None = None

    # External action → internal event type, merged over the defaults
    event_map: dict[str, str] = field(default_factory=dict)

    @classmethod
    def default(cls) -> AscendConfig:
        return cls(app_name="Ascend")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> AscendConfig:
    """Read *path* and return an :class:`AscendConfig` instance.

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

    return AscendConfig(
        app_name=raw["app_name"],
        min_xp_per_grant=int(raw.get("min_xp_per_grant", MIN_XP_PER_GRANT)),
        max_xp_per_grant=int(raw.get("max_xp_per_grant", MAX_XP_PER_GRANT)),
        leaderboard_cache_ttl=int(raw.get("leaderboard_cache_ttl", LEADERBOARD_CACHE_TTL)),
        leaderboard_default_limit=int(
            raw.get("leaderboard_default_limit", LEADERBOARD_DEFAULT_LIMIT)
        ),
        leaderboard_max_limit=int(raw.get("leaderboard_max_limit", LEADERBOARD_MAX_LIMIT)),
        notification_url=raw.get("notification_url") or None,
        notification_timeout=float(raw.get("notification_timeout", 5.0)),
        redis_url=raw.get("redis_url") or None,
        event_map={str(k): str(v) for k, v in (raw.get("event_map") or {}).items()},
    )
