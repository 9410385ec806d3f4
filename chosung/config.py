from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .errors import ConfigMissing

_DEV_SECRET = "dev-secret-change-me"


@dataclass(frozen=True)
class GameSettings:
    """Tunables the session state machine needs."""
    round_size: int = 5
    timer_start: int = 10
    base_points: int = 10
    correct_delay: float = 0.5
    wrong_delay: float = 2.0


@dataclass(frozen=True)
class AppConfig:
    database_url: str
    app_id: str = "default-app-id"
    session_secret: str = _DEV_SECRET
    leaderboard_limit: int = 100
    player_idle_ttl: float = 900.0
    cookie_secure: bool = False
    nats_url: Optional[str] = None
    game: GameSettings = field(default_factory=GameSettings)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """Build the config from environment variables.

        CHOSUNG_DATABASE_URL (or DATABASE_URL) is required; everything else has
        a default. Raises ConfigMissing when the database URL is absent.
        """
        env = os.environ if env is None else env
        db_url = env.get("CHOSUNG_DATABASE_URL") or env.get("DATABASE_URL")
        if not db_url:
            raise ConfigMissing("CHOSUNG_DATABASE_URL is not set")
        game = GameSettings(
            round_size=_int(env, "CHOSUNG_ROUND_SIZE", 5),
            timer_start=_int(env, "CHOSUNG_TIMER_START", 10),
            base_points=_int(env, "CHOSUNG_BASE_POINTS", 10),
            correct_delay=_float(env, "CHOSUNG_CORRECT_DELAY", 0.5),
            wrong_delay=_float(env, "CHOSUNG_WRONG_DELAY", 2.0),
        )
        return cls(
            database_url=db_url,
            app_id=env.get("CHOSUNG_APP_ID") or "default-app-id",
            session_secret=env.get("SESSION_SECRET") or _DEV_SECRET,
            leaderboard_limit=_int(env, "CHOSUNG_LEADERBOARD_LIMIT", 100),
            player_idle_ttl=_float(env, "CHOSUNG_PLAYER_IDLE_TTL", 900.0),
            cookie_secure=env.get("COOKIE_SECURE", "0") in ("1", "true", "True"),
            nats_url=env.get("NATS_URL") or None,
            game=game,
        )


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        val = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")
    if val < 0:
        raise ValueError(f"{key} must not be negative")
    return val


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}")
