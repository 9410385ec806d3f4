"""
Realtime publisher: fans leaderboard changes out to NATS for other gateways.
Without a NATS URL every function is a safe no-op.
"""
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Optional

from .logging_utils import get_logger

logger = get_logger("chosung.realtime")

_nc = None  # type: ignore

try:
    import nats
except Exception:  # pragma: no cover - optional dep
    nats = None  # type: ignore


async def _connect_once(url: Optional[str]) -> None:
    global _nc
    if _nc or not nats or not url:
        return
    try:
        _nc = await nats.connect(url, name="chosung-challenge")
    except Exception as exc:
        logger.warning("nats_connect_failed", extra={"url": url, "error": str(exc)})
        _nc = None


def leaderboard_subject(namespace: str) -> str:
    return f"chosung.{namespace}.leaderboard"


async def publish_leaderboard_update(namespace: str, payload: dict[str, Any], url: Optional[str] = None) -> bool:
    """Publish a high-score change.

    Subject: chosung.<namespace>.leaderboard
    """
    await _connect_once(url)
    if not _nc:
        return False
    env = {
        "v": 1,
        "type": "leaderboard_change",
        "namespace": namespace,
        "id": os.urandom(8).hex(),
        "ts": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }
    try:
        await _nc.publish(leaderboard_subject(namespace), json.dumps(env, ensure_ascii=False).encode("utf-8"))
    except Exception as exc:
        logger.warning("nats_publish_failed", extra={"error": str(exc)})
        return False
    return True
