"""Session-end synchronization of the player's best score."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from .logging_utils import get_logger
from .realtime_publisher import publish_leaderboard_update
from .store import ProfileStore

logger = get_logger("chosung.ledger")


@dataclass(frozen=True)
class LedgerResult:
    new_high_score: int
    improved: bool


class ScoreLedger:
    def __init__(self, store: ProfileStore, user_id: str, nats_url: Optional[str] = None):
        self._store = store
        self._user_id = user_id
        self._nats_url = nats_url

    def on_session_end(self, final_score: int, previous_high_score: int) -> LedgerResult:
        """Compare the finished session against the stored best.

        Only a strict improvement triggers a write, and exactly one attempt is
        made. The returned high score never rolls back, whatever the write does.
        """
        if final_score <= previous_high_score:
            return LedgerResult(previous_high_score, False)
        logger.info(
            "high_score_improved",
            extra={"user_id": self._user_id, "score": final_score, "high_score": previous_high_score},
        )
        self._dispatch(self.write_through(final_score))
        return LedgerResult(final_score, True)

    async def write_through(self, new_score: int) -> bool:
        try:
            written = self._store.update_high_score(self._user_id, new_score)
        except Exception as exc:
            logger.warning("high_score_write_failed", extra={"user_id": self._user_id, "error": str(exc)})
            return False
        if written:
            await publish_leaderboard_update(
                self._store.namespace,
                {"user_id": self._user_id, "high_score": new_score},
                url=self._nats_url,
            )
        return written

    @staticmethod
    def _dispatch(coro) -> None:
        # fire-and-forget on the running loop; run inline when there is none
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return
        loop.create_task(coro)
