from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import SubscriptionFailure
from .logging_utils import get_logger

logger = get_logger("chosung.leaderboard")


@dataclass(frozen=True)
class RankingEntry:
    user_id: str
    nickname: str
    high_score: int
    rank: int


@dataclass(frozen=True)
class OwnRank:
    rank: int
    score: int


def rank_profiles(profiles: Iterable[Any]) -> List[RankingEntry]:
    """Rank profiles by high score, highest first.

    The sort is stable, so equal scores keep their feed order.
    """
    ordered = sorted(profiles, key=lambda p: p.high_score, reverse=True)
    return [
        RankingEntry(p.user_id, p.nickname, int(p.high_score), idx)
        for idx, p in enumerate(ordered, start=1)
    ]


class LeaderboardViewModel:
    def __init__(self, user_id: Optional[str], max_count: int = 100,
                 on_update: Optional[Callable[["LeaderboardViewModel"], None]] = None):
        self.user_id = user_id
        self.max_count = max_count
        self.on_update = on_update
        self.entries: List[RankingEntry] = []
        self.own_rank: Optional[OwnRank] = None
        self.last_error: Optional[str] = None
        self._subscription = None

    def apply_snapshot(self, profiles: Iterable[Any]) -> None:
        entries = rank_profiles(list(profiles)[: self.max_count])
        own = None
        for e in entries:
            if e.user_id == self.user_id:
                own = OwnRank(e.rank, e.high_score)
                break
        self.entries = entries
        self.own_rank = own
        self.last_error = None
        if self.on_update is not None:
            self.on_update(self)

    def on_error(self, exc: Exception) -> None:
        # keep the last-known ranking
        self.last_error = str(exc)
        logger.warning(
            "leaderboard_feed_error",
            extra={"user_id": self.user_id, "error": str(SubscriptionFailure(str(exc)))},
        )

    def attach(self, store) -> None:
        if self._subscription is not None:
            return
        self._subscription = store.subscribe_top_profiles(self.max_count, self.apply_snapshot, self.on_error)

    def detach(self) -> None:
        if self._subscription is None:
            return
        self._subscription.unsubscribe()
        self._subscription = None

    @property
    def attached(self) -> bool:
        return self._subscription is not None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "entries": [
                {"rank": e.rank, "user_id": e.user_id, "nickname": e.nickname, "high_score": e.high_score}
                for e in self.entries
            ],
            "own_rank": {"rank": self.own_rank.rank, "score": self.own_rank.score} if self.own_rank else None,
            "max_count": self.max_count,
        }
