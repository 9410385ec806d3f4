"""Per-player wiring: one state machine, ledger and leaderboard per identity."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from .config import AppConfig
from .errors import AuthFailure
from .identity import Identity
from .leaderboard import LeaderboardViewModel
from .ledger import ScoreLedger
from .logging_utils import get_logger
from .models import PlayerProfile
from .session import Phase, SessionMachine
from .store import ProfileStore
from .timer import Scheduler

logger = get_logger("chosung.hub")

Notifier = Callable[[str, Dict[str, Any]], None]
# a round in progress keeps its context alive until it finishes
_BUSY = (Phase.PLAYING, Phase.ROUND_FEEDBACK)


@dataclass
class PlayerContext:
    identity: Identity
    nickname: str
    machine: SessionMachine
    leaderboard: LeaderboardViewModel


class GameHub:
    def __init__(self, config: AppConfig, store: ProfileStore, scheduler: Scheduler,
                 notify: Optional[Notifier] = None, rng=None, clock=time.monotonic):
        self.config = config
        self.store = store
        self._scheduler = scheduler
        self._notify = notify
        self._rng = rng
        self._players: Dict[str, PlayerContext] = {}
        self._last_seen: Dict[str, float] = {}
        self._clock = clock

    def get(self, user_id: Optional[str]) -> Optional[PlayerContext]:
        if not user_id:
            return None
        ctx = self._players.get(user_id)
        if ctx is not None:
            self._last_seen[user_id] = self._clock()
        return ctx

    def attach(self, identity: Identity, profile: PlayerProfile) -> PlayerContext:
        """Return the player's context, building it on first use."""
        if not identity.is_ready or not identity.id:
            raise AuthFailure("cannot attach a player without a ready identity")
        ctx = self.get(identity.id)
        if ctx is not None:
            return ctx
        uid = identity.id
        machine = SessionMachine(
            identity,
            self._scheduler,
            ScoreLedger(self.store, uid, nats_url=self.config.nats_url),
            settings=self.config.game,
            high_score=profile.high_score,
            rng=self._rng,
            on_change=lambda m: self._emit(uid, {"type": "session", "state": m.snapshot()}),
        )
        board = LeaderboardViewModel(
            uid,
            self.config.leaderboard_limit,
            on_update=lambda vm: self._emit(uid, {"type": "leaderboard", **vm.snapshot()}),
        )
        ctx = PlayerContext(identity, profile.nickname, machine, board)
        self._players[uid] = ctx
        self._last_seen[uid] = self._clock()
        board.attach(self.store)
        logger.info("player_attached", extra={"user_id": uid})
        return ctx

    def detach(self, user_id: str) -> None:
        ctx = self._players.pop(user_id, None)
        self._last_seen.pop(user_id, None)
        if ctx is None:
            return
        ctx.machine.shutdown()
        ctx.leaderboard.detach()
        logger.info("player_detached", extra={"user_id": user_id})

    def release(self, user_id: str) -> bool:
        """Detach the player unless a round is still running. Returns True if detached."""
        ctx = self._players.get(user_id)
        if ctx is None or ctx.machine.phase in _BUSY:
            return False
        self.detach(user_id)
        return True

    def sweep(self, max_idle: float, keep: Iterable[str] = ()) -> int:
        """Release players not seen for max_idle seconds, skipping those in keep."""
        cutoff = self._clock() - max_idle
        keep = set(keep)
        stale = [uid for uid, seen in self._last_seen.items() if seen <= cutoff and uid not in keep]
        return sum(1 for uid in stale if self.release(uid))

    def close(self) -> None:
        for uid in list(self._players):
            self.detach(uid)
        logger.info("hub_closed")

    def __len__(self) -> int:
        return len(self._players)

    def _emit(self, user_id: str, event: Dict[str, Any]) -> None:
        if self._notify is not None:
            self._notify(user_id, event)
