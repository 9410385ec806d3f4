"""Profile store: player documents plus a push-based top-scores feed."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from . import models
from .errors import ProfileWriteFailure, SubscriptionFailure
from .logging_utils import get_logger

logger = get_logger("chosung.store")

SnapshotCallback = Callable[[List[models.PlayerProfile]], None]
ErrorCallback = Callable[[Exception], None]


def profile_path(app_id: str, user_id: str) -> str:
    return f"artifacts/{app_id}/public/data/chosung_rankings/{user_id}"


def default_nickname(user_id: str) -> str:
    return f"플레이어-{user_id[:4]}"


def make_engine(database_url: str):
    # keep SQLite usable from the threadpool; pool everything else
    if database_url.startswith("sqlite"):
        return create_engine(database_url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_recycle=1800,
    )


class Subscription:
    def __init__(self, store: "ProfileStore", max_count: int, on_snapshot: SnapshotCallback, on_error: Optional[ErrorCallback]):
        self._store = store
        self.max_count = max_count
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._store._drop(self)


class ProfileStore:
    def __init__(self, engine, namespace: str):
        self.engine = engine
        self.namespace = namespace
        self._subscriptions: List[Subscription] = []

    @classmethod
    def from_url(cls, database_url: str, namespace: str) -> "ProfileStore":
        engine = make_engine(database_url)
        SQLModel.metadata.create_all(engine)
        logger.info("store_initialized", extra={"url": database_url})
        return cls(engine, namespace)

    def path_for(self, user_id: str) -> str:
        return profile_path(self.namespace, user_id)

    def read_profile(self, user_id: str) -> Optional[models.PlayerProfile]:
        with Session(self.engine) as s:
            return s.get(models.PlayerProfile, self.path_for(user_id))

    def create_profile(self, user_id: str, nickname: Optional[str] = None) -> models.PlayerProfile:
        profile = models.PlayerProfile(
            path=self.path_for(user_id),
            namespace=self.namespace,
            user_id=user_id,
            nickname=nickname or default_nickname(user_id),
            high_score=0,
            last_updated=datetime.now(timezone.utc),
        )
        try:
            with Session(self.engine) as s:
                s.add(profile)
                s.commit()
                s.refresh(profile)
        except SQLAlchemyError as exc:
            raise ProfileWriteFailure(f"could not create profile for {user_id}: {exc}") from exc
        self._notify()
        return profile

    def ensure_profile(self, user_id: str) -> models.PlayerProfile:
        """Load the player's document, registering a fresh one on first visit."""
        profile = self.read_profile(user_id)
        if profile is not None:
            return profile
        logger.info("profile_created", extra={"user_id": user_id})
        return self.create_profile(user_id)

    def update_high_score(self, user_id: str, new_score: int) -> bool:
        """Store `new_score` if it beats the persisted best. Returns whether it did."""
        try:
            with Session(self.engine) as s:
                profile = s.get(models.PlayerProfile, self.path_for(user_id))
                if profile is None:
                    raise ProfileWriteFailure(f"no profile for {user_id}")
                if new_score <= profile.high_score:
                    return False
                profile.high_score = new_score
                profile.last_updated = datetime.now(timezone.utc)
                s.add(profile)
                s.commit()
        except SQLAlchemyError as exc:
            raise ProfileWriteFailure(f"could not update high score for {user_id}: {exc}") from exc
        self._notify()
        return True

    def top_profiles(self, max_count: int) -> List[models.PlayerProfile]:
        # ties resolve by document path so every reader sees the same order
        with Session(self.engine) as s:
            rows = s.exec(
                select(models.PlayerProfile)
                .where(models.PlayerProfile.namespace == self.namespace)
                .order_by(desc(models.PlayerProfile.high_score), models.PlayerProfile.path)
                .limit(max_count)
            ).all()
            return list(rows)

    def subscribe_top_profiles(
        self,
        max_count: int,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        sub = Subscription(self, max_count, on_snapshot, on_error)
        self._subscriptions.append(sub)
        self._deliver(sub)
        return sub

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def close(self) -> None:
        for sub in list(self._subscriptions):
            sub.unsubscribe()
        self.engine.dispose()

    def _drop(self, sub: Subscription) -> None:
        try:
            self._subscriptions.remove(sub)
        except ValueError:
            pass

    def _notify(self) -> None:
        for sub in list(self._subscriptions):
            self._deliver(sub)

    def _deliver(self, sub: Subscription) -> None:
        if not sub.active:
            return
        try:
            snapshot = self.top_profiles(sub.max_count)
        except SQLAlchemyError as exc:
            err = SubscriptionFailure(str(exc))
            if sub.on_error is not None:
                sub.on_error(err)
            else:
                logger.warning("subscription_failed", extra={"error": str(err)})
            return
        try:
            sub.on_snapshot(snapshot)
        except Exception as exc:
            logger.warning("subscriber_failed", extra={"error": str(exc)})
