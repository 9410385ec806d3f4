import random
import sys
from pathlib import Path
import pytest

# Ensure project root is on sys.path so tests can import the `chosung` package
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from chosung.config import AppConfig, GameSettings
from chosung.identity import Identity
from chosung.questions import QuestionRecord
from chosung.store import ProfileStore
from chosung.timer import ManualScheduler


@pytest.fixture(autouse=True)
def reset_rate_limiter():
	# Clear in-memory rate limiter between tests to avoid cross-test flakiness
	try:
		import chosung.main as chosung_main
		chosung_main._RATE_LIMIT_STORE.clear()
	except Exception:
		pass
	yield


@pytest.fixture()
def config(tmp_path):
	return AppConfig(database_url=f"sqlite:///{tmp_path / 'chosung.db'}", app_id="test-app")


@pytest.fixture()
def store(config):
	s = ProfileStore.from_url(config.database_url, config.app_id)
	yield s
	s.close()


@pytest.fixture()
def scheduler():
	return ManualScheduler()


@pytest.fixture()
def player():
	return Identity("player-one", True)


@pytest.fixture()
def small_bank():
	return (
		QuestionRecord("ㅅㅂ", "과일", "수박", 1),
		QuestionRecord("ㄴㄱ", "지리", "남극", 2),
	)


@pytest.fixture()
def settings():
	return GameSettings(round_size=2, timer_start=10, base_points=10)


@pytest.fixture()
def rng():
	return random.Random(1234)
