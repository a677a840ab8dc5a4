"""Pytest configuration and shared fixtures."""

import pytest
import pytest_asyncio

from src.core.config import DEFAULT_BONE_EMOJIS, DEFAULT_MEME_EMOJIS
from src.core.database import Database
from src.core.storage import InMemoryStore
from src.modules.meme_contest.services.classifier_service import ReactionClassifier
from src.modules.meme_contest.services.contest_service import ContestService
from src.modules.meme_contest.services.ledger_service import LedgerService
from src.modules.meme_contest.services.leaderboard_service import LeaderboardService
from tests.fakes import CHANNEL_ID


@pytest_asyncio.fixture(params=["sqlite", "memory"])
async def store(request, tmp_path):
    """两种存储后端都要满足同一份契约。"""
    if request.param == "sqlite":
        backend = Database(str(tmp_path / "test.db"))
    else:
        backend = InMemoryStore()
    await backend.connect()
    yield backend
    await backend.close()


@pytest.fixture
def contest_service(store):
    return ContestService(store)


@pytest.fixture
def ledger_service(store):
    return LedgerService(store)


@pytest.fixture
def leaderboard_service(store, contest_service):
    return LeaderboardService(store, contest_service)


@pytest.fixture
def classifier():
    return ReactionClassifier(CHANNEL_ID, DEFAULT_MEME_EMOJIS, DEFAULT_BONE_EMOJIS)
