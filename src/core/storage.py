# src/core/storage.py
import itertools
import logging
from datetime import datetime
from typing import Optional, Protocol

from src.core.database import Database

logger = logging.getLogger(__name__)


class ContestStore(Protocol):
    """
    比赛与投票的存储能力。
    SQLite 实现见 src/core/database.py，内存实现见下方 InMemoryStore。
    所有写操作都是幂等的集合成员切换。
    """

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def save_contest(self, start_date: datetime, end_date: datetime) -> int: ...

    async def get_latest_contest(self) -> Optional[dict]: ...

    async def add_reaction(self, message_id: int, user_id: int, category: str, contest_id: int) -> bool: ...

    async def remove_reaction(self, message_id: int, user_id: int, category: str, contest_id: int) -> bool: ...

    async def get_vote_counts(self, category: str, contest_id: int) -> list[dict]: ...


class InMemoryStore:
    """进程内存储。重启后数据丢失，适合测试或临时部署。"""

    def __init__(self):
        self._contest_ids = itertools.count(1)
        self._contests: list[dict] = []
        self._reactions: set[tuple[int, int, str, int]] = set()

    async def connect(self) -> None:
        logger.info("使用内存存储，重启后比赛数据不会保留。")

    async def close(self) -> None:
        pass

    async def save_contest(self, start_date: datetime, end_date: datetime) -> int:
        contest_id = next(self._contest_ids)
        self._contests.append({'id': contest_id, 'start_date': start_date, 'end_date': end_date})
        return contest_id

    async def get_latest_contest(self) -> Optional[dict]:
        return dict(self._contests[-1]) if self._contests else None

    async def add_reaction(self, message_id: int, user_id: int, category: str, contest_id: int) -> bool:
        key = (message_id, user_id, category, contest_id)
        if key in self._reactions:
            return False
        self._reactions.add(key)
        return True

    async def remove_reaction(self, message_id: int, user_id: int, category: str, contest_id: int) -> bool:
        key = (message_id, user_id, category, contest_id)
        if key not in self._reactions:
            return False
        self._reactions.discard(key)
        return True

    async def get_vote_counts(self, category: str, contest_id: int) -> list[dict]:
        voters: dict[int, set[int]] = {}
        for message_id, user_id, row_category, row_contest_id in self._reactions:
            if row_category == category and row_contest_id == contest_id:
                voters.setdefault(message_id, set()).add(user_id)
        return [{'message_id': message_id, 'vote_count': len(users)} for message_id, users in voters.items()]


def create_store(backend: str, db_name: Optional[str] = None) -> ContestStore:
    """根据配置选择存储后端。"""
    if backend == 'memory':
        return InMemoryStore()
    return Database(db_name)
