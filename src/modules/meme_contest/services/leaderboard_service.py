# src/modules/meme_contest/services/leaderboard_service.py

from typing import Iterable

from src.core.storage import ContestStore
from src.modules.meme_contest.errors import NoActiveContestError
from src.modules.meme_contest.models import Category, LeaderboardEntry
from src.modules.meme_contest.services.contest_service import ContestService


def rank_tallies(tallies: Iterable[tuple[int, int]], limit: int) -> list[LeaderboardEntry]:
    """
    排名规则：按不同投票人数降序；票数相同时较早的消息（雪花ID更小）在前。
    零票的消息不进入排行榜。
    """
    if limit <= 0:
        return []
    entries = [LeaderboardEntry(message_id, count) for message_id, count in tallies if count > 0]
    entries.sort(key=lambda entry: (-entry.count, entry.message_id))
    return entries[:limit]


class LeaderboardService:
    def __init__(self, store: ContestStore, contest_service: ContestService):
        self.store = store
        self.contest_service = contest_service

    async def rank(self, category: Category, contest_id: int, limit: int) -> list[LeaderboardEntry]:
        rows = await self.store.get_vote_counts(category.value, contest_id)
        return rank_tallies(((row['message_id'], row['vote_count']) for row in rows), limit)

    async def rank_current(self, category: Category, limit: int) -> list[LeaderboardEntry]:
        """
        对最近一次比赛排名，即使窗口已经结束（用于公布最终结果）。

        Raises:
            NoActiveContestError: 从未开始过比赛。
        """
        contest = await self.contest_service.current()
        if contest is None:
            raise NoActiveContestError("No active contest!")
        return await self.rank(category, contest.id, limit)
