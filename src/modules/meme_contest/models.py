# src/modules/meme_contest/models.py

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

CONTEST_DURATION = timedelta(days=7)


class Category(str, Enum):
    """反应所属的比赛类别。"""
    MEME = 'meme'
    BONE = 'bone'

    @property
    def emoji(self) -> str:
        return '🎉' if self is Category.MEME else '🦴'

    @property
    def title(self) -> str:
        return 'Meme de la semana' if self is Category.MEME else 'Hueso de la semana'


@dataclass(frozen=True)
class ContestWindow:
    """
    半开时间区间 [start, end)。
    实时比赛和历史扫描共用同一套边界规则。
    """
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass
class Contest:
    """
    代表一次实时比赛。
    对应数据库中的 'contests' 表。
    """
    id: int
    start_date: datetime
    end_date: datetime

    @property
    def window(self) -> ContestWindow:
        return ContestWindow(self.start_date, self.end_date)

    def is_running(self, now: datetime) -> bool:
        return self.window.contains(now)


@dataclass(frozen=True)
class LeaderboardEntry:
    """排行榜中的一行，按需计算，不落库。"""
    message_id: int
    count: int
