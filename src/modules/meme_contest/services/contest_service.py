# src/modules/meme_contest/services/contest_service.py

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import pytz

from src.core.storage import ContestStore
from src.modules.meme_contest.models import CONTEST_DURATION, Contest, ContestWindow

logger = logging.getLogger(__name__)

FRIDAY = 4
NOON = 12


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _local_at(tz: pytz.BaseTzInfo, day: date, hour: int = 0) -> datetime:
    # pytz 的时区必须用 localize，不能直接传给 tzinfo
    return tz.localize(datetime.combine(day, time(hour=hour)))


def _last_weekday_at(now: datetime, tz: pytz.BaseTzInfo, weekday: int, hour: int) -> datetime:
    """now 之前（含）最近一次的 星期weekday hour:00。"""
    local_now = now.astimezone(tz)
    anchor_day = local_now.date() - timedelta(days=(local_now.weekday() - weekday) % 7)
    anchor = _local_at(tz, anchor_day, hour)
    if anchor > now:
        anchor = _local_at(tz, anchor_day - timedelta(days=7), hour)
    return anchor


def weekly_window(now: datetime, tz: pytz.BaseTzInfo, weekday: int = FRIDAY, hour: int = NOON) -> ContestWindow:
    """
    历史扫描使用的本周窗口：
    从最近一个周五中午开始，到 now 与下一个周五中午两者中较早的那个为止。
    """
    start = _last_weekday_at(now, tz, weekday, hour)
    next_start = _local_at(tz, start.astimezone(tz).date() + timedelta(days=7), hour)
    return ContestWindow(start, min(now, next_start))


def closed_weekly_window(now: datetime, tz: pytz.BaseTzInfo, weekday: int = FRIDAY, hour: int = NOON) -> ContestWindow:
    """最近一个已经完整结束的周五到周五窗口，供定时公告使用。"""
    end = _last_weekday_at(now, tz, weekday, hour)
    start = _local_at(tz, end.astimezone(tz).date() - timedelta(days=7), hour)
    return ContestWindow(start, end)


def year_window(year: int, now: datetime, tz: pytz.BaseTzInfo) -> ContestWindow:
    """整个自然年的窗口，年份未结束时截止到 now。"""
    start = _local_at(tz, date(year, 1, 1))
    if start > now:
        raise ValueError(f"{year} 年还没有开始。")
    end = _local_at(tz, date(year + 1, 1, 1))
    return ContestWindow(start, min(now, end))


class ContestService:
    """
    管理实时比赛的时间窗口。
    只有两个状态：从未开始 / 已有最近一次比赛。
    "是否存在比赛" 与 "比赛是否仍在接收投票" 是两个独立的问题。
    """

    def __init__(self, store: ContestStore):
        self.store = store

    async def start(self, now: Optional[datetime] = None) -> Contest:
        """开始一次新比赛，覆盖（而非删除）之前的比赛。"""
        start_date = now or utcnow()
        end_date = start_date + CONTEST_DURATION
        contest_id = await self.store.save_contest(start_date, end_date)
        logger.info(
            "新比赛已开始",
            extra={'contest_id': contest_id, 'start_date': start_date.isoformat(), 'end_date': end_date.isoformat()}
        )
        return Contest(id=contest_id, start_date=start_date, end_date=end_date)

    async def current(self) -> Optional[Contest]:
        contest_dict = await self.store.get_latest_contest()
        if contest_dict:
            return Contest(**contest_dict)
        return None

    async def running(self, now: Optional[datetime] = None) -> Optional[Contest]:
        contest = await self.current()
        if contest and contest.is_running(now or utcnow()):
            return contest
        return None

    async def is_running(self, now: Optional[datetime] = None) -> bool:
        return await self.running(now) is not None
