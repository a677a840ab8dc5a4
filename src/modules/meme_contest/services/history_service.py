# src/modules/meme_contest/services/history_service.py

import asyncio
import logging
from dataclasses import dataclass, field

import discord

from src.modules.meme_contest.errors import ScanInProgressError
from src.modules.meme_contest.models import Category, ContestWindow, LeaderboardEntry
from src.modules.meme_contest.services.classifier_service import ReactionClassifier
from src.modules.meme_contest.services.leaderboard_service import rank_tallies

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    window: ContestWindow
    messages: dict[int, discord.Message] = field(default_factory=dict)
    rankings: dict[Category, list[LeaderboardEntry]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.messages


class HistoryScanner:
    """
    批量模式：直接扫描频道历史，按不同投票人数统计，不落库。
    同一时间只允许一次扫描，定时任务和手动命令共用这把锁。
    """

    def __init__(self, classifier: ReactionClassifier):
        self.classifier = classifier
        self.scan_lock = asyncio.Lock()

    @property
    def is_scanning(self) -> bool:
        return self.scan_lock.locked()

    async def scan(self, channel: discord.abc.Messageable, window: ContestWindow, limit: int) -> ScanResult:
        """
        Raises:
            ScanInProgressError: 已有扫描在进行，本次直接放弃而不是排队。
        """
        if self.scan_lock.locked():
            raise ScanInProgressError("A history scan is already running.")

        async with self.scan_lock:
            log_context = {
                'channel_id': getattr(channel, 'id', None),
                'window_start': window.start.isoformat(),
                'window_end': window.end.isoformat(),
            }
            logger.info("开始扫描频道历史消息", extra=log_context)

            voters: dict[Category, dict[int, set[int]]] = {category: {} for category in Category}
            result = ScanResult(window=window)
            fetched_count = 0

            # discord.py 以 before 游标每页最多取100条，从新到旧
            async for message in channel.history(limit=None, before=window.end):
                fetched_count += 1
                if message.created_at < window.start:
                    # 更早的消息都在窗口之外，提前结束翻页
                    break
                if not window.contains(message.created_at):
                    continue

                result.messages[message.id] = message
                await self._collect_votes(message, channel, voters)

            for category in Category:
                tallies = ((message_id, len(users)) for message_id, users in voters[category].items())
                result.rankings[category] = rank_tallies(tallies, limit)

            log_context.update({'fetched_count': fetched_count, 'in_window_count': len(result.messages)})
            logger.info("频道历史扫描完成", extra=log_context)
            return result

    async def _collect_votes(self, message: discord.Message, channel, voters: dict[Category, dict[int, set[int]]]):
        for reaction in message.reactions:
            category = self.classifier.classify_emoji(reaction.emoji, channel.id)
            if category is None:
                continue
            users = voters[category].setdefault(message.id, set())
            # 同一用户用多个合格表情也只算一票
            async for user in reaction.users():
                if not user.bot:
                    users.add(user.id)
