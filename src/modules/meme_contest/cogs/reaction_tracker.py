# src/modules/meme_contest/cogs/reaction_tracker.py

import discord
from discord.ext import commands
import logging
from typing import TYPE_CHECKING

from src.modules.meme_contest.services.classifier_service import ReactionClassifier
from src.modules.meme_contest.services.contest_service import ContestService
from src.modules.meme_contest.services.ledger_service import LedgerService

if TYPE_CHECKING:
    from src.bot import MemeBot

logger = logging.getLogger(__name__)


class ReactionTracker(commands.Cog):
    """
    监听比赛频道的反应事件，把有效投票写入账本。
    使用 raw 事件，这样未缓存的旧消息也能被统计。
    """

    def __init__(self, bot: "MemeBot"):
        self.bot = bot
        self.classifier: ReactionClassifier = bot.classifier
        self.contest_service: ContestService = bot.contest_service
        self.ledger_service: LedgerService = bot.ledger_service

    def _is_bot_user(self, payload: discord.RawReactionActionEvent) -> bool:
        # 移除事件不带 member，只能查缓存
        user = payload.member or self.bot.get_user(payload.user_id)
        return bool(user and user.bot)

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent):
        if self._is_bot_user(payload):
            return
        await self.handle_reaction_added(payload)

    @commands.Cog.listener()
    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent):
        if self._is_bot_user(payload):
            return
        await self.handle_reaction_removed(payload)

    async def handle_reaction_added(self, payload: discord.RawReactionActionEvent):
        log_context = {
            'message_id': payload.message_id,
            'channel_id': payload.channel_id,
            'user_id': payload.user_id,
            'emoji': str(payload.emoji),
        }
        try:
            category = self.classifier.classify_emoji(payload.emoji, payload.channel_id)
            if category is None:
                return

            contest = await self.contest_service.running()
            if contest is None:
                logger.debug("没有进行中的比赛，忽略投票", extra=log_context)
                return

            await self.ledger_service.record(payload.message_id, payload.user_id, category, contest.id)
        except Exception:
            logger.error("处理反应添加事件时出错", extra=log_context, exc_info=True)

    async def handle_reaction_removed(self, payload: discord.RawReactionActionEvent):
        log_context = {
            'message_id': payload.message_id,
            'channel_id': payload.channel_id,
            'user_id': payload.user_id,
            'emoji': str(payload.emoji),
        }
        try:
            category = self.classifier.classify_emoji(payload.emoji, payload.channel_id)
            if category is None:
                return

            # 比赛结束后结果已定，不再撤销
            contest = await self.contest_service.running()
            if contest is None:
                return

            await self.ledger_service.unrecord(payload.message_id, payload.user_id, category, contest.id)
        except Exception:
            logger.error("处理反应移除事件时出错", extra=log_context, exc_info=True)


async def setup(bot: "MemeBot"):
    await bot.add_cog(ReactionTracker(bot))
