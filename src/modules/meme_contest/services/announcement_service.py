# src/modules/meme_contest/services/announcement_service.py

import logging
from typing import Optional

import discord

from src.modules.meme_contest.models import Category, LeaderboardEntry

logger = logging.getLogger(__name__)


def format_winner(category: Category, position: int, message: discord.Message, count: int) -> str:
    emoji = category.emoji
    return (
        f"{emoji} Felicitaciones, {message.author.mention}! Tu post ha ganado el #{position} "
        f"puesto al \"{category.title}\" con {count} reacciones. #LaPlazaRulez! "
        f"Link: {message.jump_url} {emoji}"
    )


class AnnouncementService:
    """
    负责把排行榜结果发到频道。
    只做格式化和发送，不参与排名。
    """

    async def _resolve_message(
        self, channel: discord.TextChannel, message_id: int, messages: Optional[dict[int, discord.Message]]
    ) -> Optional[discord.Message]:
        if messages and message_id in messages:
            return messages[message_id]
        try:
            return await channel.fetch_message(message_id)
        except discord.NotFound:
            logger.warning("获奖消息未找到，可能已被删除。", extra={'message_id': message_id, 'channel_id': channel.id})
            return None

    async def _first_attachment(self, message: discord.Message) -> Optional[discord.File]:
        if not message.attachments:
            return None
        try:
            return await message.attachments[0].to_file()
        except discord.HTTPException:
            logger.warning("下载获奖消息附件失败，将只发送文字。", extra={'message_id': message.id}, exc_info=True)
            return None

    async def announce_to_channel(
        self,
        channel: discord.TextChannel,
        category: Category,
        entries: list[LeaderboardEntry],
        messages: Optional[dict[int, discord.Message]] = None,
    ) -> int:
        """在比赛频道逐条公布获奖者，附带获奖帖的第一张附件。返回实际发送的条数。"""
        sent = 0
        for position, entry in enumerate(entries, start=1):
            message = await self._resolve_message(channel, entry.message_id, messages)
            if message is None:
                continue
            content = format_winner(category, position, message, entry.count)
            attachment = await self._first_attachment(message)
            if attachment:
                await channel.send(content=content, files=[attachment])
            else:
                await channel.send(content=content)
            sent += 1

        logger.info("已在频道公布获奖者", extra={'channel_id': channel.id, 'category': category.value, 'sent': sent})
        return sent

    async def announce_followups(
        self,
        interaction: discord.Interaction,
        category: Category,
        entries: list[LeaderboardEntry],
        messages: dict[int, discord.Message],
    ) -> int:
        """批量模式：通过交互的 followup 公布获奖者。"""
        if not entries:
            await interaction.followup.send(f"No winners found for {category.value}.")
            return 0

        sent = 0
        for position, entry in enumerate(entries, start=1):
            message = messages.get(entry.message_id)
            if message is None:
                continue
            await interaction.followup.send(format_winner(category, position, message, entry.count))
            sent += 1
        return sent
