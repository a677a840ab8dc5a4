# src/modules/meme_contest/cogs/contest_commands.py

import discord
from discord.ext import commands, tasks
from discord import app_commands
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from src.core.config import BotConfig, ConfigurationError
from src.modules.meme_contest.errors import ScanInProgressError
from src.modules.meme_contest.models import Category, ContestWindow
from src.modules.meme_contest.services.announcement_service import AnnouncementService
from src.modules.meme_contest.services.contest_service import (
    ContestService,
    closed_weekly_window,
    utcnow,
    weekly_window,
    year_window,
)
from src.modules.meme_contest.services.history_service import HistoryScanner
from src.modules.meme_contest.services.leaderboard_service import LeaderboardService

if TYPE_CHECKING:
    from src.bot import MemeBot

logger = logging.getLogger(__name__)

GENERIC_ERROR_REPLY = "There was an error while executing this command!"
NO_CONTEST_REPLY = "No hay ningún concurso en curso."
SCAN_IN_PROGRESS_REPLY = "Ya hay un escaneo de mensajes en curso, inténtalo más tarde."
CHANNEL_NOT_CONFIGURED_REPLY = "Channel ID is not set in the environment variables."


class ContestCommands(commands.Cog):
    """
    比赛相关的斜杠命令，以及每周自动公告的定时任务。
    """

    def __init__(self, bot: "MemeBot"):
        self.bot = bot
        self.config: BotConfig = bot.config
        self.contest_service: ContestService = bot.contest_service
        self.leaderboard_service: LeaderboardService = bot.leaderboard_service
        self.history_scanner: HistoryScanner = bot.history_scanner
        self.announcement_service: AnnouncementService = bot.announcement_service
        self.last_announced_end: Optional[datetime] = None

        if getattr(bot, "registration_only", False):
            logger.info("注册模式：不启动每周自动公告。")
        elif self.config.weekly_check_minutes > 0:
            self.weekly_announcement.change_interval(minutes=self.config.weekly_check_minutes)
            self.weekly_announcement.start()
        else:
            logger.info("每周自动公告已禁用 (WEEKLY_ANNOUNCE_CHECK_MINUTES=0)。")

    def cog_unload(self):
        """当 Cog 被卸载时停止定时任务，以支持热重载"""
        self.weekly_announcement.cancel()

    async def _get_contest_channel(self) -> discord.TextChannel:
        channel_id = self.config.require_channel_id()
        return self.bot.get_channel(channel_id) or await self.bot.fetch_channel(channel_id)

    async def _send_error(self, interaction: discord.Interaction, content: str):
        if interaction.response.is_done():
            await interaction.followup.send(content)
        else:
            await interaction.response.send_message(content)

    # ----------------------------------------------------------------
    # Command Logic Implementation (Internal)
    # ----------------------------------------------------------------

    async def _internal_start(self, interaction: discord.Interaction):
        contest = await self.contest_service.start()
        logger.info(
            "用户开始了新比赛",
            extra={'user_id': interaction.user.id, 'guild_id': interaction.guild_id, 'contest_id': contest.id}
        )
        await interaction.response.send_message("El concurso ha comenzado!")

    async def _internal_winner(self, interaction: discord.Interaction):
        # 两个类别必须来自同一场比赛
        contest = await self.contest_service.current()
        if contest is None:
            await interaction.response.send_message(NO_CONTEST_REPLY)
            return

        memes = await self.leaderboard_service.rank(Category.MEME, contest.id, self.config.top_n)
        bones = await self.leaderboard_service.rank(Category.BONE, contest.id, self.config.top_n)

        if not memes and not bones:
            await interaction.response.send_message("No winners found for this week.")
            return

        await interaction.response.send_message("Ganadores anunciados!")
        channel = await self._get_contest_channel()
        for category, entries in ((Category.MEME, memes), (Category.BONE, bones)):
            if entries:
                await self.announcement_service.announce_to_channel(channel, category, entries)

    async def _internal_batch_announce(self, interaction: discord.Interaction, window: ContestWindow):
        """批量模式：扫描历史消息，再用 followup 公布结果。"""
        await interaction.response.defer()

        channel = await self._get_contest_channel()
        try:
            result = await self.history_scanner.scan(channel, window, self.config.top_n)
        except ScanInProgressError:
            await interaction.edit_original_response(content=SCAN_IN_PROGRESS_REPLY)
            return

        if result.is_empty:
            await interaction.edit_original_response(content="No messages found in the specified date range.")
            return

        for category in Category:
            await self.announcement_service.announce_followups(
                interaction, category, result.rankings[category], result.messages
            )
        await interaction.edit_original_response(content="Ganadores anunciados!")

    async def _run_command(self, interaction: discord.Interaction, command_name: str, handler, *args):
        """命令边界：所有异常在这里记录并转成用户可见的回复，不会让进程崩溃。"""
        log_context = {
            'user_id': interaction.user.id,
            'guild_id': interaction.guild_id,
            'channel_id': interaction.channel_id,
            'command': f'/{command_name}'
        }
        try:
            await handler(interaction, *args)
        except ConfigurationError:
            logger.error("命令所需的配置缺失", extra=log_context, exc_info=True)
            await self._send_error(interaction, CHANNEL_NOT_CONFIGURED_REPLY)
        except (discord.NotFound, discord.Forbidden):
            logger.warning("无法访问比赛频道或消息", extra=log_context, exc_info=True)
            await self._send_error(interaction, "Channel not found.")
        except Exception:
            logger.error("斜杠命令执行失败", extra=log_context, exc_info=True)
            await self._send_error(interaction, GENERIC_ERROR_REPLY)

    # ----------------------------------------------------------------
    # 斜杠命令
    # ----------------------------------------------------------------

    @app_commands.command(name="startcontest", description="Start the meme contest")
    async def start_contest(self, interaction: discord.Interaction):
        await self._run_command(interaction, "startcontest", self._internal_start)

    @app_commands.command(name="winner", description="Announce the winner of the meme contest")
    async def winner(self, interaction: discord.Interaction):
        await self._run_command(interaction, "winner", self._internal_winner)

    @app_commands.command(name="gettop", description="Scan this week's memes and announce the top posts")
    async def get_top(self, interaction: discord.Interaction):
        window = weekly_window(utcnow(), self.config.timezone)
        await self._run_command(interaction, "gettop", self._internal_batch_announce, window)

    @app_commands.command(name="memeoftheyear", description="Scan a whole year of memes and announce the top posts")
    @app_commands.describe(year="Calendar year to scan (defaults to the current year)")
    async def meme_of_the_year(
        self, interaction: discord.Interaction, year: Optional[app_commands.Range[int, 1, 9998]] = None
    ):
        now = utcnow()
        target_year = year if year is not None else now.astimezone(self.config.timezone).year
        try:
            window = year_window(target_year, now, self.config.timezone)
        except ValueError:
            await interaction.response.send_message(f"El año {target_year} aún no ha comenzado.")
            return
        await self._run_command(interaction, "memeoftheyear", self._internal_batch_announce, window)

    # ----------------------------------------------------------------
    # Background Task
    # ----------------------------------------------------------------

    async def announce_closed_week(self, now: Optional[datetime] = None) -> bool:
        """
        公布最近一个已结束的周窗口。每个窗口在本进程内只公布一次。
        返回是否真的发出了公告。
        """
        window = closed_weekly_window(now or utcnow(), self.config.timezone)
        if self.last_announced_end is not None and window.end <= self.last_announced_end:
            return False

        log_context = {'window_start': window.start.isoformat(), 'window_end': window.end.isoformat()}
        try:
            channel = await self._get_contest_channel()
            result = await self.history_scanner.scan(channel, window, self.config.top_n)
        except ScanInProgressError:
            logger.info("已有扫描在进行，本次定时公告跳过，下次重试。", extra=log_context)
            return False

        # 扫描成功即认领该窗口，发送失败也不会在下个周期重发
        self.last_announced_end = window.end
        for category in Category:
            entries = result.rankings.get(category, [])
            if entries:
                await self.announcement_service.announce_to_channel(channel, category, entries, result.messages)
            else:
                await channel.send(f"No winners found for {category.value}.")

        logger.info("每周定时公告已完成", extra=log_context)
        return True

    @tasks.loop(minutes=60)
    async def weekly_announcement(self):
        try:
            await self.announce_closed_week()
        except ConfigurationError:
            logger.error("MEME_CHANNEL_ID 未设置，无法执行每周定时公告。")
        except Exception:
            # 异常若逃出 tasks.loop 会终止循环
            logger.error("每周定时公告时发生未知错误", exc_info=True)

    @weekly_announcement.before_loop
    async def before_weekly_announcement(self):
        """等待机器人准备好；启动时已经结束的那一周视为已公布。"""
        await self.bot.wait_until_ready()
        self.last_announced_end = closed_weekly_window(utcnow(), self.config.timezone).end
        logger.info("每周定时公告循环已准备就绪。")


async def setup(bot: "MemeBot"):
    await bot.add_cog(ContestCommands(bot))
