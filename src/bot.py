import discord
from discord.ext import commands
import asyncio
import pathlib
from typing import Optional
from dotenv import load_dotenv, find_dotenv
from src.core.config import BotConfig, ConfigurationError
from src.core.storage import ContestStore, create_store
from src.modules.meme_contest.services.announcement_service import AnnouncementService
from src.modules.meme_contest.services.classifier_service import ReactionClassifier
from src.modules.meme_contest.services.contest_service import ContestService
from src.modules.meme_contest.services.history_service import HistoryScanner
from src.modules.meme_contest.services.ledger_service import LedgerService
from src.modules.meme_contest.services.leaderboard_service import LeaderboardService
import logging
from src.core.logging_setup import setup_logging

# 使用 find_dotenv() 确保总能找到 .env 文件
load_dotenv(find_dotenv())

logger = logging.getLogger(__name__)


class MemeBot(commands.Bot):
    def __init__(self, config: BotConfig, sync_commands: bool = True, registration_only: bool = False):
        logger.info("--- ⌛ 0. 环境与配置加载 ---")
        self.config = config
        self.sync_commands = sync_commands
        # 只注册命令时不打开数据库，也不启动定时任务
        self.registration_only = registration_only

        if self.config.guild_ids:
            logger.info(f"已加载 {len(self.config.guild_ids)} 个目标服务器 ID。")
        else:
            logger.info("未指定 GUILD_ID，将进行全局同步。")

        if self.config.channel_id is None:
            logger.warning("警告：未配置 MEME_CHANNEL_ID！机器人不会统计任何反应。")
        else:
            logger.info(f"比赛频道 ID: {self.config.channel_id}，参考时区: {self.config.timezone_name}")

        # 反应事件只需要服务器、消息和反应相关的意图
        intents = discord.Intents.default()
        intents.guild_messages = True
        intents.guild_reactions = True
        super().__init__(command_prefix="!", intents=intents, application_id=self.config.application_id)

        self.store: Optional[ContestStore] = None
        self.classifier = ReactionClassifier(
            self.config.channel_id, self.config.meme_emojis, self.config.bone_emojis
        )
        self.contest_service: Optional[ContestService] = None
        self.ledger_service: Optional[LedgerService] = None
        self.leaderboard_service: Optional[LeaderboardService] = None
        self.history_scanner = HistoryScanner(self.classifier)
        self.announcement_service = AnnouncementService()

    async def setup_hook(self) -> None:
        """
        Bot 启动时执行的异步初始化。
        这里只做最核心、最快的初始化。
        """
        logger.info("--- 🚀 1. 初始化核心服务 ---")
        backend = "memory" if self.registration_only else self.config.storage_backend
        self.store = create_store(backend, self.config.db_name)
        await self.store.connect()

        self.contest_service = ContestService(self.store)
        self.ledger_service = LedgerService(self.store)
        self.leaderboard_service = LeaderboardService(self.store, self.contest_service)
        logger.info("✅ 核心服务初始化完成。")

        logger.info("--- 🧩 2. 加载功能模块 (Cogs) ---")
        await self.load_all_cogs()

        if self.sync_commands:
            await self.sync_command_tree()

        self.list_loaded_commands()
        logger.info("--- 🎉 机器人核心已就绪,等待 Discord 连接成功...---")

    async def sync_command_tree(self):
        logger.info("--- 🛰️ 3. 同步应用命令 ---")
        if self.config.guild_ids:
            for guild_id in self.config.guild_ids:
                guild = discord.Object(id=guild_id)
                self.tree.copy_global_to(guild=guild)
                await self.tree.sync(guild=guild)
                logger.info(f"✅ 命令已同步到服务器: {guild_id}")
        else:
            await self.tree.sync()
            logger.info("✅ 命令已全局同步。")

    async def on_ready(self):
        logger.info(f"--- ✅ 已成功连接到 Discord ---,以 {self.user} (ID: {self.user.id}) 的身份登录-")
        logger.info("======================== 机器人完全就绪 ========================")

    async def close(self):
        """在机器人关闭时，优雅地清理资源。"""
        logger.info("正在关闭机器人并清理资源...")

        # 先断开与 Discord 的连接，再清理我们自己的资源
        await super().close()
        logger.info("Discord 客户端已成功关闭。")

        if self.store:
            await self.store.close()

        logger.info("所有自定义资源已成功清理，机器人已完全关闭。")

    async def load_all_cogs(self):
        """查找并加载 modules 目录下所有 cogs 子文件夹中的扩展。"""
        project_root = pathlib.Path(__file__).parent.parent
        modules_root = project_root / "src" / "modules"

        for path in sorted(modules_root.rglob("cogs/*.py")):
            if path.name == "__init__.py":
                continue

            # 例如: .../src/modules/meme_contest/cogs/reaction_tracker.py -> src.modules.meme_contest.cogs.reaction_tracker
            module_path = ".".join(path.relative_to(project_root).parts).removesuffix(".py")
            try:
                await self.load_extension(module_path)
                logger.info(f"✅ 已加载: {module_path}")
            except Exception as e:
                logger.error(f"❌ 加载 {module_path} 失败: {e}", exc_info=True)

    def list_loaded_commands(self):
        """用于打印出所有已注册的应用命令。"""
        logger.info("--- 📋 已加载的应用命令 ---")
        commands = self.tree.get_commands()
        if not commands:
            logger.info("  未找到任何应用命令。")
        else:
            for command in commands:
                logger.info(f"  - /{command.name}")


def load_config() -> Optional[BotConfig]:
    try:
        return BotConfig.from_env()
    except ConfigurationError as e:
        logger.critical(f"配置错误：{e}")
        return None


async def main():
    # 在启动bot前先配置好日志
    setup_logging()

    config = load_config()
    if config is None:
        return

    if not config.token:
        logger.critical("错误：未在 .env 文件中找到 DISCORD_BOT_TOKEN。机器人无法启动。")
        return

    bot = MemeBot(config)

    try:
        await bot.start(config.token)
    except discord.errors.LoginFailure:
        logger.critical("错误：提供的 DISCORD_BOT_TOKEN 无效。请检查 .env 文件。")
    except Exception as e:
        logger.critical(f"机器人启动时发生致命错误: {e}", exc_info=True)
    finally:
        if not bot.is_closed():
            logger.info("检测到程序即将退出，正在优雅地关闭机器人...")
            await bot.close()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("程序已干净地退出。")
