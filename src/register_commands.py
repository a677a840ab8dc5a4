# src/register_commands.py
# 一次性注册斜杠命令：登录、加载 Cogs、同步命令树，然后退出。
import asyncio
import logging
import sys

import discord

from src.bot import MemeBot, load_config
from src.core.logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def register() -> int:
    setup_logging()

    config = load_config()
    if config is None:
        return 1
    if not config.token:
        logger.critical("错误：未在环境变量中找到 DISCORD_BOT_TOKEN，无法注册命令。")
        return 1

    bot = MemeBot(config, sync_commands=True, registration_only=True)
    try:
        logger.info("开始刷新斜杠命令。")
        # login 会触发 setup_hook，在其中完成命令同步
        await bot.login(config.token)
        logger.info("斜杠命令已成功重新加载。")
        return 0
    except discord.errors.LoginFailure:
        logger.critical("错误：提供的 DISCORD_BOT_TOKEN 无效。")
        return 1
    except discord.HTTPException:
        logger.error("同步斜杠命令失败", exc_info=True)
        return 1
    finally:
        await bot.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(register()))
