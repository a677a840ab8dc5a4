# src/core/config.py
import os
import logging
from dataclasses import dataclass, field
from typing import Optional

import pytz

logger = logging.getLogger(__name__)

# 原社区机器人使用的默认表情白名单
DEFAULT_MEME_EMOJIS = (
    '🤣',
    '😂',
    '974777892418519081',
    '956966036354265180',
    '954075635310035024',
    '930549056466485298',
)
DEFAULT_BONE_EMOJIS = ('🦴',)


class ConfigurationError(Exception):
    """必需的配置缺失或无法解析。"""


def _parse_id_list(raw: str, var_name: str) -> list[int]:
    """解析逗号分隔的ID列表，解析失败时返回空列表。"""
    if not raw:
        return []
    try:
        return [int(part.strip()) for part in raw.split(',') if part.strip()]
    except ValueError as e:
        logger.error(f"解析 {var_name} 时出错！请检查是否为纯数字并用英文逗号分隔。错误信息: {e}")
        return []


def _parse_emoji_list(raw: Optional[str], default: tuple[str, ...]) -> frozenset[str]:
    if not raw:
        return frozenset(default)
    emojis = {part.strip() for part in raw.split(',') if part.strip()}
    return frozenset(emojis) if emojis else frozenset(default)


def _parse_int(var_name: str, default: int) -> int:
    raw = os.getenv(var_name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except (ValueError, TypeError):
        logger.warning(f"环境变量 {var_name}='{raw}' 不是有效整数，使用默认值 {default}。")
        return default


@dataclass
class BotConfig:
    token: Optional[str] = None
    channel_id: Optional[int] = None
    application_id: Optional[int] = None
    guild_ids: list[int] = field(default_factory=list)
    db_name: str = 'memebot.db'
    storage_backend: str = 'sqlite'
    timezone_name: str = 'America/Bogota'
    meme_emojis: frozenset[str] = frozenset(DEFAULT_MEME_EMOJIS)
    bone_emojis: frozenset[str] = frozenset(DEFAULT_BONE_EMOJIS)
    top_n: int = 3
    weekly_check_minutes: int = 0

    @property
    def timezone(self) -> pytz.BaseTzInfo:
        return pytz.timezone(self.timezone_name)

    @classmethod
    def from_env(cls) -> "BotConfig":
        """从环境变量构建配置。格式错误的可选项会记录日志并回退到默认值。"""
        channel_ids = _parse_id_list(os.getenv('MEME_CHANNEL_ID', ''), 'MEME_CHANNEL_ID')
        application_ids = _parse_id_list(os.getenv('APPLICATION_ID', ''), 'APPLICATION_ID')

        timezone_name = os.getenv('CONTEST_TIMEZONE', 'America/Bogota')
        try:
            pytz.timezone(timezone_name)
        except pytz.UnknownTimeZoneError as e:
            raise ConfigurationError(f"未知的时区 CONTEST_TIMEZONE='{timezone_name}'") from e

        storage_backend = os.getenv('STORAGE_BACKEND', 'sqlite').strip().lower()
        if storage_backend not in ('sqlite', 'memory'):
            logger.warning(f"未知的 STORAGE_BACKEND='{storage_backend}'，回退到 sqlite。")
            storage_backend = 'sqlite'

        top_n = _parse_int('ANNOUNCE_TOP_N', 3)
        if top_n <= 0:
            logger.warning("ANNOUNCE_TOP_N 必须为正数，使用默认值 3。")
            top_n = 3

        return cls(
            token=os.getenv('DISCORD_BOT_TOKEN') or None,
            channel_id=channel_ids[0] if channel_ids else None,
            application_id=application_ids[0] if application_ids else None,
            guild_ids=_parse_id_list(os.getenv('GUILD_ID', ''), 'GUILD_ID'),
            db_name=os.getenv('DB_NAME') or 'memebot.db',
            storage_backend=storage_backend,
            timezone_name=timezone_name,
            meme_emojis=_parse_emoji_list(os.getenv('MEME_EMOJIS'), DEFAULT_MEME_EMOJIS),
            bone_emojis=_parse_emoji_list(os.getenv('BONE_EMOJIS'), DEFAULT_BONE_EMOJIS),
            top_n=top_n,
            weekly_check_minutes=max(_parse_int('WEEKLY_ANNOUNCE_CHECK_MINUTES', 0), 0),
        )

    def require_channel_id(self) -> int:
        if self.channel_id is None:
            raise ConfigurationError("MEME_CHANNEL_ID 未在环境变量中设置。")
        return self.channel_id
