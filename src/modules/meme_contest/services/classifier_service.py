# src/modules/meme_contest/services/classifier_service.py

from typing import Iterable, Optional, Union

import discord

from src.modules.meme_contest.models import Category

EmojiLike = Union[str, discord.PartialEmoji, discord.Emoji]


def emoji_parts(emoji: EmojiLike) -> tuple[Optional[str], Optional[str]]:
    """
    把 discord 的各种表情表示统一成 (name, id)。
    标准表情只有名字，自定义表情按ID匹配。
    """
    if isinstance(emoji, str):
        return emoji, None
    emoji_id = getattr(emoji, 'id', None)
    return getattr(emoji, 'name', None), str(emoji_id) if emoji_id is not None else None


class ReactionClassifier:
    """
    负责判断一个反应属于哪个比赛类别。
    纯函数，不访问网络或数据库。
    """

    def __init__(self, channel_id: Optional[int], meme_emojis: Iterable[str], bone_emojis: Iterable[str]):
        self.channel_id = channel_id
        self.allow_lists: tuple[tuple[Category, frozenset[str]], ...] = (
            # 顺序即优先级：两边都命中时 meme 优先
            (Category.MEME, frozenset(meme_emojis)),
            (Category.BONE, frozenset(bone_emojis)),
        )

    def classify(self, emoji_name: Optional[str], emoji_id: Optional[Union[int, str]], channel_id: Optional[int]) -> Optional[Category]:
        if self.channel_id is None or channel_id != self.channel_id:
            return None

        candidates = {str(value) for value in (emoji_name, emoji_id) if value is not None}
        if not candidates:
            return None

        for category, allowed in self.allow_lists:
            if candidates & allowed:
                return category
        return None

    def classify_emoji(self, emoji: EmojiLike, channel_id: Optional[int]) -> Optional[Category]:
        name, emoji_id = emoji_parts(emoji)
        return self.classify(name, emoji_id, channel_id)
