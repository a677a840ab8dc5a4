# src/modules/meme_contest/services/ledger_service.py

import logging

from src.core.storage import ContestStore
from src.modules.meme_contest.models import Category

logger = logging.getLogger(__name__)


class LedgerService:
    """
    记录当前比赛中哪些投票有效。
    每个 (消息, 用户, 类别, 比赛) 最多一票，重复记录和重复撤销都是空操作。
    调用方负责先确认比赛正在进行。
    """

    def __init__(self, store: ContestStore):
        self.store = store

    async def record(self, message_id: int, user_id: int, category: Category, contest_id: int) -> bool:
        """
        Returns:
            bool: 新记录返回True，已存在返回False。
        """
        added = await self.store.add_reaction(message_id, user_id, category.value, contest_id)
        logger.debug(
            "记录投票",
            extra={'message_id': message_id, 'user_id': user_id, 'category': category.value,
                   'contest_id': contest_id, 'added': added}
        )
        return added

    async def unrecord(self, message_id: int, user_id: int, category: Category, contest_id: int) -> bool:
        """
        只删除当初在该比赛中记录的那一票，不会影响其他比赛。

        Returns:
            bool: 成功删除返回True，本无记录返回False。
        """
        removed = await self.store.remove_reaction(message_id, user_id, category.value, contest_id)
        logger.debug(
            "撤销投票",
            extra={'message_id': message_id, 'user_id': user_id, 'category': category.value,
                   'contest_id': contest_id, 'removed': removed}
        )
        return removed
