import aiosqlite
import os
from datetime import datetime, timezone
import pathlib
import logging
from typing import Optional

logger = logging.getLogger(__name__)

MIGRATIONS_PATH = pathlib.Path(__file__).parent.parent / "migrations" / "versions"


def _to_db_timestamp(value: datetime) -> str:
    """统一以 UTC ISO 字符串存储时间。"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_db_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    def __init__(self, db_name: Optional[str] = None):
        # SQLite 不需要连接池，只需要一个连接对象
        self.conn: Optional[aiosqlite.Connection] = None
        self.db_name = db_name or os.getenv('DB_NAME', 'memebot.db')

    async def connect(self):
        """连接到SQLite数据库文件"""
        self.conn = await aiosqlite.connect(self.db_name)
        # 查询结果可以像字典一样通过列名访问
        self.conn.row_factory = aiosqlite.Row
        await self.conn.execute("PRAGMA foreign_keys = ON")
        await self.conn.commit()
        await self._run_migrations()
        logger.info("数据库连接成功并完成初始化", extra={'db_name': self.db_name})

    async def close(self):
        if self.conn:
            await self.conn.close()
            self.conn = None
            logger.info("数据库连接已关闭。")

    async def _execute(self, query, args=None, fetch=None):
        """通用的执行函数"""
        async with self.conn.cursor() as cursor:
            await cursor.execute(query, args or ())
            if fetch == 'one':
                return await cursor.fetchone()
            if fetch == 'all':
                return await cursor.fetchall()
            # INSERT, UPDATE, DELETE 需要手动提交
            await self.conn.commit()
            if fetch == 'lastrowid':
                return cursor.lastrowid
            return cursor.rowcount

    # --- Contest Methods ---

    async def save_contest(self, start_date: datetime, end_date: datetime) -> int:
        """保存一次新比赛，返回自增ID。旧比赛保留不删。"""
        sql = "INSERT INTO contests (start_date, end_date) VALUES (?, ?)"
        return await self._execute(
            sql, (_to_db_timestamp(start_date), _to_db_timestamp(end_date)), fetch='lastrowid'
        )

    async def get_latest_contest(self) -> Optional[dict]:
        """获取最近开始的比赛，不论是否仍在进行。"""
        sql = "SELECT id, start_date, end_date FROM contests ORDER BY id DESC LIMIT 1"
        row = await self._execute(sql, fetch='one')
        if not row:
            return None
        contest = dict(row)
        contest['start_date'] = _from_db_timestamp(contest['start_date'])
        contest['end_date'] = _from_db_timestamp(contest['end_date'])
        return contest

    # --- Reaction Ledger Methods ---

    async def add_reaction(self, message_id: int, user_id: int, category: str, contest_id: int) -> bool:
        """
        记录一票。
        返回 True 表示新写入，False 表示这一票已存在。
        """
        sql = """
            INSERT OR IGNORE INTO reactions (message_id, user_id, category, contest_id)
            VALUES (?, ?, ?, ?)
        """
        rows_affected = await self._execute(sql, (message_id, user_id, category, contest_id))
        return rows_affected > 0

    async def remove_reaction(self, message_id: int, user_id: int, category: str, contest_id: int) -> bool:
        """
        撤销一票。
        返回 True 表示成功删除，False 表示之前没有记录。
        """
        sql = """
            DELETE FROM reactions
            WHERE message_id = ? AND user_id = ? AND category = ? AND contest_id = ?
        """
        rows_affected = await self._execute(sql, (message_id, user_id, category, contest_id))
        return rows_affected > 0

    async def get_vote_counts(self, category: str, contest_id: int) -> list[dict]:
        """按消息分组统计不同投票人数。排序交给排行榜服务。"""
        sql = """
            SELECT message_id, COUNT(DISTINCT user_id) AS vote_count
            FROM reactions
            WHERE category = ? AND contest_id = ?
            GROUP BY message_id
        """
        results = await self._execute(sql, (category, contest_id), fetch='all')
        return [dict(row) for row in results] if results else []

    async def _run_migrations(self):
        """
        执行基于版本的数据库迁移。
        读取 `src/migrations/versions` 下的 .sql 文件，与 `user_version` 比较后按顺序应用。
        """
        logger.info("正在检查并运行数据库迁移...")

        if not MIGRATIONS_PATH.is_dir():
            logger.warning(f"迁移目录不存在，跳过迁移: {MIGRATIONS_PATH}")
            return

        async with self.conn.cursor() as cursor:
            await cursor.execute("PRAGMA user_version")
            current_version = (await cursor.fetchone())[0]
        logger.info(f"当前数据库版本: {current_version}")

        try:
            migration_files = sorted(
                MIGRATIONS_PATH.glob("*.sql"),
                key=lambda p: int(p.stem.split('_')[0])
            )
        except (ValueError, IndexError):
            logger.error("迁移文件名格式不正确，应为 'XXX_description.sql'。")
            raise

        latest_version = current_version
        for migration_file in migration_files:
            file_version = int(migration_file.stem.split('_')[0])
            if file_version <= current_version:
                continue
            try:
                logger.info(f"准备应用迁移脚本: v{file_version} - {migration_file.name}")
                sql_script = migration_file.read_text(encoding='utf-8')
                await self.conn.executescript(sql_script)
                await self.conn.execute(f"PRAGMA user_version = {file_version}")
                await self.conn.commit()
                latest_version = file_version
            except Exception:
                logger.error(f"应用迁移脚本失败: {migration_file.name}", exc_info=True)
                await self.conn.rollback()
                # 不允许机器人以损坏的数据库状态启动
                raise

        if latest_version == current_version:
            logger.info("数据库结构已是最新，无需迁移。")
        else:
            logger.info(f"数据库迁移完成，当前版本为: {latest_version}")
