"""键值存储端口

业务组件只依赖 KeyValueStore 接口，生产环境注入 SqliteKeyValueStore，测试注入 MemoryKeyValueStore。
值统一为 JSON 字符串，序列化由上层负责。
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod

import aiosqlite

from errors import StorageError
from logger import logger

__all__ = ["KeyValueStore", "SqliteKeyValueStore", "MemoryKeyValueStore"]


class KeyValueStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> str | None:
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def set_many(self, items: dict[str, str]) -> None:
        """原子地写入多个键，要么全部成功要么全部不生效"""

    @abstractmethod
    async def remove(self, key: str) -> None:
        pass

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        pass


class SqliteKeyValueStore(KeyValueStore):
    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    def _ensure_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageError("数据库未初始化，请先调用 init_db()")
        return self._conn

    async def get(self, key: str) -> str | None:
        conn = self._ensure_conn()
        try:
            async with conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"读取键失败: {key}") from e
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        await self.set_many({key: value})

    async def set_many(self, items: dict[str, str]) -> None:
        conn = self._ensure_conn()
        try:
            await conn.executemany(
                "INSERT INTO kv_store (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at_utc = CURRENT_TIMESTAMP",
                list(items.items()),
            )
            await conn.commit()
        except sqlite3.Error as e:
            await conn.rollback()
            raise StorageError(f"写入键失败: {list(items)}") from e
        logger.trace(f"写入键: {list(items)}")

    async def remove(self, key: str) -> None:
        conn = self._ensure_conn()
        try:
            await conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            await conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"删除键失败: {key}") from e
        logger.trace(f"删除键: {key}")

    async def keys(self, prefix: str = "") -> list[str]:
        conn = self._ensure_conn()
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        try:
            async with conn.execute(
                "SELECT key FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (escaped + "%",),
            ) as cursor:
                return [row[0] async for row in cursor]
        except sqlite3.Error as e:
            raise StorageError(f"列出键失败: prefix={prefix}") from e


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def set_many(self, items: dict[str, str]) -> None:
        self.data.update(items)

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self.data if k.startswith(prefix))
