"""
Key-value storage behind the news and prediction caches.

Keys are ':'-separated strings ("prediction:region:13"); values are JSON-serializable dicts.
Every put replaces the whole record. There is no locking: concurrent writers to one key race
and the last write wins.
"""
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote

import aiosqlite

from .config import DEFAULT_FILE_CACHE_DIR, DEFAULT_SQLITE_PATH, Settings

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class KeyValueStore:
    """Interface: get / put / delete / list."""

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def put(self, key: str, value: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        raise NotImplementedError

    async def list(self, prefix: str = "") -> List[str]:
        raise NotImplementedError

    async def delete_prefix(self, prefix: str) -> int:
        count = 0
        for key in await self.list(prefix):
            if await self.delete(key):
                count += 1
        return count


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def put(self, key: str, value: Dict[str, Any]) -> None:
        # Stored serialized so callers never share mutable state with the store
        self._data[key] = json.dumps(value, ensure_ascii=False)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def list(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class FileKeyValueStore(KeyValueStore):
    """One JSON file per key under a root directory; writes go through a temp file + rename."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or DEFAULT_FILE_CACHE_DIR)

    def _path(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}.json"

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read cache file %s: %s", path, e)
            return None

    async def put(self, key: str, value: Dict[str, Any]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        fd, tmp = tempfile.mkstemp(dir=self.root, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    async def list(self, prefix: str = "") -> List[str]:
        if not self.root.exists():
            return []
        keys = (unquote(p.name[: -len(".json")]) for p in self.root.glob("*.json"))
        return sorted(k for k in keys if k.startswith(prefix))


class SQLiteKeyValueStore(KeyValueStore):
    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or DEFAULT_SQLITE_PATH)
        self._initialized = False

    async def initialize(self) -> None:
        """Create the table if it doesn't exist."""
        if self._initialized:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.path) as db:
            await db.executescript("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
            """)
            await db.commit()
        self._initialized = True
        logger.info("Forecast cache DB initialized at %s", self.path)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        await self.initialize()
        async with aiosqlite.connect(self.path) as db:
            cursor = await db.execute("SELECT value_json FROM kv WHERE key = ?", (key,))
            row = await cursor.fetchone()
        if not row:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            logger.error("Corrupt cache record %s: %s", key, e)
            return None

    async def put(self, key: str, value: Dict[str, Any]) -> None:
        await self.initialize()
        async with aiosqlite.connect(self.path) as db:
            await db.execute(
                """
                INSERT INTO kv (key, value_json, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value_json=excluded.value_json, updated_at=excluded.updated_at
                """,
                (key, json.dumps(value, ensure_ascii=False), _now_iso()),
            )
            await db.commit()

    async def delete(self, key: str) -> bool:
        await self.initialize()
        async with aiosqlite.connect(self.path) as db:
            cursor = await db.execute("DELETE FROM kv WHERE key = ?", (key,))
            await db.commit()
            return cursor.rowcount > 0

    async def list(self, prefix: str = "") -> List[str]:
        await self.initialize()
        async with aiosqlite.connect(self.path) as db:
            cursor = await db.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            )
            rows = await cursor.fetchall()
        return [r[0] for r in rows]


def create_store(settings: Settings) -> KeyValueStore:
    if settings.cache_backend == "memory":
        return MemoryKeyValueStore()
    if settings.cache_backend == "file":
        return FileKeyValueStore(settings.cache_path)
    return SQLiteKeyValueStore(settings.cache_path)
