"""
PostgreSQL Store — The passwords table on an asyncpg-compatible pool.

The key and index attributes get their own columns; the full serialised
item is kept in a JSONB column so rows read back exactly as written.
Conditional puts use ``ON CONFLICT DO NOTHING`` and check whether a row
came back.
"""
import logging
from typing import Any, Optional

import orjson

from ..codec import record_from_item, record_to_item
from ..config import VaultConfig
from ..exceptions import ConditionalPutFailed, StorageError
from ..models import DistributionRecord, normalize_subdirectory
from .base import RecordStore

logger = logging.getLogger("runavault")

# ---------------------------------------------------------------------------
# SQL statements ({table} is the quoted table name)
# ---------------------------------------------------------------------------

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS {table} (
    user_id TEXT NOT NULL,
    site TEXT NOT NULL,
    shared_with_groups TEXT NOT NULL,
    shared_with_users TEXT NOT NULL,
    subdirectory TEXT NOT NULL,
    item JSONB NOT NULL,
    PRIMARY KEY (user_id, site)
)
"""

_CREATE_GROUP_INDEX = """
CREATE INDEX IF NOT EXISTS {index} ON {table} (shared_with_groups, subdirectory)
"""

_CREATE_USER_INDEX = """
CREATE INDEX IF NOT EXISTS {index} ON {table} (shared_with_users)
"""

_INSERT_ROW = """
INSERT INTO {table} (user_id, site, shared_with_groups, shared_with_users, subdirectory, item)
VALUES ($1, $2, $3, $4, $5, $6::jsonb)
ON CONFLICT (user_id, site) DO NOTHING
RETURNING site
"""

_UPSERT_ROW = """
INSERT INTO {table} (user_id, site, shared_with_groups, shared_with_users, subdirectory, item)
VALUES ($1, $2, $3, $4, $5, $6::jsonb)
ON CONFLICT (user_id, site)
DO UPDATE SET shared_with_groups = EXCLUDED.shared_with_groups,
              shared_with_users = EXCLUDED.shared_with_users,
              subdirectory = EXCLUDED.subdirectory,
              item = EXCLUDED.item
RETURNING site
"""

_SELECT_ROW = """
SELECT item FROM {table} WHERE user_id = $1 AND site = $2
"""

_DELETE_ROW = """
DELETE FROM {table} WHERE user_id = $1 AND site = $2
"""

_SELECT_PARTITION = """
SELECT item FROM {table} WHERE user_id = $1 ORDER BY site
"""

_SELECT_PREFIX = """
SELECT item FROM {table} WHERE user_id = $1 AND starts_with(site, $2) ORDER BY site
"""

_SELECT_BY_GROUP = """
SELECT item FROM {table} WHERE shared_with_groups = $1 ORDER BY user_id, site
"""

_SELECT_BY_GROUP_SUBDIRECTORY = """
SELECT item FROM {table}
WHERE shared_with_groups = $1 AND subdirectory = $2
ORDER BY user_id, site
"""

_SELECT_BY_USER = """
SELECT item FROM {table} WHERE shared_with_users = $1 ORDER BY user_id, site
"""


def _quote(identifier: str) -> str:
    return '"{}"'.format(identifier.replace('"', '""'))


class PostgresRecordStore(RecordStore):
    """RecordStore backed by PostgreSQL.

    Args:
        config: Vault configuration; ``table_name`` and the index names are
            taken from it.
        db_pool: asyncpg-compatible connection pool.
    """

    def __init__(self, config: VaultConfig, db_pool: Any):
        self._db = db_pool
        table = _quote(config.table_name)
        self._sql = {
            name: statement.format(table=table)
            for name, statement in (
                ("insert", _INSERT_ROW),
                ("upsert", _UPSERT_ROW),
                ("select", _SELECT_ROW),
                ("delete", _DELETE_ROW),
                ("partition", _SELECT_PARTITION),
                ("prefix", _SELECT_PREFIX),
                ("group", _SELECT_BY_GROUP),
                ("group_subdirectory", _SELECT_BY_GROUP_SUBDIRECTORY),
                ("user", _SELECT_BY_USER),
            )
        }
        self._ddl = [
            _CREATE_TABLE.format(table=table),
            _CREATE_GROUP_INDEX.format(table=table, index=_quote(config.group_index)),
            _CREATE_USER_INDEX.format(table=table, index=_quote(config.user_index)),
        ]

    async def create_schema(self) -> None:
        """Create the table and both indexes if missing."""
        async with self._db.acquire() as conn:
            for statement in self._ddl:
                await conn.execute(statement)
        logger.info("Passwords table schema ensured")

    async def _fetch(self, name: str, *args: Any) -> list[DistributionRecord]:
        try:
            async with self._db.acquire() as conn:
                rows = await conn.fetch(self._sql[name], *args)
        except Exception as err:
            logger.error("Postgres query %s failed: %s", name, err)
            raise StorageError(f"Postgres query {name} failed: {err}") from err
        return [record_from_item(self._load_item(row["item"])) for row in rows]

    @staticmethod
    def _load_item(value: Any) -> dict[str, Any]:
        if isinstance(value, (str, bytes)):
            return orjson.loads(value)
        return dict(value)

    async def get(self, owner_id: str, sort_key: str) -> Optional[DistributionRecord]:
        records = await self._fetch("select", owner_id, sort_key)
        return records[0] if records else None

    async def put(self, record: DistributionRecord, replace: bool = False) -> None:
        item = record_to_item(record)
        statement = self._sql["upsert" if replace else "insert"]
        try:
            async with self._db.acquire() as conn:
                written = await conn.fetchval(
                    statement,
                    item["user_id"],
                    item["site"],
                    item["shared_with_groups"],
                    item["shared_with_users"],
                    item["subdirectory"],
                    orjson.dumps(item).decode("utf-8"),
                )
        except Exception as err:
            logger.error("Postgres put failed for site=%s: %s", record.sort_key, err)
            raise StorageError(f"Postgres put failed: {err}") from err
        if written is None:
            raise ConditionalPutFailed(record.owner_id, record.sort_key)

    async def delete(self, owner_id: str, sort_key: str) -> None:
        try:
            async with self._db.acquire() as conn:
                await conn.execute(self._sql["delete"], owner_id, sort_key)
        except Exception as err:
            logger.error("Postgres delete failed for site=%s: %s", sort_key, err)
            raise StorageError(f"Postgres delete failed: {err}") from err

    async def query(
        self,
        owner_id: str,
        prefix: Optional[str] = None,
        exact: Optional[str] = None,
    ) -> list[DistributionRecord]:
        if exact is not None:
            return await self._fetch("select", owner_id, exact)
        if prefix is not None:
            return await self._fetch("prefix", owner_id, prefix)
        return await self._fetch("partition", owner_id)

    async def query_by_group(
        self, group: str, subdirectory: Optional[str] = None,
    ) -> list[DistributionRecord]:
        if subdirectory is None:
            return await self._fetch("group", group)
        return await self._fetch(
            "group_subdirectory", group, normalize_subdirectory(subdirectory),
        )

    async def query_by_user(self, user_id: str) -> list[DistributionRecord]:
        return await self._fetch("user", user_id)

    async def close(self) -> None:
        await self._db.close()
