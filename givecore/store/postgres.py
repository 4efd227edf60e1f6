"""
PostgreSQL Remote Backend

asyncpg implementation of RemoteBackend.

Collections with their own table:
- profiles    -> user_profiles (key: wallet address)
- categories  -> campaign_categories (key: campaign id)
- chat        -> chat_messages (key: "<resource_id>_<claim_id>", one row per message)

Everything else goes to offchain_documents as JSONB.

Every call is bounded by ``timeout`` seconds. Any asyncpg, socket or
timeout error becomes RemoteStoreError.

Usage:
    backend = PostgresRemoteBackend(RemoteStoreConfig.from_env())
    await backend.init_schema()
"""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Optional, Sequence, TypeVar

import asyncpg

from ..config import RemoteStoreConfig
from ..observability import get_logger
from .backends import RemoteBackend, RemoteStoreError


logger = get_logger(__name__)

T = TypeVar("T")

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_PROFILE_COLUMNS = (
    "wallet_address", "name", "email", "phone", "location", "bio",
    "profile_image", "total_campaigns", "total_claims", "updated_at",
)

_BACKEND_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


def _parse_time(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            raise RemoteStoreError(f"Malformed timestamp: {value!r}") from None
    return value


def _jsonable_row(row) -> dict:
    return {
        k: (v.isoformat() if isinstance(v, datetime) else v)
        for k, v in dict(row).items()
    }


def _split_thread_key(key: str) -> tuple[int, str]:
    resource_id, _, claim_id = key.partition("_")
    try:
        return int(resource_id), claim_id
    except ValueError:
        raise RemoteStoreError(f"Malformed chat thread key: {key!r}") from None


class PostgresRemoteBackend(RemoteBackend):
    """Remote backend on a lazily created asyncpg pool."""

    def __init__(self, config: RemoteStoreConfig, pool=None):
        self._config = config
        self._pool = pool
        self._pool_lock = asyncio.Lock()

    async def _get_pool(self):
        if self._pool is not None:
            return self._pool
        async with self._pool_lock:
            if self._pool is None:
                try:
                    self._pool = await asyncpg.create_pool(
                        self._config.to_url(),
                        min_size=self._config.pool_min_size,
                        max_size=self._config.pool_max_size,
                        timeout=self._config.timeout,
                    )
                except (*_BACKEND_ERRORS, ValueError) as e:
                    raise RemoteStoreError(
                        f"Cannot connect to {self._config.to_url(include_password=False)}: {e}"
                    ) from e
        return self._pool

    async def _run(self, operation: str, coro: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(coro, timeout=self._config.timeout)
        except _BACKEND_ERRORS as e:
            raise RemoteStoreError(f"{operation} failed: {e!r}") from e

    async def init_schema(self) -> None:
        """Create tables if they do not exist."""
        sql = SCHEMA_PATH.read_text(encoding="utf-8")
        pool = await self._get_pool()

        async def execute():
            async with pool.acquire() as conn:
                await conn.execute(sql)

        await self._run("init_schema", execute())
        logger.info("Remote store schema ready")

    async def ping(self) -> None:
        pool = await self._get_pool()

        async def select_one():
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")

        await self._run("ping", select_one())

    # --------------------------------------------------------
    # Reads
    # --------------------------------------------------------

    async def fetch(self, collection: str, key: str) -> Optional[Any]:
        found = await self.fetch_many(collection, [key])
        return found.get(key)

    async def fetch_many(self, collection: str, keys: Sequence[str]) -> dict[str, Any]:
        if not keys:
            return {}
        pool = await self._get_pool()

        async def query():
            async with pool.acquire() as conn:
                if collection == "profiles":
                    rows = await conn.fetch(
                        f"SELECT {', '.join(_PROFILE_COLUMNS)} FROM user_profiles "
                        f"WHERE wallet_address = ANY($1::text[])",
                        list(keys),
                    )
                    return {r["wallet_address"]: _jsonable_row(r) for r in rows}

                if collection == "categories":
                    ids = [int(k) for k in keys]
                    rows = await conn.fetch(
                        "SELECT campaign_id, category, updated_at FROM campaign_categories "
                        "WHERE campaign_id = ANY($1::bigint[])",
                        ids,
                    )
                    return {str(r["campaign_id"]): _jsonable_row(r) for r in rows}

                if collection == "chat":
                    threads = {}
                    for key in keys:
                        resource_id, claim_id = _split_thread_key(key)
                        rows = await conn.fetch(
                            "SELECT resource_id, claim_id, sender, message, created_at "
                            "FROM chat_messages WHERE resource_id = $1 AND claim_id = $2 "
                            "ORDER BY created_at ASC, id ASC",
                            resource_id, claim_id,
                        )
                        if rows:
                            threads[key] = [_jsonable_row(r) for r in rows]
                    return threads

                rows = await conn.fetch(
                    "SELECT key, document FROM offchain_documents "
                    "WHERE collection = $1 AND key = ANY($2::text[])",
                    collection, list(keys),
                )
                found = {}
                for r in rows:
                    document = r["document"]
                    if isinstance(document, str):
                        document = json.loads(document)
                    found[r["key"]] = document
                return found

        return await self._run(f"fetch {collection}", query())

    # --------------------------------------------------------
    # Writes
    # --------------------------------------------------------

    async def upsert(self, collection: str, key: str, value: Any) -> None:
        pool = await self._get_pool()

        async def write():
            async with pool.acquire() as conn:
                if collection == "profiles":
                    await conn.execute(
                        """
                        INSERT INTO user_profiles (
                            wallet_address, name, email, phone, location, bio,
                            profile_image, total_campaigns, total_claims, updated_at
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                        ON CONFLICT (wallet_address) DO UPDATE SET
                            name = EXCLUDED.name,
                            email = EXCLUDED.email,
                            phone = EXCLUDED.phone,
                            location = EXCLUDED.location,
                            bio = EXCLUDED.bio,
                            profile_image = EXCLUDED.profile_image,
                            total_campaigns = EXCLUDED.total_campaigns,
                            total_claims = EXCLUDED.total_claims,
                            updated_at = EXCLUDED.updated_at
                        """,
                        key,
                        value.get("name", ""),
                        value.get("email", ""),
                        value.get("phone", ""),
                        value.get("location", ""),
                        value.get("bio", ""),
                        value.get("profile_image", ""),
                        int(value.get("total_campaigns", 0)),
                        int(value.get("total_claims", 0)),
                        _parse_time(value.get("updated_at")) or datetime.now().astimezone(),
                    )
                elif collection == "categories":
                    await conn.execute(
                        """
                        INSERT INTO campaign_categories (campaign_id, category, updated_at)
                        VALUES ($1, $2, now())
                        ON CONFLICT (campaign_id) DO UPDATE SET
                            category = EXCLUDED.category,
                            updated_at = EXCLUDED.updated_at
                        """,
                        int(key),
                        value["category"],
                    )
                elif collection == "chat":
                    raise RemoteStoreError("Chat threads are append-only; use append()")
                else:
                    await conn.execute(
                        """
                        INSERT INTO offchain_documents (collection, key, document, updated_at)
                        VALUES ($1, $2, $3::jsonb, now())
                        ON CONFLICT (collection, key) DO UPDATE SET
                            document = EXCLUDED.document,
                            updated_at = EXCLUDED.updated_at
                        """,
                        collection, key, json.dumps(value),
                    )

        await self._run(f"upsert {collection}", write())

    async def append(self, collection: str, key: str, item: Any) -> None:
        pool = await self._get_pool()

        async def write():
            async with pool.acquire() as conn:
                if collection == "chat":
                    resource_id, claim_id = _split_thread_key(key)
                    await conn.execute(
                        "INSERT INTO chat_messages (resource_id, claim_id, sender, message, created_at) "
                        "VALUES ($1, $2, $3, $4, $5)",
                        resource_id,
                        claim_id,
                        item["sender"],
                        item["message"],
                        _parse_time(item.get("created_at")) or datetime.now().astimezone(),
                    )
                else:
                    await conn.execute(
                        """
                        INSERT INTO offchain_documents (collection, key, document, updated_at)
                        VALUES ($1, $2, jsonb_build_array($3::jsonb), now())
                        ON CONFLICT (collection, key) DO UPDATE SET
                            document = offchain_documents.document || jsonb_build_array($3::jsonb),
                            updated_at = now()
                        """,
                        collection, key, json.dumps(item),
                    )

        await self._run(f"append {collection}", write())

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
