from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from photovouchers.core.config import settings
from photovouchers.db.session import engine

logger = logging.getLogger(__name__)

_RETRY_SECONDS = 15
_LOCK_ENGINE: AsyncEngine | None = None


def _is_postgres() -> bool:
    return (engine.url.get_backend_name() or "").lower() == "postgresql"


def lock_id(name: str) -> int:
    digest = hashlib.blake2b(str(name or "").encode("utf-8"), digest_size=8).digest()
    # pg advisory locks take a signed BIGINT.
    return int.from_bytes(digest, "big", signed=False) % (2**63 - 1)


def _lock_engine() -> AsyncEngine:
    """Single-connection engine; the advisory lock lives as long as its connection."""
    global _LOCK_ENGINE
    if _LOCK_ENGINE is None:
        _LOCK_ENGINE = create_async_engine(
            settings.database_url,
            future=True,
            pool_size=1,
            max_overflow=0,
            pool_pre_ping=True,
        )
    return _LOCK_ENGINE


async def run_as_leader(
    *,
    name: str,
    stop: asyncio.Event,
    work: Callable[[asyncio.Event], Awaitable[None]],
    retry_seconds: int = _RETRY_SECONDS,
) -> None:
    """Run `work` on one worker only, elected with a Postgres advisory lock.

    Followers poll for the lock every `retry_seconds` until `stop` is set.
    Other backends (sqlite in development) run the work directly.
    """
    if not _is_postgres():
        await work(stop)
        return

    key = lock_id(name)
    retry = max(5, int(retry_seconds or _RETRY_SECONDS))

    while not stop.is_set():
        try:
            async with _lock_engine().connect() as conn:
                acquired = bool((await conn.execute(text("SELECT pg_try_advisory_lock(:id)"), {"id": key})).scalar())
                if not acquired:
                    with suppress(asyncio.TimeoutError):
                        await asyncio.wait_for(stop.wait(), timeout=retry)
                    continue

                logger.info("leader_lock_acquired", extra={"lock_name": name, "lock_id": key})
                try:
                    await work(stop)
                finally:
                    with suppress(SQLAlchemyError):
                        await conn.execute(text("SELECT pg_advisory_unlock(:id)"), {"id": key})
                return
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("leader_lock_failed", extra={"lock_name": name, "lock_id": key, "error": str(exc)})
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=retry)
