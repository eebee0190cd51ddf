"""
Async engine helpers for source shards and the sink database
"""

import asyncio
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from core.config import settings
import logging

logger = logging.getLogger(__name__)

# Default async driver per source/sink type tag
DRIVERS = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "sqlserver": "mssql+aioodbc",
    "mssql": "mssql+aioodbc",
    "mysql": "mysql+aiomysql",
}


def resolve_driver(type_tag: str, driver: Optional[str] = None) -> str:
    """Return the SQLAlchemy drivername for a descriptor."""
    if driver:
        return driver
    try:
        return DRIVERS[type_tag.lower()]
    except KeyError:
        raise ValueError(f"No default driver for database type '{type_tag}'")


def build_url(
    drivername: str,
    host: str,
    port: Optional[int],
    database: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
    options: Optional[Dict[str, str]] = None
) -> URL:
    """Build a connection URL without string formatting credentials."""
    return URL.create(
        drivername=drivername,
        username=username or None,
        password=password or None,
        host=host,
        port=port,
        database=database,
        query=options or {},
    )


def create_engine(url: URL, **kwargs: Any) -> AsyncEngine:
    """Create a pooled async engine"""
    kwargs.setdefault("echo", settings.SQL_ECHO)
    kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, **kwargs)


async def ping(engine: AsyncEngine, timeout: float) -> None:
    """Run a trivial query to verify the database answers."""

    async def _select_one():
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    await asyncio.wait_for(_select_one(), timeout=timeout)


def is_connection_error(exc: BaseException) -> bool:
    """True when the error means the connection itself is unusable."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (ConnectionError, OSError, asyncio.TimeoutError))
