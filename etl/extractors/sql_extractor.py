"""
Sharded relational source extractor with concurrent fan-out/fan-in.

This module provides:
- One async engine per shard, verified with a bounded liveness retry loop
- One extraction task per (shard x table), limited by a worker semaphore
- A single bounded merged record stream, the only back-pressure point
- Row-level conversion errors reported without aborting the table
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from core.config import settings
from core.database import build_url, create_engine, is_connection_error, ping, resolve_driver
from core.exceptions import (
    ConfigError,
    ExtractionError,
    ResourceCloseError,
    RowError,
    SourceConnectionError,
)
from etl.base import Extractor, Record
from etl.context import PipelineContext
from etl.streams import Stream
from schemas.pipeline_config import PipelineConfig

logger = logging.getLogger(__name__)


class Shard:
    """One physical source partition and its engine"""

    def __init__(self, index: int, host: str, port: int, engine: AsyncEngine):
        self.index = index
        self.host = host
        self.port = port
        self.engine = engine

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def __repr__(self) -> str:
        return f"Shard(index={self.index}, address={self.address})"


class ShardedSQLExtractor(Extractor):
    """
    Extract rows from every configured shard and table in parallel.

    Rows within one (shard, table) are emitted in query order; the merged
    stream interleaves shards in whatever order the tasks deliver them.

    Subclasses customise the query with ``build_query`` and the record
    shape with ``row_to_record``.

    Attributes:
        record_kind: Kind tag given to emitted records
        connect_attempts: Liveness checks per shard before giving up
        connect_retry_delay: Seconds between liveness checks
        ping_timeout: Seconds allowed for one liveness check
    """

    record_kind = "row"

    def __init__(
        self,
        engine_factory: Callable[..., AsyncEngine] = create_engine,
        connect_attempts: Optional[int] = None,
        connect_retry_delay: Optional[float] = None,
        ping_timeout: Optional[float] = None
    ):
        self.engine_factory = engine_factory
        self.connect_attempts = connect_attempts or settings.SHARD_CONNECT_ATTEMPTS
        self.connect_retry_delay = (
            settings.SHARD_CONNECT_RETRY_DELAY if connect_retry_delay is None else connect_retry_delay
        )
        self.ping_timeout = ping_timeout or settings.SHARD_PING_TIMEOUT
        self.shards: List[Shard] = []

    @property
    def produces(self) -> str:
        return self.record_kind

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self, config: PipelineConfig) -> None:
        """
        Connect to every shard.

        Raises:
            ConfigError: No usable driver for the source type
            SourceConnectionError: A shard did not answer within its retry budget
        """
        await super().init(config)
        source = config.source
        try:
            drivername = resolve_driver(source.type, source.driver)
        except ValueError as e:
            raise ConfigError(str(e), context={"source_type": source.type})

        self.shards = []
        for index, (host, port) in enumerate(source.addresses(), start=1):
            logger.info(f"Connecting to source shard {index}: {host}:{port}")
            url = build_url(
                drivername, host, port, source.database,
                username=source.username, password=source.password, options=source.options
            )
            engine = self.engine_factory(url)
            shard = Shard(index, host, port, engine)
            try:
                await self._check_liveness(shard)
            except (SourceConnectionError, asyncio.CancelledError):
                await self._dispose_all([*self.shards, shard])
                self.shards = []
                raise
            self.shards.append(shard)
            logger.info(f"Successfully connected to source shard {index}: {shard.address}")

    async def _check_liveness(self, shard: Shard) -> None:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.connect_attempts + 1):
            try:
                await ping(shard.engine, self.ping_timeout)
                return
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Failed to ping source shard {shard.address} "
                    f"(attempt {attempt}/{self.connect_attempts}): {e}"
                )
                if attempt < self.connect_attempts:
                    await asyncio.sleep(self.connect_retry_delay)

        raise SourceConnectionError(
            f"Failed to connect to source shard {shard.address}",
            context={"shard": shard.address, "attempts": self.connect_attempts},
            original_exception=last_error
        )

    async def close(self) -> None:
        """Dispose every shard engine, reporting all failures together."""
        shards, self.shards = self.shards, []
        await self._dispose_all(shards, raise_errors=True)

    async def _dispose_all(self, shards: List[Shard], raise_errors: bool = False) -> None:
        errors: List[BaseException] = []
        for shard in shards:
            try:
                await shard.engine.dispose()
            except Exception as e:
                logger.error(f"Failed to close source shard {shard.address}: {e}")
                errors.append(e)
        if errors and raise_errors:
            raise ResourceCloseError("Failed to close some source connections", errors)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def tables(self) -> List[Optional[str]]:
        """Physical tables to read on every shard (None = the raw query)."""
        return list(self.config.source.tables) or [None]

    def build_query(self, table: Optional[str]) -> str:
        """SQL text for one table."""
        source = self.config.source
        if source.query:
            query = source.query.format(table=table) if table else source.query
        else:
            query = f"SELECT * FROM {table}"
        if source.order_by:
            query = f"{query} ORDER BY {source.order_by}"
        return query

    def row_to_record(self, row: Dict[str, Any], shard: Shard, table: Optional[str]) -> Record:
        """Convert one result row; raising marks just this row as failed."""
        return Record(kind=self.record_kind, data=row, source=table, shard=shard.index)

    def extract(self, ctx: PipelineContext) -> Tuple[Stream, Stream]:
        size = self.config.pipeline.buffer_size
        records: Stream[Record] = Stream(size, name="records")
        errors: Stream = Stream(size, name="extract-errors")

        limit = self.config.source.max_concurrency
        jobs = [(shard, table) for shard in self.shards for table in self.tables()]
        semaphore = asyncio.Semaphore(limit or max(1, len(jobs)))

        workers = [
            ctx.spawn(
                self._extract_table(shard, table, records, errors, semaphore),
                name=f"extract-shard{shard.index}-{table or 'query'}"
            )
            for shard, table in jobs
        ]
        ctx.spawn(self._close_when_done(workers, records, errors), name="extract-supervisor")

        logger.info(f"Started {len(workers)} extraction tasks across {len(self.shards)} shards")
        return records, errors

    async def _close_when_done(self, workers: List[asyncio.Task], records: Stream, errors: Stream) -> None:
        try:
            await asyncio.gather(*workers)
        finally:
            records.close()
            errors.close()

    async def _extract_table(
        self,
        shard: Shard,
        table: Optional[str],
        records: Stream,
        errors: Stream,
        semaphore: asyncio.Semaphore
    ) -> None:
        label = table or "query"
        count = 0
        failed = 0

        async with semaphore:
            try:
                async with shard.engine.connect() as conn:
                    result = await conn.stream(text(self.build_query(table)))
                    async for row in result:
                        try:
                            record = self.row_to_record(dict(row._mapping), shard, table)
                        except Exception as e:
                            failed += 1
                            await errors.send(RowError(
                                f"Failed to scan row from {label} on shard {shard.index}",
                                context={"shard": shard.address, "table": label},
                                original_exception=e,
                                stage=ExtractionError.default_stage
                            ))
                            continue
                        await records.send(record)
                        count += 1
            except Exception as e:
                await errors.send(self._query_error(e, shard, label))
                return

        logger.info(
            f"Extracted {count} records from {label} on shard {shard.index}"
            + (f" ({failed} rows failed)" if failed else "")
        )

    def _query_error(self, exc: Exception, shard: Shard, label: str) -> ExtractionError:
        context = {"shard": shard.address, "table": label}
        if is_connection_error(exc):
            return SourceConnectionError(
                f"Lost connection to shard {shard.index} while reading {label}",
                context=context,
                original_exception=exc
            )
        return ExtractionError(
            f"Failed to query {label} on shard {shard.index}",
            context=context,
            original_exception=exc
        )
