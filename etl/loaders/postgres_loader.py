"""
Load records into PostgreSQL with upsert logic (idempotency)
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional
import logging

from sqlalchemy import column, table
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from core.config import settings
from core.database import build_url, create_engine, is_connection_error, ping, resolve_driver
from core.exceptions import ConfigError, LoadError, RowError, SinkConnectionError, Stage
from etl.base import Loader, Record
from etl.context import PipelineContext
from etl.streams import RecordStream
from schemas.pipeline_config import PipelineConfig

logger = logging.getLogger(__name__)


class PostgresUpsertLoader(Loader):
    """
    Load records into PostgreSQL with idempotent upsert operations.

    Ensures:
    - No duplicate rows on repeated runs (INSERT ... ON CONFLICT DO UPDATE
      on the configured key columns)
    - One transaction per record, so a failed row never rolls back others

    Row policy: a database error local to one record (constraint, data or
    statement error) is counted in ``stats.failed`` and loading continues,
    unless the pipeline sets ``abort_on_row_error``. Losing the connection
    always ends the stage with SinkConnectionError.
    """

    def __init__(
        self,
        engine_factory: Callable[..., AsyncEngine] = create_engine,
        ping_timeout: Optional[float] = None,
        progress_interval: Optional[int] = None
    ):
        super().__init__()
        self.engine_factory = engine_factory
        self.ping_timeout = ping_timeout or settings.SINK_PING_TIMEOUT
        self.progress_interval = progress_interval or settings.LOADER_PROGRESS_INTERVAL
        self.engine: Optional[AsyncEngine] = None

    async def init(self, config: PipelineConfig) -> None:
        await super().init(config)
        sink = config.sink
        if not sink.key_columns:
            raise ConfigError("sink.key_columns is required for upserts", context={"sink_type": sink.type})
        if not sink.table and not sink.table_routes:
            raise ConfigError("sink.table is required", context={"sink_type": sink.type})
        try:
            drivername = resolve_driver(sink.type, sink.driver)
        except ValueError as e:
            raise ConfigError(str(e), context={"sink_type": sink.type})

        logger.info(f"Connecting to sink {sink.host}:{sink.port or 'default'}/{sink.database}")
        url = build_url(
            drivername, sink.host, sink.port, sink.database,
            username=sink.username, password=sink.password, options=sink.options
        )
        self.engine = self.engine_factory(url)
        try:
            await ping(self.engine, self.ping_timeout)
        except asyncio.CancelledError:
            await self.engine.dispose()
            self.engine = None
            raise
        except Exception as e:
            await self.engine.dispose()
            self.engine = None
            raise SinkConnectionError(
                f"Failed to connect to sink {sink.host}",
                context={"database": sink.database},
                original_exception=e
            )
        logger.info("Successfully connected to sink")

    def target_table(self, record: Record) -> str:
        """Sink table for a record, routed by its source table."""
        sink = self.config.sink
        if record.source and record.source in sink.table_routes:
            return sink.table_routes[record.source]
        return sink.table

    def row_values(self, record: Record) -> Dict[str, Any]:
        excluded = set(self.config.sink.exclude_columns)
        return {k: v for k, v in record.data.items() if k not in excluded}

    def build_upsert(self, table_name: str, values: Dict[str, Any]):
        """
        INSERT ... ON CONFLICT (key columns) DO UPDATE for one row.

        When every column is part of the key there is nothing to update and
        the statement becomes ON CONFLICT DO NOTHING.
        """
        keys: List[str] = list(self.config.sink.key_columns)
        missing = [k for k in keys if k not in values]
        if missing:
            raise RowError(
                f"Record is missing key columns {missing}",
                context={"table_name": table_name},
                stage=Stage.LOADING
            )

        target = table(
            table_name,
            *[column(name) for name in values],
            schema=self.config.sink.schema_name
        )
        stmt = insert(target).values(**values)
        update_set = {name: stmt.excluded[name] for name in values if name not in keys}
        if not update_set:
            return stmt.on_conflict_do_nothing(index_elements=keys)
        return stmt.on_conflict_do_update(index_elements=keys, set_=update_set)

    async def load(self, ctx: PipelineContext, records: RecordStream) -> None:
        abort_on_row_error = self.config.pipeline.abort_on_row_error

        async for record in records:
            table_name = self.target_table(record)
            try:
                stmt = self.build_upsert(table_name, self.row_values(record))
                async with self.engine.begin() as conn:
                    await conn.execute(stmt)
            except RowError as e:
                self._row_failed(record, e)
                if abort_on_row_error:
                    raise
                continue
            except SQLAlchemyError as e:
                if is_connection_error(e):
                    self.stats.failed += 1
                    raise SinkConnectionError(
                        "Lost connection to sink while loading",
                        context={"table_name": table_name, "loaded": self.stats.loaded},
                        original_exception=e
                    )
                error = RowError(
                    "Failed to upsert record",
                    context={"table_name": table_name, "record_source": record.source},
                    original_exception=e,
                    stage=Stage.LOADING
                )
                self._row_failed(record, error)
                if abort_on_row_error:
                    raise error
                continue

            self.stats.loaded += 1
            if self.stats.loaded % self.progress_interval == 0:
                logger.info(f"Loaded {self.stats.loaded} records (errors: {self.stats.failed})")

    def _row_failed(self, record: Record, error: RowError) -> None:
        self.stats.failed += 1
        logger.warning(f"{error.message} from {record.source or 'source'}: {error.original_exception or ''}")

    async def close(self) -> None:
        await super().close()
        if self.engine is not None:
            engine, self.engine = self.engine, None
            try:
                await engine.dispose()
            except Exception as e:
                raise LoadError("Failed to close sink connection", original_exception=e)
