"""
Pytest configuration and fixtures
"""

import asyncio
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from core.exceptions import SourceConnectionError
from etl.base import Extractor, Loader, PassThroughTransformer, Record
from etl.config_parser import parse_config
from etl.streams import Stream


# ============================================================================
# Configuration
# ============================================================================

def _base_config() -> Dict[str, Any]:
    return {
        "pipeline": {
            "name": "test-pipeline",
            "retries": 0,
            "retry_delay": "5s",
        },
        "source": {
            "type": "postgres",
            "servers": ["shard1:5432", "shard2:5432"],
            "database": "source_db",
            "username": "reader",
            "password": "secret",
            "tables": ["events"],
        },
        "sink": {
            "type": "postgres",
            "host": "sink",
            "port": 5432,
            "database": "warehouse",
            "username": "writer",
            "password": "secret",
            "table": "events",
            "key_columns": ["id"],
        },
    }


@pytest.fixture
def config_data():
    """Raw configuration mapping for a valid two-shard pipeline"""
    return _base_config()


@pytest.fixture
def make_config():
    """Build a PipelineConfig, overriding keys of each section"""

    def _make(pipeline=None, source=None, sink=None, transformations=None):
        data = _base_config()
        data["pipeline"].update(pipeline or {})
        data["source"].update(source or {})
        data["sink"].update(sink or {})
        if transformations is not None:
            data["transformations"] = transformations
        return parse_config(data)

    return _make


# ============================================================================
# In-memory components
# ============================================================================

class FakeExtractor(Extractor):
    """Emits fixed rows then fixed errors; optionally slow to init or never finishes."""

    def __init__(
        self,
        rows: Optional[List[Dict[str, Any]]] = None,
        errors: Optional[List[Any]] = None,
        produces: Optional[str] = None,
        init_failures: int = 0,
        init_error: Optional[Exception] = None,
        block: bool = False,
        init_delay: float = 0.0
    ):
        self.rows = rows or []
        self.errors = errors or []
        self.produces = produces
        self.init_failures = init_failures
        self.init_error = init_error or SourceConnectionError("shard unreachable")
        self.block = block
        self.init_delay = init_delay
        self.init_calls = 0
        self.close_calls = 0

    async def init(self, config):
        await super().init(config)
        self.init_calls += 1
        if self.init_delay:
            await asyncio.sleep(self.init_delay)
        if self.init_calls <= self.init_failures:
            raise self.init_error

    def extract(self, ctx):
        records = Stream(name="records")
        errors = Stream(name="extract-errors")
        ctx.spawn(self._produce(records, errors), name="fake-extract")
        return records, errors

    async def _produce(self, records, errors):
        try:
            for row in self.rows:
                await records.send(Record(kind=self.produces or "row", data=row, source="events", shard=1))
            for error in self.errors:
                await errors.send(error)
            if self.block:
                await asyncio.Event().wait()
        finally:
            records.close()
            errors.close()

    async def close(self):
        self.close_calls += 1


class CountingTransformer(PassThroughTransformer):
    """Pass-through transformer that counts lifecycle calls"""

    def __init__(self, accepts: Optional[str] = None):
        self.accepts = accepts
        self.init_calls = 0
        self.close_calls = 0

    async def init(self, config):
        await super().init(config)
        self.init_calls += 1

    async def close(self):
        self.close_calls += 1


class RecordingLoader(Loader):
    """Keeps loaded records in memory"""

    def __init__(self, fail_when=None, error: Optional[Exception] = None, close_error=None):
        super().__init__()
        self.records: List[Record] = []
        self.fail_when = fail_when
        self.error = error
        self.close_error = close_error
        self.init_calls = 0
        self.close_calls = 0

    async def init(self, config):
        await super().init(config)
        self.init_calls += 1

    async def load(self, ctx, records):
        async for record in records:
            if self.error is not None:
                raise self.error
            if self.fail_when and self.fail_when(record):
                self.stats.failed += 1
                continue
            self.records.append(record)
            self.stats.loaded += 1

    async def close(self):
        self.close_calls += 1
        await super().close()
        if self.close_error is not None:
            raise self.close_error


@pytest.fixture
def fake_extractor():
    return FakeExtractor


@pytest.fixture
def counting_transformer():
    return CountingTransformer


@pytest.fixture
def recording_loader():
    return RecordingLoader


# ============================================================================
# Fake async engines
# ============================================================================

class FakeStreamResult:
    """Async iterable of rows; an Exception in ``rows`` is raised mid-stream"""

    def __init__(self, rows):
        self.rows = rows

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for row in self.rows:
            if isinstance(row, Exception):
                raise row
            yield SimpleNamespace(_mapping=row)


class FakeConnection:
    def __init__(self, engine: "FakeEngine"):
        self.engine = engine

    async def execute(self, stmt):
        if str(stmt) == "SELECT 1":
            self.engine.pings += 1
            if self.engine.ping_hangs:
                await asyncio.Event().wait()
            if self.engine.ping_failures > 0:
                self.engine.ping_failures -= 1
                raise ConnectionRefusedError("connection refused")
            return None
        self.engine.executed.append(stmt)
        if self.engine.execute_error is not None:
            error = self.engine.execute_error(stmt)
            if error is not None:
                raise error
        return None

    async def stream(self, stmt):
        sql = str(stmt)
        self.engine.queries.append(sql)
        for table, rows in self.engine.tables.items():
            if table in sql:
                if isinstance(rows, Exception):
                    raise rows
                return FakeStreamResult(rows)
        return FakeStreamResult([])


class FakeEngine:
    """
    Minimal stand-in for AsyncEngine.

    Attributes:
        tables: table name -> rows (dicts) or an Exception raised by the query
        ping_failures: Number of SELECT 1 pings that fail before succeeding
        execute_error: Callable(stmt) returning an exception to raise, or None
        ping_hangs: SELECT 1 never answers
    """

    def __init__(
        self,
        tables=None,
        ping_failures: int = 0,
        execute_error=None,
        dispose_error=None,
        ping_hangs: bool = False
    ):
        self.tables = tables or {}
        self.ping_failures = ping_failures
        self.execute_error = execute_error
        self.dispose_error = dispose_error
        self.ping_hangs = ping_hangs
        self.pings = 0
        self.queries: List[str] = []
        self.executed: List[Any] = []
        self.transactions = 0
        self.dispose_calls = 0

    @asynccontextmanager
    async def connect(self):
        yield FakeConnection(self)

    @asynccontextmanager
    async def begin(self):
        self.transactions += 1
        yield FakeConnection(self)

    async def dispose(self):
        self.dispose_calls += 1
        if self.dispose_error is not None:
            raise self.dispose_error


@pytest.fixture
def fake_engine():
    return FakeEngine


@pytest.fixture
def engine_factory():
    """
    Build an engine factory handing out the given engines in order.

    The returned callable records every URL it was asked for in ``.urls``.
    """

    def _factory(*engines):
        pending = list(engines)
        urls = []

        def create(url, **kwargs):
            urls.append(url)
            return pending.pop(0)

        create.urls = urls
        return create

    return _factory


# ============================================================================
# Login analytics pipeline
# ============================================================================

@pytest.fixture
def login_env():
    """Values for the ${VAR} placeholders of pipelines/login_analytics/config.yaml"""
    return {
        "SQLSERVER_SHARD1_HOST": "sql1",
        "SQLSERVER_SHARD1_PORT": "1433",
        "SQLSERVER_SHARD2_HOST": "sql2",
        "SQLSERVER_SHARD2_PORT": "1433",
        "SOURCE_DB_NAME": "NSEBSE",
        "SOURCE_DB_USER": "reader",
        "SOURCE_DB_PASSWORD": "pw",
        "POSTGRES_HOST": "pg",
        "POSTGRES_PORT": "5432",
        "SINK_DB_NAME": "analytics",
        "SINK_DB_USER": "writer",
        "SINK_DB_PASSWORD": "pw",
    }
