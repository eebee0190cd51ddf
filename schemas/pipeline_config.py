"""
Pydantic schemas for pipeline configuration documents with validation
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.config import settings

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|us|µs|ns|h|m|s)")
_UNIT_SECONDS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "µs": 1e-6,
    "ns": 1e-9,
}


def parse_duration(value: Any) -> Any:
    """
    Parse Go-style durations ("500ms", "5s", "2m30s", "1h") into timedelta.

    Plain numbers are seconds. Other values are returned untouched for
    pydantic to validate.
    """
    if value is None or isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=value)
    if isinstance(value, str):
        text = value.strip()
        if re.fullmatch(r"\d+(\.\d+)?", text):
            return timedelta(seconds=float(text))
        parts = _DURATION_PART.findall(text)
        if not parts or "".join(n + u for n, u in parts) != text:
            raise ValueError(f"invalid duration '{value}'")
        return timedelta(seconds=sum(float(n) * _UNIT_SECONDS[u] for n, u in parts))
    return value


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class PipelineSection(_Frozen):
    """Pipeline identity and retry policy"""

    name: str = Field(..., min_length=1)
    description: str = ""
    retries: int = Field(0, ge=0)
    retry_delay: timedelta = timedelta(seconds=5)
    max_retry_delay: Optional[timedelta] = None
    exponential_backoff: bool = False
    timeout: Optional[timedelta] = None
    abort_on_row_error: bool = False
    buffer_size: int = Field(default_factory=lambda: settings.ETL_STREAM_BUFFER_SIZE, ge=1)

    @field_validator("retry_delay", "max_retry_delay", "timeout", mode="before")
    @classmethod
    def parse_durations(cls, v):
        return parse_duration(v)

    @field_validator("retry_delay")
    @classmethod
    def non_negative_delay(cls, v):
        if v < timedelta(0):
            raise ValueError("retry_delay must be non-negative")
        return v


class SourceConfig(_Frozen):
    """Sharded relational source"""

    type: str = Field(..., min_length=1)
    servers: List[str] = Field(..., min_length=1)
    database: str = Field(..., min_length=1)
    username: Optional[str] = None
    password: Optional[str] = None
    driver: Optional[str] = None
    options: Dict[str, str] = Field(default_factory=dict)
    tables: List[str] = Field(default_factory=list)
    query: Optional[str] = None
    order_by: Optional[str] = None
    max_concurrency: Optional[int] = Field(None, ge=1)

    @model_validator(mode="before")
    @classmethod
    def single_table(cls, data):
        """Accept ``table: name`` as shorthand for ``tables: [name]``"""
        if isinstance(data, dict) and data.get("table") and not data.get("tables"):
            data = {**data, "tables": [data["table"]]}
        return data

    @field_validator("servers")
    @classmethod
    def host_port(cls, v):
        for server in v:
            host, sep, port = server.rpartition(":")
            if not sep or not host or not port.isdigit():
                raise ValueError(f"invalid server format '{server}', expected host:port")
        return v

    @model_validator(mode="after")
    def table_or_query(self):
        if not self.tables and not self.query:
            raise ValueError("source needs 'table', 'tables' or 'query'")
        return self

    def addresses(self) -> List[tuple]:
        """(host, port) pairs in configured order"""
        pairs = []
        for server in self.servers:
            host, _, port = server.rpartition(":")
            pairs.append((host, int(port)))
        return pairs


class SinkConfig(_Frozen):
    """Sink database"""

    type: str = Field(..., min_length=1)
    host: str = "localhost"
    port: Optional[int] = None
    database: str = ""
    username: Optional[str] = None
    password: Optional[str] = None
    driver: Optional[str] = None
    options: Dict[str, str] = Field(default_factory=dict)
    table: Optional[str] = None
    schema_name: Optional[str] = Field(None, alias="schema")
    key_columns: List[str] = Field(default_factory=list)
    table_routes: Dict[str, str] = Field(default_factory=dict)
    exclude_columns: List[str] = Field(default_factory=list)


class TransformationConfig(_Frozen):
    """One column-level transformation step"""

    model_config = ConfigDict(frozen=True, extra="allow")

    type: str = Field(..., min_length=1)
    column_name: Optional[str] = None
    default_value: Any = None
    new_name: Optional[str] = None
    target_type: Optional[str] = None


class PipelineConfig(_Frozen):
    """Complete run configuration, resolved once before a run"""

    pipeline: PipelineSection
    source: SourceConfig
    sink: SinkConfig
    transformations: List[TransformationConfig] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return self.pipeline.name
