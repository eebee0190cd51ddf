"""
Abstract pipeline components and the records they exchange
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple
import enum
import logging

from pydantic import BaseModel, ConfigDict, Field

from core.exceptions import RowError, Stage, TransformationError
from etl.context import PipelineContext
from etl.streams import ErrorStream, RecordStream, Stream
from schemas.pipeline_config import PipelineConfig

logger = logging.getLogger(__name__)


class Record(BaseModel):
    """
    Unit of data moving through the pipeline.

    A record is frozen once built; ``kind`` names its logical type so that
    components can declare what they accept and produce.
    """

    model_config = ConfigDict(frozen=True)

    kind: str = Field(..., min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    source: Optional[str] = None
    shard: Optional[int] = None


class PipelineState(str, enum.Enum):
    """Orchestrator lifecycle states"""
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class LoadStats(BaseModel):
    """Per-attempt loader counters, written only by the loading task."""
    loaded: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.loaded + self.failed


class RunResult(BaseModel):
    """Outcome of a successful pipeline execution"""
    pipeline: str
    state: PipelineState
    attempts: int
    records_loaded: int = 0
    records_failed: int = 0
    extraction_errors: int = 0
    transformation_errors: int = 0
    duration_seconds: float = 0.0


class Component(ABC):
    """
    Shared lifecycle of every pipeline stage.

    ``accepts``/``produces`` are record kinds; None means any kind.
    """

    accepts: Optional[str] = None
    produces: Optional[str] = None

    async def init(self, config: PipelineConfig) -> None:
        """Acquire resources for one attempt"""
        self.config = config

    async def close(self) -> None:
        """Release resources acquired by init"""

    def output_kind(self, input_kind: Optional[str]) -> Optional[str]:
        """Kind of the records this component emits for a given input kind."""
        return self.produces or input_kind

    @property
    def name(self) -> str:
        return type(self).__name__


class Extractor(Component):
    """Pulls records from a data source"""

    @abstractmethod
    def extract(self, ctx: PipelineContext) -> Tuple[RecordStream, ErrorStream]:
        """
        Start extraction and return the record and error streams.

        Both streams must be closed exactly once when extraction has ended,
        including when the context cancels the work.
        """


class Transformer(Component):
    """Reshapes the record stream"""

    @abstractmethod
    def transform(
        self,
        ctx: PipelineContext,
        records: RecordStream
    ) -> Tuple[RecordStream, ErrorStream]:
        """Consume ``records`` lazily and return the output and error streams."""


class Loader(Component):
    """Persists records and owns the run counters"""

    def __init__(self):
        self.stats = LoadStats()

    async def init(self, config: PipelineConfig) -> None:
        await super().init(config)
        self.stats = LoadStats()

    @abstractmethod
    async def load(self, ctx: PipelineContext, records: RecordStream) -> None:
        """
        Consume ``records`` to exhaustion.

        Raises on a fatal error; row-local failures are counted in ``stats``.
        """

    async def close(self) -> None:
        logger.info(
            f"{self.name} finished: loaded={self.stats.loaded}, failed={self.stats.failed}"
        )


class PassThroughTransformer(Transformer):
    """Forwards records unchanged and never reports errors"""

    def transform(self, ctx, records):
        return records, Stream.empty(name="transform-errors")


class StreamTransformer(Transformer):
    """
    Record-at-a-time transformer.

    Subclasses implement ``transform_record``. Raising RowError reports the
    record on the error stream and moves on; any other exception stops the
    stage. Returning None is reported as a RowError, so every input record
    is either emitted or counted.
    """

    buffer_size: Optional[int] = None

    @abstractmethod
    def transform_record(self, record: Record) -> Record:
        """Transform a single record"""

    def transform(self, ctx, records):
        size = self.buffer_size or self.config.pipeline.buffer_size
        output: Stream[Record] = Stream(size, name="transformed")
        errors: Stream = Stream(size, name="transform-errors")
        ctx.spawn(self._run(records, output, errors), name="transform")
        return output, errors

    async def _run(self, records: RecordStream, output: Stream, errors: Stream) -> None:
        transformed = 0
        try:
            async for record in records:
                try:
                    result = self.transform_record(record)
                    if result is None:
                        raise RowError(
                            f"{self.name} returned no record",
                            context={"record_source": record.source, "shard": record.shard}
                        )
                except RowError as e:
                    if e.stage is None:
                        e.stage = Stage.TRANSFORMATION
                        e.context["stage"] = e.stage.value
                    await errors.send(e)
                    continue
                except Exception as e:
                    await errors.send(TransformationError(
                        f"{self.name} failed",
                        context={"record_source": record.source},
                        original_exception=e
                    ))
                    return
                await output.send(result)
                transformed += 1
            logger.debug(f"{self.name} emitted {transformed} records")
        finally:
            output.close()
            errors.close()
