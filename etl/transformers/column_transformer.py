"""
Column-level transformations driven by the pipeline configuration
"""

from typing import Any, Callable, Dict, List, Optional
import logging

from core.exceptions import ConfigError, RowError, Stage
from etl.base import Record, StreamTransformer
from schemas.pipeline_config import PipelineConfig, TransformationConfig

logger = logging.getLogger(__name__)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "y", "t"):
            return True
        if lowered in ("0", "false", "no", "n", "f", ""):
            return False
        raise ValueError(f"cannot interpret '{value}' as bool")
    return bool(value)


CASTS: Dict[str, Callable[[Any], Any]] = {
    "int": lambda v: int(float(v)) if isinstance(v, str) else int(v),
    "float": float,
    "str": str,
    "bool": _to_bool,
}


class ColumnTransformer(StreamTransformer):
    """
    Apply the configured column steps, in order, to every record.

    Supported step types:
        default_value: fill ``column_name`` when missing or None
        rename: move ``column_name`` to ``new_name``
        drop: remove ``column_name``
        cast: convert ``column_name`` to ``target_type`` (int, float, str, bool)

    A value that cannot be cast rejects just that record.
    """

    STEP_TYPES = ("default_value", "rename", "drop", "cast")

    def __init__(self, steps: Optional[List[TransformationConfig]] = None):
        self.steps = list(steps or [])

    async def init(self, config: PipelineConfig) -> None:
        await super().init(config)
        if not self.steps:
            self.steps = list(config.transformations)
        for step in self.steps:
            self._validate(step)
        logger.info(f"ColumnTransformer ready with {len(self.steps)} steps")

    def _validate(self, step: TransformationConfig) -> None:
        if step.type not in self.STEP_TYPES:
            raise ConfigError(
                f"Unknown transformation type '{step.type}'",
                context={"supported": ", ".join(self.STEP_TYPES)}
            )
        if not step.column_name:
            raise ConfigError(f"Transformation '{step.type}' needs column_name")
        if step.type == "rename" and not step.new_name:
            raise ConfigError(f"rename of '{step.column_name}' needs new_name")
        if step.type == "cast" and step.target_type not in CASTS:
            raise ConfigError(
                f"cast of '{step.column_name}' needs target_type in {sorted(CASTS)}"
            )

    def transform_record(self, record: Record) -> Record:
        data = dict(record.data)
        for step in self.steps:
            column = step.column_name
            if step.type == "default_value":
                if data.get(column) is None:
                    data[column] = step.default_value
            elif step.type == "rename":
                if column in data:
                    data[step.new_name] = data.pop(column)
            elif step.type == "drop":
                data.pop(column, None)
            elif step.type == "cast":
                if data.get(column) is None:
                    continue
                try:
                    data[column] = CASTS[step.target_type](data[column])
                except (TypeError, ValueError) as e:
                    raise RowError(
                        f"Cannot cast {column} to {step.target_type}",
                        context={"column": column, "value": repr(data[column])[:100]},
                        original_exception=e,
                        stage=Stage.TRANSFORMATION
                    )
        return record.model_copy(update={"data": data})
