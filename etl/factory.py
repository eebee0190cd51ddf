"""
Build pipeline components from configuration type tags
"""

import asyncio
import importlib.util
import logging
from pathlib import Path
from types import ModuleType
from typing import Any, Awaitable, Callable, Optional, Union

from core.exceptions import ConfigError
from etl.base import Extractor, Loader, PassThroughTransformer, Transformer
from etl.extractors.sql_extractor import ShardedSQLExtractor
from etl.loaders.noop_loader import NoopLoader
from etl.loaders.postgres_loader import PostgresUpsertLoader
from etl.orchestrator import Orchestrator
from etl.transformers.column_transformer import ColumnTransformer
from schemas.pipeline_config import PipelineConfig

logger = logging.getLogger(__name__)

SQL_SOURCE_TYPES = ("sqlserver", "mssql", "postgres", "postgresql", "mysql", "sql")
POSTGRES_SINK_TYPES = ("postgres", "postgresql")

# Pipeline directories may define build_pipeline(config) in this module
PIPELINE_MODULE = "pipeline"


def build_extractor(config: PipelineConfig) -> Extractor:
    source_type = config.source.type.lower()
    if source_type in SQL_SOURCE_TYPES:
        return ShardedSQLExtractor()
    raise ConfigError(f"Unsupported source type '{config.source.type}'")


def build_transformer(config: PipelineConfig) -> Transformer:
    if not config.transformations:
        return PassThroughTransformer()
    return ColumnTransformer(config.transformations)


def build_loader(config: PipelineConfig) -> Loader:
    sink_type = config.sink.type.lower()
    if sink_type in POSTGRES_SINK_TYPES:
        return PostgresUpsertLoader()
    if sink_type == "noop":
        return NoopLoader()
    raise ConfigError(f"Unsupported sink type '{config.sink.type}'")


def build_orchestrator(
    config: PipelineConfig,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
) -> Orchestrator:
    """Orchestrator with the components named by the configuration."""
    return Orchestrator(
        config,
        build_extractor(config),
        build_transformer(config),
        build_loader(config),
        sleep=sleep,
    )


def load_pipeline_module(config_path: Union[str, Path]) -> Optional[ModuleType]:
    """
    Import the pipeline module stored next to a configuration file.

    Returns None when the directory has no pipeline module.

    Raises:
        ConfigError: The module exists but cannot be imported
    """
    module_path = Path(config_path).parent / f"{PIPELINE_MODULE}.py"
    if not module_path.is_file():
        return None

    module_name = f"etl_pipeline_{module_path.parent.name.replace('-', '_')}"
    spec = importlib.util.spec_from_file_location(module_name, str(module_path))
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise ConfigError(
            f"Cannot import pipeline module {module_path}: {e}",
            context={"module": str(module_path)},
            original_exception=e
        )
    return module


def build_for_config_path(config_path: Union[str, Path], config: PipelineConfig) -> Orchestrator:
    """
    Orchestrator for a pipeline directory.

    Uses ``build_pipeline(config)`` from the pipeline module beside the
    configuration when it defines one, so custom extractors, transformers
    and loaders are honoured. Otherwise components come from the type tags.
    """
    module = load_pipeline_module(config_path)
    build_pipeline = getattr(module, "build_pipeline", None)
    if build_pipeline is None:
        return build_orchestrator(config)

    logger.info(f"Building {config.name} with build_pipeline from {module.__file__}")
    orchestrator = build_pipeline(config)
    if not isinstance(orchestrator, Orchestrator):
        raise ConfigError(
            f"build_pipeline in {module.__file__} returned {type(orchestrator).__name__}, "
            f"expected Orchestrator"
        )
    return orchestrator
