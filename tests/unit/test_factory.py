"""
Unit tests for building orchestrators from configuration
"""

import pytest

from core.exceptions import ConfigError
from etl.base import PassThroughTransformer
from etl.extractors.sql_extractor import ShardedSQLExtractor
from etl.factory import build_for_config_path, build_orchestrator, load_pipeline_module
from etl.loaders.noop_loader import NoopLoader
from etl.loaders.postgres_loader import PostgresUpsertLoader
from etl.orchestrator import Orchestrator
from etl.transformers.column_transformer import ColumnTransformer

CUSTOM_PIPELINE = '''
from etl.base import PassThroughTransformer
from etl.extractors.sql_extractor import ShardedSQLExtractor
from etl.loaders.noop_loader import NoopLoader
from etl.orchestrator import Orchestrator


class AuditLoader(NoopLoader):
    pass


def build_pipeline(config):
    return Orchestrator(config, ShardedSQLExtractor(), PassThroughTransformer(), AuditLoader())
'''


@pytest.fixture
def pipeline_dir(tmp_path):
    path = tmp_path / "pipelines" / "audit"
    path.mkdir(parents=True)
    return path


def test_components_follow_type_tags(make_config):
    orchestrator = build_orchestrator(make_config())

    assert isinstance(orchestrator.extractor, ShardedSQLExtractor)
    assert isinstance(orchestrator.transformer, PassThroughTransformer)
    assert isinstance(orchestrator.loader, PostgresUpsertLoader)


def test_transformations_select_column_transformer(make_config):
    config = make_config(transformations=[{"type": "drop", "column_name": "internal"}])

    assert isinstance(build_orchestrator(config).transformer, ColumnTransformer)


def test_unknown_sink_type_rejected(make_config):
    with pytest.raises(ConfigError, match="Unsupported sink type"):
        build_orchestrator(make_config(sink={"type": "kafka"}))


def test_no_pipeline_module(make_config, pipeline_dir):
    config_path = pipeline_dir / "config.yaml"

    assert load_pipeline_module(config_path) is None
    assert isinstance(build_for_config_path(config_path, make_config()).loader, PostgresUpsertLoader)


def test_build_pipeline_from_module_is_used(make_config, pipeline_dir):
    (pipeline_dir / "pipeline.py").write_text(CUSTOM_PIPELINE)

    orchestrator = build_for_config_path(pipeline_dir / "config.yaml", make_config())

    assert isinstance(orchestrator, Orchestrator)
    assert type(orchestrator.loader).__name__ == "AuditLoader"
    assert isinstance(orchestrator.loader, NoopLoader)


def test_module_without_build_pipeline_falls_back_to_type_tags(make_config, pipeline_dir):
    (pipeline_dir / "pipeline.py").write_text("VALUE = 1\n")

    orchestrator = build_for_config_path(pipeline_dir / "config.yaml", make_config())

    assert isinstance(orchestrator.loader, PostgresUpsertLoader)


def test_broken_pipeline_module_is_config_error(make_config, pipeline_dir):
    (pipeline_dir / "pipeline.py").write_text("import not_a_real_module_for_etl\n")

    with pytest.raises(ConfigError, match="Cannot import pipeline module"):
        build_for_config_path(pipeline_dir / "config.yaml", make_config())


def test_build_pipeline_must_return_orchestrator(make_config, pipeline_dir):
    (pipeline_dir / "pipeline.py").write_text("def build_pipeline(config):\n    return None\n")

    with pytest.raises(ConfigError, match="expected Orchestrator"):
        build_for_config_path(pipeline_dir / "config.yaml", make_config())
