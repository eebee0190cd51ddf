"""
Pydantic schemas for configuration and record validation.

Schemas:
    pipeline_config: Pipeline configuration document (pipeline, source,
        sink, transformations) and Go-style duration parsing
    user_connection: Typed login analytics record

Usage:
    from schemas.pipeline_config import PipelineConfig, parse_duration
    from schemas.user_connection import UserConnection

Example:
    config = PipelineConfig.model_validate(yaml.safe_load(text))
    assert config.pipeline.retry_delay == timedelta(seconds=5)

Validation:
    Configuration errors are reported by etl.config_parser as ConfigError
    with one entry per invalid field.
"""

__all__ = [
    "PipelineConfig",
    "PipelineSection",
    "SourceConfig",
    "SinkConfig",
    "TransformationConfig",
    "UserConnection",
    "parse_duration",
]
