"""
Core utilities and configuration for the ETL pipeline framework.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Process settings and environment variable management
    database: Async engine creation and liveness checks
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import create_engine, ping
    from core.exceptions import SourceConnectionError, RowError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()
"""

__all__ = [
    "settings",
    "setup_logging",
    # Exceptions
    "ETLException",
    "ConfigError",
    "ComponentError",
    "ExtractionError",
    "TransformationError",
    "LoadError",
    "InitializationError",
    "RowError",
    "SourceConnectionError",
    "SinkConnectionError",
    "CancellationError",
    "PipelineCancelledError",
    "PipelineTimeoutError",
    "PipelineFailedError",
    "ResourceCloseError",
    "StreamClosedError",
    "RetryableError",
    "NonRetryableError",
]
