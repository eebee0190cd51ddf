"""
Custom exceptions for the ETL pipeline with structured error context.

This module provides the exception hierarchy used throughout the
orchestration engine. Each exception carries context information for
debugging and logging, and component errors are tagged with the pipeline
stage that produced them.

Exception Hierarchy:
    ETLException (base)
    ├── ConfigError
    ├── ComponentError (stage-tagged)
    │   ├── ExtractionError
    │   │   └── SourceConnectionError
    │   ├── TransformationError
    │   ├── LoadError
    │   │   └── SinkConnectionError
    │   ├── InitializationError
    │   └── RowError
    ├── CancellationError
    │   ├── PipelineCancelledError
    │   └── PipelineTimeoutError
    ├── PipelineFailedError
    ├── ResourceCloseError
    ├── StreamClosedError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
import enum


class Stage(str, enum.Enum):
    """Pipeline stage that produced an error"""
    EXTRACTION = "extraction"
    TRANSFORMATION = "transformation"
    LOADING = "loading"


class ETLException(Exception):
    """
    Base exception for all ETL-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (shard, table, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += (
                f" | Caused by: {type(self.original_exception).__name__}: "
                f"{self.original_exception}"
            )

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ETLException):
    """
    Mixin for errors that are expected to clear up on a later attempt.

    Use this for transient errors like:
    - Shard or sink connection failures
    - Connection loss in the middle of a run
    """
    pass


class NonRetryableError(ETLException):
    """
    Mixin for errors that must NOT trigger another attempt.

    Use this for:
    - Invalid or missing configuration
    - Cancellation and timeouts
    """
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigError(NonRetryableError):
    """
    Exception raised when the pipeline configuration is missing or invalid.

    Context should include:
        - config_path: Path of the configuration file (if any)
        - field_errors: Field-level validation messages
    """
    pass


# ============================================================================
# Component Errors
# ============================================================================

class ComponentError(ETLException):
    """
    Error produced by one of the pipeline stages.

    The stage is taken from the class default unless given explicitly; the
    orchestrator only reports the stage and the wrapped cause.
    """

    default_stage: Optional[Stage] = None

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None,
        stage: Optional[Stage] = None
    ):
        super().__init__(message, context, original_exception)
        self.stage = stage or self.default_stage
        if self.stage is not None:
            self.context.setdefault("stage", self.stage.value)


class ExtractionError(ComponentError):
    """Base exception for data extraction failures."""
    default_stage = Stage.EXTRACTION


class TransformationError(ComponentError):
    """Base exception for data transformation failures."""
    default_stage = Stage.TRANSFORMATION


class LoadError(ComponentError):
    """Base exception for data loading failures."""
    default_stage = Stage.LOADING


class InitializationError(ComponentError):
    """
    Exception raised when a component fails to initialize.

    Context should include:
        - component: Class name of the component
    """
    pass


class RowError(ComponentError):
    """
    A single record failed to convert, transform or persist.

    Row errors are counted by the stage that observes them and do not end
    the attempt unless the pipeline runs with abort_on_row_error.

    Context should include:
        - shard / table: Where the row came from (extraction)
        - record_source: Source table of the record (loading)
    """
    pass


class SourceConnectionError(RetryableError, ExtractionError):
    """
    Exception raised when a source shard cannot be reached or the
    connection is lost while extracting.

    Context should include:
        - shard: Shard address (host:port)
        - attempts: Number of liveness checks performed
    """
    pass


class SinkConnectionError(RetryableError, LoadError):
    """Exception raised when the sink database cannot be reached."""
    pass


# ============================================================================
# Cancellation
# ============================================================================

class CancellationError(NonRetryableError):
    """Base exception for an attempt that was stopped before completion."""
    pass


class PipelineCancelledError(CancellationError):
    """The caller requested the pipeline to stop."""
    pass


class PipelineTimeoutError(CancellationError):
    """The overall pipeline timeout expired."""
    pass


# ============================================================================
# Run Outcome
# ============================================================================

class PipelineFailedError(ETLException):
    """
    Exception raised when every attempt allowed by the retry policy failed.

    Attributes:
        attempts: Number of attempts made
        last_error: The error that ended the last attempt
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context, last_error)
        self.attempts = attempts
        self.last_error = last_error
        self.context["attempts"] = attempts


class ResourceCloseError(ETLException):
    """
    One or more resources failed to close.

    Attributes:
        errors: Every close failure, in the order they occurred
    """

    def __init__(self, message: str, errors: List[BaseException], context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, errors[0] if errors else None)
        self.errors = errors
        self.context["failures"] = len(errors)


class StreamClosedError(ETLException):
    """An item was sent on a stream that had already been closed."""
    pass
