# ============================================================================
# File: etl/orchestrator.py
# Description: Pipeline orchestrator with attempt-level retry and backoff
# ============================================================================
"""
Orchestrator - wires Extract, Transform, Load for one pipeline execution.

This module provides:
- One Init -> Run -> Close cycle per attempt, with resources released on
  every path and component init bounded by stop requests and the timeout
- Concurrent supervision of the extractor and transformer error streams,
  the loading task, caller cancellation and the overall timeout
- Retry with fixed or exponential backoff around whole attempts
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
import logging

from core.exceptions import (
    CancellationError,
    ComponentError,
    ConfigError,
    InitializationError,
    NonRetryableError,
    PipelineCancelledError,
    PipelineFailedError,
    PipelineTimeoutError,
    RowError,
    Stage,
)
from etl.base import Component, Extractor, Loader, PipelineState, RunResult, Transformer
from etl.context import PipelineContext
from etl.retry import RetryPolicy
from etl.streams import ErrorStream, Stream
from schemas.pipeline_config import PipelineConfig

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Runs one pipeline made of exactly one extractor, transformer and loader.

    State machine:
        IDLE -> INITIALIZING -> RUNNING -> SUCCEEDED | FAILED
        FAILED -> INITIALIZING (after backoff, while retries remain)

    Record kinds declared by the components are checked once here, so a
    mismatched chain is a ConfigError before anything runs.
    """

    def __init__(
        self,
        config: PipelineConfig,
        extractor: Extractor,
        transformer: Transformer,
        loader: Loader,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.config = config
        self.extractor = extractor
        self.transformer = transformer
        self.loader = loader
        self.retry_policy = RetryPolicy.from_config(config.pipeline)
        self.state = PipelineState.IDLE
        self._sleep = sleep
        self._check_record_kinds()

    @property
    def name(self) -> str:
        return self.config.name

    def _components(self) -> List[Tuple[Stage, Component]]:
        return [
            (Stage.EXTRACTION, self.extractor),
            (Stage.TRANSFORMATION, self.transformer),
            (Stage.LOADING, self.loader),
        ]

    def _check_record_kinds(self) -> None:
        kind = self.extractor.output_kind(None)
        for component in (self.transformer, self.loader):
            if kind and component.accepts and component.accepts != kind:
                raise ConfigError(
                    f"{component.name} accepts '{component.accepts}' records "
                    f"but receives '{kind}'",
                    context={"pipeline": self.name, "component": component.name}
                )
            kind = component.output_kind(kind)

    def _set_state(self, state: PipelineState) -> None:
        logger.debug(f"{self.name}: {self.state.value} -> {state.value}")
        self.state = state

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    async def execute(self, stop_event: Optional[asyncio.Event] = None) -> RunResult:
        """
        Execute the pipeline, retrying failed attempts per the retry policy.

        Args:
            stop_event: Set it to cancel the run; the current attempt is
                unwound and no further attempt is started

        Returns:
            RunResult of the successful attempt

        Raises:
            PipelineFailedError: Every allowed attempt failed
            CancellationError: The run was stopped or timed out
            ConfigError: Invalid configuration (never retried)
        """
        stop_event = stop_event or asyncio.Event()
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = None
        if self.retry_policy.timeout is not None:
            deadline = started + self.retry_policy.timeout

        max_retries = self.retry_policy.max_retries
        last_error: Optional[BaseException] = None
        attempts = 0

        logger.info(f"Starting pipeline {self.name} ({self.retry_policy})")

        for attempt in range(self.retry_policy.max_attempts):
            if attempt > 0:
                delay = self.retry_policy.delay_for(attempt)
                logger.warning(
                    f"Retry attempt {attempt}/{max_retries} for {self.name} "
                    f"in {delay:.1f}s after error: {last_error}"
                )
                await self._wait_before_retry(delay, stop_event, deadline)

            attempts = attempt + 1
            ctx = PipelineContext(self.name, stop_event=stop_event, deadline=deadline)

            try:
                row_errors = await self._run_attempt(ctx)
            except NonRetryableError as e:
                logger.error(f"Pipeline {self.name} stopped: {e.message}")
                raise
            except Exception as e:
                last_error = e
                logger.error(
                    f"Attempt {attempts}/{self.retry_policy.max_attempts} of {self.name} failed: {e}"
                )
                continue

            result = RunResult(
                pipeline=self.name,
                state=self.state,
                attempts=attempts,
                records_loaded=self.loader.stats.loaded,
                records_failed=self.loader.stats.failed,
                extraction_errors=row_errors.get(Stage.EXTRACTION, 0),
                transformation_errors=row_errors.get(Stage.TRANSFORMATION, 0),
                duration_seconds=loop.time() - started,
            )
            logger.info(
                f"Pipeline {self.name} succeeded on attempt {attempts}: "
                f"loaded={result.records_loaded}, failed={result.records_failed}"
            )
            return result

        raise PipelineFailedError(
            f"Pipeline '{self.name}' failed after {max_retries} retries "
            f"({attempts} attempts), last error: {last_error}",
            attempts=attempts,
            last_error=last_error,
            context={"pipeline": self.name, "max_retries": max_retries}
        )

    async def _wait_before_retry(
        self,
        delay: float,
        stop_event: asyncio.Event,
        deadline: Optional[float]
    ) -> None:
        """Sleep before a retry; a stop request or the deadline cuts it short."""
        timeout = None
        if deadline is not None:
            timeout = max(0.0, deadline - asyncio.get_running_loop().time())

        sleeper = asyncio.ensure_future(self._sleep(delay))
        stopper = asyncio.ensure_future(stop_event.wait())
        try:
            done, _ = await asyncio.wait(
                {sleeper, stopper},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            sleeper.cancel()
            stopper.cancel()
            await asyncio.gather(sleeper, stopper, return_exceptions=True)

        if stopper in done:
            raise PipelineCancelledError(
                "Pipeline stopped while waiting to retry",
                context={"pipeline": self.name}
            )
        if sleeper not in done:
            raise PipelineTimeoutError(
                "Pipeline timeout expired while waiting to retry",
                context={"pipeline": self.name}
            )

    # ------------------------------------------------------------------
    # One attempt
    # ------------------------------------------------------------------

    async def _run_attempt(self, ctx: PipelineContext) -> Dict[Stage, int]:
        initialized: List[Tuple[Stage, Component]] = []
        self._set_state(PipelineState.INITIALIZING)

        try:
            # --------------------------------------------------
            # PHASE 1: INITIALIZATION (fixed order)
            # --------------------------------------------------
            for stage, component in self._components():
                self._check_interrupted(ctx, f"before initializing {component.name}")
                await self._guarded(
                    ctx,
                    self._init_component(stage, component),
                    f"while initializing {component.name}"
                )
                initialized.append((stage, component))

            # --------------------------------------------------
            # PHASE 2: WIRING
            # --------------------------------------------------
            self._check_interrupted(ctx, "before extraction started")
            self._set_state(PipelineState.RUNNING)
            try:
                records, extract_errors = self.extractor.extract(ctx)
            except Exception as e:
                raise self._as_component_error(Stage.EXTRACTION, e)
            try:
                transformed, transform_errors = self.transformer.transform(ctx, records)
            except Exception as e:
                raise self._as_component_error(Stage.TRANSFORMATION, e)
            load_task = ctx.spawn(self.loader.load(ctx, transformed), name="load")

            # --------------------------------------------------
            # PHASE 3: SUPERVISION
            # --------------------------------------------------
            row_errors = await self._supervise(ctx, extract_errors, transform_errors, load_task)

        except BaseException:
            self._set_state(PipelineState.FAILED)
            raise

        finally:
            await ctx.shutdown()
            await self._close_components(initialized)

        self._set_state(PipelineState.SUCCEEDED)
        return row_errors

    def _check_interrupted(self, ctx: PipelineContext, during: str) -> None:
        """Raise when the caller asked to stop or the deadline has passed."""
        if ctx.stop_requested:
            raise PipelineCancelledError(
                f"Pipeline stopped by caller {during}",
                context={"pipeline": self.name}
            )
        if ctx.expired:
            raise PipelineTimeoutError(
                f"Pipeline timeout expired {during}",
                context={"pipeline": self.name}
            )

    async def _guarded(self, ctx: PipelineContext, coro: Awaitable[Any], during: str) -> Any:
        """
        Await ``coro`` unless a stop request or the deadline comes first.

        An interrupted coroutine is cancelled and awaited before the
        cancellation error is raised. A coroutine that completed is never
        discarded, so a component whose init finished is always closed.
        """
        task = asyncio.ensure_future(coro)
        stop_watch = asyncio.ensure_future(ctx.wait_stopped())
        try:
            await asyncio.wait(
                {task, stop_watch},
                timeout=ctx.remaining(),
                return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stop_watch.cancel()
            task.cancel()
            await asyncio.gather(task, stop_watch, return_exceptions=True)

        if task.cancelled():
            self._check_interrupted(ctx, during)
            # The wait timer can fire a hair before the deadline by loop time
            raise PipelineTimeoutError(
                f"Pipeline timeout expired {during}",
                context={"pipeline": self.name}
            )
        return task.result()

    async def _init_component(self, stage: Stage, component: Component) -> None:
        logger.info(f"Initializing {component.name}")
        try:
            await component.init(self.config)
        except NonRetryableError:
            raise
        except Exception as e:
            raise InitializationError(
                f"{component.name} initialization failed",
                context={"component": component.name},
                original_exception=e,
                stage=stage
            )

    async def _supervise(
        self,
        ctx: PipelineContext,
        extract_errors: ErrorStream,
        transform_errors: ErrorStream,
        load_task: asyncio.Task
    ) -> Dict[Stage, int]:
        """
        Wait for the first fatal signal or for the loader to finish.

        Returns the number of absorbed row errors per upstream stage.
        """
        drains: Dict[asyncio.Task, Tuple[Stage, Stream]] = {}
        for stage, stream in ((Stage.EXTRACTION, extract_errors),
                              (Stage.TRANSFORMATION, transform_errors)):
            task = ctx.spawn(self._drain(stream, stage), name=f"{stage.value}-errors")
            drains[task] = (stage, stream)
        stop_watch = ctx.spawn(ctx.wait_stopped(), name="stop-watch")
        self._check_interrupted(ctx, "before supervision started")

        waiting = set(drains) | {load_task}
        while waiting:
            done, _ = await asyncio.wait(
                waiting | {stop_watch},
                timeout=ctx.remaining(),
                return_when=asyncio.FIRST_COMPLETED
            )
            if stop_watch in done:
                raise PipelineCancelledError(
                    "Pipeline stopped by caller",
                    context={"pipeline": self.name}
                )
            # A loader finishing after the deadline does not count as success
            if not done or ctx.expired:
                raise PipelineTimeoutError(
                    "Pipeline timeout expired during attempt",
                    context={"pipeline": self.name}
                )

            # Upstream errors take precedence over loader completion
            for task in [t for t in drains if t in done]:
                if task.exception() is not None:
                    raise task.exception()
            if load_task in done:
                if load_task.exception() is not None:
                    raise self._as_component_error(Stage.LOADING, load_task.exception())
                logger.info(f"Loader finished for {self.name}")
                # Only wait on error streams whose producers have finished
                waiting = {t for t, (_, stream) in drains.items() if not t.done() and stream.closed}
                continue

            waiting -= done

        return {stage: task.result() for task, (stage, _) in drains.items() if task.done()}

    async def _drain(self, errors: ErrorStream, stage: Stage) -> int:
        """Count row errors; raise the first fatal error."""
        absorbed = 0
        async for error in errors:
            if isinstance(error, RowError) and not self.config.pipeline.abort_on_row_error:
                absorbed += 1
                logger.warning(
                    f"Row error during {stage.value}: {error.message}",
                    extra={"error_context": error.to_dict()}
                )
                continue
            raise self._as_component_error(stage, error)
        return absorbed

    def _as_component_error(self, stage: Stage, error: Any) -> BaseException:
        if isinstance(error, (ComponentError, CancellationError, NonRetryableError)):
            return error
        if not isinstance(error, BaseException):
            return ComponentError(str(error), stage=stage)
        return ComponentError(
            f"{stage.value} failed",
            context={"pipeline": self.name},
            original_exception=error,
            stage=stage
        )

    async def _close_components(self, components: List[Tuple[Stage, Component]]) -> None:
        """Close in init order; close errors are logged, never raised."""
        for _, component in components:
            try:
                await component.close()
            except Exception as e:
                logger.error(f"Error closing {component.name}: {e}")
