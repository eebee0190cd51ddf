"""
Tests for orchestrator supervision, retry and cancellation
"""

import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from core.exceptions import (
    ConfigError,
    ExtractionError,
    InitializationError,
    PipelineCancelledError,
    PipelineFailedError,
    PipelineTimeoutError,
    RowError,
    SinkConnectionError,
    Stage,
)
from etl.base import PassThroughTransformer, PipelineState, StreamTransformer
from etl.orchestrator import Orchestrator


def _rows(n):
    return [{"id": i} for i in range(n)]


@pytest.mark.asyncio
async def test_zero_records_is_success(make_config, fake_extractor, counting_transformer, recording_loader):
    loader = recording_loader()
    orchestrator = Orchestrator(make_config(), fake_extractor(), counting_transformer(), loader)

    result = await orchestrator.execute()

    assert result.records_loaded == 0
    assert result.attempts == 1
    assert result.state == PipelineState.SUCCEEDED
    assert orchestrator.state == PipelineState.SUCCEEDED


@pytest.mark.asyncio
async def test_components_initialized_and_closed_once(
    make_config, fake_extractor, counting_transformer, recording_loader
):
    extractor, transformer, loader = fake_extractor(rows=_rows(3)), counting_transformer(), recording_loader()

    await Orchestrator(make_config(), extractor, transformer, loader).execute()

    for component in (extractor, transformer, loader):
        assert component.init_calls == 1
        assert component.close_calls == 1


@pytest.mark.asyncio
async def test_exhausted_retries_make_n_plus_one_attempts(
    make_config, fake_extractor, counting_transformer, recording_loader
):
    extractor = fake_extractor(init_failures=100)
    sleep = AsyncMock()
    orchestrator = Orchestrator(
        make_config(pipeline={"retries": 3}),
        extractor, counting_transformer(), recording_loader(),
        sleep=sleep
    )

    with pytest.raises(PipelineFailedError) as exc_info:
        await orchestrator.execute()

    error = exc_info.value
    assert error.attempts == 4
    assert extractor.init_calls == 4
    assert sleep.await_count == 3
    assert "3 retries" in str(error)
    assert isinstance(error.last_error, InitializationError)
    assert orchestrator.state == PipelineState.FAILED


@pytest.mark.asyncio
async def test_exponential_backoff_delays(make_config, fake_extractor, counting_transformer, recording_loader):
    sleep = AsyncMock()
    orchestrator = Orchestrator(
        make_config(pipeline={"retries": 3, "retry_delay": "2s", "exponential_backoff": True}),
        fake_extractor(init_failures=100), counting_transformer(), recording_loader(),
        sleep=sleep
    )

    with pytest.raises(PipelineFailedError):
        await orchestrator.execute()

    assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_config_error_not_retried(make_config, fake_extractor, counting_transformer, recording_loader):
    extractor = fake_extractor(init_failures=100, init_error=ConfigError("bad driver"))
    sleep = AsyncMock()
    orchestrator = Orchestrator(
        make_config(pipeline={"retries": 3}),
        extractor, counting_transformer(), recording_loader(),
        sleep=sleep
    )

    with pytest.raises(ConfigError):
        await orchestrator.execute()

    assert extractor.init_calls == 1
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_init_failure_closes_only_initialized_components(
    make_config, fake_extractor, counting_transformer, recording_loader
):
    class FailingTransformer(counting_transformer):
        async def init(self, config):
            await super().init(config)
            raise RuntimeError("no resources")

    extractor, transformer, loader = fake_extractor(), FailingTransformer(), recording_loader()

    with pytest.raises(PipelineFailedError) as exc_info:
        await Orchestrator(make_config(), extractor, transformer, loader).execute()

    assert exc_info.value.last_error.stage == Stage.TRANSFORMATION
    assert extractor.close_calls == 1
    assert transformer.close_calls == 0
    assert loader.init_calls == 0
    assert loader.close_calls == 0


@pytest.mark.asyncio
async def test_loaded_plus_failed_equals_records_delivered(
    make_config, fake_extractor, counting_transformer, recording_loader
):
    loader = recording_loader(fail_when=lambda record: record.data["id"] % 3 == 0)
    orchestrator = Orchestrator(make_config(), fake_extractor(rows=_rows(10)), counting_transformer(), loader)

    result = await orchestrator.execute()

    assert result.records_loaded + result.records_failed == 10
    assert result.records_failed == 4


class EvenIdsTransformer(StreamTransformer):
    """Returns nothing for odd ids"""

    def transform_record(self, record):
        return record if record.data["id"] % 2 == 0 else None


@pytest.mark.asyncio
async def test_records_without_transform_result_are_counted(make_config, fake_extractor, recording_loader):
    loader = recording_loader()
    orchestrator = Orchestrator(make_config(), fake_extractor(rows=_rows(5)), EvenIdsTransformer(), loader)

    result = await orchestrator.execute()

    assert [r.data["id"] for r in loader.records] == [0, 2, 4]
    assert result.transformation_errors == 2
    assert result.records_loaded + result.records_failed + result.transformation_errors == 5


@pytest.mark.asyncio
async def test_row_errors_counted_by_default(make_config, fake_extractor, counting_transformer, recording_loader):
    extractor = fake_extractor(rows=_rows(2), errors=[RowError("bad row", stage=Stage.EXTRACTION)] * 2)

    result = await Orchestrator(make_config(), extractor, counting_transformer(), recording_loader()).execute()

    assert result.records_loaded == 2
    assert result.extraction_errors == 2
    assert result.transformation_errors == 0


@pytest.mark.asyncio
async def test_row_error_aborts_attempt_when_configured(
    make_config, fake_extractor, counting_transformer, recording_loader
):
    extractor = fake_extractor(rows=_rows(2), errors=[RowError("bad row", stage=Stage.EXTRACTION)])
    orchestrator = Orchestrator(
        make_config(pipeline={"abort_on_row_error": True}),
        extractor, counting_transformer(), recording_loader()
    )

    with pytest.raises(PipelineFailedError) as exc_info:
        await orchestrator.execute()

    assert isinstance(exc_info.value.last_error, RowError)


@pytest.mark.asyncio
async def test_fatal_extraction_error_fails_attempt(
    make_config, fake_extractor, counting_transformer, recording_loader
):
    extractor = fake_extractor(rows=_rows(2), errors=[ExtractionError("query failed")], block=True)
    loader = recording_loader()

    with pytest.raises(PipelineFailedError) as exc_info:
        await Orchestrator(make_config(), extractor, counting_transformer(), loader).execute()

    assert isinstance(exc_info.value.last_error, ExtractionError)
    assert extractor.close_calls == 1
    assert loader.close_calls == 1


@pytest.mark.asyncio
async def test_loader_error_fails_attempt(make_config, fake_extractor, counting_transformer, recording_loader):
    loader = recording_loader(error=SinkConnectionError("sink went away"))

    with pytest.raises(PipelineFailedError) as exc_info:
        await Orchestrator(make_config(), fake_extractor(rows=_rows(1)), counting_transformer(), loader).execute()

    assert isinstance(exc_info.value.last_error, SinkConnectionError)


@pytest.mark.asyncio
async def test_non_component_loader_error_wrapped_with_stage(
    make_config, fake_extractor, counting_transformer, recording_loader
):
    loader = recording_loader(error=KeyError("id"))

    with pytest.raises(PipelineFailedError) as exc_info:
        await Orchestrator(make_config(), fake_extractor(rows=_rows(1)), counting_transformer(), loader).execute()

    assert exc_info.value.last_error.stage == Stage.LOADING
    assert isinstance(exc_info.value.last_error.original_exception, KeyError)


@pytest.mark.asyncio
async def test_close_errors_do_not_fail_run(make_config, fake_extractor, counting_transformer, recording_loader):
    loader = recording_loader(close_error=OSError("socket"))

    result = await Orchestrator(
        make_config(), fake_extractor(rows=_rows(2)), counting_transformer(), loader
    ).execute()

    assert result.records_loaded == 2
    assert loader.close_calls == 1


@pytest.mark.asyncio
async def test_cancel_before_data_closes_each_component_once(
    make_config, fake_extractor, counting_transformer, recording_loader
):
    extractor, transformer, loader = fake_extractor(block=True), counting_transformer(), recording_loader()
    stop_event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, stop_event.set)

    with pytest.raises(PipelineCancelledError):
        await asyncio.wait_for(
            Orchestrator(make_config(pipeline={"retries": 3}), extractor, transformer, loader).execute(stop_event),
            timeout=5
        )

    for component in (extractor, transformer, loader):
        assert component.init_calls == 1
        assert component.close_calls == 1
    assert loader.stats.loaded == 0


@pytest.mark.asyncio
async def test_stop_requested_before_execute_initializes_nothing(
    make_config, fake_extractor, counting_transformer, recording_loader
):
    extractor, transformer, loader = fake_extractor(), counting_transformer(), recording_loader()
    stop_event = asyncio.Event()
    stop_event.set()

    with pytest.raises(PipelineCancelledError):
        await Orchestrator(make_config(pipeline={"retries": 3}), extractor, transformer, loader).execute(stop_event)

    for component in (extractor, transformer, loader):
        assert component.init_calls == 0
        assert component.close_calls == 0


@pytest.mark.asyncio
async def test_stop_during_init_ends_attempt(make_config, fake_extractor, counting_transformer, recording_loader):
    extractor, transformer = fake_extractor(init_delay=3), counting_transformer()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.call_later(0.1, stop_event.set)
    started = loop.time()

    with pytest.raises(PipelineCancelledError, match="initializing"):
        await Orchestrator(
            make_config(pipeline={"retries": 3}), extractor, transformer, recording_loader()
        ).execute(stop_event)

    assert loop.time() - started < 1
    assert extractor.init_calls == 1
    assert extractor.close_calls == 0
    assert transformer.init_calls == 0


@pytest.mark.asyncio
async def test_cancel_during_backoff(make_config, fake_extractor, counting_transformer, recording_loader):
    stop_event = asyncio.Event()

    async def sleep_until_stopped(delay):
        stop_event.set()
        await asyncio.Event().wait()

    extractor = fake_extractor(init_failures=100)
    orchestrator = Orchestrator(
        make_config(pipeline={"retries": 5, "retry_delay": "1h"}),
        extractor, counting_transformer(), recording_loader(),
        sleep=sleep_until_stopped
    )

    with pytest.raises(PipelineCancelledError):
        await asyncio.wait_for(orchestrator.execute(stop_event), timeout=5)

    assert extractor.init_calls == 1


@pytest.mark.asyncio
async def test_timeout_during_attempt(make_config, fake_extractor, counting_transformer, recording_loader):
    extractor, loader = fake_extractor(rows=_rows(1), block=True), recording_loader()
    orchestrator = Orchestrator(
        make_config(pipeline={"timeout": "100ms", "retries": 2}),
        extractor, counting_transformer(), loader
    )

    with pytest.raises(PipelineTimeoutError):
        await asyncio.wait_for(orchestrator.execute(), timeout=5)

    assert extractor.init_calls == 1
    assert extractor.close_calls == 1
    assert loader.close_calls == 1


@pytest.mark.asyncio
async def test_timeout_during_backoff(make_config, fake_extractor, counting_transformer, recording_loader):
    orchestrator = Orchestrator(
        make_config(pipeline={"timeout": "100ms", "retries": 2, "retry_delay": "1h"}),
        fake_extractor(init_failures=100), counting_transformer(), recording_loader()
    )

    with pytest.raises(PipelineTimeoutError):
        await asyncio.wait_for(orchestrator.execute(), timeout=5)


@pytest.mark.asyncio
async def test_timeout_during_init(make_config, fake_extractor, counting_transformer, recording_loader):
    extractor, transformer = fake_extractor(init_delay=3), counting_transformer()
    orchestrator = Orchestrator(
        make_config(pipeline={"timeout": "200ms", "retries": 2}),
        extractor, transformer, recording_loader()
    )
    loop = asyncio.get_running_loop()
    started = loop.time()

    with pytest.raises(PipelineTimeoutError, match="initializing"):
        await orchestrator.execute()

    assert loop.time() - started < 1
    assert extractor.init_calls == 1
    assert extractor.close_calls == 0
    assert transformer.init_calls == 0
    assert orchestrator.state == PipelineState.FAILED


class BlockingInitTransformer(PassThroughTransformer):
    """Holds the event loop during init, past any short deadline"""

    def __init__(self):
        self.close_calls = 0

    async def init(self, config):
        await super().init(config)
        time.sleep(0.3)

    async def close(self):
        self.close_calls += 1


@pytest.mark.asyncio
async def test_deadline_passed_before_load_is_not_success(make_config, fake_extractor, recording_loader):
    extractor, transformer, loader = fake_extractor(rows=_rows(3)), BlockingInitTransformer(), recording_loader()
    orchestrator = Orchestrator(
        make_config(pipeline={"timeout": "100ms"}), extractor, transformer, loader
    )

    with pytest.raises(PipelineTimeoutError):
        await orchestrator.execute()

    assert loader.init_calls == 0
    assert loader.records == []
    assert extractor.close_calls == 1
    assert transformer.close_calls == 1


def test_mismatched_record_kinds_rejected_at_construction(
    make_config, fake_extractor, counting_transformer, recording_loader
):
    with pytest.raises(ConfigError, match="accepts 'order'"):
        Orchestrator(
            make_config(),
            fake_extractor(produces="user_connection"),
            counting_transformer(accepts="order"),
            recording_loader()
        )


def test_matching_record_kinds_accepted(make_config, fake_extractor, counting_transformer, recording_loader):
    orchestrator = Orchestrator(
        make_config(),
        fake_extractor(produces="order"),
        counting_transformer(accepts="order"),
        recording_loader()
    )

    assert orchestrator.state == PipelineState.IDLE
