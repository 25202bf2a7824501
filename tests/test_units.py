from __future__ import annotations

import threading
import time
from typing import List

import pytest

from chunkpress.engine_config import get_preset_config
from chunkpress.errors import EngineError, ErrorKind, TransportError, UnitTimeoutError
from chunkpress.schemas import ChunkTask, PageRange, WorkerProgressMessage
from chunkpress.units import ExecutionUnit, ExecutionUnitManager, exchange

from conftest import HANG, FakeUnitFactory, chunk_complete, echo_chunk, never_reads, progress, worker_error


def make_task(index: int = 0, data: bytes = b"%PDF-chunk") -> ChunkTask:
    return ChunkTask(index=index, page_range=PageRange(0, 1), source_slice=data)


def test_run_chunk_returns_result_and_disposes_once(echo_units) -> None:
    manager = ExecutionUnitManager(echo_units)
    result = manager.run_chunk(make_task(3), get_preset_config("balanced"), 1000)

    assert result.index == 3
    assert result.compressed_bytes == b"%PDF-chunk"
    assert result.processing_time_ms == 5
    [unit] = echo_units.units
    assert unit.dispose_calls == 1
    assert unit.requests[0]["preset"] == "balanced"
    assert unit.requests[0]["options"]["target_dpi"] == 150


def test_source_slice_is_moved_into_request(echo_units) -> None:
    task = make_task()
    ExecutionUnitManager(echo_units).run_chunk(task, get_preset_config("max"), 1000)
    assert task.source_slice is None
    with pytest.raises(ValueError):
        task.take_source()


def test_every_run_gets_a_fresh_unit(echo_units) -> None:
    manager = ExecutionUnitManager(echo_units)
    for i in range(3):
        manager.run_chunk(make_task(i), get_preset_config("lossless"), 1000)
    assert len(echo_units.units) == 3
    assert all(u.dispose_calls == 1 for u in echo_units.units)


def test_progress_messages_are_forwarded_and_do_not_terminate() -> None:
    factory = FakeUnitFactory(lambda req: [progress(10), progress(60), chunk_complete(req)])
    seen: List[WorkerProgressMessage] = []
    message = exchange(factory, {"pdf_bytes": b"%PDF", "chunk_index": 0}, 1000,
                       seen.append, label="t")
    assert [m.percent for m in seen] == [10, 60]
    assert message.type == "chunk-complete"  # type: ignore[attr-defined]


def test_timeout_disposes_unit() -> None:
    factory = FakeUnitFactory(lambda req: [progress(5), HANG])
    with pytest.raises(UnitTimeoutError, match="timed out after 50ms"):
        ExecutionUnitManager(factory).run_chunk(make_task(), get_preset_config("max"), 50)
    assert factory.units[0].dispose_calls == 1


def test_worker_error_keeps_its_kind() -> None:
    factory = FakeUnitFactory(lambda req: [worker_error("sem memória", "out-of-memory")])
    with pytest.raises(EngineError) as info:
        ExecutionUnitManager(factory).run_chunk(make_task(), get_preset_config("max"), 1000)
    assert info.value.kind is ErrorKind.OUT_OF_MEMORY
    assert info.value.phase == "compressing"
    assert factory.units[0].dispose_calls == 1


def test_worker_exit_without_reply_is_transport_error() -> None:
    factory = FakeUnitFactory(lambda req: [])
    with pytest.raises(TransportError):
        ExecutionUnitManager(factory).run_chunk(make_task(), get_preset_config("max"), 1000)
    assert factory.units[0].dispose_calls == 1


def test_broken_pipe_is_transport_error() -> None:
    factory = FakeUnitFactory(lambda req: [EOFError()])
    with pytest.raises(TransportError):
        ExecutionUnitManager(factory).run_chunk(make_task(), get_preset_config("max"), 1000)
    assert factory.units[0].dispose_calls == 1


def test_malformed_message_is_transport_error() -> None:
    factory = FakeUnitFactory(lambda req: [{"type": "chunk-complete", "chunk_index": "x"}])
    with pytest.raises(TransportError):
        ExecutionUnitManager(factory).run_chunk(make_task(), get_preset_config("max"), 1000)


def test_reply_for_another_chunk_is_rejected() -> None:
    factory = FakeUnitFactory(lambda req: [chunk_complete(dict(req, chunk_index=9))])
    with pytest.raises(TransportError, match="chunk 9"):
        ExecutionUnitManager(factory).run_chunk(make_task(1), get_preset_config("max"), 1000)


def test_caller_exception_still_disposes() -> None:
    factory = FakeUnitFactory(echo_chunk)

    def explode(_msg) -> None:
        raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        exchange(factory, {"pdf_bytes": b"%PDF", "chunk_index": 0}, 1000, explode)
    assert factory.units[0].dispose_calls == 1


def test_deadline_covers_a_send_that_never_completes() -> None:
    release = threading.Event()

    def stuck(_request):
        release.wait(5)
        return []

    factory = FakeUnitFactory(stuck)
    started = time.monotonic()
    try:
        with pytest.raises(UnitTimeoutError, match="timed out after 50ms"):
            exchange(factory, {"pdf_bytes": b"%PDF", "chunk_index": 0}, 50, label="t")
    finally:
        release.set()
    assert time.monotonic() - started < 2
    assert factory.units[0].dispose_calls == 1


def test_real_worker_that_never_reads_times_out() -> None:
    request = {"pdf_bytes": b"x" * (8 * 1024 * 1024), "chunk_index": 0}
    started = time.monotonic()
    with pytest.raises(UnitTimeoutError):
        exchange(lambda: ExecutionUnit(never_reads, name="chunkpress-stalled"), request, 300,
                 label="Chunk 0")
    assert time.monotonic() - started < 10
