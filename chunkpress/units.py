"""
chunkpress/units.py

Unidades de execução: um processo novo e isolado por pedido.

A memória do motor cresce e não encolhe dentro de um processo; destruir e
recriar o processo é o único jeito de devolvê-la ao sistema. Por isso:
- nunca há pool nem reuso de worker entre chunks;
- cada unidade recebe exatamente UM pedido e devolve UMA resposta terminal;
- `dispose()` roda em todo caminho de saída (resposta, erro, timeout).

- `ExecutionUnit`: processo worker + pipe duplex.
- `exchange(factory, request, timeout_ms, on_progress)`: disciplina comum.
- `ExecutionUnitManager.run_chunk(task, preset, timeout_ms) -> ChunkResult`.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import threading
import time
from functools import partial
from typing import Any, Callable, Dict, Optional, Protocol

from pydantic import BaseModel, ValidationError

from .engine_config import START_METHOD, PresetConfig
from .errors import EngineError, TransportError, UnitTimeoutError
from .schemas import (
    ChunkCompleteMessage,
    ChunkEngineOptions,
    ChunkResult,
    ChunkTask,
    CompressChunkMessage,
    WorkerErrorMessage,
    WorkerProgressMessage,
    parse_worker_message,
)
from .workers import compression_worker_main

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.25
JOIN_TIMEOUT_S = 5.0

ProgressHook = Callable[[WorkerProgressMessage], None]


class Unit(Protocol):
    def start(self) -> None: ...
    def send(self, message: Dict[str, Any]) -> None: ...
    def receive(self, timeout: float) -> Optional[Dict[str, Any]]: ...
    def is_alive(self) -> bool: ...
    @property
    def exitcode(self) -> Optional[int]: ...
    def dispose(self) -> None: ...


UnitFactory = Callable[[], Unit]


class ExecutionUnit:
    """Um processo worker descartável ligado por um pipe duplex."""

    def __init__(self, target: Callable[[Any], None], *, name: str = "chunkpress-unit",
                 start_method: str = START_METHOD) -> None:
        ctx = mp.get_context(start_method)
        self._conn, child_conn = ctx.Pipe(duplex=True)
        self._child_conn: Any = child_conn
        self._process = ctx.Process(target=target, args=(child_conn,), name=name, daemon=True)
        self._started = False
        self._disposed = False

    def start(self) -> None:
        self._process.start()
        self._started = True
        # o lado filho agora pertence ao processo; fecha a cópia local
        self._child_conn.close()
        self._child_conn = None

    def send(self, message: Dict[str, Any]) -> None:
        self._conn.send(message)

    def receive(self, timeout: float) -> Optional[Dict[str, Any]]:
        if self._conn.poll(timeout):
            return self._conn.recv()
        return None

    def is_alive(self) -> bool:
        return self._started and self._process.is_alive()

    @property
    def exitcode(self) -> Optional[int]:
        return self._process.exitcode if self._started else None

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        try:
            self._conn.close()
        except OSError:
            logger.debug("pipe já fechado")
        if self._child_conn is not None:
            self._child_conn.close()
            self._child_conn = None
        if not self._started:
            return
        if self._process.is_alive():
            self._process.terminate()
            self._process.join(JOIN_TIMEOUT_S)
        if self._process.is_alive():
            self._process.kill()
            self._process.join(JOIN_TIMEOUT_S)
        self._process.join(0)
        if self._process.exitcode is not None:
            self._process.close()
        else:
            logger.error("processo %s não encerrou após kill", self._process.name)


def _next_message(unit: Unit, timeout: float, label: str) -> Optional[BaseModel]:
    try:
        raw = unit.receive(timeout)
    except (EOFError, OSError) as e:
        raise TransportError(
            f"{label}: worker encerrou sem resposta (exitcode={unit.exitcode})"
        ) from e
    if raw is None:
        return None
    try:
        return parse_worker_message(raw)
    except ValidationError as e:
        raise TransportError(f"{label}: mensagem inválida do worker: {e}") from e


def _send_before_deadline(unit: Unit, request: Dict[str, Any], deadline: float,
                          timeout_ms: int, label: str) -> None:
    """Envia o pedido numa thread auxiliar, sob o mesmo prazo da resposta.

    Um pedido maior que o buffer do pipe bloqueia até o worker ler; se o worker
    travar antes do `recv()`, o prazo vence aqui. O `dispose()` posterior mata o
    processo e a escrita pendente termina com BrokenPipeError na thread.
    """
    failure: list = []

    def deliver() -> None:
        try:
            unit.send(request)
        except (BrokenPipeError, EOFError, OSError) as e:
            failure.append(e)

    sender = threading.Thread(target=deliver, name=f"{label}-send", daemon=True)
    sender.start()
    sender.join(max(0.0, deadline - time.monotonic()))
    if sender.is_alive():
        raise UnitTimeoutError(f"{label} timed out after {timeout_ms}ms (envio do pedido)")
    if failure:
        raise TransportError(
            f"{label}: falha ao enviar o pedido ao worker: {failure[0]}"
        ) from failure[0]


def exchange(
    unit_factory: UnitFactory,
    request: Dict[str, Any],
    timeout_ms: int,
    on_progress: Optional[ProgressHook] = None,
    *,
    label: str = "unit",
) -> BaseModel:
    """Cria a unidade, envia UM pedido e espera UMA resposta terminal.

    Mensagens `progress` são repassadas a `on_progress` e nunca afetam o fluxo.
    A unidade é descartada em qualquer saída. O `request` é liberado logo após
    o envio (os bytes passam a existir só no worker).

    Raises:
        UnitTimeoutError: o prazo venceu antes da resposta terminal.
        EngineError: o worker respondeu `error` (com `kind` da origem).
        TransportError: o worker morreu, o pipe quebrou ou a mensagem é inválida.
    """
    unit = unit_factory()
    deadline = time.monotonic() + timeout_ms / 1000.0
    try:
        unit.start()
        _send_before_deadline(unit, request, deadline, timeout_ms, label)
        del request

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise UnitTimeoutError(f"{label} timed out after {timeout_ms}ms")

            message = _next_message(unit, min(remaining, POLL_INTERVAL_S), label)
            if message is None:
                if unit.is_alive():
                    continue
                # o processo saiu; ainda pode haver algo no pipe
                message = _next_message(unit, 0, label)
                if message is None:
                    raise TransportError(
                        f"{label}: worker encerrou sem resposta (exitcode={unit.exitcode})"
                    )

            if isinstance(message, WorkerProgressMessage):
                if on_progress is not None:
                    on_progress(message)
                continue
            if isinstance(message, WorkerErrorMessage):
                raise EngineError(message.message, kind=message.kind, phase=message.phase)
            return message
    finally:
        unit.dispose()


class ExecutionUnitManager:
    """Roda cada chunk num processo novo (nunca reaproveitado)."""

    def __init__(self, unit_factory: Optional[UnitFactory] = None) -> None:
        self._unit_factory: UnitFactory = unit_factory or partial(
            ExecutionUnit, compression_worker_main, name="chunkpress-compress"
        )

    @staticmethod
    def _build_request(task: ChunkTask, preset: PresetConfig) -> Dict[str, Any]:
        return CompressChunkMessage(
            chunk_index=task.index,
            pdf_bytes=task.take_source(),
            preset=preset.name,
            options=ChunkEngineOptions(
                target_dpi=preset.target_dpi,
                quality=preset.quality,
                preserve_metadata=preset.preserve_metadata,
                allow_rasterization=preset.allow_rasterization,
            ),
        ).model_dump()

    def run_chunk(self, task: ChunkTask, preset: PresetConfig, timeout_ms: int) -> ChunkResult:
        label = f"Chunk {task.index}"
        message = exchange(
            self._unit_factory,
            self._build_request(task, preset),
            timeout_ms,
            label=label,
        )
        if not isinstance(message, ChunkCompleteMessage):
            raise TransportError(f"{label}: resposta inesperada '{getattr(message, 'type', '?')}'")
        if message.chunk_index != task.index:
            raise TransportError(
                f"{label}: resposta pertence ao chunk {message.chunk_index}"
            )
        logger.debug(
            "%s: %d -> %d bytes em %d ms", label,
            message.stats.original_size, message.stats.compressed_size,
            message.stats.processing_time_ms,
        )
        return ChunkResult(
            index=message.chunk_index,
            compressed_bytes=message.compressed_bytes,
            original_size=message.stats.original_size,
            compressed_size=message.stats.compressed_size,
            processing_time_ms=message.stats.processing_time_ms,
        )
