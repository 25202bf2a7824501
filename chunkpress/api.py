"""
chunkpress/api.py

Ponto de entrada público.
- `compress(pdf_bytes, preset, **opções) -> CompressionResult`
- `compress_lossless` / `compress_balanced` / `compress_max`: atalhos por preset
- `compress_async(...)`: mesma chamada, rodando numa thread (asyncio.to_thread)

Erros de uso (tipo errado, preset desconhecido) levantam TypeError.
Falhas de processamento levantam `CompressionError` (kind, fase, preset tentado).
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Optional, Union

from .engine import load_engine
from .engine_config import (
    DEFAULT_TIMEOUT_MS,
    PRESET_ORDER,
    get_preset_config,
    get_preset_fallback_chain,
    is_valid_preset,
)
from .errors import CompressionError, EngineLoadError, ErrorKind, user_message
from .orchestrator import JobOrchestrator
from .pdf_ops import is_valid_pdf
from .progress import ProgressTracker
from .schemas import (
    CompressionJob,
    CompressionOptions,
    CompressionResult,
    MergeStrategy,
    ProgressCallback,
)

logger = logging.getLogger(__name__)

PdfInput = Union[bytes, bytearray, memoryview]


def compress(
    pdf_bytes: PdfInput,
    preset: str,
    *,
    chunk_size: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
    graceful_degradation: bool = True,
    preserve_metadata: Optional[bool] = None,
    target_dpi: Optional[int] = None,
    quality: Optional[float] = None,
    allow_rasterization: Optional[bool] = None,
    merge_strategy: MergeStrategy = "isolated",
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    constrained_device: Optional[bool] = None,
    cancel_event: Optional[threading.Event] = None,
    orchestrator: Optional[JobOrchestrator] = None,
) -> CompressionResult:
    """Comprime um PDF em chunks isolados e devolve o artefato unido.

    Args:
        pdf_bytes: documento de entrada.
        preset: 'lossless', 'balanced' ou 'max'.
        chunk_size: páginas por chunk (auto se None).
        on_progress: recebe cada `ProgressEvent`.
        graceful_degradation: em falha recuperável, tenta o preset mais leve e,
            esgotados todos, devolve o original com `warning`.
        merge_strategy: 'isolated' (processo próprio) ou 'inline'.
        timeout_ms: prazo por unidade de execução (chunk ou merge).
        cancel_event: sinaliza cancelamento cooperativo (checado entre chunks).

    Returns:
        CompressionResult: artefato, estatísticas e aviso opcional.

    Raises:
        TypeError: entrada não é bytes ou preset inválido.
        CompressionError: falha não recuperável (ou degradação desligada).
    """
    if not isinstance(pdf_bytes, (bytes, bytearray, memoryview)):
        raise TypeError(f"pdf_bytes deve ser bytes, recebido {type(pdf_bytes).__name__}")
    if not is_valid_preset(preset):
        raise TypeError(f"Preset inválido: {preset!r}. Use um de: {', '.join(PRESET_ORDER)}.")

    started = time.monotonic()
    data = bytes(pdf_bytes)
    original_size = len(data)

    if original_size == 0:
        raise CompressionError(
            "O PDF enviado está vazio.",
            attempted_preset=preset,
            original_size=0,
            phase="planning",
            kind=ErrorKind.INVALID_INPUT,
        )

    options = CompressionOptions(
        preset=preset,
        chunk_size=chunk_size,
        on_progress=on_progress,
        graceful_degradation=graceful_degradation,
        preserve_metadata=preserve_metadata,
        target_dpi=target_dpi,
        quality=quality,
        allow_rasterization=allow_rasterization,
        merge_strategy=merge_strategy,
        timeout_ms=timeout_ms,
        constrained_device=constrained_device,
        cancel_event=cancel_event,
    )
    tracker = ProgressTracker(options.on_progress)
    tracker.report_planning(0, "Inicializando o motor de compressão...")

    try:
        load_engine()
    except EngineLoadError as e:
        logger.error("motor indisponível: %s", e)
        raise CompressionError(
            user_message(ErrorKind.ENGINE_LOAD_FAILED, preset),
            attempted_preset=preset,
            original_size=original_size,
            phase="planning",
            kind=ErrorKind.ENGINE_LOAD_FAILED,
        ) from e

    if not is_valid_pdf(data):
        raise CompressionError(
            user_message(ErrorKind.INVALID_INPUT, preset),
            attempted_preset=preset,
            original_size=original_size,
            phase="planning",
            kind=ErrorKind.INVALID_INPUT,
        )

    job = CompressionJob(
        source_bytes=data,
        preset_ordering=get_preset_fallback_chain(preset) if graceful_degradation else [preset],
        options=options,
        original_size=original_size,
        started_at=started,
    )
    del data
    logger.info(
        "compress: %d bytes, preset %s (economia esperada %s), cadeia %s",
        original_size, preset, get_preset_config(preset).expected_savings, job.preset_ordering,
    )
    return (orchestrator or JobOrchestrator()).run(job, tracker)


def compress_lossless(pdf_bytes: PdfInput, **options: Any) -> CompressionResult:
    return compress(pdf_bytes, "lossless", **options)


def compress_balanced(pdf_bytes: PdfInput, **options: Any) -> CompressionResult:
    return compress(pdf_bytes, "balanced", **options)


def compress_max(pdf_bytes: PdfInput, **options: Any) -> CompressionResult:
    return compress(pdf_bytes, "max", **options)


async def compress_async(pdf_bytes: PdfInput, preset: str, **options: Any) -> CompressionResult:
    """`compress` numa thread, sem bloquear o event loop.

    O callback de progresso roda na thread de trabalho.
    """
    return await asyncio.to_thread(compress, pdf_bytes, preset, **options)
