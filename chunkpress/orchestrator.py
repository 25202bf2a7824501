"""
chunkpress/orchestrator.py

Orquestrador do job de compressão. Uma passada por preset:
1. Conta páginas e planeja os chunks
2. Lê metadados (se o preset os preserva)
3. Comprime cada chunk em sequência, cada um num worker novo
4. Valida cada saída (PDF + número de páginas)
5. Une os chunks e valida o total de páginas
A passada roda dentro do DegradationEngine; esgotados os presets (com
degradação ligada), o PDF original volta intacto com um aviso.

Os chunks rodam estritamente um por vez: chunks concorrentes multiplicariam
o pico de memória do motor.
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional, Tuple

from .degradation import DegradationEngine, DegradationState
from .engine_config import get_preset_config_with_overrides
from .errors import (
    CancelledError,
    CompressionError,
    ErrorKind,
    InvalidInputError,
    OutputValidationError,
    ProcessingError,
    classify_error,
    user_message,
)
from .memory import has_enough_memory, is_constrained_device, is_memory_pressure, release_buffers
from .merge import MergeCoordinator
from .pdf_ops import count_pages, extract_metadata, extract_pages, is_valid_pdf
from .planner import plan_chunks
from .progress import ProgressTracker
from .schemas import (
    ChunkResult,
    ChunkTask,
    CompressionJob,
    CompressionOptions,
    CompressionResult,
    CompressionStats,
    PageRange,
)
from .units import ExecutionUnitManager

logger = logging.getLogger(__name__)


def _validate_output(data: Optional[bytes], expected_pages: int, label: str) -> None:
    if not data or not is_valid_pdf(data):
        raise OutputValidationError(f"{label}: saída não é um PDF (validation failed)")
    try:
        pages = count_pages(data)
    except InvalidInputError as e:
        raise OutputValidationError(f"{label}: saída corrompida: {e}") from e
    if pages != expected_pages:
        raise OutputValidationError(
            f"{label}: esperava {expected_pages} páginas, veio {pages} (validation failed)"
        )


class JobOrchestrator:
    def __init__(
        self,
        unit_manager: Optional[ExecutionUnitManager] = None,
        merge_coordinator: Optional[MergeCoordinator] = None,
    ) -> None:
        self.unit_manager = unit_manager or ExecutionUnitManager()
        self.merge_coordinator = merge_coordinator or MergeCoordinator()

    # ---------- job inteiro ----------
    def run(self, job: CompressionJob, tracker: ProgressTracker) -> CompressionResult:
        engine = DegradationEngine(
            job.preset_ordering, job.options.graceful_degradation, tracker
        )
        outcome = engine.run(lambda preset: self._run_pass(job, preset, tracker))
        elapsed_ms = int((time.monotonic() - job.started_at) * 1000)

        if outcome.succeeded:
            artifact, chunks = outcome.value  # type: ignore[misc]
            job.source_bytes = None
            stats = CompressionStats.build(
                original_size=job.original_size,
                compressed_size=len(artifact),
                preset_used=outcome.preset_used or job.requested_preset,
                processing_time_ms=elapsed_ms,
                chunks_processed=chunks,
            )
            logger.info(
                "job concluído: %d -> %d bytes (%s, %d chunks, %d ms)",
                stats.original_size, stats.compressed_size, stats.preset_used,
                chunks, elapsed_ms,
            )
            return CompressionResult(artifact=artifact, stats=stats, warning=outcome.warning)

        if outcome.fatal:
            raise self._compression_error(job, outcome.state, tracker)

        # todos os presets falharam com erro recuperável: devolve o original
        logger.warning("presets esgotados %s; devolvendo o original", outcome.state.tried_presets)
        original = job.source_bytes or b""
        return CompressionResult(
            artifact=original,
            stats=CompressionStats.build(
                original_size=job.original_size,
                compressed_size=job.original_size,
                preset_used=job.requested_preset,
                processing_time_ms=elapsed_ms,
                chunks_processed=0,
            ),
            warning=outcome.warning,
        )

    @staticmethod
    def _compression_error(job: CompressionJob, state: DegradationState,
                           tracker: ProgressTracker) -> CompressionError:
        exc = state.last_error
        kind = state.last_kind or (classify_error(exc) if exc else ErrorKind.UNKNOWN)
        preset = state.tried_presets[-1] if state.tried_presets else job.requested_preset
        phase = getattr(exc, "phase", None) or tracker.phase
        err = CompressionError(
            user_message(kind, preset),
            attempted_preset=preset,
            original_size=job.original_size,
            phase=phase,
            kind=kind,
        )
        err.__cause__ = exc
        return err

    # ---------- uma passada ----------
    def _run_pass(self, job: CompressionJob, preset_name: str,
                  tracker: ProgressTracker) -> Tuple[bytes, int]:
        job.current_preset = preset_name
        tracker.begin_pass()
        try:
            return self._run_pass_inner(job, preset_name, tracker)
        except ProcessingError as e:
            if e.phase is None:
                e.phase = tracker.phase
            raise

    def _run_pass_inner(self, job: CompressionJob, preset_name: str,
                        tracker: ProgressTracker) -> Tuple[bytes, int]:
        options = job.options
        source = job.source_bytes
        if source is None:
            raise InvalidInputError("O job não possui mais o documento de origem")

        tracker.report_planning(0, f"Planejando chunks (preset {preset_name})...")
        total_pages = count_pages(source)
        plan = plan_chunks(
            total_pages,
            job.original_size,
            options.chunk_size,
            is_constrained_device(options.constrained_device),
        )
        tracker.set_total_chunks(len(plan))
        tracker.report_planning(50)

        config = get_preset_config_with_overrides(preset_name, **options.preset_overrides())
        metadata = extract_metadata(source) if config.preserve_metadata else None
        tracker.report_planning(100)
        logger.info(
            "preset %s: %d páginas em %d chunks de até %d",
            preset_name, total_pages, len(plan), plan.chunk_size,
        )

        results: List[ChunkResult] = []
        try:
            for index, page_range in enumerate(plan):
                self._ensure_not_cancelled(options, "compressing")
                results.append(
                    self._run_chunk(index, page_range, source, plan.is_single_chunk,
                                    config, options, tracker)
                )

            self._ensure_not_cancelled(options, "merging")
            tracker.report_merging(0, f"Unindo {len(results)} chunks...")
            merged = self.merge_coordinator.merge(
                results,
                metadata,
                options.merge_strategy,
                options.timeout_ms,
                on_progress=lambda m: tracker.report_merging(m.percent, m.message),
            )
        finally:
            release_buffers(results)

        _validate_output(merged, total_pages, "PDF final")
        tracker.report_complete()
        return merged, len(plan)

    def _run_chunk(self, index: int, page_range: PageRange, source: bytes,
                   whole_document: bool, config, options: CompressionOptions,
                   tracker: ProgressTracker) -> ChunkResult:
        # documento de um chunk só: o próprio original vira o slice
        chunk_bytes = source if whole_document else extract_pages(
            source, page_range.start, page_range.end
        )
        if not has_enough_memory(len(chunk_bytes)):
            logger.warning(
                "pouca memória livre para o chunk %d (%d bytes); o worker pode estourar",
                index, len(chunk_bytes),
            )
        elif is_memory_pressure():
            logger.warning("memória do host acima de 80%% antes do chunk %d", index)
        task = ChunkTask(index=index, page_range=page_range, source_slice=chunk_bytes)
        del chunk_bytes

        tracker.start_chunk(index)
        result = self.unit_manager.run_chunk(task, config, options.timeout_ms)
        _validate_output(result.compressed_bytes, page_range.length, f"Chunk {index}")
        tracker.complete_chunk(index, result.processing_time_ms)
        return result

    @staticmethod
    def _ensure_not_cancelled(options: CompressionOptions, phase: str) -> None:
        if options.cancel_event is not None and options.cancel_event.is_set():
            raise CancelledError(f"Job cancelado durante {phase}", phase=phase)
