"""
chunkpress/progress.py

Agregador de progresso: converte eventos discretos (mudança de fase, chunk
concluído) em um escalar 0-100 monotônico por fase, mais ETA.

Pesos fixos por fase (não por tempo):
- planning:       [0, 10]
- compressing:    [10, 90]  (linear em completed/total)
- merging:        [90, 100] (sub-progresso do merge comprimido nos 10 finais)
- error-recovery: mesma posição de quando a falha ocorreu
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Deque, List, Optional

from .engine_config import ETA_WINDOW
from .schemas import ProgressCallback, ProgressEvent, ProgressPhase

logger = logging.getLogger(__name__)

PLANNING_SPAN = (0.0, 10.0)
COMPRESSING_SPAN = (10.0, 90.0)
MERGING_SPAN = (90.0, 100.0)


def _scale(span: tuple, fraction: float) -> float:
    lo, hi = span
    fraction = max(0.0, min(1.0, fraction))
    return lo + (hi - lo) * fraction


@dataclass
class ProgressState:
    phase: ProgressPhase = "planning"
    total_chunks: int = 0
    completed_chunks: int = 0
    chunk_durations: Deque[int] = field(default_factory=deque)
    progress: float = 0.0


class ProgressTracker:
    """Escritor único: só o orquestrador (e os callbacks dos workers) atualizam."""

    def __init__(self, on_progress: Optional[ProgressCallback] = None, eta_window: int = ETA_WINDOW) -> None:
        self._listeners: List[ProgressCallback] = []
        self._eta_window = max(1, eta_window)
        self._state = self._fresh_state()
        self._started_at = time.monotonic()
        if on_progress is not None:
            self.on_event(on_progress)

    def _fresh_state(self) -> ProgressState:
        return ProgressState(chunk_durations=deque(maxlen=self._eta_window))

    # ---------- assinatura ----------
    def on_event(self, callback: ProgressCallback) -> None:
        self._listeners.append(callback)

    @property
    def state(self) -> ProgressState:
        return replace(self._state, chunk_durations=deque(self._state.chunk_durations, maxlen=self._eta_window))

    @property
    def phase(self) -> ProgressPhase:
        return self._state.phase

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started_at) * 1000)

    # ---------- ciclo de vida ----------
    def begin_pass(self) -> None:
        """Zera contadores para uma nova passada completa (retry de preset)."""
        self._state = self._fresh_state()

    def set_total_chunks(self, total: int) -> None:
        self._state.total_chunks = total

    # ---------- eventos ----------
    def report_planning(self, percent: float, message: Optional[str] = None) -> None:
        self._emit("planning", _scale(PLANNING_SPAN, percent / 100.0), message=message)

    def start_chunk(self, chunk_index: int) -> None:
        self._emit(
            "compressing",
            self._compressing_position(),
            current_chunk=chunk_index + 1,
            total_chunks=self._state.total_chunks,
        )

    def complete_chunk(self, chunk_index: int, duration_ms: int) -> None:
        self._state.completed_chunks += 1
        self._state.chunk_durations.append(int(duration_ms))
        self._emit(
            "compressing",
            self._compressing_position(),
            current_chunk=chunk_index + 1,
            total_chunks=self._state.total_chunks,
            estimated_time_remaining_ms=self.estimate_time_remaining(),
        )

    def report_merging(self, percent: float, message: Optional[str] = None) -> None:
        self._emit("merging", _scale(MERGING_SPAN, percent / 100.0), message=message)

    def report_complete(self) -> None:
        self._emit("merging", MERGING_SPAN[1])

    def report_error_recovery(self, message: str) -> None:
        self._emit("error-recovery", self._state.progress, message=message)

    # ---------- cálculos ----------
    def _compressing_position(self) -> float:
        total = self._state.total_chunks
        if total <= 0:
            return COMPRESSING_SPAN[0]
        return _scale(COMPRESSING_SPAN, self._state.completed_chunks / total)

    def estimate_time_remaining(self) -> Optional[int]:
        durations = self._state.chunk_durations
        remaining = self._state.total_chunks - self._state.completed_chunks
        if not durations or remaining <= 0:
            return None
        avg = sum(durations) / len(durations)
        return int(round(avg * remaining))

    def _emit(self, phase: ProgressPhase, value: float, **extra) -> None:
        # dentro da mesma fase o valor nunca regride
        if phase == self._state.phase:
            value = max(value, self._state.progress)
        self._state.phase = phase
        self._state.progress = value

        event = ProgressEvent(phase=phase, progress=round(value, 4), **extra)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("callback de progresso falhou (fase %s)", phase)
