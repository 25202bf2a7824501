"""
chunkpress/degradation.py

Máquina de estados da degradação graciosa.

Estados: um por preset da cadeia, mais SUCCEEDED e EXHAUSTED (terminais).
- sucesso na passada atual            -> SUCCEEDED
- erro não recuperável                -> EXHAUSTED (fatal), mesmo com degradação ligada
- erro recuperável, degradação off    -> EXHAUSTED (fatal)
- erro recuperável, há preset mais leve -> re-executa a passada INTEIRA nele
- erro recuperável, sem preset mais leve -> EXHAUSTED (devolve o original)

Não existe retry por chunk: uma falha em qualquer chunk invalida a passada
toda daquele preset, e o artefato final sai sempre de um único preset.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

from .engine_config import get_preset_config
from .errors import ErrorKind, classify_error, is_recoverable
from .progress import ProgressTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DegradationStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass
class DegradationState:
    tried_presets: List[str] = field(default_factory=list)
    last_error: Optional[BaseException] = None
    last_kind: Optional[ErrorKind] = None
    status: DegradationStatus = DegradationStatus.RUNNING


@dataclass
class DegradationOutcome(Generic[T]):
    status: DegradationStatus
    state: DegradationState
    value: Optional[T] = None
    preset_used: Optional[str] = None
    fatal: bool = False
    warning: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is DegradationStatus.SUCCEEDED


class DegradationEngine:
    """Percorre a cadeia de presets do job (o primeiro é o pedido)."""

    def __init__(self, preset_chain: Sequence[str], enabled: bool = True,
                 tracker: Optional[ProgressTracker] = None) -> None:
        if not preset_chain:
            raise ValueError("Cadeia de presets vazia")
        self.preset_chain: List[str] = [get_preset_config(p).name for p in preset_chain]
        self.requested_preset = self.preset_chain[0]
        self.enabled = enabled
        self.tracker = tracker
        self.state = DegradationState()

    def _next_preset(self, preset: str) -> Optional[str]:
        pos = self.preset_chain.index(preset) + 1
        return self.preset_chain[pos] if pos < len(self.preset_chain) else None

    def run(self, attempt: Callable[[str], T]) -> DegradationOutcome[T]:
        """Executa `attempt(preset)` descendo a cadeia de presets até dar certo."""
        current: Optional[str] = self.requested_preset
        while current is not None:
            self.state.tried_presets.append(current)
            try:
                value = attempt(current)
            except Exception as exc:
                current = self._on_failure(current, exc)
                continue

            self.state.status = DegradationStatus.SUCCEEDED
            warning = None
            if current != self.requested_preset:
                warning = f"O preset '{self.requested_preset}' falhou; usado '{current}' no lugar."
            return DegradationOutcome(
                status=DegradationStatus.SUCCEEDED,
                state=self.state,
                value=value,
                preset_used=current,
                warning=warning,
            )

        self.state.status = DegradationStatus.EXHAUSTED
        kind = self.state.last_kind or ErrorKind.UNKNOWN
        fatal = not (self.enabled and is_recoverable(kind))
        return DegradationOutcome(
            status=DegradationStatus.EXHAUSTED,
            state=self.state,
            fatal=fatal,
            warning=None if fatal else "A compressão falhou em todos os presets. Devolvendo o PDF original.",
        )

    def _on_failure(self, preset: str, exc: Exception) -> Optional[str]:
        kind = classify_error(exc)
        self.state.last_error = exc
        self.state.last_kind = kind
        logger.warning("passada com preset %s falhou (%s): %s", preset, kind.value, exc)

        if not is_recoverable(kind) or not self.enabled:
            return None

        fallback = self._next_preset(preset)
        if fallback is None:
            if self.tracker is not None:
                self.tracker.report_error_recovery(
                    "Todas as tentativas de compressão falharam. Devolvendo o PDF original."
                )
            return None

        if self.tracker is not None:
            self.tracker.report_error_recovery(
                f"Compressão {preset} falhou ({kind.value}). Tentando o preset {fallback}..."
            )
        return fallback
