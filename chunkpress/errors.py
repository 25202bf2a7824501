"""
chunkpress/errors.py

Taxonomia de erros do orquestrador.
- `ErrorKind`: tipo explícito anexado na origem (extração, engine, transporte).
- `ProcessingError` e subclasses: erros internos com `kind` e `phase`.
- `CompressionError`: erro público (preset tentado, tamanho original, fase, causa).
- `classify_error(exc)`: resolve o `ErrorKind` de qualquer exceção.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid-input"
    OUT_OF_MEMORY = "out-of-memory"
    ENGINE_LOAD_FAILED = "engine-load-failed"
    EXECUTION_UNIT_ERROR = "execution-unit-error"
    TIMEOUT = "timeout"
    VALIDATION_FAILED = "validation-failed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


RECOVERABLE_KINDS = frozenset({
    ErrorKind.OUT_OF_MEMORY,
    ErrorKind.TIMEOUT,
    ErrorKind.EXECUTION_UNIT_ERROR,
    ErrorKind.UNKNOWN,
})


class ProcessingError(RuntimeError):
    kind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, kind: Optional[ErrorKind] = None, phase: Optional[str] = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = ErrorKind(kind)
        self.phase = phase


class InvalidInputError(ProcessingError):
    kind = ErrorKind.INVALID_INPUT


class EngineLoadError(ProcessingError):
    kind = ErrorKind.ENGINE_LOAD_FAILED


class EngineError(ProcessingError):
    """Falha reportada pelo worker (o `kind` vem da própria mensagem)."""


class TransportError(ProcessingError):
    kind = ErrorKind.EXECUTION_UNIT_ERROR


class UnitTimeoutError(ProcessingError):
    kind = ErrorKind.TIMEOUT


class OutputValidationError(ProcessingError):
    kind = ErrorKind.VALIDATION_FAILED


class CancelledError(ProcessingError):
    kind = ErrorKind.CANCELLED


class CompressionError(Exception):
    """Erro estruturado devolvido ao chamador."""

    def __init__(
        self,
        message: str,
        attempted_preset: str,
        original_size: int,
        phase: Optional[str] = None,
        kind: ErrorKind = ErrorKind.UNKNOWN,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.attempted_preset = attempted_preset
        self.original_size = original_size
        self.phase = phase
        self.kind = kind

    def __repr__(self) -> str:
        return (
            f"CompressionError({self.message!r}, preset={self.attempted_preset!r}, "
            f"original_size={self.original_size}, phase={self.phase!r}, kind={self.kind.value!r})"
        )


# Heurística legada por substring: só para exceções de terceiros sem `kind`.
_MESSAGE_HINTS = (
    (("invalid pdf", "not a valid pdf"), ErrorKind.INVALID_INPUT),
    (("out of memory", "memory", "heap"), ErrorKind.OUT_OF_MEMORY),
    (("wasm", "engine load"), ErrorKind.ENGINE_LOAD_FAILED),
    (("worker",), ErrorKind.EXECUTION_UNIT_ERROR),
    (("timeout", "timed out"), ErrorKind.TIMEOUT),
    (("validation", "corrupt"), ErrorKind.VALIDATION_FAILED),
)


def classify_error(exc: BaseException) -> ErrorKind:
    if isinstance(exc, (ProcessingError, CompressionError)):
        return exc.kind
    if isinstance(exc, MemoryError):
        return ErrorKind.OUT_OF_MEMORY
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    text = str(exc).lower()
    for needles, kind in _MESSAGE_HINTS:
        if any(n in text for n in needles):
            return kind
    return ErrorKind.UNKNOWN


def is_recoverable(kind: ErrorKind) -> bool:
    return ErrorKind(kind) in RECOVERABLE_KINDS


def user_message(kind: ErrorKind, preset: str) -> str:
    """Mensagem amigável para o chamador."""
    kind = ErrorKind(kind)
    if kind is ErrorKind.INVALID_INPUT:
        return "O arquivo enviado não é um PDF válido ou está corrompido."
    if kind is ErrorKind.OUT_OF_MEMORY:
        return (f"A compressão com o preset {preset} excedeu a memória disponível. "
                "Tente um preset mais leve ou chunks menores.")
    if kind is ErrorKind.ENGINE_LOAD_FAILED:
        return "Falha ao carregar o motor de compressão. Verifique a instalação do PyMuPDF."
    if kind is ErrorKind.EXECUTION_UNIT_ERROR:
        return f"O worker falhou durante a compressão com o preset {preset}."
    if kind is ErrorKind.TIMEOUT:
        return (f"A compressão com o preset {preset} estourou o tempo limite. "
                "Tente um preset mais leve ou chunks menores.")
    if kind is ErrorKind.VALIDATION_FAILED:
        return "O PDF comprimido não passou na validação. O resultado pode estar corrompido."
    if kind is ErrorKind.CANCELLED:
        return "A compressão foi cancelada."
    return "Ocorreu um erro inesperado durante a compressão."
