"""
chunkpress/schemas.py

Modelos de entrada/saída e o protocolo dos workers.
Públicos (pydantic):
- `CompressionOptions`: opções de `compress()`.
- `ProgressEvent`: evento único derivado pelo ProgressTracker.
- `CompressionStats` / `CompressionResult`: saída final.
Protocolo (pydantic, discriminado por `type`):
- `compress-chunk` -> `chunk-complete` | `error`
- `merge-chunks`   -> `merge-complete` | `error`
- `progress` pode preceder qualquer resposta terminal.
Internos (dataclasses): `PageRange`, `ChunkTask`, `ChunkResult`, `CompressionJob`.
"""

# chunkpress/schemas.py
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .engine_config import DEFAULT_TIMEOUT_MS
from .errors import ErrorKind

ProgressPhase = Literal["planning", "compressing", "merging", "error-recovery"]
MergeStrategy = Literal["isolated", "inline"]


# ===========================
#   API PÚBLICA
# ===========================
class ProgressEvent(BaseModel):
    phase: ProgressPhase
    progress: float = Field(ge=0, le=100)
    current_chunk: Optional[int] = None          # 1-based
    total_chunks: Optional[int] = None
    estimated_time_remaining_ms: Optional[int] = None
    message: Optional[str] = None


ProgressCallback = Callable[[ProgressEvent], None]


class CompressionOptions(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    preset: str
    chunk_size: Optional[int] = Field(default=None, gt=0)
    on_progress: Optional[Callable[[ProgressEvent], None]] = None
    graceful_degradation: bool = True
    preserve_metadata: Optional[bool] = None
    target_dpi: Optional[int] = Field(default=None, gt=0)
    quality: Optional[float] = Field(default=None, gt=0, le=1)
    allow_rasterization: Optional[bool] = None
    merge_strategy: MergeStrategy = "isolated"
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)
    constrained_device: Optional[bool] = None
    cancel_event: Optional[threading.Event] = None

    def preset_overrides(self) -> Dict[str, Any]:
        return {
            "target_dpi": self.target_dpi,
            "quality": self.quality,
            "preserve_metadata": self.preserve_metadata,
            "allow_rasterization": self.allow_rasterization,
        }


class CompressionStats(BaseModel):
    original_size: int
    compressed_size: int
    ratio: float
    bytes_saved: int
    percentage_saved: float
    preset_used: str
    processing_time_ms: int
    chunks_processed: int

    @classmethod
    def build(cls, original_size: int, compressed_size: int, preset_used: str,
              processing_time_ms: int, chunks_processed: int) -> "CompressionStats":
        saved = original_size - compressed_size
        return cls(
            original_size=original_size,
            compressed_size=compressed_size,
            ratio=(compressed_size / original_size) if original_size else 1.0,
            bytes_saved=saved,
            percentage_saved=(saved / original_size * 100) if original_size else 0.0,
            preset_used=preset_used,
            processing_time_ms=processing_time_ms,
            chunks_processed=chunks_processed,
        )


class CompressionResult(BaseModel):
    artifact: bytes
    stats: CompressionStats
    warning: Optional[str] = None


# ===========================
#   PROTOCOLO DOS WORKERS
# ===========================
class ChunkEngineOptions(BaseModel):
    target_dpi: Optional[int] = None
    quality: Optional[float] = None
    preserve_metadata: Optional[bool] = None
    allow_rasterization: Optional[bool] = None


class CompressChunkMessage(BaseModel):
    type: Literal["compress-chunk"] = "compress-chunk"
    chunk_index: int
    pdf_bytes: bytes
    preset: str
    options: ChunkEngineOptions = Field(default_factory=ChunkEngineOptions)


class ChunkStats(BaseModel):
    original_size: int
    compressed_size: int
    processing_time_ms: int


class ChunkCompleteMessage(BaseModel):
    type: Literal["chunk-complete"] = "chunk-complete"
    chunk_index: int
    compressed_bytes: bytes
    stats: ChunkStats


class MergeChunksMessage(BaseModel):
    type: Literal["merge-chunks"] = "merge-chunks"
    chunks: List[bytes]
    metadata: Optional[Dict[str, str]] = None


class MergeStats(BaseModel):
    original_size: int
    compressed_size: int
    ratio: float


class MergeCompleteMessage(BaseModel):
    type: Literal["merge-complete"] = "merge-complete"
    merged_bytes: bytes
    stats: MergeStats


class WorkerErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str
    kind: ErrorKind = ErrorKind.UNKNOWN
    phase: Optional[ProgressPhase] = None


class WorkerProgressMessage(BaseModel):
    type: Literal["progress"] = "progress"
    percent: float
    message: Optional[str] = None


WorkerMessage = Annotated[
    Union[
        CompressChunkMessage,
        ChunkCompleteMessage,
        MergeChunksMessage,
        MergeCompleteMessage,
        WorkerErrorMessage,
        WorkerProgressMessage,
    ],
    Field(discriminator="type"),
]

_MESSAGE_ADAPTER: TypeAdapter = TypeAdapter(WorkerMessage)



def parse_worker_message(raw: Any) -> BaseModel:
    """Valida um dict cru vindo do pipe (levanta pydantic.ValidationError)."""
    return _MESSAGE_ADAPTER.validate_python(raw)


# ===========================
#   ESTRUTURAS INTERNAS
# ===========================
@dataclass(frozen=True)
class PageRange:
    start: int   # inclusivo, 0-based
    end: int     # exclusivo

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass
class ChunkTask:
    index: int
    page_range: PageRange
    source_slice: Optional[bytes]

    def take_source(self) -> bytes:
        """Move o slice para fora da task (a task deixa de referenciá-lo)."""
        data = self.source_slice
        if data is None:
            raise ValueError(f"Chunk {self.index}: slice já foi transferido")
        self.source_slice = None
        return data


@dataclass
class ChunkResult:
    index: int
    compressed_bytes: Optional[bytes]
    original_size: int
    compressed_size: int
    processing_time_ms: int

    def release(self) -> Optional[bytes]:
        data = self.compressed_bytes
        self.compressed_bytes = None
        return data


@dataclass
class CompressionJob:
    source_bytes: Optional[bytes]
    preset_ordering: List[str]
    options: CompressionOptions
    original_size: int
    current_preset: str = ""
    started_at: float = 0.0

    def __post_init__(self) -> None:
        if not self.current_preset and self.preset_ordering:
            self.current_preset = self.preset_ordering[0]

    @property
    def requested_preset(self) -> str:
        return self.options.preset
