"""
chunkpress/planner.py

Planejamento de chunks: decide o tamanho e as fronteiras.
- `calculate_chunk_size(total_pages, file_size, ...)`: default 10, reduz para 5
  em documentos digitalizados (> 5 MiB/página), aparelhos com pouca memória
  ou documentos muito longos (> 500 páginas).
- `plan_chunks(...) -> ChunkPlan`: particiona [0, total_pages) sem buracos nem
  sobreposição; o último chunk é recortado.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional

from .engine_config import CONSTRAINED_CHUNK_SIZE, DEFAULT_CHUNK_SIZE
from .errors import InvalidInputError
from .schemas import PageRange

SCANNED_PAGE_BYTES = 5 * 1024 * 1024
LONG_DOCUMENT_PAGES = 500


@dataclass(frozen=True)
class ChunkPlan:
    total_pages: int
    chunk_size: int
    ranges: List[PageRange]

    def __len__(self) -> int:
        return len(self.ranges)

    def __iter__(self) -> Iterator[PageRange]:
        return iter(self.ranges)

    @property
    def is_single_chunk(self) -> bool:
        return len(self.ranges) == 1


def calculate_chunk_size(
    total_pages: int,
    file_size_bytes: int,
    is_constrained_device: bool = False,
    default_chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    if total_pages <= 0:
        raise InvalidInputError(f"Documento sem páginas (total_pages={total_pages})")
    avg_page_size = file_size_bytes / total_pages
    if (avg_page_size > SCANNED_PAGE_BYTES
            or is_constrained_device
            or total_pages > LONG_DOCUMENT_PAGES):
        return min(CONSTRAINED_CHUNK_SIZE, default_chunk_size)
    return default_chunk_size


def plan_chunks(
    total_pages: int,
    file_size_bytes: int,
    requested_chunk_size: Optional[int] = None,
    is_constrained_device: bool = False,
) -> ChunkPlan:
    """Monta o plano de chunks.

    Args:
        total_pages (int): Total de páginas do documento.
        file_size_bytes (int): Tamanho do documento em bytes.
        requested_chunk_size (int | None): Páginas por chunk; auto se None.
        is_constrained_device (bool): Host com pouca memória.

    Returns:
        ChunkPlan: faixas [start, end) em ordem.
    """
    if total_pages <= 0:
        raise InvalidInputError(f"Documento sem páginas (total_pages={total_pages})")
    if requested_chunk_size is not None and requested_chunk_size <= 0:
        raise InvalidInputError(f"chunk_size inválido: {requested_chunk_size}")

    size = requested_chunk_size or calculate_chunk_size(
        total_pages, file_size_bytes, is_constrained_device
    )
    ranges = [
        PageRange(start, min(start + size, total_pages))
        for start in range(0, total_pages, size)
    ]
    return ChunkPlan(total_pages=total_pages, chunk_size=size, ranges=ranges)
