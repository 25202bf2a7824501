"""
chunkpress/merge.py

Coordenação do merge final.
- 1 chunk: passa direto (no-op).
- 'isolated': processo dedicado ao merge (mesma disciplina de descarte dos chunks).
- 'inline': merge síncrono no próprio processo via `pdf_ops.merge_pdfs`.
Os resultados são sempre reordenados pelo índice do chunk antes de unir.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Dict, List, Optional, Sequence

from .engine_config import DEFAULT_TIMEOUT_MS
from .errors import TransportError
from .pdf_ops import merge_pdfs
from .schemas import ChunkResult, MergeChunksMessage, MergeCompleteMessage
from .units import ExecutionUnit, ProgressHook, UnitFactory, exchange
from .workers import merge_worker_main

logger = logging.getLogger(__name__)

MERGE_STRATEGIES = ("isolated", "inline")


class MergeCoordinator:
    def __init__(self, unit_factory: Optional[UnitFactory] = None) -> None:
        self._unit_factory: UnitFactory = unit_factory or partial(
            ExecutionUnit, merge_worker_main, name="chunkpress-merge"
        )

    @staticmethod
    def _ordered_payload(results: Sequence[ChunkResult]) -> List[bytes]:
        chunks: List[bytes] = []
        for res in sorted(results, key=lambda r: r.index):
            data = res.release()
            if data is None:
                raise ValueError(f"Chunk {res.index}: bytes já liberados")
            chunks.append(data)
        return chunks

    def merge(
        self,
        results: Sequence[ChunkResult],
        metadata: Optional[Dict[str, str]] = None,
        strategy: str = "isolated",
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        on_progress: Optional[ProgressHook] = None,
    ) -> bytes:
        """Une os resultados na ordem original das páginas.

        Os bytes de cada `ChunkResult` são transferidos (o resultado fica vazio).
        """
        if strategy not in MERGE_STRATEGIES:
            raise TypeError(f"Estratégia de merge inválida: {strategy!r}")
        if not results:
            raise ValueError("Nada para unir")

        if len(results) == 1:
            data = results[0].release()
            if data is None:
                raise ValueError(f"Chunk {results[0].index}: bytes já liberados")
            return data

        if strategy == "inline":
            return merge_pdfs(self._ordered_payload(results), metadata)

        message = exchange(
            self._unit_factory,
            MergeChunksMessage(chunks=self._ordered_payload(results), metadata=metadata).model_dump(),
            timeout_ms,
            on_progress,
            label="Merge",
        )
        if not isinstance(message, MergeCompleteMessage):
            raise TransportError(f"Merge: resposta inesperada '{getattr(message, 'type', '?')}'")
        logger.debug(
            "merge: %d -> %d bytes (ratio %.3f)",
            message.stats.original_size, message.stats.compressed_size, message.stats.ratio,
        )
        return message.merged_bytes
