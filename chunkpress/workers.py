"""
chunkpress/workers.py

Pontos de entrada dos processos worker (um pedido por processo, depois sai).
- `compression_worker_main(conn)`: compress-chunk -> chunk-complete | error
- `merge_worker_main(conn)`:       merge-chunks   -> merge-complete | error

Cada worker:
1. Recebe exatamente uma mensagem
2. Carrega o motor (cache por processo)
3. Executa o trabalho, emitindo `progress` no caminho
4. Devolve uma única resposta terminal, já com `kind` explícito em caso de erro
"""

from __future__ import annotations

import logging
import time

from pydantic import BaseModel

from .engine import load_engine
from .engine_config import get_preset_config_with_overrides
from .errors import TransportError, classify_error
from .pdf_ops import merge_pdfs
from .schemas import (
    ChunkCompleteMessage,
    ChunkStats,
    CompressChunkMessage,
    MergeChunksMessage,
    MergeCompleteMessage,
    MergeStats,
    WorkerErrorMessage,
    WorkerProgressMessage,
    parse_worker_message,
)

logger = logging.getLogger(__name__)


def _post(conn, message: BaseModel) -> None:
    conn.send(message.model_dump())


def _post_progress(conn, percent: float, message: str | None = None) -> None:
    _post(conn, WorkerProgressMessage(percent=percent, message=message))


def _error_reply(exc: BaseException, phase: str) -> WorkerErrorMessage:
    return WorkerErrorMessage(
        message=str(exc) or type(exc).__name__,
        kind=classify_error(exc),
        phase=phase,  # type: ignore[arg-type]
    )


# ===========================
#   COMPRESSÃO DE CHUNK
# ===========================
def handle_compress_chunk(conn, raw: dict) -> None:
    started = time.monotonic()
    try:
        msg = parse_worker_message(raw)
        if not isinstance(msg, CompressChunkMessage):
            raise TransportError(f"worker de compressão recebeu '{msg.type}'")  # type: ignore[attr-defined]
        del raw

        _post_progress(conn, 10, "Carregando o motor de compressão...")
        engine = load_engine()
        config = get_preset_config_with_overrides(msg.preset, **msg.options.model_dump())

        _post_progress(conn, 30, f"Comprimindo chunk {msg.chunk_index + 1}...")
        original_size = len(msg.pdf_bytes)
        compressed = engine.compress(msg.pdf_bytes, config)
        msg.pdf_bytes = b""

        _post_progress(conn, 100, "Chunk comprimido")
        reply: BaseModel = ChunkCompleteMessage(
            chunk_index=msg.chunk_index,
            compressed_bytes=compressed,
            stats=ChunkStats(
                original_size=original_size,
                compressed_size=len(compressed),
                processing_time_ms=int((time.monotonic() - started) * 1000),
            ),
        )
    except Exception as e:
        logger.warning("falha no worker de compressão: %s", e)
        reply = _error_reply(e, "compressing")
    _post(conn, reply)


def compression_worker_main(conn) -> None:
    try:
        handle_compress_chunk(conn, conn.recv())
    finally:
        conn.close()


# ===========================
#   MERGE
# ===========================
def handle_merge_chunks(conn, raw: dict) -> None:
    try:
        msg = parse_worker_message(raw)
        if not isinstance(msg, MergeChunksMessage):
            raise TransportError(f"worker de merge recebeu '{msg.type}'")  # type: ignore[attr-defined]
        del raw

        _post_progress(conn, 10, "Preparando merge dos chunks...")
        total_in = sum(len(c) for c in msg.chunks)

        _post_progress(conn, 30, f"Unindo {len(msg.chunks)} chunks...")
        merged = merge_pdfs(msg.chunks, msg.metadata)
        msg.chunks = []

        _post_progress(conn, 90, "Finalizando PDF...")
        reply: BaseModel = MergeCompleteMessage(
            merged_bytes=merged,
            stats=MergeStats(
                original_size=total_in,
                compressed_size=len(merged),
                ratio=(len(merged) / total_in) if total_in else 1.0,
            ),
        )
        _post_progress(conn, 100, "Merge concluído")
    except Exception as e:
        logger.warning("falha no worker de merge: %s", e)
        reply = _error_reply(e, "merging")
    _post(conn, reply)


def merge_worker_main(conn) -> None:
    try:
        handle_merge_chunks(conn, conn.recv())
    finally:
        conn.close()
