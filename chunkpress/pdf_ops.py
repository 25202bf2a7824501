"""
chunkpress/pdf_ops.py

Serviço de documento (codec) puro, sobre pypdf:
- Validação rápida (magic bytes) e contagem de páginas
- Extração de faixa de páginas [start, end) como PDF novo
- Leitura de metadados (title/author/...)
- União/merge ordenada de vários PDFs, aplicando metadados uma única vez

Todas as funções trabalham com bytes e metadados simples.
"""

from __future__ import annotations

import io
import logging
from typing import Dict, Iterable, Optional

from pypdf import PdfReader, PdfWriter

from .errors import InvalidInputError, OutputValidationError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"

# chave do dicionário público -> chave do Info dict do PDF
METADATA_KEYS: Dict[str, str] = {
    "title": "/Title",
    "author": "/Author",
    "subject": "/Subject",
    "keywords": "/Keywords",
    "creator": "/Creator",
    "producer": "/Producer",
}


def is_valid_pdf(data: bytes) -> bool:
    return len(data) >= 4 and bytes(data[:4]) == PDF_MAGIC


def _open_reader(data: bytes) -> PdfReader:
    reader = PdfReader(io.BytesIO(data), strict=False)
    if reader.is_encrypted:
        try:
            reader.decrypt("")
        except Exception as e:
            raise InvalidInputError(f"PDF criptografado: {e}") from e
    return reader


def count_pages(data: bytes) -> int:
    """Conta as páginas de um PDF.

    Args:
        data (bytes): PDF de entrada.

    Returns:
        int: Número de páginas.

    Raises:
        InvalidInputError: se o PDF não puder ser lido.
    """
    if not is_valid_pdf(data):
        raise InvalidInputError("Not a valid PDF: cabeçalho %PDF ausente")
    try:
        return len(_open_reader(data).pages)
    except InvalidInputError:
        raise
    except Exception as e:
        raise InvalidInputError(f"Falha ao contar páginas: {e}") from e


def extract_pages(data: bytes, start: int, end: int) -> bytes:
    """Gera um novo PDF contendo apenas as páginas [start, end).

    `end` é recortado ao total de páginas; nunca ultrapassa o documento.
    """
    try:
        reader = _open_reader(data)
        stop = min(end, len(reader.pages))
        writer = PdfWriter()
        for i in range(start, stop):
            writer.add_page(reader.pages[i])
        buf = io.BytesIO()
        writer.write(buf)
        return buf.getvalue()
    except InvalidInputError:
        raise
    except Exception as e:
        raise InvalidInputError(f"Falha ao extrair páginas {start}-{end}: {e}") from e


def extract_metadata(data: bytes) -> Dict[str, str]:
    """Lê os metadados do documento; devolve {} se não der para ler."""
    try:
        info = _open_reader(data).metadata
    except Exception as e:
        logger.warning("Falha ao extrair metadados: %s", e)
        return {}
    if not info:
        return {}
    out: Dict[str, str] = {}
    for key, pdf_key in METADATA_KEYS.items():
        value = info.get(pdf_key)
        if value:
            out[key] = str(value)
    return out


def merge_pdfs(chunks: Iterable[bytes], metadata: Optional[Dict[str, str]] = None) -> bytes:
    """Une PDFs na ordem recebida em um único PDF.

    Args:
        chunks (Iterable[bytes]): PDFs a unir, já na ordem final.
        metadata (Dict[str, str] | None): title/author/... aplicados ao resultado.

    Returns:
        bytes: PDF final unificado.
    """
    writer = PdfWriter()
    for pos, chunk in enumerate(chunks):
        if not is_valid_pdf(chunk):
            raise OutputValidationError(f"Chunk {pos} corrupt: cabeçalho %PDF ausente")
        try:
            reader = _open_reader(chunk)
            for page in reader.pages:
                writer.add_page(page)
        except Exception as e:
            raise OutputValidationError(f"Chunk {pos} corrupt: {e}") from e

    if metadata:
        info = {METADATA_KEYS[k]: v for k, v in metadata.items() if k in METADATA_KEYS and v}
        if info:
            writer.add_metadata(info)

    out_buf = io.BytesIO()
    writer.write(out_buf)
    return out_buf.getvalue()
