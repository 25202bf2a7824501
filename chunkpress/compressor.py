"""
chunkpress/compressor.py

Motor de compressão (caixa-preta) sobre PyMuPDF:
- 'lossless': só reescrita estrutural (garbage/deflate/clean)
- com DPI/qualidade: rasteriza páginas imagem-only e copia as demais ("smart")
- com `allow_rasterization`: rasteriza todas as páginas ("all") via img2pdf
- guard-rail: se o resultado não for menor, devolve o original

Roda dentro do worker; nunca é chamado direto pelo orquestrador.
"""

from __future__ import annotations

import io
import logging
import math
from typing import Any, List, cast

import fitz  # PyMuPDF
import img2pdf
from PIL import Image

from .engine_config import PresetConfig
from .errors import InvalidInputError, ProcessingError, ErrorKind

logger = logging.getLogger(__name__)

MAX_MEGAPIXELS = 80


# ===========================
#   HELPERS
# ===========================
def _cap_dpi_for_page(page, dpi, max_megapixels=MAX_MEGAPIXELS):
    """Limita o DPI efetivo para evitar > ~80MP por página."""
    r = page.rect
    px = (r.width * dpi / 72.0) * (r.height * dpi / 72.0)
    max_px = max_megapixels * 1_000_000
    if px <= max_px:
        return dpi
    scale = math.sqrt(max_px / px)
    return max(72, int(dpi * scale))


def _is_image_only(page: "fitz.Page") -> bool:
    """Detecta se uma página é 'imagem-only' (sem texto e sem vetores)."""
    p = cast(Any, page)
    try:
        has_text = bool(p.get_text("text").strip())
    except Exception:
        has_text = False
    try:
        has_vectors = len(p.get_drawings()) > 0
    except Exception:
        has_vectors = False
    return (not has_text) and (not has_vectors)


def _render_jpeg(page: "fitz.Page", dpi: int, jpeg_q: int) -> bytes:
    """Renderiza a página e re-encoda em JPEG (Pillow), gravando o DPI no arquivo."""
    dpi_eff = _cap_dpi_for_page(page, dpi)
    mat = fitz.Matrix(dpi_eff / 72.0, dpi_eff / 72.0)
    pix = page.get_pixmap(matrix=mat, alpha=False, colorspace=fitz.csRGB)  # pyright: ignore[reportAttributeAccessIssue]
    img = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
    del pix

    buf = io.BytesIO()
    img.save(buf, "JPEG", quality=jpeg_q, optimize=True, progressive=True, dpi=(dpi_eff, dpi_eff))
    img.close()
    return buf.getvalue()


def _strip_metadata(doc: "fitz.Document") -> None:
    doc.set_metadata({})
    try:
        doc.del_xml_metadata()
    except Exception:
        logger.debug("documento sem XMP para remover")


def _write(doc: "fitz.Document") -> bytes:
    return doc.tobytes(garbage=4, deflate=True, clean=True)  # pyright: ignore[reportArgumentType]


# ===========================
#   MODOS
# ===========================
def _compress_structural(src: "fitz.Document", preset: PresetConfig) -> bytes:
    if not preset.preserve_metadata:
        _strip_metadata(src)
    return _write(src)


def _compress_smart(src: "fitz.Document", preset: PresetConfig) -> bytes:
    dpi = cast(int, preset.target_dpi or 150)
    jpeg_q = preset.jpeg_quality or 65
    dst = fitz.open()
    try:
        for i in range(src.page_count):
            page = src.load_page(i)
            if _is_image_only(page):
                img_bytes = _render_jpeg(page, dpi, jpeg_q)
                rect = page.rect
                p = dst.new_page(width=rect.width, height=rect.height)  # pyright: ignore[reportAttributeAccessIssue]
                p.insert_image(rect, stream=img_bytes)
            else:
                dst.insert_pdf(src, from_page=i, to_page=i)
        if preset.preserve_metadata:
            dst.set_metadata(src.metadata or {})
        else:
            _strip_metadata(dst)
        return _write(dst)
    finally:
        dst.close()


def _compress_all(src: "fitz.Document", preset: PresetConfig) -> bytes:
    dpi = cast(int, preset.target_dpi or 120)
    jpeg_q = preset.jpeg_quality or 40
    jpg_pages: List[bytes] = []
    for i in range(src.page_count):
        jpg_pages.append(_render_jpeg(src.load_page(i), dpi, jpeg_q))
    out = cast(bytes, img2pdf.convert(jpg_pages))
    if not preset.preserve_metadata:
        return out
    # img2pdf não carrega o Info dict; reaplica com PyMuPDF
    doc = fitz.open("pdf", out)
    try:
        doc.set_metadata(src.metadata or {})
        return _write(doc)
    finally:
        doc.close()


# ===========================
#   COMPRESSÃO REAL
# ===========================
def compress_document(pdf_bytes: bytes, preset: PresetConfig) -> bytes:
    """Aplica compressão real a um PDF conforme o preset.

    Respeita guard-rails: se o resultado não for menor, devolve o original.
    Exceção: com `preserve_metadata=False` o original nunca volta cru; a saída
    reescrita (já sem Info/XMP) é devolvida mesmo sem ganho de tamanho.

    Args:
        pdf_bytes (bytes): PDF de entrada (um chunk).
        preset (PresetConfig): preset já resolvido (com overrides).

    Returns:
        bytes: PDF possivelmente comprimido (ou original).
    """
    try:
        src = fitz.open("pdf", pdf_bytes)
    except Exception as e:
        raise InvalidInputError(f"Invalid PDF: {e}") from e

    try:
        if preset.allow_rasterization:
            out_bytes = _compress_all(src, preset)
        elif preset.target_dpi is not None or preset.quality is not None:
            out_bytes = _compress_smart(src, preset)
        else:
            out_bytes = _compress_structural(src, preset)
    except MemoryError as e:
        raise ProcessingError(f"Out of memory: {e}", kind=ErrorKind.OUT_OF_MEMORY) from e
    finally:
        src.close()

    logger.debug(
        "preset %s: %d -> %d bytes", preset.name, len(pdf_bytes), len(out_bytes)
    )
    if len(out_bytes) < len(pdf_bytes):
        return out_bytes
    # sem ganho: o original só volta se os metadados dele podem ficar
    if preset.preserve_metadata:
        return pdf_bytes
    return out_bytes
