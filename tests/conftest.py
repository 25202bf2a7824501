from __future__ import annotations

import time
from collections import deque
from typing import Any, Callable, Dict, List, Optional

import fitz
import pytest

from chunkpress.engine import reset_engine
from chunkpress.pdf_ops import merge_pdfs
from chunkpress.schemas import (
    ChunkCompleteMessage,
    ChunkStats,
    MergeCompleteMessage,
    MergeStats,
    WorkerErrorMessage,
    WorkerProgressMessage,
)

HANG = object()

Responder = Callable[[Dict[str, Any]], List[Any]]


def build_pdf(pages: int, title: Optional[str] = None, lines_per_page: int = 1) -> bytes:
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page()
        for line in range(lines_per_page):
            page.insert_text((72, 72 + line * 14), f"Page {i + 1} line {line}")
    if title:
        doc.set_metadata({"title": title, "author": "chunkpress tests"})
    data = doc.tobytes()
    doc.close()
    return data


def page_texts(data: bytes) -> List[str]:
    doc = fitz.open("pdf", data)
    try:
        return [doc.load_page(i).get_text("text") for i in range(doc.page_count)]
    finally:
        doc.close()


@pytest.fixture
def pdf_factory() -> Callable[..., bytes]:
    return build_pdf


@pytest.fixture(autouse=True)
def fresh_engine():
    reset_engine()
    yield
    reset_engine()


# ===========================
#   UNIDADES FALSAS
# ===========================
class FakeUnit:
    """Unidade roteirizada: `responder(request)` devolve as mensagens da resposta.

    Itens possíveis na lista: dicts (mensagens), exceções (levantadas no receive)
    ou HANG (fica viva sem responder).
    """

    def __init__(self, responder: Responder) -> None:
        self.responder = responder
        self.outbox: deque = deque()
        self.requests: List[Dict[str, Any]] = []
        self.started = False
        self.alive = False
        self.hang = False
        self.dispose_calls = 0

    def start(self) -> None:
        self.started = True
        self.alive = True

    def send(self, message: Dict[str, Any]) -> None:
        self.requests.append(message)
        for item in self.responder(message):
            if item is HANG:
                self.hang = True
            else:
                self.outbox.append(item)

    def receive(self, timeout: float) -> Optional[Dict[str, Any]]:
        if self.outbox:
            item = self.outbox.popleft()
            if isinstance(item, BaseException):
                raise item
            return item
        if self.hang:
            time.sleep(min(timeout, 0.01))
            return None
        self.alive = False
        return None

    def is_alive(self) -> bool:
        return self.alive

    @property
    def exitcode(self) -> Optional[int]:
        return None if self.alive else 1

    def dispose(self) -> None:
        self.dispose_calls += 1
        self.alive = False


class FakeUnitFactory:
    def __init__(self, responder: Responder) -> None:
        self.responder = responder
        self.units: List[FakeUnit] = []

    def __call__(self) -> FakeUnit:
        unit = FakeUnit(self.responder)
        self.units.append(unit)
        return unit

    @property
    def presets(self) -> List[str]:
        return [u.requests[0]["preset"] for u in self.units if u.requests]


def chunk_complete(request: Dict[str, Any], data: Optional[bytes] = None) -> Dict[str, Any]:
    payload = request["pdf_bytes"] if data is None else data
    return ChunkCompleteMessage(
        chunk_index=request["chunk_index"],
        compressed_bytes=payload,
        stats=ChunkStats(
            original_size=len(request["pdf_bytes"]),
            compressed_size=len(payload),
            processing_time_ms=5,
        ),
    ).model_dump()


def worker_error(message: str, kind: str, phase: str = "compressing") -> Dict[str, Any]:
    return WorkerErrorMessage(message=message, kind=kind, phase=phase).model_dump()  # type: ignore[arg-type]


def progress(percent: float) -> Dict[str, Any]:
    return WorkerProgressMessage(percent=percent, message=f"{percent}%").model_dump()


def echo_chunk(request: Dict[str, Any]) -> List[Any]:
    return [progress(10), progress(100), chunk_complete(request)]


def failing_chunk(presets, kind: str, chunk_index: Optional[int] = None) -> Responder:
    """Falha com `kind` nos presets dados (opcionalmente só num chunk)."""
    def responder(request: Dict[str, Any]) -> List[Any]:
        if request["preset"] in presets and chunk_index in (None, request["chunk_index"]):
            return [worker_error(f"falha simulada ({kind})", kind)]
        return echo_chunk(request)
    return responder


def merge_in_process(request: Dict[str, Any]) -> List[Any]:
    merged = merge_pdfs(request["chunks"], request["metadata"])
    total = sum(len(c) for c in request["chunks"])
    return [
        WorkerProgressMessage(percent=50).model_dump(),
        MergeCompleteMessage(
            merged_bytes=merged,
            stats=MergeStats(original_size=total, compressed_size=len(merged),
                             ratio=len(merged) / total),
        ).model_dump(),
    ]


@pytest.fixture
def echo_units() -> FakeUnitFactory:
    return FakeUnitFactory(echo_chunk)


@pytest.fixture
def merge_units() -> FakeUnitFactory:
    return FakeUnitFactory(merge_in_process)


def never_reads(conn) -> None:
    """Alvo de worker que nunca lê o pedido (simula um filho travado no boot)."""
    time.sleep(60)
