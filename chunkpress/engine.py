"""
chunkpress/engine.py

Módulo do motor de compressão, carregado uma vez por processo.
- `load_engine(loader=None) -> EngineModule`: idempotente; chamadas concorrentes
  colapsam em um único carregamento (lock).
- `reset_engine()`: única forma de descartar a instância em cache.
- `is_engine_loaded()`: consulta sem carregar.
"""

from __future__ import annotations

import importlib
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .engine_config import PresetConfig
from .errors import EngineLoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineModule:
    name: str
    version: str
    compress: Callable[[bytes, PresetConfig], bytes]


EngineLoader = Callable[[], EngineModule]

_ENGINE: Optional[EngineModule] = None
_LOCK = threading.Lock()


def _import_pymupdf_engine() -> EngineModule:
    fitz = importlib.import_module("fitz")
    importlib.import_module("img2pdf")
    importlib.import_module("PIL.Image")
    compressor = importlib.import_module("chunkpress.compressor")
    version = str(getattr(fitz, "VersionBind", None) or getattr(fitz, "__version__", "unknown"))
    return EngineModule(name="pymupdf", version=version, compress=compressor.compress_document)


def load_engine(loader: Optional[EngineLoader] = None) -> EngineModule:
    global _ENGINE
    engine = _ENGINE
    if engine is not None:
        return engine

    with _LOCK:
        if _ENGINE is not None:
            return _ENGINE
        try:
            engine = (loader or _import_pymupdf_engine)()
        except EngineLoadError:
            raise
        except Exception as e:
            raise EngineLoadError(f"Falha ao carregar o motor de compressão: {e}") from e
        logger.info("motor de compressão carregado: %s %s", engine.name, engine.version)
        _ENGINE = engine
        return engine


def is_engine_loaded() -> bool:
    return _ENGINE is not None


def reset_engine() -> None:
    global _ENGINE
    with _LOCK:
        _ENGINE = None
