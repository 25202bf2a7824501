"""
chunkpress/memory.py

Sondagem de memória do host e liberação de buffers.
- `estimate_available_memory()`: bytes livres (psutil).
- `is_constrained_device()`: override via env ou memória livre < 2 GiB.
- `has_enough_memory(required, safety_factor)` / `is_memory_pressure()`.
- `release_buffers(items)`: solta referências e força coleta.
"""

from __future__ import annotations

import gc
import logging
from typing import Iterable, Optional

import psutil

from .engine_config import constrained_device_override

logger = logging.getLogger(__name__)

CONSTRAINED_MEMORY_BYTES = 2 * 1024 ** 3
FALLBACK_AVAILABLE_BYTES = 1024 ** 3  # 1 GB, se psutil falhar


def estimate_available_memory() -> int:
    try:
        return int(psutil.virtual_memory().available)
    except Exception:
        logger.debug("psutil indisponível; usando estimativa conservadora")
        return FALLBACK_AVAILABLE_BYTES


def has_enough_memory(required_bytes: int, safety_factor: float = 3) -> bool:
    return estimate_available_memory() > required_bytes * safety_factor


def is_memory_pressure(threshold_percent: float = 80.0) -> bool:
    try:
        return float(psutil.virtual_memory().percent) > threshold_percent
    except Exception:
        return False


def is_constrained_device(override: Optional[bool] = None) -> bool:
    if override is not None:
        return override
    env = constrained_device_override()
    if env is not None:
        return env
    return estimate_available_memory() < CONSTRAINED_MEMORY_BYTES


def release_buffers(items: Iterable[object]) -> None:
    """Chama `release()` de cada item (ChunkResult) e força a coleta."""
    for item in items:
        release = getattr(item, "release", None)
        if callable(release):
            release()
    gc.collect()
