"""
chunkpress/engine_config.py

Define os presets de compressão e os defaults de execução.
`PRESETS` mapeia: 'lossless'|'balanced'|'max' -> PresetConfig
`PRESET_ORDER` é a ordem total (do mais leve ao mais agressivo), usada
tanto para escolher defaults quanto para o caminho de degradação.
"""

# chunkpress/engine_config.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Dict, List, Optional


@dataclass(frozen=True)
class PresetConfig:
    name: str
    target_dpi: Optional[int]
    quality: Optional[float]          # 0-1 (qualidade JPEG)
    preserve_metadata: bool
    allow_rasterization: bool
    description: str
    expected_savings: str

    @property
    def jpeg_quality(self) -> Optional[int]:
        """Qualidade JPEG inteira (1-95) derivada de `quality`."""
        if self.quality is None:
            return None
        return max(1, min(95, int(round(self.quality * 100))))


# Mesmos níveis da versão web (sem depender do WASM)
PRESETS: Dict[str, PresetConfig] = {
    # só reescrita estrutural, nada de re-encode
    "lossless": PresetConfig(
        name="lossless",
        target_dpi=None,
        quality=None,
        preserve_metadata=True,
        allow_rasterization=False,
        description="Otimiza a estrutura sem perda de qualidade. Ideal para texto e vetores.",
        expected_savings="5-30%",
    ),
    # rasteriza só páginas imagem-only (ganho sem perder vetores/texto)
    "balanced": PresetConfig(
        name="balanced",
        target_dpi=150,
        quality=0.65,
        preserve_metadata=True,
        allow_rasterization=False,
        description="Compressão inteligente com impacto mínimo. Recomendado para a maioria dos PDFs.",
        expected_savings="30-70%",
    ),
    # idem, porém mais agressivo; rasterização total só se pedida
    "max": PresetConfig(
        name="max",
        target_dpi=120,
        quality=0.40,
        preserve_metadata=False,
        allow_rasterization=False,
        description="Compressão máxima. Pode reduzir a qualidade das imagens. Bom para digitalizados.",
        expected_savings="60-90%",
    ),
}

PRESET_ORDER = ("lossless", "balanced", "max")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_flag(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    norm = raw.strip().lower()
    if norm in {"1", "true", "yes", "on"}:
        return True
    if norm in {"0", "false", "no", "off"}:
        return False
    return None


DEFAULT_TIMEOUT_MS = _env_int("CHUNKPRESS_TIMEOUT_MS", 300_000)
DEFAULT_CHUNK_SIZE = _env_int("CHUNKPRESS_DEFAULT_CHUNK_SIZE", 10)
CONSTRAINED_CHUNK_SIZE = _env_int("CHUNKPRESS_CONSTRAINED_CHUNK_SIZE", 5)
ETA_WINDOW = _env_int("CHUNKPRESS_ETA_WINDOW", 10)
START_METHOD = os.getenv("CHUNKPRESS_START_METHOD", "spawn")


def constrained_device_override() -> Optional[bool]:
    """Lê `CHUNKPRESS_CONSTRAINED_DEVICE` a cada chamada (None = auto-detectar)."""
    return _env_flag("CHUNKPRESS_CONSTRAINED_DEVICE")


def is_valid_preset(name: object) -> bool:
    return isinstance(name, str) and name in PRESETS


def get_preset_config(name: str) -> PresetConfig:
    if not is_valid_preset(name):
        raise TypeError(
            f"Preset inválido: {name!r}. Use um de: {', '.join(PRESET_ORDER)}."
        )
    return PRESETS[name]


def get_preset_config_with_overrides(name: str, **overrides: object) -> PresetConfig:
    """Aplica overrides sobre o preset base; valores None são ignorados."""
    base = get_preset_config(name)
    changes = {k: v for k, v in overrides.items() if v is not None}
    if not changes:
        return base
    return replace(base, **changes)  # type: ignore[arg-type]


def get_fallback_preset(name: str) -> Optional[str]:
    """Próximo preset mais leve (ou None para 'lossless')."""
    idx = PRESET_ORDER.index(get_preset_config(name).name)
    if idx == 0:
        return None
    return PRESET_ORDER[idx - 1]


def get_preset_fallback_chain(name: str) -> List[str]:
    chain = [get_preset_config(name).name]
    nxt = get_fallback_preset(name)
    while nxt is not None:
        chain.append(nxt)
        nxt = get_fallback_preset(nxt)
    return chain
