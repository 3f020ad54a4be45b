"""Configuration dataclasses for the binning and vertex-extraction engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class EngineConfig:
    """Worker and rendering settings for one redraw pipeline.

    Notes
    -----
    ``workers=1`` runs every parallel pass inline on the calling thread.
    ``chunk_size`` is the number of bins (or pixels) handled per task and is
    also the granularity at which cancellation is polled.
    """

    workers: int = 4
    chunk_size: int = 4096
    min_weight: float = 1.0
    shuffle_index: bool = True
    shuffle_seed: Optional[int] = 0
    user_alpha: float = 1.0
    draw_means: bool = True
    illuminant_correction: bool = False
    color_by_label: bool = False


DEFAULT_CONFIG = EngineConfig()


def config_from_dict(data: Mapping[str, Any]) -> EngineConfig:
    """Build an EngineConfig from a mapping, ignoring unknown keys."""
    known = {f.name for f in fields(EngineConfig)}
    values = {k: v for k, v in data.items() if k in known}
    cfg = EngineConfig(**values)
    if cfg.workers < 1:
        raise ValueError(f"workers must be >= 1, got {cfg.workers}")
    if cfg.chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {cfg.chunk_size}")
    return cfg


def config_to_dict(cfg: EngineConfig) -> dict:
    """Serialize an EngineConfig to plain Python types."""
    return asdict(cfg)
