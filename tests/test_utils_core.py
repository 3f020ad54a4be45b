import logging
import threading
from dataclasses import FrozenInstanceError

import numpy as np
import pytest

from distview.colors import default_label_colors, label_color, spectrum_to_rgb
from distview.config import DEFAULT_CONFIG, EngineConfig, config_from_dict, config_to_dict
from distview.context import BandDesc, Representation, ViewportCtx, make_context
from distview.logger import attach_handler, get_logger, set_level
from distview.parallel import WorkerPool, blocked_ranges
from distview.shared import SharedData


def test_config_roundtrip_ignores_unknown_keys() -> None:
    cfg = config_from_dict({"workers": 2, "min_weight": 3.0, "theme": "dark"})
    assert cfg.workers == 2
    assert cfg.min_weight == 3.0
    assert config_from_dict(config_to_dict(cfg)) == cfg
    assert config_from_dict({}) == DEFAULT_CONFIG
    with pytest.raises(ValueError):
        config_from_dict({"workers": 0})
    with pytest.raises(FrozenInstanceError):
        cfg.workers = 3


def test_context_validity_and_range() -> None:
    ctx = ViewportCtx()
    assert not ctx.valid
    ctx = make_context(4, -1.0, 1.0, 8, representation=Representation.GRAD)
    assert ctx.valid
    assert ctx.binsize == pytest.approx(0.25)
    assert not ctx.meta_valid
    assert str(ctx.type) == "GRAD"
    with pytest.raises(ValueError):
        ctx.with_range(1.0, 1.0, 8)


def test_shared_data_versions() -> None:
    shared: SharedData[list] = SharedData()
    assert shared.snapshot() is None
    assert shared.version == 0
    first = [1]
    assert shared.publish(first) == 1
    second = [2]
    shared.publish(second)
    version, value = shared.versioned()
    assert version == 2 and value is second
    assert first == [1]


def test_blocked_ranges() -> None:
    assert blocked_ranges(10, 4) == [(0, 4), (4, 8), (8, 10)]
    assert blocked_ranges(0, 4) == []


def test_parallel_for_covers_range_once() -> None:
    hits = np.zeros(1000, dtype=np.int64)
    lock = threading.Lock()

    def body(start, stop):
        with lock:
            hits[start:stop] += 1

    with WorkerPool(4) as pool:
        pool.parallel_for(1000, body, 33)
    assert (hits == 1).all()


def test_parallel_for_propagates_errors() -> None:
    def body(start, stop):
        if start >= 50:
            raise RuntimeError("boom")

    with WorkerPool(3) as pool:
        with pytest.raises(RuntimeError):
            pool.parallel_for(100, body, 10)


def test_spectrum_colors() -> None:
    meta = tuple(BandDesc(center=wl) for wl in (450, 550, 650))
    red = spectrum_to_rgb([0.0, 0.0, 1.0], meta, 0.0, 1.0)
    assert red[0] > red[1] and red[0] > red[2]
    blue = spectrum_to_rgb([1.0, 0.0, 0.0], meta, 0.0, 1.0)
    assert blue[2] > blue[0]
    # no wavelengths: band groups map to blue, green, red
    assert spectrum_to_rgb([0.0, 0.0, 1.0], (), 0.0, 1.0) == (1.0, 0.0, 0.0)
    grey = spectrum_to_rgb([0.5, 0.5], (), 0.0, 1.0)
    assert grey == (0.5, 0.5, 0.5)


def test_label_colors() -> None:
    assert label_color("red") == (1.0, 0.0, 0.0)
    assert label_color("#00ff00") == (0.0, 1.0, 0.0)
    colors = default_label_colors(4)
    assert len(colors) == 4
    assert colors[0] == (1.0, 1.0, 1.0)
    assert len(set(colors)) == 4


def test_logger_adds_epoch_field() -> None:
    records = []

    class Capture(logging.Handler):
        def emit(self, record):
            records.append(self.format(record))

    handler = Capture()
    handler.setFormatter(logging.Formatter("%(epoch)s|%(message)s"))
    attach_handler(handler)
    logger = get_logger("distview.tests")
    try:
        set_level(logging.DEBUG)
        logger.debug("plain")
        logger.info("tagged", extra={"epoch": (1, 2)})
    finally:
        set_level(logging.INFO)
        logging.getLogger("distview").removeHandler(handler)
    assert records == ["-|plain", "(1, 2)|tagged"]
