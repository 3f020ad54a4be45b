"""distview: binning and vertex extraction for parallel-coordinates views."""

from distview.binset import Bin, BinSet
from distview.compute import (
    ERR_BUFFER_SIZE,
    ERR_DIMENSIONALITY,
    ERR_MISSING_BIN,
    ERR_OK,
    BinIndex,
    VertexBuffer,
    prepare_polylines,
    store_vertices,
)
from distview.config import DEFAULT_CONFIG, EngineConfig
from distview.context import BandDesc, Representation, ViewportCtx, ViewportHandle, make_context
from distview.discretize import discretize, discretize_many
from distview.redraw import RedrawFrame, RedrawPipeline, RedrawRequest, RedrawWorker

__all__ = [
    "__version__",
    "Bin",
    "BinSet",
    "BinIndex",
    "VertexBuffer",
    "prepare_polylines",
    "store_vertices",
    "ERR_OK",
    "ERR_DIMENSIONALITY",
    "ERR_BUFFER_SIZE",
    "ERR_MISSING_BIN",
    "EngineConfig",
    "DEFAULT_CONFIG",
    "BandDesc",
    "Representation",
    "ViewportCtx",
    "ViewportHandle",
    "make_context",
    "discretize",
    "discretize_many",
    "RedrawFrame",
    "RedrawPipeline",
    "RedrawRequest",
    "RedrawWorker",
]

__version__ = "0.1.0"
