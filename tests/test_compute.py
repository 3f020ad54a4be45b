"""Unit tests for range reduction and vertex generation.

Tests cover:
1. Soft filtering and occupancy ranges
2. Independence of results from work partitioning
3. Vertex layout, display modes and error codes
"""

from dataclasses import replace

import numpy as np
import pytest

from distview.binset import EMPTY_BOUNDARY, BinSet
from distview.colors import default_label_colors
from distview.compute import (
    ERR_BUFFER_SIZE,
    ERR_DIMENSIONALITY,
    ERR_MISSING_BIN,
    ERR_OK,
    BinIndex,
    PreprocessBins,
    VertexBuffer,
    prepare_polylines,
    store_vertices,
)
from distview.context import ViewportHandle
from distview.discretize import discretize
from distview.parallel import WorkerPool
from distview.stale_result_guard import EpochGuard, StaleEpochError


def _fill(ctx, pixels, label_count=2, label=1):
    sets = [BinSet(c, ctx.dimensionality) for c in default_label_colors(label_count)]
    for p in pixels:
        sets[label].add(discretize(p, ctx.minval, ctx.binsize, ctx.nbins), p)
    return sets


class TestPreprocessBins:
    """Filtering and occupancy ranges."""

    def test_low_weight_bin_is_filtered_but_kept(self, ctx3):
        """A bin below the threshold stays in the histogram and in the populated range."""
        sets = _fill(ctx3, [(0.0, 0.0, 0.0), (0.0, 0.2, 0.1), (3.0, 3.0, 3.0)])
        index = BinIndex()
        boundaries = prepare_polylines(ctx3, sets, index, min_weight=2, shuffle=False)
        assert list(index) == [(1, bytes([0, 0, 0]))]
        assert sets[1].bins.find(bytes([3, 3, 3])).weight == 1
        assert boundaries[1] == [(0, 3)] * 3

    def test_boundary_tracks_min_max_per_dimension(self, ctx3):
        sets = _fill(ctx3, [(0.0, 1.0, 2.0), (2.0, 3.0, 1.0), (1.0, 1.0, 1.0)])
        prepare_polylines(ctx3, sets, BinIndex())
        assert sets[1].boundary == [(0, 2), (1, 3), (1, 2)]
        # label 0 has no bins: boundary stays inverted
        assert sets[0].boundary == [EMPTY_BOUNDARY] * 3

    def test_limiters_exclude_bins(self, ctx3):
        sets = _fill(ctx3, [(0.0, 1.0, 2.0), (2.0, 3.0, 1.0)])
        index = BinIndex()
        prepare_polylines(ctx3, sets, index, limiters=[(0, 1), (0, 3), (0, 3)])
        assert list(index) == [(1, bytes([0, 1, 2]))]

    def test_limiters_do_not_shrink_boundary(self, ctx3):
        sets = _fill(ctx3, [(0.0, 1.0, 2.0), (2.0, 3.0, 1.0)])
        index = BinIndex()
        boundaries = prepare_polylines(ctx3, sets, index, limiters=[(0, 1), (0, 3), (0, 3)])
        assert len(index) == 1
        assert boundaries[1] == [(0, 2), (1, 3), (1, 2)]

    def test_zero_weight_bins_do_not_widen_boundary(self, ctx3):
        sets = _fill(ctx3, [(0.0, 0.0, 0.0), (3.0, 3.0, 3.0)])
        sets[1].sub(bytes([3, 3, 3]), (3.0, 3.0, 3.0))
        boundaries = prepare_polylines(ctx3, sets, BinIndex())
        assert boundaries[1] == [(0, 0)] * 3

    def test_boundaries_returned_without_assignment(self, ctx3):
        sets = _fill(ctx3, [(1.0, 2.0, 3.0)])
        boundaries = prepare_polylines(ctx3, sets, BinIndex(), assign_boundaries=False)
        assert boundaries[1] == [(1, 1), (2, 2), (3, 3)]
        assert sets[1].boundary == [EMPTY_BOUNDARY] * 3

    def test_limiters_length_checked(self, ctx3):
        with pytest.raises(ValueError):
            PreprocessBins(0, 3, 4, 0.0, 4.0, (), BinIndex(), limiters=[(0, 1)])

    def test_keys_beyond_nbins_are_filtered(self, ctx3):
        sets = _fill(ctx3, [(0.0, 0.0, 0.0)])
        sets[1].add(bytes([0, 9, 0]), (0.0, 9.0, 0.0))
        index = BinIndex()
        prepare_polylines(ctx3, sets, index)
        assert list(index) == [(1, bytes([0, 0, 0]))]

    def test_colors_assigned_to_surviving_bins(self, spectral_ctx, spectral_sets):
        prepare_polylines(spectral_ctx, spectral_sets, BinIndex())
        for s in spectral_sets:
            for _, b in s.bins.items():
                assert b.rgb is not None
                assert all(0.0 <= c <= 1.0 for c in b.rgb)

    def test_join_is_componentwise(self):
        a = PreprocessBins(0, 2, 8, 0.0, 1.0, (), BinIndex())
        b = a.split()
        a([(bytes([1, 5]), _weighted([0.1, 0.5]))])
        b([(bytes([3, 2]), _weighted([0.3, 0.2]))])
        a.join(b)
        assert a.ranges() == [(1, 3), (2, 5)]


def _weighted(pixel):
    s = BinSet((1.0, 1.0, 1.0), len(pixel))
    key = bytes(len(pixel))
    s.add(key, pixel)
    return s.bins.find(key)


class TestPartitionInvariance:
    """Results must not depend on how the work is split."""

    @pytest.mark.parametrize("workers,chunk", [(2, 7), (4, 50), (8, 1)])
    def test_reduction_single_vs_parallel(self, spectral_ctx, spectral_sets, workers, chunk):
        serial_index = BinIndex()
        serial = prepare_polylines(spectral_ctx, spectral_sets, serial_index, shuffle=False)
        parallel_index = BinIndex()
        with WorkerPool(workers) as pool:
            parallel = prepare_polylines(
                spectral_ctx, spectral_sets, parallel_index, pool=pool, chunk_size=chunk, shuffle=False
            )
        assert serial == parallel
        assert len(serial_index) == len(parallel_index)
        assert set(serial_index) == set(parallel_index)

    def test_seeded_shuffle_is_deterministic(self, spectral_ctx, spectral_sets):
        first = BinIndex()
        prepare_polylines(spectral_ctx, spectral_sets, first, shuffle_seed=5)
        second = BinIndex()
        with WorkerPool(4) as pool:
            prepare_polylines(spectral_ctx, spectral_sets, second, pool=pool, chunk_size=13, shuffle_seed=5)
        assert list(first) == list(second)

    def test_vertices_single_vs_parallel(self, spectral_ctx, spectral_sets):
        index = BinIndex()
        prepare_polylines(spectral_ctx, spectral_sets, index)
        single = VertexBuffer()
        assert store_vertices(spectral_ctx, spectral_sets, index, single) == ERR_OK
        multi = VertexBuffer()
        with WorkerPool(4) as pool:
            assert store_vertices(spectral_ctx, spectral_sets, index, multi, pool=pool, chunk_size=11) == ERR_OK
        n = single.vertex_count
        assert n == multi.vertex_count
        assert single.positions[:n].tobytes() == multi.positions[:n].tobytes()
        assert single.colors[:n].tobytes() == multi.colors[:n].tobytes()


class TestGenerateVertices:
    """Vertex layout and display modes."""

    def test_d_vertices_per_bin(self, spectral_ctx, spectral_sets):
        index = BinIndex()
        prepare_polylines(spectral_ctx, spectral_sets, index)
        vb = VertexBuffer()
        assert store_vertices(spectral_ctx, spectral_sets, index, vb) == ERR_OK
        dims = spectral_ctx.dimensionality
        assert vb.bin_count == len(index)
        assert vb.vertex_count == len(index) * dims
        lines = vb.polylines()
        assert lines.shape == (len(index), dims, 2)
        np.testing.assert_array_equal(lines[:, :, 0], np.tile(np.arange(dims), (len(index), 1)))
        for i, (label, _) in enumerate(index):
            assert (vb.labels[i * dims : (i + 1) * dims] == label).all()

    def test_means_vs_bin_centers(self, ctx3):
        sets = _fill(ctx3, [(0.4, 1.6, 3.9), (0.2, 1.8, 3.7)])
        index = BinIndex()
        prepare_polylines(ctx3, sets, index)
        vb = VertexBuffer()
        store_vertices(ctx3, sets, index, vb, draw_means=True)
        np.testing.assert_allclose(vb.polylines()[0, :, 1], [0.3, 1.7, 3.8], rtol=1e-6)
        store_vertices(ctx3, sets, index, vb, draw_means=False)
        np.testing.assert_allclose(vb.polylines()[0, :, 1], [0.5, 2.5, 3.5])

    def test_illuminant_correction(self, ctx3):
        sets = _fill(ctx3, [(0.4, 1.6, 3.9)])
        index = BinIndex()
        prepare_polylines(ctx3, sets, index)
        vb = VertexBuffer()
        code = store_vertices(
            ctx3, sets, index, vb, draw_means=True, illuminant_correction=True, illuminant=[0.4, 0.6, 0.9]
        )
        assert code == ERR_OK
        np.testing.assert_allclose(vb.polylines()[0, :, 1], [0.0, 1.0, 3.0], atol=1e-6)
        # correction disabled: illuminant ignored
        store_vertices(ctx3, sets, index, vb, illuminant_correction=False, illuminant=[9.0, 9.0, 9.0])
        np.testing.assert_allclose(vb.polylines()[0, :, 1], [0.4, 1.6, 3.9], rtol=1e-6)

    def test_label_colors(self, ctx3):
        sets = _fill(ctx3, [(1.0, 1.0, 1.0)])
        index = BinIndex()
        prepare_polylines(ctx3, sets, index)
        vb = VertexBuffer()
        store_vertices(ctx3, sets, index, vb, color_by_label=True, user_alpha=0.5)
        np.testing.assert_allclose(vb.polyline_colors()[0, :3], sets[1].label, rtol=1e-6)
        assert vb.polyline_colors()[0, 3] == pytest.approx(0.5)


class TestErrorCodes:
    """Cross-cutting failures abort before any vertex is written."""

    def test_buffer_too_small(self, ctx3):
        sets = _fill(ctx3, [(0.0, 0.0, 0.0), (3.0, 3.0, 3.0)])
        index = BinIndex()
        prepare_polylines(ctx3, sets, index)
        vb = VertexBuffer(capacity=5)
        assert store_vertices(ctx3, sets, index, vb, allocate=False) == ERR_BUFFER_SIZE
        assert vb.bin_count == 0
        assert not vb.positions.any()
        vb = VertexBuffer(capacity=6)
        assert store_vertices(ctx3, sets, index, vb, allocate=False) == ERR_OK

    def test_dimensionality_mismatch(self, ctx3):
        sets = _fill(ctx3, [(0.0, 0.0, 0.0)])
        index = BinIndex()
        prepare_polylines(ctx3, sets, index)
        wrong = replace(ctx3, dimensionality=4)
        vb = VertexBuffer()
        assert store_vertices(wrong, sets, index, vb) == ERR_DIMENSIONALITY
        assert vb.bin_count == 0
        assert store_vertices(replace(ctx3, dimensionality_valid=False), sets, index, vb) == ERR_DIMENSIONALITY

    def test_illuminant_length_mismatch(self, ctx3):
        sets = _fill(ctx3, [(0.0, 0.0, 0.0)])
        index = BinIndex()
        prepare_polylines(ctx3, sets, index)
        vb = VertexBuffer()
        code = store_vertices(ctx3, sets, index, vb, illuminant_correction=True, illuminant=[1.0, 1.0])
        assert code == ERR_DIMENSIONALITY

    def test_missing_bin(self, ctx3):
        sets = _fill(ctx3, [(0.0, 0.0, 0.0)])
        index = BinIndex()
        index.append((1, bytes([2, 2, 2])))
        assert store_vertices(ctx3, sets, index, VertexBuffer()) == ERR_MISSING_BIN

    def test_index_frozen_after_generation(self, ctx3):
        sets = _fill(ctx3, [(0.0, 0.0, 0.0)])
        index = BinIndex()
        prepare_polylines(ctx3, sets, index)
        store_vertices(ctx3, sets, index, VertexBuffer())
        assert index.frozen
        with pytest.raises(RuntimeError):
            index.append((1, bytes(3)))


def test_stale_reduction_leaves_boundaries(spectral_ctx, spectral_sets) -> None:
    handle = ViewportHandle(spectral_ctx)
    guard = EpochGuard(handle)
    original = spectral_sets[1].bins.chunks

    def chunks_then_change(size):
        handle.mark_wait()
        return original(size)

    spectral_sets[1].bins.chunks = chunks_then_change
    with WorkerPool(4) as pool:
        with pytest.raises(StaleEpochError):
            prepare_polylines(spectral_ctx, spectral_sets, BinIndex(), pool=pool, chunk_size=32, guard=guard)
    for s in spectral_sets:
        assert s.boundary == [EMPTY_BOUNDARY] * spectral_ctx.dimensionality
