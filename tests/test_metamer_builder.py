"""Tests for incremental mismatch volume construction."""

import numpy as np

from MetamerColor.ColorMath.BoundarySolver import (GenerateUnitDirections,
                                                   SolveBoundary)
from MetamerColor.ColorMath.SpectrumSolver import SolveSpectrum
from MetamerColor.Constraints import DirectColorConstraint, LinearConstraint
from MetamerColor.MetamerBuilder import BuilderState, MetamerBuilder
from MetamerColor.Uplifting import Uplifting, UpliftingVertex
from MetamerColor.Utils.CustomTypes import MismatchSample
from MetamerColor.Utils.Settings import BuilderSettings
from conftest import N_BASES, SCENARIO_TARGET, WAVELENGTHS

SETTINGS = BuilderSettings(n_samples=48, n_samples_iter=16, n_workers=1)


def synthetic_samples(n: int, seed: int):
    rng = np.random.default_rng(seed)
    return [MismatchSample(rng.uniform(0, 1, 3), np.zeros(len(WAVELENGTHS)), rng.normal(size=N_BASES))
            for _ in range(n)]


def assert_queue(builder, expected):
    assert len(builder.samples) == len(expected)
    assert all(a is b for a, b in zip(builder.samples, expected))


def mismatch_vertex(free_color=(0.0, 0.0, 0.0), target=SCENARIO_TARGET) -> UpliftingVertex:
    return UpliftingVertex('v', DirectColorConstraint(True, target, [LinearConstraint(True, 1, 1, free_color)]))


def test_queue_amortization():
    builder = MetamerBuilder(SETTINGS)
    vertex = mismatch_vertex()
    builder.set_vertex(vertex)

    first = synthetic_samples(10, seed=0)
    builder.insert_samples(first)
    assert_queue(builder, first)
    assert builder.samples_curr == 10

    # New constraint; the old batch becomes stale
    builder.set_vertex(mismatch_vertex(target=[0.3, 0.4, 0.2]))
    assert builder.samples_prev == 10
    assert builder.samples_curr == 0

    second = synthetic_samples(4, seed=1)
    builder.insert_samples(second)
    assert len(builder.samples) == 10
    assert builder.samples_prev == 6
    assert_queue(builder, first[4:] + second)

    third = synthetic_samples(8, seed=2)
    builder.insert_samples(third)
    # Only the six remaining stale samples can retire
    assert len(builder.samples) == 12
    assert builder.samples_prev == 0
    assert_queue(builder, second + third)
    assert builder.samples_curr == 12


def test_queue_growth_is_bounded_by_batch():
    builder = MetamerBuilder(SETTINGS)
    builder.set_vertex(mismatch_vertex())
    builder.insert_samples(synthetic_samples(20, seed=3))
    builder.set_vertex(mismatch_vertex(target=[0.3, 0.4, 0.2]))

    for seed in range(4, 10):
        size, prev = len(builder.samples), builder.samples_prev
        batch = synthetic_samples(5, seed=seed)
        builder.insert_samples(batch)
        assert len(builder.samples) - size <= len(batch)
        assert prev - builder.samples_prev <= min(len(batch), prev)


def test_hull_requires_enough_points():
    builder = MetamerBuilder(SETTINGS)
    builder.set_vertex(mismatch_vertex())
    builder.insert_samples(synthetic_samples(5, seed=0))
    assert not builder.hull.has_delaunay()

    builder.insert_samples(synthetic_samples(10, seed=1))
    assert builder.hull.has_delaunay()
    assert builder.hull.vertex_count == 15


def test_hull_is_cleared_for_flat_colors():
    builder = MetamerBuilder(SETTINGS)
    builder.set_vertex(mismatch_vertex())
    samples = synthetic_samples(12, seed=0)
    for sample in samples:
        sample.color[2] = 0.5 + 1e-5 * sample.color[2]
    builder.insert_samples(samples)
    assert not builder.hull.has_hull()
    assert not builder.hull.has_delaunay()
    assert builder.hull.vertex_count == 0


def test_convergence_is_monotonic(scene):
    uplifting = Uplifting()
    vertex = mismatch_vertex()
    builder = MetamerBuilder(SETTINGS)
    assert builder.state == BuilderState.UNINITIALIZED

    for _ in range(10):
        builder.advance(scene, uplifting, vertex)
        if builder.is_converged():
            break
    assert builder.state == BuilderState.CONVERGED

    n_samples = len(builder.samples)
    for _ in range(3):
        assert not builder.advance(scene, uplifting, vertex)
        assert builder.is_converged()
    assert len(builder.samples) == n_samples

    # A new constraint marks every sample stale
    builder.set_vertex(mismatch_vertex(target=[0.3, 0.4, 0.2]))
    assert not builder.is_converged()
    assert builder.state == BuilderState.ACCUMULATING


def test_supports_vertex():
    builder = MetamerBuilder(SETTINGS)
    vertex = mismatch_vertex()
    assert not builder.supports_vertex(vertex)
    builder.set_vertex(vertex)

    # Moving the free color stays inside the same volume
    assert builder.supports_vertex(mismatch_vertex(free_color=[0.3, 0.3, 0.3]))
    assert not builder.supports_vertex(mismatch_vertex(target=[0.3, 0.4, 0.2]))

    # A changed free system behind an inactive trailing entry spans another volume
    def trailing_inactive(cmfs_j):
        return UpliftingVertex('v', DirectColorConstraint(True, SCENARIO_TARGET, [
            LinearConstraint(True, cmfs_j, 1, [0.3, 0.3, 0.3]), LinearConstraint(False, 0, 1, [0.2, 0.2, 0.2])]))
    other = MetamerBuilder(SETTINGS)
    other.set_vertex(trailing_inactive(1))
    assert other.supports_vertex(trailing_inactive(1))
    assert not other.supports_vertex(trailing_inactive(0))

    # The cached constraint is a copy
    vertex.constraint.colr_i[0] = 0.5
    assert not builder.supports_vertex(vertex)


def test_no_mismatch_degeneracy(scene, basis, system_a):
    color = np.array([0.3, 0.4, 0.2])
    uplifting = Uplifting()
    vertex = UpliftingVertex('plain', DirectColorConstraint(True, color, [LinearConstraint(True, 0, 0, color)]))
    assert not vertex.has_mismatching(uplifting)

    builder = MetamerBuilder(SETTINGS)
    assert not builder.advance(scene, uplifting, vertex)
    assert builder.state == BuilderState.NO_MISMATCH
    assert len(builder.samples) == 0

    # Every no-mismatch tick flags the direct solve result for consumers
    builder.did_sample = False
    assert not builder.advance(scene, uplifting, vertex)
    assert builder.did_sample

    sample = builder.realize(scene, uplifting, vertex)
    expected = SolveSpectrum(basis, [(system_a, color)])
    np.testing.assert_allclose(sample.spectrum, expected.spectrum)
    np.testing.assert_allclose(sample.color, color, atol=1e-3)


def test_realize_interpolates_hull(scene, basis, system_a, system_b):
    directions = GenerateUnitDirections(6, 64, seed=1)
    samples = SolveBoundary(basis, [(system_a, SCENARIO_TARGET)], [system_a, system_b], directions)
    centroid = np.mean([s.color for s in samples], axis=0)

    uplifting = Uplifting()
    vertex = mismatch_vertex(free_color=centroid)
    builder = MetamerBuilder(SETTINGS)
    builder.set_vertex(vertex)
    builder.insert_samples(samples)
    assert builder.hull.has_delaunay()

    sample = builder.realize(scene, uplifting, vertex)
    np.testing.assert_allclose(system_a(basis(sample.coef)), SCENARIO_TARGET, atol=1e-2)
    np.testing.assert_allclose(sample.color, system_a(sample.spectrum))
    np.testing.assert_allclose(sample.spectrum, basis(sample.coef))

    # Queries never touch the queue
    assert len(builder.samples) == len(samples)


def test_realize_falls_back_to_direct_solve(scene):
    uplifting = Uplifting()
    vertex = mismatch_vertex(free_color=[0.3, 0.3, 0.3])
    builder = MetamerBuilder(SETTINGS)
    builder.set_vertex(vertex)

    sample = builder.realize(scene, uplifting, vertex)
    expected = vertex.realize(scene, uplifting)
    np.testing.assert_allclose(sample.spectrum, expected.spectrum)
    np.testing.assert_allclose(sample.color, expected.color)


def test_inactive_vertex_realizes_to_zero(scene):
    vertex = mismatch_vertex()
    vertex.is_active = False
    sample = MetamerBuilder(SETTINGS).realize(scene, Uplifting(), vertex)
    assert not sample.color.any()
    assert not sample.spectrum.any()
    assert sample.coef.shape == (N_BASES,)


def test_clear_resets_counters():
    builder = MetamerBuilder(SETTINGS)
    builder.set_vertex(mismatch_vertex())
    builder.insert_samples(synthetic_samples(10, seed=0))
    builder.clear()
    assert len(builder.samples) == 0
    assert builder.samples_curr == 0
    assert builder.samples_prev == 0
    assert builder.hull.vertex_count == 0
