"""
Boundary spectra of metamer mismatch volumes and object color solids.

Each sampled direction yields one spectrum on the boundary of the set of colors that
remain attainable once the known constraints are fixed; the directions are mutually
independent and may be solved on a thread pool.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Sequence

import numpy as np
import numpy.typing as npt
from tqdm import tqdm

from MetamerColor.ColorMath.SpectrumSolver import (BoundednessConstraint,
                                                   ColorConstraint,
                                                   DeduplicateConstraints,
                                                   IndirectColorConstraint,
                                                   LinearEqualityConstraint,
                                                   NonlinearEqualityConstraint,
                                                   RunSolver, SystemMatrix)
from MetamerColor.Spectra.Basis import Basis
from MetamerColor.Spectra.ColorSystem import ColorSystem, IndirectColorSystem
from MetamerColor.Utils.CustomTypes import MismatchSample
from MetamerColor.Utils.Settings import (BOUNDARY_SOLVER_SETTINGS,
                                         DEFAULT_BUILDER_SETTINGS,
                                         SolverSettings)

logger = logging.getLogger(__name__)


def GenerateUnitDirections(n_dims: int, n_samples: int, seed: int = 4) -> npt.NDArray:
    """
    Generate uniformly distributed unit vectors on the n_dims-dimensional sphere.

    Args:
        n_dims: Dimensionality of the directions (3 per objective color system)
        n_samples: Number of directions
        seed: Seed of the random generator; equal seeds give equal directions

    Returns:
        npt.NDArray: n_samples x n_dims matrix of unit rows
    """
    rng = np.random.default_rng(seed)
    directions = rng.standard_normal((n_samples, n_dims))
    return directions / (np.linalg.norm(directions, axis=1, keepdims=True) + 1e-8)


def OrthogonalObjective(systems: Sequence) -> npt.NDArray:
    """
    Orthonormal objective matrix spanning the stacked color systems.

    With S the N x 3k stack of finalized systems and S = W Sigma V^T its SVD, returns
    U = S V Sigma^-1, so that a unit direction d maps to an equally weighted functional U d.
    Singular directions (coinciding systems) are zeroed instead of inverted.
    """
    S = np.concatenate([SystemMatrix(system).T for system in systems], axis=1)
    _, sigma, Vt = np.linalg.svd(S, full_matrices=False)
    inv_sigma = np.zeros_like(sigma)
    nonzero = sigma > sigma.max() * 1e-8
    inv_sigma[nonzero] = 1.0 / sigma[nonzero]
    return S @ Vt.T @ np.diag(inv_sigma)


def _SolveDirections(solve_one: Callable[[npt.NDArray], npt.NDArray], directions: npt.NDArray,
                     n_workers: int, parallel_threshold: int, verbose: bool) -> List[npt.NDArray]:
    """Solve every direction, in direction order; larger batches go through a thread pool."""
    verbose_progress = (lambda x: tqdm(x, total=len(directions), desc="Boundary spectra")) if verbose else (lambda x: x)

    if len(directions) <= parallel_threshold or n_workers <= 1:
        return list(verbose_progress(solve_one(d) for d in directions))

    # SLSQP is re-entrant from scipy 1.15 on; map() keeps results in direction order
    with ThreadPoolExecutor(max_workers=n_workers) as pool:
        return list(verbose_progress(pool.map(solve_one, directions)))


def SolveBoundaryCoefs(basis: Basis,
                       known: Sequence[ColorConstraint],
                       free_systems: Sequence,
                       directions: npt.NDArray,
                       settings: SolverSettings = BOUNDARY_SOLVER_SETTINGS,
                       n_workers: int = DEFAULT_BUILDER_SETTINGS.n_workers,
                       parallel_threshold: int = DEFAULT_BUILDER_SETTINGS.parallel_threshold,
                       verbose: bool = False) -> List[npt.NDArray]:
    """
    Maximize a direction-aligned linear functional once per direction.

    Args:
        basis: Spectral basis the boundary spectra are expressed in
        known: (color system, target color) pairs every boundary spectrum must reproduce
        free_systems: Color systems spanning the objective, 3 dimensions each
        directions: M x 3k unit directions, k = len(free_systems)
        settings: Solver settings; [0, 1] bounds are always imposed
        n_workers: Thread pool size for batches above the parallel threshold
        parallel_threshold: Batches of at most this many directions are solved serially
        verbose: Show a progress bar

    Returns:
        List[npt.NDArray]: One coefficient vector per direction, in direction order; failed
        solves are NaN
    """
    if len(free_systems) == 0:
        raise ValueError("At least one free color system is required to span a boundary")
    U = OrthogonalObjective(free_systems)
    directions = np.atleast_2d(np.asarray(directions, dtype=float))
    if directions.shape[1] != U.shape[1]:
        raise ValueError(f"Directions of dimension {directions.shape[1]} do not match "
                         f"{len(free_systems)} free systems ({U.shape[1]} dimensions)")

    cons = [c for c in [LinearEqualityConstraint(basis, DeduplicateConstraints(known))] if c is not None]
    cons.append(BoundednessConstraint(basis))
    B = basis.functions

    def solve_one(d: npt.NDArray) -> npt.NDArray:
        # max (U d)^T (B x) == min -a . x
        a = (U @ d) @ B
        return RunSolver(lambda x: -a @ x, lambda x: -a, basis.zero_coef(), cons, settings)

    return _SolveDirections(solve_one, directions, n_workers, parallel_threshold, verbose)


def _ToSamples(basis: Basis, coefs: List[npt.NDArray], output_system: Callable,
               deduplicate: bool) -> List[MismatchSample]:
    samples = []
    for coef in coefs:
        spectrum = np.clip(basis(coef), 0.0, 1.0)
        sample = MismatchSample(np.asarray(output_system(spectrum), dtype=float), spectrum, coef)
        if sample.is_finite():
            samples.append(sample)

    n_filtered = len(coefs) - len(samples)
    if n_filtered > 0:
        logger.debug(f"Filtered {n_filtered} non-finite boundary samples out of {len(coefs)}")

    if deduplicate:
        unique = []
        for sample in samples:
            if not any(np.array_equal(sample.spectrum, u.spectrum) for u in unique):
                unique.append(sample)
        samples = unique
    return samples


def SolveBoundary(basis: Basis,
                  known: Sequence[ColorConstraint],
                  free_systems: Sequence,
                  directions: npt.NDArray,
                  settings: SolverSettings = BOUNDARY_SOLVER_SETTINGS,
                  deduplicate: bool = False,
                  n_workers: int = DEFAULT_BUILDER_SETTINGS.n_workers,
                  parallel_threshold: int = DEFAULT_BUILDER_SETTINGS.parallel_threshold,
                  verbose: bool = False) -> List[MismatchSample]:
    """
    Boundary samples of a mismatch volume, colored under the last free system.

    Spectra are clamped to [0, 1] and non-finite samples are dropped. Set `deduplicate`
    only where ordering does not matter; the incremental builder relies on insertion order.
    """
    coefs = SolveBoundaryCoefs(basis, known, free_systems, directions, settings,
                               n_workers, parallel_threshold, verbose)
    output_system = free_systems[-1]
    if not callable(output_system):
        matrix = SystemMatrix(output_system)
        output_system = lambda s: s @ matrix.T
    return _ToSamples(basis, coefs, output_system, deduplicate)


def SolveIndirectBoundary(basis: Basis,
                          known: Sequence[ColorConstraint],
                          nlinear_known: Sequence[IndirectColorConstraint],
                          objective: IndirectColorSystem,
                          directions: npt.NDArray,
                          settings: SolverSettings = BOUNDARY_SOLVER_SETTINGS,
                          n_workers: int = DEFAULT_BUILDER_SETTINGS.n_workers,
                          parallel_threshold: int = DEFAULT_BUILDER_SETTINGS.parallel_threshold,
                          verbose: bool = False) -> List[MismatchSample]:
    """
    Boundary samples for an interreflection (power series) objective.

    Each direction d maximizes `d . sum_p A_p r^p`; known constraints may be linear or
    power series. Samples are colored under the objective system.
    """
    directions = np.atleast_2d(np.asarray(directions, dtype=float))
    if directions.shape[1] != 3:
        raise ValueError(f"Indirect boundary directions must be 3-dimensional, got {directions.shape[1]}")

    cons = [c for c in [LinearEqualityConstraint(basis, DeduplicateConstraints(known)),
                        NonlinearEqualityConstraint(basis, nlinear_known)] if c is not None]
    cons.append(BoundednessConstraint(basis))
    matrices = objective.finalize()
    B = basis.functions

    def solve_one(d: npt.NDArray) -> npt.NDArray:
        weights = [d @ A for A in matrices]

        def fun(x):
            r = basis(x)
            return -sum(w @ r ** p for p, w in enumerate(weights))

        def jac(x):
            r = basis(x)
            grad = np.zeros(basis.n_bases)
            for p, w in enumerate(weights[1:], start=1):
                grad += (w * (p * r ** (p - 1))) @ B
            return -grad

        return RunSolver(fun, jac, basis.zero_coef(), cons, settings)

    coefs = _SolveDirections(solve_one, directions, n_workers, parallel_threshold, verbose)
    return _ToSamples(basis, coefs, objective, deduplicate=False)


def SampleColorSolid(basis: Basis, csys: ColorSystem, n_samples: int, seed: int = 4,
                     settings: SolverSettings = BOUNDARY_SOLVER_SETTINGS,
                     verbose: bool = False) -> List[MismatchSample]:
    """Boundary samples of the object color solid of a single color system."""
    directions = GenerateUnitDirections(3, n_samples, seed)
    samples = SolveBoundary(basis, [], [csys], directions, settings, deduplicate=True, verbose=verbose)
    logger.debug(f"Sampled {len(samples)} color solid boundary points from {n_samples} directions")
    return samples
