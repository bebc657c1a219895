"""
Single-shot metamer solvers.

Every solve searches basis coefficients with SLSQP; color-system constraints are linear
(or power-series) equalities in the coefficients, and reflectance boundedness is a pair of
linear inequalities per wavelength sample.
"""
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import numpy.typing as npt
from scipy.optimize import minimize

from MetamerColor.Spectra.Basis import Basis
from MetamerColor.Spectra.ColorSystem import IndirectColorSystem
from MetamerColor.Utils.CustomTypes import SpectrumSample
from MetamerColor.Utils.Settings import (MEASUREMENT_SOLVER_SETTINGS,
                                         SPECTRUM_SOLVER_SETTINGS,
                                         SolverSettings)

logger = logging.getLogger(__name__)

# A (color system, target color) pair; the system is a ColorSystem or a finalized 3 x N matrix
ColorConstraint = Tuple[object, npt.NDArray]
IndirectColorConstraint = Tuple[IndirectColorSystem, npt.NDArray]


def SystemMatrix(system) -> npt.NDArray:
    """Finalized 3 x N projection matrix of a color system."""
    if hasattr(system, 'finalize'):
        return np.asarray(system.finalize(), dtype=float)
    matrix = np.asarray(system, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] != 3:
        raise ValueError(f"Color system matrix must be 3 x N, got shape {matrix.shape}")
    return matrix


def DeduplicateConstraints(constraints: Sequence[ColorConstraint]) -> List[Tuple[npt.NDArray, npt.NDArray]]:
    """Finalize constraints and drop exact (system, target) repeats."""
    unique = []
    for system, target in constraints:
        matrix, target = SystemMatrix(system), np.asarray(target, dtype=float)
        if target.shape != (3,):
            raise ValueError(f"Target color must be a 3-vector, got shape {target.shape}")
        if any(np.array_equal(matrix, m) and np.array_equal(target, t) for m, t in unique):
            continue
        unique.append((matrix, target))
    return unique


def LinearEqualityConstraint(basis: Basis, constraints: Sequence[Tuple[npt.NDArray, npt.NDArray]]) -> Optional[dict]:
    """
    Stack all color constraints into `A x == b`, with `A = M B` and `b = target - M mean`.

    Returns None when there is nothing to constrain.
    """
    if len(constraints) == 0:
        return None
    A = np.concatenate([matrix @ basis.functions for matrix, _ in constraints], axis=0)
    b = np.concatenate([target - matrix @ basis.mean for matrix, target in constraints])
    return {'type': 'eq',
            'fun': lambda x: A @ x - b,
            'jac': lambda x: A}


def BoundednessConstraint(basis: Basis) -> dict:
    """Inequalities `0 <= mean + B x <= 1` for every wavelength sample."""
    B, mean = basis.functions, basis.mean
    jac = np.concatenate([-B, B], axis=0)
    return {'type': 'ineq',
            'fun': lambda x: np.concatenate([1.0 - mean - B @ x, mean + B @ x]),
            'jac': lambda x: jac}


def NonlinearEqualityConstraint(basis: Basis, constraints: Sequence[IndirectColorConstraint]) -> Optional[dict]:
    """
    Power-series equalities `sum_p A_p r^p == target` with `r = mean + B x`.

    The Jacobian follows from the chain rule: `sum_p p A_p diag(r^(p - 1)) B`.
    """
    if len(constraints) == 0:
        return None
    finalized = [(system.finalize(), np.asarray(target, dtype=float)) for system, target in constraints]

    def fun(x):
        r = basis(x)
        residuals = []
        for matrices, target in finalized:
            color = sum(A @ r ** p for p, A in enumerate(matrices))
            residuals.append(color - target)
        return np.concatenate(residuals)

    def jac(x):
        r = basis(x)
        rows = []
        for matrices, _ in finalized:
            J = np.zeros((3, basis.n_bases))
            for p, A in enumerate(matrices[1:], start=1):
                J += (A * (p * r ** (p - 1))) @ basis.functions
            rows.append(J)
        return np.concatenate(rows, axis=0)

    return {'type': 'eq', 'fun': fun, 'jac': jac}


def RunSolver(objective, jacobian, x0: npt.NDArray, constraints: List[dict],
              settings: SolverSettings) -> npt.NDArray:
    """
    Run one SLSQP solve and return its coefficients.

    Solver failures are absorbed: a failed run still yields its last iterate, and an
    exception from the backend yields NaN coefficients for callers to filter.
    """
    try:
        result = minimize(objective, x0, jac=jacobian, method=settings.method,
                          constraints=constraints,
                          options={'maxiter': settings.max_iters, 'ftol': settings.ftol})
    except (ValueError, np.linalg.LinAlgError) as e:
        logger.warning(f"{settings.method} solve failed: {e}")
        return np.full_like(x0, np.nan)
    if not result.success:
        logger.debug(f"{settings.method} stopped early: {result.message}")
    return result.x


def SolveSpectrumCoef(basis: Basis, constraints: Sequence[ColorConstraint],
                      impose_boundedness: Optional[bool] = None,
                      settings: SolverSettings = SPECTRUM_SOLVER_SETTINGS) -> npt.NDArray:
    """
    Find basis coefficients of a metamer that reproduces every target color.

    The objective is the squared norm of the coefficients, i.e. the solution stays as
    close to the basis mean as the constraints allow.

    Args:
        basis: Spectral basis the metamer is expressed in
        constraints: (color system, target color) pairs that must be reproduced exactly
        impose_boundedness: Add [0, 1] reflectance inequalities; defaults to the settings' value
        settings: Solver settings

    Returns:
        npt.NDArray: Coefficient vector; not guaranteed to satisfy infeasible constraint sets
    """
    if impose_boundedness is None:
        impose_boundedness = settings.impose_boundedness

    unique = DeduplicateConstraints(constraints)
    cons = [c for c in [LinearEqualityConstraint(basis, unique)] if c is not None]
    if impose_boundedness:
        cons.append(BoundednessConstraint(basis))

    return RunSolver(lambda x: x @ x, lambda x: 2 * x, basis.zero_coef(), cons, settings)


def SolveSpectrum(basis: Basis, constraints: Sequence[ColorConstraint],
                  impose_boundedness: Optional[bool] = None,
                  settings: SolverSettings = SPECTRUM_SOLVER_SETTINGS) -> SpectrumSample:
    """Solve for a metamer and return it as a (spectrum, coefficients) pair."""
    coef = SolveSpectrumCoef(basis, constraints, impose_boundedness, settings)
    return SpectrumSample(basis(coef), coef)


def SolveIndirectSpectrumCoef(basis: Basis,
                              linear: Sequence[ColorConstraint],
                              nlinear: Sequence[IndirectColorConstraint],
                              impose_boundedness: Optional[bool] = None,
                              settings: SolverSettings = SPECTRUM_SOLVER_SETTINGS) -> npt.NDArray:
    """Same as SolveSpectrumCoef, with additional power-series (interreflection) constraints."""
    if impose_boundedness is None:
        impose_boundedness = settings.impose_boundedness

    cons = [c for c in [LinearEqualityConstraint(basis, DeduplicateConstraints(linear)),
                        NonlinearEqualityConstraint(basis, nlinear)] if c is not None]
    if impose_boundedness:
        cons.append(BoundednessConstraint(basis))

    return RunSolver(lambda x: x @ x, lambda x: 2 * x, basis.zero_coef(), cons, settings)


def FitSpectrumCoef(basis: Basis, spectrum: npt.NDArray,
                    settings: SolverSettings = MEASUREMENT_SOLVER_SETTINGS) -> npt.NDArray:
    """
    Fit basis coefficients to a measured reflectance.

    Minimizes the squared spectral distance while keeping the reconstruction inside [0, 1].
    """
    spectrum = np.asarray(spectrum, dtype=float)
    if spectrum.shape != (basis.n_samples,):
        raise ValueError(f"Measured spectrum of shape {spectrum.shape} does not match {basis.n_samples} samples")

    B = basis.functions

    def objective(x):
        diff = basis(x) - spectrum
        return diff @ diff

    def jacobian(x):
        return 2 * B.T @ (basis(x) - spectrum)

    cons = [BoundednessConstraint(basis)] if settings.impose_boundedness else []
    coef = RunSolver(objective, jacobian, basis.project(spectrum), cons, settings)
    return basis.clamp_coef(coef)
