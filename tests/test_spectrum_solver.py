"""Tests for the direct metamer solvers."""

import numpy as np
import pytest

from MetamerColor.ColorMath.SpectrumSolver import (FitSpectrumCoef,
                                                   SolveIndirectSpectrumCoef,
                                                   SolveSpectrum,
                                                   SolveSpectrumCoef)
from MetamerColor.Spectra.ColorSystem import IndirectColorSystem
from MetamerColor.Utils.Settings import SolverSettings
from conftest import FLAT_ILLUMINANT, OBSERVER_A, WAVELENGTHS


def test_single_system_roundtrip(basis, system_a, valid_spectrum):
    target = system_a(valid_spectrum)
    sample = SolveSpectrum(basis, [(system_a, target)])
    np.testing.assert_allclose(system_a(sample.spectrum), target, atol=1e-3)
    np.testing.assert_allclose(sample.spectrum, basis(sample.coef))


@pytest.mark.parametrize("target", [[0.5, 0.5, 0.5], [0.3, 0.4, 0.2], [0.8, 0.1, 0.1]])
def test_roundtrip_for_feasible_targets(basis, system_a, target):
    sample = SolveSpectrum(basis, [(system_a, np.array(target))])
    np.testing.assert_allclose(system_a(sample.spectrum), target, atol=1e-3)


def test_accepts_finalized_matrices(basis, system_a, valid_spectrum):
    target = system_a(valid_spectrum)
    coef = SolveSpectrumCoef(basis, [(system_a.finalize(), target)])
    np.testing.assert_allclose(system_a(basis(coef)), target, atol=1e-3)


def test_two_system_roundtrip(basis, system_a, system_b, valid_spectrum):
    target_a, target_b = system_a(valid_spectrum), system_b(valid_spectrum)
    sample = SolveSpectrum(basis, [(system_a, target_a), (system_b, target_b)])
    np.testing.assert_allclose(system_a(sample.spectrum), target_a, atol=1e-3)
    np.testing.assert_allclose(system_b(sample.spectrum), target_b, atol=1e-3)


def test_duplicate_constraints_match_single_constraint(basis, system_a, scene):
    target = np.array([0.4, 0.3, 0.2])
    single = SolveSpectrum(basis, [(system_a, target)])
    doubled = SolveSpectrum(basis, [(system_a, target), (scene.csys(0, 0), target.copy())])
    np.testing.assert_allclose(doubled.spectrum, single.spectrum)


def test_boundedness(basis, system_a):
    # Saturated target whose minimum-norm metamer leaves [0, 1]
    step = 0.05 + 0.9 * (WAVELENGTHS >= 580)
    target = system_a(step)

    unbounded = SolveSpectrum(basis, [(system_a, target)], impose_boundedness=False)
    bounded = SolveSpectrum(basis, [(system_a, target)], impose_boundedness=True)

    assert unbounded.spectrum.min() < 0 or unbounded.spectrum.max() > 1
    assert bounded.spectrum.min() >= -1e-3
    assert bounded.spectrum.max() <= 1 + 1e-3


def test_no_constraints_returns_mean(basis):
    sample = SolveSpectrum(basis, [])
    np.testing.assert_allclose(sample.spectrum, basis.mean, atol=1e-8)


def test_wrong_target_dimension_raises(basis, system_a):
    with pytest.raises(ValueError):
        SolveSpectrum(basis, [(system_a, np.zeros(4))])


def test_indirect_roundtrip(basis, system_a, valid_spectrum):
    indirect = IndirectColorSystem(OBSERVER_A, [np.zeros(len(WAVELENGTHS)), 0.6 * FLAT_ILLUMINANT,
                                                0.3 * FLAT_ILLUMINANT])
    target_i = indirect(valid_spectrum)
    target_a = system_a(valid_spectrum)

    coef = SolveIndirectSpectrumCoef(basis, [(system_a, target_a)], [(indirect, target_i)],
                                     impose_boundedness=True,
                                     settings=SolverSettings(max_iters=200, ftol=1e-9, impose_boundedness=True))
    spectrum = basis(coef)
    np.testing.assert_allclose(system_a(spectrum), target_a, atol=1e-2)
    np.testing.assert_allclose(indirect(spectrum), target_i, atol=1e-2)


def test_fit_measured_spectrum(basis, valid_spectrum):
    coef = FitSpectrumCoef(basis, valid_spectrum)
    np.testing.assert_allclose(basis(coef), valid_spectrum, atol=1e-3)


def test_fit_keeps_reconstruction_bounded(basis):
    # A hard step cannot be represented exactly; the fit must stay a valid reflectance
    step = (WAVELENGTHS >= 550).astype(float)
    spectrum = basis(FitSpectrumCoef(basis, step))
    assert spectrum.min() >= -1e-3 and spectrum.max() <= 1 + 1e-3


def test_fit_rejects_wrong_length(basis):
    with pytest.raises(ValueError):
        FitSpectrumCoef(basis, np.zeros(5))
