"""Tests for color systems."""

import numpy as np
import pytest

from MetamerColor.Spectra.ColorSystem import ColorSystem, IndirectColorSystem
from conftest import (FLAT_ILLUMINANT, OBSERVER_A, OBSERVER_B, RAMP_ILLUMINANT,
                      WAVELENGTHS)


def test_finalized_white_has_unit_luminance():
    csys = ColorSystem(OBSERVER_B, RAMP_ILLUMINANT)
    matrix = csys.finalize()
    assert matrix.shape == (3, len(WAVELENGTHS))
    assert csys(np.ones(len(WAVELENGTHS)))[1] == pytest.approx(1.0)


def test_normalized_channels_give_unit_white():
    csys = ColorSystem(OBSERVER_B, RAMP_ILLUMINANT, normalize_channels=True)
    np.testing.assert_allclose(csys(np.ones(len(WAVELENGTHS))), np.ones(3))


def test_black_is_zero_and_batches_match(system_a):
    assert np.all(system_a(np.zeros(len(WAVELENGTHS))) == 0)
    spectra = np.random.default_rng(1).uniform(0, 1, (4, len(WAVELENGTHS)))
    colors = system_a(spectra)
    assert colors.shape == (4, 3)
    np.testing.assert_allclose(colors[3], system_a(spectra[3]))


def test_equality_follows_finalized_matrix():
    assert ColorSystem(OBSERVER_A, FLAT_ILLUMINANT) == ColorSystem(OBSERVER_A.copy(), FLAT_ILLUMINANT.copy())
    # Scaling the illuminant is normalized away
    assert ColorSystem(OBSERVER_A, FLAT_ILLUMINANT) == ColorSystem(OBSERVER_A, 2 * FLAT_ILLUMINANT)
    assert ColorSystem(OBSERVER_A, FLAT_ILLUMINANT) != ColorSystem(OBSERVER_A, RAMP_ILLUMINANT)


def test_invalid_shapes_raise():
    with pytest.raises(ValueError):
        ColorSystem(OBSERVER_A[:, :2], FLAT_ILLUMINANT)
    with pytest.raises(ValueError):
        ColorSystem(OBSERVER_A, FLAT_ILLUMINANT[:-1])


def test_cie_white_maps_to_rgb_white():
    wavelengths = np.arange(380, 785, 5)
    xyz = ColorSystem.from_cie(wavelengths, as_rgb=False)
    assert xyz(np.ones(len(wavelengths)))[1] == pytest.approx(1.0)

    rgb = ColorSystem.from_cie(wavelengths)
    np.testing.assert_allclose(rgb(np.ones(len(wavelengths))), np.ones(3), atol=2e-2)


def test_indirect_system_evaluates_power_series():
    p0 = np.full(len(WAVELENGTHS), 0.1)
    p1 = RAMP_ILLUMINANT
    p2 = 0.5 * FLAT_ILLUMINANT
    csys = IndirectColorSystem(OBSERVER_A, [p0, p1, p2])
    matrices = csys.finalize()
    assert len(matrices) == 3

    r = np.linspace(0.1, 0.9, len(WAVELENGTHS))
    expected = matrices[0].sum(axis=1) + matrices[1] @ r + matrices[2] @ r ** 2
    np.testing.assert_allclose(csys(r), expected)


def test_indirect_system_rejects_bad_powers():
    with pytest.raises(ValueError):
        IndirectColorSystem(OBSERVER_A, [np.ones(5)])
