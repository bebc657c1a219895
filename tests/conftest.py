"""Shared test fixtures."""

import numpy as np
import pytest

from MetamerColor.Spectra.Basis import GenerateCosineBasis
from MetamerColor.Uplifting import SceneResources


WAVELENGTHS = np.arange(400, 720, 10)  # 32 samples
N_BASES = 8

# Known target of the mismatch scenario; saturated but well inside the color solid
SCENARIO_TARGET = np.array([0.8, 0.1, 0.1])


def gaussian(center: float, width: float) -> np.ndarray:
    return np.exp(-0.5 * ((WAVELENGTHS - center) / width) ** 2)


def make_observer(peaks) -> np.ndarray:
    """Three gaussian sensors, each normalized so a flat white responds equally."""
    sensors = np.stack([gaussian(p, 20.0) for p in peaks], axis=1)
    return sensors / sensors.sum(axis=0, keepdims=True)


OBSERVER_A = make_observer([610, 540, 450])
OBSERVER_B = make_observer([590, 555, 470])
FLAT_ILLUMINANT = np.ones(len(WAVELENGTHS))
RAMP_ILLUMINANT = np.linspace(0.3, 1.7, len(WAVELENGTHS))


@pytest.fixture
def wavelengths() -> np.ndarray:
    return WAVELENGTHS


@pytest.fixture
def basis():
    return GenerateCosineBasis(WAVELENGTHS, N_BASES)


@pytest.fixture
def scene(basis) -> SceneResources:
    """Observer 0 under illuminant 0 is system A; observer 1 under illuminant 1 is system B."""
    return SceneResources(observers=[OBSERVER_A, OBSERVER_B],
                          illuminants=[FLAT_ILLUMINANT, RAMP_ILLUMINANT],
                          bases=[basis])


@pytest.fixture
def system_a(scene):
    return scene.csys(0, 0)


@pytest.fixture
def system_b(scene):
    return scene.csys(1, 1)


@pytest.fixture
def valid_spectrum(basis) -> np.ndarray:
    """A smooth reflectance in [0, 1] that lies exactly in the basis span."""
    coef = np.zeros(N_BASES)
    coef[1] = 0.4
    coef[2] = -0.3
    coef[3] = 0.2
    return basis(coef)
