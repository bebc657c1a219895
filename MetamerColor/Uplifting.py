import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np
import numpy.typing as npt

from MetamerColor.ColorMath.BoundarySolver import SampleColorSolid
from MetamerColor.Constraints import (ConstraintFromDict, ConstraintToDict,
                                      MetamericConstraint)
from MetamerColor.Spectra.Basis import Basis
from MetamerColor.Spectra.ColorSystem import ColorSystem, IndirectColorSystem
from MetamerColor.Utils.CustomTypes import MismatchSample

logger = logging.getLogger(__name__)


class SceneResources:
    """
    Observers, illuminants and bases available to upliftings, addressed by index.

    Args:
        observers: List of N x 3 observer responses
        illuminants: List of illuminant spectra of length N
        bases: List of spectral bases over the same N samples
        as_rgb: Whether color systems output linear sRGB instead of raw observer responses
    """

    def __init__(self, observers: List[npt.NDArray], illuminants: List[npt.NDArray],
                 bases: List[Basis], as_rgb: bool = False):
        self.observers = [np.array(o, dtype=float) for o in observers]
        self.illuminants = [np.array(i, dtype=float) for i in illuminants]
        self.bases = list(bases)
        self.as_rgb = as_rgb

    def csys(self, observer_i: int, illuminant_i: int) -> ColorSystem:
        return ColorSystem(self.observers[observer_i], self.illuminants[illuminant_i], as_rgb=self.as_rgb)

    def indirect_csys(self, observer_i: int, powers: List[npt.NDArray]) -> IndirectColorSystem:
        return IndirectColorSystem(self.observers[observer_i], powers, as_rgb=self.as_rgb)


@dataclass
class UpliftingVertex:
    """A named constraint inside an uplifting; inactive vertices realize to black."""
    name: str
    constraint: MetamericConstraint
    is_active: bool = True

    def realize(self, scene: SceneResources, uplifting: 'Uplifting') -> MismatchSample:
        """Solve the constraint directly, returning the spectrum with its resolved position."""
        basis = scene.bases[uplifting.basis_i]
        if not self.is_active:
            return MismatchSample.zero(basis.n_samples, basis.n_bases)

        sample = self.constraint.realize(scene, uplifting)
        color = (uplifting.csys(scene)(sample.spectrum) if self.is_position_shifting()
                 else self.get_vertex_position())
        return MismatchSample(np.asarray(color, dtype=float), sample.spectrum, sample.coef)

    def realize_mismatch(self, scene: SceneResources, uplifting: 'Uplifting',
                         seed: int, n_samples: int, n_workers: int = 1) -> List[MismatchSample]:
        if not self.has_mismatching(uplifting):
            return []
        return self.constraint.realize_mismatch(scene, uplifting, seed, n_samples, n_workers)

    def has_mismatching(self, uplifting: 'Uplifting') -> bool:
        return self.constraint.has_mismatching(uplifting)

    def has_equal_mismatching(self, other: MetamericConstraint) -> bool:
        return other is not None and self.constraint.has_equal_mismatching(other)

    def is_position_shifting(self) -> bool:
        return self.constraint.is_position_shifting()

    def get_vertex_position(self) -> npt.NDArray:
        return self.constraint.get_vertex_position()

    def get_mismatch_position(self) -> npt.NDArray:
        return self.constraint.get_mismatch_position()

    def set_mismatch_position(self, color: npt.NDArray):
        self.constraint.set_mismatch_position(color)

    def has_surface(self) -> bool:
        return self.constraint.has_surface()

    def to_dict(self) -> dict:
        return {'name': self.name, 'is_active': self.is_active,
                'constraint': ConstraintToDict(self.constraint)}

    @staticmethod
    def from_dict(data: dict) -> 'UpliftingVertex':
        return UpliftingVertex(data['name'], ConstraintFromDict(data['constraint']), bool(data['is_active']))


@dataclass
class Uplifting:
    """
    A set of constrained vertices sharing one base color system and spectral basis.

    The base color system is the (observer, illuminant) pair all vertex positions are
    expressed in.
    """
    observer_i: int = 0
    illuminant_i: int = 0
    basis_i: int = 0
    verts: List[UpliftingVertex] = field(default_factory=list)

    def csys(self, scene: SceneResources) -> ColorSystem:
        return scene.csys(self.observer_i, self.illuminant_i)

    def sample_color_solid(self, scene: SceneResources, seed: int, n_samples: int,
                           verbose: bool = False) -> List[MismatchSample]:
        """Boundary of the base color system's object color solid."""
        samples = SampleColorSolid(scene.bases[self.basis_i], self.csys(scene), n_samples, seed, verbose=verbose)
        logger.info(f"Sampled {len(samples)} color solid boundary points for observer {self.observer_i}, "
                    f"illuminant {self.illuminant_i}")
        return samples

    def to_dict(self) -> dict:
        return {'observer_i': self.observer_i, 'illuminant_i': self.illuminant_i,
                'basis_i': self.basis_i, 'verts': [v.to_dict() for v in self.verts]}

    @staticmethod
    def from_dict(data: dict) -> 'Uplifting':
        return Uplifting(int(data['observer_i']), int(data['illuminant_i']), int(data['basis_i']),
                         [UpliftingVertex.from_dict(v) for v in data['verts']])
