"""
Metameric constraints attached to uplifting vertices.

A constraint is one of four variants: a measured spectrum, a direct color, a direct
surface color, or an indirect (interreflected) surface color. The color-based variants
pin a base color `colr_i` under the uplifting's own color system and carry a list of
secondary constraints; the last active secondary constraint is the free variable whose
color positions the vertex inside its mismatch volume.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Type

import numpy as np
import numpy.typing as npt

from MetamerColor.ColorMath.BoundarySolver import (GenerateUnitDirections,
                                                   SolveBoundary,
                                                   SolveIndirectBoundary)
from MetamerColor.ColorMath.SpectrumSolver import FitSpectrumCoef, SolveSpectrum
from MetamerColor.Utils.CustomTypes import (MismatchSample, SpectrumSample,
                                            SurfaceInfo)

logger = logging.getLogger(__name__)


def _ToColor(value) -> npt.NDArray:
    color = np.array(value, dtype=float)
    if color.shape != (3,):
        raise ValueError(f"Color must be a 3-vector, got shape {color.shape}")
    return color


def _HasDuplicates(items: list) -> bool:
    return any(items[i] == items[j] for i in range(len(items)) for j in range(i + 1, len(items)))


def _HasEqualSecondaries(a, b) -> bool:
    """Same base, same known constraints, and a free variable that differs in color only."""
    if type(a) is not type(b):
        return False
    if (a.is_base_active != b.is_base_active
            or not np.allclose(a.colr_i, b.colr_i)
            or len(a.cstr_j) != len(b.cstr_j)):
        return False
    active_a, active_b = a.active_constraints(), b.active_constraints()
    if len(active_a) != len(active_b):
        return False
    if not active_a:
        return True
    return active_a[:-1] == active_b[:-1] and active_a[-1].is_similar(active_b[-1])


@dataclass(eq=False)
class LinearConstraint:
    """A target color under a secondary (observer, illuminant) color system."""
    is_active: bool = True
    cmfs_j: int = 0
    illm_j: int = 0
    colr_j: npt.NDArray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        self.colr_j = _ToColor(self.colr_j)

    def __eq__(self, other) -> bool:
        if not isinstance(other, LinearConstraint):
            return NotImplemented
        return self.is_similar(other) and np.allclose(self.colr_j, other.colr_j)

    def is_similar(self, other: 'LinearConstraint') -> bool:
        """Equal in everything but the target color."""
        return (self.is_active == other.is_active
                and self.cmfs_j == other.cmfs_j
                and self.illm_j == other.illm_j)

    def to_dict(self) -> dict:
        return {'is_active': self.is_active, 'cmfs_j': self.cmfs_j,
                'illm_j': self.illm_j, 'colr_j': self.colr_j.tolist()}

    @staticmethod
    def from_dict(data: dict) -> 'LinearConstraint':
        return LinearConstraint(bool(data['is_active']), int(data['cmfs_j']),
                                int(data['illm_j']), data['colr_j'])


@dataclass(eq=False)
class NLinearConstraint:
    """A target color under an interreflection power series observed by `cmfs_j`."""
    is_active: bool = True
    cmfs_j: int = 0
    powr_j: List[npt.NDArray] = field(default_factory=list)
    colr_j: npt.NDArray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        self.powr_j = [np.asarray(p, dtype=float) for p in self.powr_j]
        self.colr_j = _ToColor(self.colr_j)

    def __eq__(self, other) -> bool:
        if not isinstance(other, NLinearConstraint):
            return NotImplemented
        return self.is_similar(other) and np.allclose(self.colr_j, other.colr_j)

    def is_similar(self, other: 'NLinearConstraint') -> bool:
        return (self.is_active == other.is_active
                and self.cmfs_j == other.cmfs_j
                and len(self.powr_j) == len(other.powr_j)
                and all(np.allclose(a, b) for a, b in zip(self.powr_j, other.powr_j)))

    def to_dict(self) -> dict:
        return {'is_active': self.is_active, 'cmfs_j': self.cmfs_j,
                'powr_j': [p.tolist() for p in self.powr_j], 'colr_j': self.colr_j.tolist()}

    @staticmethod
    def from_dict(data: dict) -> 'NLinearConstraint':
        return NLinearConstraint(bool(data['is_active']), int(data['cmfs_j']),
                                 data['powr_j'], data['colr_j'])


class MetamericConstraint(ABC):
    """Base class of the constraint variants an uplifting vertex can carry."""

    kind: str = ''

    @abstractmethod
    def realize(self, scene, uplifting) -> SpectrumSample:
        """Solve directly for one metamer satisfying this constraint."""
        pass

    def realize_mismatch(self, scene, uplifting, seed: int, n_samples: int,
                         n_workers: int = 1, verbose: bool = False) -> List[MismatchSample]:
        """Boundary samples of this constraint's mismatch volume; empty without one."""
        return []

    @abstractmethod
    def has_mismatching(self, uplifting) -> bool:
        """Whether the constraint leaves a mismatch volume to explore."""
        pass

    def has_equal_mismatching(self, other: 'MetamericConstraint') -> bool:
        """Whether `other` spans the same mismatch volume, ignoring the free variable's color."""
        return type(self) is type(other)

    def is_position_shifting(self) -> bool:
        return True

    def get_vertex_position(self) -> npt.NDArray:
        return np.zeros(3)

    def get_mismatch_position(self) -> npt.NDArray:
        return np.zeros(3)

    def set_mismatch_position(self, color: npt.NDArray):
        pass

    def has_surface(self) -> bool:
        return False

    @abstractmethod
    def to_dict(self) -> dict:
        pass


class MeasurementConstraint(MetamericConstraint):
    """A measured reflectance; realized by fitting the basis to it."""

    kind = 'measurement'

    def __init__(self, measure: npt.NDArray):
        self.measure = np.asarray(measure, dtype=float)

    def __eq__(self, other) -> bool:
        if not isinstance(other, MeasurementConstraint):
            return NotImplemented
        return self.measure.shape == other.measure.shape and np.allclose(self.measure, other.measure)

    def realize(self, scene, uplifting) -> SpectrumSample:
        basis = scene.bases[uplifting.basis_i]
        coef = FitSpectrumCoef(basis, self.measure)
        return SpectrumSample(basis(coef), coef)

    def has_mismatching(self, uplifting) -> bool:
        return False

    def to_dict(self) -> dict:
        return {'type': self.kind, 'measurement': self.measure.tolist()}

    @classmethod
    def from_dict(cls, data: dict) -> 'MeasurementConstraint':
        return cls(data['measurement'])


class DirectColorConstraint(MetamericConstraint):
    """
    A base color under the uplifting's color system, plus secondary colors under other
    color systems.

    Args:
        is_base_active: Whether `colr_i` is a hard roundtrip constraint; when inactive the
            base color only anchors the vertex position
        colr_i: Base color under the uplifting's color system
        cstr_j: Secondary constraints; the last active one is the free variable
    """

    kind = 'direct'

    def __init__(self, is_base_active: bool = True, colr_i=None, cstr_j: List[LinearConstraint] = None):
        self.is_base_active = is_base_active
        self.colr_i = np.zeros(3) if colr_i is None else _ToColor(colr_i)
        self.cstr_j = list(cstr_j) if cstr_j is not None else []

    def __eq__(self, other) -> bool:
        if type(self) is not type(other):
            return NotImplemented
        return (self.is_base_active == other.is_base_active
                and np.allclose(self.colr_i, other.colr_i)
                and self.cstr_j == other.cstr_j)

    def active_constraints(self) -> List[LinearConstraint]:
        return [c for c in self.cstr_j if c.is_active]

    def is_position_shifting(self) -> bool:
        return self.is_base_active

    def get_vertex_position(self) -> npt.NDArray:
        return self.colr_i

    def get_mismatch_position(self) -> npt.NDArray:
        active = self.active_constraints()
        return active[-1].colr_j if active else np.zeros(3)

    def set_mismatch_position(self, color: npt.NDArray):
        active = self.active_constraints()
        if active:
            active[-1].colr_j = _ToColor(color)

    def realize(self, scene, uplifting) -> SpectrumSample:
        basis = scene.bases[uplifting.basis_i]
        constraints = [(uplifting.csys(scene), self.colr_i)]
        constraints += [(scene.csys(c.cmfs_j, c.illm_j), c.colr_j) for c in self.active_constraints()]
        return SolveSpectrum(basis, constraints)

    def realize_mismatch(self, scene, uplifting, seed: int, n_samples: int,
                         n_workers: int = 1, verbose: bool = False) -> List[MismatchSample]:
        active = self.active_constraints()
        if not active:
            return []
        base = uplifting.csys(scene)

        objectives = [base] if self.is_base_active else []
        objectives += [scene.csys(c.cmfs_j, c.illm_j) for c in active]

        known = [(base, self.colr_i)] if self.is_base_active else []
        known += [(scene.csys(c.cmfs_j, c.illm_j), c.colr_j) for c in active[:-1]]

        directions = GenerateUnitDirections(3 * len(objectives), n_samples, seed)
        return SolveBoundary(scene.bases[uplifting.basis_i], known, objectives, directions,
                             n_workers=n_workers, verbose=verbose)

    def has_mismatching(self, uplifting) -> bool:
        systems = [(c.cmfs_j, c.illm_j) for c in self.active_constraints()]
        systems.append((uplifting.observer_i, uplifting.illuminant_i))
        return len(systems) > 1 and len(set(systems)) == len(systems)

    def has_equal_mismatching(self, other: MetamericConstraint) -> bool:
        return _HasEqualSecondaries(self, other)

    def to_dict(self) -> dict:
        return {'type': self.kind,
                'is_base_active': self.is_base_active,
                'colr_i': self.colr_i.tolist(),
                'cstr_j': [c.to_dict() for c in self.cstr_j]}

    @classmethod
    def from_dict(cls, data: dict) -> 'DirectColorConstraint':
        return cls(bool(data['is_base_active']), data['colr_i'],
                   [LinearConstraint.from_dict(c) for c in data['cstr_j']])


class DirectSurfaceConstraint(DirectColorConstraint):
    """A direct color constraint whose base color was picked from a scene surface."""

    kind = 'direct_surface'

    def __init__(self, is_base_active: bool = True, colr_i=None, cstr_j: List[LinearConstraint] = None,
                 surface: SurfaceInfo = None):
        super().__init__(is_base_active, colr_i, cstr_j)
        self.surface = surface if surface is not None else SurfaceInfo.invalid()

    def __eq__(self, other) -> bool:
        result = super().__eq__(other)
        if result is NotImplemented:
            return result
        return result and self.surface == other.surface

    def realize(self, scene, uplifting) -> SpectrumSample:
        if not self.colr_i.any():
            basis = scene.bases[uplifting.basis_i]
            return SpectrumSample(np.zeros(basis.n_samples), basis.zero_coef())
        return super().realize(scene, uplifting)

    def has_surface(self) -> bool:
        return True

    def set_surface(self, surface: SurfaceInfo):
        self.surface = surface
        self.colr_i = _ToColor(surface.diffuse)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['surface'] = self.surface.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'DirectSurfaceConstraint':
        return cls(bool(data['is_base_active']), data['colr_i'],
                   [LinearConstraint.from_dict(c) for c in data['cstr_j']],
                   SurfaceInfo.from_dict(data['surface']))


class IndirectSurfaceConstraint(MetamericConstraint):
    """
    A surface color whose appearance includes interreflections.

    Each secondary constraint describes the light reaching the surface after bouncing,
    as a power series in the surface's own reflectance; `surfaces` holds the scene
    surface each secondary constraint was picked from.
    """

    kind = 'indirect_surface'

    def __init__(self, is_base_active: bool = True, colr_i=None, cstr_j: List[NLinearConstraint] = None,
                 surfaces: List[SurfaceInfo] = None):
        self.is_base_active = is_base_active
        self.colr_i = np.zeros(3) if colr_i is None else _ToColor(colr_i)
        self.cstr_j = list(cstr_j) if cstr_j is not None else []
        self.surfaces = list(surfaces) if surfaces is not None else []

    def __eq__(self, other) -> bool:
        if not isinstance(other, IndirectSurfaceConstraint):
            return NotImplemented
        return (self.is_base_active == other.is_base_active
                and np.allclose(self.colr_i, other.colr_i)
                and self.cstr_j == other.cstr_j
                and self.surfaces == other.surfaces)

    def active_constraints(self) -> List[NLinearConstraint]:
        return [c for c in self.cstr_j if c.is_active]

    def is_position_shifting(self) -> bool:
        return self.is_base_active

    def get_vertex_position(self) -> npt.NDArray:
        return self.colr_i

    def get_mismatch_position(self) -> npt.NDArray:
        active = self.active_constraints()
        return active[-1].colr_j if active else np.zeros(3)

    def set_mismatch_position(self, color: npt.NDArray):
        active = self.active_constraints()
        if active:
            active[-1].colr_j = _ToColor(color)

    def realize(self, scene, uplifting) -> SpectrumSample:
        basis = scene.bases[uplifting.basis_i]
        if not self.colr_i.any():
            return SpectrumSample(np.zeros(basis.n_samples), basis.zero_coef())
        # A plain roundtrip solve; interreflected positions are served from the mismatch volume
        return SolveSpectrum(basis, [(uplifting.csys(scene), self.colr_i)])

    def realize_mismatch(self, scene, uplifting, seed: int, n_samples: int,
                         n_workers: int = 1, verbose: bool = False) -> List[MismatchSample]:
        active = self.active_constraints()
        if not active:
            return []
        objective = scene.indirect_csys(active[-1].cmfs_j, active[-1].powr_j)
        known = [(uplifting.csys(scene), self.colr_i)] if self.is_base_active else []
        nlinear_known = [(scene.indirect_csys(c.cmfs_j, c.powr_j), c.colr_j) for c in active[:-1]]

        directions = GenerateUnitDirections(3, n_samples, seed)
        return SolveIndirectBoundary(scene.bases[uplifting.basis_i], known, nlinear_known, objective,
                                     directions, n_workers=n_workers, verbose=verbose)

    def has_mismatching(self, uplifting) -> bool:
        active = self.active_constraints()
        return len(active) > 0 and not _HasDuplicates(active) and len(active[-1].powr_j) > 0

    def has_equal_mismatching(self, other: MetamericConstraint) -> bool:
        return _HasEqualSecondaries(self, other)

    def has_surface(self) -> bool:
        return len(self.cstr_j) > 0

    def set_surface(self, surface: SurfaceInfo):
        if not self.cstr_j:
            return
        if self.surfaces:
            self.surfaces[-1] = surface
        else:
            self.surfaces.append(surface)
        if len(self.cstr_j) == 1:
            self.colr_i = _ToColor(surface.diffuse)

    def to_dict(self) -> dict:
        return {'type': self.kind,
                'is_base_active': self.is_base_active,
                'colr_i': self.colr_i.tolist(),
                'cstr_j': [c.to_dict() for c in self.cstr_j],
                'surfaces': [s.to_dict() for s in self.surfaces]}

    @classmethod
    def from_dict(cls, data: dict) -> 'IndirectSurfaceConstraint':
        return cls(bool(data['is_base_active']), data['colr_i'],
                   [NLinearConstraint.from_dict(c) for c in data['cstr_j']],
                   [SurfaceInfo.from_dict(s) for s in data['surfaces']])


CONSTRAINT_TYPES: Dict[str, Type[MetamericConstraint]] = {
    cls.kind: cls for cls in [MeasurementConstraint, DirectColorConstraint,
                              DirectSurfaceConstraint, IndirectSurfaceConstraint]
}


def ConstraintToDict(constraint: MetamericConstraint) -> dict:
    return constraint.to_dict()


def ConstraintFromDict(data: dict) -> MetamericConstraint:
    """Rebuild a constraint from its dictionary form, dispatching on the "type" tag."""
    kind = data.get('type')
    if kind not in CONSTRAINT_TYPES:
        raise ValueError(f"Unknown constraint type '{kind}', expected one of {sorted(CONSTRAINT_TYPES)}")
    return CONSTRAINT_TYPES[kind].from_dict(data)
