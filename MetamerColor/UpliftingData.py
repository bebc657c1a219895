"""
Per-uplifting tessellation maintenance.

Every update tick advances the metamer builders of all vertices, realizes their current
metamers, and keeps a Delaunay tessellation over the color system boundary plus the
realized vertex colors. Downstream consumers interpolate basis coefficients over its
tetrahedra to assign reflectances to arbitrary colors.
"""
import copy
import logging
from typing import List, Optional, Tuple

import numpy as np
import numpy.typing as npt

from MetamerColor.ColorMath.Geometry import (BuildOptions, ConvexHull,
                                             FindEnclosingElement)
from MetamerColor.Constraints import MeasurementConstraint
from MetamerColor.MetamerBuilder import MetamerBuilder
from MetamerColor.Spectra.Basis import Basis
from MetamerColor.Uplifting import SceneResources, Uplifting, UpliftingVertex
from MetamerColor.Utils.CustomTypes import MismatchSample
from MetamerColor.Utils.Settings import (DEFAULT_BUILDER_SETTINGS,
                                         DEFAULT_TESSELLATION_SETTINGS,
                                         BuilderSettings,
                                         TessellationSettings)

logger = logging.getLogger(__name__)


class UpliftingData:
    """
    Boundary samples, per-vertex builders and the resulting tessellation of one uplifting.

    Builders are added and removed to match the uplifting's vertex list; a builder is
    never moved to another vertex.
    """

    def __init__(self, settings: TessellationSettings = DEFAULT_TESSELLATION_SETTINGS,
                 builder_settings: BuilderSettings = DEFAULT_BUILDER_SETTINGS):
        self.settings = settings
        self.builder_settings = builder_settings
        self.boundary: List[MismatchSample] = []
        self.interior: List[Optional[MismatchSample]] = []
        self.builders: List[MetamerBuilder] = []
        self.tessellation = ConvexHull()
        self.tessellation_samples: List[MismatchSample] = []
        self.basis: Optional[Basis] = None

        self._csys_key = None
        self._vertex_cache: List[Optional[Tuple[bool, object]]] = []
        self._included: List[bool] = []

    def _color_system_key(self, scene: SceneResources, uplifting: Uplifting) -> tuple:
        """Indices plus copies of the referenced resources, so in-place edits are detected."""
        basis = scene.bases[uplifting.basis_i]
        indices = (uplifting.observer_i, uplifting.illuminant_i, uplifting.basis_i, scene.as_rgb)
        arrays = [scene.observers[uplifting.observer_i], scene.illuminants[uplifting.illuminant_i],
                  basis.mean, basis.functions]
        return indices, [np.array(a, copy=True) for a in arrays]

    def _is_color_system_stale(self, key: tuple) -> bool:
        if self._csys_key is None:
            return True
        indices, arrays = key
        cached_indices, cached_arrays = self._csys_key
        return indices != cached_indices or not all(np.array_equal(a, b) for a, b in zip(arrays, cached_arrays))

    def _is_touched(self, i: int, vertex: UpliftingVertex) -> bool:
        cached = self._vertex_cache[i]
        return cached is None or cached[0] != vertex.is_active or cached[1] != vertex.constraint

    @staticmethod
    def _is_interior(vertex: UpliftingVertex) -> bool:
        return vertex.is_active and not isinstance(vertex.constraint, MeasurementConstraint)

    def update(self, scene: SceneResources, uplifting: Uplifting, seed: Optional[int] = None) -> bool:
        """
        Run one update tick.

        Args:
            scene: Scene resources referenced by the uplifting
            uplifting: The uplifting to maintain
            seed: Optional per-tick seed for boundary direction sampling

        Returns:
            bool: Whether the tessellation was rebuilt
        """
        key = self._color_system_key(scene, uplifting)
        is_color_system_stale = self._is_color_system_stale(key)
        is_tessellation_stale = is_color_system_stale or len(self.builders) != len(uplifting.verts)

        if is_color_system_stale:
            self.basis = scene.bases[uplifting.basis_i]
            self.boundary = uplifting.sample_color_solid(scene, self.settings.boundary_seed,
                                                         self.settings.n_boundary_samples)
            self._csys_key = key

        # Match builders to the vertex list
        n_verts = len(uplifting.verts)
        self.builders = self.builders[:n_verts] + [MetamerBuilder(self.builder_settings)
                                                   for _ in range(n_verts - len(self.builders))]
        self.interior = self.interior[:n_verts] + [None] * (n_verts - len(self.interior))
        self._vertex_cache = self._vertex_cache[:n_verts] + [None] * (n_verts - len(self._vertex_cache))

        for i, (vertex, builder) in enumerate(zip(uplifting.verts, self.builders)):
            if is_color_system_stale or not builder.supports_vertex(vertex):
                builder.set_vertex(vertex)

            is_touched = self._is_touched(i, vertex)
            if builder.is_converged() and not is_touched:
                continue
            self._vertex_cache[i] = (vertex.is_active, copy.deepcopy(vertex.constraint))

            if vertex.is_active:
                builder.advance(scene, uplifting, vertex, seed)
            new_sample = builder.realize(scene, uplifting, vertex)

            old_sample = self.interior[i]
            self.interior[i] = new_sample
            if old_sample is None or np.max(np.abs(old_sample.color - new_sample.color)) > self.settings.interior_epsilon:
                is_tessellation_stale = True

        included = [self._is_interior(v) for v in uplifting.verts]
        if included != self._included:
            is_tessellation_stale = True
        self._included = included

        if is_tessellation_stale:
            self._rebuild_tessellation()
        return is_tessellation_stale

    def _rebuild_tessellation(self):
        samples = self.boundary + [s for s, inc in zip(self.interior, self._included) if inc and s is not None]
        samples = [s for s in samples if s.is_finite()]
        self.tessellation_samples = samples
        if len(samples) < 4:
            self.tessellation.clear()
            return
        self.tessellation.build(np.array([s.color for s in samples]), BuildOptions.DELAUNAY)
        logger.debug(f"Rebuilt tessellation over {len(samples)} points, "
                     f"{len(self.tessellation.deln_elems)} tetrahedra")

    @property
    def element_inverses(self) -> npt.NDArray:
        """E x 3 x 3 per-tetrahedron inverse edge matrices."""
        return self.tessellation.deln_inverses

    @property
    def element_offsets(self) -> npt.NDArray:
        """E x 3 per-tetrahedron reference vertices."""
        return self.tessellation.deln_offsets

    @property
    def element_coefs(self) -> npt.NDArray:
        """E x K x 4 basis coefficients of every tetrahedron's corners, one column per corner."""
        if not self.tessellation.has_delaunay():
            return np.zeros((0, 0, 4))
        coefs = np.array([s.coef for s in self.tessellation_samples])
        return np.transpose(coefs[self.tessellation.deln_elems], (0, 2, 1))

    def find_enclosing_tetrahedron(self, point: npt.NDArray) -> Tuple[npt.NDArray, int]:
        if not self.tessellation.has_delaunay():
            raise ValueError("Uplifting has no tessellation to query; call update() first")
        return FindEnclosingElement(self.element_inverses, self.element_offsets, point)

    def realize_point(self, point: npt.NDArray) -> MismatchSample:
        """Interpolate a metamer for an arbitrary color over the tessellation."""
        bary, elem = self.find_enclosing_tetrahedron(point)
        coef = self.basis.clamp_coef(self.element_coefs[elem] @ bary)
        return MismatchSample(np.asarray(point, dtype=float), self.basis(coef), coef)
