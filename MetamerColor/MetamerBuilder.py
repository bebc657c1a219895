"""
Incremental mismatch volume construction for a single uplifting vertex.

Sampling a full mismatch volume takes hundreds of boundary solves, far too many for a
single interactive update. A MetamerBuilder instead gathers one small batch of boundary
samples per `advance()` call, retires samples of a previous constraint at the same rate
new ones arrive, and keeps a convex hull over the current queue from which metamers are
interpolated.
"""
import copy
import logging
from collections import deque
from enum import Enum
from typing import Iterable, Optional

import numpy as np

from MetamerColor.ColorMath.Geometry import ConvexHull
from MetamerColor.Constraints import MetamericConstraint
from MetamerColor.Uplifting import SceneResources, Uplifting, UpliftingVertex
from MetamerColor.Utils.CustomTypes import MismatchSample
from MetamerColor.Utils.Settings import DEFAULT_BUILDER_SETTINGS, BuilderSettings

logger = logging.getLogger(__name__)


class BuilderState(Enum):
    UNINITIALIZED = 0
    NO_MISMATCH = 1
    ACCUMULATING = 2
    CONVERGED = 3


class MetamerBuilder:
    """
    Owns the sample queue and convex hull of one vertex's mismatch volume.

    Lifecycle: `set_vertex()` resets sampling for a new constraint, `advance()` performs at
    most one batch of boundary solves, and `realize()` answers metamer queries from the
    hull, or by a direct solve while no valid hull exists. Callers check
    `supports_vertex()` before `realize()`; a False answer requires `set_vertex()`.
    """

    def __init__(self, settings: BuilderSettings = DEFAULT_BUILDER_SETTINGS):
        self.settings = settings
        self.samples = deque()
        self.samples_curr = 0
        self.samples_prev = 0
        self.cached_constraint: Optional[MetamericConstraint] = None
        self.hull = ConvexHull()
        self.did_sample = False
        self._hull_coefs = np.zeros((0, 0))
        self._no_mismatch = False

    @property
    def state(self) -> BuilderState:
        if self.cached_constraint is None:
            return BuilderState.UNINITIALIZED
        if self._no_mismatch:
            return BuilderState.NO_MISMATCH
        if self.is_converged():
            return BuilderState.CONVERGED
        return BuilderState.ACCUMULATING

    def clear(self):
        """Drop all samples, the hull and both counters."""
        self.samples.clear()
        self.samples_curr = 0
        self.samples_prev = 0
        self.hull.clear()
        self._hull_coefs = np.zeros((0, 0))

    def set_vertex(self, vertex: UpliftingVertex):
        """
        Start building for the vertex's current constraint.

        Existing samples are kept and marked stale; `insert_samples()` retires them as new
        samples come in, so the hull never collapses between constraints.
        """
        self.cached_constraint = copy.deepcopy(vertex.constraint)
        self.samples_prev = len(self.samples)
        self.samples_curr = 0
        self.did_sample = True
        self._no_mismatch = False

    def supports_vertex(self, vertex: UpliftingVertex) -> bool:
        """Whether the vertex spans the same mismatch volume as the cached constraint."""
        return vertex.has_equal_mismatching(self.cached_constraint)

    def is_converged(self) -> bool:
        return self.hull.vertex_count - self.samples_prev >= self.settings.n_samples

    def advance(self, scene: SceneResources, uplifting: Uplifting, vertex: UpliftingVertex,
                seed: Optional[int] = None) -> bool:
        """
        Perform at most one batch of boundary sampling.

        Args:
            scene: Scene resources the vertex's color systems refer to
            uplifting: Uplifting owning the vertex
            vertex: The tracked vertex
            seed: Direction seed; defaults to the number of samples gathered so far

        Returns:
            bool: Whether new samples were gathered, i.e. the realized metamer may have changed
        """
        if self.cached_constraint is None:
            self.set_vertex(vertex)

        if not vertex.has_mismatching(uplifting):
            if not self._no_mismatch:
                logger.debug(f"Vertex '{vertex.name}' admits no mismatching, clearing builder")
            self.clear()
            self._no_mismatch = True
            # Consumers re-pull the direct solve result
            self.did_sample = True
            return False

        self._no_mismatch = False
        self.did_sample = not self.is_converged()
        if self.did_sample:
            seed = self.samples_curr if seed is None else seed
            self.insert_samples(vertex.realize_mismatch(scene, uplifting, seed, self.settings.n_samples_iter,
                                                       self.settings.n_workers))
            if self.is_converged():
                logger.debug(f"Vertex '{vertex.name}' converged with {len(self.samples)} samples")
        return self.did_sample

    def insert_samples(self, new_samples: Iterable[MismatchSample]):
        """
        Append a batch of samples, retiring as many stale samples as arrive, then rebuild
        the hull over the queue.
        """
        new_samples = list(new_samples)

        if self.samples_prev > 0:
            n_retire = min(len(new_samples), len(self.samples), self.samples_prev)
            for _ in range(n_retire):
                self.samples.popleft()
            self.samples_prev -= n_retire

        self.samples.extend(new_samples)
        self.samples_curr += len(new_samples)
        self._rebuild_hull()

    def _rebuild_hull(self):
        colors = np.array([s.color for s in self.samples]).reshape(-1, 3)
        if len(colors) < self.settings.hull_min_points:
            self.hull.clear()
            return

        extent = colors.max(axis=0) - colors.min(axis=0)
        if extent.min() <= self.settings.hull_min_extent:
            logger.debug(f"Sample extent {extent} too small for a hull")
            self.hull.clear()
            return

        self.hull.build(colors)
        self._hull_coefs = np.array([s.coef for s in self.samples])
        logger.debug(f"Rebuilt hull over {len(colors)} samples, {len(self.hull.deln_elems)} tetrahedra")

    def realize(self, scene: SceneResources, uplifting: Uplifting, vertex: UpliftingVertex) -> MismatchSample:
        """
        A metamer for the vertex's current mismatch position.

        Interpolates the coefficients of the enclosing hull tetrahedron when a hull exists,
        and otherwise falls back to solving the vertex's constraints directly. Never
        changes the sample queue.
        """
        basis = scene.bases[uplifting.basis_i]
        if not vertex.is_active:
            return MismatchSample.zero(basis.n_samples, basis.n_bases)

        if not self.hull.has_delaunay():
            return vertex.realize(scene, uplifting)

        bary, elem = self.hull.find_enclosing_element(vertex.get_mismatch_position())
        corners = self._hull_coefs[self.hull.deln_elems[elem]]
        coef = basis.clamp_coef(bary @ corners)
        spectrum = basis(coef)
        color = (uplifting.csys(scene)(spectrum) if vertex.is_position_shifting()
                 else vertex.get_vertex_position())
        return MismatchSample(np.asarray(color, dtype=float), spectrum, coef)
