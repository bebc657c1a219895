"""
Convex hulls and Delaunay tessellations over 3-D color point sets, with barycentric
point location.
"""
import logging
from enum import Flag, auto
from typing import Optional, Tuple

import numpy as np
import numpy.typing as npt
from scipy.spatial import ConvexHull as QhullConvexHull
from scipy.spatial import Delaunay, QhullError

logger = logging.getLogger(__name__)


class BuildOptions(Flag):
    HULL = auto()
    DELAUNAY = auto()
    BOTH = HULL | DELAUNAY


def ComputeElementInverses(verts: npt.NDArray, elems: npt.NDArray) -> Tuple[npt.NDArray, npt.NDArray]:
    """
    Per-tetrahedron inverse matrices for barycentric lookup.

    For a tetrahedron (v0, v1, v2, v3) the matrix holds the edges v0 - v3, v1 - v3, v2 - v3
    as columns; its inverse maps `p - v3` to the first three barycentric weights.

    Returns:
        Tuple[npt.NDArray, npt.NDArray]: (E x 3 x 3 inverses, E x 3 offset vertices v3)
    """
    corners = verts[elems]
    offsets = corners[:, 3]
    edges = np.transpose(corners[:, :3] - offsets[:, np.newaxis], (0, 2, 1))
    inverses = np.full(edges.shape, np.nan)
    # Flat tetrahedra have no barycentric frame; NaN inverses exclude them from lookups
    scale = np.prod(np.linalg.norm(edges, axis=1), axis=1)
    valid = np.abs(np.linalg.det(edges)) > 1e-10 * scale
    inverses[valid] = np.linalg.inv(edges[valid])
    return inverses, offsets


def FindEnclosingElement(inverses: npt.NDArray, offsets: npt.NDArray,
                         point: npt.NDArray) -> Tuple[npt.NDArray, int]:
    """
    Find the tetrahedron whose barycentric weights for `point` are closest to valid.

    Every tetrahedron is scored by the squared distance of its weight vector to that
    vector clamped into [0, 1]^4; the lowest score wins, which keeps the lookup stable
    for points drifting just outside the tessellation.

    Args:
        inverses: E x 3 x 3 inverse edge matrices
        offsets: E x 3 reference vertices
        point: 3-D query point

    Returns:
        Tuple[npt.NDArray, int]: (4 barycentric weights, element index)
    """
    if len(inverses) == 0:
        raise ValueError("Cannot locate a point in an empty tessellation")
    local = np.einsum('eij,ej->ei', inverses, np.asarray(point, dtype=float) - offsets)
    bary = np.concatenate([local, 1.0 - local.sum(axis=1, keepdims=True)], axis=1)
    error = np.sum((bary - np.clip(bary, 0.0, 1.0)) ** 2, axis=1)
    error[np.isnan(error)] = np.inf
    i = int(np.argmin(error))
    return bary[i], i


def ClosestPointOnTriangle(p: npt.NDArray, a: npt.NDArray, b: npt.NDArray, c: npt.NDArray) -> npt.NDArray:
    """Closest point to p on triangle abc, by Voronoi region of the triangle's features."""
    ab, ac, ap = b - a, c - a, p - a
    d1, d2 = ab @ ap, ac @ ap
    if d1 <= 0 and d2 <= 0:
        return a

    bp = p - b
    d3, d4 = ab @ bp, ac @ bp
    if d3 >= 0 and d4 <= d3:
        return b

    vc = d1 * d4 - d3 * d2
    if vc <= 0 and d1 >= 0 and d3 <= 0:
        return a + ab * (d1 / (d1 - d3))

    cp = p - c
    d5, d6 = ab @ cp, ac @ cp
    if d6 >= 0 and d5 <= d6:
        return c

    vb = d5 * d2 - d1 * d6
    if vb <= 0 and d2 >= 0 and d6 <= 0:
        return a + ac * (d2 / (d2 - d6))

    va = d3 * d6 - d5 * d4
    if va <= 0 and (d4 - d3) >= 0 and (d5 - d6) >= 0:
        return b + (c - b) * ((d4 - d3) / ((d4 - d3) + (d5 - d6)))

    denom = 1.0 / (va + vb + vc)
    return a + ab * (vb * denom) + ac * (vc * denom)


class ConvexHull:
    """
    Convex hull of a 3-D point set, optionally with a Delaunay tetrahedralization of its
    interior for barycentric interpolation.

    Degenerate inputs (coplanar, duplicate or too few points) leave the structure empty
    instead of raising; test `has_hull()` / `has_delaunay()` before querying.
    """

    def __init__(self, points: Optional[npt.NDArray] = None, options: BuildOptions = BuildOptions.BOTH):
        self.clear()
        if points is not None:
            self.build(points, options)

    def clear(self):
        self.verts = np.zeros((0, 3))
        self.hull_elems = np.zeros((0, 3), dtype=int)
        self.hull_equations = np.zeros((0, 4))
        self.deln_elems = np.zeros((0, 4), dtype=int)
        self.deln_inverses = np.zeros((0, 3, 3))
        self.deln_offsets = np.zeros((0, 3))

    def build(self, points: npt.NDArray, options: BuildOptions = BuildOptions.BOTH) -> 'ConvexHull':
        points = np.asarray(points, dtype=float)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"Hull points must be an M x 3 matrix, got shape {points.shape}")

        self.clear()
        try:
            if BuildOptions.HULL in options:
                hull = QhullConvexHull(points)
                self.hull_elems = hull.simplices
                self.hull_equations = hull.equations
            if BuildOptions.DELAUNAY in options:
                deln = Delaunay(points)
                self.deln_elems = deln.simplices
                self.deln_inverses, self.deln_offsets = ComputeElementInverses(points, deln.simplices)
        except QhullError as e:
            logger.warning(f"Degenerate point set of {len(points)} points, hull cleared: {str(e).splitlines()[0]}")
            self.clear()
            return self

        self.verts = points
        return self

    def has_hull(self) -> bool:
        return len(self.hull_elems) > 0

    def has_delaunay(self) -> bool:
        return len(self.deln_elems) > 0

    @property
    def vertex_count(self) -> int:
        return len(self.verts)

    def find_enclosing_element(self, point: npt.NDArray) -> Tuple[npt.NDArray, int]:
        """Barycentric weights and index of the tetrahedron containing (or nearest to) `point`."""
        if not self.has_delaunay():
            raise ValueError("Hull has no tetrahedralization to query")
        return FindEnclosingElement(self.deln_inverses, self.deln_offsets, point)

    def find_closest_interior(self, point: npt.NDArray) -> npt.NDArray:
        """
        Clamp a point onto the hull.

        A point inside (or on) the hull is returned unchanged; otherwise the closest point
        over all hull triangles facing the point is returned.
        """
        if not self.has_hull():
            raise ValueError("Hull has no boundary to query")
        point = np.asarray(point, dtype=float)

        distances = self.hull_equations[:, :3] @ point + self.hull_equations[:, 3]
        facing = np.flatnonzero(distances > 0)
        if len(facing) == 0:
            return point

        best, best_dist = point, np.inf
        for i in facing:
            a, b, c = self.verts[self.hull_elems[i]]
            candidate = ClosestPointOnTriangle(point, a, b, c)
            dist = np.sum((candidate - point) ** 2)
            if dist < best_dist:
                best, best_dist = candidate, dist
        return best
