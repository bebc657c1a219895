from dataclasses import dataclass, field

import numpy as np
import numpy.typing as npt


@dataclass
class SpectrumSample:
    """A reflectance spectrum together with the basis coefficients that generated it."""
    spectrum: npt.NDArray
    coef: npt.NDArray


@dataclass
class MismatchSample:
    """One point on (or inside) a mismatch volume.

    The color, spectrum and coefficients are produced together by the solvers, so
    `color` is always the projection of `spectrum` under the system that spans the volume.
    """
    color: npt.NDArray
    spectrum: npt.NDArray
    coef: npt.NDArray

    @staticmethod
    def zero(n_samples: int, n_bases: int) -> 'MismatchSample':
        return MismatchSample(np.zeros(3), np.zeros(n_samples), np.zeros(n_bases))

    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.spectrum)) and np.all(np.isfinite(self.coef))
                    and np.all(np.isfinite(self.color)))


@dataclass
class SurfaceInfo:
    """Surface data picked by the user from a scene; the diffuse color backs surface constraints."""
    object_i: int = -1
    position: npt.NDArray = field(default_factory=lambda: np.zeros(3))
    normal: npt.NDArray = field(default_factory=lambda: np.zeros(3))
    diffuse: npt.NDArray = field(default_factory=lambda: np.zeros(3))

    @staticmethod
    def invalid() -> 'SurfaceInfo':
        return SurfaceInfo()

    def is_valid(self) -> bool:
        return self.object_i >= 0

    def __eq__(self, other) -> bool:
        if not isinstance(other, SurfaceInfo):
            return NotImplemented
        return (self.object_i == other.object_i
                and np.allclose(self.position, other.position)
                and np.allclose(self.normal, other.normal)
                and np.allclose(self.diffuse, other.diffuse))

    def to_dict(self) -> dict:
        return {
            'object_i': self.object_i,
            'position': np.asarray(self.position).tolist(),
            'normal': np.asarray(self.normal).tolist(),
            'diffuse': np.asarray(self.diffuse).tolist(),
        }

    @staticmethod
    def from_dict(data: dict) -> 'SurfaceInfo':
        return SurfaceInfo(object_i=int(data['object_i']),
                           position=np.array(data['position'], dtype=float),
                           normal=np.array(data['normal'], dtype=float),
                           diffuse=np.array(data['diffuse'], dtype=float))
