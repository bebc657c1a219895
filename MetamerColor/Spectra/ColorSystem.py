import numpy as np
import numpy.typing as npt
from typing import List, Optional

from colour import SpectralShape
from colour.colorimetry import MSDS_CMFS_STANDARD_OBSERVER, SDS_ILLUMINANTS
from colour.models import RGB_COLOURSPACE_BT709


M_XYZ_to_RGB = RGB_COLOURSPACE_BT709.matrix_XYZ_to_RGB


def GetShapeFromWavelengths(wavelengths: npt.NDArray) -> SpectralShape:
    """SpectralShape matching a regularly spaced wavelength grid."""
    wavelengths = np.asarray(wavelengths, dtype=float)
    if len(wavelengths) < 2:
        raise ValueError("A wavelength grid needs at least two samples")
    return SpectralShape(float(wavelengths[0]), float(wavelengths[-1]),
                         float(wavelengths[1] - wavelengths[0]))


def LoadCIEObserver(wavelengths: npt.NDArray,
                    observer: str = 'CIE 1931 2 Degree Standard Observer') -> npt.NDArray:
    """N x 3 color matching functions from colour's standard observers, aligned to the grid."""
    shape = GetShapeFromWavelengths(wavelengths)
    return MSDS_CMFS_STANDARD_OBSERVER[observer].copy().align(shape).values


def LoadCIEIlluminant(wavelengths: npt.NDArray, illuminant: str = 'D65') -> npt.NDArray:
    """Illuminant spectral power distribution from colour's CIE tables, aligned to the grid."""
    shape = GetShapeFromWavelengths(wavelengths)
    return SDS_ILLUMINANTS[illuminant].copy().align(shape).values


class ColorSystem:
    """
    An observer response combined with an illuminant, reducible to a linear projection
    from a reflectance spectrum to a 3-component color.
    """

    def __init__(self, cmfs: npt.NDArray, illuminant: npt.NDArray,
                 wavelengths: Optional[npt.NDArray] = None,
                 as_rgb: bool = False,
                 normalize_channels: bool = False):
        """
        Initialize a ColorSystem.

        Args:
            cmfs: Observer response as an N x 3 matrix
            illuminant: Illuminant spectrum of length N
            wavelengths: Optional wavelength grid of length N
            as_rgb: Whether to output linear sRGB instead of the observer's own tristimulus values
            normalize_channels: Normalize every channel (not only luminance) so a perfect white reflects to 1

        Raises:
            ValueError: If the observer is not N x 3 or the illuminant length does not match
        """
        cmfs = np.asarray(cmfs, dtype=float)
        illuminant = np.asarray(illuminant, dtype=float)
        if cmfs.ndim != 2 or cmfs.shape[1] != 3:
            raise ValueError(f"Observer response must be an N x 3 matrix, got shape {cmfs.shape}")
        if illuminant.shape != (cmfs.shape[0],):
            raise ValueError(
                f"Illuminant of shape {illuminant.shape} does not match {cmfs.shape[0]} wavelength samples")

        self.cmfs = cmfs
        self.illuminant = illuminant
        self.wavelengths = None if wavelengths is None else np.asarray(wavelengths, dtype=float)
        self.as_rgb = as_rgb
        self.normalize_channels = normalize_channels
        self._finalized = None

    @staticmethod
    def from_cie(wavelengths: npt.NDArray,
                 observer: str = 'CIE 1931 2 Degree Standard Observer',
                 illuminant: str = 'D65',
                 as_rgb: bool = True) -> 'ColorSystem':
        """Build a color system from colour's standard observer and illuminant tables."""
        return ColorSystem(LoadCIEObserver(wavelengths, observer),
                           LoadCIEIlluminant(wavelengths, illuminant),
                           wavelengths, as_rgb=as_rgb)

    @property
    def n_samples(self) -> int:
        return self.cmfs.shape[0]

    def finalize(self) -> npt.NDArray:
        """
        Reduce observer and illuminant to a single 3 x N projection matrix.

        The matrix is scaled so the perfect white reflector has unit luminance, and
        optionally converted from XYZ to linear sRGB.

        Returns:
            npt.NDArray: 3 x N projection matrix
        """
        if self._finalized is None:
            weighted = (self.cmfs * self.illuminant[:, np.newaxis]).T
            if self.normalize_channels:
                matrix = weighted / weighted.sum(axis=1, keepdims=True)
            else:
                matrix = weighted / weighted[1].sum()
            if self.as_rgb:
                matrix = M_XYZ_to_RGB @ matrix
            self._finalized = matrix
        return self._finalized

    def __call__(self, spectrum: npt.NDArray) -> npt.NDArray:
        """Color of a spectrum (N) or of a batch of spectra (M x N)."""
        return np.asarray(spectrum, dtype=float) @ self.finalize().T

    def __eq__(self, other) -> bool:
        if not isinstance(other, ColorSystem):
            return NotImplemented
        return np.array_equal(self.finalize(), other.finalize())

    __hash__ = None


class IndirectColorSystem:
    """
    A nonlinear color system for interreflections, expressed as a truncated power series.

    Each power term p carries its own spectral weighting; a reflectance r is observed as
    `sum_p A_p @ r**p`, with the 0th term acting on a unit spectrum.
    """

    def __init__(self, cmfs: npt.NDArray, powers: List[npt.NDArray], as_rgb: bool = False):
        cmfs = np.asarray(cmfs, dtype=float)
        if cmfs.ndim != 2 or cmfs.shape[1] != 3:
            raise ValueError(f"Observer response must be an N x 3 matrix, got shape {cmfs.shape}")
        for power in powers:
            if np.shape(power) != (cmfs.shape[0],):
                raise ValueError(
                    f"Power series term of shape {np.shape(power)} does not match {cmfs.shape[0]} samples")
        self.cmfs = cmfs
        self.powers = [np.asarray(p, dtype=float) for p in powers]
        self.as_rgb = as_rgb

    def finalize(self) -> List[npt.NDArray]:
        """One 3 x N matrix per power term, normalized against an equal-energy white."""
        scale = 1.0 / self.cmfs[:, 1].sum()
        matrices = []
        for power in self.powers:
            matrix = (self.cmfs * power[:, np.newaxis]).T * scale
            if self.as_rgb:
                matrix = M_XYZ_to_RGB @ matrix
            matrices.append(matrix)
        return matrices

    def __call__(self, spectrum: npt.NDArray) -> npt.NDArray:
        spectrum = np.asarray(spectrum, dtype=float)
        color = np.zeros(spectrum.shape[:-1] + (3,))
        for p, matrix in enumerate(self.finalize()):
            color = color + (spectrum ** p) @ matrix.T
        return color

    def __eq__(self, other) -> bool:
        if not isinstance(other, IndirectColorSystem):
            return NotImplemented
        return (np.array_equal(self.cmfs, other.cmfs)
                and len(self.powers) == len(other.powers)
                and all(np.array_equal(a, b) for a, b in zip(self.powers, other.powers)))

    __hash__ = None
