import numpy as np
import numpy.typing as npt
from typing import Optional, Tuple
from scipy.linalg import orth
from sklearn.decomposition import PCA


class Basis:
    """
    A low-dimensional orthonormal function basis, offset by a mean spectrum.

    Reflectances are reconstructed as `mean + functions @ coef`, where `functions`
    holds one basis function per column (N wavelengths x K bases).
    """

    def __init__(self, mean: npt.NDArray, functions: npt.NDArray,
                 wavelengths: Optional[npt.NDArray] = None,
                 coef_bounds: Optional[Tuple[float, float]] = None):
        """
        Initialize a Basis.

        Args:
            mean: Mean spectrum, length N
            functions: Basis functions as an N x K matrix
            wavelengths: Optional wavelength grid of length N (nm)
            coef_bounds: Optional (lower, upper) bounds for valid coefficients

        Raises:
            ValueError: If the mean, functions and wavelengths disagree on N
        """
        mean = np.asarray(mean, dtype=float)
        functions = np.asarray(functions, dtype=float)
        if functions.ndim != 2:
            raise ValueError(f"Basis functions must be an N x K matrix, got shape {functions.shape}")
        if mean.shape != (functions.shape[0],):
            raise ValueError(
                f"Mean spectrum of length {mean.shape} does not match {functions.shape[0]} wavelength samples")
        if wavelengths is not None and len(wavelengths) != functions.shape[0]:
            raise ValueError(
                f"Wavelength grid of length {len(wavelengths)} does not match {functions.shape[0]} samples")

        self.mean = mean
        self.functions = functions
        self.wavelengths = None if wavelengths is None else np.asarray(wavelengths, dtype=float)

        if coef_bounds is None:
            # |b_k . (r - mean)| <= ||r - mean|| for orthonormal b_k, so any [0, 1] reflectance fits
            bound = np.sqrt(self.n_samples) * np.max(np.maximum(np.abs(mean), np.abs(1 - mean)))
            coef_bounds = (-bound, bound)
        self.coef_bounds = coef_bounds

    @property
    def n_samples(self) -> int:
        return self.functions.shape[0]

    @property
    def n_bases(self) -> int:
        return self.functions.shape[1]

    def __call__(self, coef: npt.NDArray) -> npt.NDArray:
        """Reconstruct the spectrum (or a batch of M x N spectra) for the given coefficients."""
        coef = np.asarray(coef, dtype=float)
        return self.mean + coef @ self.functions.T

    def project(self, spectrum: npt.NDArray) -> npt.NDArray:
        """Least-squares coefficients of a spectrum; exact for orthonormal functions."""
        coef, *_ = np.linalg.lstsq(self.functions, np.asarray(spectrum, dtype=float) - self.mean, rcond=None)
        return coef

    def clamp_coef(self, coef: npt.NDArray) -> npt.NDArray:
        return np.clip(coef, self.coef_bounds[0], self.coef_bounds[1])

    def zero_coef(self) -> npt.NDArray:
        return np.zeros(self.n_bases)

    @staticmethod
    def from_functions(mean: npt.NDArray, functions: npt.NDArray,
                       wavelengths: Optional[npt.NDArray] = None) -> 'Basis':
        """Orthonormalize an arbitrary set of (column) functions and wrap them as a Basis."""
        ortho = orth(np.asarray(functions, dtype=float))
        if ortho.shape[1] < np.asarray(functions).shape[1]:
            raise ValueError(f"Basis functions are rank deficient: rank {ortho.shape[1]}")
        return Basis(mean, ortho, wavelengths)

    @staticmethod
    def from_spectra(spectra: npt.NDArray, n_components: int,
                     wavelengths: Optional[npt.NDArray] = None) -> 'Basis':
        """
        Derive a basis from measured reflectances through principal component analysis.

        Args:
            spectra: M x N matrix of reflectance spectra
            n_components: Number of basis functions to keep
            wavelengths: Optional wavelength grid of length N

        Returns:
            Basis: mean of the dataset plus its leading principal components
        """
        spectra = np.asarray(spectra, dtype=float)
        if spectra.ndim != 2 or spectra.shape[0] < n_components:
            raise ValueError(
                f"Need at least {n_components} spectra as an M x N matrix, got shape {spectra.shape}")
        pca = PCA(n_components=n_components)
        pca.fit(spectra)
        return Basis(pca.mean_, pca.components_.T, wavelengths)


def GenerateCosineBasis(wavelengths: npt.NDArray, n_bases: int, mean: float = 0.5) -> Basis:
    """Smooth cosine basis over a wavelength grid, orthonormalized and offset by a flat mean."""
    n = len(wavelengths)
    t = (np.arange(n) + 0.5) / n
    functions = np.stack([np.cos(np.pi * k * t) for k in range(n_bases)], axis=1)
    return Basis.from_functions(np.full(n, mean), functions, wavelengths)
