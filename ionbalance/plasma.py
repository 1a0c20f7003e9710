import typing as t
from dataclasses import dataclass, field

import numpy as np
import numpy.typing as npt
from astropy import units as u

from .config import _GAIN_DEFAULT, _GAIN_MIN, _GAIN_MAX


def _to_hz(value: t.Union[u.Quantity, float, npt.ArrayLike]) -> npt.NDArray[np.float64]:
    """Converts any spectral quantity (frequency, wavenumber, wavelength, energy) to Hz; bare numbers are taken as
    already being in Hz."""
    if isinstance(value, u.Quantity):
        return np.atleast_1d(value.to(u.Hz, equivalencies=u.spectral()).value).astype(np.float64)
    return np.atleast_1d(np.asarray(value, dtype=np.float64))


@dataclass(frozen=True)
class BandPass:
    """Full frequency range [Hz] over which photons are generated in the simulation."""
    freq_min: float
    freq_max: float

    def __post_init__(self):
        if not (0 < self.freq_min < self.freq_max):
            raise ValueError(f"Bandpass must satisfy 0 < freq_min < freq_max; got {self.freq_min}, {self.freq_max}.")

    @classmethod
    def from_quantity(cls, low: u.Quantity | float, high: u.Quantity | float) -> "BandPass":
        """Builds a bandpass from two spectral quantities, in any order and any spectral unit."""
        edges = np.sort(np.concatenate([_to_hz(low), _to_hz(high)]))
        return cls(float(edges[0]), float(edges[-1]))


@dataclass
class SpectralBand:
    """
    Monte-Carlo radiation field estimators and the fitted power law :math:`J_{\\nu} = W \\nu^{\\alpha}` for one
    frequency band of a cell.

    Attributes
    ----------
    freq_min, freq_max : float
        Band edges [Hz].
    j : float
        Energy density estimator in the band.
    ave_freq : float
        Intensity weighted mean frequency of the band [Hz].
    n_photons : int
        Number of photon packets that contributed to the estimators.
    alpha : float
        Fitted spectral index.
    weight : float
        Fitted normalisation :math:`W`.
    """
    freq_min: float
    freq_max: float
    j: float = 0.0
    ave_freq: float = 0.0
    n_photons: int = 0
    alpha: float = 0.0
    weight: float = 0.0

    def __post_init__(self):
        if not (0 < self.freq_min < self.freq_max):
            raise ValueError(
                f"Band edges must satisfy 0 < freq_min < freq_max; got {self.freq_min}, {self.freq_max}."
            )


@dataclass(frozen=True)
class BandFit:
    alpha: float
    weight: float


def make_bands(
        edges: u.Quantity | npt.ArrayLike,
        alpha: float = 0.0,
) -> t.List[SpectralBand]:
    """Builds empty band records from a monotonic array of band edges.

    Args:
        edges: Band edges, either in Hz or as any astropy spectral quantity. Wavelength edges are reordered so the bands
            run from low to high frequency.
        alpha: Initial spectral index for every band; the fitter brackets its first search around this value.

    Returns:
        One SpectralBand per adjacent pair of edges.
    """
    freq_edges = np.sort(_to_hz(edges))
    if freq_edges.shape[0] < 2:
        raise ValueError("At least two band edges are required.")
    return [
        SpectralBand(freq_min=float(lo), freq_max=float(hi), alpha=alpha)
        for lo, hi in zip(freq_edges[:-1], freq_edges[1:])
    ]


@dataclass
class PlasmaCell:
    """
    Thermal, radiative and ionization state of a single cell of the wind.

    Temperatures are in K and all heating/cooling totals share whatever (cgs) luminosity units the physics
    implementation works in. ``converging`` is set by :func:`ionbalance.convergence.convergence` when the electron
    temperature step changes sign and grows, i.e. in the case where the gain is reduced.
    """
    index: int
    t_e: float
    t_r: float
    j: float = 0.0
    ave_freq: float = 0.0
    w: float = 1.0
    bands: t.List[SpectralBand] = field(default_factory=list)
    density: npt.NDArray[np.float64] = field(default_factory=lambda: np.zeros(0))
    ne: float = 0.0
    solver_status: int = 0
    # Trackers from the previous cycle
    t_e_old: float | None = None
    t_r_old: float | None = None
    dt_e: float = 0.0
    dt_e_old: float = 0.0
    # Heating
    heat_tot: float = 0.0
    heat_lines: float = 0.0
    heat_photo: float = 0.0
    heat_lines_macro: float = 0.0
    heat_photo_macro: float = 0.0
    # Cooling
    lum_rad: float = 0.0
    lum_rad_old: float = 0.0
    lum_adiabatic: float = 0.0
    lum_dr: float = 0.0
    lum_comp: float = 0.0
    # Convergence
    converge_t_r: float = 0.0
    converge_t_e: float = 0.0
    converge_hc: float = 0.0
    trcheck: bool = False
    techeck: bool = False
    hccheck: bool = False
    converge_whole: int = 0
    converging: bool = False
    gain: float = _GAIN_DEFAULT

    def __post_init__(self):
        if not (self.t_e > 0 and self.t_r > 0):
            raise ValueError(f"[C{self.index}] Temperatures must be positive; t_e={self.t_e}, t_r={self.t_r}.")
        if not (_GAIN_MIN <= self.gain <= _GAIN_MAX):
            raise ValueError(f"[C{self.index}] Gain {self.gain} outside [{_GAIN_MIN}, {_GAIN_MAX}].")
        if self.t_e_old is None:
            self.t_e_old = self.t_e
        if self.t_r_old is None:
            self.t_r_old = self.t_r
        self.density = np.asarray(self.density, dtype=np.float64)

    @property
    def n_bands(self) -> int:
        return len(self.bands)

    def describe(self) -> str:
        """Short state summary used in diagnostic log lines."""
        return f"j {self.j:8.2e} t_e {self.t_e:8.2e} t_r {self.t_r:8.2e} w {self.w:8.2e}"
