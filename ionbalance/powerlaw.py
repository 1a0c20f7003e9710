import math
import typing as t

import numba
import numpy as np
from scipy.optimize import brentq

from .plasma import BandFit, BandPass, PlasmaCell, SpectralBand
from .config import (
    log,
    VERY_BIG,
    _ALPHA_TOLERANCE,
    _ALPHA_LIMIT,
    _ALPHA_HALF_WIDTH,
    _ALPHA_BRACKET_STEP,
    _ALPHA_MAX_EXPANSIONS,
)

if t.TYPE_CHECKING:
    from .physics import PlasmaPhysics


@numba.njit(cache=True)
def _log_power_integral(s: float, log_freq_min: float, log_freq_max: float) -> float:
    """
    Natural log of :math:`\\int_{\\nu_{1}}^{\\nu_{2}} \\nu^{s-1} d\\nu`, evaluated without forming :math:`\\nu^{s}`
    so that large :math:`|s|` does not overflow. The :math:`s = 0` case is the logarithmic limit.
    """
    width = log_freq_max - log_freq_min
    if abs(s) < 1e-12:
        return math.log(width)
    if s > 0:
        return s * log_freq_max + math.log(-math.expm1(-s * width)) - math.log(s)
    return s * log_freq_min + math.log(-math.expm1(s * width)) - math.log(-s)


@numba.njit(cache=True)
def power_law_mean_frequency(alpha: float, freq_min: float, freq_max: float) -> float:
    """
    Mean frequency of a power law :math:`J_{\\nu} \\propto \\nu^{\\alpha}` over a band:

    .. math::
        \\bar{\\nu} = \\frac{\\alpha + 1}{\\alpha + 2}
        \\frac{\\nu_{2}^{\\alpha + 2} - \\nu_{1}^{\\alpha + 2}}{\\nu_{2}^{\\alpha + 1} - \\nu_{1}^{\\alpha + 1}}.

    Monotonically increasing in :math:`\\alpha`, tending to :math:`\\nu_{1}` and :math:`\\nu_{2}` as
    :math:`\\alpha \\to \\mp\\infty`.
    """
    log_freq_min = math.log(freq_min)
    log_freq_max = math.log(freq_max)
    return math.exp(
        _log_power_integral(alpha + 2.0, log_freq_min, log_freq_max)
        - _log_power_integral(alpha + 1.0, log_freq_min, log_freq_max)
    )


def power_law_weight(
        flux: float, volume: float, dilution: float, alpha: float, freq_min: float, freq_max: float,
) -> float:
    """
    Normalisation :math:`W` of :math:`J_{\\nu} = W \\nu^{\\alpha}` that reproduces a band flux estimator:

    .. math::
        W = \\frac{F}{4 \\pi V w \\int_{\\nu_{1}}^{\\nu_{2}} \\nu^{\\alpha} d\\nu}.

    Parameters
    ----------
    flux : float
        Band flux estimator :math:`F` (the energy density estimator with the :math:`4\\pi` reapplied).
    volume : float
        Cell volume :math:`V`; unity when the estimator is already volume normalised.
    dilution : float
        Dilution factor :math:`w`.
    alpha : float
        Spectral index.
    freq_min, freq_max : float
        Band edges [Hz].

    Returns
    -------
    float
        The weight :math:`W`.
    """
    log_integral = _log_power_integral(alpha + 1.0, math.log(freq_min), math.log(freq_max))
    with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
        return float(flux / (4 * np.pi * volume * dilution * np.exp(log_integral)))


def is_sane(value: float) -> bool:
    return bool(np.isfinite(value)) and 0.0 <= value < VERY_BIG


def bracket_alpha(
        residual: t.Callable[[float], float], alpha_guess: float,
) -> t.Tuple[float, float, bool]:
    """Widens a bracket around ``alpha_guess`` until the residual changes sign.

    Args:
        residual: Function with a root at the fitted spectral index.
        alpha_guess: Centre of the initial bracket, normally the index from the previous cycle.

    Returns:
        Lower and upper bracket ends and whether they enclose a sign change.
    """
    alpha_min = alpha_guess - _ALPHA_HALF_WIDTH
    alpha_max = alpha_guess + _ALPHA_HALF_WIDTH
    n_expand = 0
    while residual(alpha_min) * residual(alpha_max) > 0.0:
        if n_expand >= _ALPHA_MAX_EXPANSIONS:
            return alpha_min, alpha_max, False
        alpha_min -= _ALPHA_BRACKET_STEP
        alpha_max += _ALPHA_BRACKET_STEP
        n_expand += 1
    return alpha_min, alpha_max, True


def solve_alpha(freq_min: float, freq_max: float, mean_freq: float, alpha_guess: float, tag: str = "") -> float:
    """Spectral index reproducing ``mean_freq`` over the band, clamped to the allowed range."""

    def residual(alpha: float) -> float:
        return power_law_mean_frequency(alpha, freq_min, freq_max) - mean_freq

    alpha_min, alpha_max, bracketed = bracket_alpha(residual, alpha_guess)
    if bracketed:
        alpha = brentq(residual, alpha_min, alpha_max, xtol=_ALPHA_TOLERANCE)
    else:
        alpha = alpha_min if abs(residual(alpha_min)) < abs(residual(alpha_max)) else alpha_max
        log.warning((
            f"{tag} Mean frequency {mean_freq:10.2e} not bracketed in [{freq_min:10.2e}, {freq_max:10.2e}]"
            f" for alpha in [{alpha_min:.1f}, {alpha_max:.1f}] - using alpha = {alpha:.1f}."
        ))
    return float(np.clip(alpha, -_ALPHA_LIMIT, _ALPHA_LIMIT))


def fit_band(
        band: SpectralBand,
        physics: "PlasmaPhysics",
        band_idx: int = 0,
        cell_index: int | None = None,
) -> BandFit:
    """
    Fits the spectral index and weight of a band with photons, committing them to the band only if the weight passes
    the sanity check. Returns the values the band holds afterwards.
    """
    tag = f"[C{cell_index}][B{band_idx}]"
    log.debug((
        f"{tag} j = {band.j:10.2e}, mean freq. = {band.ave_freq:10.2e}, numin = {band.freq_min:10.2e},"
        f" numax = {band.freq_max:10.2e}, photons = {band.n_photons}"
    ))
    alpha = solve_alpha(band.freq_min, band.freq_max, band.ave_freq, band.alpha, tag=tag)
    weight = physics.fit_normalization(band.j * 4 * np.pi, 1.0, 1.0, alpha, band.freq_min, band.freq_max)

    if not is_sane(weight):
        log.warning((
            f"{tag} New power law parameters unreasonable (alpha = {alpha}, W = {weight}),"
            f" using existing parameters (alpha = {band.alpha}, W = {band.weight}). Check number of photons."
        ))
        return BandFit(band.alpha, band.weight)

    band.alpha = alpha
    band.weight = weight
    log.info(f"{tag} alpha = {alpha:.4f}, W = {weight:10.3e}")
    return BandFit(alpha, weight)


def fit_power_law_bands(cell: PlasmaCell, bandpass: BandPass, physics: "PlasmaPhysics") -> t.List[BandFit]:
    """
    Fits a power law to every band of a cell from its Monte-Carlo estimators.

    A band without photons falls back to the full simulation bandpass with zero flux, so its weight is exactly zero and
    it adds nothing to the ionization balance; its spectral index is left as it was.
    """
    fits = []
    for band_idx, band in enumerate(cell.bands):
        if band.n_photons == 0:
            log.warning((
                f"[C{cell.index}][B{band_idx}] No photons in band for power law estimators."
                f" Using total band [{bandpass.freq_min:10.2e}, {bandpass.freq_max:10.2e}] with zero flux."
            ))
            band.weight = 0.0
            fits.append(BandFit(band.alpha, 0.0))
        else:
            fits.append(fit_band(band, physics, band_idx=band_idx, cell_index=cell.index))
    return fits
