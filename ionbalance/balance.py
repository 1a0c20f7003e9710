from scipy.optimize import brentq

from .plasma import PlasmaCell
from .physics import (
    ConcentrationSubmode,
    IonizationMode,
    PlasmaPhysics,
    RadiationTemperatureError,
    UnsupportedModeError,
    as_mode,
)
from .config import log, VERY_BIG, _TE_BRACKET_LOW, _TE_BRACKET_HIGH, _TE_TOLERANCE, _MIN_T_R

# Concentration solver mode used after a one-shot temperature update, per driver mode.
_ONE_SHOT_SUBMODES = {
    IonizationMode.FIXED: ConcentrationSubmode.ON_THE_SPOT,
    IonizationMode.ON_THE_SPOT_BALANCE: ConcentrationSubmode.ON_THE_SPOT,
    IonizationMode.POWER_LAW_BALANCE: ConcentrationSubmode.POWER_LAW,
}


def _update_macro_heating(cell: PlasmaCell, temperature: float, physics: PlasmaPhysics) -> None:
    cell.heat_tot -= cell.heat_lines_macro
    cell.heat_lines -= cell.heat_lines_macro
    cell.heat_lines_macro = physics.macro_bb_heating(cell, temperature)
    cell.heat_tot += cell.heat_lines_macro
    cell.heat_lines += cell.heat_lines_macro

    cell.heat_tot -= cell.heat_photo_macro
    cell.heat_photo -= cell.heat_photo_macro
    cell.heat_photo_macro = physics.macro_bf_heating(cell, temperature)
    cell.heat_tot += cell.heat_photo_macro
    cell.heat_photo += cell.heat_photo_macro


def heating_cooling_residual(cell: PlasmaCell, temperature: float, physics: PlasmaPhysics) -> float:
    """
    Heating minus cooling of a cell with its electron temperature set to ``temperature``.

    Evaluating the residual moves the cell to the trial temperature: the macro-atom heating terms are swapped out of
    the heating totals for their values at the new temperature, and the adiabatic, dielectronic recombination, Compton
    and radiative cooling are recomputed.
    """
    cell.t_e = temperature
    _update_macro_heating(cell, temperature, physics)

    cell.lum_adiabatic = physics.adiabatic_cooling(cell, temperature)
    cell.lum_dr = physics.total_dielectronic_recombination(cell, temperature)
    cell.lum_comp = physics.total_compton(cell, temperature)
    cell.lum_rad = physics.total_emission(cell, 0.0, VERY_BIG)

    difference = cell.heat_tot - cell.lum_adiabatic - cell.lum_dr - cell.lum_comp - cell.lum_rad
    log.debug(f"[C{cell.index}] T = {temperature:10.2f}: heating - cooling = {difference:10.3e}")
    return difference


def calc_te(cell: PlasmaCell, tmin: float, tmax: float, physics: PlasmaPhysics) -> float:
    """Finds the electron temperature at which cooling matches the current heating of a cell.

    The abundances are not changed. If cooling at ``tmin`` and ``tmax`` brackets the heating, the temperature is
    refined with Brent's method; otherwise the bound with the smaller imbalance is taken. The cell is left at the
    returned temperature with heating and cooling totals evaluated there.

    Args:
        cell: Cell to solve; its temperature and heating/cooling totals are updated in place.
        tmin: Lower temperature bound [K].
        tmax: Upper temperature bound [K].
        physics: Heating and cooling rates.

    Returns:
        The adopted electron temperature [K].
    """

    def residual(temperature: float) -> float:
        return heating_cooling_residual(cell, temperature, physics)

    z1 = residual(tmin)
    z2 = residual(tmax)

    if z1 * z2 < 0.0:
        t_e = brentq(residual, tmin, tmax, xtol=_TE_TOLERANCE)
    elif abs(z1) < abs(z2):
        log.debug(f"[C{cell.index}] Heating not bracketed in [{tmin:.1f}, {tmax:.1f}] - taking lower bound.")
        t_e = tmin
    else:
        log.debug(f"[C{cell.index}] Heating not bracketed in [{tmin:.1f}, {tmax:.1f}] - taking upper bound.")
        t_e = tmax

    residual(t_e)
    return cell.t_e


def rotate_trackers(cell: PlasmaCell) -> None:
    """Shifts the current temperatures, temperature step and luminosity into their previous-cycle slots."""
    cell.dt_e_old = cell.dt_e
    cell.dt_e = cell.t_e - cell.t_e_old
    cell.t_e_old = cell.t_e
    cell.t_r_old = cell.t_r
    cell.lum_rad_old = cell.lum_rad


def one_shot(cell: PlasmaCell, mode: int | IonizationMode, physics: PlasmaPhysics) -> int:
    """
    Makes one damped update of the electron temperature towards thermal balance and recalculates the ion concentrations
    at the new temperature. Returns 0; the status of the concentration solver is kept in ``cell.solver_status``.

    Raises:
        UnsupportedModeError: If ``mode`` has no balance iteration.
        RadiationTemperatureError: If the radiation temperature is too low for the on-the-spot approximation.
    """
    mode = as_mode(mode, cell.index)
    if mode not in _ONE_SHOT_SUBMODES:
        raise UnsupportedModeError(f"[C{cell.index}] one_shot: don't know how to process mode {mode!r}.", cell.index)
    if cell.t_r <= _MIN_T_R:
        raise RadiationTemperatureError(
            f"[C{cell.index}] t_r exceptionally small {cell.t_r:g}: {cell.describe()}", cell.index
        )
    submode = _ONE_SHOT_SUBMODES[mode]

    rotate_trackers(cell)

    te_old = cell.t_e
    te_new = calc_te(cell, _TE_BRACKET_LOW * te_old, _TE_BRACKET_HIGH * te_old, physics)
    cell.t_e = (1 - cell.gain) * te_old + cell.gain * te_new
    log.info(
        f"[C{cell.index}] One shot: t_e {te_old:10.2f} -> {te_new:10.2f} (gain {cell.gain:.3f}) = {cell.t_e:10.2f}"
    )

    cell.solver_status = physics.solve_concentrations(cell, submode)
    if cell.solver_status:
        log.error(f"[C{cell.index}] Concentrations failed to converge: {cell.describe()}")
    if cell.ne < 0 or VERY_BIG < cell.ne:
        log.error(f"[C{cell.index}] ne = {cell.ne:8.2e} out of range.")

    return 0
