from .plasma import BandPass, PlasmaCell
from .physics import ConcentrationSubmode, IonizationMode, PlasmaPhysics, UnsupportedModeError, as_mode
from .balance import one_shot
from .convergence import convergence
from .powerlaw import fit_power_law_bands
from .config import log


def ion_abundances(
        cell: PlasmaCell,
        mode: int | IonizationMode,
        physics: PlasmaPhysics,
        bandpass: BandPass | None = None,
        auger_ionization: bool = False,
) -> int:
    """
    Steering routine for calculating the ion abundances of one cell.

    Parameters
    ----------
    cell : PlasmaCell
        Cell to update in place.
    mode : IonizationMode or int
        Ionization strategy:

        - ``ON_THE_SPOT`` (0): on-the-spot approximation at the existing t_e, with no attempt to match heating and
          cooling.
        - ``LTE`` (1): LTE at the radiation temperature.
        - ``FIXED`` (2): hardwired concentrations.
        - ``ON_THE_SPOT_BALANCE`` (3): one damped update of t_e towards thermal balance, then on-the-spot
          concentrations and a convergence check.
        - ``LTE_POWER_LAW`` (4): LTE with the power law parameters already set on the bands.
        - ``POWER_LAW_BALANCE`` (5): fit the band power laws, then as ``ON_THE_SPOT_BALANCE`` with the power law
          correction.
    physics : PlasmaPhysics
        Atomic physics collaborators.
    bandpass : BandPass, optional
        Full simulation bandpass; required for ``POWER_LAW_BALANCE``.
    auger_ionization : bool
        If set, the Auger correction is applied after the abundances are calculated.

    Returns
    -------
    int
        Status of the concentration solver that ran (0 on success), also kept in ``cell.solver_status``. Failures to
        converge are logged, not raised.

    Raises
    ------
    UnsupportedModeError
        If the mode is unknown or ``POWER_LAW_BALANCE`` is requested without a bandpass.
    RadiationTemperatureError
        If a balance mode is requested for a cell with a vanishing radiation temperature.
    UnsupportedPhysicsError
        If the Auger correction is requested but ``physics`` does not provide it.
    """
    mode = as_mode(mode, cell.index)

    if mode in (IonizationMode.ON_THE_SPOT_BALANCE, IonizationMode.POWER_LAW_BALANCE):
        if mode == IonizationMode.POWER_LAW_BALANCE:
            if bandpass is None:
                raise UnsupportedModeError(
                    f"[C{cell.index}] Mode {mode!r} needs the simulation bandpass for its power law fits.", cell.index
                )
            fit_power_law_bands(cell, bandpass, physics)
            log.info(f"[C{cell.index}] Photons per band = {[band.n_photons for band in cell.bands]}")
        # one_shot logs its own solver failures
        one_shot(cell, mode, physics)
        convergence(cell)
    else:
        if mode == IonizationMode.ON_THE_SPOT:
            cell.solver_status = physics.solve_concentrations(cell, ConcentrationSubmode.ON_THE_SPOT)
        elif mode == IonizationMode.LTE:
            cell.solver_status = physics.solve_concentrations(cell, ConcentrationSubmode.LTE)
        elif mode == IonizationMode.FIXED:
            cell.solver_status = physics.solve_fixed_concentrations(cell, 0)
        else:
            cell.solver_status = physics.solve_concentrations(cell, ConcentrationSubmode.POWER_LAW)
        if cell.solver_status:
            log.error((
                f"[C{cell.index}] ion_abundances: mode {mode.name} concentrations failed to converge:"
                f" {cell.describe()}"
            ))

    # Applied last, whichever mode ran.
    if auger_ionization:
        physics.apply_auger_correction(cell)

    return cell.solver_status
