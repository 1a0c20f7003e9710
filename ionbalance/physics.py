import abc
import enum

from .plasma import PlasmaCell
from .powerlaw import power_law_weight


class IonizationMode(enum.IntEnum):
    """Strategies for computing the ionization state of a cell, numbered as in the driver's configuration."""
    ON_THE_SPOT = 0
    LTE = 1
    FIXED = 2
    ON_THE_SPOT_BALANCE = 3
    LTE_POWER_LAW = 4
    POWER_LAW_BALANCE = 5


class ConcentrationSubmode(enum.IntEnum):
    """Modes understood by :meth:`PlasmaPhysics.solve_concentrations`."""
    LTE = 1
    ON_THE_SPOT = 2
    POWER_LAW = 5


class IonizationError(RuntimeError):
    """Unrecoverable configuration or physical-state error raised to the cycle driver."""

    def __init__(self, message: str, cell_index: int | None = None):
        super().__init__(message)
        self.cell_index = cell_index


class UnsupportedModeError(IonizationError):
    pass


class RadiationTemperatureError(IonizationError):
    pass


class UnsupportedPhysicsError(IonizationError):
    """A requested process is not provided by the physics implementation in use."""


def as_mode(mode: int | IonizationMode, cell_index: int | None = None) -> IonizationMode:
    try:
        return IonizationMode(mode)
    except ValueError:
        tag = "" if cell_index is None else f"[C{cell_index}] "
        raise UnsupportedModeError(
            f"{tag}Could not calculate abundances for mode {mode}.", cell_index=cell_index
        ) from None


class PlasmaPhysics(abc.ABC):
    """
    Atomic physics collaborators used while driving a cell to thermal and ionization equilibrium.

    Implementations must only read and write the cell they are handed so that cells can be processed concurrently.
    """

    @abc.abstractmethod
    def solve_concentrations(self, cell: PlasmaCell, submode: ConcentrationSubmode) -> int:
        """Populates ``cell.density`` and ``cell.ne`` in place. Returns 0 on success, nonzero if not converged."""

    @abc.abstractmethod
    def solve_fixed_concentrations(self, cell: PlasmaCell, flag: int) -> int:
        """Sets hardwired concentrations in place. Returns 0 on success."""

    @abc.abstractmethod
    def macro_bb_heating(self, cell: PlasmaCell, temperature: float) -> float:
        """Macro-atom bound-bound heating at ``temperature``."""

    @abc.abstractmethod
    def macro_bf_heating(self, cell: PlasmaCell, temperature: float) -> float:
        """Macro-atom bound-free heating at ``temperature``."""

    @abc.abstractmethod
    def total_emission(self, cell: PlasmaCell, freq_min: float, freq_max: float) -> float:
        """Radiative cooling of the cell between ``freq_min`` and ``freq_max`` at the current ``cell.t_e``."""

    @abc.abstractmethod
    def total_dielectronic_recombination(self, cell: PlasmaCell, temperature: float) -> float:
        pass

    @abc.abstractmethod
    def total_compton(self, cell: PlasmaCell, temperature: float) -> float:
        pass

    @abc.abstractmethod
    def adiabatic_cooling(self, cell: PlasmaCell, temperature: float) -> float:
        pass

    def fit_normalization(
            self, flux: float, volume: float, dilution: float, alpha: float, freq_min: float, freq_max: float,
    ) -> float:
        """Power law weight for a band; see :func:`ionbalance.powerlaw.power_law_weight`."""
        return power_law_weight(flux, volume, dilution, alpha, freq_min, freq_max)

    def apply_auger_correction(self, cell: PlasmaCell) -> None:
        """Redistributes ion densities for Auger ionization. Only called when the Auger pass is switched on."""
        raise UnsupportedPhysicsError(
            f"[C{cell.index}] {type(self).__name__} does not implement Auger ionization.", cell.index
        )
