"""Shared fixtures: a linear heating/cooling model standing in for the atomic physics."""

import threading

import numpy as np
import pytest

from ionbalance.physics import PlasmaPhysics
from ionbalance.plasma import BandPass, PlasmaCell, make_bands
from ionbalance.powerlaw import power_law_mean_frequency


class LinearPhysics(PlasmaPhysics):
    """
    Heating H0 + (a_bb + a_bf) T against cooling (k_rad + k_ad + k_dr + k_comp) T, which balance at
    T* = H0 / (K - A) = 10000 K for the defaults.
    """

    def __init__(
            self,
            a_bb: float = 2e-5,
            a_bf: float = 1e-5,
            k_rad: float = 1.1e-4,
            k_ad: float = 1.8e-5,
            k_dr: float = 1e-6,
            k_comp: float = 1e-6,
            status: int = 0,
            ne: float = 1e10,
    ):
        self.a_bb = a_bb
        self.a_bf = a_bf
        self.k_rad = k_rad
        self.k_ad = k_ad
        self.k_dr = k_dr
        self.k_comp = k_comp
        self.status = status
        self.ne = ne
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def solve_concentrations(self, cell, submode):
        self._record("solve", cell.index, submode)
        cell.ne = self.ne
        cell.density = np.full(3, self.ne / 3)
        return self.status

    def solve_fixed_concentrations(self, cell, flag):
        self._record("fixed", cell.index, flag)
        cell.ne = self.ne
        return self.status

    def macro_bb_heating(self, cell, temperature):
        return self.a_bb * temperature

    def macro_bf_heating(self, cell, temperature):
        return self.a_bf * temperature

    def total_emission(self, cell, freq_min, freq_max):
        return self.k_rad * cell.t_e

    def total_dielectronic_recombination(self, cell, temperature):
        return self.k_dr * temperature

    def total_compton(self, cell, temperature):
        return self.k_comp * temperature

    def adiabatic_cooling(self, cell, temperature):
        return self.k_ad * temperature

    def apply_auger_correction(self, cell):
        self._record("auger", cell.index)

    def submodes(self, cell_index=None):
        return [
            call[2] for call in self.calls
            if call[0] == "solve" and (cell_index is None or call[1] == cell_index)
        ]


class NoAugerPhysics(LinearPhysics):
    """Falls back on the base class Auger hook."""

    def apply_auger_correction(self, cell):
        PlasmaPhysics.apply_auger_correction(self, cell)


T_BALANCE = 10000.0
BAND_EDGES = np.array([1e14, 1e15, 1e16, 1e17])


@pytest.fixture
def physics() -> LinearPhysics:
    return LinearPhysics()


@pytest.fixture
def bandpass() -> BandPass:
    return BandPass(float(BAND_EDGES[0]), float(BAND_EDGES[-1]))


def make_cell(index: int = 0, t_e: float = 9900.0, t_r: float = 9900.0, **kwargs) -> PlasmaCell:
    """Cell with unit non-macro heating, matching LinearPhysics."""
    kwargs.setdefault("heat_tot", 1.0)
    kwargs.setdefault("heat_lines", 0.4)
    kwargs.setdefault("heat_photo", 0.6)
    return PlasmaCell(index=index, t_e=t_e, t_r=t_r, **kwargs)


def make_band_cell(index: int = 0, **kwargs) -> PlasmaCell:
    """Cell with three bands whose estimators correspond to known power laws."""
    bands = make_bands(BAND_EDGES)
    for band, alpha_true in zip(bands, (1.0, -0.5, -2.5)):
        band.j = 1e-3
        band.ave_freq = power_law_mean_frequency(alpha_true, band.freq_min, band.freq_max)
        band.n_photons = 1000
    return make_cell(index=index, bands=bands, ave_freq=1e16, j=3e-3, **kwargs)


@pytest.fixture
def cell() -> PlasmaCell:
    return make_cell()


@pytest.fixture
def band_cell() -> PlasmaCell:
    return make_band_cell()
