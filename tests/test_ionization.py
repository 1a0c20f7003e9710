import logging
import math

import pytest

from ionbalance.ionization import ion_abundances
from ionbalance.physics import ConcentrationSubmode, IonizationMode, UnsupportedModeError, UnsupportedPhysicsError

from conftest import LinearPhysics, NoAugerPhysics, T_BALANCE, make_band_cell


class TestDispatch:

    @pytest.mark.parametrize("mode, submode", [
        (IonizationMode.ON_THE_SPOT, ConcentrationSubmode.ON_THE_SPOT),
        (IonizationMode.LTE, ConcentrationSubmode.LTE),
        (IonizationMode.ON_THE_SPOT_BALANCE, ConcentrationSubmode.ON_THE_SPOT),
        (IonizationMode.LTE_POWER_LAW, ConcentrationSubmode.POWER_LAW),
        (IonizationMode.POWER_LAW_BALANCE, ConcentrationSubmode.POWER_LAW),
    ])
    def test_concentration_submode(self, band_cell, physics, bandpass, mode, submode):
        assert ion_abundances(band_cell, mode, physics, bandpass=bandpass) == 0
        assert physics.calls == [("solve", band_cell.index, submode)]

    def test_fixed_concentrations(self, cell, physics):
        assert ion_abundances(cell, IonizationMode.FIXED, physics) == 0
        assert physics.calls == [("fixed", cell.index, 0)]
        assert cell.t_e == 9900.0

    def test_integer_modes_accepted(self, cell, physics):
        ion_abundances(cell, 1, physics)
        assert physics.submodes() == [ConcentrationSubmode.LTE]

    @pytest.mark.parametrize("mode", [0, 1, 2, 4])
    def test_non_balance_modes_leave_temperature(self, cell, physics, mode):
        ion_abundances(cell, mode, physics)
        assert cell.t_e == 9900.0
        assert cell.gain == 0.5

    @pytest.mark.parametrize("mode", list(IonizationMode))
    def test_temperature_stays_physical(self, band_cell, physics, bandpass, mode):
        ion_abundances(band_cell, mode, physics, bandpass=bandpass)
        assert math.isfinite(band_cell.t_e)
        assert band_cell.t_e > 0

    @pytest.mark.parametrize("mode", [IonizationMode.ON_THE_SPOT, IonizationMode.ON_THE_SPOT_BALANCE])
    def test_auger_correction_applied_last(self, cell, physics, mode):
        ion_abundances(cell, mode, physics, auger_ionization=True)
        assert physics.calls[-1] == ("auger", cell.index)
        assert len(physics.calls) == 2

    def test_auger_correction_off_by_default(self, cell, physics):
        ion_abundances(cell, IonizationMode.ON_THE_SPOT, physics)
        assert ("auger", cell.index) not in physics.calls

    @pytest.mark.parametrize("mode", [7, -1, 6])
    def test_unknown_mode(self, cell, physics, mode):
        with pytest.raises(UnsupportedModeError) as e:
            ion_abundances(cell, mode, physics)
        assert e.value.cell_index == cell.index
        assert physics.calls == []

    def test_power_law_needs_bandpass(self, band_cell, physics):
        with pytest.raises(UnsupportedModeError):
            ion_abundances(band_cell, IonizationMode.POWER_LAW_BALANCE, physics)
        assert physics.calls == []
        assert [band.weight for band in band_cell.bands] == [0.0, 0.0, 0.0]

    def test_solver_failure_logged(self, cell, caplog):
        with caplog.at_level(logging.ERROR):
            status = ion_abundances(cell, IonizationMode.ON_THE_SPOT, LinearPhysics(status=3))
        assert status == 3
        assert "failed to converge" in caplog.text

    @pytest.mark.parametrize("mode", [IonizationMode.LTE, IonizationMode.FIXED, IonizationMode.LTE_POWER_LAW])
    def test_solver_failure_logged_in_every_mode(self, cell, caplog, mode):
        with caplog.at_level(logging.ERROR):
            status = ion_abundances(cell, mode, LinearPhysics(status=2))
        assert status == 2
        assert cell.solver_status == 2
        assert f"[C{cell.index}]" in caplog.text
        assert "failed to converge" in caplog.text

    @pytest.mark.parametrize("mode", [IonizationMode.ON_THE_SPOT_BALANCE, IonizationMode.POWER_LAW_BALANCE])
    def test_balance_modes_return_solver_status(self, band_cell, bandpass, mode):
        assert ion_abundances(band_cell, mode, LinearPhysics(status=1), bandpass=bandpass) == 1
        assert band_cell.solver_status == 1

    def test_missing_auger_physics(self, cell):
        with pytest.raises(UnsupportedPhysicsError) as e:
            ion_abundances(cell, IonizationMode.ON_THE_SPOT, NoAugerPhysics(), auger_ionization=True)
        assert e.value.cell_index == cell.index


class TestBalanceModes:

    def test_on_the_spot_balance_iterations(self, cell, physics):
        ion_abundances(cell, IonizationMode.ON_THE_SPOT_BALANCE, physics)
        assert cell.converge_whole == 0
        assert not cell.converging
        assert cell.gain == pytest.approx(0.55)
        first = cell.t_e

        ion_abundances(cell, IonizationMode.ON_THE_SPOT_BALANCE, physics)
        assert cell.converge_whole == 0
        assert cell.gain == pytest.approx(0.605)
        assert first < cell.t_e < T_BALANCE + 50.0
        assert cell.t_e_old == first

    def test_repeated_balance_approaches_equilibrium(self, physics):
        cell = make_band_cell(t_e=6000.0)
        for _ in range(20):
            ion_abundances(cell, IonizationMode.ON_THE_SPOT_BALANCE, physics)
        assert cell.t_e == pytest.approx(T_BALANCE, abs=50.0)

    def test_power_law_balance_fits_bands(self, band_cell, physics, bandpass):
        ion_abundances(band_cell, IonizationMode.POWER_LAW_BALANCE, physics, bandpass=bandpass)
        for band, alpha_true in zip(band_cell.bands, (1.0, -0.5, -2.5)):
            assert band.alpha == pytest.approx(alpha_true, abs=1e-4)
            assert band.weight > 0
        assert band_cell.t_e != 9900.0
        assert band_cell.gain == pytest.approx(0.55)
