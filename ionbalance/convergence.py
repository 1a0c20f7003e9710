import pathlib
import typing as t
from dataclasses import dataclass, asdict

import polars as pl

from .plasma import PlasmaCell
from .config import log, output_dir, _CONVERGENCE_EPSILON, _GAIN_MIN, _GAIN_MAX, _GAIN_DECAY, _GAIN_GROWTH


def cycle_tag(cycle: int | None) -> str:
    return "" if cycle is None else f"[I{cycle}] "


def _relative_change(old: float, new: float) -> float:
    return abs(old - new) / (old + new)


def convergence(cell: PlasmaCell) -> int:
    """
    Checks whether a single cell is converging and adapts its gain.

    The radiation temperature, electron temperature and heating/cooling balance are each compared with their previous
    values; every one that changed by more than 5% raises its check flag. If the electron temperature step changed sign
    and grew, ``converging`` is set and the gain is reduced; otherwise the gain is increased. The gain stays in
    [0.1, 0.8].

    Returns:
        The number of failed checks (0 when the cell is converged).
    """
    cell.converge_t_r = _relative_change(cell.t_r_old, cell.t_r)
    cell.converge_t_e = _relative_change(cell.t_e_old, cell.t_e)
    cooling = cell.lum_rad + cell.lum_adiabatic
    balance = cell.heat_tot + cooling
    cell.converge_hc = abs(cell.heat_tot - cooling) / balance if balance != 0 else 0.0

    cell.trcheck = cell.converge_t_r > _CONVERGENCE_EPSILON
    cell.techeck = cell.converge_t_e > _CONVERGENCE_EPSILON
    cell.hccheck = cell.converge_hc > _CONVERGENCE_EPSILON
    cell.converge_whole = int(cell.trcheck) + int(cell.techeck) + int(cell.hccheck)

    cell.converging = bool(cell.dt_e_old * cell.dt_e < 0 and abs(cell.dt_e) > abs(cell.dt_e_old))
    if cell.converging:
        cell.gain = max(cell.gain * _GAIN_DECAY, _GAIN_MIN)
    else:
        cell.gain = min(cell.gain * _GAIN_GROWTH, _GAIN_MAX)

    log.debug((
        f"[C{cell.index}] Convergence: t_r {cell.converge_t_r:.3f} t_e {cell.converge_t_e:.3f}"
        f" hc {cell.converge_hc:.3f} -> {cell.converge_whole}; oscillating {cell.converging}, gain {cell.gain:.3f}"
    ))
    return cell.converge_whole


@dataclass(frozen=True)
class ConvergenceSummary:
    n_cells: int
    n_converged: int
    n_converging: int
    n_failed_t_r: int
    n_failed_t_e: int
    n_failed_hc: int

    @property
    def fraction_converged(self) -> float:
        return self.n_converged / self.n_cells if self.n_cells else 0.0

    @property
    def fraction_converging(self) -> float:
        return self.n_converging / self.n_cells if self.n_cells else 0.0

    def as_frame(self, cycle: int | None = None) -> pl.DataFrame:
        row = {"cycle": [cycle]} | {key: [value] for key, value in asdict(self).items()}
        row["fraction_converged"] = [self.fraction_converged]
        row["fraction_converging"] = [self.fraction_converging]
        return pl.DataFrame(row, schema_overrides={"cycle": pl.Int64})


def cell_flags(cells: t.Sequence[PlasmaCell]) -> pl.DataFrame:
    """Per-cell convergence flags as a frame, one row per cell."""
    return pl.DataFrame(
        {
            "index": [cell.index for cell in cells],
            "converge_whole": [cell.converge_whole for cell in cells],
            "trcheck": [cell.trcheck for cell in cells],
            "techeck": [cell.techeck for cell in cells],
            "hccheck": [cell.hccheck for cell in cells],
            "converging": [cell.converging for cell in cells],
        },
        schema={
            "index": pl.Int64,
            "converge_whole": pl.Int64,
            "trcheck": pl.Boolean,
            "techeck": pl.Boolean,
            "hccheck": pl.Boolean,
            "converging": pl.Boolean,
        },
    )


def check_convergence(
        cells: t.Sequence[PlasmaCell],
        cycle: int | None = None,
        output_file: str | pathlib.Path | None = None,
) -> ConvergenceSummary:
    """
    Global check on how well the grid is converging. Must only be called once every cell has been updated for the
    cycle; the cells are not modified.

    :param cells: All cells of the grid.
    :param cycle: Ionization cycle number, used in log lines and the history file.
    :param output_file: If given, the summary is appended as a row to this CSV file (relative paths are placed in the
        output directory).
    :return: Counts of converged and converging cells and of cells failing each criterion.
    """
    if len(cells) == 0:
        log.warning(f"{cycle_tag(cycle)}Convergence check called with no cells.")
        summary = ConvergenceSummary(0, 0, 0, 0, 0, 0)
    else:
        totals = cell_flags(cells).select(
            pl.len().alias("n_cells"),
            (pl.col("converge_whole") == 0).sum().alias("n_converged"),
            (~pl.col("converging")).sum().alias("n_converging"),
            pl.col("trcheck").sum().alias("n_failed_t_r"),
            pl.col("techeck").sum().alias("n_failed_t_e"),
            pl.col("hccheck").sum().alias("n_failed_hc"),
        ).row(0, named=True)
        summary = ConvergenceSummary(**{key: int(value) for key, value in totals.items()})

    log.info((
        f"{cycle_tag(cycle)}!!Check_converging: {summary.n_converged:4d} ({summary.fraction_converged:.3f})"
        f" converged and {summary.n_converging:4d} ({summary.fraction_converging:.3f})"
        f" converging of {summary.n_cells} cells"
    ))
    log.info((
        f"{cycle_tag(cycle)}!!Check_convergence_breakdown (failing): t_r {summary.n_failed_t_r:4d}"
        f" t_e {summary.n_failed_t_e:4d} hc {summary.n_failed_hc:4d}"
    ))
    log.info((
        f"{cycle_tag(cycle)}Summary  convergence {summary.n_converged:4d} {summary.fraction_converged:.3f}"
        f"  {summary.n_converging:4d}  {summary.fraction_converging:.3f}  {summary.n_cells}"
        f"  #  n_converged fraction_converged  converging fraction_converging total cells"
    ))

    if output_file is not None:
        append_history(summary, output_file, cycle=cycle)
    return summary


def append_history(summary: ConvergenceSummary, output_file: str | pathlib.Path, cycle: int | None = None) -> None:
    output_file = pathlib.Path(output_file)
    if not output_file.is_absolute():
        output_file = (output_dir / output_file).resolve()
    frame = summary.as_frame(cycle)
    if output_file.exists():
        frame = pl.concat([pl.read_csv(output_file, schema=frame.schema), frame])
    frame.write_csv(output_file)
