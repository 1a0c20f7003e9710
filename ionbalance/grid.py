import functools
import math
import pathlib
import typing as t
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from .plasma import BandPass, PlasmaCell
from .physics import IonizationError, IonizationMode, PlasmaPhysics, as_mode
from .ionization import ion_abundances
from .convergence import ConvergenceSummary, check_convergence, cycle_tag
from .config import log, _DEFAULT_NUM_THREADS


def get_parallel_nrange(rank: int, n_total: int, n_proc: int) -> t.Tuple[int, int]:
    """
    Contiguous range of tasks ``[n_min, n_max)`` handled by worker ``rank`` when ``n_total`` tasks (normally cells)
    are split over ``n_proc`` workers. The remainder is spread one task each over the lowest ranks.
    """
    if n_proc < 1 or not (0 <= rank < n_proc):
        raise ValueError(f"Invalid rank {rank} for {n_proc} workers.")
    n_per_rank, n_extra = divmod(n_total, n_proc)
    if rank < n_extra:
        n_min = rank * (n_per_rank + 1)
        n_max = (rank + 1) * (n_per_rank + 1)
    else:
        n_min = n_extra * (n_per_rank + 1) + (rank - n_extra) * n_per_rank
        n_max = n_min + n_per_rank
    return n_min, n_max


def get_max_cells_per_rank(n_total: int, n_proc: int) -> int:
    """Largest number of cells any worker is given; sizes per-worker buffers."""
    return math.ceil(n_total / n_proc)


@dataclass
class GridUpdate:
    statuses: t.Dict[int, int] = field(default_factory=dict)
    skipped: t.List[int] = field(default_factory=list)
    summary: ConvergenceSummary | None = None

    @property
    def n_failed(self) -> int:
        """Cells whose concentration solver reported a failure to converge."""
        return sum(1 for status in self.statuses.values() if status != 0)


def _update_cells(
        cells: t.Sequence[PlasmaCell],
        mode: int | IonizationMode,
        physics: PlasmaPhysics,
        bandpass: BandPass | None,
        auger_ionization: bool,
        skip_failed: bool,
) -> t.Tuple[t.Dict[int, int], t.List[int]]:
    statuses = {}
    skipped = []
    for cell in cells:
        try:
            statuses[cell.index] = ion_abundances(
                cell, mode, physics, bandpass=bandpass, auger_ionization=auger_ionization
            )
        except IonizationError as e:
            if not skip_failed:
                raise
            log.error(f"[C{cell.index}] Skipping cell: {e}")
            skipped.append(cell.index)
    return statuses, skipped


def update_ionization_grid(
        cells: t.Sequence[PlasmaCell],
        mode: int | IonizationMode,
        physics: PlasmaPhysics,
        bandpass: BandPass | None = None,
        n_workers: int = _DEFAULT_NUM_THREADS,
        auger_ionization: bool = False,
        skip_failed: bool = False,
        cycle: int | None = None,
        history_file: str | pathlib.Path | None = None,
) -> GridUpdate:
    """Updates the ionization state of every cell, then checks convergence across the grid.

    Cells are split into contiguous ranges, one per worker. The global convergence check only runs once every worker
    has finished.

    Args:
        cells: All cells of the grid, updated in place.
        mode: Ionization strategy passed to :func:`ionbalance.ionization.ion_abundances`.
        physics: Atomic physics collaborators; must be safe to call for different cells at the same time.
        bandpass: Full simulation bandpass, needed for power law fits.
        n_workers: Number of worker threads.
        auger_ionization: Apply the Auger correction to every cell.
        skip_failed: Log and skip cells that raise an IonizationError instead of aborting the update.
        cycle: Ionization cycle number for log lines.
        history_file: CSV file to append the convergence summary to.

    Returns:
        Status code per cell index, skipped cell indices and the convergence summary.
    """
    mode = as_mode(mode)
    n_workers = max(1, min(n_workers, len(cells)))
    ranges = [get_parallel_nrange(rank, len(cells), n_workers) for rank in range(n_workers)]
    log.info((
        f"{cycle_tag(cycle)}Updating {len(cells)} cells with mode {mode.name} on {n_workers} workers"
        f" (max. {get_max_cells_per_rank(len(cells), n_workers)} cells per worker)."
    ))

    worker = functools.partial(
        _update_cells,
        mode=mode,
        physics=physics,
        bandpass=bandpass,
        auger_ionization=auger_ionization,
        skip_failed=skip_failed,
    )
    result = GridUpdate()
    with ThreadPoolExecutor(max_workers=n_workers) as e:
        for statuses, skipped in e.map(worker, [cells[n_min:n_max] for n_min, n_max in ranges]):
            result.statuses.update(statuses)
            result.skipped.extend(skipped)

    if result.n_failed:
        log.warning(f"{cycle_tag(cycle)}Concentrations failed to converge in {result.n_failed} cells.")
    result.summary = check_convergence(cells, cycle=cycle, output_file=history_file)
    return result
