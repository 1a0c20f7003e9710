import logging
import os
import pathlib
import numba

output_dir = (pathlib.Path(os.getcwd()) / os.environ.get("IONBALANCE_OUTPUT_DIR", "./outputs")).resolve()
output_dir.mkdir(parents=True, exist_ok=True)

log = logging.getLogger()
log.setLevel(logging.INFO)

file_handler = logging.FileHandler(
    filename=(output_dir / "ionbalance.log").resolve(), encoding="utf-8", mode="a"
)
file_formatter = logging.Formatter("%(asctime)s [%(threadName)-12.12s] [%(levelname)-5.5s]  %(message)s")
file_handler.setFormatter(file_formatter)
log.addHandler(file_handler)

log.info(f"Writing outputs to {output_dir}.")

_DEFAULT_NUM_THREADS = 8
_n_threads = min(_DEFAULT_NUM_THREADS, numba.config.NUMBA_NUM_THREADS)
if numba.get_num_threads() != _n_threads:
    log.info(f"Numba defaulting to {numba.get_num_threads()} threads: setting to {_n_threads}.")
    numba.set_num_threads(_n_threads)

VERY_BIG = 1e50

# Convergence tracking
_CONVERGENCE_EPSILON = 0.05
_GAIN_DEFAULT = 0.5
_GAIN_MIN = 0.1
_GAIN_MAX = 0.8
_GAIN_DECAY = 0.7
_GAIN_GROWTH = 1.1

# Electron temperature search
_TE_BRACKET_LOW = 0.7
_TE_BRACKET_HIGH = 1.3
_TE_TOLERANCE = 50.0
_MIN_T_R = 10.0

# Power law band fits
_ALPHA_TOLERANCE = 1e-5
_ALPHA_LIMIT = 3.0
_ALPHA_HALF_WIDTH = 0.1
_ALPHA_BRACKET_STEP = 1.0
_ALPHA_MAX_EXPANSIONS = 50
