"""
Operation parameter containers for cellsynth.

ParallelParams and PostprocessParams hold the worker-pool and output
post-processing settings of ``Simulator``.  They validate themselves on
construction and can be reused across calls::

    params = ParallelParams(parallelization='progress', n_jobs=8)
    pool = WorkerPool(**vars(params))
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any, Literal, Optional

from ._exceptions import ConfigurationError

PARALLELIZATION_BACKENDS = ('processes', 'distributed', 'progress')


def default_parallelization() -> str:
    """
    Platform default for ``parallelization``.

    Windows has no fork, so the pluggable (``'distributed'``) backend is
    used there; every other platform uses the process pool.
    """
    return 'distributed' if sys.platform.startswith('win') else 'processes'


@dataclass
class ParallelParams:
    """
    Worker-pool configuration.

    Parameters
    ----------
    parallelization : {'processes', 'distributed', 'progress'} or None
        ``'processes'``   — joblib loky process pool.
        ``'distributed'`` — user-pluggable joblib backend (see ``backend``).
        ``'progress'``    — process pool with a tqdm progress bar.
        ``None`` resolves to ``default_parallelization()``.
    n_jobs : int, default 1
        Number of workers.  ``-1`` uses all cores; ``1`` runs serially.
    backend : str or joblib ParallelBackendBase, optional
        Backend for ``parallelization='distributed'`` (e.g. ``'dask'``,
        ``'ray'`` or a backend instance).  Defaults to ``'loky'``.
    """

    parallelization: Optional[
        Literal['processes', 'distributed', 'progress']
    ] = None
    n_jobs: int = 1
    backend: Any = None

    def __post_init__(self):
        if self.parallelization is None:
            self.parallelization = default_parallelization()
        if self.parallelization not in PARALLELIZATION_BACKENDS:
            raise ConfigurationError(
                f"Unsupported parallelization: {self.parallelization!r}. "
                f"Available: {list(PARALLELIZATION_BACKENDS)}"
            )
        if self.backend is not None and self.parallelization != 'distributed':
            raise ConfigurationError(
                "backend can only be set with parallelization='distributed'."
            )
        if self.n_jobs == 0:
            raise ConfigurationError("n_jobs must be non-zero.")


@dataclass
class PostprocessParams:
    """
    Output post-processing switches.

    Parameters
    ----------
    nonnegative : bool, default True
        Clamp values below 0 to 0 (expression is non-negative).
    nonzerovar : bool, default False
        For every simulated feature with zero variance across cells, set
        one randomly chosen cell to 1 (keeps PCA and similar steps defined).
    """

    nonnegative: bool = True
    nonzerovar: bool = False
