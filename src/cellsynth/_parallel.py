"""
Worker pool used to dispatch per-feature marginal inversion.

One abstraction, three interchangeable backends (see ``ParallelParams``).
Tasks are tuples of positional arguments; results always come back in task
order, independent of completion order.  Workers only read their inputs.
"""

from __future__ import annotations

from ._params import ParallelParams


class WorkerPool:
    """
    Order-preserving ``map`` over a joblib backend.

    Parameters
    ----------
    parallelization : {'processes', 'distributed', 'progress'} or None
    n_jobs : int, default 1
    backend : str or joblib ParallelBackendBase, optional
        Only used with ``parallelization='distributed'``.
    """

    def __init__(self, parallelization=None, n_jobs=1, backend=None):
        params = ParallelParams(
            parallelization=parallelization, n_jobs=n_jobs, backend=backend
        )
        self.parallelization = params.parallelization
        self.n_jobs = params.n_jobs
        self.backend = params.backend

    def __repr__(self):
        return (
            f"WorkerPool(parallelization={self.parallelization!r}, "
            f"n_jobs={self.n_jobs}, backend={self.backend!r})"
        )

    def _joblib_backend(self):
        if self.parallelization == 'distributed':
            return self.backend if self.backend is not None else 'loky'
        return 'loky'

    def map(self, fn, tasks, desc=None) -> list:
        """
        Return ``[fn(*t) for t in tasks]``, computed by the pool.

        The first exception raised by any task propagates; remaining
        results are discarded.
        """
        tasks = list(tasks)
        if self.n_jobs == 1 or len(tasks) < 2:
            if self.parallelization == 'progress':
                from tqdm.auto import tqdm
                return [fn(*t) for t in tqdm(tasks, desc=desc)]
            return [fn(*t) for t in tasks]

        from joblib import Parallel, delayed

        if self.parallelization == 'progress':
            from tqdm.auto import tqdm
            results = Parallel(
                n_jobs=self.n_jobs, backend='loky', return_as='generator'
            )(delayed(fn)(*t) for t in tasks)
            return list(tqdm(results, total=len(tasks), desc=desc))

        return Parallel(n_jobs=self.n_jobs, backend=self._joblib_backend())(
            delayed(fn)(*t) for t in tasks
        )
