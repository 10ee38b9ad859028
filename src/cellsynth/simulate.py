"""
Simulator: synthesize a count matrix from fitted marginals and copulas.

Constructor parameters configure *how* the simulation runs (worker pool,
multivariate sampler, post-processing, seed).  ``simulate()`` takes the
fitted inputs handed over by the upstream stages:

    mean / sigma / zero matrices  --+
    quantile_mat  or  copula_list --+--> quantiles --> inverse CDFs --> counts
    corr_group assignments       --+

Pipeline
--------
1. Normalise copula-model keys and resolve the cells of every correlation
   group (``_groups``).
2. Sample each group's copula and merge the blocks by cell index, or expand
   a precomputed quantile matrix (``quantiles``).
3. Invert every retained feature's quantiles through its marginal family,
   one feature per task on the worker pool (``marginals``).
4. Zero-fill filtered features, transpose to features x cells, clamp,
   repair zero-variance rows and mirror the reference storage
   (``_postprocess``).
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator
from sklearn.utils import check_random_state

from ._groups import corr_group_column, resolve_groups, resolve_new_covariate
from ._normalize import normalize_copula_keys
from ._parallel import WorkerPool
from ._params import ParallelParams, PostprocessParams
from ._postprocess import assemble_counts, postprocess
from ._reference import align_features, as_reference
from .copulas import important_feature_mask
from .marginals import check_scale, invert_feature, resolve_families
from .quantiles import (
    check_quantile_source,
    expand_quantile_matrix,
    sample_quantile_matrix,
)

logger = logging.getLogger(__name__)


class Simulator(BaseEstimator):
    """
    Synthesize a features x cells count matrix.

    Parameters
    ----------
    n_jobs : int, default 1
        Workers for the per-feature inversion and threads for multivariate
        sampling.  ``-1`` uses all cores.
    parallelization : {'processes', 'distributed', 'progress'} or None
        Worker-pool backend; ``None`` uses the platform default
        (``'distributed'`` on Windows, ``'processes'`` elsewhere).
    backend : str or joblib ParallelBackendBase, optional
        joblib backend for ``parallelization='distributed'``.
    fastmvn : bool, default False
        Draw multivariate normals with the blockwise Cholesky sampler
        instead of ``scipy.stats.multivariate_normal``.
    nonnegative : bool, default True
        Clamp simulated values below 0 to 0.
    nonzerovar : bool, default False
        Set one random cell of every zero-variance feature to 1.
    qrng : bool, default True
        Request quasi-random draws from vine copulas.
    random_state : int, RandomState or None, default 42

    Attributes
    ----------
    feature_names_ : pandas.Index
        Row labels of the last simulated matrix.
    cell_names_ : pandas.Index
        Column labels of the last simulated matrix.
    quantile_mat_ : ndarray (n_cells, n_features)
        Quantiles used by the last simulation (``NaN`` = unmodelled).
    groups_ : list of GroupAssignment or None
        Resolved correlation groups (``None`` for a precomputed
        ``quantile_mat``).
    """

    def __init__(
        self,
        n_jobs: int = 1,
        parallelization: Optional[
            Literal['processes', 'distributed', 'progress']
        ] = None,
        backend=None,
        fastmvn: bool = False,
        nonnegative: bool = True,
        nonzerovar: bool = False,
        qrng: bool = True,
        random_state=42,
    ):
        self.n_jobs = n_jobs
        self.parallelization = parallelization
        self.backend = backend
        self.fastmvn = fastmvn
        self.nonnegative = nonnegative
        self.nonzerovar = nonzerovar
        self.qrng = qrng
        self.random_state = random_state

    # ------------------------------------------------------------------
    # Parameter containers
    # ------------------------------------------------------------------

    def _parallel_params(self) -> ParallelParams:
        return ParallelParams(
            parallelization=self.parallelization,
            n_jobs=self.n_jobs,
            backend=self.backend,
        )

    def _postprocess_params(self) -> PostprocessParams:
        return PostprocessParams(
            nonnegative=self.nonnegative, nonzerovar=self.nonzerovar
        )

    # ------------------------------------------------------------------
    # Quantiles
    # ------------------------------------------------------------------

    def _quantiles(
        self,
        layout,
        retained,
        n_cells,
        quantile_mat,
        copula_list,
        input_data,
        new_covariate,
        important_feature,
        rng,
    ):
        if quantile_mat is not None:
            logger.info("Multivariate quantile matrix is provided")
            self.groups_ = None
            return expand_quantile_matrix(
                quantile_mat, layout.feature_names, retained, n_cells
            )

        logger.info("Use copula to sample a multivariate quantile matrix")
        copula_list = normalize_copula_keys(copula_list)
        self.groups_ = resolve_groups(
            corr_group_column(input_data, 'input_data'),
            None if new_covariate is None
            else corr_group_column(new_covariate, 'new_covariate'),
        )
        logger.info(
            "Correlation groups: %s; copula models: %s",
            [g.label for g in self.groups_], list(copula_list),
        )
        return sample_quantile_matrix(
            self.groups_,
            copula_list,
            layout.feature_names,
            retained,
            n_cells,
            random_state=rng,
            n_jobs=self.n_jobs,
            fastmvn=self.fastmvn,
            important_feature=important_feature,
            qrng=self.qrng,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def simulate(
        self,
        reference,
        mean_mat,
        sigma_mat,
        zero_mat,
        family_use,
        input_data: Optional[pd.DataFrame] = None,
        quantile_mat=None,
        copula_list: Optional[dict] = None,
        new_covariate: Optional[pd.DataFrame] = None,
        important_feature='all',
        filtered_gene=None,
        assay_use='counts',
    ):
        """
        Simulate a new count matrix.

        Parameters
        ----------
        reference : AnnData or ReferenceLayout
            Source dataset; supplies feature / cell identifiers and whether
            the output is sparse.
        mean_mat : DataFrame or ndarray (n_cells, n_features)
            Per-cell mean of every feature.
        sigma_mat : DataFrame, ndarray or None
            Per-cell dispersion (``nb``, ``zinb``, ``gaussian``).  ``None``
            means all zeros, which ``gaussian`` rejects.
        zero_mat : DataFrame, ndarray or None
            Per-cell zero-inflation probability (``zip``, ``zinb``).
            ``None`` means all zeros.
        family_use : str or sequence of str
            Marginal family per feature: ``'binomial'``, ``'poisson'``,
            ``'gaussian'``, ``'nb'``, ``'zip'`` or ``'zinb'``.
        input_data : DataFrame, optional
            Covariates of the reference cells, with a ``corr_group`` column.
            Required with ``copula_list``.
        quantile_mat : DataFrame or ndarray (n_cells, *), optional
            Precomputed quantiles.  Mutually exclusive with ``copula_list``.
        copula_list : dict, optional
            ``{corr_group: model}`` where a model is a correlation matrix
            (dense or sparse), a fitted vine, ``'ind'``/``None`` or a
            ``cellsynth.copulas`` model instance.
        new_covariate : DataFrame, optional
            Covariates of the cells to simulate (with ``corr_group``).
            ``None`` simulates the reference cells.
        important_feature : 'all' or array-like of bool
            Mask over retained features sampled by vine copulas.
        filtered_gene : sequence of str, optional
            Features excluded upstream; they are all-zero rows in the output.
        assay_use : str, default 'counts'
            AnnData layer whose storage (dense / sparse) the output mirrors.

        Returns
        -------
        counts : ndarray or scipy.sparse.csr_matrix (n_features, n_cells)
        """
        source = check_quantile_source(quantile_mat, copula_list)
        pool = WorkerPool(**vars(self._parallel_params()))
        post = self._postprocess_params()
        rng = check_random_state(self.random_state)

        layout = as_reference(reference, assay_use=assay_use)
        retained = layout.retained(filtered_gene)
        families = resolve_families(family_use, layout.n_features, retained)

        new_covariate = resolve_new_covariate(input_data, new_covariate)
        if new_covariate is None:
            cell_names = layout.cell_names
        else:
            cell_names = pd.Index(new_covariate.index)
        n_cells = len(cell_names)

        if source == 'copula_list' and not isinstance(important_feature, str):
            important_feature = important_feature_mask(
                important_feature, len(retained)
            )

        mean = align_features(
            mean_mat, layout.feature_names, retained, n_cells, 'mean_mat'
        )
        sigma = self._optional_matrix(sigma_mat, layout, retained, n_cells, 'sigma_mat')
        zero = self._optional_matrix(zero_mat, layout, retained, n_cells, 'zero_mat')
        check_scale(
            families, mean, sigma, layout.feature_names[retained],
            sigma_given=sigma_mat is not None,
        )

        quantiles = self._quantiles(
            layout, retained, n_cells, quantile_mat, copula_list,
            input_data, new_covariate, important_feature, rng,
        )
        self.quantile_mat_ = quantiles

        tasks = [
            (mean[:, j], sigma[:, j], quantiles[:, col], zero[:, j], families[j])
            for j, col in enumerate(retained)
        ]
        logger.info(
            "Inverting %d features over %d cells (%r)",
            len(tasks), n_cells, pool,
        )
        columns = pool.map(invert_feature, tasks, desc='features')

        counts = assemble_counts(columns, retained, layout.n_features, n_cells)
        counts = postprocess(
            counts,
            retained,
            nonnegative=post.nonnegative,
            nonzerovar=post.nonzerovar,
            sparse=layout.sparse,
            random_state=rng,
        )

        self.feature_names_ = layout.feature_names
        self.cell_names_ = cell_names
        return counts

    @staticmethod
    def _optional_matrix(mat, layout, retained, n_cells, name):
        if mat is None:
            return np.zeros((n_cells, len(retained)))
        return align_features(mat, layout.feature_names, retained, n_cells, name)


def simulate_new(
    reference,
    mean_mat,
    sigma_mat,
    zero_mat,
    family_use,
    input_data=None,
    quantile_mat=None,
    copula_list=None,
    new_covariate=None,
    important_feature='all',
    filtered_gene=None,
    assay_use='counts',
    **simulator_params,
):
    """
    Functional wrapper: ``Simulator(**simulator_params).simulate(...)``.

    See ``Simulator`` for the keyword parameters (``n_jobs``,
    ``parallelization``, ``backend``, ``fastmvn``, ``nonnegative``,
    ``nonzerovar``, ``qrng``, ``random_state``) and
    ``Simulator.simulate`` for the inputs.
    """
    return Simulator(**simulator_params).simulate(
        reference,
        mean_mat,
        sigma_mat,
        zero_mat,
        family_use,
        input_data,
        quantile_mat=quantile_mat,
        copula_list=copula_list,
        new_covariate=new_covariate,
        important_feature=important_feature,
        filtered_gene=filtered_gene,
        assay_use=assay_use,
    )
