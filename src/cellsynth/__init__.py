"""
cellsynth: copula-based synthesis of single-cell count matrices
===============================================================

Reconstructs a feature-by-cell expression matrix from fitted per-cell
marginal parameters (mean, dispersion, zero-inflation) and per-group copula
models of the dependency between features.

Primary API
-----------
    from cellsynth import Simulator, simulate_new

    sim = Simulator(n_jobs=4, random_state=0)
    counts = sim.simulate(
        adata,                      # AnnData reference (cells x features)
        mean_mat, sigma_mat, zero_mat,
        family_use='nb',
        input_data=covariates,      # DataFrame with a 'corr_group' column
        copula_list={'tcell': corr_t, 'bcell': vine_b},
        filtered_gene=filtered,
    )                               # features x cells, dense or CSR

    counts = simulate_new(adata, mean_mat, sigma_mat, zero_mat, 'poisson',
                          input_data=covariates, quantile_mat=U)

Copula models
-------------
GaussianCopula (dense / sparse correlation), VineCopula (pyvinecopulib-style
``simulate``) and IndependentCopula.  Raw upstream values are wrapped by
``as_copula_model``; the group label ``'ind'`` means independence.

Marginal families
-----------------
'binomial', 'poisson', 'gaussian', 'nb', 'zip', 'zinb'.
"""

from ._exceptions import (
    CellSynthError,
    ConfigurationError,
    GroupNotFoundError,
    FeatureNotFoundError,
    UnsupportedModelError,
)
from ._warnings import CellSynthWarning, ZeroVarianceWarning, EmptyGroupWarning
from ._params import ParallelParams, PostprocessParams, default_parallelization
from ._parallel import WorkerPool
from ._reference import ReferenceLayout
from ._normalize import canonicalize_label, normalize_labels, normalize_copula_keys
from ._groups import GroupAssignment, INDEPENDENT_GROUP, resolve_groups
from .copulas import (
    CopulaModel,
    GaussianCopula,
    VineCopula,
    IndependentCopula,
    as_copula_model,
    sample_mvn,
)
from .marginals import BUILTIN_FAMILIES, get_family, invert_feature
from .quantiles import sample_quantile_matrix, expand_quantile_matrix
from .simulate import Simulator, simulate_new

__version__ = '0.1.0'

__all__ = [
    # Primary API
    'Simulator',
    'simulate_new',
    'ReferenceLayout',
    # Parameters
    'ParallelParams',
    'PostprocessParams',
    'default_parallelization',
    'WorkerPool',
    # Errors
    'CellSynthError',
    'ConfigurationError',
    'GroupNotFoundError',
    'FeatureNotFoundError',
    'UnsupportedModelError',
    # Warnings
    'CellSynthWarning',
    'ZeroVarianceWarning',
    'EmptyGroupWarning',
    # Correlation groups
    'canonicalize_label',
    'normalize_labels',
    'normalize_copula_keys',
    'GroupAssignment',
    'INDEPENDENT_GROUP',
    'resolve_groups',
    # Copulas
    'CopulaModel',
    'GaussianCopula',
    'VineCopula',
    'IndependentCopula',
    'as_copula_model',
    'sample_mvn',
    # Marginals
    'BUILTIN_FAMILIES',
    'get_family',
    'invert_feature',
    # Quantiles
    'sample_quantile_matrix',
    'expand_quantile_matrix',
]
