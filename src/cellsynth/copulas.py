"""
Copula Models for Quantile Sampling
===================================

Each correlation group carries one fitted copula model.  Sampling a model
yields an ``(n, d)`` matrix of dependent uniform quantiles for the features
it covers.

Built-in models
---------------
GaussianCopula    — dense or sparse correlation matrix.  Features with any
                    off-diagonal |r| >= 1e-5 are drawn jointly from a
                    multivariate normal and mapped through the standard
                    normal CDF; the remaining features are independent
                    uniforms.

VineCopula        — fitted vine (``pyvinecopulib.Vinecop`` or any object with
                    the same ``simulate`` signature) over the *important*
                    features; non-important features are independent
                    uniforms.

IndependentCopula — no dependency; every quantile is an independent uniform.

Every model implements the same protocol::

    U, positions = model.sample(n, feature_names, random_state, n_jobs)

``positions`` are the integer columns of ``feature_names`` that ``U`` fills,
so callers merge blocks by index instead of by label.

Usage
-----
    from cellsynth.copulas import as_copula_model

    model = as_copula_model(corr)          # ndarray -> GaussianCopula
    U, pos = model.sample(500, genes, random_state=0)
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np
import pandas as pd
import scipy.sparse as sp
from scipy.stats import multivariate_normal, norm
from sklearn.utils import check_random_state

from ._exceptions import (
    ConfigurationError,
    FeatureNotFoundError,
    UnsupportedModelError,
)
from ._groups import INDEPENDENT_GROUP

#: Off-diagonal magnitude at or above which a feature counts as correlated.
CORRELATION_THRESHOLD = 1e-5

_MIN_PAR_ROWS = 5000  # below this, a single Cholesky block is drawn serially


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

@runtime_checkable
class CopulaModel(Protocol):
    """Protocol for per-group copula models."""

    def sample(
        self,
        n: int,
        feature_names,
        random_state=None,
        n_jobs: int = 1,
        fastmvn: bool = False,
    ) -> tuple:
        """
        Draw ``n`` rows of dependent uniform quantiles.

        Parameters
        ----------
        n : int
            Number of cells to sample.  ``0`` returns an empty block.
        feature_names : sequence of str
            Features being simulated (the retained features).
        random_state : int, RandomState or None
        n_jobs : int, default 1
            Threads for the underlying multivariate sampler.
        fastmvn : bool, default False
            Use the Cholesky sampler for multivariate normal draws.

        Returns
        -------
        U : ndarray (n, len(positions))
            Quantiles in [0, 1].
        positions : ndarray of int
            Column of ``feature_names`` filled by each column of ``U``.
        """
        ...


# ---------------------------------------------------------------------------
# Multivariate normal sampling
# ---------------------------------------------------------------------------

def _cholesky_factor(sigma: np.ndarray) -> np.ndarray:
    try:
        return np.linalg.cholesky(sigma)
    except np.linalg.LinAlgError:
        # Semi-definite correlation: lift the spectrum just above zero
        min_eig = float(np.linalg.eigvalsh(sigma).min())
        jitter = (-min_eig if min_eig < 0 else 0.0) + 1e-10
        return np.linalg.cholesky(sigma + jitter * np.eye(len(sigma)))


def _cholesky_block(L: np.ndarray, n: int, seed: int) -> np.ndarray:
    rng = np.random.RandomState(seed)
    return rng.standard_normal((n, L.shape[0])) @ L.T


def sample_mvn(
    n: int,
    sigma,
    random_state=None,
    n_jobs: int = 1,
    fastmvn: bool = False,
) -> np.ndarray:
    """
    Sample a Gaussian copula: MVN(0, sigma) draws mapped through ``norm.cdf``.

    Parameters
    ----------
    n : int
    sigma : ndarray (d, d)
        Correlation (or covariance) matrix.
    random_state : int, RandomState or None
    n_jobs : int, default 1
        With ``fastmvn=True``, rows are drawn in blocks on this many threads.
    fastmvn : bool, default False
        ``True``  — Cholesky factor, blockwise ``standard_normal @ L.T``.
        ``False`` — ``scipy.stats.multivariate_normal`` (eigendecomposition;
        accepts singular matrices).

    Returns
    -------
    U : ndarray (n, d), values in [0, 1]
    """
    rng = check_random_state(random_state)
    sigma = np.asarray(sigma, dtype=np.float64)
    d = sigma.shape[0]
    if n == 0 or d == 0:
        return np.empty((n, d))

    if fastmvn:
        L = _cholesky_factor(sigma)
        if n_jobs == 1 or n < _MIN_PAR_ROWS:
            Z = _cholesky_block(L, n, int(rng.randint(0, 2 ** 31)))
        else:
            from joblib import Parallel, delayed, effective_n_jobs
            n_blocks = effective_n_jobs(n_jobs)
            sizes = [len(b) for b in np.array_split(np.arange(n), n_blocks)]
            seeds = [int(rng.randint(0, 2 ** 31)) for _ in sizes]
            # prefer='threads': the matmul releases the GIL (BLAS).
            blocks = Parallel(n_jobs=n_jobs, prefer='threads')(
                delayed(_cholesky_block)(L, m, s)
                for m, s in zip(sizes, seeds) if m > 0
            )
            Z = np.vstack(blocks)
    else:
        mvn = multivariate_normal(
            mean=np.zeros(d), cov=sigma, allow_singular=True
        )
        Z = np.asarray(mvn.rvs(size=n, random_state=rng)).reshape(n, d)

    return norm.cdf(Z)


# ---------------------------------------------------------------------------
# Gaussian copula
# ---------------------------------------------------------------------------

def correlated_features(corr) -> np.ndarray:
    """
    Boolean mask of features with any off-diagonal ``|r| >= 1e-5``.

    Works on dense arrays and on any ``scipy.sparse`` matrix.
    """
    if sp.issparse(corr):
        A = abs(sp.csc_matrix(corr, dtype=np.float64))
        A = A - sp.diags(A.diagonal())
        col_max = A.max(axis=0).toarray().ravel()
    else:
        A = np.abs(np.asarray(corr, dtype=np.float64))
        np.fill_diagonal(A, 0.0)
        col_max = A.max(axis=0) if A.size else np.zeros(0)
    return col_max >= CORRELATION_THRESHOLD


def _feature_positions(model_features, feature_names) -> np.ndarray:
    pos = pd.Index(feature_names).get_indexer(pd.Index(model_features))
    if np.any(pos < 0):
        raise FeatureNotFoundError(np.asarray(model_features)[pos < 0])
    return pos


class GaussianCopula:
    """
    Gaussian copula over a correlation matrix.

    Parameters
    ----------
    correlation : ndarray, DataFrame or scipy.sparse matrix (d, d)
    feature_names : sequence of str, optional
        Feature of each row/column.  Taken from the DataFrame columns when
        ``correlation`` is a DataFrame.  Without names the matrix must span
        exactly the simulated features, in order.
    """

    def __init__(self, correlation, feature_names=None):
        if isinstance(correlation, pd.DataFrame):
            if feature_names is None:
                feature_names = list(correlation.columns)
            correlation = correlation.to_numpy(dtype=np.float64)
        elif sp.issparse(correlation):
            correlation = sp.csr_matrix(correlation, dtype=np.float64)
        else:
            correlation = np.asarray(correlation, dtype=np.float64)

        if correlation.ndim != 2 or correlation.shape[0] != correlation.shape[1]:
            raise ConfigurationError(
                f"Correlation matrix must be square; got {correlation.shape}."
            )
        if feature_names is not None and len(feature_names) != correlation.shape[0]:
            raise ConfigurationError(
                f"{len(feature_names)} feature names for a "
                f"{correlation.shape[0]}-feature correlation matrix."
            )
        self.correlation = correlation
        self.feature_names = None if feature_names is None else list(feature_names)

    @property
    def n_features(self) -> int:
        return self.correlation.shape[0]

    def __repr__(self):
        kind = 'sparse' if sp.issparse(self.correlation) else 'dense'
        return f"GaussianCopula(n_features={self.n_features}, {kind})"

    def positions(self, feature_names) -> np.ndarray:
        if self.feature_names is not None:
            return _feature_positions(self.feature_names, feature_names)
        if self.n_features != len(feature_names):
            raise ConfigurationError(
                f"Unlabelled correlation matrix has {self.n_features} "
                f"features but {len(feature_names)} are simulated."
            )
        return np.arange(self.n_features)

    def sample(self, n, feature_names, random_state=None, n_jobs=1, fastmvn=False):
        rng = check_random_state(random_state)
        positions = self.positions(feature_names)
        U = np.empty((n, self.n_features))
        if n == 0:
            return U, positions

        corr_mask = correlated_features(self.correlation)
        corr_idx = np.flatnonzero(corr_mask)
        if len(corr_idx):
            sub = self.correlation[corr_idx][:, corr_idx]
            if sp.issparse(sub):
                sub = sub.toarray()
            U[:, corr_idx] = sample_mvn(
                n, sub, random_state=rng, n_jobs=n_jobs, fastmvn=fastmvn
            )
        n_residual = int((~corr_mask).sum())
        if n_residual:
            U[:, ~corr_mask] = rng.random_sample((n, n_residual))
        return U, positions


# ---------------------------------------------------------------------------
# Vine copula
# ---------------------------------------------------------------------------

def important_feature_mask(important_feature, n_features: int) -> np.ndarray:
    """Resolve ``'all'`` or a boolean mask to a boolean array of length n."""
    if isinstance(important_feature, str):
        if important_feature != 'all':
            raise ConfigurationError(
                f"important_feature must be 'all' or a boolean mask; "
                f"got {important_feature!r}."
            )
        return np.ones(n_features, dtype=bool)
    mask = np.asarray(important_feature, dtype=bool)
    if mask.shape != (n_features,):
        raise ConfigurationError(
            f"important_feature mask has shape {mask.shape}; "
            f"expected ({n_features},)."
        )
    return mask


class VineCopula:
    """
    Vine copula over the important features.

    Parameters
    ----------
    vine : object
        Fitted vine exposing ``simulate(n, qrng=..., num_threads=...,
        seeds=...)`` returning an ``(n, d)`` array, as
        ``pyvinecopulib.Vinecop`` does.
    important_feature : 'all' or array-like of bool
        Mask over the simulated features; its true count must equal the
        vine dimension.
    qrng : bool, default True
        Ask the vine for quasi-random draws.
    """

    def __init__(self, vine, important_feature='all', qrng=True):
        self.vine = vine
        self.important_feature = important_feature
        self.qrng = qrng

    def __repr__(self):
        return f"VineCopula(vine={type(self.vine).__name__}, qrng={self.qrng})"

    def _simulate(self, n, rng, n_jobs):
        seeds = [int(s) for s in rng.randint(0, 2 ** 31, size=4)]
        U = self.vine.simulate(
            n, qrng=self.qrng, num_threads=max(int(n_jobs), 1), seeds=seeds
        )
        return np.asarray(U, dtype=np.float64).reshape(n, -1)

    def sample(self, n, feature_names, random_state=None, n_jobs=1, fastmvn=False):
        rng = check_random_state(random_state)
        d = len(feature_names)
        mask = important_feature_mask(self.important_feature, d)
        U = np.zeros((n, d))
        positions = np.arange(d)
        if n == 0:
            return U, positions

        n_important = int(mask.sum())
        if n_important:
            U_vine = self._simulate(n, rng, n_jobs)
            if U_vine.shape[1] != n_important:
                raise ConfigurationError(
                    f"Vine copula has dimension {U_vine.shape[1]} but "
                    f"{n_important} features are marked important."
                )
            U[:, mask] = U_vine
        if n_important != d:
            U[:, ~mask] = sample_mvn(
                n, np.eye(d - n_important), random_state=rng,
                n_jobs=n_jobs, fastmvn=fastmvn,
            )
        return U, positions


# ---------------------------------------------------------------------------
# Independent copula
# ---------------------------------------------------------------------------

class IndependentCopula:
    """Independence copula: ``n x d`` independent uniforms."""

    def __repr__(self):
        return "IndependentCopula()"

    def sample(self, n, feature_names, random_state=None, n_jobs=1, fastmvn=False):
        rng = check_random_state(random_state)
        d = len(feature_names)
        return rng.random_sample((n, d)), np.arange(d)


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------

def as_copula_model(value, important_feature='all', qrng=True) -> CopulaModel:
    """
    Wrap an upstream copula value in its model class.

    Parameters
    ----------
    value : object
        * ``GaussianCopula`` / ``VineCopula`` / ``IndependentCopula`` —
          returned unchanged.
        * ndarray, DataFrame or ``scipy.sparse`` matrix — ``GaussianCopula``.
        * object with a ``simulate`` method — ``VineCopula``.
        * ``None`` or ``'ind'`` — ``IndependentCopula``.
    important_feature : 'all' or array-like of bool
        Passed to ``VineCopula``.
    qrng : bool, default True
        Passed to ``VineCopula``.

    Raises
    ------
    UnsupportedModelError
        If ``value`` is none of the above.
    """
    if isinstance(value, (GaussianCopula, VineCopula, IndependentCopula)):
        return value
    if value is None or (isinstance(value, str) and value == INDEPENDENT_GROUP):
        return IndependentCopula()
    if isinstance(value, (np.ndarray, pd.DataFrame)) or sp.issparse(value):
        return GaussianCopula(value)
    if callable(getattr(value, 'simulate', None)):
        return VineCopula(value, important_feature=important_feature, qrng=qrng)
    raise UnsupportedModelError(
        f"Copula must be a correlation matrix, a vine copula or "
        f"{INDEPENDENT_GROUP!r} (independent); got {type(value).__name__}."
    )
