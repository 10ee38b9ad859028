"""
Quantile matrix assembly.

Produces the cell-by-feature matrix of uniform quantiles that drives the
marginal inversion, either by sampling every correlation group's copula or
by expanding a precomputed matrix to the full feature set.

Both paths write into a ``NaN`` arena of shape ``(n_cells, n_features)`` by
explicit row and column indices: rows follow cell index order regardless of
the order in which groups are visited, and features no model covers stay
``NaN``.
"""

from __future__ import annotations

import logging
import warnings

import numpy as np
from sklearn.utils import check_random_state

from ._exceptions import ConfigurationError, GroupNotFoundError
from ._warnings import EmptyGroupWarning
from ._reference import align_features
from .copulas import IndependentCopula, as_copula_model

logger = logging.getLogger(__name__)


def _group_model(group, copula_list, important_feature, qrng):
    if group.label in copula_list:
        return as_copula_model(
            copula_list[group.label],
            important_feature=important_feature,
            qrng=qrng,
        )
    if group.is_independent:
        return IndependentCopula()
    raise GroupNotFoundError(group.label, copula_list.keys())


def sample_group(
    group,
    copula_list: dict,
    feature_names,
    random_state=None,
    n_jobs: int = 1,
    fastmvn: bool = False,
    important_feature='all',
    qrng: bool = True,
) -> tuple:
    """
    Sample the quantile block of one correlation group.

    Parameters
    ----------
    group : GroupAssignment
    copula_list : dict[str, object]
        Normalised copula-model map.
    feature_names : sequence of str
        Retained features.
    random_state : int, RandomState or None
    n_jobs : int, default 1
    fastmvn : bool, default False
    important_feature : 'all' or array-like of bool
    qrng : bool, default True

    Returns
    -------
    U : ndarray (group.n_cells, len(positions))
    positions : ndarray of int
        Retained-feature columns covered by ``U``.

    Raises
    ------
    GroupNotFoundError
        If the group is not the independence sentinel and has no model.
    """
    model = _group_model(group, copula_list, important_feature, qrng)
    logger.info(
        "Sampling copula group %r (%d cells) with %r",
        group.label, group.n_cells, model,
    )
    return model.sample(
        group.n_cells, feature_names,
        random_state=random_state, n_jobs=n_jobs, fastmvn=fastmvn,
    )


def sample_quantile_matrix(
    groups,
    copula_list: dict,
    feature_names,
    retained: np.ndarray,
    n_cells: int,
    random_state=None,
    n_jobs: int = 1,
    fastmvn: bool = False,
    important_feature='all',
    qrng: bool = True,
) -> np.ndarray:
    """
    Sample the quantile matrix of every group and merge it by cell index.

    Parameters
    ----------
    groups : list of GroupAssignment
        From ``resolve_groups``.  Groups with zero cells are skipped once
        their model has been looked up.
    copula_list : dict[str, object]
        Normalised copula-model map.
    feature_names : pandas.Index
        All features of the reference.
    retained : ndarray of int
        Positions of the features being simulated.
    n_cells : int
        Number of output cells.
    random_state : int, RandomState or None
        Per-group seeds are derived from it in label order, so a fixed seed
        reproduces the same matrix whatever order ``groups`` come in.

    Returns
    -------
    quantile_mat : ndarray (n_cells, len(feature_names))
        ``NaN`` where no model provides a quantile.
    """
    rng = check_random_state(random_state)
    retained_names = feature_names[retained]
    out = np.full((n_cells, len(feature_names)), np.nan)

    seeds = {
        g.label: int(rng.randint(0, 2 ** 31))
        for g in sorted(groups, key=lambda g: g.label)
    }

    for group in groups:
        seed = seeds[group.label]
        if group.n_cells == 0:
            # a group without a model is an error even when it has no cells
            _group_model(group, copula_list, important_feature, qrng)
            warnings.warn(
                f"Correlation group {group.label!r} has no cells; skipped.",
                EmptyGroupWarning,
                stacklevel=2,
            )
            continue
        U, positions = sample_group(
            group, copula_list, retained_names,
            random_state=seed, n_jobs=n_jobs, fastmvn=fastmvn,
            important_feature=important_feature, qrng=qrng,
        )
        out[np.ix_(group.indices, retained[positions])] = U

    return out


def expand_quantile_matrix(
    quantile_mat,
    feature_names,
    retained: np.ndarray,
    n_cells: int,
) -> np.ndarray:
    """
    Expand a precomputed quantile matrix to the full feature set.

    Labelled (DataFrame) inputs may cover a subset of the features; the
    rest stay ``NaN``.

    Raises
    ------
    ConfigurationError
        If the matrix does not line up with the cells / features, or holds
        values outside [0, 1].
    """
    block = align_features(
        quantile_mat, feature_names, retained, n_cells,
        name='quantile_mat', allow_missing=True,
    )
    finite = block[~np.isnan(block)]
    if finite.size and (finite.min() < 0.0 or finite.max() > 1.0):
        raise ConfigurationError("quantile_mat values must lie in [0, 1].")
    out = np.full((n_cells, len(feature_names)), np.nan)
    out[:, retained] = block
    return out


def check_quantile_source(quantile_mat, copula_list) -> str:
    """
    Return ``'quantile_mat'`` or ``'copula_list'``: whichever was supplied.

    Raises
    ------
    ConfigurationError
        If both or neither are supplied.
    """
    if quantile_mat is not None and copula_list is not None:
        raise ConfigurationError(
            "You can only provide either the quantile_mat or the copula_list."
        )
    if quantile_mat is None and copula_list is None:
        raise ConfigurationError(
            "Provide either a quantile_mat or a copula_list."
        )
    return 'quantile_mat' if quantile_mat is not None else 'copula_list'
