"""
Assembly and post-processing of the simulated count matrix.

Per-feature vectors are merged into a features x cells matrix spanning the
full reference feature set (filtered features become zero rows), then the
``nonnegative`` / ``nonzerovar`` switches are applied and the storage class
of the reference assay is mirrored.
"""

from __future__ import annotations

import warnings

import numpy as np
import scipy.sparse as sp
from sklearn.utils import check_random_state

from ._warnings import ZeroVarianceWarning


def assemble_counts(
    columns: list,
    retained: np.ndarray,
    n_features: int,
    n_cells: int,
) -> np.ndarray:
    """
    Merge per-feature vectors into a features x cells matrix.

    Parameters
    ----------
    columns : list of ndarray (n_cells,)
        One vector per retained feature, in ``retained`` order.
    retained : ndarray of int
        Row of each vector in the output.
    n_features, n_cells : int

    Returns
    -------
    counts : ndarray (n_features, n_cells)
        Rows not in ``retained`` are zero.
    """
    counts = np.zeros((n_features, n_cells))
    if len(columns):
        counts[retained] = np.vstack(columns)
    return counts


def repair_zero_variance(
    counts: np.ndarray,
    retained: np.ndarray,
    random_state=None,
) -> np.ndarray:
    """
    Give every constant retained feature non-zero variance, in place.

    One randomly chosen cell of each constant feature is set to 1.  A row
    that is constant at 1 gets a 0 instead, which breaks it just the same.

    Returns
    -------
    rows : ndarray of int
        Rows that were modified.
    """
    n_cells = counts.shape[1]
    if n_cells < 2 or len(retained) == 0:
        return np.empty(0, dtype=int)

    rng = check_random_state(random_state)
    sub = counts[retained]
    rows = retained[np.all(sub == sub[:, :1], axis=1)]
    for i in rows:
        j = rng.randint(n_cells)
        counts[i, j] = 0.0 if counts[i, j] == 1.0 else 1.0

    if len(rows):
        warnings.warn(
            f"{len(rows)} feature(s) have zero variance; one random cell "
            f"of each was replaced.",
            ZeroVarianceWarning,
            stacklevel=2,
        )
    return rows


def postprocess(
    counts: np.ndarray,
    retained: np.ndarray,
    nonnegative: bool = True,
    nonzerovar: bool = False,
    sparse: bool = False,
    random_state=None,
):
    """
    Apply the output switches to a features x cells matrix.

    Parameters
    ----------
    counts : ndarray (n_features, n_cells)
        Modified in place.
    retained : ndarray of int
        Simulated (non-filtered) feature rows; only these are repaired by
        ``nonzerovar``.
    nonnegative : bool, default True
        Clamp entries below 0 to 0.
    nonzerovar : bool, default False
        Call ``repair_zero_variance``.
    sparse : bool, default False
        Return a ``scipy.sparse.csr_matrix``.
    random_state : int, RandomState or None
        Source of the cell chosen by ``nonzerovar``.

    Returns
    -------
    counts : ndarray or scipy.sparse.csr_matrix (n_features, n_cells)
    """
    if nonnegative:
        np.maximum(counts, 0.0, out=counts)
    if nonzerovar:
        repair_zero_variance(counts, retained, random_state=random_state)
    if sparse:
        return sp.csr_matrix(counts)
    return counts
