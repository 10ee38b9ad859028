"""
Correlation-group resolution.

Maps every normalised correlation-group label to the output rows that
receive that group's quantiles.  The label source is always passed in
explicitly: the ``corr_group`` column of the covariate table used to fit the
models and, when new cells are requested, the ``corr_group`` column of the
new covariate table.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from ._exceptions import ConfigurationError
from ._normalize import canonicalize_assignments, normalize_labels

CORR_GROUP_COLUMN = 'corr_group'

#: Group label that denotes "features are independent" (no copula needed).
INDEPENDENT_GROUP = 'ind'


@dataclass(frozen=True)
class GroupAssignment:
    """
    Cells belonging to one correlation group.

    Attributes
    ----------
    label : str
        Canonical group label.
    indices : ndarray of int
        Output row indices (0-based, ascending) that receive this group's
        quantiles.
    """
    label: str
    indices: np.ndarray

    @property
    def n_cells(self) -> int:
        return len(self.indices)

    @property
    def is_independent(self) -> bool:
        return self.label == INDEPENDENT_GROUP


def corr_group_column(table: pd.DataFrame, name: str = 'input_data') -> np.ndarray:
    """Return the ``corr_group`` column of a covariate table."""
    if table is None:
        raise ConfigurationError(
            f"{name} with a {CORR_GROUP_COLUMN!r} column is required to "
            f"sample from a copula_list."
        )
    if CORR_GROUP_COLUMN not in table.columns:
        raise ConfigurationError(
            f"{name} must contain a {CORR_GROUP_COLUMN!r} column; "
            f"got columns {list(table.columns)}"
        )
    return table[CORR_GROUP_COLUMN].to_numpy()


def resolve_new_covariate(
    input_data: pd.DataFrame,
    new_covariate: Optional[pd.DataFrame],
) -> Optional[pd.DataFrame]:
    """
    Return ``new_covariate``, or ``None`` when it merely repeats the original
    covariates (same columns, same values, same rows).
    """
    if new_covariate is None or input_data is None:
        return new_covariate
    missing = [c for c in new_covariate.columns if c not in input_data.columns]
    if missing:
        return new_covariate
    if input_data[list(new_covariate.columns)].equals(new_covariate):
        return None
    return new_covariate


def resolve_groups(
    corr_group,
    new_corr_group=None,
) -> list:
    """
    Resolve the output rows of every correlation group.

    Parameters
    ----------
    corr_group : array-like of str (n_cells,)
        Group assignment of the original cells.
    new_corr_group : array-like of str (n_new_cells,) or None
        Group assignment of newly requested cells.  When given, each group's
        target size and row indices come from the new cells instead.

    Returns
    -------
    groups : list of GroupAssignment
        Ordered by canonical label.  Groups with no target cells are kept
        with empty ``indices`` and produce no quantile rows.

    Raises
    ------
    ConfigurationError
        If a target cell's label canonicalizes to the empty string (e.g.
        ``0``, ``'000'`` or ``'!!'``), which would leave it in no group.
    """
    original = np.asarray(canonicalize_assignments(corr_group), dtype=object)
    labels = set(normalize_labels(original))

    if new_corr_group is None:
        raw, target = corr_group, original
    else:
        raw = new_corr_group
        target = np.asarray(
            canonicalize_assignments(new_corr_group), dtype=object
        )
        labels.update(normalize_labels(target))

    unassigned = np.flatnonzero(target == '')
    if len(unassigned):
        raw = list(raw)
        bad = sorted({str(raw[i]) for i in unassigned})
        raise ConfigurationError(
            f"{len(unassigned)} cells have a corr_group label that is empty "
            f"after normalisation ({', '.join(map(repr, bad))}); "
            f"relabel the groups, e.g. 'cluster0' instead of 0."
        )

    return [
        GroupAssignment(label=g, indices=np.flatnonzero(target == g))
        for g in sorted(labels)
    ]
