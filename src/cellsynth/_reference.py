"""
Reference dataset layout and feature alignment.

The simulation only needs three facts about the source dataset: its feature
identifiers, its cell identifiers and whether its primary assay is stored
sparse.  ``ReferenceLayout`` captures exactly those, built either directly or
from an ``AnnData`` (cells x features).

``align_features`` turns a labelled or unlabelled cell-by-feature matrix into
a plain array whose columns follow a requested list of feature positions.
"""

from __future__ import annotations

from dataclasses import dataclass

import anndata as ad
import numpy as np
import pandas as pd
import scipy.sparse as sp

from ._exceptions import ConfigurationError


@dataclass(frozen=True)
class ReferenceLayout:
    """
    Shape and storage of the reference dataset.

    Attributes
    ----------
    feature_names : pandas.Index
    cell_names : pandas.Index
    sparse : bool
        Whether the primary assay is a sparse matrix; the simulated matrix
        mirrors it.
    """
    feature_names: pd.Index
    cell_names: pd.Index
    sparse: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'feature_names', pd.Index(self.feature_names))
        object.__setattr__(self, 'cell_names', pd.Index(self.cell_names))

    @classmethod
    def from_anndata(cls, adata: ad.AnnData, assay_use='counts') -> 'ReferenceLayout':
        """
        Read the layout of an AnnData.

        Parameters
        ----------
        adata : AnnData
            Cells in ``obs``, features in ``var``.
        assay_use : str or None, default 'counts'
            Layer holding the primary assay.  ``None`` or ``'X'`` selects
            ``adata.X``.
        """
        if assay_use is None or assay_use == 'X':
            assay = adata.X
        elif assay_use in adata.layers:
            assay = adata.layers[assay_use]
        else:
            raise ConfigurationError(
                f"Assay {assay_use!r} not found in adata.layers "
                f"({list(adata.layers.keys())}); use 'X' for adata.X."
            )
        return cls(
            feature_names=adata.var_names.copy(),
            cell_names=adata.obs_names.copy(),
            sparse=sp.issparse(assay),
        )

    @property
    def n_features(self) -> int:
        return len(self.feature_names)

    @property
    def n_cells(self) -> int:
        return len(self.cell_names)

    def retained(self, filtered_gene=None) -> np.ndarray:
        """Positions of the features not listed in ``filtered_gene``."""
        if filtered_gene is None:
            return np.arange(self.n_features)
        return np.flatnonzero(~self.feature_names.isin(list(filtered_gene)))


def as_reference(reference, assay_use='counts') -> ReferenceLayout:
    """Coerce an AnnData or ReferenceLayout to a ReferenceLayout."""
    if isinstance(reference, ReferenceLayout):
        return reference
    if isinstance(reference, ad.AnnData):
        return ReferenceLayout.from_anndata(reference, assay_use=assay_use)
    raise ConfigurationError(
        f"reference must be an AnnData or ReferenceLayout; "
        f"got {type(reference).__name__}."
    )


def align_features(
    mat,
    feature_names: pd.Index,
    columns: np.ndarray,
    n_rows: int,
    name: str,
    allow_missing: bool = False,
) -> np.ndarray:
    """
    Select the columns of ``mat`` for the features at ``columns``.

    Parameters
    ----------
    mat : DataFrame, ndarray or scipy.sparse matrix (n_rows, *)
        DataFrames are matched by column label.  Unlabelled matrices must be
        either full width (``len(feature_names)``) or already restricted to
        ``columns``.
    feature_names : pandas.Index
    columns : ndarray of int
        Positions in ``feature_names`` to extract, in output order.
    n_rows : int
        Expected number of rows (cells).
    name : str
        Argument name used in error messages.
    allow_missing : bool, default False
        Leave labels absent from a DataFrame as ``NaN`` instead of raising.

    Returns
    -------
    out : ndarray (n_rows, len(columns)), float64
    """
    if mat.shape[0] != n_rows:
        raise ConfigurationError(
            f"{name} has {mat.shape[0]} rows; expected {n_rows} cells."
        )
    wanted = feature_names[columns]

    if isinstance(mat, pd.DataFrame):
        missing = wanted[~wanted.isin(mat.columns)]
        if len(missing) and not allow_missing:
            raise ConfigurationError(
                f"{name} is missing columns for features: {list(missing)}"
            )
        return mat.reindex(columns=wanted).to_numpy(dtype=np.float64)

    if sp.issparse(mat):
        mat = mat.toarray()
    mat = np.asarray(mat, dtype=np.float64)
    if mat.shape[1] == len(feature_names):
        return mat[:, columns]
    if mat.shape[1] == len(columns):
        return mat
    raise ConfigurationError(
        f"{name} has {mat.shape[1]} columns; expected {len(feature_names)} "
        f"(all features) or {len(columns)} (retained features)."
    )
