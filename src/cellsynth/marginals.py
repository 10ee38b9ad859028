"""
Marginal Inverse CDFs
=====================

Maps per-cell uniform quantiles to synthetic counts through each feature's
fitted marginal distribution.

Built-in families
-----------------
binomial  — Bernoulli with success probability = mean.
poisson   — Poisson with rate = mean.
gaussian  — Normal with location = mean, scale = |sigma|.
nb        — Negative binomial parameterised by mean ``mu`` and dispersion
            ``sigma`` (variance ``mu + sigma * mu**2``).  Dispersions at or
            below 1e-4 fall back to Poisson.
zip       — Zero-inflated Poisson with zero-inflation probability ``pi``.
zinb      — Zero-inflated negative binomial (mean, dispersion, ``pi``).

Discrete families return their support minimum (0) at ``q = 0`` and
``+inf`` at ``q = 1`` for unbounded supports.

Each family is a function ``ppf(q, mean, sigma, zero) -> ndarray`` over
equal-length 1-D arrays.  ``invert_feature`` applies one of them to a single
feature and is the unit of parallel dispatch.
"""

from __future__ import annotations

import numpy as np
from scipy.stats import binom, nbinom, norm, poisson

from ._exceptions import ConfigurationError

#: Replacement for a zero-inflation probability of exactly 0.
ZERO_INFLATION_FLOOR = np.finfo(np.float64).eps

_NB_POISSON_SIGMA = 1e-4
_ZI_OFFSET = 1e-10


def _clip_support(values: np.ndarray) -> np.ndarray:
    # scipy returns a - 1 (= -1) at q == 0 for discrete laws on {0, 1, ...}
    return np.maximum(values, 0.0)


# ---------------------------------------------------------------------------
# Family inverse CDFs
# ---------------------------------------------------------------------------

def binomial_ppf(q, mean, sigma=None, zero=None):
    """Bernoulli inverse CDF (binomial with one trial)."""
    return _clip_support(binom.ppf(q, 1, mean))


def poisson_ppf(q, mean, sigma=None, zero=None):
    """Poisson inverse CDF."""
    return _clip_support(poisson.ppf(q, mean))


def gaussian_ppf(q, mean, sigma, zero=None):
    """Normal inverse CDF with scale ``|sigma|``."""
    return norm.ppf(q, loc=mean, scale=np.abs(sigma))


def nb_ppf(q, mean, sigma, zero=None):
    """
    Negative binomial inverse CDF in (mean, dispersion) form.

    Maps to scipy's ``nbinom(n, p)`` with ``n = 1 / sigma`` and
    ``p = 1 / (1 + sigma * mean)``.
    """
    q = np.asarray(q, dtype=np.float64)
    mean = np.asarray(mean, dtype=np.float64)
    sigma = np.asarray(sigma, dtype=np.float64)

    use_nb = sigma > _NB_POISSON_SIGMA
    safe_sigma = np.where(use_nb, sigma, 1.0)
    size = 1.0 / safe_sigma
    prob = 1.0 / (1.0 + safe_sigma * mean)

    out = np.where(use_nb, nbinom.ppf(q, size, prob), poisson.ppf(q, mean))
    return _clip_support(out)


def _zero_inflated(base_ppf, q, mean, sigma, zero):
    q = np.asarray(q, dtype=np.float64)
    zero = np.asarray(zero, dtype=np.float64)
    zero = np.where(zero != 0, zero, ZERO_INFLATION_FLOOR)
    q_base = np.maximum((q - zero) / (1.0 - zero) - _ZI_OFFSET, 0.0)
    # keep q = 1 mapped to the top of the support
    q_base = np.where(q >= 1.0, 1.0, q_base)
    return base_ppf(q_base, mean, sigma)


def zip_ppf(q, mean, sigma, zero):
    """Zero-inflated Poisson inverse CDF."""
    return _zero_inflated(poisson_ppf, q, mean, sigma, zero)


def zinb_ppf(q, mean, sigma, zero):
    """Zero-inflated negative binomial inverse CDF."""
    return _zero_inflated(nb_ppf, q, mean, sigma, zero)


# ---------------------------------------------------------------------------
# Registry and lookup
# ---------------------------------------------------------------------------

BUILTIN_FAMILIES: dict = {
    'binomial': binomial_ppf,
    'poisson': poisson_ppf,
    'gaussian': gaussian_ppf,
    'nb': nb_ppf,
    'zip': zip_ppf,
    'zinb': zinb_ppf,
}


def get_family(name: str):
    """
    Return the inverse CDF of a built-in family by name.

    Raises
    ------
    ConfigurationError
        If ``name`` is not a recognised family.
    """
    if name not in BUILTIN_FAMILIES:
        raise ConfigurationError(
            f"Unknown distribution family: {name!r}. "
            f"Available: {sorted(BUILTIN_FAMILIES)}"
        )
    return BUILTIN_FAMILIES[name]


def resolve_families(family_use, n_features: int, retained: np.ndarray) -> list:
    """
    Expand ``family_use`` to one family per retained feature.

    Parameters
    ----------
    family_use : str or sequence of str
        A single family for every feature, or one per feature (either the
        full feature set or the retained features only).
    n_features : int
        Size of the full feature set.
    retained : ndarray of int
        Positions of the retained (non-filtered) features.

    Returns
    -------
    families : list of str, length ``len(retained)``
    """
    if isinstance(family_use, str):
        families = [family_use] * len(retained)
    else:
        family_use = list(family_use)
        if len(family_use) == 1:
            families = family_use * len(retained)
        elif len(family_use) == n_features:
            families = [family_use[i] for i in retained]
        elif len(family_use) == len(retained):
            families = family_use
        else:
            raise ConfigurationError(
                f"family_use has {len(family_use)} entries; expected 1, "
                f"{n_features} (all features) or {len(retained)} "
                f"(retained features)."
            )
    for name in set(families):
        get_family(name)
    return families


#: Families whose inverse CDF is undefined at ``sigma == 0``.
SCALE_FAMILIES = frozenset({'gaussian'})


def check_scale(families, mean, sigma, feature_names, sigma_given=True):
    """
    Require a nonzero ``sigma`` wherever a scale family has nonzero mean.

    Parameters
    ----------
    families : list of str
        One family per column of ``mean`` / ``sigma``.
    mean, sigma : ndarray (n_cells, len(families))
    feature_names : sequence of str
        Name of each column, for the error message.
    sigma_given : bool, default True
        ``False`` when ``sigma`` was filled in because no dispersion
        matrix was supplied.

    Raises
    ------
    ConfigurationError
        Naming the offending features.
    """
    cols = [j for j, f in enumerate(families) if f in SCALE_FAMILIES]
    if not cols:
        return
    bad = np.any((mean[:, cols] != 0) & (sigma[:, cols] == 0), axis=0)
    if not bad.any():
        return
    names = [str(feature_names[cols[j]]) for j in np.flatnonzero(bad)]
    if not sigma_given:
        raise ConfigurationError(
            f"sigma_mat is required for families {sorted(SCALE_FAMILIES)}; "
            f"features {names} use one of them."
        )
    raise ConfigurationError(
        f"sigma_mat is 0 for cells with nonzero mean in features {names}; "
        f"the {sorted(SCALE_FAMILIES)} families need a nonzero scale."
    )


# ---------------------------------------------------------------------------
# Per-feature inversion
# ---------------------------------------------------------------------------

def invert_feature(
    mean: np.ndarray,
    sigma: np.ndarray,
    quantile: np.ndarray,
    zero: np.ndarray,
    family: str,
) -> np.ndarray:
    """
    Synthetic values of one feature across all cells.

    Cells with mean 0 are set to 0 without evaluating the inverse CDF.

    Parameters
    ----------
    mean, sigma, quantile, zero : ndarray (n_cells,)
        Per-cell mean, dispersion, quantile and zero-inflation probability.
    family : str
        Key of ``BUILTIN_FAMILIES``.

    Returns
    -------
    values : ndarray (n_cells,)
    """
    ppf = get_family(family)
    mean = np.asarray(mean, dtype=np.float64)
    out = np.zeros(len(mean))
    idx = np.flatnonzero(mean != 0)
    if len(idx) == 0:
        return out
    out[idx] = ppf(
        np.asarray(quantile, dtype=np.float64)[idx],
        mean[idx],
        np.asarray(sigma, dtype=np.float64)[idx],
        np.asarray(zero, dtype=np.float64)[idx],
    )
    return out
