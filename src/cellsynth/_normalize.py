"""
Canonical form for correlation-group labels and copula-model keys.

Group labels arrive from several upstream sources (covariate tables, fitted
copula lists) and are compared by string equality.  Both sides are mapped
through the same pipeline so that e.g. ``' T-cell '`` and ``'tcell'`` or
``'01'`` and ``'1'`` meet:

    trim -> lowercase -> strip non-alphanumeric (spaces kept)
         -> collapse whitespace -> strip leading zeros

Set-level normalisation then deduplicates, drops empty strings and sorts.
"""

from __future__ import annotations

import re
from typing import Iterable, Mapping

_NON_ALNUM = re.compile(r'[^\w ]|_')
_WHITESPACE = re.compile(r'\s+')
_LEADING_ZEROS = re.compile(r'^0+')


def canonicalize_label(label) -> str:
    """Return the canonical form of a single label (no dedup / sort)."""
    s = str(label).strip().lower()
    s = _NON_ALNUM.sub('', s)
    s = _WHITESPACE.sub(' ', s)
    return _LEADING_ZEROS.sub('', s)


def canonicalize_assignments(labels: Iterable) -> list:
    """Element-wise ``canonicalize_label``; length and order are preserved."""
    return [canonicalize_label(x) for x in labels]


def normalize_labels(labels: Iterable) -> list:
    """
    Canonicalize, deduplicate, drop empties and sort a label sequence.

    Parameters
    ----------
    labels : iterable
        Free-text group labels (any objects; converted with ``str``).

    Returns
    -------
    labels : list of str
        Sorted unique non-empty canonical labels.
    """
    return sorted({s for s in canonicalize_assignments(labels) if s != ''})


def normalize_copula_keys(copula_list: Mapping) -> dict:
    """
    Re-key a copula-model map by canonical labels.

    Duplicate canonical keys keep their first occurrence and empty keys are
    dropped.  The returned dict is ordered by sorted key, so callers must not
    rely on the input's key order.

    Parameters
    ----------
    copula_list : mapping
        ``{group_label: copula_model}``.

    Returns
    -------
    copula_list : dict[str, object]
    """
    out = {}
    for key, model in copula_list.items():
        k = canonicalize_label(key)
        if k == '' or k in out:
            continue
        out[k] = model
    return {k: out[k] for k in sorted(out)}
