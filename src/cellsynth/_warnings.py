"""
cellsynth warning class hierarchy.

All cellsynth-specific warnings inherit from ``CellSynthWarning`` so callers
can suppress the entire family with a single filter::

    import warnings
    from cellsynth import CellSynthWarning
    warnings.filterwarnings('ignore', category=CellSynthWarning)

Individual sub-classes can also be targeted::

    from cellsynth import ZeroVarianceWarning
    warnings.filterwarnings('ignore', category=ZeroVarianceWarning)
"""


class CellSynthWarning(UserWarning):
    """Base class for all cellsynth warnings."""


class ZeroVarianceWarning(CellSynthWarning):
    """
    Warning emitted when ``nonzerovar=True`` had to overwrite one cell of a
    constant feature with 1 so that the feature has non-zero variance.
    """


class EmptyGroupWarning(CellSynthWarning):
    """
    Warning emitted when a correlation group resolves to zero cells and
    therefore contributes no quantile rows.
    """
