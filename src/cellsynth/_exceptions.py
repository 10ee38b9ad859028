"""
cellsynth exception hierarchy.

Every error raised by the simulation core derives from ``CellSynthError``
and from the builtin exception it refines, so existing ``except ValueError``
or ``except LookupError`` handlers keep working::

    from cellsynth import ConfigurationError
    try:
        counts = simulate_new(...)
    except ConfigurationError as exc:
        ...

All errors are raised synchronously and abort the whole simulation; no
partial output is returned.
"""


class CellSynthError(Exception):
    """Base class for all cellsynth errors."""


class ConfigurationError(CellSynthError, ValueError):
    """
    Inconsistent or unsupported inputs: both ``quantile_mat`` and
    ``copula_list`` supplied, an unknown parallel backend or distribution
    family, or parameter matrices that do not line up with the features.
    """


class GroupNotFoundError(CellSynthError, LookupError):
    """A correlation group has no entry in the copula-model map."""

    def __init__(self, group, available=()):
        self.group = group
        self.available = list(available)
        super().__init__(
            f"Group {group!r} not found in copula_list. "
            f"Available: {self.available}"
        )


class FeatureNotFoundError(CellSynthError, LookupError):
    """A copula model references features that are not being simulated."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(
            f"Copula model references unknown features: {self.missing}"
        )


class UnsupportedModelError(CellSynthError, TypeError):
    """
    A copula-model value is none of: correlation matrix (dense or sparse),
    vine copula, or the independence sentinel.
    """
