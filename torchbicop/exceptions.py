"""Error classes raised across torchbicop.

All errors derive from :class:`BicopError`; the validation errors also derive
from :class:`ValueError` so callers catching the builtin keep working.
"""

from __future__ import annotations

__all__ = [
    "BicopError",
    "InvalidInput",
    "InvalidParameters",
    "InvalidRotation",
    "UnsupportedFamily",
    "EmptyCandidateSet",
    "FittingFailed",
]


class BicopError(Exception):
    """Base class for bivariate copula errors."""


class InvalidInput(BicopError, ValueError):
    """Data is not an (n, 2) matrix with entries in [0, 1]."""


class InvalidParameters(BicopError, ValueError):
    """Parameter vector has the wrong size or violates the family bounds."""


class InvalidRotation(BicopError, ValueError):
    """Rotation is not one of 0, 90, 180, 270."""


class UnsupportedFamily(BicopError, ValueError):
    """Unknown family tag, or operation not available for the family."""


class EmptyCandidateSet(BicopError, ValueError):
    """Selection was called without candidate families."""


class FittingFailed(BicopError, RuntimeError):
    """Optimizer ended at a non-finite log-likelihood."""
