"""torchbicop — Pure-PyTorch bivariate copulas.

Density, distribution and conditional distribution functions for parametric
and nonparametric copula families in four rotations, maximum-likelihood
fitting and family/rotation selection.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .exceptions import (
    BicopError, InvalidInput, InvalidParameters, InvalidRotation, UnsupportedFamily,
    EmptyCandidateSet, FittingFailed,
)
from .fit_controls import FitControlsBicop, InversionControls
from .abstract_bicop import AbstractBicop
from .bicop import Bicop, create
from .tools import invert_f, swap_cols, read_matxd, to_pseudo_obs
from .stats import kendall_tau, pearson_cor
from . import archimedean as _archimedean, elliptical as _elliptical, nonparametric as _nonparametric  # noqa: F401
# Imported after the submodules above (which are otherwise loaded lazily) so
# that the family lists named ``archimedean``, ``elliptical`` and
# ``nonparametric`` are not shadowed by the submodules of the same name.
from .families import (
    BicopFamily, ROTATIONS, family_rotations,
    one_par, two_par, parametric, nonparametric, elliptical, archimedean, bb, itau, rotationless, all,
)

import torch


def simulate_uniform(n: int, d: int = 2, *, seeds: list[int] | tuple[int, ...] = ()) -> torch.Tensor:
    """Independent uniforms of shape ``(n, d)`` in float64."""
    g = None
    if seeds:
        g = torch.Generator()
        g.manual_seed(int(seeds[0]))
    return torch.rand((int(n), int(d)), generator=g, dtype=torch.float64)


# ---------------------------------------------------------------------------
# Individual family shortcut names
# ---------------------------------------------------------------------------
indep = BicopFamily.indep
gaussian = BicopFamily.gaussian
student = BicopFamily.student
clayton = BicopFamily.clayton
gumbel = BicopFamily.gumbel
frank = BicopFamily.frank
joe = BicopFamily.joe
bb1 = BicopFamily.bb1
bb6 = BicopFamily.bb6
bb7 = BicopFamily.bb7
bb8 = BicopFamily.bb8
tll = BicopFamily.tll


__all__ = [
    "AbstractBicop",
    "Bicop",
    "BicopFamily",
    "FitControlsBicop",
    "InversionControls",
    "ROTATIONS",
    "create",
    "family_rotations",
    "invert_f",
    "swap_cols",
    "read_matxd",
    "to_pseudo_obs",
    "simulate_uniform",
    "kendall_tau",
    "pearson_cor",
    # Errors
    "BicopError",
    "InvalidInput",
    "InvalidParameters",
    "InvalidRotation",
    "UnsupportedFamily",
    "EmptyCandidateSet",
    "FittingFailed",
    # Individual family shortcut names
    "indep",
    "gaussian",
    "student",
    "clayton",
    "gumbel",
    "frank",
    "joe",
    "bb1",
    "bb6",
    "bb7",
    "bb8",
    "tll",
    # Family convenience lists
    "one_par",
    "two_par",
    "parametric",
    "nonparametric",
    "rotationless",
    "archimedean",
    "elliptical",
    "bb",
    "itau",
    "all",
]
