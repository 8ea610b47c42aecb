"""BicopFamily enum — copula family identifiers and family sets."""

from __future__ import annotations

from enum import Enum

from .exceptions import UnsupportedFamily


class BicopFamily(str, Enum):
    indep = "indep"
    gaussian = "gaussian"
    student = "student"
    clayton = "clayton"
    gumbel = "gumbel"
    frank = "frank"
    joe = "joe"
    bb1 = "bb1"
    bb6 = "bb6"
    bb7 = "bb7"
    bb8 = "bb8"
    tll = "tll"


one_par = [BicopFamily.gaussian, BicopFamily.clayton, BicopFamily.gumbel, BicopFamily.frank, BicopFamily.joe]
two_par = [BicopFamily.student, BicopFamily.bb1, BicopFamily.bb6, BicopFamily.bb7, BicopFamily.bb8]
parametric = one_par + two_par
nonparametric = [BicopFamily.indep, BicopFamily.tll]
elliptical = [BicopFamily.gaussian, BicopFamily.student]
archimedean = [BicopFamily.clayton, BicopFamily.gumbel, BicopFamily.frank, BicopFamily.joe,
               BicopFamily.bb1, BicopFamily.bb6, BicopFamily.bb7, BicopFamily.bb8]
bb = [BicopFamily.bb1, BicopFamily.bb6, BicopFamily.bb7, BicopFamily.bb8]
itau = [BicopFamily.indep, BicopFamily.gaussian, BicopFamily.student, BicopFamily.clayton,
        BicopFamily.gumbel, BicopFamily.frank, BicopFamily.joe]
# Radially symmetric: 180 is identical to 0 and 270 to 90.
rotationless = [BicopFamily.indep, BicopFamily.gaussian, BicopFamily.student, BicopFamily.frank,
                BicopFamily.tll]
all = list(BicopFamily)

ROTATIONS = (0, 90, 180, 270)


def normalize_family(fam: str | BicopFamily) -> BicopFamily:
    if isinstance(fam, BicopFamily):
        return fam
    try:
        return BicopFamily(str(fam).lower())
    except ValueError as e:
        raise UnsupportedFamily(f"Unknown BicopFamily: {fam!r}") from e


def family_rotations(fam: BicopFamily) -> tuple[int, ...]:
    """Rotations searched for ``fam`` during selection."""
    fam = normalize_family(fam)
    if fam in nonparametric:
        return (0,)
    if fam in rotationless:
        return (0, 90)
    return ROTATIONS
