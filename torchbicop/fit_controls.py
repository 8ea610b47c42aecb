"""Fitting and numerical-inversion controls for bivariate copulas."""

from __future__ import annotations

from dataclasses import dataclass, field

from .families import BicopFamily, normalize_family


@dataclass(frozen=True)
class InversionControls:
    """Bracket and iteration count used by :func:`torchbicop.tools.invert_f`."""

    lb: float = 1e-20
    ub: float = 1.0 - 1e-20
    n_iter: int = 35

    def __post_init__(self):
        if not (self.lb <= self.ub):
            raise ValueError("lb must not exceed ub")
        if int(self.n_iter) < 1:
            raise ValueError("n_iter must be >= 1")

    def as_kwargs(self) -> dict:
        return {"lb": float(self.lb), "ub": float(self.ub), "n_iter": int(self.n_iter)}


@dataclass
class FitControlsBicop:
    family_set: list[BicopFamily] = field(default_factory=lambda: list(BicopFamily))
    parametric_method: str = "mle"  # "mle" or "itau"
    nonparametric_method: str = "constant"  # "constant", "linear", "quadratic"
    nonparametric_mult: float = 1.0
    selection_criterion: str = "bic"  # "bic", "aic", "loglik"
    allow_rotations: bool = True
    num_threads: int = 1  # candidate fits run on a thread pool when > 1
    max_iter: int = 50  # L-BFGS iterations per fit

    def __post_init__(self):
        self.family_set = [normalize_family(f) for f in self.family_set]
        if self.parametric_method not in ("mle", "itau"):
            raise ValueError("parametric_method must be 'mle' or 'itau'")
        if self.nonparametric_method not in ("constant", "linear", "quadratic"):
            raise ValueError("nonparametric_method must be 'constant', 'linear', or 'quadratic'")
        if self.nonparametric_mult <= 0:
            raise ValueError("nonparametric_mult must be positive")
        if self.selection_criterion not in ("bic", "aic", "loglik"):
            raise ValueError("selection_criterion must be one of 'bic','aic','loglik'")
        if int(self.num_threads) < 1:
            raise ValueError("num_threads must be >= 1")
        if int(self.max_iter) < 1:
            raise ValueError("max_iter must be >= 1")

    def str(self) -> str:
        """Human-readable summary."""
        fam_names = ", ".join(f.value for f in self.family_set) if self.family_set else "none"
        parts = [
            f"Family set: {fam_names}",
            f"Parametric method: {self.parametric_method}",
            f"Nonparametric method: {self.nonparametric_method}",
            f"Nonparametric multiplier: {self.nonparametric_mult}",
            f"Selection criterion: {self.selection_criterion}",
            f"Allow rotations: {self.allow_rotations}",
            f"Number of threads: {self.num_threads}",
            f"Max iterations: {self.max_iter}",
        ]
        return "\n".join(parts)
