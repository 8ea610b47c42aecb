"""Common base class of all bivariate copula families.

Every concrete family implements its formulas on the unrotated unit square
(the ``*_raw`` methods).  This class validates inputs, applies the rotation
transform around those formulas and implements fitting and the information
criteria once for all families.

Rotation convention: 90 reflects the first variable, 270 the second and 180
both.  With ``v = reflect(u, rotation)`` the density is ``pdf_raw(v)``, the
first h-function is ``hfunc1_raw(v)`` complemented when the second variable
is reflected, and the second h-function is ``hfunc2_raw(v)`` complemented
when the first variable is reflected.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import Any

import torch

from . import stats
from .exceptions import FittingFailed, InvalidInput, InvalidParameters, InvalidRotation, UnsupportedFamily
from .families import ROTATIONS, BicopFamily, itau, normalize_family
from .fit_controls import FitControlsBicop, InversionControls
from .optimize import maximize_1d, maximize_bounded
from .tools import invert_f, reflect, swap_cols

logger = logging.getLogger(__name__)

_TINY = torch.finfo(torch.float64).tiny
_HUGE = torch.finfo(torch.float64).max


def _winsorize_tau(tau: float) -> float:
    sign = -1.0 if tau < 0 else 1.0
    at = abs(float(tau))
    if at < 0.01:
        at = 0.01
    elif at > 0.9:
        at = 0.9
    return sign * at


def check_data(u: Any) -> torch.Tensor:
    """Return ``u`` as an (n, 2) float64 tensor with entries in [0, 1]."""
    u = torch.as_tensor(u, dtype=torch.float64)
    if u.ndim != 2 or u.shape[1] != 2:
        raise InvalidInput(f"u must have shape (n, 2), got {tuple(u.shape)}")
    if u.numel() > 0 and (torch.isnan(u).any() or (u < 0.0).any() or (u > 1.0).any()):
        raise InvalidInput("u must have entries in [0, 1]")
    return u


def check_rotation(rotation: Any) -> int:
    try:
        rot = int(rotation)
    except (TypeError, ValueError) as e:
        raise InvalidRotation(f"rotation must be one of {ROTATIONS}, got {rotation!r}") from e
    if rot != rotation or rot not in ROTATIONS:
        raise InvalidRotation(f"rotation must be one of {ROTATIONS}, got {rotation!r}")
    return rot


class AbstractBicop(ABC):
    family: BicopFamily
    # Inclusive parameter box; one entry per parameter.
    _lower: tuple[float, ...] = ()
    _upper: tuple[float, ...] = ()

    def __init__(self, parameters=None, rotation: int = 0, *, inversion: InversionControls | None = None):
        self._inversion = inversion if inversion is not None else InversionControls()
        self._parameters = self._default_parameters()
        self._rotation = 0
        self.nobs = 0
        self._fit_loglik: float | None = None
        if parameters is not None:
            self.set_parameters(parameters)
        self.set_rotation(rotation)

    # ---- construction ----

    @staticmethod
    def create(
        family: str | BicopFamily = BicopFamily.indep,
        parameters=None,
        rotation: int = 0,
        *,
        inversion: InversionControls | None = None,
    ) -> "AbstractBicop":
        """Build the concrete copula for ``family``.

        Missing parameters default to the family default (independence-like
        where the family allows it, the lower bounds otherwise).
        """
        from .archimedean import (
            Bb1Bicop,
            Bb6Bicop,
            Bb7Bicop,
            Bb8Bicop,
            ClaytonBicop,
            FrankBicop,
            GumbelBicop,
            JoeBicop,
        )
        from .elliptical import GaussianBicop, StudentBicop
        from .nonparametric import IndepBicop, TllBicop

        classes = {
            BicopFamily.indep: IndepBicop,
            BicopFamily.gaussian: GaussianBicop,
            BicopFamily.student: StudentBicop,
            BicopFamily.clayton: ClaytonBicop,
            BicopFamily.gumbel: GumbelBicop,
            BicopFamily.frank: FrankBicop,
            BicopFamily.joe: JoeBicop,
            BicopFamily.bb1: Bb1Bicop,
            BicopFamily.bb6: Bb6Bicop,
            BicopFamily.bb7: Bb7Bicop,
            BicopFamily.bb8: Bb8Bicop,
            BicopFamily.tll: TllBicop,
        }
        fam = normalize_family(family)
        return classes[fam](parameters, rotation, inversion=inversion)

    def _default_parameters(self) -> torch.Tensor:
        return torch.tensor(self._lower, dtype=torch.float64)

    def copy(self) -> "AbstractBicop":
        out = type(self)(self._parameters.clone(), self._rotation, inversion=self._inversion)
        out.nobs = self.nobs
        out._fit_loglik = self._fit_loglik
        return out

    # ---- state ----

    @property
    def rotation(self) -> int:
        return self._rotation

    @property
    def parameters(self) -> torch.Tensor:
        return self._parameters.detach().clone()

    @property
    def parameters_lower_bounds(self) -> torch.Tensor:
        return torch.tensor(self._lower, dtype=torch.float64)

    @property
    def parameters_upper_bounds(self) -> torch.Tensor:
        return torch.tensor(self._upper, dtype=torch.float64)

    @property
    def inversion(self) -> InversionControls:
        return self._inversion

    @property
    def npars(self) -> float:
        return self.get_npars()

    @property
    def tau(self) -> float:
        return self.parameters_to_tau()

    def get_npars(self) -> float:
        return float(len(self._lower))

    def set_parameters(self, parameters) -> None:
        try:
            p = torch.as_tensor(parameters, dtype=torch.float64).detach().reshape(-1).clone()
        except (TypeError, ValueError, RuntimeError) as e:
            raise InvalidParameters(f"parameters must be numeric: {parameters!r}") from e
        self._check_parameters(p)
        self._parameters = p

    def _check_parameters(self, p: torch.Tensor) -> None:
        k = len(self._lower)
        if p.numel() != k:
            raise InvalidParameters(
                f"{self.family.value} copula needs {k} parameter(s), got {p.numel()}"
            )
        if k == 0:
            return
        if not torch.isfinite(p).all():
            raise InvalidParameters("parameters must be finite")
        lb = self.parameters_lower_bounds
        ub = self.parameters_upper_bounds
        bad = (p < lb) | (p > ub)
        if bad.any():
            i = int(torch.nonzero(bad)[0])
            raise InvalidParameters(
                f"parameter {i} of the {self.family.value} copula must be in "
                f"[{float(lb[i])}, {float(ub[i])}], got {float(p[i])}"
            )

    def set_rotation(self, rotation: int) -> None:
        self._rotation = check_rotation(rotation)

    def flip(self) -> None:
        """Exchange the roles of the two variables (90 <-> 270)."""
        if self._rotation == 90:
            self._rotation = 270
        elif self._rotation == 270:
            self._rotation = 90

    # ---- raw formulas ----

    @abstractmethod
    def pdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError

    def cdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError(f"cdf not implemented for family={self.family.value}")

    @abstractmethod
    def hfunc1_raw(self, u: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError

    def hfunc2_raw(self, u: torch.Tensor) -> torch.Tensor:
        return self.hfunc1_raw(swap_cols(u))

    def hinv1_raw(self, u: torch.Tensor) -> torch.Tensor:
        u1 = u[:, 0]

        def f(v: torch.Tensor) -> torch.Tensor:
            return self.hfunc1_raw(torch.stack([u1, v], dim=1))

        return invert_f(u[:, 1], f, **self._inversion.as_kwargs())

    def hinv2_raw(self, u: torch.Tensor) -> torch.Tensor:
        return self.hinv1_raw(swap_cols(u))

    @abstractmethod
    def _tau_raw(self, parameters: torch.Tensor) -> float:
        raise NotImplementedError

    @abstractmethod
    def _tau_to_parameters_raw(self, tau: float) -> torch.Tensor:
        raise NotImplementedError

    def _start_parameters_raw(self, tau: float) -> torch.Tensor:
        return self._tau_to_parameters_raw(tau)

    # ---- rotated evaluation ----

    def pdf(self, u) -> torch.Tensor:
        u = check_data(u)
        out = self.pdf_raw(reflect(u, self._rotation))
        return torch.nan_to_num(out, nan=_TINY, posinf=_HUGE).clamp_min(_TINY)

    def cdf(self, u) -> torch.Tensor:
        u = check_data(u)
        p = self.cdf_raw(reflect(u, self._rotation))
        rot = self._rotation
        if rot == 90:
            p = u[:, 1] - p
        elif rot == 180:
            p = u[:, 0] + u[:, 1] - 1.0 + p
        elif rot == 270:
            p = u[:, 0] - p
        return p.clamp(0.0, 1.0)

    def hfunc1(self, u) -> torch.Tensor:
        u = check_data(u)
        h = self.hfunc1_raw(reflect(u, self._rotation))
        if self._rotation in (180, 270):
            h = 1.0 - h
        return h.clamp(0.0, 1.0)

    def hfunc2(self, u) -> torch.Tensor:
        u = check_data(u)
        h = self.hfunc2_raw(reflect(u, self._rotation))
        if self._rotation in (90, 180):
            h = 1.0 - h
        return h.clamp(0.0, 1.0)

    def hinv1(self, u) -> torch.Tensor:
        u = check_data(u)
        v = self.hinv1_raw(reflect(u, self._rotation))
        if self._rotation in (180, 270):
            v = 1.0 - v
        return v.clamp(0.0, 1.0)

    def hinv2(self, u) -> torch.Tensor:
        u = check_data(u)
        v = self.hinv2_raw(reflect(u, self._rotation))
        if self._rotation in (90, 180):
            v = 1.0 - v
        return v.clamp(0.0, 1.0)

    def simulate(self, n: int, seeds=()) -> torch.Tensor:
        """Draw ``n`` samples by inverse Rosenblatt transform."""
        if int(n) <= 0:
            raise ValueError("n must be positive")
        g = torch.Generator()
        if seeds:
            seed = 0
            for s in seeds:
                seed = (seed * 1_000_003 + int(s)) % (2**63 - 1)
            g.manual_seed(seed)
        else:
            g.seed()
        w = torch.rand((int(n), 2), generator=g, dtype=torch.float64)
        return torch.stack([w[:, 0], self.hinv1(w)], dim=1)

    # ---- Kendall's tau ----

    def parameters_to_tau(self, parameters=None) -> float:
        p = self._parameters if parameters is None else torch.as_tensor(parameters, dtype=torch.float64).reshape(-1)
        tau = float(self._tau_raw(p.detach()))
        if self._rotation in (90, 270):
            tau = -tau
        return max(-1.0, min(1.0, tau))

    def tau_to_parameters(self, tau: float) -> torch.Tensor:
        """Parameters matching ``tau`` at the current rotation, clipped to the box."""
        t = float(tau)
        if self._rotation in (90, 270):
            t = -t
        return self._clip(self._tau_to_parameters_raw(t))

    def get_start_parameters(self, tau: float) -> torch.Tensor:
        return self._clip(self._start_parameters_raw(float(tau)))

    def _clip(self, p: torch.Tensor) -> torch.Tensor:
        p = torch.as_tensor(p, dtype=torch.float64).reshape(-1)
        return torch.max(torch.min(p, self.parameters_upper_bounds), self.parameters_lower_bounds)

    # ---- likelihood ----

    def _loglik_raw(self, u_rot: torch.Tensor) -> torch.Tensor:
        return torch.log(self.pdf_raw(u_rot).clamp_min(_TINY)).sum()

    def loglik(self, data=None) -> float:
        """Log-likelihood of ``data``; without data, the value stored by ``fit``."""
        if data is None:
            if self._fit_loglik is None:
                raise ValueError("copula has not been fitted; pass data")
            return float(self._fit_loglik)
        lp = torch.log(self.pdf(data))
        return float(lp[torch.isfinite(lp)].sum())

    def aic(self, data=None) -> float:
        return -2.0 * self.loglik(data) + 2.0 * self.get_npars()

    def bic(self, data=None) -> float:
        n = self.nobs if data is None else int(torch.as_tensor(data).shape[0])
        return -2.0 * self.loglik(data) + math.log(max(n, 1)) * self.get_npars()

    # ---- fitting ----

    def fit(self, data, controls: FitControlsBicop | None = None) -> "AbstractBicop":
        """Estimate parameters for the current family and rotation."""
        if controls is None:
            controls = FitControlsBicop()
        u = check_data(data)
        if u.shape[0] < 1:
            raise InvalidInput("data must have at least one row")
        u_rot = reflect(u, self._rotation)
        tau = stats.kendall_tau(u_rot[:, 0], u_rot[:, 1])

        if controls.parametric_method == "itau":
            self._fit_itau(u_rot, tau)
        else:
            self._fit_mle(u_rot, tau, controls)

        self.nobs = int(u.shape[0])
        with torch.no_grad():
            ll = float(self._loglik_raw(u_rot))
        if not math.isfinite(ll):
            raise FittingFailed(f"{self.family.value} fit ended at a non-finite log-likelihood")
        self._fit_loglik = ll
        logger.debug(
            "fitted %s (rotation %d): parameters=%s loglik=%.4f",
            self.family.value, self._rotation, self._parameters.tolist(), ll,
        )
        return self

    def _fit_itau(self, u_rot: torch.Tensor, tau: float) -> None:
        if self.family not in itau:
            raise UnsupportedFamily(f"itau fitting is not available for family {self.family.value}")
        self.set_parameters(self._clip(self._tau_to_parameters_raw(tau)))

    def _fit_mle(self, u_rot: torch.Tensor, tau: float, controls: FitControlsBicop) -> None:
        lb = self.parameters_lower_bounds
        ub = self.parameters_upper_bounds
        x0 = self._clip(self._start_parameters_raw(_winsorize_tau(tau)))
        # The box transform has no gradient on the bounds themselves.
        margin = 1e-3 * (ub - lb)
        x0 = torch.max(torch.min(x0, ub - margin), lb + margin)
        saved = self._parameters

        def objective(pars: torch.Tensor) -> torch.Tensor:
            self._parameters = pars
            return self._loglik_raw(u_rot)

        try:
            res = maximize_bounded(objective, x0=x0, lb=lb, ub=ub, max_iter=controls.max_iter)
        finally:
            self._parameters = saved
        if not math.isfinite(res.fun):
            raise FittingFailed(f"{self.family.value} likelihood is not finite at the optimum")
        self.set_parameters(self._clip(res.x.detach()))

    def _profile_1d(self, u_rot: torch.Tensor, index: int, *, a: float, b: float, x0: float) -> float:
        """Maximize the likelihood over one parameter, others held fixed."""
        base = self._parameters.clone()

        def f(v: float) -> float:
            p = base.clone()
            p[index] = v
            self._parameters = p
            with torch.no_grad():
                val = float(self._loglik_raw(u_rot))
            return val if math.isfinite(val) else -math.inf

        try:
            res = maximize_1d(f, a=a, b=b, x0=x0)
        finally:
            self._parameters = base
        return float(res.x)

    # ---- representation ----

    def str(self) -> str:
        """Human-readable summary."""
        p = self._parameters.reshape(-1).tolist()
        parts = [f"<torchbicop.{type(self).__name__}>", f"  family: {self.family.value}"]
        if self._rotation != 0:
            parts.append(f"  rotation: {self._rotation}")
        if p and len(p) <= 2:
            parts.append("  parameters: [" + ", ".join(f"{v:.4f}" for v in p) + "]")
        if self.nobs > 0:
            parts.append(f"  nobs: {self.nobs}")
        return "\n".join(parts)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(parameters={self._parameters.tolist()}, rotation={self._rotation})"
