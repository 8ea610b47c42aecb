"""Independence copula and the transformation local-likelihood (TLL) estimator."""

from __future__ import annotations

import logging
import math

import torch

from . import interpolation, stats
from .abstract_bicop import AbstractBicop, check_data
from .exceptions import InvalidInput, InvalidParameters, UnsupportedFamily
from .families import BicopFamily
from .fit_controls import FitControlsBicop
from .tools import invert_f, reflect, to_pseudo_obs

logger = logging.getLogger(__name__)


class IndepBicop(AbstractBicop):
    family = BicopFamily.indep

    def pdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        return torch.ones(u.shape[0], dtype=u.dtype)

    def cdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        return u[:, 0] * u[:, 1]

    def hfunc1_raw(self, u: torch.Tensor) -> torch.Tensor:
        return u[:, 1].clone()

    def hinv1_raw(self, u: torch.Tensor) -> torch.Tensor:
        return u[:, 1].clone()

    def _tau_raw(self, parameters: torch.Tensor) -> float:
        return 0.0

    def _tau_to_parameters_raw(self, tau: float) -> torch.Tensor:
        return torch.zeros(0, dtype=torch.float64)

    def fit(self, data, controls: FitControlsBicop | None = None) -> "IndepBicop":
        u = check_data(data)
        if u.shape[0] < 1:
            raise InvalidInput("data must have at least one row")
        self.nobs = int(u.shape[0])
        self._fit_loglik = 0.0
        return self


def fit_tll(
    u: torch.Tensor,
    *,
    method: str = "constant",
    mult: float = 1.0,
    grid_size: int = 30,
) -> tuple[torch.Tensor, float]:
    """Local-likelihood density estimate on the normal scale, mapped back to a copula grid.

    Returns the (unnormalized) density values on ``make_normal_grid(grid_size)``
    and the effective number of parameters of the fit.
    """
    if method not in ("constant", "linear", "quadratic"):
        raise ValueError("method must be 'constant', 'linear', or 'quadratic'")
    if mult <= 0:
        raise ValueError("mult must be positive")

    dt = torch.float64
    z_data = stats.qnorm(stats.clamp_unit(to_pseudo_obs(u)))
    n = z_data.shape[0]

    m = int(grid_size)
    grid = interpolation.make_normal_grid(m, boundary_to_01=False)
    z = stats.qnorm(torch.stack([grid.repeat_interleave(m), grid.repeat(m)], dim=1))

    # Bandwidth: correlation-shaped normal reference rule.
    cor = max(-0.95, min(0.95, stats.pearson_cor(z_data[:, 0], z_data[:, 1])))
    cov = torch.tensor([[1.0, cor], [cor, 1.0]], dtype=dt)
    if method == "constant":
        mult0 = n ** (-1.0 / 3.0)
    else:
        degree = 1.0 if method == "linear" else 2.0
        mult0 = 1.5 * n ** (-1.0 / (2.0 * degree + 1.0))
    B = cov * (mult0 * float(mult))

    irB = torch.inverse(torch.linalg.cholesky(B))
    det_irB = torch.det(irB)
    z_eval = z @ irB.t()
    z_obs = z_data @ irB.t()
    kernel0 = stats.dnorm(torch.zeros(2, dtype=dt)).prod()

    zz = z_obs.unsqueeze(0) - z_eval.unsqueeze(1)  # (m*m, n, 2)
    kernels = stats.dnorm(zz).prod(dim=2) * det_irB
    f0 = kernels.mean(dim=1).clamp_min(torch.finfo(dt).tiny)

    if method == "constant":
        fit = f0
    else:
        zz2 = zz @ irB.t()
        b = (zz2 * kernels.unsqueeze(2)).mean(dim=1) / f0.unsqueeze(1)
        if method == "linear":
            S = B.expand(b.shape[0], 2, 2)
            resk = torch.ones_like(f0)
        else:
            zz3 = zz2 * kernels.unsqueeze(2) / (f0 * n).reshape(-1, 1, 1)
            bB = b @ B.t()
            M = B @ (zz2.transpose(1, 2) @ zz3) @ B - bB.unsqueeze(2) * bB.unsqueeze(1)
            S = torch.inverse(M)
            resk = torch.sqrt(torch.det(S).clamp_min(0.0)) / det_irB
        quad = (b.unsqueeze(1) @ S @ b.unsqueeze(2)).reshape(-1)
        fit = f0 * resk * torch.exp(-0.5 * quad)

    # Nearly singular local moments at sparse grid points give no usable estimate.
    fit = torch.nan_to_num(fit, nan=0.0, posinf=0.0, neginf=0.0)
    values = (fit / stats.dnorm(z).prod(dim=1)).reshape(m, m)
    infl = (kernel0 * det_irB / (f0 * n)).reshape(m, m)
    npars = float(interpolation.interpolate(
        interpolation.make_normal_grid(m), infl, stats.clamp_unit(u)
    ).sum())
    return values, max(1.0, npars)


class TllBicop(AbstractBicop):
    """Nonparametric copula stored as density values on a normal-quantile grid.

    The parameters are an (m, m) tensor of non-negative density values; they
    are rescaled on assignment so that both margins are uniform.  The density
    is not assumed to be exchangeable, so the second h-function and its
    inverse use the grid in its own orientation.
    """

    family = BicopFamily.tll
    _grid_size = 30

    def __init__(self, parameters=None, rotation: int = 0, *, inversion=None):
        self._npars = 0.0
        super().__init__(parameters, rotation, inversion=inversion)

    def _default_parameters(self) -> torch.Tensor:
        return torch.ones((self._grid_size, self._grid_size), dtype=torch.float64)

    def _grid(self) -> torch.Tensor:
        return interpolation.make_normal_grid(self._parameters.shape[0])

    def copy(self) -> "TllBicop":
        out = super().copy()
        out._parameters = self._parameters.clone()
        out._npars = self._npars
        return out

    def get_npars(self) -> float:
        return float(self._npars)

    def set_npars(self, npars: float) -> None:
        """Restore the effective degrees of freedom of a stored fit."""
        npars = float(npars)
        if not math.isfinite(npars) or npars < 0.0:
            raise InvalidParameters("tll npars must be finite and non-negative")
        self._npars = npars

    def set_parameters(self, parameters) -> None:
        try:
            p = torch.as_tensor(parameters, dtype=torch.float64).detach().clone()
        except (TypeError, ValueError, RuntimeError) as e:
            raise InvalidParameters(f"parameters must be numeric: {parameters!r}") from e
        self._check_parameters(p)
        self._parameters = interpolation.normalize_margins(interpolation.make_normal_grid(p.shape[0]), p)

    def _check_parameters(self, p: torch.Tensor) -> None:
        if p.ndim != 2 or p.shape[0] != p.shape[1] or p.shape[0] < 2:
            raise InvalidParameters(f"tll parameters must be a square (m, m) grid, got shape {tuple(p.shape)}")
        if not torch.isfinite(p).all():
            raise InvalidParameters("parameters must be finite")
        if (p < 0.0).any():
            raise InvalidParameters("tll density values must be non-negative")

    def flip(self) -> None:
        super().flip()
        self._parameters = self._parameters.t().contiguous()

    def pdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        return interpolation.interpolate(self._grid(), self._parameters, u).clamp_min(1e-20)

    def cdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        return interpolation.integrate_2d(self._grid(), self._parameters, u)

    def hfunc1_raw(self, u: torch.Tensor) -> torch.Tensor:
        return interpolation.integrate_1d(self._grid(), self._parameters, u, cond_var=1)

    def hfunc2_raw(self, u: torch.Tensor) -> torch.Tensor:
        return interpolation.integrate_1d(self._grid(), self._parameters, u, cond_var=2)

    def hinv2_raw(self, u: torch.Tensor) -> torch.Tensor:
        u2 = u[:, 1]

        def f(v: torch.Tensor) -> torch.Tensor:
            return self.hfunc2_raw(torch.stack([v, u2], dim=1))

        return invert_f(u[:, 0], f, **self._inversion.as_kwargs())

    def _tau_raw(self, parameters: torch.Tensor) -> float:
        # tau = 1 - 4 * int h1 * h2 over the unit square (Gauss-Legendre product rule).
        m = int(round(math.sqrt(parameters.numel())))
        values = parameters.reshape(m, m)
        grid = interpolation.make_normal_grid(m)
        nodes, weights = stats.gauss_legendre(25)
        u = torch.stack([nodes.repeat_interleave(25), nodes.repeat(25)], dim=1)
        w = weights.repeat_interleave(25) * weights.repeat(25)
        h1 = interpolation.integrate_1d(grid, values, u, cond_var=1)
        h2 = interpolation.integrate_1d(grid, values, u, cond_var=2)
        return float(1.0 - 4.0 * (w * h1 * h2).sum())

    def _tau_to_parameters_raw(self, tau: float) -> torch.Tensor:
        raise UnsupportedFamily("tau_to_parameters is not available for the tll family")

    def fit(self, data, controls: FitControlsBicop | None = None) -> "TllBicop":
        """Kernel estimate; ``controls.nonparametric_method`` picks the local polynomial degree."""
        if controls is None:
            controls = FitControlsBicop()
        u = check_data(data)
        if u.shape[0] < 2:
            raise InvalidInput("tll fitting needs at least two observations")
        u_rot = reflect(u, self._rotation)
        values, npars = fit_tll(
            u_rot,
            method=controls.nonparametric_method,
            mult=controls.nonparametric_mult,
            grid_size=self._grid_size,
        )
        self.set_parameters(values)
        self._npars = npars
        self.nobs = int(u.shape[0])
        with torch.no_grad():
            self._fit_loglik = float(self._loglik_raw(u_rot))
        logger.debug(
            "fitted tll (%s, mult=%.3g): npars=%.2f loglik=%.4f",
            controls.nonparametric_method, controls.nonparametric_mult, npars, self._fit_loglik,
        )
        return self

    def __repr__(self) -> str:
        m = self._parameters.shape[0]
        return f"TllBicop(grid={m}x{m}, npars={self._npars:.2f}, rotation={self._rotation})"
