"""Elliptical copulas (Gaussian and Student-t).

Both families are radially symmetric and exchangeable, so the second
h-function and its inverse come from the first one with swapped columns and
``flip()`` leaves them unchanged.
"""

from __future__ import annotations

import math

import torch

from . import stats
from .abstract_bicop import AbstractBicop
from .families import BicopFamily

_RHO_MAX = 1.0 - 1e-10


class EllipticalBicop(AbstractBicop):
    # hfunc2_raw/hinv2_raw: the swap_cols defaults of AbstractBicop.

    def flip(self) -> None:
        """Radially symmetric and exchangeable: nothing to do."""

    def _tau_raw(self, parameters: torch.Tensor) -> float:
        rho = max(-1.0, min(1.0, float(parameters[0])))
        return 2.0 / math.pi * math.asin(rho)


class GaussianBicop(EllipticalBicop):
    family = BicopFamily.gaussian
    _lower = (-1.0,)
    _upper = (1.0,)

    def _default_parameters(self) -> torch.Tensor:
        return torch.zeros(1, dtype=torch.float64)

    def _rho(self) -> torch.Tensor:
        return self._parameters[0]

    def pdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        rho = self._rho().clamp(-_RHO_MAX, _RHO_MAX)
        x = stats.qnorm(stats.clamp_unit(u))
        x1, x2 = x[:, 0], x[:, 1]
        r2 = 1.0 - rho * rho
        expo = -0.5 * (rho * rho * (x1 * x1 + x2 * x2) - 2.0 * rho * x1 * x2) / r2
        return torch.exp(expo) / torch.sqrt(r2)

    def cdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        z = stats.qnorm(u)
        return stats.pbvnorm(z[:, 0], z[:, 1], self._rho())

    def hfunc1_raw(self, u: torch.Tensor) -> torch.Tensor:
        rho = self._rho()
        u1, u2 = u[:, 0], u[:, 1]
        t1 = stats.qnorm(u1)
        t2 = stats.qnorm(u2)
        num = t2 - rho * t1
        h = num / torch.sqrt(1.0 - rho * rho)
        # Where the closed form is not finite, the limit is 0 or 1 by the sign of num.
        limit = torch.where(num < 0, torch.zeros_like(h), torch.ones_like(h))
        out = torch.where(torch.isfinite(h), stats.pnorm(h), limit)
        return torch.where((u1 == 0.0) | (u2 == 0.0), torch.zeros_like(out), out)

    def hinv1_raw(self, u: torch.Tensor) -> torch.Tensor:
        rho = self._rho()
        x = stats.qnorm(stats.clamp_unit(u))
        return stats.pnorm(x[:, 1] * torch.sqrt(1.0 - rho * rho) + rho * x[:, 0])

    def _tau_to_parameters_raw(self, tau: float) -> torch.Tensor:
        return torch.tensor([math.sin(tau * math.pi / 2.0)], dtype=torch.float64)


class StudentBicop(EllipticalBicop):
    family = BicopFamily.student
    _lower = (-1.0, 2.0)
    _upper = (1.0, 50.0)

    def _default_parameters(self) -> torch.Tensor:
        return torch.tensor([0.0, 50.0], dtype=torch.float64)

    def _rho_nu(self) -> tuple[torch.Tensor, torch.Tensor]:
        return self._parameters[0].clamp(-_RHO_MAX, _RHO_MAX), self._parameters[1]

    def _quantiles(self, u: torch.Tensor, nu: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        n = u.shape[0]
        x = stats.qt(torch.cat([u[:, 0], u[:, 1]]), nu)
        return x[:n], x[n:]

    def pdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        rho, nu = self._rho_nu()
        x1, x2 = self._quantiles(stats.clamp_unit(u), nu)
        r2 = 1.0 - rho * rho
        log_c = (torch.lgamma((nu + 2.0) * 0.5) + torch.lgamma(nu * 0.5)
                 - 2.0 * torch.lgamma((nu + 1.0) * 0.5) - 0.5 * torch.log(r2))
        log_c = log_c + (nu + 1.0) * 0.5 * (torch.log1p(x1 * x1 / nu) + torch.log1p(x2 * x2 / nu))
        q = (x1 * x1 - 2.0 * rho * x1 * x2 + x2 * x2) / (nu * r2)
        return torch.exp(log_c - (nu + 2.0) * 0.5 * torch.log1p(q))

    def cdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        rho, nu = self._rho_nu()
        x1, x2 = self._quantiles(stats.clamp_unit(u), nu)
        return stats.pbvt(x1, x2, rho, nu)

    def hfunc1_raw(self, u: torch.Tensor) -> torch.Tensor:
        rho, nu = self._rho_nu()
        x1, x2 = self._quantiles(stats.clamp_unit(u), nu)
        scale = torch.sqrt((nu + x1 * x1) * (1.0 - rho * rho) / (nu + 1.0))
        return stats.pt((x2 - rho * x1) / scale, nu + 1.0)

    def hinv1_raw(self, u: torch.Tensor) -> torch.Tensor:
        rho, nu = self._rho_nu()
        uc = stats.clamp_unit(u)
        x1 = stats.qt(uc[:, 0], nu)
        q = stats.qt(uc[:, 1], nu + 1.0)
        x2 = rho * x1 + q * torch.sqrt((nu + x1 * x1) * (1.0 - rho * rho) / (nu + 1.0))
        return stats.pt(x2, nu)

    def _tau_to_parameters_raw(self, tau: float) -> torch.Tensor:
        return torch.tensor([math.sin(tau * math.pi / 2.0), float(self._parameters[1])], dtype=torch.float64)

    def _start_parameters_raw(self, tau: float) -> torch.Tensor:
        return torch.tensor([math.sin(tau * math.pi / 2.0), 4.0], dtype=torch.float64)

    def _fit_itau(self, u_rot: torch.Tensor, tau: float) -> None:
        # rho from tau, then profile likelihood in nu.
        rho = max(-1.0, min(1.0, math.sin(tau * math.pi / 2.0)))
        self.set_parameters([rho, 4.0])
        nu = self._profile_1d(u_rot, 1, a=self._lower[1], b=self._upper[1], x0=4.0)
        self.set_parameters([rho, nu])
