"""Archimedean copulas.

An Archimedean copula is ``C(u1, u2) = psi(phi(u1) + phi(u2))`` for a
generator ``phi`` with inverse ``psi``.  With ``s = phi(u1) + phi(u2)`` the
density and the first h-function are

    h1(u1, u2) = psi'(s) phi'(u1)
    c(u1, u2)  = psi''(s) phi'(u1) phi'(u2)

which never forms ``C`` itself, so nothing cancels when ``C`` is close to one.
Families provide the pieces on the log scale as static functions of
``(t, *parameters)`` for the generator and ``(ls, *parameters)`` with
``ls = log(s)`` for its inverse:

    _log_phi       log phi(t)
    _log_neg_dphi  log(-phi'(t))
    _psi           psi(s)
    _log_neg_dpsi  log(-psi'(s))
    _log_d2psi     log psi''(s)

The same functions broadcast over parameter columns for the vectorized
Kendall's tau integrals.  Clayton and Frank override the generic formulas
with closed forms.
"""

from __future__ import annotations

import math

import torch
import torch.nn.functional as F

from . import stats
from .abstract_bicop import AbstractBicop
from .families import BicopFamily
from .tools import invert_f

_TINY = torch.finfo(torch.float64).tiny
_LOG2 = math.log(2.0)


def _pos(x: torch.Tensor) -> torch.Tensor:
    return x.clamp_min(_TINY)


def _log1mexp(x: torch.Tensor) -> torch.Tensor:
    """log(1 - exp(x)) for x <= 0."""
    near = x > -_LOG2
    a = torch.where(near, x, torch.full_like(x, -1.0))
    b = torch.where(near, torch.full_like(x, -1.0), x)
    return torch.where(near, torch.log(-torch.expm1(a)), torch.log1p(-torch.exp(b)))


def _log_expm1(y: torch.Tensor) -> torch.Tensor:
    """log(exp(y) - 1) for y > 0."""
    big = y > 1.0
    a = torch.where(big, y, torch.full_like(y, 2.0))
    b = torch.where(big, torch.full_like(y, 0.5), y)
    return torch.where(big, a + torch.log1p(-torch.exp(-a)), torch.log(torch.expm1(b)))


def _joe_log_neg_dpsi(r: torch.Tensor, a) -> torch.Tensor:
    # J(r) = 1 - (1 - exp(-r))**a, the Joe generator inverse.
    return torch.log(a) + (a - 1.0) * _log1mexp(-r) - r


def _joe_ratio(r: torch.Tensor, a) -> torch.Tensor:
    # J''(r) / -J'(r) = (1 - a exp(-r)) / (1 - exp(-r))
    return torch.exp(_log1mexp(torch.log(a) - r) - _log1mexp(-r))


def _joe_psi(r: torch.Tensor, a) -> torch.Tensor:
    return -torch.expm1(a * _log1mexp(-r))


class ArchimedeanBicop(AbstractBicop):
    # Parameter held fixed when inverting tau (index, value); None for
    # one-parameter families.
    _pivot: tuple[int, float] | None = None
    _n_tau_nodes = 50

    @staticmethod
    def _log_phi(t, *par):
        raise NotImplementedError

    @staticmethod
    def _log_neg_dphi(t, *par):
        raise NotImplementedError

    @staticmethod
    def _psi(ls, *par):
        raise NotImplementedError

    @staticmethod
    def _log_neg_dpsi(ls, *par):
        raise NotImplementedError

    @staticmethod
    def _log_d2psi(ls, *par):
        raise NotImplementedError

    def _par(self) -> tuple[torch.Tensor, ...]:
        return tuple(self._parameters[i] for i in range(self._parameters.numel()))

    def _log_s(self, u: torch.Tensor, par) -> torch.Tensor:
        return torch.logaddexp(self._log_phi(u[:, 0], *par), self._log_phi(u[:, 1], *par))

    def cdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        par = self._par()
        u = stats.clamp_unit(u)
        return self._psi(self._log_s(u, par), *par).clamp(0.0, 1.0)

    def hfunc1_raw(self, u: torch.Tensor) -> torch.Tensor:
        par = self._par()
        u = stats.clamp_unit(u)
        ls = self._log_s(u, par)
        out = torch.exp(self._log_neg_dpsi(ls, *par) + self._log_neg_dphi(u[:, 0], *par))
        return torch.where(torch.isnan(out), u[:, 1], out).clamp(0.0, 1.0)

    def pdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        par = self._par()
        u = stats.clamp_unit(u)
        ls = self._log_s(u, par)
        logc = self._log_d2psi(ls, *par) + self._log_neg_dphi(u[:, 0], *par) + self._log_neg_dphi(u[:, 1], *par)
        return torch.exp(logc)

    # ---- Kendall's tau ----

    @classmethod
    def _tau_vec(cls, *par: torch.Tensor) -> torch.Tensor:
        """tau = 1 + 4 * int_0^1 phi(t) / phi'(t) dt, vectorized over parameters."""
        t, w = stats.gauss_legendre(cls._n_tau_nodes)
        par = tuple(p.reshape(-1, 1) for p in par)
        ratio = -torch.exp(cls._log_phi(t, *par) - cls._log_neg_dphi(t, *par))
        ratio = torch.nan_to_num(ratio, nan=0.0, posinf=0.0, neginf=0.0)
        return 1.0 + 4.0 * (ratio * w).sum(dim=-1)

    def _tau_raw(self, parameters: torch.Tensor) -> float:
        par = tuple(parameters[i].reshape(1) for i in range(parameters.numel()))
        return float(self._tau_vec(*par)[0])

    def _invert_tau(self, tau: float, index: int, fixed: dict[int, float]) -> float:
        # Bisection on the (increasing) map parameter[index] -> tau.
        def f(x: torch.Tensor) -> torch.Tensor:
            par = []
            for i in range(len(self._lower)):
                par.append(x if i == index else torch.full_like(x, fixed[i]))
            return self._tau_vec(*par)

        target = torch.tensor([tau], dtype=torch.float64)
        res = invert_f(target, f, lb=self._lower[index], ub=self._upper[index], n_iter=self._inversion.n_iter)
        return float(res[0])

    def _tau_to_parameters_raw(self, tau: float) -> torch.Tensor:
        at = abs(float(tau))
        if self._pivot is None:
            return torch.tensor([self._invert_tau(at, 0, {})], dtype=torch.float64)
        held, value = self._pivot
        free = 1 - held
        p = [0.0, 0.0]
        p[held] = value
        p[free] = self._invert_tau(at, free, {held: value})
        return torch.tensor(p, dtype=torch.float64)


class ClaytonBicop(ArchimedeanBicop):
    family = BicopFamily.clayton
    _lower = (1e-10,)
    _upper = (28.0,)

    def _sum(self, u: torch.Tensor, theta: torch.Tensor) -> torch.Tensor:
        return _pos(torch.pow(u[:, 0], -theta) + torch.pow(u[:, 1], -theta) - 1.0)

    def pdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        theta = self._parameters[0]
        u = stats.clamp_unit(u)
        logc = torch.log1p(theta) + (-1.0 - theta) * (torch.log(u[:, 0]) + torch.log(u[:, 1]))
        logc = logc + (-2.0 - 1.0 / theta) * torch.log(self._sum(u, theta))
        return torch.exp(logc)

    def cdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        theta = self._parameters[0]
        u = stats.clamp_unit(u)
        return torch.pow(self._sum(u, theta), -1.0 / theta)

    def hfunc1_raw(self, u: torch.Tensor) -> torch.Tensor:
        theta = self._parameters[0]
        u = stats.clamp_unit(u)
        h = torch.pow(u[:, 0], -theta - 1.0) * torch.pow(self._sum(u, theta), -1.0 / theta - 1.0)
        return h.clamp(0.0, 1.0)

    def hinv1_raw(self, u: torch.Tensor) -> torch.Tensor:
        theta = self._parameters[0]
        u = stats.clamp_unit(u)
        u1, w = u[:, 0], u[:, 1]
        s = torch.pow(_pos(w * torch.pow(u1, theta + 1.0)), -theta / (theta + 1.0))
        return torch.pow(_pos(s - torch.pow(u1, -theta) + 1.0), -1.0 / theta).clamp(0.0, 1.0)

    @classmethod
    def _tau_vec(cls, theta):
        return theta / (theta + 2.0)

    def _tau_to_parameters_raw(self, tau: float) -> torch.Tensor:
        at = abs(float(tau))
        return torch.tensor([2.0 * at / max(1e-12, 1.0 - at)], dtype=torch.float64)


class GumbelBicop(ArchimedeanBicop):
    family = BicopFamily.gumbel
    _lower = (1.0,)
    _upper = (50.0,)

    @staticmethod
    def _log_phi(t, theta):
        return theta * torch.log(-torch.log(t))

    @staticmethod
    def _log_neg_dphi(t, theta):
        nl = -torch.log(t)
        return torch.log(theta) + (theta - 1.0) * torch.log(nl) + nl

    @staticmethod
    def _psi(ls, theta):
        return torch.exp(-torch.exp(ls / theta))

    @staticmethod
    def _log_neg_dpsi(ls, theta):
        return -torch.log(theta) + (1.0 / theta - 1.0) * ls - torch.exp(ls / theta)

    @staticmethod
    def _log_d2psi(ls, theta):
        m = torch.exp(ls / theta)
        return -torch.log(theta) + (1.0 / theta - 2.0) * ls - m + torch.log(m / theta + 1.0 - 1.0 / theta)

    @classmethod
    def _tau_vec(cls, theta):
        return 1.0 - 1.0 / theta

    def _tau_to_parameters_raw(self, tau: float) -> torch.Tensor:
        at = abs(float(tau))
        return torch.tensor([1.0 / max(1e-12, 1.0 - at)], dtype=torch.float64)


class FrankBicop(ArchimedeanBicop):
    family = BicopFamily.frank
    _lower = (-35.0,)
    _upper = (35.0,)

    def _default_parameters(self) -> torch.Tensor:
        return torch.zeros(1, dtype=torch.float64)

    def _is_indep(self) -> bool:
        return abs(float(self._parameters[0])) < 1e-10

    def _parts(self, u: torch.Tensor):
        theta = self._parameters[0]
        eu = torch.expm1(-theta * u[:, 0])
        ev = torch.expm1(-theta * u[:, 1])
        ed = torch.expm1(-theta)
        return theta, eu, ev, ed

    def pdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        if self._is_indep():
            return torch.ones_like(u[:, 0])
        theta, eu, ev, ed = self._parts(u)
        denom = ed + eu * ev
        return (-theta) * ed * (eu + 1.0) * (ev + 1.0) / (denom * denom)

    def cdf_raw(self, u: torch.Tensor) -> torch.Tensor:
        if self._is_indep():
            return u[:, 0] * u[:, 1]
        theta, eu, ev, ed = self._parts(u)
        return (-1.0 / theta) * torch.log1p(eu * ev / ed)

    def hfunc1_raw(self, u: torch.Tensor) -> torch.Tensor:
        if self._is_indep():
            return u[:, 1].clone()
        _theta, eu, ev, ed = self._parts(u)
        return ((eu + 1.0) * ev / (ed + eu * ev)).clamp(0.0, 1.0)

    def hinv1_raw(self, u: torch.Tensor) -> torch.Tensor:
        if self._is_indep():
            return u[:, 1].clone()
        theta = self._parameters[0]
        u1, w = u[:, 0], u[:, 1]
        eu = torch.expm1(-theta * u1)
        ed = torch.expm1(-theta)
        ev = w * ed / _pos(eu + 1.0 - w * eu)
        return ((-1.0 / theta) * torch.log1p(ev)).clamp(0.0, 1.0)

    @classmethod
    def _tau_vec(cls, theta):
        a = theta.abs()
        small = a < 1e-5
        a_safe = torch.where(small, torch.ones_like(a), a)
        t = 1.0 - 4.0 / a_safe + 4.0 * stats.debye1(a_safe) / (a_safe * a_safe)
        t = torch.where(theta < 0, -t, t)
        return torch.where(small, torch.zeros_like(t), t)

    def _tau_to_parameters_raw(self, tau: float) -> torch.Tensor:
        t = float(tau)
        if abs(t) < 1e-12:
            return torch.zeros(1, dtype=torch.float64)
        # Frank allows negative dependence, so the sign of tau is kept.
        return torch.tensor([self._invert_tau(t, 0, {})], dtype=torch.float64)


class JoeBicop(ArchimedeanBicop):
    family = BicopFamily.joe
    _lower = (1.0,)
    _upper = (30.0,)

    @staticmethod
    def _log_phi(t, theta):
        return torch.log(-_log1mexp(theta * torch.log1p(-t)))

    @staticmethod
    def _log_neg_dphi(t, theta):
        lb = torch.log1p(-t)
        return torch.log(theta) + (theta - 1.0) * lb - _log1mexp(theta * lb)

    @staticmethod
    def _psi(ls, theta):
        return _joe_psi(torch.exp(ls), 1.0 / theta)

    @staticmethod
    def _log_neg_dpsi(ls, theta):
        return _joe_log_neg_dpsi(torch.exp(ls), 1.0 / theta)

    @staticmethod
    def _log_d2psi(ls, theta):
        r = torch.exp(ls)
        return _joe_log_neg_dpsi(r, 1.0 / theta) + torch.log(_joe_ratio(r, 1.0 / theta))

    @classmethod
    def _tau_vec(cls, theta):
        # Removable singularity at theta = 2.
        theta = torch.where((theta - 2.0).abs() < 1e-6, torch.full_like(theta, 2.0 + 1e-6), theta)
        dig = torch.digamma(torch.full_like(theta, 2.0)) - torch.digamma(2.0 / theta + 1.0)
        return 1.0 + 2.0 * dig / (2.0 - theta)


class Bb1Bicop(ArchimedeanBicop):
    family = BicopFamily.bb1
    _lower = (1e-4, 1.0)
    _upper = (7.0, 7.0)
    _pivot = (0, 0.5)

    # phi(t) = (t**-theta - 1)**delta, psi(s) = (1 + s**(1/delta))**(-1/theta)

    @staticmethod
    def _log_phi(t, theta, delta):
        return delta * _log_expm1(-theta * torch.log(t))

    @staticmethod
    def _log_neg_dphi(t, theta, delta):
        lt = torch.log(t)
        return torch.log(delta * theta) + (delta - 1.0) * _log_expm1(-theta * lt) - (theta + 1.0) * lt

    @staticmethod
    def _psi(ls, theta, delta):
        return torch.exp(-F.softplus(ls / delta) / theta)

    @staticmethod
    def _log_neg_dpsi(ls, theta, delta):
        lr = ls / delta
        return -torch.log(theta * delta) - (1.0 / theta + 1.0) * F.softplus(lr) + lr - ls

    @staticmethod
    def _log_d2psi(ls, theta, delta):
        lr = ls / delta
        core = theta * (delta - 1.0) + torch.exp(lr) * (1.0 + theta * delta)
        return (-2.0 * torch.log(theta * delta) - (1.0 / theta + 2.0) * F.softplus(lr)
                + (1.0 / delta - 2.0) * ls + torch.log(core))

    @classmethod
    def _tau_vec(cls, theta, delta):
        return 1.0 - 2.0 / (delta * (theta + 2.0))


class Bb6Bicop(ArchimedeanBicop):
    family = BicopFamily.bb6
    _lower = (1.0, 1.0)
    _upper = (6.0, 8.0)
    # theta = 1 is the Gumbel copula in delta.
    _pivot = (0, 1.0)

    # phi(t) = (-log(1 - (1-t)**theta))**delta, psi(s) = J(s**(1/delta))

    @staticmethod
    def _log_phi(t, theta, delta):
        return delta * torch.log(-_log1mexp(theta * torch.log1p(-t)))

    @staticmethod
    def _log_neg_dphi(t, theta, delta):
        lb = torch.log1p(-t)
        l1 = _log1mexp(theta * lb)
        return torch.log(delta * theta) + (delta - 1.0) * torch.log(-l1) + (theta - 1.0) * lb - l1

    @staticmethod
    def _psi(ls, theta, delta):
        return _joe_psi(torch.exp(ls / delta), 1.0 / theta)

    @staticmethod
    def _log_neg_dpsi(ls, theta, delta):
        lr = ls / delta
        return _joe_log_neg_dpsi(torch.exp(lr), 1.0 / theta) + lr - torch.log(delta) - ls

    @staticmethod
    def _log_d2psi(ls, theta, delta):
        lr = ls / delta
        r = torch.exp(lr)
        a = 1.0 / theta
        core = r * _joe_ratio(r, a) + delta - 1.0
        return lr - 2.0 * torch.log(delta) - 2.0 * ls + _joe_log_neg_dpsi(r, a) + torch.log(core)


class Bb7Bicop(ArchimedeanBicop):
    family = BicopFamily.bb7
    _lower = (1.0, 0.01)
    _upper = (6.0, 25.0)
    # theta = 1 is the Clayton copula in delta.
    _pivot = (0, 1.0)

    # phi(t) = (1 - (1-t)**theta)**-delta - 1, psi(s) = J(log1p(s) / delta)

    @staticmethod
    def _log_phi(t, theta, delta):
        return _log_expm1(-delta * _log1mexp(theta * torch.log1p(-t)))

    @staticmethod
    def _log_neg_dphi(t, theta, delta):
        lb = torch.log1p(-t)
        return torch.log(delta * theta) - (delta + 1.0) * _log1mexp(theta * lb) + (theta - 1.0) * lb

    @staticmethod
    def _psi(ls, theta, delta):
        return _joe_psi(F.softplus(ls) / delta, 1.0 / theta)

    @staticmethod
    def _log_neg_dpsi(ls, theta, delta):
        lp = F.softplus(ls)
        return _joe_log_neg_dpsi(lp / delta, 1.0 / theta) - torch.log(delta) - lp

    @staticmethod
    def _log_d2psi(ls, theta, delta):
        lp = F.softplus(ls)
        r = lp / delta
        a = 1.0 / theta
        return (_joe_log_neg_dpsi(r, a) - 2.0 * torch.log(delta) - 2.0 * lp
                + torch.log(_joe_ratio(r, a) + delta))


class Bb8Bicop(ArchimedeanBicop):
    family = BicopFamily.bb8
    _lower = (1.0, 1e-4)
    _upper = (8.0, 1.0)
    # delta = 1 is the Joe copula in theta.
    _pivot = (1, 1.0)

    # phi(t) = -log((1 - (1 - delta t)**theta) / eta), eta = 1 - (1 - delta)**theta
    # psi(s) = (1 - (1 - eta exp(-s))**(1/theta)) / delta

    @staticmethod
    def _log_eta(theta, delta):
        return _log1mexp(theta * torch.log(_pos(1.0 - delta)))

    @staticmethod
    def _log_phi(t, theta, delta):
        # d = (1 - delta t)**theta - (1 - delta)**theta, written through the
        # ratio q so that it keeps its precision as t -> 1.
        ly = theta * torch.log1p(-delta * t)
        q = delta * (1.0 - t) / _pos(1.0 - delta)
        log_d = ly + _log1mexp(-theta * torch.log1p(q))
        x = (log_d - Bb8Bicop._log_eta(theta, delta)).clamp_max(0.0)
        return torch.log(-_log1mexp(x))

    @staticmethod
    def _log_neg_dphi(t, theta, delta):
        ly = theta * torch.log1p(-delta * t)
        return torch.log(theta * delta) + (theta - 1.0) * torch.log1p(-delta * t) - _log1mexp(ly)

    @staticmethod
    def _psi(ls, theta, delta):
        lg = _log1mexp(Bb8Bicop._log_eta(theta, delta) - torch.exp(ls))
        return -torch.expm1(lg / theta) / delta

    @staticmethod
    def _log_neg_dpsi(ls, theta, delta):
        s = torch.exp(ls)
        le = Bb8Bicop._log_eta(theta, delta)
        lg = _log1mexp(le - s)
        return -torch.log(theta * delta) + (1.0 / theta - 1.0) * lg + le - s

    @staticmethod
    def _log_d2psi(ls, theta, delta):
        s = torch.exp(ls)
        le = Bb8Bicop._log_eta(theta, delta)
        lg = _log1mexp(le - s)
        return (-torch.log(theta * delta) + le - s + (1.0 / theta - 2.0) * lg
                + _log1mexp(le - s - torch.log(theta)))
