"""Statistical helpers: normal and Student-t distributions, Kendall's tau, quadrature."""

from __future__ import annotations

import math
from functools import lru_cache

import numpy as np
import torch


def _as_tensor(x, *, device=None, dtype=None):
    if torch.is_tensor(x):
        t = x
        if device is not None:
            t = t.to(device=device)
        if dtype is not None:
            t = t.to(dtype=dtype)
        return t
    return torch.as_tensor(x, device=device, dtype=dtype)


def dnorm(x: torch.Tensor) -> torch.Tensor:
    x = _as_tensor(x)
    inv_sqrt_2pi = 0.39894228040143270286
    return inv_sqrt_2pi * torch.exp(-0.5 * x * x)


def pnorm(x: torch.Tensor) -> torch.Tensor:
    x = _as_tensor(x)
    return 0.5 * (1.0 + torch.erf(x / math.sqrt(2.0)))


def qnorm(u: torch.Tensor) -> torch.Tensor:
    # ndtri(0) = -inf and ndtri(1) = inf; callers decide how to treat the boundary.
    return torch.special.ndtri(_as_tensor(u))


def clamp_unit(u: torch.Tensor, eps: float = 1e-10) -> torch.Tensor:
    # Avoid infs in qnorm and log(0) etc.
    return u.clamp(min=eps, max=1.0 - eps)


@lru_cache(maxsize=8)
def _leggauss(n: int) -> tuple[tuple[float, ...], tuple[float, ...]]:
    nodes, weights = np.polynomial.legendre.leggauss(int(n))
    return tuple(nodes.tolist()), tuple(weights.tolist())


def gauss_legendre(n: int, a: float = 0.0, b: float = 1.0, *, dtype=torch.float64) -> tuple[torch.Tensor, torch.Tensor]:
    """Gauss-Legendre nodes and weights on ``[a, b]``."""
    nodes, weights = _leggauss(int(n))
    x = torch.tensor(nodes, dtype=dtype)
    w = torch.tensor(weights, dtype=dtype)
    half = 0.5 * (b - a)
    return a + half * (x + 1.0), half * w


def debye1(x: torch.Tensor, *, n_nodes: int = 64) -> torch.Tensor:
    """Integral ``int_0^x t / (exp(t) - 1) dt`` (vectorized, x >= 0)."""
    x = _as_tensor(x, dtype=torch.float64)
    s, w = gauss_legendre(n_nodes, dtype=x.dtype)
    t = x.unsqueeze(-1) * s
    g = torch.where(t > 0, t / torch.expm1(t.clamp_min(1e-300)), torch.ones_like(t))
    return x * (g * w).sum(dim=-1)


def pbvnorm(z1: torch.Tensor, z2: torch.Tensor, rho: torch.Tensor, *, n_nodes: int = 40) -> torch.Tensor:
    """Bivariate standard normal CDF Phi_2(z1, z2; rho).

    Integrates Plackett's identity from rho = 0 with Gauss-Legendre nodes on
    the arcsine scale.
    """
    z1 = _as_tensor(z1)
    z2 = _as_tensor(z2, device=z1.device, dtype=z1.dtype)
    rho = _as_tensor(rho, device=z1.device, dtype=z1.dtype)

    base = pnorm(z1) * pnorm(z2)
    s, w = gauss_legendre(n_nodes, dtype=z1.dtype)
    asr = torch.asin(rho.clamp(-1.0, 1.0))
    th = asr.unsqueeze(-1) * s
    sn = torch.sin(th)
    cs2 = torch.cos(th).pow(2).clamp_min(1e-300)
    h = torch.nan_to_num(z1, posinf=40.0, neginf=-40.0).clamp(-40.0, 40.0).unsqueeze(-1)
    k = torch.nan_to_num(z2, posinf=40.0, neginf=-40.0).clamp(-40.0, 40.0).unsqueeze(-1)
    term = torch.exp((h * k * sn - 0.5 * (h * h + k * k)) / cs2)
    return (base + asr * (term * w).sum(dim=-1) / (2.0 * math.pi)).clamp(0.0, 1.0)


def _log_beta(a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    return torch.lgamma(a) + torch.lgamma(b) - torch.lgamma(a + b)


def _nonzero(v: torch.Tensor, tiny: float) -> torch.Tensor:
    return torch.where(v.abs() < tiny, torch.full_like(v, tiny), v)


def _betacf(a: torch.Tensor, b: torch.Tensor, x: torch.Tensor, *, max_iter: int = 80, eps: float = 3e-14) -> torch.Tensor:
    # Continued fraction for the incomplete beta function (modified Lentz).
    tiny = 1e-300
    qab = a + b
    qap = a + 1.0
    qam = a - 1.0

    c = torch.ones_like(x)
    d = _nonzero(1.0 - qab * x / qap, tiny).reciprocal()
    h = d.clone()
    for m in range(1, max_iter + 1):
        m2 = 2.0 * m
        aa = m * (b - m) * x / ((qam + m2) * (a + m2))
        d = _nonzero(1.0 + aa * d, tiny).reciprocal()
        c = _nonzero(1.0 + aa / c, tiny)
        h = h * d * c

        aa = -(a + m) * (qab + m) * x / ((a + m2) * (qap + m2))
        d = _nonzero(1.0 + aa * d, tiny).reciprocal()
        c = _nonzero(1.0 + aa / c, tiny)
        delta = d * c
        h = h * delta
        if m % 4 == 0 and float(torch.max(torch.abs(delta.detach() - 1.0))) < eps:
            break
    return h


def betainc_reg(a: torch.Tensor, b: torch.Tensor, x: torch.Tensor) -> torch.Tensor:
    """Regularized incomplete beta I_x(a, b)."""
    x = _as_tensor(x).clamp(0.0, 1.0)
    a = _as_tensor(a, device=x.device, dtype=x.dtype)
    b = _as_tensor(b, device=x.device, dtype=x.dtype)
    shape = torch.broadcast_shapes(a.shape, b.shape, x.shape)
    a, b, x = a.expand(shape), b.expand(shape), x.expand(shape)
    if x.numel() == 0:
        return x.clone()
    tiny = torch.finfo(x.dtype).tiny

    inner = (x > 0.0) & (x < 1.0)
    xx = torch.where(inner, x, torch.full_like(x, 0.5))
    log_bt = a * torch.log(xx.clamp_min(tiny)) + b * torch.log1p(-xx).clamp_min(-1e300) - _log_beta(a, b)
    bt = torch.exp(log_bt)

    # Evaluate the fraction on whichever side converges fast.
    direct = xx < (a + 1.0) / (a + b + 2.0)
    aa = torch.where(direct, a, b)
    bb_ = torch.where(direct, b, a)
    xs = torch.where(direct, xx, 1.0 - xx)
    cf = _betacf(aa, bb_, xs)
    val = torch.where(direct, bt * cf / a, 1.0 - bt * cf / b).clamp(0.0, 1.0)

    out = torch.where(x >= 1.0, torch.ones_like(x), torch.zeros_like(x))
    return torch.where(inner, val, out)


def dt(x: torch.Tensor, nu: torch.Tensor) -> torch.Tensor:
    """Student-t density."""
    x = _as_tensor(x)
    nu = _as_tensor(nu, device=x.device, dtype=x.dtype)
    half_nup1 = (nu + 1.0) * 0.5
    log_pdf = (torch.lgamma(half_nup1) - torch.lgamma(nu * 0.5)
               - 0.5 * torch.log(nu * math.pi)
               - half_nup1 * torch.log1p(x * x / nu))
    return torch.exp(log_pdf)


def pt(x: torch.Tensor, nu: torch.Tensor) -> torch.Tensor:
    """Student-t distribution function."""
    x = _as_tensor(x)
    nu = _as_tensor(nu, device=x.device, dtype=x.dtype)
    t = nu / (nu + x * x)
    half = torch.as_tensor(0.5, device=x.device, dtype=x.dtype)
    ix = betainc_reg(nu * 0.5, half, t)
    return torch.where(x >= 0, 1.0 - 0.5 * ix, 0.5 * ix)


def _qt_hill(p: torch.Tensor, nu: torch.Tensor) -> torch.Tensor:
    # Hill (1970) expansion around the normal quantile.
    z = qnorm(p)
    g1 = (z * z * z + z) / 4.0
    g2 = (5.0 * z ** 5 + 16.0 * z ** 3 + 3.0 * z) / 96.0
    g3 = (3.0 * z ** 7 + 19.0 * z ** 5 + 17.0 * z ** 3 - 15.0 * z) / 384.0
    return z + g1 / nu + g2 / (nu * nu) + g3 / (nu * nu * nu)


def qt(p: torch.Tensor, nu: torch.Tensor, *, max_iter: int = 4) -> torch.Tensor:
    """Student-t quantile: Hill (or power-law tail) start, then Halley refinement."""
    p = clamp_unit(_as_tensor(p))
    nu = _as_tensor(nu, device=p.device, dtype=p.dtype)
    x = _qt_hill(p, nu)

    # Hill's expansion is poor deep in the tails of small-nu t distributions.
    p_tail = torch.minimum(p, 1.0 - p)
    log_k = torch.lgamma((nu + 1.0) * 0.5) - torch.lgamma(nu * 0.5) - 0.5 * torch.log(nu * math.pi)
    x_tail = torch.exp((log_k + 0.5 * (nu - 1.0) * torch.log(nu) - torch.log(p_tail)) / nu)
    x_tail = torch.where(p < 0.5, -x_tail, x_tail)
    x = torch.where(x_tail * x_tail > 10.0 * nu, x_tail, x)

    tiny = torch.finfo(p.dtype).tiny
    for _ in range(max_iter):
        f = dt(x, nu).clamp_min(tiny)
        r = pt(x, nu) - p
        fp = f * (-(nu + 1.0) * x / (nu + x * x))
        x = x - 2.0 * r * f / (2.0 * f * f - r * fp)
    return x


def pbvt(x1: torch.Tensor, x2: torch.Tensor, rho: torch.Tensor, nu: torch.Tensor, *, n_nodes: int = 64) -> torch.Tensor:
    """Bivariate Student-t CDF.

    Integrates the derivative with respect to the correlation (Genz 2004)
    from the countermonotonic limit ``max(0, T(x1) + T(x2) - 1)``.  On the
    arcsine scale the integrand switches on within ``|x1 + x2|`` of the lower
    end, so the nodes are clustered there with ``theta = lo + L * t**3``.
    """
    x1 = _as_tensor(x1)
    x2 = _as_tensor(x2, device=x1.device, dtype=x1.dtype)
    rho = _as_tensor(rho, device=x1.device, dtype=x1.dtype)
    nu = _as_tensor(nu, device=x1.device, dtype=x1.dtype)

    lower = (pt(x1, nu) + pt(x2, nu) - 1.0).clamp_min(0.0)
    lo = -0.5 * math.pi
    span = (torch.asin(rho.clamp(-1.0, 1.0)) - lo).unsqueeze(-1)
    s, w = gauss_legendre(n_nodes, dtype=x1.dtype)
    th = lo + span * s ** 3
    jac = 3.0 * span * s * s
    sn = torch.sin(th)
    cs2 = torch.cos(th).pow(2).clamp_min(1e-300)
    h = torch.nan_to_num(x1, posinf=1e10, neginf=-1e10).unsqueeze(-1)
    k = torch.nan_to_num(x2, posinf=1e10, neginf=-1e10).unsqueeze(-1)
    q = (h * h + k * k - 2.0 * h * k * sn) / (nu.unsqueeze(-1) * cs2)
    term = torch.pow(1.0 + q, -0.5 * nu.unsqueeze(-1))
    return (lower + (jac * term * w).sum(dim=-1) / (2.0 * math.pi)).clamp(0.0, 1.0)


def pearson_cor(x: torch.Tensor, y: torch.Tensor) -> float:
    x = _as_tensor(x).reshape(-1)
    y = _as_tensor(y, device=x.device, dtype=x.dtype).reshape(-1)
    if x.numel() != y.numel():
        raise ValueError("x and y must have the same length")
    if x.numel() == 0:
        return float("nan")
    xc = x - x.mean()
    yc = y - y.mean()
    den = torch.sqrt((xc * xc).sum() * (yc * yc).sum()).clamp_min(torch.finfo(x.dtype).tiny)
    return float(((xc * yc).sum() / den).clamp(-1.0, 1.0))


def _count_inversions(ranks: list[int]) -> int:
    """Inversions of ``ranks`` via bottom-up merge sort, O(n log n)."""
    n = len(ranks)
    a = list(ranks)
    buf = [0] * n
    inv = 0
    width = 1
    while width < n:
        for start in range(0, n, 2 * width):
            mid = min(start + width, n)
            end = min(start + 2 * width, n)
            i, j, k = start, mid, start
            while i < mid and j < end:
                if a[i] <= a[j]:
                    buf[k] = a[i]
                    i += 1
                else:
                    buf[k] = a[j]
                    inv += mid - i
                    j += 1
                k += 1
            buf[k:end] = a[i:mid] if i < mid else a[j:end]
        a, buf = buf, a
        width *= 2
    return inv


def kendall_tau(x: torch.Tensor, y: torch.Tensor) -> float:
    """Kendall's tau (tau-a) for continuous data.

    Pairwise sign products for small samples, a merge-sort inversion count
    otherwise.
    """
    x = _as_tensor(x).reshape(-1)
    y = _as_tensor(y, device=x.device, dtype=x.dtype).reshape(-1)
    n = int(x.numel())
    if n != int(y.numel()):
        raise ValueError("x and y must have the same length")
    if n < 2:
        return 0.0

    if n <= 500:
        s = torch.sign(x.unsqueeze(1) - x.unsqueeze(0)) * torch.sign(y.unsqueeze(1) - y.unsqueeze(0))
        s = s.triu(diagonal=1)
        c = int((s > 0).sum())
        d = int((s < 0).sum())
        if c + d == 0:
            return 0.0
        return float((c - d) / (c + d))

    y_sorted = y[torch.argsort(x, stable=True)]
    order = torch.argsort(y_sorted, stable=True)
    ranks = torch.empty_like(order)
    ranks[order] = torch.arange(n, device=x.device, dtype=order.dtype)
    inv = _count_inversions(ranks.tolist())
    tau = 1.0 - 4.0 * float(inv) / (float(n) * float(n - 1))
    return float(max(-1.0, min(1.0, tau)))
