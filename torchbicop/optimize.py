"""Box-constrained maximization used by maximum-likelihood fitting.

Log-likelihoods are maximized with ``torch.optim.LBFGS`` on the unconstrained
logit of the parameter box. When autograd fails, or the gradient path ends at
a non-finite value, the fit is redone one parameter at a time with
golden-section searches, which only need function values.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable

import torch

logger = logging.getLogger(__name__)

_INVPHI = 2.0 / (1.0 + math.sqrt(5.0))


@dataclass
class OptimizeResult:
    x: torch.Tensor
    fun: float  # maximized objective
    n_eval: int


def _as_vector(x) -> torch.Tensor:
    return torch.as_tensor(x, dtype=torch.float64).reshape(-1)


def _logit_box(x: torch.Tensor, lb: torch.Tensor, ub: torch.Tensor) -> torch.Tensor:
    s = ((x - lb) / (ub - lb).clamp_min(1e-12)).clamp(1e-12, 1.0 - 1e-12)
    return torch.log(s) - torch.log1p(-s)


def _lbfgs(
    objective: Callable[[torch.Tensor], torch.Tensor],
    x0: torch.Tensor,
    lb: torch.Tensor,
    ub: torch.Tensor,
    max_iter: int,
    tol: float,
) -> OptimizeResult:
    z = torch.nn.Parameter(_logit_box(x0, lb, ub))
    opt = torch.optim.LBFGS(
        [z],
        max_iter=max(1, int(max_iter)),
        tolerance_grad=tol,
        tolerance_change=tol,
        line_search_fn="strong_wolfe",
    )
    n_eval = 0

    def closure() -> torch.Tensor:
        nonlocal n_eval
        opt.zero_grad(set_to_none=True)
        loss = -objective(lb + (ub - lb) * torch.sigmoid(z))
        loss.backward()
        n_eval += 1
        return loss

    opt.step(closure)
    with torch.no_grad():
        x = lb + (ub - lb) * torch.sigmoid(z)
        fun = float(objective(x))
    return OptimizeResult(x=x.detach().clone(), fun=fun, n_eval=n_eval + 1)


def maximize_1d(
    f: Callable[[float], float],
    *,
    a: float,
    b: float,
    x0: float | None = None,
    max_iter: int = 60,
    tol: float = 1e-10,
) -> OptimizeResult:
    """Golden-section search for the maximum of a unimodal ``f`` on ``[a, b]``.

    With a starting value the two first probes straddle it, which keeps
    profile searches close to a good guess.
    """
    if not a < b:
        raise ValueError("maximize_1d requires a < b")
    if x0 is None:
        c, d = b - (b - a) * _INVPHI, a + (b - a) * _INVPHI
    else:
        x0 = min(max(float(x0), a), b)
        lo, hi = a + 0.25 * (b - a), b - 0.25 * (b - a)
        c = max(lo, min(hi, x0 - 0.1 * (b - a)))
        d = min(hi, max(lo, x0 + 0.1 * (b - a)))
    fc, fd = f(c), f(d)
    n_eval = 2
    for _ in range(max_iter):
        if b - a <= tol * (1.0 + abs(a) + abs(b)):
            break
        if fc > fd:
            b, d, fd = d, c, fc
            c = b - (b - a) * _INVPHI
            fc = f(c)
        else:
            a, c, fc = c, d, fd
            d = a + (b - a) * _INVPHI
            fd = f(d)
        n_eval += 1
    x, fun = (c, fc) if fc > fd else (d, fd)
    return OptimizeResult(x=torch.tensor(x, dtype=torch.float64), fun=float(fun), n_eval=n_eval)


def _coordinate_search(
    objective: Callable[[torch.Tensor], torch.Tensor],
    x0: torch.Tensor,
    lb: torch.Tensor,
    ub: torch.Tensor,
    sweeps: int = 7,
    tol: float = 1e-8,
) -> OptimizeResult:
    x = x0.clone()

    def value() -> float:
        with torch.no_grad():
            v = float(objective(x))
        return v if math.isfinite(v) else -math.inf

    best = value()
    n_eval = 1
    for _ in range(sweeps):
        improved = False
        for k in range(x.numel()):
            if not lb[k] < ub[k]:
                continue
            keep = float(x[k])

            def along(v: float, k=k) -> float:
                x[k] = v
                return value()

            res = maximize_1d(along, a=float(lb[k]), b=float(ub[k]), x0=keep, tol=tol)
            n_eval += res.n_eval
            if res.fun > best + 1e-12:
                x[k], best, improved = float(res.x), res.fun, True
            else:
                x[k] = keep
        if not improved:
            break
    return OptimizeResult(x=x, fun=best, n_eval=n_eval)


def maximize_bounded(
    objective: Callable[[torch.Tensor], torch.Tensor],
    *,
    x0: torch.Tensor,
    lb: torch.Tensor,
    ub: torch.Tensor,
    max_iter: int = 50,
    tol: float = 1e-8,
) -> OptimizeResult:
    """Maximize ``objective`` (tensor in, scalar tensor out) over ``[lb, ub]``."""
    lb, ub = _as_vector(lb), _as_vector(ub)
    x0 = torch.max(torch.min(_as_vector(x0), ub), lb)
    if x0.numel() != lb.numel() or x0.numel() != ub.numel():
        raise ValueError("x0, lb and ub must have the same length")

    try:
        res = _lbfgs(objective, x0, lb, ub, max_iter, tol)
    except RuntimeError as e:
        logger.warning("L-BFGS failed (%s); switching to coordinate search", e)
    else:
        if math.isfinite(res.fun):
            return res
        logger.warning("L-BFGS ended at a non-finite objective; switching to coordinate search")
    return _coordinate_search(objective, x0, lb, ub, tol=tol)
