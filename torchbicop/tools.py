"""Small numerical tools shared by all families."""

from __future__ import annotations

from typing import Callable

import numpy as np
import torch


def invert_f(
    x: torch.Tensor,
    f: Callable[[torch.Tensor], torch.Tensor],
    lb: float = 1e-20,
    ub: float = 1.0 - 1e-20,
    n_iter: int = 35,
) -> torch.Tensor:
    """Element-wise inverse of an increasing function by bisection.

    Runs exactly ``n_iter`` halvings of ``[lb, ub]`` and returns the last
    midpoint, so the error is about ``(ub - lb) * 2**-n_iter``. A decreasing
    or non-monotone ``f`` gives meaningless results without an error.
    """
    x = torch.as_tensor(x, dtype=torch.float64)
    xl = torch.full_like(x, float(lb))
    xh = torch.full_like(x, float(ub))
    xm = 0.5 * (xl + xh)
    for _ in range(int(n_iter)):
        xm = 0.5 * (xl + xh)
        below = (f(xm) - x) < 0
        xl = torch.where(below, xm, xl)
        xh = torch.where(below, xh, xm)
    return xm


def swap_cols(u: torch.Tensor) -> torch.Tensor:
    return u[:, [1, 0]]


def reflect(u: torch.Tensor, rotation: int) -> torch.Tensor:
    """Relabel ``u`` for a rotated copula.

    90 reflects the first column, 270 the second and 180 both.
    """
    rotation = int(rotation)
    if rotation == 0:
        return u
    out = u.clone()
    if rotation in (90, 180):
        out[:, 0] = 1.0 - u[:, 0]
    if rotation in (180, 270):
        out[:, 1] = 1.0 - u[:, 1]
    return out


def read_matxd(path) -> torch.Tensor:
    """Read a whitespace-delimited text matrix (one row per line) as float64."""
    arr = np.loadtxt(path, dtype=np.float64, ndmin=2)
    return torch.from_numpy(arr)


def to_pseudo_obs(x: torch.Tensor) -> torch.Tensor:
    """Column-wise ranks scaled to (0, 1) as ``rank / (n + 1)``; ties get average ranks."""
    x = torch.as_tensor(x, dtype=torch.float64)
    if x.ndim == 1:
        x = x.unsqueeze(1)
    n = x.shape[0]
    out = torch.empty_like(x)
    for j in range(x.shape[1]):
        col = x[:, j]
        order = torch.argsort(col, stable=True)
        ranks = torch.empty_like(col)
        ranks[order] = torch.arange(1, n + 1, dtype=x.dtype)
        # Average ranks over runs of equal values.
        vals, inverse = torch.unique(col, return_inverse=True)
        if vals.numel() < n:
            sums = torch.zeros(vals.numel(), dtype=x.dtype).index_add_(0, inverse, ranks)
            counts = torch.zeros(vals.numel(), dtype=x.dtype).index_add_(0, inverse, torch.ones_like(ranks))
            ranks = (sums / counts)[inverse]
        out[:, j] = ranks / (n + 1.0)
    return out
