"""Piecewise-bilinear densities on a square grid, used by the TLL family.

A grid density is a pair ``(grid, values)`` where ``grid`` holds ``m``
increasing points of [0, 1] and ``values[i, j]`` is the density at
``(grid[i], grid[j])``.  The first index always runs over the first variable.
"""

from __future__ import annotations

import torch

from . import stats

_FLOOR = 1e-4


def make_normal_grid(m: int = 30, *, boundary_to_01: bool = True, dtype=torch.float64) -> torch.Tensor:
    """``m`` points equally spaced on the normal scale over [-3.25, 3.25]."""
    if m < 2:
        raise ValueError("m must be >= 2")
    grid = stats.pnorm(torch.linspace(-3.25, 3.25, steps=int(m), dtype=dtype))
    if boundary_to_01:
        grid = grid.clone()
        grid[0] = 0.0
        grid[-1] = 1.0
    return grid


def int_on_grid(upr: torch.Tensor, vals: torch.Tensor, grid: torch.Tensor) -> torch.Tensor:
    """Row-wise integral from 0 to ``upr`` of the piecewise-linear ``vals`` (n, m)."""
    upr = torch.as_tensor(upr, dtype=vals.dtype).reshape(-1, 1)
    x0 = grid[:-1]
    x1 = grid[1:]
    v0 = vals[:, :-1]
    v1 = vals[:, 1:]

    full = upr >= x1
    seg_full = (v0 + v1) * (x1 - x0) * 0.5

    # Trapezoid over the part of the cell that lies below upr.
    part = (upr >= x0) & (upr < x1)
    dx = (upr - x0).clamp_min(0.0)
    slope = (v1 - v0) / (x1 - x0)
    seg_part = (2.0 * v0 + slope * dx) * dx * 0.5

    return (seg_full * full + seg_part * part).sum(dim=1)


def normalize_margins(grid: torch.Tensor, values: torch.Tensor, times: int = 3) -> torch.Tensor:
    """Alternately rescale rows and columns so both margins integrate to one."""
    m = grid.numel()
    ones = torch.ones(m, dtype=values.dtype)
    for _ in range(int(times)):
        values = values / int_on_grid(ones, values, grid).clamp_min(1e-20)[:, None]
        values = values / int_on_grid(ones, values.t(), grid).clamp_min(1e-20)[None, :]
    return values


def interpolate(grid: torch.Tensor, values: torch.Tensor, x: torch.Tensor) -> torch.Tensor:
    """Bilinear interpolation of the grid density at the rows of ``x`` (n, 2)."""
    m = grid.numel()
    x0 = x[:, 0].contiguous()
    x1 = x[:, 1].contiguous()
    i = (torch.searchsorted(grid, x0, right=True) - 1).clamp(0, m - 2)
    j = (torch.searchsorted(grid, x1, right=True) - 1).clamp(0, m - 2)

    x_lo, x_hi = grid[i], grid[i + 1]
    y_lo, y_hi = grid[j], grid[j + 1]
    z11 = values[i, j]
    z12 = values[i, j + 1]
    z21 = values[i + 1, j]
    z22 = values[i + 1, j + 1]

    dx_hi = x_hi - x0
    dx_lo = x0 - x_lo
    dy_hi = y_hi - x1
    dy_lo = x1 - y_lo
    num = z11 * dx_hi * dy_hi + z21 * dx_lo * dy_hi + z12 * dx_hi * dy_lo + z22 * dx_lo * dy_lo
    return num / ((x_hi - x_lo) * (y_hi - y_lo))


def integrate_1d(grid: torch.Tensor, values: torch.Tensor, u: torch.Tensor, cond_var: int) -> torch.Tensor:
    """Conditional distribution function implied by the grid density.

    ``cond_var=1`` conditions on the first variable and integrates over the
    second up to ``u[:, 1]``; ``cond_var=2`` does the reverse.
    """
    if cond_var not in (1, 2):
        raise ValueError("cond_var must be 1 or 2")
    n = u.shape[0]
    m = grid.numel()
    if cond_var == 1:
        upr = u[:, 1]
        pts = torch.stack([u[:, 0].repeat_interleave(m), grid.repeat(n)], dim=1)
    else:
        upr = u[:, 0]
        pts = torch.stack([grid.repeat(n), u[:, 1].repeat_interleave(m)], dim=1)

    vals = interpolate(grid, values, pts).reshape(n, m).clamp_min(_FLOOR)
    num = int_on_grid(upr, vals, grid)
    den = int_on_grid(torch.ones_like(upr), vals, grid).clamp_min(1e-20)
    return (num / den).clamp(1e-10, 1.0 - 1e-10)


def integrate_2d(grid: torch.Tensor, values: torch.Tensor, u: torch.Tensor) -> torch.Tensor:
    """Distribution function implied by the grid density.

    Exact copula margins need ``values`` normalized by :func:`normalize_margins`.
    """
    n = u.shape[0]
    m = grid.numel()
    # Inner integral over the second variable up to u2, at every grid point of the first.
    inner = int_on_grid(u[:, 1].repeat_interleave(m), values.repeat(n, 1), grid).reshape(n, m)
    return int_on_grid(u[:, 0], inner, grid).clamp(0.0, 1.0)
