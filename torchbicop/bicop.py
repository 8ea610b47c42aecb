"""The ``Bicop`` facade: one owned copula, evaluation forwards, and family selection."""

from __future__ import annotations

import json
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import torch

from .abstract_bicop import AbstractBicop, check_data
from .exceptions import EmptyCandidateSet, FittingFailed
from .families import BicopFamily, family_rotations, itau, nonparametric, normalize_family
from .fit_controls import FitControlsBicop, InversionControls
from .nonparametric import TllBicop

logger = logging.getLogger(__name__)


def create(family: str | BicopFamily = BicopFamily.indep, parameters=None, rotation: int = 0) -> AbstractBicop:
    """Validated concrete copula for ``family``; see ``AbstractBicop.create``."""
    return AbstractBicop.create(family, parameters, rotation)


def _candidates(controls: FitControlsBicop) -> list[tuple[BicopFamily, int]]:
    fams: list[BicopFamily] = []
    for fam in controls.family_set:
        fam = normalize_family(fam)
        if fam not in fams:
            fams.append(fam)
    if not fams:
        raise EmptyCandidateSet("family_set must contain at least one family")
    if controls.parametric_method == "itau":
        fams = [f for f in fams if f in itau or f in nonparametric]
    if BicopFamily.indep not in fams:
        fams.append(BicopFamily.indep)

    out = []
    for fam in fams:
        rotations = family_rotations(fam) if controls.allow_rotations else (0,)
        out.extend((fam, rot) for rot in rotations)
    return out


def _score(cop: AbstractBicop, criterion: str) -> float:
    if criterion == "loglik":
        return -cop.loglik()
    if criterion == "aic":
        return cop.aic()
    return cop.bic()


class Bicop:
    """A bivariate copula of any supported family and rotation.

    The facade owns exactly one ``AbstractBicop``.  ``select`` replaces it by
    the best-scoring fitted candidate in a single assignment; every other
    call is forwarded to it.
    """

    def __init__(
        self,
        family: str | BicopFamily = BicopFamily.indep,
        parameters=None,
        rotation: int = 0,
        *,
        inversion: InversionControls | None = None,
    ):
        self._bicop = AbstractBicop.create(family, parameters, rotation, inversion=inversion)

    # ---- construction / persistence ----

    @classmethod
    def from_data(cls, data, controls: FitControlsBicop | None = None) -> "Bicop":
        """Select family, rotation and parameters on ``data``."""
        c = cls()
        c.select(data, controls=controls)
        return c

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> "Bicop":
        family = normalize_family(obj["family"])
        params = obj.get("parameters")
        if params is not None and len(params) == 0:
            params = None
        c = cls(family, params, int(obj.get("rotation", 0)))
        c._bicop.nobs = int(obj.get("nobs", 0))
        if isinstance(c._bicop, TllBicop):
            c._bicop.set_npars(obj.get("npars", 0.0))
        return c

    def to_json(self) -> dict[str, Any]:
        return {
            "family": self.family.value,
            "rotation": self.rotation,
            "parameters": self._bicop.parameters.tolist(),
            "nobs": int(self.nobs),
            "npars": float(self.npars),
        }

    @classmethod
    def from_file(cls, path: str) -> "Bicop":
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
        return cls.from_json(obj)

    def to_file(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_json(), f, indent=2, sort_keys=True)

    # ---- state ----

    @property
    def family(self) -> BicopFamily:
        return self._bicop.family

    @property
    def rotation(self) -> int:
        return self._bicop.rotation

    @rotation.setter
    def rotation(self, rotation: int) -> None:
        self._bicop.set_rotation(rotation)

    @property
    def parameters(self) -> torch.Tensor:
        return self._bicop.parameters

    @parameters.setter
    def parameters(self, parameters) -> None:
        self._bicop.set_parameters(parameters)

    @property
    def parameters_lower_bounds(self) -> torch.Tensor:
        return self._bicop.parameters_lower_bounds

    @property
    def parameters_upper_bounds(self) -> torch.Tensor:
        return self._bicop.parameters_upper_bounds

    @property
    def nobs(self) -> int:
        return self._bicop.nobs

    @property
    def npars(self) -> float:
        return self._bicop.get_npars()

    @property
    def tau(self) -> float:
        return self._bicop.parameters_to_tau()

    def get_npars(self) -> float:
        return self._bicop.get_npars()

    def set_parameters(self, parameters) -> None:
        self._bicop.set_parameters(parameters)

    def set_rotation(self, rotation: int) -> None:
        self._bicop.set_rotation(rotation)

    def flip(self) -> None:
        self._bicop.flip()

    # ---- evaluation ----

    def pdf(self, u) -> torch.Tensor:
        return self._bicop.pdf(u)

    def cdf(self, u) -> torch.Tensor:
        return self._bicop.cdf(u)

    def hfunc1(self, u) -> torch.Tensor:
        return self._bicop.hfunc1(u)

    def hfunc2(self, u) -> torch.Tensor:
        return self._bicop.hfunc2(u)

    def hinv1(self, u) -> torch.Tensor:
        return self._bicop.hinv1(u)

    def hinv2(self, u) -> torch.Tensor:
        return self._bicop.hinv2(u)

    def simulate(self, n: int, seeds=()) -> torch.Tensor:
        return self._bicop.simulate(n, seeds=seeds)

    def loglik(self, data=None) -> float:
        return self._bicop.loglik(data)

    def aic(self, data=None) -> float:
        return self._bicop.aic(data)

    def bic(self, data=None) -> float:
        return self._bicop.bic(data)

    def parameters_to_tau(self, parameters=None) -> float:
        return self._bicop.parameters_to_tau(parameters)

    def tau_to_parameters(self, tau: float) -> torch.Tensor:
        return self._bicop.tau_to_parameters(tau)

    # ---- fitting ----

    def fit(self, data, controls: FitControlsBicop | None = None) -> "Bicop":
        """Estimate the parameters of the current family and rotation."""
        self._bicop.fit(data, controls)
        return self

    def select(self, data, controls: FitControlsBicop | None = None) -> "Bicop":
        """Fit every family/rotation candidate and keep the best by the selection criterion.

        Candidates are searched in ``controls.family_set`` order (duplicates
        dropped, independence appended when missing) and by increasing
        rotation; on equal scores the earlier candidate wins.  Candidates
        whose fit fails are skipped.
        """
        if controls is None:
            controls = FitControlsBicop()
        u = check_data(data)
        candidates = _candidates(controls)
        inversion = self._bicop.inversion

        def fit_one(cand: tuple[BicopFamily, int]) -> AbstractBicop | None:
            fam, rot = cand
            cop = AbstractBicop.create(fam, rotation=rot, inversion=inversion)
            try:
                cop.fit(u, controls)
            except FittingFailed as e:
                logger.warning("skipping %s (rotation %d): %s", fam.value, rot, e)
                return None
            return cop

        if controls.num_threads > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=controls.num_threads) as pool:
                fitted = list(pool.map(fit_one, candidates))
        else:
            fitted = [fit_one(c) for c in candidates]

        best = None
        best_score = math.inf
        for cop in fitted:
            if cop is None:
                continue
            score = _score(cop, controls.selection_criterion)
            logger.debug(
                "candidate %s (rotation %d): %s=%.4f",
                cop.family.value, cop.rotation, controls.selection_criterion, score,
            )
            if not math.isfinite(score):
                logger.warning("skipping %s (rotation %d): non-finite score", cop.family.value, cop.rotation)
                continue
            if score < best_score:
                best_score = score
                best = cop

        if best is None:
            raise FittingFailed("no candidate copula could be fitted")
        logger.debug("selected %s (rotation %d)", best.family.value, best.rotation)
        self._bicop = best
        return self

    # ---- representation ----

    def str(self) -> str:
        """Human-readable summary."""
        p = self._bicop.parameters
        parts = ["<torchbicop.Bicop>", f"  family: {self.family.value}"]
        if self.rotation != 0:
            parts.append(f"  rotation: {self.rotation}")
        if self.family != BicopFamily.tll and p.numel() > 0:
            parts.append("  parameters: [" + ", ".join(f"{v:.4f}" for v in p.tolist()) + "]")
        if self.nobs > 0:
            parts.append(f"  nobs: {self.nobs}")
        return "\n".join(parts)

    def __repr__(self) -> str:
        return f"Bicop({self._bicop!r})"
