"""nlfem.solvers.linesearch
Step-length rules applied to a search direction ``d`` from the iterate ``x``.

All searches work with the merit function ``f(x) = 1/2 ||F(x)||^2``:

basic      take ``x + damping * d``
backtrace  Armijo backtracking with linear / quadratic / cubic step
           interpolation (``order`` 1, 2, 3)
cp         secant iteration for a critical point of the energy along ``d``,
           i.e. ``F(x + lam d) . d = 0``
l2         secant minimisation of ``||F(x + lam d)||^2`` using
           finite-difference derivative estimates
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from nlfem.core.errors import ConfigurationError
from nlfem.solvers.parameters import LineSearchType

logger = logging.getLogger(__name__)

Residual = Callable[[np.ndarray], np.ndarray]


@dataclass
class LineSearchResult:
    x: np.ndarray
    F: np.ndarray
    fnorm: float
    lam: float
    success: bool


def _phi(F: np.ndarray) -> float:
    return 0.5 * float(F @ F)


class LineSearch:
    """Base class; ``apply`` returns the accepted trial point."""

    kind = LineSearchType.BASIC

    def __init__(self, *, order: int = 3, damping: float = 1.0, max_its: int = 1,
                 alpha: float = 1e-4, minlambda: float = 1e-12, maxstep: float = 1e8):
        self.order = order
        self.damping = damping
        self.max_its = max_its
        self.alpha = alpha
        self.minlambda = minlambda
        self.maxstep = maxstep

    def _trial(self, residual: Residual, x, d, lam):
        x_new = x + lam * d
        F_new = residual(x_new)
        return x_new, F_new

    def apply(self, residual: Residual, x: np.ndarray, F: np.ndarray,
              d: np.ndarray, J=None) -> LineSearchResult:
        lam = self.damping
        x_new, F_new = self._trial(residual, x, d, lam)
        fnorm = float(np.linalg.norm(F_new))
        return LineSearchResult(x_new, F_new, fnorm, lam, bool(np.isfinite(fnorm)))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(order={self.order}, max_its={self.max_its})"


class BasicLineSearch(LineSearch):
    kind = LineSearchType.BASIC


class BacktrackingLineSearch(LineSearch):
    kind = LineSearchType.BACKTRACE

    def __init__(self, **kwargs):
        kwargs.setdefault("max_its", 40)
        super().__init__(**kwargs)

    def _next_lambda(self, lam, f_lam, lam_prev, f_prev, f0, slope, first):
        if self.order == 1:
            return 0.5 * lam
        if self.order == 2 or first:
            denom = 2.0 * (f_lam - f0 - slope * lam)
            lam_t = -slope * lam * lam / denom if denom > 0.0 else 0.5 * lam
        else:
            t1 = f_lam - f0 - lam * slope
            t2 = f_prev - f0 - lam_prev * slope
            a = (t1 / lam**2 - t2 / lam_prev**2) / (lam - lam_prev)
            b = (-lam_prev * t1 / lam**2 + lam * t2 / lam_prev**2) / (lam - lam_prev)
            if a == 0.0:
                lam_t = -slope / (2.0 * b) if b != 0.0 else 0.5 * lam
            else:
                disc = max(b * b - 3.0 * a * slope, 0.0)
                lam_t = (-b + np.sqrt(disc)) / (3.0 * a)
        if not np.isfinite(lam_t):
            lam_t = 0.5 * lam
        return min(max(lam_t, 0.1 * lam), 0.5 * lam)

    def apply(self, residual, x, F, d, J=None):
        f0 = _phi(F)
        slope = float(F @ (J @ d)) if J is not None else -2.0 * f0
        if slope > 0.0:
            logger.debug("backtracking: ascent direction, flipping slope sign")
            slope = -slope
        elif slope == 0.0:
            slope = -1.0

        lam = self.damping
        best = None
        lam_prev = f_prev = None
        for _ in range(self.max_its):
            x_new, F_new = self._trial(residual, x, d, lam)
            f_new = _phi(F_new)
            if np.isfinite(f_new):
                if best is None or f_new < best[2]:
                    best = (x_new, F_new, f_new, lam)
                if f_new <= f0 + self.alpha * lam * slope:
                    logger.debug("backtracking accepted lambda = %.3e", lam)
                    return LineSearchResult(x_new, F_new, float(np.sqrt(2.0 * f_new)), lam, True)
                lam_next = self._next_lambda(lam, f_new, lam_prev, f_prev, f0, slope,
                                             lam_prev is None)
                lam_prev, f_prev = lam, f_new
            else:
                # interpolation restarts from the next finite trial
                lam_next = 0.5 * lam
                lam_prev = f_prev = None
            lam = lam_next
            if lam < self.minlambda:
                break

        if best is not None and best[2] < f0:
            logger.warning("backtracking: Armijo failed, using best-effort lambda = %.2e", best[3])
            return LineSearchResult(best[0], best[1], float(np.sqrt(2.0 * best[2])), best[3], True)
        logger.warning("backtracking: no decrease found (lambda < %.1e)", self.minlambda)
        x_new, F_new = (best[0], best[1]) if best is not None else (x, F)
        return LineSearchResult(x_new, F_new, float(np.linalg.norm(F_new)),
                                best[3] if best is not None else 0.0, False)


class CriticalPointLineSearch(LineSearch):
    kind = LineSearchType.CP

    def apply(self, residual, x, F, d, J=None):
        lam_old, fty_old = 0.0, float(F @ d)
        lam = self.damping
        for _ in range(self.max_its):
            _, F_lam = self._trial(residual, x, d, lam)
            fty = float(F_lam @ d)
            if not np.isfinite(fty):
                lam = 0.5 * lam
                continue
            denom = fty - fty_old
            if denom == 0.0:
                break
            lam_new = lam - fty * (lam - lam_old) / denom
            if not np.isfinite(lam_new) or lam_new <= 0.0:
                logger.debug("cp: secant gave lambda = %s, keeping %.3e", lam_new, lam)
                break
            lam_old, fty_old = lam, fty
            lam = min(lam_new, self.maxstep)
            if abs(lam - lam_old) <= 1e-12 * max(lam, 1.0):
                break

        x_new, F_new = self._trial(residual, x, d, lam)
        fnorm = float(np.linalg.norm(F_new))
        logger.debug("cp: lambda = %.3e", lam)
        return LineSearchResult(x_new, F_new, fnorm, lam, bool(np.isfinite(fnorm)))


class L2LineSearch(LineSearch):
    kind = LineSearchType.L2

    def apply(self, residual, x, F, d, J=None):
        g0 = float(F @ F)
        lam_old, g_old = 0.0, g0
        lam = self.damping
        candidates = []
        for _ in range(self.max_its):
            x_lam, F_lam = self._trial(residual, x, d, lam)
            lam_mid = 0.5 * (lam + lam_old)
            x_mid, F_mid = self._trial(residual, x, d, lam_mid)
            g, g_mid = float(F_lam @ F_lam), float(F_mid @ F_mid)
            candidates += [(g, lam, x_lam, F_lam), (g_mid, lam_mid, x_mid, F_mid)]
            if not (np.isfinite(g) and np.isfinite(g_mid)):
                lam_old, lam = lam_old, lam_mid
                continue
            h = 0.5 * (lam - lam_old)
            dg = (3.0 * g - 4.0 * g_mid + g_old) / (2.0 * h)
            d2g = (g - 2.0 * g_mid + g_old) / (h * h)
            if d2g > 0.0:
                lam_new = lam - dg / d2g
            else:
                lam_new = lam if g < g0 else lam_mid
            lam_new = min(max(lam_new, self.minlambda), self.maxstep)
            lam_old, g_old = lam, g
            lam = lam_new

        x_new, F_new = self._trial(residual, x, d, lam)
        candidates.append((float(F_new @ F_new), lam, x_new, F_new))
        finite = [c for c in candidates if np.isfinite(c[0])]
        if not finite:
            return LineSearchResult(x_new, F_new, float("nan"), lam, False)
        g_best, lam_best, x_best, F_best = min(finite, key=lambda c: c[0])
        logger.debug("l2: lambda = %.3e", lam_best)
        return LineSearchResult(x_best, F_best, float(np.sqrt(g_best)), lam_best, True)


_LINE_SEARCHES = {
    LineSearchType.BASIC: BasicLineSearch,
    LineSearchType.BACKTRACE: BacktrackingLineSearch,
    LineSearchType.CP: CriticalPointLineSearch,
    LineSearchType.L2: L2LineSearch,
}


def make_line_search(kind: LineSearchType, *, order: int = 3, **kwargs) -> Optional[LineSearch]:
    """Concrete line search for a resolved type (``NONE`` gives ``None``)."""
    if kind is LineSearchType.NONE:
        return None
    try:
        cls = _LINE_SEARCHES[kind]
    except KeyError:
        raise ConfigurationError(f"line search '{kind.value}' must be resolved first") from None
    return cls(order=order, **kwargs)
