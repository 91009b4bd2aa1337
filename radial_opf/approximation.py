# approximation.py
# Curve approximator: cubic-spline fit of a sampled feasible relation as a function
# of the voltage magnitude at the parent end of the edge.
#   vm_up  ->  (P_up, Q_up, param)
# The residual bound is the largest deviation between the fit and freshly sampled
# midpoints of the sampling grid. Densities grow on nested grids n -> 2n - 1.

from __future__ import annotations
import numpy as np
from dataclasses import dataclass, replace
from typing import Callable, Optional, Tuple
from scipy.interpolate import CubicSpline

from .errors import ApproximationError


@dataclass(frozen=True, eq=False)
class Approximation:
    bus: int                          # 0-based bus the relation belongs to
    x: np.ndarray                     # vm_up knots, strictly increasing
    y: np.ndarray                     # (k, 3) knot values: P_up, Q_up, param
    residual: float = np.inf
    spline: Optional[CubicSpline] = None

    @classmethod
    def from_relation(cls, bus: int, rel, residual: float = np.inf) -> "Approximation":
        order = np.argsort(rel.vm_up)
        x = np.asarray(rel.vm_up, float)[order]
        y = np.column_stack([rel.s_up.real, rel.s_up.imag, rel.param])[order]
        spline = CubicSpline(x, y, axis=0) if x.size > 1 else None
        return cls(bus=bus, x=x, y=y, residual=residual, spline=spline)

    @property
    def domain(self) -> Tuple[float, float]:
        return float(self.x[0]), float(self.x[-1])

    @property
    def size(self) -> int:
        return int(self.x.size)

    def _eval(self, vm, nu: int = 0) -> np.ndarray:
        vm = np.clip(np.asarray(vm, dtype=float), *self.domain)
        if self.spline is None:
            # single-point relation: constant value, zero slope
            row = self.y[0] if nu == 0 else np.zeros(3)
            return np.broadcast_to(row, vm.shape + (3,))
        return self.spline(vm, nu)

    def evaluate(self, vm) -> Tuple[np.ndarray, np.ndarray]:
        """Power entering the edge at the parent end and the free parameter."""
        Y = self._eval(vm)
        return Y[..., 0] + 1j * Y[..., 1], Y[..., 2]

    def power(self, vm) -> np.ndarray:
        Y = self._eval(vm)
        return Y[..., 0] + 1j * Y[..., 1]

    def param(self, vm) -> np.ndarray:
        return self._eval(vm)[..., 2]

    def dparam(self, vm) -> np.ndarray:
        """d(param)/d(vm_up) of the inverse fit."""
        return self._eval(vm, 1)[..., 2]

    def residual_against(self, rel) -> float:
        """Max deviation of the fit from relation samples lying inside the domain."""
        if self.spline is None:
            return 0.0
        lo, hi = self.domain
        inside = (rel.vm_up >= lo) & (rel.vm_up <= hi)
        if not np.any(inside):
            return np.inf
        s_fit, t_fit = self.evaluate(rel.vm_up[inside])
        ds = np.max(np.abs(s_fit - rel.s_up[inside]))
        dt = np.max(np.abs(t_fit - rel.param[inside]))
        return float(max(ds, dt))


def fit_samples(sampler: Callable, lo: float, hi: float, n: int, bus: int) -> Approximation:
    """Fit on n equidistant parameter samples of [lo, hi] and measure the midpoint residual."""
    if hi <= lo or n < 2:
        rel = sampler(np.array([lo]))
        return Approximation.from_relation(bus, rel, residual=0.0)
    t = np.linspace(lo, hi, n)
    approx = Approximation.from_relation(bus, sampler(t))
    mid = sampler(0.5 * (t[1:] + t[:-1]))
    return replace(approx, residual=approx.residual_against(mid))


def fit_relation(sampler: Callable, lo: float, hi: float, tolerance: float,
                 n_init: int = 33, n_max: int = 4097, bus: int = -1) -> Approximation:
    """
    Refine the sampling density until the residual bound meets the tolerance.
    Raises ApproximationError (carrying the best fit) once n would exceed n_max.
    """
    n = max(2, int(n_init))
    best = None
    while True:
        approx = fit_samples(sampler, lo, hi, n, bus)
        if best is None or approx.residual <= best.residual:
            best = approx
        if approx.residual <= tolerance:
            return approx
        n_next = 2 * n - 1
        if n_next > n_max:
            raise ApproximationError(bus + 1, best.residual, tolerance, approximation=best)
        n = n_next
