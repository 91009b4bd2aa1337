# elimination.py
# Subtree eliminator: collapse the subtree below each non-root bus into a feasible
# relation between the voltage magnitude at the parent end of its edge and the
# power entering that edge.
#
# Free parameter of a bus:
#   PQ (leaf or pass-through) : its own voltage magnitude u, own angle 0 in a local frame
#   PV                        : its reactive injection q, magnitude fixed at vset
# Edge map (Ohm's law + complex power, parent end "up"):
#   i = conj(s_down / vm),  v_up = vm + z i,  s_up = s_down + z |i|^2

from __future__ import annotations
import warnings
import numpy as np
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .approximation import Approximation, fit_relation
from .config import SolverOptions
from .constraints import PV, BusConstraint, ConstraintCatalog
from .errors import ApproximationError, ApproximationWarning, InfeasibleSubtreeError
from .topology import Topology


@dataclass(frozen=True, eq=False)
class FeasibleRelation:
    bus: int
    param: np.ndarray     # free parameter samples, ascending
    vm: np.ndarray        # own voltage magnitude
    s_down: np.ndarray    # power drawn from the parent edge at the bus end
    vm_up: np.ndarray     # voltage magnitude at the parent end
    s_up: np.ndarray      # power entering the edge at the parent end

    @property
    def size(self) -> int:
        return int(self.param.size)

    def take(self, idx) -> "FeasibleRelation":
        return FeasibleRelation(self.bus, self.param[idx], self.vm[idx], self.s_down[idx],
                                self.vm_up[idx], self.s_up[idx])

# ------- physics -------

def edge_map(vm, s_down, z: complex) -> Tuple[np.ndarray, np.ndarray]:
    """Carry a bus state (magnitude at angle 0, power drawn) to the parent end of its edge."""
    i = np.conj(s_down / vm)
    v_up = vm + z * i
    s_up = s_down + z * np.abs(i) ** 2
    return v_up, s_up


def local_state(con: BusConstraint, t, children: Sequence[Approximation]) -> Tuple[np.ndarray, np.ndarray]:
    """Own voltage magnitude and power drawn from the parent edge, per parameter sample."""
    t = np.asarray(t, dtype=float)
    if con.kind == PV:
        return np.full(t.shape, con.vset), -(con.s.real + 1j * t)
    s_down = np.full(t.shape, -con.s, dtype=complex)
    for a in children:
        s_down = s_down + a.power(t)   # KCL: every child hangs on the same magnitude u
    return t.copy(), s_down

# ------- sampling -------

def _monotone_run(x: np.ndarray) -> slice:
    """Longest index run on which x is strictly monotone."""
    if x.size < 2:
        return slice(0, x.size)
    d = np.sign(np.diff(x))
    best = (0, 1)
    a = 0
    for k in range(d.size):
        if d[k] == 0 or (k > a and d[k] != d[a]):
            a = k if d[k] != 0 else k + 1
        if k >= a and d[k] != 0 and k + 2 - a > best[1] - best[0]:
            best = (a, k + 2)
    return slice(*best)


def sample_relation(bus: int, con: BusConstraint, z: complex, children: Sequence[Approximation],
                    t) -> FeasibleRelation:
    """
    Evaluate the relation at parameter samples t. Samples without a valid parent-side
    state are dropped, and only the longest run on which vm_up is strictly monotone
    (the invertible branch) is kept.
    """
    t = np.asarray(t, dtype=float)
    vm, s_down = local_state(con, t, children)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        v_up, s_up = edge_map(vm, s_down, z)
    vm_up = np.abs(v_up)
    ok = np.isfinite(vm_up) & np.isfinite(s_up) & (vm_up > 0)
    rel = FeasibleRelation(bus, t[ok], vm[ok], s_down[ok], vm_up[ok], s_up[ok])
    return rel.take(_monotone_run(rel.vm_up))


def pv_turning_point(con: BusConstraint, z: complex) -> float:
    """
    Reactive injection at which |v_up(q)| of a PV bus is smallest.
    v_up = c + j a q with a = z / vset and c = vset - a p, so |v_up|^2 is a parabola in q.
    Below the turning point |v_up| falls as q rises (the normal operating branch).
    """
    a = z / con.vset
    c = con.vset - a * con.s.real
    return float((np.conj(c) * a).imag / abs(a) ** 2)


def parameter_interval(con: BusConstraint, z: complex, children: Sequence[Approximation],
                       options: SolverOptions) -> Tuple[float, float]:
    if con.kind == PV:
        lo, hi = max(con.qmin, -options.q_limit), min(con.qmax, options.q_limit)
        q_turn = pv_turning_point(con, z)
        if lo < q_turn < hi:
            hi = q_turn
        return lo, hi
    lo = max(con.vmin, options.vm_floor)
    hi = min(con.vmax, options.vm_ceil)
    for a in children:
        dlo, dhi = a.domain
        lo, hi = max(lo, dlo), min(hi, dhi)
    return lo, hi

# ------- elimination -------

def eliminate_bus(topology: Topology, catalog: ConstraintCatalog, k: int,
                  approx: Dict[int, Approximation], options: SolverOptions,
                  verbose: bool = False) -> Approximation:
    con = catalog[k]
    z = complex(topology.z[k])
    children: List[Approximation] = [approx[c] for c in topology.children[k]]

    lo, hi = parameter_interval(con, z, children, options)
    if lo > hi:
        raise InfeasibleSubtreeError(k + 1, f"parameter interval [{lo:.6g}, {hi:.6g}] is empty")

    def sampler(t):
        rel = sample_relation(k, con, z, children, t)
        if rel.size == 0:
            raise InfeasibleSubtreeError(k + 1, "no sample yields a valid parent-side state")
        return rel

    if hi - lo > options.width_tol:
        probe = sampler(np.linspace(lo, hi, options.initial_samples))
        lo, hi = float(probe.param[0]), float(probe.param[-1])

    try:
        a = fit_relation(sampler, lo, hi, options.tolerance,
                         n_init=options.initial_samples, n_max=options.max_samples, bus=k)
    except ApproximationError as err:
        if options.strict:
            raise
        warnings.warn(f"{err}; continuing with the best fit ({err.approximation.size} samples)",
                      ApproximationWarning, stacklevel=2)
        a = err.approximation

    if verbose:
        dlo, dhi = a.domain
        print(f"[ELIM] bus={k + 1:02d}  samples={a.size:5d}  residual={a.residual:.3e}  "
              f"|v_up| in [{dlo:.6f}, {dhi:.6f}]")
    return a


def eliminate_tree(topology: Topology, catalog: ConstraintCatalog, options: SolverOptions,
                   verbose: bool = False) -> Dict[int, Approximation]:
    """Approximations of every non-root bus, computed leaves first."""
    approx: Dict[int, Approximation] = {}
    for k in topology.order:
        k = int(k)
        if k == topology.root:
            continue
        approx[k] = eliminate_bus(topology, catalog, k, approx, options, verbose)
    return approx
