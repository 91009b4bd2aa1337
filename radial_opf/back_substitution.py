# back_substitution.py
# Top-down recovery of every bus voltage and injection from the reference-bus magnitude,
# vectorised over m candidate magnitudes at once (arrays are buses x samples).

from __future__ import annotations
import warnings
import numpy as np
from typing import Dict, Sequence, Tuple

from .approximation import Approximation
from .config import SolverOptions
from .constraints import PV, BusConstraint, ConstraintCatalog
from .elimination import edge_map, local_state
from .errors import NumericInstabilityWarning
from .topology import Topology


def recover_bus(con: BusConstraint, z: complex, approx: Approximation,
                children: Sequence[Approximation], v_parent: np.ndarray,
                options: SolverOptions) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Voltage and injection of one bus given its parent's voltage phasor.
    The inverse fit gives a first parameter estimate, polished with Newton steps on the
    exact edge map so that |v_up(param)| matches |v_parent|; the local frame is then
    rotated onto the parent's angle.
    Returns v, s, magnitude mismatch, |d param / d vm_up|.
    """
    vm_p = np.abs(v_parent)
    tlo, thi = approx.y[:, 2].min(), approx.y[:, 2].max()
    t = approx.param(vm_p)
    for _ in range(options.polish_it):
        vm, s_down = local_state(con, t, children)
        v_up, _ = edge_map(vm, s_down, z)
        vm_up = np.abs(v_up)
        t = np.clip(t - (vm_up - vm_p) * approx.dparam(vm_up), tlo, thi)

    vm, s_down = local_state(con, t, children)
    v_up, _ = edge_map(vm, s_down, z)
    mismatch = np.abs(np.abs(v_up) - vm_p)
    cond = np.abs(approx.dparam(vm_p))

    v = vm * np.exp(1j * (np.angle(v_parent) - np.angle(v_up)))
    if con.kind == PV:
        s = con.s.real + 1j * t
    else:
        s = np.full(t.shape, con.s, dtype=complex)
    return v, s, mismatch, cond


def back_substitute(topology: Topology, catalog: ConstraintCatalog,
                    approx: Dict[int, Approximation], vm_ref,
                    options: SolverOptions) -> Tuple[np.ndarray, np.ndarray]:
    """Voltages v and injections s (both n x m) for m reference magnitudes."""
    vm_ref = np.atleast_1d(np.asarray(vm_ref, dtype=float))
    n, root = topology.n, topology.root
    v = np.zeros((n, vm_ref.size), dtype=complex)
    s = np.zeros((n, vm_ref.size), dtype=complex)
    v[root] = vm_ref

    for k in topology.order[::-1]:
        for c in topology.children[k]:
            kids = [approx[g] for g in topology.children[c]]
            v[c], s[c], mismatch, cond = recover_bus(catalog[c], complex(topology.z[c]), approx[c],
                                                     kids, v[k], options)
            worst = float(np.max(mismatch))
            if worst > options.instability_tol:
                warnings.warn(f"bus {c + 1}: voltage magnitude mismatch {worst:.3e} after back-substitution",
                              NumericInstabilityWarning, stacklevel=2)
            if np.max(cond) > options.condition_limit:
                warnings.warn(f"bus {c + 1}: ill-conditioned inversion (|d param/d vm| = {np.max(cond):.3e})",
                              NumericInstabilityWarning, stacklevel=2)

    for c in topology.children[root]:
        i = (v[root] - v[c]) / topology.z[c]
        s[root] += v[root] * np.conj(i)
    return v, s
