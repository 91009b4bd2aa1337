# constraints.py
# Per-bus constraint records (reference / PV / PQ) checked against the tree.
# Bus ids in the input tables are 1-based; records are indexed 0-based.

from __future__ import annotations
import numpy as np
from dataclasses import dataclass
from typing import Tuple

from .errors import ConstraintError
from .topology import Topology

SLACK, PV, PQ = 0, 1, 2
KIND_NAMES = {SLACK: "reference", PV: "PV", PQ: "PQ"}


@dataclass(frozen=True)
class BusConstraint:
    bus: int                 # 0-based
    kind: int                # SLACK / PV / PQ
    s: complex = 0j          # fixed injection (PQ); p + 0j for PV
    vmin: float = 0.0
    vmax: float = np.inf
    vset: float = np.nan     # PV voltage magnitude set point
    pmin: float = -np.inf    # reference only
    pmax: float = np.inf
    qmin: float = -np.inf    # PV and reference
    qmax: float = np.inf


@dataclass(frozen=True)
class ConstraintCatalog:
    buses: Tuple[BusConstraint, ...]

    def __getitem__(self, k: int) -> BusConstraint:
        return self.buses[k]

    def __len__(self) -> int:
        return len(self.buses)

    @property
    def kinds(self) -> np.ndarray:
        return np.array([b.kind for b in self.buses], dtype=int)


def _rows(table, width: int, name: str) -> np.ndarray:
    if table is None:
        return np.zeros((0, width), dtype=complex)
    A = np.asarray(table, dtype=complex)
    if A.size == 0:
        return np.zeros((0, width), dtype=complex)
    if A.ndim == 1:
        A = A.reshape(1, -1)
    if A.ndim != 2 or A.shape[1] != width:
        raise ConstraintError(f"{name} rows must have {width} columns, got shape {A.shape}")
    if np.any(np.isnan(A)):
        raise ConstraintError(f"{name} table contains NaN")
    return A


def _bus_id(value: complex, n: int, name: str) -> int:
    b = value.real
    if value.imag != 0 or b != np.round(b) or not 1 <= b <= n:
        raise ConstraintError(f"{name} row names bus {value}, expected an integer in 1..{n}")
    return int(b) - 1


def _check_interval(lo: float, hi: float, what: str, bus: int):
    if lo > hi:
        raise ConstraintError(f"bus {bus + 1}: {what} interval [{lo}, {hi}] is empty")


def build_catalog(topology: Topology, pq, pv, ref) -> ConstraintCatalog:
    """
    pq : rows (bus, s, vmin, vmax)
    pv : rows (bus, p, vset, qmin, qmax)
    ref: (vmin, vmax, pmin, pmax, qmin, qmax) of the reference bus
    """
    n, root = topology.n, topology.root
    PQr = _rows(pq, 4, "PQ")
    PVr = _rows(pv, 5, "PV")
    R = _rows(ref, 6, "reference")
    if R.shape[0] != 1:
        raise ConstraintError(f"expected exactly one reference row, got {R.shape[0]}")

    records = {}

    def claim(k: int, kind: int):
        if k == root:
            raise ConstraintError(f"bus {k + 1} is the reference bus and cannot be {KIND_NAMES[kind]}")
        if k in records:
            raise ConstraintError(f"bus {k + 1} is declared both {KIND_NAMES[records[k].kind]} and {KIND_NAMES[kind]}")

    for row in PQr:
        k = _bus_id(row[0], n, "PQ")
        claim(k, PQ)
        vmin, vmax = row[2].real, row[3].real
        if vmin < 0:
            raise ConstraintError(f"bus {k + 1}: negative voltage magnitude bound {vmin}")
        _check_interval(vmin, vmax, "voltage magnitude", k)
        records[k] = BusConstraint(bus=k, kind=PQ, s=complex(row[1]), vmin=vmin, vmax=vmax)

    for row in PVr:
        k = _bus_id(row[0], n, "PV")
        claim(k, PV)
        if not topology.is_leaf(k):
            raise ConstraintError(f"bus {k + 1} has downstream buses and cannot be PV")
        vset = row[2].real
        if vset <= 0:
            raise ConstraintError(f"bus {k + 1}: PV set point must be positive, got {vset}")
        qmin, qmax = row[3].real, row[4].real
        _check_interval(qmin, qmax, "reactive power", k)
        records[k] = BusConstraint(bus=k, kind=PV, s=complex(row[1].real, 0.0), vmin=vset, vmax=vset,
                                   vset=vset, qmin=qmin, qmax=qmax)

    vmin, vmax, pmin, pmax, qmin, qmax = R[0].real
    _check_interval(vmin, vmax, "voltage magnitude", root)
    _check_interval(pmin, pmax, "real power", root)
    _check_interval(qmin, qmax, "reactive power", root)
    records[root] = BusConstraint(bus=root, kind=SLACK, vmin=vmin, vmax=vmax,
                                  pmin=pmin, pmax=pmax, qmin=qmin, qmax=qmax)

    for k in range(n):
        if k in records:
            continue
        if topology.is_leaf(k):
            raise ConstraintError(f"leaf bus {k + 1} has no PQ or PV constraint")
        # pass-through bus
        records[k] = BusConstraint(bus=k, kind=PQ)

    return ConstraintCatalog(buses=tuple(records[k] for k in range(n)))
