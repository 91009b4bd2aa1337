# topology.py
# Tree model of a radial network built from its impedance matrix:
#  - validation (square, zero diagonal, symmetric, n-1 nonzero edges, connected)
#  - parent pointers / children lists rooted at the reference bus
#  - elimination order (every bus after all of its children, root last)

from __future__ import annotations
import numpy as np
import scipy.sparse as sp
from scipy.sparse import csgraph
from dataclasses import dataclass
from typing import Tuple, Iterator

from .errors import TopologyError

# ------- helpers -------

def _as_coo(Z) -> sp.coo_matrix:
    A = sp.coo_matrix(Z, dtype=complex) if sp.issparse(Z) else sp.coo_matrix(np.asarray(Z, dtype=complex))
    A.sum_duplicates()
    return A

# ------- model -------

@dataclass(frozen=True)
class Topology:
    n: int
    root: int
    parent: np.ndarray                       # (n,) parent index, -1 at the root
    children: Tuple[Tuple[int, ...], ...]    # children of each bus, ascending
    order: np.ndarray                        # elimination order, leaves first, root last
    z: np.ndarray                            # (n,) impedance of the parent edge, 0 at the root

    def is_leaf(self, k: int) -> bool:
        return len(self.children[k]) == 0

    def edges(self) -> Iterator[Tuple[int, int, complex]]:
        """(parent, child, z) for every edge, in top-down order."""
        for c in self.order[::-1]:
            if c != self.root:
                yield int(self.parent[c]), int(c), complex(self.z[c])

    def admittance_matrix(self) -> sp.csr_matrix:
        """Bus admittance matrix Y of the tree (no shunts)."""
        c = np.flatnonzero(self.parent >= 0)
        p = self.parent[c]
        y = 1.0 / self.z[c]
        rows = np.concatenate([p, c, p, c])
        cols = np.concatenate([p, c, c, p])
        vals = np.concatenate([y, y, -y, -y])
        return sp.csr_matrix((vals, (rows, cols)), shape=(self.n, self.n))


def build_topology(Z, n=None, root=0, rtol=1e-12) -> Topology:
    """
    Validate an n x n impedance matrix whose nonzero off-diagonal entries are the
    tree edges and return the rooted tree. Raises TopologyError on any violation.
    """
    A = _as_coo(Z)
    if A.shape[0] != A.shape[1]:
        raise TopologyError(f"impedance matrix must be square, got {A.shape}")
    N = A.shape[0]
    if n is not None and n != N:
        raise TopologyError(f"declared {n} buses but impedance matrix is {N} x {N}")
    if N == 0:
        raise TopologyError("network has no buses")
    if not 0 <= root < N:
        raise TopologyError(f"reference bus {root + 1} is not in 1..{N}")

    rows, cols, vals = A.row, A.col, A.data
    diag = rows == cols
    if np.any(vals[diag] != 0):
        raise TopologyError("diagonal of the impedance matrix must be zero")
    rows, cols, vals = rows[~diag], cols[~diag], vals[~diag]
    zero = vals == 0
    if np.any(zero):
        k = int(np.argmax(zero))
        raise TopologyError(f"zero impedance between buses {rows[k] + 1} and {cols[k] + 1}")

    upper = {(int(i), int(j)): z for i, j, z in zip(rows, cols, vals) if i < j}
    lower = {(int(j), int(i)): z for i, j, z in zip(rows, cols, vals) if i > j}
    if upper.keys() != lower.keys():
        odd = sorted(set(upper) ^ set(lower))[0]
        raise TopologyError(f"impedance matrix is not symmetric at buses {odd[0] + 1}, {odd[1] + 1}")
    for (i, j), zij in upper.items():
        if abs(zij - lower[(i, j)]) > rtol * abs(zij):
            raise TopologyError(f"impedance matrix is not symmetric at buses {i + 1}, {j + 1}")
    if len(upper) != N - 1:
        raise TopologyError(f"{len(upper)} edges for {N} buses; a tree needs {N - 1}")

    ei = np.array([k[0] for k in upper], dtype=int)
    ej = np.array([k[1] for k in upper], dtype=int)
    pattern = sp.csr_matrix((np.ones(ei.size), (ei, ej)), shape=(N, N))
    preorder, pred = csgraph.depth_first_order(pattern, root, directed=False, return_predecessors=True)
    if preorder.size != N:
        missing = sorted(set(range(N)) - set(preorder.tolist()))
        raise TopologyError(f"network is not connected; unreachable buses {[m + 1 for m in missing]}")

    parent = pred.astype(int)
    parent[root] = -1
    z = np.zeros(N, dtype=complex)
    children = [[] for _ in range(N)]
    for k in range(N):
        if k == root:
            continue
        p = parent[k]
        z[k] = upper[(min(k, p), max(k, p))]
        children[p].append(k)

    return Topology(n=N, root=root, parent=parent,
                    children=tuple(tuple(sorted(ch)) for ch in children),
                    order=preorder[::-1].astype(int), z=z)
