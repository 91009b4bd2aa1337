"""
Pytest configuration and shared fixtures for the test suite.
"""

import numpy as np
import pytest
import scipy.sparse as sp

from radial_opf import SolverOptions, TreeOPFSolver, make_five_bus_case


def impedance_matrix(n, edges):
    """Symmetric sparse impedance matrix from {(i, j): z} with 1-based bus ids."""
    rows, cols, vals = [], [], []
    for (i, j), z in edges.items():
        rows += [i - 1, j - 1]
        cols += [j - 1, i - 1]
        vals += [z, z]
    return sp.csr_matrix((vals, (rows, cols)), shape=(n, n), dtype=complex)


@pytest.fixture(scope="session")
def five_bus():
    """(objective, Z, pq, pv, ref) of the worked five-bus feeder."""
    return make_five_bus_case()


@pytest.fixture(scope="session")
def five_bus_solver(five_bus):
    objective, Z, pq, pv, ref = five_bus
    solver = TreeOPFSolver(objective, Z, pq, pv, ref, SolverOptions())
    solver.eliminate()
    return solver


@pytest.fixture(scope="session")
def five_bus_result(five_bus_solver):
    return five_bus_solver.run()


@pytest.fixture
def chain_case():
    """Three-bus chain 1 - 2 - 3 with a pass-through bus 2 and a PQ load at bus 3."""
    Z = impedance_matrix(3, {(1, 2): 0.01 + 0.02j, (2, 3): 0.02 + 0.01j})
    pq = [(3, -0.8 - 0.3j, 0.9, 1.1)]
    pv = []
    ref = (0.95, 1.05, -10, 10, -10, 10)

    def objective(v, s):
        return s[0].real

    return objective, Z, pq, pv, ref


@pytest.fixture(scope="session")
def rng():
    return np.random.default_rng(7)
