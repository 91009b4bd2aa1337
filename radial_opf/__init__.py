"""Optimal power flow on restricted radial networks by tree elimination."""

from .approximation import Approximation, fit_relation, fit_samples
from .config import SolverOptions
from .constraints import PQ, PV, SLACK, BusConstraint, ConstraintCatalog, build_catalog
from .elimination import FeasibleRelation, eliminate_tree, sample_relation
from .back_substitution import back_substitute
from .errors import (
    ApproximationError,
    ApproximationWarning,
    ConstraintError,
    ConvergenceWarning,
    InfeasibleProblemError,
    InfeasibleSubtreeError,
    NumericInstabilityWarning,
    RadialOPFError,
    TopologyError,
)
from .topology import Topology, build_topology
from .tree_opf_solvers import TreeOPFSolver, make_five_bus_case, power_injections, solve_radial_opf, trust_region_refine

__all__ = [
    "Approximation", "fit_relation", "fit_samples",
    "SolverOptions",
    "PQ", "PV", "SLACK", "BusConstraint", "ConstraintCatalog", "build_catalog",
    "FeasibleRelation", "eliminate_tree", "sample_relation",
    "back_substitute",
    "ApproximationError", "ApproximationWarning", "ConstraintError", "ConvergenceWarning",
    "InfeasibleProblemError", "InfeasibleSubtreeError", "NumericInstabilityWarning",
    "RadialOPFError", "TopologyError",
    "Topology", "build_topology",
    "TreeOPFSolver", "make_five_bus_case", "power_injections", "solve_radial_opf", "trust_region_refine",
]
