# errors.py
# Exception and warning taxonomy for the radial OPF solver.
# Structural errors are raised before any numeric work; soft failures are warnings.


class RadialOPFError(Exception):
    """Base class for all solver errors."""


class TopologyError(RadialOPFError):
    """Impedance matrix does not describe a tree rooted at the reference bus."""


class ConstraintError(RadialOPFError):
    """Malformed or conflicting PQ / PV / reference constraints."""


class InfeasibleSubtreeError(RadialOPFError):
    """Feasible set of a subtree collapsed to empty during elimination."""

    def __init__(self, bus, message="feasible set is empty"):
        self.bus = bus  # 1-based
        super().__init__(f"bus {bus}: {message}")


class ApproximationError(RadialOPFError):
    """Fit residual above tolerance once the sample budget is spent."""

    def __init__(self, bus, residual, tolerance, approximation=None):
        self.bus = bus
        self.residual = residual
        self.tolerance = tolerance
        self.approximation = approximation  # best fit found, usable as a fallback
        super().__init__(f"bus {bus}: residual {residual:.3e} above tolerance {tolerance:.3e}")


class InfeasibleProblemError(RadialOPFError):
    """No reference-bus sample yields a finite objective."""


class NumericInstabilityWarning(RuntimeWarning):
    pass


class ApproximationWarning(RuntimeWarning):
    pass


class ConvergenceWarning(RuntimeWarning):
    pass
