from dataclasses import dataclass


@dataclass
class SolverOptions:
    # curve approximator
    tolerance: float = 1e-9          # residual target of every relation fit
    initial_samples: int = 33        # first sampling density per relation
    max_samples: int = 4097          # sample budget per relation (nested grids 33, 65, ... 4097)
    width_tol: float = 1e-12         # parameter intervals narrower than this are a single point
    # physical windows for unbounded intervals
    vm_floor: float = 0.5            # pu
    vm_ceil: float = 1.5             # pu
    q_limit: float = 1e3             # pu, caps infinite PV reactive bounds
    # reference bus search
    root_samples: int = 2001
    bound_tol: float = 1e-9          # slack on reference p/q bounds
    refine_max_it: int = 60          # trust-region iteration budget
    refine_xtol: float = 1e-12       # stop once the trust radius is below this
    # back-substitution
    polish_it: int = 4               # Newton steps on |v_up(param)| = |v_parent|
    instability_tol: float = 1e-6    # magnitude mismatch that triggers NumericInstabilityWarning
    condition_limit: float = 1e8     # |d param / d vm_up| that counts as ill-conditioned
    strict: bool = False             # raise ApproximationError instead of warning
