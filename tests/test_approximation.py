import numpy as np
import pytest

from radial_opf import ApproximationError, fit_relation, fit_samples, sample_relation
from radial_opf.constraints import PV, BusConstraint

# long, reactive feeder section: a visibly curved relation
Z_LONG = 0.05 + 0.1j
CON = BusConstraint(bus=1, kind=PV, s=1.0 + 0j, vmin=1.0, vmax=1.0, vset=1.0, qmin=-2.0, qmax=2.0)


def sampler(t):
    return sample_relation(1, CON, Z_LONG, [], t)


def test_residual_never_grows_with_density():
    residuals = [fit_samples(sampler, -2.0, 2.0, n, bus=1).residual for n in (9, 17, 33, 65, 129)]
    assert all(np.isfinite(residuals))
    for coarse, fine in zip(residuals, residuals[1:]):
        assert fine <= coarse
    assert residuals[-1] < residuals[0] / 100


def test_fit_relation_meets_tolerance():
    a = fit_relation(sampler, -2.0, 2.0, tolerance=1e-8, n_init=9, n_max=4097, bus=1)
    assert a.residual <= 1e-8
    # nested grids: 9, 17, 33, ...
    assert (a.size - 1) % 8 == 0
    rel = sampler(np.linspace(-1.9, 1.9, 13))
    s_fit, q_fit = a.evaluate(rel.vm_up)
    assert np.allclose(s_fit, rel.s_up, atol=1e-7)
    assert np.allclose(q_fit, rel.param, atol=1e-7)


def test_budget_exhausted_carries_best_fit():
    with pytest.raises(ApproximationError) as err:
        fit_relation(sampler, -2.0, 2.0, tolerance=0.0, n_init=9, n_max=40, bus=1)
    best = err.value.approximation
    assert best is not None
    assert best.size == 33
    assert err.value.residual == best.residual
    assert err.value.bus == 2


def test_domain_clipping_and_derivative():
    a = fit_samples(sampler, -2.0, 2.0, 65, bus=1)
    lo, hi = a.domain
    assert np.allclose(a.param([lo - 0.1, hi + 0.1]), a.param([lo, hi]))
    # q decreases as the far-end magnitude rises
    mid = 0.5 * (lo + hi)
    assert a.dparam(mid) < 0
    h = 1e-6
    fd = (a.param(mid + h) - a.param(mid - h)) / (2 * h)
    assert np.isclose(a.dparam(mid), fd, rtol=1e-4)


def test_single_point_relation():
    con = BusConstraint(bus=1, kind=PV, s=1.0 + 0j, vmin=1.0, vmax=1.0, vset=1.0, qmin=0.3, qmax=0.3)
    a = fit_samples(lambda t: sample_relation(1, con, Z_LONG, [], t), 0.3, 0.3, 33, bus=1)
    assert a.size == 1
    assert a.residual == 0.0
    lo, hi = a.domain
    assert lo == hi
    assert np.allclose(a.param(np.array([lo, lo + 1.0])), 0.3)
    assert np.allclose(a.dparam(lo), 0.0)
