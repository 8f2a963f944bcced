import numpy as np
import pytest
import scipy.sparse as sp

from nlfem.core import ConfigurationError, LinearSolveError, NonConvergenceError
from nlfem.solvers import (
    DEFAULT_LINE_SEARCH,
    CallbackProblem,
    ConvergedReason,
    LineSearchType,
    NonlinearSolver,
    NonlinearSolverConfig,
    NonlinearSolverType,
    SolverState,
)
from nlfem.solvers.nonlinear_solver import polak_ribiere

ALL_FAMILIES = [t.value for t in NonlinearSolverType]
SQRT2 = np.sqrt(2.0)


def sqrt2_problem():
    return CallbackProblem(lambda x: x**2 - 2.0, lambda x: np.array([[2.0 * x[0]]]))


class GradientProblem:
    """F = grad E for E = sum(x^4/4 + x^2/2) + 1/2 x.L.x - b.x (SPD Jacobian)."""

    def __init__(self, n=4):
        self.L = sp.diags([np.full(n, 1.0), np.full(n - 1, -0.5), np.full(n - 1, -0.5)],
                          [0, -1, 1]).tocsr()
        self.b = np.linspace(1.0, 2.0, n)

    def residual(self, x):
        return x**3 + x + self.L @ x - self.b

    def jacobian(self, x):
        return sp.diags(3.0 * x**2 + 1.0).tocsr() + self.L


def make_solver(solver_type="newton", **kwargs):
    solver = NonlinearSolver()
    solver.init(NonlinearSolverConfig(solver_type=solver_type, **kwargs))
    return solver


def test_newton_sqrt2():
    res = make_solver("newton", abs_tol=1e-10).solve(sqrt2_problem(), [1.0])
    assert res.reason is ConvergedReason.CONVERGED_FNORM_ABS
    assert res.iterations <= 10
    assert np.isclose(res.x[0], 1.41421356, atol=1e-8)
    assert res.residual_norms[-1] < 1e-10
    # quadratic convergence
    r = res.residual_norms
    assert r[-1] < r[-2] ** 1.5


@pytest.mark.parametrize("family", ALL_FAMILIES)
def test_every_family_sqrt2(family):
    res = make_solver(family, abs_tol=1e-10, max_iters=50).solve(sqrt2_problem(), [1.0])
    assert res.converged, (family, res.reason)
    assert np.isclose(res.x[0], SQRT2, atol=1e-8)


def test_lbfgs_bounded_iterations():
    newton = make_solver("newton", abs_tol=1e-10).solve(sqrt2_problem(), [1.0])
    lbfgs = make_solver("lbfgs", abs_tol=1e-10, max_iters=50).solve(sqrt2_problem(), [1.0])
    assert lbfgs.converged
    assert newton.iterations <= lbfgs.iterations <= 25


@pytest.mark.parametrize("family", ALL_FAMILIES)
def test_every_family_gradient_system(family):
    prob = GradientProblem()
    res = make_solver(family, abs_tol=1e-9, rel_tol=0.0, max_iters=60).solve(prob, np.zeros(4))
    assert res.converged, (family, res.reason)
    assert np.linalg.norm(prob.residual(res.x)) < 1e-8


@pytest.mark.parametrize("line_search", ["basic", "bt", "cp", "l2"])
def test_newton_with_each_line_search(line_search):
    prob = GradientProblem()
    res = make_solver("newtonls", line_search=line_search, abs_tol=1e-10,
                      max_iters=60).solve(prob, np.zeros(4))
    assert res.converged


@pytest.mark.parametrize("family", ["newtonls", "newtontr"])
def test_rosenbrock_globalised(family):
    prob = CallbackProblem(
        lambda x: np.array([10.0 * (x[1] - x[0] ** 2), 1.0 - x[0]]),
        lambda x: np.array([[-20.0 * x[0], 10.0], [-1.0, 0.0]]),
    )
    res = make_solver(family, abs_tol=1e-10, max_iters=100).solve(prob, [-1.2, 1.0])
    assert res.converged
    np.testing.assert_allclose(res.x, [1.0, 1.0], atol=1e-8)


@pytest.mark.parametrize("family", ALL_FAMILIES)
def test_default_line_search_mapping(family):
    solver = make_solver(family)
    stype = NonlinearSolverType(family)
    assert solver.line_search_type is DEFAULT_LINE_SEARCH[stype]
    if stype is NonlinearSolverType.NEWTONTR:
        assert solver.line_search is None


def test_default_table():
    expected = {"newton": "basic", "newtonls": "backtrace", "lbfgs": "cp",
                "broyden": "basic", "badbroyden": "l2", "newtoncg": "cp",
                "newtongmres": "l2", "newtontr": "none"}
    assert {k.value: v.value for k, v in DEFAULT_LINE_SEARCH.items()} == expected


def test_trust_region_ignores_requested_line_search():
    solver = make_solver("newtontr", line_search="bt")
    assert solver.line_search_type is LineSearchType.NONE


def scaled_identity_problem():
    """Linear SPD residual A x - b with a Jacobian approximated by 3 I.

    Newton with that Jacobian is a Richardson iteration (rate ~0.6); NCG with
    an exact line search is plain CG and NGMRES is GMRES, both finite on 4 dofs.
    """
    A = np.diag(np.full(4, 2.0)) + np.diag(np.full(3, -0.5), 1) + np.diag(np.full(3, -0.5), -1)
    b = np.array([1.0, 2.0, 3.0, 4.0])
    return CallbackProblem(lambda x: A @ x - b, lambda x: 3.0 * np.eye(4)), A, b


@pytest.mark.parametrize("family,line_search", [("newtoncg", "default"),
                                                ("newtongmres", "basic")])
def test_ncg_and_ngmres_differ_from_newton(family, line_search):
    prob, A, b = scaled_identity_problem()
    newton = make_solver("newton", abs_tol=1e-10, max_iters=100).solve(prob, np.zeros(4))
    res = make_solver(family, line_search=line_search, abs_tol=1e-10,
                      max_iters=100).solve(prob, np.zeros(4))
    assert newton.converged and res.converged
    assert newton.iterations > 20
    assert res.iterations <= 8
    np.testing.assert_allclose(res.x, np.linalg.solve(A, b), atol=1e-9)


def test_polak_ribiere_coefficient():
    z_old, F_old = np.array([1.0, 1.0]), np.array([1.0, 1.0])
    assert polak_ribiere(np.array([1.0, 0.0]), np.array([2.0, 0.0]), z_old, F_old) == 0.5
    # negative PR values restart with the preconditioned steepest descent
    assert polak_ribiere(np.array([1.0, 0.0]), np.array([0.0, 0.0]), z_old, F_old) == 0.0
    assert polak_ribiere(z_old, F_old, np.zeros(2), F_old) == 0.0


@pytest.mark.parametrize("family", ["newtoncg", "newtongmres"])
def test_ncg_ngmres_use_configured_inner_solve(family):
    assert make_solver(family).linear.params.backend == "direct"
    solver = make_solver(family, abs_tol=1e-10, linear={"backend": "gmres"})
    res = solver.solve(GradientProblem(), np.zeros(4))
    assert res.converged and res.linear_iterations > 0


def test_ncg_with_cg_inner_solve_fails_fast_on_indefinite_jacobian():
    # F(0) = [-1, 0] gives p.Jp = 0 on the first cg iteration
    prob = CallbackProblem(lambda x: np.array([x[1] - 1.0, x[0]]),
                           lambda x: np.array([[0.0, 1.0], [1.0, 0.0]]))
    solver = make_solver("newtoncg", linear={"backend": "cg", "preconditioner": "none"})
    with np.errstate(divide="ignore", invalid="ignore"):
        res = solver.solve(prob, [0.0, 0.0])
    assert res.reason is ConvergedReason.DIVERGED_LINEAR_SOLVE
    assert res.linear_iterations <= 2


def test_solve_before_init():
    solver = NonlinearSolver()
    assert solver.state is SolverState.UNCONFIGURED
    with pytest.raises(ConfigurationError):
        solver.solve(sqrt2_problem(), [1.0])


def test_state_transitions_and_reuse():
    solver = make_solver("newton", abs_tol=1e-10)
    assert solver.state is SolverState.READY
    first = solver.solve(sqrt2_problem(), [1.0])
    assert solver.state is SolverState.CONVERGED
    second = solver.solve(sqrt2_problem(), [-1.0])
    assert first.converged and second.converged
    assert np.isclose(second.x[0], -SQRT2)


def test_singular_jacobian():
    prob = CallbackProblem(
        lambda x: np.array([x[0] + x[1] - 1.0, 2.0 * (x[0] + x[1]) - 3.0]),
        lambda x: np.array([[1.0, 1.0], [2.0, 2.0]]),
    )
    res = make_solver("newton").solve(prob, [0.0, 0.0])
    assert res.reason is ConvergedReason.DIVERGED_LINEAR_SOLVE
    assert res.state is SolverState.DIVERGED
    with pytest.raises(LinearSolveError):
        res.raise_for_status()


def cube_problem():
    # Newton only contracts linearly: x_{k+1} = 2/3 x_k
    return CallbackProblem(lambda x: x**3, lambda x: np.array([[3.0 * x[0] ** 2]]))


def test_max_iterations():
    solver = make_solver("newton", abs_tol=1e-12, rel_tol=1e-12, max_iters=3)
    res = solver.solve(cube_problem(), [1.0])
    assert res.reason is ConvergedReason.DIVERGED_MAX_IT
    assert res.state is SolverState.MAX_ITERATIONS_REACHED
    assert solver.state is SolverState.MAX_ITERATIONS_REACHED
    assert res.iterations == 3 and len(res.residual_norms) == 4
    with pytest.raises(NonConvergenceError) as err:
        res.raise_for_status()
    assert err.value.reason is ConvergedReason.DIVERGED_MAX_IT


def test_step_tolerance():
    res = make_solver("newton", abs_tol=1e-12, rel_tol=1e-12, step_tol=0.6).solve(
        cube_problem(), [1.0])
    assert res.reason is ConvergedReason.CONVERGED_SNORM_RELATIVE
    assert res.iterations == 1


def test_relative_tolerance():
    res = make_solver("newton", abs_tol=0.0, rel_tol=1e-3).solve(cube_problem(), [1.0])
    assert res.reason is ConvergedReason.CONVERGED_FNORM_RELATIVE
    assert res.residual_norms[-1] < 1e-3 * res.residual_norms[0]


def test_function_eval_budget():
    res = make_solver("newton", abs_tol=1e-12, rel_tol=1e-12, max_func_evals=3).solve(
        cube_problem(), [1.0])
    assert res.reason is ConvergedReason.DIVERGED_FUNCTION_COUNT
    assert res.function_evals == 3


def test_nan_residual():
    # the first Newton step from x = 3 lands at x < 0
    prob = CallbackProblem(np.log, lambda x: np.array([[1.0 / x[0]]]))
    with np.errstate(invalid="ignore"):
        res = make_solver("newton").solve(prob, [3.0])
    assert res.reason is ConvergedReason.DIVERGED_FNORM_NAN


def test_already_converged_initial_guess():
    res = make_solver("newton").solve(sqrt2_problem(), [SQRT2])
    assert res.converged and res.iterations == 0


def test_monitor():
    seen = []
    solver = make_solver("newton", abs_tol=1e-10)
    solver.add_monitor(lambda it, fnorm: seen.append((it, fnorm)))
    res = solver.solve(sqrt2_problem(), [1.0])
    assert [it for it, _ in seen] == list(range(res.iterations + 1))
    assert [f for _, f in seen] == res.residual_norms


def test_config_from_dict():
    cfg = NonlinearSolverConfig.from_dict({
        "type": "NewtonLS", "linesearch": "bt", "abs-tolerance": 1e-8,
        "rel-tolerance": 1e-9, "s-tolerance": 0.0, "maxiters": 30, "linesearch-order": 2,
    })
    assert cfg.solver_type is NonlinearSolverType.NEWTONLS
    assert cfg.line_search is LineSearchType.BACKTRACE
    assert (cfg.abs_tol, cfg.max_iters, cfg.line_search_order) == (1e-8, 30, 2)


@pytest.mark.parametrize("block", [
    {"type": "secant"},
    {"linesearch": "golden"},
    {"maxiters": 0},
    {"linesearch-order": 4},
    {"abs-tolerance": -1.0},
    {"bogus-key": 1},
])
def test_config_rejects_bad_blocks(block):
    with pytest.raises(ConfigurationError):
        NonlinearSolverConfig.from_dict(block)


def test_init_rejects_plain_dict():
    with pytest.raises(ConfigurationError):
        NonlinearSolver().init({"type": "newton"})
