import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from burgers_opinf.core import ROMOperators, get_quadratic_terms
from burgers_opinf.errors import InvalidDimension, NoStableModelFound, SingularSystem
from burgers_opinf.training import (
    ModelForm,
    OpInfParams,
    build_data_matrix,
    ddt,
    find_stable_model,
    infer_operators,
    is_stable,
    solve_opinf_operators,
)


# =============================================================================
# MODEL FORM
# =============================================================================

def test_model_form_parsing():
    form = ModelForm.parse("LQI")
    assert (form.has_constant, form.has_linear, form.has_quadratic, form.has_inputs) == (False, True, True, True)
    assert ModelForm.parse("lqic").has_constant
    assert form.n_unknowns(3) == 3 + 6 + 1
    for bad in ("", "LX", "LQ2"):
        with pytest.raises(ValueError):
            ModelForm.parse(bad)


def test_data_matrix_layout(rng):
    X = rng.standard_normal((2, 5))
    U = rng.standard_normal((1, 5))
    D = build_data_matrix(X, U, ModelForm.parse("CLQI"))
    assert D.shape == (5, 1 + 2 + 3 + 1)
    assert_allclose(D[:, 0], 1.0)
    assert_allclose(D[:, 1:3], X.T)
    assert_allclose(D[:, 3:6], get_quadratic_terms(X).T)
    assert_allclose(D[:, 6], U[0])


# =============================================================================
# TIME DERIVATIVES
# =============================================================================

@pytest.mark.parametrize("order", ["2c", "2ex", "2im", "4c"])
def test_ddt_exact_for_quadratics(order):
    dt = 0.1
    t = dt * np.arange(12)
    X = np.vstack([t**2, 3 * t])
    dXdt, ind = ddt(X, dt, order)
    assert dXdt.shape == (2, ind.size)
    assert_allclose(dXdt[0], 2 * t[ind], atol=1e-10)
    assert_allclose(dXdt[1], 3.0)


def test_ddt_first_order_indices():
    X = np.arange(5.0)[None, :] ** 2
    dXdt, ind = ddt(X, 1.0, "1ex")
    assert_array_equal(ind, [0, 1, 2, 3])
    assert_allclose(dXdt[0], [1, 3, 5, 7])
    _, ind = ddt(X, 1.0, "1im")
    assert_array_equal(ind, [1, 2, 3, 4])


def test_ddt_respects_trajectory_boundaries():
    X = np.concatenate([np.arange(5.0), 100 + np.arange(5.0)])[None, :]
    dXdt, ind = ddt(X, 1.0, "2c", boundaries=[0, 5, 10])
    assert_array_equal(ind, [1, 2, 3, 6, 7, 8])
    assert_allclose(dXdt, 1.0)


def test_ddt_errors():
    with pytest.raises(ValueError):
        ddt(np.zeros((1, 10)), 1.0, "3c")
    with pytest.raises(InvalidDimension):
        ddt(np.zeros((1, 4)), 1.0, "4c")


# =============================================================================
# REGRESSION
# =============================================================================

@pytest.mark.parametrize("modelform", ["LQ", "LQI", "CLQI"])
def test_noiseless_recovery(rng, modelform):
    r, k = 3, 60
    form = ModelForm.parse(modelform)
    A = rng.standard_normal((r, r))
    F = rng.standard_normal((r, 6))
    B = rng.standard_normal((r, 1))
    c = rng.standard_normal(r)
    X = rng.standard_normal((r, k))
    U = rng.uniform(size=k)

    R = A @ X + F @ get_quadratic_terms(X)
    if form.has_inputs:
        R += B @ U[None, :]
    if form.has_constant:
        R += c[:, None]

    result = infer_operators(X, U, np.eye(r), OpInfParams(modelform=modelform), R=R)
    ops = result.operators
    assert result.rank == form.n_unknowns(r)
    assert result.misfit < 1e-16
    assert_allclose(ops.A, A, atol=1e-8)
    assert_allclose(ops.F, F, atol=1e-8)
    if form.has_inputs:
        assert_allclose(ops.B, B, atol=1e-8)
    else:
        assert ops.B is None
    if form.has_constant:
        assert_allclose(ops.c, c, atol=1e-8)


def test_discrete_recovery_within_trajectories(rng):
    A = np.array([[0.5, 0.1], [0.0, 0.3]])
    B = np.array([[1.0], [0.5]])
    trajectories, inputs = [], []
    for _ in range(2):
        K = 15
        u = rng.uniform(-1, 1, K)
        X = np.zeros((2, K))
        X[:, 0] = rng.standard_normal(2)
        for j in range(K - 1):
            X[:, j + 1] = A @ X[:, j] + B[:, 0] * u[j + 1]
        trajectories.append(X)
        inputs.append(u)
    X = np.concatenate(trajectories, axis=1)
    U = np.concatenate(inputs)

    params = OpInfParams(modelform="LI", modeltime="discrete")
    ops = infer_operators(X, U, np.eye(2), params, boundaries=[0, 15, 30]).operators
    assert ops.discrete
    assert_allclose(ops.A, A, atol=1e-10)
    assert_allclose(ops.B, B, atol=1e-10)


def test_continuous_with_estimated_derivatives():
    dt, K = 1e-2, 200
    t = dt * np.arange(K)
    X = np.vstack([np.exp(-t), 2 * np.exp(-2 * t)])
    params = OpInfParams(modelform="L", dt=dt, ddt_order="4c")
    ops = infer_operators(X, None, np.eye(2), params).operators
    assert_allclose(ops.A, np.diag([-1.0, -2.0]), atol=1e-5)

    with pytest.raises(ValueError):
        infer_operators(X, None, np.eye(2), OpInfParams(modelform="L"))


def test_rank_deficient_minimum_norm(rng):
    X = np.vstack([rng.standard_normal(20), np.zeros(20)])
    R = -X
    result = infer_operators(X, None, np.eye(2), OpInfParams(modelform="L"), R=R)
    assert result.rank == 1
    assert_allclose(result.operators.A, [[-1.0, 0.0], [0.0, 0.0]], atol=1e-10)

    with pytest.raises(SingularSystem):
        infer_operators(X, None, np.eye(2), OpInfParams(modelform="L", strict=True), R=R)


def test_regularization_matches_ridge_and_shrinks(rng):
    D = rng.standard_normal((30, 5))
    Y = rng.standard_normal((30, 2))
    reg = np.full(5, 2.0)
    O, rank = solve_opinf_operators(D, Y, reg)
    expected = np.linalg.solve(D.T @ D + 2.0 * np.eye(5), D.T @ Y).T
    assert rank == 5
    assert_allclose(O, expected, atol=1e-10)

    O_ls, _ = solve_opinf_operators(D, Y)
    assert np.linalg.norm(O) < np.linalg.norm(O_ls)


def test_input_shape_checks(rng):
    X = rng.standard_normal((3, 10))
    with pytest.raises(ValueError):
        infer_operators(X, None, np.eye(3), OpInfParams(modelform="LI"), R=X)
    with pytest.raises(InvalidDimension):
        infer_operators(X, np.ones(9), np.eye(3), OpInfParams(modelform="LI"), R=X)
    with pytest.raises(InvalidDimension):
        infer_operators(X, None, np.eye(4), OpInfParams(modelform="L"), R=X)


# =============================================================================
# STABILITY
# =============================================================================

def test_is_stable():
    assert is_stable(ROMOperators(A=np.diag([-1.0, -2.0])))
    assert not is_stable(ROMOperators(A=np.diag([-1.0, 0.0])))
    assert is_stable(ROMOperators(A=np.diag([0.5, -0.9]), discrete=True))
    assert not is_stable(ROMOperators(A=np.diag([0.5, 1.0]), discrete=True))


def test_find_stable_model_decrements(rng):
    X = rng.standard_normal((2, 30))
    R = np.diag([-1.0, 1.0]) @ X
    stable = find_stable_model(X, None, np.eye(2), OpInfParams(modelform="L"), 2, R=R)
    assert stable.r == 1
    assert_allclose(stable.operators.A, [[-1.0]], atol=1e-10)


def test_find_stable_model_failure(rng):
    X = rng.standard_normal((2, 30))
    R = np.diag([1.0, 2.0]) @ X
    with pytest.raises(NoStableModelFound) as excinfo:
        find_stable_model(X, None, np.eye(2), OpInfParams(modelform="L"), 2, R=R)
    assert excinfo.value.r_max == 2

    with pytest.raises(InvalidDimension):
        find_stable_model(X, None, np.eye(2), OpInfParams(modelform="L"), 3, R=R)
