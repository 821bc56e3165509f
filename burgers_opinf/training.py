"""
Operator inference: learning reduced operators from snapshot data.

This module handles:
- Model form parsing (constant, linear, quadratic and input terms)
- Finite-difference time derivative estimates
- Data matrix assembly
- Regularized least squares solving
- Stability-guarded search for the largest usable basis size

The learned continuous-time model is

    d/dt x = c + A x + F q(x) + B u

and the discrete-time model is x_{k+1} = c + A x_k + F q(x_k) + B u_k, where
q(x) are the non-redundant quadratic terms (core.get_quadratic_terms).
"""

import logging
import warnings
import numpy as np
import scipy.linalg as la
from dataclasses import dataclass
from typing import Optional

from .core import ROMOperators, get_quadratic_terms, n_quadratic
from .errors import InvalidDimension, NoStableModelFound, SingularSystem

MODEL_TERMS = "CLQI"
MODEL_TIMES = ("continuous", "discrete")


# =============================================================================
# MODEL CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class ModelForm:
    """Which terms a reduced model contains."""
    has_constant: bool = False
    has_linear: bool = True
    has_quadratic: bool = True
    has_inputs: bool = True

    @classmethod
    def parse(cls, modelform: str) -> "ModelForm":
        """Parse a string such as "LQI" or "LQIC"."""
        form = modelform.upper()
        unknown = set(form) - set(MODEL_TERMS)
        if not form or unknown:
            raise ValueError(f"Invalid model form '{modelform}' (use letters from {MODEL_TERMS})")
        return cls(
            has_constant='C' in form,
            has_linear='L' in form,
            has_quadratic='Q' in form,
            has_inputs='I' in form,
        )

    def n_unknowns(self, r: int, m: int = 1) -> int:
        """Columns of the data matrix for basis size r and m inputs."""
        return (int(self.has_constant) + r * int(self.has_linear)
                + n_quadratic(r) * int(self.has_quadratic) + m * int(self.has_inputs))


@dataclass
class OpInfParams:
    """Regression settings."""
    modelform: str = "LQI"
    modeltime: str = "continuous"
    dt: Optional[float] = None
    ddt_order: str = "1ex"
    reg_lin: float = 0.0
    reg_quad: float = 0.0
    strict: bool = False

    @classmethod
    def from_config(cls, cfg) -> "OpInfParams":
        return cls(
            modelform=cfg.modelform, modeltime=cfg.modeltime, dt=cfg.dt,
            ddt_order=cfg.ddt_order, reg_lin=cfg.reg_lin, reg_quad=cfg.reg_quad,
            strict=cfg.strict,
        )


@dataclass
class InferenceResult:
    """Learned operators plus least-squares diagnostics."""
    operators: ROMOperators
    rank: int           # Numerical rank of the data matrix
    cond: float         # Condition number of the data matrix
    misfit: float       # Squared Frobenius misfit ||D O^T - Y||^2


@dataclass
class StableModel:
    """Result of the stability-guarded search."""
    r: int
    operators: ROMOperators
    result: InferenceResult


# =============================================================================
# TIME DERIVATIVES
# =============================================================================

def _ddt_single(X: np.ndarray, dt: float, order: str) -> tuple:
    """Finite-difference derivative of one trajectory and its column indices."""
    k = X.shape[1]
    needed = {"1ex": 2, "1im": 2, "2c": 3, "2ex": 3, "2im": 3, "4c": 5}
    if order not in needed:
        raise ValueError(f"Unknown ddt order: {order}")
    if k < needed[order]:
        raise InvalidDimension(f"ddt order {order} needs {needed[order]} snapshots, got {k}")

    if order == "1ex":
        return (X[:, 1:] - X[:, :-1]) / dt, np.arange(0, k - 1)
    elif order == "1im":
        return (X[:, 1:] - X[:, :-1]) / dt, np.arange(1, k)
    elif order == "2c":
        return (X[:, 2:] - X[:, :-2]) / (2 * dt), np.arange(1, k - 1)
    elif order == "2ex":
        return (-3 * X[:, :-2] + 4 * X[:, 1:-1] - X[:, 2:]) / (2 * dt), np.arange(0, k - 2)
    elif order == "2im":
        return (3 * X[:, 2:] - 4 * X[:, 1:-1] + X[:, :-2]) / (2 * dt), np.arange(2, k)
    else:  # 4c
        return (X[:, :-4] - 8 * X[:, 1:-3] + 8 * X[:, 3:-1] - X[:, 4:]) / (12 * dt), np.arange(2, k - 2)


def ddt(X: np.ndarray, dt: float, order: str = "1ex", boundaries=None) -> tuple:
    """
    Estimate time derivatives of column-wise snapshots.

    Parameters
    ----------
    X : np.ndarray
        Snapshots (r, k), possibly several trajectories stacked column-wise.
    dt : float
        Time step between consecutive columns.
    order : str
        "1ex", "1im", "2c", "2ex", "2im" or "4c".
    boundaries : array-like, optional
        Column offsets of the stacked trajectories; stencils never cross them.

    Returns
    -------
    dXdt : np.ndarray
        Derivative estimates.
    ind : np.ndarray
        Columns of X that the estimates belong to.
    """
    if boundaries is None:
        boundaries = [0, X.shape[1]]

    dXdt_list, ind_list = [], []
    for start, end in zip(boundaries[:-1], boundaries[1:]):
        dXdt, ind = _ddt_single(X[:, start:end], dt, order)
        dXdt_list.append(dXdt)
        ind_list.append(ind + start)

    return np.concatenate(dXdt_list, axis=1), np.concatenate(ind_list)


# =============================================================================
# LEAST SQUARES
# =============================================================================

def build_data_matrix(Xhat: np.ndarray, U: Optional[np.ndarray], form: ModelForm) -> np.ndarray:
    """
    Build the OpInf data matrix from reduced coordinates.

    Parameters
    ----------
    Xhat : np.ndarray
        Reduced coordinates of shape (r, K).
    U : np.ndarray or None
        Inputs of shape (m, K).
    form : ModelForm
        Terms to include.

    Returns
    -------
    np.ndarray
        Data matrix of shape (K, d), row k = [1, x_k, q(x_k), u_k] restricted
        to the enabled terms.
    """
    K = Xhat.shape[1]
    blocks = []
    if form.has_constant:
        blocks.append(np.ones((K, 1)))
    if form.has_linear:
        blocks.append(Xhat.T)
    if form.has_quadratic:
        blocks.append(get_quadratic_terms(Xhat).T)
    if form.has_inputs:
        blocks.append(U.T)
    return np.concatenate(blocks, axis=1)


def _regularizer(form: ModelForm, r: int, m: int, reg_lin: float, reg_quad: float) -> np.ndarray:
    """Diagonal Tikhonov weights in data-matrix column order."""
    reg = []
    if form.has_constant:
        reg.append(np.full(1, reg_lin))
    if form.has_linear:
        reg.append(np.full(r, reg_lin))
    if form.has_quadratic:
        reg.append(np.full(n_quadratic(r), reg_quad))
    if form.has_inputs:
        reg.append(np.full(m, reg_lin))
    return np.concatenate(reg)


def solve_opinf_operators(
    D: np.ndarray, Y: np.ndarray, reg: Optional[np.ndarray] = None,
    strict: bool = False, logger: Optional[logging.Logger] = None,
) -> tuple:
    """
    Solve the (regularized) OpInf least squares problem.

    Minimizes ||D @ O.T - Y||_F^2 + sum_j reg_j ||O[:, j]||^2.

    Without regularization the minimum-norm solution is returned, so a
    rank-deficient D is tolerated. With regularization the normal equations
    are solved; if they are singular or ill-conditioned the equivalent
    augmented least squares problem is solved instead.

    Parameters
    ----------
    D : np.ndarray
        Data matrix of shape (K, d).
    Y : np.ndarray
        Target matrix of shape (K, r).
    reg : np.ndarray, optional
        Regularization weights of length d.
    strict : bool
        Raise SingularSystem instead of falling back.
    logger : logging.Logger, optional

    Returns
    -------
    O : np.ndarray
        Operator matrix of shape (r, d).
    rank : int
        Numerical rank of D.
    """
    logger = logger or logging.getLogger(__name__)
    d = D.shape[1]

    if reg is None or not np.any(reg > 0):
        O, _, rank, _ = la.lstsq(D, Y)
        if rank < d:
            if strict:
                raise SingularSystem(f"Data matrix is rank deficient (rank {rank} < {d})")
            logger.warning(f"  Data matrix rank {rank} < {d}; using minimum-norm solution")
        return O.T, int(rank)

    rank = int(np.linalg.matrix_rank(D))
    DtD = D.T @ D + np.diag(reg)
    DtY = D.T @ Y
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", la.LinAlgWarning)
            O = la.solve(DtD, DtY, assume_a='pos')
    except (np.linalg.LinAlgError, la.LinAlgWarning) as e:
        if strict:
            raise SingularSystem(f"Regularized normal equations are singular: {e}") from e
        logger.warning(f"  Normal equations ill-conditioned ({e}); solving augmented system")
        D_aug = np.vstack([D, np.diag(np.sqrt(reg))])
        Y_aug = np.vstack([Y, np.zeros((d, Y.shape[1]))])
        O = la.lstsq(D_aug, Y_aug)[0]

    return O.T, rank


def _split_operators(O: np.ndarray, r: int, m: int, form: ModelForm,
                     discrete: bool) -> ROMOperators:
    """Cut the stacked operator matrix into its blocks."""
    i = 0
    c = A = F = B = None
    if form.has_constant:
        c = O[:, i]
        i += 1
    if form.has_linear:
        A = O[:, i:i + r]
        i += r
    if form.has_quadratic:
        s = n_quadratic(r)
        F = O[:, i:i + s]
        i += s
    if form.has_inputs:
        B = O[:, i:i + m]
        i += m
    if A is None:
        A = np.zeros((r, r))
    return ROMOperators(A=A, F=F, B=B, c=c, discrete=discrete)


# =============================================================================
# OPERATOR INFERENCE
# =============================================================================

def infer_operators(
    X: np.ndarray, U: Optional[np.ndarray], Vr: np.ndarray, params: OpInfParams,
    R: Optional[np.ndarray] = None, boundaries=None,
    logger: Optional[logging.Logger] = None,
) -> InferenceResult:
    """
    Learn reduced operators from full-order snapshots.

    Parameters
    ----------
    X : np.ndarray
        State snapshots (n, k).
    U : np.ndarray or None
        Inputs aligned with the columns of X, shape (k,) or (m, k). Required
        when the model form contains 'I'.
    Vr : np.ndarray
        Basis (n, r).
    params : OpInfParams
        Model form, time setting, derivative order and regularization.
    R : np.ndarray, optional
        Time derivatives aligned with X (continuous models). If omitted they
        are estimated from the projected snapshots with params.ddt_order.
    boundaries : array-like, optional
        Column offsets of the trajectories stacked in X.
    logger : logging.Logger, optional

    Returns
    -------
    InferenceResult
    """
    logger = logger or logging.getLogger(__name__)
    form = ModelForm.parse(params.modelform)
    if params.modeltime not in MODEL_TIMES:
        raise ValueError(f"Unknown model time: {params.modeltime}")

    n, r = Vr.shape
    if X.shape[0] != n:
        raise InvalidDimension(f"Snapshots have {X.shape[0]} rows, basis has {n}")
    k = X.shape[1]
    if boundaries is None:
        boundaries = np.array([0, k])

    m = 0
    if form.has_inputs:
        if U is None:
            raise ValueError("Model form includes inputs but U is None")
        U = np.asarray(U, dtype=float)
        if U.ndim == 1:
            U = U[None, :]
        m = U.shape[0]
        if U.shape[1] != k:
            raise InvalidDimension(f"U has {U.shape[1]} columns, X has {k}")

    Xhat = Vr.T @ X

    if params.modeltime == "continuous":
        if R is not None:
            if R.shape != X.shape:
                raise InvalidDimension(f"R has shape {R.shape}, X has {X.shape}")
            rhs = Vr.T @ R
            ind = np.arange(k)
        else:
            if params.dt is None:
                raise ValueError("params.dt is required to estimate time derivatives")
            rhs, ind = ddt(Xhat, params.dt, params.ddt_order, boundaries)
        X_data = Xhat[:, ind]
        U_data = U[:, ind] if form.has_inputs else None
    else:
        ind_from = np.concatenate([np.arange(s, e - 1) for s, e in zip(boundaries[:-1], boundaries[1:])])
        X_data = Xhat[:, ind_from]
        rhs = Xhat[:, ind_from + 1]
        # u_k drives x_k -> x_{k+1} and is stored with x_{k+1}
        U_data = U[:, ind_from + 1] if form.has_inputs else None

    D = build_data_matrix(X_data, U_data, form)
    Y = rhs.T
    reg = _regularizer(form, r, m, params.reg_lin, params.reg_quad)

    O, rank = solve_opinf_operators(D, Y, reg, strict=params.strict, logger=logger)

    svals = la.svdvals(D)
    cond = svals[0] / svals[-1] if svals[-1] > 0 else np.inf
    misfit = float(np.sum((D @ O.T - Y)**2))
    logger.debug(f"  [DIAG] r={r}: data matrix {D.shape}, rank={rank}, cond={cond:.2e}, misfit={misfit:.2e}")

    operators = _split_operators(O, r, max(m, 1), form, params.modeltime == "discrete")
    return InferenceResult(operators=operators, rank=rank, cond=cond, misfit=misfit)


# =============================================================================
# STABILITY-GUARDED SEARCH
# =============================================================================

def is_stable(operators: ROMOperators) -> bool:
    """
    Check the linear part of a model.

    Continuous-time: all eigenvalues of A have strictly negative real part.
    Discrete-time: all eigenvalues of A lie strictly inside the unit circle.
    """
    lam = operators.eigenvalues()
    if not np.all(np.isfinite(lam)):
        return False
    if operators.discrete:
        return bool(np.all(np.abs(lam) < 1))
    return bool(np.all(np.real(lam) < 0))


def find_stable_model(
    X: np.ndarray, U: Optional[np.ndarray], V: np.ndarray, params: OpInfParams,
    r_max: int, R: Optional[np.ndarray] = None, boundaries=None,
    logger: Optional[logging.Logger] = None,
) -> StableModel:
    """
    Infer operators at r_max and decrease r until the model is stable.

    Parameters
    ----------
    V : np.ndarray
        Basis whose leading columns are used, shape (n, >= r_max).
    r_max : int
        Largest basis size to try.

    Returns
    -------
    StableModel
        The largest r <= r_max whose inferred linear operator is stable.

    Raises
    ------
    NoStableModelFound
        If no r in 1..r_max gives a stable model.
    """
    logger = logger or logging.getLogger(__name__)
    if not 1 <= r_max <= V.shape[1]:
        raise InvalidDimension(f"r_max={r_max} outside 1..{V.shape[1]}")

    for r in range(r_max, 0, -1):
        result = infer_operators(X, U, V[:, :r], params, R=R, boundaries=boundaries, logger=logger)
        if is_stable(result.operators):
            logger.info(f"  Stable inferred model at r = {r}")
            return StableModel(r=r, operators=result.operators, result=result)
        logger.warning(f"  Order r = {r} is unstable. Decrementing max order.")

    raise NoStableModelFound(r_max)
