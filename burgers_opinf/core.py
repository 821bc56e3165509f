"""
Core algorithms shared by the full-order, intrusive and inferred models.

This module contains the core mathematical operations for:
- Non-redundant quadratic terms and the compact (F) / redundant (H) encodings
- Elimination and duplication matrices
- Semi-implicit Euler integration of linear-quadratic-input systems
- The reduced operator container

Quadratic ordering convention
-----------------------------
For x of length m the compact product vector is

    q(x) = [x1*x1, x1*x2, ..., x1*xm, x2*x2, x2*x3, ..., xm*xm]

(pairs i <= j, i outer, cross terms with coefficient 1). The 0-based index of
the pair (i, j) is fidx(m, i, j) = a*m - a*(a+1)/2 + b with a = min(i, j) and
b = max(i, j). Kronecker products follow numpy: kron(x, x)[k*m + j] = x_k x_j.
"""

import logging
import warnings
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional, Tuple

import numpy as np
import scipy.sparse as sp
from scipy.linalg import LinAlgWarning, lu_factor, lu_solve
from scipy.sparse.linalg import splu

from .errors import InvalidDimension, SingularSystem

logger = logging.getLogger(__name__)


# =============================================================================
# QUADRATIC TERMS
# =============================================================================

@lru_cache(maxsize=32)
def _pair_indices(m: int) -> Tuple[np.ndarray, np.ndarray]:
    """Row/column indices (i <= j) of the compact ordering for length m."""
    a, b = np.triu_indices(m)
    a.setflags(write=False)
    b.setflags(write=False)
    return a, b


def n_quadratic(r: int) -> int:
    """Number of unique pairwise products of a length-r vector."""
    return r * (r + 1) // 2


def order_from_quadratic(s: int) -> int:
    """Invert n_quadratic: return r such that r(r+1)/2 == s."""
    r = int(round((np.sqrt(8 * s + 1) - 1) / 2))
    if r < 1 or n_quadratic(r) != s:
        raise InvalidDimension(f"{s} is not a triangular number r(r+1)/2")
    return r


def fidx(m, i, j):
    """0-based compact index of the pair (i, j) for a length-m vector."""
    a = np.minimum(i, j)
    b = np.maximum(i, j)
    return a * m - a * (a + 1) // 2 + b


def get_quadratic_terms(X: np.ndarray) -> np.ndarray:
    """
    Compute non-redundant quadratic terms of X.

    Parameters
    ----------
    X : np.ndarray
        State vector (r,) or column-wise snapshot matrix (r, K).

    Returns
    -------
    np.ndarray
        Quadratic terms: (s,) for vector input or (s, K) for matrix input,
        where s = r*(r+1)/2.
    """
    X = np.asarray(X)
    if X.ndim not in (1, 2) or X.shape[0] == 0:
        raise InvalidDimension(f"Invalid input shape: {X.shape}")
    a, b = _pair_indices(X.shape[0])
    return X[a] * X[b]


# =============================================================================
# COMPACT / REDUNDANT ENCODINGS
# =============================================================================

def elimination_matrix(n: int) -> sp.csr_matrix:
    """
    Sparse elimination matrix L of shape (n(n+1)/2, n^2).

    L @ kron(x, x) == get_quadratic_terms(x) for every x of length n.
    """
    if n < 1:
        raise InvalidDimension(f"Elimination matrix needs n >= 1, got {n}")
    a, b = _pair_indices(n)
    s = a.size
    return sp.csr_matrix(
        (np.ones(s), (np.arange(s), a * n + b)), shape=(s, n * n)
    )


def duplication_matrix(r: int) -> sp.csr_matrix:
    """
    Sparse duplication matrix D of shape (r^2, r(r+1)/2).

    D @ get_quadratic_terms(x) == kron(x, x) for every x of length r.
    """
    if r < 1:
        raise InvalidDimension(f"Duplication matrix needs r >= 1, got {r}")
    a, b = _pair_indices(r)
    cols = np.arange(a.size)
    off = a != b
    rows = np.concatenate([a * r + b, (b * r + a)[off]])
    cols = np.concatenate([cols, cols[off]])
    return sp.csr_matrix(
        (np.ones(rows.size), (rows, cols)), shape=(r * r, a.size)
    )


def _expansion_matrix(n: int) -> sp.csr_matrix:
    """Map compact coefficients onto the symmetric Kronecker slots."""
    a, b = _pair_indices(n)
    idx = np.arange(a.size)
    off = a != b
    rows = np.concatenate([idx, idx[off]])
    cols = np.concatenate([a * n + b, (b * n + a)[off]])
    vals = np.concatenate([np.where(off, 0.5, 1.0), np.full(off.sum(), 0.5)])
    return sp.csr_matrix((vals, (rows, cols)), shape=(a.size, n * n))


def _right_multiply(M, S: sp.spmatrix):
    """M @ S for sparse S, keeping M's storage (sparse stays sparse)."""
    if sp.issparse(M):
        return sp.csr_matrix(M @ S)
    return np.asarray((S.T @ np.asarray(M).T).T)


def compact_to_redundant(F):
    """
    Expand a compact quadratic operator F into its Kronecker form H.

    Square coefficients keep their slot; cross coefficients are split evenly
    between the two symmetric slots, so F @ q(x) == H @ kron(x, x).
    """
    n = order_from_quadratic(F.shape[1])
    return _right_multiply(F, _expansion_matrix(n))


def redundant_to_compact(H):
    """Compress a (symmetric) Kronecker-form operator H into compact form."""
    n = int(round(np.sqrt(H.shape[1])))
    if n * n != H.shape[1]:
        raise InvalidDimension(f"H has {H.shape[1]} columns, not a square number")
    return _right_multiply(H, duplication_matrix(n))


def extract_quadratic(F, r: int):
    """
    Sub-operator of a compact F valid for the first r state components.

    Keeps rows 0..r-1 and the columns whose pair involves only components
    0..r-1, in the compact ordering of order r. Pure index selection.
    """
    r_max = order_from_quadratic(F.shape[1])
    if not 1 <= r <= min(r_max, F.shape[0]):
        raise InvalidDimension(f"Cannot extract r={r} from an order-{r_max} operator")
    a, b = _pair_indices(r)
    cols = fidx(r_max, a, b)
    return F[:r][:, cols]


# =============================================================================
# REDUCED OPERATORS
# =============================================================================

@dataclass
class ROMOperators:
    """Container for a linear-quadratic-input operator set."""
    A: np.ndarray                   # Linear operator (r, r)
    F: Optional[np.ndarray] = None  # Compact quadratic operator (r, r(r+1)/2)
    B: Optional[np.ndarray] = None  # Input operator (r, 1)
    c: Optional[np.ndarray] = None  # Constant term (r,)
    H: Optional[np.ndarray] = None  # Kronecker-form quadratic operator (r, r^2)
    discrete: bool = False          # x_{k+1} = ... instead of dx/dt = ...

    def __post_init__(self):
        if self.F is not None and self.H is None:
            self.H = compact_to_redundant(self.F)

    @property
    def r(self) -> int:
        return self.A.shape[0]

    def truncate(self, r: int) -> "ROMOperators":
        """Operators for the leading r basis vectors."""
        if not 1 <= r <= self.r:
            raise InvalidDimension(f"Cannot truncate order-{self.r} operators to r={r}")
        return ROMOperators(
            A=self.A[:r, :r],
            F=extract_quadratic(self.F, r) if self.F is not None else None,
            B=self.B[:r] if self.B is not None else None,
            c=self.c[:r] if self.c is not None else None,
            discrete=self.discrete,
        )

    def eigenvalues(self) -> np.ndarray:
        A = self.A.toarray() if sp.issparse(self.A) else self.A
        return np.linalg.eigvals(A)


def save_operators(operators: ROMOperators, filepath: str):
    """Save an operator set to npz file."""
    np.savez(
        filepath,
        A=operators.A,
        F=operators.F if operators.F is not None else np.array([]),
        B=operators.B if operators.B is not None else np.array([]),
        c=operators.c if operators.c is not None else np.array([]),
        discrete=operators.discrete,
    )


def load_operators(filepath: str) -> ROMOperators:
    """Load an operator set from npz file."""
    d = np.load(filepath)
    return ROMOperators(
        A=d['A'],
        F=d['F'] if d['F'].size > 0 else None,
        B=d['B'] if d['B'].size > 0 else None,
        c=d['c'] if d['c'].size > 0 else None,
        discrete=bool(d['discrete']),
    )


# =============================================================================
# TIME INTEGRATION
# =============================================================================

class LUSolver:
    """
    Solve M x = b for a fixed matrix M.

    The factorization (dense LU or sparse SuperLU) is computed once. A
    singular M falls back to a pseudo-inverse, giving the minimum-norm
    solution, unless strict is set.
    """

    def __init__(self, mat, strict: bool = False):
        self._pinv = None
        if sp.issparse(mat):
            try:
                lu = splu(sp.csc_matrix(mat))
            except RuntimeError as e:
                self._fallback(mat.toarray(), str(e), strict)
                return
            self._solve = lu.solve
        else:
            mat = np.asarray(mat, dtype=float)
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", LinAlgWarning)
                lu_piv = lu_factor(mat)
            pivots = np.abs(np.diag(lu_piv[0]))
            tol = mat.shape[0] * np.finfo(float).eps * max(pivots.max(), 1.0)
            if pivots.min() <= tol:
                self._fallback(mat, "near-zero pivot in LU factorization", strict)
                return
            self._solve = lambda rhs: lu_solve(lu_piv, rhs)

    def _fallback(self, mat: np.ndarray, reason: str, strict: bool):
        if strict:
            raise SingularSystem(f"Implicit system matrix is singular: {reason}")
        logger.warning(f"Implicit system matrix is singular ({reason}); "
                       "using minimum-norm solution")
        self._pinv = np.linalg.pinv(mat)
        self._solve = lambda rhs: self._pinv @ rhs

    def __call__(self, rhs: np.ndarray) -> np.ndarray:
        return self._solve(rhs)


def _as_column(M, n: int, name: str) -> np.ndarray:
    """Dense (n,) view of an (n,), (n, 1) or sparse column operator."""
    if sp.issparse(M):
        M = M.toarray()
    M = np.asarray(M, dtype=float)
    if M.shape not in ((n,), (n, 1)):
        raise InvalidDimension(f"{name} has shape {M.shape}, expected ({n}, 1)")
    return M.reshape(n)


def semi_implicit_euler(
    A, F, B, dt: float, u: Optional[np.ndarray], x0: np.ndarray,
    n_steps: Optional[int] = None, c: Optional[np.ndarray] = None,
    strict: bool = False,
) -> Tuple[bool, np.ndarray]:
    """
    Integrate x' = A x + F q(x) + B u (+ c) with semi-implicit Euler.

    The linear term is implicit and the quadratic, input and constant terms
    are explicit:

        x_{k+1} = (I - dt A)^{-1} (x_k + dt F q(x_k) + dt B u_k + dt c)

    Parameters
    ----------
    A : (n, n) ndarray or sparse matrix
        Linear operator.
    F : (n, n(n+1)/2) ndarray, sparse matrix or None
        Compact quadratic operator.
    B : (n, 1) ndarray, sparse matrix or None
        Input operator.
    dt : float
        Time step.
    u : (K,) ndarray or None
        Scalar input at each step; u[k] drives the step from x_k to x_{k+1}.
    x0 : (n,) ndarray
        Initial condition.
    n_steps : int, optional
        Number of steps K when u is None.
    c : (n,) ndarray, optional
        Constant forcing.
    strict : bool
        Raise SingularSystem instead of falling back to a minimum-norm solve.

    Returns
    -------
    diverged : bool
        True if a non-finite state was produced; integration stops there and
        the remaining columns are left at zero.
    S : np.ndarray
        State trajectory of shape (n, K+1), including the initial condition.
    """
    x0 = np.asarray(x0, dtype=float).ravel()
    n = x0.size
    if A.shape != (n, n):
        raise InvalidDimension(f"A has shape {A.shape}, state has length {n}")
    if F is not None and F.shape != (n, n_quadratic(n)):
        raise InvalidDimension(f"F has shape {F.shape}, expected ({n}, {n_quadratic(n)})")

    if u is not None:
        u = np.asarray(u, dtype=float).ravel()
        K = u.size
    elif n_steps is not None:
        K = int(n_steps)
    else:
        raise ValueError("Either u or n_steps must be given")

    b = _as_column(B, n, "B") if B is not None and u is not None else None
    c = _as_column(c, n, "c") if c is not None else None

    if sp.issparse(A):
        system = sp.identity(n, format="csc") - dt * A
    else:
        system = np.eye(n) - dt * np.asarray(A)
    solve = LUSolver(system, strict=strict)

    ia, ib = _pair_indices(n)
    S = np.zeros((n, K + 1))
    S[:, 0] = x0

    with np.errstate(over="ignore", invalid="ignore"):
        for k in range(K):
            x = S[:, k]
            rhs = x.copy()
            if F is not None:
                rhs += dt * (F @ (x[ia] * x[ib]))
            if b is not None:
                rhs += (dt * u[k]) * b
            if c is not None:
                rhs += dt * c
            S[:, k + 1] = solve(rhs)

            if not np.all(np.isfinite(S[:, k + 1])):
                return True, S

    return False, S


def solve_difference_model(
    x0: np.ndarray,
    n_steps: int,
    f: Callable[[np.ndarray, int], np.ndarray],
) -> Tuple[bool, np.ndarray]:
    """
    Integrate a discrete-time dynamical system forward.

    Solves the difference equation x_{k+1} = f(x_k, k).

    Parameters
    ----------
    x0 : np.ndarray
        Initial state vector of shape (r,).
    n_steps : int
        Number of time steps K.
    f : callable
        State transition function f(x, k).

    Returns
    -------
    is_nan : bool
        True if non-finite values were encountered during integration.
    X : np.ndarray
        State trajectory of shape (r, K+1).
    """
    x0 = np.asarray(x0, dtype=float).ravel()
    X = np.zeros((x0.size, n_steps + 1))
    X[:, 0] = x0

    with np.errstate(over="ignore", invalid="ignore"):
        for k in range(n_steps):
            X[:, k + 1] = f(X[:, k], k)

            if not np.all(np.isfinite(X[:, k + 1])):
                return True, X

    return False, X
