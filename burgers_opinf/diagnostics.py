"""
Energy diagnostics for linear-quadratic models.

Provides:
- Constraint residuals of a quadratic operator (F or H form)
- Energy and energy-rate decomposition along a trajectory
- Relative state error

The constraint residuals are sums over all index triples (i, j, k). Each
term of the sum reads every coefficient a fixed number of times, so they
are evaluated over the stored entries only and never densify a full-order
operator.
"""

import numpy as np
import scipy.sparse as sp

from .core import _pair_indices, get_quadratic_terms, n_quadratic
from .errors import InvalidDimension

# Largest lifted block (entries) built at once in quad_energy_rate
_LIFT_BUDGET = 2**22


def _dense(M) -> np.ndarray:
    return M.toarray() if sp.issparse(M) else np.asarray(M)


def _entries(M):
    """Row indices, column indices and values of the nonzeros of M."""
    if sp.issparse(M):
        M = M.tocoo()
        return M.row, M.col, M.data
    M = np.asarray(M)
    rows, cols = np.nonzero(M)
    return rows, cols, M[rows, cols]


# =============================================================================
# CONSTRAINT RESIDUALS
# =============================================================================

def constraint_residual_H(H) -> float:
    """
    Constraint residual of a Kronecker-form quadratic operator.

    sum over i, j, k of H[i, (k, j)] + H[j, (k, i)] + H[k, (i, j)], where
    (p, q) is the Kronecker column p*n + q.

    As (i, j, k) runs over all triples, each of the three terms reads every
    coefficient H[p, c] exactly once: the first at (p, c % n, c // n), the
    second at (c % n, p, c // n) and the third at (c // n, c % n, p).
    """
    n = H.shape[0]
    if H.shape[1] != n * n:
        raise InvalidDimension(f"H has shape {H.shape}, expected ({n}, {n * n})")
    _, _, vals = _entries(H)
    return float(3 * np.sum(vals))


def constraint_residual_F(F) -> float:
    """
    Constraint residual of a compact quadratic operator.

    Same triple sum as constraint_residual_H, read off the compact columns:
    a square coefficient F[i, (j, j)] is read once per term with weight 1,
    and a cross coefficient F[i, (j, k)] is read twice per term, at (j, k)
    and (k, j), with weight 1/2 each (its share of each Kronecker slot).
    """
    n = F.shape[0]
    if F.shape[1] != n_quadratic(n):
        raise InvalidDimension(f"F has shape {F.shape}, expected ({n}, {n_quadratic(n)})")
    _, cols, vals = _entries(F)
    a, b = _pair_indices(n)
    weight = np.where(a[cols] == b[cols], 1.0, 2 * 0.5)
    return float(3 * np.sum(weight * vals))


# =============================================================================
# ENERGY
# =============================================================================

def energy(S: np.ndarray) -> np.ndarray:
    """Kinetic energy ||x||^2 / 2 of each column of S."""
    return 0.5 * np.sum(S**2, axis=0)


def quad_energy_rate(Q, S: np.ndarray) -> np.ndarray:
    """
    Quadratic energy rate x^T F q(x) or x^T H kron(x, x) per column of S.

    The form of Q is taken from its width: n(n+1)/2 columns is compact (F),
    n^2 columns is Kronecker (H).
    """
    n = S.shape[0]
    if Q.shape[1] == n_quadratic(n):
        lift = get_quadratic_terms
    elif Q.shape[1] == n * n:
        def lift(X):
            return (X[:, None, :] * X[None, :, :]).reshape(n * n, X.shape[1])
    else:
        raise InvalidDimension(f"Operator of shape {Q.shape} does not act on states of length {n}")

    chunk = max(1, _LIFT_BUDGET // Q.shape[1])
    rates = np.empty(S.shape[1])
    for start in range(0, S.shape[1], chunk):
        X = S[:, start:start + chunk]
        rates[start:start + chunk] = np.sum(X * _dense(Q @ lift(X)), axis=0)
    return rates


def lin_energy_rate(A, S: np.ndarray) -> np.ndarray:
    """Linear energy rate x^T A x per column of S."""
    if A.shape != (S.shape[0], S.shape[0]):
        raise InvalidDimension(f"A has shape {A.shape}, states have length {S.shape[0]}")
    return np.sum(S * _dense(A @ S), axis=0)


def control_energy_rate(B, S: np.ndarray, u: np.ndarray) -> np.ndarray:
    """
    Control energy rate x^T B u per column of S.

    A u of length K (one entry per step) is paired with columns 1..K of the
    (n, K+1) trajectory it produced; column 0 gets zero input.
    """
    b = _dense(B).reshape(-1)
    if b.size != S.shape[0]:
        raise InvalidDimension(f"B has {b.size} rows, states have length {S.shape[0]}")
    u = np.asarray(u, dtype=float).ravel()
    if u.size == S.shape[1] - 1:
        u = np.concatenate([[0.0], u])
    elif u.size != S.shape[1]:
        raise InvalidDimension(f"u has length {u.size}, trajectory has {S.shape[1]} columns")
    return (b @ S) * u


def total_energy_rate(A, Q, B, S: np.ndarray, u: np.ndarray) -> np.ndarray:
    """Sum of quadratic, linear and control energy rates."""
    rate = quad_energy_rate(Q, S) + lin_energy_rate(A, S)
    if B is not None:
        rate = rate + control_energy_rate(B, S, u)
    return rate


# =============================================================================
# ERRORS
# =============================================================================

def relative_state_error(S_approx: np.ndarray, S_ref: np.ndarray) -> float:
    """Relative Frobenius error ||S_approx - S_ref|| / ||S_ref||."""
    if S_approx.shape != S_ref.shape:
        raise InvalidDimension(f"Shapes differ: {S_approx.shape} vs {S_ref.shape}")
    return float(np.linalg.norm(S_approx - S_ref, 'fro') / np.linalg.norm(S_ref, 'fro'))
