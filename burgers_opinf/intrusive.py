"""
Intrusive (Galerkin) projection of the full-order operators.

Given the FOM operators and a basis Vr, the reduced operators are

    Aint = Vr^T A Vr
    Bint = Vr^T B
    Fint = Vr^T F L_n kron(Vr, Vr) D_r

where L_n is the elimination matrix of order n and D_r the duplication
matrix of order r, so that Fint q(xr) == Vr^T F q(Vr xr).
"""

import numpy as np
import scipy.sparse as sp

from .core import ROMOperators, duplication_matrix, elimination_matrix, n_quadratic
from .errors import InvalidDimension


def _dense(M) -> np.ndarray:
    return M.toarray() if sp.issparse(M) else np.asarray(M)


def intrusive_operators(A, F, B, Vr: np.ndarray) -> ROMOperators:
    """
    Project full-order operators onto a basis.

    Parameters
    ----------
    A : (n, n) ndarray or sparse matrix
    F : (n, n(n+1)/2) ndarray, sparse matrix or None
    B : (n, 1) ndarray, sparse matrix or None
    Vr : (n, r) ndarray

    Returns
    -------
    ROMOperators
        Dense reduced operators of order r.
    """
    n, r = Vr.shape
    if A.shape != (n, n):
        raise InvalidDimension(f"A has shape {A.shape}, basis has {n} rows")
    if F is not None and F.shape != (n, n_quadratic(n)):
        raise InvalidDimension(f"F has shape {F.shape}, expected ({n}, {n_quadratic(n)})")
    if B is not None and B.shape[0] != n:
        raise InvalidDimension(f"B has {B.shape[0]} rows, basis has {n}")

    Aint = Vr.T @ _dense(A @ Vr)
    Bint = Vr.T @ _dense(B) if B is not None else None

    Fint = None
    if F is not None:
        FL = sp.csr_matrix(F) @ elimination_matrix(n)        # (n, n^2), sparse
        FLV = _dense(FL @ np.kron(Vr, Vr))                   # (n, r^2)
        Fint = Vr.T @ _dense(duplication_matrix(r).T @ FLV.T).T

    return ROMOperators(A=Aint, F=Fint, B=Bint)
