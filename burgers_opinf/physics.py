"""
Full-order model for the viscous Burgers' equation on [0, 1].

Provides:
- Assembly of the discrete operators A (diffusion + boundary rows),
  F (compact quadratic advection) and B (boundary control)
- Initial conditions and reference inputs for the two problem variants

The semi-discrete system is x' = A x + F q(x) + B u, with Dirichlet boundary
values driven by the scalar input u through the boundary rows.
"""

import numpy as np
import scipy.sparse as sp
from typing import Tuple

from .core import fidx, n_quadratic
from .errors import InvalidDimension


# Problem variants: initial condition, reference input, training input range
PROBLEM_TYPES = {
    1: {"initial_condition": "zero", "reference_input": "ones", "input_range": (0.0, 1.0)},
    2: {"initial_condition": "sine", "reference_input": "zeros", "input_range": (-0.1, 0.1)},
}


# =============================================================================
# OPERATOR ASSEMBLY
# =============================================================================

def get_burgers_matrices(
    N: int, dx: float, dt: float, mu: float,
) -> Tuple[sp.csr_matrix, sp.csr_matrix, sp.csr_matrix]:
    """
    Build the Burgers full-order operators.

    Parameters
    ----------
    N : int
        Number of grid points (including both boundary nodes), N >= 3.
    dx : float
        Grid spacing.
    dt : float
        Time step; the boundary rows of A and B are scaled by 1/dt so that
        the semi-implicit step relaxes the boundary values onto the input.
    mu : float
        Diffusion coefficient (expected positive, not checked).

    Returns
    -------
    A : (N, N) csr_matrix
        Second-difference diffusion operator with Dirichlet boundary rows.
    B : (N, 1) csr_matrix
        Input operator, +1/dt on the left boundary and -1/dt on the right.
    F : (N, N(N+1)/2) csr_matrix
        Compact quadratic operator for -x x_x by central differences.
    """
    if N < 3:
        raise InvalidDimension(f"Burgers FOM needs N >= 3 grid points, got {N}")

    # Linear operator from the second derivative
    A = (mu / dx**2) * sp.diags([1.0, -2.0, 1.0], [-1, 0, 1], shape=(N, N))
    A = sp.lil_matrix(A)
    A[0, :2] = [-1.0 / dt, 0.0]
    A[N - 1, N - 2:] = [0.0, -1.0 / dt]

    # Quadratic operator: row i holds x_i (x_{i+1} - x_{i-1}) / (2 dx), negated
    m = np.arange(1, N - 1)
    jp = fidx(N, m, m + 1)          # x_i * x_{i+1}
    jm = fidx(N, m - 1, m)          # x_{i-1} * x_i
    rows = np.repeat(m, 2)
    cols = np.column_stack([jp, jm]).ravel()
    vals = np.tile([1.0, -1.0], N - 2) / (2 * dx)
    F = -sp.csr_matrix((vals, (rows, cols)), shape=(N, n_quadratic(N)))

    # Input operator
    B = sp.csr_matrix(([1.0 / dt, -1.0 / dt], ([0, N - 1], [0, 0])), shape=(N, 1))

    return sp.csr_matrix(A), B, F


# =============================================================================
# PROBLEM SETUP
# =============================================================================

def grid(N: int) -> np.ndarray:
    """Uniform grid of N nodes on [0, 1]."""
    return np.linspace(0.0, 1.0, N)


def initial_condition(kind: str, N: int) -> np.ndarray:
    """Initial state: "zero" or "sine" (sin(pi x))."""
    if kind == "zero":
        return np.zeros(N)
    elif kind == "sine":
        return np.sin(np.pi * grid(N))
    else:
        raise ValueError(f"Unknown initial condition: {kind}")


def reference_input(kind: str, K: int) -> np.ndarray:
    """Reference input sequence of length K: "ones" or "zeros"."""
    if kind == "ones":
        return np.ones(K)
    elif kind == "zeros":
        return np.zeros(K)
    else:
        raise ValueError(f"Unknown reference input: {kind}")


def problem_setup(problem_type: int, N: int, K: int) -> dict:
    """Initial condition, reference input and training input range."""
    if problem_type not in PROBLEM_TYPES:
        raise ValueError(f"Unknown problem type: {problem_type}")
    variant = PROBLEM_TYPES[problem_type]
    return {
        'x0': initial_condition(variant["initial_condition"], N),
        'u_ref': reference_input(variant["reference_input"], K),
        'input_range': variant["input_range"],
    }
