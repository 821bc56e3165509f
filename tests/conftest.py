"""Shared fixtures for the Burgers OpInf tests."""

import numpy as np
import pytest

from burgers_opinf.physics import get_burgers_matrices


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def small_fom():
    """N=9 Burgers operators with dx=1/8, dt=1e-4, mu=0.3."""
    N, dt, mu = 9, 1e-4, 0.3
    A, B, F = get_burgers_matrices(N, 1 / (N - 1), dt, mu)
    return {'A': A, 'B': B, 'F': F, 'N': N, 'dt': dt, 'mu': mu}


@pytest.fixture
def conservative_H(rng):
    """Factory for Kronecker-form operators with x^T H kron(x, x) == 0."""
    def make(n):
        T = rng.standard_normal((n, n, n))
        T = 0.5 * (T + T.transpose(0, 2, 1))
        S = (T + T.transpose(0, 2, 1) + T.transpose(1, 0, 2)
             + T.transpose(1, 2, 0) + T.transpose(2, 0, 1) + T.transpose(2, 1, 0)) / 6
        return (T - S).reshape(n, n * n)
    return make
