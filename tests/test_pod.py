import numpy as np
import pytest
from numpy.testing import assert_allclose

from burgers_opinf.errors import InvalidDimension
from burgers_opinf.pod import compute_pod, encode, decode, load_basis, reconstruction_error, save_basis


@pytest.fixture
def basis(rng):
    X = rng.standard_normal((30, 6)) @ rng.standard_normal((6, 40))
    return X, compute_pod(X)


def test_basis_is_orthonormal_and_nested(basis):
    X, b = basis
    assert b.rank == min(X.shape)
    V5 = b.Vr(5)
    assert_allclose(V5.T @ V5, np.eye(5), atol=1e-12)
    assert_allclose(b.Vr(3), V5[:, :3])
    assert np.all(np.diff(b.svals) <= 0)


def test_invalid_basis_size(basis):
    _, b = basis
    with pytest.raises(InvalidDimension):
        b.Vr(0)
    with pytest.raises(InvalidDimension):
        b.Vr(b.rank + 1)


def test_energy_and_reconstruction(basis):
    X, b = basis
    energy = b.retained_energy()
    assert energy[-1] == pytest.approx(1.0)
    assert b.r_for_energy(1.0 - 1e-12) <= 6

    _, rel = reconstruction_error(X, b.Vr(6))
    assert rel < 1e-10
    Z = encode(X, b.Vr(6))
    assert Z.shape == (6, 40)
    assert_allclose(decode(Z, b.Vr(6)), X, atol=1e-10)


def test_basis_io(basis, tmp_path):
    _, b = basis
    path = str(tmp_path / "basis.npz")
    save_basis(b, path)
    loaded = load_basis(path)
    assert_allclose(loaded.V, b.V)
    assert_allclose(loaded.svals, b.svals)
