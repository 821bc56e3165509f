import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from burgers_opinf.core import semi_implicit_euler
from burgers_opinf.pod import compute_pod
from burgers_opinf.errors import AllTrajectoriesDiverged, IntegrationDiverged
from burgers_opinf.data import (
    SnapshotData,
    draw_random_inputs,
    drop_diverged,
    generate_snapshots,
    load_snapshots,
    save_snapshots,
)


class SingleRankComm:
    """Stand-in for an MPI communicator with one rank."""

    def Get_rank(self):
        return 0

    def Get_size(self):
        return 1

    def allgather(self, obj):
        return [obj]


def test_draw_random_inputs(rng):
    U = draw_random_inputs(50, 4, (-0.1, 0.1), rng)
    assert U.shape == (50, 4)
    assert U.min() >= -0.1
    assert U.max() <= 0.1


def test_snapshot_alignment(small_fom, rng):
    A, B, F, N, dt = (small_fom[k] for k in ('A', 'B', 'F', 'N', 'dt'))
    K, M = 20, 3
    x0 = np.zeros(N)
    U_rand = draw_random_inputs(K, M, (0.0, 1.0), rng)

    data = generate_snapshots(A, F, B, dt, x0, U_rand)

    assert data.X.shape == (N, K * M)
    assert data.R.shape == (N, K * M)
    assert data.U.shape == (K * M,)
    assert_array_equal(data.boundaries, [0, K, 2 * K, 3 * K])
    assert data.n_trajectories == M
    assert not data.diverged.any()

    # Second trajectory, checked against a direct run
    _, S = semi_implicit_euler(A, F, B, dt, U_rand[:, 1], x0)
    cols = slice(K, 2 * K)
    assert_allclose(data.X[:, cols], S[:, 1:])
    assert_allclose(data.R[:, cols], (S[:, 1:] - S[:, :-1]) / dt)
    assert_allclose(data.U[cols], U_rand[:, 1])


def test_snapshots_with_communicator(small_fom, rng):
    A, B, F, N, dt = (small_fom[k] for k in ('A', 'B', 'F', 'N', 'dt'))
    U_rand = draw_random_inputs(10, 2, (0.0, 1.0), rng)
    serial = generate_snapshots(A, F, B, dt, np.zeros(N), U_rand)
    gathered = generate_snapshots(A, F, B, dt, np.zeros(N), U_rand, comm=SingleRankComm())
    assert_allclose(gathered.X, serial.X)
    assert_allclose(gathered.U, serial.U)


def test_diverged_trajectory_warns():
    A = np.zeros((1, 1))
    F = np.array([[10.0]])
    B = np.array([[1.0]])
    with pytest.warns(IntegrationDiverged):
        data = generate_snapshots(A, F, B, 0.1, np.array([1.0]), np.zeros((30, 2)))
    assert_array_equal(data.diverged, [True, True])
    assert data.X.shape == (1, 60)


def test_snapshot_hdf5_roundtrip(rng, tmp_path):
    data = SnapshotData(
        X=rng.standard_normal((5, 8)),
        R=rng.standard_normal((5, 8)),
        U=rng.uniform(size=8),
        boundaries=np.array([0, 4, 8]),
        diverged=np.array([False, True]),
    )
    path = str(tmp_path / "snapshots.h5")
    save_snapshots(path, data, dt=1e-3, mu=0.3)
    loaded = load_snapshots(path)

    assert_allclose(loaded.X, data.X)
    assert_allclose(loaded.R, data.R)
    assert_allclose(loaded.U, data.U)
    assert_array_equal(loaded.boundaries, data.boundaries)
    assert_array_equal(loaded.diverged, data.diverged)


def _quadratic_blowup_snapshots(U_rand):
    # x' = 10 x^2 + u: u = -10 holds the fixed point x = 1, u = 0 blows up
    A = np.zeros((1, 1))
    F = np.array([[10.0]])
    B = np.array([[1.0]])
    with pytest.warns(IntegrationDiverged):
        return generate_snapshots(A, F, B, 0.1, np.array([1.0]), U_rand)


def test_drop_diverged_keeps_finite_trajectories():
    U_rand = np.column_stack([np.zeros(30), np.full(30, -10.0), np.zeros(30)])
    data = _quadratic_blowup_snapshots(U_rand)
    assert_array_equal(data.diverged, [True, False, True])

    kept = drop_diverged(data)
    assert kept.n_trajectories == 1
    assert_array_equal(kept.boundaries, [0, 30])
    assert not kept.diverged.any()
    assert np.all(np.isfinite(kept.X))
    assert_allclose(kept.X, 1.0)
    assert_allclose(kept.U, -10.0)

    basis = compute_pod(kept.X)
    assert basis.rank == 1
    assert np.all(np.isfinite(basis.V))


def test_drop_diverged_without_divergence_is_identity(small_fom, rng):
    A, B, F, N, dt = (small_fom[k] for k in ('A', 'B', 'F', 'N', 'dt'))
    data = generate_snapshots(A, F, B, dt, np.zeros(N), draw_random_inputs(5, 2, (0.0, 1.0), rng))
    assert drop_diverged(data) is data


def test_drop_diverged_when_everything_diverged():
    data = _quadratic_blowup_snapshots(np.zeros((30, 2)))
    with pytest.raises(AllTrajectoriesDiverged) as excinfo:
        drop_diverged(data)
    assert excinfo.value.n_trajectories == 2
