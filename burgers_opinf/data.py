"""
Training data generation and snapshot I/O.

This module handles:
- Random input ensembles for the training trajectories
- Running the full-order model to collect state and derivative snapshots
- Removing diverged trajectories before training
- Optional distribution of trajectories across MPI ranks
- HDF5 caching of snapshot sets
"""

import logging
import warnings
import numpy as np
import h5py
from dataclasses import dataclass
from typing import Optional, Tuple

from .core import semi_implicit_euler
from .errors import AllTrajectoriesDiverged, IntegrationDiverged
from .utils import distribute_indices


# =============================================================================
# DATA CONTAINERS
# =============================================================================

@dataclass
class SnapshotData:
    """Column-aligned training data from an ensemble of trajectories."""
    X: np.ndarray           # States (n, K*M), initial conditions dropped
    R: np.ndarray           # Time derivative estimates (n, K*M)
    U: np.ndarray           # Inputs (K*M,)
    boundaries: np.ndarray  # Column offsets of each trajectory (M+1,)
    diverged: np.ndarray    # Divergence flag per trajectory (M,)

    @property
    def n_trajectories(self) -> int:
        return len(self.boundaries) - 1


# =============================================================================
# SNAPSHOT GENERATION
# =============================================================================

def draw_random_inputs(
    K: int, n_inputs: int, input_range: Tuple[float, float],
    rng: np.random.Generator,
) -> np.ndarray:
    """Uniform random inputs of shape (K, n_inputs) on input_range."""
    low, high = input_range
    return rng.uniform(low, high, size=(K, n_inputs))


def _run_trajectory(A, F, B, dt, x0, u, strict) -> tuple:
    """One training trajectory: states without IC and forward differences."""
    diverged, S = semi_implicit_euler(A, F, B, dt, u, x0, strict=strict)
    x = S[:, 1:]
    with np.errstate(invalid="ignore"):
        xdot = (S[:, 1:] - S[:, :-1]) / dt
    return x, xdot, diverged


def generate_snapshots(
    A, F, B, dt: float, x0: np.ndarray, U_rand: np.ndarray,
    comm=None, logger: Optional[logging.Logger] = None, strict: bool = False,
) -> SnapshotData:
    """
    Collect snapshot data from trajectories driven by random inputs.

    Parameters
    ----------
    A, F, B : operators
        Full-order operators (see physics.get_burgers_matrices).
    dt : float
        Time step.
    x0 : np.ndarray
        Initial condition shared by all trajectories.
    U_rand : np.ndarray
        Input sequences of shape (K, M), one column per trajectory.
    comm : MPI communicator, optional
        If given, trajectories are split across ranks and all-gathered.
    logger : logging.Logger, optional
        Logger instance.
    strict : bool
        Passed to the integrator.

    Returns
    -------
    SnapshotData
        X[:, j], R[:, j] and U[j] refer to the same time step of the same
        trajectory; trajectories are stacked in input-column order.
    """
    logger = logger or logging.getLogger(__name__)
    U_rand = np.asarray(U_rand, dtype=float)
    if U_rand.ndim == 1:
        U_rand = U_rand[:, None]
    K, M = U_rand.shape

    if comm is not None:
        rank, size = comm.Get_rank(), comm.Get_size()
        start, end, _ = distribute_indices(rank, M, size)
    else:
        start, end = 0, M

    local = [_run_trajectory(A, F, B, dt, x0, U_rand[:, i], strict) for i in range(start, end)]

    if comm is not None:
        results = [traj for chunk in comm.allgather(local) for traj in chunk]
    else:
        results = local

    diverged = np.array([d for _, _, d in results], dtype=bool)
    if diverged.any():
        warnings.warn(f"Training trajectories {np.flatnonzero(diverged).tolist()} diverged; "
                      "their snapshots contain non-finite or zero-padded columns",
                      IntegrationDiverged)

    X = np.concatenate([x for x, _, _ in results], axis=1)
    R = np.concatenate([xdot for _, xdot, _ in results], axis=1)
    U = U_rand.reshape(K * M, order='F')
    boundaries = np.arange(M + 1) * K

    logger.info(f"  Snapshots: {X.shape[1]} columns from {M} trajectories")

    return SnapshotData(X=X, R=R, U=U, boundaries=boundaries, diverged=diverged)


def drop_diverged(data: SnapshotData, logger: Optional[logging.Logger] = None) -> SnapshotData:
    """
    Remove the columns of diverged trajectories from a snapshot set.

    The remaining trajectories keep their order and get new boundaries.

    Raises
    ------
    AllTrajectoriesDiverged
        If no trajectory is left.
    """
    logger = logger or logging.getLogger(__name__)
    if not data.diverged.any():
        return data

    keep = np.flatnonzero(~data.diverged)
    if keep.size == 0:
        raise AllTrajectoriesDiverged(data.n_trajectories)

    starts, ends = data.boundaries[:-1], data.boundaries[1:]
    cols = np.concatenate([np.arange(starts[i], ends[i]) for i in keep])
    lengths = ends[keep] - starts[keep]

    logger.warning(f"  Dropped {data.n_trajectories - keep.size} diverged training "
                   f"trajectories; {keep.size} remain")

    return SnapshotData(
        X=data.X[:, cols],
        R=data.R[:, cols],
        U=data.U[cols],
        boundaries=np.concatenate([[0], np.cumsum(lengths)]),
        diverged=np.zeros(keep.size, dtype=bool),
    )


# =============================================================================
# HDF5 I/O
# =============================================================================

def save_snapshots(filepath: str, data: SnapshotData, **attrs):
    """Save a snapshot set (and scalar metadata such as dt) to HDF5."""
    with h5py.File(filepath, 'w') as f:
        f.create_dataset("X", data=data.X, compression="gzip")
        f.create_dataset("R", data=data.R, compression="gzip")
        f.create_dataset("U", data=data.U)
        f.create_dataset("boundaries", data=data.boundaries)
        f.create_dataset("diverged", data=data.diverged)
        for key, value in attrs.items():
            f.attrs[key] = value


def load_snapshots(filepath: str) -> SnapshotData:
    """Load a snapshot set written by save_snapshots."""
    with h5py.File(filepath, 'r') as f:
        return SnapshotData(
            X=f["X"][()],
            R=f["R"][()],
            U=f["U"][()],
            boundaries=f["boundaries"][()],
            diverged=f["diverged"][()].astype(bool),
        )
