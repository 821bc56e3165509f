"""
Dimensionality reduction by proper orthogonal decomposition.

This module handles:
- POD basis computation from the snapshot matrix (economy SVD)
- Nested rank-r truncations of one decomposition
- Projection/lifting and reconstruction error
- Basis persistence
"""

import numpy as np
from dataclasses import dataclass

from .errors import InvalidDimension


# =============================================================================
# DATA CONTAINERS
# =============================================================================

@dataclass
class BasisData:
    """Container for a POD basis."""
    V: np.ndarray          # Left singular vectors (n_spatial, rank)
    svals: np.ndarray      # Singular values, decreasing

    @property
    def rank(self) -> int:
        return self.V.shape[1]

    def Vr(self, r: int) -> np.ndarray:
        """Rank-r basis: the leading r columns of V."""
        if not 1 <= r <= self.rank:
            raise InvalidDimension(f"Basis size r={r} outside 1..{self.rank}")
        return self.V[:, :r]

    def retained_energy(self) -> np.ndarray:
        """Cumulative fraction of squared singular values."""
        eigs = self.svals**2
        return np.cumsum(eigs) / np.sum(eigs)

    def r_for_energy(self, target_energy: float) -> int:
        """Smallest r retaining at least target_energy."""
        return int(np.argmax(self.retained_energy() >= target_energy)) + 1


def save_basis(basis: BasisData, filepath: str):
    """Save basis to npz file."""
    np.savez(filepath, V=basis.V, svals=basis.svals)


def load_basis(filepath: str) -> BasisData:
    """Load basis from npz file."""
    d = np.load(filepath)
    return BasisData(V=d['V'], svals=d['svals'])


# =============================================================================
# POD COMPUTATION
# =============================================================================

def compute_pod(X: np.ndarray, logger=None) -> BasisData:
    """
    Compute the POD basis of a column-wise snapshot matrix.

    Only the left singular vectors are kept, ordered by decreasing singular
    value; every prefix of V is a valid basis, so one call serves all r.
    """
    U, s, _ = np.linalg.svd(X, full_matrices=False)
    if logger is not None:
        energy = np.cumsum(s**2) / np.sum(s**2)
        logger.info(f"  POD: {len(s)} modes, sigma_1={s[0]:.3e}")
        logger.debug(f"  [DIAG] Energy at r=1..5: {energy[:5]}")
    return BasisData(V=U, svals=s)


# =============================================================================
# PROJECTION AND LIFTING
# =============================================================================

def encode(data: np.ndarray, Vr: np.ndarray) -> np.ndarray:
    """Project full state to reduced coordinates: z = Vr^T x."""
    if data.shape[0] != Vr.shape[0]:
        raise InvalidDimension(f"Data has {data.shape[0]} rows, basis has {Vr.shape[0]}")
    return Vr.T @ data


def decode(z: np.ndarray, Vr: np.ndarray) -> np.ndarray:
    """Lift reduced coordinates to full state."""
    return Vr @ z


def reconstruction_error(data: np.ndarray, Vr: np.ndarray) -> tuple:
    """Compute projection error: ||x - Vr Vr^T x||."""
    recon = decode(encode(data, Vr), Vr)
    abs_err = np.linalg.norm(recon - data, 'fro')
    rel_err = abs_err / np.linalg.norm(data, 'fro')
    return abs_err, rel_err
