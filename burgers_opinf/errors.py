"""
Exception types for the Burgers OpInf package.

Dimension problems are precondition violations and raise immediately.
Divergence of a time integration is an expected outcome and is reported
through a flag (see core.semi_implicit_euler). Diverged training
trajectories are reported with the IntegrationDiverged warning category,
which callers can escalate with a warnings filter.
"""

import numpy as np


class BurgersOpInfError(Exception):
    """Base class for package errors."""


class InvalidDimension(BurgersOpInfError, ValueError):
    """Malformed grid size, mismatched operator shapes, or bad basis size."""


class SingularSystem(BurgersOpInfError, np.linalg.LinAlgError):
    """A linear solve or regression system is singular (strict mode only)."""


class NoStableModelFound(BurgersOpInfError):
    """The stability-guarded search ran out of candidate basis sizes."""

    def __init__(self, r_max: int):
        self.r_max = r_max
        super().__init__(
            f"No inferred model with r in 1..{r_max} has a stable linear operator"
        )


class AllTrajectoriesDiverged(BurgersOpInfError):
    """Every training trajectory diverged, leaving no usable snapshots."""

    def __init__(self, n_trajectories: int):
        self.n_trajectories = n_trajectories
        super().__init__(
            f"All {n_trajectories} training trajectories diverged; no snapshots to train on"
        )


class IntegrationDiverged(UserWarning):
    """A time integration produced non-finite states."""
