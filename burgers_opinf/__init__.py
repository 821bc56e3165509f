"""
Operator Inference reduced-order models for the viscous Burgers' equation.

This package compares non-intrusive Operator Inference (OpInf) with intrusive
Galerkin projection for a boundary-controlled Burgers' equation:

    Step 1: Full-order model assembly and reference trajectory
    Step 2: Training snapshots from random-input trajectories and POD
    Step 3: Intrusive projection and (stability-guarded) operator inference
    Step 4: Reduced simulations, state errors and energy diagnostics

The learned models have the form

    d/dt x = A x + F x^{(2)} + B u

where x^{(2)} are the non-redundant quadratic terms of the reduced state.

Modules:
    core        - Quadratic terms, F/H encodings, time integration
    physics     - Burgers full-order operators and problem variants
    data        - Snapshot generation and HDF5 I/O
    pod         - POD basis computation and projection
    training    - Operator inference regression and stability search
    intrusive   - Galerkin projection of the FOM operators
    diagnostics - Constraint residuals and energy rates
    evaluation  - Reduced simulations and error sweeps
    utils       - Configuration, logging, run directories
    errors      - Exception types

References:
    - Peherstorfer & Willcox (2016). Data-driven operator inference for
      nonintrusive projection-based model reduction.
    - Qian et al. (2019). Transform & Learn: A data-driven approach to
      nonlinear model reduction.
"""

from .core import (
    ROMOperators,
    compact_to_redundant,
    duplication_matrix,
    elimination_matrix,
    extract_quadratic,
    fidx,
    get_quadratic_terms,
    redundant_to_compact,
    semi_implicit_euler,
)

from .errors import (
    AllTrajectoriesDiverged,
    InvalidDimension,
    IntegrationDiverged,
    NoStableModelFound,
    SingularSystem,
)

from .physics import get_burgers_matrices
from .data import SnapshotData, drop_diverged, generate_snapshots
from .pod import BasisData, compute_pod
from .training import OpInfParams, find_stable_model, infer_operators, is_stable
from .intrusive import intrusive_operators
from .diagnostics import (
    constraint_residual_F,
    constraint_residual_H,
    energy,
    relative_state_error,
)

from .utils import (
    BurgersConfig,
    load_config,
    save_config,
    setup_logging,
)

__version__ = "1.0.0"
