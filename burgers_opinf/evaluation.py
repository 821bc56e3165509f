"""
Prediction and evaluation utilities.

This module handles:
- Simulating a reduced model and lifting it to the full space
- Relative state error of inferred and intrusive models across basis sizes
- Energy-rate reports along a trajectory
"""

import logging
import numpy as np
from dataclasses import dataclass
from typing import Optional

from .core import ROMOperators, get_quadratic_terms, semi_implicit_euler, solve_difference_model
from .diagnostics import (
    constraint_residual_F, constraint_residual_H, control_energy_rate,
    lin_energy_rate, quad_energy_rate, relative_state_error,
)


# =============================================================================
# PREDICTION
# =============================================================================

@dataclass
class RomPrediction:
    """Reduced trajectory and its lift to the full space."""
    diverged: bool
    S_hat: np.ndarray      # Reduced trajectory (r, K+1)
    S_rec: np.ndarray      # Lifted trajectory (n, K+1)


def simulate_rom(
    operators: ROMOperators, Vr: np.ndarray, dt: float,
    u: Optional[np.ndarray], x0: np.ndarray, n_steps: Optional[int] = None,
    strict: bool = False,
) -> RomPrediction:
    """
    Simulate a reduced model from the projection of a full initial state.

    Continuous-time operators are integrated with semi-implicit Euler;
    discrete-time operators are iterated directly.
    """
    xr0 = Vr.T @ x0

    if operators.discrete:
        A, F, B, c = operators.A, operators.F, operators.B, operators.c
        K = len(u) if u is not None else n_steps
        b = B.reshape(-1) if B is not None and u is not None else None

        def f(x, k):
            x_next = A @ x
            if F is not None:
                x_next = x_next + F @ get_quadratic_terms(x)
            if b is not None:
                x_next = x_next + b * u[k]
            if c is not None:
                x_next = x_next + c
            return x_next

        diverged, S_hat = solve_difference_model(xr0, K, f)
    else:
        diverged, S_hat = semi_implicit_euler(
            operators.A, operators.F, operators.B, dt, u, xr0,
            n_steps=n_steps, c=operators.c, strict=strict,
        )

    return RomPrediction(diverged=diverged, S_hat=S_hat, S_rec=Vr @ S_hat)


# =============================================================================
# BASIS SIZE SWEEP
# =============================================================================

@dataclass
class ErrorSweep:
    """Relative state errors of the inferred and intrusive models per r."""
    r_vals: np.ndarray
    err_inf: np.ndarray
    err_int: np.ndarray
    diverged_inf: Optional[np.ndarray] = None
    diverged_int: Optional[np.ndarray] = None

    def as_dict(self) -> dict:
        """Arrays for np.savez; unset divergence flags are left out."""
        out = {'r_vals': self.r_vals, 'err_inf': self.err_inf, 'err_int': self.err_int}
        if self.diverged_inf is not None:
            out['diverged_inf'] = self.diverged_inf
        if self.diverged_int is not None:
            out['diverged_int'] = self.diverged_int
        return out


def basis_size_sweep(
    ops_inf: ROMOperators, ops_int: ROMOperators, V: np.ndarray, r_vals,
    dt: float, u_ref: np.ndarray, x0: np.ndarray, S_ref: np.ndarray,
    logger: Optional[logging.Logger] = None, strict: bool = False,
) -> ErrorSweep:
    """
    Relative state error of both reduced models for each basis size.

    Both operator sets are learned/projected once at the largest size and
    truncated to each r (leading block of A, extracted F, leading rows of B).
    A diverged simulation records an error of nan.

    Parameters
    ----------
    ops_inf, ops_int : ROMOperators
        Inferred and intrusive operators of order >= max(r_vals).
    V : np.ndarray
        POD basis with at least max(r_vals) columns.
    r_vals : iterable of int
        Basis sizes to evaluate.
    dt, u_ref, x0 : reference simulation settings.
    S_ref : np.ndarray
        Full-order reference trajectory (n, K+1).
    """
    logger = logger or logging.getLogger(__name__)
    r_vals = np.asarray(list(r_vals), dtype=int)
    err_inf = np.full(r_vals.size, np.nan)
    err_int = np.full(r_vals.size, np.nan)
    div_inf = np.zeros(r_vals.size, dtype=bool)
    div_int = np.zeros(r_vals.size, dtype=bool)

    for j, r in enumerate(r_vals):
        Vr = V[:, :r]

        pred = simulate_rom(ops_inf.truncate(r), Vr, dt, u_ref, x0, strict=strict)
        div_inf[j] = pred.diverged
        if pred.diverged:
            logger.warning(f"  Inferred ROM unstable at r = {r}")
        else:
            err_inf[j] = relative_state_error(pred.S_rec, S_ref)

        pred = simulate_rom(ops_int.truncate(r), Vr, dt, u_ref, x0, strict=strict)
        div_int[j] = pred.diverged
        if pred.diverged:
            logger.warning(f"  Intrusive ROM unstable at r = {r}")
        else:
            err_int[j] = relative_state_error(pred.S_rec, S_ref)

        logger.info(f"  r = {r:3d}: err_inf = {err_inf[j]:.4e}, err_int = {err_int[j]:.4e}")

    return ErrorSweep(r_vals=r_vals, err_inf=err_inf, err_int=err_int,
                      diverged_inf=div_inf, diverged_int=div_int)


# =============================================================================
# ENERGY REPORT
# =============================================================================

def energy_report(operators: ROMOperators, S: np.ndarray, u: Optional[np.ndarray]) -> dict:
    """
    Constraint residuals and energy-rate series of an operator set.

    Parameters
    ----------
    operators : ROMOperators
        Operators of order S.shape[0] (full or reduced).
    S : np.ndarray
        Trajectory in the operators' coordinates.
    u : np.ndarray or None
        Inputs that produced S.

    A model without a quadratic term has zero residuals and a zero
    quadratic energy rate.
    """
    if operators.F is not None:
        report = {
            'CR_F': constraint_residual_F(operators.F),
            'CR_H': constraint_residual_H(operators.H),
            'QER_F': quad_energy_rate(operators.F, S),
            'QER_H': quad_energy_rate(operators.H, S),
        }
    else:
        report = {
            'CR_F': 0.0,
            'CR_H': 0.0,
            'QER_F': np.zeros(S.shape[1]),
            'QER_H': np.zeros(S.shape[1]),
        }
    report['LER'] = lin_energy_rate(operators.A, S)
    if operators.B is not None and u is not None:
        report['CER'] = control_energy_rate(operators.B, S, u)
    else:
        report['CER'] = np.zeros(S.shape[1])
    report['TER'] = report['QER_H'] + report['LER'] + report['CER']
    return report
