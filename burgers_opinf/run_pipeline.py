"""
Run the Burgers Operator Inference study.

This script orchestrates the complete study for one diffusion coefficient:
1. Full-order model assembly and reference trajectory
2. Training snapshots from random-input trajectories
3. POD basis
4. Intrusive projection and (stability-guarded) operator inference
5. Relative state error across basis sizes and energy diagnostics

Usage:
    python -m burgers_opinf.run_pipeline --config configs/burgers_type1.yaml

    # Distribute training trajectories over MPI ranks
    mpirun -np 4 python -m burgers_opinf.run_pipeline --config config.yaml --mpi
"""

import argparse
import time
import numpy as np
import yaml

from .core import ROMOperators, save_operators, semi_implicit_euler
from .data import drop_diverged, draw_random_inputs, generate_snapshots, save_snapshots
from .diagnostics import energy
from .errors import NoStableModelFound
from .evaluation import basis_size_sweep, energy_report
from .intrusive import intrusive_operators
from .physics import get_burgers_matrices, problem_setup
from .pod import compute_pod, save_basis
from .training import OpInfParams, find_stable_model, infer_operators
from .utils import (
    BurgersConfig,
    check_step_completed,
    get_output_paths,
    get_run_directory,
    load_config,
    print_config_summary,
    print_header,
    save_config,
    save_step_status,
    setup_logging,
)


def _get_comm(use_mpi: bool):
    """MPI.COMM_WORLD if requested, else None."""
    if not use_mpi:
        return None
    from mpi4py import MPI
    return MPI.COMM_WORLD


def run_study(cfg: BurgersConfig, logger, comm=None, write: bool = True) -> dict:
    """
    Run the full study for one configuration.

    Returns
    -------
    dict
        'sweep' (ErrorSweep), 'r_stable', 'metrics', and the operator sets.
    """
    paths = get_output_paths(cfg.run_dir) if write else None
    K = cfg.K

    # FOM and reference trajectory
    logger.info(f"Assembling FOM: N={cfg.N}, dx={cfg.dx:.4e}, dt={cfg.dt:g}, mu={cfg.mu}")
    A, B, F = get_burgers_matrices(cfg.N, cfg.dx, cfg.dt, cfg.mu)
    setup = problem_setup(cfg.problem_type, cfg.N, K)
    x0, u_ref = setup['x0'], setup['u_ref']
    input_range = cfg.input_range or setup['input_range']

    t0 = time.time()
    diverged, S_ref = semi_implicit_euler(A, F, B, cfg.dt, u_ref, x0, strict=cfg.strict)
    if diverged:
        logger.warning("FOM reference trajectory diverged")
    logger.info(f"  Reference trajectory: {S_ref.shape} in {time.time() - t0:.1f}s")

    fom = ROMOperators(A=A, F=F, B=B)
    fom_report = energy_report(fom, S_ref, u_ref)
    logger.info(f"  FOM constraint residuals: CR_H={fom_report['CR_H']:.3e}, CR_F={fom_report['CR_F']:.3e}")

    # Training snapshots
    logger.info(f"Generating {cfg.n_inputs} training trajectories, inputs on {input_range}...")
    rng = np.random.default_rng(cfg.seed)
    U_rand = draw_random_inputs(K, cfg.n_inputs, input_range, rng)
    snapshots = generate_snapshots(A, F, B, cfg.dt, x0, U_rand, comm=comm, logger=logger,
                                   strict=cfg.strict)
    if write and cfg.save_snapshots:
        save_snapshots(paths["snapshots"], snapshots, dt=cfg.dt, mu=cfg.mu)
        logger.info(f"  Saved snapshots to {paths['snapshots']}")
    n_diverged = int(np.sum(snapshots.diverged))
    snapshots = drop_diverged(snapshots, logger)

    # POD
    logger.info("Computing POD basis...")
    basis = compute_pod(snapshots.X, logger)
    r_max = min(cfg.r_max, basis.rank)
    V = basis.Vr(r_max)

    # Intrusive and inferred operators
    logger.info(f"Projecting FOM operators onto {r_max} POD modes...")
    ops_int = intrusive_operators(A, F, B, V)

    params = OpInfParams.from_config(cfg)
    logger.info(f"Inferring operators (form {params.modelform}, {params.modeltime})...")
    if cfg.stability_check:
        stable = find_stable_model(snapshots.X, snapshots.U, V, params, r_max,
                                   R=snapshots.R, boundaries=snapshots.boundaries, logger=logger)
        r_stable, ops_inf = stable.r, stable.operators
    else:
        result = infer_operators(snapshots.X, snapshots.U, V, params, R=snapshots.R,
                                 boundaries=snapshots.boundaries, logger=logger)
        r_stable, ops_inf = r_max, result.operators

    # Error sweep
    logger.info(f"Evaluating reduced models for r = 1..{r_stable}...")
    sweep = basis_size_sweep(ops_inf, ops_int.truncate(r_stable), V, range(1, r_stable + 1),
                             cfg.dt, u_ref, x0, S_ref, logger=logger, strict=cfg.strict)

    # Energy diagnostics in reduced coordinates
    S_proj = V[:, :r_stable].T @ S_ref
    inf_report = energy_report(ops_inf, S_proj, u_ref)
    int_report = energy_report(ops_int.truncate(r_stable), S_proj, u_ref)

    metrics = {
        'r_max': int(r_max),
        'r_stable': int(r_stable),
        'reference_diverged': bool(diverged),
        'training_diverged': n_diverged,
        'constraint_residual': {
            'fom': {'F': fom_report['CR_F'], 'H': fom_report['CR_H']},
            'opinf': {'F': inf_report['CR_F'], 'H': inf_report['CR_H']},
            'intrusive': {'F': int_report['CR_F'], 'H': int_report['CR_H']},
        },
        'err_inf': [float(e) for e in sweep.err_inf],
        'err_int': [float(e) for e in sweep.err_int],
    }

    if write:
        save_basis(basis, paths["pod_basis"])
        np.save(paths["reference"], S_ref)
        save_operators(ops_inf, paths["operators_opinf"])
        save_operators(ops_int, paths["operators_intrusive"])
        np.savez(paths["error_sweep"], **sweep.as_dict())
        energy_dict = {'energy_fom': energy(S_ref)}
        for prefix, report in (("fom", fom_report), ("opinf", inf_report), ("intrusive", int_report)):
            for key in ("QER_F", "QER_H", "LER", "CER", "TER"):
                energy_dict[f"{prefix}_{key}"] = report[key]
        np.savez(paths["energy"], **energy_dict)
        with open(paths["metrics"], 'w') as f:
            yaml.dump(metrics, f, default_flow_style=False)
        logger.info(f"Saved results to {cfg.run_dir}")

    return {
        'sweep': sweep,
        'r_stable': r_stable,
        'metrics': metrics,
        'ops_inf': ops_inf,
        'ops_int': ops_int,
        'basis': basis,
        'S_ref': S_ref,
    }


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Burgers Operator Inference study")
    parser.add_argument("--config", type=str, required=True, help="Path to config YAML")
    parser.add_argument("--run-dir", type=str, default=None, help="Existing run directory")
    parser.add_argument("--mpi", action="store_true", help="Distribute training trajectories over MPI")
    args = parser.parse_args()

    comm = _get_comm(args.mpi)
    rank = comm.Get_rank() if comm is not None else 0

    cfg = load_config(args.config)
    if rank == 0:
        run_dir = get_run_directory(cfg, args.run_dir)
    else:
        run_dir = None
    if comm is not None:
        run_dir = comm.bcast(run_dir, root=0)
    cfg.run_dir = run_dir

    logger = setup_logging("burgers_opinf", run_dir if rank == 0 else None, cfg.log_level)

    if args.run_dir and check_step_completed(run_dir, "study"):
        logger.info(f"Study already completed in {run_dir}, skipping")
        return

    if rank == 0:
        print_header("BURGERS OPERATOR INFERENCE")
        print(f"  Run directory: {run_dir}")
        if cfg.verbose:
            print_config_summary(cfg)
        save_config(cfg, run_dir)

    try:
        results = run_study(cfg, logger, comm=comm, write=(rank == 0))

        if rank == 0:
            sweep = results['sweep']
            print_header("ERROR SUMMARY")
            for r, e_inf, e_int in zip(sweep.r_vals, sweep.err_inf, sweep.err_int):
                print(f"    r = {r:3d}:  opinf = {e_inf:.4e}   intrusive = {e_int:.4e}")
            save_step_status(run_dir, "study", "completed", {"r_stable": results['r_stable']})
            print_header("STUDY COMPLETE")
            logger.info("Study completed successfully")

    except NoStableModelFound as e:
        logger.error(f"Study failed: {e}")
        if rank == 0:
            save_step_status(run_dir, "study", "failed", {"error": str(e)})
        raise

    except Exception as e:
        logger.error(f"Study failed: {e}", exc_info=True)
        if rank == 0:
            save_step_status(run_dir, "study", "failed", {"error": str(e)})
        raise


if __name__ == "__main__":
    main()
