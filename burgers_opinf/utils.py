"""
Utility functions for the Burgers OpInf pipeline.

This module provides shared utilities:
- Configuration loading and saving
- Run directory management
- Logging setup
- Work distribution across MPI ranks
- Step status tracking
"""

import os
import yaml
import logging
from datetime import datetime
from dataclasses import dataclass
from typing import Optional, Tuple


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class BurgersConfig:
    """Configuration container for the Burgers OpInf pipeline."""

    # Run identification
    run_name: str = ""
    run_dir: str = ""

    # Paths
    output_base: str = "runs"

    # Physics
    N: int = 2**7 + 1
    T_end: float = 1.0
    dt: float = 1e-4
    mu: float = 0.3
    problem_type: int = 1

    # Snapshots
    n_inputs: int = 10
    seed: Optional[int] = None
    input_range: Optional[Tuple[float, float]] = None
    save_snapshots: bool = False

    # POD
    r_max: int = 20

    # Operator inference
    modelform: str = "LQI"
    modeltime: str = "continuous"
    ddt_order: str = "1ex"
    reg_lin: float = 0.0
    reg_quad: float = 0.0
    stability_check: bool = True

    # Execution
    strict: bool = False
    verbose: bool = True
    log_level: str = "INFO"

    @property
    def dx(self) -> float:
        return 1.0 / (self.N - 1)

    @property
    def K(self) -> int:
        return int(round(self.T_end / self.dt))


def load_config(config_path: str) -> BurgersConfig:
    """Load configuration from YAML file."""
    with open(config_path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    cfg = BurgersConfig()
    cfg.run_name = raw.get("run_name", "")

    # Paths
    paths = raw.get("paths", {})
    cfg.output_base = paths.get("output_base", cfg.output_base)

    # Physics
    physics = raw.get("physics", {})
    cfg.N = int(physics.get("N", cfg.N))
    cfg.T_end = float(physics.get("T_end", cfg.T_end))
    cfg.dt = float(physics.get("dt", cfg.dt))
    cfg.mu = float(physics.get("mu", cfg.mu))
    cfg.problem_type = int(physics.get("problem_type", cfg.problem_type))

    # Snapshots
    snapshots = raw.get("snapshots", {})
    cfg.n_inputs = int(snapshots.get("n_inputs", cfg.n_inputs))
    cfg.seed = snapshots.get("seed")
    input_range = snapshots.get("input_range")
    cfg.input_range = tuple(float(v) for v in input_range) if input_range else None
    cfg.save_snapshots = snapshots.get("save", False)

    # POD
    pod = raw.get("pod", {})
    cfg.r_max = int(pod.get("r_max", cfg.r_max))

    # Operator inference
    opinf = raw.get("opinf", {})
    cfg.modelform = opinf.get("modelform", cfg.modelform)
    cfg.modeltime = opinf.get("modeltime", cfg.modeltime)
    cfg.ddt_order = opinf.get("ddt_order", cfg.ddt_order)
    reg = opinf.get("regularization", {})
    cfg.reg_lin = float(reg.get("lin", cfg.reg_lin))
    cfg.reg_quad = float(reg.get("quad", cfg.reg_quad))
    cfg.stability_check = opinf.get("stability_check", cfg.stability_check)

    # Execution
    execution = raw.get("execution", {})
    cfg.strict = execution.get("strict", cfg.strict)
    cfg.verbose = execution.get("verbose", cfg.verbose)
    cfg.log_level = execution.get("log_level", cfg.log_level)

    return cfg


def save_config(cfg: BurgersConfig, output_path: str, step_name: str = None) -> str:
    """Save configuration to YAML file."""
    config_dict = {
        "run_name": cfg.run_name,
        "run_dir": cfg.run_dir,
        "paths": {"output_base": cfg.output_base},
        "physics": {
            "N": cfg.N, "T_end": cfg.T_end, "dt": cfg.dt,
            "mu": cfg.mu, "problem_type": cfg.problem_type,
        },
        "snapshots": {
            "n_inputs": cfg.n_inputs,
            "seed": cfg.seed,
            "input_range": list(cfg.input_range) if cfg.input_range else None,
            "save": cfg.save_snapshots,
        },
        "pod": {"r_max": cfg.r_max},
        "opinf": {
            "modelform": cfg.modelform,
            "modeltime": cfg.modeltime,
            "ddt_order": cfg.ddt_order,
            "regularization": {"lin": cfg.reg_lin, "quad": cfg.reg_quad},
            "stability_check": cfg.stability_check,
        },
        "execution": {"strict": cfg.strict, "verbose": cfg.verbose, "log_level": cfg.log_level},
    }

    filename = f"config_{step_name}.yaml" if step_name else "config.yaml"
    filepath = os.path.join(output_path, filename)

    with open(filepath, 'w') as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)

    return filepath


# =============================================================================
# RUN DIRECTORY MANAGEMENT
# =============================================================================

def create_run_directory(cfg: BurgersConfig) -> str:
    """Create a new run directory with timestamp."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    dir_name = f"{timestamp}_{cfg.run_name}" if cfg.run_name else timestamp
    run_dir = os.path.join(cfg.output_base, dir_name)
    os.makedirs(run_dir, exist_ok=True)
    cfg.run_dir = run_dir
    return run_dir


def get_run_directory(cfg: BurgersConfig, run_dir: str = None) -> str:
    """Get or create run directory."""
    if run_dir and os.path.isdir(run_dir):
        cfg.run_dir = run_dir
        return run_dir
    return create_run_directory(cfg)


def get_output_paths(run_dir: str) -> dict:
    """Get standard output file paths for a run."""
    return {
        "snapshots": os.path.join(run_dir, "snapshots.h5"),
        "pod_basis": os.path.join(run_dir, "pod_basis.npz"),
        "reference": os.path.join(run_dir, "reference_trajectory.npy"),
        "operators_opinf": os.path.join(run_dir, "operators_opinf.npz"),
        "operators_intrusive": os.path.join(run_dir, "operators_intrusive.npz"),
        "error_sweep": os.path.join(run_dir, "error_sweep.npz"),
        "energy": os.path.join(run_dir, "energy_rates.npz"),
        "metrics": os.path.join(run_dir, "metrics.yaml"),
    }


# =============================================================================
# LOGGING
# =============================================================================

def setup_logging(name: str, run_dir: str, log_level: str = "INFO") -> logging.Logger:
    """Set up logging for a pipeline run."""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []

    formatter = logging.Formatter(
        '%(asctime)s [%(name)s] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler
    console = logging.StreamHandler()
    console.setLevel(getattr(logging, log_level.upper()))
    console.setFormatter(formatter)
    logger.addHandler(console)

    # File handler
    if run_dir:
        log_file = os.path.join(run_dir, f"{name}.log")
        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


# =============================================================================
# STEP STATUS TRACKING
# =============================================================================

STATUS_FILE = "pipeline_status.yaml"


def _read_status(run_dir: str) -> dict:
    """Step records of a run directory ({} if none were written)."""
    status_file = os.path.join(run_dir, STATUS_FILE)
    if not os.path.exists(status_file):
        return {}
    with open(status_file, 'r') as f:
        return yaml.safe_load(f) or {}


def save_step_status(run_dir: str, step: str, status: str, metadata: dict = None):
    """Record the status of a step, keeping the records of other steps."""
    status_data = _read_status(run_dir)
    status_data[step] = {"status": status, "timestamp": datetime.now().isoformat()}
    if metadata:
        status_data[step].update(metadata)

    with open(os.path.join(run_dir, STATUS_FILE), 'w') as f:
        yaml.dump(status_data, f, default_flow_style=False)


def check_step_completed(run_dir: str, step: str) -> bool:
    """True if the run directory records `step` as completed."""
    record = _read_status(run_dir).get(step) or {}
    return record.get("status") == "completed"


# =============================================================================
# MPI UTILITIES
# =============================================================================

def distribute_indices(rank: int, n_total: int, size: int) -> tuple:
    """Distribute indices across MPI ranks."""
    n_per_rank = n_total // size
    start = rank * n_per_rank
    end = (rank + 1) * n_per_rank

    # Last rank handles remainder
    if rank == size - 1 and end != n_total:
        end = n_total

    return start, end, end - start


# =============================================================================
# CONSOLE OUTPUT HELPERS
# =============================================================================

def print_header(title: str, width: int = 70):
    """Print a formatted header."""
    print("\n" + "=" * width)
    print(f" {title}")
    print("=" * width)


def print_config_summary(cfg: BurgersConfig):
    """Print a summary of the configuration."""
    print_header("CONFIGURATION SUMMARY")
    print(f"  Run name: {cfg.run_name or '(auto)'}")
    print(f"  Grid points (N): {cfg.N}, dt: {cfg.dt:g}, steps (K): {cfg.K}")
    print(f"  Diffusion (mu): {cfg.mu}")
    print(f"  Problem type: {cfg.problem_type}")
    print(f"  Training trajectories: {cfg.n_inputs}")
    print(f"  Max basis size (r_max): {cfg.r_max}")
    print(f"  Model form: {cfg.modelform} ({cfg.modeltime}, ddt {cfg.ddt_order})")
    print(f"  Regularization: lin={cfg.reg_lin:g}, quad={cfg.reg_quad:g}")
    print(f"  Stability check: {'enabled' if cfg.stability_check else 'disabled'}")
    print("=" * 70 + "\n")
