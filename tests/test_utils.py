import logging

import pytest
import yaml

from burgers_opinf.utils import (
    BurgersConfig,
    check_step_completed,
    create_run_directory,
    distribute_indices,
    get_run_directory,
    load_config,
    save_config,
    save_step_status,
    setup_logging,
)


@pytest.fixture
def config_file(tmp_path):
    raw = {
        "run_name": "mu05",
        "paths": {"output_base": str(tmp_path / "runs")},
        "physics": {"N": 33, "T_end": 0.5, "dt": 1e-3, "mu": 0.5, "problem_type": 2},
        "snapshots": {"n_inputs": 4, "seed": 7, "input_range": [-0.2, 0.2], "save": True},
        "pod": {"r_max": 8},
        "opinf": {
            "modelform": "LQIC",
            "ddt_order": "2c",
            "regularization": {"lin": 1e-6, "quad": 1e-3},
            "stability_check": False,
        },
        "execution": {"strict": True, "log_level": "DEBUG"},
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(raw))
    return str(path)


def test_load_config(config_file):
    cfg = load_config(config_file)
    assert cfg.run_name == "mu05"
    assert (cfg.N, cfg.T_end, cfg.dt, cfg.mu, cfg.problem_type) == (33, 0.5, 1e-3, 0.5, 2)
    assert cfg.dx == pytest.approx(1 / 32)
    assert cfg.K == 500
    assert cfg.seed == 7
    assert cfg.input_range == (-0.2, 0.2)
    assert cfg.save_snapshots
    assert cfg.r_max == 8
    assert cfg.modelform == "LQIC"
    assert cfg.modeltime == "continuous"
    assert (cfg.reg_lin, cfg.reg_quad) == (1e-6, 1e-3)
    assert not cfg.stability_check
    assert cfg.strict
    assert cfg.log_level == "DEBUG"


def test_defaults_for_empty_config(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    cfg = load_config(str(path))
    assert cfg == BurgersConfig()


def test_save_config_roundtrip(config_file, tmp_path):
    cfg = load_config(config_file)
    out = tmp_path / "out"
    out.mkdir()
    saved = save_config(cfg, str(out), step_name="study")
    assert saved.endswith("config_study.yaml")
    assert load_config(saved) == cfg


def test_run_directories(config_file):
    cfg = load_config(config_file)
    run_dir = create_run_directory(cfg)
    assert run_dir.endswith("_mu05")
    assert cfg.run_dir == run_dir
    assert get_run_directory(cfg, run_dir) == run_dir


def test_step_status(tmp_path):
    run_dir = str(tmp_path)
    assert not check_step_completed(run_dir, "study")
    save_step_status(run_dir, "study", "failed", {"error": "boom"})
    assert not check_step_completed(run_dir, "study")
    save_step_status(run_dir, "study", "completed", {"r_stable": 4})
    assert check_step_completed(run_dir, "study")


@pytest.mark.parametrize("n_total,size", [(10, 3), (4, 4), (7, 1)])
def test_distribute_indices_covers_range(n_total, size):
    covered = []
    for rank in range(size):
        start, end, count = distribute_indices(rank, n_total, size)
        assert count == end - start
        covered.extend(range(start, end))
    assert covered == list(range(n_total))


def test_setup_logging_writes_file(tmp_path):
    logger = setup_logging("burgers_test", str(tmp_path), "INFO")
    logger.info("assembling operators")
    logger.debug("hidden")
    for handler in logger.handlers:
        handler.flush()

    text = (tmp_path / "burgers_test.log").read_text()
    assert "[burgers_test] INFO: assembling operators" in text
    assert "hidden" not in text

    for handler in logger.handlers:
        handler.close()
    logger.handlers = []
    assert logger.level == logging.INFO
