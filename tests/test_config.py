from pathlib import Path

import pytest

from ringfollow.errors import ConfigError
from ringfollow.utils.config import AppConfig, build_run_config

CONFIG_DIR = Path(__file__).resolve().parents[1] / "configs"


def test_from_files_deep_merges(tmp_path: Path):
    base = tmp_path / "base.yaml"
    override = tmp_path / "override.yaml"
    base.write_text("ring:\n  num_agents: 4\n  radius: 30.0\nsim:\n  end_time: 5.0\n", encoding="utf-8")
    override.write_text("ring:\n  radius: 40.0\n", encoding="utf-8")
    cfg = build_run_config(AppConfig.from_files(base, override).raw)
    assert cfg.ring.num_agents == 4
    assert cfg.ring.radius == 40.0
    assert cfg.sim.end_time == 5.0


def test_defaults_use_follower_preset():
    cfg = build_run_config({})
    assert cfg.ring.num_agents == 3
    assert len(cfg.behaviors) == 3
    assert all(b.gap_offset == pytest.approx(4.8895) for b in cfg.behaviors)
    assert cfg.stochastic.enabled is False


def test_per_agent_behavior_overrides():
    raw = {
        "ring": {"num_agents": 4},
        "behavior": {"sequence": ["aggressive", "conservative"], "agents": {"3": {"v0": 6.0}, 0: "normal"}},
    }
    behaviors = build_run_config(raw).behaviors
    assert behaviors[0].min_gap == 6.0
    assert behaviors[1].min_gap == 8.0
    assert behaviors[2].min_gap == 5.0
    assert behaviors[3].desired_speed == 6.0
    assert behaviors[3].min_gap == 8.0


def test_stochastic_seed_per_agent_and_exclusions():
    raw = {
        "ring": {"num_agents": 3},
        "sim": {"seed": 10},
        "stochastic": {"enabled": True, "exclude": [2]},
    }
    cfg = build_run_config(raw)
    assert cfg.stochastic_for(0).seed == 10
    assert cfg.stochastic_for(1).seed == 11
    assert cfg.stochastic_for(2).enabled is False


@pytest.mark.parametrize(
    "raw",
    [
        {"ring": {"num_agents": 1}},
        {"ring": {"radius": 0.0}},
        {"ring": {"gap_model": "spline"}},
        {"ring": {"lanes": 2}},
        {"sim": {"step_size": 0.0}},
        {"sim": {"record_every": 0}},
        {"behavior": {"default": "reckless"}},
        {"behavior": {"agents": {7: "normal"}}},
        {"behavior": {"default": {"v0": 0.0, "T": 1.0, "s0": 2.0, "a": 1.0, "b": 1.0}}},
        {"stochastic": {"enabled": True, "exclude": ["x"]}},
        {"stochastic": {"enabled": True, "exclude": [[1]]}},
    ],
)
def test_invalid_configs_fail_before_run(raw):
    with pytest.raises(ConfigError):
        build_run_config(raw)


def test_shipped_configs_load():
    ring = build_run_config(AppConfig.from_files(CONFIG_DIR / "ring.yaml").raw)
    assert ring.ring.num_agents == 6
    mixed = build_run_config(AppConfig.from_files(CONFIG_DIR / "ring_mixed.yaml").raw)
    assert len(mixed.behaviors) == 19
    assert mixed.stochastic_for(18).enabled is False
    assert mixed.stochastic_for(0).enabled is True


def test_stochastic_magnitudes_checked_against_each_agent():
    raw = {
        "ring": {"num_agents": 3},
        "behavior": {"agents": {2: {"a": 0.1}}},
        "stochastic": {"enabled": True, "mag_a": 0.2},
    }
    with pytest.raises(ConfigError, match="agent 2"):
        build_run_config(raw)

    raw["stochastic"]["exclude"] = [2]
    cfg = build_run_config(raw)
    assert cfg.stochastic_for(2).enabled is False
