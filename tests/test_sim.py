import multiprocessing
import time
from dataclasses import replace
from math import pi

import pytest

from ringfollow.errors import CollectiveError, ConfigError
from ringfollow.ring.collective import AgentRecord, ProcessCollective, SharedRing
from ringfollow.sim.distributed import run_distributed
from ringfollow.sim.rollout import RingSimulation
from ringfollow.sim.vehicle import VehicleParams, VehicleState, step
from ringfollow.utils.config import build_run_config


STEADY_BEHAVIOR = {"v0": 12.0, "T": 1.5, "s0": 2.0, "a": 1.0, "b": 1.5, "delta": 4.0, "gap_offset": 0.0}


def _raw(num_agents=3, **sim):
    sim_cfg = {"step_size": 1e-3, "end_time": 10.0, "max_steps": 1000, "record_every": 1}
    sim_cfg.update(sim)
    return {
        "ring": {"num_agents": num_agents, "radius": 25.0, "initial_speed": 10.0},
        "sim": sim_cfg,
        "behavior": {"default": dict(STEADY_BEHAVIOR)},
        "driver": {"kp": 4.0},
    }


def test_bicycle_step_runs():
    params = VehicleParams(wheel_base=2.8, steer_limit=0.6, a_min=-6.0, a_max=3.0)
    state = VehicleState(x=0.0, y=0.0, yaw=0.0, v=1.0)
    next_state = step(state, steer=0.0, accel=0.0, dt=0.1, params=params)
    assert next_state.x > state.x


def test_braking_does_not_reverse():
    params = VehicleParams()
    state = step(VehicleState(0.0, 0.0, 0.0, 0.1), steer=0.0, accel=-8.0, dt=0.1, params=params)
    assert state.v == 0.0


def test_equally_spaced_ring_holds_speed():
    sim = RingSimulation(build_run_config(_raw()))
    result = sim.run()
    assert result.steps == 1000
    assert len(result.frames) == 1000
    assert result.frames[0].speeds == pytest.approx((10.0, 10.0, 10.0))
    for frame in result.frames:
        for speed in frame.desired.values():
            assert abs(speed - 10.0) <= 0.5
    assert sim.coordinator.snapshot.gaps == pytest.approx([2.0 * pi * 25.0 / 3.0] * 3, rel=1e-2)


def test_step_advances_time_and_counter():
    sim = RingSimulation(build_run_config(_raw(record_every=5)))
    sim.step()
    sim.step()
    assert sim.step_number == 2
    assert sim.time == pytest.approx(2e-3)
    assert [f.step for f in sim.frames] == [0]
    assert all(a.controller.traveled_distance > 0.0 for a in sim.agents)


def test_quit_request_stops_before_controllers_run():
    sim = RingSimulation(build_run_config(_raw()))
    result = sim.run(quit_at_step=5)
    assert result.quit is True
    assert result.steps == 5


def test_polyline_gap_model_runs():
    raw = _raw(max_steps=50)
    raw["ring"]["gap_model"] = "polyline"
    raw["ring"]["path"] = [[25.0 * x, 25.0 * y] for x, y in [(1, 0), (0, 1), (-1, 0), (0, -1)]]
    sim = RingSimulation(build_run_config(raw))
    result = sim.run()
    assert result.steps == 50
    assert sim.coordinator.snapshot.gaps.sum() == pytest.approx(sim.path.length)


def test_gather_times_out_without_peers():
    shared = SharedRing.create(multiprocessing.get_context("spawn"), 2)
    coll = ProcessCollective(shared, rank=0, timeout=0.2)
    with pytest.raises(CollectiveError):
        coll.allgather({0: AgentRecord(0, (0.0, 0.0), 1.0)}, step=0)


def test_process_collective_only_accepts_own_record():
    shared = SharedRing.create(multiprocessing.get_context("spawn"), 2)
    coll = ProcessCollective(shared, rank=1, timeout=0.2)
    with pytest.raises(ValueError):
        coll.allgather({0: AgentRecord(0, (0.0, 0.0), 1.0)}, step=0)


def test_distributed_views_are_identical():
    cfg = build_run_config(_raw(num_agents=4, max_steps=40, record_every=10))
    results = run_distributed(cfg)
    assert [r.steps for r in results] == [40] * 4
    assert len(results[0].digests) == 40
    for other in results[1:]:
        assert other.digests == results[0].digests
    assert len(results[0].frames) == 4
    assert results[1].frames == []


def test_distributed_quit_is_observed_by_everyone():
    cfg = build_run_config(_raw(num_agents=4, max_steps=100))
    results = run_distributed(cfg, quit_requests={2: 10})
    assert [r.steps for r in results] == [10] * 4
    assert all(r.quit for r in results)
    assert all(len(r.digests) == 11 for r in results)


def test_distributed_dropout_fails_every_rank_fast():
    cfg = build_run_config(_raw(num_agents=4, max_steps=1000, collective_timeout=60.0))
    started = time.monotonic()
    with pytest.raises(CollectiveError, match=r"\[0, 1, 2, 3\]"):
        run_distributed(cfg, fail_requests={1: 5})
    assert time.monotonic() - started < 30.0


def test_distributed_setup_error_is_a_config_error():
    raw = _raw(num_agents=3, max_steps=1000, collective_timeout=60.0)
    raw["stochastic"] = {"enabled": True, "mag_a": 0.2, "mag_b": 0.2, "seed": 1}
    cfg = build_run_config(raw)
    # bypass the up-front check so rank 2 rejects its settings while building agents
    cfg.behaviors[2] = replace(cfg.behaviors[2], max_accel=0.1)
    started = time.monotonic()
    with pytest.raises(ConfigError, match="rank 2"):
        run_distributed(cfg)
    assert time.monotonic() - started < 30.0
