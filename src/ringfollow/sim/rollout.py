from __future__ import annotations

from dataclasses import dataclass, field
import logging
from math import atan2, pi
from typing import Dict, List, Optional, Sequence, Tuple

from ringfollow.control.idm import IDMController
from ringfollow.control.path_follower import PathFollowerDriver
from ringfollow.ring.collective import AgentRecord, Collective, LocalCollective
from ringfollow.ring.coordinator import GapFn, RingCoordinator, RingSnapshot
from ringfollow.ring.geometry import CircleGap, PolylineRing, circle_points, ring_placement
from ringfollow.ring.topology import RingTopology
from ringfollow.sim.vehicle import Vehicle, VehicleState
from ringfollow.utils.config import RunConfig
from ringfollow.utils.logging_utils import get_logger


@dataclass
class TelemetryFrame:
    t: float
    step: int
    positions: Tuple[Tuple[float, float], ...]
    speeds: Tuple[float, ...]
    desired: Dict[int, float]


@dataclass
class RunResult:
    steps: int
    time: float
    quit: bool
    frames: List[TelemetryFrame] = field(default_factory=list)
    digests: List[str] = field(default_factory=list)
    traveled: Dict[int, float] = field(default_factory=dict)
    final_speeds: Dict[int, float] = field(default_factory=dict)


@dataclass
class Agent:
    index: int
    vehicle: Vehicle
    controller: IDMController
    driver: PathFollowerDriver

    def record(self) -> AgentRecord:
        return AgentRecord(agent_index=self.index, position=self.vehicle.position, speed=self.vehicle.speed)


def build_path(cfg: RunConfig) -> PolylineRing:
    if cfg.ring.gap_model == "polyline" and cfg.ring.path:
        return PolylineRing(cfg.ring.path)
    return PolylineRing(circle_points(cfg.ring.radius))


def build_gap_fn(cfg: RunConfig, path: PolylineRing) -> GapFn:
    if cfg.ring.gap_model == "polyline":
        return path
    return CircleGap(cfg.ring.radius)


def initial_poses(cfg: RunConfig, path: PolylineRing) -> List[Tuple[float, float, float]]:
    n = cfg.ring.num_agents
    if cfg.ring.gap_model != "polyline":
        return ring_placement(n, cfg.ring.radius, cfg.ring.arc_span)
    spacing = path.length * (cfg.ring.arc_span / (2.0 * pi)) / n
    poses = []
    for i in range(n):
        x, y = path.point_at(i * spacing)
        nx, ny = path.point_at(i * spacing + 0.5)
        poses.append((x, y, atan2(ny - y, nx - x)))
    return poses


def build_agents(cfg: RunConfig, indices: Sequence[int], path: PolylineRing) -> List[Agent]:
    poses = initial_poses(cfg, path)
    agents: List[Agent] = []
    for i in sorted(indices):
        x, y, yaw = poses[i]
        vehicle = Vehicle(VehicleState(x=x, y=y, yaw=yaw, v=cfg.ring.initial_speed), cfg.vehicle)
        controller = IDMController(cfg.behaviors[i], vehicle, initial_speed=cfg.ring.initial_speed)
        sto = cfg.stochastic_for(i)
        if sto.enabled:
            controller.set_stochastic(True, sto.mean_interval, sto.spread, sto.mag_a, sto.mag_b, seed=sto.seed)
        driver = PathFollowerDriver(path, cfg.vehicle.wheel_base, cfg.driver)
        agents.append(Agent(index=i, vehicle=vehicle, controller=controller, driver=driver))
    return agents


class RingSimulation:
    """Fixed-step loop over the agents owned by this process.

    With the default :class:`LocalCollective` all agents of the ring live
    here. Under a process collective ``indices`` holds just this rank.
    """

    def __init__(
        self,
        cfg: RunConfig,
        collective: Optional[Collective] = None,
        indices: Optional[Sequence[int]] = None,
        record: bool = True,
        audit: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.cfg = cfg
        n = cfg.ring.num_agents
        self.topology = RingTopology(n)
        self.collective = collective if collective is not None else LocalCollective(n)
        self.path = build_path(cfg)
        self.coordinator = RingCoordinator(self.topology, self.collective, build_gap_fn(cfg, self.path))
        self.agents = build_agents(cfg, range(n) if indices is None else indices, self.path)
        self.record = record
        self.audit = audit
        self.logger = logger or get_logger("ringfollow.sim")

        self.time = 0.0
        self.step_number = 0
        self.frames: List[TelemetryFrame] = []
        self.digests: List[str] = []
        self._quit_requested = False

    def request_quit(self) -> None:
        """Ask every participant to stop at the next gather."""
        self._quit_requested = True

    def step(self) -> RingSnapshot:
        """Run one tick. Returns the snapshot; nothing advances if it carries a quit."""
        dt = self.cfg.sim.step_size
        records = {agent.index: agent.record() for agent in self.agents}
        snapshot = self.coordinator.refresh(records, self.step_number, quit=self._quit_requested)
        if self.audit:
            self.digests.append(snapshot.digest)
        if snapshot.quit:
            return snapshot

        desired: Dict[int, float] = {}
        for agent in self.agents:
            i = agent.index
            lead_gap = float(snapshot.gaps[i]) - agent.controller.cfg.gap_offset
            desired[i] = agent.controller.synchronize(self.time, dt, lead_gap, float(snapshot.leader_speeds[i]))

        if self.record and self.step_number % self.cfg.sim.record_every == 0:
            self.frames.append(
                TelemetryFrame(
                    t=self.time,
                    step=self.step_number,
                    positions=tuple((float(p[0]), float(p[1])) for p in snapshot.positions),
                    speeds=tuple(float(v) for v in snapshot.speeds),
                    desired=desired,
                )
            )

        for agent in self.agents:
            agent.driver.set_desired_speed(desired[agent.index])
            inputs = agent.driver.inputs(agent.vehicle.state, dt)
            agent.vehicle.advance(inputs.steer, inputs.accel, dt)

        self.time += dt
        self.step_number += 1
        return snapshot

    def run(self, quit_at_step: Optional[int] = None) -> RunResult:
        sim = self.cfg.sim
        self.logger.info("starting ring run: %s", self.cfg.summary())
        quit_seen = False
        while self.time < sim.end_time and (sim.max_steps is None or self.step_number < sim.max_steps):
            if quit_at_step is not None and self.step_number >= quit_at_step:
                self.request_quit()
            snapshot = self.step()
            if snapshot.quit:
                quit_seen = True
                self.logger.info("quit observed at step %d (t=%.3f)", self.step_number, self.time)
                break

        self.logger.info("ring run finished after %d steps (t=%.3f)", self.step_number, self.time)
        return RunResult(
            steps=self.step_number,
            time=self.time,
            quit=quit_seen,
            frames=list(self.frames),
            digests=list(self.digests),
            traveled={a.index: a.controller.traveled_distance for a in self.agents},
            final_speeds={a.index: a.vehicle.speed for a in self.agents},
        )
