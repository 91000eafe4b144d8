from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping, Sequence, Tuple

import numpy as np

from ringfollow.ring.collective import AgentRecord, Collective, GatherResult
from ringfollow.ring.geometry import CircleGap
from ringfollow.ring.topology import RingTopology

GapFn = Callable[[Sequence[float], Sequence[float]], float]


@dataclass(frozen=True)
class RingSnapshot:
    step: int
    positions: np.ndarray
    speeds: np.ndarray
    leaders: Tuple[int, ...]
    gaps: np.ndarray
    leader_speeds: np.ndarray
    quit: bool
    digest: str


def compute_gaps(
    positions: np.ndarray, speeds: np.ndarray, topology: RingTopology, gap_fn: GapFn
) -> Tuple[np.ndarray, np.ndarray]:
    """Along-path gap and speed of every agent's leader, from one gathered view."""
    n = topology.num_agents
    gaps = np.empty(n, dtype=np.float64)
    leader_speeds = np.empty(n, dtype=np.float64)
    for i in range(n):
        j = topology.leader_of(i)
        gaps[i] = gap_fn(positions[i], positions[j])
        leader_speeds[i] = speeds[j]
    return gaps, leader_speeds


def ring_gaps(positions: np.ndarray, speeds: np.ndarray, radius: float) -> Tuple[np.ndarray, np.ndarray]:
    return compute_gaps(positions, speeds, RingTopology(len(speeds)), CircleGap(radius))


class RingCoordinator:
    """Gathers all agents once per step and resolves each agent's leader gap."""

    def __init__(self, topology: RingTopology, collective: Collective, gap_fn: GapFn) -> None:
        if collective.size != topology.num_agents:
            raise ValueError(
                f"collective spans {collective.size} agents but the ring has {topology.num_agents}"
            )
        self.topology = topology
        self.collective = collective
        self.gap_fn = gap_fn
        self.snapshot: RingSnapshot | None = None

    def refresh(self, records: Mapping[int, AgentRecord], step: int, quit: bool = False) -> RingSnapshot:
        view = self.collective.allgather(records, step, quit)
        self.snapshot = self._resolve(view)
        return self.snapshot

    def _resolve(self, view: GatherResult) -> RingSnapshot:
        gaps, leader_speeds = compute_gaps(view.positions, view.speeds, self.topology, self.gap_fn)
        gaps.setflags(write=False)
        leader_speeds.setflags(write=False)
        return RingSnapshot(
            step=view.step,
            positions=view.positions,
            speeds=view.speeds,
            leaders=tuple(self.topology.leaders()),
            gaps=gaps,
            leader_speeds=leader_speeds,
            quit=view.quit,
            digest=view.digest(),
        )
