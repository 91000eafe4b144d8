from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import hashlib
import logging
from threading import BrokenBarrierError
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from ringfollow.errors import CollectiveError

logger = logging.getLogger(__name__)


@dataclass
class AgentRecord:
    agent_index: int
    position: Sequence[float]
    speed: float


@dataclass(frozen=True)
class GatherResult:
    step: int
    positions: np.ndarray
    speeds: np.ndarray
    quit: bool = False

    def digest(self) -> str:
        h = hashlib.sha256()
        h.update(np.int64(self.step).tobytes())
        h.update(np.ascontiguousarray(self.positions, dtype=np.float64).tobytes())
        h.update(np.ascontiguousarray(self.speeds, dtype=np.float64).tobytes())
        h.update(b"\x01" if self.quit else b"\x00")
        return h.hexdigest()


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


class Collective(ABC):
    """Blocking, all-or-nothing exchange of per-agent state once per step."""

    def __init__(self, size: int) -> None:
        self.size = size

    @abstractmethod
    def allgather(self, records: Mapping[int, AgentRecord], step: int, quit: bool = False) -> GatherResult:
        """Contribute the local agents' records and return everyone's view for ``step``."""

    def abort(self) -> None:
        """Release peers blocked in a gather after a local failure."""


class LocalCollective(Collective):
    """All agents live in this process and contribute together in one call."""

    def allgather(self, records: Mapping[int, AgentRecord], step: int, quit: bool = False) -> GatherResult:
        missing = [i for i in range(self.size) if i not in records]
        if missing:
            raise CollectiveError(f"step {step}: no contribution from agents {missing}")
        positions = np.array([records[i].position[:2] for i in range(self.size)], dtype=np.float64)
        speeds = np.array([records[i].speed for i in range(self.size)], dtype=np.float64)
        return GatherResult(step=step, positions=_frozen(positions), speeds=_frozen(speeds), quit=quit)


@dataclass
class SharedRing:
    """Shared-memory slots and barrier for ``size`` cooperating processes."""

    size: int
    positions: Any
    speeds: Any
    steps: Any
    quit: Any
    barrier: Any

    @classmethod
    def create(cls, ctx: Any, size: int) -> "SharedRing":
        return cls(
            size=size,
            positions=ctx.RawArray("d", size * 2),
            speeds=ctx.RawArray("d", size),
            steps=ctx.RawArray("q", size),
            quit=ctx.RawArray("b", size),
            barrier=ctx.Barrier(size),
        )


class ProcessCollective(Collective):
    """One agent per process, exchanged through :class:`SharedRing`.

    Each gather is two barrier phases: every rank writes its own slot, waits,
    copies the whole vector, and waits again so no rank overwrites a slot
    while another is still reading it.
    """

    def __init__(self, shared: SharedRing, rank: int, timeout: Optional[float] = 30.0) -> None:
        super().__init__(shared.size)
        if not 0 <= rank < shared.size:
            raise ValueError(f"rank {rank} outside ring of {shared.size}")
        self.shared = shared
        self.rank = rank
        self.timeout = timeout
        self._positions = np.frombuffer(shared.positions, dtype=np.float64).reshape(shared.size, 2)
        self._speeds = np.frombuffer(shared.speeds, dtype=np.float64)
        self._steps = np.frombuffer(shared.steps, dtype=np.int64)
        self._quit = np.frombuffer(shared.quit, dtype=np.int8)

    def _wait(self, step: int) -> None:
        try:
            self.shared.barrier.wait(self.timeout)
        except BrokenBarrierError as exc:
            logger.error("rank %d: gather for step %d failed, a participant did not contribute", self.rank, step)
            raise CollectiveError(f"rank {self.rank}: gather for step {step} broken or timed out") from exc

    def allgather(self, records: Mapping[int, AgentRecord], step: int, quit: bool = False) -> GatherResult:
        if set(records) != {self.rank}:
            raise ValueError(f"rank {self.rank} may only contribute its own record, got {sorted(records)}")
        rec = records[self.rank]
        self._positions[self.rank] = rec.position[:2]
        self._speeds[self.rank] = rec.speed
        self._steps[self.rank] = step
        self._quit[self.rank] = 1 if quit else 0

        self._wait(step)
        steps = self._steps.copy()
        positions = self._positions.copy()
        speeds = self._speeds.copy()
        any_quit = bool(self._quit.any())
        self._wait(step)

        if np.any(steps != step):
            self.shared.barrier.abort()
            raise CollectiveError(f"rank {self.rank}: participants out of step, expected {step}, saw {steps.tolist()}")
        return GatherResult(step=step, positions=_frozen(positions), speeds=_frozen(speeds), quit=any_quit)

    def abort(self) -> None:
        self.shared.barrier.abort()
