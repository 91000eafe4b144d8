from __future__ import annotations

from dataclasses import dataclass
from typing import List

from ringfollow.errors import ConfigError


@dataclass(frozen=True)
class RingTopology:
    """Fixed neighbor relation: agent ``i`` follows agent ``(i + 1) mod N``."""

    num_agents: int

    def __post_init__(self) -> None:
        if self.num_agents <= 1:
            raise ConfigError(f"a ring needs at least 2 agents, got {self.num_agents}")

    def leader_of(self, index: int) -> int:
        if not 0 <= index < self.num_agents:
            raise IndexError(f"agent index {index} outside ring of {self.num_agents}")
        return (index + 1) % self.num_agents

    def leaders(self) -> List[int]:
        return [self.leader_of(i) for i in range(self.num_agents)]
