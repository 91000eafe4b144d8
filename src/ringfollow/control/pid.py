from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class PIDConfig:
    kp: float
    ki: float = 0.0
    kd: float = 0.0
    integral_limit: Optional[float] = None


class PIDController:
    def __init__(self, cfg: PIDConfig) -> None:
        self.cfg = cfg
        self._integral = 0.0
        self._prev_error: Optional[float] = None

    def reset(self) -> None:
        self._integral = 0.0
        self._prev_error = None

    def step(self, error: float, dt: float) -> float:
        cfg = self.cfg
        self._integral += error * dt
        if cfg.integral_limit is not None:
            self._integral = max(-cfg.integral_limit, min(cfg.integral_limit, self._integral))
        # no derivative kick on the first sample
        prev = error if self._prev_error is None else self._prev_error
        deriv = (error - prev) / dt if dt > 0 else 0.0
        self._prev_error = error
        return cfg.kp * error + cfg.ki * self._integral + cfg.kd * deriv
