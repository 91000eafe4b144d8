from __future__ import annotations

from dataclasses import dataclass
from math import atan, atan2, pi, sin
from typing import Optional

from ringfollow.control.pid import PIDConfig, PIDController
from ringfollow.ring.geometry import PolylineRing
from ringfollow.sim.vehicle import VehicleState


@dataclass
class DriverInputs:
    steer: float
    accel: float


@dataclass
class DriverConfig:
    kp: float = 2.0
    ki: float = 0.0
    kd: float = 0.0
    lookahead: float = 6.0
    integral_limit: Optional[float] = None


def _wrap_angle(angle: float) -> float:
    while angle > pi:
        angle -= 2.0 * pi
    while angle < -pi:
        angle += 2.0 * pi
    return angle


class PathFollowerDriver:
    """Pure-pursuit steering plus PID speed tracking along a closed path."""

    def __init__(self, path: PolylineRing, wheel_base: float, cfg: DriverConfig) -> None:
        self.path = path
        self.wheel_base = wheel_base
        self.cfg = cfg
        self.speed_pid = PIDController(PIDConfig(kp=cfg.kp, ki=cfg.ki, kd=cfg.kd, integral_limit=cfg.integral_limit))
        self.desired_speed = 0.0

    def set_desired_speed(self, speed: float) -> None:
        self.desired_speed = speed

    def steering(self, state: VehicleState) -> float:
        s = self.path.project((state.x, state.y))
        tx, ty = self.path.point_at(s + self.cfg.lookahead)
        alpha = _wrap_angle(atan2(ty - state.y, tx - state.x) - state.yaw)
        return atan(2.0 * self.wheel_base * sin(alpha) / self.cfg.lookahead)

    def inputs(self, state: VehicleState, dt: float) -> DriverInputs:
        accel = self.speed_pid.step(self.desired_speed - state.v, dt)
        return DriverInputs(steer=self.steering(state), accel=accel)
