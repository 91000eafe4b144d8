from __future__ import annotations

from dataclasses import dataclass
from math import cos, sin, tan
from typing import Tuple


@dataclass
class VehicleState:
    x: float
    y: float
    yaw: float
    v: float


@dataclass
class VehicleParams:
    wheel_base: float = 2.8
    steer_limit: float = 0.6
    a_min: float = -8.0
    a_max: float = 4.0


def step(state: VehicleState, steer: float, accel: float, dt: float, params: VehicleParams) -> VehicleState:
    steer = max(-params.steer_limit, min(params.steer_limit, steer))
    accel = max(params.a_min, min(params.a_max, accel))
    x = state.x + state.v * cos(state.yaw) * dt
    y = state.y + state.v * sin(state.yaw) * dt
    yaw = state.yaw + (state.v / params.wheel_base) * tan(steer) * dt
    # brakes do not reverse the car
    v = max(0.0, state.v + accel * dt)
    return VehicleState(x=x, y=y, yaw=yaw, v=v)


class Vehicle:
    """Kinematic bicycle stand-in for the vehicle-dynamics subsystem."""

    def __init__(self, init: VehicleState, params: VehicleParams) -> None:
        self.state = init
        self.params = params

    @property
    def position(self) -> Tuple[float, float]:
        return self.state.x, self.state.y

    @property
    def speed(self) -> float:
        return self.state.v

    def advance(self, steer: float, accel: float, dt: float) -> VehicleState:
        self.state = step(self.state, steer, accel, dt, self.params)
        return self.state
