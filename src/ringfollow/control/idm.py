from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from math import hypot, isfinite, sqrt
import random
from typing import Any, Dict, Optional, Protocol, Tuple

from ringfollow.errors import ConfigError

logger = logging.getLogger(__name__)

# Deceleration applied when the gap is not positive or the law is not finite.
DEFAULT_HARD_BRAKE = 9.0


@dataclass(frozen=True)
class IDMConfig:
    desired_speed: float
    time_headway: float
    min_gap: float
    max_accel: float
    comfortable_brake: float
    delta: float = 4.0
    gap_offset: float = 0.0
    hard_brake: float = DEFAULT_HARD_BRAKE

    def validate(self) -> "IDMConfig":
        if not self.desired_speed > 0:
            raise ConfigError(f"desired_speed (v0) must be > 0, got {self.desired_speed}")
        if not self.max_accel > 0 or not self.comfortable_brake > 0:
            raise ConfigError(
                f"max_accel (a) and comfortable_brake (b) must be > 0, got a={self.max_accel}, b={self.comfortable_brake}"
            )
        if not self.delta > 0:
            raise ConfigError(f"delta must be > 0, got {self.delta}")
        if not self.time_headway >= 0:
            raise ConfigError(f"time_headway (T) must be >= 0, got {self.time_headway}")
        if not self.hard_brake > 0:
            raise ConfigError(f"hard_brake must be > 0, got {self.hard_brake}")
        return self


# Behavior vector order:
# v0, T, s0, a, b, delta, gap_offset
_PRESETS: Dict[str, Tuple[float, ...]] = {
    "follower": (8.9408, 1.5, 2.0, 2.0, 2.0, 4.0, 4.8895),
    "aggressive": (5.0, 0.1, 5.0, 3.5, 2.5, 4.0, 6.0),
    "normal": (5.0, 0.2, 6.0, 3.0, 2.1, 4.0, 6.0),
    "conservative": (5.0, 0.7, 8.0, 2.5, 1.5, 4.0, 6.0),
}

# Short names accepted in config files.
_ALIASES = {
    "v0": "desired_speed",
    "T": "time_headway",
    "s0": "min_gap",
    "a": "max_accel",
    "b": "comfortable_brake",
}


def preset_names() -> Tuple[str, ...]:
    return tuple(sorted(_PRESETS))


def behavior_preset(name: str, **overrides: Any) -> IDMConfig:
    """Build a fresh IDMConfig from a named driver type."""
    try:
        values = _PRESETS[name]
    except KeyError:
        raise ConfigError(f"unknown behavior preset {name!r}; expected one of {preset_names()}") from None
    v0, T, s0, a, b, delta, gap_offset = values
    cfg = IDMConfig(
        desired_speed=v0,
        time_headway=T,
        min_gap=s0,
        max_accel=a,
        comfortable_brake=b,
        delta=delta,
        gap_offset=gap_offset,
    )
    if overrides:
        cfg = replace(cfg, **_canonical(overrides))
    return cfg.validate()


def config_from_mapping(values: Dict[str, Any], base: Optional[IDMConfig] = None) -> IDMConfig:
    """Build an IDMConfig from a config-file mapping, optionally on top of ``base``."""
    values = dict(values)
    preset = values.pop("preset", None)
    if preset is not None:
        base = behavior_preset(str(preset))
    canonical = _canonical(values)
    try:
        if base is None:
            cfg = IDMConfig(**canonical)
        else:
            cfg = replace(base, **canonical)
    except TypeError as exc:
        raise ConfigError(f"invalid behavior parameters: {exc}") from exc
    return cfg.validate()


def _canonical(values: Dict[str, Any]) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for key, value in values.items():
        name = _ALIASES.get(key, key)
        try:
            out[name] = float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"behavior parameter {key!r} must be a number, got {value!r}") from exc
    return out


@dataclass
class StochasticConfig:
    enabled: bool = False
    mean_interval: float = 0.1
    spread: float = 0.8
    mag_a: float = 0.2
    mag_b: float = 0.2
    seed: Optional[int] = None


def check_stochastic(sto: StochasticConfig, cfg: IDMConfig) -> None:
    """Reject switching settings that could stall the switch clock or make a or b non-positive."""
    if not sto.mean_interval > 0:
        raise ConfigError(f"mean_interval must be > 0, got {sto.mean_interval}")
    if not 0 <= sto.spread < 1:
        raise ConfigError(f"spread must be in [0, 1), got {sto.spread}")
    if sto.mag_a < 0 or sto.mag_b < 0:
        raise ConfigError("perturbation magnitudes must be >= 0")
    if sto.mag_a >= cfg.max_accel or sto.mag_b >= cfg.comfortable_brake:
        raise ConfigError(
            f"perturbation magnitudes must stay below a={cfg.max_accel} and b={cfg.comfortable_brake}"
        )


class VehicleLike(Protocol):
    @property
    def position(self) -> Tuple[float, float]: ...

    @property
    def speed(self) -> float: ...


class IDMController:
    """Intelligent Driver Model speed controller for one agent.

    The controller reads the own vehicle's speed and position from ``vehicle``
    each call. The acceleration from the IDM law is integrated with forward
    Euler into a theoretical speed, which is clamped at zero and handed out as
    the desired speed for a path-following driver.
    """

    def __init__(self, cfg: IDMConfig, vehicle: VehicleLike, initial_speed: Optional[float] = None) -> None:
        self.cfg = cfg.validate()
        self.vehicle = vehicle
        self._base = self.cfg
        self.theoretical_speed = float(vehicle.speed if initial_speed is None else initial_speed)
        self.traveled_distance = 0.0
        self.previous_position = tuple(vehicle.position)
        self.desired_speed = max(0.0, self.theoretical_speed)
        self.last_acceleration = 0.0

        self.stochastic = StochasticConfig()
        self._rng: Optional[random.Random] = None
        self._next_switch: Optional[float] = None

    def desired_gap(self, v: float, dv: float) -> float:
        cfg = self.cfg
        return cfg.min_gap + max(0.0, v * cfg.time_headway + (v * dv) / (2.0 * sqrt(cfg.max_accel * cfg.comfortable_brake)))

    def acceleration(self, v: float, lead_speed: float, gap: float) -> float:
        cfg = self.cfg
        if not gap > 0:
            logger.debug("degenerate gap %.3f, braking at %.2f", gap, -cfg.hard_brake)
            return -cfg.hard_brake
        s_star = self.desired_gap(v, v - lead_speed)
        try:
            dv_dt = cfg.max_accel * (1.0 - (v / cfg.desired_speed) ** cfg.delta - (s_star / gap) ** 2)
        except OverflowError:
            dv_dt = float("-inf")
        if not isfinite(dv_dt):
            logger.debug("non-finite acceleration for gap %.3g, braking at %.2f", gap, -cfg.hard_brake)
            return -cfg.hard_brake
        return dv_dt

    def synchronize(self, time: float, step: float, lead_gap: float, lead_speed: float) -> float:
        """Advance the controller by one step.

        ``lead_gap`` is the along-path distance to the leader with the gap
        offset already removed.
        """
        if not step > 0:
            raise ValueError(f"step must be > 0, got {step}")

        position = tuple(self.vehicle.position)
        self.traveled_distance += hypot(*(p - q for p, q in zip(position, self.previous_position)))
        self.previous_position = position

        if self.stochastic.enabled:
            self._maybe_switch(time)

        v = float(self.vehicle.speed)
        dv_dt = self.acceleration(v, lead_speed, lead_gap)

        self.theoretical_speed += dv_dt * step
        self.desired_speed = max(0.0, self.theoretical_speed)
        if self.theoretical_speed < 0:
            self.theoretical_speed = 0.0
        self.last_acceleration = dv_dt
        return self.desired_speed

    def get_dist(self) -> float:
        return self.traveled_distance

    def set_theoretical_speed(self, speed: float) -> None:
        self.theoretical_speed = max(0.0, float(speed))
        self.desired_speed = self.theoretical_speed

    def set_behavior(self, cfg: IDMConfig) -> None:
        self._base = cfg.validate()
        self.cfg = self._base
        if self.stochastic.enabled:
            check_stochastic(self.stochastic, self._base)

    def set_stochastic(
        self,
        enabled: bool,
        mean_interval: float = 0.1,
        spread: float = 0.8,
        mag_a: float = 0.2,
        mag_b: float = 0.2,
        seed: Optional[int] = None,
    ) -> None:
        sto = StochasticConfig(enabled, float(mean_interval), float(spread), float(mag_a), float(mag_b), seed)
        if not enabled:
            self.stochastic = sto
            self.cfg = self._base
            self._rng = None
            self._next_switch = None
            return
        check_stochastic(sto, self._base)
        self.stochastic = sto
        self._rng = random.Random(seed)
        self._next_switch = None

    def _draw_interval(self) -> float:
        sto = self.stochastic
        return self._rng.uniform(sto.mean_interval * (1.0 - sto.spread), sto.mean_interval * (1.0 + sto.spread))

    def _maybe_switch(self, time: float) -> None:
        if self._next_switch is None:
            self._next_switch = time + self._draw_interval()
            return
        if time < self._next_switch:
            return
        sto = self.stochastic
        base = self._base
        self.cfg = replace(
            base,
            max_accel=base.max_accel + self._rng.uniform(-sto.mag_a, sto.mag_a),
            comfortable_brake=base.comfortable_brake + self._rng.uniform(-sto.mag_b, sto.mag_b),
        )
        self._next_switch = time + self._draw_interval()
