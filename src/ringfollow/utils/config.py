from __future__ import annotations

from dataclasses import dataclass, field, fields
from math import pi
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from ringfollow.control.idm import IDMConfig, StochasticConfig, behavior_preset, check_stochastic, config_from_mapping
from ringfollow.control.path_follower import DriverConfig
from ringfollow.errors import ConfigError
from ringfollow.sim.vehicle import VehicleParams


def load_yaml(path: str | Path) -> Dict[str, Any]:
    """Load YAML config into a dict."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass
class AppConfig:
    raw: Dict[str, Any]

    @classmethod
    def from_files(cls, *paths: str | Path) -> "AppConfig":
        merged: Dict[str, Any] = {}
        for path in paths:
            merged = deep_merge(merged, load_yaml(path))
        return cls(raw=merged)


@dataclass
class RingConfig:
    num_agents: int = 3
    radius: float = 25.0
    arc_span: float = 2.0 * pi
    initial_speed: float = 0.0
    gap_model: str = "circle"
    path: Optional[List[Tuple[float, float]]] = None


@dataclass
class SimConfig:
    step_size: float = 1e-3
    end_time: float = 10.0
    max_steps: Optional[int] = None
    record_every: int = 20
    collective_timeout: float = 30.0
    seed: Optional[int] = None


@dataclass
class OutputConfig:
    root: Optional[str] = None
    run_name: str = "ring"


@dataclass
class RunConfig:
    ring: RingConfig
    sim: SimConfig
    behaviors: List[IDMConfig]
    stochastic: StochasticConfig = field(default_factory=StochasticConfig)
    stochastic_exclude: Tuple[int, ...] = ()
    vehicle: VehicleParams = field(default_factory=VehicleParams)
    driver: DriverConfig = field(default_factory=DriverConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def stochastic_for(self, index: int) -> StochasticConfig:
        sto = self.stochastic
        if not sto.enabled or index in self.stochastic_exclude:
            return StochasticConfig(enabled=False)
        seed = None if sto.seed is None else sto.seed + index
        return StochasticConfig(True, sto.mean_interval, sto.spread, sto.mag_a, sto.mag_b, seed)

    def summary(self) -> str:
        return (
            f"agents={self.ring.num_agents} radius={self.ring.radius} gap_model={self.ring.gap_model} "
            f"dt={self.sim.step_size} end_time={self.sim.end_time} stochastic={self.stochastic.enabled}"
        )


def _section(raw: Dict[str, Any], name: str, cls: type) -> Any:
    values = raw.get(name) or {}
    if not isinstance(values, dict):
        raise ConfigError(f"section {name!r} must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"section {name!r}: unknown keys {unknown}")
    try:
        return cls(**values)
    except TypeError as exc:
        raise ConfigError(f"section {name!r}: {exc}") from exc


def _behavior(entry: Any, base: Optional[IDMConfig] = None) -> IDMConfig:
    if isinstance(entry, str):
        return behavior_preset(entry)
    if isinstance(entry, dict):
        return config_from_mapping(entry, base)
    raise ConfigError(f"behavior entry must be a preset name or a mapping, got {entry!r}")


def resolve_behaviors(raw: Dict[str, Any], num_agents: int) -> List[IDMConfig]:
    cfg = raw.get("behavior") or {}
    default = _behavior(cfg.get("default", "follower"))
    sequence: Sequence[Any] = cfg.get("sequence") or []
    behaviors: List[IDMConfig] = []
    for i in range(num_agents):
        if sequence:
            behaviors.append(_behavior(sequence[i % len(sequence)], default))
        else:
            behaviors.append(default)

    for key, entry in (cfg.get("agents") or {}).items():
        try:
            index = int(key)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"behavior.agents key {key!r} is not an agent index") from exc
        if not 0 <= index < num_agents:
            raise ConfigError(f"behavior.agents index {index} outside ring of {num_agents}")
        behaviors[index] = _behavior(entry, behaviors[index])
    return behaviors


def build_run_config(raw: Dict[str, Any]) -> RunConfig:
    ring = _section(raw, "ring", RingConfig)
    sim = _section(raw, "sim", SimConfig)
    try:
        ring.num_agents = int(ring.num_agents)
        ring.radius = float(ring.radius)
        ring.arc_span = float(ring.arc_span)
        ring.initial_speed = float(ring.initial_speed)
        sim.step_size = float(sim.step_size)
        sim.end_time = float(sim.end_time)
        sim.record_every = int(sim.record_every)
        sim.collective_timeout = float(sim.collective_timeout)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid numeric setting: {exc}") from exc

    if ring.num_agents <= 1:
        raise ConfigError(f"ring.num_agents must be >= 2, got {ring.num_agents}")
    if not ring.radius > 0:
        raise ConfigError(f"ring.radius must be > 0, got {ring.radius}")
    if ring.initial_speed < 0:
        raise ConfigError("ring.initial_speed must be >= 0")
    if ring.gap_model not in ("circle", "polyline"):
        raise ConfigError(f"ring.gap_model must be 'circle' or 'polyline', got {ring.gap_model!r}")
    if not sim.step_size > 0:
        raise ConfigError(f"sim.step_size must be > 0, got {sim.step_size}")
    if not sim.end_time > 0:
        raise ConfigError(f"sim.end_time must be > 0, got {sim.end_time}")
    if sim.record_every < 1:
        raise ConfigError("sim.record_every must be >= 1")

    sto_raw = dict(raw.get("stochastic") or {})
    try:
        exclude = tuple(int(i) for i in sto_raw.pop("exclude", []) or [])
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"stochastic.exclude must list agent indices: {exc}") from exc
    sto_raw.setdefault("seed", sim.seed)
    stochastic = _section({"stochastic": sto_raw}, "stochastic", StochasticConfig)

    behaviors = resolve_behaviors(raw, ring.num_agents)
    run = RunConfig(
        ring=ring,
        sim=sim,
        behaviors=behaviors,
        stochastic=stochastic,
        stochastic_exclude=exclude,
        vehicle=_section(raw, "vehicle", VehicleParams),
        driver=_section(raw, "driver", DriverConfig),
        output=_section(raw, "output", OutputConfig),
    )
    for i, behavior in enumerate(behaviors):
        sto = run.stochastic_for(i)
        if sto.enabled:
            try:
                check_stochastic(sto, behavior)
            except ConfigError as exc:
                raise ConfigError(f"stochastic settings for agent {i}: {exc}") from exc
    return run
