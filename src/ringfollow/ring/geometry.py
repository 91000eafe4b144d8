from __future__ import annotations

from math import acos, cos, hypot, pi, sin
from typing import Iterable, List, Sequence, Tuple

from shapely.geometry import LineString, Point

from ringfollow.errors import ConfigError


def chord_to_arc(raw: float, radius: float) -> float:
    """Arc length on a circle of ``radius`` subtended by a chord of length ``raw``."""
    cos_theta = 1.0 - (raw * raw) / (2.0 * radius * radius)
    cos_theta = max(-1.0, min(1.0, cos_theta))
    theta = abs(acos(cos_theta))
    return theta * radius


def circle_points(radius: float, samples: int = 720, center: Tuple[float, float] = (0.0, 0.0)) -> List[Tuple[float, float]]:
    cx, cy = center
    step = 2.0 * pi / samples
    return [(cx + radius * cos(i * step), cy + radius * sin(i * step)) for i in range(samples)]


def ring_placement(
    num_agents: int, radius: float, arc_span: float = 2.0 * pi
) -> List[Tuple[float, float, float]]:
    """Initial (x, y, yaw) for agents spread counter-clockwise over ``arc_span``."""
    sector = arc_span / num_agents
    out: List[Tuple[float, float, float]] = []
    for i in range(num_agents):
        angle = sector * i
        yaw = (angle + pi / 2.0) % (2.0 * pi)
        out.append((radius * cos(angle), radius * sin(angle), yaw))
    return out


class CircleGap:
    """Along-path gap on a circular ring, from the chord between two agents."""

    def __init__(self, radius: float) -> None:
        if not radius > 0:
            raise ConfigError(f"ring radius must be > 0, got {radius}")
        self.radius = float(radius)

    def __call__(self, follower: Sequence[float], leader: Sequence[float]) -> float:
        raw = hypot(leader[0] - follower[0], leader[1] - follower[1])
        return chord_to_arc(raw, self.radius)


class PolylineRing:
    """Closed path given as a polyline, queried by arc length.

    Gaps are measured forward along the path from the follower's projection
    to the leader's projection, wrapping once around the loop.
    """

    def __init__(self, points: Iterable[Sequence[float]]) -> None:
        coords = [(float(p[0]), float(p[1])) for p in points]
        if len(coords) < 3:
            raise ConfigError("a closed path needs at least 3 points")
        if coords[0] != coords[-1]:
            coords.append(coords[0])
        self.line = LineString(coords)
        self.length = float(self.line.length)

    def project(self, point: Sequence[float]) -> float:
        return float(self.line.project(Point(point[0], point[1])))

    def point_at(self, s: float) -> Tuple[float, float]:
        p = self.line.interpolate(s % self.length)
        return float(p.x), float(p.y)

    def __call__(self, follower: Sequence[float], leader: Sequence[float]) -> float:
        return (self.project(leader) - self.project(follower)) % self.length
