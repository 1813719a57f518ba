"""
Stroke data and stroke geometry.

Holds the point types produced by input sampling and the pure functions that
turn mode-specific click points into the dense polyline a brush renders:
- Quadratic curves (start, end, control)
- Arcs with an accumulated signed sweep
- After-effect spline smoothing for freehand strokes
"""

import math
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional, Sequence

from PySide6.QtCore import QPointF


class StrokeMode(Enum):
    """How pointer input is turned into a stroke."""
    FREEHAND = auto()
    LINE = auto()
    POLYLINE = auto()
    CURVE = auto()
    ARC = auto()


@dataclass(frozen=True)
class StrokePoint:
    """A stroke vertex in surface coordinates. Pressure is 0..1."""
    x: float
    y: float
    pressure: float = 1.0

    @classmethod
    def from_qpointf(cls, point: QPointF, pressure: float = 1.0) -> "StrokePoint":
        return cls(point.x(), point.y(), pressure)

    def to_qpointf(self) -> QPointF:
        return QPointF(self.x, self.y)

    def distance_to(self, other: "StrokePoint") -> float:
        return math.hypot(other.x - self.x, other.y - self.y)


@dataclass(frozen=True)
class InputSample:
    """
    One pointer sample, already converted to surface coordinates.

    pressure is None for devices without pressure support.
    """
    x: float
    y: float
    pressure: Optional[float] = None
    timestamp: float = 0.0

    @property
    def pos(self) -> QPointF:
        return QPointF(self.x, self.y)

    @property
    def effective_pressure(self) -> float:
        if self.pressure is None:
            return 1.0
        return max(0.0, min(1.0, self.pressure))


@dataclass
class Stroke:
    """A finalized stroke as handed to the brush on commit."""
    mode: StrokeMode
    points: List[StrokePoint] = field(default_factory=list)
    seed: int = 0
    # Signed arc sweep in radians; only meaningful for ARC strokes
    sweep: Optional[float] = None


def _lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


# ─── Arc ──────────────────────────────────────────────────────────────────────

class ArcSweepTracker:
    """
    Accumulates the signed angle swept around an arc center.

    Each update adds the shortest-path delta from the previous pointer angle,
    so crossing the -pi/pi boundary keeps accumulating instead of jumping,
    and sweeps beyond a full turn are representable.
    """

    def __init__(self, center: StrokePoint, start: StrokePoint) -> None:
        self._center = center
        self._start_angle = math.atan2(start.y - center.y, start.x - center.x)
        self._last_angle = self._start_angle
        self._sweep = 0.0

    @property
    def start_angle(self) -> float:
        return self._start_angle

    @property
    def sweep(self) -> float:
        """Total signed sweep in radians (positive is clockwise on screen)."""
        return self._sweep

    def update(self, x: float, y: float) -> float:
        """Feed a pointer position and return the new total sweep."""
        angle = math.atan2(y - self._center.y, x - self._center.x)
        delta = angle - self._last_angle
        if delta > math.pi:
            delta -= 2 * math.pi
        elif delta < -math.pi:
            delta += 2 * math.pi
        self._sweep += delta
        self._last_angle = angle
        return self._sweep


def arc_points(
    center: StrokePoint,
    start: StrokePoint,
    sweep: float,
    end_pressure: float = 1.0,
) -> List[StrokePoint]:
    """
    Rasterize an arc into points roughly 1.5px apart.

    Args:
        center: Arc center.
        start: Start of the sweep; its distance to center is the radius.
        sweep: Signed sweep angle in radians.
        end_pressure: Pressure at the end of the sweep.

    Returns:
        The arc polyline, or an empty list for a zero radius.
    """
    radius = math.hypot(start.x - center.x, start.y - center.y)
    if radius <= 0:
        return []

    start_angle = math.atan2(start.y - center.y, start.x - center.x)
    arc_length = radius * abs(sweep)
    steps = max(2, math.ceil(arc_length / 1.5))

    points = []
    for i in range(steps + 1):
        t = i / steps
        angle = start_angle + t * sweep
        points.append(StrokePoint(
            center.x + radius * math.cos(angle),
            center.y + radius * math.sin(angle),
            _lerp(start.pressure, end_pressure, t),
        ))
    return points


# ─── Curve ────────────────────────────────────────────────────────────────────

def curve_points(start: StrokePoint, end: StrokePoint, control: StrokePoint) -> List[StrokePoint]:
    """
    Rasterize a quadratic Bezier from start to end pulled towards control.

    The control point is the third click of a curve stroke and the end point
    the second.
    """
    length = start.distance_to(control) + control.distance_to(end)
    steps = max(50, int(length // 2))

    points = []
    for i in range(steps + 1):
        t = i / steps
        inv = 1 - t
        points.append(StrokePoint(
            inv * inv * start.x + 2 * inv * t * control.x + t * t * end.x,
            inv * inv * start.y + 2 * inv * t * control.y + t * t * end.y,
            _lerp(start.pressure, end.pressure, t),
        ))
    return points


# ─── Smoothing ────────────────────────────────────────────────────────────────

def _midpoint(a: StrokePoint, b: StrokePoint) -> StrokePoint:
    return StrokePoint((a.x + b.x) / 2, (a.y + b.y) / 2, (a.pressure + b.pressure) / 2)


def _quad_at(p0: StrokePoint, c: StrokePoint, p1: StrokePoint, t: float) -> StrokePoint:
    inv = 1 - t
    return StrokePoint(
        inv * inv * p0.x + 2 * inv * t * c.x + t * t * p1.x,
        inv * inv * p0.y + 2 * inv * t * c.y + t * t * p1.y,
        _lerp(p0.pressure, p1.pressure, t),
    )


def smooth_points(points: Sequence[StrokePoint], smoothing: float) -> List[StrokePoint]:
    """
    Resample a freehand stroke through midpoint quadratic splines.

    Each interior point becomes the control of a quadratic running between
    the midpoints of its neighbouring segments; every quadratic is split into
    max(1, floor(smoothing / 10)) sub-segments. The first and last points are
    kept.

    Args:
        points: Raw stroke points.
        smoothing: Smoothing factor, 0-100. 0 returns the points unchanged.

    Returns:
        A new point list.
    """
    if smoothing <= 0 or len(points) < 3:
        return list(points)

    subdivisions = max(1, math.floor(smoothing / 10))
    result = [points[0]]
    segment_start = points[0]

    for i in range(1, len(points) - 1):
        control = points[i]
        segment_end = _midpoint(points[i], points[i + 1])
        for step in range(1, subdivisions + 1):
            result.append(_quad_at(segment_start, control, segment_end, step / subdivisions))
        segment_start = segment_end

    result.append(points[-1])
    return result


# ─── Mode Geometry ────────────────────────────────────────────────────────────

def stroke_render_points(stroke: Stroke) -> List[StrokePoint]:
    """
    Expand a stroke's click points into the polyline brushes render.

    Curves need exactly 3 points and arcs 3 points plus a sweep; anything
    shorter is rendered as the raw polyline (live preview behaviour).
    """
    points = stroke.points
    if stroke.mode == StrokeMode.CURVE and len(points) == 3:
        start, end, control = points
        return curve_points(start, end, control)

    if stroke.mode == StrokeMode.ARC:
        if len(points) < 3:
            return []
        center, start, end = points
        sweep = stroke.sweep
        if sweep is None:
            # Shortest path when no sweep was tracked
            sweep = math.atan2(end.y - center.y, end.x - center.x) - math.atan2(start.y - center.y, start.x - center.x)
            sweep = (sweep + math.pi) % (2 * math.pi) - math.pi
        return arc_points(center, start, sweep, end.pressure)

    return list(points)
