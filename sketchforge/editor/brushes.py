"""
Brush rasterization engines.

Every brush turns a list of StrokePoints into pixels on a QPainter. They share
two primitives:
- interpolate_segment(): walk from one point to the next in fixed steps
- stamp_dab(): paint one flat or radially-graded tip shape

Brushes:
- PencilBrush: smoothed solid line, dash patterns
- EraserBrush: destination-out, continuous path when hard, feathered dabs when soft
- SimpleMarkerBrush: flat strokes with tip-specific caps and blend modes
- NaturalMarkerBrush: overlapping low-alpha dabs with slight position jitter
- AirbrushBrush: soft radial dabs driven by flow
- FxBrush: size/angle/scatter/colour jitter
- WatercolorBrush: position-seeded random dab clusters

Dab brushes place dabs on one walk along the whole stroke, and all their
randomness is seeded by dab position, so a live preview built segment by
segment is pixel-identical to the final full-stroke render.

Mirroring is a painter transform, not a pixel flip: render() draws the stroke
once per active mirror axis with the reflection applied to the painter.
"""

import math
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple

from PySide6.QtCore import QPointF, QRectF, Qt
from PySide6.QtGui import (
    QBrush,
    QColor,
    QImage,
    QPainter,
    QPainterPath,
    QPen,
    QRadialGradient,
)

from sketchforge.core.surface import painter_state
from sketchforge.editor.brush_settings import (
    AirbrushSettings,
    BrushKind,
    BrushSettingsBase,
    EraserSettings,
    FxBrushSettings,
    NaturalMarkerSettings,
    PencilSettings,
    SimpleMarkerSettings,
    StrokeModifier,
    TipShape,
    WatercolorSettings,
    composition_mode,
    default_settings,
)
from sketchforge.editor.guides import MirrorGuide, mirror_transform
from sketchforge.editor.strokes import StrokePoint
from sketchforge.services.logging_service import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_DABS = 4000

# Tolerance for dab positions landing on a segment boundary
DAB_EPSILON = 1e-9

# Erasers at or above this hardness stroke a continuous path instead of dabbing
HARD_ERASER_HARDNESS = 100.0

# Sub-pixel grid used to quantize dab positions before hashing
HASH_QUANTIZATION = 4.0
_MASK32 = 0xFFFFFFFF


@dataclass
class BrushContext:
    """Per-stroke values a brush reads besides its settings."""
    stroke_seed: int = 0
    stroke_modifier: StrokeModifier = field(default_factory=StrokeModifier)
    mirrors: Tuple[MirrorGuide, ...] = ()
    max_dabs: int = DEFAULT_MAX_DABS


@dataclass(frozen=True)
class Dab:
    """One interpolated position along a segment."""
    x: float
    y: float
    pressure: float
    angle: float  # direction of travel, radians
    distance: float  # distance from the segment start


# ─── Shared Primitives ────────────────────────────────────────────────────────

def polyline_length(points: Sequence[StrokePoint]) -> float:
    # Accumulated in segment order, like the offsets of an incremental render
    length = 0.0
    for i in range(1, len(points)):
        length += points[i - 1].distance_to(points[i])
    return length


def budget_spacing(spacing: float, length: float, max_dabs: int) -> float:
    """
    Widen spacing so a run of the given length stamps at most max_dabs dabs.

    Only the sampling density changes; the path itself is unaffected.
    """
    if max_dabs <= 0 or length <= 0:
        return spacing
    return max(spacing, length / max_dabs)


def _dab_index(distance: float, spacing: float) -> int:
    """Index of the first dab at or beyond distance on a walk with this spacing."""
    return math.ceil(distance / spacing - DAB_EPSILON)


def interpolate_segment(
    p1: StrokePoint,
    p2: StrokePoint,
    spacing: float,
    distance_offset: float = 0.0,
) -> Iterator[Dab]:
    """
    Walk from p1 towards p2 in fixed steps.

    Dabs sit at stroke distances 0, spacing, 2 * spacing, ... and the segment
    covers [distance_offset, distance_offset + length). Consecutive segments
    therefore share one walk: a dab is never repeated at a joint, and a
    zero-length segment yields nothing. Pressure is interpolated linearly.

    Args:
        p1: Segment start.
        p2: Segment end.
        spacing: Distance between dabs.
        distance_offset: Stroke length before p1.
    """
    dist = p1.distance_to(p2)
    if dist == 0 or spacing <= 0:
        return

    angle = math.atan2(p2.y - p1.y, p2.x - p1.x)
    cos_a = math.cos(angle)
    sin_a = math.sin(angle)
    first = _dab_index(distance_offset, spacing)
    last = _dab_index(distance_offset + dist, spacing)
    for index in range(first, last):
        d = min(dist, max(0.0, index * spacing - distance_offset))
        t = d / dist
        yield Dab(
            p1.x + cos_a * d,
            p1.y + sin_a * d,
            p1.pressure + (p2.pressure - p1.pressure) * t,
            angle,
            d,
        )


def dash_visible(pattern: Optional[Sequence[float]], distance: float) -> bool:
    """Whether a point at the given distance along the stroke lies on a dash."""
    if not pattern:
        return True
    cycle = sum(pattern)
    if cycle <= 0:
        return True

    position = distance % cycle
    for index, length in enumerate(pattern):
        if position < length:
            return index % 2 == 0
        position -= length
    return True


def position_random(seed: int, x: float, y: float, index: int, salt: int = 0) -> float:
    """
    Deterministic pseudo-random value in [0, 1) for a dab.

    Depends only on the stroke seed, the quantized dab position, the dab
    index at that position and a salt selecting the parameter, so the same
    dab gets the same value no matter when or how often it is drawn.
    """
    qx = math.floor(x * HASH_QUANTIZATION)
    qy = math.floor(y * HASH_QUANTIZATION)
    h = (seed * 0x9E3779B1) & _MASK32
    h ^= (qx * 0x85EBCA77) & _MASK32
    h ^= (qy * 0xC2B2AE3D) & _MASK32
    h ^= (index * 0x27D4EB2F) & _MASK32
    h ^= (salt * 0x165667B1) & _MASK32
    # murmur3 finalizer
    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _MASK32
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _MASK32
    h ^= h >> 16
    return h / 4294967296.0


def with_alpha(color: QColor, alpha: float) -> QColor:
    """Copy of color with its alpha multiplied by alpha (clamped to 0..1)."""
    result = QColor(color)
    result.setAlphaF(max(0.0, min(1.0, color.alphaF() * alpha)))
    return result


def _radial_brush(color: QColor, radius: float, hardness: float) -> QBrush:
    """Solid core up to hardness% of the radius, fading to transparent at the edge."""
    gradient = QRadialGradient(QPointF(0, 0), radius)
    transparent = QColor(color)
    transparent.setAlpha(0)
    gradient.setColorAt(0.0, color)
    gradient.setColorAt(max(0.0, min(1.0, hardness / 100.0)), color)
    gradient.setColorAt(1.0, transparent)
    return QBrush(gradient)


def stamp_dab(
    painter: QPainter,
    x: float,
    y: float,
    size: float,
    color: QColor,
    hardness: float = 100.0,
    tip_shape: TipShape = TipShape.ROUND,
    angle: float = 0.0,
) -> None:
    """
    Paint one dab centered at (x, y).

    Args:
        painter: Target painter; its composition mode is left untouched.
        x: Dab center x.
        y: Dab center y.
        size: Dab diameter (or side length for square tips).
        color: Fill colour including alpha.
        hardness: 0-100. Round tips below 100 fade out radially.
        tip_shape: Round, square or line tip.
        angle: Tip rotation in radians.
    """
    if size <= 0:
        return

    radius = size / 2
    with painter_state(painter):
        painter.translate(x, y)
        if angle:
            painter.rotate(math.degrees(angle))
        painter.setPen(Qt.PenStyle.NoPen)

        if tip_shape == TipShape.ROUND:
            if hardness >= 100:
                painter.setBrush(color)
            else:
                painter.setBrush(_radial_brush(color, radius, hardness))
            painter.drawEllipse(QPointF(0, 0), radius, radius)
        elif tip_shape == TipShape.SQUARE:
            painter.setBrush(color)
            painter.drawRect(QRectF(-radius, -radius, size, size))
        else:
            thickness = max(1.0, size / 10)
            painter.setBrush(color)
            painter.drawRect(QRectF(-radius, -thickness / 2, size, thickness))


@contextmanager
def opacity_layer(painter: QPainter, opacity: float) -> Iterator[QPainter]:
    """
    Collect drawing at full strength, then composite it once at opacity.

    Overlapping pieces of one stroke then do not darken each other.
    """
    if opacity >= 1.0:
        yield painter
        return

    device = painter.device()
    layer = QImage(device.width(), device.height(), QImage.Format.Format_ARGB32_Premultiplied)
    layer.fill(Qt.GlobalColor.transparent)
    layer_painter = QPainter(layer)
    layer_painter.setRenderHints(painter.renderHints())
    layer_painter.setWorldTransform(painter.worldTransform())
    try:
        yield layer_painter
    finally:
        layer_painter.end()

    with painter_state(painter):
        painter.resetTransform()
        painter.setOpacity(painter.opacity() * max(0.0, opacity))
        painter.drawImage(0, 0, layer)


def _midpoint_path(points: Sequence[StrokePoint]) -> QPainterPath:
    """Path through the points using quadratic midpoint smoothing."""
    path = QPainterPath(QPointF(points[0].x, points[0].y))
    if len(points) == 2:
        path.lineTo(points[1].x, points[1].y)
        return path

    for i in range(1, len(points) - 1):
        mid_x = (points[i].x + points[i + 1].x) / 2
        mid_y = (points[i].y + points[i + 1].y) / 2
        path.quadTo(points[i].x, points[i].y, mid_x, mid_y)
    path.lineTo(points[-1].x, points[-1].y)
    return path


# ─── Brush Base ───────────────────────────────────────────────────────────────

class BrushBase(ABC):
    """
    Base class for all brushes.

    Subclasses implement draw_stroke(). Brushes that can extend a preview one
    segment at a time set incremental = True and implement draw_segment().
    """

    incremental: bool = False
    # Preview shows the target surface with the stroke applied (erasers)
    previews_on_surface_copy: bool = False

    def __init__(self, settings: Optional[BrushSettingsBase] = None) -> None:
        self._settings = settings if settings is not None else default_settings(self.kind)

    @property
    @abstractmethod
    def kind(self) -> BrushKind:
        """Return the kind of this brush."""
        pass

    @property
    def settings(self) -> BrushSettingsBase:
        return self._settings

    @settings.setter
    def settings(self, value: BrushSettingsBase) -> None:
        self._settings = value

    def for_stroke(self) -> "BrushBase":
        """A copy of this brush with frozen settings, used for one stroke."""
        return type(self)(self._settings.clone())

    @abstractmethod
    def draw_stroke(self, painter: QPainter, points: Sequence[StrokePoint], context: BrushContext) -> None:
        """Draw a complete stroke. A single point draws one dab."""
        pass

    def draw_segment(
        self,
        painter: QPainter,
        p1: StrokePoint,
        p2: StrokePoint,
        context: BrushContext,
        distance_offset: float = 0.0,
    ) -> None:
        """Draw one segment of a stroke whose earlier segments span distance_offset."""
        raise NotImplementedError(f"{type(self).__name__} does not render incrementally")

    def can_extend(self, stroke_length: float, context: BrushContext) -> bool:
        """
        Whether a stroke of this length can still be drawn one segment at a time.

        When False the stroke has to be redrawn in full with draw_stroke().
        """
        return self.incremental

    def render(self, painter: QPainter, points: Sequence[StrokePoint], context: BrushContext) -> None:
        """Draw the stroke and, for each active mirror axis, its reflection."""
        if not points:
            return

        with painter_state(painter):
            self.draw_stroke(painter, points, context)

        for mirror in context.mirrors:
            with painter_state(painter):
                painter.setTransform(mirror_transform(mirror), True)
                self.draw_stroke(painter, points, context)

    def render_segment(
        self,
        painter: QPainter,
        p1: StrokePoint,
        p2: StrokePoint,
        context: BrushContext,
        distance_offset: float = 0.0,
    ) -> None:
        """Incremental counterpart of render()."""
        with painter_state(painter):
            self.draw_segment(painter, p1, p2, context, distance_offset)

        for mirror in context.mirrors:
            with painter_state(painter):
                painter.setTransform(mirror_transform(mirror), True)
                self.draw_segment(painter, p1, p2, context, distance_offset)


# ─── Path Brushes ─────────────────────────────────────────────────────────────

class PencilBrush(BrushBase):
    """
    Solid pencil.

    Consecutive points are joined by quadratic curves through segment
    midpoints. Each curve piece gets its own width from the neighbouring
    pressures, so the line swells and thins smoothly.
    """

    @property
    def kind(self) -> BrushKind:
        return BrushKind.PENCIL

    def _width(self, pressure: float) -> float:
        s: PencilSettings = self._settings
        if s.pressure_control.size:
            return s.size * pressure
        return s.size

    def draw_stroke(self, painter: QPainter, points: Sequence[StrokePoint], context: BrushContext) -> None:
        s: PencilSettings = self._settings
        painter.setCompositionMode(QPainter.CompositionMode.CompositionMode_SourceOver)
        if not points:
            return

        if len(points) == 1:
            p = points[0]
            stamp_dab(painter, p.x, p.y, self._width(p.pressure), with_alpha(s.color, s.opacity), s.hardness)
            return

        pattern = context.stroke_modifier.dash_pattern()
        if pattern is not None:
            self._draw_dashed(painter, points, pattern)
            return

        with opacity_layer(painter, s.opacity) as target:
            self._draw_pieces(target, points)

    def _draw_dashed(self, painter: QPainter, points: Sequence[StrokePoint], pattern: List[float]) -> None:
        s: PencilSettings = self._settings
        avg_pressure = sum(p.pressure for p in points) / len(points)
        width = max(0.5, self._width(avg_pressure))

        pen = QPen(with_alpha(s.color, s.opacity), width)
        pen.setCapStyle(Qt.PenCapStyle.RoundCap)
        pen.setJoinStyle(Qt.PenJoinStyle.RoundJoin)
        # Qt dash lengths are in units of the pen width
        pen.setDashPattern(pattern)
        painter.strokePath(_midpoint_path(points), pen)

    def _draw_pieces(self, painter: QPainter, points: Sequence[StrokePoint]) -> None:
        s: PencilSettings = self._settings
        pen = QPen(s.color)
        pen.setCapStyle(Qt.PenCapStyle.RoundCap)
        pen.setJoinStyle(Qt.PenJoinStyle.RoundJoin)

        def stroke_piece(path: QPainterPath, pressure: float) -> None:
            pen.setWidthF(max(0.5, self._width(pressure)))
            painter.strokePath(path, pen)

        if len(points) == 2:
            a, b = points
            path = QPainterPath(QPointF(a.x, a.y))
            path.lineTo(b.x, b.y)
            stroke_piece(path, (a.pressure + b.pressure) / 2)
            return

        # Lead-in from the first point to the first midpoint
        start = QPointF(points[0].x, points[0].y)
        first_mid = QPointF((points[0].x + points[1].x) / 2, (points[0].y + points[1].y) / 2)
        path = QPainterPath(start)
        path.lineTo(first_mid)
        stroke_piece(path, (points[0].pressure + points[1].pressure) / 2)

        prev_mid = first_mid
        for i in range(1, len(points) - 1):
            prev, cur, nxt = points[i - 1], points[i], points[i + 1]
            mid = QPointF((cur.x + nxt.x) / 2, (cur.y + nxt.y) / 2)
            path = QPainterPath(prev_mid)
            path.quadTo(QPointF(cur.x, cur.y), mid)
            stroke_piece(path, (prev.pressure + 2 * cur.pressure + nxt.pressure) / 4)
            prev_mid = mid

        path = QPainterPath(prev_mid)
        path.lineTo(points[-1].x, points[-1].y)
        stroke_piece(path, (points[-2].pressure + points[-1].pressure) / 2)


class EraserBrush(BrushBase):
    """
    Eraser composited with destination-out.

    Hard erasers stroke a continuous path; softer ones stamp feathered dabs.
    """

    previews_on_surface_copy = True

    @property
    def kind(self) -> BrushKind:
        return BrushKind.ERASER

    @property
    def is_hard(self) -> bool:
        return self._settings.hardness >= HARD_ERASER_HARDNESS

    def _erase_color(self) -> QColor:
        color = QColor(0, 0, 0)
        color.setAlphaF(max(0.0, min(1.0, self._settings.opacity)))
        return color

    def _stamp(self, painter: QPainter, x: float, y: float) -> None:
        s: EraserSettings = self._settings
        tip = TipShape.SQUARE if s.tip_shape == TipShape.SQUARE else TipShape.ROUND
        stamp_dab(painter, x, y, s.size, self._erase_color(), s.hardness, tip)

    def draw_stroke(self, painter: QPainter, points: Sequence[StrokePoint], context: BrushContext) -> None:
        s: EraserSettings = self._settings
        painter.setCompositionMode(QPainter.CompositionMode.CompositionMode_DestinationOut)
        if not points or s.size <= 0:
            return

        if len(points) == 1:
            self._stamp(painter, points[0].x, points[0].y)
            return

        if self.is_hard:
            round_tip = s.tip_shape != TipShape.SQUARE
            pen = QPen(self._erase_color(), s.size)
            pen.setCapStyle(Qt.PenCapStyle.RoundCap if round_tip else Qt.PenCapStyle.SquareCap)
            pen.setJoinStyle(Qt.PenJoinStyle.RoundJoin if round_tip else Qt.PenJoinStyle.MiterJoin)
            path = QPainterPath(QPointF(points[0].x, points[0].y))
            for p in points[1:]:
                path.lineTo(p.x, p.y)
            painter.strokePath(path, pen)
            return

        # One dab is reserved for the stroke end
        budget = max(1, context.max_dabs - 1)
        spacing = budget_spacing(max(1.0, s.size * 0.1), polyline_length(points), budget)
        offset = 0.0
        for i in range(1, len(points)):
            for dab in interpolate_segment(points[i - 1], points[i], spacing, offset):
                self._stamp(painter, dab.x, dab.y)
            offset += points[i - 1].distance_to(points[i])
        self._stamp(painter, points[-1].x, points[-1].y)


class SimpleMarkerBrush(BrushBase):
    """Flat marker. Dashed strokes are one path; solid strokes go segment by segment."""

    _CAPS = {
        TipShape.LINE: Qt.PenCapStyle.FlatCap,
        TipShape.ROUND: Qt.PenCapStyle.RoundCap,
        TipShape.SQUARE: Qt.PenCapStyle.SquareCap,
    }

    @property
    def kind(self) -> BrushKind:
        return BrushKind.SIMPLE_MARKER

    def draw_stroke(self, painter: QPainter, points: Sequence[StrokePoint], context: BrushContext) -> None:
        s: SimpleMarkerSettings = self._settings
        painter.setCompositionMode(composition_mode(s.blend_mode))
        if not points or s.size <= 0:
            return

        if len(points) == 1:
            p = points[0]
            stamp_dab(painter, p.x, p.y, s.size, with_alpha(s.color, s.opacity), 100.0, s.tip_shape)
            return

        pen = QPen(s.color, s.size)
        pen.setCapStyle(self._CAPS[s.tip_shape])
        pen.setJoinStyle(
            Qt.PenJoinStyle.RoundJoin if s.tip_shape == TipShape.ROUND else Qt.PenJoinStyle.MiterJoin
        )

        pattern = context.stroke_modifier.dash_pattern(base_scale=max(1.0, s.size / 5))
        if pattern is not None:
            pen.setColor(with_alpha(s.color, s.opacity))
            pen.setDashPattern([length / s.size for length in pattern])
            path = QPainterPath(QPointF(points[0].x, points[0].y))
            for p in points[1:]:
                path.lineTo(p.x, p.y)
            painter.strokePath(path, pen)
            return

        for i in range(1, len(points)):
            p1, p2 = points[i - 1], points[i]
            opacity = s.opacity * p2.pressure if s.pressure_control.opacity else s.opacity
            pen.setColor(with_alpha(s.color, opacity))
            painter.setPen(pen)
            painter.drawLine(QPointF(p1.x, p1.y), QPointF(p2.x, p2.y))


# ─── Dab Brushes ──────────────────────────────────────────────────────────────

class DabBrush(BrushBase):
    """
    Brushes built purely from stamped dabs.

    Dabs follow one walk along the whole stroke, so drawing the segments one
    by one with their running offsets reproduces the full stroke exactly.
    The dab budget widens the spacing of the whole walk once the stroke grows
    longer than max_dabs base spacings; from then on it can only be redrawn
    in full.
    """

    incremental = True

    @abstractmethod
    def dab_spacing(self) -> float:
        """Distance between dabs along a segment."""
        pass

    @abstractmethod
    def stamp(self, painter: QPainter, dab: Dab, context: BrushContext) -> None:
        """Paint everything that belongs to one dab position."""
        pass

    def _composition(self) -> QPainter.CompositionMode:
        return QPainter.CompositionMode.CompositionMode_SourceOver

    def can_extend(self, stroke_length: float, context: BrushContext) -> bool:
        base_spacing = self.dab_spacing()
        return budget_spacing(base_spacing, stroke_length, context.max_dabs) == base_spacing

    def draw_stroke(self, painter: QPainter, points: Sequence[StrokePoint], context: BrushContext) -> None:
        painter.setCompositionMode(self._composition())
        if not points:
            return

        if len(points) == 1:
            p = points[0]
            self.stamp(painter, Dab(p.x, p.y, p.pressure, 0.0, 0.0), context)
            return

        base_spacing = self.dab_spacing()
        spacing = budget_spacing(base_spacing, polyline_length(points), context.max_dabs)
        if spacing > base_spacing:
            logger.debug(f"Dab budget widened spacing from {base_spacing:.2f} to {spacing:.2f}")

        offset = 0.0
        for i in range(1, len(points)):
            self._draw_run(painter, points[i - 1], points[i], context, offset, spacing)
            offset += points[i - 1].distance_to(points[i])

    def draw_segment(
        self,
        painter: QPainter,
        p1: StrokePoint,
        p2: StrokePoint,
        context: BrushContext,
        distance_offset: float = 0.0,
    ) -> None:
        painter.setCompositionMode(self._composition())
        self._draw_run(painter, p1, p2, context, distance_offset, self.dab_spacing())

    def _draw_run(
        self,
        painter: QPainter,
        p1: StrokePoint,
        p2: StrokePoint,
        context: BrushContext,
        distance_offset: float,
        spacing: float,
    ) -> None:
        pattern = context.stroke_modifier.dash_pattern()
        for dab in interpolate_segment(p1, p2, spacing, distance_offset):
            if dash_visible(pattern, distance_offset + dab.distance):
                self.stamp(painter, dab, context)


class NaturalMarkerBrush(DabBrush):
    """
    Ink marker made of many overlapping low-alpha dabs.

    Overlap builds density where the pen lingers; a slight position jitter
    roughens the edges like a felt tip.
    """

    @property
    def kind(self) -> BrushKind:
        return BrushKind.NATURAL_MARKER

    def dab_spacing(self) -> float:
        s: NaturalMarkerSettings = self._settings
        return max(1.0, s.size * s.spacing / 100)

    def _composition(self) -> QPainter.CompositionMode:
        return composition_mode(self._settings.blend_mode)

    def stamp(self, painter: QPainter, dab: Dab, context: BrushContext) -> None:
        s: NaturalMarkerSettings = self._settings
        size = s.size * dab.pressure if s.pressure_control.size else s.size
        if size < 1:
            return

        alpha = s.opacity * (s.flow / 100)
        if s.pressure_control.opacity:
            alpha *= dab.pressure

        seed = context.stroke_seed
        jitter = size * 0.04
        x = dab.x + (position_random(seed, dab.x, dab.y, 0, 1) - 0.5) * 2 * jitter
        y = dab.y + (position_random(seed, dab.x, dab.y, 0, 2) - 0.5) * 2 * jitter
        stamp_dab(
            painter, x, y, size, with_alpha(s.color, alpha),
            s.hardness, s.tip_shape, math.radians(s.tip_angle),
        )


class AirbrushBrush(DabBrush):
    """Soft spray: radial dabs whose alpha is the flow."""

    @property
    def kind(self) -> BrushKind:
        return BrushKind.AIRBRUSH

    def dab_spacing(self) -> float:
        s: AirbrushSettings = self._settings
        return max(1.0, s.size * s.spacing / 100)

    def stamp(self, painter: QPainter, dab: Dab, context: BrushContext) -> None:
        s: AirbrushSettings = self._settings
        if s.size <= 0:
            return
        flow = s.flow * dab.pressure if s.pressure_control.flow else s.flow
        stamp_dab(painter, dab.x, dab.y, s.size, with_alpha(s.color, s.opacity * flow), s.hardness)


class FxBrush(DabBrush):
    """
    Effects brush with per-dab jitter.

    Size, position (scatter), angle and HSL colour jitter are drawn from
    position_random(), one salt per parameter.
    """

    _SIZE, _SCATTER_X, _SCATTER_Y, _ANGLE, _HUE, _SATURATION, _LIGHTNESS = range(1, 8)

    @property
    def kind(self) -> BrushKind:
        return BrushKind.FX

    def dab_spacing(self) -> float:
        s: FxBrushSettings = self._settings
        return max(1.0, s.size * s.spacing / 100)

    def _composition(self) -> QPainter.CompositionMode:
        return composition_mode(self._settings.blend_mode)

    def _jittered_color(self, rand) -> QColor:
        s: FxBrushSettings = self._settings
        if not (s.hue_jitter or s.saturation_jitter or s.brightness_jitter):
            return QColor(s.color)

        hue, saturation, lightness, alpha = s.color.getHslF()
        # Achromatic colours report hue -1
        hue = max(0.0, hue)
        hue = (hue + (rand(self._HUE) - 0.5) * s.hue_jitter) % 1.0
        saturation = max(0.0, min(1.0, saturation + (rand(self._SATURATION) - 0.5) * 2 * s.saturation_jitter))
        lightness = max(0.0, min(1.0, lightness + (rand(self._LIGHTNESS) - 0.5) * s.brightness_jitter))
        return QColor.fromHslF(hue, saturation, lightness, alpha)

    def stamp(self, painter: QPainter, dab: Dab, context: BrushContext) -> None:
        s: FxBrushSettings = self._settings

        def rand(salt: int) -> float:
            return position_random(context.stroke_seed, dab.x, dab.y, 0, salt)

        size = s.size * dab.pressure if s.pressure_control.size else s.size
        size *= 1 - rand(self._SIZE) * s.size_jitter
        if size <= 1:
            return

        alpha = s.opacity * s.flow
        if s.pressure_control.opacity:
            alpha *= dab.pressure

        x = dab.x + (rand(self._SCATTER_X) - 0.5) * s.scatter * s.size * 2
        y = dab.y + (rand(self._SCATTER_Y) - 0.5) * s.scatter * s.size * 2

        angle = math.radians(s.angle)
        if s.angle_follows_stroke:
            angle += dab.angle
        angle += (rand(self._ANGLE) - 0.5) * 2 * s.angle_jitter * math.pi

        color = with_alpha(self._jittered_color(rand), alpha)
        stamp_dab(painter, x, y, size, color, s.hardness, s.tip_shape, angle)


class WatercolorBrush(DabBrush):
    """
    Watercolour: clusters of soft, jittered, semi-transparent dabs.

    Flow sets how many dabs form each cluster, wetness their opacity.
    """

    @property
    def kind(self) -> BrushKind:
        return BrushKind.WATERCOLOR

    def dab_spacing(self) -> float:
        return max(1.0, self._settings.size * 0.2)

    def stamp(self, painter: QPainter, dab: Dab, context: BrushContext) -> None:
        s: WatercolorSettings = self._settings
        size = s.size * dab.pressure if s.pressure_control.size else s.size
        if size < 1:
            return

        flow = s.flow / 100
        if s.pressure_control.flow:
            flow *= dab.pressure
        opacity = s.opacity * dab.pressure if s.pressure_control.opacity else s.opacity
        dab_count = max(1, math.floor(flow * 5))

        for index in range(dab_count):
            def rand(salt: int) -> float:
                return position_random(context.stroke_seed, dab.x, dab.y, index, salt)

            x = dab.x + (rand(0) - 0.5) * size * 0.4
            y = dab.y + (rand(1) - 0.5) * size * 0.4
            dab_size = size * (0.8 + rand(2) * 0.4)
            dab_opacity = (s.wetness / 100) * (0.5 + rand(3) * 0.5) * opacity
            stamp_dab(painter, x, y, dab_size, with_alpha(s.color, dab_opacity), 0.0)


# ─── Brush Factory ────────────────────────────────────────────────────────────

_BRUSH_TYPES = {
    BrushKind.PENCIL: PencilBrush,
    BrushKind.ERASER: EraserBrush,
    BrushKind.SIMPLE_MARKER: SimpleMarkerBrush,
    BrushKind.NATURAL_MARKER: NaturalMarkerBrush,
    BrushKind.AIRBRUSH: AirbrushBrush,
    BrushKind.FX: FxBrush,
    BrushKind.WATERCOLOR: WatercolorBrush,
}


def create_brush(kind: BrushKind, settings: Optional[BrushSettingsBase] = None) -> BrushBase:
    """
    Factory function to create brushes.

    Args:
        kind: The brush kind to create.
        settings: Optional settings; defaults for the kind otherwise.

    Returns:
        A new brush instance.
    """
    brush_class = _BRUSH_TYPES.get(kind)
    if brush_class is None:
        raise ValueError(f"Unknown brush kind: {kind}")
    return brush_class(settings)
