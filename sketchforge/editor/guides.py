"""
Guide models and the stroke constraint resolver.

Guides are owned by the host application (GuideState) and handed to the
engine as an immutable GuideSnapshot at the start of each input session.

Guide kinds:
- RulerGuide: strokes project onto the nearest ruler line
- MirrorGuide: strokes are re-rendered reflected across the axis
- PerspectiveGuide: three colour-tagged line sets, each defining a vanishing point
- OrthogonalGuide: strokes lock to one of two perpendicular axes
- GridGuide: cartesian or isometric snapping lattice

StrokeConstraint applies at most one of these to each input sample.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from PySide6.QtCore import QPointF
from PySide6.QtGui import QTransform

from sketchforge.core.geometry import distance, intersect, project_on_line
from sketchforge.services.config_service import EngineSettings
from sketchforge.services.logging_service import get_logger

logger = get_logger(__name__)

# Determinant below which the isometric basis is treated as singular
GRID_BASIS_EPSILON = 1e-9


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:8]}"


class ActiveGuide(Enum):
    """Which guide family currently drives strokes."""
    NONE = "none"
    RULER = "ruler"
    PERSPECTIVE = "perspective"
    MIRROR = "mirror"


class GuideColor(Enum):
    """Colour tags of the three perspective line sets."""
    GREEN = "green"
    RED = "red"
    BLUE = "blue"


class GridType(Enum):
    NONE = "none"
    CARTESIAN = "cartesian"
    ISOMETRIC = "isometric"


# ─── Guide Models ─────────────────────────────────────────────────────────────

@dataclass
class RulerGuide:
    """An infinite projection line through two endpoints."""
    start: QPointF
    end: QPointF
    id: str = field(default_factory=lambda: _new_id("ruler"))

    def clone(self) -> "RulerGuide":
        return RulerGuide(QPointF(self.start), QPointF(self.end), self.id)


@dataclass
class MirrorGuide:
    """A reflection axis through two endpoints."""
    start: QPointF
    end: QPointF
    id: str = field(default_factory=lambda: _new_id("mirror"))

    @property
    def angle(self) -> float:
        return math.atan2(self.end.y() - self.start.y(), self.end.x() - self.start.x())

    def clone(self) -> "MirrorGuide":
        return MirrorGuide(QPointF(self.start), QPointF(self.end), self.id)


@dataclass
class PerspectiveLine:
    """One of the lines defining a vanishing point."""
    start: QPointF
    end: QPointF
    id: str = field(default_factory=lambda: _new_id("pline"))

    def clone(self) -> "PerspectiveLine":
        return PerspectiveLine(QPointF(self.start), QPointF(self.end), self.id)


@dataclass
class PerspectiveHandle:
    """User-placed handle; the extra guide line runs from the vanishing point through it."""
    handle: QPointF
    id: str = field(default_factory=lambda: _new_id("extra"))

    def clone(self) -> "PerspectiveHandle":
        return PerspectiveHandle(QPointF(self.handle), self.id)


def _empty_color_map() -> Dict[GuideColor, list]:
    return {color: [] for color in GuideColor}


@dataclass
class PerspectiveGuide:
    """
    A vanishing point network.

    Vanishing points are never stored: see vanishing_points().
    """
    lines: Dict[GuideColor, List[PerspectiveLine]] = field(default_factory=_empty_color_map)
    guide_point: QPointF = field(default_factory=QPointF)
    extra_lines: Dict[GuideColor, List[PerspectiveHandle]] = field(default_factory=_empty_color_map)

    def clone(self) -> "PerspectiveGuide":
        return PerspectiveGuide(
            lines={c: [line.clone() for line in self.lines.get(c, [])] for c in GuideColor},
            guide_point=QPointF(self.guide_point),
            extra_lines={c: [h.clone() for h in self.extra_lines.get(c, [])] for c in GuideColor},
        )


@dataclass
class OrthogonalGuide:
    """Two perpendicular axes rotated by angle (degrees)."""
    angle: float = 0.0

    def clone(self) -> "OrthogonalGuide":
        return OrthogonalGuide(self.angle)


@dataclass
class GridGuide:
    """Snapping lattice. iso_angle (degrees) tilts the two isometric line families."""
    type: GridType = GridType.CARTESIAN
    spacing: float = 10.0
    major_line_frequency: int = 10
    iso_angle: float = 60.0

    def clone(self) -> "GridGuide":
        return replace(self)


# ─── Snapshot ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GuideSnapshot:
    """Read-only view of every guide, taken once per input session."""
    active_guide: ActiveGuide = ActiveGuide.NONE
    rulers: Tuple[RulerGuide, ...] = ()
    mirrors: Tuple[MirrorGuide, ...] = ()
    perspective: Optional[PerspectiveGuide] = None
    orthogonal: Optional[OrthogonalGuide] = None
    orthogonal_visible: bool = False
    grid: GridGuide = field(default_factory=GridGuide)
    snap_to_grid: bool = False
    perspective_stroke_lock: bool = False
    zoom: float = 1.0

    @property
    def active_mirrors(self) -> Tuple[MirrorGuide, ...]:
        """Mirror axes that duplicate strokes right now."""
        if self.active_guide != ActiveGuide.MIRROR:
            return ()
        return self.mirrors


class GuideState:
    """
    Mutable guide configuration owned by the host application.

    Mirrors how a toolbar toggles guide families: activating a family with
    no guides yet seeds a default guide sized to the canvas.
    """

    def __init__(self, canvas_width: int, canvas_height: int) -> None:
        self._logger = get_logger(__name__)
        self.canvas_width = canvas_width
        self.canvas_height = canvas_height

        self.active_guide = ActiveGuide.NONE
        self.rulers: List[RulerGuide] = []
        self.mirrors: List[MirrorGuide] = []
        self.perspective: Optional[PerspectiveGuide] = None
        self.orthogonal = OrthogonalGuide()
        self.orthogonal_visible = False
        self.grid = default_grid(canvas_width, canvas_height)
        self.snap_to_grid = False
        self.perspective_stroke_lock = False

    def toggle_guide(self, guide: ActiveGuide) -> ActiveGuide:
        """
        Toggle a guide family on or off.

        Args:
            guide: The family to toggle. Toggling the active family turns it off.

        Returns:
            The family that is active afterwards.
        """
        new_guide = ActiveGuide.NONE if self.active_guide == guide else guide

        if new_guide != ActiveGuide.PERSPECTIVE:
            self.perspective_stroke_lock = False

        if new_guide == ActiveGuide.RULER and not self.rulers:
            self.rulers.append(default_ruler(self.canvas_width, self.canvas_height))
        elif new_guide == ActiveGuide.PERSPECTIVE and self.perspective is None:
            self.perspective = default_perspective(self.canvas_width, self.canvas_height)
        elif new_guide == ActiveGuide.MIRROR and not self.mirrors:
            self.mirrors.append(default_mirror(self.canvas_width, self.canvas_height))

        self.active_guide = new_guide
        self._logger.debug(f"Active guide: {new_guide.value}")
        return new_guide

    def set_grid_type(self, grid_type: GridType) -> None:
        self.grid.type = grid_type
        if grid_type == GridType.NONE:
            self.snap_to_grid = False

    def add_perspective_handle(self, color: GuideColor, handle: QPointF) -> Optional[PerspectiveHandle]:
        """Add an extra guide line for a colour, if that colour has a vanishing point."""
        if self.perspective is None or vanishing_points(self.perspective).get(color) is None:
            return None
        extra = PerspectiveHandle(QPointF(handle))
        self.perspective.extra_lines[color].append(extra)
        return extra

    def snapshot(self, zoom: float = 1.0) -> GuideSnapshot:
        """Capture an immutable copy for one input session."""
        return GuideSnapshot(
            active_guide=self.active_guide,
            rulers=tuple(r.clone() for r in self.rulers),
            mirrors=tuple(m.clone() for m in self.mirrors),
            perspective=self.perspective.clone() if self.perspective else None,
            orthogonal=self.orthogonal.clone(),
            orthogonal_visible=self.orthogonal_visible,
            grid=self.grid.clone(),
            snap_to_grid=self.snap_to_grid,
            perspective_stroke_lock=self.perspective_stroke_lock,
            zoom=zoom,
        )


# ─── Default Guides ───────────────────────────────────────────────────────────

def default_ruler(width: float, height: float) -> RulerGuide:
    """Horizontal ruler across the middle half of the canvas."""
    return RulerGuide(QPointF(width * 0.25, height / 2), QPointF(width * 0.75, height / 2))


def default_mirror(width: float, height: float) -> MirrorGuide:
    """Vertical mirror axis through the canvas center."""
    return MirrorGuide(QPointF(width / 2, 0), QPointF(width / 2, height))


def default_grid(width: float, height: float) -> GridGuide:
    """Cartesian grid with roughly 40 cells across the shorter canvas side."""
    spacing = max(5.0, round(min(width, height) / 40))
    return GridGuide(GridType.CARTESIAN, spacing)


def default_perspective(width: float, height: float) -> PerspectiveGuide:
    """Two-point perspective on a horizon at 40% height, plus a vertical set."""
    horizon = height * 0.4
    vp1_x = width * 0.1
    vp2_x = width * 0.9
    return PerspectiveGuide(
        lines={
            GuideColor.GREEN: [
                PerspectiveLine(QPointF(0, 0), QPointF(vp1_x, horizon), "g1"),
                PerspectiveLine(QPointF(0, height), QPointF(vp1_x, horizon), "g2"),
            ],
            GuideColor.RED: [
                PerspectiveLine(QPointF(width, 0), QPointF(vp2_x, horizon), "r1"),
                PerspectiveLine(QPointF(width, height), QPointF(vp2_x, horizon), "r2"),
            ],
            GuideColor.BLUE: [
                PerspectiveLine(QPointF(width * 0.3, 0), QPointF(width * 0.3, height), "b1"),
                PerspectiveLine(QPointF(width * 0.7, 0), QPointF(width * 0.7, height), "b2"),
            ],
        },
        guide_point=QPointF(width / 2, height * 0.8),
    )


# ─── Derived Geometry ─────────────────────────────────────────────────────────

def vanishing_points(perspective: PerspectiveGuide) -> Dict[GuideColor, Optional[QPointF]]:
    """
    Derive one vanishing point per colour from its first two lines.

    A colour with fewer than two lines, or with parallel lines, maps to None.
    """
    result: Dict[GuideColor, Optional[QPointF]] = {}
    for color in GuideColor:
        lines = perspective.lines.get(color, [])
        if len(lines) < 2:
            result[color] = None
            continue
        result[color] = intersect(
            (lines[0].start, lines[0].end),
            (lines[1].start, lines[1].end),
        )
    return result


def perspective_candidate_lines(perspective: PerspectiveGuide) -> List[Tuple[QPointF, QPointF]]:
    """Lines a stroke may lock onto: each VP through the guide point and through its extra handles."""
    candidates: List[Tuple[QPointF, QPointF]] = []
    vps = vanishing_points(perspective)
    for color in GuideColor:
        vp = vps[color]
        if vp is None:
            continue
        candidates.append((vp, perspective.guide_point))
        for extra in perspective.extra_lines.get(color, []):
            candidates.append((vp, extra.handle))
    return candidates


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _isometric_normals(iso_angle: float) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    """Unit normals of the two slanted isometric line families."""
    normals = []
    for direction in (90.0 - iso_angle, 90.0 + iso_angle):
        normal = math.radians(direction) + math.pi / 2
        normals.append((math.cos(normal), math.sin(normal)))
    return normals[0], normals[1]


def snap_to_grid(point: QPointF, grid: GridGuide) -> QPointF:
    """
    Snap a point to the nearest grid lattice point.

    Cartesian grids round each axis to a multiple of the spacing. Isometric
    lattice points are the crossings of two line families; the point is
    expressed in lattice coordinates through the inverse of their 2x2 normal
    matrix, rounded, and mapped back. A singular basis leaves the point as is.
    """
    spacing = grid.spacing
    if grid.type == GridType.NONE or spacing <= 0:
        return QPointF(point)

    if grid.type == GridType.CARTESIAN:
        return QPointF(
            _round_half_up(point.x() / spacing) * spacing,
            _round_half_up(point.y() / spacing) * spacing,
        )

    (a, b), (c, d) = _isometric_normals(grid.iso_angle)
    det = a * d - b * c
    if abs(det) < GRID_BASIS_EPSILON:
        logger.debug(f"Isometric basis is singular for angle {grid.iso_angle}")
        return QPointF(point)

    # Lattice coordinates: line index along each family
    u = (a * point.x() + b * point.y()) / spacing
    v = (c * point.x() + d * point.y()) / spacing

    def to_world(i: int, j: int) -> QPointF:
        # Inverse of [[a, b], [c, d]] applied to spacing * (i, j)
        x = (d * i - b * j) * spacing / det
        y = (-c * i + a * j) * spacing / det
        return QPointF(x, y)

    candidates = [
        to_world(i, j)
        for i in (math.floor(u), math.ceil(u))
        for j in (math.floor(v), math.ceil(v))
    ]
    return min(candidates, key=lambda p: distance(p, point))


def mirror_transform(mirror: MirrorGuide) -> QTransform:
    """
    Reflection across a mirror axis as a painter transform.

    translate(start) -> rotate(angle) -> scale(1, -1) -> rotate(-angle) -> translate(-start)
    """
    angle_deg = math.degrees(mirror.angle)
    transform = QTransform()
    transform.translate(mirror.start.x(), mirror.start.y())
    transform.rotate(angle_deg)
    transform.scale(1, -1)
    transform.rotate(-angle_deg)
    transform.translate(-mirror.start.x(), -mirror.start.y())
    return transform


def reflect_point(point: QPointF, mirror: MirrorGuide) -> QPointF:
    """Reflect a point across a mirror axis."""
    return mirror_transform(mirror).map(point)


# ─── Stroke Constraint ────────────────────────────────────────────────────────

class StrokeConstraint:
    """
    Per-stroke guide resolver.

    Locks chosen at stroke start (perspective line or vanishing point) or after
    the first movement (orthogonal axis) hold for the rest of the stroke.
    Priority for each sample:
    1. Perspective stroke lock towards the vanishing point nearest the start
    2. Perspective line captured at stroke start
    3. Orthogonal axis lock
    4. Nearest ruler line
    5. Grid snap
    """

    def __init__(self, guides: GuideSnapshot, settings: Optional[EngineSettings] = None) -> None:
        self._guides = guides
        self._settings = settings or EngineSettings()
        zoom = guides.zoom if guides.zoom > 0 else 1.0
        self._perspective_threshold = self._settings.perspective_snap_px / zoom
        self._orthogonal_threshold = self._settings.orthogonal_lock_px / zoom

        self._start: Optional[QPointF] = None
        self._stroke_lock: Optional[Tuple[QPointF, QPointF]] = None
        self._locked_line: Optional[Tuple[QPointF, QPointF]] = None
        self._orthogonal_axis: Optional[str] = None

    @property
    def locked_line(self) -> Optional[Tuple[QPointF, QPointF]]:
        """The line the stroke is currently constrained to, if any."""
        return self._stroke_lock or self._locked_line

    def _uses_stroke_lock(self) -> bool:
        return (
            self._guides.active_guide == ActiveGuide.PERSPECTIVE
            and self._guides.perspective is not None
            and self._guides.perspective_stroke_lock
        )

    def begin(self, raw: QPointF) -> QPointF:
        """
        Resolve the first sample of a stroke and choose any stroke-wide lock.

        Args:
            raw: Pointer position in surface coordinates.

        Returns:
            The constrained start point.
        """
        guides = self._guides
        self._stroke_lock = None
        self._locked_line = None
        self._orthogonal_axis = None

        if guides.active_guide == ActiveGuide.PERSPECTIVE and guides.perspective is not None:
            if guides.perspective_stroke_lock:
                vps = [vp for vp in vanishing_points(guides.perspective).values() if vp is not None]
                if vps:
                    target = min(vps, key=lambda vp: distance(raw, vp))
                    self._stroke_lock = (QPointF(raw), target)
                    self._start = QPointF(raw)
                    logger.debug(f"Stroke locked towards vanishing point ({target.x():.1f}, {target.y():.1f})")
                    return QPointF(raw)
            else:
                best = self._nearest_perspective_line(raw)
                if best is not None:
                    self._locked_line = best
                    point = project_on_line(raw, best[0], best[1])
                    self._start = point
                    return point

        if guides.active_guide == ActiveGuide.RULER and guides.rulers:
            point = self._nearest_ruler_projection(raw)
            self._start = point
            return point

        point = self._snap(raw)
        self._start = point
        return point

    def constrain(self, raw: QPointF) -> QPointF:
        """Resolve a follow-up sample of the stroke started with begin()."""
        if self._start is None:
            raise RuntimeError("constrain() called before begin()")

        guides = self._guides
        if self._uses_stroke_lock():
            if self._stroke_lock is not None:
                return project_on_line(raw, self._stroke_lock[0], self._stroke_lock[1])
        elif self._locked_line is not None:
            return project_on_line(raw, self._locked_line[0], self._locked_line[1])
        elif guides.orthogonal_visible and guides.orthogonal is not None:
            locked = self._orthogonal_projection(raw)
            if locked is not None:
                return locked
        elif guides.active_guide == ActiveGuide.RULER and guides.rulers:
            return self._nearest_ruler_projection(raw)

        return self._snap(raw)

    def _snap(self, raw: QPointF) -> QPointF:
        if not self._guides.snap_to_grid:
            return QPointF(raw)
        return snap_to_grid(raw, self._guides.grid)

    def _nearest_perspective_line(self, raw: QPointF) -> Optional[Tuple[QPointF, QPointF]]:
        best: Optional[Tuple[QPointF, QPointF]] = None
        best_distance = math.inf
        for line in perspective_candidate_lines(self._guides.perspective):
            d = distance(raw, project_on_line(raw, line[0], line[1]))
            if d < best_distance:
                best_distance = d
                best = line
        if best is not None and best_distance < self._perspective_threshold:
            return best
        return None

    def _nearest_ruler_projection(self, raw: QPointF) -> QPointF:
        projections = [project_on_line(raw, r.start, r.end) for r in self._guides.rulers]
        return min(projections, key=lambda p: distance(raw, p))

    def _orthogonal_projection(self, raw: QPointF) -> Optional[QPointF]:
        start = self._start
        angle = math.radians(self._guides.orthogonal.angle)
        cos_a = math.cos(-angle)
        sin_a = math.sin(-angle)
        rel_x = raw.x() - start.x()
        rel_y = raw.y() - start.y()
        # Offset in the guide's unrotated frame
        local_x = rel_x * cos_a - rel_y * sin_a
        local_y = rel_x * sin_a + rel_y * cos_a

        if self._orthogonal_axis is None:
            if math.hypot(rel_x, rel_y) <= self._orthogonal_threshold:
                return None
            self._orthogonal_axis = "x" if abs(local_x) > abs(local_y) else "y"
            logger.debug(f"Orthogonal lock on {self._orthogonal_axis} axis")

        snapped_x = local_x if self._orthogonal_axis == "x" else 0.0
        snapped_y = local_y if self._orthogonal_axis == "y" else 0.0
        cos_b = math.cos(angle)
        sin_b = math.sin(angle)
        return QPointF(
            start.x() + snapped_x * cos_b - snapped_y * sin_b,
            start.y() + snapped_x * sin_b + snapped_y * cos_b,
        )
