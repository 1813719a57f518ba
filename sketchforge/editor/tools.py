"""
Tool framework and implementations for the SketchForge drawing engine.

Each tool receives input samples (already in surface coordinates) from the
DrawingCanvas and drives a stroke or transform session.

Tools:
- DrawTool: brush strokes in freehand, line, polyline, curve and arc modes
- TransformTool: affine or free (perspective) transform of surface content
- CropTool: crop rectangle with resize handles, applied with Enter
"""

from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import TYPE_CHECKING, List, Optional, Sequence

from PySide6.QtCore import QPointF, QRectF, Qt
from PySide6.QtGui import QColor, QPainter, QPen

from sketchforge.editor.brushes import BrushBase, BrushContext, PencilBrush
from sketchforge.editor.brush_settings import StrokeModifier
from sketchforge.editor.guides import GuideSnapshot, StrokeConstraint
from sketchforge.editor.strokes import (
    ArcSweepTracker,
    InputSample,
    Stroke,
    StrokeMode,
    StrokePoint,
    arc_points,
    smooth_points,
    stroke_render_points,
)
from sketchforge.editor.transform import CropRect, TransformHandle, TransformSession
from sketchforge.services.logging_service import get_logger

if TYPE_CHECKING:
    from sketchforge.editor.drawing_canvas import DrawingCanvas

# Colour of construction helpers (radius lines, control lines) on the preview
HELPER_COLOR = QColor(0, 120, 215, 160)


class ToolType(Enum):
    """Enum for tool types."""
    DRAW = auto()
    TRANSFORM = auto()
    FREE_TRANSFORM = auto()
    CROP = auto()


class ToolBase(ABC):
    """
    Base class for all tools.

    Tools handle input samples and key presses forwarded by the canvas and
    draw into its preview surface until they commit.
    """

    def __init__(self) -> None:
        self._logger = get_logger(__name__)

    @property
    @abstractmethod
    def tool_type(self) -> ToolType:
        """Return the type of this tool."""
        pass

    @property
    def is_active(self) -> bool:
        """True while a session is in progress."""
        return False

    @abstractmethod
    def on_press(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        """Handle pointer press."""
        pass

    @abstractmethod
    def on_move(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        """Handle pointer move."""
        pass

    @abstractmethod
    def on_release(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        """Handle pointer release."""
        pass

    def on_double_click(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        """Handle double click."""
        pass

    def on_key_press(self, key: int, canvas: "DrawingCanvas") -> bool:
        """
        Handle key press event.

        Returns True if the event was handled.
        """
        return False

    def on_deactivate(self, canvas: "DrawingCanvas") -> None:
        """Called when tool is deactivated (another tool selected)."""
        pass


def _helper_pen(zoom: float) -> QPen:
    pen = QPen(HELPER_COLOR)
    pen.setWidthF(1 / zoom if zoom > 0 else 1.0)
    pen.setStyle(Qt.PenStyle.DashLine)
    return pen


def stroke_seed(sample: InputSample) -> int:
    """Seed for a stroke's position-seeded randomness, derived from its first sample."""
    return int(sample.x * 1337 + sample.y * 31337 + sample.timestamp)


def _collapse_zero_length(points: Sequence[StrokePoint]) -> List[StrokePoint]:
    """A stroke whose points all coincide renders as its first point."""
    if len(points) > 1 and all(p.x == points[0].x and p.y == points[0].y for p in points):
        return [points[0]]
    return list(points)


# ─── Draw Tool ────────────────────────────────────────────────────────────────

class DrawState(Enum):
    IDLE = auto()
    COLLECTING = auto()


class DrawTool(ToolBase):
    """
    Brush stroke tool.

    Modes:
    - FREEHAND: press starts, moves add points, release commits
    - LINE: press fixes the start, moves update the end, release commits 2 points
    - POLYLINE: each click adds a point, double click or Enter commits
    - CURVE: start, end, then the control point; the third click commits
    - ARC: center, sweep start, then the third click commits the tracked sweep

    Escape cancels any session without touching the surface.
    """

    def __init__(
        self,
        brush: Optional[BrushBase] = None,
        mode: StrokeMode = StrokeMode.FREEHAND,
        stroke_modifier: Optional[StrokeModifier] = None,
    ) -> None:
        super().__init__()
        self._brush: BrushBase = brush or PencilBrush()
        self._mode = mode
        self._stroke_modifier = stroke_modifier or StrokeModifier()

        self._state = DrawState.IDLE
        self._points: List[StrokePoint] = []
        self._virtual_point: Optional[StrokePoint] = None
        self._constraint: Optional[StrokeConstraint] = None
        self._stroke_brush: Optional[BrushBase] = None
        self._context: Optional[BrushContext] = None
        self._seed = 0
        self._arc_tracker: Optional[ArcSweepTracker] = None
        self._rendered_length = 0.0
        self._last_committed: Optional[Stroke] = None

    @property
    def tool_type(self) -> ToolType:
        return ToolType.DRAW

    @property
    def brush(self) -> BrushBase:
        return self._brush

    @brush.setter
    def brush(self, value: BrushBase) -> None:
        self._brush = value

    @property
    def mode(self) -> StrokeMode:
        return self._mode

    def set_mode(self, mode: StrokeMode, canvas: "DrawingCanvas") -> None:
        """
        Switch the stroke mode.

        A session in progress is cancelled and its preview cleared.
        """
        if self._state == DrawState.COLLECTING:
            self._logger.debug("Stroke mode changed mid-stroke; discarding the stroke")
            self.cancel(canvas)
        self._mode = mode

    @property
    def stroke_modifier(self) -> StrokeModifier:
        return self._stroke_modifier

    @stroke_modifier.setter
    def stroke_modifier(self, value: StrokeModifier) -> None:
        self._stroke_modifier = value

    @property
    def state(self) -> DrawState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == DrawState.COLLECTING

    @property
    def points(self) -> List[StrokePoint]:
        """Points collected so far in the current session."""
        return list(self._points)

    @property
    def last_committed(self) -> Optional[Stroke]:
        """The most recently committed stroke."""
        return self._last_committed

    # ─── Session ──────────────────────────────────────────────────────────

    def _start(self, sample: InputSample, canvas: "DrawingCanvas") -> StrokePoint:
        guides: GuideSnapshot = canvas.guides
        settings = canvas.settings

        self._constraint = StrokeConstraint(guides, settings)
        pos = self._constraint.begin(sample.pos)
        self._seed = stroke_seed(sample)
        # Settings are frozen for the whole stroke
        self._stroke_brush = self._brush.for_stroke()
        self._context = BrushContext(
            stroke_seed=self._seed,
            stroke_modifier=self._stroke_modifier.clone(),
            mirrors=guides.active_mirrors,
            max_dabs=settings.max_dabs_per_stroke,
        )
        self._state = DrawState.COLLECTING
        self._points = []
        self._virtual_point = None
        self._arc_tracker = None
        self._rendered_length = 0.0
        return StrokePoint(pos.x(), pos.y(), sample.effective_pressure)

    def _constrained(self, sample: InputSample) -> StrokePoint:
        pos = self._constraint.constrain(sample.pos)
        return StrokePoint(pos.x(), pos.y(), sample.effective_pressure)

    def _reset(self) -> None:
        self._state = DrawState.IDLE
        self._points = []
        self._virtual_point = None
        self._constraint = None
        self._stroke_brush = None
        self._context = None
        self._arc_tracker = None
        self._rendered_length = 0.0

    def cancel(self, canvas: "DrawingCanvas") -> None:
        """Discard the current session. The target surface is never touched."""
        if self._state == DrawState.COLLECTING:
            self._logger.debug(f"{self._mode.name.lower()} stroke cancelled")
        self._reset()
        canvas.clear_preview()

    def commit(self, canvas: "DrawingCanvas", points: Optional[List[StrokePoint]] = None) -> Optional[Stroke]:
        """
        Finalize the session and rasterize it onto the active surface.

        Args:
            canvas: The canvas owning the target surface.
            points: Points to commit; defaults to the collected points.

        Returns:
            The committed stroke, or None when it rendered nothing.
        """
        points = list(self._points if points is None else points)
        if self._mode == StrokeMode.FREEHAND:
            points = smooth_points(points, canvas.settings.smoothing)

        sweep = self._arc_tracker.sweep if self._arc_tracker is not None else None
        stroke = Stroke(self._mode, points, self._seed, sweep)
        render_points = _collapse_zero_length(stroke_render_points(stroke))
        brush = self._stroke_brush
        context = self._context
        self._reset()

        if not render_points:
            self._logger.debug(f"Degenerate {stroke.mode.name.lower()} stroke rendered nothing")
            canvas.clear_preview()
            return None

        def draw(surface) -> None:
            with surface.open_painter() as painter:
                brush.render(painter, render_points, context)

        canvas.commit(draw)
        self._last_committed = stroke
        self._logger.info(
            f"Committed {stroke.mode.name.lower()} stroke with {len(stroke.points)} points "
            f"({brush.kind.value})"
        )
        return stroke

    # ─── Preview ──────────────────────────────────────────────────────────

    def _preview_points(self) -> List[StrokePoint]:
        """Polyline shown while collecting: collected points plus the pointer."""
        points = list(self._points)
        if self._mode == StrokeMode.ARC:
            if len(points) >= 2 and self._arc_tracker is not None:
                center, start = points[0], points[1]
                end_pressure = self._virtual_point.pressure if self._virtual_point else start.pressure
                return arc_points(center, start, self._arc_tracker.sweep, end_pressure)
            return []
        if self._mode == StrokeMode.CURVE and len(points) >= 2:
            # Straight until the control point is placed
            return points[:2]
        if self._virtual_point is not None:
            points.append(self._virtual_point)
        return points

    def _draw_helpers(self, painter: QPainter, zoom: float) -> None:
        """Construction lines for arcs and curves."""
        pointer = self._virtual_point
        if pointer is None or not self._points:
            return

        painter.setCompositionMode(QPainter.CompositionMode.CompositionMode_SourceOver)
        painter.setPen(_helper_pen(zoom))
        painter.setBrush(Qt.BrushStyle.NoBrush)

        if self._mode == StrokeMode.ARC:
            center = self._points[0]
            painter.drawLine(center.to_qpointf(), pointer.to_qpointf())
            if len(self._points) >= 2:
                radius = center.distance_to(self._points[1])
                painter.drawEllipse(center.to_qpointf(), radius, radius)
        elif self._mode == StrokeMode.CURVE and len(self._points) >= 2:
            painter.drawLine(self._points[0].to_qpointf(), pointer.to_qpointf())
            painter.drawLine(self._points[1].to_qpointf(), pointer.to_qpointf())

    def _redraw_preview(self, canvas: "DrawingCanvas") -> None:
        preview = canvas.preview
        preview.clear()
        brush = self._stroke_brush
        with preview.open_painter() as painter:
            if brush.previews_on_surface_copy:
                painter.drawImage(0, 0, canvas.active_surface.image)
            points = _collapse_zero_length(self._preview_points())
            if points:
                brush.render(painter, points, self._context)
            self._draw_helpers(painter, canvas.zoom)
        canvas.notify_preview_changed()

    def _extend_preview(self, canvas: "DrawingCanvas", p1: StrokePoint, p2: StrokePoint) -> None:
        """Add one freehand segment to the preview without redrawing the rest."""
        brush = self._stroke_brush
        offset = self._rendered_length
        self._rendered_length += p1.distance_to(p2)
        if brush.previews_on_surface_copy or not brush.can_extend(self._rendered_length, self._context):
            self._redraw_preview(canvas)
            return

        # The press-time dab is not part of a multi-point stroke
        if offset == 0.0:
            canvas.preview.clear()
        with canvas.preview.open_painter() as painter:
            brush.render_segment(painter, p1, p2, self._context, offset)
        canvas.notify_preview_changed()

    # ─── Events ───────────────────────────────────────────────────────────

    def on_press(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        if self._state == DrawState.IDLE:
            point = self._start(sample, canvas)
            self._points.append(point)
            if self._mode == StrokeMode.FREEHAND:
                self._redraw_preview(canvas)
            return

        point = self._constrained(sample)
        if self._mode == StrokeMode.POLYLINE:
            self._points.append(point)
            self._virtual_point = None
            self._redraw_preview(canvas)
        elif self._mode == StrokeMode.CURVE:
            self._points.append(point)
            if len(self._points) == 3:
                self.commit(canvas)
            else:
                self._redraw_preview(canvas)
        elif self._mode == StrokeMode.ARC:
            if len(self._points) == 1:
                self._points.append(point)
                self._arc_tracker = ArcSweepTracker(self._points[0], point)
                self._redraw_preview(canvas)
            else:
                self._arc_tracker.update(point.x, point.y)
                self._points.append(point)
                self.commit(canvas)

    def on_move(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        if self._state != DrawState.COLLECTING:
            return

        point = self._constrained(sample)
        if self._mode == StrokeMode.FREEHAND:
            last = self._points[-1]
            if point.x == last.x and point.y == last.y:
                return
            self._points.append(point)
            self._extend_preview(canvas, last, point)
            return

        if self._mode == StrokeMode.ARC and self._arc_tracker is not None:
            self._arc_tracker.update(point.x, point.y)
        self._virtual_point = point
        self._redraw_preview(canvas)

    def on_release(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        if self._state != DrawState.COLLECTING:
            return

        if self._mode == StrokeMode.FREEHAND:
            self.commit(canvas)
        elif self._mode == StrokeMode.LINE:
            end = self._constrained(sample)
            self.commit(canvas, [self._points[0], end])

    def on_double_click(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        if self._state == DrawState.COLLECTING and self._mode == StrokeMode.POLYLINE:
            if len(self._points) >= 2:
                self.commit(canvas)

    def on_key_press(self, key: int, canvas: "DrawingCanvas") -> bool:
        if key == Qt.Key.Key_Escape and self._state == DrawState.COLLECTING:
            self.cancel(canvas)
            return True

        if key in (Qt.Key.Key_Return, Qt.Key.Key_Enter):
            if self._mode == StrokeMode.POLYLINE and len(self._points) >= 2:
                self.commit(canvas)
                return True

        return False

    def on_deactivate(self, canvas: "DrawingCanvas") -> None:
        self.cancel(canvas)


# ─── Transform Tool ───────────────────────────────────────────────────────────

class TransformTool(ToolBase):
    """
    Transform the visible content of the active surface.

    The first press starts a session on the content bounding box. Drag
    handles to edit, Enter commits, Escape cancels.
    """

    def __init__(self, free: bool = False) -> None:
        super().__init__()
        self._free = free
        self._session: Optional[TransformSession] = None
        self.aspect_locked = False
        self.angle_snap = False

    @property
    def tool_type(self) -> ToolType:
        return ToolType.FREE_TRANSFORM if self._free else ToolType.TRANSFORM

    @property
    def session(self) -> Optional[TransformSession]:
        return self._session

    @property
    def is_active(self) -> bool:
        return self._session is not None

    def begin(self, canvas: "DrawingCanvas") -> Optional[TransformSession]:
        """Start a session on the active surface; None if it has no content."""
        if self._session is None:
            self._session = TransformSession.from_content(
                canvas.active_surface, self._free, canvas.settings
            )
            if self._session is None:
                self._logger.debug("Nothing to transform on a blank surface")
                return None
            self._redraw_preview(canvas)
        return self._session

    def _redraw_preview(self, canvas: "DrawingCanvas") -> None:
        preview = canvas.preview
        preview.clear()
        with preview.open_painter() as painter:
            self._session.render_preview(painter, canvas.zoom)
        canvas.notify_preview_changed()

    def on_press(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        session = self.begin(canvas)
        if session is not None:
            session.begin_drag(sample.pos, canvas.zoom)

    def on_move(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        if self._session is None or not self._session.is_dragging:
            return
        self._session.drag(sample.pos, self.aspect_locked, self.angle_snap)
        self._redraw_preview(canvas)

    def on_release(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        if self._session is not None:
            self._session.end_drag()

    def commit(self, canvas: "DrawingCanvas") -> bool:
        """Apply the pending transform to its surface."""
        session = self._session
        if session is None:
            return False
        self._session = None
        canvas.commit(lambda surface: session.commit(), surface_id=session.surface.id)
        return True

    def cancel(self, canvas: "DrawingCanvas") -> None:
        if self._session is not None:
            self._logger.debug("Transform cancelled")
        self._session = None
        canvas.clear_preview()

    def on_key_press(self, key: int, canvas: "DrawingCanvas") -> bool:
        if self._session is None:
            return False
        if key in (Qt.Key.Key_Return, Qt.Key.Key_Enter):
            return self.commit(canvas)
        if key == Qt.Key.Key_Escape:
            self.cancel(canvas)
            return True
        return False

    def on_deactivate(self, canvas: "DrawingCanvas") -> None:
        self.cancel(canvas)


# ─── Crop Tool ────────────────────────────────────────────────────────────────

class CropTool(ToolBase):
    """
    Crop the active surface.

    - Drag on empty area: new crop rectangle
    - Drag handle: resize (sides never below 1px)
    - Drag inside: move
    - Enter: apply, Escape: clear
    """

    def __init__(self) -> None:
        super().__init__()
        self._crop_rect: Optional[CropRect] = None
        self._drag_handle: Optional[TransformHandle] = None
        self._drag_start: Optional[QPointF] = None
        self._drag_start_rect: Optional[CropRect] = None
        self._is_creating = False

    @property
    def tool_type(self) -> ToolType:
        return ToolType.CROP

    @property
    def crop_rect(self) -> Optional[CropRect]:
        return self._crop_rect

    @property
    def is_active(self) -> bool:
        return self._crop_rect is not None

    def clear_crop(self, canvas: "DrawingCanvas") -> None:
        self._crop_rect = None
        self._drag_handle = None
        self._is_creating = False
        canvas.clear_preview()

    def _redraw_preview(self, canvas: "DrawingCanvas") -> None:
        preview = canvas.preview
        preview.clear()
        if self._crop_rect is not None:
            rect = self._crop_rect
            with preview.open_painter() as painter:
                painter.setPen(_helper_pen(canvas.zoom))
                painter.setBrush(Qt.BrushStyle.NoBrush)
                painter.drawRect(QRectF(rect.x, rect.y, rect.width, rect.height))
        canvas.notify_preview_changed()

    def on_press(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        pos = sample.pos
        zoom = canvas.zoom if canvas.zoom > 0 else 1.0
        if self._crop_rect is not None:
            handle = self._crop_rect.hit_test(pos, canvas.settings.handle_size_px / zoom)
            if handle is not None:
                self._drag_handle = handle
                self._drag_start = QPointF(pos)
                self._drag_start_rect = self._crop_rect
                return

        self._is_creating = True
        self._drag_start = QPointF(pos)
        self._crop_rect = CropRect.from_points(pos, pos)
        self._redraw_preview(canvas)

    def on_move(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        pos = sample.pos
        if self._is_creating and self._drag_start is not None:
            self._crop_rect = CropRect.from_points(self._drag_start, pos)
        elif self._drag_handle is not None:
            dx = pos.x() - self._drag_start.x()
            dy = pos.y() - self._drag_start.y()
            self._crop_rect = self._drag_start_rect.dragged(self._drag_handle, dx, dy)
        else:
            return
        self._redraw_preview(canvas)

    def on_release(self, sample: InputSample, canvas: "DrawingCanvas") -> None:
        if self._is_creating and self._crop_rect is not None:
            if self._crop_rect.width < 1 or self._crop_rect.height < 1:
                self._crop_rect = None
                self._redraw_preview(canvas)
        self._is_creating = False
        self._drag_handle = None
        self._drag_start = None
        self._drag_start_rect = None

    def apply_crop(self, canvas: "DrawingCanvas") -> bool:
        """
        Crop the active surface to the current rectangle.

        Returns True if the crop was applied.
        """
        if self._crop_rect is None:
            return False
        rect = self._crop_rect.to_qrect()
        self.clear_crop(canvas)
        return canvas.crop_active_surface(rect)

    def on_key_press(self, key: int, canvas: "DrawingCanvas") -> bool:
        if key in (Qt.Key.Key_Return, Qt.Key.Key_Enter):
            return self.apply_crop(canvas)
        if key == Qt.Key.Key_Escape and self._crop_rect is not None:
            self.clear_crop(canvas)
            return True
        return False

    def on_deactivate(self, canvas: "DrawingCanvas") -> None:
        self.clear_crop(canvas)


def create_tool(tool_type: ToolType) -> ToolBase:
    """
    Factory function to create tools by type.

    Args:
        tool_type: The type of tool to create.

    Returns:
        A new instance of the requested tool.
    """
    if tool_type == ToolType.DRAW:
        return DrawTool()
    if tool_type == ToolType.TRANSFORM:
        return TransformTool(free=False)
    if tool_type == ToolType.FREE_TRANSFORM:
        return TransformTool(free=True)
    if tool_type == ToolType.CROP:
        return CropTool()
    raise ValueError(f"Unknown tool type: {tool_type}")
