"""
Transform and warp engine.

A TransformSession edits how the content of a fixed source box will be placed
back onto its surface:
- AffineTransform: box position/size plus rotation, 8 resize handles,
  a rotation handle above the top edge and body drag
- FreeTransform: 4 independent corners (projective warp), or whole-quad move

Nothing touches the surface until commit(), which copies the source box,
erases it with destination-out and draws the transformed copy.

CropRect reuses the same 8 resize handles for the crop tool.
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Union

from PySide6.QtCore import QPointF, QRect, QRectF
from PySide6.QtGui import QColor, QImage, QPainter, QPen, QPolygonF

from sketchforge.core.geometry import (
    Quad,
    draw_warped_image,
    is_near_point,
    point_in_polygon,
    quad_transform,
)
from sketchforge.core.surface import RasterSurface, content_bounding_box, painter_state
from sketchforge.services.config_service import EngineSettings
from sketchforge.services.logging_service import get_logger

logger = get_logger(__name__)

MIN_TRANSFORM_SIZE = 1.0


class TransformHandle(Enum):
    """Drag handles. Resize handle values spell the edges they move."""
    TOP_LEFT = "tl"
    TOP_RIGHT = "tr"
    BOTTOM_LEFT = "bl"
    BOTTOM_RIGHT = "br"
    TOP = "t"
    BOTTOM = "b"
    LEFT = "l"
    RIGHT = "r"
    ROTATE = "rotate"
    MOVE = "move"

    @property
    def is_resize(self) -> bool:
        return self not in (TransformHandle.ROTATE, TransformHandle.MOVE)

    @property
    def is_corner(self) -> bool:
        return self.is_resize and len(self.value) == 2

    def moves(self, edge: str) -> bool:
        """Whether this resize handle moves the edge 't', 'b', 'l' or 'r'."""
        return self.is_resize and edge in self.value


CORNER_HANDLES = (
    TransformHandle.TOP_LEFT,
    TransformHandle.TOP_RIGHT,
    TransformHandle.BOTTOM_LEFT,
    TransformHandle.BOTTOM_RIGHT,
)


def _rotate_about(p: QPointF, center: QPointF, angle: float) -> QPointF:
    cos_a = math.cos(angle)
    sin_a = math.sin(angle)
    dx = p.x() - center.x()
    dy = p.y() - center.y()
    return QPointF(center.x() + dx * cos_a - dy * sin_a, center.y() + dx * sin_a + dy * cos_a)


# ─── Transform States ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AffineTransform:
    """Axis-aligned box (before rotation) and a rotation in radians about its center."""
    x: float
    y: float
    width: float
    height: float
    rotation: float = 0.0

    @classmethod
    def from_rect(cls, rect: Union[QRect, QRectF]) -> "AffineTransform":
        return cls(float(rect.x()), float(rect.y()), float(rect.width()), float(rect.height()))

    @property
    def center(self) -> QPointF:
        return QPointF(self.x + self.width / 2, self.y + self.height / 2)

    def _map(self, x: float, y: float) -> QPointF:
        return _rotate_about(QPointF(x, y), self.center, self.rotation)

    @property
    def quad(self) -> Quad:
        """Rotated corners in order tl, tr, br, bl."""
        return (
            self._map(self.x, self.y),
            self._map(self.x + self.width, self.y),
            self._map(self.x + self.width, self.y + self.height),
            self._map(self.x, self.y + self.height),
        )

    def handle_positions(self, rotate_offset: float) -> Dict[TransformHandle, QPointF]:
        """
        World positions of every handle, in hit-test order.

        Args:
            rotate_offset: Distance of the rotation handle above the top edge.
        """
        x, y, w, h = self.x, self.y, self.width, self.height
        return {
            TransformHandle.TOP_LEFT: self._map(x, y),
            TransformHandle.TOP_RIGHT: self._map(x + w, y),
            TransformHandle.BOTTOM_LEFT: self._map(x, y + h),
            TransformHandle.BOTTOM_RIGHT: self._map(x + w, y + h),
            TransformHandle.TOP: self._map(x + w / 2, y),
            TransformHandle.BOTTOM: self._map(x + w / 2, y + h),
            TransformHandle.LEFT: self._map(x, y + h / 2),
            TransformHandle.RIGHT: self._map(x + w, y + h / 2),
            TransformHandle.ROTATE: self._map(x + w / 2, y - rotate_offset),
        }


@dataclass(frozen=True)
class FreeTransform:
    """Four independently placed corners."""
    tl: QPointF
    tr: QPointF
    bl: QPointF
    br: QPointF

    @classmethod
    def from_rect(cls, rect: Union[QRect, QRectF]) -> "FreeTransform":
        x, y, w, h = float(rect.x()), float(rect.y()), float(rect.width()), float(rect.height())
        return cls(QPointF(x, y), QPointF(x + w, y), QPointF(x, y + h), QPointF(x + w, y + h))

    @property
    def quad(self) -> Quad:
        """Corners in order tl, tr, br, bl."""
        return (QPointF(self.tl), QPointF(self.tr), QPointF(self.br), QPointF(self.bl))

    def corner(self, handle: TransformHandle) -> QPointF:
        return QPointF(getattr(self, handle.value))

    def handle_positions(self) -> Dict[TransformHandle, QPointF]:
        return {handle: self.corner(handle) for handle in CORNER_HANDLES}

    def translated(self, dx: float, dy: float) -> "FreeTransform":
        return FreeTransform(
            QPointF(self.tl.x() + dx, self.tl.y() + dy),
            QPointF(self.tr.x() + dx, self.tr.y() + dy),
            QPointF(self.bl.x() + dx, self.bl.y() + dy),
            QPointF(self.br.x() + dx, self.br.y() + dy),
        )


TransformState = Union[AffineTransform, FreeTransform]


@dataclass(frozen=True)
class CropRect:
    """Crop rectangle in surface coordinates."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_points(cls, a: QPointF, b: QPointF) -> "CropRect":
        rect = QRectF(a, b).normalized()
        return cls(rect.x(), rect.y(), rect.width(), rect.height())

    def to_qrect(self) -> QRect:
        return QRectF(self.x, self.y, self.width, self.height).toAlignedRect()

    def handle_positions(self) -> Dict[TransformHandle, QPointF]:
        x, y, w, h = self.x, self.y, self.width, self.height
        return {
            TransformHandle.TOP_LEFT: QPointF(x, y),
            TransformHandle.TOP_RIGHT: QPointF(x + w, y),
            TransformHandle.BOTTOM_LEFT: QPointF(x, y + h),
            TransformHandle.BOTTOM_RIGHT: QPointF(x + w, y + h),
            TransformHandle.TOP: QPointF(x + w / 2, y),
            TransformHandle.BOTTOM: QPointF(x + w / 2, y + h),
            TransformHandle.LEFT: QPointF(x, y + h / 2),
            TransformHandle.RIGHT: QPointF(x + w, y + h / 2),
        }

    def hit_test(self, point: QPointF, threshold: float) -> Optional[TransformHandle]:
        for handle, pos in self.handle_positions().items():
            if is_near_point(point, pos, threshold):
                return handle
        if self.x < point.x() < self.x + self.width and self.y < point.y() < self.y + self.height:
            return TransformHandle.MOVE
        return None

    def dragged(self, handle: TransformHandle, dx: float, dy: float) -> "CropRect":
        """The rect after dragging a handle by (dx, dy); sides never drop below 1px."""
        if handle == TransformHandle.MOVE:
            return replace(self, x=self.x + dx, y=self.y + dy)

        x, y, width, height = self.x, self.y, self.width, self.height
        if handle.moves("r"):
            width += dx
        if handle.moves("l"):
            width -= dx
            x += dx
        if handle.moves("b"):
            height += dy
        if handle.moves("t"):
            height -= dy
            y += dy
        return CropRect(x, y, max(MIN_TRANSFORM_SIZE, width), max(MIN_TRANSFORM_SIZE, height))


# ─── Drag Math ────────────────────────────────────────────────────────────────

def snap_angle(angle: float, step_degrees: float) -> float:
    """Round an angle (radians) to the nearest multiple of step_degrees."""
    if step_degrees <= 0:
        return angle
    step = math.radians(step_degrees)
    return round(angle / step) * step


def resize_affine(
    start: AffineTransform,
    handle: TransformHandle,
    start_point: QPointF,
    point: QPointF,
    aspect_locked: bool = False,
) -> AffineTransform:
    """
    Resize an affine box by dragging one of its 8 handles.

    The pointer delta is taken into the box's unrotated frame. With the aspect
    ratio locked, corner handles follow whichever axis grew relatively more and
    edge handles derive the other side from the fixed ratio. The opposite edge
    stays put, so the center moves by half the size change (rotated back into
    world space).
    """
    cos_n = math.cos(-start.rotation)
    sin_n = math.sin(-start.rotation)
    world_dx = point.x() - start_point.x()
    world_dy = point.y() - start_point.y()
    local_dx = world_dx * cos_n - world_dy * sin_n
    local_dy = world_dx * sin_n + world_dy * cos_n

    width, height = start.width, start.height
    new_width, new_height = width, height
    if handle.moves("r"):
        new_width += local_dx
    if handle.moves("l"):
        new_width -= local_dx
    if handle.moves("b"):
        new_height += local_dy
    if handle.moves("t"):
        new_height -= local_dy

    if aspect_locked and height != 0 and (new_width != width or new_height != height):
        aspect = width / height
        if handle.is_corner:
            ratio = abs(new_width / new_height) if new_height != 0 else math.inf
            if ratio > aspect:
                new_height = math.copysign(abs(new_width / aspect), new_height)
            else:
                new_width = math.copysign(abs(new_height * aspect), new_width)
        elif handle.moves("l") or handle.moves("r"):
            new_height = math.copysign(abs(new_width / aspect), new_height)
        else:
            new_width = math.copysign(abs(new_height * aspect), new_width)

    new_width = max(MIN_TRANSFORM_SIZE, new_width)
    new_height = max(MIN_TRANSFORM_SIZE, new_height)

    dw = new_width - width
    dh = new_height - height
    cx_delta = 0.0
    cy_delta = 0.0
    if handle.moves("l"):
        cx_delta -= dw / 2
    if handle.moves("r"):
        cx_delta += dw / 2
    if handle.moves("t"):
        cy_delta -= dh / 2
    if handle.moves("b"):
        cy_delta += dh / 2

    cos_r = math.cos(start.rotation)
    sin_r = math.sin(start.rotation)
    center = start.center
    new_cx = center.x() + cx_delta * cos_r - cy_delta * sin_r
    new_cy = center.y() + cx_delta * sin_r + cy_delta * cos_r

    return replace(
        start,
        x=new_cx - new_width / 2,
        y=new_cy - new_height / 2,
        width=new_width,
        height=new_height,
    )


def rotate_affine(start: AffineTransform, point: QPointF, snap_degrees: Optional[float] = None) -> AffineTransform:
    """
    Point the rotation handle at the pointer.

    The handle sits straight above the center at rotation 0, so the rotation
    is the pointer's angle around the center plus 90 degrees.
    """
    center = start.center
    rotation = math.atan2(point.y() - center.y(), point.x() - center.x()) + math.pi / 2
    if snap_degrees:
        rotation = snap_angle(rotation, snap_degrees)
    return replace(start, rotation=rotation)


# ─── Rendering & Commit ───────────────────────────────────────────────────────

def draw_transformed(painter: QPainter, source: QImage, state: TransformState) -> None:
    """
    Draw source placed by a transform state.

    Affine: translate to the new center, rotate, scale by new/source size and
    draw the source centered on the origin. Free: homography warp.
    """
    if isinstance(state, FreeTransform):
        draw_warped_image(painter, source, state.quad)
        return

    src_w = source.width()
    src_h = source.height()
    if src_w == 0 or src_h == 0:
        return

    center = state.center
    with painter_state(painter):
        painter.translate(center)
        painter.rotate(math.degrees(state.rotation))
        painter.scale(state.width / src_w, state.height / src_h)
        painter.drawImage(QPointF(-src_w / 2, -src_h / 2), source)


def draw_transform_preview(painter: QPainter, source: QImage, state: TransformState) -> None:
    """
    Fast preview of draw_transformed().

    Free transforms are drawn through the projective QTransform instead of the
    pixel warp.
    """
    if isinstance(state, AffineTransform):
        draw_transformed(painter, source, state)
        return

    transform = quad_transform(source.width(), source.height(), state.quad)
    with painter_state(painter):
        if transform is None:
            painter.drawImage(state.tl, source)
            return
        painter.setTransform(transform, True)
        painter.drawImage(QPointF(0, 0), source)


def apply_transform(surface: RasterSurface, source_bbox: QRect, state: TransformState) -> bool:
    """
    Move the pixels of source_bbox to where the transform state places them.

    The region is copied, erased from the surface with destination-out, then
    the copy is drawn transformed, so overlapping source and destination
    areas never show the content twice.

    Returns:
        False (and leaves the surface untouched) for an empty source box.
    """
    if source_bbox.width() <= 0 or source_bbox.height() <= 0:
        logger.debug("Transform skipped: empty source box")
        return False

    source = surface.copy_region(source_bbox)
    surface.erase_region(source_bbox)
    with surface.open_painter() as painter:
        draw_transformed(painter, source, state)
    return True


# ─── Session ──────────────────────────────────────────────────────────────────

class TransformSession:
    """
    One transform gesture set on one surface.

    The source box is fixed when the session starts and never recomputed.
    """

    def __init__(
        self,
        surface: RasterSurface,
        source_bbox: QRect,
        free: bool = False,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self._logger = get_logger(__name__)
        self._surface = surface
        self._source_bbox = QRect(source_bbox)
        self._settings = settings or EngineSettings()
        self._source = surface.copy_region(self._source_bbox)

        self._state: TransformState = (
            FreeTransform.from_rect(self._source_bbox) if free
            else AffineTransform.from_rect(self._source_bbox)
        )
        self._drag_handle: Optional[TransformHandle] = None
        self._drag_start_point: Optional[QPointF] = None
        self._drag_start_state: Optional[TransformState] = None

    @classmethod
    def from_content(
        cls,
        surface: RasterSurface,
        free: bool = False,
        settings: Optional[EngineSettings] = None,
    ) -> Optional["TransformSession"]:
        """Start a session on the visible content of a surface; None if it is blank."""
        settings = settings or EngineSettings()
        bbox = content_bounding_box(surface.image, settings.content_alpha_tolerance)
        if bbox is None:
            return None
        return cls(surface, bbox, free, settings)

    @property
    def surface(self) -> RasterSurface:
        return self._surface

    @property
    def source_bbox(self) -> QRect:
        return QRect(self._source_bbox)

    @property
    def state(self) -> TransformState:
        return self._state

    @state.setter
    def state(self, value: TransformState) -> None:
        self._state = value

    @property
    def is_free(self) -> bool:
        return isinstance(self._state, FreeTransform)

    @property
    def is_dragging(self) -> bool:
        return self._drag_handle is not None

    def hit_test(self, point: QPointF, zoom: float = 1.0) -> Optional[TransformHandle]:
        """
        Find the handle under a point.

        Handles are tested first (within handle_size_px / zoom), then the body.
        """
        zoom = zoom if zoom > 0 else 1.0
        threshold = self._settings.handle_size_px / zoom

        if isinstance(self._state, AffineTransform):
            handles = self._state.handle_positions(self._settings.rotate_handle_offset_px / zoom)
        else:
            handles = self._state.handle_positions()

        for handle, pos in handles.items():
            if is_near_point(point, pos, threshold):
                return handle
        if point_in_polygon(point, self._state.quad):
            return TransformHandle.MOVE
        return None

    def begin_drag(self, point: QPointF, zoom: float = 1.0) -> Optional[TransformHandle]:
        handle = self.hit_test(point, zoom)
        if handle is None:
            return None
        self._drag_handle = handle
        self._drag_start_point = QPointF(point)
        self._drag_start_state = self._state
        return handle

    def drag(self, point: QPointF, aspect_locked: bool = False, angle_snap: bool = False) -> TransformState:
        """Update the state from the current pointer position of a drag."""
        if self._drag_handle is None:
            return self._state

        handle = self._drag_handle
        start = self._drag_start_state
        dx = point.x() - self._drag_start_point.x()
        dy = point.y() - self._drag_start_point.y()

        if isinstance(start, FreeTransform):
            if handle == TransformHandle.MOVE:
                self._state = start.translated(dx, dy)
            else:
                self._state = replace(start, **{handle.value: QPointF(point)})
        elif handle == TransformHandle.MOVE:
            self._state = replace(start, x=start.x + dx, y=start.y + dy)
        elif handle == TransformHandle.ROTATE:
            snap = self._settings.angle_snap_degrees if angle_snap else None
            self._state = rotate_affine(start, point, snap)
        else:
            self._state = resize_affine(start, handle, self._drag_start_point, point, aspect_locked)
        return self._state

    def end_drag(self) -> None:
        self._drag_handle = None
        self._drag_start_point = None
        self._drag_start_state = None

    def render_preview(self, painter: QPainter, zoom: float = 1.0) -> None:
        """
        Draw the surface as it would look after commit, plus the handle outline.
        """
        painter.drawImage(0, 0, self._surface.image)
        with painter_state(painter):
            painter.setCompositionMode(QPainter.CompositionMode.CompositionMode_DestinationOut)
            painter.fillRect(self._source_bbox, QColor(0, 0, 0, 255))
        draw_transform_preview(painter, self._source, self._state)

        zoom = zoom if zoom > 0 else 1.0
        with painter_state(painter):
            pen = QPen(QColor(0, 120, 215))
            pen.setWidthF(1 / zoom)
            painter.setPen(pen)
            painter.setBrush(QColor(0, 0, 0, 0))
            painter.drawPolygon(QPolygonF(list(self._state.quad)))

    def commit(self) -> bool:
        """Apply the transform to the surface."""
        changed = apply_transform(self._surface, self._source_bbox, self._state)
        if changed:
            kind = "free" if self.is_free else "affine"
            self._logger.info(f"Committed {kind} transform of {self._source_bbox.width()}x{self._source_bbox.height()} region")
        return changed
