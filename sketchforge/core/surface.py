"""
Raster surfaces for the drawing engine.

A RasterSurface wraps a premultiplied ARGB QImage together with the id the
host application uses to address it. Surfaces are both inputs (sampled by the
transform engine) and outputs (mutated by brushes and commits).

Also provides the QImage <-> numpy conversion helpers used by the warp and
content bounding box code. Pixel arrays are always straight (unpremultiplied)
RGBA8888.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

import numpy as np
from PySide6.QtCore import QRect, Qt
from PySide6.QtGui import QColor, QImage, QPainter

from sketchforge.services.logging_service import get_logger

SURFACE_FORMAT = QImage.Format.Format_ARGB32_Premultiplied


def qimage_to_rgba_array(image: QImage) -> np.ndarray:
    """
    Copy a QImage into an (height, width, 4) uint8 array of straight RGBA.

    Args:
        image: Any QImage. It is converted to Format_RGBA8888 first.

    Returns:
        A new array that does not share memory with the image.
    """
    if image.format() != QImage.Format.Format_RGBA8888:
        image = image.convertToFormat(QImage.Format.Format_RGBA8888)

    width = image.width()
    height = image.height()
    if width == 0 or height == 0:
        return np.zeros((height, width, 4), dtype=np.uint8)

    ptr = image.constBits()
    arr = np.frombuffer(ptr, np.uint8, count=image.sizeInBytes())
    # RGBA8888 rows are always 4-byte aligned, but respect bytesPerLine anyway
    arr = arr.reshape((height, image.bytesPerLine()))[:, : width * 4]
    return arr.reshape((height, width, 4)).copy()


def rgba_array_to_qimage(arr: np.ndarray) -> QImage:
    """Create an owning Format_RGBA8888 QImage from an (h, w, 4) uint8 array."""
    if arr.ndim != 3 or arr.shape[2] != 4:
        raise ValueError(f"Expected an (h, w, 4) array, got shape {arr.shape}")

    arr = np.ascontiguousarray(arr, dtype=np.uint8)
    height, width = arr.shape[:2]
    return QImage(
        arr.data, width, height, width * 4,
        QImage.Format.Format_RGBA8888
    ).copy()  # .copy() to own the data


def content_bounding_box(image: QImage, tolerance: int = 1) -> Optional[QRect]:
    """
    Find the bounding box of the visible content of an image.

    Args:
        image: Image to scan.
        tolerance: Minimum alpha value counted as content.

    Returns:
        The smallest rectangle holding every pixel with alpha >= tolerance,
        or None for a fully transparent image.
    """
    alpha = qimage_to_rgba_array(image)[:, :, 3]
    rows = np.flatnonzero((alpha >= tolerance).any(axis=1))
    if rows.size == 0:
        return None
    cols = np.flatnonzero((alpha >= tolerance).any(axis=0))
    top, bottom = int(rows[0]), int(rows[-1])
    left, right = int(cols[0]), int(cols[-1])
    return QRect(left, top, right - left + 1, bottom - top + 1)


@contextmanager
def painter_state(painter: QPainter) -> Iterator[QPainter]:
    """Scope transform, pen, brush and composition changes to a block."""
    painter.save()
    try:
        yield painter
    finally:
        painter.restore()


class RasterSurface:
    """
    An addressable RGBA pixel buffer with a 2D drawing context.

    The underlying QImage is replaced (never resized) by restore(), so
    callers should not hold on to image references across commits.
    """

    def __init__(self, surface_id: str, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Surface size must be positive, got {width}x{height}")

        self._logger = get_logger(__name__)
        self._id = surface_id
        self._image = QImage(width, height, SURFACE_FORMAT)
        self._image.fill(Qt.GlobalColor.transparent)

    # ─── Properties ───────────────────────────────────────────────────────

    @property
    def id(self) -> str:
        return self._id

    @property
    def width(self) -> int:
        return self._image.width()

    @property
    def height(self) -> int:
        return self._image.height()

    @property
    def rect(self) -> QRect:
        return self._image.rect()

    @property
    def image(self) -> QImage:
        """The live backing image. Mutations through a painter are visible here."""
        return self._image

    # ─── Pixel Operations ─────────────────────────────────────────────────

    @contextmanager
    def open_painter(self, antialias: bool = True) -> Iterator[QPainter]:
        """
        Open a QPainter on the surface and always end it.

        Usage:
            with surface.open_painter() as painter:
                painter.drawLine(...)
        """
        painter = QPainter(self._image)
        if antialias:
            painter.setRenderHint(QPainter.RenderHint.Antialiasing)
            painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform)
        try:
            yield painter
        finally:
            painter.end()

    def snapshot(self) -> QImage:
        """Return a detached copy of the current pixels."""
        return self._image.copy()

    def restore(self, image: QImage) -> None:
        """Replace the pixels with a copy of image (must match the surface size)."""
        if image.width() != self.width or image.height() != self.height:
            raise ValueError(
                f"Cannot restore a {image.width()}x{image.height()} image "
                f"into a {self.width}x{self.height} surface"
            )
        self._image = image.convertToFormat(SURFACE_FORMAT).copy()

    def clear(self) -> None:
        """Make every pixel fully transparent."""
        self._image.fill(Qt.GlobalColor.transparent)

    def copy_region(self, rect: QRect) -> QImage:
        """Copy a region; parts outside the surface come back transparent."""
        return self._image.copy(rect)

    def crop(self, rect: QRect) -> None:
        """Replace the pixels with the given region; the surface takes its size."""
        rect = rect.intersected(self._image.rect())
        if rect.isEmpty():
            raise ValueError("Crop rectangle does not overlap the surface")
        self._image = self._image.copy(rect)
        self._logger.debug(f"Surface '{self._id}' cropped to {rect.width()}x{rect.height()}")

    def erase_region(self, rect: QRect) -> None:
        """Erase a rectangle using a destination-out fill."""
        with self.open_painter(antialias=False) as painter:
            painter.setCompositionMode(QPainter.CompositionMode.CompositionMode_DestinationOut)
            painter.fillRect(rect, QColor(0, 0, 0, 255))

    def pixel_array(self) -> np.ndarray:
        """Straight RGBA copy of the surface as an (h, w, 4) uint8 array."""
        return qimage_to_rgba_array(self._image)

    def alpha_at(self, x: int, y: int) -> int:
        return self._image.pixelColor(x, y).alpha()

    def is_blank(self) -> bool:
        return content_bounding_box(self._image) is None
