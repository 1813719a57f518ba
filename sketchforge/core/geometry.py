"""
Geometry kernel for the drawing engine.

Pure functions with no state, shared by the guide, stroke and transform code:
- Line intersection, projection and distance helpers
- Point-in-polygon hit testing
- Linear system solving and 4-point homographies
- Inverse-mapped bilinear image warping

Points are QPointF throughout. Homographies are 3x3 numpy arrays with
h[2, 2] == 1.
"""

import math
from typing import Optional, Sequence, Tuple

import numpy as np
from PySide6.QtCore import QPoint, QPointF
from PySide6.QtGui import QImage, QPainter, QTransform

from sketchforge.core.surface import qimage_to_rgba_array, rgba_array_to_qimage
from sketchforge.services.logging_service import get_logger

logger = get_logger(__name__)

Line = Tuple[QPointF, QPointF]
# Corners in clockwise order: top-left, top-right, bottom-right, bottom-left
Quad = Tuple[QPointF, QPointF, QPointF, QPointF]

PIVOT_EPSILON = 1e-10
PARALLEL_EPSILON = 1e-12
# Inverse-mapped coordinates this close to the source edge still sample it
WARP_EDGE_EPSILON = 1e-6
# Destination rows processed per numpy pass while warping
WARP_ROWS_PER_CHUNK = 256


# ─── Lines & Points ───────────────────────────────────────────────────────────

def distance(a: QPointF, b: QPointF) -> float:
    return math.hypot(b.x() - a.x(), b.y() - a.y())


def midpoint(a: QPointF, b: QPointF) -> QPointF:
    return QPointF((a.x() + b.x()) / 2, (a.y() + b.y()) / 2)


def intersect(line1: Line, line2: Line) -> Optional[QPointF]:
    """
    Intersect two infinite lines.

    Args:
        line1: Two points on the first line.
        line2: Two points on the second line.

    Returns:
        The intersection point, or None when the lines are parallel
        (or either line is degenerate).
    """
    p1, p2 = line1
    p3, p4 = line2

    den = (p1.x() - p2.x()) * (p3.y() - p4.y()) - (p1.y() - p2.y()) * (p3.x() - p4.x())
    if abs(den) < PARALLEL_EPSILON:
        return None

    t = ((p1.x() - p3.x()) * (p3.y() - p4.y()) - (p1.y() - p3.y()) * (p3.x() - p4.x())) / den
    return QPointF(p1.x() + t * (p2.x() - p1.x()), p1.y() + t * (p2.y() - p1.y()))


def project_on_line(p: QPointF, a: QPointF, b: QPointF) -> QPointF:
    """
    Orthogonally project p onto the infinite line through a and b.

    Returns a copy of a when a and b coincide.
    """
    dx = b.x() - a.x()
    dy = b.y() - a.y()
    len_sq = dx * dx + dy * dy
    if len_sq == 0:
        return QPointF(a)

    t = ((p.x() - a.x()) * dx + (p.y() - a.y()) * dy) / len_sq
    return QPointF(a.x() + t * dx, a.y() + t * dy)


def distance_to_segment(p: QPointF, a: QPointF, b: QPointF) -> float:
    """Distance from p to the closed segment a-b."""
    dx = b.x() - a.x()
    dy = b.y() - a.y()
    len_sq = dx * dx + dy * dy
    if len_sq == 0:
        return distance(p, a)

    t = ((p.x() - a.x()) * dx + (p.y() - a.y()) * dy) / len_sq
    t = max(0.0, min(1.0, t))
    return distance(p, QPointF(a.x() + t * dx, a.y() + t * dy))


def is_near_point(p: QPointF, target: QPointF, threshold: float) -> bool:
    return distance(p, target) < threshold


def point_in_polygon(p: QPointF, polygon: Sequence[QPointF]) -> bool:
    """
    Ray-casting parity test for simple polygons.

    Points exactly on an edge may land on either side.
    """
    inside = False
    count = len(polygon)
    if count < 3:
        return False

    j = count - 1
    for i in range(count):
        xi, yi = polygon[i].x(), polygon[i].y()
        xj, yj = polygon[j].x(), polygon[j].y()
        if (yi > p.y()) != (yj > p.y()):
            x_cross = (xj - xi) * (p.y() - yi) / (yj - yi) + xi
            if p.x() < x_cross:
                inside = not inside
        j = i
    return inside


# ─── Linear Algebra ───────────────────────────────────────────────────────────

def solve_linear_system(a: Sequence[Sequence[float]], b: Sequence[float]) -> Optional[np.ndarray]:
    """
    Solve A x = b by Gaussian elimination with partial pivoting.

    Args:
        a: Square coefficient matrix (n x n). Not modified.
        b: Right-hand side (n). Not modified.

    Returns:
        The solution vector, or None if any pivot magnitude is at or
        below PIVOT_EPSILON.
    """
    m = np.array(a, dtype=np.float64)
    rhs = np.array(b, dtype=np.float64)
    n = rhs.shape[0]
    if m.shape != (n, n):
        raise ValueError(f"Expected a {n}x{n} matrix, got {m.shape}")

    for col in range(n):
        pivot_row = col + int(np.argmax(np.abs(m[col:, col])))
        if abs(m[pivot_row, col]) <= PIVOT_EPSILON:
            return None

        if pivot_row != col:
            m[[col, pivot_row]] = m[[pivot_row, col]]
            rhs[[col, pivot_row]] = rhs[[pivot_row, col]]

        factors = m[col + 1:, col] / m[col, col]
        m[col + 1:, col:] -= np.outer(factors, m[col, col:])
        rhs[col + 1:] -= factors * rhs[col]

    x = np.zeros(n, dtype=np.float64)
    for row in range(n - 1, -1, -1):
        x[row] = (rhs[row] - np.dot(m[row, row + 1:], x[row + 1:])) / m[row, row]
    return x


def compute_homography(src: Sequence[QPointF], dst: Sequence[QPointF]) -> Optional[np.ndarray]:
    """
    Compute the projective transform mapping 4 source points onto 4 destination points.

    Args:
        src: Four source points.
        dst: Four destination points, in corresponding order.

    Returns:
        A 3x3 matrix normalized so that h[2, 2] == 1, or None when the
        8x8 system is near-singular (e.g. three collinear points).
    """
    if len(src) != 4 or len(dst) != 4:
        raise ValueError("A homography needs exactly 4 point correspondences")

    rows = []
    rhs = []
    for s, d in zip(src, dst):
        x1, y1 = s.x(), s.y()
        x2, y2 = d.x(), d.y()
        rows.append([x1, y1, 1.0, 0.0, 0.0, 0.0, -x2 * x1, -x2 * y1])
        rhs.append(x2)
        rows.append([0.0, 0.0, 0.0, x1, y1, 1.0, -y2 * x1, -y2 * y1])
        rhs.append(y2)

    solution = solve_linear_system(rows, rhs)
    if solution is None:
        return None
    return np.append(solution, 1.0).reshape(3, 3)


def apply_homography(h: np.ndarray, p: QPointF) -> Optional[QPointF]:
    """Map a point through a homography. Returns None for points sent to infinity."""
    w = h[2, 0] * p.x() + h[2, 1] * p.y() + h[2, 2]
    if abs(w) < PARALLEL_EPSILON:
        return None
    return QPointF(
        (h[0, 0] * p.x() + h[0, 1] * p.y() + h[0, 2]) / w,
        (h[1, 0] * p.x() + h[1, 1] * p.y() + h[1, 2]) / w,
    )


def homography_to_qtransform(h: Optional[np.ndarray]) -> QTransform:
    """
    Express a homography as a QTransform (identity when h is None).

    QTransform stores the transposed matrix: m31/m32 are the translation terms.
    """
    if h is None:
        return QTransform()
    return QTransform(
        h[0, 0], h[1, 0], h[2, 0],
        h[0, 1], h[1, 1], h[2, 1],
        h[0, 2], h[1, 2], h[2, 2],
    )


def image_corners(width: float, height: float) -> Quad:
    return (
        QPointF(0, 0),
        QPointF(width, 0),
        QPointF(width, height),
        QPointF(0, height),
    )


def quad_transform(width: float, height: float, quad: Quad) -> Optional[QTransform]:
    """
    Projective QTransform taking a width x height image onto quad.

    Used for live previews of free transforms. Returns None when the quad is
    degenerate.
    """
    h = compute_homography(image_corners(width, height), quad)
    if h is None:
        return None
    return homography_to_qtransform(h)


# ─── Image Warping ────────────────────────────────────────────────────────────

def quad_bounds(quad: Quad) -> Tuple[int, int, int, int]:
    """Integer bounds (min_x, min_y, max_x, max_y) of a quad, floor/ceil rounded."""
    xs = [p.x() for p in quad]
    ys = [p.y() for p in quad]
    return (
        math.floor(min(xs)),
        math.floor(min(ys)),
        math.ceil(max(xs)),
        math.ceil(max(ys)),
    )


def _sample_bilinear(
    pixels: np.ndarray,
    src_x: np.ndarray,
    src_y: np.ndarray,
) -> np.ndarray:
    """Bilinearly sample straight RGBA pixels at in-bounds float coordinates."""
    src_h, src_w = pixels.shape[:2]

    x0 = np.floor(src_x).astype(np.intp)
    y0 = np.floor(src_y).astype(np.intp)
    x1 = np.minimum(x0 + 1, src_w - 1)
    y1 = np.minimum(y0 + 1, src_h - 1)
    fx = (src_x - x0)[:, None]
    fy = (src_y - y0)[:, None]

    top = pixels[y0, x0] * (1.0 - fx) + pixels[y0, x1] * fx
    bottom = pixels[y1, x0] * (1.0 - fx) + pixels[y1, x1] * fx
    return top * (1.0 - fy) + bottom * fy


def warp_image(source: QImage, quad: Quad) -> Optional[Tuple[QImage, QPoint]]:
    """
    Warp an image onto an arbitrary destination quad.

    Every destination pixel inside the quad's bounding box is mapped back
    into the source through the inverse homography and bilinearly sampled
    in straight (unpremultiplied) RGBA. Pixels mapping outside the source
    stay transparent.

    Args:
        source: The image to warp. Its full rect maps onto the quad.
        quad: Destination corners (tl, tr, br, bl).

    Returns:
        (warped image, top-left offset of the image in destination space),
        or None when the homography is singular or the quad has no area.
    """
    src_w = source.width()
    src_h = source.height()
    if src_w == 0 or src_h == 0:
        return None

    # Inverse mapping: destination -> source
    h = compute_homography(quad, image_corners(src_w, src_h))
    if h is None:
        return None

    min_x, min_y, max_x, max_y = quad_bounds(quad)
    bbox_w = max_x - min_x
    bbox_h = max_y - min_y
    if bbox_w <= 0 or bbox_h <= 0:
        return None

    pixels = qimage_to_rgba_array(source).astype(np.float64)
    out = np.zeros((bbox_h, bbox_w, 4), dtype=np.uint8)
    xs = np.arange(min_x, max_x, dtype=np.float64)

    for row_start in range(0, bbox_h, WARP_ROWS_PER_CHUNK):
        row_end = min(row_start + WARP_ROWS_PER_CHUNK, bbox_h)
        ys = np.arange(min_y + row_start, min_y + row_end, dtype=np.float64)
        dest_x, dest_y = np.meshgrid(xs, ys)

        w = h[2, 0] * dest_x + h[2, 1] * dest_y + h[2, 2]
        with np.errstate(divide="ignore", invalid="ignore"):
            src_x = (h[0, 0] * dest_x + h[0, 1] * dest_y + h[0, 2]) / w
            src_y = (h[1, 0] * dest_x + h[1, 1] * dest_y + h[1, 2]) / w

        valid = (
            np.isfinite(src_x)
            & np.isfinite(src_y)
            & (src_x >= -WARP_EDGE_EPSILON)
            & (src_x <= src_w - 1 + WARP_EDGE_EPSILON)
            & (src_y >= -WARP_EDGE_EPSILON)
            & (src_y <= src_h - 1 + WARP_EDGE_EPSILON)
        )
        if not valid.any():
            continue

        sample_x = np.clip(src_x[valid], 0.0, src_w - 1)
        sample_y = np.clip(src_y[valid], 0.0, src_h - 1)
        values = _sample_bilinear(pixels, sample_x, sample_y)

        chunk = out[row_start:row_end]
        chunk[valid] = np.clip(np.rint(values), 0, 255).astype(np.uint8)

    return rgba_array_to_qimage(out), QPoint(min_x, min_y)


def draw_warped_image(painter: QPainter, source: QImage, quad: Quad) -> bool:
    """
    Draw source warped onto quad.

    Falls back to drawing the source untransformed at the quad's top-left
    corner when the warp cannot be computed, so the content stays visible.

    Returns:
        True if the warp succeeded, False if the fallback was used.
    """
    result = warp_image(source, quad)
    if result is None:
        logger.debug("Homography is singular; drawing source at the top-left corner")
        painter.drawImage(quad[0], source)
        return False

    warped, offset = result
    painter.drawImage(offset, warped)
    return True
