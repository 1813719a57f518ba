"""Tests for the geometry kernel."""

import numpy as np
import pytest
from PySide6.QtCore import QPoint, QPointF
from PySide6.QtGui import QColor, QImage

from sketchforge.core.geometry import (
    apply_homography,
    compute_homography,
    distance_to_segment,
    draw_warped_image,
    homography_to_qtransform,
    image_corners,
    intersect,
    point_in_polygon,
    project_on_line,
    quad_bounds,
    quad_transform,
    solve_linear_system,
    warp_image,
)
from sketchforge.core.surface import qimage_to_rgba_array, rgba_array_to_qimage, RasterSurface


def _assert_point(actual: QPointF, x: float, y: float, tol: float = 1e-6) -> None:
    assert actual.x() == pytest.approx(x, abs=tol)
    assert actual.y() == pytest.approx(y, abs=tol)


def _test_image(width: int, height: int) -> np.ndarray:
    rng = np.random.default_rng(7)
    pixels = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    pixels[:, :, 3] = rng.integers(1, 256, size=(height, width), dtype=np.uint8)
    return pixels


class TestLines:

    def test_intersect_crossing_lines(self):
        p = intersect((QPointF(0, 0), QPointF(10, 10)), (QPointF(0, 10), QPointF(10, 0)))
        _assert_point(p, 5, 5)

    def test_intersect_is_order_independent(self):
        l1 = (QPointF(3, 7), QPointF(42, -11))
        l2 = (QPointF(-5, 2), QPointF(17, 31))
        a = intersect(l1, l2)
        b = intersect(l2, l1)
        _assert_point(a, b.x(), b.y(), 1e-9)

    def test_parallel_lines_have_no_intersection(self):
        assert intersect((QPointF(0, 0), QPointF(10, 0)), (QPointF(0, 5), QPointF(10, 5))) is None

    def test_project_on_line(self):
        _assert_point(project_on_line(QPointF(5, 5), QPointF(0, 0), QPointF(10, 0)), 5, 0)

    def test_project_on_degenerate_line_returns_start(self):
        _assert_point(project_on_line(QPointF(5, 5), QPointF(2, 3), QPointF(2, 3)), 2, 3)

    def test_distance_to_segment_clamps_to_endpoints(self):
        assert distance_to_segment(QPointF(15, 0), QPointF(0, 0), QPointF(10, 0)) == pytest.approx(5)
        assert distance_to_segment(QPointF(5, 3), QPointF(0, 0), QPointF(10, 0)) == pytest.approx(3)

    def test_point_in_polygon(self):
        square = [QPointF(0, 0), QPointF(10, 0), QPointF(10, 10), QPointF(0, 10)]
        assert point_in_polygon(QPointF(5, 5), square)
        assert not point_in_polygon(QPointF(15, 5), square)
        assert not point_in_polygon(QPointF(5, 5), square[:2])


class TestLinearAlgebra:

    def test_solve_linear_system(self):
        x = solve_linear_system([[2, 1], [1, 3]], [3, 5])
        assert x == pytest.approx([0.8, 1.4])

    def test_solve_needs_pivoting(self):
        x = solve_linear_system([[0, 1], [1, 0]], [2, 3])
        assert x == pytest.approx([3, 2])

    def test_singular_system_returns_none(self):
        assert solve_linear_system([[1, 2], [2, 4]], [1, 2]) is None

    def test_homography_round_trip(self):
        src = [QPointF(0, 0), QPointF(100, 0), QPointF(100, 100), QPointF(0, 100)]
        dst = [QPointF(10, 20), QPointF(120, 5), QPointF(130, 140), QPointF(-5, 110)]
        h = compute_homography(src, dst)

        assert h is not None
        assert h[2, 2] == 1.0
        for s, d in zip(src, dst):
            _assert_point(apply_homography(h, s), d.x(), d.y())

    def test_homography_round_trip_arbitrary_quads(self):
        src = [QPointF(3, 4), QPointF(57, -2), QPointF(61, 49), QPointF(-8, 38)]
        dst = [QPointF(200, 10), QPointF(260, 40), QPointF(230, 95), QPointF(180, 70)]
        h = compute_homography(src, dst)

        for s, d in zip(src, dst):
            _assert_point(apply_homography(h, s), d.x(), d.y())

    def test_collinear_points_have_no_homography(self):
        src = [QPointF(0, 0), QPointF(1, 0), QPointF(2, 0), QPointF(3, 0)]
        dst = [QPointF(0, 0), QPointF(1, 0), QPointF(1, 1), QPointF(0, 1)]
        assert compute_homography(src, dst) is None

    def test_homography_needs_four_points(self):
        with pytest.raises(ValueError):
            compute_homography([QPointF(0, 0)] * 3, [QPointF(0, 0)] * 3)

    def test_qtransform_matches_homography(self):
        src = list(image_corners(50, 40))
        dst = [QPointF(5, 5), QPointF(70, 0), QPointF(60, 55), QPointF(0, 45)]
        h = compute_homography(src, dst)
        transform = homography_to_qtransform(h)

        for p in (QPointF(0, 0), QPointF(25, 20), QPointF(50, 40), QPointF(10, 30)):
            expected = apply_homography(h, p)
            _assert_point(transform.map(p), expected.x(), expected.y())

    def test_qtransform_of_none_is_identity(self):
        assert homography_to_qtransform(None).isIdentity()

    def test_quad_transform_maps_image_onto_quad(self):
        quad = (QPointF(10, 5), QPointF(60, 5), QPointF(60, 45), QPointF(10, 45))
        transform = quad_transform(50, 40, quad)

        _assert_point(transform.map(QPointF(0, 0)), 10, 5)
        _assert_point(transform.map(QPointF(50, 40)), 60, 45)

    def test_quad_transform_of_empty_image_is_none(self):
        quad = (QPointF(10, 5), QPointF(60, 5), QPointF(60, 45), QPointF(10, 45))
        assert quad_transform(0, 0, quad) is None


class TestWarp:

    def test_quad_bounds_floor_and_ceil(self):
        quad = (QPointF(0.5, 1.2), QPointF(9.1, 0.9), QPointF(9.9, 7.01), QPointF(-0.2, 7.0))
        assert quad_bounds(quad) == (-1, 0, 10, 8)

    def test_identity_warp_is_exact(self):
        pixels = _test_image(8, 6)
        source = rgba_array_to_qimage(pixels)

        warped, offset = warp_image(source, image_corners(8, 6))

        assert offset == QPoint(0, 0)
        assert np.array_equal(qimage_to_rgba_array(warped), pixels)

    def test_integer_translation_is_exact(self):
        pixels = _test_image(5, 4)
        source = rgba_array_to_qimage(pixels)
        quad = tuple(QPointF(p.x() + 10, p.y() + 5) for p in image_corners(5, 4))

        warped, offset = warp_image(source, quad)

        assert offset == QPoint(10, 5)
        assert np.array_equal(qimage_to_rgba_array(warped), pixels)

    def test_unmapped_pixels_stay_transparent(self):
        source = rgba_array_to_qimage(np.full((10, 10, 4), 255, dtype=np.uint8))
        quad = (QPointF(10, 0), QPointF(20, 10), QPointF(10, 20), QPointF(0, 10))

        warped, offset = warp_image(source, quad)
        alpha = qimage_to_rgba_array(warped)[:, :, 3]

        assert offset == QPoint(0, 0)
        assert alpha[0, 0] == 0
        assert alpha[10, 10] == 255

    def test_degenerate_quad_cannot_warp(self):
        source = QImage(4, 4, QImage.Format.Format_ARGB32_Premultiplied)
        quad = (QPointF(5, 5),) * 4
        assert warp_image(source, quad) is None

    def test_draw_warped_image_falls_back_to_top_left(self):
        target = RasterSurface("target", 20, 20)
        source = QImage(2, 2, QImage.Format.Format_ARGB32_Premultiplied)
        source.fill(QColor(255, 0, 0))

        with target.open_painter() as painter:
            warped = draw_warped_image(painter, source, (QPointF(5, 5),) * 4)

        assert warped is False
        assert target.alpha_at(5, 5) == 255
        assert target.alpha_at(8, 8) == 0
