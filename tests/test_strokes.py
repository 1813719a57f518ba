"""Tests for stroke geometry: arcs, curves and smoothing."""

import math

import pytest

from sketchforge.editor.strokes import (
    ArcSweepTracker,
    InputSample,
    Stroke,
    StrokeMode,
    StrokePoint,
    arc_points,
    curve_points,
    smooth_points,
    stroke_render_points,
)


def _sweep_through(degrees):
    tracker = ArcSweepTracker(StrokePoint(0, 0), StrokePoint(10, 0))
    for deg in degrees:
        rad = math.radians(deg)
        tracker.update(10 * math.cos(rad), 10 * math.sin(rad))
    return tracker.sweep


class TestArcSweep:

    def test_sweep_accumulates_past_full_turn(self):
        # Crosses the -pi/pi boundary at 180 and 540 degrees
        sweep = _sweep_through(range(30, 751, 30))
        assert sweep == pytest.approx(math.radians(750))
        assert abs(sweep) > 2 * math.pi

    def test_sweep_is_signed(self):
        sweep = _sweep_through(range(-30, -751, -30))
        assert sweep == pytest.approx(-math.radians(750))

    def test_reversing_direction_unwinds(self):
        sweep = _sweep_through([30, 60, 90, 60, 30])
        assert sweep == pytest.approx(math.radians(30))


class TestArcPoints:

    def test_zero_radius_renders_nothing(self):
        assert arc_points(StrokePoint(5, 5), StrokePoint(5, 5), math.pi) == []

    def test_quarter_arc(self):
        points = arc_points(StrokePoint(0, 0), StrokePoint(10, 0), math.pi / 2)

        # 10 * pi/2 is about 15.7px, so ceil(15.7 / 1.5) = 11 steps
        assert len(points) == 12
        assert points[0].x == pytest.approx(10)
        assert points[0].y == pytest.approx(0)
        assert points[-1].x == pytest.approx(0, abs=1e-9)
        assert points[-1].y == pytest.approx(10)
        for p in points:
            assert math.hypot(p.x, p.y) == pytest.approx(10)

    def test_pressure_interpolates_to_end(self):
        points = arc_points(StrokePoint(0, 0), StrokePoint(10, 0, 0.2), math.pi, end_pressure=1.0)
        assert points[0].pressure == pytest.approx(0.2)
        assert points[-1].pressure == pytest.approx(1.0)


class TestCurve:

    def test_curve_bows_towards_control_point(self):
        points = curve_points(StrokePoint(0, 0), StrokePoint(100, 0), StrokePoint(50, -50))

        assert (points[0].x, points[0].y) == (0, 0)
        assert points[-1].x == pytest.approx(100)
        assert points[-1].y == pytest.approx(0)
        middle = points[len(points) // 2]
        assert middle.x == pytest.approx(50)
        assert middle.y == pytest.approx(-25)
        assert all(p.y <= 1e-9 for p in points)

    def test_curve_has_at_least_fifty_steps(self):
        points = curve_points(StrokePoint(0, 0), StrokePoint(4, 0), StrokePoint(2, 1))
        assert len(points) == 51

    def test_render_points_use_third_click_as_control(self):
        stroke = Stroke(StrokeMode.CURVE, [StrokePoint(0, 0), StrokePoint(100, 0), StrokePoint(50, -50)])
        points = stroke_render_points(stroke)

        assert min(p.y for p in points) == pytest.approx(-25)
        assert points[-1].x == pytest.approx(100)


class TestRenderPoints:

    def test_incomplete_arc_renders_nothing(self):
        stroke = Stroke(StrokeMode.ARC, [StrokePoint(0, 0), StrokePoint(10, 0)])
        assert stroke_render_points(stroke) == []

    def test_arc_uses_tracked_sweep(self):
        stroke = Stroke(
            StrokeMode.ARC,
            [StrokePoint(0, 0), StrokePoint(10, 0), StrokePoint(10, 0)],
            sweep=2 * math.pi,
        )
        points = stroke_render_points(stroke)

        assert len(points) > 40
        assert points[-1].x == pytest.approx(10)
        assert points[-1].y == pytest.approx(0, abs=1e-9)

    def test_freehand_points_pass_through(self):
        raw = [StrokePoint(0, 0), StrokePoint(3, 4)]
        assert stroke_render_points(Stroke(StrokeMode.FREEHAND, raw)) == raw


class TestSmoothing:

    def test_zero_smoothing_is_identity(self):
        raw = [StrokePoint(0, 0), StrokePoint(10, 10), StrokePoint(20, 0)]
        assert smooth_points(raw, 0) == raw

    def test_subdivisions_follow_smoothing(self):
        raw = [StrokePoint(0, 0), StrokePoint(10, 10), StrokePoint(20, 0)]
        smoothed = smooth_points(raw, 30)

        # 3 subdivisions for the single interior point, plus both endpoints
        assert len(smoothed) == 5
        assert smoothed[0] == raw[0]
        assert smoothed[-1] == raw[-1]

    def test_low_smoothing_still_subdivides_once(self):
        raw = [StrokePoint(0, 0), StrokePoint(10, 10), StrokePoint(20, 0), StrokePoint(30, 10)]
        assert len(smooth_points(raw, 5)) == 4


class TestInputSample:

    def test_missing_pressure_is_full(self):
        assert InputSample(1, 2).effective_pressure == 1.0

    def test_pressure_is_clamped(self):
        assert InputSample(1, 2, pressure=1.7).effective_pressure == 1.0
        assert InputSample(1, 2, pressure=0.25).effective_pressure == 0.25
