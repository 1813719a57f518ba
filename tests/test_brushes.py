"""Tests for brush primitives and brush rendering."""

import numpy as np
import pytest
from PySide6.QtCore import QPointF, QRect
from PySide6.QtGui import QColor

from sketchforge.core.surface import RasterSurface
from sketchforge.editor.brush_settings import (
    AirbrushSettings,
    BrushKind,
    EraserSettings,
    FxBrushSettings,
    PencilSettings,
    SimpleMarkerSettings,
    StrokeModifier,
    StrokeStyle,
    TipShape,
    WatercolorSettings,
    composition_mode,
)
from sketchforge.editor.brushes import (
    AirbrushBrush,
    BrushContext,
    EraserBrush,
    FxBrush,
    NaturalMarkerBrush,
    PencilBrush,
    SimpleMarkerBrush,
    WatercolorBrush,
    budget_spacing,
    create_brush,
    dash_visible,
    interpolate_segment,
    position_random,
)
from sketchforge.editor.guides import MirrorGuide
from sketchforge.editor.strokes import StrokePoint


def _render(brush, points, context=None, surface=None) -> RasterSurface:
    surface = surface or RasterSurface("layer", 100, 100)
    with surface.open_painter() as painter:
        brush.render(painter, points, context or BrushContext(stroke_seed=42))
    return surface


def _line(*coords):
    return [StrokePoint(x, y) for x, y in coords]


def _alpha(surface: RasterSurface) -> np.ndarray:
    return surface.pixel_array()[:, :, 3].astype(np.float64)


class TestPrimitives:

    def test_interpolate_segment_spacing(self):
        dabs = list(interpolate_segment(StrokePoint(0, 0), StrokePoint(10, 0), 3))

        assert [d.x for d in dabs] == pytest.approx([0, 3, 6, 9])
        assert all(d.y == pytest.approx(0) for d in dabs)

    def test_interpolate_segment_continues_stroke_walk(self):
        dabs = list(interpolate_segment(StrokePoint(0, 0), StrokePoint(10, 0), 3, distance_offset=2))
        assert [d.x for d in dabs] == pytest.approx([1, 4, 7])

    def test_short_segments_do_not_repeat_joint_dabs(self):
        points = _line((0, 0), (1, 0), (2, 0), (3, 0), (4, 0))
        offset = 0.0
        dabs = []
        for p1, p2 in zip(points, points[1:]):
            dabs.extend(interpolate_segment(p1, p2, 3, offset))
            offset += p1.distance_to(p2)

        assert [d.x for d in dabs] == pytest.approx([0, 3])

    def test_interpolate_segment_pressure(self):
        dabs = list(interpolate_segment(StrokePoint(0, 0, 0.0), StrokePoint(10, 0, 1.0), 5))
        assert [d.pressure for d in dabs] == pytest.approx([0.0, 0.5])

    def test_zero_length_segment_yields_nothing(self):
        assert list(interpolate_segment(StrokePoint(4, 4), StrokePoint(4, 4), 1)) == []

    def test_dash_visibility(self):
        pattern = [10, 5]
        assert dash_visible(pattern, 0)
        assert not dash_visible(pattern, 12)
        assert dash_visible(pattern, 16)
        assert dash_visible(None, 12)

    def test_position_random_is_deterministic(self):
        a = position_random(7, 10.1, 20.2, 0, 1)
        b = position_random(7, 10.1, 20.2, 0, 1)
        assert a == b
        assert 0.0 <= a < 1.0

    def test_position_random_depends_on_inputs(self):
        base = position_random(7, 10, 20, 0, 1)
        others = {
            position_random(8, 10, 20, 0, 1),
            position_random(7, 11, 20, 0, 1),
            position_random(7, 10, 20, 1, 1),
            position_random(7, 10, 20, 0, 2),
        }
        assert base not in others

    def test_budget_spacing(self):
        assert budget_spacing(1, 10000, 4000) == pytest.approx(2.5)
        assert budget_spacing(5, 100, 4000) == 5

    def test_unknown_blend_mode_raises(self):
        with pytest.raises(ValueError):
            composition_mode("glow")

    def test_create_brush_for_every_kind(self):
        for kind in BrushKind:
            brush = create_brush(kind)
            assert brush.kind == kind
            assert brush.settings is not None

    def test_for_stroke_freezes_settings(self):
        brush = PencilBrush(PencilSettings(size=4))
        stroke_brush = brush.for_stroke()
        brush.settings.size = 40
        brush.settings.color.setRed(255)

        assert stroke_brush.settings.size == 4
        assert stroke_brush.settings.color.red() == 0


class TestEraser:

    def test_hard_eraser_clears_continuous_path(self, surface, fill_rect):
        fill_rect(surface, QRect(0, 0, 100, 100))
        _render(EraserBrush(EraserSettings(size=20, hardness=100)), _line((10, 50), (90, 50)), surface=surface)

        assert surface.alpha_at(50, 50) == 0
        assert surface.alpha_at(50, 45) == 0
        assert surface.alpha_at(50, 20) == 255

    def test_soft_eraser_fades_content(self, surface, fill_rect):
        fill_rect(surface, QRect(0, 0, 100, 100))
        _render(EraserBrush(EraserSettings(size=20, hardness=0)), _line((10, 50), (90, 50)), surface=surface)

        assert surface.alpha_at(50, 50) < 50
        assert surface.alpha_at(50, 20) == 255

    def test_eraser_never_adds_pixels(self, surface):
        _render(EraserBrush(), _line((10, 50), (90, 50)), surface=surface)
        assert surface.is_blank()


class TestPathBrushes:

    def test_single_point_draws_one_dab(self):
        surface = _render(PencilBrush(PencilSettings(size=10)), [StrokePoint(50, 50)])

        assert surface.alpha_at(50, 50) == 255
        assert surface.alpha_at(50, 60) == 0

    def test_pencil_opacity_does_not_stack_at_joints(self):
        brush = PencilBrush(PencilSettings(size=10, opacity=0.5))
        surface = _render(brush, _line((10, 50), (50, 50), (90, 50)))

        # (30, 50) is where the lead-in and the first curve piece overlap
        assert abs(surface.alpha_at(30, 50) - surface.alpha_at(50, 50)) <= 1
        assert surface.alpha_at(50, 50) == pytest.approx(128, abs=2)

    def test_dashed_marker_leaves_gaps(self):
        brush = SimpleMarkerBrush(SimpleMarkerSettings(size=4, tip_shape=TipShape.LINE))
        context = BrushContext(stroke_modifier=StrokeModifier(StrokeStyle.DASHED))
        surface = _render(brush, _line((10, 50), (90, 50)), context)

        # Dashes are 10px on, 5px off from x=10
        assert surface.alpha_at(15, 50) > 0
        assert surface.alpha_at(22, 50) == 0

    def test_path_brushes_do_not_render_incrementally(self, surface):
        brush = PencilBrush()
        assert not brush.incremental
        with surface.open_painter() as painter:
            with pytest.raises(NotImplementedError):
                brush.draw_segment(painter, StrokePoint(0, 0), StrokePoint(5, 5), BrushContext())


class TestMirroring:

    @pytest.mark.parametrize("brush", [
        PencilBrush(PencilSettings(size=6)),
        WatercolorBrush(WatercolorSettings(size=10)),
    ])
    def test_mirrored_stroke_is_symmetric(self, brush):
        mirror = MirrorGuide(QPointF(50, 0), QPointF(50, 100))
        context = BrushContext(stroke_seed=3, mirrors=(mirror,))
        alpha = _alpha(_render(brush, _line((10, 20), (30, 40), (35, 70)), context))

        left = alpha[:, :50]
        right = alpha[:, 50:]
        xs = np.arange(100) + 0.5
        left_centroid = (left * xs[:50]).sum() / left.sum()
        right_centroid = (right * xs[50:]).sum() / right.sum()

        assert left.sum() > 0
        assert right.sum() == pytest.approx(left.sum(), rel=0.05)
        assert left_centroid + right_centroid == pytest.approx(100, abs=0.5)


class TestDabBrushes:

    def test_incremental_render_matches_full_render(self):
        points = _line((10, 10), (40, 25), (60, 70), (90, 80))
        context = BrushContext(stroke_seed=1234)

        full = _render(WatercolorBrush(), points, context)

        incremental = RasterSurface("layer", 100, 100)
        brush = WatercolorBrush()
        offset = 0.0
        with incremental.open_painter() as painter:
            for p1, p2 in zip(points, points[1:]):
                brush.render_segment(painter, p1, p2, context, offset)
                offset += p1.distance_to(p2)

        assert np.array_equal(full.pixel_array(), incremental.pixel_array())

    def test_seed_changes_watercolor_texture(self):
        points = _line((10, 10), (90, 90))
        a = _render(WatercolorBrush(), points, BrushContext(stroke_seed=1))
        b = _render(WatercolorBrush(), points, BrushContext(stroke_seed=2))

        assert not np.array_equal(a.pixel_array(), b.pixel_array())

    @pytest.mark.parametrize("brush", [
        NaturalMarkerBrush(),
        AirbrushBrush(),
        FxBrush(FxBrushSettings(
            color=QColor(200, 50, 50),
            size_jitter=0.5,
            scatter=0.3,
            angle_jitter=0.5,
            hue_jitter=0.2,
            saturation_jitter=0.2,
            brightness_jitter=0.2,
        )),
    ])
    def test_dab_brushes_render_deterministically(self, brush):
        points = _line((10, 50), (50, 30), (90, 50))
        context = BrushContext(stroke_seed=99)

        a = _render(brush, points, context)
        b = _render(brush, points, context)

        assert not a.is_blank()
        assert np.array_equal(a.pixel_array(), b.pixel_array())

    def test_fx_handles_achromatic_colour(self):
        brush = FxBrush(FxBrushSettings(color=QColor(0, 0, 0), hue_jitter=0.5))
        assert not _render(brush, _line((10, 50), (90, 50))).is_blank()

    def test_dab_budget_caps_a_single_segment(self):
        stamped = []

        class CountingAirbrush(AirbrushBrush):
            def stamp(self, painter, dab, context):
                stamped.append(dab)

        brush = CountingAirbrush(AirbrushSettings(size=40))
        surface = RasterSurface("wide", 1100, 10)
        with surface.open_painter() as painter:
            brush.render(painter, _line((0, 5), (1000, 5)), BrushContext(max_dabs=10))

        assert len(stamped) == 10

    def test_dab_budget_caps_the_whole_stroke(self, surface):
        stamped = []

        class CountingAirbrush(AirbrushBrush):
            def stamp(self, painter, dab, context):
                stamped.append(dab)

        brush = CountingAirbrush(AirbrushSettings(size=4))
        zigzag = _line(*[((i % 50) * 2, 10 + (i % 2) * 8) for i in range(400)])
        with surface.open_painter() as painter:
            brush.render(painter, zigzag, BrushContext(max_dabs=100))

        assert 90 < len(stamped) <= 100

    def test_budget_ends_incremental_rendering(self):
        brush = AirbrushBrush(AirbrushSettings(size=40))
        context = BrushContext(max_dabs=10)

        # Base spacing is 6px
        assert brush.can_extend(60, context)
        assert not brush.can_extend(61, context)
        assert not PencilBrush().can_extend(1, context)

    def test_soft_eraser_respects_budget(self, surface):
        stamped = []

        class CountingEraser(EraserBrush):
            def _stamp(self, painter, x, y):
                stamped.append((x, y))

        brush = CountingEraser(EraserSettings(size=20, hardness=50))
        zigzag = _line(*[((i % 50) * 2, 10 + (i % 2) * 8) for i in range(200)])
        with surface.open_painter() as painter:
            brush.render(painter, zigzag, BrushContext(max_dabs=50))

        assert len(stamped) <= 50
