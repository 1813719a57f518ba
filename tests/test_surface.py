"""Tests for raster surfaces and pixel helpers."""

import numpy as np
import pytest
from PySide6.QtCore import QRect
from PySide6.QtGui import QColor, QImage

from sketchforge.core.surface import (
    RasterSurface,
    content_bounding_box,
    qimage_to_rgba_array,
    rgba_array_to_qimage,
)


def test_array_conversion_round_trip():
    pixels = np.zeros((3, 5, 4), dtype=np.uint8)
    pixels[1, 2] = (10, 20, 30, 255)
    pixels[2, 4] = (200, 100, 50, 128)

    image = rgba_array_to_qimage(pixels)

    assert image.width() == 5
    assert image.height() == 3
    assert np.array_equal(qimage_to_rgba_array(image), pixels)


def test_array_conversion_rejects_bad_shape():
    with pytest.raises(ValueError):
        rgba_array_to_qimage(np.zeros((3, 5), dtype=np.uint8))


def test_content_bounding_box(surface, fill_rect):
    fill_rect(surface, QRect(4, 5, 3, 2))
    assert content_bounding_box(surface.image) == QRect(4, 5, 3, 2)


def test_content_bounding_box_of_blank_image_is_none(surface):
    assert content_bounding_box(surface.image) is None
    assert surface.is_blank()


def test_surface_rejects_empty_size():
    with pytest.raises(ValueError):
        RasterSurface("bad", 0, 10)


def test_new_surface_is_transparent(surface):
    assert surface.width == 100
    assert surface.height == 100
    assert surface.alpha_at(50, 50) == 0


def test_snapshot_is_detached(surface, fill_rect):
    snapshot = surface.snapshot()
    fill_rect(surface, QRect(0, 0, 10, 10))

    assert surface.alpha_at(5, 5) == 255
    assert content_bounding_box(snapshot) is None


def test_restore_replaces_pixels(surface, fill_rect):
    snapshot = surface.snapshot()
    fill_rect(surface, QRect(0, 0, 10, 10))

    surface.restore(snapshot)

    assert surface.is_blank()


def test_restore_rejects_size_mismatch(surface):
    with pytest.raises(ValueError):
        surface.restore(QImage(10, 10, QImage.Format.Format_ARGB32_Premultiplied))


def test_erase_region_clears_alpha(surface, fill_rect):
    fill_rect(surface, QRect(0, 0, 50, 50))
    surface.erase_region(QRect(10, 10, 20, 20))

    assert surface.alpha_at(15, 15) == 0
    assert surface.alpha_at(5, 5) == 255
    assert surface.alpha_at(35, 35) == 255


def test_copy_region(surface, fill_rect):
    fill_rect(surface, QRect(10, 10, 5, 5), QColor(0, 0, 255))
    region = surface.copy_region(QRect(10, 10, 5, 5))

    assert region.width() == 5
    assert region.pixelColor(2, 2) == QColor(0, 0, 255)


def test_crop_resizes_surface(surface, fill_rect):
    fill_rect(surface, QRect(20, 20, 5, 5))
    surface.crop(QRect(20, 20, 30, 10))

    assert (surface.width, surface.height) == (30, 10)
    assert surface.alpha_at(0, 0) == 255
    assert surface.alpha_at(10, 0) == 0


def test_crop_outside_surface_raises(surface):
    with pytest.raises(ValueError):
        surface.crop(QRect(200, 200, 10, 10))
