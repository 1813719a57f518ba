"""Shared fixtures: an offscreen Qt application and blank surfaces."""

import os

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
from PySide6.QtCore import QRect
from PySide6.QtGui import QColor, QGuiApplication, QPainter

from sketchforge.core.surface import RasterSurface


def _fill_rect(surface: RasterSurface, rect: QRect, color: QColor = QColor(255, 0, 0)) -> None:
    """Paint an opaque, non-antialiased block onto a surface."""
    with surface.open_painter(antialias=False) as painter:
        painter.setCompositionMode(QPainter.CompositionMode.CompositionMode_Source)
        painter.fillRect(rect, color)


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    app = QGuiApplication.instance() or QGuiApplication([])
    yield app


@pytest.fixture
def surface() -> RasterSurface:
    return RasterSurface("layer", 100, 100)


@pytest.fixture
def fill_rect():
    return _fill_rect
