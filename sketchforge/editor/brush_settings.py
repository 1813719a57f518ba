"""
Brush settings records.

One dataclass per brush kind. Tools clone the active settings when a stroke
starts, so a stroke never observes a settings change made mid-stroke.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from PySide6.QtGui import QColor, QPainter


class BrushKind(Enum):
    PENCIL = "pencil"
    ERASER = "eraser"
    SIMPLE_MARKER = "simple_marker"
    NATURAL_MARKER = "natural_marker"
    AIRBRUSH = "airbrush"
    FX = "fx"
    WATERCOLOR = "watercolor"


class TipShape(Enum):
    ROUND = "round"
    SQUARE = "square"
    LINE = "line"


class StrokeStyle(Enum):
    SOLID = "solid"
    DASHED = "dashed"
    DOTTED = "dotted"
    DASH_DOT = "dash-dot"


# Composite operator names mapped onto Qt composition modes
BLEND_MODES: Dict[str, QPainter.CompositionMode] = {
    "source-over": QPainter.CompositionMode.CompositionMode_SourceOver,
    "source-in": QPainter.CompositionMode.CompositionMode_SourceIn,
    "source-out": QPainter.CompositionMode.CompositionMode_SourceOut,
    "source-atop": QPainter.CompositionMode.CompositionMode_SourceAtop,
    "destination-over": QPainter.CompositionMode.CompositionMode_DestinationOver,
    "destination-in": QPainter.CompositionMode.CompositionMode_DestinationIn,
    "destination-out": QPainter.CompositionMode.CompositionMode_DestinationOut,
    "destination-atop": QPainter.CompositionMode.CompositionMode_DestinationAtop,
    "lighter": QPainter.CompositionMode.CompositionMode_Plus,
    "copy": QPainter.CompositionMode.CompositionMode_Source,
    "xor": QPainter.CompositionMode.CompositionMode_Xor,
    "multiply": QPainter.CompositionMode.CompositionMode_Multiply,
    "screen": QPainter.CompositionMode.CompositionMode_Screen,
    "overlay": QPainter.CompositionMode.CompositionMode_Overlay,
    "darken": QPainter.CompositionMode.CompositionMode_Darken,
    "lighten": QPainter.CompositionMode.CompositionMode_Lighten,
    "color-dodge": QPainter.CompositionMode.CompositionMode_ColorDodge,
    "color-burn": QPainter.CompositionMode.CompositionMode_ColorBurn,
    "hard-light": QPainter.CompositionMode.CompositionMode_HardLight,
    "soft-light": QPainter.CompositionMode.CompositionMode_SoftLight,
    "difference": QPainter.CompositionMode.CompositionMode_Difference,
    "exclusion": QPainter.CompositionMode.CompositionMode_Exclusion,
}


def composition_mode(blend_mode: str) -> QPainter.CompositionMode:
    """Look up the Qt composition mode for a blend mode name."""
    try:
        return BLEND_MODES[blend_mode]
    except KeyError:
        raise ValueError(f"Unknown blend mode: {blend_mode}") from None


@dataclass
class StrokeModifier:
    """Dash style applied on top of any brush; scale stretches the pattern."""
    style: StrokeStyle = StrokeStyle.SOLID
    scale: float = 1.0

    def dash_pattern(self, base_scale: float = 1.0) -> Optional[List[float]]:
        """
        Dash/gap lengths in pixels, or None for solid strokes.

        Args:
            base_scale: Extra multiplier, e.g. derived from the line width.
        """
        s = self.scale * base_scale
        if self.style == StrokeStyle.DASHED:
            return [10 * s, 5 * s]
        if self.style == StrokeStyle.DOTTED:
            return [2 * s, 4 * s]
        if self.style == StrokeStyle.DASH_DOT:
            return [10 * s, 4 * s, 2 * s, 4 * s]
        return None

    def clone(self) -> "StrokeModifier":
        return StrokeModifier(self.style, self.scale)


@dataclass
class PressureControl:
    """Which parameters pen pressure modulates."""
    size: bool = False
    opacity: bool = False
    flow: bool = False


@dataclass
class BrushSettingsBase:
    """Fields every brush kind shares."""
    size: float = 10.0
    color: QColor = field(default_factory=lambda: QColor(0, 0, 0))
    opacity: float = 1.0  # 0.0 to 1.0
    pressure_control: PressureControl = field(default_factory=PressureControl)

    def clone(self) -> "BrushSettingsBase":
        """Create a copy of these settings for one stroke."""
        cloned = copy.copy(self)
        cloned.color = QColor(self.color)
        cloned.pressure_control = copy.copy(self.pressure_control)
        return cloned


@dataclass
class PencilSettings(BrushSettingsBase):
    hardness: float = 100.0  # 0-100; below 100 single dabs get a soft edge
    pressure_control: PressureControl = field(default_factory=lambda: PressureControl(size=True))


@dataclass
class EraserSettings(BrushSettingsBase):
    size: float = 20.0
    hardness: float = 100.0  # 0-100
    tip_shape: TipShape = TipShape.ROUND


@dataclass
class SimpleMarkerSettings(BrushSettingsBase):
    size: float = 12.0
    tip_shape: TipShape = TipShape.SQUARE
    blend_mode: str = "source-over"
    pressure_control: PressureControl = field(default_factory=lambda: PressureControl(opacity=True))


@dataclass
class NaturalMarkerSettings(BrushSettingsBase):
    size: float = 16.0
    opacity: float = 0.8
    hardness: float = 60.0  # 0-100
    flow: float = 40.0  # 0-100, opacity of each overlapping dab
    spacing: float = 15.0  # % of size
    tip_shape: TipShape = TipShape.ROUND
    tip_angle: float = 0.0  # degrees
    blend_mode: str = "multiply"
    pressure_control: PressureControl = field(
        default_factory=lambda: PressureControl(size=True, opacity=True)
    )


@dataclass
class AirbrushSettings(BrushSettingsBase):
    size: float = 40.0
    flow: float = 0.1  # 0-1, alpha of each dab
    hardness: float = 0.0  # 0-100, solid core radius
    spacing: float = 15.0  # % of size
    pressure_control: PressureControl = field(default_factory=lambda: PressureControl(flow=True))


@dataclass
class FxBrushSettings(BrushSettingsBase):
    size: float = 20.0
    flow: float = 1.0  # 0-1
    hardness: float = 80.0  # 0-100
    spacing: float = 25.0  # % of size
    tip_shape: TipShape = TipShape.ROUND
    angle: float = 0.0  # degrees
    angle_follows_stroke: bool = False
    size_jitter: float = 0.0  # 0-1
    angle_jitter: float = 0.0  # 0-1, fraction of a half turn
    scatter: float = 0.0  # 0-1, fraction of size
    hue_jitter: float = 0.0  # 0-1
    saturation_jitter: float = 0.0  # 0-1
    brightness_jitter: float = 0.0  # 0-1
    blend_mode: str = "source-over"
    pressure_control: PressureControl = field(
        default_factory=lambda: PressureControl(size=True, opacity=True)
    )


@dataclass
class WatercolorSettings(BrushSettingsBase):
    size: float = 30.0
    flow: float = 50.0  # 0-100, density of dabs
    wetness: float = 50.0  # 0-100, opacity of each dab
    pressure_control: PressureControl = field(
        default_factory=lambda: PressureControl(size=True, flow=True)
    )


SETTINGS_TYPES = {
    BrushKind.PENCIL: PencilSettings,
    BrushKind.ERASER: EraserSettings,
    BrushKind.SIMPLE_MARKER: SimpleMarkerSettings,
    BrushKind.NATURAL_MARKER: NaturalMarkerSettings,
    BrushKind.AIRBRUSH: AirbrushSettings,
    BrushKind.FX: FxBrushSettings,
    BrushKind.WATERCOLOR: WatercolorSettings,
}


def default_settings(kind: BrushKind) -> BrushSettingsBase:
    """Fresh default settings for a brush kind."""
    return SETTINGS_TYPES[kind]()
