"""
Drawing canvas: the engine facade.

The DrawingCanvas owns the raster surfaces, the transient preview surface,
the current guide snapshot and the active tool. The host application feeds it
input samples (in surface coordinates) and listens for commits:

- surface_committed(surface_id, snapshot): emitted exactly once per committed
  stroke, transform or crop, carrying the surface pixels from before the
  change so the host can keep its own undo history
- preview_changed(): the preview surface needs repainting

While a tool's preview_replaces_surface is True the preview holds the whole
target surface as it will look after commit (erasers, transforms) and should
be shown instead of the surface, not on top of it.
"""

from dataclasses import replace
from typing import Callable, Dict, Optional

from PySide6.QtCore import QObject, QRect, Signal
from PySide6.QtGui import QImage

from sketchforge.core.surface import RasterSurface
from sketchforge.editor.guides import GuideSnapshot
from sketchforge.editor.strokes import InputSample
from sketchforge.editor.tools import DrawTool, ToolBase, TransformTool
from sketchforge.services.config_service import EngineSettings
from sketchforge.services.logging_service import get_logger

PREVIEW_SURFACE_ID = "__preview__"

CommitCallback = Callable[[str, QImage], None]


class DrawingCanvas(QObject):
    """
    Engine entry point.

    Signals:
        surface_committed: Emitted with (surface id, pre-mutation snapshot).
        preview_changed: Emitted when the preview surface changed.
    """

    surface_committed = Signal(str, QImage)
    preview_changed = Signal()

    # Zoom limits
    MIN_ZOOM = 0.01
    MAX_ZOOM = 64.0

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        on_commit: Optional[CommitCallback] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._logger = get_logger(__name__)
        self._settings = settings or EngineSettings()
        self._on_commit = on_commit

        self._surfaces: Dict[str, RasterSurface] = {}
        self._active_id: Optional[str] = None
        self._preview: Optional[RasterSurface] = None

        self._zoom: float = 1.0
        self._guides = GuideSnapshot()
        self._tool: ToolBase = DrawTool()

    # ─── Surfaces ─────────────────────────────────────────────────────────

    def add_surface(self, surface_id: str, width: int, height: int) -> RasterSurface:
        """
        Create a transparent surface.

        The first surface added becomes the active one.
        """
        if surface_id in self._surfaces or surface_id == PREVIEW_SURFACE_ID:
            raise ValueError(f"Surface '{surface_id}' already exists")

        surface = RasterSurface(surface_id, width, height)
        self._surfaces[surface_id] = surface
        self._logger.info(f"Surface '{surface_id}' added: {width}x{height}")

        if self._active_id is None:
            self.set_active_surface(surface_id)
        return surface

    def surface(self, surface_id: str) -> RasterSurface:
        try:
            return self._surfaces[surface_id]
        except KeyError:
            raise ValueError(f"Unknown surface: {surface_id}") from None

    def set_active_surface(self, surface_id: str) -> None:
        """Direct input to another surface. Any session in progress is cancelled."""
        surface = self.surface(surface_id)
        if self._active_id is not None and self._active_id != surface_id:
            self._tool.on_deactivate(self)

        self._active_id = surface_id
        self._ensure_preview(surface)
        self._logger.debug(f"Active surface: {surface_id}")

    @property
    def active_surface(self) -> RasterSurface:
        if self._active_id is None:
            raise RuntimeError("No active surface: call add_surface() or set_active_surface() first")
        return self._surfaces[self._active_id]

    @property
    def has_active_surface(self) -> bool:
        return self._active_id is not None

    @property
    def preview(self) -> RasterSurface:
        """Transient overlay matching the active surface size."""
        if self._preview is None:
            raise RuntimeError("No preview surface without an active surface")
        return self._preview

    def _ensure_preview(self, surface: RasterSurface) -> None:
        if (
            self._preview is None
            or self._preview.width != surface.width
            or self._preview.height != surface.height
        ):
            self._preview = RasterSurface(PREVIEW_SURFACE_ID, surface.width, surface.height)
        else:
            self._preview.clear()

    def clear_preview(self) -> None:
        if self._preview is not None:
            self._preview.clear()
        self.preview_changed.emit()

    def notify_preview_changed(self) -> None:
        self.preview_changed.emit()

    @property
    def preview_replaces_surface(self) -> bool:
        """True while the preview shows the whole target surface rather than an overlay."""
        tool = self._tool
        if isinstance(tool, TransformTool):
            return tool.is_active
        if isinstance(tool, DrawTool) and tool.is_active:
            return tool.brush.previews_on_surface_copy
        return False

    # ─── View & Guides ────────────────────────────────────────────────────

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @settings.setter
    def settings(self, value: EngineSettings) -> None:
        self._settings = value

    @property
    def zoom(self) -> float:
        return self._zoom

    def set_zoom(self, zoom: float) -> None:
        """Set the view zoom used to scale screen-space thresholds."""
        self._zoom = max(self.MIN_ZOOM, min(self.MAX_ZOOM, zoom))
        self._guides = replace(self._guides, zoom=self._zoom)

    @property
    def guides(self) -> GuideSnapshot:
        return self._guides

    def set_guides(self, guides: GuideSnapshot) -> None:
        """Use a new guide snapshot from the next input session on."""
        self._guides = replace(guides, zoom=self._zoom)

    # ─── Tools ────────────────────────────────────────────────────────────

    @property
    def tool(self) -> ToolBase:
        return self._tool

    def set_tool(self, tool: ToolBase) -> None:
        """Switch tools. The previous tool's session is discarded."""
        if tool is self._tool:
            return
        self._tool.on_deactivate(self)
        self._tool = tool
        self._logger.debug(f"Active tool: {tool.tool_type.name}")

    # ─── Input ────────────────────────────────────────────────────────────

    def _require_active_surface(self) -> None:
        if self._active_id is None:
            raise RuntimeError("Input received without an active surface")

    def press(self, sample: InputSample) -> None:
        self._require_active_surface()
        self._tool.on_press(sample, self)

    def move(self, sample: InputSample) -> None:
        self._require_active_surface()
        self._tool.on_move(sample, self)

    def release(self, sample: InputSample) -> None:
        self._require_active_surface()
        self._tool.on_release(sample, self)

    def double_click(self, sample: InputSample) -> None:
        self._require_active_surface()
        self._tool.on_double_click(sample, self)

    def key_press(self, key: int) -> bool:
        """
        Forward a key (Qt.Key value) to the active tool.

        Returns True if the tool handled it.
        """
        self._require_active_surface()
        return self._tool.on_key_press(key, self)

    # ─── Commit ───────────────────────────────────────────────────────────

    def commit(
        self,
        mutate: Callable[[RasterSurface], Optional[bool]],
        surface_id: Optional[str] = None,
    ) -> Optional[QImage]:
        """
        Apply a change to a surface and report it.

        Args:
            mutate: Callable that changes the surface. Returning False means
                nothing changed and no commit is reported.
            surface_id: Target surface; defaults to the active one.

        Returns:
            The pre-mutation snapshot, or None if nothing changed.
        """
        surface = self.surface(surface_id) if surface_id is not None else self.active_surface
        snapshot = surface.snapshot()
        try:
            changed = mutate(surface)
        finally:
            self.clear_preview()

        if changed is False:
            return None

        self.surface_committed.emit(surface.id, snapshot)
        if self._on_commit is not None:
            self._on_commit(surface.id, snapshot)
        return snapshot

    def crop_active_surface(self, rect: QRect) -> bool:
        """
        Crop the active surface to a rectangle (clamped to the surface).

        Returns True if the surface was cropped.
        """
        surface = self.active_surface
        clamped = rect.intersected(surface.rect)
        if clamped.width() < 1 or clamped.height() < 1:
            self._logger.debug("Crop skipped: rectangle outside the surface")
            return False

        self.commit(lambda s: s.crop(clamped))
        self._ensure_preview(surface)
        self._logger.info(f"Surface '{surface.id}' cropped to {clamped.width()}x{clamped.height()}")
        return True
