"""
Configuration service for the SketchForge drawing engine.

This module handles loading, saving, and managing engine settings such as
guide snapping thresholds, stroke smoothing and the dab budget.
Configuration is stored as JSON in ~/.config/sketchforge/config.json following
the XDG Base Directory Specification.
"""

import copy
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from sketchforge.services.logging_service import get_logger, resolve_level

# Default configuration directory following XDG Base Directory Specification
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "sketchforge"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.json"

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    "guides": {
        # Screen-space distances, divided by the view zoom at use time
        "perspective_snap_px": 15.0,
        "orthogonal_lock_px": 10.0,
    },
    "strokes": {
        # 0 disables after-effect smoothing, 100 is the maximum
        "smoothing": 0,
    },
    "brushes": {
        "max_dabs_per_stroke": 4000,
    },
    "logging": {
        "level": "INFO",
        # null keeps the engine loggers at the root level
        "engine_level": None,
        "to_file": True,
    },
    "transform": {
        "handle_size_px": 15.0,
        "rotate_handle_offset_px": 25.0,
        "angle_snap_degrees": 15.0,
        "content_alpha_tolerance": 1,
    },
}


class ConfigService:
    """
    Service for managing engine configuration.

    Handles loading, saving, and accessing configuration values.
    Provides sensible defaults when config file is missing or corrupted.
    """

    def __init__(self, config_path: Optional[Path] = None) -> None:
        """
        Initialize the ConfigService.

        Args:
            config_path: Optional path to config file. Defaults to
                        ~/.config/sketchforge/config.json
        """
        self._logger = get_logger(__name__)
        self._config_path = config_path or DEFAULT_CONFIG_FILE
        self._config: Dict[str, Any] = {}

        self._load()

    @property
    def config_path(self) -> Path:
        return self._config_path

    def _load(self) -> None:
        """Load configuration from file, using defaults if needed."""
        self._config = self._deep_copy_defaults()

        if not self._config_path.exists():
            self._logger.info(
                f"Config file not found at {self._config_path}. Using defaults."
            )
            self._save_to_file()
            return

        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                loaded_config = json.load(f)

            # Loaded values override defaults
            if isinstance(loaded_config, dict):
                self._deep_merge(self._config, loaded_config)
                self._logger.info(f"Configuration loaded from {self._config_path}")
                # Save back to ensure any new default keys are persisted
                self._save_to_file()
            else:
                raise ValueError("Config file does not contain a valid JSON object")

        except (json.JSONDecodeError, ValueError) as e:
            self._logger.warning(
                f"Config file corrupted or invalid: {e}. Recreating with defaults."
            )
            self._config = self._deep_copy_defaults()
            self._save_to_file()

        except (OSError, PermissionError) as e:
            self._logger.warning(
                f"Could not read config file: {e}. Using defaults."
            )

    def _deep_copy_defaults(self) -> Dict[str, Any]:
        """Create a deep copy of default config."""
        return copy.deepcopy(DEFAULT_CONFIG)

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override dict into base dict."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def _save_to_file(self) -> None:
        """Save current configuration to file."""
        try:
            self._config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self._config_path, "w", encoding="utf-8") as f:
                json.dump(self._config, f, indent=2)

            self._logger.debug(f"Configuration saved to {self._config_path}")

        except (OSError, PermissionError) as e:
            self._logger.error(f"Could not save config file: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: The configuration key to retrieve.
            default: Default value if key doesn't exist.

        Returns:
            The configuration value, or default if not found.
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value (in memory only).

        Args:
            key: The configuration key to set.
            value: The value to set.

        Note:
            Call save() to persist changes to disk.
        """
        self._config[key] = value
        self._logger.debug(f"Config key '{key}' set to '{value}'")

    def save(self) -> None:
        """Persist current configuration to disk."""
        self._save_to_file()

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.get(name)
        if isinstance(section, dict):
            return section
        return DEFAULT_CONFIG[name]

    # ─── Guide Settings ───────────────────────────────────────────────────

    @property
    def perspective_snap_px(self) -> float:
        """Screen distance within which a perspective line captures a stroke."""
        return float(self._section("guides").get("perspective_snap_px", 15.0))

    @property
    def orthogonal_lock_px(self) -> float:
        """Screen distance a stroke must travel before the orthogonal axis locks."""
        return float(self._section("guides").get("orthogonal_lock_px", 10.0))

    # ─── Stroke Settings ──────────────────────────────────────────────────

    @property
    def smoothing(self) -> int:
        """Get the after-effect smoothing factor (0-100)."""
        value = int(self._section("strokes").get("smoothing", 0))
        return max(0, min(100, value))

    # ─── Brush Settings ───────────────────────────────────────────────────

    @property
    def max_dabs_per_stroke(self) -> int:
        return max(1, int(self._section("brushes").get("max_dabs_per_stroke", 4000)))

    # ─── Transform Settings ───────────────────────────────────────────────

    @property
    def handle_size_px(self) -> float:
        return float(self._section("transform").get("handle_size_px", 15.0))

    @property
    def rotate_handle_offset_px(self) -> float:
        return float(self._section("transform").get("rotate_handle_offset_px", 25.0))

    @property
    def angle_snap_degrees(self) -> float:
        return float(self._section("transform").get("angle_snap_degrees", 15.0))

    @property
    def content_alpha_tolerance(self) -> int:
        return int(self._section("transform").get("content_alpha_tolerance", 1))

    # ─── Logging Settings ─────────────────────────────────────────────────

    def _level(self, key: str, default: Optional[int]) -> Optional[int]:
        value = self._section("logging").get(key)
        if value is None:
            return default
        try:
            return resolve_level(value)
        except ValueError:
            self._logger.warning(f"Unknown log level {value!r} for logging.{key}. Using the default.")
            return default

    @property
    def log_level(self) -> int:
        return self._level("level", logging.INFO)

    @property
    def engine_log_level(self) -> Optional[int]:
        """Level for the engine loggers alone; None inherits log_level."""
        return self._level("engine_level", None)

    @property
    def log_to_file(self) -> bool:
        return bool(self._section("logging").get("to_file", True))


@dataclass(frozen=True)
class EngineSettings:
    """
    Immutable engine tuning values.

    The engine reads these instead of the live ConfigService so a stroke in
    progress never observes a configuration change.
    """
    perspective_snap_px: float = 15.0
    orthogonal_lock_px: float = 10.0
    smoothing: int = 0
    max_dabs_per_stroke: int = 4000
    handle_size_px: float = 15.0
    rotate_handle_offset_px: float = 25.0
    angle_snap_degrees: float = 15.0
    content_alpha_tolerance: int = 1

    @classmethod
    def from_config(cls, config: ConfigService) -> "EngineSettings":
        """Build settings from the current configuration."""
        return cls(
            perspective_snap_px=config.perspective_snap_px,
            orthogonal_lock_px=config.orthogonal_lock_px,
            smoothing=config.smoothing,
            max_dabs_per_stroke=config.max_dabs_per_stroke,
            handle_size_px=config.handle_size_px,
            rotate_handle_offset_px=config.rotate_handle_offset_px,
            angle_snap_degrees=config.angle_snap_degrees,
            content_alpha_tolerance=config.content_alpha_tolerance,
        )
