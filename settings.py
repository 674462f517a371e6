"""
settings.py — Editor settings persisted through QSettings
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import Optional

from PyQt6.QtCore import QSettings

from coords import PAGE_GAP, RENDER_MARGIN

logger = logging.getLogger(__name__)

ORGANIZATION = "PDFPageEditor"
APPLICATION = "Settings"


@dataclass
class EditorSettings:
    reference_scale: float = 2.5        # redaction raster scale, never below 2.5
    render_margin: int = RENDER_MARGIN  # px pre-rendered above/below the viewport
    page_gap: int = PAGE_GAP
    device_pixel_ratio: float = 2.0
    max_asset_bytes: int = 500 * 1024
    render_cache_size: int = 30
    min_zoom: float = 0.1
    max_zoom: float = 8.0

    def validated(self) -> "EditorSettings":
        """Replace out-of-range values with defaults."""
        default = EditorSettings()
        if self.reference_scale < 2.5:
            logger.warning(f"reference_scale {self.reference_scale} too low, using {default.reference_scale}")
            self.reference_scale = default.reference_scale
        for name in ("render_margin", "page_gap", "render_cache_size", "max_asset_bytes"):
            if getattr(self, name) < 0:
                setattr(self, name, getattr(default, name))
        if self.device_pixel_ratio <= 0:
            self.device_pixel_ratio = default.device_pixel_ratio
        if not (0 < self.min_zoom < self.max_zoom):
            self.min_zoom, self.max_zoom = default.min_zoom, default.max_zoom
        return self

    def clamp_zoom(self, z: float) -> float:
        return max(self.min_zoom, min(z, self.max_zoom))

    # ── QSettings ────────────────────────

    @classmethod
    def load(cls, settings: Optional[QSettings] = None) -> "EditorSettings":
        settings = settings or QSettings(ORGANIZATION, APPLICATION)
        values = {}
        for f in fields(cls):
            default = f.default
            values[f.name] = settings.value(f"editor/{f.name}", default, type=type(default))
        return cls(**values).validated()

    def save(self, settings: Optional[QSettings] = None):
        settings = settings or QSettings(ORGANIZATION, APPLICATION)
        for name, value in asdict(self).items():
            settings.setValue(f"editor/{name}", value)
        settings.sync()
