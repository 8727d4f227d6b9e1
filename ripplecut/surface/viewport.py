"""Zoom and scroll geometry of the timeline canvas.

Pixels here are measured on the scrolled content; ``scroll_left`` is the
content x at the left edge of the viewport. Time is whatever the layout is
drawn in: real time when uncollapsed, virtual time when collapsed.
"""

import math

from ripplecut.manifest import SurfaceConfig
from ripplecut.models import finite_or

FALLBACK_WIDTH = 800.0
MIN_ZOOM_RATIO = 0.2
WHEEL_FLOOR_RATIO = 0.5
OPEN_FIT_RATIO = 0.55
TRAILING_PAD_PX = 100.0
MIN_TICK_PX = 60.0
TICK_INTERVALS = (0.1, 0.5, 1, 2, 5, 10, 15, 30, 60, 120, 300, 600, 1800, 3600)


def format_ruler_time(seconds: float) -> str:
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = int(seconds % 60)
    if h > 0:
        return f"{h}h{m}m" if m > 0 else f"{h}h"
    if m > 0:
        return f"{m}m{s}s" if s > 0 else f"{m}m"
    return f"{s}s"


class Viewport:
    def __init__(self, config: SurfaceConfig | None = None, width: float = 0.0, height: float = 0.0):
        self.config = config or SurfaceConfig()
        self.zoom = self.config.default_zoom
        self.scroll_left = 0.0
        self.width = max(0.0, finite_or(width))
        self.height = max(0.0, finite_or(height))
        self.layout_duration = 0.0
        self._fitted_for: str | None = None

    @property
    def max_zoom(self) -> float:
        return self.config.max_zoom

    @property
    def fit_zoom(self) -> float:
        duration = self.layout_duration if self.layout_duration > 0 else 1.0
        width = self.width if self.width > 0 else FALLBACK_WIDTH
        return width / duration

    @property
    def min_zoom(self) -> float:
        return self.fit_zoom * MIN_ZOOM_RATIO

    @property
    def total_width(self) -> float:
        return self.layout_duration * self.zoom + TRAILING_PAD_PX

    def time_to_pixel(self, t: float) -> float:
        return t * self.zoom

    def pixel_to_time(self, px: float) -> float:
        return px / self.zoom

    def content_x(self, viewport_x: float) -> float:
        return viewport_x + self.scroll_left

    def visible_time_range(self) -> tuple[float, float]:
        return (
            self.pixel_to_time(self.scroll_left),
            self.pixel_to_time(self.scroll_left + self.width),
        )

    def set_layout(
        self,
        duration: float | None = None,
        width: float | None = None,
        height: float | None = None,
    ) -> None:
        """Update the layout span or viewport size, then enforce the zoom floor."""
        if duration is not None:
            self.layout_duration = max(0.0, finite_or(duration))
        if width is not None:
            self.width = max(0.0, finite_or(width))
        if height is not None:
            self.height = max(0.0, finite_or(height))
        if not math.isfinite(self.zoom) or self.zoom <= 0:
            self.zoom = self.config.default_zoom
        if self.zoom < self.min_zoom:
            self.zoom = self.min_zoom
        self.scroll_to(self.scroll_left)

    def fit_to_file(self, file_id: str) -> bool:
        """Zoom to a comfortable overview once per newly opened file."""
        if file_id == self._fitted_for or self.layout_duration <= 0 or self.width <= 0:
            return False
        self.zoom = self.fit_zoom * OPEN_FIT_RATIO
        self.scroll_left = 0.0
        self._fitted_for = file_id
        return True

    def scroll_to(self, x: float) -> None:
        limit = max(0.0, self.total_width - self.width)
        self.scroll_left = min(max(0.0, finite_or(x)), limit)

    def scroll_by(self, dx: float) -> None:
        self.scroll_to(self.scroll_left + finite_or(dx))

    def zoom_at(self, pointer_x: float, wheel_delta: float) -> float:
        """Wheel zoom keeping the instant under the pointer at the same screen x.

        ``pointer_x`` is relative to the viewport's left edge. A positive
        ``wheel_delta`` (wheel pulled towards the user) zooms out.
        """
        previous = self.zoom
        factor = 1 + (-self.config.wheel_factor) * finite_or(wheel_delta)
        new_zoom = min(max(previous * factor, self.min_zoom * WHEEL_FLOOR_RATIO), self.max_zoom)
        time_at_pointer = (self.scroll_left + pointer_x) / previous
        self.zoom = new_zoom
        self.scroll_to(time_at_pointer * new_zoom - pointer_x)
        return new_zoom

    def tick_interval(self) -> float:
        """Ruler step wide enough that labels never overlap."""
        zoom = self.zoom if math.isfinite(self.zoom) and self.zoom > 0.0001 else 1.0
        target = MIN_TICK_PX / zoom
        for interval in TICK_INTERVALS:
            if interval >= target:
                return float(interval)
        return float(TICK_INTERVALS[-1])

    def follow(self, t: float) -> bool:
        """Re-centre on ``t`` if it has left the viewport. Returns True if scrolled."""
        x = self.time_to_pixel(finite_or(t))
        if x < self.scroll_left or x > self.scroll_left + self.width:
            self.scroll_to(max(0.0, x - self.width / 2))
            return True
        return False
