"""Canonical page coordinates to rendered surface coordinates.

Field boxes are stored in pixels of the canonical page raster (1240x1754, an
A4 page at 150 dpi). Every surface (zoomed editor, preview, print) is the same
raster multiplied by one scalar, so the transform is a plain scale with no
offset.
"""
from dataclasses import dataclass
from typing import Tuple

from .models import Box

CANONICAL_WIDTH = 1240
CANONICAL_HEIGHT = 1754

MIN_ZOOM = 0.3
MAX_ZOOM = 2.5
ZOOM_STEP = 0.1
FIT_MAX_ZOOM = 2.0


@dataclass(frozen=True)
class SurfaceBox:
    left: float
    top: float
    width: float
    height: float

    def rounded(self) -> "SurfaceBox":
        return SurfaceBox(round(self.left), round(self.top), round(self.width), round(self.height))

    def as_dict(self) -> dict:
        return {"left": self.left, "top": self.top, "width": self.width, "height": self.height}


def _check_scale(scale: float) -> None:
    if not scale > 0:
        raise ValueError(f"scale must be positive, got {scale!r}")


def to_surface(box: Box, scale: float) -> SurfaceBox:
    _check_scale(scale)
    return SurfaceBox(box.x * scale, box.y * scale, box.width * scale, box.height * scale)


def from_surface(surface_box: SurfaceBox, scale: float) -> Box:
    _check_scale(scale)
    return Box(
        x=surface_box.left / scale,
        y=surface_box.top / scale,
        width=surface_box.width / scale,
        height=surface_box.height / scale,
    )


def page_size(scale: float) -> Tuple[float, float]:
    _check_scale(scale)
    return CANONICAL_WIDTH * scale, CANONICAL_HEIGHT * scale


def clamp_zoom(scale: float) -> float:
    return max(MIN_ZOOM, min(MAX_ZOOM, scale))


def step_zoom(scale: float, steps: int = 1) -> float:
    return clamp_zoom(round(scale + steps * ZOOM_STEP, 2))


def fit_width_scale(container_width: float) -> float:
    # auto-fit never enlarges past FIT_MAX_ZOOM even though manual zoom can
    return max(MIN_ZOOM, min(container_width / CANONICAL_WIDTH, FIT_MAX_ZOOM))
