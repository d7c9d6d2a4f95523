"""
Artwork placement on the garment.

Coordinates are percentages of the print container (0-100 on each axis) and
the scale is a percentage of the container (20-100). Every input is clamped
rather than rejected: the values come from a continuous UI control.
"""

import logging
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

COORD_MIN, COORD_MAX = 0.0, 100.0
SCALE_MIN, SCALE_MAX = 20.0, 100.0
DEFAULT_SCALE = 50.0


class Anchor(str, Enum):
    TOP = "top"
    CENTER = "center"
    BOTTOM = "bottom"
    LEFT = "left"
    RIGHT = "right"
    CUSTOM = "custom"


class Coords(BaseModel):
    x: float = 50.0
    y: float = 50.0


# Preset coordinates for the named anchors. `custom` has no preset.
ANCHOR_PRESETS: Dict[Anchor, Coords] = {
    Anchor.TOP: Coords(x=50, y=20),
    Anchor.CENTER: Coords(x=50, y=50),
    Anchor.BOTTOM: Coords(x=50, y=80),
    Anchor.LEFT: Coords(x=25, y=50),
    Anchor.RIGHT: Coords(x=75, y=50),
}


class ContainerRect(BaseModel):
    """Bounding box of the print container, in the pointer's coordinate space."""
    left: float = 0.0
    top: float = 0.0
    width: float
    height: float


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class Placement(BaseModel):
    anchor: Anchor = Anchor.CENTER
    coords: Coords = Field(default_factory=Coords)
    scale: float = DEFAULT_SCALE

    def select_anchor(self, anchor: Anchor) -> None:
        """Select a preset position; `custom` keeps the current coordinates."""
        anchor = Anchor(anchor)
        self.anchor = anchor
        preset = ANCHOR_PRESETS.get(anchor)
        if preset is not None:
            self.coords = preset.model_copy()

    def drag_to(self, pointer_x: float, pointer_y: float, rect: ContainerRect) -> None:
        """
        Moves the artwork under the pointer.

        The pointer position is converted to a percentage of `rect` and each
        axis is clamped to [0, 100]. A drag always leaves the placement on the
        `custom` anchor so the anchor never disagrees with the coordinates.
        An axis of zero extent has no meaningful percentage and is left as is.
        """
        x, y = self.coords.x, self.coords.y
        if rect.width > 0:
            x = _clamp((pointer_x - rect.left) / rect.width * 100, COORD_MIN, COORD_MAX)
        if rect.height > 0:
            y = _clamp((pointer_y - rect.top) / rect.height * 100, COORD_MIN, COORD_MAX)
        self.coords = Coords(x=x, y=y)
        self.anchor = Anchor.CUSTOM

    def set_scale(self, value: float) -> None:
        self.scale = _clamp(float(value), SCALE_MIN, SCALE_MAX)

    def snapshot(self) -> "Placement":
        return self.model_copy(deep=True)


class PointerSession:
    """
    A single drag gesture over the print container.

    Moves are applied only between `start()` and `end()`; pointer events that
    arrive outside an active gesture are ignored.
    """

    def __init__(self, placement: Placement, rect: ContainerRect):
        self.placement = placement
        self.rect = rect
        self.active = False

    def start(self, pointer_x: Optional[float] = None, pointer_y: Optional[float] = None) -> None:
        self.active = True
        if pointer_x is not None and pointer_y is not None:
            self.placement.drag_to(pointer_x, pointer_y, self.rect)

    def move(self, pointer_x: float, pointer_y: float) -> bool:
        if not self.active:
            return False
        self.placement.drag_to(pointer_x, pointer_y, self.rect)
        return True

    def end(self) -> None:
        if self.active:
            logger.debug(
                f"Drag ended at ({self.placement.coords.x:.1f}%, {self.placement.coords.y:.1f}%)"
            )
        self.active = False
