from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Tuple
import numpy as np


class ColorMode(Enum):
    """Greyscale runs the stages once, color runs them per R, G and B plane."""
    GREYSCALE = ("Y",)
    COLOR = ("R", "G", "B")

    @property
    def channels(self) -> Tuple[str, ...]:
        return self.value

    @classmethod
    def from_channel_count(cls, count: int) -> "ColorMode":
        for mode in cls:
            if len(mode.channels) == count:
                return mode
        raise ValueError(f"no color mode with {count} channels")


@dataclass
class Image:
    """
    Simple data object: 8-bit pixels (+ optional source path for bookkeeping).
    No OpenCV logic outside the repository.
    """
    pixels: np.ndarray # Shape (H, W) greyscale or (H, W, 3) RGB, dtype uint8.
    path: Path | None = None # Source of the image.
    original_pixels: np.ndarray | None = None # Pixels before equalization, kept for comparison

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def channel_count(self) -> int:
        return 1 if self.pixels.ndim == 2 else int(self.pixels.shape[2])
