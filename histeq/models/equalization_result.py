from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List
import numpy as np

from .image import ColorMode, Image


@dataclass
class ChannelResult:
    """
    Everything one channel pipeline produced, read back to the host.
    """
    channel: str                 # "Y" for greyscale, "R" / "G" / "B" for color
    histogram: np.ndarray        # (256,) int64 raw counts
    cumulative: np.ndarray       # (256,) int64 inclusive prefix sum
    lut: np.ndarray              # (256,) uint8 normalized lookup table
    plane: np.ndarray            # (H, W) uint8 equalized plane
    timings: Dict[str, float] = field(default_factory=dict)  # stage -> milliseconds

    @property
    def total_ms(self) -> float:
        return sum(self.timings.values())


@dataclass
class EqualizationResult:
    """Finished image plus the per-channel records that built it."""
    image: Image
    mode: ColorMode
    channels: List[ChannelResult]

    @property
    def total_ms(self) -> float:
        return sum(c.total_ms for c in self.channels)

    def channel(self, name: str) -> ChannelResult:
        for result in self.channels:
            if result.channel == name:
                return result
        raise KeyError(name)
