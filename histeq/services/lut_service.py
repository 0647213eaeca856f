from __future__ import annotations

import numpy as np
import torch

from ..errors import BackendError, InputError
from ..models.device_buffer import DeviceBuffer
from ..repositories.device_buffer_repository import DeviceBufferRepository
from .histogram_service import HISTOGRAM_BINS


class LutService:
    """
    Maps every pixel through the lookup table: output[p] = lut[input[p]].
    Tasks share no mutable state; the only requirement is that the LUT is
    complete before the launch, which the in-order queue guarantees.
    """

    def __init__(self, backend: DeviceBufferRepository | None = None):
        self.backend = backend or DeviceBufferRepository()

    def apply(self, plane: DeviceBuffer, lut: DeviceBuffer, n_pixels: int) -> DeviceBuffer:
        out = self.backend.allocate("output_plane", n_pixels, torch.uint8)
        try:
            self.backend.launch("apply_lut", n_pixels, plane, lut, out)
        except BackendError:
            self.backend.release(out)
            raise
        return out

    def compute(self, plane: np.ndarray, lut: np.ndarray) -> np.ndarray:
        """Host convenience. Returns an array with the same shape as *plane*."""
        if plane.dtype != np.uint8:
            raise InputError(f"only 8-bit samples are supported, got {plane.dtype}")
        table = np.ascontiguousarray(lut, dtype=np.uint8)
        if table.size != HISTOGRAM_BINS:
            raise ValueError(f"expected a {HISTOGRAM_BINS}-entry LUT, got {table.size}")

        plane_buf = self.backend.allocate_like("plane", plane)
        lut_buf = self.backend.allocate_like("lut", table)
        out = None
        try:
            self.backend.write(plane_buf, plane)
            self.backend.write(lut_buf, table)
            out = self.apply(plane_buf, lut_buf, plane.size)
            self.backend.finish()
            return self.backend.read(out).reshape(plane.shape)
        finally:
            self.backend.release(plane_buf)
            self.backend.release(lut_buf)
            if out is not None:
                self.backend.release(out)
