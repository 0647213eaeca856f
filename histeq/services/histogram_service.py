from __future__ import annotations
import logging

import numpy as np
import torch

from ..errors import BackendError, InputError
from ..models.device_buffer import DeviceBuffer
from ..repositories.device_buffer_repository import DeviceBufferRepository

logger = logging.getLogger(__name__)

HISTOGRAM_BINS = 256
COUNTER_DTYPE = torch.int64


class HistogramService:
    """
    Counts how many samples of a channel plane fall into each of the 256
    intensity bins. One logical task per pixel, each doing an atomic
    increment on its bin, so the result does not depend on scheduling.
    """

    def __init__(self, backend: DeviceBufferRepository | None = None):
        self.backend = backend or DeviceBufferRepository()

    def accumulate(self, plane: DeviceBuffer, n_pixels: int) -> DeviceBuffer:
        """
        Args:
            plane: uint8 device buffer holding at least *n_pixels* samples.
            n_pixels: number of samples to count (may be 0).

        Returns:
            A fresh int64 device buffer of 256 counters. The caller owns it.
        """
        hist = self.backend.allocate("histogram", HISTOGRAM_BINS, COUNTER_DTYPE)
        logger.debug(f"Bin size: {hist.count}, in bytes: {hist.nbytes}")
        try:
            # zeroed before any task runs
            self.backend.fill(hist, 0)
            self.backend.launch("hist_atomic", n_pixels, plane, hist)
        except BackendError:
            self.backend.release(hist)
            raise
        return hist

    def compute(self, plane: np.ndarray) -> np.ndarray:
        """Host convenience: upload *plane*, accumulate, read the counts back."""
        if plane.dtype != np.uint8:
            raise InputError(f"only 8-bit samples are supported, got {plane.dtype}")
        plane_buf = self.backend.allocate_like("plane", plane)
        hist = None
        try:
            self.backend.write(plane_buf, plane)
            hist = self.accumulate(plane_buf, plane.size)
            self.backend.finish()
            return self.backend.read(hist)
        finally:
            self.backend.release(plane_buf)
            if hist is not None:
                self.backend.release(hist)
