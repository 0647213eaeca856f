from __future__ import annotations
import logging

import numpy as np
import torch

from ..errors import BackendError
from ..models.device_buffer import DeviceBuffer
from ..repositories.device_buffer_repository import DeviceBufferRepository
from .histogram_service import HISTOGRAM_BINS

logger = logging.getLogger(__name__)

OUTPUT_LEVELS = 256


class NormalizationService:
    """
    Turns a cumulative histogram into the 256-entry lookup table

        lut[i] = round_half_up(cumulative[i] * 255 / total)

    computed as floor((510 * cumulative[i] + total) / (2 * total)) in integer
    arithmetic and clamped to [0, 255]. total == 0 gives the identity table.
    Pure function of its inputs.
    """

    def __init__(self, backend: DeviceBufferRepository | None = None):
        self.backend = backend or DeviceBufferRepository()

    def normalize(self, cumulative: DeviceBuffer, total: int) -> DeviceBuffer:
        lut = self.backend.allocate("lut", cumulative.count, torch.uint8)
        try:
            self.backend.launch("normalize_lut", cumulative.count, int(total), OUTPUT_LEVELS, cumulative, lut)
        except BackendError:
            self.backend.release(lut)
            raise
        return lut

    def compute(self, cumulative: np.ndarray, total: int | None = None) -> np.ndarray:
        """
        Host convenience. *total* defaults to the last cumulative count.
        """
        cdf = np.ascontiguousarray(cumulative, dtype=np.int64)
        if cdf.size != HISTOGRAM_BINS:
            raise ValueError(f"expected {HISTOGRAM_BINS} cumulative counts, got {cdf.size}")
        if total is None:
            total = int(cdf[-1])
        cdf_buf = self.backend.allocate_like("cumulative", cdf)
        lut = None
        try:
            self.backend.write(cdf_buf, cdf)
            lut = self.normalize(cdf_buf, total)
            self.backend.finish()
            return self.backend.read(lut)
        finally:
            self.backend.release(cdf_buf)
            if lut is not None:
                self.backend.release(lut)
