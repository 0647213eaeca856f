from __future__ import annotations
import logging

import numpy as np

from ..errors import BackendError
from ..models.device_buffer import DeviceBuffer
from ..repositories.device_buffer_repository import DeviceBufferRepository
from .histogram_service import COUNTER_DTYPE

logger = logging.getLogger(__name__)


class PrefixScanService:
    """
    Inclusive prefix sum with the Hillis-Steele doubling scan.

    Pass k adds element i - 2**k into every element i >= 2**k and carries
    the lower elements forward. Each pass reads one buffer and writes the
    other (ping-pong) so no task sees a value already advanced in the same
    pass. O(n log n) additions, log2(n) passes; every launch on the in-order
    queue is a barrier for the next one.
    """

    def __init__(self, backend: DeviceBufferRepository | None = None):
        self.backend = backend or DeviceBufferRepository()

    @staticmethod
    def pass_count(size: int) -> int:
        if size <= 0 or size & (size - 1):
            raise ValueError(f"scan size must be a positive power of two, got {size}")
        return size.bit_length() - 1

    def scan(self, hist: DeviceBuffer) -> DeviceBuffer:
        """
        Args:
            hist: device buffer with the raw histogram. Only read.

        Returns:
            A fresh device buffer holding the cumulative histogram. The caller owns it.
        """
        size = hist.count
        passes = self.pass_count(size)
        ping = self.backend.allocate("scan_ping", size, COUNTER_DTYPE)
        try:
            pong = self.backend.allocate("scan_pong", size, COUNTER_DTYPE)
        except BackendError:
            self.backend.release(ping)
            raise

        src, dst = hist, ping
        try:
            for k in range(max(passes, 1)):
                self.backend.launch("scan_step", size, 1 << k, src, dst)
                src, dst = dst, (pong if dst is ping else ping)
        except BackendError:
            self.backend.release(ping)
            self.backend.release(pong)
            raise

        # src now holds the last pass's output
        self.backend.release(dst)
        logger.debug(f"Scanned {size} bins in {passes} passes")
        return src

    def compute(self, histogram: np.ndarray) -> np.ndarray:
        """Host convenience: upload *histogram*, scan, read the cumulative counts back."""
        counts = np.ascontiguousarray(histogram, dtype=np.int64)
        hist_buf = self.backend.allocate_like("histogram", counts)
        cumulative = None
        try:
            self.backend.write(hist_buf, counts)
            cumulative = self.scan(hist_buf)
            self.backend.finish()
            return self.backend.read(cumulative)
        finally:
            self.backend.release(hist_buf)
            if cumulative is not None:
                self.backend.release(cumulative)
