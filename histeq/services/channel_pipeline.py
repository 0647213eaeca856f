from __future__ import annotations
import logging
import time
from typing import Dict, List

import numpy as np

from ..errors import BackendError, StageError
from ..models.device_buffer import DeviceBuffer
from ..models.equalization_result import ChannelResult
from ..repositories.device_buffer_repository import DeviceBufferRepository
from .histogram_service import HistogramService
from .lut_service import LutService
from .normalization_service import NormalizationService
from .prefix_scan_service import PrefixScanService

logger = logging.getLogger(__name__)


class ChannelPipeline:
    """
    Runs histogram → scan → normalize → apply for one channel plane.

    Every stage ends at a barrier so its output is materialized before the
    next stage reads it. All device buffers are owned by the run and freed
    before it returns, whether it succeeded or not.
    """

    STAGES = ("upload", "histogram", "scan", "normalize", "apply", "download")

    def __init__(self, backend: DeviceBufferRepository | None = None):
        self.backend = backend or DeviceBufferRepository()
        self.histogram_service = HistogramService(self.backend)
        self.prefix_scan_service = PrefixScanService(self.backend)
        self.normalization_service = NormalizationService(self.backend)
        self.lut_service = LutService(self.backend)

    def run(self, channel: str, plane: np.ndarray) -> ChannelResult:
        """
        Args:
            channel: channel name used in results and errors ("Y", "R", ...).
            plane: (H, W) uint8 samples.

        Raises:
            StageError: wrapping the BackendError of the stage that failed.
        """
        n_pixels = int(plane.size)
        timings: Dict[str, float] = {}
        owned: List[DeviceBuffer] = []
        stage = self.STAGES[0]

        try:
            with self.backend.command_queue():
                start = time.perf_counter()
                plane_buf = self.backend.allocate_like("plane", plane)
                owned.append(plane_buf)
                self.backend.write(plane_buf, plane)
                timings[stage] = self._elapsed_ms(start)

                stage = "histogram"
                start = time.perf_counter()
                hist_buf = self.histogram_service.accumulate(plane_buf, n_pixels)
                owned.append(hist_buf)
                self.backend.finish()
                histogram = self.backend.read(hist_buf)
                timings[stage] = self._elapsed_ms(start)

                stage = "scan"
                start = time.perf_counter()
                cumulative_buf = self.prefix_scan_service.scan(hist_buf)
                owned.append(cumulative_buf)
                self.backend.finish()
                cumulative = self.backend.read(cumulative_buf)
                timings[stage] = self._elapsed_ms(start)

                stage = "normalize"
                start = time.perf_counter()
                lut_buf = self.normalization_service.normalize(cumulative_buf, n_pixels)
                owned.append(lut_buf)
                self.backend.finish()
                lut = self.backend.read(lut_buf)
                timings[stage] = self._elapsed_ms(start)

                stage = "apply"
                start = time.perf_counter()
                out_buf = self.lut_service.apply(plane_buf, lut_buf, n_pixels)
                owned.append(out_buf)
                self.backend.finish()
                timings[stage] = self._elapsed_ms(start)

                stage = "download"
                start = time.perf_counter()
                output = self.backend.read(out_buf).reshape(plane.shape)
                timings[stage] = self._elapsed_ms(start)
        except BackendError as err:
            logger.debug(f"Channel {channel} aborted in {stage}: {err}")
            raise StageError(channel, stage, err) from err
        finally:
            for buffer in owned:
                self.backend.release(buffer)

        logger.debug(f"Channel {channel}: " + ", ".join(f"{k}={v:.3f}ms" for k, v in timings.items()))
        return ChannelResult(
            channel=channel,
            histogram=histogram,
            cumulative=cumulative,
            lut=lut,
            plane=output,
            timings=timings,
        )

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000.0
