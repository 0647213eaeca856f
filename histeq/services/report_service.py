from __future__ import annotations
import logging
from typing import Dict, List

import cv2
import numpy as np

from ..models.equalization_result import EqualizationResult
from ..models.image import Image

logger = logging.getLogger(__name__)

ESC_KEY = 27


class ReportService:
    """
    Sink for finished images: logs per-stage timings and can show
    the before/after pair in OpenCV windows. Never feeds back into
    the pipeline.
    """

    @staticmethod
    def timing_table(result: EqualizationResult) -> Dict[str, Dict[str, float]]:
        """channel -> stage -> milliseconds"""
        return {c.channel: dict(c.timings) for c in result.channels}

    def log_result(self, result: EqualizationResult) -> None:
        img = result.image
        name = img.path.name if img.path else "<in-memory>"
        logger.info(f"{'=' * 60}")
        logger.info(f"Equalized {name}: {img.width}x{img.height}, {result.mode.name.lower()}")
        for channel in result.channels:
            stages = " | ".join(f"{stage}: {ms:8.3f} ms" for stage, ms in channel.timings.items())
            logger.info(f"  [{channel.channel}] {stages}")
            logger.debug(f"  [{channel.channel}] histogram: {channel.histogram.tolist()}")
        logger.info(f"Total pipeline time: {result.total_ms:.3f} ms")
        logger.info(f"{'=' * 60}")

    def log_results(self, results: List[EqualizationResult]) -> None:
        if not results:
            logger.info("No images were equalized.")
            return
        for result in results:
            self.log_result(result)

    @staticmethod
    def _to_bgr(pixels: np.ndarray) -> np.ndarray:
        if pixels.ndim == 3 and pixels.shape[2] == 3:
            return np.ascontiguousarray(pixels[:, :, ::-1])
        return pixels

    def display(self, original: Image, equalized: Image) -> None:
        """
        Show input and output until either window is closed or ESC is pressed.
        """
        cv2.imshow("input", self._to_bgr(original.pixels))
        cv2.imshow("output", self._to_bgr(equalized.pixels))
        try:
            while True:
                key = cv2.waitKey(1) & 0xFF
                if key == ESC_KEY:
                    break
                if (cv2.getWindowProperty("input", cv2.WND_PROP_VISIBLE) < 1
                        or cv2.getWindowProperty("output", cv2.WND_PROP_VISIBLE) < 1):
                    break
        finally:
            cv2.destroyAllWindows()
