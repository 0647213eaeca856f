from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Union
import logging
import os

from dotenv import load_dotenv

from ..errors import PipelineError, StageError
from ..models.compute_device import ComputeDevice
from ..models.equalization_result import ChannelResult, EqualizationResult
from ..models.image import ColorMode, Image
from ..models.kernel_program import KernelProgram
from ..repositories.device_buffer_repository import DeviceBufferRepository
from .channel_pipeline import ChannelPipeline
from .image_service import ImageService

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class EqualizationService:
    """
    Histogram-equalizes whole images on the compute device.
    *   Greyscale images run one channel pipeline, color images three
        independent ones whose planes are interleaved afterwards.
    *   Never returns a partially equalized image: any failed channel
        fails the image with a PipelineError.
    """

    def __init__(self,
                 backend: DeviceBufferRepository = None,
                 device: Union[str, ComputeDevice] = None,
                 jit: bool = None,
                 parallel_channels: bool = None):
        """
        Initialize the EqualizationService with configurable parameters.

        Args:
            backend: Ready compute backend (takes precedence over device/jit)
            device: Device name or ComputeDevice (defaults to env var)
            jit: Script kernels with TorchScript (defaults to env var)
            parallel_channels: Run R, G and B on a thread pool (defaults to env var)

        Raises:
            CompileError: when the kernel program does not build.
        """
        if backend is None:
            if not isinstance(device, ComputeDevice):
                device = ComputeDevice(device)
            backend = DeviceBufferRepository(device, KernelProgram(jit=jit))
        self.backend = backend

        if parallel_channels is None:
            parallel_channels = os.getenv("HISTEQ_PARALLEL_CHANNELS", "0") == "1"
        self.parallel_channels = parallel_channels

        self.pipeline = ChannelPipeline(self.backend)
        self.img_svc = ImageService()

        logger.info(f"EqualizationService initialized on {self.backend.device.name} "
                    f"(parallel channels: {self.parallel_channels})")

    # ─── Public API ────────────────────────────────────────────────
    def equalize(self, img: Image) -> EqualizationResult:
        """
        Args:
            img: greyscale (H, W) or RGB (H, W, 3) uint8 image.

        Returns:
            EqualizationResult with a *new* Image and one ChannelResult per channel.

        Raises:
            InputError: before any stage runs, if the image is not equalizable.
            PipelineError: if any channel pipeline failed.
        """
        mode = self.img_svc.validate(img)
        planes = self.img_svc.split_planes(img)

        results = self._run_channels(mode, planes)

        pixels = self.img_svc.merge_planes([r.plane for r in results]).reshape(img.pixels.shape)
        new_path = (
            img.path.with_stem(img.path.stem + "_equalized") if img.path else None
        )
        equalized = self.img_svc.create_image(pixels, new_path)
        equalized.original_pixels = img.pixels

        logger.info(f"Equalized {img.width}x{img.height} {mode.name.lower()} image "
                    f"in {sum(r.total_ms for r in results):.3f} ms")
        return EqualizationResult(image=equalized, mode=mode, channels=results)

    def equalize_file(self, path: Union[str, Path], output: Union[str, Path] = None) -> EqualizationResult:
        img = self.img_svc.load(path)
        result = self.equalize(img)
        if output is not None:
            result.image.path = Path(output)
        self.img_svc.save(result.image)
        return result

    # ─── Internal helpers ──────────────────────────────────────────
    def _run_channels(self, mode: ColorMode, planes) -> List[ChannelResult]:
        jobs = list(zip(mode.channels, planes))
        failures: List[StageError] = []
        results: List[ChannelResult] = []

        if self.parallel_channels and len(jobs) > 1:
            with ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="histeq") as pool:
                futures = [pool.submit(self.pipeline.run, name, plane) for name, plane in jobs]
                outcomes = []
                for future in futures:
                    try:
                        outcomes.append(future.result())
                    except StageError as err:
                        outcomes.append(err)
        else:
            outcomes = []
            for name, plane in jobs:
                try:
                    outcomes.append(self.pipeline.run(name, plane))
                except StageError as err:
                    outcomes.append(err)

        for outcome in outcomes:
            if isinstance(outcome, StageError):
                logger.warning(str(outcome))
                failures.append(outcome)
            else:
                results.append(outcome)

        if failures:
            raise PipelineError(failures)
        return results
