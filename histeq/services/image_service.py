from pathlib import Path
from typing import Iterable, List, Union, Iterator

import numpy as np

from ..errors import InputError
from ..models.image import ColorMode, Image
from ..repositories.image_repository import ImageRepository


class ImageService:
    """I/O helpers and plane bookkeeping.  No equalization logic here."""
    def __init__(self):
        self.image_repository = ImageRepository()

    def create_image(self, pixels: np.ndarray, path: Union[str, Path] = None) -> Image:
        return self.image_repository.create_image(pixels, path)

    def load(self, path: str | Path) -> Image:
        """Load a single image from disk into an Image object."""
        return self.image_repository.load(path)

    def stream_gallery(
        self,
        folder: Union[str, Path],
        *,
        recursive: bool = False,
        exts: Iterable[str] | None = None,
    ) -> Iterator[Image]:
        """
        Yield images lazily instead of returning a gigantic list.
        """
        return self.image_repository.iter_dir(folder,
                                              recursive=recursive,
                                              exts=exts)

    def save(self, image: Image) -> None:
        self.image_repository.save(image)

    # ─── Validation & planes ──────────────────────────────────────
    def validate(self, img: Image) -> ColorMode:
        """
        Checks that an image can be equalized.

        Args:
            img (Image): An image object
        Returns:
            The ColorMode selecting the greyscale or the color path.
        Raises:
            InputError: on non-uint8 samples, zero dimensions or a channel count other than 1 or 3.
        """
        pixels = img.pixels
        if not isinstance(pixels, np.ndarray):
            raise InputError(f"pixels must be a numpy array, got {type(pixels).__name__}")
        if pixels.dtype != np.uint8:
            raise InputError(f"only 8-bit samples are supported, got {pixels.dtype}")
        if pixels.ndim not in (2, 3):
            raise InputError(f"expected a (H, W) or (H, W, C) array, got shape {pixels.shape}")

        channels = img.channel_count
        if channels not in (1, 3):
            raise InputError(f"unsupported channel count {channels}, expected 1 or 3")

        height, width = pixels.shape[:2]
        if height == 0 or width == 0:
            raise InputError(f"image has zero dimensions ({width}x{height})")

        return ColorMode.from_channel_count(channels)

    @staticmethod
    def split_planes(img: Image) -> List[np.ndarray]:
        """Row-major (H, W) planes, one per channel, each C-contiguous."""
        pixels = img.pixels
        if pixels.ndim == 2:
            return [np.ascontiguousarray(pixels)]
        return [np.ascontiguousarray(pixels[:, :, c]) for c in range(pixels.shape[2])]

    @staticmethod
    def merge_planes(planes: List[np.ndarray]) -> np.ndarray:
        """Interleave equalized planes back into one image array."""
        if len(planes) == 1:
            return planes[0]
        return np.ascontiguousarray(np.stack(planes, axis=-1))
