from pathlib import Path
from typing import Union, Iterable, Iterator
import logging
import os

import numpy as np
import cv2
from PIL import Image as PILImage
from dotenv import load_dotenv

from ..models.image import Image

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class ImageRepository:
    """
    Handles file I/O and pixel updates for Image entities.
    """
    def __init__(self):
        exts = os.getenv("VALID_IMAGE_EXTENSIONS", ".png,.jpg,.jpeg,.bmp,.pgm,.ppm,.tif,.tiff")
        self.VALID_EXTS = {ext.strip().lower() for ext in exts.split(",") if ext.strip()}

    @staticmethod
    def create_image(pixels: np.ndarray, path: Union[str, Path] = None) -> Image:
        if path is None:
            return Image(pixels)
        return Image(pixels=pixels, path=Path(path))

    @staticmethod
    def load(path: Union[str, Path], rgb: bool = True) -> Image:
        """
        Decode a file as stored: greyscale stays (H, W), color becomes (H, W, 3).
        Bit depth is not changed here, validation happens in the service.
        """
        path = Path(path)
        arr = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if arr is None:
            raise FileNotFoundError(f"Image not found or unreadable: {path}")

        if rgb and arr.ndim == 3 and arr.shape[2] == 3:
            arr = np.ascontiguousarray(arr[:, :, ::-1])  # BGR → RGB
        return Image(pixels=arr, path=path)

    @staticmethod
    def save(image: Image) -> None:
        if image.path is None:
            raise ValueError("Image has no path to save to")
        Path(image.path).parent.mkdir(parents=True, exist_ok=True)
        PILImage.fromarray(image.pixels).save(image.path)

    def gallery_paths(
        self,
        folder: Union[str, Path],
        *,
        recursive: bool = False,
        exts: Iterable[str] | None = None,
    ) -> list[Path]:
        """Image files under *folder* with an accepted extension, in name order."""
        folder = Path(folder)
        if not folder.is_dir():
            raise NotADirectoryError(folder)

        accepted = {e.lower() for e in (exts or self.VALID_EXTS)}
        candidates = folder.rglob("*") if recursive else folder.iterdir()
        return sorted(p for p in candidates if p.is_file() and p.suffix.lower() in accepted)

    def iter_dir(
        self,
        folder: Union[str, Path],
        *,
        recursive: bool = False,
        exts: Iterable[str] | None = None,
    ) -> Iterator[Image]:
        """
        Decode gallery files lazily. Unreadable files are logged and skipped.
        """
        for path in self.gallery_paths(folder, recursive=recursive, exts=exts):
            try:
                yield self.load(path)
            except FileNotFoundError as err:
                logger.warning(f"Skipping {path.name}: {err}")
