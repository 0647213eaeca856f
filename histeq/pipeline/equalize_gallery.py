"""
Gallery Equalization Pipeline
Equalizes every image of a gallery on the compute device and gives each
result its output path. Images that cannot be equalized are logged and
skipped; no partially equalized image is ever kept.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, List
from dotenv import load_dotenv
from tqdm import tqdm

from ..errors import EqualizationError
from ..models.equalization_result import EqualizationResult
from ..models.image import Image
from ..services.equalization_service import EqualizationService
from ..services.image_service import ImageService

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Equalized images output directory
OUTPUT_DIR = os.getenv("HISTEQ_OUTPUT_DIR", "data/equalized")
OUTPUT_EXT = os.getenv("HISTEQ_OUTPUT_EXT", ".png")


def equalize_gallery(
    gallery: Iterable[Image],
    *,
    equalization_service: EqualizationService = None,
    image_service: ImageService = None,
    output_dir: str | Path = OUTPUT_DIR,
    ext: str = OUTPUT_EXT,
    save: bool = True,
) -> List[EqualizationResult]:
    """
    Equalize each image in *gallery*.

    This pipeline step:
    1. Equalizes the image (one or three channel pipelines)
    2. Points the result at output_dir/<stem>_equalized<ext>
    3. Saves it when *save* is set

    Args:
        gallery: Images to equalize (any iterable, consumed lazily)
        equalization_service: Service running the channel pipelines
        image_service: Service for image I/O
        output_dir: Directory for the equalized images
        ext: File extension of the equalized images
        save: Write the results to disk

    Returns:
        List[EqualizationResult]: one per image that succeeded
    """
    equalization_service = equalization_service or EqualizationService()
    image_service = image_service or ImageService()
    output_dir = Path(output_dir)

    results: List[EqualizationResult] = []
    failed = 0

    for index, img in enumerate(tqdm(gallery, desc="equalize", ncols=70, unit="img"), 1):
        name = img.path.stem if img.path else f"image_{index:04d}"
        try:
            result = equalization_service.equalize(img)
        except EqualizationError as err:
            failed += 1
            logger.error(f"Skipping {name}: {err}")
            continue

        result.image.path = output_dir / f"{name}_equalized{ext}"
        if save:
            image_service.save(result.image)
        results.append(result)

    logger.info(f"Equalized {len(results)} images, {failed} failed")
    return results
