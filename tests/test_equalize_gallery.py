import numpy as np
from pathlib import Path
from PIL import Image as PILImage

from histeq.models.image import Image
from histeq.pipeline.equalize_gallery import equalize_gallery
from histeq.services.equalization_service import EqualizationService


def test_equalizes_and_saves_each_image(backend, tmp_path, rng):
    gallery = [
        Image(rng.integers(0, 256, size=(6, 6), dtype=np.uint8), path=Path("one.png")),
        Image(rng.integers(0, 256, size=(6, 6, 3), dtype=np.uint8), path=Path("two.jpg")),
    ]

    results = equalize_gallery(gallery,
                               equalization_service=EqualizationService(backend=backend),
                               output_dir=tmp_path, ext=".png")

    assert [r.image.path.name for r in results] == ["one_equalized.png", "two_equalized.png"]
    for result in results:
        saved = np.asarray(PILImage.open(result.image.path))
        np.testing.assert_array_equal(saved, result.image.pixels)


def test_skips_images_that_fail(backend, tmp_path):
    gallery = [
        Image(np.zeros((4, 4, 4), dtype=np.uint8), path=Path("rgba.png")),
        Image(np.zeros((4, 4), dtype=np.uint8)),
    ]

    results = equalize_gallery(gallery,
                               equalization_service=EqualizationService(backend=backend),
                               output_dir=tmp_path, save=False)

    assert len(results) == 1
    assert results[0].image.path == tmp_path / "image_0002_equalized.png"
    assert not any(tmp_path.iterdir())
