import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from ..errors import CompileError, EqualizationError
from ..models.compute_device import ComputeDevice
from ..pipeline.equalize_gallery import OUTPUT_DIR, OUTPUT_EXT, equalize_gallery
from ..services.equalization_service import EqualizationService
from ..services.image_service import ImageService
from ..services.report_service import ReportService

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    # --- Centralized Logging Configuration ---
    level = logging.DEBUG if verbose else os.getenv("HISTEQ_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)-25s - %(levelname)-8s - %(message)s',
        datefmt='%H:%M:%S'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="histeq",
        description="Histogram equalization of greyscale and RGB images on the GPU.",
    )
    parser.add_argument("-f", "--file", default=os.getenv("HISTEQ_INPUT", "test.pgm"),
                        help="input image file (default: %(default)s)")
    parser.add_argument("--folder", help="equalize every image in this folder instead of one file")
    parser.add_argument("-o", "--output", help="output file (single image) or directory (--folder)")
    parser.add_argument("-d", "--device", default=None,
                        help="compute device: auto, cpu, cuda, cuda:N or mps")
    parser.add_argument("-l", "--list", action="store_true", help="list all usable devices and exit")
    parser.add_argument("--display", action="store_true", help="show input and output windows")
    parser.add_argument("--jit", action="store_true", default=None,
                        help="compile kernels with TorchScript (deprecated by torch in favour of torch.compile)")
    parser.add_argument("--parallel-channels", action="store_true", default=None,
                        help="run the R, G and B pipelines concurrently")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def _default_output(path: Path) -> Path:
    return Path(OUTPUT_DIR) / f"{path.stem}_equalized{OUTPUT_EXT}"


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    if args.list:
        for name, description in ComputeDevice.list_devices():
            print(f"{name:10s} {description}")
        return 0

    report_service = ReportService()
    image_service = ImageService()

    try:
        service = EqualizationService(device=args.device, jit=args.jit,
                                      parallel_channels=args.parallel_channels)

        if args.folder:
            gallery = image_service.stream_gallery(args.folder)
            results = equalize_gallery(gallery, equalization_service=service,
                                       image_service=image_service,
                                       output_dir=args.output or OUTPUT_DIR)
            report_service.log_results(results)
            return 0

        source = Path(args.file)
        img = image_service.load(source)
        result = service.equalize(img)
        result.image.path = Path(args.output) if args.output else _default_output(source)
        image_service.save(result.image)
        report_service.log_result(result)
        logger.info(f"Saved {result.image.path}")

        if args.display:
            report_service.display(img, result.image)
        return 0

    except CompileError as err:
        logger.error(f"Build Log:\n{err.build_log}")
        return 1
    except (EqualizationError, FileNotFoundError, NotADirectoryError) as err:
        logger.error(f"ERROR: {err}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
