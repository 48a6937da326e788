#!/usr/bin/env python3
"""
Resize or just shrink images and sharpen them appropriately.

Usage:
    image-resizer /path/to/image -m 1920                       # Resize in place
    image-resizer /path/to/folder -o /path/to/folder2 -m 1920  # Mirror a folder into folder2
    image-resizer /path/to/folder -o /path/to/folder2 -f -m 1920 --shrink
    image-resizer /path/to/image -m 1920 -q 75 --4:2:0 --ppi 150
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from loguru import logger

from image_resizer import __version__
from image_resizer.errors import ConfigurationError, DiscoveryError
from image_resizer.options import OptionSet, RunConfig, default_thread_count, load_run_config
from image_resizer.results import generate_report, print_summary, write_report
from image_resizer.runner import run

EXIT_OK = 0
EXIT_FAILED_JOBS = 1
EXIT_PREFLIGHT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-resizer",
        description="Resize or just shrink images and sharpen them appropriately.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Usage:", 1)[1],
    )
    parser.add_argument(
        "input_path",
        type=Path,
        help="An image or a directory of images to resize"
    )
    parser.add_argument(
        "-o", "--output", "--output-path",
        dest="output_path",
        type=Path,
        default=None,
        help="Destination file or directory depending on the input path (default: overwrite in place)"
    )
    parser.add_argument(
        "-m", "--side-maximum", "--max",
        dest="side_maximum",
        type=int,
        required=True,
        help="Maximum pixels of each side of an image (aspect ratio is preserved)"
    )
    parser.add_argument(
        "-q", "--quality",
        type=int,
        default=None,
        help="Quality for lossy compression, 1-100 (default: 92)"
    )
    parser.add_argument(
        "--ppi",
        type=float,
        default=None,
        help="Set pixels per inch"
    )
    parser.add_argument("-f", "--force", action="store_true", help="Overwrite existing output files")
    parser.add_argument("--allow-gif", action="store_true", help="Also resize GIF images")
    parser.add_argument("-r", "--remain-profile", action="store_true", help="Keep ICC and EXIF profiles")
    parser.add_argument(
        "--only-shrink", "--shrink",
        dest="only_shrink",
        action="store_true",
        help="Only shrink images, never enlarge them"
    )
    parser.add_argument("--no-sharpen", action="store_true", help="Disable automatic sharpening")
    parser.add_argument(
        "--chroma-quartered", "--4:2:0",
        dest="chroma_quartered",
        action="store_true",
        help="Use 4:2:0 chroma subsampling to reduce file size where supported"
    )
    parser.add_argument("-s", "--single-thread", action="store_true", help="Use only one thread")
    parser.add_argument(
        "--threads",
        type=int,
        default=None,
        help="Number of worker threads (default: number of CPUs)"
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML configuration file")
    parser.add_argument("--report", type=Path, default=None, help="Write a JSON run report to this path")
    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")
    parser.add_argument("--log-level", default=None, help="Console log level (default: INFO)")
    parser.add_argument("--log-dir", type=Path, default=None, help="Also write a rotating DEBUG log here")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(level: str, log_dir: Optional[Path] = None, rotation: str = "10 MB") -> None:
    """Send logs to stderr, and to a rotating file when log_dir is set."""
    logger.remove()
    logger.add(sys.stderr, level=level)
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(str(log_dir / "image_resizer_{time}.log"), rotation=rotation, level="DEBUG")


def build_options(args: argparse.Namespace, config: RunConfig) -> OptionSet:
    if args.single_thread:
        thread_count = 1
    elif args.threads is not None:
        thread_count = args.threads
    elif config.threads is not None:
        thread_count = config.threads
    else:
        thread_count = default_thread_count()

    return OptionSet.from_mapping({
        "side_maximum": args.side_maximum,
        "quality": args.quality if args.quality is not None else config.quality,
        "shrink_only": args.only_shrink,
        "sharpen": not args.no_sharpen,
        "chroma_quartered": args.chroma_quartered,
        "remain_profile": args.remain_profile,
        "allow_gif": args.allow_gif,
        "force_overwrite": args.force,
        "ppi": args.ppi,
        "thread_count": thread_count,
    })


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        config = load_run_config(args.config)
    except ConfigurationError as e:
        configure_logging("INFO")
        logger.error(str(e))
        return EXIT_PREFLIGHT

    configure_logging(
        (args.log_level or config.log_level).upper(),
        args.log_dir or config.log_dir,
        config.log_rotation,
    )

    try:
        options = build_options(args, config)
        summary = run(
            args.input_path,
            args.output_path,
            options,
            progress=config.progress and not args.no_progress,
            queue_depth=config.queue_depth,
        )
    except (ConfigurationError, DiscoveryError) as e:
        logger.error(str(e))
        return EXIT_PREFLIGHT

    print_summary(summary)

    if args.report:
        write_report(generate_report(summary, args.input_path, args.output_path), args.report)

    return EXIT_FAILED_JOBS if summary.exit_code else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
