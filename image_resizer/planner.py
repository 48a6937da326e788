"""
Turn discovered files into jobs.

For each candidate the planner mirrors its location under the output root,
sniffs the image format from the file content and applies the overwrite
policy. Anything that should not be processed becomes a Skipped result.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from loguru import logger
from PIL import Image, UnidentifiedImageError

from image_resizer.errors import ConfigurationError
from image_resizer.options import OptionSet
from image_resizer.results import Skipped, SkipReason

# Pillow format names. PGM files are reported as "PPM", multi-picture
# camera JPEGs as "MPO".
STILL_FORMATS = {"JPEG", "MPO", "PNG", "TIFF", "WEBP", "PPM"}
ANIMATED_FORMATS = {"GIF"}


@dataclass(frozen=True)
class Job:
    input_path: Path
    output_path: Path
    options: OptionSet
    image_format: str


def sniff_format(path: Path) -> Optional[str]:
    """Return the Pillow format name of path, or None if it is not an image."""
    try:
        with Image.open(path) as img:
            return img.format
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug(f"Cannot identify {path}: {e}")
        return None


def _same_path(a: Path, b: Path) -> bool:
    if a == b:
        return True
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False


def prepare_output_root(input_path: Path, output_path: Optional[Path]) -> None:
    """
    Pre-flight checks on the output destination.

    A directory input needs a directory destination, created here if missing.
    A file input needs a file destination.
    """
    if output_path is None:
        return

    if input_path.is_dir():
        if output_path.exists():
            if not output_path.is_dir():
                raise ConfigurationError(f"{output_path} is not a directory.")
            return
        try:
            output_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"cannot create output directory {output_path}: {e}") from e
        logger.info(f"Created output directory {output_path}")
    elif output_path.is_dir():
        raise ConfigurationError(f"{output_path} is a directory.")


class JobPlanner:
    """Maps candidates under input_root to jobs writing under output_root."""

    def __init__(self, input_root: Path, output_root: Optional[Path], options: OptionSet):
        self.input_root = input_root.absolute()
        self.input_is_dir = self.input_root.is_dir()
        self.output_root = output_root.absolute() if output_root is not None else None
        self.options = options

    def output_path_for(self, candidate: Path) -> Path:
        candidate = candidate.absolute()

        if self.output_root is None:
            # Write through a symlink so the link survives and its target is resized
            return candidate.resolve() if candidate.is_symlink() else candidate

        if not self.input_is_dir:
            return self.output_root

        relative = candidate.relative_to(self.input_root)
        return self.output_root / relative

    def plan(self, candidate: Path) -> Union[Job, Skipped]:
        candidate = candidate.absolute()
        output_path = self.output_path_for(candidate)

        image_format = sniff_format(candidate)
        if image_format is None:
            return Skipped(candidate, SkipReason.UNSUPPORTED_FORMAT)
        if image_format in ANIMATED_FORMATS:
            if not self.options.allow_gif:
                return Skipped(candidate, SkipReason.GIF_NOT_ALLOWED)
        elif image_format not in STILL_FORMATS:
            return Skipped(candidate, SkipReason.UNSUPPORTED_FORMAT, image_format)

        if (
            not self.options.force_overwrite
            and os.path.lexists(output_path)
            and not _same_path(candidate, output_path)
        ):
            return Skipped(candidate, SkipReason.CONFLICT, str(output_path))

        logger.debug(f"Planned {candidate} -> {output_path} ({image_format})")
        return Job(
            input_path=candidate,
            output_path=output_path,
            options=self.options,
            image_format=image_format,
        )
