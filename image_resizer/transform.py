"""
Pixel work: resize, sharpen, re-encode.

The scheduler only sees the ImageTransform protocol, a single
transform(input_path, output_path, options) call that returns the number of
bytes written or raises a TransformError. PillowTransform is the real
implementation; tests substitute their own.
"""

import os
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from loguru import logger
from PIL import Image, ImageFilter, ImageOps, ImageSequence, UnidentifiedImageError

from image_resizer.errors import (
    DecodeError,
    EncodeError,
    TransformIOError,
    UnsupportedFormat,
)
from image_resizer.options import OptionSet

# Pillow format name -> format used to write it back
OUTPUT_FORMATS = {
    "JPEG": "JPEG",
    "MPO": "JPEG",
    "PNG": "PNG",
    "TIFF": "TIFF",
    "WEBP": "WEBP",
    "PPM": "PPM",
    "GIF": "GIF",
}

DPI_FORMATS = {"JPEG", "PNG", "TIFF"}
SHARPEN_MODES = {"L", "LA", "RGB", "RGBA", "CMYK"}

# Mild unsharp mask applied after resampling
SHARPEN_FILTER = ImageFilter.UnsharpMask(radius=1.0, percent=60, threshold=2)


class ImageTransform(Protocol):
    def transform(self, input_path: Path, output_path: Path, options: OptionSet) -> int:
        ...


def compute_target_size(width: int, height: int, side_maximum: int, shrink_only: bool) -> Tuple[int, int]:
    """
    Scale (width, height) so the longer side equals side_maximum.

    The shorter side is rounded and never drops below 1. With shrink_only an
    image already inside the bound keeps its size.
    """
    if width < 1 or height < 1:
        raise ValueError(f"invalid image size {width}x{height}")

    longest = max(width, height)
    if longest == side_maximum or (shrink_only and longest <= side_maximum):
        return width, height

    scale = side_maximum / longest
    if width >= height:
        return side_maximum, max(1, int(round(height * scale)))
    return max(1, int(round(width * scale))), side_maximum


def temp_path_for(path: Path) -> Path:
    # Same directory as the target so the final rename stays on one filesystem
    return path.with_name(f".{path.stem}.tmp-{uuid.uuid4().hex[:8]}{path.suffix}")


def _normalize_mode(img: Image.Image, output_format: str) -> Image.Image:
    if img.mode == "P":
        img = img.convert("RGBA" if "transparency" in img.info else "RGB")
    elif img.mode == "1":
        img = img.convert("L")

    if output_format == "JPEG" and img.mode not in ("RGB", "L", "CMYK"):
        img = img.convert("RGB")
    elif output_format == "WEBP" and img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if "A" in img.mode else "RGB")
    elif output_format == "PPM" and img.mode not in ("L", "RGB"):
        img = img.convert("RGB")
    return img


def _resize_frame(frame: Image.Image, output_format: str, options: OptionSet) -> Image.Image:
    frame = _normalize_mode(frame, output_format)
    size = compute_target_size(frame.width, frame.height, options.side_maximum, options.shrink_only)

    if size != frame.size:
        frame = frame.resize(size, Image.Resampling.LANCZOS)
    else:
        frame = frame.copy()

    if options.sharpen:
        if frame.mode in SHARPEN_MODES:
            frame = frame.filter(SHARPEN_FILTER)
        else:
            logger.debug(f"Not sharpening {frame.mode} image")
    return frame


class PillowTransform:
    """ImageTransform backed by Pillow."""

    def transform(self, input_path: Path, output_path: Path, options: OptionSet) -> int:
        try:
            img = Image.open(input_path)
        except UnidentifiedImageError as e:
            raise UnsupportedFormat(input_path, "not a recognized image", e) from e
        except Image.DecompressionBombError as e:
            raise DecodeError(input_path, str(e), e) from e
        except OSError as e:
            raise TransformIOError(input_path, e.strerror or str(e), e) from e

        with img:
            source_format = img.format or ""
            output_format = OUTPUT_FORMATS.get(source_format)
            if output_format is None:
                raise UnsupportedFormat(input_path, source_format or "unknown")
            if output_format == "GIF" and not options.allow_gif:
                raise UnsupportedFormat(input_path, "GIF input is not allowed")

            try:
                frames, durations = self._render(img, output_format, options)
            except (OSError, ValueError, Image.DecompressionBombError) as e:
                raise DecodeError(input_path, str(e), e) from e

            save_kwargs = self._save_kwargs(img, frames[0], output_format, options, durations)
            if not options.remain_profile:
                for frame in frames:
                    frame.info.pop("icc_profile", None)
                    frame.info.pop("exif", None)

        self._write(frames, output_format, save_kwargs, input_path, output_path)
        try:
            return output_path.stat().st_size
        except OSError as e:
            raise TransformIOError(output_path, e.strerror or str(e), e) from e

    def _render(self, img: Image.Image, output_format: str, options: OptionSet) -> Tuple[List[Image.Image], List[int]]:
        if output_format != "GIF":
            # Apply the EXIF orientation first so side_maximum lands on the displayed axes
            upright = ImageOps.exif_transpose(img)
            return [_resize_frame(upright, output_format, options)], []

        frames = []
        durations = []
        for frame in ImageSequence.Iterator(img):
            durations.append(frame.info.get("duration", img.info.get("duration", 100)))
            frames.append(_resize_frame(frame.convert("RGBA"), output_format, options))
        return frames, durations

    def _save_kwargs(self, img: Image.Image, rendered: Image.Image, output_format: str, options: OptionSet, durations: List[int]) -> Dict:
        kwargs: Dict = {"format": output_format}

        if output_format == "JPEG":
            kwargs["quality"] = options.quality
            kwargs["subsampling"] = "4:2:0" if options.chroma_quartered else "4:4:4"
            kwargs["optimize"] = True
        elif output_format == "WEBP":
            kwargs["quality"] = options.quality
        elif output_format == "GIF":
            kwargs["save_all"] = True
            kwargs["duration"] = durations
            kwargs["loop"] = img.info.get("loop", 0)
            kwargs["disposal"] = 2

        if options.ppi is not None and output_format in DPI_FORMATS:
            kwargs["dpi"] = (options.ppi, options.ppi)

        if options.remain_profile:
            # Read from the rendered frame: exif_transpose drops the orientation tag there
            icc_profile: Optional[bytes] = rendered.info.get("icc_profile")
            exif: Optional[bytes] = rendered.info.get("exif")
            if icc_profile and output_format in ("JPEG", "PNG", "TIFF", "WEBP"):
                kwargs["icc_profile"] = icc_profile
            if exif and output_format in ("JPEG", "PNG", "WEBP"):
                kwargs["exif"] = exif
        return kwargs

    def _write(self, frames: List[Image.Image], output_format: str, save_kwargs: Dict, input_path: Path, output_path: Path) -> None:
        if output_path.is_symlink():
            # Replace the link target, not the link
            output_path = output_path.resolve()
        tmp_path = temp_path_for(output_path)
        first, rest = frames[0], frames[1:]
        if output_format == "GIF":
            save_kwargs["append_images"] = rest

        try:
            first.save(tmp_path, **save_kwargs)
        except (OSError, ValueError, KeyError, TypeError) as e:
            _discard(tmp_path)
            raise EncodeError(input_path, str(e), e) from e

        try:
            os.replace(tmp_path, output_path)
        except OSError as e:
            _discard(tmp_path)
            raise TransformIOError(output_path, e.strerror or str(e), e) from e


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temporary file {path}: {e}")
