"""Exception taxonomy for the resizer.

Configuration and discovery errors abort a run before any job executes.
Transform errors are recorded against a single job and never abort the batch.
"""

from pathlib import Path
from typing import Optional


class ImageResizerError(Exception):
    """Base class for every error raised by image_resizer."""


class ConfigurationError(ImageResizerError):
    """Bad option value or input/output combination."""


class DiscoveryError(ImageResizerError):
    def __init__(self, path: Path, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class InputNotFound(DiscoveryError):
    def __init__(self, path: Path):
        super().__init__(path, "no such file or directory")


class InputUnreadable(DiscoveryError):
    def __init__(self, path: Path, reason: str = "permission denied"):
        super().__init__(path, reason)


class TransformError(ImageResizerError):
    """A single image could not be transformed."""

    kind = "transform"

    def __init__(self, path: Path, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{self.kind}: {path}: {message}")
        self.path = path
        self.cause = cause


class UnsupportedFormat(TransformError):
    kind = "unsupported format"


class DecodeError(TransformError):
    kind = "decode error"


class EncodeError(TransformError):
    kind = "encode error"


class TransformIOError(TransformError):
    kind = "io error"
