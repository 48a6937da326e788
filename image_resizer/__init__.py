"""Batch image resizer: shrink or enlarge images to a side maximum, in parallel."""

__version__ = "0.3.0"
