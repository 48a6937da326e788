"""Walk an input path and yield candidate image files."""

import os
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from loguru import logger

from image_resizer.errors import InputNotFound, InputUnreadable

OnUnreadable = Callable[[InputUnreadable], None]


def discover(input_path: Path, on_unreadable: Optional[OnUnreadable] = None) -> Iterator[Path]:
    """
    Yield candidate files under input_path.

    A regular file yields itself. A directory is walked depth-first with the
    entries of each directory sorted by name, so two runs over the same tree
    see the same order. Symlinked directories are not followed; symlinks to
    files are yielded like files.

    Only the root is fatal: InputNotFound / InputUnreadable are raised for it
    on first iteration (use check_input() for an eager check). A subdirectory
    that cannot be listed is handed to on_unreadable and the walk goes on.
    """
    check_input(input_path)
    if not input_path.is_dir():
        yield input_path
        return

    entries = _list(input_path)
    yield from _walk(entries, on_unreadable)


def check_input(input_path: Path) -> None:
    if not os.path.lexists(input_path):
        raise InputNotFound(input_path)
    if not input_path.exists():
        # Dangling symlink
        raise InputNotFound(input_path)
    if input_path.is_dir() and not os.access(input_path, os.R_OK | os.X_OK):
        raise InputUnreadable(input_path)


def _list(directory: Path) -> List[os.DirEntry]:
    try:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda e: e.name)
    except PermissionError as e:
        raise InputUnreadable(directory) from e
    except OSError as e:
        raise InputUnreadable(directory, e.strerror or str(e)) from e


def _walk(entries: List[os.DirEntry], on_unreadable: Optional[OnUnreadable]) -> Iterator[Path]:
    for entry in entries:
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
            is_file = not is_dir and entry.is_file()
        except OSError as e:
            # Entry vanished or cannot be stat'ed between listing and use
            logger.warning(f"Cannot stat {entry.path}: {e}")
            continue

        if is_dir:
            try:
                children = _list(Path(entry.path))
            except InputUnreadable as e:
                logger.warning(f"Cannot list {e.path}, skipping it")
                if on_unreadable is not None:
                    on_unreadable(e)
                continue
            yield from _walk(children, on_unreadable)
        elif is_file:
            yield Path(entry.path)
        else:
            logger.debug(f"Skipping non-regular entry {entry.path}")
