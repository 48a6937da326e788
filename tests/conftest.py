from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest
from PIL import Image


def write_image(path: Path, size: tuple[int, int], fmt: str = "JPEG", color=(200, 80, 40), **save_kwargs) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = "L" if fmt == "PPM" else "RGB"
    fill = color[0] if mode == "L" else color
    Image.new(mode, size, fill).save(path, format=fmt, **save_kwargs)
    return path


def write_gif(path: Path, size: tuple[int, int], frames: int = 3) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    images = [Image.new("RGB", size, (i * 60, 100, 200 - i * 40)) for i in range(frames)]
    images[0].save(path, format="GIF", save_all=True, append_images=images[1:], duration=80, loop=0)
    return path


def image_size(path: Path) -> tuple[int, int]:
    with Image.open(path) as img:
        return img.size


@pytest.fixture
def make_image() -> Callable[..., Path]:
    return write_image


@pytest.fixture
def make_gif() -> Callable[..., Path]:
    return write_gif


@pytest.fixture
def sample_tree(tmp_path: Path) -> Path:
    """
    in/
      a.jpg          300x200
      b.png          80x60
      nested/c.jpg   100x400
      notes.txt
    """
    root = tmp_path / "in"
    write_image(root / "a.jpg", (300, 200))
    write_image(root / "b.png", (80, 60), fmt="PNG")
    write_image(root / "nested" / "c.jpg", (100, 400))
    (root / "notes.txt").write_text("not an image", encoding="utf-8")
    return root
