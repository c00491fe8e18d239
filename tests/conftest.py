from __future__ import annotations

from pathlib import Path
from typing import Sequence, Tuple

import pytest
from PIL import Image


def write_image(
    path: Path,
    size: Tuple[int, int] = (8, 6),
    color: Tuple[int, int, int] = (10, 20, 30),
) -> Path:
    """Write a solid RGB image; ``size`` is ``(width, height)`` as in Pillow."""

    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path)
    return path


def write_lines(path: Path, lines: Sequence[str]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    return path


@pytest.fixture
def image_folder(tmp_path: Path) -> Path:
    """Two classes of ten small images each."""

    root = tmp_path / "images"
    for cls, color in (("cat", (200, 0, 0)), ("dog", (0, 0, 200))):
        for i in range(10):
            write_image(root / cls / f"{cls}_{i:02d}.png", color=color)
    return root
