"""Typed raw records produced by the readers and consumed by the encoders."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple, Union

import numpy as np

__all__ = [
    "NO_TARGET",
    "ImageLabelRecord",
    "ImageTargetRecord",
    "ImageTextRecord",
    "ImagePairRecord",
    "TextRecord",
    "SequenceRecord",
    "Record",
]

NO_TARGET = -1


@dataclass(frozen=True)
class ImageLabelRecord:
    path: str
    label: int


@dataclass(frozen=True)
class ImageTargetRecord:
    path: str
    targets: Tuple[float, ...]


@dataclass(frozen=True)
class ImageTextRecord:
    path: str
    text: str


@dataclass(frozen=True)
class ImagePairRecord:
    """An image and a second file: bbox annotations or a segmentation mask."""

    path: str
    target_path: str


@dataclass(frozen=True)
class TextRecord:
    text: str
    label: int = NO_TARGET
    source: str = ""


@dataclass(frozen=True, eq=False)
class SequenceRecord:
    """One multivariate series: ``rows`` has shape ``(T, D)``."""

    name: str
    columns: Tuple[str, ...]
    rows: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        rows = np.array(self.rows, dtype=np.float64)
        if rows.ndim != 2:
            raise ValueError(f"sequence rows must be 2D, got shape {rows.shape}")
        rows.setflags(write=False)
        object.__setattr__(self, "rows", rows)

    def __len__(self) -> int:
        return int(self.rows.shape[0])

    @property
    def dim(self) -> int:
        return int(self.rows.shape[1])


Record = Union[
    ImageLabelRecord,
    ImageTargetRecord,
    ImageTextRecord,
    ImagePairRecord,
    TextRecord,
    SequenceRecord,
]
