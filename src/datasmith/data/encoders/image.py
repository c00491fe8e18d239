from __future__ import annotations

import logging
import os
from typing import List, Optional, Sequence, Tuple

import numpy as np
import torch
from PIL import Image
from torch import Tensor
from torchvision.transforms import InterpolationMode
from torchvision.transforms import functional as TF

from ...errors import BadParameterError, IOFailureError
from ..batch import Example
from ..correspondence import CorrespondenceTable
from ..records import ImageLabelRecord, ImagePairRecord, ImageTargetRecord, ImageTextRecord

__all__ = ["ImageEncoder", "load_image", "image_to_tensor", "read_bboxes"]

LOGGER = logging.getLogger(__name__)


def load_image(path: str | os.PathLike[str], *, bw: bool = False) -> Image.Image:
    """Decode ``path`` into an 8-bit RGB (or grayscale with ``bw``) image."""

    try:
        with Image.open(path) as img:
            img.load()
            if img.mode in {"I;16", "I;16B", "I"} and not bw:
                # 16/32-bit grayscale: rescale to 8 bits before adding channels
                arr = np.asarray(img, dtype=np.float64)
                peak = arr.max() if arr.size and arr.max() > 0 else 1.0
                img = Image.fromarray((arr * (255.0 / peak)).astype(np.uint8))
            return img.convert("L" if bw else "RGB")
    except OSError as exc:
        raise IOFailureError(f"cannot read image {path}: {exc}") from exc


def image_to_tensor(
    img: Image.Image,
    height: int,
    width: int,
    *,
    scale: float = 1.0,
    mean: Optional[Sequence[float]] = None,
    std: Optional[Sequence[float]] = None,
) -> Tensor:
    """Resize ``img`` and return a ``float32`` tensor of shape ``(C, height, width)``."""

    resized = TF.resize(img, [height, width], interpolation=InterpolationMode.BILINEAR)
    tensor = TF.pil_to_tensor(resized).to(torch.float32)
    if scale != 1.0:
        tensor = tensor * scale
    if mean is not None or std is not None:
        channels = tensor.size(0)
        tensor = TF.normalize(
            tensor,
            mean=list(mean) if mean is not None else [0.0] * channels,
            std=list(std) if std is not None else [1.0] * channels,
        )
    return tensor


def read_bboxes(
    path: str | os.PathLike[str],
    *,
    x_ratio: float,
    y_ratio: float,
) -> Tuple[Tensor, Tensor]:
    """Parse ``cls xmin ymin xmax ymax`` lines, rescaling coordinates.

    Returns ``(boxes float32[N, 4], labels long[N])``.
    """

    boxes: List[List[float]] = []
    labels: List[int] = []
    try:
        with open(path, "r", encoding="utf-8") as handle:
            lines = handle.read().splitlines()
    except OSError as exc:
        raise IOFailureError(f"cannot read bbox file {path}: {exc}") from exc
    for line_num, line in enumerate(lines, start=1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) != 5:
            raise BadParameterError(
                f"{path}:{line_num}: expected 'cls xmin ymin xmax ymax', got {line!r}"
            )
        try:
            cls = int(fields[0])
            xmin, ymin, xmax, ymax = (float(v) for v in fields[1:])
        except ValueError:
            raise BadParameterError(f"{path}:{line_num}: invalid bbox line {line!r}") from None
        boxes.append([xmin * x_ratio, ymin * y_ratio, xmax * x_ratio, ymax * y_ratio])
        labels.append(cls)
    box_tensor = torch.tensor(boxes, dtype=torch.float32).reshape(-1, 4)
    return box_tensor, torch.tensor(labels, dtype=torch.long)


class ImageEncoder:
    """Turn image records into fixed-shape ``(C, H, W)`` examples."""

    def __init__(
        self,
        height: int,
        width: int,
        *,
        bw: bool = False,
        scale: float = 1.0,
        mean: Optional[Sequence[float]] = None,
        std: Optional[Sequence[float]] = None,
    ) -> None:
        self.height = int(height)
        self.width = int(width)
        self.bw = bool(bw)
        self.scale = float(scale)
        self.mean = tuple(mean) if mean is not None else None
        self.std = tuple(std) if std is not None else None

    def to_tensor(self, path: str | os.PathLike[str]) -> Tuple[Tensor, Tuple[int, int]]:
        """Return the encoded image and its original ``(height, width)``."""

        img = load_image(path, bw=self.bw)
        original = (img.height, img.width)
        tensor = image_to_tensor(
            img, self.height, self.width, scale=self.scale, mean=self.mean, std=self.std
        )
        return tensor, original

    def encode_label(self, record: ImageLabelRecord) -> Example:
        tensor, _ = self.to_tensor(record.path)
        return Example((tensor,), (torch.tensor([record.label], dtype=torch.long),))

    def encode_targets(self, record: ImageTargetRecord) -> Example:
        tensor, _ = self.to_tensor(record.path)
        return Example((tensor,), (torch.tensor(record.targets, dtype=torch.float32),))

    def encode_bbox(self, record: ImagePairRecord) -> Example:
        tensor, (orig_h, orig_w) = self.to_tensor(record.path)
        boxes, labels = read_bboxes(
            record.target_path,
            x_ratio=self.width / orig_w,
            y_ratio=self.height / orig_h,
        )
        return Example((tensor,), (boxes, labels))

    def encode_segmentation(self, record: ImagePairRecord) -> Example:
        tensor, _ = self.to_tensor(record.path)
        try:
            with Image.open(record.target_path) as mask:
                mask.load()
                if mask.mode not in {"L", "P", "I", "I;16"}:
                    mask = mask.convert("L")
                resized = TF.resize(
                    mask, [self.height, self.width], interpolation=InterpolationMode.NEAREST
                )
                arr = np.array(resized)
        except OSError as exc:
            raise IOFailureError(f"cannot read target image {record.target_path}: {exc}") from exc
        if arr.ndim == 3:
            arr = arr[..., 0]
        return Example((tensor,), (torch.as_tensor(arr.astype(np.int64)),))

    def encode_ocr(
        self,
        record: ImageTextRecord,
        alphabet: CorrespondenceTable,
        max_length: int,
    ) -> Example:
        """Encode an OCR sample; index ``0`` of ``alphabet`` is the CTC blank.

        Unseen characters are added unless ``alphabet`` is frozen, in which
        case a ``KeyError`` is raised. Texts longer than ``max_length`` raise
        ``ValueError``.
        """

        if len(record.text) > max_length:
            raise ValueError(
                f"text of length {len(record.text)} exceeds maximum sequence size {max_length}"
            )
        indices = [alphabet.index(ch) if alphabet.frozen else alphabet.add(ch) for ch in record.text]
        target = torch.zeros(max_length, dtype=torch.long)
        if indices:
            target[: len(indices)] = torch.tensor(indices, dtype=torch.long)
        tensor, _ = self.to_tensor(record.path)
        return Example((tensor,), (target, torch.tensor([len(indices)], dtype=torch.long)))

    def encode_predict(self, path: str | os.PathLike[str]) -> Tuple[Example, Tuple[int, int]]:
        tensor, original = self.to_tensor(path)
        return Example((tensor,)), original
