from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, NamedTuple, Sequence, Tuple, Union

import torch
from torch import Tensor

__all__ = ["Example", "LabeledBatch", "TargetEntry", "collate_examples"]

TargetEntry = Union[Tensor, List[Tensor]]


class Example(NamedTuple):
    """One encoded sample: input tensors plus zero or more target tensors."""

    data: Tuple[Tensor, ...]
    target: Tuple[Tensor, ...] = ()


@dataclass
class LabeledBatch:
    """Container holding a mini-batch ready for model consumption.

    ``data`` entries are stacked along a new leading batch dimension.
    ``target`` entries are stacked when every sample agrees on the shape and
    kept as per-sample lists otherwise (e.g. a variable number of boxes).
    """

    data: List[Tensor]
    target: List[TargetEntry] = field(default_factory=list)

    def __len__(self) -> int:
        return int(self.data[0].size(0)) if self.data else 0

    def to(self, device: torch.device | str, *, non_blocking: bool = True) -> "LabeledBatch":
        """Move tensors to the requested device."""

        device = torch.device(device)

        def _move(entry: TargetEntry) -> TargetEntry:
            if isinstance(entry, list):
                return [t.to(device=device, non_blocking=non_blocking) for t in entry]
            return entry.to(device=device, non_blocking=non_blocking)

        return LabeledBatch(
            data=[t.to(device=device, non_blocking=non_blocking) for t in self.data],
            target=[_move(t) for t in self.target],
        )

    def pin_memory(self) -> "LabeledBatch":  # pragma: no cover - DataLoader hook
        return LabeledBatch(
            data=[t.pin_memory() for t in self.data],
            target=[
                [t.pin_memory() for t in entry] if isinstance(entry, list) else entry.pin_memory()
                for entry in self.target
            ],
        )


def collate_examples(batch: Sequence[Example]) -> LabeledBatch:
    if not batch:
        raise ValueError("batch must contain at least one example")

    n_data = len(batch[0].data)
    n_target = len(batch[0].target)
    for example in batch:
        if len(example.data) != n_data or len(example.target) != n_target:
            raise ValueError("all examples of a batch must carry the same number of tensors")

    data: List[Tensor] = []
    for i in range(n_data):
        tensors = [example.data[i] for example in batch]
        shape = tensors[0].shape
        if any(t.shape != shape for t in tensors):
            raise ValueError(
                f"input tensor {i} has inconsistent shapes within the batch: "
                f"{sorted({tuple(t.shape) for t in tensors})}"
            )
        data.append(torch.stack(tensors))

    target: List[TargetEntry] = []
    for i in range(n_target):
        tensors = [example.target[i] for example in batch]
        shape = tensors[0].shape
        if all(t.shape == shape for t in tensors):
            target.append(torch.stack(tensors))
        else:
            target.append(tensors)
    return LabeledBatch(data=data, target=target)
