"""Named dataset partitions held in memory or in an on-disk store."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import torch
from torch.utils.data import Dataset

from ..errors import BadParameterError
from .batch import Example, LabeledBatch, collate_examples
from .store import LmdbStore, decode_tensors, encode_tensors

__all__ = ["Partition", "InMemoryPartition", "DbPartition", "PartitionSet", "BatchTransform"]

LOGGER = logging.getLogger(__name__)

BatchTransform = Callable[[LabeledBatch], LabeledBatch]


class Partition(Dataset[Example]):
    """Common interface of in-memory and store-backed partitions.

    Every example carries a sample id. Text partitions also record the
    unpadded sequence length of each example.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name

    def add(self, example: Example, sample_id: str = "", length: Optional[int] = None) -> None:
        raise NotImplementedError

    def __len__(self) -> int:
        raise NotImplementedError

    def __getitem__(self, index: int) -> Example:
        raise NotImplementedError

    @property
    def ids(self) -> List[str]:
        raise NotImplementedError

    @property
    def lengths(self) -> List[int]:
        raise NotImplementedError

    @property
    def finalized(self) -> bool:
        return False

    def finalize(self, build_id: str) -> None:
        """Seal the partition; no-op for in-memory partitions."""

    def batches(
        self,
        batch_size: int,
        *,
        shuffle: bool = False,
        generator: Optional[torch.Generator] = None,
        transform: Optional[BatchTransform] = None,
    ) -> Iterator[LabeledBatch]:
        """Yield collated batches; only the last one may be smaller."""

        if batch_size <= 0:
            raise BadParameterError(f"batch size must be positive, got {batch_size}")
        size = len(self)
        if shuffle and size > 1:
            order: Sequence[int] = torch.randperm(size, generator=generator).tolist()
        else:
            order = range(size)
        for start in range(0, size, batch_size):
            batch = collate_examples([self[i] for i in order[start : start + batch_size]])
            yield transform(batch) if transform is not None else batch

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', size={len(self)})"


class InMemoryPartition(Partition):
    def __init__(self, name: str = "") -> None:
        super().__init__(name)
        self._examples: List[Example] = []
        self._ids: List[str] = []
        self._lengths: List[int] = []

    def add(self, example: Example, sample_id: str = "", length: Optional[int] = None) -> None:
        self._examples.append(example)
        self._ids.append(sample_id)
        if length is not None:
            self._lengths.append(int(length))

    def __len__(self) -> int:
        return len(self._examples)

    def __getitem__(self, index: int) -> Example:
        return self._examples[index]

    @property
    def ids(self) -> List[str]:
        return list(self._ids)

    @property
    def lengths(self) -> List[int]:
        return list(self._lengths)


class DbPartition(Partition):
    """Partition persisted in an :class:`LmdbStore`.

    Examples are encoded with safetensors on :meth:`add` and decoded on
    access. Positions index the store keys in their current order.
    """

    def __init__(self, store: LmdbStore, name: str = "") -> None:
        super().__init__(name or store.name)
        self.store = store

    @classmethod
    def create(
        cls,
        path: str | os.PathLike[str],
        name: str = "",
        *,
        map_size: int = 1 << 30,
    ) -> "DbPartition":
        return cls(LmdbStore(path, write=True, map_size=map_size, name=name), name)

    @classmethod
    def open(cls, path: str | os.PathLike[str], name: str = "") -> "DbPartition":
        return cls(LmdbStore(path, write=False, name=name), name)

    @property
    def path(self) -> Path:
        return self.store.path

    def add(self, example: Example, sample_id: str = "", length: Optional[int] = None) -> None:
        self.store.add(
            encode_tensors(example.data), encode_tensors(example.target), sample_id, length
        )

    def __len__(self) -> int:
        return len(self.store)

    def _decode(self, key: int) -> Example:
        data, target, _ = self.store.get(key)
        return Example(tuple(decode_tensors(data)), tuple(decode_tensors(target)))

    def __getitem__(self, index: int) -> Example:
        return self._decode(self.store.key_at(index))

    def batches(
        self,
        batch_size: int,
        *,
        shuffle: bool = False,
        generator: Optional[torch.Generator] = None,
        transform: Optional[BatchTransform] = None,
    ) -> Iterator[LabeledBatch]:
        keys = self.store.keys()
        if batch_size <= 0:
            raise BadParameterError(f"batch size must be positive, got {batch_size}")
        if shuffle and len(keys) > 1:
            keys = [keys[i] for i in torch.randperm(len(keys), generator=generator).tolist()]
        for start in range(0, len(keys), batch_size):
            batch = collate_examples([self._decode(key) for key in keys[start : start + batch_size]])
            yield transform(batch) if transform is not None else batch

    @property
    def ids(self) -> List[str]:
        return [self.store.get(key)[2] for key in self.store.keys()]

    @property
    def lengths(self) -> List[int]:
        return self.store.lengths()

    @property
    def finalized(self) -> bool:
        return self.store.finalized

    def finalize(self, build_id: str) -> None:
        if not self.store.finalized:
            self.store.finalize(build_id)

    def close(self) -> None:
        self.store.close()

    def destroy(self) -> None:
        self.store.destroy()


class PartitionSet:
    """Ordered collection of named test partitions."""

    def __init__(self, partitions: Optional[Sequence[Partition]] = None) -> None:
        self._partitions: List[Partition] = list(partitions or ())

    def append(self, partition: Partition) -> None:
        if partition.name in self.names:
            raise BadParameterError(f"duplicate test partition name '{partition.name}'")
        self._partitions.append(partition)

    @property
    def names(self) -> List[str]:
        return [p.name for p in self._partitions]

    @property
    def sizes(self) -> Dict[str, int]:
        return {p.name: len(p) for p in self._partitions}

    def has_data(self) -> bool:
        return any(len(p) > 0 for p in self._partitions)

    def finalize(self, build_id: str) -> None:
        for partition in self._partitions:
            partition.finalize(build_id)

    def __getitem__(self, index: int) -> Partition:
        return self._partitions[index]

    def __len__(self) -> int:
        return len(self._partitions)

    def __iter__(self) -> Iterator[Partition]:
        return iter(self._partitions)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.sizes})"
