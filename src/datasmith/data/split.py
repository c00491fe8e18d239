"""Reproducible shuffling, train/test splitting and the store rebuild decision."""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import List, MutableSequence, Optional, Sequence, Tuple, TypeVar

import torch

from ..errors import BadParameterError
from .store import DbLayout, LmdbStore

__all__ = [
    "SplitSpec",
    "DbAction",
    "make_generator",
    "shuffle_records",
    "split_records",
    "split",
    "decide_db_action",
    "has_to_create_db",
    "resplit_from_train",
]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SplitSpec:
    test_fraction: float = 0.0
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0.0 <= float(self.test_fraction) < 1.0:
            raise BadParameterError(f"test fraction must lie in [0, 1), got {self.test_fraction}")


def make_generator(seed: Optional[int] = None) -> torch.Generator:
    """Create the generator threaded through one build.

    ``None`` or a negative seed draws the seed from OS entropy, so the build
    is not reproducible.
    """

    generator = torch.Generator()
    if seed is None or seed < 0:
        generator.seed()
    else:
        generator.manual_seed(int(seed))
    return generator


def shuffle_records(records: MutableSequence[T], generator: torch.Generator) -> MutableSequence[T]:
    """Permute ``records`` in place and return it."""

    if len(records) > 1:
        order = torch.randperm(len(records), generator=generator).tolist()
        records[:] = [records[i] for i in order]
    return records


def split_records(records: Sequence[T], test_fraction: float) -> Tuple[List[T], List[T]]:
    """Keep the head for training and move the last ``floor(N * f)`` records to test."""

    if not 0.0 <= float(test_fraction) < 1.0:
        raise BadParameterError(f"test fraction must lie in [0, 1), got {test_fraction}")
    ntest = int(math.floor(len(records) * float(test_fraction)))
    split_pos = len(records) - ntest
    train, test = list(records[:split_pos]), list(records[split_pos:])
    LOGGER.info("data split test size=%d / remaining data size=%d", len(test), len(train))
    return train, test


def split(
    records: Sequence[T],
    spec: SplitSpec,
    *,
    shuffle: bool = True,
    generator: Optional[torch.Generator] = None,
) -> Tuple[List[T], List[T]]:
    """Optionally shuffle a copy of ``records`` then split it by index."""

    items = list(records)
    if shuffle:
        shuffle_records(items, generator if generator is not None else make_generator(spec.seed))
    return split_records(items, spec.test_fraction)


class DbAction(enum.Enum):
    SKIP = "skip"
    REBUILD = "rebuild"
    RESPLIT = "resplit"
    REUSE = "reuse"


def decide_db_action(
    layout: DbLayout,
    *,
    test_split: float,
    explicit_tests: bool,
    raw_available: bool = True,
) -> DbAction:
    """Decide whether the stores of ``layout`` can be reused.

    Parameters
    ----------
    layout:
        Train and named test store locations of the dataset. A test store
        holding a partition of another name is rebuilt.
    test_split:
        Requested fraction for the automatic test split.
    explicit_tests:
        Whether test partitions come from explicit test sources. Missing
        explicit test stores can only be rebuilt from raw data.
    raw_available:
        ``False`` when there is no raw data to build from; the stores are then
        used as they are.

    Returns
    -------
    DbAction
        ``SKIP``, ``REBUILD``, ``RESPLIT`` or ``REUSE``.

    Raises
    ------
    BadParameterError
        When finalized stores of the layout carry different build markers, or
        when there is nothing to build from and no usable training store.
    """

    train = layout.train_meta()
    if not raw_available:
        if train is None or not train.finalized:
            raise BadParameterError(
                f"no raw data to build from and no finalized dataset store at {layout.train_path}"
            )
        return DbAction.SKIP

    if train is None:
        return DbAction.REBUILD
    if not train.finalized:
        LOGGER.warning("db %s is not finalized, rebuilding it", layout.train_path)
        return DbAction.REBUILD
    LOGGER.warning("db %s already exists, not rebuilding it", layout.train_path)

    missing = False
    for name, path, meta in zip(layout.test_names, layout.test_paths, layout.test_metas()):
        if meta is None or not meta.finalized:
            missing = True
            continue
        if meta.build_id != train.build_id:
            raise BadParameterError(
                f"test db {name} ({path}) does not belong to train db {layout.train_path}: "
                "remove all dbs for clean rebuild"
            )
        if meta.name != name:
            LOGGER.warning(
                "test db %s holds partition '%s' instead of '%s', rebuilding", path, meta.name, name
            )
            return DbAction.REBUILD
        LOGGER.warning("test db %s already exists as %s, not rebuilding it", name, path)

    if not missing:
        return DbAction.REUSE
    if explicit_tests:
        return DbAction.REBUILD
    if test_split > 0.0:
        return DbAction.RESPLIT
    return DbAction.REUSE


def has_to_create_db(
    layout: DbLayout,
    *,
    test_split: float,
    explicit_tests: bool,
    raw_available: bool = True,
) -> bool:
    """``True`` when the stores must be rebuilt from raw data."""

    action = decide_db_action(
        layout,
        test_split=test_split,
        explicit_tests=explicit_tests,
        raw_available=raw_available,
    )
    return action is DbAction.REBUILD


def resplit_from_train(
    train: LmdbStore,
    test: LmdbStore,
    test_split: float,
    generator: torch.Generator,
) -> int:
    """Move ``floor(len(train) * test_split)`` random entries into ``test``.

    The training store is unfinalized for the duration of the move and sealed
    again, under its original build marker, only after ``test`` has been
    finalized. An interrupted move therefore leaves an unfinalized training
    store, which forces a full rebuild on the next invocation instead of a
    second sampling pass.
    """

    build_id = train.build_id
    ntest = int(math.floor(len(train) * float(test_split)))
    LOGGER.info("splitting : using %s of dataset as test set (%d entries)", test_split, ntest)
    train.unfinalize()
    for _ in range(ntest):
        key, data, target, sample_id, length = train.pop_random(generator)
        test.put(key, data, target, sample_id, length)
    test.finalize(build_id)
    train.finalize(build_id)
    return ntest
