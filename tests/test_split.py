from __future__ import annotations

from collections import Counter

import pytest
import torch

from datasmith.data.split import SplitSpec, make_generator, shuffle_records, split, split_records
from datasmith.errors import BadParameterError


@pytest.mark.parametrize("size,fraction", [(0, 0.3), (1, 0.5), (10, 0.2), (17, 0.35), (100, 0.0)])
def test_split_is_disjoint_exhaustive_and_sized(size: int, fraction: float) -> None:
    records = [f"r{i}" for i in range(size)] + ["dup", "dup"]

    train, test = split(records, SplitSpec(fraction, seed=11))

    assert Counter(train) + Counter(test) == Counter(records)
    assert len(test) == int(len(records) * fraction)


def test_split_is_deterministic_for_equal_seeds() -> None:
    records = list(range(50))

    first = split(records, SplitSpec(0.2, seed=5))
    second = split(records, SplitSpec(0.2, seed=5))
    other = split(records, SplitSpec(0.2, seed=6))

    assert first == second
    assert first != other
    assert records == list(range(50))


def test_split_without_shuffle_takes_the_tail() -> None:
    train, test = split_records(list(range(10)), 0.2)

    assert train == list(range(8))
    assert test == [8, 9]


def test_shuffle_records_permutes_in_place() -> None:
    records = list(range(20))

    result = shuffle_records(records, make_generator(0))

    assert result is records
    assert sorted(records) == list(range(20))
    assert records != list(range(20))


def test_unseeded_generators_differ() -> None:
    a = torch.randint(1 << 30, (4,), generator=make_generator(None))
    b = torch.randint(1 << 30, (4,), generator=make_generator(-1))

    assert not torch.equal(a, b)


@pytest.mark.parametrize("fraction", [-0.1, 1.0])
def test_invalid_fractions_raise(fraction: float) -> None:
    with pytest.raises(BadParameterError):
        SplitSpec(fraction)
    with pytest.raises(BadParameterError):
        split_records([1, 2, 3], fraction)
