"""Assemble train and test partitions from raw inputs or persisted stores."""

from __future__ import annotations

import logging
import shutil
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import torch

from ..config import InputConfig
from ..data.batch import LabeledBatch, collate_examples
from ..data.correspondence import CorrespondenceTable
from ..data.io import is_db_dir, shortname
from ..data.partition import (
    BatchTransform,
    DbPartition,
    InMemoryPartition,
    Partition,
    PartitionSet,
)
from ..data.records import Record
from ..data.split import (
    DbAction,
    decide_db_action,
    make_generator,
    resplit_from_train,
    shuffle_records,
    split_records,
)
from ..data.store import DbLayout, LmdbStore
from ..errors import BadParameterError, BuildReport
from .sources import RawInputSource, make_source

__all__ = ["BuiltDataset", "DatasetBuilder", "SPLIT_NAME", "build_dataset"]

LOGGER = logging.getLogger(__name__)

SPLIT_NAME = "split"


@dataclass
class BuiltDataset:
    """Result of one build.

    ``train`` holds the training partition, or the prediction inputs when the
    configuration is not in training mode.
    """

    train: Partition
    tests: PartitionSet
    correspondence: CorrespondenceTable
    generator: torch.Generator
    report: BuildReport = field(default_factory=BuildReport)
    action: Optional[DbAction] = None
    transform: Optional[BatchTransform] = None

    def train_batches(self, batch_size: int, *, shuffle: bool = True):
        """Iterate training batches; masked-LM corruption is applied when configured."""

        return self.train.batches(
            batch_size,
            shuffle=shuffle,
            generator=self.generator,
            transform=self.transform,
        )

    def test_batches(self, index: int, batch_size: int):
        return self.tests[index].batches(batch_size, shuffle=False)

    def input_example(self, device: torch.device | str = "cpu") -> LabeledBatch:
        """A batch of one training example, e.g. for tracing a model."""

        if len(self.train) == 0:
            raise BadParameterError("cannot build an input example from an empty dataset")
        return collate_examples([self.train[0]]).to(device)

    def close(self) -> None:
        for partition in (self.train, *self.tests):
            if isinstance(partition, DbPartition):
                partition.close()


class DatasetBuilder:
    """Drive one source through store detection, reading, splitting and encoding.

    The first URI is the training source, the remaining ones are explicit
    test sources. With ``config.db`` the partitions are persisted under
    ``config.model_repo`` and reused on later invocations when possible.
    """

    def __init__(
        self,
        source: RawInputSource,
        config: InputConfig,
        *,
        report: Optional[BuildReport] = None,
    ) -> None:
        self.source = source
        self.config = config
        self.report = report if report is not None else source.report

    # ------------------------------------------------------------------

    def build(self, uris: Sequence[str]) -> BuiltDataset:
        uris = [str(u) for u in uris]
        generator = make_generator(self.config.seed)
        if not self.config.train:
            return self._build_predict(uris, generator)
        if self.config.db:
            return self._build_db(uris, generator)
        if not uris:
            raise BadParameterError("no training data given")
        return self._build_in_memory(uris, generator)

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _test_names(self, uris: Sequence[str]) -> List[str]:
        names = [shortname(u) for u in uris[1:]]
        if not names and self.config.test_split > 0.0:
            names = [SPLIT_NAME]
        return names

    def _read(self, uris: Sequence[str], generator: torch.Generator) -> Tuple[List[Record], List[List[Record]]]:
        """READ_RAW, SHUFFLE and SPLIT stages."""

        train = self.source.read(uris[0], test=False)
        tests = [self.source.read(u, test=True) for u in uris[1:]]
        if self.config.shuffle:
            shuffle_records(train, generator)
        if self.config.test_split > 0.0 and not any(tests):
            train, split_test = split_records(train, self.config.test_split)
            tests = [split_test, *tests[1:]]
        return train, tests

    def _fill(self, partition: Partition, records: Sequence[Record], *, train_partition: bool) -> None:
        for record in records:
            for encoded in self.source.encode(record, train_partition=train_partition):
                partition.add(encoded.example, encoded.sample_id, encoded.length)
        LOGGER.info("Partition %s: %d example(s)", partition.name, len(partition))

    def _encode_all(
        self,
        train_records: Sequence[Record],
        test_records: Sequence[Sequence[Record]],
        make_partition: Callable[[int, str], Partition],
        names: Sequence[str],
        train: Partition,
    ) -> PartitionSet:
        self.source.prepare(train_records)
        self._fill(train, train_records, train_partition=True)
        tests = PartitionSet()
        for index, name in enumerate(names):
            partition = make_partition(index, name)
            tests.append(partition)
            records = test_records[index] if index < len(test_records) else []
            self._fill(partition, records, train_partition=False)
        self.source.correspondence.freeze()
        return tests

    def _finish(
        self,
        train: Partition,
        tests: PartitionSet,
        generator: torch.Generator,
        action: Optional[DbAction],
    ) -> BuiltDataset:
        self.report.action = action.value if action is not None else "memory"
        self.report.sizes = {"train": len(train), **tests.sizes}
        LOGGER.info("Dataset ready: %s", self.report.sizes)
        return BuiltDataset(
            train=train,
            tests=tests,
            correspondence=self.source.correspondence,
            generator=generator,
            report=self.report,
            action=action,
            transform=self.source.train_transform(generator) if self.config.train else None,
        )

    # ------------------------------------------------------------------
    # In-memory and prediction builds
    # ------------------------------------------------------------------

    def _build_in_memory(self, uris: Sequence[str], generator: torch.Generator) -> BuiltDataset:
        train_records, test_records = self._read(uris, generator)
        train = InMemoryPartition("train")
        tests = self._encode_all(
            train_records,
            test_records,
            lambda _index, name: InMemoryPartition(name),
            self._test_names(uris),
            train,
        )
        self.source.save_correspondence(self.config.corresp_path)
        return self._finish(train, tests, generator, None)

    def _build_predict(self, uris: Sequence[str], generator: torch.Generator) -> BuiltDataset:
        if not uris:
            raise BadParameterError("no prediction data given")
        self.source.load_correspondence(self.config.corresp_path)
        records = self.source.read_predict(uris)
        self.source.prepare(records)
        inputs = InMemoryPartition("predict")
        self._fill(inputs, records, train_partition=False)
        return self._finish(inputs, PartitionSet(), generator, None)

    # ------------------------------------------------------------------
    # Store-backed builds
    # ------------------------------------------------------------------

    def _build_db(self, uris: Sequence[str], generator: torch.Generator) -> BuiltDataset:
        raw_available = bool(uris) and not is_db_dir(uris[0])
        if raw_available:
            layout = DbLayout(self.config.repo, self._test_names(uris))
        else:
            # test stores are looked up next to an explicitly given train store
            repo = Path(uris[0]).parent if uris else self.config.repo
            layout = DbLayout(repo, [], train_path=uris[0] if uris else None)

        action = decide_db_action(
            layout,
            test_split=self.config.test_split,
            explicit_tests=len(uris) > 1,
            raw_available=raw_available,
        )
        LOGGER.info("Dataset store action: %s", action.value)
        if action is DbAction.REBUILD:
            return self._rebuild(uris, layout, generator)
        if action is DbAction.RESPLIT:
            return self._resplit(layout, generator)
        return self._reuse(layout, generator, action)

    def _load_existing_correspondence(self) -> None:
        loaded = self.source.load_correspondence(self.config.corresp_path)
        if not loaded and self.config.connector == "image" and self.config.ctc:
            raise BadParameterError(
                "found db but no valid corresp file, remove the db to rebuild it"
            )

    def _rebuild(self, uris: Sequence[str], layout: DbLayout, generator: torch.Generator) -> BuiltDataset:
        layout.destroy()
        map_size = self.config.db_map_size
        train = DbPartition.create(layout.train_path, "train", map_size=map_size)
        partitions: List[DbPartition] = [train]

        def make_partition(index: int, name: str) -> Partition:
            partition = DbPartition.create(layout.test_path(index), name, map_size=map_size)
            partitions.append(partition)
            return partition

        try:
            train_records, test_records = self._read(uris, generator)
            tests = self._encode_all(train_records, test_records, make_partition, layout.test_names, train)
            build_id = uuid.uuid4().hex
            # train is sealed last: an unfinalized train store forces a rebuild
            tests.finalize(build_id)
            train.finalize(build_id)
            self.source.save_correspondence(self.config.corresp_path)
        except BaseException:
            LOGGER.error("Dataset build failed, removing stores under %s", layout.repo)
            for partition in partitions:
                partition.close()
            layout.destroy()
            raise
        return self._finish(train, tests, generator, DbAction.REBUILD)

    def _resplit(self, layout: DbLayout, generator: torch.Generator) -> BuiltDataset:
        self._load_existing_correspondence()
        train_store = LmdbStore(layout.train_path, write=False, map_size=self.config.db_map_size)
        test_path = layout.test_path(0)
        if test_path.exists():
            shutil.rmtree(test_path)
        test_store = LmdbStore(test_path, write=True, map_size=self.config.db_map_size, name=SPLIT_NAME)
        resplit_from_train(train_store, test_store, self.config.test_split, generator)
        train = DbPartition(train_store, "train")
        tests = PartitionSet([DbPartition(test_store, SPLIT_NAME)])
        return self._finish(train, tests, generator, DbAction.RESPLIT)

    def _reuse(self, layout: DbLayout, generator: torch.Generator, action: DbAction) -> BuiltDataset:
        self._load_existing_correspondence()
        train = DbPartition.open(layout.train_path, "train")
        tests = PartitionSet()
        if action is DbAction.SKIP:
            index = 0
            while LmdbStore.exists(layout.test_path(index)):
                partition = DbPartition.open(layout.test_path(index))
                if partition.store.build_id != train.store.build_id:
                    raise BadParameterError(
                        f"test db {partition.path} does not belong to train db {layout.train_path}: "
                        "remove all dbs for clean rebuild"
                    )
                if not partition.name:
                    partition.name = f"test_{index}"
                tests.append(partition)
                index += 1
        else:
            for name, path in zip(layout.test_names, layout.test_paths):
                if LmdbStore.exists(path):
                    tests.append(DbPartition.open(path, name))
        return self._finish(train, tests, generator, action)


def build_dataset(
    uris: Sequence[str],
    config: InputConfig,
    *,
    report: Optional[BuildReport] = None,
) -> BuiltDataset:
    """Build a dataset with the source matching ``config.connector``."""

    source = make_source(config, report)
    return DatasetBuilder(source, config).build(uris)
