"""datasmith package public exports."""

from __future__ import annotations

from . import data, pipeline
from .config import InputConfig, MaskedLMParams
from .data import (
    CorrespondenceTable,
    DbAction,
    DbLayout,
    DbPartition,
    Example,
    InMemoryPartition,
    LabeledBatch,
    LmdbStore,
    PartitionSet,
    SplitSpec,
    decide_db_action,
    has_to_create_db,
    make_generator,
    split,
)
from .errors import (
    BadParameterError,
    BuildReport,
    DataQualityIssue,
    DatasmithError,
    IOFailureError,
)
from .pipeline import (
    BuiltDataset,
    DatasetBuilder,
    ImageSource,
    RawInputSource,
    TextSource,
    TimeSeriesSource,
    build_dataset,
    make_source,
)

__all__: tuple[str, ...] = (
    "data",
    "pipeline",
    "InputConfig",
    "MaskedLMParams",
    "CorrespondenceTable",
    "DbAction",
    "DbLayout",
    "DbPartition",
    "Example",
    "InMemoryPartition",
    "LabeledBatch",
    "LmdbStore",
    "PartitionSet",
    "SplitSpec",
    "decide_db_action",
    "has_to_create_db",
    "make_generator",
    "split",
    "BadParameterError",
    "BuildReport",
    "DataQualityIssue",
    "DatasmithError",
    "IOFailureError",
    "BuiltDataset",
    "DatasetBuilder",
    "ImageSource",
    "RawInputSource",
    "TextSource",
    "TimeSeriesSource",
    "build_dataset",
    "make_source",
)
