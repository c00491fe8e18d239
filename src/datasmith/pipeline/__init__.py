from .builder import (
    SPLIT_NAME as SPLIT_NAME,
    BuiltDataset as BuiltDataset,
    DatasetBuilder as DatasetBuilder,
    build_dataset as build_dataset,
)
from .sources import (
    Encoded as Encoded,
    ImageSource as ImageSource,
    RawInputSource as RawInputSource,
    TextSource as TextSource,
    TimeSeriesSource as TimeSeriesSource,
    make_source as make_source,
)

__all__ = [
    "SPLIT_NAME",
    "BuiltDataset",
    "DatasetBuilder",
    "build_dataset",
    "Encoded",
    "ImageSource",
    "RawInputSource",
    "TextSource",
    "TimeSeriesSource",
    "make_source",
]
