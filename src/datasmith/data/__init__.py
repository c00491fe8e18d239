from .batch import (
    Example as Example,
    LabeledBatch as LabeledBatch,
    collate_examples as collate_examples,
)
from .correspondence import CorrespondenceTable as CorrespondenceTable
from .io import (
    is_db_dir as is_db_dir,
    read_csv_series as read_csv_series,
    read_image_file2file as read_image_file2file,
    read_image_folder as read_image_folder,
    read_image_list as read_image_list,
    read_image_text as read_image_text,
    read_text_corpus as read_text_corpus,
    shortname as shortname,
)
from .partition import (
    DbPartition as DbPartition,
    InMemoryPartition as InMemoryPartition,
    Partition as Partition,
    PartitionSet as PartitionSet,
)
from .records import (
    NO_TARGET as NO_TARGET,
    ImageLabelRecord as ImageLabelRecord,
    ImagePairRecord as ImagePairRecord,
    ImageTargetRecord as ImageTargetRecord,
    ImageTextRecord as ImageTextRecord,
    SequenceRecord as SequenceRecord,
    TextRecord as TextRecord,
)
from .split import (
    DbAction as DbAction,
    SplitSpec as SplitSpec,
    decide_db_action as decide_db_action,
    has_to_create_db as has_to_create_db,
    make_generator as make_generator,
    resplit_from_train as resplit_from_train,
    shuffle_records as shuffle_records,
    split as split,
    split_records as split_records,
)
from .store import DbLayout as DbLayout, LmdbStore as LmdbStore

__all__ = [
    "Example",
    "LabeledBatch",
    "collate_examples",
    "CorrespondenceTable",
    "is_db_dir",
    "read_csv_series",
    "read_image_file2file",
    "read_image_folder",
    "read_image_list",
    "read_image_text",
    "read_text_corpus",
    "shortname",
    "DbPartition",
    "InMemoryPartition",
    "Partition",
    "PartitionSet",
    "NO_TARGET",
    "ImageLabelRecord",
    "ImagePairRecord",
    "ImageTargetRecord",
    "ImageTextRecord",
    "SequenceRecord",
    "TextRecord",
    "DbAction",
    "SplitSpec",
    "decide_db_action",
    "has_to_create_db",
    "make_generator",
    "resplit_from_train",
    "shuffle_records",
    "split",
    "split_records",
    "DbLayout",
    "LmdbStore",
]
