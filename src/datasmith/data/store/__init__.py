"""Out-of-core dataset storage backed by LMDB."""

from .codec import decode_tensors, encode_tensors
from .layout import TRAIN_DB, DbLayout, test_db_name
from .lmdb_store import LmdbStore, StoreMeta

__all__ = [
    "DbLayout",
    "LmdbStore",
    "StoreMeta",
    "TRAIN_DB",
    "decode_tensors",
    "encode_tensors",
    "test_db_name",
]
