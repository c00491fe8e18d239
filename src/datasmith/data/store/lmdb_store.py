from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import lmdb
import torch

from ...errors import BadParameterError, IOFailureError

__all__ = ["LmdbStore", "StoreMeta"]

LOGGER = logging.getLogger(__name__)

_DATA = b"data"
_TARGET = b"target"
_IDS = b"ids"
_LENGTHS = b"lengths"
_META = b"meta"
_SUBDBS = (_DATA, _TARGET, _IDS, _LENGTHS, _META)

_FINALIZED = b"finalized"
_BUILD_ID = b"build_id"
_NEXT_KEY = b"next_key"
_NAME = b"name"


def _key_bytes(key: int) -> bytes:
    if key < 0:
        raise ValueError(f"store keys must be non-negative, got {key}")
    return int(key).to_bytes(8, "big")


def _key_int(raw: bytes) -> int:
    return int.from_bytes(raw, "big")


@dataclass(frozen=True)
class StoreMeta:
    finalized: bool
    build_id: str
    name: str
    count: int


class LmdbStore:
    """Append-only keyed store holding one logical partition on disk.

    Each entry is ``key -> (data blob, target blob, sample id)`` plus an
    optional sequence length. Keys are
    integers assigned in insertion order. Writes are buffered and committed
    every ``commit_interval`` operations; a full memory map is grown and the
    commit retried. Once :meth:`finalize` has run the store is sealed and
    reopened read-only.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        write: bool = False,
        map_size: int = 1 << 30,
        commit_interval: int = 1000,
        name: str = "",
    ) -> None:
        self.path = Path(path)
        self.map_size = int(map_size)
        self.commit_interval = max(int(commit_interval), 1)
        self._name = name
        self._env: Optional[lmdb.Environment] = None
        self._dbs: Dict[bytes, object] = {}
        self._write = False
        self._pending: List[Tuple[bytes, bytes, Optional[bytes]]] = []
        self._keys: List[int] = []
        self._lengths: Dict[int, int] = {}
        self._key_cache: Optional[Set[int]] = None
        self._next_key = 0
        self._finalized = False
        self._build_id = ""
        self.reset(write=write)

    # ------------------------------------------------------------------
    # Environment handling
    # ------------------------------------------------------------------

    @staticmethod
    def exists(path: str | os.PathLike[str]) -> bool:
        candidate = Path(path)
        return candidate.is_dir() and (candidate / "data.mdb").is_file()

    @classmethod
    def read_meta(cls, path: str | os.PathLike[str]) -> Optional[StoreMeta]:
        """Return the metadata of the store at ``path`` or ``None`` if absent."""

        if not cls.exists(path):
            return None
        store = cls(path, write=False)
        try:
            return store.meta
        finally:
            store.close()

    def reset(self, write: bool = False) -> None:
        """(Re)open the environment for reading, or for appending when ``write``."""

        self.close()
        if write:
            self.path.mkdir(parents=True, exist_ok=True)
        elif not self.exists(self.path):
            raise IOFailureError(f"dataset store {self.path} does not exist")

        try:
            self._env = lmdb.open(
                str(self.path),
                map_size=self.map_size,
                subdir=True,
                readonly=not write,
                lock=write,
                max_dbs=len(_SUBDBS),
            )
            self._dbs = {name: self._env.open_db(name, create=write) for name in _SUBDBS}
        except lmdb.Error as exc:
            self._env = None
            raise IOFailureError(f"cannot open dataset store {self.path}: {exc}") from exc
        self._write = write
        self._load_state()

    def _load_state(self) -> None:
        if self._env is None:
            raise IOFailureError(f"dataset store {self.path} is closed")
        with self._env.begin(write=False) as txn:
            cursor = txn.cursor(db=self._dbs[_DATA])
            self._keys = [_key_int(k) for k in cursor.iternext(keys=True, values=False)]
            cursor = txn.cursor(db=self._dbs[_LENGTHS])
            self._lengths = {
                _key_int(k): _key_int(v) for k, v in cursor.iternext(keys=True, values=True)
            }
            finalized = txn.get(_FINALIZED, db=self._dbs[_META])
            build_id = txn.get(_BUILD_ID, db=self._dbs[_META])
            next_key = txn.get(_NEXT_KEY, db=self._dbs[_META])
            name = txn.get(_NAME, db=self._dbs[_META])
        self._key_cache = None
        self._finalized = finalized == b"1"
        self._build_id = build_id.decode("utf-8") if build_id else ""
        if name and not self._name:
            self._name = name.decode("utf-8")
        stored_next = _key_int(next_key) if next_key else 0
        self._next_key = max(stored_next, (self._keys[-1] + 1) if self._keys else 0)

    def close(self) -> None:
        if self._env is None:
            return
        if self._write:
            self._flush()
            self._env.sync(True)
        self._env.close()
        self._env = None
        self._dbs = {}

    def destroy(self) -> None:
        """Close and delete the store directory."""

        self._pending.clear()
        self._write = False
        self.close()
        if self.path.exists():
            shutil.rmtree(self.path)
            LOGGER.info("Removed dataset store %s", self.path)
        self._keys = []
        self._lengths = {}
        self._key_cache = None
        self._next_key = 0
        self._finalized = False
        self._build_id = ""

    def __enter__(self) -> "LmdbStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _require_writable(self) -> None:
        if self._env is None:
            raise IOFailureError(f"dataset store {self.path} is closed")
        if self._finalized:
            raise BadParameterError(f"dataset store {self.path} is finalized")
        if not self._write:
            raise BadParameterError(f"dataset store {self.path} is open read-only")

    def _flush(self) -> None:
        if not self._pending or self._env is None:
            return
        while True:
            try:
                with self._env.begin(write=True) as txn:
                    for db_name, key, value in self._pending:
                        db = self._dbs[db_name]
                        if value is None:
                            txn.delete(key, db=db)
                        else:
                            txn.put(key, value, db=db)
                break
            except lmdb.MapFullError:
                self.map_size *= 2
                LOGGER.info("Growing map size of %s to %d bytes", self.path, self.map_size)
                self._env.set_mapsize(self.map_size)
        self._pending.clear()

    def _queue(self, db_name: bytes, key: bytes, value: Optional[bytes]) -> None:
        self._pending.append((db_name, key, value))
        if len(self._pending) >= self.commit_interval:
            self._flush()

    def put(
        self,
        key: int,
        data: bytes,
        target: bytes,
        sample_id: str = "",
        length: Optional[int] = None,
    ) -> None:
        self._require_writable()
        raw = _key_bytes(key)
        present = self._key_set()
        if key not in present:
            self._keys.append(int(key))
            present.add(int(key))
        self._next_key = max(self._next_key, int(key) + 1)
        self._queue(_DATA, raw, bytes(data))
        self._queue(_TARGET, raw, bytes(target))
        self._queue(_IDS, raw, sample_id.encode("utf-8"))
        if length is not None:
            self._lengths[int(key)] = int(length)
            self._queue(_LENGTHS, raw, _key_bytes(int(length)))

    def add(
        self,
        data: bytes,
        target: bytes,
        sample_id: str = "",
        length: Optional[int] = None,
    ) -> int:
        """Append an entry under the next free key and return that key."""

        key = self._next_key
        self.put(key, data, target, sample_id, length)
        return key

    def _key_set(self) -> Set[int]:
        if self._key_cache is None:
            self._key_cache = set(self._keys)
        return self._key_cache

    def pop_random(
        self, generator: torch.Generator
    ) -> Tuple[int, bytes, bytes, str, Optional[int]]:
        """Remove and return ``(key, data, target, sample_id, length)`` chosen uniformly."""

        self._require_writable()
        if not self._keys:
            raise IndexError(f"pop from empty dataset store {self.path}")
        pos = int(torch.randint(len(self._keys), (1,), generator=generator).item())
        key = self._keys[pos]
        data, target, sample_id = self.get(key)
        self._keys[pos] = self._keys[-1]
        self._keys.pop()
        self._key_set().discard(key)
        length = self._lengths.pop(key, None)
        raw = _key_bytes(key)
        for db_name in (_DATA, _TARGET, _IDS):
            self._queue(db_name, raw, None)
        if length is not None:
            self._queue(_LENGTHS, raw, None)
        return key, data, target, sample_id, length

    def finalize(self, build_id: str) -> None:
        """Seal the store under ``build_id`` and reopen it read-only."""

        self._require_writable()
        self._queue(_META, _BUILD_ID, build_id.encode("utf-8"))
        self._queue(_META, _NEXT_KEY, _key_bytes(self._next_key))
        self._queue(_META, _NAME, self._name.encode("utf-8"))
        self._queue(_META, _FINALIZED, b"1")
        self._flush()
        LOGGER.info("Finalized dataset store %s with %d entries", self.path, len(self._keys))
        self.reset(write=False)

    def unfinalize(self) -> None:
        """Reopen a sealed store for appending; it must be finalized again."""

        self.reset(write=True)
        self._finalized = False
        self._queue(_META, _FINALIZED, b"0")
        self._flush()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: int) -> Tuple[bytes, bytes, str]:
        if self._env is None:
            raise IOFailureError(f"dataset store {self.path} is closed")
        if self._write:
            self._flush()
        raw = _key_bytes(key)
        with self._env.begin(write=False) as txn:
            data = txn.get(raw, db=self._dbs[_DATA])
            target = txn.get(raw, db=self._dbs[_TARGET])
            sample_id = txn.get(raw, db=self._dbs[_IDS])
        if data is None:
            raise KeyError(f"key {key} not in dataset store {self.path}")
        return bytes(data), bytes(target or b""), (sample_id or b"").decode("utf-8")

    def keys(self) -> List[int]:
        return list(self._keys)

    def key_at(self, position: int) -> int:
        return self._keys[position]

    def length(self, key: int) -> Optional[int]:
        return self._lengths.get(key)

    def lengths(self) -> List[int]:
        """Recorded sequence lengths in key order; entries without one are left out."""

        return [self._lengths[key] for key in self._keys if key in self._lengths]

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def name(self) -> str:
        return self._name

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def build_id(self) -> str:
        return self._build_id

    @property
    def writable(self) -> bool:
        return self._write and not self._finalized

    @property
    def meta(self) -> StoreMeta:
        return StoreMeta(
            finalized=self._finalized,
            build_id=self._build_id,
            name=self._name,
            count=len(self._keys),
        )

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(path='{self.path}', entries={len(self)}, "
            f"finalized={self._finalized})"
        )
