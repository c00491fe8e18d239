from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional, Sequence

from .lmdb_store import LmdbStore, StoreMeta

__all__ = ["DbLayout", "TRAIN_DB", "test_db_name"]

LOGGER = logging.getLogger(__name__)

TRAIN_DB = "train.db"


def test_db_name(index: int) -> str:
    return f"test_{int(index)}.db"


class DbLayout:
    """Paths of the stores forming one dataset identity under a repository.

    ``<repo>/train.db`` holds the training partition and ``<repo>/test_<i>.db``
    the ``i``-th named test partition. The stores are created, finalized and
    destroyed together.
    """

    def __init__(
        self,
        repo: str | os.PathLike[str],
        test_names: Sequence[str],
        *,
        train_path: Optional[str | os.PathLike[str]] = None,
    ) -> None:
        self.repo = Path(repo)
        self.test_names: List[str] = list(test_names)
        self.train_path = Path(train_path) if train_path is not None else self.repo / TRAIN_DB

    def test_path(self, index: int) -> Path:
        return self.repo / test_db_name(index)

    @property
    def test_paths(self) -> List[Path]:
        return [self.test_path(i) for i in range(len(self.test_names))]

    def train_meta(self) -> Optional[StoreMeta]:
        return LmdbStore.read_meta(self.train_path)

    def test_metas(self) -> List[Optional[StoreMeta]]:
        return [LmdbStore.read_meta(path) for path in self.test_paths]

    def destroy(self) -> None:
        """Remove every store of the layout, including stale extra test stores."""

        paths = [self.train_path, *self.test_paths]
        if self.repo.is_dir():
            paths.extend(p for p in sorted(self.repo.glob("test_*.db")) if p not in paths)
        for path in paths:
            if path.exists():
                shutil.rmtree(path)
                LOGGER.info("Removed dataset store %s", path)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(repo='{self.repo}', tests={self.test_names})"
