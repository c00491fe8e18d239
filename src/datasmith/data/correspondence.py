"""Bidirectional name <-> index tables persisted as ``index name`` lines."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from ..errors import BadParameterError, IOFailureError

__all__ = ["CorrespondenceTable"]

LOGGER = logging.getLogger(__name__)


class CorrespondenceTable:
    """Ordered mapping between symbolic names and integer indices.

    Used for class names (image/text folders), OCR alphabets (index 0 is the
    CTC blank, stored with an empty name) and vocabularies. A table grows
    only through :meth:`add` and becomes immutable after :meth:`freeze`.
    """

    def __init__(self, entries: Optional[Iterable[Tuple[int, str]]] = None) -> None:
        self._by_index: Dict[int, str] = {}
        self._by_name: Dict[str, int] = {}
        self._frozen = False
        for index, name in entries or ():
            self._insert(int(index), name)

    def _insert(self, index: int, name: str) -> None:
        if index in self._by_index:
            raise BadParameterError(f"duplicate index {index} in correspondence table")
        if name in self._by_name:
            raise BadParameterError(f"duplicate name '{name}' in correspondence table")
        self._by_index[index] = name
        self._by_name[name] = index

    def add(self, name: str) -> int:
        """Return the index of ``name``, allocating the next one if unseen."""

        index = self._by_name.get(name)
        if index is not None:
            return index
        if self._frozen:
            raise BadParameterError(f"cannot add '{name}' to a frozen correspondence table")
        index = self.next_index
        self._insert(index, name)
        return index

    def freeze(self) -> "CorrespondenceTable":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def next_index(self) -> int:
        return max(self._by_index) + 1 if self._by_index else 0

    def index(self, name: str) -> int:
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"'{name}' is not in the correspondence table") from None

    def get(self, name: str, default: Optional[int] = None) -> Optional[int]:
        return self._by_name.get(name, default)

    def name(self, index: int) -> str:
        return self._by_index[int(index)]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._by_index)

    def __iter__(self) -> Iterator[Tuple[int, str]]:
        return iter(self.items())

    def items(self) -> List[Tuple[int, str]]:
        return sorted(self._by_index.items())

    def names(self) -> List[str]:
        return [name for _, name in self.items()]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CorrespondenceTable):
            return NotImplemented
        return self._by_index == other._by_index

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(size={len(self)}, frozen={self._frozen})"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: str | os.PathLike[str]) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8", newline="\n") as handle:
            for index, name in self.items():
                handle.write(f"{index} {name}\n")
        tmp_path.replace(target)
        LOGGER.info("Wrote %d correspondence entries to %s", len(self), target)

    def save_token_list(self, path: str | os.PathLike[str]) -> None:
        """Write names one per line; only valid when indices are ``0..n-1``."""

        if [index for index, _ in self.items()] != list(range(len(self))):
            raise BadParameterError("token lists require contiguous indices starting at 0")
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text("".join(f"{name}\n" for name in self.names()), encoding="utf-8")

    @classmethod
    def load(cls, path: str | os.PathLike[str]) -> "CorrespondenceTable":
        """Load ``index name`` lines. The name is everything after the first space."""

        source = Path(path)
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as exc:
            raise IOFailureError(f"cannot read correspondence file {source}: {exc}") from exc

        entries: List[Tuple[int, str]] = []
        for line_num, line in enumerate(text.split("\n"), start=1):
            line = line.rstrip("\r")
            if not line:
                continue
            index_str, sep, name = line.partition(" ")
            if not sep:
                raise BadParameterError(
                    f"{source}:{line_num}: expected 'index name', got {line!r}"
                )
            try:
                index = int(index_str)
            except ValueError:
                raise BadParameterError(
                    f"{source}:{line_num}: invalid index {index_str!r}"
                ) from None
            entries.append((index, name))
        return cls(entries).freeze()

    @classmethod
    def from_tokens(cls, tokens: Iterable[str]) -> "CorrespondenceTable":
        """Build a table whose indices are token positions."""

        table = cls()
        for token in tokens:
            if token in table:
                LOGGER.debug("Duplicate token %r ignored", token)
                continue
            table._insert(table.next_index, token)
        return table

    @classmethod
    def load_token_list(cls, path: str | os.PathLike[str]) -> "CorrespondenceTable":
        """Load a one-token-per-line vocabulary (``vocab.txt`` style)."""

        source = Path(path)
        try:
            lines = source.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise IOFailureError(f"cannot read vocabulary {source}: {exc}") from exc
        table = cls()
        for position, token in enumerate(lines):
            token = token.rstrip("\r")
            if token in table:
                LOGGER.debug("Duplicate token %r at line %d ignored", token, position + 1)
                continue
            table._insert(position, token)
        return table.freeze()
