from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..errors import BadParameterError, BuildReport, IOFailureError
from .correspondence import CorrespondenceTable
from .records import (
    NO_TARGET,
    ImageLabelRecord,
    ImagePairRecord,
    ImageTargetRecord,
    ImageTextRecord,
    SequenceRecord,
    TextRecord,
)

__all__ = [
    "shortname",
    "is_db_dir",
    "read_image_folder",
    "read_image_list",
    "read_image_file2file",
    "read_image_text",
    "read_text_corpus",
    "read_csv_series",
]

LOGGER = logging.getLogger(__name__)


def shortname(uri: str | os.PathLike[str]) -> str:
    """Return the last path component of ``uri`` (trailing separators ignored)."""

    name = Path(str(uri).rstrip("/\\")).name
    return name or str(uri)


def is_db_dir(path: str | os.PathLike[str]) -> bool:
    """Whether ``path`` is a directory holding an LMDB environment."""

    candidate = Path(path)
    return candidate.is_dir() and (candidate / "data.mdb").is_file()


def _visible(path: Path) -> bool:
    return not path.name.startswith(".")


def _subdirs(folder: Path) -> List[Path]:
    return sorted(p for p in folder.iterdir() if p.is_dir() and _visible(p))


def _files_under(folder: Path) -> List[Path]:
    return sorted(p for p in folder.rglob("*") if p.is_file() and _visible(p))


def _require_dir(folder: Path, what: str) -> None:
    if not folder.is_dir():
        raise IOFailureError(f"failed reading {what} directory {folder}")


def _read_lines(path: Path) -> List[str]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return [line.rstrip("\r\n") for line in handle]
    except OSError as exc:
        raise IOFailureError(f"cannot read {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise IOFailureError(f"{path} is not valid UTF-8: {exc}") from exc


def _class_dirs(
    folder: Path,
    table: CorrespondenceTable,
    *,
    test: bool,
    report: Optional[BuildReport] = None,
) -> Iterable[Tuple[Path, int]]:
    """Yield ``(class_dir, index)``; new names get the next index unless ``test``."""

    for subdir in _subdirs(folder):
        cls = subdir.name
        if test:
            index = table.get(cls)
            if index is None:
                message = f"unknown class {cls} in test set, dropping its files"
                if report is not None:
                    report.warn("unknown_class", str(folder), message, logger=LOGGER)
                else:
                    LOGGER.warning("%s: %s", folder, message)
                continue
        else:
            index = table.add(cls)
        yield subdir, index


def read_image_folder(
    folder: str | os.PathLike[str],
    table: CorrespondenceTable,
    *,
    test: bool = False,
    report: Optional[BuildReport] = None,
) -> List[ImageLabelRecord]:
    """Read a ``class_name/image`` tree into labeled records.

    Parameters
    ----------
    folder:
        Root directory; every visible sub-directory is one class.
    table:
        Class-name table. Training reads grow it in sorted directory order;
        test reads only look names up.
    test:
        When ``True`` unknown classes are logged and dropped.
    """

    root = Path(folder)
    LOGGER.info("Reading image folder %s", root)
    _require_dir(root, "image data")
    if not _subdirs(root):
        raise BadParameterError(f"image folder {root} has no class sub-directories")

    records: List[ImageLabelRecord] = []
    for subdir, index in _class_dirs(root, table, test=test, report=report):
        records.extend(ImageLabelRecord(str(path), index) for path in _files_under(subdir))
    LOGGER.info("Read %d images in %d classes from %s", len(records), len(table), root)
    return records


def read_image_list(listfile: str | os.PathLike[str]) -> List[ImageTargetRecord]:
    """Read ``filename t1 [t2 ...]`` lines (regression / multi-target lists)."""

    path = Path(listfile)
    LOGGER.info("Reading image list file %s", path)
    records: List[ImageTargetRecord] = []
    for line_num, line in enumerate(_read_lines(path), start=1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) < 2:
            raise BadParameterError(f"{path}:{line_num}: missing target for '{fields[0]}'")
        try:
            targets = tuple(float(value) for value in fields[1:])
        except ValueError:
            raise BadParameterError(
                f"{path}:{line_num}: targets must be numeric, got {' '.join(fields[1:])!r}"
            ) from None
        records.append(ImageTargetRecord(fields[0], targets))
    LOGGER.info("Read %d lines in image list file %s", len(records), path)
    return records


def read_image_file2file(listfile: str | os.PathLike[str]) -> List[ImagePairRecord]:
    """Read ``image target_file`` lines (bbox annotation files or masks)."""

    path = Path(listfile)
    LOGGER.info("Reading image & target file %s", path)
    records: List[ImagePairRecord] = []
    for line_num, line in enumerate(_read_lines(path), start=1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) < 2:
            raise BadParameterError(f"{path}:{line_num}: missing target file for '{fields[0]}'")
        records.append(ImagePairRecord(fields[0], fields[1]))
    LOGGER.info("Read %d lines in image & target file %s", len(records), path)
    return records


def read_image_text(listfile: str | os.PathLike[str]) -> List[ImageTextRecord]:
    """Read ``image text`` lines; the text is the remainder after the first space."""

    path = Path(listfile)
    LOGGER.info("Reading image file & text target %s", path)
    records: List[ImageTextRecord] = []
    for line_num, line in enumerate(_read_lines(path), start=1):
        if not line.strip():
            continue
        filename, sep, text = line.partition(" ")
        if not sep:
            raise BadParameterError(f"{path}:{line_num}: missing text target for '{filename}'")
        records.append(ImageTextRecord(filename, text))
    LOGGER.info("Read %d lines in image file & text target %s", len(records), path)
    return records


def _documents(path: Path, label: int, *, sentences: bool) -> List[TextRecord]:
    lines = _read_lines(path)
    if sentences:
        return [
            TextRecord(line, label, f"{path}:{num}")
            for num, line in enumerate(lines, start=1)
            if line.strip()
        ]
    text = " ".join(lines).strip()
    return [TextRecord(text, label, str(path))] if text else []


def read_text_corpus(
    source: str | os.PathLike[str],
    table: CorrespondenceTable,
    *,
    test: bool = False,
    sentences: bool = False,
    report: Optional[BuildReport] = None,
) -> List[TextRecord]:
    """Read documents from a file, a flat directory, or a class-folder tree.

    Only the class-folder layout yields labels; the other layouts produce
    unlabeled documents for language modeling. A single file is always read
    one document per line.
    """

    path = Path(source)
    LOGGER.info("Reading text corpus %s", path)
    if path.is_file():
        return _documents(path, NO_TARGET, sentences=True)
    _require_dir(path, "text data")

    records: List[TextRecord] = []
    if _subdirs(path):
        for subdir, index in _class_dirs(path, table, test=test, report=report):
            for file in _files_under(subdir):
                records.extend(_documents(file, index, sentences=sentences))
    else:
        for file in _files_under(path):
            records.extend(_documents(file, NO_TARGET, sentences=sentences))
    LOGGER.info("Read %d documents from %s", len(records), path)
    return records


def _read_csv(path: Path, *, separator: str, ignored_columns: Sequence[str]) -> SequenceRecord:
    try:
        frame = pd.read_csv(path, sep=separator)
    except pd.errors.EmptyDataError:
        raise IOFailureError(f"CSV file {path} is empty") from None
    except (OSError, pd.errors.ParserError) as exc:
        raise IOFailureError(f"cannot parse CSV file {path}: {exc}") from exc

    drop = [col for col in ignored_columns if col in frame.columns]
    if drop:
        frame = frame.drop(columns=drop)
    try:
        rows = frame.to_numpy(dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise BadParameterError(f"non-numeric data in CSV file {path}: {exc}") from exc
    return SequenceRecord(str(path), tuple(str(col) for col in frame.columns), rows)


def read_csv_series(
    source: str | os.PathLike[str],
    *,
    ignored_columns: Sequence[str] = (),
    separator: str = ",",
) -> List[SequenceRecord]:
    """Read one sequence per CSV file from a file or a directory (sorted)."""

    path = Path(source)
    if path.is_file():
        files = [path]
    elif path.is_dir():
        files = [p for p in _files_under(path) if p.suffix.lower() in {".csv", ".txt"}]
    else:
        raise IOFailureError(f"CSV time-series source {path} does not exist")

    LOGGER.info("Reading %d CSV time-series file(s) from %s", len(files), path)
    return [_read_csv(f, separator=separator, ignored_columns=ignored_columns) for f in files]
