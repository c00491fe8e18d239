"""Connector-specific raw input sources driven by :class:`DatasetBuilder`."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Protocol, Sequence, Tuple, runtime_checkable

import torch

from ..config import InputConfig
from ..data.batch import Example
from ..data.correspondence import CorrespondenceTable
from ..data.encoders import ImageEncoder, MaskedLMAugmenter, TextEncoder, TimeSeriesWindower
from ..data.io import (
    read_csv_series,
    read_image_file2file,
    read_image_folder,
    read_image_list,
    read_image_text,
    read_text_corpus,
)
from ..data.partition import BatchTransform
from ..data.records import (
    NO_TARGET,
    ImageLabelRecord,
    ImagePairRecord,
    ImageTargetRecord,
    ImageTextRecord,
    Record,
    SequenceRecord,
    TextRecord,
)
from ..errors import BadParameterError, BuildReport, IOFailureError

__all__ = [
    "Encoded",
    "RawInputSource",
    "ImageSource",
    "TextSource",
    "TimeSeriesSource",
    "make_source",
]

LOGGER = logging.getLogger(__name__)

_IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".bmp", ".gif", ".tif", ".tiff", ".webp", ".ppm", ".pgm"}


class Encoded(NamedTuple):
    example: Example
    sample_id: str
    length: Optional[int] = None


@runtime_checkable
class RawInputSource(Protocol):
    """What the builder needs from one input modality."""

    report: BuildReport

    @property
    def correspondence(self) -> CorrespondenceTable: ...

    def read(self, uri: str, *, test: bool = False) -> List[Record]: ...

    def read_predict(self, uris: Sequence[str]) -> List[Record]: ...

    def prepare(self, train_records: Sequence[Record]) -> None: ...

    def encode(self, record: Record, *, train_partition: bool) -> List[Encoded]: ...

    def train_transform(self, generator: torch.Generator) -> Optional[BatchTransform]: ...

    def save_correspondence(self, path: str | os.PathLike[str]) -> None: ...

    def load_correspondence(self, path: str | os.PathLike[str]) -> bool: ...


class _TableSource:
    """Shared correspondence-table handling."""

    def __init__(self, config: InputConfig, report: Optional[BuildReport] = None) -> None:
        self.config = config
        self.report = report if report is not None else BuildReport()
        self._table = CorrespondenceTable()

    @property
    def correspondence(self) -> CorrespondenceTable:
        return self._table

    def train_transform(self, generator: torch.Generator) -> Optional[BatchTransform]:
        return None

    def save_correspondence(self, path: str | os.PathLike[str]) -> None:
        self._table.save(path)

    def load_correspondence(self, path: str | os.PathLike[str]) -> bool:
        """Load a frozen table from ``path``; return ``False`` if the file is absent."""

        if not Path(path).is_file():
            return False
        self._table = CorrespondenceTable.load(path)
        LOGGER.info("Loaded %d correspondence entries from %s", len(self._table), path)
        return True


# ----------------------------------------------------------------------
# Images
# ----------------------------------------------------------------------


class ImageSource(_TableSource):
    """Image folders, target lists, bbox/segmentation pairs and OCR lists.

    The correspondence table holds class names for folder inputs and the
    character alphabet (index ``0`` is the CTC blank) for OCR inputs.
    """

    def __init__(self, config: InputConfig, report: Optional[BuildReport] = None) -> None:
        super().__init__(config, report)
        self.encoder = ImageEncoder(
            config.height,
            config.width,
            bw=config.bw,
            scale=config.scale,
            mean=config.mean,
            std=config.std,
        )
        self.max_text_length = 0
        self.original_sizes: Dict[str, Tuple[int, int]] = {}

    def read(self, uri: str, *, test: bool = False) -> List[Record]:
        cfg = self.config
        path = Path(uri)
        if not path.exists():
            raise IOFailureError(f"image folder or list {uri} does not exist")
        if cfg.ctc:
            return list(read_image_text(path))
        if cfg.bbox or cfg.segmentation:
            return list(read_image_file2file(path))
        if path.is_dir():
            return list(read_image_folder(path, self._table, test=test, report=self.report))
        return list(read_image_list(path))

    def read_predict(self, uris: Sequence[str]) -> List[Record]:
        records: List[Record] = []
        for uri in uris:
            path = Path(uri)
            if path.is_dir():
                files = sorted(
                    p for p in path.rglob("*") if p.is_file() and p.suffix.lower() in _IMAGE_SUFFIXES
                )
                records.extend(ImageLabelRecord(str(p), NO_TARGET) for p in files)
            elif path.is_file():
                records.append(ImageLabelRecord(str(path), NO_TARGET))
            else:
                raise IOFailureError(f"prediction input {uri} does not exist")
        LOGGER.info("Read %d image(s) for prediction", len(records))
        return records

    def prepare(self, train_records: Sequence[Record]) -> None:
        if not self.config.ctc:
            return
        if train_records:
            self.max_text_length = max(
                len(r.text) for r in train_records if isinstance(r, ImageTextRecord)
            )
            LOGGER.info("Maximum sequence size = %d", self.max_text_length)
        if not self._table.frozen and "" not in self._table:
            self._table.add("")  # CTC blank

    def encode(self, record: Record, *, train_partition: bool) -> List[Encoded]:
        if isinstance(record, ImageLabelRecord) and not self.config.train:
            example, size = self.encoder.encode_predict(record.path)
            self.original_sizes[record.path] = size
            return [Encoded(example, record.path)]
        if isinstance(record, ImageLabelRecord):
            return [Encoded(self.encoder.encode_label(record), record.path)]
        if isinstance(record, ImageTargetRecord):
            return [Encoded(self.encoder.encode_targets(record), record.path)]
        if isinstance(record, ImagePairRecord):
            if self.config.bbox:
                return [Encoded(self.encoder.encode_bbox(record), record.path)]
            return [Encoded(self.encoder.encode_segmentation(record), record.path)]
        if isinstance(record, ImageTextRecord):
            return self._encode_ocr(record, train_partition=train_partition)
        raise BadParameterError(f"image source cannot encode {type(record).__name__}")

    def _encode_ocr(self, record: ImageTextRecord, *, train_partition: bool) -> List[Encoded]:
        if not train_partition:
            unknown = sorted({ch for ch in record.text if ch not in self._table})
            if unknown:
                self.report.warn(
                    "unknown_character",
                    record.path,
                    f"characters {''.join(unknown)!r} not seen in training, skipping",
                    logger=LOGGER,
                )
                return []
            if len(record.text) > self.max_text_length:
                self.report.warn(
                    "text_too_long",
                    record.path,
                    f"text of length {len(record.text)} exceeds maximum sequence size "
                    f"{self.max_text_length}, skipping",
                    logger=LOGGER,
                )
                return []
        return [Encoded(self.encoder.encode_ocr(record, self._table, self.max_text_length), record.path)]


# ----------------------------------------------------------------------
# Text
# ----------------------------------------------------------------------


class TextSource(_TableSource):
    """Text corpora encoded through a fixed vocabulary.

    The correspondence table holds class names. The vocabulary is read from
    ``config.vocab_path`` (``vocab.txt`` style token list, or ``index token``
    lines with ``vocab_format="corresp"``). Without an explicit ``vocab``, plain
    training builds rebuild the default vocabulary from the training corpus
    and write it out; prediction reads it back.
    """

    def __init__(self, config: InputConfig, report: Optional[BuildReport] = None) -> None:
        super().__init__(config, report)
        self.vocab: Optional[CorrespondenceTable] = None
        self.encoder: Optional[TextEncoder] = None

    @property
    def input_format(self) -> str:
        return self.config.input_format or "plain"

    def read(self, uri: str, *, test: bool = False) -> List[Record]:
        return list(
            read_text_corpus(
                uri,
                self._table,
                test=test,
                sentences=self.config.sentences,
                report=self.report,
            )
        )

    def read_predict(self, uris: Sequence[str]) -> List[Record]:
        records: List[Record] = []
        for position, uri in enumerate(uris):
            if Path(uri).exists():
                records.extend(read_text_corpus(uri, self._table, test=True, sentences=self.config.sentences))
            else:
                records.append(TextRecord(uri, NO_TARGET, str(position)))
        return records

    def _load_vocab(self) -> Optional[CorrespondenceTable]:
        path = self.config.vocab_path
        if not path.is_file():
            if self.config.vocab is not None:
                raise IOFailureError(f"vocabulary file {path} does not exist")
            return None
        if self.config.vocab_format == "corresp":
            return CorrespondenceTable.load(path)
        return CorrespondenceTable.load_token_list(path)

    def _build_vocab(self, train_records: Sequence[Record]) -> CorrespondenceTable:
        tokens = (token for record in train_records for token in record.text.split())  # type: ignore[union-attr]
        vocab = CorrespondenceTable.from_tokens(tokens).freeze()
        path = self.config.vocab_path
        if self.config.vocab_format == "corresp":
            vocab.save(path)
        else:
            vocab.save_token_list(path)
        LOGGER.info("Built vocabulary of %d tokens into %s", len(vocab), path)
        return vocab

    def _builds_vocab(self, train_records: Sequence[Record]) -> bool:
        cfg = self.config
        if self.input_format != "plain" or cfg.vocab is not None:
            return False
        return cfg.train and bool(train_records)

    def prepare(self, train_records: Sequence[Record]) -> None:
        if self._builds_vocab(train_records):
            vocab = self._build_vocab(train_records)
        else:
            loaded = self._load_vocab()
            if loaded is None:
                raise BadParameterError(
                    f"no vocabulary found at {self.config.vocab_path} for {self.input_format} inputs"
                )
            vocab = loaded
        LOGGER.info("Vocabulary size: %d", len(vocab))
        self.vocab = vocab
        self.encoder = TextEncoder(vocab, self.config.width, self.input_format, self.report)

    def _require_encoder(self) -> TextEncoder:
        if self.encoder is None:
            raise BadParameterError("text source used before prepare()")
        return self.encoder

    def encode(self, record: Record, *, train_partition: bool) -> List[Encoded]:
        encoder = self._require_encoder()
        if not isinstance(record, TextRecord):
            raise BadParameterError(f"text source cannot encode {type(record).__name__}")
        example, length = encoder.encode(record)
        return [Encoded(example, record.source, length)]

    def train_transform(self, generator: torch.Generator) -> Optional[BatchTransform]:
        if self.input_format != "bert" or self.config.masked_lm is None:
            return None
        if self.encoder is None:
            # reused stores skip the build phase; only the vocabulary is needed
            self.prepare(())
        encoder = self._require_encoder()
        return MaskedLMAugmenter(
            encoder.vocab_size,
            encoder.mask_id,
            encoder.sep_id,
            self.config.masked_lm,
            generator,
        )


# ----------------------------------------------------------------------
# CSV time series
# ----------------------------------------------------------------------


class TimeSeriesSource(_TableSource):
    """Multivariate CSV series cut into windows.

    The correspondence table lists the output columns: every column in
    forecast mode, the label columns in labeled mode.
    """

    def __init__(self, config: InputConfig, report: Optional[BuildReport] = None) -> None:
        super().__init__(config, report)
        self.windower = TimeSeriesWindower(
            timesteps=config.timesteps,
            backcast=config.backcast_timesteps,
            forecast=config.forecast_timesteps,
            stride=config.offset,
            label_columns=config.label_columns,
            train=config.train,
            report=self.report,
        )

    def read(self, uri: str, *, test: bool = False) -> List[Record]:
        return list(
            read_csv_series(
                uri,
                ignored_columns=self.config.ignored_columns,
                separator=self.config.separator,
            )
        )

    def read_predict(self, uris: Sequence[str]) -> List[Record]:
        records: List[Record] = []
        for uri in uris:
            records.extend(self.read(uri, test=True))
        return records

    def prepare(self, train_records: Sequence[Record]) -> None:
        first = next((r for r in train_records if isinstance(r, SequenceRecord)), None)
        if first is None:
            return
        self.windower.set_datadim(first)
        if self._table.frozen:
            return
        if self.windower.forecast_mode:
            outputs = list(first.columns)
        else:
            outputs = [first.columns[i] for i in self.windower.label_pos]
        for name in outputs:
            self._table.add(name)

    def encode(self, record: Record, *, train_partition: bool) -> List[Encoded]:
        if not isinstance(record, SequenceRecord):
            raise BadParameterError(f"time-series source cannot encode {type(record).__name__}")
        return [Encoded(example, sample_id) for example, sample_id in self.windower.encode(record)]


_SOURCES = {
    "image": ImageSource,
    "text": TextSource,
    "csvts": TimeSeriesSource,
}


def make_source(config: InputConfig, report: Optional[BuildReport] = None) -> RawInputSource:
    """Instantiate the source matching ``config.connector``."""

    try:
        factory = _SOURCES[config.connector]
    except KeyError:
        raise BadParameterError(f"Unknown connector '{config.connector}'") from None
    return factory(config, report)
