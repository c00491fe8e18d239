"""Sliding-window encoding of multivariate CSV time series."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import torch

from ...errors import BadParameterError, BuildReport
from ..batch import Example
from ..records import SequenceRecord

__all__ = ["window_starts", "TimeSeriesWindower"]

LOGGER = logging.getLogger(__name__)


def window_starts(length: int, window: int, stride: int) -> List[int]:
    """Start offsets of the windows covering a sequence of ``length`` rows.

    Starts advance by ``stride`` while the window fits; a final window
    aligned on the end of the sequence is added when the regular starts do
    not reach it. Returns an empty list when ``length < window``.

    >>> window_starts(10, 5, 2)
    [0, 2, 4, 5]
    """

    if window <= 0 or stride <= 0:
        raise BadParameterError("window and stride must be positive")
    if length < window:
        return []
    starts = list(range(0, length - window + 1, stride))
    if starts[-1] != length - window:
        starts.append(length - window)
    return starts


class TimeSeriesWindower:
    """Cut :class:`SequenceRecord` objects into fixed-length examples.

    In forecast mode (``backcast`` and ``forecast`` given) every column is
    both input and target: input rows ``[t, t+backcast)`` and target rows
    ``[t+backcast, t+backcast+forecast)``. In labeled mode windows of
    ``timesteps`` rows are split column-wise into inputs and the
    ``label_columns`` targets.
    """

    def __init__(
        self,
        *,
        timesteps: Optional[int] = None,
        backcast: Optional[int] = None,
        forecast: Optional[int] = None,
        stride: Optional[int] = None,
        label_columns: Sequence[str] = (),
        train: bool = True,
        report: Optional[BuildReport] = None,
    ) -> None:
        self.forecast_mode = forecast is not None
        if self.forecast_mode:
            if backcast is None or backcast <= 0 or forecast <= 0:  # type: ignore[operator]
                raise BadParameterError("backcast and forecast timesteps must be positive")
        elif timesteps is None or timesteps <= 0:
            raise BadParameterError("no value given to [forecast_|backcast_|]timesteps")
        self.timesteps = timesteps
        self.backcast = backcast
        self.forecast = forecast
        self.label_columns: Tuple[str, ...] = tuple(label_columns)
        self.train = train
        self.report = report if report is not None else BuildReport()

        full = int(backcast) + int(forecast) if self.forecast_mode else int(timesteps)  # type: ignore[arg-type]
        if self.forecast_mode and not train:
            # inference: backcast-only windows, one per full horizon
            self.window = int(backcast)  # type: ignore[arg-type]
            self.stride = full
        else:
            self.window = full
            self.stride = int(stride) if stride is not None else full

        self.columns: Optional[Tuple[str, ...]] = None
        self.datadim = -1
        self.label_pos: List[int] = []
        self.input_pos: List[int] = []

    # ------------------------------------------------------------------

    def set_datadim(self, record: SequenceRecord) -> None:
        """Fix the column layout from the first sequence seen."""

        if self.datadim != -1:
            return
        self.columns = record.columns
        self.datadim = record.dim
        if not self.forecast_mode:
            missing = [c for c in self.label_columns if c not in record.columns]
            if missing and self.train:
                raise BadParameterError(
                    f"label column(s) {', '.join(missing)} not found in {record.name}"
                )
            self.label_pos = [record.columns.index(c) for c in self.label_columns if c in record.columns]
            if len(self.label_pos) >= self.datadim:
                raise BadParameterError(
                    f"label_size (output dim) {len(self.label_pos)} is larger than datadim "
                    f"{self.datadim} leading to invalid input dim"
                )
        self.input_pos = [i for i in range(self.datadim) if i not in self.label_pos]
        LOGGER.info("whole data dimension : %d", self.datadim)
        LOGGER.info(
            "%d labels (outputs) found: %s",
            len(self.label_pos),
            " ".join(f"'{record.columns[i]}'" for i in self.label_pos),
        )
        LOGGER.info(
            "%d inputs  : %s",
            len(self.input_pos),
            " ".join(f"'{record.columns[i]}'" for i in self.input_pos),
        )

    def _check_dim(self, record: SequenceRecord) -> None:
        if record.dim != self.datadim:
            raise BadParameterError(
                f"{record.name} has {record.dim} columns, expected {self.datadim}"
            )

    @staticmethod
    def _sample_id(record: SequenceRecord, start: int, length: int) -> str:
        return f"{record.name} #{start}_{start + length - 1}"

    @staticmethod
    def _rows(rows: np.ndarray) -> torch.Tensor:
        return torch.from_numpy(np.ascontiguousarray(rows, dtype=np.float32))

    def _labeled_example(self, record: SequenceRecord, start: int, length: int) -> Example:
        block = record.rows[start : start + length]
        data = self._rows(block[:, self.input_pos])
        if not self.label_pos:
            return Example((data,))
        return Example((data,), (self._rows(block[:, self.label_pos]),))

    def _forecast_example(self, record: SequenceRecord, start: int) -> Example:
        backcast = int(self.backcast)  # type: ignore[arg-type]
        data = self._rows(record.rows[start : start + backcast])
        if not self.train:
            return Example((data,))
        stop = start + backcast + int(self.forecast)  # type: ignore[arg-type]
        return Example((data,), (self._rows(record.rows[start + backcast : stop]),))

    def encode(self, record: SequenceRecord) -> List[Tuple[Example, str]]:
        """Return ``(example, sample_id)`` pairs for every window of ``record``."""

        self.set_datadim(record)
        self._check_dim(record)

        if not self.forecast_mode and not self.train:
            if len(record) == 0:
                self.report.warn("short_sequence", record.name, "empty sequence, discarding", logger=LOGGER)
                return []
            return [(self._labeled_example(record, 0, len(record)), self._sample_id(record, 0, len(record)))]

        starts = window_starts(len(record), self.window, self.stride)
        if not starts:
            self.report.warn(
                "short_sequence",
                record.name,
                f"file {record.name} does not contain enough timesteps "
                f"(seq_size: {len(record)}, window: {self.window}), discarding",
                logger=LOGGER,
            )
            return []
        LOGGER.debug("Add sequence of size %d from %s", len(record), record.name)

        examples: List[Tuple[Example, str]] = []
        for start in starts:
            if self.forecast_mode:
                # ids always span the full backcast + forecast horizon
                example = self._forecast_example(record, start)
                span = int(self.backcast) + int(self.forecast)  # type: ignore[arg-type]
            else:
                example = self._labeled_example(record, start, self.window)
                span = self.window
            examples.append((example, self._sample_id(record, start, span)))
        return examples
