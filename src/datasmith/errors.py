"""Error taxonomy shared by readers, encoders, stores and the builder."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

__all__ = [
    "DatasmithError",
    "BadParameterError",
    "IOFailureError",
    "DataQualityIssue",
    "BuildReport",
]

LOGGER = logging.getLogger(__name__)


class DatasmithError(Exception):
    """Base class for every error raised by :mod:`datasmith`."""


class BadParameterError(DatasmithError, ValueError):
    """Raised for invalid configuration or inconsistent dataset state.

    Always aborts the current build; nothing is retried internally.
    """


class IOFailureError(BadParameterError):
    """Raised when a source file or a dataset store cannot be read."""


@dataclass(frozen=True)
class DataQualityIssue:
    """A recoverable problem: the offending record was skipped."""

    kind: str
    source: str
    message: str

    def __str__(self) -> str:
        return f"[{self.kind}] {self.source}: {self.message}"


@dataclass
class BuildReport:
    """Outcome of one build: partition sizes plus every skipped record."""

    action: str = ""
    issues: List[DataQualityIssue] = field(default_factory=list)
    sizes: dict = field(default_factory=dict)

    def warn(
        self,
        kind: str,
        source: str,
        message: str,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> DataQualityIssue:
        issue = DataQualityIssue(kind, source, message)
        (logger if logger is not None else LOGGER).warning("%s", issue)
        self.issues.append(issue)
        return issue

    def count(self, kind: str) -> int:
        return sum(1 for issue in self.issues if issue.kind == kind)
