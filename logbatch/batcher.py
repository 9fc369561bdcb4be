#!/usr/bin/env python3
"""
Batcher for Log Batch Upload System
Partitions scan-ordered files into size-bounded groups
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, List, Optional

from logbatch.file_scanner import SourceFile

logger = logging.getLogger(__name__)


class BatchState(Enum):
    """Lifecycle of one batch within a run."""

    PENDING = "pending"
    MERGING = "merging"
    MERGE_FAILED = "merge_failed"
    MERGED = "merged"
    UPLOADING = "uploading"
    UPLOAD_FAILED = "upload_failed"
    UPLOADED = "uploaded"
    DELTA_RECORDED = "delta_recorded"


FAILED_STATES = (BatchState.MERGE_FAILED, BatchState.UPLOAD_FAILED)


@dataclass
class Batch:
    """
    Ordered, non-empty group of source files flushed together.

    Attributes:
        files (List[SourceFile]): Files in scan order
        total_bytes (int): Sum of file sizes
        state (BatchState): Current lifecycle state
    """

    files: List[SourceFile] = field(default_factory=list)
    total_bytes: int = 0
    state: BatchState = BatchState.PENDING

    def add(self, source: SourceFile):
        self.files.append(source)
        self.total_bytes += source.size

    @property
    def paths(self) -> List[str]:
        return [f.path for f in self.files]

    @property
    def artifact_name(self) -> str:
        """Merged artifact name: <first file name>_<last file name>."""
        return f"{self.files[0].name}_{self.files[-1].name}"

    def __len__(self) -> int:
        return len(self.files)


@dataclass
class FlushResult:
    """
    Outcome of merging and uploading one batch.

    Attributes:
        batch (Batch): The flushed batch (state holds the terminal state)
        artifact (str): Local merged artifact path, None if merge failed
        delta (List[str]): Source paths delivered, empty unless uploaded
    """

    batch: Batch
    artifact: Optional[str] = None
    delta: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.batch.state in (BatchState.UPLOADED, BatchState.DELTA_RECORDED)


def iter_batches(files: Iterable[SourceFile], max_bytes: int) -> Iterator[Batch]:
    """
    Yield batches in scan order.

    A batch closes as soon as its running total reaches or exceeds
    max_bytes; the remainder is yielded as a final batch regardless of size.
    Batches are disjoint and together cover every input file.

    Example:
        >>> [[f.size for f in b.files] for b in iter_batches(files, 150)]
        [[100, 100], [50]]
    """
    if max_bytes <= 0:
        raise ValueError(f"max_bytes must be positive, got {max_bytes}")

    current = Batch()
    for source in files:
        current.add(source)
        if current.total_bytes >= max_bytes:
            yield current
            current = Batch()

    if current.files:
        yield current
