#!/usr/bin/env python3
"""
Processed Log for Log Batch Upload System
Durably records which source files have already been uploaded

The log is append-only and keyed by time bucket. The directory-backed
implementation keeps one metadata directory per bucket; every successful run
adds one listing file (one absolute path per line) named by the run's
wall-clock timestamp. Nothing is ever rewritten, compacted or deleted.

Read and write failures are returned as explicit result values so the
caller decides how to degrade.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional, Set, Union

logger = logging.getLogger(__name__)

LISTING_NAME_FORMAT = "%Y%m%d%H%M%S"
TEMP_SUFFIX = ".tmp"


@dataclass
class LoadResult:
    """
    Outcome of reading a bucket's processed paths.

    A failed read still carries a (possibly empty) path set: callers that
    proceed treat it as "nothing processed yet".
    """

    paths: Set[str] = field(default_factory=set)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class AppendResult:
    """Outcome of appending one delta to a bucket's log."""

    count: int = 0
    location: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ProcessedLog(ABC):
    """
    Append-only record of uploaded source paths, keyed by bucket.

    Implementations must never drop or rewrite previously appended entries.
    """

    @abstractmethod
    def load(self, bucket_key: str, log=None) -> LoadResult:
        """Return every path appended so far for bucket_key."""

    @abstractmethod
    def append(self, bucket_key: str, paths: Iterable[str], log=None) -> AppendResult:
        """Durably add paths to bucket_key's record."""


class DirectoryProcessedLog(ProcessedLog):
    """
    Processed log stored as listing files under <root>/<bucket_key>/.

    Example:
        >>> plog = DirectoryProcessedLog('/data/tmp')
        >>> plog.append('20150122100000', ['/data/logs/a.log'])
        >>> plog.load('20150122100000').paths
        {'/data/logs/a.log'}

    Attributes:
        root (Path): Directory holding one metadata directory per bucket
        clock (Callable): Source of the wall-clock time used to name listings
    """

    def __init__(self, root: Union[str, Path], clock: Callable[[], datetime] = datetime.now):
        self.root = Path(root)
        self.clock = clock

    def bucket_dir(self, bucket_key: str) -> Path:
        return self.root / bucket_key

    def load(self, bucket_key: str, log=None) -> LoadResult:
        """
        Read the union of all listing files for a bucket.

        A missing metadata directory is not an error: nothing has been
        uploaded for that bucket yet. Any read failure yields an empty set
        together with the error.
        """
        log = log or logger
        meta_dir = self.bucket_dir(bucket_key)

        if not meta_dir.exists():
            log.debug(f"No metadata directory yet: {meta_dir}")
            return LoadResult()

        paths = set()
        try:
            for listing in sorted(meta_dir.iterdir()):
                if listing.name.endswith(TEMP_SUFFIX) or not listing.is_file():
                    continue
                with open(listing, "r", encoding="utf-8") as f:
                    # Paths may begin or end with whitespace; only the terminator is dropped
                    lines = (line.rstrip("\n") for line in f)
                    paths.update(line for line in lines if line)
        except (OSError, UnicodeDecodeError) as e:
            log.error(
                f"Failed to read processed log {meta_dir}: {e}. "
                f"Treating bucket as unprocessed (files may be uploaded again)"
            )
            return LoadResult(error=e)

        log.debug(f"Loaded {len(paths)} processed paths from {meta_dir}")
        return LoadResult(paths=paths)

    def append(self, bucket_key: str, paths: Iterable[str], log=None) -> AppendResult:
        """
        Write paths as one new listing file.

        The listing is written to a temporary name and renamed into place,
        so a crash never leaves a truncated listing behind. An empty delta
        writes nothing.
        """
        log = log or logger
        paths = list(paths)
        if not paths:
            return AppendResult()

        meta_dir = self.bucket_dir(bucket_key)
        try:
            meta_dir.mkdir(parents=True, exist_ok=True)
            listing = self._next_listing_path(meta_dir)
            temp_file = listing.with_name(listing.name + TEMP_SUFFIX)
            with open(temp_file, "w", encoding="utf-8") as f:
                f.write("\n".join(paths) + "\n")
            temp_file.replace(listing)
        except OSError as e:
            log.error(f"Failed to record {len(paths)} uploaded paths in {meta_dir}: {e}")
            log.error("Unrecorded paths (will be uploaded again next run):\n" + "\n".join(paths))
            return AppendResult(error=e)

        log.debug(f"Recorded {len(paths)} paths in {listing}")
        return AppendResult(count=len(paths), location=str(listing))

    def _next_listing_path(self, meta_dir: Path) -> Path:
        """Timestamp-named listing path that does not overwrite an existing one."""
        base = self.clock().strftime(LISTING_NAME_FORMAT)
        candidate = meta_dir / base
        suffix = 0
        while candidate.exists():
            suffix += 1
            candidate = meta_dir / f"{base}-{suffix}"
        return candidate
