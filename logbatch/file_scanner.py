#!/usr/bin/env python3
"""
File Scanner for Log Batch Upload System
Discovers the local log files belonging to one time bucket

Files are matched by name against a bucket-derived regular expression and
returned in a deterministic order so that batch boundaries are reproducible
across runs.
"""

import logging
import os
import re
import stat as stat_module
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Pattern, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceFile:
    """
    Snapshot of one log file taken at scan time.

    Attributes:
        path (str): Absolute file path
        mtime (float): Last-modified timestamp (seconds since epoch)
        size (int): Size in bytes
    """

    path: str
    mtime: float
    size: int

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


def _is_regular(stat) -> bool:
    return stat_module.S_ISREG(stat.st_mode)


def _sort_key(source: SourceFile):
    # Full path orders equal names from different directories
    return (source.mtime, source.name, source.path)


class FileScanner:
    """
    Recursively lists files under a base directory whose names match a pattern.

    Example:
        >>> scanner = FileScanner('/data/logs')
        >>> files = scanner.scan(r'2015012210.*\\.unbid\\.log')
        >>> [f.name for f in files]
        ['2015012210.a.unbid.log', '2015012210.b.unbid.log']

    Attributes:
        base_dir (Path): Root of the recursive scan
        exclude_dirs (set): Absolute directories never descended into (e.g. a
            temp directory nested under base_dir holding merged artifacts)
    """

    def __init__(self, base_dir: Union[str, Path], exclude_dirs: Iterable[Union[str, Path]] = ()):
        self.base_dir = Path(base_dir)
        self.exclude_dirs = {os.path.abspath(d) for d in exclude_dirs}

    def scan(self, pattern: Union[str, Pattern], log=None) -> List[SourceFile]:
        """
        Find files matching pattern, sorted by (mtime, name).

        The pattern must match the whole file name, not a prefix of it.

        Args:
            pattern: Regular expression (string or compiled)
            log: Logger or LoggerAdapter for run-scoped messages

        Returns:
            List[SourceFile]: Matching files in scan order
        """
        log = log or logger
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        found = []

        for dirpath, dirnames, filenames in os.walk(self.base_dir):
            dirnames[:] = sorted(
                d for d in dirnames
                if os.path.abspath(os.path.join(dirpath, d)) not in self.exclude_dirs
            )
            for filename in filenames:
                if not regex.fullmatch(filename):
                    continue

                file_path = Path(dirpath) / filename
                try:
                    stat = file_path.stat()
                except OSError as e:
                    log.debug(f"File vanished during scan: {file_path} ({e})")
                    continue

                if not _is_regular(stat):
                    continue

                found.append(SourceFile(
                    path=os.path.abspath(file_path),
                    mtime=stat.st_mtime,
                    size=stat.st_size,
                ))

        found.sort(key=_sort_key)
        log.debug(f"Scanned {self.base_dir}: {len(found)} files match '{regex.pattern}'")
        return found
