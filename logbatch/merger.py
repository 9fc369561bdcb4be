#!/usr/bin/env python3
"""
Merger for Log Batch Upload System
Concatenates a batch's files into one local artifact
"""

import logging
import shutil
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 8 * 1024**2  # 8 MB


class FileMerger:
    """
    Concatenates source files, in order, into a file under tmp_dir.

    The merge contract is the presence of the output: a merge has failed
    when the output file does not exist afterwards. Partial output left by
    a failed copy is removed so the contract holds.

    Attributes:
        tmp_dir (Path): Directory receiving merged artifacts
    """

    def __init__(self, tmp_dir: Union[str, Path]):
        self.tmp_dir = Path(tmp_dir)

    def merge(self, sources: List[str], output_name: str, log=None) -> Optional[Path]:
        """
        Merge sources into tmp_dir/output_name.

        An existing file with the same name (an artifact left by a failed
        upload) is overwritten.

        Args:
            sources: Source file paths in merge order
            output_name: Artifact file name
            log: Logger or LoggerAdapter for run-scoped messages

        Returns:
            Path: Merged artifact, or None if merge failed
        """
        log = log or logger
        output = self.tmp_dir / output_name

        try:
            with open(output, "wb") as out:
                for source in sources:
                    with open(source, "rb") as src:
                        shutil.copyfileobj(src, out, COPY_CHUNK_SIZE)
        except OSError as e:
            log.error(f"Failed to merge {len(sources)} files into {output.name}: {e}")
            try:
                output.unlink(missing_ok=True)
            except OSError as cleanup_error:
                log.warning(f"Could not remove partial artifact {output}: {cleanup_error}")
            return None

        if not output.exists():
            return None

        log.debug(f"Merged {len(sources)} files into {output} ({output.stat().st_size} bytes)")
        return output
