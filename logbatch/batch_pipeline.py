#!/usr/bin/env python3
"""
Batch Upload Pipeline for Log Batch Upload System
Drives discovery, dedup, batching, merge, upload and recording per bucket

One bucket run:
1. Load the bucket's processed paths from the processed log
2. Scan the base directory for files matching the bucket's filename pattern
3. Drop files already processed
4. Flush size-bounded batches: merge, then upload the merged artifact
5. Append the paths of every delivered batch to the processed log

Buckets and batches are processed strictly sequentially. A single instance
per base directory is assumed; nothing here locks the metadata directories.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Union

from logbatch.batcher import FAILED_STATES, Batch, BatchState, FlushResult, iter_batches
from logbatch.cloudwatch_manager import CloudWatchManager
from logbatch.config_manager import (
    DEFAULT_LOOKBACK_BUCKETS,
    DEFAULT_MAX_RETRIES,
    ConfigManager,
    ConfigValidationError,
)
from logbatch.file_scanner import FileScanner
from logbatch.granularity import Granularity, TimeBucket
from logbatch.merger import FileMerger
from logbatch.processed_log import AppendResult, DirectoryProcessedLog, LoadResult, ProcessedLog
from logbatch.upload_manager import (
    ArtifactUploader,
    LocalDirectoryTransport,
    RemoteTransport,
    S3Transport,
)
from logbatch.utils import format_bytes

logger = logging.getLogger(__name__)

ON_LOAD_ERROR_PROCEED = "proceed"
ON_LOAD_ERROR_SKIP = "skip"


class RunLogger(logging.LoggerAdapter):
    """
    Logger scoped to one bucket run.

    Messages are prefixed with the pipeline name, bucket key and run id;
    the same fields are attached to every record as `extra` attributes.
    """

    def process(self, msg, kwargs):
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return f"[{extra['pipeline']}] [{extra['bucket']}] [{extra['run_id']}] {msg}", kwargs


@dataclass
class BucketResult:
    """
    Summary of one bucket run.

    Attributes:
        bucket (TimeBucket): Processed bucket
        run_id (str): Identifier shared by all log lines of this run
        files_scanned (int): Files matching the bucket pattern
        files_skipped (int): Matching files already in the processed log
        bytes_scanned (int): Total size of files considered for upload
        batches (List[FlushResult]): One entry per flushed batch
        delta (List[str]): Paths delivered in this run
        elapsed_seconds (float): Wall time of the run
        skipped (bool): True if the bucket was skipped (load error policy)
        load_error (Exception): Processed log read failure, if any
        append_error (Exception): Processed log write failure, if any
        error (Exception): Unexpected error that aborted the run, if any
    """

    bucket: TimeBucket
    run_id: str
    files_scanned: int = 0
    files_skipped: int = 0
    bytes_scanned: int = 0
    batches: List[FlushResult] = field(default_factory=list)
    delta: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    skipped: bool = False
    load_error: Optional[Exception] = None
    append_error: Optional[Exception] = None
    error: Optional[Exception] = None

    @property
    def batches_failed(self) -> int:
        return sum(1 for r in self.batches if r.batch.state in FAILED_STATES)

    @property
    def batches_succeeded(self) -> int:
        return sum(1 for r in self.batches if r.succeeded)

    @property
    def bytes_delivered(self) -> int:
        return sum(r.batch.total_bytes for r in self.batches if r.succeeded)

    @property
    def ok(self) -> bool:
        return (
            not self.skipped
            and self.batches_failed == 0
            and self.append_error is None
            and self.error is None
        )


class BatchUploadPipeline:
    """
    Uploads time-bucketed log files as merged, size-bounded batches.

    Example:
        >>> pipeline = BatchUploadPipeline(
        ...     base_work_dir='/data/logs',
        ...     tmp_dir='/data/tmp',
        ...     filename_template=r'%Y%m%d%H.*\\.unbid\\.log',
        ...     remote_path_template='logs/%Y/%m/%d/%H',
        ...     granularity='hour',
        ...     max_upload_bytes=200 * 1024**2,
        ...     transport=S3Transport('my-bucket', 'us-east-1'),
        ... )
        >>> results = pipeline.process_recent()

    Attributes:
        base_work_dir (Path): Directory scanned for source files (must exist)
        tmp_dir (Path): Merged artifacts and metadata directories
        granularity (Granularity): Bucketing unit
        max_upload_bytes (int): Batch size threshold
        lookback_buckets (int): Trailing buckets processed by process_recent()
        processed_log (ProcessedLog): Record of delivered paths
    """

    def __init__(self,
                 base_work_dir: Union[str, Path],
                 tmp_dir: Union[str, Path],
                 filename_template: str,
                 remote_path_template: str,
                 granularity: Union[str, Granularity],
                 max_upload_bytes: int,
                 transport: RemoteTransport,
                 lookback_buckets: int = DEFAULT_LOOKBACK_BUCKETS,
                 processed_log: ProcessedLog = None,
                 name: str = "log-batch",
                 on_load_error: str = ON_LOAD_ERROR_PROCEED,
                 metrics: CloudWatchManager = None,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the pipeline and validate its directories.

        Raises:
            ConfigValidationError: If base_work_dir does not exist, or a
                numeric/policy argument is invalid
        """
        self.base_work_dir = Path(base_work_dir)
        self.tmp_dir = Path(tmp_dir)
        self.filename_template = filename_template
        self.remote_path_template = remote_path_template
        try:
            self.granularity = (
                granularity if isinstance(granularity, Granularity) else Granularity.parse(granularity)
            )
        except ValueError as e:
            raise ConfigValidationError(str(e))
        self.max_upload_bytes = max_upload_bytes
        self.lookback_buckets = lookback_buckets
        self.name = name
        self.on_load_error = on_load_error
        self.metrics = metrics
        self.clock = clock

        if max_upload_bytes <= 0:
            raise ConfigValidationError(f"max_upload_bytes must be positive, got {max_upload_bytes}")
        if lookback_buckets < 1:
            raise ConfigValidationError(f"lookback_buckets must be >= 1, got {lookback_buckets}")
        if on_load_error not in (ON_LOAD_ERROR_PROCEED, ON_LOAD_ERROR_SKIP):
            raise ConfigValidationError(f"Unknown on_load_error policy: {on_load_error}")

        self._assert_dirs()

        self.scanner = FileScanner(self.base_work_dir, exclude_dirs=[self.tmp_dir])
        self.merger = FileMerger(self.tmp_dir)
        self.uploader = ArtifactUploader(transport)
        self.processed_log = processed_log or DirectoryProcessedLog(self.tmp_dir)

        logger.info(f"Pipeline '{name}' initialized")
        logger.info(f"Base work dir: {self.base_work_dir}")
        logger.info(f"Temp dir: {self.tmp_dir}")
        logger.info(
            f"Granularity: {self.granularity.name.lower()}, lookback: {lookback_buckets} buckets, "
            f"max batch: {format_bytes(max_upload_bytes)}"
        )

    @classmethod
    def from_config(cls, config: ConfigManager,
                    transport: RemoteTransport = None,
                    metrics: CloudWatchManager = None) -> "BatchUploadPipeline":
        """
        Build a pipeline from validated configuration.

        The transport is created from the remote section unless given.
        """
        if transport is None:
            transport = build_transport(config)

        return cls(
            base_work_dir=config.get("paths.base_work_dir"),
            tmp_dir=config.get("paths.tmp_dir"),
            filename_template=config.get("batch.filename_template"),
            remote_path_template=config.get("batch.remote_path_template"),
            granularity=config.get("batch.granularity"),
            max_upload_bytes=config.get("batch.max_upload_bytes"),
            transport=transport,
            lookback_buckets=config.get("batch.lookback_buckets", DEFAULT_LOOKBACK_BUCKETS),
            name=config.get("name", "log-batch"),
            on_load_error=config.get("metadata.on_load_error", ON_LOAD_ERROR_PROCEED),
            metrics=metrics,
        )

    def _assert_dirs(self):
        """Create tmp_dir if missing; base_work_dir must already exist."""
        if not self.tmp_dir.exists():
            logger.info(f"Creating temp directory: {self.tmp_dir}")
            self.tmp_dir.mkdir(parents=True, exist_ok=True)

        if not self.base_work_dir.is_dir():
            raise ConfigValidationError(f"Work dir [{self.base_work_dir}] does not exist")

    def bucket_for(self, moment: datetime) -> TimeBucket:
        """Most recent complete bucket before moment."""
        return TimeBucket(self.granularity.prev(moment), self.granularity)

    def process_recent(self, now: datetime = None) -> List[BucketResult]:
        """
        Process the last lookback_buckets complete buckets, newest first.

        Each bucket is processed independently; a failure in one does not
        affect the others.

        Returns:
            List[BucketResult]: One result per bucket, in processing order
        """
        now = now or self.clock()
        results = []

        for bucket in self.granularity.trailing(now, self.lookback_buckets):
            results.append(self.process_bucket(bucket))

        if self.metrics is not None:
            self.metrics.publish_metrics()

        return results

    def process_bucket(self, bucket: TimeBucket) -> BucketResult:
        """
        Run one full discover → dedup → batch → merge → upload → record cycle.

        Never raises: unexpected errors are logged and reflected in the
        result so that other buckets in the same run are unaffected.
        """
        run_id = uuid.uuid4().hex[:8]
        log = RunLogger(logger, {"pipeline": self.name, "bucket": bucket.key, "run_id": run_id})
        result = BucketResult(bucket=bucket, run_id=run_id)
        started = time.monotonic()

        try:
            self._run_bucket(bucket, result, log)
        except Exception as e:
            result.error = e
            log.error(f"Unexpected error processing bucket {bucket}: {e}")
            log.debug("Bucket traceback", exc_info=True)

        result.elapsed_seconds = time.monotonic() - started

        if self.metrics is not None:
            self.metrics.record_bucket(
                files=len(result.delta),
                bytes_delivered=result.bytes_delivered,
                failed_batches=result.batches_failed,
                append_failed=result.append_error is not None,
            )

        return result

    def _run_bucket(self, bucket: TimeBucket, result: BucketResult, log):
        started = time.monotonic()
        pattern = bucket.format(self.filename_template)
        remote_dir = bucket.format(self.remote_path_template)

        loaded: LoadResult = self.processed_log.load(bucket.key, log=log)
        if not loaded.ok:
            result.load_error = loaded.error
            if self.on_load_error == ON_LOAD_ERROR_SKIP:
                log.warning(f"Skipping bucket {bucket}: processed log unreadable ({loaded.error})")
                result.skipped = True
                return
            log.warning("Processed log unreadable, continuing as if nothing was uploaded")

        scanned = self.scanner.scan(pattern, log=log)
        pending = [f for f in scanned if f.path not in loaded.paths]

        result.files_scanned = len(scanned)
        result.files_skipped = len(scanned) - len(pending)
        result.bytes_scanned = sum(f.size for f in pending)

        log.info(
            f"Found {len(scanned)} files for '{pattern}', "
            f"{result.files_skipped} already uploaded, {len(pending)} pending"
        )

        used_names = set()
        # The delta is persisted even if a later batch raises
        try:
            for batch in iter_batches(pending, self.max_upload_bytes):
                flushed = self._flush(batch, remote_dir, log, self._artifact_name(batch, used_names))
                result.batches.append(flushed)
                result.delta.extend(flushed.delta)
        finally:
            log.info(
                f"Bucket done in {time.monotonic() - started:.2f}s: "
                f"{len(result.delta)} files delivered in "
                f"{result.batches_succeeded}/{len(result.batches)} batches, "
                f"{format_bytes(result.bytes_scanned)} scanned"
            )
            self._record(bucket, result, log)

    @staticmethod
    def _artifact_name(batch: Batch, used_names: set) -> str:
        """
        Artifact name for batch, suffixed when an earlier batch of the same
        run already used it (same-named files in different subdirectories).
        """
        name = batch.artifact_name
        suffix = 1
        while name in used_names:
            suffix += 1
            name = f"{batch.artifact_name}-{suffix}"
        used_names.add(name)
        return name

    def _flush(self, batch: Batch, remote_dir: str, log, artifact_name: str) -> FlushResult:
        """
        Merge one batch and upload the merged artifact.

        The returned delta holds the batch's paths only if both steps
        succeeded; a failed upload leaves the artifact on disk.
        """
        flushed = FlushResult(batch=batch)

        batch.state = BatchState.MERGING
        artifact = self.merger.merge(batch.paths, artifact_name, log=log)
        if artifact is None:
            batch.state = BatchState.MERGE_FAILED
            log.warning(
                f"Failed to concat {len(batch)} files, will retry next run:\n" + "\n".join(batch.paths)
            )
            return flushed

        batch.state = BatchState.MERGED
        flushed.artifact = str(artifact)

        batch.state = BatchState.UPLOADING
        if not self.uploader.upload(artifact, remote_dir, log=log):
            batch.state = BatchState.UPLOAD_FAILED
            log.warning(
                f"Upload {artifact} to path {remote_dir} failed "
                f"({len(batch)} files, {format_bytes(batch.total_bytes)}):\n" + "\n".join(batch.paths)
            )
            return flushed

        batch.state = BatchState.UPLOADED
        flushed.delta = batch.paths
        log.info(
            f"Upload {artifact} to path {remote_dir} success "
            f"({len(batch)} files, {format_bytes(batch.total_bytes)}):\n" + "\n".join(batch.paths)
        )
        return flushed

    def _record(self, bucket: TimeBucket, result: BucketResult, log):
        """Append the run's delta and mark delivered batches as recorded."""
        appended: AppendResult = self.processed_log.append(bucket.key, result.delta, log=log)
        if not appended.ok:
            result.append_error = appended.error
            return

        for flushed in result.batches:
            if flushed.batch.state is BatchState.UPLOADED:
                flushed.batch.state = BatchState.DELTA_RECORDED


def build_transport(config: ConfigManager) -> RemoteTransport:
    """Create the transport described by the remote config section."""
    remote_type = config.get("remote.type", "s3")

    if remote_type == "local":
        return LocalDirectoryTransport(config.get("remote.root"))

    return S3Transport(
        bucket=config.get("remote.bucket"),
        region=config.get("remote.region"),
        max_retries=config.get("remote.max_retries", DEFAULT_MAX_RETRIES),
        profile_name=config.get("remote.profile"),
    )
