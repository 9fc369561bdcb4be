#!/usr/bin/env python3
"""
Log Batch Upload System - Main Application
Integrates all components for production use

Loads configuration, wires the pipeline, and runs it either once or on a
fixed interval until stopped.
"""

import logging
import signal
import sys
import threading
from typing import List

from logbatch.batch_pipeline import BatchUploadPipeline, BucketResult
from logbatch.cloudwatch_manager import CloudWatchManager
from logbatch.config_manager import ConfigManager, ConfigValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/log-batch-upload/config.yaml"
DEFAULT_INTERVAL_MINUTES = 60


class LogBatchUploadSystem:
    """
    Main system coordinator for log batch upload.

    Coordinates:
    - Configuration management (config_manager)
    - Batch pipeline (batch_pipeline)
    - Metrics (cloudwatch_manager)
    - Interval scheduling

    Runs never overlap: the schedule loop executes one run at a time in a
    single thread.

    Example:
        >>> system = LogBatchUploadSystem('/etc/log-batch-upload/config.yaml')
        >>> system.run_once()
        >>> system.start()
        >>> # ... system runs ...
        >>> system.stop()

    Attributes:
        config (ConfigManager): Configuration manager
        pipeline (BatchUploadPipeline): Upload pipeline
        cloudwatch (CloudWatchManager): Metrics publisher
        stats (dict): Runtime statistics across runs
    """

    def __init__(self, config_path: str):
        """
        Initialize system from a configuration file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigValidationError: If config is invalid or the work dir is missing
        """
        logger.info("Initializing Log Batch Upload System...")

        self.config = ConfigManager(config_path)

        self.cloudwatch = CloudWatchManager(
            region=self.config.get("remote.region", "us-east-1"),
            pipeline_name=self.config.get("name", "log-batch"),
            enabled=self.config.get("monitoring.cloudwatch_enabled", False),
            profile_name=self.config.get("remote.profile"),
        )

        self.pipeline = BatchUploadPipeline.from_config(self.config, metrics=self.cloudwatch)

        self.interval_seconds = (
            self.config.get("schedule.interval_minutes", DEFAULT_INTERVAL_MINUTES) * 60
        )

        self._stop_event = threading.Event()
        self._schedule_thread = None

        self.stats = {
            "runs": 0,
            "files_delivered": 0,
            "bytes_delivered": 0,
            "batches_failed": 0,
        }

        logger.info("Initialization complete")

    def run_once(self) -> List[BucketResult]:
        """
        Process the trailing buckets once.

        Returns:
            List[BucketResult]: Per-bucket results
        """
        results = self.pipeline.process_recent()

        self.stats["runs"] += 1
        for result in results:
            self.stats["files_delivered"] += len(result.delta)
            self.stats["bytes_delivered"] += result.bytes_delivered
            self.stats["batches_failed"] += result.batches_failed

        self._log_run_results(results)
        return results

    def start(self):
        """
        Start the interval schedule thread.

        Note:
            Safe to call multiple times - will not start if already running
        """
        if self._schedule_thread is not None and self._schedule_thread.is_alive():
            logger.warning("Already running")
            return

        self._stop_event.clear()
        self._schedule_thread = threading.Thread(target=self._schedule_loop, daemon=True)
        self._schedule_thread.start()
        logger.info(f"System started (interval: {self.interval_seconds / 60:g} minutes)")

    def stop(self, timeout: float = 30):
        """
        Stop the schedule thread, waiting for an in-flight run to finish.

        Args:
            timeout: Seconds to wait for the schedule thread
        """
        if self._schedule_thread is None:
            return

        logger.info("Shutting down...")
        self._stop_event.set()
        self._schedule_thread.join(timeout=timeout)
        if self._schedule_thread.is_alive():
            logger.warning("Schedule thread still busy after timeout")
        self._schedule_thread = None

        self._print_statistics()
        logger.info("Shutdown complete")

    def wait(self):
        """Block until stop() is called."""
        while not self._stop_event.wait(timeout=1):
            pass

    def _schedule_loop(self):
        """
        Run the pipeline every interval_seconds until stopped.

        Errors are logged and the loop continues with the next run.
        """
        logger.info("Schedule loop started")

        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Error in schedule loop: {e}")
                logger.debug("Schedule loop traceback", exc_info=True)

            self._stop_event.wait(timeout=self.interval_seconds)

        logger.info("Schedule loop stopped")

    def _log_run_results(self, results: List[BucketResult]):
        """Log one line per bucket plus a warning for degraded buckets."""
        for result in results:
            if result.error is not None:
                logger.error(
                    f"Bucket {result.bucket.key}: aborted by unexpected error ({result.error}), "
                    f"{len(result.delta)} files delivered before it"
                )
            elif result.skipped:
                logger.warning(f"Bucket {result.bucket.key}: skipped ({result.load_error})")
            elif result.append_error is not None:
                logger.warning(
                    f"Bucket {result.bucket.key}: {len(result.delta)} files delivered but NOT recorded "
                    f"({result.append_error}); they will be uploaded again next run"
                )
            elif result.batches_failed:
                logger.warning(
                    f"Bucket {result.bucket.key}: {result.batches_failed} batches failed, "
                    f"{len(result.delta)} files delivered"
                )
            else:
                logger.info(f"Bucket {result.bucket.key}: {len(result.delta)} files delivered")

    def _print_statistics(self):
        """Print system statistics."""
        logger.info("=" * 50)
        logger.info("System Statistics")
        logger.info("=" * 50)
        logger.info(f"Runs:               {self.stats['runs']}")
        logger.info(f"Files delivered:    {self.stats['files_delivered']}")
        logger.info(f"Batches failed:     {self.stats['batches_failed']}")
        logger.info(f"Data delivered:     {self.stats['bytes_delivered'] / (1024**3):.2f} GB")
        logger.info("=" * 50)

    def get_statistics(self) -> dict:
        """Public snapshot for tests/monitoring."""
        return dict(self.stats)


def main(argv=None):
    """
    Main entry point for Log Batch Upload System.

    Command-line arguments:
        --config: Path to configuration file
        --test-config: Test configuration and exit
        --once: Process trailing buckets once and exit
        --log-level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        int: Process exit code
    """
    import argparse

    parser = argparse.ArgumentParser(description="Log Batch Upload System")
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--test-config",
        action="store_true",
        help="Test configuration and exit"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process the trailing buckets once and exit"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if args.test_config:
        try:
            config = ConfigManager(args.config)
            logger.info("Configuration valid!")
            logger.info(f"Name: {config.get('name', 'log-batch')}")
            logger.info(f"Work dir: {config.get('paths.base_work_dir')}")
            logger.info(f"Filename template: {config.get('batch.filename_template')}")
            logger.info(f"Remote path template: {config.get('batch.remote_path_template')}")
            logger.info(f"Granularity: {config.get('batch.granularity')}")
            return 0
        except Exception as e:
            logger.error(f"Configuration error: {e}")
            return 1

    try:
        system = LogBatchUploadSystem(args.config)
    except (FileNotFoundError, ConfigValidationError) as e:
        logger.error(f"FATAL: {e}")
        return 1

    if args.once:
        results = system.run_once()
        return 0 if all(r.ok for r in results) else 2

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}")
        system._stop_event.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    system.start()
    logger.info("Running... Press Ctrl+C to stop")
    system.wait()
    system.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
