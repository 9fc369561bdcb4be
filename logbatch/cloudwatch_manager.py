#!/usr/bin/env python3
"""
CloudWatch Manager for Log Batch Upload System
Publishes per-run delivery metrics
"""

import logging
import os
from datetime import datetime, timezone

import boto3

logger = logging.getLogger(__name__)

CLOUDWATCH_NAMESPACE = "LogBatch/Upload"
METRIC_FILES_DELIVERED = "FilesDelivered"
METRIC_BYTES_DELIVERED = "BytesDelivered"
METRIC_FAILED_BATCHES = "FailedBatches"
METRIC_APPEND_FAILURES = "ProcessedLogWriteFailures"


class CloudWatchManager:
    """
    Accumulates delivery counters and publishes them to CloudWatch.

    Metrics Published (dimension Pipeline=<name>):
    - LogBatch/Upload/FilesDelivered
    - LogBatch/Upload/BytesDelivered
    - LogBatch/Upload/FailedBatches
    - LogBatch/Upload/ProcessedLogWriteFailures

    Example:
        >>> cw = CloudWatchManager('us-east-1', 'unbid-logs', enabled=False)
        >>> cw.record_bucket(files=12, bytes_delivered=50 * 1024**2, failed_batches=1)
        >>> cw.publish_metrics()
    """

    def __init__(self, region: str, pipeline_name: str, enabled: bool = False, profile_name: str = None):
        """Initialize CloudWatch manager (no client is created when disabled)."""
        self.region = region
        self.pipeline_name = pipeline_name
        self.enabled = enabled
        self.cw_client = None
        self._reset()

        if not self.enabled:
            logger.info("CloudWatch disabled (enabled=False)")
            return

        endpoint_url = os.getenv("AWS_ENDPOINT_URL")
        try:
            if endpoint_url:
                logger.info(f"CloudWatch in TEST mode (endpoint: {endpoint_url})")
                self.cw_client = boto3.client(
                    "cloudwatch",
                    region_name=region,
                    endpoint_url=endpoint_url,
                    aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID", "test"),
                    aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY", "test"),
                )
            elif profile_name:
                session = boto3.Session(profile_name=profile_name)
                self.cw_client = session.client("cloudwatch", region_name=region)
                logger.info(f"CloudWatch initialized with profile '{profile_name}' for region: {region}")
            else:
                self.cw_client = boto3.client("cloudwatch", region_name=region)
                logger.info(f"CloudWatch initialized for region: {region}")
        except Exception as e:
            logger.error(f"CloudWatch client creation failed: {e}")
            logger.error("Set monitoring.cloudwatch_enabled: false if monitoring is optional")
            raise RuntimeError(f"CloudWatch initialization failed: {e}")

    def _reset(self):
        self.files_delivered = 0
        self.bytes_delivered = 0
        self.failed_batches = 0
        self.append_failures = 0

    def record_bucket(self, files: int, bytes_delivered: int, failed_batches: int, append_failed: bool = False):
        """Add one bucket run's counters."""
        self.files_delivered += files
        self.bytes_delivered += bytes_delivered
        self.failed_batches += failed_batches
        if append_failed:
            self.append_failures += 1
        logger.debug(
            f"Recorded bucket: {files} files, {bytes_delivered} bytes, {failed_batches} failed batches"
        )

    def publish_metrics(self):
        """Publish non-zero counters and reset them. Errors are logged, not raised."""
        if not self.enabled:
            logger.debug("CloudWatch disabled, skipping publish")
            return

        if self.cw_client is None:
            logger.error("CloudWatch client not initialized, cannot publish metrics")
            return

        timestamp = datetime.now(timezone.utc)
        dimensions = [{"Name": "Pipeline", "Value": self.pipeline_name}]
        counters = [
            (METRIC_FILES_DELIVERED, self.files_delivered, "Count"),
            (METRIC_BYTES_DELIVERED, self.bytes_delivered, "Bytes"),
            (METRIC_FAILED_BATCHES, self.failed_batches, "Count"),
            (METRIC_APPEND_FAILURES, self.append_failures, "Count"),
        ]
        metrics = [
            {
                "MetricName": name,
                "Value": value,
                "Unit": unit,
                "Timestamp": timestamp,
                "Dimensions": dimensions,
            }
            for name, value, unit in counters
            if value > 0
        ]

        if not metrics:
            return

        try:
            self.cw_client.put_metric_data(Namespace=CLOUDWATCH_NAMESPACE, MetricData=metrics)
            logger.info(f"Published {len(metrics)} metrics to CloudWatch")
            self._reset()
        except Exception as e:
            logger.error(f"Failed to publish CloudWatch metrics: {e}")
