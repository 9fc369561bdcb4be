#!/usr/bin/env python3
"""
Upload Manager for Log Batch Upload System
Transfers merged artifacts to the remote store

The pipeline depends only on the transfer primitive
put(remote_path, local_path) -> bool. Two transports are provided:

- S3Transport: Amazon S3 via boto3 with exponential backoff retry and
  classification of permanent errors
- LocalDirectoryTransport: copy into a locally mounted remote filesystem

ArtifactUploader wraps a transport and owns the artifact lifecycle:
the local artifact is deleted after a successful transfer and kept on disk
after a failed one.
"""

import logging
import os
import re
import shutil
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from logbatch.utils import format_bytes, join_remote_path

logger = logging.getLogger(__name__)

# S3 Upload Limits and Configuration
MAX_S3_FILE_SIZE = 5 * 1024**4  # 5 TB (AWS S3 maximum object size)
MULTIPART_THRESHOLD = 8 * 1024**2  # 8 MB
MULTIPART_CHUNK_SIZE = 8 * 1024**2  # 8 MB per part
MAX_BACKOFF_SECONDS = 512

# ClientError codes that will not resolve by retrying
PERMANENT_ERROR_CODES = {
    "InvalidAccessKeyId": "Invalid AWS credentials",
    "SignatureDoesNotMatch": "Invalid AWS credentials",
    "NoSuchBucket": "Bucket does not exist",
    "AccessDenied": "Access denied (check IAM permissions and bucket policy)",
    "EntityTooLarge": "Artifact exceeds S3 size limits",
}

# Code embedded in the message of a wrapped ClientError
_ERROR_CODE_PATTERN = re.compile(r"An error occurred \((\w+)\)")


def _client_error_details(error: Exception):
    """
    Error code and message of a ClientError.

    upload_file() re-raises ClientError as S3UploadFailedError; the original
    error is taken from the exception chain, or the code parsed from the
    message when the chain is missing.
    """
    if isinstance(error, S3UploadFailedError):
        cause = error.__cause__ or error.__context__
        if not isinstance(cause, ClientError):
            match = _ERROR_CODE_PATTERN.search(str(error))
            return (match.group(1) if match else ""), str(error)
        error = cause

    details = error.response.get("Error", {})
    return details.get("Code", ""), details.get("Message", str(error))


class PermanentUploadError(Exception):
    """
    Raised when a transfer fails for a reason retrying won't fix.

    Examples:
    - Artifact not found or unreadable
    - Invalid AWS credentials
    - Bucket doesn't exist
    - IAM permissions denied
    """

    pass


class RemoteTransport(ABC):
    """Opaque transfer primitive: atomic success or failure, no resume."""

    @abstractmethod
    def put(self, remote_path: str, local_path: str) -> bool:
        """
        Transfer local_path to remote_path.

        Returns:
            bool: True if the transfer succeeded

        Raises:
            PermanentUploadError: For failures that retrying won't fix
        """


class S3Transport(RemoteTransport):
    """
    Uploads artifacts to S3 with retry logic.

    The remote path becomes the object key (leading '/' removed).

    Example:
        >>> transport = S3Transport(bucket='logs', region='us-east-1')
        >>> transport.put('logs/2015/01/22/10/a.log_b.log', '/data/tmp/a.log_b.log')
        True

    Attributes:
        bucket (str): S3 bucket name
        region (str): AWS region
        max_retries (int): Attempts per artifact
        s3_client: Boto3 S3 client
    """

    def __init__(self, bucket: str, region: str, max_retries: int = 3, profile_name: str = None):
        """
        Initialize S3 transport.

        Args:
            bucket: S3 bucket name
            region: AWS region (e.g., 'cn-north-1', 'us-east-1')
            max_retries: Maximum attempts per artifact (default: 3)
            profile_name: AWS profile name (default: None uses default chain)
        """
        self.bucket = bucket
        self.region = region
        self.max_retries = max_retries

        # LocalStack (testing)
        endpoint_url = os.getenv("AWS_ENDPOINT_URL")

        client_kwargs = {"region_name": region}

        if profile_name:
            session = boto3.session.Session(profile_name=profile_name)
            logger.info(f"Using AWS profile: {profile_name}")
        else:
            session = boto3.session.Session()

        if endpoint_url:
            logger.info(f"Using custom endpoint: {endpoint_url}")
            client_kwargs["endpoint_url"] = endpoint_url
            client_kwargs["aws_access_key_id"] = os.getenv("AWS_ACCESS_KEY_ID", "test")
            client_kwargs["aws_secret_access_key"] = os.getenv("AWS_SECRET_ACCESS_KEY", "test")
        elif region.startswith("cn-"):
            # AWS China uses different endpoints
            logger.info(f"Using AWS China endpoint for region: {region}")
            client_kwargs["endpoint_url"] = f"https://s3.{region}.amazonaws.com.cn"

        self.s3_client = session.client("s3", **client_kwargs)
        self.transfer_config = TransferConfig(
            multipart_threshold=MULTIPART_THRESHOLD,
            multipart_chunksize=MULTIPART_CHUNK_SIZE,
        )

        logger.info(f"S3 transport initialized for bucket: {bucket} (max retries: {max_retries})")

    def put(self, remote_path: str, local_path: str) -> bool:
        """
        Upload artifact to S3, retrying transient failures with backoff.

        Returns:
            bool: True on success, False once retries are exhausted

        Raises:
            PermanentUploadError: Artifact missing or unreadable, bad
                credentials, missing bucket, access denied, too large
        """
        file_path = Path(local_path)
        key = remote_path.lstrip("/")

        try:
            file_size = file_path.stat().st_size
        except FileNotFoundError:
            raise PermanentUploadError(f"Artifact not found: {local_path}")
        except OSError as e:
            raise PermanentUploadError(f"Cannot access artifact: {e}")

        if file_size > MAX_S3_FILE_SIZE:
            raise PermanentUploadError(f"Artifact exceeds S3 5TB limit: {format_bytes(file_size)}")

        for attempt in range(1, self.max_retries + 1):
            try:
                logger.info(f"Uploading {file_path.name} (attempt {attempt}/{self.max_retries})")
                self.s3_client.upload_file(
                    str(file_path), self.bucket, key, Config=self.transfer_config
                )
                logger.info(f"SUCCESS: {file_path.name} -> s3://{self.bucket}/{key}")
                return True

            except (ClientError, S3UploadFailedError) as e:
                error_code, error_message = _client_error_details(e)

                if error_code in PERMANENT_ERROR_CODES:
                    logger.error(
                        f"PERMANENT ERROR: {PERMANENT_ERROR_CODES[error_code]} "
                        f"({error_code}: {error_message})"
                    )
                    raise PermanentUploadError(f"{PERMANENT_ERROR_CODES[error_code]}: {error_code}")

                logger.warning(f"Upload failed (attempt {attempt}): {error_code} - {error_message}")

            except FileNotFoundError:
                raise PermanentUploadError(f"Artifact deleted during upload: {local_path}")

            except BotoCoreError as e:
                logger.warning(f"Network error (attempt {attempt}): {e}")

            if attempt < self.max_retries:
                delay = self._calculate_backoff(attempt)
                logger.info(f"Retrying in {delay} seconds...")
                time.sleep(delay)

        logger.error(f"Max retries exceeded for {file_path.name}")
        return False

    def _calculate_backoff(self, attempt: int) -> int:
        """
        Exponential backoff delay: min(2^(attempt-1), 512).

        Examples:
            >>> _calculate_backoff(1)  # 1 second
            >>> _calculate_backoff(5)  # 16 seconds
            >>> _calculate_backoff(11) # 512 seconds (capped)
        """
        return min(2 ** (attempt - 1), MAX_BACKOFF_SECONDS)


class LocalDirectoryTransport(RemoteTransport):
    """
    Copies artifacts under a root directory (e.g. an NFS or HDFS fuse mount).

    The copy is written under a temporary name and renamed into place, so a
    reader never observes a partial artifact.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def put(self, remote_path: str, local_path: str) -> bool:
        source = Path(local_path)
        if not source.exists():
            raise PermanentUploadError(f"Artifact not found: {local_path}")

        target = self.root / remote_path.lstrip("/")
        partial = target.with_name(target.name + ".partial")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, partial)
            partial.replace(target)
        except OSError as e:
            logger.error(f"Copy to {target} failed: {e}")
            if partial.exists():
                partial.unlink()
            return False

        logger.info(f"SUCCESS: {source.name} -> {target}")
        return True


class ArtifactUploader:
    """
    Uploads merged artifacts and manages their local lifecycle.

    Attributes:
        transport (RemoteTransport): Transfer primitive
    """

    def __init__(self, transport: RemoteTransport):
        self.transport = transport

    def upload(self, artifact: Union[str, Path], remote_dir: str, log=None) -> bool:
        """
        Transfer artifact to remote_dir/<artifact name>.

        On success the local artifact is deleted. On failure it is left on
        disk for inspection and manual recovery.

        Returns:
            bool: True if the transfer succeeded
        """
        log = log or logger
        artifact = Path(artifact)
        remote_path = join_remote_path(remote_dir, artifact.name)

        try:
            success = self.transport.put(remote_path, str(artifact))
        except PermanentUploadError as e:
            log.error(f"Permanent upload error for {artifact.name}: {e}")
            success = False
        except Exception as e:
            log.error(f"Unexpected error uploading {artifact.name}: {e}")
            log.debug("Upload traceback", exc_info=True)
            success = False

        if not success:
            log.warning(f"Upload of {artifact} to {remote_path} failed, artifact kept on disk")
            return False

        try:
            artifact.unlink()
        except OSError as e:
            # Already delivered, only local cleanup failed
            log.warning(f"Uploaded but could not delete local artifact {artifact}: {e}")

        log.info(f"Uploaded {artifact.name} to {remote_path}")
        return True
