# tests/integration/conftest.py
"""
Fixtures for integration tests (mocked AWS)
These tests verify components work together with mocked external services
"""

from unittest.mock import Mock, patch

import pytest
import yaml


@pytest.fixture
def system_paths(tmp_path):
    """Work dir, temp dir and config location for one system"""
    base = tmp_path / "logs"
    base.mkdir()
    return {
        "base": base,
        "tmp": tmp_path / "tmp",
        "config": tmp_path / "config.yaml",
    }


@pytest.fixture
def write_config(system_paths):
    """
    Factory writing a YAML config for the S3 remote.

    Usage: write_config(granularity='hour', max_upload_bytes=150)
    """
    def _write(**batch_overrides):
        batch = {
            "filename_template": r"%Y%m%d%H\..*\.log",
            "remote_path_template": "logs/unbid/%Y/%m/%d/%H",
            "granularity": "hour",
            "max_upload_bytes": 150,
            "lookback_buckets": 1,
        }
        batch.update(batch_overrides)
        config = {
            "name": "integration",
            "paths": {
                "base_work_dir": str(system_paths["base"]),
                "tmp_dir": str(system_paths["tmp"]),
            },
            "batch": batch,
            "remote": {
                "type": "s3",
                "bucket": "test-bucket",
                "region": "us-east-1",
                "max_retries": 2,
            },
            "monitoring": {"cloudwatch_enabled": True},
        }
        system_paths["config"].write_text(yaml.safe_dump(config))
        return str(system_paths["config"])

    return _write


@pytest.fixture
def mock_s3_client():
    """Mock S3 client capturing uploaded object bodies"""
    mock = Mock()
    mock.objects = {}

    def upload_file(filename, bucket, key, Config=None):
        with open(filename, "rb") as f:
            mock.objects[key] = f.read()

    mock.upload_file.side_effect = upload_file
    return mock


@pytest.fixture
def mock_cloudwatch_client():
    """Mock CloudWatch client for integration tests"""
    mock = Mock()
    mock.put_metric_data.return_value = None
    return mock


@pytest.fixture
def mocked_aws(mock_s3_client, mock_cloudwatch_client, monkeypatch):
    """Patch boto3 in both AWS-facing modules"""
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)
    with patch("logbatch.upload_manager.boto3") as upload_boto3, \
         patch("logbatch.cloudwatch_manager.boto3") as cw_boto3, \
         patch("logbatch.upload_manager.time.sleep"):
        upload_boto3.session.Session.return_value.client.return_value = mock_s3_client
        cw_boto3.client.return_value = mock_cloudwatch_client
        yield mock_s3_client, mock_cloudwatch_client
