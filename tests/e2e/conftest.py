# tests/e2e/conftest.py
"""
Fixtures for E2E tests (REAL AWS)
These tests use actual AWS services and run in CI/CD only
"""

import os

import boto3
import pytest


@pytest.fixture(scope="session")
def aws_config():
    """
    Real AWS configuration from environment variables.

    The whole suite is skipped unless TEST_BUCKET is set.
    """
    bucket = os.getenv("TEST_BUCKET")
    if not bucket:
        pytest.skip("TEST_BUCKET not set, skipping real AWS tests")

    return {
        "profile": os.getenv("AWS_PROFILE", None),
        "bucket": bucket,
        "region": os.getenv("AWS_REGION", "us-east-1"),
    }


@pytest.fixture
def real_s3_client(aws_config):
    """
    REAL S3 client - connects to actual AWS
    NO MOCKING - this makes real API calls
    """
    if aws_config["profile"]:
        session = boto3.Session(profile_name=aws_config["profile"], region_name=aws_config["region"])
    else:
        session = boto3.Session(region_name=aws_config["region"])

    kwargs = {}
    if aws_config["region"].startswith("cn-"):
        kwargs["endpoint_url"] = f"https://s3.{aws_config['region']}.amazonaws.com.cn"
    return session.client("s3", **kwargs)


@pytest.fixture
def real_transport(aws_config):
    """S3 transport connected to REAL AWS S3"""
    from logbatch.upload_manager import S3Transport

    return S3Transport(
        bucket=aws_config["bucket"],
        region=aws_config["region"],
        profile_name=aws_config["profile"],
    )


@pytest.fixture
def s3_cleanup(real_s3_client, aws_config):
    """
    Auto-cleanup S3 objects after test completes
    Usage: s3_cleanup('path/to/object.log')
    """
    objects_to_delete = []

    def track(key):
        objects_to_delete.append(key)
        return key

    yield track

    for key in objects_to_delete:
        try:
            real_s3_client.delete_object(Bucket=aws_config["bucket"], Key=key)
            print(f"✓ Cleaned up s3://{aws_config['bucket']}/{key}")
        except Exception as e:
            print(f"✗ Cleanup failed for {key}: {e}")
