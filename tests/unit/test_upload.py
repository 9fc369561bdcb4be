#!/usr/bin/env python3
"""
Tests for Upload Manager
"""

from pathlib import Path
from unittest.mock import Mock, patch

import boto3
import pytest
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import EndpointConnectionError
from botocore.stub import Stubber

from logbatch.upload_manager import (
    ArtifactUploader,
    LocalDirectoryTransport,
    PermanentUploadError,
    RemoteTransport,
    S3Transport,
)


@pytest.fixture
def artifact(temp_dir):
    """Merged artifact on disk"""
    path = temp_dir / "2015012210.a.log_2015012210.b.log"
    path.write_bytes(b"merged data" * 100)
    return path


@pytest.fixture
def s3_transport():
    """S3 transport with mocked boto3 session"""
    with patch("logbatch.upload_manager.boto3") as mock_boto3:
        mock_client = Mock()
        mock_boto3.session.Session.return_value.client.return_value = mock_client
        transport = S3Transport(bucket="test-bucket", region="us-east-1", max_retries=3)
    transport.s3_client = mock_client
    return transport


class TestS3Transport:
    """Test S3 transfer with retries"""

    def test_initialization(self, s3_transport):
        """Test transport stores settings"""
        assert s3_transport.bucket == "test-bucket"
        assert s3_transport.region == "us-east-1"
        assert s3_transport.max_retries == 3

    def test_china_region_endpoint(self):
        """Test China regions use the .com.cn endpoint"""
        with patch("logbatch.upload_manager.boto3") as mock_boto3, \
             patch.dict("os.environ", {}, clear=False) as env:
            env.pop("AWS_ENDPOINT_URL", None)
            S3Transport(bucket="b", region="cn-north-1")
            session = mock_boto3.session.Session.return_value

        _, kwargs = session.client.call_args
        assert kwargs["endpoint_url"] == "https://s3.cn-north-1.amazonaws.com.cn"

    def test_custom_endpoint(self):
        """Test AWS_ENDPOINT_URL is honoured (LocalStack)"""
        with patch("logbatch.upload_manager.boto3") as mock_boto3, \
             patch.dict("os.environ", {"AWS_ENDPOINT_URL": "http://localhost:4566"}):
            S3Transport(bucket="b", region="us-east-1")
            session = mock_boto3.session.Session.return_value

        _, kwargs = session.client.call_args
        assert kwargs["endpoint_url"] == "http://localhost:4566"

    def test_profile(self):
        """Test profile is passed to the session"""
        with patch("logbatch.upload_manager.boto3") as mock_boto3:
            S3Transport(bucket="b", region="us-east-1", profile_name="prod")

        mock_boto3.session.Session.assert_called_once_with(profile_name="prod")

    def test_put_success(self, s3_transport, artifact):
        """Test key is the remote path without leading slash"""
        assert s3_transport.put("/logs/2015/01/22/10/x.log", str(artifact)) is True

        args, kwargs = s3_transport.s3_client.upload_file.call_args
        assert args == (str(artifact), "test-bucket", "logs/2015/01/22/10/x.log")
        assert "Config" in kwargs

    @patch("logbatch.upload_manager.time.sleep")
    def test_put_retries_network_errors(self, mock_sleep, s3_transport, artifact):
        """Test connection errors are retried with backoff"""
        s3_transport.s3_client.upload_file.side_effect = [
            EndpointConnectionError(endpoint_url="https://s3"),
            EndpointConnectionError(endpoint_url="https://s3"),
            None,
        ]

        assert s3_transport.put("logs/x.log", str(artifact)) is True
        assert s3_transport.s3_client.upload_file.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]

    @patch("logbatch.upload_manager.time.sleep")
    def test_put_parses_code_from_unchained_upload_error(self, mock_sleep, s3_transport, artifact):
        """Test a wrapped error without exception chain is classified from its message"""
        s3_transport.s3_client.upload_file.side_effect = S3UploadFailedError(
            "Failed to upload x to test-bucket/logs/x.log: An error occurred (NoSuchBucket) "
            "when calling the PutObject operation: The specified bucket does not exist"
        )

        with pytest.raises(PermanentUploadError, match="NoSuchBucket"):
            s3_transport.put("logs/x.log", str(artifact))

        mock_sleep.assert_not_called()

    def test_put_missing_artifact(self, s3_transport, temp_dir):
        """Test a missing artifact is a permanent error"""
        with pytest.raises(PermanentUploadError, match="not found"):
            s3_transport.put("logs/x.log", str(temp_dir / "missing"))

    def test_backoff_sequence(self, s3_transport):
        """Test exponential backoff is capped at 512 seconds"""
        assert s3_transport._calculate_backoff(1) == 1
        assert s3_transport._calculate_backoff(5) == 16
        assert s3_transport._calculate_backoff(10) == 512
        assert s3_transport._calculate_backoff(20) == 512


class TestS3TransportStubbed:
    """Test retry classification against a real boto3 client with stubbed responses"""

    @pytest.fixture
    def stubbed(self, monkeypatch):
        """S3 transport whose client answers from a Stubber queue"""
        monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)
        monkeypatch.delenv("AWS_PROFILE", raising=False)
        transport = S3Transport(bucket="test-bucket", region="us-east-1", max_retries=3)
        transport.s3_client = boto3.client(
            "s3",
            region_name="us-east-1",
            aws_access_key_id="testing",
            aws_secret_access_key="testing",
        )
        with Stubber(transport.s3_client) as stubber:
            yield transport, stubber

    @staticmethod
    def queue_error(stubber, code, status=503):
        stubber.add_client_error(
            "put_object",
            service_error_code=code,
            service_message=f"{code} from stub",
            http_status_code=status,
        )

    @staticmethod
    def queue_success(stubber):
        stubber.add_response("put_object", {"ETag": '"6805f2cfc46c0f04559748bb039d69ae"'})

    @patch("logbatch.upload_manager.time.sleep")
    def test_throttling_retried_until_success(self, mock_sleep, stubbed, artifact):
        """Test SlowDown from upload_file is retried with backoff"""
        transport, stubber = stubbed
        self.queue_error(stubber, "SlowDown")
        self.queue_error(stubber, "SlowDown")
        self.queue_success(stubber)

        assert transport.put("logs/x.log", str(artifact)) is True

        stubber.assert_no_pending_responses()
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]

    @patch("logbatch.upload_manager.time.sleep")
    def test_exhausted_retries_return_false(self, mock_sleep, stubbed, artifact):
        """Test every attempt is used before giving up without raising"""
        transport, stubber = stubbed
        for _ in range(3):
            self.queue_error(stubber, "InternalError", status=500)

        assert transport.put("logs/x.log", str(artifact)) is False

        stubber.assert_no_pending_responses()
        assert mock_sleep.call_count == 2

    @pytest.mark.parametrize("code,status", [
        ("NoSuchBucket", 404),
        ("AccessDenied", 403),
        ("InvalidAccessKeyId", 403),
    ])
    @patch("logbatch.upload_manager.time.sleep")
    def test_permanent_errors_not_retried(self, mock_sleep, stubbed, artifact, code, status):
        """Test permanent errors stop after one attempt"""
        transport, stubber = stubbed
        self.queue_error(stubber, code, status=status)
        self.queue_success(stubber)

        with pytest.raises(PermanentUploadError, match=code):
            transport.put("logs/x.log", str(artifact))

        mock_sleep.assert_not_called()
        with pytest.raises(AssertionError):
            stubber.assert_no_pending_responses()


class TestLocalDirectoryTransport:
    """Test copy into a mounted remote root"""

    def test_put_copies_under_root(self, temp_dir, artifact):
        """Test artifact lands at root/remote_path with same content"""
        root = temp_dir / "remote"
        transport = LocalDirectoryTransport(root)

        assert transport.put("/logs/2015/01/22/10/x.log", str(artifact)) is True

        target = root / "logs/2015/01/22/10/x.log"
        assert target.read_bytes() == artifact.read_bytes()
        assert not target.with_name("x.log.partial").exists()

    def test_put_missing_artifact(self, temp_dir):
        """Test missing artifact raises permanent error"""
        with pytest.raises(PermanentUploadError):
            LocalDirectoryTransport(temp_dir).put("x.log", str(temp_dir / "missing"))

    def test_put_failure_returns_false(self, temp_dir, artifact):
        """Test an unwritable destination returns False"""
        root = temp_dir / "remote"
        root.write_text("a file, not a directory")

        assert LocalDirectoryTransport(root).put("logs/x.log", str(artifact)) is False


class TestArtifactUploader:
    """Test artifact lifecycle around the transport"""

    def test_success_deletes_artifact(self, artifact):
        """Test successful upload removes the local artifact"""
        transport = Mock(spec=RemoteTransport)
        transport.put.return_value = True

        assert ArtifactUploader(transport).upload(artifact, "logs/2015/01/22/10") is True

        transport.put.assert_called_once_with(
            f"logs/2015/01/22/10/{artifact.name}", str(artifact)
        )
        assert not artifact.exists()

    def test_trailing_slash_not_doubled(self, artifact):
        """Test remote dir with trailing slash"""
        transport = Mock(spec=RemoteTransport)
        transport.put.return_value = True

        ArtifactUploader(transport).upload(artifact, "logs/10/")

        assert transport.put.call_args.args[0] == f"logs/10/{artifact.name}"

    def test_failure_keeps_artifact(self, artifact):
        """Test failed upload leaves the artifact for recovery"""
        transport = Mock(spec=RemoteTransport)
        transport.put.return_value = False

        assert ArtifactUploader(transport).upload(artifact, "logs") is False
        assert artifact.exists()

    def test_permanent_error_is_failure(self, artifact):
        """Test PermanentUploadError becomes a False result"""
        transport = Mock(spec=RemoteTransport)
        transport.put.side_effect = PermanentUploadError("bucket gone")

        assert ArtifactUploader(transport).upload(artifact, "logs") is False
        assert artifact.exists()

    def test_unexpected_error_is_failure(self, artifact):
        """Test unexpected transport exceptions don't escape"""
        transport = Mock(spec=RemoteTransport)
        transport.put.side_effect = RuntimeError("boom")

        assert ArtifactUploader(transport).upload(artifact, "logs") is False
        assert artifact.exists()

    def test_delete_failure_still_success(self, artifact):
        """Test failing to remove the artifact doesn't undo the delivery"""
        transport = Mock(spec=RemoteTransport)
        transport.put.return_value = True

        with patch.object(Path, "unlink", side_effect=PermissionError("denied")):
            assert ArtifactUploader(transport).upload(artifact, "logs") is True
