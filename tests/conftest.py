# tests/conftest.py
"""
Common fixtures for all test types
These are shared across unit and integration tests
"""

import os
import sys
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

# Add project root to Python path so 'logbatch' can be imported
# This allows tests to run without installing the package
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from logbatch.upload_manager import RemoteTransport  # noqa: E402

# Bucket 2015-01-22 10:00 is the most recent complete hour at this time
NOW = datetime(2015, 1, 22, 11, 5, 0)
BUCKET_PREFIX = "2015012210"
FILENAME_TEMPLATE = r"%Y%m%d%H\..*\.log"
REMOTE_TEMPLATE = "logs/%Y/%m/%d/%H"


class RecordingTransport(RemoteTransport):
    """
    In-memory transport that records every put.

    Attributes:
        puts (list): (remote_path, content bytes) per successful put
        fail (bool): When True, every put returns False
        fail_paths (set): Remote paths whose put returns False
    """

    def __init__(self):
        self.puts = []
        self.attempts = []
        self.fail = False
        self.fail_paths = set()

    def put(self, remote_path: str, local_path: str) -> bool:
        self.attempts.append(remote_path)
        if self.fail or remote_path in self.fail_paths:
            return False
        self.puts.append((remote_path, Path(local_path).read_bytes()))
        return True


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def work_dirs(tmp_path):
    """Separate base work dir and temp dir"""
    base = tmp_path / "logs"
    tmp = tmp_path / "tmp"
    base.mkdir()
    return base, tmp


@pytest.fixture
def make_log_file():
    """
    Factory creating a file of a given size and modification time.

    Usage: make_log_file(directory, 'name.log', size=100, mtime=1421920800)
    """
    def _make(directory, name, size=100, mtime=None, content=None):
        path = Path(directory) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        data = content if content is not None else (name.encode() * (size // len(name) + 1))[:size]
        path.write_bytes(data)
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _make


@pytest.fixture
def transport():
    """Recording transport (all puts succeed by default)"""
    return RecordingTransport()


@pytest.fixture
def now():
    """Fixed wall-clock time; the latest complete hour bucket starts 2015-01-22 10:00"""
    return NOW


@pytest.fixture
def bucket_prefix():
    """File name prefix of the latest complete bucket at `now`"""
    return BUCKET_PREFIX


@pytest.fixture
def make_pipeline(work_dirs, transport):
    """
    Factory for a pipeline over work_dirs with the recording transport.

    Defaults: hourly buckets, 150-byte batches, one bucket of lookback.
    """
    from logbatch.batch_pipeline import BatchUploadPipeline

    def _make(**overrides):
        base, tmp = work_dirs
        kwargs = dict(
            base_work_dir=base,
            tmp_dir=tmp,
            filename_template=FILENAME_TEMPLATE,
            remote_path_template=REMOTE_TEMPLATE,
            granularity="hour",
            max_upload_bytes=150,
            transport=transport,
            lookback_buckets=1,
            name="test-pipeline",
            clock=lambda: NOW,
        )
        kwargs.update(overrides)
        return BatchUploadPipeline(**kwargs)

    return _make


def pytest_configure(config):
    config.addinivalue_line("markers", "e2e: end-to-end tests against real services")
    config.addinivalue_line("markers", "real_aws: requires AWS credentials and TEST_BUCKET")
    config.addinivalue_line("markers", "slow: long-running test")
