"""Pytest fixtures for snowpipe_sdk tests."""

import gzip
import os
import tempfile
from pathlib import Path

import pytest

from snowpipe_sdk.clock import Clock
from snowpipe_sdk.policy import Thresholds
from snowpipe_sdk.stage import StageUploader, UploadError, UploadResult

KEYS_DIR = Path(__file__).parent / "keys"
KEY_PASSPHRASE = "test-passphrase"
KEY_FINGERPRINT = "SHA256:YpoWCEv84iUtNoGurKzlUFFMPWfelmcL7Pjd2Um0f8o="

START_TIME = 1_700_000_000.0


class FakeUploader(StageUploader):
    """Records every upload and snapshots the file contents.

    Set ``fail`` to make the next uploads raise UploadError.
    """

    def __init__(self):
        self.uploads: list = []
        self.contents: list = []
        self.fail = False

    def upload(self, local_path: Path) -> UploadResult:
        if self.fail:
            raise UploadError(local_path, "stage unavailable")
        with gzip.open(local_path, "rt", encoding="utf-8") as f:
            self.contents.append(f.read().splitlines())
        self.uploads.append(Path(local_path))
        return UploadResult(
            remote_path=Path(local_path).name,
            remote_size_bytes=os.path.getsize(local_path),
            local_path=Path(local_path),
        )


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    """A clock frozen at a fixed start time."""
    return Clock(frozen_time=START_TIME)


@pytest.fixture
def thresholds():
    """Small limits: 3 records, 1 MB, 60 s disk interval, 1 s memory interval."""
    return Thresholds(
        record_count_limit=3,
        byte_size_limit=1_000_000,
        disk_flush_interval_seconds=60,
        memory_flush_interval_millis=1000,
    )


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def key_path():
    return KEYS_DIR / "rsa_traditional.pem"


@pytest.fixture
def settings_dict(temp_dir, key_path):
    """A complete settings mapping pointing at temp_dir."""
    return {
        "account": "xy12345",
        "user": "ingest_user",
        "private_key_filename": str(key_path),
        "database_name": "LOGS",
        "schema_name": "PUBLIC",
        "pipe_name": "EVENTS_PIPE",
        "stage_name": "EVENTS_STAGE",
        "record_count_limit": 3,
        "byte_size_limit": 1_000_000,
        "disk_flush_interval_seconds": 60,
        "memory_flush_interval_millis": 1000,
        "current_log_filename": str(temp_dir / "SnowpipeMessages.tmp.gz"),
    }


@pytest.fixture(autouse=True)
def reset_env():
    """Reset environment variables after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)
