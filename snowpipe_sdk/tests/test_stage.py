"""Tests for snowpipe_sdk.stage module.

Uses FakeConnection classes and Mock S3 clients, NOT the Snowflake
connector or boto3.
"""

from pathlib import Path
from unittest.mock import Mock

import pytest

from snowpipe_sdk.stage import (
    S3StageUploader,
    SnowflakeStageUploader,
    UploadError,
    UploadResult,
    build_put_statement,
)


# ---------------------------------------------------------------------------
# FakeConnection: DB-API test double
# ---------------------------------------------------------------------------

class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def execute(self, sql):
        self.conn.executed.append(sql)
        if self.conn.error is not None:
            raise self.conn.error

    def fetchone(self):
        return self.conn.row

    def close(self):
        self.conn.cursor_closed = True


class FakeConnection:
    def __init__(self, row=None, error=None):
        self.row = row
        self.error = error
        self.executed: list = []
        self.closed = False
        self.cursor_closed = False

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = True


@pytest.fixture
def gz_file(temp_dir):
    path = temp_dir / "abc123.gz"
    path.write_bytes(b"\x1f\x8b" + b"\x00" * 30)
    return path


class TestPutStatement:

    def test_statement(self, gz_file):
        sql = build_put_statement(gz_file, "EVENTS_STAGE")
        assert sql == (
            f"PUT file://{gz_file.resolve().as_posix()} @EVENTS_STAGE "
            "OVERWRITE = TRUE AUTO_COMPRESS = FALSE SOURCE_COMPRESSION = GZIP"
        )

    def test_stage_with_at_prefix(self, gz_file):
        assert " @~/staged " in build_put_statement(gz_file, "@~/staged")


class TestSnowflakeStageUploader:

    def test_upload_reads_target_columns(self, gz_file):
        conn = FakeConnection(row=("abc123.gz", "abc123.gz", 32, 48, "GZIP", "GZIP", "UPLOADED", ""))
        uploader = SnowflakeStageUploader(lambda: conn, "EVENTS_STAGE")

        result = uploader.upload(gz_file)

        assert result == UploadResult(remote_path="abc123.gz", remote_size_bytes=48, local_path=gz_file)
        assert conn.executed == [build_put_statement(gz_file, "EVENTS_STAGE")]
        assert conn.closed
        assert conn.cursor_closed

    def test_connection_failure(self, gz_file):
        def connect():
            raise ConnectionError("network down")

        uploader = SnowflakeStageUploader(connect, "EVENTS_STAGE")
        with pytest.raises(UploadError, match="connection failed") as exc_info:
            uploader.upload(gz_file)
        assert exc_info.value.local_path == gz_file

    def test_execute_failure_closes_connection(self, gz_file):
        conn = FakeConnection(error=RuntimeError("stage does not exist"))
        uploader = SnowflakeStageUploader(lambda: conn, "EVENTS_STAGE")

        with pytest.raises(UploadError, match="stage does not exist"):
            uploader.upload(gz_file)
        assert conn.closed

    def test_empty_result(self, gz_file):
        conn = FakeConnection(row=None)
        uploader = SnowflakeStageUploader(lambda: conn, "EVENTS_STAGE")

        with pytest.raises(UploadError, match="unexpected PUT result"):
            uploader.upload(gz_file)

    def test_new_connection_per_upload(self, gz_file):
        connections = []

        def connect():
            conn = FakeConnection(row=("a", "a", 1, 1))
            connections.append(conn)
            return conn

        uploader = SnowflakeStageUploader(connect, "EVENTS_STAGE")
        uploader.upload(gz_file)
        uploader.upload(gz_file)

        assert len(connections) == 2
        assert all(c.closed for c in connections)


class TestS3StageUploader:

    def test_upload_with_prefix(self, gz_file):
        client = Mock()
        uploader = S3StageUploader(bucket="stage-bucket", prefix="/events/", client=client)

        result = uploader.upload(gz_file)

        client.upload_file.assert_called_once()
        args, kwargs = client.upload_file.call_args
        assert args == (str(gz_file), "stage-bucket", "events/abc123.gz")
        assert kwargs["ExtraArgs"] == {"ContentEncoding": "gzip"}
        assert result.remote_path == "abc123.gz"
        assert result.remote_size_bytes == 32

    def test_upload_without_prefix(self, gz_file):
        client = Mock()
        S3StageUploader(bucket="stage-bucket", client=client).upload(gz_file)
        assert client.upload_file.call_args[0][2] == "abc123.gz"

    def test_client_error_wrapped(self, gz_file):
        client = Mock()
        client.upload_file.side_effect = Exception("AccessDenied")
        uploader = S3StageUploader(bucket="stage-bucket", client=client)

        with pytest.raises(UploadError, match="AccessDenied") as exc_info:
            uploader.upload(gz_file)
        assert exc_info.value.local_path == Path(gz_file)
        assert gz_file.exists()
