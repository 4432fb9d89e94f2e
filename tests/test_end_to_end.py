"""
End-to-end test: records → gzip file → PUT to stage → signed insertFiles call.

Uses a fake DB-API connection for the stage and `responses` for the REST
endpoint, so every real component (buffer, signer, notifier, pipeline) runs.
"""

import gzip
import json
import re
import shutil
import tempfile
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import pytest
import responses
from cryptography.hazmat.primitives import serialization

from snowpipe_sdk import IngestPipeline, PipeConfig, verify_token
from snowpipe_sdk.stage import SnowflakeStageUploader

KEYS_DIR = Path(__file__).parent.parent / "snowpipe_sdk" / "tests" / "keys"
ENDPOINT = re.compile(r"https://xy12345\.snowflakecomputing\.com/v1/data/pipes/LOGS\.PUBLIC\.EVENTS_PIPE/insertFiles\?requestId=.+")


class StageConnection:
    """DB-API double that 'stages' files by copying them into a directory."""

    def __init__(self, stage_dir: Path):
        self.stage_dir = stage_dir
        self._row = None

    def cursor(self):
        return self

    def execute(self, sql):
        match = re.match(r"PUT file://(\S+) @(\S+) ", sql)
        source = Path(match.group(1))
        target = self.stage_dir / source.name
        shutil.copy(source, target)
        size = target.stat().st_size
        self._row = (source.name, source.name, size, size, "GZIP", "GZIP", "UPLOADED", "")

    def fetchone(self):
        return self._row

    def close(self):
        pass


@pytest.fixture
def workdir():
    dirpath = tempfile.mkdtemp()
    yield Path(dirpath)
    shutil.rmtree(dirpath)


@pytest.fixture
def config(workdir):
    return PipeConfig.from_dict({
        "Account": "xy12345",
        "User": "ingest_user",
        "PrivateKeyFilename": str(KEYS_DIR / "rsa_wrapped_encrypted.pem"),
        "PrivateKeyPassphrase": "test-passphrase",
        "DatabaseName": "LOGS",
        "SchemaName": "PUBLIC",
        "PipeName": "EVENTS_PIPE",
        "StageName": "EVENTS_STAGE",
        "BufferCountRecords": 5,
        "CurrentLogFilename": str(workdir / "SnowpipeMessages.tmp.gz"),
    })


@responses.activate
def test_records_reach_stage_and_pipe(workdir, config):
    responses.add(responses.POST, ENDPOINT, json={"responseCode": "SUCCESS"}, status=200)
    stage_dir = workdir / "stage"
    stage_dir.mkdir()
    uploader = SnowflakeStageUploader(lambda: StageConnection(stage_dir), config.stage_name)

    with IngestPipeline.from_config(config, uploader=uploader) as pipeline:
        for i in range(7):
            pipeline.submit_object({"test": str(i), "test2": str(i)})

    # 5 records hit the count limit, the remaining 2 are drained on close
    staged = list(stage_dir.iterdir())
    assert len(staged) == 2
    batches = []
    for path in staged:
        with gzip.open(path, "rt", encoding="utf-8") as f:
            batches.append([json.loads(line)["test"] for line in f])
    assert sorted(batches, key=len) == [["5", "6"], ["0", "1", "2", "3", "4"]]

    # Local temp files are cleaned up after upload
    assert [p.name for p in workdir.iterdir()] == ["stage"]

    public_key = serialization.load_pem_public_key((KEYS_DIR / "rsa_public.pem").read_bytes())
    assert len(responses.calls) == 2
    request_ids = set()
    for call in responses.calls:
        body = json.loads(call.request.body)
        path = stage_dir / body["files"][0]["path"]
        assert body["files"][0]["size"] == path.stat().st_size
        token = call.request.headers["Authorization"].split(" ", 1)[1]
        claims = verify_token(token, public_key)
        assert claims["sub"] == "XY12345.INGEST_USER"
        assert claims["exp"] - claims["iat"] == 60
        request_ids.add(parse_qs(urlparse(call.request.url).query)["requestId"][0])
    assert len(request_ids) == 2
    assert {json.loads(c.request.body)["files"][0]["path"] for c in responses.calls} == {
        p.name for p in staged
    }


@responses.activate
def test_rejected_notification_leaves_file_staged(workdir, config):
    responses.add(responses.POST, ENDPOINT, json={"code": "390144"}, status=401)
    stage_dir = workdir / "stage"
    stage_dir.mkdir()
    uploader = SnowflakeStageUploader(lambda: StageConnection(stage_dir), config.stage_name)
    failures = []

    with IngestPipeline.from_config(config, uploader=uploader, on_flush_error=failures.append) as pipeline:
        pipeline.submit('{"event": "one"}')
        outcome = pipeline.drain()
        pipeline.submit('{"event": "two"}')

    assert outcome.staged
    assert outcome.error.status_code == 401
    assert len(failures) == 2
    assert len(list(stage_dir.iterdir())) == 2
