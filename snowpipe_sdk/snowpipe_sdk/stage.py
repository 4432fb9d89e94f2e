"""
Stage uploaders - move a finalized gzip file into a remote stage.

Two implementations:
    SnowflakeStageUploader: PUT file://... @stage over a DB-API connection
    S3StageUploader: upload_file into the S3 bucket behind an external stage

Neither imports its driver at module import time. The Snowflake connector
and boto3 are only loaded when a real connection/client is first needed.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Union

logger = logging.getLogger(__name__)


class UploadError(Exception):
    """Raised when a file could not be transferred to the stage.

    The local file is left in place so it can be recovered.

    Attributes:
        local_path: The local file that failed to upload.
    """

    def __init__(self, local_path: Union[str, Path], message: str = ""):
        self.local_path = Path(local_path)
        super().__init__(
            f"Failed to upload {self.local_path.name} to stage"
            + (f": {message}" if message else "")
        )


@dataclass(frozen=True)
class UploadResult:
    """Where a file landed in the stage."""
    remote_path: str
    remote_size_bytes: int
    local_path: Optional[Path] = None


class StageUploader(ABC):
    """
    Abstract base class for stage uploaders.
    """

    @abstractmethod
    def upload(self, local_path: Path) -> UploadResult:
        """
        Upload a local file to the stage.

        Args:
            local_path: Finalized gzip file

        Returns:
            UploadResult describing the staged file

        Raises:
            UploadError: On connection or transfer failure
        """
        pass


# ---------------------------------------------------------------------------
# Snowflake internal stage
# ---------------------------------------------------------------------------

def build_put_statement(local_path: Path, stage_name: str) -> str:
    """Build the PUT command for an already gzip-compressed file."""
    file_uri = Path(local_path).resolve().as_posix()
    stage = stage_name if stage_name.startswith("@") else f"@{stage_name}"
    return (
        f"PUT file://{file_uri} {stage} "
        "OVERWRITE = TRUE AUTO_COMPRESS = FALSE SOURCE_COMPRESSION = GZIP"
    )


def snowflake_connect(config: Any) -> Callable[[], Any]:
    """
    Build a connection factory for the Snowflake connector.

    Args:
        config: PipeConfig with account/user/key/database/schema settings

    Returns:
        Zero-argument callable returning a new DB-API connection
    """
    def connect():
        try:
            import snowflake.connector
        except ImportError:
            logger.error(
                "snowflake-connector-python not installed. "
                "Run: pip install snowflake-connector-python"
            )
            raise
        params = {
            "account": config.account,
            "user": config.user,
            "authenticator": "SNOWFLAKE_JWT",
            "private_key_file": config.private_key_filename,
            "database": config.database_name,
            "schema": config.schema_name,
        }
        if config.private_key_passphrase:
            params["private_key_file_pwd"] = config.private_key_passphrase
        return snowflake.connector.connect(**params)

    return connect


class SnowflakeStageUploader(StageUploader):
    """
    Uploads files to a Snowflake internal stage with PUT.

    Any object returned by ``connect`` that follows DB-API 2.0 (cursor(),
    execute(), fetchone(), close()) will work.

    The PUT result row is (source, target, source_size, target_size, ...).
    """

    def __init__(self, connect: Callable[[], Any], stage_name: str):
        """
        Args:
            connect: Factory returning a new DB-API connection per upload
            stage_name: Target stage, with or without the leading '@'
        """
        self._connect = connect
        self.stage_name = stage_name

    def upload(self, local_path: Path) -> UploadResult:
        local_path = Path(local_path)
        statement = build_put_statement(local_path, self.stage_name)

        try:
            conn = self._connect()
        except Exception as e:
            raise UploadError(local_path, f"connection failed: {e}") from e
        logger.debug("Stage connection established")

        try:
            cursor = conn.cursor()
            try:
                cursor.execute(statement)
                row = cursor.fetchone()
            finally:
                cursor.close()
        except Exception as e:
            raise UploadError(local_path, str(e)) from e
        finally:
            conn.close()
            logger.debug("Stage connection closed")

        if not row or len(row) < 4:
            raise UploadError(local_path, f"unexpected PUT result: {row!r}")

        result = UploadResult(
            remote_path=str(row[1]),
            remote_size_bytes=int(row[3]),
            local_path=local_path,
        )
        logger.info(
            f"File uploaded: path={result.remote_path}, size={result.remote_size_bytes}"
        )
        return result


# ---------------------------------------------------------------------------
# S3 external stage
# ---------------------------------------------------------------------------

class S3StageUploader(StageUploader):
    """
    Uploads files to the S3 location behind a Snowflake external stage.

    The notification path is relative to the stage URL, so the returned
    remote_path is the file name and does not include the prefix.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region: str = "us-east-1",
        client: Any = None,
    ):
        """
        Args:
            bucket: S3 bucket backing the stage
            prefix: Key prefix matching the stage URL path
            region: AWS region
            client: Optional preconfigured boto3 S3 client
        """
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region
        self._s3_client = client

    def _get_s3_client(self):
        """Lazy initialization of S3 client."""
        if self._s3_client is None:
            try:
                import boto3
                self._s3_client = boto3.client("s3", region_name=self.region)
            except ImportError:
                logger.error("boto3 not installed. Run: pip install boto3")
                raise
        return self._s3_client

    def upload(self, local_path: Path) -> UploadResult:
        local_path = Path(local_path)
        key = f"{self.prefix}/{local_path.name}" if self.prefix else local_path.name

        try:
            size = os.path.getsize(local_path)
            self._get_s3_client().upload_file(
                str(local_path),
                self.bucket,
                key,
                ExtraArgs={"ContentEncoding": "gzip"},
            )
        except Exception as e:
            raise UploadError(local_path, str(e)) from e

        logger.info(f"Uploaded {local_path.name} to s3://{self.bucket}/{key}")
        return UploadResult(
            remote_path=local_path.name,
            remote_size_bytes=size,
            local_path=local_path,
        )
