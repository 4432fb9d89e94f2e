"""
RecordBuffer - gzip-compressed, line-delimited record file with accounting.

Lifecycle of the current file:

    append()        open lazily → write "record\\n" → record_count += 1
    flush_memory()  sync-flush compressor → fsync → byte_size = stat().st_size
    flush_disk()    close → rename to <uuid>.gz → reset counters →
                    upload → delete local copy

The buffer is the only writer of its file. All public mutators take
``self.lock`` so append/flush_memory/flush_disk never interleave.
"""

import gzip
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import BinaryIO, Optional, Union

from .clock import Clock, system_clock
from .policy import BufferState, Thresholds
from .stage import StageUploader, UploadError, UploadResult

logger = logging.getLogger(__name__)


class RecordBuffer:
    """
    Owns the open output stream and its count/size/deadline accounting.
    """

    def __init__(
        self,
        path: Union[str, Path],
        thresholds: Thresholds,
        uploader: StageUploader,
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            path: Active buffer file (e.g. SnowpipeMessages.tmp.gz)
            thresholds: Flush intervals used to reset the expiries
            uploader: Destination for finalized files
            clock: Time source (defaults to the system clock)
        """
        self.path = Path(path)
        self.thresholds = thresholds
        self.uploader = uploader
        self.clock = clock or system_clock
        self.lock = threading.RLock()

        self._raw: Optional[BinaryIO] = None
        self._writer: Optional[gzip.GzipFile] = None
        self._record_count = 0
        self._byte_size = 0
        self._memory_expiry: Optional[float] = None
        self._disk_expiry: Optional[float] = None

    # -- Accounting ----------------------------------------------------------

    @property
    def record_count(self) -> int:
        return self._record_count

    @property
    def byte_size(self) -> int:
        return self._byte_size

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    @property
    def state(self) -> BufferState:
        """Snapshot of the current accounting."""
        with self.lock:
            return BufferState(
                record_count=self._record_count,
                byte_size=self._byte_size,
                memory_expiry=self._memory_expiry,
                disk_expiry=self._disk_expiry,
                is_open=self._writer is not None,
            )

    # -- Writing -------------------------------------------------------------

    def _open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            logger.warning(
                f"Buffer file {self.path} already exists, appending a new gzip member"
            )
        self._raw = open(self.path, "ab")
        try:
            self._writer = gzip.GzipFile(
                filename=self.path.name, mode="ab", fileobj=self._raw
            )
        except Exception:
            self._raw.close()
            self._raw = None
            raise

        now = self.clock.now()
        if self._memory_expiry is None:
            self._memory_expiry = now + self.thresholds.memory_flush_interval_seconds
        if self._disk_expiry is None:
            self._disk_expiry = now + self.thresholds.disk_flush_interval_seconds
        logger.debug(f"Opened buffer file {self.path}")

    def append(self, record: str) -> None:
        """
        Write one serialized record followed by a newline.

        Raises:
            TypeError: If record is None
            OSError: If the file cannot be opened or written
        """
        if record is None:
            raise TypeError("JSON record is None")

        with self.lock:
            if self._writer is None:
                self._open()
            self._writer.write((record + "\n").encode("utf-8"))
            self._record_count += 1

    def flush_memory(self) -> None:
        """
        Force buffered bytes to durable storage and refresh byte_size.
        """
        with self.lock:
            if self._writer is not None:
                self._writer.flush()
                os.fsync(self._raw.fileno())
                self._byte_size = os.stat(self.path).st_size
                logger.debug(
                    f"Memory flush: {self._record_count} records, {self._byte_size} bytes"
                )
            self._memory_expiry = (
                self.clock.now() + self.thresholds.memory_flush_interval_seconds
            )

    def _release(self) -> None:
        try:
            if self._writer is not None:
                self._writer.close()
        finally:
            self._writer = None
            if self._raw is not None:
                self._raw.close()
                self._raw = None

    # -- Finalizing ----------------------------------------------------------

    def flush_disk(self) -> Optional[UploadResult]:
        """
        Finalize the current file and upload it to the stage.

        The file is renamed before uploading so appends can start a new file
        right away. On upload failure the renamed file is kept on disk.

        Returns:
            UploadResult, or None if nothing was buffered

        Raises:
            UploadError: If the upload failed (local file preserved)
            OSError: If closing or renaming the file failed
        """
        with self.lock:
            if self._writer is None:
                return None

            count = self._record_count
            self._release()

            tmp_path = self.path.parent / f"{uuid.uuid4().hex}.gz"
            os.replace(self.path, tmp_path)
            logger.debug(f"Renamed {self.path.name} to {tmp_path.name} ({count} records)")

            now = self.clock.now()
            self._record_count = 0
            self._byte_size = 0
            self._memory_expiry = now + self.thresholds.memory_flush_interval_seconds
            self._disk_expiry = now + self.thresholds.disk_flush_interval_seconds

            try:
                result = self.uploader.upload(tmp_path)
            except UploadError:
                logger.error(f"Upload failed, keeping {tmp_path} for recovery")
                raise
            except Exception as e:
                logger.error(f"Upload failed, keeping {tmp_path} for recovery")
                raise UploadError(tmp_path, str(e)) from e

            try:
                tmp_path.unlink()
            except OSError as e:
                logger.warning(f"Uploaded {tmp_path.name} but could not delete it: {e}")
            return result

    def close(self) -> None:
        """
        Close the stream without uploading.

        The file stays on disk and is appended to on the next open.
        """
        with self.lock:
            self._release()
