"""
IngestPipeline - buffered JSON logging into a Snowpipe.

Architecture:
    submit(record) → RecordBuffer.append → thresholds → flush_disk
        → stage upload → TokenSigner.sign → IngestNotifier.notify

States:
    IDLE       no file open
    BUFFERING  file open, accepting appends
    FLUSHING   disk flush in progress (upload + notify)
    CLOSED     drained and shut down

The whole append → evaluate → flush sequence runs under the buffer's lock,
network calls included, so producers wait while a flush is in flight.

Failures inside a flush cycle (UploadError, KeyReadError,
NotificationError) are logged and reported through FlushOutcome. The next
submit() starts a new file as usual. Errors writing the local file
propagate to the caller of submit().
"""

import atexit
import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import requests

from .buffer import RecordBuffer
from .config import PipeConfig
from .notifier import IngestNotifier, NotificationError
from .policy import disk_flush_due, memory_flush_due
from .signer import KeyReadError, TokenSigner
from .stage import (
    S3StageUploader,
    SnowflakeStageUploader,
    StageUploader,
    UploadError,
    UploadResult,
    snowflake_connect,
)

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """Pipeline lifecycle states."""
    IDLE = "idle"
    BUFFERING = "buffering"
    FLUSHING = "flushing"
    CLOSED = "closed"


@dataclass
class FlushOutcome:
    """
    Result of one disk-flush cycle.

    Attributes:
        upload: Staged file, or None if the upload did not succeed
        request_id: insertFiles requestId, or None if not notified
        error: The error that ended the cycle, if any
    """
    upload: Optional[UploadResult] = None
    request_id: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def staged(self) -> bool:
        """True once the file is in the stage, even if notification failed."""
        return self.upload is not None


def build_uploader(config: PipeConfig) -> StageUploader:
    """Create the stage uploader selected by config.stage_type."""
    if config.stage_type == "s3":
        return S3StageUploader(
            bucket=config.s3_bucket,
            prefix=config.s3_prefix,
            region=config.s3_region,
        )
    return SnowflakeStageUploader(snowflake_connect(config), config.stage_name)


class IngestPipeline:
    """
    Buffers JSON records and ships them to a Snowpipe in compressed batches.

    Usage:
        config = load_config("SnowpipeSettings.json")
        with IngestPipeline.from_config(config) as pipeline:
            pipeline.submit_object({"event": "login", "user": 42})
    """

    def __init__(
        self,
        buffer: RecordBuffer,
        signer: TokenSigner,
        notifier: IngestNotifier,
        on_flush_error: Optional[Callable[[FlushOutcome], None]] = None,
        background_interval_ms: Optional[float] = None,
        register_atexit: bool = False,
    ):
        """
        Args:
            buffer: Record buffer (owns the local file)
            signer: Mints a token per notification
            notifier: Sends insertFiles calls
            on_flush_error: Called with the FlushOutcome of each failed cycle
            background_interval_ms: If set, check time thresholds on a
                background thread at this interval
            register_atexit: Drain and close at interpreter exit
        """
        self.buffer = buffer
        self.signer = signer
        self.notifier = notifier
        self.on_flush_error = on_flush_error

        self.last_outcome: Optional[FlushOutcome] = None
        self.cycle_count = 0
        self.failed_cycle_count = 0

        self._flushing = False
        self._closed = False
        self._stop_event = threading.Event()
        self._ticker: Optional[threading.Thread] = None

        if background_interval_ms:
            self._ticker = threading.Thread(
                target=self._tick_loop,
                args=(background_interval_ms / 1000.0,),
                daemon=True,
                name="snowpipe-flush",
            )
            self._ticker.start()

        if register_atexit:
            atexit.register(self.close)

    @classmethod
    def from_config(
        cls,
        config: PipeConfig,
        uploader: Optional[StageUploader] = None,
        session: Optional[requests.Session] = None,
        clock: Any = None,
        **kwargs: Any,
    ) -> "IngestPipeline":
        """
        Build a pipeline and all collaborators from settings.

        The private key is parsed up front so a bad key or passphrase fails
        here, before any data is buffered.

        Raises:
            KeyReadError: If the private key cannot be read
        """
        signer = TokenSigner(
            config.account,
            config.user,
            config.private_key_filename,
            config.private_key_passphrase,
            clock=clock,
        )
        signer.check_key()

        buffer = RecordBuffer(
            config.current_log_filename,
            config.thresholds,
            uploader or build_uploader(config),
            clock=clock,
        )
        notifier = IngestNotifier(
            account=config.account,
            database=config.database_name,
            schema=config.schema_name,
            pipe=config.pipe_name,
            cloud_host=config.cloud_host,
            timeout=config.http_timeout_seconds,
            session=session,
        )
        return cls(buffer, signer, notifier, **kwargs)

    # -- State ---------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        if self._closed:
            return PipelineState.CLOSED
        if self._flushing:
            return PipelineState.FLUSHING
        if self.buffer.is_open:
            return PipelineState.BUFFERING
        return PipelineState.IDLE

    # -- Producer API --------------------------------------------------------

    def submit(self, record: str) -> Optional[FlushOutcome]:
        """
        Buffer one serialized JSON record.

        Returns:
            FlushOutcome if this record triggered a disk flush, else None

        Raises:
            TypeError: If record is None
            OSError: If the local buffer file cannot be written
            RuntimeError: If the pipeline is closed
        """
        if self._closed:
            raise RuntimeError("IngestPipeline is closed")

        with self.buffer.lock:
            if self._closed:
                raise RuntimeError("IngestPipeline is closed")
            self.buffer.append(record)
            return self._evaluate()

    def submit_object(self, obj: Any) -> Optional[FlushOutcome]:
        """Serialize obj to JSON and submit it."""
        return self.submit(json.dumps(obj, default=str))

    def tick(self) -> Optional[FlushOutcome]:
        """
        Check the time thresholds without appending.

        Returns:
            FlushOutcome if a disk flush ran, else None
        """
        with self.buffer.lock:
            if self._closed or not self.buffer.is_open:
                return None
            return self._evaluate()

    def drain(self) -> Optional[FlushOutcome]:
        """
        Flush everything buffered, regardless of thresholds.

        Returns:
            FlushOutcome of the cycle, or None if nothing was buffered
        """
        with self.buffer.lock:
            if not self.buffer.is_open:
                return None
            self.buffer.flush_memory()
            return self._run_cycle()

    def close(self) -> Optional[FlushOutcome]:
        """Stop the background thread, drain, and reject further submits."""
        if self._closed:
            return None

        self._stop_event.set()
        if self._ticker is not None and self._ticker.is_alive():
            self._ticker.join(timeout=5.0)

        with self.buffer.lock:
            if self._closed:
                return None
            outcome = self.drain()
            self._closed = True
        self.notifier.close()
        logger.debug(
            f"Pipeline closed after {self.cycle_count} cycles "
            f"({self.failed_cycle_count} failed)"
        )
        return outcome

    def __enter__(self) -> "IngestPipeline":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # -- Flush cycle ---------------------------------------------------------

    def _evaluate(self) -> Optional[FlushOutcome]:
        now = self.buffer.clock.now()
        if memory_flush_due(self.buffer.state, now):
            self.buffer.flush_memory()
        if disk_flush_due(self.buffer.state, self.buffer.thresholds, now):
            return self._run_cycle()
        return None

    def _run_cycle(self) -> Optional[FlushOutcome]:
        outcome = FlushOutcome()
        self._flushing = True
        try:
            outcome.upload = self.buffer.flush_disk()
            if outcome.upload is None:
                return None
            token = self.signer.sign()
            outcome.request_id = self.notifier.notify(
                outcome.upload.remote_path,
                outcome.upload.remote_size_bytes,
                token,
            )
        except KeyReadError as e:
            logger.critical(f"Flush cycle aborted, staged file not announced: {e}")
            outcome.error = e
        except UploadError as e:
            logger.error(f"Flush cycle aborted: {e} (local file: {e.local_path})")
            outcome.error = e
        except NotificationError as e:
            logger.error(f"Flush cycle aborted after staging: {e}")
            outcome.error = e
        finally:
            self._flushing = False

        self.cycle_count += 1
        self.last_outcome = outcome
        if outcome.error is not None:
            self.failed_cycle_count += 1
            if self.on_flush_error is not None:
                try:
                    self.on_flush_error(outcome)
                except Exception:
                    logger.exception("on_flush_error callback raised")
        return outcome

    def _tick_loop(self, interval: float) -> None:
        """
        Background thread that periodically checks time thresholds.
        """
        while not self._stop_event.wait(timeout=interval):
            try:
                self.tick()
            except OSError as e:
                logger.error(f"Background flush failed: {e}")
