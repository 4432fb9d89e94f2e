"""
snowpipe_sdk - Buffered JSON logging into Snowflake through Snowpipe

This package provides:
- A gzip record buffer flushed on record count, byte size or elapsed time
- Stage upload of finalized files (internal stage PUT or S3 external stage)
- Key-pair JWT signing for the Snowpipe REST API
- insertFiles notification of each staged file
"""

from snowpipe_sdk.clock import Clock, system_clock
from snowpipe_sdk.policy import BufferState, FlushDecision, Thresholds, decide
from snowpipe_sdk.buffer import RecordBuffer
from snowpipe_sdk.signer import (
    KeyReadError,
    SignedToken,
    TokenSigner,
    TraditionalKey,
    WrappedKey,
    load_private_key,
    public_key_fingerprint,
    sign_token,
    verify_token,
)
from snowpipe_sdk.stage import (
    S3StageUploader,
    SnowflakeStageUploader,
    StageUploader,
    UploadError,
    UploadResult,
)
from snowpipe_sdk.notifier import IngestNotifier, NotificationError
from snowpipe_sdk.config import ConfigError, PipeConfig, load_config, write_config
from snowpipe_sdk.pipeline import FlushOutcome, IngestPipeline, PipelineState

__version__ = "0.1.0"

__all__ = [
    # Clock
    "Clock",
    "system_clock",
    # Policy
    "Thresholds",
    "BufferState",
    "FlushDecision",
    "decide",
    # Buffer
    "RecordBuffer",
    # Signing
    "TokenSigner",
    "SignedToken",
    "TraditionalKey",
    "WrappedKey",
    "KeyReadError",
    "load_private_key",
    "public_key_fingerprint",
    "sign_token",
    "verify_token",
    # Stage
    "StageUploader",
    "SnowflakeStageUploader",
    "S3StageUploader",
    "UploadResult",
    "UploadError",
    # Notification
    "IngestNotifier",
    "NotificationError",
    # Config
    "PipeConfig",
    "ConfigError",
    "load_config",
    "write_config",
    # Pipeline
    "IngestPipeline",
    "PipelineState",
    "FlushOutcome",
]
