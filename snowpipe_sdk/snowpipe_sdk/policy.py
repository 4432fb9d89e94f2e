"""
Flush policy - pure threshold decisions for the record buffer.

Two independent decisions are made after every append:

    memory flush: the in-memory compressor output is forced to disk and the
                  file size is re-read (size accounting)
    disk flush:   the current file is finalized and handed off for upload

A disk flush is due when ANY of the three thresholds is met:
record count, cumulative byte size, or elapsed time.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Thresholds:
    """Flush thresholds, fixed for the lifetime of a pipeline."""
    record_count_limit: int = 1_000_000
    byte_size_limit: int = 100_000_000
    disk_flush_interval_seconds: float = 120
    memory_flush_interval_millis: float = 10_000

    def __post_init__(self):
        for name in (
            "record_count_limit",
            "byte_size_limit",
            "disk_flush_interval_seconds",
            "memory_flush_interval_millis",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)!r}")

    @property
    def memory_flush_interval_seconds(self) -> float:
        return self.memory_flush_interval_millis / 1000.0


@dataclass(frozen=True)
class BufferState:
    """
    Snapshot of a RecordBuffer's accounting.

    Attributes:
        record_count: Records appended since the last disk flush
        byte_size: On-disk size of the current file as of the last memory flush
        memory_expiry: When the next memory flush is due (None until first open)
        disk_expiry: When the next disk flush is due (None until first open)
        is_open: Whether an output stream is currently open
    """
    record_count: int = 0
    byte_size: int = 0
    memory_expiry: Optional[float] = None
    disk_expiry: Optional[float] = None
    is_open: bool = False


@dataclass(frozen=True)
class FlushDecision:
    """Result of evaluating the thresholds against a BufferState."""
    memory_flush_due: bool = False
    disk_flush_due: bool = False


def memory_flush_due(state: BufferState, now: float) -> bool:
    return state.memory_expiry is not None and now >= state.memory_expiry


def disk_flush_due(state: BufferState, thresholds: Thresholds, now: float) -> bool:
    if state.record_count >= thresholds.record_count_limit:
        return True
    if state.byte_size >= thresholds.byte_size_limit:
        return True
    return state.disk_expiry is not None and now >= state.disk_expiry


def decide(state: BufferState, thresholds: Thresholds, now: float) -> FlushDecision:
    """
    Decide which flushes are due.

    Args:
        state: Current buffer snapshot
        thresholds: Configured limits
        now: Current time in seconds since the epoch

    Returns:
        FlushDecision with both flags evaluated independently
    """
    return FlushDecision(
        memory_flush_due=memory_flush_due(state, now),
        disk_flush_due=disk_flush_due(state, thresholds, now),
    )
