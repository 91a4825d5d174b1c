"""
Models for the video extractor.

Contains the Pydantic models passed between the decoder, the lister, the
pipeline driver and the CLI report.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .codecs import Topology

NANOS_PER_SECOND = 1_000_000_000


# ===== Frame Models =====

class FrameHeader(BaseModel):
    """Everything in a CompressedVideo message except the payload bytes."""
    model_config = ConfigDict(frozen=True)

    log_time: int
    frame_time: Optional[int] = None
    frame_id: str = ""
    format: str
    codec: Optional[str] = None
    data_length: int = Field(ge=0)


class VideoFrame(BaseModel):
    """One decoded compressed video frame."""
    model_config = ConfigDict(frozen=True)

    log_time: int
    frame_time: Optional[int] = None
    frame_id: str = ""
    format: str
    codec: Optional[str] = None  # canonical codec name, None if the tag is unknown
    data: bytes
    is_keyframe: bool = False

    def __repr__(self) -> str:
        return (
            f"VideoFrame(log_time={self.log_time}, format={self.format!r}, "
            f"size={len(self.data)}, keyframe={self.is_keyframe})"
        )


# ===== Recording Models =====

class ChannelInfo(BaseModel):
    """A channel as described by the recording's summary."""
    channel_id: int
    topic: str
    schema_name: Optional[str] = None
    message_encoding: str = ""
    message_count: Optional[int] = None


class ChannelSummary(BaseModel):
    """One row of the channel listing."""
    channel_name: str
    format: Optional[str] = None
    codec: Optional[str] = None
    frame_count: int = 0
    first_log_time: Optional[int] = None
    last_log_time: Optional[int] = None
    duration: int = 0
    decode_errors: int = 0
    first_error: Optional[str] = None
    mixed_formats: int = 0

    @property
    def duration_seconds(self) -> float:
        return self.duration / NANOS_PER_SECOND


# ===== Extraction Models =====

class JobState(str, Enum):
    """Lifecycle of an extraction job."""
    IDLE = "Idle"
    CONFIGURED = "Configured"
    RUNNING = "Running"
    DRAINING = "Draining"
    COMPLETED = "Completed"
    FAILED = "Failed"


class ExtractionJob(BaseModel):
    """
    One channel's extraction task.

    Owns its running counters exclusively; the topology is shared read-only
    with every other job of the same codec.
    """
    channel_name: str
    output_path: Path
    topology: Topology
    state: JobState = JobState.IDLE
    frames_written: int = 0
    frames_dropped: int = 0
    frames_skipped: int = 0
    first_log_time: Optional[int] = None
    last_log_time: Optional[int] = None

    @property
    def duration(self) -> int:
        if self.first_log_time is None or self.last_log_time is None:
            return 0
        return self.last_log_time - self.first_log_time


class ExtractionResult(BaseModel):
    """Outcome of a job that reached the Completed state."""
    channel_name: str
    output_path: Path
    codec: str
    status: JobState = JobState.COMPLETED
    frames_written: int = 0
    frames_dropped: int = 0
    frames_skipped: int = 0  # leading frames before the first key frame, not in the file
    duration: int = 0

    @property
    def duration_seconds(self) -> float:
        return self.duration / NANOS_PER_SECOND

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
