"""
Error taxonomy for the video extractor.

Decode errors come from the CDR frame decoder, codec and channel errors from
selection, pipeline errors from the muxing backend. The orchestrator wraps
any of them into an ExtractionError for the channel that failed.
"""

from pathlib import Path
from typing import Optional


class VideoExtractError(Exception):
    """Base class for every error raised by this package."""


class RecordingError(VideoExtractError):
    """The recording file could not be opened or read."""


# ===== Decode errors =====

class DecodeError(VideoExtractError):
    """A binary CompressedVideo message could not be decoded."""


class Truncated(DecodeError):
    """The buffer ends before a field is complete."""

    def __init__(self, field: str, offset: int, needed: int, available: int):
        self.field = field
        self.offset = offset
        self.needed = needed
        self.available = available
        super().__init__(
            f"truncated message: field '{field}' at offset {offset} needs "
            f"{needed} bytes, {available} available"
        )


class LengthMismatch(Truncated):
    """A length prefix declares more bytes than the buffer holds."""

    def __init__(self, field: str, offset: int, declared: int, available: int):
        self.declared = declared
        super().__init__(field, offset, declared, available)
        self.args = (
            f"length mismatch: field '{field}' at offset {offset} declares "
            f"{declared} bytes, {available} remaining",
        )


class UnknownFormat(DecodeError):
    """The format tag is not one of the supported codecs."""

    def __init__(self, format_tag: str):
        self.format_tag = format_tag
        super().__init__(f"unknown video format '{format_tag}'")


class FormatMismatch(DecodeError):
    """A channel switched codec in the middle of the stream."""

    def __init__(self, expected: str, found: str, log_time: int):
        self.expected = expected
        self.found = found
        self.log_time = log_time
        super().__init__(
            f"format changed from '{expected}' to '{found}' at log_time {log_time}"
        )


# ===== Selection errors =====

class UnsupportedCodecError(VideoExtractError):
    """No extraction topology exists for the format tag."""

    def __init__(self, format_tag: str, supported):
        self.format_tag = format_tag
        self.supported = list(supported)
        super().__init__(
            f"unsupported video format '{format_tag}'. "
            f"Supported formats: {', '.join(self.supported)}"
        )


class ChannelNotFound(VideoExtractError):
    """The selector does not match a CompressedVideo channel."""

    def __init__(self, channel_name: str, reason: str = "no such channel"):
        self.channel_name = channel_name
        self.reason = reason
        super().__init__(f"channel '{channel_name}' not found: {reason}")

    @property
    def status(self) -> str:
        return "Failed"

    def to_dict(self) -> dict:
        return {
            "channel_name": self.channel_name,
            "status": self.status,
            "error_type": type(self).__name__,
            "error": str(self),
            "output_path": None,
            "frames_written": 0,
            "frames_dropped": 0,
        }


# ===== Pipeline errors =====

class PipelineError(VideoExtractError):
    """A muxing pipeline stage failed to build or to run."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        self.message = message
        super().__init__(f"pipeline stage '{stage}' failed: {message}")


class ExtractionCancelled(PipelineError):
    """The job was interrupted or ran past its deadline."""

    def __init__(self, message: str = "extraction cancelled"):
        super().__init__("driver", message)


class ExtractionError(VideoExtractError):
    """
    Terminal failure of one channel's extraction job.

    Carries the first error encountered as ``cause`` together with whatever
    progress was made. Partial output at ``output_path`` is left in place.
    """

    def __init__(
        self,
        channel_name: str,
        cause: Exception,
        output_path: Optional[Path] = None,
        frames_written: int = 0,
        frames_dropped: int = 0,
        failed_in: Optional[str] = None,
    ):
        self.channel_name = channel_name
        self.cause = cause
        self.output_path = output_path
        self.frames_written = frames_written
        self.frames_dropped = frames_dropped
        self.failed_in = failed_in
        super().__init__(f"{channel_name}: {cause}")

    @property
    def status(self) -> str:
        return "Failed"

    def to_dict(self) -> dict:
        return {
            "channel_name": self.channel_name,
            "status": self.status,
            "error_type": type(self.cause).__name__,
            "error": str(self.cause),
            "output_path": str(self.output_path) if self.output_path else None,
            "frames_written": self.frames_written,
            "frames_dropped": self.frames_dropped,
            "failed_in": self.failed_in,
        }


class OrderingWarning(UserWarning):
    """A frame was dropped because its log_time went backwards."""
