"""
Shared fixtures for the video extractor tests.

Recordings are real MCAP files written with mcap.writer into tmp_path;
pipelines are replaced by MemoryPipeline unless a test needs PyAV.
"""

import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest
from mcap.writer import CompressionType, Writer

from mcap_video_extract.codecs import Topology
from mcap_video_extract.config.settings import load_config
from mcap_video_extract.decoder import encode
from mcap_video_extract.exceptions import ExtractionCancelled, PipelineError
from mcap_video_extract.models import VideoFrame
from mcap_video_extract.pipeline import PipelineBackend

# Minimal Annex-B access units: SPS + PPS + IDR slice, and a non-IDR slice
H264_KEYFRAME = b"\x00\x00\x00\x01\x67\x42\x00\x1e\x00\x00\x00\x01\x68\xce\x3c\x80\x00\x00\x01\x65\x88\x84"
H264_DELTA = b"\x00\x00\x00\x01\x41\x9a\x24"


def make_message(
    data: bytes = H264_KEYFRAME,
    format: str = "h264",
    frame_time: int = 0,
    frame_id: str = "camera",
    big_endian: bool = False,
    header: bool = True,
) -> bytes:
    """CDR-encoded foxglove.CompressedVideo payload."""
    frame = VideoFrame(log_time=0, frame_time=frame_time, frame_id=frame_id,
                       format=format, data=data)
    return encode(frame, big_endian=big_endian, header=header)


@pytest.fixture
def message():
    """Factory for CDR CompressedVideo payloads."""
    return make_message


class RecordingBuilder:
    """Collects channels and writes them to an MCAP file."""

    def __init__(self, path: Path):
        self.path = path
        self._channels: List[Tuple[str, str, str]] = []
        self._messages: List[Tuple[int, int, bytes]] = []

    def channel(self, topic: str, schema_name: str = "foxglove.CompressedVideo",
                message_encoding: str = "cdr") -> int:
        self._channels.append((topic, schema_name, message_encoding))
        return len(self._channels) - 1

    def add(self, channel: int, log_time: int, data: bytes) -> "RecordingBuilder":
        self._messages.append((channel, log_time, data))
        return self

    def video_channel(self, topic: str, log_times: Sequence[int], format: str = "h264",
                      data: bytes = H264_KEYFRAME) -> int:
        channel = self.channel(topic)
        for log_time in log_times:
            self.add(channel, log_time, make_message(data=data, format=format, frame_time=log_time))
        return channel

    def write(self) -> Path:
        with open(self.path, "wb") as stream:
            writer = Writer(stream, compression=CompressionType.NONE)
            writer.start(profile="ros2", library="mcap-video-extract tests")
            schema_ids: Dict[str, int] = {}
            channel_ids = []
            for topic, schema_name, message_encoding in self._channels:
                if schema_name not in schema_ids:
                    schema_ids[schema_name] = writer.register_schema(
                        name=schema_name, encoding="ros2msg", data=b""
                    )
                channel_ids.append(writer.register_channel(
                    topic=topic,
                    message_encoding=message_encoding,
                    schema_id=schema_ids[schema_name],
                ))
            for sequence, (channel, log_time, data) in enumerate(self._messages):
                writer.add_message(
                    channel_id=channel_ids[channel],
                    log_time=log_time,
                    data=data,
                    publish_time=log_time,
                    sequence=sequence,
                )
            writer.finish()
        return self.path


@pytest.fixture
def recording_builder(tmp_path):
    """Builder for an MCAP recording at tmp_path/recording.mcap."""
    return RecordingBuilder(tmp_path / "recording.mcap")


class MemoryPipeline(PipelineBackend):
    """
    In-memory backend recording every pushed frame.

    Args:
        fail_configure: Raise a PipelineError from configure()
        fail_after: Raise a PipelineError when this many frames were already pushed
        fail_on_wait: Report a stage error instead of end of stream
        hang: Never report end of stream, wait() times out or gets cancelled
        stall: push() blocks like a full queue nobody drains, until cancelled
    """

    def __init__(self, topology: Topology, output_path: Path, cancel_event=None,
                 fail_configure: bool = False, fail_after: Optional[int] = None,
                 fail_on_wait: bool = False, hang: bool = False,
                 stall: bool = False):
        self.topology = topology
        self.output_path = Path(output_path)
        self.cancel_event = cancel_event or threading.Event()
        self.fail_configure = fail_configure
        self.fail_after = fail_after
        self.fail_on_wait = fail_on_wait
        self.hang = hang
        self.stall = stall
        self.cancel_reason: Optional[str] = None
        self.frames: List[Tuple[int, int, bool, bytes]] = []
        self.calls: List[str] = []
        self.eos = False
        self.teardowns = 0

    @property
    def pts(self) -> List[int]:
        return [pts for pts, _duration, _keyframe, _data in self.frames]

    @property
    def durations(self) -> List[int]:
        return [duration for _pts, duration, _keyframe, _data in self.frames]

    def configure(self):
        self.calls.append("configure")
        if self.fail_configure:
            raise PipelineError("sink", "cannot open output")
        self.output_path.write_bytes(b"")

    def start(self):
        self.calls.append("start")

    def _cancelled(self, timeout=None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while self.cancel_reason is None and not self.cancel_event.is_set():
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def _raise_if_cancelled(self):
        if self.cancel_reason is not None:
            raise ExtractionCancelled(self.cancel_reason)
        if self.cancel_event.is_set():
            raise ExtractionCancelled()

    def push(self, data, pts, duration, keyframe):
        if self.stall:
            self._cancelled()
        self._raise_if_cancelled()
        if self.eos:
            raise PipelineError("driver", "frame pushed after end of stream")
        if self.fail_after is not None and len(self.frames) >= self.fail_after:
            raise PipelineError("muxer", "injected failure")
        self.frames.append((pts, duration, keyframe, data))
        with open(self.output_path, "ab") as output:
            output.write(data)

    def end_of_stream(self):
        self.calls.append("end_of_stream")
        self.eos = True

    def wait(self, timeout=None):
        self.calls.append("wait")
        if self.fail_on_wait:
            raise PipelineError("muxer", "trailer could not be written")
        if self.hang:
            self._cancelled(timeout)
            self._raise_if_cancelled()
            raise ExtractionCancelled("no end of stream")

    def teardown(self):
        self.calls.append("teardown")
        self.teardowns += 1

    def cancel(self, reason):
        self.cancel_reason = reason


class MemoryBackendFactory:
    """
    Backend factory handing out MemoryPipelines.

    ``options`` apply to every pipeline; ``per_file`` maps an output file
    name to extra options for that pipeline only.
    """

    def __init__(self, cancel_event=None, per_file: Optional[Dict[str, dict]] = None, **options):
        self.cancel_event = cancel_event
        self.per_file = per_file or {}
        self.options = options
        self.pipelines: Dict[str, MemoryPipeline] = {}

    def __call__(self, topology: Topology, output_path: Path) -> MemoryPipeline:
        options = dict(self.options)
        options.update(self.per_file.get(Path(output_path).name, {}))
        pipeline = MemoryPipeline(topology, output_path, cancel_event=self.cancel_event, **options)
        self.pipelines[Path(output_path).name] = pipeline
        return pipeline


@pytest.fixture
def memory_backends():
    """Factory for MemoryBackendFactory instances."""
    return MemoryBackendFactory


@pytest.fixture
def config():
    """Default configuration, isolated from the environment and any .env file."""
    return load_config(environ={}, dotenv=False)
