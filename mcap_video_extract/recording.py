"""
Recording access for the video extractor.

Thin adapter over the ``mcap`` reader: lists channels and streams the raw
message bytes of one channel. Nothing here looks inside message payloads.
"""

from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Tuple, Union

import structlog
from mcap.exceptions import McapError
from mcap.reader import McapReader, make_reader

from .config.constants import MESSAGE_ENCODING, MESSAGE_SCHEMA_NAME
from .exceptions import RecordingError
from .models import ChannelInfo

logger = structlog.get_logger(__name__)


def is_video_channel(info: ChannelInfo) -> bool:
    """Whether a channel carries CDR-encoded foxglove.CompressedVideo."""
    return (
        info.schema_name == MESSAGE_SCHEMA_NAME
        and info.message_encoding == MESSAGE_ENCODING
    )


class Recording:
    """
    An MCAP recording opened for reading.

    Messages are yielded in file order unless ``log_time_order`` is set, so
    recordings written out of order are seen as such by the extractor.

    Example:
        with Recording("drive.mcap") as recording:
            for info in recording.video_channels():
                for log_time, data in recording.iter_messages(info.topic):
                    ...
    """

    def __init__(self, path: Union[str, Path], log_time_order: bool = False):
        self.path = Path(path)
        self.log_time_order = log_time_order
        self._stream: Optional[BinaryIO] = None
        self._reader: Optional[McapReader] = None
        self._channels: Optional[List[ChannelInfo]] = None

    def open(self) -> "Recording":
        try:
            self._stream = open(self.path, "rb")
        except OSError as e:
            raise RecordingError(f"unable to open MCAP file {self.path}: {e}") from e
        try:
            self._reader = make_reader(self._stream)
        except (McapError, ValueError) as e:
            self.close()
            raise RecordingError(f"unable to read MCAP file {self.path}: {e}") from e
        logger.debug("Opened recording", path=str(self.path))
        return self

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
        self._stream = None
        self._reader = None

    def __enter__(self) -> "Recording":
        return self.open()

    def __exit__(self, *args) -> None:
        self.close()

    @property
    def reader(self) -> McapReader:
        if self._reader is None:
            raise RecordingError(f"recording {self.path} is not open")
        return self._reader

    def channels(self) -> List[ChannelInfo]:
        """
        All channels in the recording, sorted by topic.

        Uses the summary section when present and falls back to scanning
        every message otherwise.
        """
        if self._channels is None:
            try:
                summary = self.reader.get_summary()
                if summary is not None:
                    self._channels = self._channels_from_summary(summary)
                else:
                    logger.info("Recording has no summary, scanning messages", path=str(self.path))
                    self._channels = self._channels_from_scan()
            except (McapError, OSError, ValueError) as e:
                raise RecordingError(f"unable to read MCAP file {self.path}: {e}") from e
        return self._channels

    def video_channels(self) -> List[ChannelInfo]:
        return [info for info in self.channels() if is_video_channel(info)]

    def find_channel(self, topic: str) -> Optional[ChannelInfo]:
        for info in self.channels():
            if info.topic == topic:
                return info
        return None

    def iter_messages(self, topic: str) -> Iterator[Tuple[int, bytes]]:
        """
        Yield ``(log_time, data)`` for every message on a topic.

        Raises:
            RecordingError: If the file is corrupt
        """
        try:
            for _schema, _channel, message in self.reader.iter_messages(
                topics=[topic], log_time_order=self.log_time_order
            ):
                yield message.log_time, message.data
        except (McapError, OSError, ValueError) as e:
            raise RecordingError(f"unable to read messages on {topic}: {e}") from e

    @staticmethod
    def _channels_from_summary(summary) -> List[ChannelInfo]:
        counts: Dict[int, int] = {}
        if summary.statistics is not None:
            counts = dict(summary.statistics.channel_message_counts)
        channels = []
        for channel in summary.channels.values():
            schema = summary.schemas.get(channel.schema_id)
            channels.append(ChannelInfo(
                channel_id=channel.id,
                topic=channel.topic,
                schema_name=schema.name if schema else None,
                message_encoding=channel.message_encoding,
                message_count=counts.get(channel.id),
            ))
        return sorted(channels, key=lambda c: c.topic)

    def _channels_from_scan(self) -> List[ChannelInfo]:
        found: Dict[int, ChannelInfo] = {}
        for schema, channel, _message in self.reader.iter_messages(log_time_order=False):
            info = found.get(channel.id)
            if info is None:
                info = found[channel.id] = ChannelInfo(
                    channel_id=channel.id,
                    topic=channel.topic,
                    schema_name=schema.name if schema else None,
                    message_encoding=channel.message_encoding,
                    message_count=0,
                )
            info.message_count += 1
        return sorted(found.values(), key=lambda c: c.topic)
