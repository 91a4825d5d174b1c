"""
Channel lister for the video extractor.

Summarizes CompressedVideo channels without extracting them: codec, frame
count and time span. Payloads are skipped by the header decoder, so memory
use does not depend on frame size.
"""

from typing import Iterable, List, Optional, Tuple

import structlog

from .decoder import decode_header
from .exceptions import DecodeError
from .models import ChannelSummary
from .recording import Recording

logger = structlog.get_logger(__name__)


def summarize_channel(name: str, messages: Iterable[Tuple[int, bytes]]) -> ChannelSummary:
    """
    Stream one channel's messages into a summary.

    Decode errors and format changes are counted, not raised.

    Args:
        name: Channel (topic) name
        messages: ``(log_time, raw)`` pairs

    Returns:
        ChannelSummary: Counters over the successfully decoded frames
    """
    summary = ChannelSummary(channel_name=name)
    first: Optional[int] = None
    last: Optional[int] = None

    for log_time, raw in messages:
        try:
            header = decode_header(raw, log_time)
        except DecodeError as e:
            summary.decode_errors += 1
            if summary.first_error is None:
                summary.first_error = str(e)
                logger.warning("Undecodable message", channel=name, log_time=log_time, error=str(e))
            continue

        if summary.format is None:
            summary.format = header.format
            summary.codec = header.codec
        elif (header.codec or header.format) != (summary.codec or summary.format):
            summary.mixed_formats += 1
            if summary.mixed_formats == 1:
                logger.warning(
                    "Channel mixes formats",
                    channel=name, expected=summary.format, found=header.format,
                    log_time=log_time,
                )

        summary.frame_count += 1
        first = log_time if first is None else min(first, log_time)
        last = log_time if last is None else max(last, log_time)

    summary.first_log_time = first
    summary.last_log_time = last
    if first is not None and last is not None:
        summary.duration = last - first
    return summary


def list_channels(recording: Recording) -> List[ChannelSummary]:
    """
    Summarize every CompressedVideo channel of a recording.

    Channels with other schemas are skipped.

    Args:
        recording: An open recording

    Returns:
        List[ChannelSummary]: One summary per channel, sorted by name
    """
    summaries = []
    for info in recording.video_channels():
        summary = summarize_channel(info.topic, recording.iter_messages(info.topic))
        logger.debug(
            "Summarized channel",
            channel=info.topic, format=summary.format, frames=summary.frame_count,
        )
        summaries.append(summary)
    return sorted(summaries, key=lambda s: s.channel_name)
