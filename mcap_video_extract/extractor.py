"""
Extraction orchestrator.

Resolves which channels to extract, gives every channel a job with its own
output file and pipeline, runs the jobs and collects one outcome per
channel. A failing channel never stops the others.
"""

import functools
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

import structlog

from .codecs import Topology, resolve
from .config.constants import ALL_CHANNELS
from .config.settings import Config, load_config
from .decoder import decode
from .driver import BackendFactory, ExtractionDriver
from .exceptions import (
    ChannelNotFound,
    DecodeError,
    ExtractionError,
    PipelineError,
    RecordingError,
    UnsupportedCodecError,
    VideoExtractError,
)
from .lister import list_channels
from .models import ChannelInfo, ChannelSummary, ExtractionJob, ExtractionResult, JobState
from .pipeline import make_backend
from .recording import Recording, is_video_channel

logger = structlog.get_logger(__name__)

Outcome = Union[ExtractionResult, VideoExtractError]

_UNSAFE_CHARACTERS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_channel_name(name: str) -> str:
    """
    Turn a channel name into a file name stem.

    "/camera/front" becomes "camera_front".
    """
    stem = _UNSAFE_CHARACTERS.sub("_", name.lstrip("/"))
    if not stem.strip("."):
        return "channel"
    return stem


def output_path_for(name: str, topology: Topology, output_dir: Path, taken: Set[Path]) -> Path:
    """
    Output file for a channel, unique among the paths already in ``taken``.

    The chosen path is added to ``taken``.
    """
    stem = sanitize_channel_name(name)
    path = Path(output_dir) / f"{stem}.{topology.extension}"
    counter = 2
    while path in taken:
        path = Path(output_dir) / f"{stem}_{counter}.{topology.extension}"
        counter += 1
    taken.add(path)
    return path


def resolve_selection(recording: Recording, selector: Optional[str]) -> List[ChannelInfo]:
    """
    Channels matched by a selector.

    Args:
        recording: An open recording
        selector: None for none, "all" for every CompressedVideo channel, or a topic

    Returns:
        List[ChannelInfo]: Matched channels in name order

    Raises:
        ChannelNotFound: The topic does not exist or carries another schema
    """
    if selector is None:
        return []
    if selector == ALL_CHANNELS:
        return recording.video_channels()
    info = recording.find_channel(selector)
    if info is None:
        raise ChannelNotFound(selector)
    if not is_video_channel(info):
        raise ChannelNotFound(
            selector,
            f"schema is {info.schema_name!r} ({info.message_encoding}), "
            f"not a CDR foxglove.CompressedVideo channel",
        )
    return [info]


def detect_topology(recording: Recording, channel_name: str) -> Topology:
    """
    Topology for a channel, from the format of its first message.

    Raises:
        ChannelNotFound: The channel has no messages
        DecodeError: The first message cannot be decoded
        UnsupportedCodecError: The format has no topology
    """
    for log_time, raw in recording.iter_messages(channel_name):
        frame = decode(raw, log_time)
        return resolve(frame.format)
    raise ChannelNotFound(channel_name, "channel has no messages")


def _ensure_output_dir(output_dir: Path) -> None:
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PipelineError("sink", f"cannot create output directory {output_dir}: {e}") from e


class _Extraction:
    """State of one extract() call."""

    def __init__(
        self,
        recording: Recording,
        driver: ExtractionDriver,
        isolated_readers: bool,
    ):
        self.recording = recording
        self.driver = driver
        self.isolated_readers = isolated_readers

    def run_job(self, job: ExtractionJob) -> Outcome:
        try:
            if not self.isolated_readers:
                return self.driver.run(job, self.recording.iter_messages(job.channel_name))
            # mcap readers are not thread-safe, each concurrent job reads its own handle
            with Recording(self.recording.path, log_time_order=self.recording.log_time_order) as own:
                return self.driver.run(job, own.iter_messages(job.channel_name))
        except ExtractionError as e:
            return e
        except VideoExtractError as e:
            return ExtractionError(job.channel_name, e, output_path=job.output_path,
                                   failed_in=job.state.value)


def extract(
    recording: Recording,
    selector: Optional[str],
    output_dir: Union[str, Path],
    *,
    config: Optional[Config] = None,
    backend_factory: Optional[BackendFactory] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[Outcome]:
    """
    Extract the selected channels of a recording into video files.

    Args:
        recording: An open recording
        selector: None (nothing is extracted), "all" or a channel name
        output_dir: Directory for the output files, created on demand
        config: Extraction settings, defaults from load_config()
        backend_factory: Builds pipeline backends, defaults to PyAV
        cancel_event: Set to cancel every running and pending job

    Returns:
        List of ExtractionResult for completed channels and errors for the
        rest, in channel order. A selector naming a missing channel yields
        a single ChannelNotFound.
    """
    if selector is None:
        return []
    config = config or load_config()
    cancel_event = cancel_event or threading.Event()
    output_dir = Path(output_dir)

    try:
        channels = resolve_selection(recording, selector)
    except ChannelNotFound as e:
        logger.error("Channel not found", channel=e.channel_name, reason=e.reason)
        return [e]

    if not channels:
        logger.warning("No foxglove.CompressedVideo channels to extract", path=str(recording.path))
        return []

    if backend_factory is None:
        backend_factory = functools.partial(make_backend, config=config, cancel_event=cancel_event)

    timeout = config.get_setting('timeout_seconds')
    deadline = time.monotonic() + timeout if timeout else None
    max_workers = min(config.get_setting('max_workers', 1), len(channels))

    driver = ExtractionDriver(
        backend_factory,
        drain_timeout=config.get_setting('drain_timeout'),
        deadline=deadline,
        cancel_event=cancel_event,
    )
    extraction = _Extraction(recording, driver, isolated_readers=max_workers > 1)

    outcomes: Dict[int, Outcome] = {}
    jobs: Dict[int, ExtractionJob] = {}
    taken: Set[Path] = set()
    for index, info in enumerate(channels):
        try:
            topology = detect_topology(recording, info.topic)
            _ensure_output_dir(output_dir)
        except (ChannelNotFound, DecodeError, UnsupportedCodecError, PipelineError, RecordingError) as e:
            logger.error("Cannot set up extraction", channel=info.topic, error=str(e))
            outcomes[index] = ExtractionError(info.topic, e, failed_in=JobState.IDLE.value)
            continue
        jobs[index] = ExtractionJob(
            channel_name=info.topic,
            output_path=output_path_for(info.topic, topology, output_dir, taken),
            topology=topology,
        )

    logger.info("Extracting channels", jobs=len(jobs), workers=max_workers, output=str(output_dir))

    if max_workers <= 1:
        for index, job in jobs.items():
            outcomes[index] = extraction.run_job(job)
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_index = {
                executor.submit(extraction.run_job, job): index
                for index, job in jobs.items()
            }
            try:
                for future in as_completed(future_to_index):
                    outcomes[future_to_index[future]] = future.result()
            except KeyboardInterrupt:
                logger.warning("Interrupted, cancelling running jobs")
                cancel_event.set()
                for future, index in future_to_index.items():
                    outcomes[index] = future.result()

    results = [outcomes[index] for index in sorted(outcomes)]
    failed = sum(1 for outcome in results if not isinstance(outcome, ExtractionResult))
    logger.info("Extraction finished", completed=len(results) - failed, failed=failed)
    return results


def list_recording(path: Union[str, Path], config: Optional[Config] = None) -> List[ChannelSummary]:
    """
    Open a recording and summarize its CompressedVideo channels.

    Raises:
        RecordingError: The recording cannot be opened or read
    """
    config = config or load_config()
    with Recording(path, log_time_order=config.get_setting('log_time_order', False)) as recording:
        return list_channels(recording)


def extract_recording(
    path: Union[str, Path],
    selector: Optional[str],
    output_dir: Union[str, Path],
    **kwargs,
) -> List[Outcome]:
    """
    Open a recording and extract the selected channels.

    Keyword arguments are passed to extract().

    Raises:
        RecordingError: The recording cannot be opened or read
    """
    config = kwargs.get('config') or load_config()
    kwargs['config'] = config
    with Recording(path, log_time_order=config.get_setting('log_time_order', False)) as recording:
        return extract(recording, selector, output_dir, **kwargs)


def run_succeeded(results: List[Outcome]) -> bool:
    """Whether every outcome of a run is a completed extraction."""
    return all(isinstance(result, ExtractionResult) for result in results)
