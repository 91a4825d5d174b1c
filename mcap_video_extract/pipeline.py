"""
Muxing pipeline backends for the video extractor.

A backend owns one running pipeline: frames pushed by the read loop go
through a bounded ingest queue to a worker thread, which parses the
elementary stream and muxes it into the output container. The worker
reports completion or failure on a message bus that the driver waits on,
so the driver never touches PyAV objects directly.

    read loop --push()--> [ingest queue] --> worker: framing -> demuxer/parser -> muxer -> file
                                                       |
    driver  <--wait()---- [message bus] <--------------+  ("eos" | "error")
"""

import queue
import struct
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from fractions import Fraction
from pathlib import Path
from typing import Any, Deque, Dict, Optional, Tuple

import av
import structlog
from av.error import FFmpegError

from .codecs import Topology
from .config.settings import Config
from .exceptions import ExtractionCancelled, PipelineError

logger = structlog.get_logger(__name__)

# MPEG 90 kHz clock, used for every packet we mux
TIME_BASE = Fraction(1, 90_000)

_EOS = object()

_IVF_FOURCC = {"vp9": b"VP90", "av1": b"AV01"}


def nanos_to_ticks(nanos: int) -> int:
    return nanos * TIME_BASE.denominator // (TIME_BASE.numerator * 1_000_000_000)


class PipelineBackend(ABC):
    """
    Contract between the extraction driver and a muxing pipeline.

    Lifecycle: configure() -> start() -> push()* -> end_of_stream() ->
    wait() -> teardown(). teardown() may be called at any point and more
    than once.
    """

    @abstractmethod
    def configure(self) -> None:
        """Build and link the stages and bind the output file.

        Raises:
            PipelineError: If a stage or the output file cannot be created
        """

    @abstractmethod
    def start(self) -> None:
        """Start processing."""

    @abstractmethod
    def push(self, data: bytes, pts: int, duration: int, keyframe: bool) -> None:
        """Hand one frame to the pipeline, blocking while it is full.

        Args:
            data: Compressed frame bytes
            pts: Presentation timestamp in nanoseconds, zero based
            duration: Frame duration in nanoseconds
            keyframe: Whether the frame is a key frame

        Raises:
            PipelineError: If the pipeline has already failed
            ExtractionCancelled: If the job was cancelled while blocked
        """

    @abstractmethod
    def end_of_stream(self) -> None:
        """Signal that no more frames will be pushed."""

    @abstractmethod
    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until end of stream has reached the file.

        Raises:
            PipelineError: If a stage reported an error
            ExtractionCancelled: On cancellation or timeout
        """

    @abstractmethod
    def teardown(self) -> None:
        """Stop every stage and release the output file."""

    @abstractmethod
    def cancel(self, reason: str) -> None:
        """Make a blocked or later push()/wait() raise ExtractionCancelled(reason).

        Called from another thread, for example when the run deadline passes.
        """

    @property
    def frames_skipped(self) -> int:
        """Pushed frames that never reached the file."""
        return 0


class _Stopped(Exception):
    """Raised inside the worker when the pipeline is torn down."""


class _IngestReader:
    """
    File-like view of the ingest queue, read by the demuxer.

    Each queued frame is framed for the topology's demuxer (Annex-B streams
    pass through, VP9/AV1 are wrapped in IVF) and its timing is recorded so
    the muxer can stamp the packet the demuxer cuts from it.
    """

    def __init__(self, pipeline: "PyAVPipeline"):
        self.pipeline = pipeline
        self.timings: Deque[Tuple[int, int, bool]] = deque()
        self._buffer = bytearray()
        self._eof = False
        self._ivf = pipeline.topology.parser == "ivf"
        if self._ivf:
            self._buffer.extend(self._ivf_file_header())

    def _ivf_file_header(self) -> bytes:
        fourcc = _IVF_FOURCC[self.pipeline.topology.codec]
        return (
            b"DKIF"
            + struct.pack("<HH", 0, 32)
            + fourcc
            + struct.pack("<HHIII", 0, 0, TIME_BASE.denominator, TIME_BASE.numerator, 0)
            + b"\x00" * 4
        )

    def _next_item(self) -> Any:
        while True:
            if self.pipeline._stopped.is_set():
                raise _Stopped()
            try:
                return self.pipeline._ingest.get(timeout=self.pipeline.poll_interval)
            except queue.Empty:
                continue

    def read(self, size: int = -1) -> bytes:
        while not self._eof and (size < 0 or len(self._buffer) < size):
            item = self._next_item()
            if item is _EOS:
                self._eof = True
                break
            data, pts, duration, keyframe = item
            self.timings.append((pts, duration, keyframe))
            if self._ivf:
                self._buffer.extend(struct.pack("<IQ", len(data), nanos_to_ticks(pts)))
            self._buffer.extend(data)
            if size >= 0 and self._buffer:
                break
        if size < 0 or size >= len(self._buffer):
            chunk = bytes(self._buffer)
            self._buffer.clear()
        else:
            chunk = bytes(self._buffer[:size])
            del self._buffer[:size]
        return chunk


class PyAVPipeline(PipelineBackend):
    """
    Remuxing pipeline built on PyAV.

    Stages: ingest queue (backpressure) -> elementary stream demuxer, whose
    parser finds access unit boundaries -> container muxer -> output file.
    Nothing is decoded or re-encoded; stream parameters come from the
    demuxer's probe.

    Attributes:
        packets_muxed: Packets written to the container
        packets_skipped: Leading packets dropped before the first key frame
    """

    def __init__(
        self,
        topology: Topology,
        output_path: Path,
        queue_size: int = 32,
        faststart: bool = True,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: float = 0.1,
    ):
        self.topology = topology
        self.output_path = Path(output_path)
        self.faststart = faststart
        self.poll_interval = poll_interval
        self.cancel_event = cancel_event or threading.Event()

        self._ingest: "queue.Queue[Any]" = queue.Queue(maxsize=queue_size)
        self._bus: "queue.Queue[Tuple[str, Optional[Exception]]]" = queue.Queue()
        self._stopped = threading.Event()
        self._failed: Optional[PipelineError] = None
        self._cancel_reason: Optional[str] = None
        self._worker: Optional[threading.Thread] = None
        self._output = None
        self._eos_sent = False

        self.packets_muxed = 0
        self.packets_skipped = 0
        self._origin_ticks: Optional[int] = None
        self._last_dts: Optional[int] = None

    @property
    def frames_skipped(self) -> int:
        return self.packets_skipped

    # ----- driver side -----

    def configure(self) -> None:
        # the muxer opens the file lazily, fail here if it cannot be created
        try:
            with open(self.output_path, "wb"):
                pass
        except OSError as e:
            raise PipelineError("sink", f"cannot create {self.output_path}: {e}") from e

        container_options: Dict[str, str] = {}
        if self.faststart and self.topology.muxer == "mp4":
            container_options["movflags"] = "+faststart"
        try:
            self._output = av.open(
                str(self.output_path), mode="w", format=self.topology.muxer,
                container_options=container_options,
            )
        except (FFmpegError, ValueError) as e:
            raise PipelineError("muxer", f"cannot create {self.topology.muxer} muxer: {e}") from e
        logger.debug(
            "Pipeline configured",
            codec=self.topology.codec, demuxer=self.topology.parser,
            muxer=self.topology.muxer, output=str(self.output_path),
        )

    def start(self) -> None:
        if self._output is None:
            raise PipelineError("driver", "pipeline started before configure()")
        self._worker = threading.Thread(
            target=self._run, name=f"mux-{self.output_path.name}", daemon=True
        )
        self._worker.start()

    def cancel(self, reason: str) -> None:
        self._cancel_reason = reason

    def _check_cancelled(self) -> None:
        if self._cancel_reason is not None:
            raise ExtractionCancelled(self._cancel_reason)
        if self.cancel_event.is_set():
            raise ExtractionCancelled()

    def _check_running(self) -> None:
        if self._failed is not None:
            raise self._failed
        self._check_cancelled()
        if self._stopped.is_set():
            raise PipelineError("driver", "pipeline was torn down")

    def _put(self, item: Any) -> None:
        while True:
            self._check_running()
            try:
                self._ingest.put(item, timeout=self.poll_interval)
                return
            except queue.Full:
                continue

    def push(self, data: bytes, pts: int, duration: int, keyframe: bool) -> None:
        if self._eos_sent:
            raise PipelineError("driver", "frame pushed after end of stream")
        self._put((data, pts, duration, keyframe))

    def end_of_stream(self) -> None:
        if not self._eos_sent:
            self._put(_EOS)
            self._eos_sent = True

    def wait(self, timeout: Optional[float] = None) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self._check_cancelled()
            interval = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ExtractionCancelled(
                        f"no end of stream from {self.output_path.name} within {timeout}s"
                    )
                interval = min(interval, remaining)
            try:
                kind, error = self._bus.get(timeout=interval)
            except queue.Empty:
                continue
            if kind == "eos":
                return
            raise error

    def teardown(self) -> None:
        self._stopped.set()
        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=5.0)
            if worker.is_alive():
                logger.warning("Mux worker did not stop", output=str(self.output_path))
        if worker is None or not worker.is_alive():
            self._close_output()

    # ----- worker side -----

    def _fail(self, stage: str, error: Exception) -> None:
        self._failed = PipelineError(stage, str(error) or type(error).__name__)
        logger.error("Pipeline stage failed", stage=stage, error=str(error), output=str(self.output_path))
        self._bus.put(("error", self._failed))

    def _run(self) -> None:
        reader = _IngestReader(self)
        stage = "demuxer"
        source = None
        try:
            source = av.open(reader, mode="r", format=self.topology.parser)
            if not source.streams.video:
                raise ValueError("no video stream found in elementary stream")
            in_stream = source.streams.video[0]
            stage = "muxer"
            out_stream = self._output.add_stream_from_template(in_stream)
            out_stream.time_base = TIME_BASE

            stage = "demuxer"
            for packet in source.demux(in_stream):
                if packet.size == 0:
                    continue
                stage = "muxer"
                self._mux(packet, out_stream, reader.timings)
                stage = "demuxer"

            stage = "muxer"
            self._output.close()
            self._output = None
            logger.debug(
                "Pipeline reached end of stream",
                output=str(self.output_path), packets=self.packets_muxed,
                skipped=self.packets_skipped,
            )
            self._bus.put(("eos", None))
        except _Stopped:
            logger.debug("Mux worker stopped", output=str(self.output_path))
        except (FFmpegError, OSError, ValueError) as e:
            if self._stopped.is_set():
                logger.debug("Mux worker stopped", output=str(self.output_path), error=str(e))
            else:
                self._fail(stage, e)
        finally:
            if source is not None:
                source.close()
            self._close_output()

    def _mux(self, packet, out_stream, timings: Deque[Tuple[int, int, bool]]) -> None:
        if timings:
            pts, duration, keyframe = timings.popleft()
            ticks: Optional[int] = nanos_to_ticks(pts)
        else:
            ticks = None
            duration, keyframe = 0, False

        if self.packets_muxed == 0 and not (keyframe or packet.is_keyframe):
            self.packets_skipped += 1
            return

        if ticks is None:
            # more packets than pushed frames: continue right after the last one
            ticks = 0 if self._last_dts is None else self._last_dts + 1
        else:
            # the file starts at zero even when leading frames were skipped
            if self._origin_ticks is None:
                self._origin_ticks = ticks
            ticks -= self._origin_ticks

        if self._last_dts is not None and ticks <= self._last_dts:
            ticks = self._last_dts + 1
        self._last_dts = ticks

        packet.time_base = TIME_BASE
        packet.pts = ticks
        packet.dts = ticks
        packet.duration = max(nanos_to_ticks(duration), 1)
        packet.stream = out_stream
        self._output.mux(packet)
        self.packets_muxed += 1

    def _close_output(self) -> None:
        output, self._output = self._output, None
        if output is not None:
            try:
                output.close()
            except (FFmpegError, OSError, ValueError) as e:
                logger.warning("Failed to finalize output", output=str(self.output_path), error=str(e))


def make_backend(
    topology: Topology,
    output_path: Path,
    config: Config,
    cancel_event: Optional[threading.Event] = None,
) -> PipelineBackend:
    """Default backend factory used by the orchestrator."""
    return PyAVPipeline(
        topology,
        output_path,
        queue_size=config.get_setting('queue_size', 32),
        faststart=config.get_setting('faststart', True),
        cancel_event=cancel_event,
    )
