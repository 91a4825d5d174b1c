"""
Extraction pipeline driver.

Runs one channel's job through its state machine:

    Idle -> Configured -> Running -> Draining -> Completed
                 \\            \\          \\
                  +-----------+----------+--> Failed

The driver only talks to a PipelineBackend, so any backend implementing
that contract (including an in-memory one) can be driven.
"""

import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Tuple

import structlog

from .codecs import Topology
from .config.constants import DEFAULT_FRAME_DURATION_NS
from .decoder import decode
from .exceptions import (
    ExtractionCancelled,
    ExtractionError,
    FormatMismatch,
    OrderingWarning,
    VideoExtractError,
)
from .models import ExtractionJob, ExtractionResult, JobState
from .pipeline import PipelineBackend

logger = structlog.get_logger(__name__)

BackendFactory = Callable[[Topology, Path], PipelineBackend]

__all__ = [
    "BackendFactory",
    "ExtractionDriver",
    "ExtractionJob",
    "ExtractionResult",
    "JobState",
]


class ExtractionDriver:
    """
    Drives extraction jobs against pipeline backends.

    A driver holds no per-job state and can run jobs from several threads at
    once; everything mutable lives on the ExtractionJob and its backend.

    Args:
        backend_factory: Builds an unconfigured backend for a topology and output path
        drain_timeout: Seconds to wait for end of stream, None for no limit
        deadline: time.monotonic() value after which jobs are cancelled
        cancel_event: Shared event that cancels running jobs when set
    """

    def __init__(
        self,
        backend_factory: BackendFactory,
        *,
        drain_timeout: Optional[float] = None,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.backend_factory = backend_factory
        self.drain_timeout = drain_timeout
        self.deadline = deadline
        self.cancel_event = cancel_event or threading.Event()

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise ExtractionCancelled()
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise ExtractionCancelled("deadline exceeded")

    def _wait_timeout(self) -> Optional[float]:
        timeouts = [] if self.drain_timeout is None else [self.drain_timeout]
        if self.deadline is not None:
            timeouts.append(max(self.deadline - time.monotonic(), 0.0))
        return min(timeouts) if timeouts else None

    def run(self, job: ExtractionJob, messages: Iterable[Tuple[int, bytes]]) -> ExtractionResult:
        """
        Run a job to completion.

        Args:
            job: Job in the Idle state
            messages: ``(log_time, raw)`` pairs of the job's channel, in file order

        Returns:
            ExtractionResult: Counters of the completed job

        Raises:
            ExtractionError: The job ended in the Failed state
        """
        log = logger.bind(channel=job.channel_name, codec=job.topology.codec)
        backend: Optional[PipelineBackend] = None
        timer: Optional[threading.Timer] = None
        try:
            backend = self.backend_factory(job.topology, job.output_path)
            if self.deadline is not None:
                # a push() blocked on a full pipeline only sees the deadline through cancel()
                timer = threading.Timer(
                    max(self.deadline - time.monotonic(), 0.0),
                    backend.cancel, args=("deadline exceeded",),
                )
                timer.daemon = True
                timer.start()
            backend.configure()
            job.state = JobState.CONFIGURED

            backend.start()
            job.state = JobState.RUNNING
            log.debug("Job running", output=str(job.output_path))

            self._inject(job, backend, messages, log)

            self._check_cancelled()
            job.state = JobState.DRAINING
            backend.end_of_stream()
            backend.wait(self._wait_timeout())
            job.frames_skipped = backend.frames_skipped
            job.frames_written -= job.frames_skipped
            job.state = JobState.COMPLETED
        except KeyboardInterrupt:
            self.cancel_event.set()
            raise self._fail(job, ExtractionCancelled("interrupted"), log)
        except VideoExtractError as e:
            raise self._fail(job, e, log) from e
        finally:
            if timer is not None:
                timer.cancel()
            if backend is not None:
                backend.teardown()

        log.info(
            "Job completed",
            frames=job.frames_written, dropped=job.frames_dropped,
            skipped=job.frames_skipped, output=str(job.output_path),
        )
        return ExtractionResult(
            channel_name=job.channel_name,
            output_path=job.output_path,
            codec=job.topology.codec,
            frames_written=job.frames_written,
            frames_dropped=job.frames_dropped,
            frames_skipped=job.frames_skipped,
            duration=job.duration,
        )

    def _inject(self, job: ExtractionJob, backend: PipelineBackend, messages, log) -> None:
        previous: Optional[int] = None
        for log_time, raw in messages:
            self._check_cancelled()
            frame = decode(raw, log_time, strict=True)
            if frame.codec != job.topology.codec:
                raise FormatMismatch(job.topology.codec, frame.format, log_time)

            if previous is not None and log_time < previous:
                job.frames_dropped += 1
                log.warning(
                    "Dropping out-of-order frame",
                    category=OrderingWarning.__name__,
                    log_time=log_time, previous_log_time=previous,
                )
                continue

            if job.first_log_time is None:
                job.first_log_time = log_time
            if previous is None:
                duration = DEFAULT_FRAME_DURATION_NS
            else:
                duration = max(log_time - previous, 1)

            backend.push(frame.data, log_time - job.first_log_time, duration, frame.is_keyframe)
            job.frames_written += 1
            job.last_log_time = log_time
            previous = log_time

    def _fail(self, job: ExtractionJob, cause: Exception, log) -> ExtractionError:
        failed_in = job.state
        job.state = JobState.FAILED
        log.error(
            "Job failed",
            state=failed_in.value, error=str(cause), error_type=type(cause).__name__,
            frames=job.frames_written, output=str(job.output_path),
        )
        return ExtractionError(
            job.channel_name,
            cause,
            output_path=job.output_path,
            frames_written=job.frames_written,
            frames_dropped=job.frames_dropped,
            failed_in=failed_in.value,
        )
