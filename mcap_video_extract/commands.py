"""
Command classes behind the CLI.

Each command wraps a library entry point and returns a standardized
dictionary, so callers other than the Typer CLI get the same behaviour.
"""

import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from .codecs import TOPOLOGIES
from .config.settings import Config
from .exceptions import RecordingError
from .extractor import extract_recording, list_recording, run_succeeded

logger = structlog.get_logger(__name__)


class BaseCommand(ABC):
    """Base class for commands.

    Subclasses implement execute() and return
    {"success": bool, "data": Any} or {"success": bool, "error": str}.
    """

    @abstractmethod
    def execute(self, **kwargs) -> Dict[str, Any]:
        """Execute command with dict args, return dict result."""
        pass


class ListCommand(BaseCommand):
    """Summarize the CompressedVideo channels of a recording."""

    def execute(self, **kwargs) -> Dict[str, Any]:
        """
        Args:
            **kwargs: mcap_file (required), config

        Returns:
            Dict with data.channels, one entry per channel sorted by name
        """
        mcap_file: Path = kwargs['mcap_file']
        config: Optional[Config] = kwargs.get('config')
        try:
            summaries = list_recording(mcap_file, config=config)
        except RecordingError as e:
            logger.error("Listing failed", path=str(mcap_file), error=str(e))
            return {"success": False, "error": str(e)}

        channels = []
        for summary in summaries:
            entry = summary.model_dump()
            topology = TOPOLOGIES.get(summary.codec or "")
            entry['label'] = topology.label if topology else summary.format
            entry['duration_seconds'] = summary.duration_seconds
            channels.append(entry)
        return {"success": True, "data": {"path": str(mcap_file), "channels": channels}}


class ExtractCommand(BaseCommand):
    """Extract one channel, or all of them, into video files."""

    def __init__(self, cancel_event: Optional[threading.Event] = None):
        self.cancel_event = cancel_event

    def execute(self, **kwargs) -> Dict[str, Any]:
        """
        Args:
            **kwargs: mcap_file, topic and output_dir (required), config,
                backend_factory

        Returns:
            Dict with data.results, one entry per selected channel. success
            is False if any channel failed.
        """
        mcap_file: Path = kwargs['mcap_file']
        try:
            results = extract_recording(
                mcap_file,
                kwargs['topic'],
                kwargs['output_dir'],
                config=kwargs.get('config'),
                backend_factory=kwargs.get('backend_factory'),
                cancel_event=self.cancel_event,
            )
        except RecordingError as e:
            logger.error("Extraction failed", path=str(mcap_file), error=str(e))
            return {"success": False, "error": str(e)}

        data = {
            "path": str(mcap_file),
            "results": [result.to_dict() for result in results],
        }
        if not results:
            return {"success": True, "data": data}
        succeeded = run_succeeded(results)
        response: Dict[str, Any] = {"success": succeeded, "data": data}
        if not succeeded:
            failed = sum(1 for r in data['results'] if r['status'] != "Completed")
            response['error'] = f"{failed} of {len(results)} channel(s) failed"
        return response
