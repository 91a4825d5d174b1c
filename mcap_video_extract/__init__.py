"""
MCAP Video Extract

Extracts foxglove.CompressedVideo channels from MCAP recordings into
standalone video files, without re-encoding. It consists of:
- decoder.py: CDR decoding of CompressedVideo messages
- lister.py: per-channel codec, frame count and duration summaries
- driver.py / pipeline.py: the per-channel extraction state machine and its PyAV muxing backend
- extractor.py: channel selection and job orchestration
- cli.py: the Typer command line interface
"""

__version__ = "0.1.0"

from .extractor import extract, extract_recording, list_recording, run_succeeded

__all__ = [
    '__version__',
    'extract',
    'extract_recording',
    'list_recording',
    'run_succeeded',
]
