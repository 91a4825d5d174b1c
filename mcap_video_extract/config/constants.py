"""
Constants for the video extractor.

Contains all constant values used throughout the application.
"""

# Schema carried by the channels we extract
MESSAGE_SCHEMA_NAME = "foxglove.CompressedVideo"
MESSAGE_ENCODING = "cdr"

# Selector value meaning "every CompressedVideo channel"
ALL_CHANNELS = "all"

# Duration given to the first frame of a stream (1/30 s, in nanoseconds)
DEFAULT_FRAME_DURATION_NS = 1_000_000_000 // 30

# Default extraction configuration - single source of truth
DEFAULT_EXTRACTION_CONFIG = {
    'queue_size': 32,          # Frames buffered between the read loop and the muxer
    'drain_timeout': None,     # Seconds to wait for end-of-stream, None waits forever
    'timeout_seconds': None,   # Deadline for the whole run, None disables it
    'max_workers': 1,          # Channels extracted concurrently
    'log_time_order': False,   # Read messages sorted by log_time instead of file order
    'faststart': True,         # Move the MP4 index to the front of the file
    'log_level': 'INFO',
}
