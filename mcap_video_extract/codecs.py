"""
Codec resolver for the video extractor.

Maps the ``format`` tag carried by CompressedVideo messages to the fixed
parse/mux topology used to remux that codec into a container file. No codec
is ever decoded and re-encoded: the parser only splits the elementary stream
into access units and the muxer writes them as they are.
"""

from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .exceptions import UnsupportedCodecError


class Topology(BaseModel):
    """Immutable description of one codec's extraction pipeline."""
    model_config = ConfigDict(frozen=True)

    codec: str
    label: str
    parser: str  # FFmpeg demuxer that splits the elementary stream
    muxer: str
    extension: str
    decoder_required: bool = False
    aliases: Tuple[str, ...] = ()


H264 = Topology(codec="h264", label="H.264", parser="h264", muxer="mp4",
                extension="mp4", aliases=("avc", "h.264"))
H265 = Topology(codec="h265", label="H.265", parser="hevc", muxer="mp4",
                extension="mp4", aliases=("hevc", "h.265"))
VP9 = Topology(codec="vp9", label="VP9", parser="ivf", muxer="webm",
               extension="webm", aliases=("vp09",))
AV1 = Topology(codec="av1", label="AV1", parser="ivf", muxer="webm",
               extension="webm", aliases=("av01",))

TOPOLOGIES: Dict[str, Topology] = {t.codec: t for t in (H264, H265, VP9, AV1)}

_ALIASES: Dict[str, str] = {}
for _topology in TOPOLOGIES.values():
    _ALIASES[_topology.codec] = _topology.codec
    for _alias in _topology.aliases:
        _ALIASES[_alias] = _topology.codec


def supported_codecs() -> List[str]:
    """Canonical names of every codec that can be extracted."""
    return list(TOPOLOGIES)


def normalize_format(format_tag: Optional[str]) -> Optional[str]:
    """
    Canonical codec name for a format tag, or None when unknown.

    Args:
        format_tag: Tag as found in the message, e.g. "H264" or "hevc"

    Returns:
        Optional[str]: One of supported_codecs(), or None
    """
    if not format_tag:
        return None
    return _ALIASES.get(format_tag.strip().lower())


def resolve(format_tag: Optional[str]) -> Topology:
    """
    Resolve a format tag to its extraction topology.

    Raises:
        UnsupportedCodecError: If the tag has no topology
    """
    codec = normalize_format(format_tag)
    if codec is None:
        raise UnsupportedCodecError(format_tag or "", supported_codecs())
    return TOPOLOGIES[codec]
