"""
CDR decoder for foxglove.CompressedVideo messages.

Wire layout (foxglove_msgs/msg/CompressedVideo, ROS 2 CDR):

    builtin_interfaces/Time timestamp   uint32 sec, uint32 nsec
    string frame_id
    uint8[] data
    string format

Strings and sequences are a uint32 length followed by the raw bytes; a
string's length counts its trailing NUL. Scalars are aligned to their own
width relative to the alignment origin, which is the first byte after the
4-byte encapsulation header, or the first byte of the buffer for payloads
written without one (read as little-endian).

This is the only module that knows about the wire layout.
"""

import struct
from typing import Optional, Tuple

from .codecs import normalize_format
from .exceptions import DecodeError, LengthMismatch, Truncated, UnknownFormat
from .models import FrameHeader, VideoFrame

ENCAPSULATION_HEADER_SIZE = 4

# representation identifier -> struct byte order
_REPRESENTATIONS = {
    b"\x00\x00": ">",  # CDR_BE
    b"\x00\x01": "<",  # CDR_LE
}


class _CdrReader:
    """Cursor over a CDR buffer that honours field alignment."""

    def __init__(self, data: memoryview, origin: int, byte_order: str, require_nul: bool = False):
        self.data = data
        self.origin = origin
        self.pos = origin
        self.byte_order = byte_order
        self.require_nul = require_nul

    def _align(self, width: int) -> None:
        misalignment = (self.pos - self.origin) % width
        if misalignment:
            self.pos += width - misalignment

    def uint32(self, field: str) -> int:
        self._align(4)
        available = max(len(self.data) - self.pos, 0)
        if available < 4:
            raise Truncated(field, self.pos, 4, available)
        (value,) = struct.unpack_from(self.byte_order + "I", self.data, self.pos)
        self.pos += 4
        return value

    def _span(self, field: str) -> memoryview:
        length = self.uint32(field + ".length")
        available = len(self.data) - self.pos
        if length > available:
            raise LengthMismatch(field, self.pos, length, available)
        span = self.data[self.pos:self.pos + length]
        self.pos += length
        return span

    def string(self, field: str) -> str:
        offset = self.pos
        raw = bytes(self._span(field))
        if self.require_nul and not raw.endswith(b"\x00"):
            raise DecodeError(f"field '{field}' at offset {offset} is not NUL-terminated")
        if raw.endswith(b"\x00"):
            raw = raw[:-1]
        return raw.decode("utf-8", errors="replace")

    def sequence(self, field: str) -> memoryview:
        return self._span(field)


class _CdrWriter:
    def __init__(self, origin: int, byte_order: str):
        self.buffer = bytearray()
        self.origin = origin
        self.byte_order = byte_order

    def _align(self, width: int) -> None:
        misalignment = (len(self.buffer) + self.origin) % width
        if misalignment:
            self.buffer.extend(b"\x00" * (width - misalignment))

    def uint32(self, value: int) -> None:
        self._align(4)
        self.buffer.extend(struct.pack(self.byte_order + "I", value))

    def sequence(self, value: bytes) -> None:
        self.uint32(len(value))
        self.buffer.extend(value)

    def string(self, value: str) -> None:
        self.sequence(value.encode("utf-8") + b"\x00")


def _read_fields(reader: _CdrReader) -> Tuple[int, str, memoryview, str]:
    sec = reader.uint32("timestamp.sec")
    nsec = reader.uint32("timestamp.nsec")
    frame_id = reader.string("frame_id")
    data = reader.sequence("data")
    format_tag = reader.string("format")
    return sec * 1_000_000_000 + nsec, frame_id, data, format_tag


def _walk(raw: bytes) -> Tuple[int, str, memoryview, str]:
    """
    Read the message fields.

    A payload that starts with a known representation id is read after the
    encapsulation header first. If that fails it is read again as a
    header-less little-endian payload, since a header-less message whose
    timestamp.sec starts with 00 00 or 00 01 looks like a header. The
    header-less reading only counts when its strings are NUL-terminated;
    otherwise the error of the header reading is raised.
    """
    view = memoryview(raw)
    byte_order = _REPRESENTATIONS.get(bytes(view[:2]))
    if byte_order is None or len(view) < ENCAPSULATION_HEADER_SIZE:
        return _read_fields(_CdrReader(view, 0, "<"))
    try:
        return _read_fields(_CdrReader(view, ENCAPSULATION_HEADER_SIZE, byte_order))
    except DecodeError as error:
        try:
            return _read_fields(_CdrReader(view, 0, "<", require_nul=True))
        except DecodeError:
            raise error from None


def decode(raw: bytes, log_time: int, strict: bool = False) -> VideoFrame:
    """
    Decode one CompressedVideo payload.

    Args:
        raw: Message bytes as stored in the recording
        log_time: Recording timestamp of the message, in nanoseconds
        strict: Raise UnknownFormat when the format tag is not supported

    Returns:
        VideoFrame: The decoded frame

    Raises:
        Truncated: The buffer ends inside a field
        LengthMismatch: A length prefix runs past the end of the buffer
        UnknownFormat: strict is set and the format tag is unsupported
    """
    frame_time, frame_id, payload, format_tag = _walk(raw)
    data = bytes(payload)

    codec = normalize_format(format_tag)
    if strict and codec is None:
        raise UnknownFormat(format_tag)

    return VideoFrame(
        log_time=log_time,
        frame_time=frame_time,
        frame_id=frame_id,
        format=format_tag,
        codec=codec,
        data=data,
        is_keyframe=detect_keyframe(codec, data),
    )


def decode_header(raw: bytes, log_time: int) -> FrameHeader:
    """Decode everything but the payload, which is skipped without copying."""
    frame_time, frame_id, payload, format_tag = _walk(raw)
    data_length = len(payload)
    return FrameHeader(
        log_time=log_time,
        frame_time=frame_time,
        frame_id=frame_id,
        format=format_tag,
        codec=normalize_format(format_tag),
        data_length=data_length,
    )


def encode(frame: VideoFrame, big_endian: bool = False, header: bool = True) -> bytes:
    """
    Serialize a frame back to CDR.

    Args:
        frame: Frame to encode; log_time is not part of the message
        big_endian: Use the CDR_BE representation (requires header)
        header: Prefix the 4-byte encapsulation header

    Returns:
        bytes: CDR payload
    """
    if big_endian and not header:
        raise ValueError("big-endian payloads need an encapsulation header")
    byte_order = ">" if big_endian else "<"
    writer = _CdrWriter(0, byte_order)
    frame_time = frame.frame_time or 0
    writer.uint32(frame_time // 1_000_000_000)
    writer.uint32(frame_time % 1_000_000_000)
    writer.string(frame.frame_id)
    writer.sequence(frame.data)
    writer.string(frame.format)
    if not header:
        return bytes(writer.buffer)
    representation = b"\x00\x00" if big_endian else b"\x00\x01"
    return representation + b"\x00\x00" + bytes(writer.buffer)


# ===== Key frame detection =====

def _annexb_nal_headers(data: bytes):
    """Yield the first header byte of every NAL unit in an Annex-B stream."""
    start = data.find(b"\x00\x00\x01")
    while start != -1:
        header_at = start + 3
        if header_at >= len(data):
            return
        yield data[header_at]
        start = data.find(b"\x00\x00\x01", header_at)


def _h264_keyframe(data: bytes) -> bool:
    return any((nal & 0x1F) == 5 for nal in _annexb_nal_headers(data))


def _h265_keyframe(data: bytes) -> bool:
    # IRAP pictures: BLA_W_LP (16) .. CRA_NUT (21)
    return any(16 <= ((nal >> 1) & 0x3F) <= 21 for nal in _annexb_nal_headers(data))


def _vp9_keyframe(data: bytes) -> bool:
    if not data:
        return False
    first = data[0]
    if first >> 6 != 0b10:
        return False
    profile = ((first >> 5) & 1) | (((first >> 4) & 1) << 1)
    bit = 3 if profile < 3 else 2
    show_existing_frame = (first >> bit) & 1
    if show_existing_frame:
        return False
    return ((first >> (bit - 1)) & 1) == 0


def _read_leb128(data: bytes, pos: int):
    value = 0
    for i in range(8):
        if pos >= len(data):
            return None, pos
        byte = data[pos]
        pos += 1
        value |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            break
    return value, pos


def _av1_keyframe(data: bytes) -> bool:
    pos = 0
    while pos < len(data):
        header = data[pos]
        obu_type = (header >> 3) & 0x0F
        if obu_type == 1:  # OBU_SEQUENCE_HEADER
            return True
        has_extension = (header >> 2) & 1
        has_size = (header >> 1) & 1
        pos += 1 + has_extension
        if not has_size:
            return False
        size, pos = _read_leb128(data, pos)
        if size is None:
            return False
        pos += size
    return False


_KEYFRAME_DETECTORS = {
    "h264": _h264_keyframe,
    "h265": _h265_keyframe,
    "vp9": _vp9_keyframe,
    "av1": _av1_keyframe,
}


def detect_keyframe(codec: Optional[str], data: bytes) -> bool:
    """
    Whether a payload starts a decodable sequence.

    Args:
        codec: Canonical codec name, or None
        data: Compressed frame bytes

    Returns:
        bool: False for unknown codecs
    """
    detector = _KEYFRAME_DETECTORS.get(codec or "")
    return detector(data) if detector else False
