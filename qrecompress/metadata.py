"""
JPEG metadata handling for qRecompress.

Extracts EXIF/XMP/ICC/IPTC segments from the input stream, detects the
"already processed" comment, and splices the preserved segments back into a
freshly encoded JPEG right after its SOI and APP0 headers.
"""

from dataclasses import dataclass, field
from typing import Iterable, Iterator, List
import struct

from .errors import JpegFormatError

SENTINEL = b"Compressed by jpeg-recompress"

SOI = 0xD8
EOI = 0xD9
SOS = 0xDA
APP0 = 0xE0
APP14 = 0xEE
COM = 0xFE

# Markers with no length field: TEM, RST0-7, SOI, EOI
STANDALONE_MARKERS = frozenset([0x01, *range(0xD0, 0xD8), SOI, EOI])

# APP0 is regenerated by the encoder and APP14 (Adobe) describes the original
# encoder's colour transform; every other APPn and COM is carried over.
PRESERVED_MARKERS = frozenset([*range(0xE1, APP14), 0xEF, COM])


@dataclass(frozen=True)
class Segment:
    """One marker segment, ``data`` holding its raw bytes starting at 0xFF."""
    marker: int
    data: bytes

    @property
    def payload(self) -> bytes:
        """Segment body after the marker and length field."""
        return self.data[4:] if self.marker not in STANDALONE_MARKERS else b""

    @property
    def size(self) -> int:
        return len(self.data)

    def __repr__(self):
        return f"Segment(0xFF{self.marker:02X}, {len(self.data)} bytes)"


@dataclass
class MetadataScan:
    segments: List[Segment] = field(default_factory=list)
    already_processed: bool = False

    @property
    def size(self) -> int:
        return metadata_size(self.segments)


class SegmentReader:
    """
    Forward-only cursor over an immutable JPEG byte stream.

    Iterating yields segments until (and including) the first SOS or EOI;
    the entropy-coded data behind SOS is left for ``remainder()``.
    """

    def __init__(self, data: bytes, offset: int = 0):
        self._data = bytes(data)
        self.offset = offset

    @property
    def at_end(self) -> bool:
        return self.offset >= len(self._data)

    def read_marker(self) -> int:
        """Consume a marker (skipping 0xFF fill bytes) and return its code."""
        data = self._data
        if self.at_end:
            raise JpegFormatError(f"unexpected end of data at offset {self.offset}")
        if data[self.offset] != 0xFF:
            raise JpegFormatError(f"expected marker at offset {self.offset}, found 0x{data[self.offset]:02X}")
        while self.offset < len(data) and data[self.offset] == 0xFF:
            self.offset += 1
        if self.offset >= len(data):
            raise JpegFormatError("truncated marker at end of data")
        marker = data[self.offset]
        if marker == 0x00:
            raise JpegFormatError(f"stuffed byte where a marker was expected at offset {self.offset}")
        self.offset += 1
        return marker

    def read_length(self) -> int:
        """Consume a big-endian 16-bit length field."""
        if self.offset + 2 > len(self._data):
            raise JpegFormatError(f"truncated length field at offset {self.offset}")
        (length,) = struct.unpack_from(">H", self._data, self.offset)
        self.offset += 2
        return length

    def read_segment(self) -> Segment:
        """Consume one marker segment, length-prefixed unless standalone."""
        marker = self.read_marker()
        start = self.offset - 2
        if marker in STANDALONE_MARKERS:
            return Segment(marker, self._data[start:self.offset])
        length = self.read_length()
        end = self.offset - 2 + length
        if length < 2 or end > len(self._data):
            raise JpegFormatError(
                f"segment 0xFF{marker:02X} at offset {start} declares {length} bytes, "
                f"only {len(self._data) - start - 2} available"
            )
        self.offset = end
        return Segment(marker, self._data[start:end])

    def remainder(self) -> bytes:
        return self._data[self.offset:]

    def __iter__(self) -> Iterator[Segment]:
        while not self.at_end:
            seg = self.read_segment()
            yield seg
            if seg.marker in (SOS, EOI):
                return


def is_sentinel(segment: Segment, sentinel: bytes = SENTINEL) -> bool:
    return segment.marker == COM and segment.payload.startswith(sentinel)


def scan_metadata(data: bytes, sentinel: bytes = SENTINEL) -> MetadataScan:
    """
    Collect the segments to carry over from an input JPEG.

    Segment bytes are kept verbatim and in file order. A COM segment starting
    with ``sentinel`` marks the file as already processed and is not kept.

    Args:
        data: Complete JPEG file contents
        sentinel: Comment text identifying our own output

    Returns:
        MetadataScan with the preserved segments and the idempotency flag
    """
    reader = SegmentReader(data)
    if reader.read_segment().marker != SOI:
        raise JpegFormatError("missing SOI marker")

    scan = MetadataScan()
    for seg in reader:
        if seg.marker in (SOS, EOI):
            break
        if is_sentinel(seg, sentinel):
            scan.already_processed = True
        elif seg.marker in PRESERVED_MARKERS:
            scan.segments.append(seg)
    return scan


def metadata_size(segments: Iterable[Segment]) -> int:
    return sum(seg.size for seg in segments)


def comment_segment(text: bytes) -> bytes:
    """Build a COM segment holding ``text``."""
    if len(text) + 2 > 0xFFFF:
        raise ValueError(f"comment too long for a JPEG segment ({len(text)} bytes)")
    return struct.pack(">BBH", 0xFF, COM, len(text) + 2) + text


def sentinel_overhead(sentinel: bytes = SENTINEL) -> int:
    """Bytes added to the output by the idempotency comment."""
    return len(sentinel) + 4


def splice(candidate: bytes, segments: Iterable[Segment], sentinel: bytes = SENTINEL) -> bytes:
    """
    Assemble the output JPEG.

    Layout: SOI + APP0 copied from ``candidate``, the sentinel comment, the
    preserved segments, then everything in ``candidate`` after its APP0.

    Args:
        candidate: JPEG bytes from the encoder (must start with SOI, APP0)
        segments: Segments to insert, in order
        sentinel: Comment text to mark the file as processed

    Returns:
        Output file bytes
    """
    if candidate[:2] != b"\xff\xd8":
        raise JpegFormatError("missing SOI marker, aborting!")
    if candidate[2:4] != b"\xff\xe0":
        raise JpegFormatError("missing APP0 marker, aborting!")

    reader = SegmentReader(candidate, offset=2)
    reader.read_segment()
    head_end = reader.offset

    parts = [candidate[:head_end], comment_segment(sentinel)]
    parts.extend(seg.data for seg in segments)
    parts.append(candidate[head_end:])
    return b"".join(parts)
