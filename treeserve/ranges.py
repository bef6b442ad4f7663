"""
HTTP Range header parsing for treeserve

Only the ``bytes`` unit is understood. A header may list several
comma-separated specs, but a download is served from exactly one range;
anything else is answered with 416.
"""

import re
import logging
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)

RANGE_UNIT_PREFIX = "bytes="

_DIGITS = re.compile(r"^[0-9]+$")


class RangeError(Exception):
    """Base class for Range header failures (answered with 416)"""

    def __init__(self, message: str, total_length: Optional[int] = None):
        super().__init__(message)
        self.total_length = total_length


class MalformedRangeError(RangeError):
    """The header does not follow the bytes-range grammar"""
    pass


class UnsatisfiableRangeError(RangeError):
    """The header is well formed but cannot be served for this resource"""
    pass


@dataclass(frozen=True)
class ByteRange:
    """Inclusive, zero-based byte interval of a resource"""
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, total_length: int) -> str:
        return f"bytes {self.start}-{self.end}/{total_length}"


def _parse_offset(text: str, what: str) -> int:
    if not _DIGITS.match(text):
        raise MalformedRangeError(f"Invalid {what}: {text!r}")
    return int(text)


def _parse_spec(spec: str, total_length: int) -> ByteRange:
    if '-' not in spec:
        raise MalformedRangeError(f"Invalid range spec: {spec!r}")

    start_str, end_str = (part.strip() for part in spec.split('-', 1))

    if not start_str:
        # Suffix range: bytes=-500 (last 500 bytes)
        if not end_str:
            raise MalformedRangeError("Empty range spec")
        suffix_length = _parse_offset(end_str, "suffix length")
        if suffix_length <= 0:
            raise MalformedRangeError("Suffix length must be positive")
        start = max(0, total_length - suffix_length)
        end = total_length - 1
    elif not end_str:
        # Open range: bytes=500-
        start = _parse_offset(start_str, "start position")
        end = total_length - 1
    else:
        # Full range: bytes=0-1023
        start = _parse_offset(start_str, "start position")
        end = _parse_offset(end_str, "end position")
        if end < start:
            raise MalformedRangeError(f"Range end before start: {spec!r}")

    if start >= total_length:
        raise UnsatisfiableRangeError(
            f"Range start {start} beyond resource length {total_length}"
        )

    # Over-long ends are clamped rather than rejected
    if end >= total_length:
        end = total_length - 1

    return ByteRange(start=start, end=end)


def parse_http_ranges(range_header: str, total_length: int) -> List[ByteRange]:
    """
    Parse a Range header against a resource of ``total_length`` bytes

    Supports:
    - bytes=start-end
    - bytes=start-
    - bytes=-suffix
    and comma-separated lists of those.

    Args:
        range_header: Range header value (e.g., "bytes=0-1023")
        total_length: Size of the resource in bytes

    Returns:
        Every parsed range, in header order

    Raises:
        MalformedRangeError: If the header does not parse
        UnsatisfiableRangeError: If a range lies outside the resource or none is given
    """
    if not range_header or not range_header.startswith(RANGE_UNIT_PREFIX):
        raise MalformedRangeError("Range header must use the bytes unit", total_length)

    ranges = []
    for spec in range_header[len(RANGE_UNIT_PREFIX):].split(','):
        spec = spec.strip()
        if not spec:
            continue
        try:
            ranges.append(_parse_spec(spec, total_length))
        except RangeError as e:
            e.total_length = total_length
            raise

    if not ranges:
        raise UnsatisfiableRangeError("No ranges in header", total_length)

    return ranges


def parse_http_range(range_header: str, total_length: int) -> ByteRange:
    """Parse a Range header that must resolve to exactly one range"""
    ranges = parse_http_ranges(range_header, total_length)
    if len(ranges) != 1:
        raise UnsatisfiableRangeError("Multiple ranges are not supported", total_length)
    return ranges[0]


def unsatisfied_content_range(total_length: int) -> str:
    """Content-Range value sent along with a 416 response"""
    return f"bytes */{total_length}"
