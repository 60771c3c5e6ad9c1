"""
Cache Value Encoding

Values bound for Redis are JSON-encoded and, above a size threshold,
compressed. Pool lists and analytics carrying 30 days of history are the
large entries; reserves and prices stay well under the threshold.

Layout: a 1-byte codec marker followed by the payload.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import lz4.frame
import zstandard


logger = logging.getLogger(__name__)


RAW = b"\x00"
LZ4 = b"\x01"
ZSTD = b"\x02"


@dataclass(frozen=True)
class CompressionStats:
    original_size: int
    compressed_size: int
    algorithm: str

    @property
    def savings_percent(self) -> float:
        if not self.original_size:
            return 0.0
        return 100.0 * (self.original_size - self.compressed_size) / self.original_size


class CacheCompressor:
    """
    Picks a codec by payload size: nothing below `threshold`, LZ4 up to
    `use_zstd_threshold`, ZSTD beyond. A compressed payload that is not
    smaller than the input is stored raw instead.
    """

    def __init__(self, enabled: bool = True, threshold: int = 1024, use_zstd_threshold: int = 100 * 1024):
        self.enabled = enabled
        self.threshold = threshold
        self.use_zstd_threshold = use_zstd_threshold
        self._zstd_in = zstandard.ZstdCompressor(level=3)
        self._zstd_out = zstandard.ZstdDecompressor()

    def compress(self, data: bytes) -> Tuple[bytes, Optional[CompressionStats]]:
        """Returns (encoded, stats); stats is None when stored raw."""
        size = len(data)
        if not self.enabled or size < self.threshold:
            return RAW + data, None

        if size >= self.use_zstd_threshold:
            marker, algorithm, packed = ZSTD, "zstd", self._zstd_in.compress(data)
        else:
            marker, algorithm, packed = LZ4, "lz4", lz4.frame.compress(data)

        encoded = marker + packed
        if len(encoded) >= size:
            return RAW + data, None
        return encoded, CompressionStats(size, len(encoded), algorithm)

    def decompress(self, data: bytes) -> bytes:
        """
        Reverse compress().

        Raises ValueError for an unknown marker or a payload the codec
        rejects, so stores can treat both as an undecodable entry.
        """
        if not data:
            return data

        marker, payload = data[:1], data[1:]
        if marker == RAW:
            return payload
        try:
            if marker == LZ4:
                return lz4.frame.decompress(payload)
            if marker == ZSTD:
                return self._zstd_out.decompress(payload)
        except (RuntimeError, zstandard.ZstdError) as e:
            raise ValueError(f"Corrupt {marker!r} payload: {e}") from e
        raise ValueError(f"Unknown compression marker: {marker!r}")


def serialize_value(value: Any) -> bytes:
    """
    Encode a JSON-compatible value.

    The read-through layer hands stores plain JSON data, so anything else
    reaching this point is a programming error and raises TypeError.
    """
    return json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def deserialize_value(data: bytes) -> Any:
    if not data:
        return None
    return json.loads(data)
