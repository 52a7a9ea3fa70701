"""Digest calculation and validation utilities."""

import functools
import hashlib
import re
from dataclasses import dataclass
from typing import Union

from ..exceptions import MalformedDigest

# Hex width per supported algorithm
DIGEST_ALGORITHMS = {"sha256": 64, "sha512": 128}
DEFAULT_ALGORITHM = "sha256"

HEX_PATTERN = re.compile(r"[a-fA-F0-9]+")


@functools.total_ordering
@dataclass(frozen=True, eq=True)
class Digest:
    """Content address in ``algorithm:hex`` form."""

    algorithm: str
    hex: str

    def __post_init__(self) -> None:
        width = DIGEST_ALGORITHMS.get(self.algorithm)
        if width is None:
            raise MalformedDigest(str(self), f"unsupported algorithm {self.algorithm!r}")
        if len(self.hex) != width or not HEX_PATTERN.fullmatch(self.hex):
            raise MalformedDigest(str(self), f"expected {width} hex characters")
        if self.hex != self.hex.lower():
            object.__setattr__(self, "hex", self.hex.lower())

    @classmethod
    def parse(cls, value: str) -> "Digest":
        """Parse the wire form ``algorithm:hex``.

        Raises:
            MalformedDigest: If the separator, algorithm or hex part is invalid
        """
        if isinstance(value, Digest):
            return value
        if not isinstance(value, str) or ":" not in value:
            raise MalformedDigest(value, "missing algorithm separator")
        algorithm, _, hex_part = value.partition(":")
        return cls(algorithm, hex_part)

    @classmethod
    def from_bytes(
        cls, data: Union[bytes, bytearray], algorithm: str = DEFAULT_ALGORITHM
    ) -> "Digest":
        accumulator = DigestAccumulator(algorithm)
        accumulator.update(data)
        return accumulator.finalize()

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.hex}"

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Digest):
            return NotImplemented
        return str(self) < str(other)

    @property
    def short(self) -> str:
        return self.hex[:12]


class DigestAccumulator:
    """Incremental hasher producing a :class:`Digest`."""

    def __init__(self, algorithm: str = DEFAULT_ALGORITHM) -> None:
        if algorithm not in DIGEST_ALGORITHMS:
            raise MalformedDigest(algorithm, "unsupported algorithm")
        self.algorithm = algorithm
        self.bytes_seen = 0
        self._hasher = hashlib.new(algorithm)

    def update(self, data: Union[bytes, bytearray, memoryview]) -> None:
        self._hasher.update(data)
        self.bytes_seen += len(data)

    def finalize(self) -> Digest:
        # hashlib digests are non-destructive; finalize may be called again
        return Digest(self.algorithm, self._hasher.hexdigest())


def calculate_digest(data: Union[bytes, bytearray], algorithm: str = "sha256") -> str:
    """Calculate digest of data.

    Args:
        data: Data to hash
        algorithm: Hash algorithm (default: sha256)

    Returns:
        Digest string in format "algorithm:hex"

    Raises:
        ValueError: If data is not bytes-like
        MalformedDigest: If algorithm is not supported
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ValueError("Data must be bytes or bytearray")

    return str(Digest.from_bytes(data, algorithm))


def validate_digest(digest: str) -> bool:
    """Validate digest format.

    Args:
        digest: Digest string to validate

    Returns:
        True if valid digest format
    """
    try:
        Digest.parse(digest)
    except MalformedDigest:
        return False
    return True


def verify_digest(data: Union[bytes, bytearray], expected_digest: str) -> bool:
    """Verify data matches expected digest.

    Args:
        data: Data to verify
        expected_digest: Expected digest string

    Returns:
        True if data matches digest

    Raises:
        MalformedDigest: If digest format is invalid
    """
    expected = Digest.parse(expected_digest)
    return Digest.from_bytes(data, expected.algorithm) == expected
