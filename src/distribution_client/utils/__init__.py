"""Utility functions for the distribution API client."""

from .digest import Digest, DigestAccumulator, calculate_digest, validate_digest, verify_digest
from .validator import parse_reference, validate_repository

__all__ = [
    "Digest",
    "DigestAccumulator",
    "calculate_digest",
    "validate_digest",
    "verify_digest",
    "parse_reference",
    "validate_repository",
]
