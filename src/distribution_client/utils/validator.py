"""Validation utilities for repository names and references."""

import re
from typing import Union

from ..exceptions import ValidationError
from .digest import Digest

# Distribution reference grammar
_PATH_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|[-]+)[a-z0-9]+)*"
REPOSITORY_PATTERN = re.compile(rf"{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*")
TAG_PATTERN = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}")

MAX_REPOSITORY_LENGTH = 255


def is_valid_repository_name(name: str) -> bool:
    """Check if name is a valid repository path."""
    if not isinstance(name, str) or len(name) > MAX_REPOSITORY_LENGTH:
        return False
    return REPOSITORY_PATTERN.fullmatch(name) is not None


def is_valid_tag(tag: str) -> bool:
    """Check if tag is a valid tag name."""
    return isinstance(tag, str) and TAG_PATTERN.fullmatch(tag) is not None


def is_digest_reference(reference: str) -> bool:
    """Check if reference looks like a digest rather than a tag."""
    return ":" in reference


def validate_repository(name: str) -> str:
    """Validate a repository name.

    Raises:
        ValidationError: If the name does not follow the reference grammar
    """
    if not is_valid_repository_name(name):
        raise ValidationError(f"Invalid repository name: {name!r}")
    return name


def parse_reference(reference: Union[str, Digest]) -> Union[str, Digest]:
    """Turn a caller reference into a tag string or a Digest.

    Args:
        reference: Tag name, digest string or Digest

    Returns:
        The tag unchanged, or the parsed Digest

    Raises:
        MalformedDigest: If reference contains ':' but is not a valid digest
        ValidationError: If reference is not a valid tag
    """
    if isinstance(reference, Digest):
        return reference
    if not isinstance(reference, str):
        raise ValidationError(f"Invalid reference: {reference!r}")
    if is_digest_reference(reference):
        return Digest.parse(reference)
    if not is_valid_tag(reference):
        raise ValidationError(f"Invalid tag: {reference!r}")
    return reference
