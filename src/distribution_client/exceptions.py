"""Custom exceptions for the distribution API client."""

from dataclasses import dataclass
from typing import Optional


class RegistryError(Exception):
    """Base exception for all registry-related errors."""

    pass


class ValidationError(RegistryError, ValueError):
    """Raised when a caller-supplied name or reference is malformed."""

    pass


class MalformedDigest(RegistryError, ValueError):
    """Raised when a digest string cannot be parsed."""

    def __init__(self, value: object, reason: str = "malformed digest") -> None:
        self.value = value
        self.reason = reason
        super().__init__(f"{reason}: {value!r}")


class MalformedChallenge(RegistryError):
    """Raised when a WWW-Authenticate header cannot be used."""

    def __init__(self, header: Optional[str], reason: str) -> None:
        self.header = header
        self.reason = reason
        super().__init__(f"Malformed WWW-Authenticate challenge ({reason}): {header!r}")


class AuthServerError(RegistryError):
    """Raised when the token endpoint is unreachable or misbehaves."""

    def __init__(
        self, realm: str, message: str, status: Optional[int] = None
    ) -> None:
        self.realm = realm
        self.status = status
        suffix = f" (HTTP {status})" if status is not None else ""
        super().__init__(f"Auth server {realm}: {message}{suffix}")


class AuthenticationFailed(RegistryError):
    """Raised when credentials are refused by the registry or auth server."""

    def __init__(
        self, message: str, scope: Optional[str] = None, status: Optional[int] = None
    ) -> None:
        self.scope = scope
        self.status = status
        details = []
        if scope:
            details.append(f"scope={scope}")
        if status is not None:
            details.append(f"status={status}")
        suffix = f" [{', '.join(details)}]" if details else ""
        super().__init__(f"{message}{suffix}")


class NotFound(RegistryError):
    """Raised on HTTP 404, tagged with what was being looked up."""

    kind = "resource"

    def __init__(
        self, repository: Optional[str] = None, reference: Optional[str] = None
    ) -> None:
        self.repository = repository
        self.reference = reference
        target = repository or "<registry>"
        if reference:
            target = f"{target}@{reference}" if ":" in reference else f"{target}:{reference}"
        super().__init__(f"{self.kind} not found: {target}")


class ManifestNotFound(NotFound):
    kind = "manifest"


class BlobNotFound(NotFound):
    kind = "blob"


class RepositoryNotFound(NotFound):
    kind = "repository"


class DigestMismatch(RegistryError):
    """Raised when fetched content does not hash to the expected digest.

    Content that raised this must be discarded by the caller.
    """

    def __init__(
        self, expected: object, actual: object, repository: Optional[str] = None
    ) -> None:
        self.expected = expected
        self.actual = actual
        self.repository = repository
        where = f" in {repository}" if repository else ""
        super().__init__(f"Digest mismatch{where}: expected {expected}, got {actual}")


class TruncatedBlob(RegistryError):
    """Raised when a blob stream ends before its declared length."""

    def __init__(
        self,
        digest: object,
        expected_size: Optional[int],
        received: int,
        repository: Optional[str] = None,
    ) -> None:
        self.digest = digest
        self.expected_size = expected_size
        self.received = received
        self.repository = repository
        expected = expected_size if expected_size is not None else "unknown"
        super().__init__(
            f"Blob {digest} truncated: received {received} of {expected} bytes"
        )


class ManifestError(RegistryError):
    """Raised when manifest operations fail."""

    pass


class UnsupportedManifestType(ManifestError):
    """Raised when a registry answers with a manifest type we do not handle."""

    def __init__(
        self,
        media_type: Optional[str],
        repository: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> None:
        self.media_type = media_type
        self.repository = repository
        self.reference = reference
        super().__init__(
            f"Unsupported manifest media type {media_type!r} for {repository}:{reference}"
        )


class MalformedManifest(ManifestError):
    """Raised when a verified manifest body cannot be parsed."""

    pass


@dataclass(frozen=True)
class RegistryApiError:
    """One entry of the registry's ``{"errors": [...]}`` envelope."""

    code: str
    message: str = ""
    detail: object = None


class RegistryRejected(RegistryError):
    """Raised on any 4xx the client has no dedicated error for."""

    def __init__(
        self,
        status: int,
        body: str = "",
        errors: tuple[RegistryApiError, ...] = (),
        repository: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> None:
        self.status = status
        self.body = body
        self.errors = errors
        self.repository = repository
        self.reference = reference
        codes = ", ".join(error.code for error in errors)
        summary = codes or body[:200]
        super().__init__(f"Registry rejected request (HTTP {status}): {summary}")


class Transient(RegistryError):
    """Raised on 429 and 5xx responses.

    The client never retries these itself. ``retry_after`` carries the
    server's Retry-After hint, in seconds, when one was sent.
    """

    def __init__(
        self,
        status: int,
        retry_after: Optional[float] = None,
        repository: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> None:
        self.status = status
        self.retry_after = retry_after
        self.repository = repository
        self.reference = reference
        super().__init__(f"Transient registry failure (HTTP {status})")


class TransportError(RegistryError):
    """Raised when the HTTP exchange itself fails."""

    pass
