"""Core data types for the distribution API client."""

import time
from dataclasses import dataclass, field
from ssl import SSLContext
from typing import Optional, Union

from aiohttp import BasicAuth

# Manifest media types
DOCKER_MANIFEST_V1 = "application/vnd.docker.distribution.manifest.v1+json"
DOCKER_MANIFEST_V1_SIGNED = "application/vnd.docker.distribution.manifest.v1+prettyjws"
DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST_V1 = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX_V1 = "application/vnd.oci.image.index.v1+json"

# Order is the Accept header sent on manifest requests
DEFAULT_MANIFEST_MEDIA_TYPES: tuple[str, ...] = (
    DOCKER_MANIFEST_V1_SIGNED,
    DOCKER_MANIFEST_V1,
    DOCKER_MANIFEST_V2,
    DOCKER_MANIFEST_LIST,
    OCI_MANIFEST_V1,
    OCI_INDEX_V1,
)

DEFAULT_USER_AGENT = "distribution-client/0.1.0"
DEFAULT_CHUNK_SIZE = 64 * 1024
# Token lifetime assumed when the auth server omits expires_in, and the
# shortest lifetime honoured when it sends one
DEFAULT_TOKEN_LIFETIME = 60


@dataclass(frozen=True)
class RegistryConfig:
    """Registry connection configuration."""

    url: str
    timeout: float = 30
    auth_timeout: float = 30
    user_agent: str = DEFAULT_USER_AGENT
    ssl: Union[bool, SSLContext] = True
    manifest_media_types: tuple[str, ...] = DEFAULT_MANIFEST_MEDIA_TYPES
    chunk_size: int = DEFAULT_CHUNK_SIZE
    page_size: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "url", self.url.rstrip("/"))
        object.__setattr__(
            self, "manifest_media_types", tuple(self.manifest_media_types)
        )

    @property
    def base_url(self) -> str:
        return self.url

    @property
    def host(self) -> str:
        """Registry host[:port] without scheme."""
        return self.url.split("://", 1)[-1].split("/", 1)[0]


@dataclass(frozen=True)
class BasicCredential:
    """Static username/secret pair."""

    username: str
    password: str = field(repr=False)

    def header(self) -> str:
        return BasicAuth(self.username, self.password).encode()


@dataclass(frozen=True)
class ScopeKey:
    """Identity of a bearer token: where it came from and what it allows."""

    realm: str
    service: Optional[str]
    scope: Optional[str]


@dataclass(frozen=True)
class BearerCredential:
    """Token issued by an auth server for one scope key."""

    token: str = field(repr=False)
    scope_key: ScopeKey
    expires_at: Optional[float] = None

    def header(self) -> str:
        return f"Bearer {self.token}"

    def is_expired(self, now: Optional[float] = None, leeway: float = 5) -> bool:
        if self.expires_at is None:
            return False
        now = time.monotonic() if now is None else now
        return now >= self.expires_at - leeway


Credential = Union[None, BasicCredential, BearerCredential]
