"""Distribution Client - Async Python client for the Docker/OCI Registry API v2."""

import logging

__version__ = "0.1.0"

from .core.registry_client import RegistryClient
from .core.types import RegistryConfig
from .exceptions import (
    AuthServerError,
    AuthenticationFailed,
    BlobNotFound,
    DigestMismatch,
    MalformedChallenge,
    MalformedDigest,
    MalformedManifest,
    ManifestError,
    ManifestNotFound,
    NotFound,
    RegistryApiError,
    RegistryError,
    RegistryRejected,
    RepositoryNotFound,
    Transient,
    TransportError,
    TruncatedBlob,
    UnsupportedManifestType,
    ValidationError,
)
from .operations.blobs import BlobStream
from .operations.manifests import (
    Descriptor,
    ManifestDescriptor,
    ManifestList,
    Platform,
    PlatformManifest,
    SchemaV1,
    SchemaV2,
)
from .operations.repositories import Cursor, Page
from .registry import (
    check_registry_connectivity,
    get_image_config,
    get_image_info,
    get_manifest,
    list_repositories,
    list_tags,
)
from .utils.digest import Digest

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "RegistryClient",
    "RegistryConfig",
    "Digest",
    "BlobStream",
    "Cursor",
    "Page",
    "Descriptor",
    "ManifestDescriptor",
    "ManifestList",
    "Platform",
    "PlatformManifest",
    "SchemaV1",
    "SchemaV2",
    "check_registry_connectivity",
    "list_repositories",
    "list_tags",
    "get_manifest",
    "get_image_config",
    "get_image_info",
    "RegistryError",
    "ValidationError",
    "MalformedDigest",
    "MalformedChallenge",
    "AuthServerError",
    "AuthenticationFailed",
    "NotFound",
    "ManifestNotFound",
    "BlobNotFound",
    "RepositoryNotFound",
    "DigestMismatch",
    "TruncatedBlob",
    "ManifestError",
    "UnsupportedManifestType",
    "MalformedManifest",
    "RegistryApiError",
    "RegistryRejected",
    "Transient",
    "TransportError",
]
