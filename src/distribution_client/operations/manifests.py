"""Manifest retrieval, digest verification and parsing.

Every manifest handed to a caller has been verified: when fetched by digest
its content must hash to that digest, and when fetched by tag it must match
the ``Docker-Content-Digest`` header if the registry sends one. The shape
is chosen from the media type the registry declares, not guessed from the
body.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

import aiohttp

from ..core.pipeline import KIND_MANIFEST, RequestPipeline, repository_scope
from ..core.types import (
    DEFAULT_MANIFEST_MEDIA_TYPES,
    DOCKER_MANIFEST_LIST,
    DOCKER_MANIFEST_V1,
    DOCKER_MANIFEST_V1_SIGNED,
    DOCKER_MANIFEST_V2,
    OCI_INDEX_V1,
    OCI_MANIFEST_V1,
)
from ..exceptions import (
    DigestMismatch,
    MalformedDigest,
    MalformedManifest,
    ManifestNotFound,
    UnsupportedManifestType,
)
from ..utils.digest import DEFAULT_ALGORITHM, Digest
from ..utils.validator import parse_reference, validate_repository

logger = logging.getLogger(__name__)

SCHEMA1_TYPES = frozenset({DOCKER_MANIFEST_V1, DOCKER_MANIFEST_V1_SIGNED})
IMAGE_MANIFEST_TYPES = frozenset({DOCKER_MANIFEST_V2, OCI_MANIFEST_V1})
INDEX_TYPES = frozenset({DOCKER_MANIFEST_LIST, OCI_INDEX_V1})


@dataclass(frozen=True)
class Descriptor:
    """Reference to content by media type, digest and size."""

    media_type: str
    digest: Digest
    size: int
    urls: tuple[str, ...] = ()
    annotations: dict[str, str] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Platform:
    architecture: str
    os: str
    variant: Optional[str] = None
    os_version: Optional[str] = None
    os_features: tuple[str, ...] = ()
    features: tuple[str, ...] = ()

    def __str__(self) -> str:
        parts = [self.os, self.architecture]
        if self.variant:
            parts.append(self.variant)
        return "/".join(parts)


@dataclass(frozen=True)
class PlatformManifest:
    """One child entry of a manifest list or OCI index."""

    platform: Optional[Platform]
    digest: Digest
    media_type: str
    size: int


@dataclass(frozen=True)
class SchemaV1:
    """Legacy schema 1 manifest. ``fs_layers`` lists the top layer first."""

    name: str
    tag: str
    architecture: str
    fs_layers: tuple[Digest, ...]
    signed: bool = False


@dataclass(frozen=True)
class SchemaV2:
    """Image manifest: Docker schema 2 or OCI image manifest."""

    config: Descriptor
    layers: tuple[Descriptor, ...]


@dataclass(frozen=True)
class ManifestList:
    """Docker manifest list or OCI image index."""

    manifests: tuple[PlatformManifest, ...]


ParsedManifest = Union[SchemaV1, SchemaV2, ManifestList]


@dataclass(frozen=True)
class ManifestDescriptor:
    """A verified manifest as fetched from the registry."""

    media_type: str
    raw: bytes = field(repr=False)
    digest: Digest
    manifest: ParsedManifest
    repository: str = ""
    reference: str = ""

    @property
    def is_index(self) -> bool:
        return isinstance(self.manifest, ManifestList)

    @property
    def config_digest(self) -> Optional[Digest]:
        if isinstance(self.manifest, SchemaV2):
            return self.manifest.config.digest
        return None

    @property
    def layer_digests(self) -> tuple[Digest, ...]:
        """Layer digests, base layer first."""
        if isinstance(self.manifest, SchemaV2):
            return tuple(layer.digest for layer in self.manifest.layers)
        if isinstance(self.manifest, SchemaV1):
            return tuple(reversed(self.manifest.fs_layers))
        return ()

    @property
    def platforms(self) -> tuple[tuple[Optional[Platform], Digest], ...]:
        if isinstance(self.manifest, ManifestList):
            return tuple((entry.platform, entry.digest) for entry in self.manifest.manifests)
        return ()

    def json(self) -> Any:
        return json.loads(self.raw)


def accept_header(media_types: Iterable[str] = DEFAULT_MANIFEST_MEDIA_TYPES) -> str:
    return ", ".join(media_types)


def manifest_path(repository: str, reference: Union[str, Digest]) -> str:
    return f"/v2/{repository}/manifests/{reference}"


async def get_manifest(
    pipeline: RequestPipeline,
    repository: str,
    reference: Union[str, Digest],
    media_types: Optional[Iterable[str]] = None,
) -> ManifestDescriptor:
    """Fetch, verify and parse a manifest.

    Args:
        pipeline: Request pipeline bound to the registry
        repository: Repository name
        reference: Tag, digest string or Digest
        media_types: Accepted media types (defaults to the pipeline config)

    Returns:
        Verified manifest descriptor

    Raises:
        ManifestNotFound: If the manifest does not exist
        DigestMismatch: If the content does not match the expected digest
        UnsupportedManifestType: If the registry answered with an unknown type
        MalformedManifest: If the body cannot be parsed for its media type
    """
    validate_repository(repository)
    ref = parse_reference(reference)
    accepted = tuple(media_types or pipeline.config.manifest_media_types)

    response = await pipeline.send(
        "GET",
        manifest_path(repository, ref),
        scope=repository_scope(repository),
        kind=KIND_MANIFEST,
        repository=repository,
        reference=str(ref),
        headers={"Accept": accept_header(accepted)},
    )
    try:
        raw = await response.read()
        declared = _content_type(response.headers.get("Content-Type"))
        header_digest = response.headers.get("Docker-Content-Digest")
    finally:
        response.release()

    return build_descriptor(
        raw,
        declared,
        repository=repository,
        reference=ref,
        accepted=accepted,
        header_digest=header_digest,
    )


def build_descriptor(
    raw: bytes,
    declared_type: Optional[str],
    *,
    repository: str,
    reference: Union[str, Digest],
    accepted: Iterable[str] = DEFAULT_MANIFEST_MEDIA_TYPES,
    header_digest: Optional[str] = None,
) -> ManifestDescriptor:
    """Verify a fetched manifest body and parse it into a descriptor."""
    media_type = resolve_media_type(declared_type)
    if media_type not in frozenset(accepted):
        raise UnsupportedManifestType(media_type, repository, str(reference))

    if isinstance(reference, Digest):
        expected = reference
    else:
        expected = _header_digest(header_digest, repository, reference)

    # Only the signed payload is covered by the digest, so only it is parsed
    if media_type == DOCKER_MANIFEST_V1_SIGNED:
        verified = schema1_payload(raw)
    else:
        verified = raw

    algorithm = expected.algorithm if expected is not None else DEFAULT_ALGORITHM
    digest = Digest.from_bytes(verified, algorithm)
    if expected is not None and digest != expected:
        raise DigestMismatch(expected, digest, repository)
    if expected is None:
        logger.debug("No digest to verify %s:%s against", repository, reference)

    manifest = parse_manifest(verified, media_type)
    return ManifestDescriptor(
        media_type=media_type,
        raw=raw,
        digest=digest,
        manifest=manifest,
        repository=repository,
        reference=str(reference),
    )


def resolve_media_type(declared_type: Optional[str]) -> str:
    """Manifest media type from the declared Content-Type.

    The body is never consulted. A missing Content-Type raises
    UnsupportedManifestType, and so does any type the caller did not accept
    (checked in build_descriptor).
    """
    declared = _content_type(declared_type)
    if not declared:
        raise UnsupportedManifestType(declared_type)
    return declared


def compute_manifest_digest(
    raw: bytes, media_type: str, algorithm: str = DEFAULT_ALGORITHM
) -> Digest:
    """Digest of a manifest as the registry addresses it.

    Signed schema 1 manifests are addressed by their JWS payload, which is
    the body with the signature block cut out.
    """
    if media_type == DOCKER_MANIFEST_V1_SIGNED:
        raw = schema1_payload(raw)
    return Digest.from_bytes(raw, algorithm)


def schema1_payload(raw: bytes) -> bytes:
    """Recover the signed payload of a schema 1 ``prettyjws`` manifest."""
    try:
        body = load_manifest_json(raw)
    except ValueError as e:
        raise MalformedManifest(f"Invalid schema 1 manifest JSON: {e}") from e

    signatures = body.get("signatures") if isinstance(body, dict) else None
    if not signatures:
        return raw

    try:
        protected = json.loads(_b64url_decode(signatures[0]["protected"]))
        length = int(protected["formatLength"])
        tail = _b64url_decode(protected["formatTail"])
    except (KeyError, TypeError, ValueError, binascii.Error) as e:
        raise MalformedManifest(f"Invalid schema 1 signature header: {e}") from e
    if not 0 < length <= len(raw):
        raise MalformedManifest(f"Invalid schema 1 formatLength {length}")
    return raw[:length] + tail


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def load_manifest_json(raw: bytes) -> Any:
    """Decode manifest JSON, rejecting objects with repeated keys."""
    return json.loads(raw, object_pairs_hook=_unique_keys)


def _unique_keys(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    obj = {}
    for key, value in pairs:
        if key in obj:
            raise ValueError(f"duplicate key {key!r}")
        obj[key] = value
    return obj


def parse_manifest(raw: bytes, media_type: str) -> ParsedManifest:
    """Parse a manifest body according to its media type.

    Raises:
        UnsupportedManifestType: If media_type is not a known manifest type
        MalformedManifest: If required fields are missing or invalid
    """
    try:
        body = load_manifest_json(raw)
    except ValueError as e:
        raise MalformedManifest(f"Invalid manifest JSON: {e}") from e
    if not isinstance(body, dict):
        raise MalformedManifest("Manifest is not a JSON object")

    try:
        if media_type in SCHEMA1_TYPES:
            return _parse_schema1(body, signed=media_type == DOCKER_MANIFEST_V1_SIGNED)
        if media_type in IMAGE_MANIFEST_TYPES:
            return _parse_image_manifest(body)
        if media_type in INDEX_TYPES:
            return _parse_index(body)
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedManifest(f"Invalid {media_type} manifest: {e}") from e
    raise UnsupportedManifestType(media_type)


def _parse_schema1(body: dict[str, Any], signed: bool) -> SchemaV1:
    return SchemaV1(
        name=body.get("name", ""),
        tag=body.get("tag", ""),
        architecture=body.get("architecture", ""),
        fs_layers=tuple(Digest.parse(layer["blobSum"]) for layer in body["fsLayers"]),
        signed=signed,
    )


def _parse_image_manifest(body: dict[str, Any]) -> SchemaV2:
    return SchemaV2(
        config=_parse_descriptor(body["config"]),
        layers=tuple(_parse_descriptor(layer) for layer in body.get("layers") or []),
    )


def _parse_index(body: dict[str, Any]) -> ManifestList:
    entries = []
    for entry in body["manifests"]:
        platform = entry.get("platform")
        entries.append(
            PlatformManifest(
                platform=_parse_platform(platform) if platform else None,
                digest=Digest.parse(entry["digest"]),
                media_type=entry.get("mediaType", ""),
                size=int(entry.get("size", 0)),
            )
        )
    return ManifestList(manifests=tuple(entries))


def _parse_descriptor(entry: dict[str, Any]) -> Descriptor:
    return Descriptor(
        media_type=entry.get("mediaType", ""),
        digest=Digest.parse(entry["digest"]),
        size=int(entry.get("size", 0)),
        urls=tuple(entry.get("urls") or ()),
        annotations=dict(entry.get("annotations") or {}),
    )


def _parse_platform(entry: dict[str, Any]) -> Platform:
    return Platform(
        architecture=entry["architecture"],
        os=entry["os"],
        variant=entry.get("variant"),
        os_version=entry.get("os.version"),
        os_features=tuple(entry.get("os.features") or ()),
        features=tuple(entry.get("features") or ()),
    )


def select_platform(
    descriptor: ManifestDescriptor,
    os: str,
    architecture: str,
    variant: Optional[str] = None,
) -> PlatformManifest:
    """Choose the child of a manifest list matching a platform.

    Raises:
        ValueError: If descriptor is not a manifest list
        ManifestNotFound: If no child matches
    """
    if not isinstance(descriptor.manifest, ManifestList):
        raise ValueError(f"{descriptor.media_type} is not a manifest list")

    for entry in descriptor.manifest.manifests:
        platform = entry.platform
        if platform is None:
            continue
        if platform.os != os or platform.architecture != architecture:
            continue
        if variant is not None and platform.variant != variant:
            continue
        return entry

    wanted = "/".join(part for part in (os, architecture, variant) if part)
    raise ManifestNotFound(descriptor.repository, f"{descriptor.reference} ({wanted})")


async def manifest_exists(
    pipeline: RequestPipeline, repository: str, reference: Union[str, Digest]
) -> bool:
    """Check if a manifest exists using a HEAD request."""
    try:
        response = await _head_manifest(pipeline, repository, reference)
    except ManifestNotFound:
        return False
    response.release()
    return True


async def get_manifest_digest(
    pipeline: RequestPipeline, repository: str, reference: Union[str, Digest]
) -> Optional[Digest]:
    """Read the registry's digest for a reference without fetching the body.

    The returned value is the server's claim and has not been verified.
    """
    response = await _head_manifest(pipeline, repository, reference)
    try:
        header = response.headers.get("Docker-Content-Digest")
    finally:
        response.release()
    return Digest.parse(header.strip()) if header else None


async def _head_manifest(
    pipeline: RequestPipeline, repository: str, reference: Union[str, Digest]
) -> aiohttp.ClientResponse:
    validate_repository(repository)
    ref = parse_reference(reference)
    return await pipeline.send(
        "HEAD",
        manifest_path(repository, ref),
        scope=repository_scope(repository),
        kind=KIND_MANIFEST,
        repository=repository,
        reference=str(ref),
        headers={"Accept": accept_header(pipeline.config.manifest_media_types)},
    )


def _content_type(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.split(";", 1)[0].strip().lower()


def _header_digest(
    header: Optional[str], repository: str, reference: Union[str, Digest]
) -> Optional[Digest]:
    # A tag fetch is checked against the server's claim when one is sent
    if not header:
        return None
    try:
        return Digest.parse(header.strip())
    except MalformedDigest as e:
        raise MalformedDigest(
            header,
            f"malformed Docker-Content-Digest for {repository}:{reference} ({e.reason})",
        ) from e
