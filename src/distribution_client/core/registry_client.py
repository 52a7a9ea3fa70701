"""Docker Registry API v2 async client implementation."""

from dataclasses import replace
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional, Union

import aiohttp

from ..operations import blobs, manifests, repositories
from ..operations.blobs import BlobStream
from ..operations.manifests import ManifestDescriptor
from ..operations.repositories import Cursor, Page
from ..utils.digest import Digest
from .auth import AuthNegotiator
from .connectivity import check_connectivity
from .credentials import load_docker_credentials
from .pipeline import RequestPipeline
from .session import create_session
from .types import BasicCredential, RegistryConfig


class RegistryClient:
    """Docker Registry API v2 async client for read-side registry access.

    One client owns one credential cache. Use it as an async context manager
    so the HTTP session is opened and closed with it.

    Network failures, rate limiting (``Transient``) and server errors are
    never retried internally; wrap calls with your own retry policy.
    """

    def __init__(
        self,
        registry_url: str,
        timeout: float = 30,
        connector: Optional[aiohttp.BaseConnector] = None,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        config: Optional[RegistryConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        manifest_media_types: Optional[Iterable[str]] = None,
    ) -> None:
        """Initialize the registry client.

        Args:
            registry_url: Registry URL (e.g., https://registry.example.com)
            timeout: Connect and socket read timeout in seconds
            connector: aiohttp connector for connection pooling
            username: Optional static username
            password: Optional static password or token secret
            config: Full configuration; overrides registry_url and timeout
            session: Existing aiohttp session to use instead of creating one
            manifest_media_types: Accepted manifest media types, in order
        """
        if config is None:
            config = RegistryConfig(url=registry_url, timeout=timeout)
        if manifest_media_types is not None:
            config = replace(config, manifest_media_types=tuple(manifest_media_types))
        self.config = config
        self.registry_url = config.base_url
        self.connector = connector
        self.session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None
        self._credentials = (
            BasicCredential(username, password or "") if username else None
        )
        self._pipeline: Optional[RequestPipeline] = None

    async def __aenter__(self) -> "RegistryClient":
        """Enter async context manager."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def open(self) -> None:
        """Create the HTTP session if needed."""
        if self.session is None:
            self.session = await create_session(self.config, self.connector)
            self._owns_session = True
        if self._pipeline is None:
            negotiator = AuthNegotiator(self.session, self.config, self._credentials)
            self._pipeline = RequestPipeline(self.config, self.session, negotiator)

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
        self.session = None
        self._pipeline = None

    @property
    def pipeline(self) -> RequestPipeline:
        if self._pipeline is None:
            raise RuntimeError("RegistryClient is not open; use 'async with'")
        return self._pipeline

    async def login(
        self, username: str, password: str, verify: bool = True
    ) -> bool:
        """Set static credentials and optionally prove them against the registry.

        Args:
            username: Registry username
            password: Password or access token
            verify: Ping ``/v2/`` so bad credentials fail here

        Returns:
            True if the registry speaks the v2 API (always True when not verifying)

        Raises:
            AuthenticationFailed: If verify is set and the credentials are refused
        """
        self._credentials = BasicCredential(username, password)
        self.pipeline.negotiator.set_credentials(self._credentials)
        if not verify:
            return True
        return await self.check_registry_v2()

    async def login_from_docker_config(
        self, config_path: Optional[Union[str, Path]] = None, verify: bool = False
    ) -> bool:
        """Use credentials stored by ``docker login``.

        Returns:
            True if credentials for this registry were found
        """
        credentials = await load_docker_credentials(self.registry_url, config_path)
        if credentials is None:
            return False
        await self.login(credentials.username, credentials.password, verify=verify)
        return True

    async def check_registry_v2(self) -> bool:
        """Check if the registry supports v2 API.

        Returns:
            True if v2 API is supported
        """
        return await check_connectivity(self.pipeline)

    def list_tags(
        self, repository: str, page_size: Optional[int] = None
    ) -> AsyncIterator[str]:
        """Iterate over all tags of a repository, page by page.

        Args:
            repository: Repository name
            page_size: Number of tags to request per page

        Returns:
            Async iterator of tag names
        """
        return repositories.iter_tags(self.pipeline, repository, page_size)

    def list_catalog(self, page_size: Optional[int] = None) -> AsyncIterator[str]:
        """Iterate over all repository names in the registry catalog."""
        return repositories.iter_catalog(self.pipeline, page_size)

    async def get_tags_page(
        self, repository: str, page_size: Optional[int] = None
    ) -> Page:
        return await repositories.list_tags_page(self.pipeline, repository, page_size)

    async def get_catalog_page(self, page_size: Optional[int] = None) -> Page:
        return await repositories.list_catalog_page(self.pipeline, page_size)

    async def next_page(self, cursor: Cursor) -> Page:
        return await repositories.next_page(self.pipeline, cursor)

    async def get_manifest(
        self, repository: str, reference: Union[str, Digest]
    ) -> ManifestDescriptor:
        """Retrieve and verify a manifest.

        Args:
            repository: Repository name
            reference: Tag or digest reference

        Returns:
            Verified manifest descriptor

        Raises:
            ManifestNotFound: If the manifest does not exist
            DigestMismatch: If the content does not match its digest
            UnsupportedManifestType: If the media type is not accepted
        """
        return await manifests.get_manifest(self.pipeline, repository, reference)

    async def get_manifest_for_platform(
        self,
        repository: str,
        reference: Union[str, Digest],
        os: str = "linux",
        architecture: str = "amd64",
        variant: Optional[str] = None,
    ) -> ManifestDescriptor:
        """Resolve a reference to the image manifest for one platform.

        Single-platform manifests are returned as they are; manifest lists
        are followed to the matching child, fetched by digest.
        """
        descriptor = await self.get_manifest(repository, reference)
        if not descriptor.is_index:
            return descriptor
        child = manifests.select_platform(descriptor, os, architecture, variant)
        return await self.get_manifest(repository, child.digest)

    async def manifest_exists(
        self, repository: str, reference: Union[str, Digest]
    ) -> bool:
        return await manifests.manifest_exists(self.pipeline, repository, reference)

    async def get_manifest_digest(
        self, repository: str, reference: Union[str, Digest]
    ) -> Optional[Digest]:
        return await manifests.get_manifest_digest(self.pipeline, repository, reference)

    async def get_blob(
        self,
        repository: str,
        digest: Union[str, Digest],
        chunk_size: Optional[int] = None,
    ) -> BlobStream:
        """Open a blob as a verified byte stream.

        The content is only verified once the stream is fully consumed;
        see :class:`BlobStream`.
        """
        return await blobs.get_blob(self.pipeline, repository, digest, chunk_size)

    async def check_blob_exists(
        self, repository: str, digest: Union[str, Digest]
    ) -> bool:
        """Check if a blob exists in the registry.

        Args:
            repository: Repository name
            digest: Blob digest

        Returns:
            True if blob exists
        """
        return await blobs.blob_exists(self.pipeline, repository, digest)

    async def get_blob_size(
        self, repository: str, digest: Union[str, Digest]
    ) -> Optional[int]:
        return await blobs.get_blob_size(self.pipeline, repository, digest)
