"""Registry request execution and HTTP status mapping."""

import asyncio
import logging
from typing import Any, Mapping, Optional

import aiohttp

from ..exceptions import (
    AuthenticationFailed,
    BlobNotFound,
    ManifestNotFound,
    NotFound,
    RegistryApiError,
    RegistryError,
    RegistryRejected,
    RepositoryNotFound,
    Transient,
    TransportError,
)
from .auth import AuthNegotiator, parse_challenge
from .session import parse_json_body
from .types import RegistryConfig

logger = logging.getLogger(__name__)

CATALOG_SCOPE = "registry:catalog:*"

# Request kinds, used to pick the NotFound flavour
KIND_BASE = "base"
KIND_MANIFEST = "manifest"
KIND_BLOB = "blob"
KIND_TAGS = "tags"
KIND_CATALOG = "catalog"

_NOT_FOUND = {
    KIND_MANIFEST: ManifestNotFound,
    KIND_BLOB: BlobNotFound,
    KIND_TAGS: RepositoryNotFound,
    KIND_CATALOG: RepositoryNotFound,
}

MAX_ERROR_BODY = 4096


def repository_scope(repository: str, actions: str = "pull") -> str:
    return f"repository:{repository}:{actions}"


class RequestPipeline:
    """Sends registry API requests with authentication and error mapping.

    Only the single re-authentication after a 401 is retried here. Rate
    limiting (429) and server errors (5xx) surface as :class:`Transient` so
    callers can apply their own backoff policy.
    """

    def __init__(
        self,
        config: RegistryConfig,
        session: aiohttp.ClientSession,
        negotiator: AuthNegotiator,
    ) -> None:
        self.config = config
        self.session = session
        self.negotiator = negotiator

    def url_for(self, target: str) -> str:
        """Absolute URL for a registry path such as ``/v2/foo/tags/list``."""
        if target.startswith(("http://", "https://")):
            return target
        return f"{self.config.base_url}/{target.lstrip('/')}"

    async def send(
        self,
        method: str,
        target: str,
        *,
        scope: Optional[str],
        kind: str,
        repository: Optional[str] = None,
        reference: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> aiohttp.ClientResponse:
        """Execute a request and return the successful response.

        The returned response is not read; the caller must read or release it.

        Raises:
            AuthenticationFailed: On a 401 that survives one re-negotiation
            NotFound: On 404
            Transient: On 429 or 5xx
            RegistryRejected: On any other 4xx
            TransportError: If the HTTP exchange fails
        """
        url = self.url_for(target)
        authorization = await self.negotiator.authorization(scope)
        response = await self._execute(method, url, headers, params, authorization)

        if response.status == 401:
            header = response.headers.get("WWW-Authenticate")
            response.release()
            if not header:
                raise AuthenticationFailed(
                    f"{method} {url} returned 401 without a challenge",
                    scope=scope,
                    status=401,
                )
            challenge = parse_challenge(header)
            authorization = await self.negotiator.negotiate(
                challenge, scope, stale=authorization
            )
            response = await self._execute(method, url, headers, params, authorization)
            if response.status == 401:
                response.release()
                self.negotiator.invalidate(authorization)
                raise AuthenticationFailed(
                    f"{method} {url} refused after re-authentication",
                    scope=scope,
                    status=401,
                )

        if 200 <= response.status < 300:
            return response

        raise await self._error_for_status(response, method, kind, repository, reference)

    async def _execute(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]],
        params: Optional[Mapping[str, Any]],
        authorization: Optional[str],
    ) -> aiohttp.ClientResponse:
        request_headers = {"User-Agent": self.config.user_agent}
        if headers:
            request_headers.update(headers)
        if authorization:
            request_headers["Authorization"] = authorization

        logger.debug("%s %s", method, url)
        try:
            response = await self.session.request(
                method,
                url,
                headers=request_headers,
                params=params,
                ssl=self.config.ssl,
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"{method} {url} timed out") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e
        logger.debug("%s %s -> %s", method, url, response.status)
        return response

    async def _error_for_status(
        self,
        response: aiohttp.ClientResponse,
        method: str,
        kind: str,
        repository: Optional[str],
        reference: Optional[str],
    ) -> RegistryError:
        status = response.status
        body = await _read_error_body(response, method)
        errors = parse_api_errors(body)

        if status == 404:
            not_found = _NOT_FOUND.get(kind, NotFound)
            if any(error.code == "NAME_UNKNOWN" for error in errors):
                not_found = RepositoryNotFound
            return not_found(repository, reference)

        if status == 429 or status >= 500:
            return Transient(
                status,
                retry_after=_retry_after(response.headers.get("Retry-After")),
                repository=repository,
                reference=reference,
            )

        return RegistryRejected(
            status,
            body=body,
            errors=errors,
            repository=repository,
            reference=reference,
        )


async def _read_error_body(response: aiohttp.ClientResponse, method: str) -> str:
    if method == "HEAD":
        response.release()
        return ""
    try:
        raw = await response.content.read(MAX_ERROR_BODY)
    except aiohttp.ClientError:
        raw = b""
    finally:
        response.release()
    return raw.decode("utf-8", errors="replace")


def parse_api_errors(body: str) -> tuple[RegistryApiError, ...]:
    """Parse the registry error envelope ``{"errors": [...]}``."""
    if not body:
        return ()
    try:
        payload = parse_json_body(body.encode("utf-8"))
    except RegistryError:
        return ()
    if not isinstance(payload, dict) or not isinstance(payload.get("errors"), list):
        return ()
    return tuple(
        RegistryApiError(
            code=str(entry.get("code", "")),
            message=str(entry.get("message", "")),
            detail=entry.get("detail"),
        )
        for entry in payload["errors"]
        if isinstance(entry, dict)
    )


def _retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        # HTTP-date form is not interpreted
        return None
