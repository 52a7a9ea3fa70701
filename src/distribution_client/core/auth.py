"""WWW-Authenticate challenge handling and token acquisition.

The negotiator learns how a registry authenticates from the first 401 it
sees. After that it attaches credentials up front:

* Basic registries get the static credential on every request.
* Bearer registries get a token per ``(realm, service, scope)`` key,
  fetched from the realm and cached until it expires or is refused.

Token acquisition is singleflight per key: concurrent callers missing the
same token wait on one request instead of each issuing their own.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Optional, Union
from urllib.parse import urlsplit

import aiohttp
import www_authenticate

from ..exceptions import (
    AuthenticationFailed,
    AuthServerError,
    MalformedChallenge,
    RegistryError,
)
from .session import parse_json_body
from .types import (
    DEFAULT_TOKEN_LIFETIME,
    BasicCredential,
    BearerCredential,
    RegistryConfig,
    ScopeKey,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BasicChallenge:
    realm: Optional[str] = None


@dataclass(frozen=True)
class BearerChallenge:
    realm: str
    service: Optional[str] = None
    scope: Optional[str] = None

    def scope_key(self, fallback_scope: Optional[str] = None) -> ScopeKey:
        return ScopeKey(self.realm, self.service, self.scope or fallback_scope)


AuthChallenge = Union[BasicChallenge, BearerChallenge]


def parse_challenge(header: Optional[str]) -> AuthChallenge:
    """Parse a WWW-Authenticate header into a Basic or Bearer challenge.

    When a header offers several schemes, Bearer wins.

    Raises:
        MalformedChallenge: If the header is empty, unparseable, offers no
            supported scheme, or a Bearer challenge lacks an absolute realm
    """
    if not header or not header.strip():
        raise MalformedChallenge(header, "empty header")

    try:
        parsed = www_authenticate.parse(header)
    except (ValueError, TypeError, AttributeError) as e:
        raise MalformedChallenge(header, "unparseable") from e

    schemes = {str(name).lower(): params for name, params in parsed.items()}

    if "bearer" in schemes:
        params = _challenge_params(header, schemes["bearer"])
        realm = params.get("realm")
        if not realm:
            raise MalformedChallenge(header, "bearer challenge without realm")
        parts = urlsplit(realm)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise MalformedChallenge(header, "realm is not an absolute URL")
        return BearerChallenge(
            realm=realm, service=params.get("service"), scope=params.get("scope")
        )

    if "basic" in schemes:
        params = _challenge_params(header, schemes["basic"])
        return BasicChallenge(realm=params.get("realm"))

    raise MalformedChallenge(header, "no Basic or Bearer scheme")


def _challenge_params(header: str, params: Any) -> dict[str, str]:
    if params is None:
        return {}
    if not isinstance(params, dict):
        # token68 form, not used by registries
        raise MalformedChallenge(header, "expected auth-param list")
    return {str(key).lower(): value for key, value in params.items()}


class AuthNegotiator:
    """Per-client credential state for one registry."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: RegistryConfig,
        credentials: Optional[BasicCredential] = None,
    ) -> None:
        self._session = session
        self._config = config
        self._credentials = credentials
        self._tokens: dict[ScopeKey, BearerCredential] = {}
        self._locks: dict[ScopeKey, asyncio.Lock] = {}
        # resource scope -> scope the server actually challenged with
        self._aliases: dict[ScopeKey, ScopeKey] = {}
        self._uses_basic = False
        self._bearer_endpoint: Optional[tuple[str, Optional[str]]] = None

    @property
    def credentials(self) -> Optional[BasicCredential]:
        return self._credentials

    def set_credentials(self, credentials: Optional[BasicCredential]) -> None:
        """Replace the static credentials and forget everything learned."""
        self._credentials = credentials
        self.clear()

    def clear(self) -> None:
        self._tokens.clear()
        self._aliases.clear()
        self._uses_basic = False
        self._bearer_endpoint = None

    async def authorization(self, scope: Optional[str]) -> Optional[str]:
        """Authorization header value to send for a resource scope.

        Returns None until the registry has challenged at least once.
        """
        if self._uses_basic:
            return self._credentials.header() if self._credentials else None
        if self._bearer_endpoint is None:
            return None

        realm, service = self._bearer_endpoint
        key = ScopeKey(realm, service, scope)
        key = self._aliases.get(key, key)
        cached = self._tokens.get(key)
        if cached is not None and not cached.is_expired():
            return cached.header()
        credential = await self._acquire(key, stale=None)
        return credential.header()

    async def negotiate(
        self, challenge: AuthChallenge, scope: Optional[str], stale: Optional[str]
    ) -> str:
        """Produce a fresh Authorization header in answer to a challenge.

        Args:
            challenge: Parsed challenge from the 401 response
            scope: Resource scope the failed request needed
            stale: Authorization header the failed request carried, if any

        Returns:
            Header value to retry the request with

        Raises:
            AuthenticationFailed: If no usable credential can be produced
            AuthServerError: If the token endpoint fails
        """
        if isinstance(challenge, BasicChallenge):
            if self._credentials is None:
                raise AuthenticationFailed(
                    "Registry requires Basic authentication but no credentials were supplied",
                    scope=scope,
                    status=401,
                )
            logger.debug("Registry uses Basic auth (realm=%s)", challenge.realm)
            self._uses_basic = True
            return self._credentials.header()

        self._uses_basic = False
        self._bearer_endpoint = (challenge.realm, challenge.service)
        key = challenge.scope_key(scope)
        if key.scope != scope:
            self._aliases[ScopeKey(challenge.realm, challenge.service, scope)] = key
        logger.debug(
            "Bearer challenge: realm=%s service=%s scope=%s",
            key.realm,
            key.service,
            key.scope,
        )
        credential = await self._acquire(key, stale=stale)
        return credential.header()

    def invalidate(self, header: Optional[str]) -> None:
        """Forget a token the registry refused."""
        if header is None:
            return
        for key, credential in list(self._tokens.items()):
            if credential.header() == header:
                del self._tokens[key]

    async def _acquire(self, key: ScopeKey, stale: Optional[str]) -> BearerCredential:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            current = self._tokens.get(key)
            if (
                current is not None
                and not current.is_expired()
                and current.header() != stale
            ):
                return current
            credential = await self._request_token(key)
            self._tokens[key] = credential
            return credential

    async def _request_token(self, key: ScopeKey) -> BearerCredential:
        params = {"service": key.service, "scope": key.scope}
        params = {name: value for name, value in params.items() if value}
        headers = {}
        if self._credentials is not None:
            headers["Authorization"] = self._credentials.header()

        logger.debug("Requesting token from %s (scope=%s)", key.realm, key.scope)
        timeout = self._config.auth_timeout
        try:
            return await asyncio.wait_for(
                self._fetch_token(key, params, headers), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise AuthServerError(
                key.realm, f"token request timed out after {timeout}s"
            ) from e
        except aiohttp.ClientError as e:
            raise AuthServerError(key.realm, f"token request failed: {e}") from e

    async def _fetch_token(
        self, key: ScopeKey, params: dict[str, str], headers: dict[str, str]
    ) -> BearerCredential:
        async with self._session.get(
            key.realm, params=params, headers=headers, ssl=self._config.ssl
        ) as response:
            if response.status in (401, 403):
                raise AuthenticationFailed(
                    "Auth server refused the token request",
                    scope=key.scope,
                    status=response.status,
                )
            if not 200 <= response.status < 300:
                raise AuthServerError(
                    key.realm, "token request failed", status=response.status
                )
            body = await response.read()

        try:
            payload = parse_json_body(body)
        except RegistryError as e:
            raise AuthServerError(key.realm, "token response is not JSON") from e
        if not isinstance(payload, dict):
            raise AuthServerError(key.realm, "token response is not a JSON object")

        # Some servers only send access_token (OAuth2 style)
        token = payload.get("token") or payload.get("access_token")
        if not token or not isinstance(token, str):
            raise AuthServerError(key.realm, "token response carried no token")

        lifetime = _token_lifetime(payload.get("expires_in"))
        logger.debug("Obtained token for scope %s (expires in %ss)", key.scope, lifetime)
        return BearerCredential(
            token=token, scope_key=key, expires_at=time.monotonic() + lifetime
        )


def _token_lifetime(expires_in: Any) -> float:
    try:
        lifetime = float(expires_in)
    except (TypeError, ValueError):
        return DEFAULT_TOKEN_LIFETIME
    if not math.isfinite(lifetime):
        return DEFAULT_TOKEN_LIFETIME
    return max(lifetime, DEFAULT_TOKEN_LIFETIME)
