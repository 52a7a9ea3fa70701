"""aiohttp session helpers."""

import json
from typing import Any, Optional

import aiohttp

from ..exceptions import RegistryError
from .types import RegistryConfig


async def create_session(
    config: Optional[RegistryConfig] = None,
    connector: Optional[aiohttp.BaseConnector] = None,
) -> aiohttp.ClientSession:
    """Create an aiohttp session for registry requests.

    Args:
        config: Registry configuration (timeouts, user agent)
        connector: aiohttp connector for connection pooling

    Returns:
        New client session; the caller owns and closes it
    """
    timeout = config.timeout if config else 30
    # No total timeout: it would cap how long a blob may stream
    client_timeout = aiohttp.ClientTimeout(
        total=None, sock_connect=timeout, sock_read=timeout
    )
    headers = {"User-Agent": config.user_agent} if config else None
    return aiohttp.ClientSession(
        connector=connector, timeout=client_timeout, headers=headers
    )


async def parse_json_response(response: aiohttp.ClientResponse) -> Any:
    """Read a response body as JSON, ignoring its Content-Type.

    Raises:
        RegistryError: If the body is not valid JSON
    """
    body = await response.read()
    return parse_json_body(body)


def parse_json_body(body: bytes) -> Any:
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise RegistryError(f"Invalid JSON in registry response: {e}") from e
