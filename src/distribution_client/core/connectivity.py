"""Registry API version detection."""

import logging
from typing import Mapping

from ..exceptions import NotFound, RegistryRejected
from .pipeline import KIND_BASE, RequestPipeline

logger = logging.getLogger(__name__)

API_VERSION_HEADER = "Docker-Distribution-API-Version"
API_VERSION = "registry/2.0"


def check_api_version_header(headers: Mapping[str, str]) -> bool:
    """Check if headers advertise the v2 registry API."""
    return headers.get(API_VERSION_HEADER, "").strip() == API_VERSION


def validate_connectivity_response(status: int, headers: Mapping[str, str]) -> bool:
    """Decide from a ``GET /v2/`` answer whether the registry speaks v2.

    A 401 still counts: the endpoint exists but wants credentials.
    """
    if status not in (200, 401):
        return False
    return check_api_version_header(headers)


async def check_connectivity(pipeline: RequestPipeline) -> bool:
    """Check if the registry supports the v2 API.

    Authenticates on the way if the registry challenges, so a True result
    also means the configured credentials were accepted.

    Raises:
        RegistryError: If the registry is unreachable or fails
    """
    try:
        response = await pipeline.send("GET", "/v2/", scope=None, kind=KIND_BASE)
    except (NotFound, RegistryRejected) as e:
        logger.debug("v2 API check failed: %s", e)
        return False
    try:
        supported = validate_connectivity_response(response.status, response.headers)
    finally:
        response.release()
    logger.debug("v2 API supported: %s", supported)
    return supported
