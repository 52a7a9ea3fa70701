"""Static credential lookup from the Docker client configuration."""

import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

import aiofiles

from .types import BasicCredential

logger = logging.getLogger(__name__)

DEFAULT_DOCKER_CONFIG = Path.home() / ".docker" / "config.json"


def registry_keys(registry: str) -> list[str]:
    """Keys a registry may be stored under in ``auths``."""
    host = registry.split("://", 1)[-1].rstrip("/")
    host = host.split("/", 1)[0]
    keys = [registry, host, f"https://{host}", f"http://{host}"]
    if host in ("docker.io", "registry-1.docker.io", "index.docker.io"):
        keys.append("https://index.docker.io/v1/")
    # keep order, drop duplicates
    return list(dict.fromkeys(keys))


def credentials_from_config(
    config: dict[str, Any], registry: str
) -> Optional[BasicCredential]:
    """Extract Basic credentials for a registry from parsed config JSON.

    Args:
        config: Parsed ``config.json`` content
        registry: Registry URL or host[:port]

    Returns:
        BasicCredential or None if the registry has no usable entry
    """
    auths = config.get("auths") or {}
    for key in registry_keys(registry):
        entry = auths.get(key)
        if not isinstance(entry, dict):
            continue

        if entry.get("auth"):
            try:
                decoded = base64.b64decode(entry["auth"]).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                logger.warning("Ignoring undecodable auth entry for %s", key)
                continue
            username, sep, password = decoded.partition(":")
            if sep:
                return BasicCredential(username, password)

        if entry.get("username") and entry.get("password"):
            return BasicCredential(entry["username"], entry["password"])
    return None


async def load_docker_credentials(
    registry: str, config_path: Optional[Union[str, Path]] = None
) -> Optional[BasicCredential]:
    """Read Basic credentials for a registry from a Docker config file.

    Credential helpers (``credsStore``) are not consulted.

    Args:
        registry: Registry URL or host[:port]
        config_path: Path to config.json (default: ~/.docker/config.json)

    Returns:
        BasicCredential or None if the file or entry does not exist
    """
    path = Path(config_path) if config_path else DEFAULT_DOCKER_CONFIG
    if not path.exists():
        return None

    async with aiofiles.open(path, "r") as f:
        content = await f.read()
    try:
        config = json.loads(content)
    except json.JSONDecodeError:
        logger.warning("Docker config %s is not valid JSON", path)
        return None
    if not isinstance(config, dict):
        return None
    return credentials_from_config(config, registry)
