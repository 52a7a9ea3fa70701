"""Example usage of the async distribution client."""

import asyncio
import logging
import sys
from pathlib import Path

from distribution_client import (
    DigestMismatch,
    RegistryClient,
    RegistryError,
    Transient,
    TruncatedBlob,
)

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main():
    """List the registry and show what each repository's first tag points at."""
    registry_url = "http://localhost:15000"

    try:
        async with RegistryClient(registry_url) as client:
            logger.info("Checking registry connectivity...")
            if not await client.check_registry_v2():
                logger.error("Registry does not speak the v2 API")
                return
            logger.info("Registry is accessible")

            repositories = [name async for name in client.list_catalog(page_size=50)]
            logger.info(f"Found {len(repositories)} repositories")

            for repository in repositories[:3]:  # Show first 3 repos
                tags = [tag async for tag in client.list_tags(repository)]
                logger.info(f"{repository}: {tags}")
                if not tags:
                    continue

                manifest = await client.get_manifest(repository, tags[0])
                logger.info(f"  {manifest.media_type} {manifest.digest}")
                for platform, digest in manifest.platforms:
                    logger.info(f"    {platform} -> {digest}")

    except RegistryError as e:
        logger.error(f"Registry error: {e}")


async def download_layers(registry_url, repository, reference, target: Path):
    """Save every layer of an image, keeping only verified files."""
    target.mkdir(parents=True, exist_ok=True)

    async with RegistryClient(registry_url) as client:
        manifest = await client.get_manifest_for_platform(repository, reference)

        for digest in manifest.layer_digests:
            path = target / digest.hex
            partial = path.with_suffix(".partial")
            for attempt in range(3):
                try:
                    async with await client.get_blob(repository, digest) as blob:
                        with open(partial, "wb") as f:
                            async for chunk in blob:
                                f.write(chunk)
                    break
                except Transient as e:
                    # Retry policy belongs to the caller
                    delay = e.retry_after or 2**attempt
                    logger.warning(f"{digest.short}: {e}, retrying in {delay}s")
                    await asyncio.sleep(delay)
                except (DigestMismatch, TruncatedBlob):
                    partial.unlink(missing_ok=True)
                    raise
            else:
                raise RuntimeError(f"Giving up on {digest}")

            partial.rename(path)
            logger.info(f"Saved {digest.short} ({path.stat().st_size:,} bytes)")


if __name__ == "__main__":
    asyncio.run(main())
    if len(sys.argv) == 4:
        asyncio.run(download_layers("http://localhost:15000", *sys.argv[1:3], Path(sys.argv[3])))
