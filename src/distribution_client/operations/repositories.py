"""Paginated repository and tag listing."""

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional
from urllib.parse import urlsplit

import aiohttp

from ..core.pipeline import (
    CATALOG_SCOPE,
    KIND_CATALOG,
    KIND_TAGS,
    RequestPipeline,
    repository_scope,
)
from ..core.session import parse_json_response
from ..exceptions import RegistryError
from ..utils.validator import validate_repository

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class Cursor:
    """Opaque continuation for the next page of a listing."""

    _target: str = field(repr=False)
    _kind: str = field(repr=False)
    _items_key: str = field(repr=False)
    _scope: str = field(repr=False)
    _repository: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class Page:
    """One listing response: its names and the way to the next page."""

    items: list[str]
    cursor: Optional[Cursor] = None

    @property
    def is_last(self) -> bool:
        return self.cursor is None


async def list_tags_page(
    pipeline: RequestPipeline, repository: str, page_size: Optional[int] = None
) -> Page:
    """Fetch the first page of a repository's tags."""
    validate_repository(repository)
    start = Cursor(
        _target=f"/v2/{repository}/tags/list",
        _kind=KIND_TAGS,
        _items_key="tags",
        _scope=repository_scope(repository),
        _repository=repository,
    )
    return await _fetch_page(pipeline, start, _page_params(pipeline, page_size))


async def list_catalog_page(
    pipeline: RequestPipeline, page_size: Optional[int] = None
) -> Page:
    """Fetch the first page of the registry catalog."""
    start = Cursor(
        _target="/v2/_catalog",
        _kind=KIND_CATALOG,
        _items_key="repositories",
        _scope=CATALOG_SCOPE,
    )
    return await _fetch_page(pipeline, start, _page_params(pipeline, page_size))


async def next_page(pipeline: RequestPipeline, cursor: Cursor) -> Page:
    """Fetch the page a cursor points at."""
    return await _fetch_page(pipeline, cursor, None)


async def iter_tags(
    pipeline: RequestPipeline, repository: str, page_size: Optional[int] = None
) -> AsyncIterator[str]:
    """Yield every tag of a repository, requesting pages as needed."""
    page = await list_tags_page(pipeline, repository, page_size)
    async for item in _iter_pages(pipeline, page):
        yield item


async def iter_catalog(
    pipeline: RequestPipeline, page_size: Optional[int] = None
) -> AsyncIterator[str]:
    """Yield every repository name in the catalog."""
    page = await list_catalog_page(pipeline, page_size)
    async for item in _iter_pages(pipeline, page):
        yield item


async def _iter_pages(pipeline: RequestPipeline, page: Page) -> AsyncIterator[str]:
    while True:
        for item in page.items:
            yield item
        if page.cursor is None:
            return
        # Empty pages may still carry a Link; only its absence ends the listing
        page = await next_page(pipeline, page.cursor)


async def _fetch_page(
    pipeline: RequestPipeline, cursor: Cursor, params: Optional[dict[str, str]]
) -> Page:
    response = await pipeline.send(
        "GET",
        cursor._target,
        scope=cursor._scope,
        kind=cursor._kind,
        repository=cursor._repository,
        params=params,
    )
    try:
        payload = await parse_json_response(response)
        next_target = _next_target(pipeline, response)
    finally:
        response.release()

    if not isinstance(payload, dict):
        raise RegistryError(f"Unexpected listing response for {cursor._target}")
    items = payload.get(cursor._items_key) or []
    if not isinstance(items, list):
        raise RegistryError(f"Unexpected {cursor._items_key!r} in listing response")

    next_cursor = None
    if next_target is not None:
        logger.debug("Listing continues at %s", next_target)
        next_cursor = Cursor(
            _target=next_target,
            _kind=cursor._kind,
            _items_key=cursor._items_key,
            _scope=cursor._scope,
            _repository=cursor._repository,
        )
    return Page(items=[str(item) for item in items], cursor=next_cursor)


def _next_target(
    pipeline: RequestPipeline, response: aiohttp.ClientResponse
) -> Optional[str]:
    link = response.links.get("next")
    if not link:
        return None
    url = link.get("url")
    if url is None:
        return None
    # aiohttp resolves the link against the response URL. Credentials for
    # this registry must not be sent anywhere else.
    base = urlsplit(pipeline.config.base_url)
    base_port = base.port or DEFAULT_PORTS.get(base.scheme)
    if (url.scheme, url.host, url.port) != (base.scheme, base.hostname, base_port):
        raise RegistryError(
            f"Refusing to follow pagination link to another origin: {url.origin()}"
        )
    return str(url)


def _page_params(
    pipeline: RequestPipeline, page_size: Optional[int]
) -> Optional[dict[str, str]]:
    size = pipeline.config.page_size if page_size is None else page_size
    if size is None:
        return None
    if size <= 0:
        raise ValueError(f"page_size must be positive, got {size}")
    return {"n": str(size)}
