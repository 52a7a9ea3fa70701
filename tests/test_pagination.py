"""Tests for Link-header pagination of tags and catalog."""

import pytest

from distribution_client import RegistryClient, RegistryConfig
from distribution_client.exceptions import RegistryError, RegistryRejected
from distribution_client.operations.repositories import Cursor, Page


def make_repository(fake_registry, name, tags):
    fake_registry.tags[name] = list(tags)


class TestTagPages:
    """Test page-by-page tag listing."""

    @pytest.mark.asyncio
    async def test_single_page(self, fake_registry, client):
        make_repository(fake_registry, "foo", ["a", "b"])

        page = await client.get_tags_page("foo")

        assert page.items == ["a", "b"]
        assert page.cursor is None
        assert page.is_last

    @pytest.mark.asyncio
    async def test_page_size_and_cursor(self, fake_registry, client):
        make_repository(fake_registry, "foo", ["a", "b", "c", "d", "e"])

        first = await client.get_tags_page("foo", page_size=2)
        second = await client.next_page(first.cursor)
        third = await client.next_page(second.cursor)

        assert first.items == ["a", "b"]
        assert second.items == ["c", "d"]
        assert third.items == ["e"]
        assert third.cursor is None
        assert fake_registry.requests[0].query["n"] == "2"
        assert fake_registry.requests[1].query["last"] == "b"

    @pytest.mark.asyncio
    async def test_cursor_is_opaque(self, fake_registry, client):
        make_repository(fake_registry, "foo", ["a", "b", "c"])

        page = await client.get_tags_page("foo", page_size=1)

        assert isinstance(page.cursor, Cursor)
        assert "last" not in repr(page.cursor)

    @pytest.mark.asyncio
    async def test_invalid_page_size(self, client):
        with pytest.raises(ValueError):
            await client.get_tags_page("foo", page_size=0)


class TestLazyListing:
    """Test the flattened async iterators."""

    @pytest.mark.asyncio
    async def test_concatenates_pages_in_order(self, fake_registry, client):
        tags = [f"v{i}" for i in range(7)]
        make_repository(fake_registry, "foo", tags)

        listed = [tag async for tag in client.list_tags("foo", page_size=3)]

        assert listed == tags
        assert len(fake_registry.requests) == 3

    @pytest.mark.asyncio
    async def test_empty_intermediate_pages_continue(self, fake_registry, client):
        """Test only a missing Link header ends the listing."""
        fake_registry.tag_pages["foo"] = [["a"], [], ["b", "c"], [], ["d"]]

        listed = [tag async for tag in client.list_tags("foo")]

        assert listed == ["a", "b", "c", "d"]
        assert len(fake_registry.requests) == 5

    @pytest.mark.asyncio
    async def test_empty_last_page(self, fake_registry, client):
        fake_registry.tag_pages["foo"] = [["a"], []]

        listed = [tag async for tag in client.list_tags("foo")]

        assert listed == ["a"]

    @pytest.mark.asyncio
    async def test_lazy(self, fake_registry, client):
        """Test later pages are only requested when consumed."""
        make_repository(fake_registry, "foo", ["a", "b", "c", "d"])

        iterator = client.list_tags("foo", page_size=2)
        assert await iterator.__anext__() == "a"
        assert await iterator.__anext__() == "b"
        assert len(fake_registry.requests) == 1

        assert await iterator.__anext__() == "c"
        assert len(fake_registry.requests) == 2
        await iterator.aclose()

    @pytest.mark.asyncio
    async def test_catalog(self, fake_registry, client):
        for name in ("zeta", "alpha", "team/app"):
            make_repository(fake_registry, name, [])

        listed = [name async for name in client.list_catalog(page_size=2)]

        assert listed == ["alpha", "team/app", "zeta"]

    @pytest.mark.asyncio
    async def test_configured_page_size(self, fake_registry):
        make_repository(fake_registry, "foo", ["a", "b", "c"])

        config = RegistryConfig(url=fake_registry.url, page_size=1)
        async with RegistryClient(fake_registry.url, config=config) as client:
            listed = [tag async for tag in client.list_tags("foo")]

        assert listed == ["a", "b", "c"]
        assert fake_registry.requests[0].query["n"] == "1"

    @pytest.mark.asyncio
    async def test_error_mid_listing(self, fake_registry, client):
        """Test a failing later page propagates after earlier items."""
        make_repository(fake_registry, "foo", ["a", "b", "c"])

        listed = []
        with pytest.raises(RegistryRejected):
            async for tag in client.list_tags("foo", page_size=1):
                listed.append(tag)
                fake_registry.fail("/v2/foo/tags/list", 400)

        assert listed == ["a"]


def test_page_defaults():
    page = Page(items=[])
    assert page.cursor is None
    assert page.is_last


class TestLinkOrigin:
    """Test where a Link header may send the next request."""

    @pytest.mark.asyncio
    async def test_link_to_another_host_is_refused(self, fake_registry, client):
        make_repository(fake_registry, "foo", ["a"])
        fake_registry.fail(
            "/v2/foo/tags/list",
            200,
            body=b'{"name": "foo", "tags": ["a"]}',
            headers={
                "Link": '<http://elsewhere.example/v2/foo/tags/list?last=a>; rel="next"'
            },
        )

        with pytest.raises(RegistryError, match="another origin"):
            await client.get_tags_page("foo")
        assert len(fake_registry.requests) == 1

    @pytest.mark.asyncio
    async def test_relative_link_stays_on_registry(self, fake_registry, client):
        make_repository(fake_registry, "foo", ["a"])
        fake_registry.fail(
            "/v2/foo/tags/list",
            200,
            body=b'{"name": "foo", "tags": ["a"]}',
            headers={"Link": '</v2/foo/tags/list?last=a>; rel="next"'},
        )

        page = await client.get_tags_page("foo")
        assert page.items == ["a"]
        assert page.cursor is not None
