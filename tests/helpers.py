"""Test helpers: an in-process fake registry and content builders."""

import asyncio
import base64
import json
from typing import Any, Optional

from aiohttp import BasicAuth, web

from distribution_client.core.types import (
    DOCKER_MANIFEST_V1_SIGNED,
    OCI_INDEX_V1,
    OCI_MANIFEST_V1,
)
from distribution_client.utils.digest import Digest

SERVICE = "fake-registry"
OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_LAYER = "application/vnd.oci.image.layer.v1.tar+gzip"


def errors_body(code: str, message: str = "") -> bytes:
    return json.dumps({"errors": [{"code": code, "message": message}]}).encode()


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def signed_schema1(body: dict[str, Any]) -> tuple[bytes, Digest]:
    """Build a prettyjws manifest and the digest of its signed payload."""
    payload = json.dumps(body, indent=3).encode()
    format_length = payload.rindex(b"\n}")
    tail = payload[format_length:]
    protected = {
        "formatLength": format_length,
        "formatTail": b64url(tail),
        "time": "2016-01-01T00:00:00Z",
    }
    signatures = [
        {
            "header": {"alg": "ES256"},
            "signature": "c2lnbmF0dXJl",
            "protected": b64url(json.dumps(protected).encode()),
        }
    ]
    raw = (
        payload[:format_length]
        + b',\n   "signatures": '
        + json.dumps(signatures).encode()
        + tail
    )
    return raw, Digest.from_bytes(payload)


class FakeRegistry:
    """Minimal registry API v2 server for tests.

    Auth mode is one of None, "bearer" or "basic" and is read per request,
    so tests may switch it after the server has started.
    """

    def __init__(self) -> None:
        self.url = ""
        self.auth: Optional[str] = None
        self.username = "user"
        self.password = "secret"
        self.api_version_header = True

        self.manifests: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.digest_headers: dict[tuple[str, str], str] = {}
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.tags: dict[str, list[str]] = {}
        self.tag_pages: dict[str, list[list[str]]] = {}
        self.failures: dict[str, tuple[int, dict[str, str], bytes]] = {}

        self.token_delay = 0.0
        self.token_status = 200
        self.token_expires_in = 300
        self.reject_tokens = False
        self.issued_tokens: set[str] = set()
        self.token_requests: list[dict[str, Optional[str]]] = []
        self.requests: list[web.Request] = []

    # Content

    def put_manifest(
        self, repository: str, reference: str, raw: bytes, media_type: str
    ) -> None:
        self.manifests[(repository, reference)] = (raw, media_type)
        self.tags.setdefault(repository, [])

    def add_manifest(
        self,
        repository: str,
        body: dict[str, Any],
        media_type: str,
        tags: tuple[str, ...] = (),
    ) -> Digest:
        raw = json.dumps(body, indent=2).encode()
        digest = Digest.from_bytes(raw)
        self.put_manifest(repository, str(digest), raw, media_type)
        for tag in tags:
            self.put_manifest(repository, tag, raw, media_type)
            if tag not in self.tags[repository]:
                self.tags[repository].append(tag)
        return digest

    def add_blob(self, repository: str, data: bytes) -> Digest:
        digest = Digest.from_bytes(data)
        self.blobs[(repository, str(digest))] = data
        return digest

    def add_image(
        self,
        repository: str,
        tag: Optional[str] = "latest",
        config: Optional[dict[str, Any]] = None,
        layers: tuple[bytes, ...] = (b"layer-one", b"layer-two"),
        media_type: str = OCI_MANIFEST_V1,
    ) -> Digest:
        config = config or {
            "architecture": "amd64",
            "os": "linux",
            "created": "2024-01-01T00:00:00Z",
        }
        config_raw = json.dumps(config).encode()
        config_digest = self.add_blob(repository, config_raw)
        body = {
            "schemaVersion": 2,
            "mediaType": media_type,
            "config": {
                "mediaType": OCI_CONFIG,
                "digest": str(config_digest),
                "size": len(config_raw),
            },
            "layers": [
                {
                    "mediaType": OCI_LAYER,
                    "digest": str(self.add_blob(repository, layer)),
                    "size": len(layer),
                }
                for layer in layers
            ],
        }
        return self.add_manifest(
            repository, body, media_type, tags=(tag,) if tag else ()
        )

    def add_index(
        self,
        repository: str,
        tag: str,
        children: list[tuple[dict[str, str], Digest]],
    ) -> Digest:
        body = {
            "schemaVersion": 2,
            "mediaType": OCI_INDEX_V1,
            "manifests": [
                {
                    "mediaType": OCI_MANIFEST_V1,
                    "digest": str(digest),
                    "size": len(self.manifests[(repository, str(digest))][0]),
                    "platform": platform,
                }
                for platform, digest in children
            ],
        }
        return self.add_manifest(repository, body, OCI_INDEX_V1, tags=(tag,))

    def add_signed_schema1(self, repository: str, tag: str) -> Digest:
        body = {
            "schemaVersion": 1,
            "name": repository,
            "tag": tag,
            "architecture": "amd64",
            "fsLayers": [
                {"blobSum": str(Digest.from_bytes(b"top"))},
                {"blobSum": str(Digest.from_bytes(b"base"))},
            ],
            "history": [{"v1Compatibility": "{}"}, {"v1Compatibility": "{}"}],
        }
        raw, digest = signed_schema1(body)
        self.put_manifest(repository, tag, raw, DOCKER_MANIFEST_V1_SIGNED)
        self.put_manifest(repository, str(digest), raw, DOCKER_MANIFEST_V1_SIGNED)
        self.tags[repository].append(tag)
        return digest

    def fail(
        self,
        path: str,
        status: int,
        body: bytes = b"",
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.failures[path] = (status, headers or {}, body)

    # Server

    def make_app(self) -> web.Application:
        app = web.Application(middlewares=[self._middleware])
        app.router.add_get("/v2/", self._base)
        app.router.add_get("/v2/_catalog", self._catalog)
        app.router.add_get("/v2/{name:.+}/tags/list", self._tags)
        app.router.add_get("/v2/{name:.+}/manifests/{reference}", self._manifest)
        app.router.add_get("/v2/{name:.+}/blobs/{digest}", self._blob)
        app.router.add_get("/token", self._token)
        return app

    @web.middleware
    async def _middleware(self, request: web.Request, handler) -> web.StreamResponse:
        if request.path != "/token":
            self.requests.append(request)
        if request.path in self.failures:
            status, headers, body = self.failures[request.path]
            response = web.Response(status=status, body=body, headers=headers)
        else:
            response = await handler(request)
        if self.api_version_header:
            response.headers["Docker-Distribution-API-Version"] = "registry/2.0"
        return response

    def _challenge(self, request: web.Request, scope: Optional[str]) -> web.Response:
        if self.auth == "basic":
            header = 'Basic realm="fake"'
        else:
            header = f'Bearer realm="{request.url.origin()}/token",service="{SERVICE}"'
            if scope:
                header += f',scope="{scope}"'
        return web.Response(
            status=401,
            body=errors_body("UNAUTHORIZED", "authentication required"),
            headers={"WWW-Authenticate": header},
        )

    def _authorize(
        self, request: web.Request, scope: Optional[str]
    ) -> Optional[web.Response]:
        header = request.headers.get("Authorization", "")
        if self.auth == "basic":
            if header == BasicAuth(self.username, self.password).encode():
                return None
            return self._challenge(request, scope)
        if self.auth == "bearer":
            token = header[len("Bearer "):] if header.startswith("Bearer ") else None
            if token in self.issued_tokens and not self.reject_tokens:
                return None
            return self._challenge(request, scope)
        return None

    async def _token(self, request: web.Request) -> web.Response:
        self.token_requests.append(
            {
                "service": request.query.get("service"),
                "scope": request.query.get("scope"),
                "authorization": request.headers.get("Authorization"),
            }
        )
        if self.token_delay:
            await asyncio.sleep(self.token_delay)
        if self.token_status != 200:
            return web.Response(status=self.token_status)
        token = f"token-{len(self.token_requests)}"
        self.issued_tokens.add(token)
        return web.json_response(
            {"token": token, "expires_in": self.token_expires_in}
        )

    async def _base(self, request: web.Request) -> web.Response:
        denied = self._authorize(request, None)
        if denied is not None:
            return denied
        return web.json_response({})

    async def _catalog(self, request: web.Request) -> web.Response:
        denied = self._authorize(request, "registry:catalog:*")
        if denied is not None:
            return denied
        names = sorted(self.tags)
        return self._paginated(request, "repositories", names)

    async def _tags(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        denied = self._authorize(request, f"repository:{name}:pull")
        if denied is not None:
            return denied
        if name in self.tag_pages:
            return self._scripted_page(request, name)
        if name not in self.tags:
            return web.Response(
                status=404, body=errors_body("NAME_UNKNOWN", "repository name not known")
            )
        response = self._paginated(request, "tags", self.tags[name])
        return response

    def _paginated(
        self, request: web.Request, key: str, items: list[str]
    ) -> web.Response:
        start = 0
        last = request.query.get("last")
        if last is not None and last in items:
            start = items.index(last) + 1
        size = int(request.query.get("n", len(items) or 1))
        page = items[start:start + size]

        headers = {}
        if start + size < len(items):
            headers["Link"] = f'<{request.path}?n={size}&last={page[-1]}>; rel="next"'
        body = {key: page}
        if key == "tags":
            body["name"] = request.match_info["name"]
        return web.json_response(body, headers=headers)

    def _scripted_page(self, request: web.Request, name: str) -> web.Response:
        pages = self.tag_pages[name]
        index = int(request.query.get("page", 0))
        headers = {}
        if index + 1 < len(pages):
            headers["Link"] = f'<{request.path}?page={index + 1}>; rel="next"'
        # Registries may send null instead of an empty list
        tags = pages[index] or None
        return web.json_response({"name": name, "tags": tags}, headers=headers)

    async def _manifest(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        reference = request.match_info["reference"]
        denied = self._authorize(request, f"repository:{name}:pull")
        if denied is not None:
            return denied
        if name not in self.tags:
            return web.Response(
                status=404, body=errors_body("NAME_UNKNOWN", "repository name not known")
            )
        entry = self.manifests.get((name, reference))
        if entry is None:
            return web.Response(
                status=404, body=errors_body("MANIFEST_UNKNOWN", "manifest unknown")
            )
        raw, media_type = entry
        digest = self.digest_headers.get((name, reference))
        if digest is None:
            if media_type == DOCKER_MANIFEST_V1_SIGNED:
                digest = reference if ":" in reference else ""
            else:
                digest = str(Digest.from_bytes(raw))
        headers = {"Content-Type": media_type}
        if digest:
            headers["Docker-Content-Digest"] = digest
        return web.Response(body=raw, headers=headers)

    async def _blob(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        denied = self._authorize(request, f"repository:{name}:pull")
        if denied is not None:
            return denied
        data = self.blobs.get((name, request.match_info["digest"]))
        if data is None:
            return web.Response(
                status=404, body=errors_body("BLOB_UNKNOWN", "blob unknown to registry")
            )
        return web.Response(
            body=data, headers={"Content-Type": "application/octet-stream"}
        )


class StubContent:
    """Stand-in for ``ClientResponse.content`` yielding scripted chunks."""

    def __init__(self, chunks: list[bytes], error: Optional[Exception] = None):
        self.chunks = list(chunks)
        self.error = error

    async def read(self, n: int = -1) -> bytes:
        if self.chunks:
            return self.chunks.pop(0)
        if self.error is not None:
            raise self.error
        return b""


class StubResponse:
    """Just enough of ``aiohttp.ClientResponse`` to drive a BlobStream."""

    def __init__(
        self,
        chunks: list[bytes],
        content_length: Optional[int] = None,
        error: Optional[Exception] = None,
    ):
        self.headers = {}
        if content_length is not None:
            self.headers["Content-Length"] = str(content_length)
        self.content = StubContent(chunks, error)
        self.released = False
        self.closed = False

    def release(self) -> None:
        self.released = True

    def close(self) -> None:
        self.closed = True
