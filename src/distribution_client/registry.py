"""Async functional registry operations."""

import json
from typing import Any, Optional

from .core.registry_client import RegistryClient
from .exceptions import ManifestError
from .operations.manifests import ManifestDescriptor, SchemaV1


def _client(
    registry_url: str,
    timeout: float,
    username: Optional[str],
    password: Optional[str],
) -> RegistryClient:
    return RegistryClient(
        registry_url, timeout=timeout, username=username, password=password
    )


async def check_registry_connectivity(
    registry_url: str,
    timeout: float = 10,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> bool:
    """레지스트리가 v2 API를 지원하는지 확인합니다.

    Args:
        registry_url: 레지스트리 URL (예: "http://localhost:15000", "https://registry.example.com")
        timeout: 요청 타임아웃 (초, 기본값: 10초)
        username: 사용자 이름 (선택사항)
        password: 비밀번호 또는 토큰 (선택사항)

    Returns:
        bool: v2 API 지원 시 True

    Raises:
        TransportError: 레지스트리에 연결할 수 없는 경우
        AuthenticationFailed: 인증 정보가 거부된 경우

    Examples:
        accessible = await check_registry_connectivity("http://localhost:15000")
    """
    async with _client(registry_url, timeout, username, password) as client:
        return await client.check_registry_v2()


async def list_repositories(
    registry_url: str,
    timeout: float = 10,
    username: Optional[str] = None,
    password: Optional[str] = None,
    page_size: Optional[int] = None,
) -> list[str]:
    """레지스트리의 모든 저장소 목록을 조회합니다.

    모든 페이지를 순서대로 따라가며 결과를 하나의 목록으로 합칩니다.

    Args:
        registry_url: 레지스트리 URL (예: "http://localhost:15000")
        timeout: 요청 타임아웃 (초, 기본값: 10초)
        username: 사용자 이름 (선택사항)
        password: 비밀번호 또는 토큰 (선택사항)
        page_size: 페이지당 요청 개수 (선택사항)

    Returns:
        list[str]: 저장소 이름 목록 (예: ["nginx", "myapp", "test/image"])

    Raises:
        RegistryError: 요청 실패 시

    Examples:
        repos = await list_repositories("http://localhost:15000")
        print(f"발견된 저장소: {repos}")
    """
    async with _client(registry_url, timeout, username, password) as client:
        return [name async for name in client.list_catalog(page_size)]


async def list_tags(
    registry_url: str,
    repository: str,
    timeout: float = 10,
    username: Optional[str] = None,
    password: Optional[str] = None,
    page_size: Optional[int] = None,
) -> list[str]:
    """특정 저장소의 모든 태그 목록을 조회합니다.

    Args:
        registry_url: 레지스트리 URL (예: "http://localhost:15000")
        repository: 저장소 이름 (예: "nginx", "mycompany/myapp")
        timeout: 요청 타임아웃 (초, 기본값: 10초)
        username: 사용자 이름 (선택사항)
        password: 비밀번호 또는 토큰 (선택사항)
        page_size: 페이지당 요청 개수 (선택사항)

    Returns:
        list[str]: 태그 이름 목록 (예: ["latest", "v1.0.0", "alpine"])

    Raises:
        RepositoryNotFound: 저장소가 없는 경우
        RegistryError: 요청 실패 시

    Examples:
        tags = await list_tags("http://localhost:15000", "nginx")
        print(f"nginx 태그: {tags}")
    """
    async with _client(registry_url, timeout, username, password) as client:
        return [tag async for tag in client.list_tags(repository, page_size)]


async def get_manifest(
    registry_url: str,
    repository: str,
    reference: str,
    timeout: float = 10,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> ManifestDescriptor:
    """이미지의 매니페스트를 조회하고 digest를 검증합니다.

    Args:
        registry_url: 레지스트리 URL (예: "http://localhost:15000")
        repository: 저장소 이름 (예: "nginx", "mycompany/myapp")
        reference: 태그 또는 digest (예: "latest", "sha256:abc123...")
        timeout: 요청 타임아웃 (초, 기본값: 10초)
        username: 사용자 이름 (선택사항)
        password: 비밀번호 또는 토큰 (선택사항)

    Returns:
        ManifestDescriptor: 검증된 매니페스트 (media_type, digest, raw, manifest)

    Raises:
        ManifestNotFound: 매니페스트가 없는 경우
        DigestMismatch: 내용이 digest와 일치하지 않는 경우
        UnsupportedManifestType: 지원하지 않는 매니페스트 형식인 경우

    Examples:
        manifest = await get_manifest("http://localhost:15000", "nginx", "latest")
        print(f"digest: {manifest.digest}, 레이어 수: {len(manifest.layer_digests)}")
    """
    async with _client(registry_url, timeout, username, password) as client:
        return await client.get_manifest(repository, reference)


async def get_image_config(
    registry_url: str,
    repository: str,
    reference: str,
    timeout: float = 10,
    username: Optional[str] = None,
    password: Optional[str] = None,
    os: str = "linux",
    architecture: str = "amd64",
) -> dict[str, Any]:
    """이미지 설정(config) blob을 조회합니다.

    매니페스트 목록인 경우 지정한 플랫폼의 매니페스트를 따라갑니다.
    config blob은 digest 검증 후에만 반환됩니다.

    Args:
        registry_url: 레지스트리 URL (예: "http://localhost:15000")
        repository: 저장소 이름 (예: "nginx")
        reference: 태그 또는 digest
        timeout: 요청 타임아웃 (초, 기본값: 10초)
        username: 사용자 이름 (선택사항)
        password: 비밀번호 또는 토큰 (선택사항)
        os: 플랫폼 OS (기본값: "linux")
        architecture: 플랫폼 아키텍처 (기본값: "amd64")

    Returns:
        dict[str, Any]: 이미지 설정 JSON

    Raises:
        ManifestError: config blob이 없는 매니페스트(schema 1)인 경우
        DigestMismatch: config blob이 digest와 일치하지 않는 경우
    """
    async with _client(registry_url, timeout, username, password) as client:
        manifest = await client.get_manifest_for_platform(
            repository, reference, os=os, architecture=architecture
        )
        if manifest.config_digest is None:
            raise ManifestError(
                f"{manifest.media_type} manifest for {repository}:{reference} has no config blob"
            )
        async with await client.get_blob(repository, manifest.config_digest) as blob:
            data = await blob.read()
    return json.loads(data)


async def get_image_info(
    registry_url: str,
    repository: str,
    reference: str,
    timeout: float = 10,
    username: Optional[str] = None,
    password: Optional[str] = None,
    os: str = "linux",
    architecture: str = "amd64",
) -> dict[str, Any]:
    """이미지의 상세 정보를 조회합니다.

    Args:
        registry_url: 레지스트리 URL (예: "http://localhost:15000")
        repository: 저장소 이름 (예: "nginx", "mycompany/myapp")
        reference: 태그 또는 digest (예: "latest", "v1.0.0")
        timeout: 요청 타임아웃 (초, 기본값: 10초)
        username: 사용자 이름 (선택사항)
        password: 비밀번호 또는 토큰 (선택사항)
        os: 플랫폼 OS (기본값: "linux")
        architecture: 플랫폼 아키텍처 (기본값: "amd64")

    Returns:
        dict[str, Any]: 이미지 정보 (digest, 미디어 타입, 아키텍처, OS, 크기, 생성일, 레이어)

    Raises:
        RegistryError: 요청 실패 시

    Examples:
        info = await get_image_info("http://localhost:15000", "nginx", "latest")
        print(f"아키텍처: {info.get('architecture', '알 수 없음')}")
        print(f"크기: {info.get('size', 0):,} bytes")
    """
    async with _client(registry_url, timeout, username, password) as client:
        manifest = await client.get_manifest_for_platform(
            repository, reference, os=os, architecture=architecture
        )
        info: dict[str, Any] = {
            "repository": repository,
            "reference": reference,
            "digest": str(manifest.digest),
            "media_type": manifest.media_type,
            "layers": [str(layer) for layer in manifest.layer_digests],
        }

        if isinstance(manifest.manifest, SchemaV1):
            info["architecture"] = manifest.manifest.architecture
            return info

        info["size"] = sum(layer.size for layer in manifest.manifest.layers)
        async with await client.get_blob(repository, manifest.config_digest) as blob:
            config = json.loads(await blob.read())

    info["architecture"] = config.get("architecture", "")
    info["os"] = config.get("os", "")
    info["created"] = config.get("created")
    return info
