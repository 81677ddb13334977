"""
Tests for the registry importer, against an in-process registry.
"""

import json

import httpx
import pytest

from image_control_tower.images.enums import ReferenceKind
from image_control_tower.images.image import MEDIA_TYPE_SCHEMA1_SIGNED, MEDIA_TYPE_SCHEMA2, manifest_digest
from image_control_tower.images.primitives import ObjectReference
from image_control_tower.worker.importer import RegistryImporter

CONFIG = json.dumps({"architecture": "amd64", "os": "linux"})
MANIFEST = json.dumps(
    {
        "schemaVersion": 2,
        "mediaType": MEDIA_TYPE_SCHEMA2,
        "config": {"digest": "sha256:config", "size": len(CONFIG)},
        "layers": [{"digest": "sha256:layer", "size": 42}],
    }
)


def docker_image(name: str) -> ObjectReference:
    return ObjectReference(kind=ReferenceKind.DOCKER_IMAGE, name=name)


class FakeRegistry:
    """Serves one repository's manifests and blobs; records every request."""

    def __init__(self, manifests=None, status_code=200, media_type=MEDIA_TYPE_SCHEMA2):
        self.manifests = manifests if manifests is not None else {"v1": MANIFEST}
        self.status_code = status_code
        self.media_type = media_type
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code)

        path = request.url.path
        if "/blobs/" in path:
            return httpx.Response(200, text=CONFIG)
        reference = path.rsplit("/manifests/", 1)[1]
        manifest = self.manifests.get(reference)
        if manifest is None:
            return httpx.Response(404)
        return httpx.Response(200, text=manifest, headers={"content-type": self.media_type})


def importer_for(registry: FakeRegistry, **kwargs) -> RegistryImporter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(registry))
    return RegistryImporter(client=client, **kwargs)


class TestRegistryImporter:
    @pytest.mark.asyncio
    async def test_imports_schema2_with_config(self):
        registry = FakeRegistry()
        importer = importer_for(registry)

        result = await importer.import_image(docker_image("registry.example.com/team/app:v1"))

        assert result.succeeded
        image = result.image
        assert image.name == manifest_digest(MANIFEST)
        assert image.docker_image_reference == f"registry.example.com/team/app@{image.name}"
        assert image.docker_image_metadata["architecture"] == "amd64"
        assert [layer.name for layer in image.docker_image_layers] == ["sha256:layer"]

        manifest_request, blob_request = registry.requests
        assert str(manifest_request.url) == "https://registry.example.com/v2/team/app/manifests/v1"
        assert MEDIA_TYPE_SCHEMA2 in manifest_request.headers["accept"]
        assert blob_request.url.path == "/v2/team/app/blobs/sha256:config"

    @pytest.mark.asyncio
    async def test_insecure_uses_plain_http(self):
        registry = FakeRegistry()

        await importer_for(registry).import_image(
            docker_image("registry.example.com/team/app:v1"), insecure=True
        )

        assert registry.requests[0].url.scheme == "http"

    @pytest.mark.asyncio
    async def test_docker_hub_official_images(self):
        registry = FakeRegistry(manifests={"latest": MANIFEST})

        result = await importer_for(registry).import_image(docker_image("nginx"))

        assert result.succeeded
        assert str(registry.requests[0].url) == (
            "https://registry-1.docker.io/v2/library/nginx/manifests/latest"
        )
        assert result.image.docker_image_reference.startswith("registry-1.docker.io/library/nginx@")

    @pytest.mark.asyncio
    async def test_default_registry_is_configurable(self):
        registry = FakeRegistry()

        await importer_for(registry, default_registry="mirror.internal").import_image(
            docker_image("team/app:v1")
        )

        assert registry.requests[0].url.host == "mirror.internal"
        assert registry.requests[0].url.path == "/v2/team/app/manifests/v1"

    @pytest.mark.asyncio
    async def test_pull_by_digest(self):
        digest = manifest_digest(MANIFEST)
        registry = FakeRegistry(manifests={digest: MANIFEST})

        result = await importer_for(registry).import_image(
            docker_image(f"registry.example.com/team/app@{digest}")
        )

        assert result.image.name == digest

    @pytest.mark.asyncio
    async def test_digest_mismatch_fails(self):
        wanted = "sha256:" + "0" * 64
        registry = FakeRegistry(manifests={wanted: MANIFEST})

        result = await importer_for(registry).import_image(
            docker_image(f"registry.example.com/team/app@{wanted}")
        )

        assert result.failure.reason == "InternalError"

    @pytest.mark.asyncio
    async def test_schema1_skips_config(self):
        manifest = json.dumps({"schemaVersion": 1, "fsLayers": [{"blobSum": "sha256:a"}]})
        registry = FakeRegistry(manifests={"old": manifest}, media_type=MEDIA_TYPE_SCHEMA1_SIGNED)

        result = await importer_for(registry).import_image(docker_image("registry.example.com/app:old"))

        assert result.succeeded
        assert len(registry.requests) == 1
        assert result.image.docker_image_manifest_media_type == MEDIA_TYPE_SCHEMA1_SIGNED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "manifest",
        ["[]", json.dumps({"schemaVersion": 2, "layers": [{"size": 1}]})],
        ids=["array", "layer-without-digest"],
    )
    async def test_malformed_manifest_is_a_failure(self, manifest):
        registry = FakeRegistry(manifests={"v1": manifest})

        result = await importer_for(registry).import_image(
            docker_image("registry.example.com/team/app:v1")
        )

        assert not result.succeeded
        assert result.failure.reason == "InternalError"
        assert "manifest for registry.example.com/team/app:v1" in result.failure.message

    @pytest.mark.asyncio
    async def test_unknown_tag_is_not_found(self):
        result = await importer_for(FakeRegistry()).import_image(
            docker_image("registry.example.com/team/app:missing")
        )

        assert not result.succeeded
        assert result.failure.reason == "NotFound"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_denied_is_unauthorized(self, status_code):
        result = await importer_for(FakeRegistry(status_code=status_code)).import_image(
            docker_image("registry.example.com/team/app:v1")
        )

        assert result.failure.reason == "Unauthorized"

    @pytest.mark.asyncio
    async def test_server_error_is_internal(self):
        result = await importer_for(FakeRegistry(status_code=502)).import_image(
            docker_image("registry.example.com/team/app:v1")
        )

        assert result.failure.reason == "InternalError"
        assert "502" in result.failure.message

    @pytest.mark.asyncio
    async def test_connection_error_is_internal(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        importer = RegistryImporter(client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)))

        result = await importer.import_image(docker_image("registry.example.com/team/app:v1"))

        assert result.failure.reason == "InternalError"

    @pytest.mark.asyncio
    async def test_stream_references_are_rejected(self):
        registry = FakeRegistry()
        reference = ObjectReference(kind=ReferenceKind.IMAGE_STREAM_TAG, name="app:latest")

        result = await importer_for(registry).import_image(reference)

        assert result.failure.reason == "InvalidReference"
        assert registry.requests == []

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(FakeRegistry()))
        importer = RegistryImporter(client=client)

        await importer.close()

        assert not client.is_closed
        await client.aclose()
