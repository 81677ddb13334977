"""
Import collaborators.

An Importer resolves the source of a tag (an ObjectReference) to an
ImageRecord. Failures are returned as ImportFailure values, never raised, so
the controller can fold them into ImportSuccess conditions.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

import httpx

from ..images.enums import ImportFailureReason, ReferenceKind
from ..images.errors import ImageValidationError, ImportFailure
from ..images.image import (
    MEDIA_TYPE_OCI_MANIFEST,
    MEDIA_TYPE_SCHEMA1_SIGNED,
    MEDIA_TYPE_SCHEMA2,
    DockerImageReference,
    ImageRecord,
    image_from_manifest,
    parse_docker_image_reference,
)
from ..images.primitives import ObjectReference

logger = logging.getLogger(__name__)

DOCKER_HUB_REGISTRY = "registry-1.docker.io"

MANIFEST_ACCEPT = ", ".join(
    [MEDIA_TYPE_SCHEMA2, MEDIA_TYPE_OCI_MANIFEST, MEDIA_TYPE_SCHEMA1_SIGNED]
)


@dataclass(frozen=True)
class ImportResult:
    """An imported image, or the reason there is none."""

    image: Optional[ImageRecord] = None
    failure: Optional[ImportFailure] = None

    @property
    def succeeded(self) -> bool:
        return self.image is not None

    @classmethod
    def ok(cls, image: ImageRecord) -> "ImportResult":
        return cls(image=image)

    @classmethod
    def failed(
        cls, reason: Union[str, ImportFailureReason], message: str = ""
    ) -> "ImportResult":
        if isinstance(reason, ImportFailureReason):
            reason = reason.value
        return cls(failure=ImportFailure(reason=reason, message=message))


class Importer(ABC):
    """Resolves a tag source to an image."""

    @abstractmethod
    async def import_image(
        self, from_ref: ObjectReference, insecure: bool = False
    ) -> ImportResult:
        """Import the image ``from_ref`` points at."""

    async def close(self) -> None:
        """Release any held resources."""


class StaticImporter(Importer):
    """Table-driven importer keyed by the source's name.

    Unknown names fail with NotFound. ``delay`` makes every import sleep first,
    which lets callers exercise timeouts and cancellation.
    """

    def __init__(
        self,
        table: Optional[Dict[str, Union[ImageRecord, ImportFailure]]] = None,
        delay: float = 0.0,
    ):
        self.table: Dict[str, Union[ImageRecord, ImportFailure]] = dict(table or {})
        self.delay = delay
        self.calls: List[Tuple[str, bool]] = []

    def set(self, name: str, result: Union[ImageRecord, ImportFailure]) -> None:
        self.table[name] = result

    async def import_image(
        self, from_ref: ObjectReference, insecure: bool = False
    ) -> ImportResult:
        self.calls.append((from_ref.name, insecure))
        if self.delay:
            await asyncio.sleep(self.delay)

        result = self.table.get(from_ref.name)
        if result is None:
            return ImportResult.failed(
                ImportFailureReason.NOT_FOUND, f"{from_ref.name} not found"
            )
        if isinstance(result, ImportFailure):
            return ImportResult(failure=result)
        return ImportResult.ok(result)


class RegistryImporter(Importer):
    """Imports manifests from a Docker Registry v2 API over HTTP.

    Only anonymous access is attempted; a registry that demands credentials
    yields an Unauthorized failure.
    """

    def __init__(
        self,
        default_registry: str = DOCKER_HUB_REGISTRY,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.default_registry = default_registry
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_client:
            await self.client.aclose()

    def _repository(self, ref: DockerImageReference, registry: str) -> str:
        if not ref.namespace and registry == DOCKER_HUB_REGISTRY:
            return f"library/{ref.name}"
        return ref.repository()

    async def import_image(
        self, from_ref: ObjectReference, insecure: bool = False
    ) -> ImportResult:
        if from_ref.kind != ReferenceKind.DOCKER_IMAGE:
            return ImportResult.failed(
                ImportFailureReason.INVALID_REFERENCE,
                f"cannot import {from_ref.kind.value} {from_ref.name!r} from a registry",
            )
        try:
            ref = parse_docker_image_reference(from_ref.name)
        except ImageValidationError as e:
            return ImportResult.failed(ImportFailureReason.INVALID_REFERENCE, e.message)

        registry = ref.registry or self.default_registry
        repository = self._repository(ref, registry)
        reference = ref.id or ref.tag or "latest"
        base_url = f"{'http' if insecure else 'https'}://{registry}/v2/{repository}"

        try:
            response = await self.client.get(
                f"{base_url}/manifests/{reference}", headers={"Accept": MANIFEST_ACCEPT}
            )
        except httpx.RequestError as e:
            logger.error("Failed to fetch manifest for %s: %s", from_ref.name, e)
            return ImportResult.failed(ImportFailureReason.INTERNAL_ERROR, str(e))

        failure = _failure_for_status(response, from_ref.name)
        if failure is not None:
            return failure

        manifest = response.text
        media_type = response.headers.get("content-type", "").split(";")[0].strip()
        config = await self._fetch_config(base_url, manifest, media_type)

        pull_spec = DockerImageReference(
            registry=registry,
            namespace=repository.rpartition("/")[0],
            name=ref.name,
            tag=ref.tag or ("" if ref.id else "latest"),
        ).exact()
        try:
            image = image_from_manifest(pull_spec, manifest, media_type, config)
        except ImageValidationError as e:
            return ImportResult.failed(ImportFailureReason.INTERNAL_ERROR, e.message)

        if ref.id and media_type != MEDIA_TYPE_SCHEMA1_SIGNED and image.name != ref.id:
            return ImportResult.failed(
                ImportFailureReason.INTERNAL_ERROR,
                f"registry returned {image.name} for {ref.id}",
            )

        logger.info("Imported %s as %s", from_ref.name, image.name)
        return ImportResult.ok(image)

    async def _fetch_config(
        self, base_url: str, manifest: str, media_type: str
    ) -> Optional[str]:
        if media_type not in (MEDIA_TYPE_SCHEMA2, MEDIA_TYPE_OCI_MANIFEST):
            return None
        try:
            digest = json.loads(manifest).get("config", {}).get("digest")
        except (ValueError, AttributeError):
            return None
        if not digest:
            return None

        try:
            response = await self.client.get(f"{base_url}/blobs/{digest}")
        except httpx.RequestError as e:
            logger.warning("Failed to fetch config %s: %s", digest, e)
            return None
        if response.status_code != 200:
            logger.warning("Config %s returned HTTP %d", digest, response.status_code)
            return None
        return response.text


def _failure_for_status(response: httpx.Response, name: str) -> Optional[ImportResult]:
    if response.status_code == 404:
        return ImportResult.failed(ImportFailureReason.NOT_FOUND, f"{name} not found")
    if response.status_code in (401, 403):
        return ImportResult.failed(
            ImportFailureReason.UNAUTHORIZED, f"access to {name} denied"
        )
    if response.status_code >= 400:
        return ImportResult.failed(
            ImportFailureReason.INTERNAL_ERROR,
            f"registry returned HTTP {response.status_code} for {name}",
        )
    return None
