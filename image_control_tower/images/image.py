"""
Image and ImageSignature Schemas.

An Image is an immutable description of one container image at a point in
time. Signatures are attached and tracked separately by SignatureTracker;
the image itself is never rewritten.
"""

from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import ConfigDict, Field, ValidationError, constr, field_validator, model_validator

from .errors import ImageValidationError
from .primitives import (
    Base64Content,
    ImageAPIModel,
    ImageLayer,
    SignatureCondition,
    SignatureIssuer,
    SignatureSubject,
    utc_now,
)

DEFAULT_METADATA_VERSION = "1.0"

MEDIA_TYPE_SCHEMA1 = "application/vnd.docker.distribution.manifest.v1+json"
MEDIA_TYPE_SCHEMA1_SIGNED = "application/vnd.docker.distribution.manifest.v1+prettyjws"
MEDIA_TYPE_SCHEMA2 = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"

_SHA256_NAME = re.compile(r"^sha256:[a-f0-9]{64}$")


def manifest_digest(manifest: str) -> str:
    """Return the content address (``sha256:<hex>``) of a raw manifest."""
    return "sha256:" + hashlib.sha256(manifest.encode("utf-8")).hexdigest()


class DockerImageReference(ImageAPIModel):
    """A parsed pull spec: ``registry/namespace/name:tag@id``."""

    registry: str = ""
    namespace: str = ""
    name: str = ""
    tag: str = ""
    id: str = ""

    def exact(self) -> str:
        """Render the reference back into a pull spec."""
        parts = [p for p in (self.registry, self.namespace) if p]
        parts.append(self.name)
        spec = "/".join(parts)
        if self.tag:
            spec += f":{self.tag}"
        if self.id:
            spec += f"@{self.id}"
        return spec

    def repository(self) -> str:
        """Return ``namespace/name`` without registry, tag or id."""
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


def _looks_like_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def parse_docker_image_reference(spec: str) -> DockerImageReference:
    """Split a pull spec into its registry, namespace, name, tag and id.

    Raises:
        ImageValidationError: if the spec is empty or has an empty path segment.
    """
    if not spec or not spec.strip():
        raise ImageValidationError("image reference must not be empty")

    remainder, _, image_id = spec.strip().partition("@")
    components = remainder.split("/")
    if any(not c for c in components):
        raise ImageValidationError(f"invalid image reference {spec!r}")

    registry = ""
    if len(components) > 1 and _looks_like_registry(components[0]):
        registry = components.pop(0)

    last = components.pop()
    name, sep, tag = last.rpartition(":")
    if not sep:
        name, tag = last, ""
    if not name:
        raise ImageValidationError(f"invalid image reference {spec!r}")

    return DockerImageReference(
        registry=registry,
        namespace="/".join(components),
        name=name,
        tag=tag,
        id=image_id,
    )


class ImageRecord(ImageAPIModel):
    """An immutable representation of a container image and its metadata.

    Invariants:
    - Never mutated after creation (the model is frozen).
    - docker_image_layers keep the order of the manifest; consumers never reorder them.
    - A content-addressed name (``sha256:...``) matches the digest of the manifest.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["Image"] = Field(default="Image", description="Object type identifier")
    name: constr(min_length=1, max_length=256) = Field(
        ..., description="Opaque identity (content address or registry assigned)"
    )
    docker_image_reference: str = Field("", description="String that can be used to pull this image")
    docker_image_metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Metadata about this image"
    )
    docker_image_metadata_version: str = Field(
        DEFAULT_METADATA_VERSION, description="Version of the metadata; empty means 1.0"
    )
    docker_image_manifest: str = Field("", description="The raw manifest")
    docker_image_manifest_media_type: str = Field("", description="MediaType of the manifest")
    docker_image_layers: List[ImageLayer] = Field(
        default_factory=list, description="Layers from base to top, as the manifest dictates"
    )
    docker_image_signatures: List[Base64Content] = Field(
        default_factory=list, description="Opaque schema1 signature blobs"
    )
    docker_image_config: Optional[str] = Field(None, description="Raw config blob (schema2)")
    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp (UTC)")

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if value.startswith("sha256:") and not _SHA256_NAME.match(value):
            raise ValueError("sha256 image names must contain 64 lowercase hex digits")
        return value

    @field_validator("docker_image_metadata_version", mode="before")
    @classmethod
    def _default_metadata_version(cls, value: Optional[str]) -> str:
        return value or DEFAULT_METADATA_VERSION

    @model_validator(mode="after")
    def _check_content_address(self) -> "ImageRecord":
        if (
            self.docker_image_manifest
            and self.name.startswith("sha256:")
            and self.docker_image_manifest_media_type != MEDIA_TYPE_SCHEMA1_SIGNED
        ):
            digest = manifest_digest(self.docker_image_manifest)
            if digest != self.name:
                raise ValueError(
                    f"image name {self.name} does not match manifest digest {digest}"
                )
        return self

    def content_equals(self, other: "ImageRecord") -> bool:
        """Whether two records describe the same image (ignoring creation time)."""
        exclude = {"created_at"}
        return self.model_dump(exclude=exclude) == other.model_dump(exclude=exclude)

    def total_size(self) -> int:
        return sum(layer.size for layer in self.docker_image_layers)


class ImageCreate(ImageAPIModel):
    """Schema for registering a new Image."""

    name: constr(min_length=1, max_length=256)
    docker_image_reference: str = ""
    docker_image_metadata: Dict[str, Any] = Field(default_factory=dict)
    docker_image_metadata_version: str = DEFAULT_METADATA_VERSION
    docker_image_manifest: str = ""
    docker_image_manifest_media_type: str = ""
    docker_image_layers: List[ImageLayer] = Field(default_factory=list)
    docker_image_config: Optional[str] = None

    def to_record(self) -> ImageRecord:
        return ImageRecord(**self.model_dump())


def image_from_manifest(
    reference: str,
    manifest: str,
    media_type: str = "",
    config: Optional[str] = None,
) -> ImageRecord:
    """Build an ImageRecord from a raw manifest.

    The image name is the manifest's content address. Layers are taken in the
    order the manifest lists them.

    Raises:
        ImageValidationError: if the manifest is not a JSON object or lists a
            malformed layer.
    """
    try:
        document = json.loads(manifest)
    except ValueError as e:
        raise ImageValidationError(f"manifest for {reference} is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ImageValidationError(f"manifest for {reference} is not a JSON object")

    media_type = media_type or document.get("mediaType") or (
        MEDIA_TYPE_SCHEMA1 if document.get("schemaVersion") == 1 else MEDIA_TYPE_SCHEMA2
    )

    try:
        layers = _manifest_layers(document)
    except (KeyError, TypeError, AttributeError, ValueError) as e:
        raise ImageValidationError(f"manifest for {reference} has a malformed layer: {e!r}") from e

    metadata: Dict[str, Any] = {}
    if config:
        try:
            metadata = json.loads(config)
        except ValueError:
            metadata = {}
        if not isinstance(metadata, dict):
            metadata = {}

    parsed = parse_docker_image_reference(reference)
    digest = manifest_digest(manifest)
    pull_spec = DockerImageReference(
        registry=parsed.registry,
        namespace=parsed.namespace,
        name=parsed.name,
        id=digest,
    ).exact()

    try:
        return ImageRecord(
            name=digest,
            docker_image_reference=pull_spec,
            docker_image_manifest=manifest,
            docker_image_manifest_media_type=media_type,
            docker_image_layers=layers,
            docker_image_config=config,
            docker_image_metadata=metadata,
        )
    except ValidationError as e:
        raise ImageValidationError(f"manifest for {reference} is invalid: {e}") from e


def _manifest_layers(document: Dict[str, Any]) -> List[ImageLayer]:
    if "layers" in document:
        return [
            ImageLayer(
                name=layer["digest"],
                size=layer.get("size", 0),
                media_type=layer.get("mediaType", ""),
            )
            for layer in document["layers"]
        ]
    return [
        ImageLayer(name=layer["blobSum"], size=0, media_type="")
        for layer in document.get("fsLayers", [])
    ]


class ImageSignature(ImageAPIModel):
    """A signature of an image.

    ``type`` and ``content`` are supplied by the client and never change.
    Everything else is derived by the server, possibly long after creation; a
    signature with no conditions has simply not been evaluated yet.
    """

    kind: Literal["ImageSignature"] = Field(
        default="ImageSignature", description="Object type identifier"
    )
    name: constr(min_length=1, max_length=512) = Field(
        ..., description="'<image name>@<signature name>'"
    )
    image: constr(min_length=1, max_length=256) = Field(..., description="Signed image name")
    type: constr(min_length=1, max_length=64) = Field(..., description="Type of stored blob")
    content: Base64Content = Field(..., description="Opaque signature bytes")
    conditions: List[SignatureCondition] = Field(
        default_factory=list, description="Latest observations of the signature's state"
    )

    image_identity: Optional[str] = Field(
        None, description="Human readable image identity, e.g. a pull spec"
    )
    signed_claims: Dict[str, str] = Field(default_factory=dict, description="Claims from the signature")
    created: Optional[datetime] = Field(None, description="Signature creation time")
    issued_by: Optional[SignatureIssuer] = Field(None, description="Issuer of the signing key")
    issued_to: Optional[SignatureSubject] = Field(None, description="Subject of the signing key")


class ImageSignatureCreate(ImageAPIModel):
    """Schema for attaching a signature to an image."""

    type: constr(min_length=1, max_length=64)
    content: Base64Content
