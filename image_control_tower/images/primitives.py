"""
Image API Common Primitives.

These are the building blocks shared by images, signatures and image streams.
Every model serializes with camelCase field names and ignores unknown fields,
so additive fields written by newer servers never break older readers.
"""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer, constr
from pydantic.alias_generators import to_camel
from ulid import ULID

from .enums import ConditionStatus, ReferenceKind, TagEventConditionType


def generate_ulid() -> str:
    """Generate a ULID for object IDs.

    ULIDs are lexicographically sortable and globally unique.
    """
    return str(ULID())


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _decode_base64(value):
    if isinstance(value, str):
        return base64.b64decode(value, validate=True)
    return value


# Raw bytes in Python, base64 text on the wire.
Base64Content = Annotated[
    bytes,
    BeforeValidator(_decode_base64),
    PlainSerializer(
        lambda value: base64.b64encode(value).decode("ascii"),
        return_type=str,
        when_used="json",
    ),
]


class ImageAPIModel(BaseModel):
    """Base for every image API record."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class ObjectReference(ImageAPIModel):
    """Points a TagReference at a DockerImage, ImageStreamTag or ImageStreamImage."""

    kind: ReferenceKind = Field(..., description="Kind of the referenced object")
    name: constr(min_length=1, max_length=1024) = Field(
        ..., description="Pull spec, 'stream:tag' or 'stream@image'"
    )
    namespace: Optional[constr(max_length=253)] = Field(
        None, description="Namespace of the referenced stream (same stream if empty)"
    )


class ImageLayer(ImageAPIModel):
    """A single layer of an image. Some images have many, some none."""

    model_config = ConfigDict(frozen=True)

    name: constr(min_length=1, max_length=512) = Field(
        ..., description="Name of the layer as defined by the underlying store"
    )
    size: int = Field(..., ge=0, description="Size in bytes")
    media_type: str = Field("", description="MediaType of the referenced object")


class SignatureGenericEntity(ImageAPIModel):
    """Person or entity who is an issuer or subject of a signing key."""

    organization: Optional[str] = Field(None, description="Organization name")
    common_name: Optional[str] = Field(
        None, description="Common name (e.g. openshift-signing-service)"
    )


class SignatureIssuer(SignatureGenericEntity):
    """Issuer of the signing certificate or key."""


class SignatureSubject(SignatureGenericEntity):
    """Person or entity who created the signature."""

    public_key_id: Optional[str] = Field(
        None,
        alias="publicKeyID",
        description="Human readable id of the subject's public key (>= 64 low bits of the fingerprint)",
    )


class SignatureCondition(ImageAPIModel):
    """Observation of a signature's state at a particular probe time."""

    type: constr(min_length=1, max_length=64) = Field(..., description="Condition type")
    status: ConditionStatus = Field(..., description="True, False or Unknown")
    last_probe_time: datetime = Field(
        default_factory=utc_now, description="Last time the condition was checked"
    )
    last_transition_time: datetime = Field(
        default_factory=utc_now,
        description="Last time the condition moved from one status to another",
    )
    reason: str = Field("", description="Brief reason for the last transition")
    message: str = Field("", description="Human readable details")


class TagEvent(ImageAPIModel):
    """One binding of a tag to an image, produced by a given generation."""

    model_config = ConfigDict(frozen=True)

    created: datetime = Field(default_factory=utc_now, description="When the event was created")
    docker_image_reference: str = Field(
        "", description="String that can be used to pull this image"
    )
    image: str = Field("", description="Image identity")
    generation: int = Field(..., ge=0, description="Spec tag generation that produced this binding")


class TagEventCondition(ImageAPIModel):
    """Condition information for a tag event list."""

    type: TagEventConditionType = Field(
        TagEventConditionType.IMPORT_SUCCESS, description="Condition type"
    )
    status: ConditionStatus = Field(..., description="True, False or Unknown")
    last_transition_time: datetime = Field(
        default_factory=utc_now,
        description="Last time the condition moved from one status to another",
    )
    reason: str = Field("", description="Brief reason for the last transition")
    message: str = Field("", description="Human readable details")
    generation: int = Field(..., ge=0, description="Spec tag generation this status corresponds to")


class TagImportPolicy(ImageAPIModel):
    """Controls how images may be imported by the server."""

    insecure: bool = Field(
        False, description="Server may bypass certificate verification or use plain HTTP"
    )
    scheduled: bool = Field(
        False, description="Tag is periodically re-checked and imported"
    )
