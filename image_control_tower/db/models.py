"""
SQLAlchemy models for images, image signatures and image streams.

Spec and status of a stream are stored as JSON documents in their wire form;
``resource_version`` is the optimistic concurrency token that SQLAlchemy
checks and bumps on every update.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..images.image import ImageRecord, ImageSignature
from ..images.stream import ImageStream, ImageStreamSpec, ImageStreamStatus
from .base import Base


def _utc(value: datetime) -> datetime:
    if value is not None and value.tzinfo is None:
        # SQLite drops the offset; everything is stored in UTC
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: datetime) -> str:
    return _utc(value).isoformat() if value is not None else None


class ImageModel(Base):
    """SQLAlchemy model for immutable Image records."""

    __tablename__ = "images"

    name = Column(String(256), primary_key=True)
    docker_image_reference = Column(String(1024), nullable=False, default="")
    docker_image_metadata = Column(JSON, nullable=False, default=dict)
    docker_image_metadata_version = Column(String(16), nullable=False, default="1.0")
    docker_image_manifest = Column(Text, nullable=False, default="")
    docker_image_manifest_media_type = Column(String(256), nullable=False, default="")
    docker_image_layers = Column(JSON, nullable=False, default=list)
    docker_image_signatures = Column(JSON, nullable=False, default=list)
    docker_image_config = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    signatures = relationship(
        "ImageSignatureModel",
        back_populates="image",
        cascade="all, delete-orphan",
        order_by="ImageSignatureModel.created_at",
    )

    @classmethod
    def from_schema(cls, image: ImageRecord) -> "ImageModel":
        data = image.model_dump(mode="json")
        data.pop("kind")
        data["created_at"] = image.created_at
        return cls(**data)

    def to_schema(self) -> ImageRecord:
        return ImageRecord.model_validate(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "kind": "Image",
            "name": self.name,
            "docker_image_reference": self.docker_image_reference,
            "docker_image_metadata": self.docker_image_metadata,
            "docker_image_metadata_version": self.docker_image_metadata_version,
            "docker_image_manifest": self.docker_image_manifest,
            "docker_image_manifest_media_type": self.docker_image_manifest_media_type,
            "docker_image_layers": self.docker_image_layers,
            "docker_image_signatures": self.docker_image_signatures,
            "docker_image_config": self.docker_image_config,
            "created_at": _iso(self.created_at),
        }


class ImageSignatureModel(Base):
    """SQLAlchemy model for signatures attached to an image."""

    __tablename__ = "image_signatures"

    name = Column(String(512), primary_key=True)
    image_name = Column(
        String(256), ForeignKey("images.name", ondelete="CASCADE"), nullable=False, index=True
    )
    type = Column(String(64), nullable=False)
    content = Column(LargeBinary, nullable=False)
    conditions = Column(JSON, nullable=False, default=list)

    # Server-derived, populated once a verifier parsed the signature
    image_identity = Column(String(1024), nullable=True)
    signed_claims = Column(JSON, nullable=False, default=dict)
    signed_at = Column(DateTime(timezone=True), nullable=True)
    issued_by = Column(JSON, nullable=True)
    issued_to = Column(JSON, nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    image = relationship("ImageModel", back_populates="signatures")

    __mapper_args__ = {"version_id_col": version}

    def apply_schema(self, signature: ImageSignature) -> None:
        """Copy the server-derived fields of a signature onto this row."""
        data = signature.model_dump(mode="json", by_alias=True)
        self.conditions = data["conditions"]
        self.image_identity = signature.image_identity
        self.signed_claims = dict(signature.signed_claims)
        self.signed_at = signature.created
        self.issued_by = data["issuedBy"]
        self.issued_to = data["issuedTo"]

    def to_schema(self) -> ImageSignature:
        return ImageSignature.model_validate(
            {
                "name": self.name,
                "image": self.image_name,
                "type": self.type,
                "content": self.content,
                "conditions": self.conditions or [],
                "imageIdentity": self.image_identity,
                "signedClaims": self.signed_claims or {},
                "created": _utc(self.signed_at),
                "issuedBy": self.issued_by,
                "issuedTo": self.issued_to,
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return self.to_schema().model_dump(mode="json", by_alias=True)


class ImageStreamModel(Base):
    """SQLAlchemy model for ImageStream objects."""

    __tablename__ = "image_streams"

    id = Column(String(36), primary_key=True)
    namespace = Column(String(253), nullable=False, index=True)
    name = Column(String(253), nullable=False)

    # Stream-wide generation counter and optimistic concurrency token
    generation = Column(Integer, nullable=False, default=0)
    resource_version = Column(Integer, nullable=False)

    annotations = Column(JSON, nullable=False, default=dict)
    spec = Column(JSON, nullable=False, default=dict)
    status = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("namespace", "name", name="uq_image_streams_namespace_name"),
        Index("ix_image_streams_updated_at", "updated_at"),
    )
    __mapper_args__ = {"version_id_col": resource_version}

    def apply_schema(self, stream: ImageStream) -> None:
        """Copy spec, status, counter and annotations from a stream schema."""
        self.generation = stream.generation
        self.annotations = dict(stream.annotations)
        self.spec = stream.spec.model_dump(mode="json", by_alias=True)
        self.status = stream.status.model_dump(mode="json", by_alias=True)

    def to_schema(self) -> ImageStream:
        return ImageStream(
            namespace=self.namespace,
            name=self.name,
            generation=self.generation,
            resource_version=self.resource_version or 0,
            annotations=self.annotations or {},
            spec=ImageStreamSpec.model_validate(self.spec or {}),
            status=ImageStreamStatus.model_validate(self.status or {}),
            created_at=_utc(self.created_at) or datetime.now(timezone.utc),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "kind": "ImageStream",
            "namespace": self.namespace,
            "name": self.name,
            "generation": self.generation,
            "resource_version": self.resource_version,
            "annotations": self.annotations,
            "spec": self.spec,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
