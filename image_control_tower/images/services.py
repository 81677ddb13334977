"""
Database services for images, signatures and image streams.

Each service wraps one SQLAlchemy session. Writes are committed together with
their audit entry; stream writes are compare-and-swap on ``resource_version``.
"""

from typing import List, Optional, Tuple, Union

from sqlalchemy import desc
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..db.audit_service import AuditService
from ..db.models import ImageModel, ImageSignatureModel, ImageStreamModel
from .errors import (
    AlreadyExistsError,
    ConflictError,
    ImmutabilityError,
    NotFoundError,
)
from .history import TagEventHistory
from .image import ImageCreate, ImageRecord, ImageSignature
from .primitives import generate_ulid
from .reconciler import StreamReconciler
from .signatures import SignatureStore, SignatureTracker
from .stream import (
    ImageStream,
    ImageStreamCreate,
    ImageStreamImage,
    ImageStreamMapping,
    ImageStreamSpec,
    ImageStreamTag,
)


def stream_id(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


class ImageService:
    """Service for immutable Image records."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def create_image(self, image: Union[ImageCreate, ImageRecord]) -> ImageRecord:
        """Register an image.

        Registering an identical image again returns the stored record.

        Raises:
            ImmutabilityError: if an image with the same name but different
                content already exists.
        """
        record = image.to_record() if isinstance(image, ImageCreate) else image
        existing = self.db.get(ImageModel, record.name)
        if existing is not None:
            stored = existing.to_schema()
            if not stored.content_equals(record):
                raise ImmutabilityError("Image", record.name)
            return stored

        model = ImageModel.from_schema(record)
        self.db.add(model)
        self.audit.log_create("Image", record.name, model.to_dict())
        self.db.commit()
        self.db.refresh(model)
        return model.to_schema()

    def get_image(self, name: str) -> Optional[ImageRecord]:
        model = self.db.get(ImageModel, name)
        return model.to_schema() if model else None

    def list_images(self, limit: int = 100, offset: int = 0) -> List[ImageRecord]:
        models = (
            self.db.query(ImageModel)
            .order_by(desc(ImageModel.created_at), ImageModel.name)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [m.to_schema() for m in models]

    def delete_image(self, name: str) -> bool:
        model = self.db.get(ImageModel, name)
        if model is None:
            return False
        self.audit.log_delete("Image", name, model.to_dict())
        self.db.delete(model)
        self.db.commit()
        return True


class SqlSignatureStore(SignatureStore):
    """SignatureStore backed by the image_signatures table."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def get(self, signature_id: str) -> Optional[ImageSignature]:
        model = self.db.get(ImageSignatureModel, signature_id)
        return model.to_schema() if model else None

    def put(self, signature: ImageSignature) -> None:
        model = self.db.get(ImageSignatureModel, signature.name)
        if model is None:
            if self.db.get(ImageModel, signature.image) is None:
                raise NotFoundError("Image", signature.image)
            model = ImageSignatureModel(
                name=signature.name,
                image_name=signature.image,
                type=signature.type,
                content=signature.content,
            )
            model.apply_schema(signature)
            self.db.add(model)
            self.audit.log_create(
                "ImageSignature", signature.name, {"image": signature.image, "type": signature.type}
            )
        else:
            before = {"conditions": model.conditions}
            model.apply_schema(signature)
            self.audit.log_status_change(
                "ImageSignature", signature.name, before, {"conditions": model.conditions}
            )
        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise ConflictError(signature.name) from e

    def list_for_image(self, image_name: str) -> List[ImageSignature]:
        models = (
            self.db.query(ImageSignatureModel)
            .filter(ImageSignatureModel.image_name == image_name)
            .order_by(ImageSignatureModel.created_at, ImageSignatureModel.name)
            .all()
        )
        return [m.to_schema() for m in models]


def signature_tracker(db: Session, audit: Optional[AuditService] = None) -> SignatureTracker:
    """A SignatureTracker persisting to the database."""
    return SignatureTracker(SqlSignatureStore(db, audit))


class ImageStreamService:
    """Service for ImageStream objects and their tag views."""

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditService] = None,
        reconciler: Optional[StreamReconciler] = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.reconciler = reconciler or StreamReconciler()
        self.images = ImageService(db, self.audit)

    def _get_model(self, namespace: str, name: str) -> Optional[ImageStreamModel]:
        return (
            self.db.query(ImageStreamModel)
            .filter(
                ImageStreamModel.namespace == namespace,
                ImageStreamModel.name == name,
            )
            .first()
        )

    def _require(self, namespace: str, name: str) -> ImageStream:
        stream = self.get_stream(namespace, name)
        if stream is None:
            raise NotFoundError("ImageStream", stream_id(namespace, name))
        return stream

    def create_stream(self, stream: Union[ImageStreamCreate, ImageStream]) -> ImageStream:
        """Create a stream.

        Tag generations supplied by the client are recomputed by the next
        reconcile; the stream starts at generation 0.

        Raises:
            AlreadyExistsError: if the namespace already has a stream of that name.
        """
        if isinstance(stream, ImageStreamCreate):
            stream = stream.to_stream()
        if self._get_model(stream.namespace, stream.name) is not None:
            raise AlreadyExistsError("ImageStream", stream_id(stream.namespace, stream.name))

        stream = self.reconciler.merge_spec(stream.model_copy(update={"generation": 0}), stream.spec)
        model = ImageStreamModel(
            id=generate_ulid(),
            namespace=stream.namespace,
            name=stream.name,
            created_at=stream.created_at,
        )
        model.apply_schema(stream)
        self.db.add(model)
        self.db.flush()
        self.audit.log_create(
            "ImageStream", stream_id(stream.namespace, stream.name), model.to_dict()
        )
        self.db.commit()
        self.db.refresh(model)
        return model.to_schema()

    def get_stream(self, namespace: str, name: str) -> Optional[ImageStream]:
        model = self._get_model(namespace, name)
        return model.to_schema() if model else None

    def list_streams(
        self, namespace: Optional[str] = None, limit: int = 100, offset: int = 0
    ) -> List[ImageStream]:
        query = self.db.query(ImageStreamModel)
        if namespace:
            query = query.filter(ImageStreamModel.namespace == namespace)
        models = (
            query.order_by(ImageStreamModel.namespace, ImageStreamModel.name)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [m.to_schema() for m in models]

    def save_stream(
        self,
        stream: ImageStream,
        expected_version: int,
        note: Optional[str] = None,
    ) -> ImageStream:
        """Persist a stream if nobody wrote it since ``expected_version``.

        Raises:
            NotFoundError: if the stream was deleted.
            ConflictError: if the stored resource version differs.
        """
        key = stream_id(stream.namespace, stream.name)
        model = self._get_model(stream.namespace, stream.name)
        if model is None:
            raise NotFoundError("ImageStream", key)
        if model.resource_version != expected_version:
            raise ConflictError(key, expected_version)

        before = model.to_dict()
        model.apply_schema(stream)
        try:
            self.db.flush()
        except StaleDataError as e:
            self.db.rollback()
            raise ConflictError(key, expected_version) from e

        if before["spec"] == model.spec and before["generation"] == model.generation:
            self.audit.log_status_change(
                "ImageStream", key, {"status": before["status"]}, {"status": model.status}, note
            )
        else:
            self.audit.log_update("ImageStream", key, before, model.to_dict(), note)
        self.db.commit()
        self.db.refresh(model)
        return model.to_schema()

    def update_spec(
        self,
        namespace: str,
        name: str,
        spec: ImageStreamSpec,
        expected_version: Optional[int] = None,
    ) -> ImageStream:
        """Replace a stream's spec; tags whose source changed get a new generation later."""
        current = self._require(namespace, name)
        if expected_version is None:
            expected_version = current.resource_version
        updated = self.reconciler.merge_spec(current, spec)
        return self.save_stream(updated, expected_version)

    def delete_stream(self, namespace: str, name: str) -> bool:
        model = self._get_model(namespace, name)
        if model is None:
            return False
        self.audit.log_delete("ImageStream", stream_id(namespace, name), model.to_dict())
        self.db.delete(model)
        self.db.commit()
        return True

    def apply_mapping(self, mapping: ImageStreamMapping) -> ImageStream:
        """Register the mapped image and bind it to the tag (a push).

        Raises:
            NotFoundError: if the stream does not exist.
            ImmutabilityError: if the image name is taken by different content.
            StaleGenerationError: if the tag's head is newer than the stream counter.
        """
        current = self._require(mapping.namespace, mapping.name)
        image = self.images.create_image(mapping.image)
        updated = self.reconciler.tag_image(current, mapping.tag, image)
        saved = self.save_stream(updated, current.resource_version)
        self.audit.log_tag(stream_id(mapping.namespace, mapping.name), mapping.tag, image.name)
        self.db.commit()
        return saved

    def prune(
        self, namespace: str, name: str, tags: Optional[List[str]] = None
    ) -> Tuple[ImageStream, List[str]]:
        """Drop status history of tags that left the spec."""
        current = self._require(namespace, name)
        updated, removed = self.reconciler.prune(current, tags)
        if not removed:
            return current, removed
        saved = self.save_stream(updated, current.resource_version)
        self.audit.log_prune(stream_id(namespace, name), removed)
        self.db.commit()
        return saved, removed

    def get_stream_tag(self, namespace: str, name: str, tag: str) -> ImageStreamTag:
        """The image ``name:tag`` currently points at."""
        stream = self._require(namespace, name)
        history = TagEventHistory(stream.status)
        latest = history.latest(tag)
        tag_id = f"{name}:{tag}"
        if latest is None:
            raise NotFoundError("ImageStreamTag", tag_id)
        image = self._image_for(latest.image, latest.docker_image_reference, tag_id)
        entry = history.entry(tag)
        return ImageStreamTag(
            namespace=namespace,
            name=tag_id,
            image=image,
            generation=latest.generation,
            conditions=list(entry.conditions) if entry else [],
        )

    def get_stream_image(self, namespace: str, name: str, image_id: str) -> ImageStreamImage:
        """An image from the stream's history, by full name or unique prefix."""
        stream = self._require(namespace, name)
        event = TagEventHistory(stream.status).resolve_image(image_id)
        image_key = f"{name}@{image_id}"
        if event is None:
            raise NotFoundError("ImageStreamImage", image_key)
        image = self._image_for(event.image, event.docker_image_reference, image_key)
        return ImageStreamImage(namespace=namespace, name=f"{name}@{image.name}", image=image)

    def _image_for(self, image_name: str, pull_spec: str, object_id: str) -> ImageRecord:
        if image_name:
            image = self.images.get_image(image_name)
            if image is not None:
                return image
        if pull_spec and not image_name:
            # Bindings to an external pull spec carry no registered image.
            return ImageRecord(name=pull_spec, docker_image_reference=pull_spec)
        raise NotFoundError("Image", image_name or object_id)
