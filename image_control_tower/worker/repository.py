"""
Stream repositories for the import controller.

``save`` is a compare-and-swap on ``resource_version``: it fails with
ConflictError when the stored stream changed since it was read.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..images.errors import AlreadyExistsError, ConflictError, ImmutabilityError, NotFoundError
from ..images.image import ImageRecord
from ..images.services import ImageService, ImageStreamService, stream_id
from ..images.stream import ImageStream


class StreamRepository(ABC):
    """Storage for image streams and the images they import."""

    @abstractmethod
    def get(self, namespace: str, name: str) -> Optional[ImageStream]:
        """Return a stream, or None."""

    @abstractmethod
    def list(self, namespace: Optional[str] = None) -> List[ImageStream]:
        """Return all streams, optionally of one namespace."""

    @abstractmethod
    def create(self, stream: ImageStream) -> ImageStream:
        """Store a new stream."""

    @abstractmethod
    def save(self, stream: ImageStream, expected_version: int) -> ImageStream:
        """Store a stream if its stored version is ``expected_version``."""

    @abstractmethod
    def delete(self, namespace: str, name: str) -> bool:
        """Remove a stream."""

    @abstractmethod
    def put_image(self, image: ImageRecord) -> ImageRecord:
        """Register an imported image (idempotent for identical content)."""


class InMemoryStreamRepository(StreamRepository):
    def __init__(self) -> None:
        self._streams: Dict[Tuple[str, str], ImageStream] = {}
        self._images: Dict[str, ImageRecord] = {}
        self._lock = threading.Lock()

    def get(self, namespace: str, name: str) -> Optional[ImageStream]:
        stream = self._streams.get((namespace, name))
        return stream.model_copy(deep=True) if stream else None

    def list(self, namespace: Optional[str] = None) -> List[ImageStream]:
        return [
            s.model_copy(deep=True)
            for key, s in sorted(self._streams.items())
            if namespace is None or key[0] == namespace
        ]

    def create(self, stream: ImageStream) -> ImageStream:
        with self._lock:
            if stream.key in self._streams:
                raise AlreadyExistsError("ImageStream", stream_id(*stream.key))
            stored = stream.model_copy(deep=True, update={"resource_version": 1})
            self._streams[stream.key] = stored
        return stored.model_copy(deep=True)

    def save(self, stream: ImageStream, expected_version: int) -> ImageStream:
        with self._lock:
            current = self._streams.get(stream.key)
            if current is None:
                raise NotFoundError("ImageStream", stream_id(*stream.key))
            if current.resource_version != expected_version:
                raise ConflictError(stream_id(*stream.key), expected_version)
            stored = stream.model_copy(
                deep=True, update={"resource_version": expected_version + 1}
            )
            self._streams[stream.key] = stored
        return stored.model_copy(deep=True)

    def delete(self, namespace: str, name: str) -> bool:
        with self._lock:
            return self._streams.pop((namespace, name), None) is not None

    def put_image(self, image: ImageRecord) -> ImageRecord:
        with self._lock:
            stored = self._images.setdefault(image.name, image)
        if not stored.content_equals(image):
            raise ImmutabilityError("Image", image.name)
        return stored

    def get_image(self, name: str) -> Optional[ImageRecord]:
        return self._images.get(name)


class SqlStreamRepository(StreamRepository):
    """Repository over the database services, one session per call."""

    def __init__(self, session_factory: Callable[[], Session], actor_id: str = "import-controller"):
        self.session_factory = session_factory
        self.actor_id = actor_id

    def _streams(self, db: Session) -> ImageStreamService:
        audit = AuditService(db, actor_kind="controller", actor_id=self.actor_id)
        return ImageStreamService(db, audit)

    def get(self, namespace: str, name: str) -> Optional[ImageStream]:
        db = self.session_factory()
        try:
            return self._streams(db).get_stream(namespace, name)
        finally:
            db.close()

    def list(self, namespace: Optional[str] = None) -> List[ImageStream]:
        db = self.session_factory()
        try:
            return self._streams(db).list_streams(namespace, limit=10_000)
        finally:
            db.close()

    def create(self, stream: ImageStream) -> ImageStream:
        db = self.session_factory()
        try:
            return self._streams(db).create_stream(stream)
        finally:
            db.close()

    def save(self, stream: ImageStream, expected_version: int) -> ImageStream:
        db = self.session_factory()
        try:
            return self._streams(db).save_stream(stream, expected_version)
        finally:
            db.close()

    def delete(self, namespace: str, name: str) -> bool:
        db = self.session_factory()
        try:
            return self._streams(db).delete_stream(namespace, name)
        finally:
            db.close()

    def put_image(self, image: ImageRecord) -> ImageRecord:
        db = self.session_factory()
        try:
            audit = AuditService(db, actor_kind="controller", actor_id=self.actor_id)
            return ImageService(db, audit).create_image(image)
        finally:
            db.close()
