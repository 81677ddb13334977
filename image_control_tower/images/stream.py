"""
ImageStream Schemas.

An ImageStream maps tag names to images. Its spec holds the desired tags
(TagReference); its status holds, per tag, the history of images the tag has
pointed to, most recent first (NamedTagEventList).
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import Field, constr, field_validator

from .image import ImageRecord
from .primitives import (
    ImageAPIModel,
    ObjectReference,
    TagEvent,
    TagEventCondition,
    TagImportPolicy,
    utc_now,
)


class TagReference(ImageAPIModel):
    """Desired state for one tag.

    A generation of None (legacy clients) or 0 means "the server must assign a
    new generation"; both are treated the same way.
    """

    name: constr(min_length=1, max_length=128) = Field(..., description="Tag name")
    annotations: Dict[str, str] = Field(
        default_factory=dict, description="Annotations applied to images using this tag"
    )
    from_: Optional[ObjectReference] = Field(
        None, alias="from", description="Object this tag should track"
    )
    reference: bool = Field(
        False, description="Track the source in-stream instead of importing it"
    )
    generation: Optional[int] = Field(
        None, ge=0, description="Stream generation that last updated this tag"
    )
    import_policy: TagImportPolicy = Field(
        default_factory=TagImportPolicy, description="How images may be imported"
    )

    def source_equals(self, other: "TagReference") -> bool:
        """Whether two references would import the same thing the same way."""
        return (
            self.from_ == other.from_
            and self.reference == other.reference
            and self.import_policy == other.import_policy
        )


def _unique(names: List[str], what: str) -> None:
    seen = set()
    for name in names:
        if name in seen:
            raise ValueError(f"duplicate {what} {name!r}")
        seen.add(name)


class ImageStreamSpec(ImageAPIModel):
    """Desired state of an image stream."""

    docker_image_repository: str = Field(
        "", description="If set, the stream is backed by this repository"
    )
    tags: List[TagReference] = Field(default_factory=list, description="Desired tags")

    @field_validator("tags")
    @classmethod
    def _unique_tag_names(cls, tags: List[TagReference]) -> List[TagReference]:
        _unique([t.name for t in tags], "spec tag")
        return tags

    def get_tag(self, name: str) -> Optional[TagReference]:
        for tag in self.tags:
            if tag.name == name:
                return tag
        return None

    def tag_names(self) -> List[str]:
        return [t.name for t in self.tags]


class NamedTagEventList(ImageAPIModel):
    """A tag's image history (index 0 is current) and its conditions."""

    tag: constr(min_length=1, max_length=128) = Field(..., description="Tag name")
    items: List[TagEvent] = Field(default_factory=list, description="Most recent first")
    conditions: List[TagEventCondition] = Field(
        default_factory=list, description="Conditions that apply to this tag"
    )

    @field_validator("items")
    @classmethod
    def _most_recent_first(cls, items: List[TagEvent]) -> List[TagEvent]:
        for newer, older in zip(items, items[1:]):
            if newer.generation < older.generation:
                raise ValueError(
                    "tag events must be ordered by non-increasing generation"
                )
        return items


class ImageStreamStatus(ImageAPIModel):
    """Observed state of an image stream."""

    docker_image_repository: str = Field(
        "", description="Effective location the stream may be accessed at"
    )
    tags: List[NamedTagEventList] = Field(
        default_factory=list, description="Historical record of images per tag"
    )

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, tags: List[NamedTagEventList]) -> List[NamedTagEventList]:
        _unique([t.tag for t in tags], "status tag")
        return tags

    def get_tag(self, name: str) -> Optional[NamedTagEventList]:
        for entry in self.tags:
            if entry.tag == name:
                return entry
        return None


class ImageStream(ImageAPIModel):
    """A named mapping of tags to images.

    Invariants:
    - ``generation`` is the stream-wide counter; it is never lower than any
      generation assigned to a spec tag.
    - ``resource_version`` changes on every persisted write and guards
      read-modify-write cycles.
    """

    kind: Literal["ImageStream"] = Field(default="ImageStream", description="Object type identifier")
    namespace: constr(min_length=1, max_length=253) = Field("default", description="Namespace")
    name: constr(min_length=1, max_length=253) = Field(..., description="Stream name")
    generation: int = Field(0, ge=0, description="Stream-wide generation counter")
    resource_version: int = Field(0, ge=0, description="Optimistic concurrency token")
    annotations: Dict[str, str] = Field(default_factory=dict)
    spec: ImageStreamSpec = Field(default_factory=ImageStreamSpec)
    status: ImageStreamStatus = Field(default_factory=ImageStreamStatus)
    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp (UTC)")

    @property
    def key(self) -> Tuple[str, str]:
        return (self.namespace, self.name)

    def max_generation(self) -> int:
        assigned = [t.generation or 0 for t in self.spec.tags]
        return max([self.generation, *assigned])

    def next_generation(self) -> int:
        """Advance the stream counter and return the new generation."""
        self.generation = self.max_generation() + 1
        return self.generation

    def has_scheduled_tags(self) -> bool:
        return any(
            t.import_policy.scheduled and not t.reference and t.from_ is not None
            for t in self.spec.tags
        )


class ImageStreamCreate(ImageAPIModel):
    """Schema for creating a new ImageStream."""

    namespace: constr(min_length=1, max_length=253) = "default"
    name: constr(min_length=1, max_length=253)
    annotations: Dict[str, str] = Field(default_factory=dict)
    spec: ImageStreamSpec = Field(default_factory=ImageStreamSpec)

    def to_stream(self) -> ImageStream:
        return ImageStream(
            namespace=self.namespace,
            name=self.name,
            annotations=self.annotations,
            spec=self.spec,
        )


class ImageStreamMapping(ImageAPIModel):
    """Binds one tag of a stream to a (pushed) image."""

    kind: Literal["ImageStreamMapping"] = Field(default="ImageStreamMapping")
    namespace: constr(min_length=1, max_length=253) = "default"
    name: constr(min_length=1, max_length=253) = Field(..., description="Target stream name")
    image: ImageRecord = Field(..., description="The image being tagged")
    tag: constr(min_length=1, max_length=128) = Field(..., description="Tag to bind")


class ImageStreamTag(ImageAPIModel):
    """The image a stream tag currently points at (``stream:tag``)."""

    kind: Literal["ImageStreamTag"] = Field(default="ImageStreamTag")
    namespace: str
    name: str = Field(..., description="'<stream>:<tag>'")
    image: ImageRecord
    generation: int
    conditions: List[TagEventCondition] = Field(default_factory=list)


class ImageStreamImage(ImageAPIModel):
    """An image found in a stream's history (``stream@id``)."""

    kind: Literal["ImageStreamImage"] = Field(default="ImageStreamImage")
    namespace: str
    name: str = Field(..., description="'<stream>@<image id>'")
    image: ImageRecord
