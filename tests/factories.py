"""Builders shared by the test modules."""

import json
from datetime import datetime, timedelta, timezone

from image_control_tower.images.enums import ReferenceKind
from image_control_tower.images.image import ImageRecord, manifest_digest
from image_control_tower.images.primitives import ObjectReference
from image_control_tower.images.stream import ImageStream, ImageStreamSpec, TagReference


class Clock:
    """Deterministic clock; every call advances one second."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def make_image(seed: str, repository: str = "registry.example.com/team/app") -> ImageRecord:
    """A content-addressed schema2 image with one layer."""
    manifest = json.dumps(
        {
            "schemaVersion": 2,
            "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
            "layers": [{"digest": f"sha256:{seed}", "size": 10}],
        },
        sort_keys=True,
    )
    digest = manifest_digest(manifest)
    return ImageRecord(
        name=digest,
        docker_image_reference=f"{repository}@{digest}",
        docker_image_manifest=manifest,
        docker_image_manifest_media_type="application/vnd.docker.distribution.manifest.v2+json",
    )


def docker_tag(name: str, source: str, generation=None, scheduled: bool = False) -> TagReference:
    return TagReference(
        name=name,
        from_=ObjectReference(kind=ReferenceKind.DOCKER_IMAGE, name=source),
        generation=generation,
        import_policy={"scheduled": scheduled},
    )


def reference_tag(name: str, target: str, generation=None) -> TagReference:
    return TagReference(
        name=name,
        from_=ObjectReference(kind=ReferenceKind.IMAGE_STREAM_TAG, name=target),
        reference=True,
        generation=generation,
    )


def make_stream(*tags: TagReference, name: str = "app", generation: int = 0) -> ImageStream:
    return ImageStream(
        namespace="default",
        name=name,
        generation=generation,
        spec=ImageStreamSpec(tags=list(tags)),
    )
