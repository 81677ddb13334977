"""
Tests for the database services.

Verifies:
- Images are immutable and idempotently registered
- Signatures persist with their conditions
- Stream writes are compare-and-swap on resource_version
- Pushes, tag views and pruning
- The SQL repository drives the import controller end to end
"""

import pytest

from image_control_tower.db.audit_service import AuditService
from image_control_tower.images.enums import ConditionStatus, ReferenceKind
from image_control_tower.images.errors import (
    AlreadyExistsError,
    ConflictError,
    ImmutabilityError,
    NotFoundError,
)
from image_control_tower.images.primitives import ObjectReference, SignatureCondition
from image_control_tower.images.reconciler import ImportOutcome, StreamReconciler
from image_control_tower.images.services import ImageService, ImageStreamService, signature_tracker
from image_control_tower.images.stream import (
    ImageStreamCreate,
    ImageStreamMapping,
    ImageStreamSpec,
    TagReference,
)
from image_control_tower.worker.controller import ImportController
from image_control_tower.worker.importer import StaticImporter
from image_control_tower.worker.repository import SqlStreamRepository

from factories import docker_tag, make_image


@pytest.fixture
def images(db_session) -> ImageService:
    return ImageService(db_session)


@pytest.fixture
def streams(db_session) -> ImageStreamService:
    return ImageStreamService(db_session)


def create_app_stream(streams, *tags):
    return streams.create_stream(ImageStreamCreate(name="app", spec=ImageStreamSpec(tags=list(tags))))


class TestImageService:
    def test_create_and_get(self, images):
        image = make_image("a")

        created = images.create_image(image)

        assert created.content_equals(image)
        assert images.get_image(image.name).content_equals(image)

    def test_create_identical_is_idempotent(self, images, db_session):
        image = make_image("a")
        images.create_image(image)

        images.create_image(image)

        assert len(images.list_images()) == 1
        assert len(AuditService(db_session).query_by_entity("Image", image.name)) == 1

    def test_different_content_under_same_name_is_rejected(self, images):
        image = make_image("a")
        images.create_image(image)
        tampered = image.model_copy(update={"docker_image_reference": "elsewhere/app"})

        with pytest.raises(ImmutabilityError):
            images.create_image(tampered)

    def test_delete(self, images):
        image = make_image("a")
        images.create_image(image)

        assert images.delete_image(image.name) is True
        assert images.get_image(image.name) is None
        assert images.delete_image(image.name) is False


class TestSignatureStore:
    def test_attach_requires_image(self, db_session):
        tracker = signature_tracker(db_session)

        with pytest.raises(NotFoundError):
            tracker.attach_signature("sha256:" + "f" * 64, "atomic", b"blob")

    def test_verification_is_persisted(self, db_session, images):
        image = images.create_image(make_image("a"))
        tracker = signature_tracker(db_session)
        signature_id = tracker.attach_signature(image, "atomic", b"blob")

        tracker.record_verification(
            signature_id, SignatureCondition(type="Verified", status=ConditionStatus.TRUE)
        )

        stored = signature_tracker(db_session).get(signature_id)
        assert stored.content == b"blob"
        assert stored.conditions[0].status == ConditionStatus.TRUE
        actions = [e.action for e in AuditService(db_session).query_by_entity("ImageSignature", signature_id)]
        assert sorted(actions) == ["created", "status_changed"]

    def test_signatures_listed_per_image(self, db_session, images):
        first = images.create_image(make_image("a"))
        second = images.create_image(make_image("b"))
        tracker = signature_tracker(db_session)
        tracker.attach_signature(first, "atomic", b"one")
        tracker.attach_signature(first, "atomic", b"two")
        tracker.attach_signature(second, "atomic", b"one")

        assert len(tracker.signatures_for(first)) == 2
        assert len(tracker.signatures_for(second.name)) == 1


class TestImageStreamService:
    def test_create_resets_generations(self, streams):
        created = create_app_stream(streams, docker_tag("latest", "example.com/app", generation=7))

        assert created.generation == 0
        assert created.resource_version == 1
        assert created.spec.get_tag("latest").generation is None

    def test_create_duplicate(self, streams):
        create_app_stream(streams)

        with pytest.raises(AlreadyExistsError):
            create_app_stream(streams)

    def test_same_name_in_other_namespace(self, streams):
        create_app_stream(streams)

        other = streams.create_stream(ImageStreamCreate(namespace="team-b", name="app"))

        assert other.namespace == "team-b"
        assert [s.namespace for s in streams.list_streams()] == ["default", "team-b"]
        assert len(streams.list_streams("team-b")) == 1

    def test_save_bumps_resource_version(self, streams):
        stream = create_app_stream(streams, docker_tag("latest", "example.com/app"))
        pending = StreamReconciler().reconcile(stream).stream

        saved = streams.save_stream(pending, stream.resource_version)

        assert saved.resource_version == 2
        assert saved.generation == 1

    def test_save_with_stale_version_conflicts(self, streams):
        stream = create_app_stream(streams, docker_tag("latest", "example.com/app"))
        pending = StreamReconciler().reconcile(stream).stream
        streams.save_stream(pending, stream.resource_version)

        with pytest.raises(ConflictError):
            streams.save_stream(pending, stream.resource_version)

    def test_save_deleted_stream(self, streams):
        stream = create_app_stream(streams)
        streams.delete_stream("default", "app")

        with pytest.raises(NotFoundError):
            streams.save_stream(stream, stream.resource_version)

    def test_update_spec_with_expected_version(self, streams):
        stream = create_app_stream(streams, docker_tag("latest", "example.com/app:1"))
        spec = ImageStreamSpec(tags=[docker_tag("latest", "example.com/app:2")])

        updated = streams.update_spec("default", "app", spec, expected_version=stream.resource_version)

        assert updated.spec.get_tag("latest").from_.name == "example.com/app:2"
        with pytest.raises(ConflictError):
            streams.update_spec("default", "app", spec, expected_version=stream.resource_version)

    def test_update_spec_unknown_stream(self, streams):
        with pytest.raises(NotFoundError):
            streams.update_spec("default", "missing", ImageStreamSpec())

    def test_status_only_write_is_audited_as_status_change(self, streams, db_session):
        stream = create_app_stream(streams, docker_tag("latest", "example.com/app", generation=None))
        pending = streams.save_stream(StreamReconciler().reconcile(stream).stream, stream.resource_version)
        done = StreamReconciler().apply_outcome(pending, ImportOutcome.success("latest", 1, make_image("a")))
        streams.save_stream(done, pending.resource_version, note="import outcome")

        newest = AuditService(db_session).query_by_entity("ImageStream", "default/app")[0]
        assert newest.action == "status_changed"
        assert newest.note == "import outcome"

    def test_push_binds_tag(self, streams, db_session):
        create_app_stream(streams)
        image = make_image("pushed")

        stream = streams.apply_mapping(ImageStreamMapping(name="app", tag="latest", image=image))

        head = stream.status.get_tag("latest").items[0]
        assert head.image == image.name
        assert head.generation == 0
        assert streams.images.get_image(image.name) is not None
        tagged = AuditService(db_session).query_by_action("tagged")
        assert tagged[0].after == {"tag": "latest", "image": image.name}

    def test_push_to_missing_stream(self, streams):
        with pytest.raises(NotFoundError):
            streams.apply_mapping(ImageStreamMapping(name="nope", tag="latest", image=make_image("a")))

    def test_stream_tag_view(self, streams):
        create_app_stream(streams)
        image = make_image("pushed")
        streams.apply_mapping(ImageStreamMapping(name="app", tag="latest", image=image))

        view = streams.get_stream_tag("default", "app", "latest")

        assert view.name == "app:latest"
        assert view.image.name == image.name

        with pytest.raises(NotFoundError):
            streams.get_stream_tag("default", "app", "missing")

    def test_stream_tag_view_of_external_pull_spec(self, streams):
        stream = create_app_stream(
            streams,
            TagReference(
                name="base",
                reference=True,
                from_=ObjectReference(kind=ReferenceKind.DOCKER_IMAGE, name="example.com/base:1"),
            ),
        )
        streams.save_stream(StreamReconciler().reconcile(stream).stream, stream.resource_version)

        view = streams.get_stream_tag("default", "app", "base")

        assert view.image.docker_image_reference == "example.com/base:1"

    def test_stream_image_by_prefix(self, streams):
        create_app_stream(streams)
        image = make_image("pushed")
        streams.apply_mapping(ImageStreamMapping(name="app", tag="latest", image=image))

        view = streams.get_stream_image("default", "app", image.name[:20])

        assert view.name == f"app@{image.name}"
        with pytest.raises(NotFoundError):
            streams.get_stream_image("default", "app", "sha256:ffff")

    def test_prune(self, streams):
        create_app_stream(streams)
        streams.apply_mapping(ImageStreamMapping(name="app", tag="old", image=make_image("a")))

        stream, removed = streams.prune("default", "app")

        assert removed == ["old"]
        assert stream.status.get_tag("old") is None
        assert streams.prune("default", "app")[1] == []


class TestSqlStreamRepository:
    @pytest.mark.asyncio
    async def test_controller_over_database(self, session_factory):
        repository = SqlStreamRepository(session_factory)
        repository.create(
            ImageStreamCreate(
                name="app", spec=ImageStreamSpec(tags=[docker_tag("latest", "example.com/app:1")])
            ).to_stream()
        )
        image = make_image("a")
        controller = ImportController(repository, StaticImporter({"example.com/app:1": image}))

        await controller.sync("default", "app")
        await controller.wait_idle()

        stream = repository.get("default", "app")
        assert stream.status.get_tag("latest").items[0].image == image.name
        assert stream.resource_version == 3
        db = session_factory()
        try:
            actors = {e.actor_kind for e in AuditService(db).query_by_entity("ImageStream", "default/app")}
            assert actors == {"controller"}
            assert ImageService(db).get_image(image.name) is not None
        finally:
            db.close()

    def test_conflicting_save(self, session_factory):
        repository = SqlStreamRepository(session_factory)
        stream = repository.create(ImageStreamCreate(name="app").to_stream())
        stream.annotations["owner"] = "team-a"
        repository.save(stream, stream.resource_version)

        with pytest.raises(ConflictError):
            repository.save(stream, stream.resource_version)

    def test_list_and_delete(self, session_factory):
        repository = SqlStreamRepository(session_factory)
        repository.create(ImageStreamCreate(name="app").to_stream())
        repository.create(ImageStreamCreate(namespace="other", name="web").to_stream())

        assert [s.name for s in repository.list()] == ["app", "web"]
        assert [s.name for s in repository.list("other")] == ["web"]
        assert repository.delete("default", "app") is True
        assert repository.get("default", "app") is None
