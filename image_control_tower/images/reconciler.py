"""
Image stream reconciliation.

StreamReconciler compares a stream's desired tags with its recorded history,
assigns generations to tags that need an import, and folds import outcomes
back into the history and the ImportSuccess conditions.

All methods work on a copy of the stream they are given and return the
updated copy; persisting it (and serializing writers) is the caller's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Set, Tuple

from pydantic import ConfigDict, Field

from .conditions import TagConditionTracker
from .enums import ConditionStatus, ImportFailureReason, ReferenceKind, TagEventConditionType
from .errors import CyclicReferenceError, InvalidReferenceError, StaleGenerationError
from .history import TagEventHistory
from .image import ImageRecord
from .primitives import ImageAPIModel, ObjectReference, TagEvent, utc_now
from .stream import ImageStream, ImageStreamSpec, TagReference

logger = logging.getLogger(__name__)

IMPORT_SUCCESS = TagEventConditionType.IMPORT_SUCCESS


class ImportRequest(ImageAPIModel):
    """Ask the import collaborator to resolve one tag at one generation."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    stream: str
    tag: str
    from_: ObjectReference = Field(..., alias="from")
    insecure: bool = False
    generation: int

    @property
    def key(self) -> Tuple[str, int]:
        return (self.tag, self.generation)


class ImportOutcome(ImageAPIModel):
    """Result of one import request: an image, or a reason and message."""

    tag: str
    generation: int
    image: Optional[ImageRecord] = None
    reason: str = ""
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.image is not None

    @classmethod
    def success(cls, tag: str, generation: int, image: ImageRecord) -> "ImportOutcome":
        return cls(tag=tag, generation=generation, image=image)

    @classmethod
    def failure(
        cls, tag: str, generation: int, reason: str, message: str = ""
    ) -> "ImportOutcome":
        return cls(tag=tag, generation=generation, reason=reason, message=message)


@dataclass
class ReconcileResult:
    stream: ImageStream
    requests: List[ImportRequest] = field(default_factory=list)


class StreamReconciler:
    """Generation assignment and outcome folding for one stream at a time."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock

    # ------------------------------------------------------------------
    # Spec side
    # ------------------------------------------------------------------

    def reconcile(
        self,
        stream: ImageStream,
        in_flight: Iterable[Tuple[str, int]] = (),
        recheck: bool = False,
    ) -> ReconcileResult:
        """Decide which tags need an import and resolve reference tags.

        Args:
            stream: Current stream (not modified).
            in_flight: ``(tag, generation)`` pairs whose import is still running.
            recheck: Also re-import tags whose import policy is scheduled.

        Returns:
            The updated stream and one ImportRequest per tag to import.
        """
        updated = stream.model_copy(deep=True)
        history = TagEventHistory(updated.status)
        conditions = TagConditionTracker(history)
        running: Set[Tuple[str, int]] = set(in_flight)
        requests: List[ImportRequest] = []

        for tag in updated.spec.tags:
            if tag.reference:
                self._reconcile_reference(updated, tag, history, conditions)
                continue

            if tag.from_ is None:
                # Populated only by pushes (ImageStreamMapping).
                continue

            if not self._needs_import(tag, history, conditions, running, recheck):
                continue

            tag.generation = updated.next_generation()
            requests.append(
                ImportRequest(
                    namespace=updated.namespace,
                    stream=updated.name,
                    tag=tag.name,
                    from_=tag.from_,
                    insecure=tag.import_policy.insecure,
                    generation=tag.generation,
                )
            )
            logger.info(
                "Tag %s/%s:%s pending import at generation %d",
                updated.namespace, updated.name, tag.name, tag.generation,
            )

        return ReconcileResult(stream=updated, requests=requests)

    def _needs_import(
        self,
        tag: TagReference,
        history: TagEventHistory,
        conditions: TagConditionTracker,
        running: Set[Tuple[str, int]],
        recheck: bool,
    ) -> bool:
        if tag.generation and (tag.name, tag.generation) in running:
            return False
        if recheck and tag.import_policy.scheduled:
            return True
        if not tag.generation:
            return True

        latest = history.latest(tag.name)
        if latest is not None and latest.generation == tag.generation:
            return False

        # Re-import of an unchanged image records success without a new event.
        condition = conditions.get_condition(tag.name, IMPORT_SUCCESS)
        if (
            condition is not None
            and condition.generation == tag.generation
            and condition.status == ConditionStatus.TRUE
        ):
            return False
        return True

    def _reconcile_reference(
        self,
        stream: ImageStream,
        tag: TagReference,
        history: TagEventHistory,
        conditions: TagConditionTracker,
    ) -> None:
        if not tag.generation:
            tag.generation = stream.next_generation()
        now = self.clock()

        try:
            target = self.resolve_reference(stream, tag.name, history)
        except CyclicReferenceError as e:
            logger.warning("Tag %s/%s:%s: %s", stream.namespace, stream.name, tag.name, e)
            conditions.set_condition(
                tag.name, IMPORT_SUCCESS, ConditionStatus.FALSE,
                reason=ImportFailureReason.CYCLIC_REFERENCE.value,
                message=e.message, generation=tag.generation, now=now,
            )
            return
        except InvalidReferenceError as e:
            conditions.set_condition(
                tag.name, IMPORT_SUCCESS, ConditionStatus.FALSE,
                reason=ImportFailureReason.INVALID_REFERENCE.value,
                message=e.message, generation=tag.generation, now=now,
            )
            return

        if target is None:
            return

        latest = history.latest(tag.name)
        if not _same_binding(latest, target.image, target.docker_image_reference):
            try:
                history.append(
                    tag.name,
                    TagEvent(
                        created=now,
                        docker_image_reference=target.docker_image_reference,
                        image=target.image,
                        generation=tag.generation,
                    ),
                )
            except StaleGenerationError as e:
                logger.info("Discarding reference binding: %s", e)
                return

        conditions.set_condition(
            tag.name, IMPORT_SUCCESS, ConditionStatus.TRUE,
            generation=tag.generation, now=now,
        )

    def resolve_reference(
        self,
        stream: ImageStream,
        tag_name: str,
        history: Optional[TagEventHistory] = None,
    ) -> Optional[TagEvent]:
        """Follow a chain of reference tags to the binding it ends at.

        Returns None when the chain ends at a tag that has no history yet.

        Raises:
            CyclicReferenceError: if the chain revisits a tag.
            InvalidReferenceError: if a link leaves the stream or has no source.
        """
        history = history or TagEventHistory(stream.status)
        visited: List[str] = []
        name = tag_name

        while True:
            if name in visited:
                raise CyclicReferenceError(visited + [name])
            visited.append(name)

            tag = stream.spec.get_tag(name)
            if tag is None or not tag.reference:
                return history.latest(name)

            source = tag.from_
            if source is None:
                raise InvalidReferenceError(f"reference tag {name!r} has no source")

            if source.kind == ReferenceKind.DOCKER_IMAGE:
                return TagEvent(docker_image_reference=source.name, generation=0)

            if source.namespace and source.namespace != stream.namespace:
                raise InvalidReferenceError(
                    f"tag {name!r} references namespace {source.namespace!r}"
                )

            if source.kind == ReferenceKind.IMAGE_STREAM_IMAGE:
                stream_name, _, image_id = source.name.partition("@")
                if stream_name != stream.name or not image_id:
                    raise InvalidReferenceError(
                        f"tag {name!r} references image {source.name!r} outside this stream"
                    )
                event = history.resolve_image(image_id)
                if event is None:
                    raise InvalidReferenceError(
                        f"image {image_id!r} is not in the history of {stream.name!r}"
                    )
                return event

            stream_name, sep, target = source.name.rpartition(":")
            if sep and stream_name != stream.name:
                raise InvalidReferenceError(
                    f"tag {name!r} references {source.name!r} outside this stream"
                )
            name = target

    # ------------------------------------------------------------------
    # Status side
    # ------------------------------------------------------------------

    def apply_outcome(
        self, stream: ImageStream, outcome: ImportOutcome
    ) -> Optional[ImageStream]:
        """Fold an import outcome into the stream's status.

        Returns:
            The updated stream, or None when the outcome is no longer of
            interest (tag removed, superseded or stale) and was discarded.
        """
        tag = stream.spec.get_tag(outcome.tag)
        if tag is None:
            logger.info("Discarding outcome for removed tag %s", outcome.tag)
            return None
        if not tag.generation or outcome.generation < tag.generation:
            logger.info(
                "Discarding outcome for %s generation %d (spec at %s)",
                outcome.tag, outcome.generation, tag.generation,
            )
            return None

        updated = stream.model_copy(deep=True)
        history = TagEventHistory(updated.status)
        conditions = TagConditionTracker(history)
        now = self.clock()

        latest = history.latest(outcome.tag)
        condition = conditions.get_condition(outcome.tag, IMPORT_SUCCESS)
        if (latest is not None and outcome.generation < latest.generation) or (
            condition is not None and outcome.generation < condition.generation
        ):
            logger.info("Discarding stale outcome for %s generation %d", outcome.tag, outcome.generation)
            return None

        if not outcome.succeeded:
            conditions.set_condition(
                outcome.tag, IMPORT_SUCCESS, ConditionStatus.FALSE,
                reason=outcome.reason, message=outcome.message,
                generation=outcome.generation, now=now,
            )
            return updated

        image = outcome.image
        if not _same_binding(latest, image.name, image.docker_image_reference):
            history.append(
                outcome.tag,
                TagEvent(
                    created=now,
                    docker_image_reference=image.docker_image_reference,
                    image=image.name,
                    generation=outcome.generation,
                ),
            )
        conditions.set_condition(
            outcome.tag, IMPORT_SUCCESS, ConditionStatus.TRUE,
            generation=outcome.generation, now=now,
        )
        return updated

    def tag_image(self, stream: ImageStream, tag: str, image: ImageRecord) -> ImageStream:
        """Bind a tag to a pushed image at the stream's current generation.

        Raises:
            StaleGenerationError: if the tag's head was produced by a later generation.
        """
        updated = stream.model_copy(deep=True)
        history = TagEventHistory(updated.status)
        latest = history.latest(tag)
        if not _same_binding(latest, image.name, image.docker_image_reference):
            history.append(
                tag,
                TagEvent(
                    created=self.clock(),
                    docker_image_reference=image.docker_image_reference,
                    image=image.name,
                    generation=updated.generation,
                ),
            )
        return updated

    def prune(
        self, stream: ImageStream, tags: Optional[Iterable[str]] = None
    ) -> Tuple[ImageStream, List[str]]:
        """Drop status history for tags no longer in spec (or the named tags)."""
        updated = stream.model_copy(deep=True)
        history = TagEventHistory(updated.status)
        in_spec = set(updated.spec.tag_names())
        candidates = list(tags) if tags is not None else history.tags()

        removed = [
            name for name in candidates
            if name not in in_spec and history.remove(name)
        ]
        return updated, removed

    def merge_spec(self, stream: ImageStream, spec: ImageStreamSpec) -> ImageStream:
        """Replace a stream's spec, resetting generations of tags whose source changed.

        A client that edits a tag's source without touching its generation, or
        that sends a generation the server never assigned, gets the tag
        treated as "recompute".
        """
        updated = stream.model_copy(deep=True)
        incoming = spec.model_copy(deep=True)

        for tag in incoming.tags:
            if tag.generation and tag.generation > updated.generation:
                tag.generation = None
                continue
            previous = updated.spec.get_tag(tag.name)
            if (
                previous is not None
                and tag.generation == previous.generation
                and not tag.source_equals(previous)
            ):
                tag.generation = None

        updated.spec = incoming
        return updated


def _same_binding(latest: Optional[TagEvent], image: str, pull_spec: str) -> bool:
    return (
        latest is not None
        and latest.image == image
        and latest.docker_image_reference == pull_spec
    )
