"""
Tag event history.

TagEventHistory is the only writer of ``NamedTagEventList.items``. It keeps
each tag's events most recent first and refuses any event older than the
current head.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional

from .errors import StaleGenerationError
from .primitives import TagEvent
from .stream import ImageStreamStatus, NamedTagEventList

logger = logging.getLogger(__name__)


class TagEventHistory:
    """Per-tag, most-recent-first TagEvent log over one stream's status.

    The history is unbounded; a retention limit belongs to an external policy.
    """

    def __init__(self, status: ImageStreamStatus):
        self._status = status
        self._entries: Dict[str, NamedTagEventList] = {
            entry.tag: entry for entry in status.tags
        }

    def entry(self, tag: str, create: bool = False) -> Optional[NamedTagEventList]:
        """Return the status entry for a tag, creating it on request."""
        entry = self._entries.get(tag)
        if entry is None and create:
            entry = NamedTagEventList(tag=tag)
            self._status.tags.append(entry)
            self._entries[tag] = entry
        return entry

    def append(self, tag: str, event: TagEvent) -> None:
        """Make ``event`` the tag's current binding.

        Raises:
            StaleGenerationError: if the event's generation is lower than the
                current head's. History is left unchanged.
        """
        head = self.latest(tag)
        if head is not None and event.generation < head.generation:
            raise StaleGenerationError(tag, event.generation, head.generation)

        self.entry(tag, create=True).items.insert(0, event)
        logger.debug(
            "Tag %s now points at %s (generation %d)", tag, event.image, event.generation
        )

    def latest(self, tag: str) -> Optional[TagEvent]:
        entry = self._entries.get(tag)
        if entry is None or not entry.items:
            return None
        return entry.items[0]

    def events(self, tag: str) -> List[TagEvent]:
        entry = self._entries.get(tag)
        return list(entry.items) if entry else []

    def tags(self) -> List[str]:
        return list(self._entries)

    def resolve_image(self, image_id: str) -> Optional[TagEvent]:
        """Find the most recent event for an image, by full name or unique prefix."""
        matches = {}
        for event in self._iter_events():
            if event.image == image_id:
                return event
            if image_id and event.image.startswith(image_id):
                matches.setdefault(event.image, event)
        if len(matches) == 1:
            return next(iter(matches.values()))
        return None

    def remove(self, tag: str) -> bool:
        """Drop a tag's history and conditions entirely."""
        entry = self._entries.pop(tag, None)
        if entry is None:
            return False
        self._status.tags.remove(entry)
        return True

    def _iter_events(self) -> Iterator[TagEvent]:
        for entry in self._status.tags:
            yield from entry.items
