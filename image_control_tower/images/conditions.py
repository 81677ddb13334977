"""
Condition tracking.

Conditions are stored as lists on the wire but behave as a keyed map: at most
one record per condition type, replaced in place. A record's transition time
moves only when its status changes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Generic, Iterator, List, Optional, TypeVar, Union

from .enums import ConditionStatus, TagEventConditionType
from .history import TagEventHistory
from .primitives import SignatureCondition, TagEventCondition, utc_now

C = TypeVar("C", TagEventCondition, SignatureCondition)


def _key(condition_type: Union[str, Enum]) -> str:
    return condition_type.value if isinstance(condition_type, Enum) else str(condition_type)


class ConditionIndex(Generic[C]):
    """Keyed view over a condition list."""

    def __init__(self, conditions: List[C]):
        self._conditions = conditions
        self._positions: Dict[str, int] = {
            _key(c.type): i for i, c in enumerate(conditions)
        }

    def get(self, condition_type: Union[str, Enum]) -> Optional[C]:
        position = self._positions.get(_key(condition_type))
        return None if position is None else self._conditions[position]

    def put(self, condition: C) -> C:
        """Replace the record of the same type, or append a new one."""
        key = _key(condition.type)
        position = self._positions.get(key)
        if position is None:
            self._positions[key] = len(self._conditions)
            self._conditions.append(condition)
        else:
            self._conditions[position] = condition
        return condition

    def __iter__(self) -> Iterator[C]:
        return iter(self._conditions)

    def __len__(self) -> int:
        return len(self._conditions)


def record_signature_condition(
    conditions: List[SignatureCondition],
    observed: SignatureCondition,
    now: Optional[datetime] = None,
) -> SignatureCondition:
    """Fold one probe result into a signature's conditions.

    Every probe refreshes ``last_probe_time``; ``last_transition_time`` only
    moves when the status differs from the recorded one.
    """
    now = now or utc_now()
    index = ConditionIndex(conditions)
    existing = index.get(observed.type)

    transition = now
    if existing is not None and existing.status == observed.status:
        transition = existing.last_transition_time

    return index.put(
        observed.model_copy(
            update={"last_probe_time": now, "last_transition_time": transition}
        )
    )


class TagConditionTracker:
    """Maintains the per-tag TagEventCondition records of a stream status."""

    def __init__(self, history: TagEventHistory):
        self._history = history

    def get_condition(
        self,
        tag: str,
        condition_type: TagEventConditionType = TagEventConditionType.IMPORT_SUCCESS,
    ) -> Optional[TagEventCondition]:
        entry = self._history.entry(tag)
        if entry is None:
            return None
        return ConditionIndex(entry.conditions).get(condition_type)

    def set_condition(
        self,
        tag: str,
        condition_type: TagEventConditionType,
        status: ConditionStatus,
        reason: str = "",
        message: str = "",
        generation: int = 0,
        now: Optional[datetime] = None,
    ) -> TagEventCondition:
        """Record a condition for a tag, creating the tag's status entry if needed.

        Never removes a condition.
        """
        now = now or utc_now()
        index = ConditionIndex(self._history.entry(tag, create=True).conditions)
        existing = index.get(condition_type)

        if existing is None:
            condition = TagEventCondition(
                type=condition_type,
                status=status,
                last_transition_time=now,
                reason=reason,
                message=message,
                generation=generation,
            )
        else:
            condition = existing.model_copy(
                update={
                    "status": status,
                    "reason": reason,
                    "message": message,
                    "generation": generation,
                    "last_transition_time": (
                        existing.last_transition_time
                        if existing.status == status
                        else now
                    ),
                }
            )
        return index.put(condition)
