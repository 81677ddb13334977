"""
Tests for tag and signature condition tracking.

Verifies:
- One condition per type, replaced in place
- lastTransitionTime moves only when the status changes
- Signature probes always refresh lastProbeTime
"""

from datetime import datetime, timezone

from image_control_tower.images.conditions import (
    ConditionIndex,
    TagConditionTracker,
    record_signature_condition,
)
from image_control_tower.images.enums import ConditionStatus, TagEventConditionType
from image_control_tower.images.history import TagEventHistory
from image_control_tower.images.primitives import SignatureCondition
from image_control_tower.images.stream import ImageStreamStatus

IMPORT_SUCCESS = TagEventConditionType.IMPORT_SUCCESS
T1 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
T2 = datetime(2026, 3, 1, 11, 0, tzinfo=timezone.utc)
T3 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def tracker():
    status = ImageStreamStatus()
    return status, TagConditionTracker(TagEventHistory(status))


class TestTagConditionTracker:
    """Tests for TagConditionTracker."""

    def test_set_creates_tag_entry(self):
        status, conditions = tracker()
        conditions.set_condition(
            "v1", IMPORT_SUCCESS, ConditionStatus.FALSE,
            reason="NotFound", generation=3, now=T1,
        )

        entry = status.get_tag("v1")
        assert entry.items == []
        assert len(entry.conditions) == 1
        assert entry.conditions[0].last_transition_time == T1

    def test_same_status_keeps_transition_time(self):
        _, conditions = tracker()
        conditions.set_condition("v1", IMPORT_SUCCESS, ConditionStatus.FALSE, reason="NotFound", generation=3, now=T1)
        updated = conditions.set_condition(
            "v1", IMPORT_SUCCESS, ConditionStatus.FALSE, reason="Unauthorized", generation=4, now=T2
        )

        assert updated.last_transition_time == T1
        assert updated.reason == "Unauthorized"
        assert updated.generation == 4

    def test_status_change_moves_transition_time(self):
        _, conditions = tracker()
        conditions.set_condition("v1", IMPORT_SUCCESS, ConditionStatus.FALSE, generation=3, now=T1)
        updated = conditions.set_condition("v1", IMPORT_SUCCESS, ConditionStatus.TRUE, generation=4, now=T2)

        assert updated.last_transition_time == T2

    def test_replaced_in_place(self):
        status, conditions = tracker()
        for generation in range(1, 4):
            conditions.set_condition("v1", IMPORT_SUCCESS, ConditionStatus.TRUE, generation=generation, now=T1)

        assert len(status.get_tag("v1").conditions) == 1
        assert conditions.get_condition("v1").generation == 3

    def test_get_condition_unknown_tag(self):
        _, conditions = tracker()
        assert conditions.get_condition("missing") is None


class TestSignatureConditions:
    """Tests for record_signature_condition()."""

    def test_probe_time_always_refreshed(self):
        conditions = []
        record_signature_condition(
            conditions, SignatureCondition(type="Verified", status=ConditionStatus.TRUE), now=T1
        )
        recorded = record_signature_condition(
            conditions, SignatureCondition(type="Verified", status=ConditionStatus.TRUE), now=T2
        )

        assert len(conditions) == 1
        assert recorded.last_probe_time == T2
        assert recorded.last_transition_time == T1

    def test_status_change_moves_transition_time(self):
        conditions = []
        record_signature_condition(
            conditions, SignatureCondition(type="Verified", status=ConditionStatus.TRUE), now=T1
        )
        record_signature_condition(
            conditions, SignatureCondition(type="Verified", status=ConditionStatus.TRUE), now=T2
        )
        recorded = record_signature_condition(
            conditions, SignatureCondition(type="Verified", status=ConditionStatus.FALSE), now=T3
        )

        assert recorded.last_transition_time == T3
        assert recorded.last_probe_time == T3

    def test_types_are_tracked_separately(self):
        conditions = []
        record_signature_condition(conditions, SignatureCondition(type="Verified", status=ConditionStatus.TRUE), now=T1)
        record_signature_condition(conditions, SignatureCondition(type="ClaimsParsed", status=ConditionStatus.FALSE), now=T1)

        assert [c.type for c in conditions] == ["Verified", "ClaimsParsed"]


class TestConditionIndex:
    def test_enum_and_string_keys_match(self):
        status, conditions = tracker()
        conditions.set_condition("v1", IMPORT_SUCCESS, ConditionStatus.TRUE, generation=1, now=T1)

        index = ConditionIndex(status.get_tag("v1").conditions)
        assert index.get("ImportSuccess") is index.get(IMPORT_SUCCESS)
        assert len(index) == 1
