"""
Tests for signature tracking and the simple signing verifier.

Verifies:
- Attaching is idempotent and identities are deterministic
- Verification outcomes are recorded without losing other conditions
- Parse failures and verification results are recorded side by side
- SimpleSigningVerifier checks digest and identity
"""

import json
from datetime import datetime, timezone

import pytest

from image_control_tower.images.enums import ConditionStatus
from image_control_tower.images.errors import ClaimsParseError, NotFoundError
from image_control_tower.images.primitives import SignatureCondition
from image_control_tower.images.signatures import SignatureClaims, SignatureTracker, signature_name
from image_control_tower.worker.verifier import (
    SimpleSigningVerifier,
    parse_simple_signing,
    verify_unevaluated,
)

from factories import make_image


def simple_signing_payload(digest, identity="registry.example.com/team/app:1.0", **optional):
    return json.dumps(
        {
            "critical": {
                "type": "atomic container signature",
                "image": {"docker-manifest-digest": digest},
                "identity": {"docker-reference": identity},
            },
            "optional": optional,
        }
    ).encode("utf-8")


def verified(status, reason=""):
    return SignatureCondition(type="Verified", status=status, reason=reason)


def condition_of(signature, condition_type):
    for condition in signature.conditions:
        if condition.type == condition_type:
            return condition
    return None


@pytest.fixture
def tracker() -> SignatureTracker:
    return SignatureTracker()


class TestAttach:
    def test_attach_returns_deterministic_identity(self, tracker):
        image = make_image("a")

        signature_id = tracker.attach_signature(image, "atomic", b"blob")

        assert signature_id == signature_name(image.name, "atomic", b"blob")
        assert signature_id.startswith(f"{image.name}@")
        assert len(signature_id.rsplit("@", 1)[1]) == 32

    def test_attach_twice_returns_same_record(self, tracker):
        image = make_image("a")
        first = tracker.attach_signature(image, "atomic", b"blob")
        tracker.record_verification(first, verified(ConditionStatus.TRUE))

        second = tracker.attach_signature(image.name, "atomic", b"blob")

        assert second == first
        assert len(tracker.signatures_for(image)) == 1
        # Re-attaching must not reset what was already observed.
        assert tracker.get(first).conditions

    def test_new_signature_is_unevaluated(self, tracker):
        signature_id = tracker.attach_signature("sha256:" + "a" * 64, "atomic", b"blob")

        signature = tracker.get(signature_id)

        assert signature.conditions == []
        assert signature.image_identity is None
        assert signature.content == b"blob"

    def test_distinct_content_gives_distinct_signatures(self, tracker):
        image = make_image("a")
        tracker.attach_signature(image, "atomic", b"one")
        tracker.attach_signature(image, "atomic", b"two")
        tracker.attach_signature(image, "cosign", b"one")

        assert len(tracker.signatures_for(image)) == 3

    def test_get_unknown_signature(self, tracker):
        with pytest.raises(NotFoundError):
            tracker.get("sha256:nope@0")


class TestRecordVerification:
    def test_claims_are_applied(self, tracker):
        signature_id = tracker.attach_signature(make_image("a"), "atomic", b"blob")
        claims = SignatureClaims(
            image_identity="registry.example.com/team/app:1.0",
            signed_claims={"creator": "ci"},
            created=datetime(2026, 3, 1, tzinfo=timezone.utc),
            issued_by={"organization": "Example"},
        )

        signature = tracker.record_verification(
            signature_id, verified(ConditionStatus.TRUE), claims=claims
        )

        assert signature.image_identity == "registry.example.com/team/app:1.0"
        assert signature.signed_claims == {"creator": "ci"}
        assert signature.issued_by.organization == "Example"
        assert condition_of(signature, "Verified").status == ConditionStatus.TRUE
        assert condition_of(signature, "ClaimsParsed").status == ConditionStatus.TRUE

    def test_parse_failure_recorded_next_to_verification(self, tracker):
        signature_id = tracker.attach_signature(make_image("a"), "atomic", b"garbage")

        signature = tracker.record_verification(
            signature_id,
            verified(ConditionStatus.FALSE, "InvalidPayload"),
            parse_error="unexpected end of data",
        )

        assert condition_of(signature, "Verified").status == ConditionStatus.FALSE
        parsed = condition_of(signature, "ClaimsParsed")
        assert parsed.status == ConditionStatus.FALSE
        assert parsed.message == "unexpected end of data"
        assert signature.image_identity is None

    def test_repeated_probe_keeps_transition_time(self, tracker):
        signature_id = tracker.attach_signature(make_image("a"), "atomic", b"blob")
        first_probe = datetime(2026, 1, 1, tzinfo=timezone.utc)
        second_probe = datetime(2026, 1, 2, tzinfo=timezone.utc)

        tracker.record_verification(signature_id, verified(ConditionStatus.TRUE), now=first_probe)
        signature = tracker.record_verification(
            signature_id, verified(ConditionStatus.TRUE), now=second_probe
        )

        condition = condition_of(signature, "Verified")
        assert condition.last_probe_time == second_probe
        assert condition.last_transition_time == first_probe
        assert len(signature.conditions) == 1

    def test_status_change_moves_transition_time(self, tracker):
        signature_id = tracker.attach_signature(make_image("a"), "atomic", b"blob")
        later = datetime(2026, 2, 1, tzinfo=timezone.utc)

        tracker.record_verification(signature_id, verified(ConditionStatus.TRUE))
        signature = tracker.record_verification(
            signature_id, verified(ConditionStatus.FALSE, "Revoked"), now=later
        )

        condition = condition_of(signature, "Verified")
        assert condition.status == ConditionStatus.FALSE
        assert condition.last_transition_time == later

    def test_unknown_signature(self, tracker):
        with pytest.raises(NotFoundError):
            tracker.record_verification("missing@0", verified(ConditionStatus.TRUE))


class TestParseSimpleSigning:
    def test_parses_claims(self):
        image = make_image("a")
        payload = simple_signing_payload(
            image.name,
            creator="ci",
            timestamp=1767225600,
            issuer={"organization": "Example", "commonName": "signer"},
        )

        claims, digest = parse_simple_signing(payload)

        assert digest == image.name
        assert claims.image_identity == "registry.example.com/team/app:1.0"
        assert claims.signed_claims == {"creator": "ci", "timestamp": "1767225600"}
        assert claims.created == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert claims.issued_by.common_name == "signer"

    @pytest.mark.parametrize(
        "payload",
        [
            b"\xff\xfe",
            b"not json",
            json.dumps({"critical": {}}).encode(),
            json.dumps(
                {
                    "critical": {
                        "type": "something else",
                        "image": {"docker-manifest-digest": "sha256:x"},
                        "identity": {"docker-reference": "x"},
                    }
                }
            ).encode(),
            simple_signing_payload("sha256:x", issuer="Acme"),
            json.dumps(
                {
                    "critical": {
                        "type": "atomic container signature",
                        "image": {"docker-manifest-digest": "sha256:x"},
                        "identity": {"docker-reference": "x"},
                    },
                    "optional": "not-a-dict",
                }
            ).encode(),
            simple_signing_payload("sha256:x", timestamp=1e20),
        ],
        ids=[
            "not-utf8",
            "not-json",
            "missing-fields",
            "wrong-type",
            "issuer-not-object",
            "optional-not-object",
            "timestamp-out-of-range",
        ],
    )
    def test_malformed(self, payload):
        with pytest.raises(ClaimsParseError):
            parse_simple_signing(payload)


class TestSimpleSigningVerifier:
    def test_matching_digest_is_verified(self):
        image = make_image("a")

        result = SimpleSigningVerifier().verify("atomic", simple_signing_payload(image.name), image.name)

        assert result.condition.status == ConditionStatus.TRUE
        assert result.claims.image_identity == "registry.example.com/team/app:1.0"

    def test_digest_mismatch(self):
        result = SimpleSigningVerifier().verify(
            "atomic", simple_signing_payload(make_image("b").name), make_image("a").name
        )

        assert result.condition.status == ConditionStatus.FALSE
        assert result.condition.reason == "DigestMismatch"

    def test_untrusted_identity(self):
        image = make_image("a")
        verifier = SimpleSigningVerifier(trusted_identities=["registry.example.com/team/other:1"])

        result = verifier.verify("atomic", simple_signing_payload(image.name), image.name)

        assert result.condition.reason == "UntrustedIdentity"

    def test_unsupported_type_is_unknown(self):
        result = SimpleSigningVerifier().verify("x509", b"blob")

        assert result.condition.status == ConditionStatus.UNKNOWN
        assert result.claims is None

    def test_invalid_payload_reports_parse_error(self):
        result = SimpleSigningVerifier().verify("atomic", b"garbage")

        assert result.condition.reason == "InvalidPayload"
        assert result.parse_error


class TestVerifyUnevaluated:
    def test_only_new_signatures_are_evaluated(self, tracker):
        image = make_image("a")
        good = tracker.attach_signature(image, "atomic", simple_signing_payload(image.name))
        bad = tracker.attach_signature(image, "atomic", b"garbage")

        updated = verify_unevaluated(tracker, SimpleSigningVerifier(), image)

        assert {s.name for s in updated} == {good, bad}
        assert condition_of(tracker.get(good), "Verified").status == ConditionStatus.TRUE
        assert condition_of(tracker.get(bad), "ClaimsParsed").status == ConditionStatus.FALSE
        assert tracker.unevaluated(image) == []
        assert verify_unevaluated(tracker, SimpleSigningVerifier(), image) == []

    @pytest.mark.parametrize(
        "optional",
        [{"issuer": "Acme"}, {"subject": ["x"]}, {"timestamp": 1e20}],
        ids=["issuer", "subject", "timestamp"],
    )
    def test_malformed_optional_claims_still_record_verification(self, tracker, optional):
        image = make_image("a")
        name = tracker.attach_signature(image, "atomic", simple_signing_payload(image.name, **optional))

        updated = verify_unevaluated(tracker, SimpleSigningVerifier(), image)

        assert [s.name for s in updated] == [name]
        signature = tracker.get(name)
        assert condition_of(signature, "Verified").status == ConditionStatus.FALSE
        assert condition_of(signature, "Verified").reason == "InvalidPayload"
        assert condition_of(signature, "ClaimsParsed").status == ConditionStatus.FALSE
        assert tracker.unevaluated(image) == []
