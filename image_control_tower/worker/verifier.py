"""
Signature verifier collaborators.

A verifier looks at the opaque bytes of a signature and reports a Verified
condition plus, when it can parse them, the claims the signature makes.
Results are handed to SignatureTracker.record_verification; verifiers never
write to storage themselves.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from ..images.enums import ConditionStatus, SignatureConditionType
from ..images.errors import ClaimsParseError
from ..images.image import ImageRecord, ImageSignature
from ..images.primitives import SignatureCondition, SignatureIssuer, SignatureSubject
from ..images.signatures import SignatureClaims, SignatureTracker

logger = logging.getLogger(__name__)

SIMPLE_SIGNING_TYPE = "atomic"
SIMPLE_SIGNING_CLAIM_TYPE = "atomic container signature"


@dataclass(frozen=True)
class VerificationResult:
    """What a verifier observed about one signature."""

    condition: SignatureCondition
    claims: Optional[SignatureClaims] = None
    parse_error: Optional[str] = None


def _verified(status: ConditionStatus, reason: str = "", message: str = "") -> SignatureCondition:
    return SignatureCondition(
        type=SignatureConditionType.VERIFIED.value,
        status=status,
        reason=reason,
        message=message,
    )


class SignatureVerifier(ABC):
    """Evaluates signatures of one or more types."""

    @abstractmethod
    def verify(
        self,
        signature_type: str,
        content: bytes,
        image_name: Optional[str] = None,
    ) -> VerificationResult:
        """Verify a signature of ``image_name``."""


class SimpleSigningVerifier(SignatureVerifier):
    """Checks JSON "simple signing" payloads against the signed image.

    The payload names the manifest digest it signs. A signature is Verified
    when that digest matches the image and, if ``trusted_identities`` is
    given, the claimed docker reference is one of them. Cryptographic
    envelope checks are left to an external keyring.
    """

    def __init__(self, trusted_identities: Optional[List[str]] = None):
        self.trusted_identities = set(trusted_identities or [])

    def verify(
        self,
        signature_type: str,
        content: bytes,
        image_name: Optional[str] = None,
    ) -> VerificationResult:
        if signature_type != SIMPLE_SIGNING_TYPE:
            return VerificationResult(
                condition=_verified(
                    ConditionStatus.UNKNOWN,
                    "UnsupportedType",
                    f"no verifier for signature type {signature_type!r}",
                )
            )

        try:
            claims, digest = parse_simple_signing(content)
        except ClaimsParseError as e:
            return VerificationResult(
                condition=_verified(ConditionStatus.FALSE, "InvalidPayload", e.message),
                parse_error=e.message,
            )

        if image_name and digest != image_name:
            condition = _verified(
                ConditionStatus.FALSE,
                "DigestMismatch",
                f"signature is for {digest}, not {image_name}",
            )
        elif self.trusted_identities and claims.image_identity not in self.trusted_identities:
            condition = _verified(
                ConditionStatus.FALSE,
                "UntrustedIdentity",
                f"identity {claims.image_identity!r} is not trusted",
            )
        else:
            condition = _verified(ConditionStatus.TRUE)
        return VerificationResult(condition=condition, claims=claims)


def parse_simple_signing(content: bytes):
    """Parse a simple signing payload into claims and the signed digest.

    Raises:
        ClaimsParseError: if the payload is not a well-formed signature claim.
    """
    try:
        document: Dict[str, Any] = json.loads(content.decode("utf-8"))
        critical = document["critical"]
        digest = critical["image"]["docker-manifest-digest"]
        identity = critical["identity"]["docker-reference"]
        claim_type = critical["type"]
    except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
        raise ClaimsParseError(f"malformed signature payload: {e}") from e

    if claim_type != SIMPLE_SIGNING_CLAIM_TYPE:
        raise ClaimsParseError(f"unexpected claim type {claim_type!r}")

    optional = document.get("optional") or {}
    if not isinstance(optional, dict):
        raise ClaimsParseError(f"optional claims must be an object, got {type(optional).__name__}")
    try:
        claims = _optional_claims(identity, optional)
    except (ValueError, TypeError, OverflowError, OSError) as e:
        # pydantic's ValidationError is a ValueError
        raise ClaimsParseError(f"malformed optional claims: {e}") from e
    return claims, digest


def _optional_claims(identity: str, optional: Dict[str, Any]) -> SignatureClaims:
    created = None
    if isinstance(optional.get("timestamp"), (int, float)):
        created = datetime.fromtimestamp(optional["timestamp"], tz=timezone.utc)

    issuer = optional.get("issuer") or {}
    subject = optional.get("subject") or {}
    return SignatureClaims(
        image_identity=identity,
        signed_claims={
            k: str(v) for k, v in optional.items() if isinstance(v, (str, int, float))
        },
        created=created,
        issued_by=SignatureIssuer.model_validate(issuer) if issuer else None,
        issued_to=SignatureSubject.model_validate(subject) if subject else None,
    )


def verify_unevaluated(
    tracker: SignatureTracker,
    verifier: SignatureVerifier,
    image: Union[ImageRecord, str],
) -> List[ImageSignature]:
    """Run the verifier over every signature of an image that has no conditions yet."""
    image_name = image.name if isinstance(image, ImageRecord) else image
    updated = []
    for signature in tracker.unevaluated(image_name):
        result = verifier.verify(signature.type, signature.content, image_name=image_name)
        updated.append(
            tracker.record_verification(
                signature.name,
                result.condition,
                claims=result.claims,
                parse_error=result.parse_error,
            )
        )
    if updated:
        logger.info("Evaluated %d signature(s) of %s", len(updated), image_name)
    return updated
