"""
Image signature tracking.

SignatureTracker attaches opaque signatures to images and records what
external verifiers report about them. It never verifies anything itself.
"""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import Field

from .conditions import record_signature_condition
from .enums import ConditionStatus, SignatureConditionType
from .errors import NotFoundError
from .image import ImageRecord, ImageSignature
from .primitives import (
    ImageAPIModel,
    SignatureCondition,
    SignatureIssuer,
    SignatureSubject,
)

logger = logging.getLogger(__name__)


class SignatureClaims(ImageAPIModel):
    """Identity information a verifier managed to parse out of a signature."""

    image_identity: Optional[str] = None
    signed_claims: Dict[str, str] = Field(default_factory=dict)
    created: Optional[datetime] = None
    issued_by: Optional[SignatureIssuer] = None
    issued_to: Optional[SignatureSubject] = None


def signature_name(image_name: str, signature_type: str, content: bytes) -> str:
    """Deterministic signature identity: ``<image>@<32 hex digits>``."""
    digest = hashlib.sha256(signature_type.encode("utf-8") + b"\x00" + content)
    return f"{image_name}@{digest.hexdigest()[:32]}"


class SignatureStore(ABC):
    """Storage backend for image signatures."""

    @abstractmethod
    def get(self, signature_id: str) -> Optional[ImageSignature]:
        """Return a signature by id."""

    @abstractmethod
    def put(self, signature: ImageSignature) -> None:
        """Insert or replace a signature."""

    @abstractmethod
    def list_for_image(self, image_name: str) -> List[ImageSignature]:
        """Return an image's signatures in attachment order."""


class InMemorySignatureStore(SignatureStore):
    def __init__(self) -> None:
        self._signatures: Dict[str, ImageSignature] = {}

    def get(self, signature_id: str) -> Optional[ImageSignature]:
        signature = self._signatures.get(signature_id)
        return signature.model_copy(deep=True) if signature else None

    def put(self, signature: ImageSignature) -> None:
        self._signatures[signature.name] = signature.model_copy(deep=True)

    def list_for_image(self, image_name: str) -> List[ImageSignature]:
        return [
            s.model_copy(deep=True)
            for s in self._signatures.values()
            if s.image == image_name
        ]


class SignatureTracker:
    """Attaches signatures to images and records verification outcomes."""

    def __init__(self, store: Optional[SignatureStore] = None):
        self.store = store or InMemorySignatureStore()

    def attach_signature(
        self,
        image: Union[ImageRecord, str],
        signature_type: str,
        content: bytes,
    ) -> str:
        """Attach a signature to an image and return its identity.

        Attaching the same type and content twice returns the same identity and
        leaves the recorded signature untouched.
        """
        image_name = image.name if isinstance(image, ImageRecord) else image
        signature_id = signature_name(image_name, signature_type, content)
        if self.store.get(signature_id) is None:
            self.store.put(
                ImageSignature(
                    name=signature_id,
                    image=image_name,
                    type=signature_type,
                    content=content,
                )
            )
            logger.info("Attached %s signature %s", signature_type, signature_id)
        return signature_id

    def get(self, signature_id: str) -> ImageSignature:
        signature = self.store.get(signature_id)
        if signature is None:
            raise NotFoundError("ImageSignature", signature_id)
        return signature

    def signatures_for(self, image: Union[ImageRecord, str]) -> List[ImageSignature]:
        image_name = image.name if isinstance(image, ImageRecord) else image
        return self.store.list_for_image(image_name)

    def record_verification(
        self,
        signature_id: str,
        condition: SignatureCondition,
        claims: Optional[SignatureClaims] = None,
        parse_error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ImageSignature:
        """Record one verification outcome for a signature.

        The verification condition is always recorded. Claims are applied when
        present; a parse failure is recorded as a ClaimsParsed=False condition
        next to the verification condition rather than instead of it.

        Raises:
            NotFoundError: if the signature is unknown.
        """
        signature = self.get(signature_id)
        record_signature_condition(signature.conditions, condition, now=now)

        if claims is not None:
            signature.image_identity = claims.image_identity
            signature.signed_claims = dict(claims.signed_claims)
            signature.created = claims.created
            signature.issued_by = claims.issued_by
            signature.issued_to = claims.issued_to

        if parse_error is not None:
            logger.warning("Signature %s claims not parsed: %s", signature_id, parse_error)
            record_signature_condition(
                signature.conditions,
                SignatureCondition(
                    type=SignatureConditionType.CLAIMS_PARSED.value,
                    status=ConditionStatus.FALSE,
                    reason="ParseFailed",
                    message=parse_error,
                ),
                now=now,
            )
        elif claims is not None:
            record_signature_condition(
                signature.conditions,
                SignatureCondition(
                    type=SignatureConditionType.CLAIMS_PARSED.value,
                    status=ConditionStatus.TRUE,
                ),
                now=now,
            )

        self.store.put(signature)
        return signature

    def unevaluated(self, image: Union[ImageRecord, str]) -> List[ImageSignature]:
        """Signatures of an image that no verifier has looked at yet."""
        return [s for s in self.signatures_for(image) if not s.conditions]
