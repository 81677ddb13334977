"""
Image, image signature and image stream domain.
"""

from .conditions import TagConditionTracker
from .enums import (
    ConditionStatus,
    ImportFailureReason,
    ObjectKind,
    ReferenceKind,
    SignatureConditionType,
    TagEventConditionType,
)
from .errors import (
    AlreadyExistsError,
    ClaimsParseError,
    CodecError,
    ConflictError,
    CyclicReferenceError,
    ImageStreamError,
    ImageValidationError,
    ImmutabilityError,
    ImportFailure,
    InvalidReferenceError,
    NotFoundError,
    StaleGenerationError,
)
from .history import TagEventHistory
from .image import (
    DockerImageReference,
    ImageCreate,
    ImageRecord,
    ImageSignature,
    ImageSignatureCreate,
    image_from_manifest,
    manifest_digest,
    parse_docker_image_reference,
)
from .primitives import (
    ImageLayer,
    ObjectReference,
    SignatureCondition,
    TagEvent,
    TagEventCondition,
    TagImportPolicy,
)
from .reconciler import ImportOutcome, ImportRequest, ReconcileResult, StreamReconciler
from .signatures import SignatureClaims, SignatureTracker
from .stream import (
    ImageStream,
    ImageStreamCreate,
    ImageStreamImage,
    ImageStreamMapping,
    ImageStreamSpec,
    ImageStreamStatus,
    ImageStreamTag,
    NamedTagEventList,
    TagReference,
)

__all__ = [
    "TagConditionTracker",
    "ConditionStatus",
    "ImportFailureReason",
    "ObjectKind",
    "ReferenceKind",
    "SignatureConditionType",
    "TagEventConditionType",
    "AlreadyExistsError",
    "ClaimsParseError",
    "CodecError",
    "ConflictError",
    "CyclicReferenceError",
    "ImageStreamError",
    "ImageValidationError",
    "ImmutabilityError",
    "ImportFailure",
    "InvalidReferenceError",
    "NotFoundError",
    "StaleGenerationError",
    "TagEventHistory",
    "DockerImageReference",
    "ImageCreate",
    "ImageRecord",
    "ImageSignature",
    "ImageSignatureCreate",
    "image_from_manifest",
    "manifest_digest",
    "parse_docker_image_reference",
    "ImageLayer",
    "ObjectReference",
    "SignatureCondition",
    "TagEvent",
    "TagEventCondition",
    "TagImportPolicy",
    "ImportOutcome",
    "ImportRequest",
    "ReconcileResult",
    "StreamReconciler",
    "SignatureClaims",
    "SignatureTracker",
    "ImageStream",
    "ImageStreamCreate",
    "ImageStreamImage",
    "ImageStreamMapping",
    "ImageStreamSpec",
    "ImageStreamStatus",
    "ImageStreamTag",
    "NamedTagEventList",
    "TagReference",
]
