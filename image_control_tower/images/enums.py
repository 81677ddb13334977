"""
Image API Canonical Enums.

These enums define the allowed values for discriminators and condition fields
across image and image stream objects.
"""

from enum import Enum


class ObjectKind(str, Enum):
    """Valid wire object kinds."""

    IMAGE = "Image"
    IMAGE_SIGNATURE = "ImageSignature"
    IMAGE_STREAM = "ImageStream"
    IMAGE_STREAM_MAPPING = "ImageStreamMapping"
    IMAGE_STREAM_TAG = "ImageStreamTag"
    IMAGE_STREAM_IMAGE = "ImageStreamImage"


class ReferenceKind(str, Enum):
    """Kinds of object a TagReference may track."""

    DOCKER_IMAGE = "DockerImage"
    IMAGE_STREAM_TAG = "ImageStreamTag"
    IMAGE_STREAM_IMAGE = "ImageStreamImage"


class ConditionStatus(str, Enum):
    """Status of any condition: True, False or Unknown."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class TagEventConditionType(str, Enum):
    """Valid conditions of a tag event list."""

    # ImportSuccess with status False means the import of the specific tag failed
    IMPORT_SUCCESS = "ImportSuccess"


class SignatureConditionType(str, Enum):
    """Condition types recorded on image signatures."""

    VERIFIED = "Verified"
    CLAIMS_PARSED = "ClaimsParsed"


class ImportFailureReason(str, Enum):
    """Reason codes recorded on a failed ImportSuccess condition."""

    NOT_FOUND = "NotFound"
    UNAUTHORIZED = "Unauthorized"
    INVALID_REFERENCE = "InvalidReference"
    CYCLIC_REFERENCE = "CyclicReference"
    IMPORT_TIMEOUT = "ImportTimeout"
    INTERNAL_ERROR = "InternalError"
