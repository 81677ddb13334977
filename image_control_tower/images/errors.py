"""
Image API error types.

Every error carries a stable code and serializes with ``to_dict()`` so routes
and condition writers can surface it without string parsing.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


class ImageStreamError(Exception):
    """Base class for image and image stream errors."""

    code = "IMAGE_STREAM_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class StaleGenerationError(ImageStreamError):
    """Raised when a TagEvent is older than the tag's current head.

    Callers discard the event; retrying cannot succeed.
    """

    code = "STALE_GENERATION"

    def __init__(self, tag: str, generation: int, current: int):
        self.tag = tag
        self.generation = generation
        self.current = current
        super().__init__(
            f"Tag {tag!r}: generation {generation} is older than current generation {current}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(tag=self.tag, generation=self.generation, current=self.current)
        return data


class CyclicReferenceError(ImageStreamError):
    """Raised when a chain of reference tags revisits a tag."""

    code = "CYCLIC_REFERENCE"

    def __init__(self, chain):
        self.chain = list(chain)
        super().__init__("Cyclic tag reference: " + " -> ".join(self.chain))

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["chain"] = self.chain
        return data


class InvalidReferenceError(ImageStreamError):
    """Raised when a reference tag points at something that cannot be resolved in-stream."""

    code = "INVALID_REFERENCE"


class ImmutabilityError(ImageStreamError):
    """Raised when attempting to modify an immutable object."""

    code = "IMMUTABILITY_VIOLATION"

    def __init__(self, object_type: str, object_id: str):
        self.object_type = object_type
        self.object_id = object_id
        super().__init__(f"{object_type} objects are immutable. Cannot modify {object_id}.")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(object_type=self.object_type, object_id=self.object_id)
        return data


class NotFoundError(ImageStreamError):
    """Raised when a requested object does not exist."""

    code = "NOT_FOUND"

    def __init__(self, object_type: str, object_id: str):
        self.object_type = object_type
        self.object_id = object_id
        super().__init__(f"{object_type} {object_id!r} not found")


class ConflictError(ImageStreamError):
    """Raised when an optimistic-concurrency write loses against another writer."""

    code = "CONFLICT"

    def __init__(self, object_id: str, expected_version: Optional[int] = None):
        self.object_id = object_id
        self.expected_version = expected_version
        super().__init__(
            f"{object_id} was modified concurrently (expected resource version {expected_version})"
        )


class ClaimsParseError(ImageStreamError):
    """Raised by verifiers when signature claims cannot be parsed."""

    code = "CLAIMS_PARSE_FAILED"


class CodecError(ImageStreamError):
    """Raised when a wire record cannot be decoded."""

    code = "CODEC_ERROR"


class ImageValidationError(ImageStreamError):
    """Raised when an image record is internally inconsistent."""

    code = "INVALID_IMAGE"


class AlreadyExistsError(ImageStreamError):
    """Raised when creating an object whose name is taken."""

    code = "ALREADY_EXISTS"

    def __init__(self, object_type: str, object_id: str):
        self.object_type = object_type
        self.object_id = object_id
        super().__init__(f"{object_type} {object_id!r} already exists")


@dataclass(frozen=True)
class ImportFailure:
    """Why an import collaborator could not produce an image.

    A value, not an exception: the reconciler records it as an ImportSuccess
    condition with status False.
    """

    reason: str
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.reason, "message": self.message}
