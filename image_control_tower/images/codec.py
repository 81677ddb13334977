"""
Wire encoding for image API records.

Records travel as camelCase JSON objects tagged with ``kind`` and
``apiVersion``. Decoding dispatches on ``kind``; unknown fields are ignored so
that fields added by newer writers never break older readers.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Type, Union

from pydantic import ValidationError

from .enums import ObjectKind
from .errors import CodecError
from .image import ImageRecord, ImageSignature
from .primitives import ImageAPIModel
from .stream import ImageStream, ImageStreamImage, ImageStreamMapping, ImageStreamTag

API_VERSION = "image.control-tower/v1"

# Older readers accept these too; the payload shape is a subset of v1.
SUPPORTED_API_VERSIONS = frozenset({API_VERSION, "image.control-tower/v1beta1"})

KINDS: Dict[str, Type[ImageAPIModel]] = {
    ObjectKind.IMAGE.value: ImageRecord,
    ObjectKind.IMAGE_SIGNATURE.value: ImageSignature,
    ObjectKind.IMAGE_STREAM.value: ImageStream,
    ObjectKind.IMAGE_STREAM_MAPPING.value: ImageStreamMapping,
    ObjectKind.IMAGE_STREAM_TAG.value: ImageStreamTag,
    ObjectKind.IMAGE_STREAM_IMAGE.value: ImageStreamImage,
}


def _kind_of(obj: ImageAPIModel) -> str:
    for kind, model in KINDS.items():
        if type(obj) is model:
            return kind
    raise CodecError(f"{type(obj).__name__} is not a wire kind")


def encode(obj: ImageAPIModel) -> Dict[str, Any]:
    """Encode a record as a JSON-ready dict with ``kind`` and ``apiVersion``."""
    data = obj.model_dump(mode="json", by_alias=True)
    data["kind"] = _kind_of(obj)
    data["apiVersion"] = API_VERSION
    return data


def encode_json(obj: ImageAPIModel) -> str:
    return json.dumps(encode(obj), sort_keys=True)


def decode(data: Union[Dict[str, Any], str, bytes]) -> ImageAPIModel:
    """Decode a wire record into its model.

    Raises:
        CodecError: on malformed JSON, a missing or unknown ``kind``, an
            unsupported ``apiVersion``, or a payload that fails validation.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise CodecError(f"malformed JSON: {e}") from e

    if not isinstance(data, dict):
        raise CodecError("wire record must be a JSON object")

    kind = data.get("kind")
    model = KINDS.get(kind)
    if model is None:
        raise CodecError(f"unknown kind {kind!r}")

    api_version = data.get("apiVersion", API_VERSION)
    if api_version not in SUPPORTED_API_VERSIONS:
        raise CodecError(f"unsupported apiVersion {api_version!r} for {kind}")

    payload = {k: v for k, v in data.items() if k != "apiVersion"}
    try:
        # JSON mode so base64 content and ISO timestamps decode as they were encoded.
        return model.model_validate_json(json.dumps(payload))
    except ValidationError as e:
        raise CodecError(f"invalid {kind}: {e.error_count()} validation error(s)") from e
