"""
Image Control Tower

Image streams with per-tag history, generation-ordered imports and signature
tracking.
"""

import importlib.metadata

__version__ = importlib.metadata.version("image-control-tower")

from .images import (
    ImageRecord,
    ImageSignature,
    ImageStream,
    SignatureTracker,
    StreamReconciler,
    TagConditionTracker,
    TagEventHistory,
)

__all__ = [
    "ImageRecord",
    "ImageSignature",
    "ImageStream",
    "SignatureTracker",
    "StreamReconciler",
    "TagConditionTracker",
    "TagEventHistory",
]
