"""
Import controller and its collaborators.
"""

from .controller import ImportController
from .importer import ImportResult, Importer, RegistryImporter, StaticImporter
from .repository import InMemoryStreamRepository, SqlStreamRepository, StreamRepository
from .verifier import (
    SignatureVerifier,
    SimpleSigningVerifier,
    VerificationResult,
    verify_unevaluated,
)

__all__ = [
    "ImportController",
    "Importer",
    "ImportResult",
    "StaticImporter",
    "RegistryImporter",
    "StreamRepository",
    "InMemoryStreamRepository",
    "SqlStreamRepository",
    "SignatureVerifier",
    "SimpleSigningVerifier",
    "VerificationResult",
    "verify_unevaluated",
]
