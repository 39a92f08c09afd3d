"""
Claim System
============

Issue, store and verify encrypted claims anchored to DIDs

Components:
- ClaimService: Main handle exposing the public operations
- ClaimIssuer / ClaimVerifier: Claim lifecycle orchestrators
- RegistrationService: DID registration across ledger partitions
- CredentialTypeService: Issuer-owned credential types
- BulkIssuer: Concurrent issuance with per-item outcomes
- encryption: Compact JWE codec (ECDH-ES + A256GCM)
- RegistryClient / StoreClient / SigningCapability: Collaborator seams

Standards:
- W3C DID Core 1.0: https://www.w3.org/TR/did-core/
- RFC 7516 JSON Web Encryption: https://www.rfc-editor.org/rfc/rfc7516
"""

from .claim_document import ClaimDocument
from .claim_service import ClaimService, SessionState
from .claim_issuer import ClaimIssuer
from .claim_verifier import ClaimVerifier
from .bulk_issuer import BulkIssuer, BulkIssueResult, BulkFailure
from .registration import RegistrationService, RegistrationStatus
from .credential_types import CredentialTypeService
from .did_manager import DIDManager, DIDDocument, DIDMethod
from .key_manager import KeyManager, KeyPair, SigningCapability, LocalAccountSigner
from .registry import RegistryClient, InMemoryRegistry, CredentialType, ClaimRecord
from .store import StoreClient, StoreResult, InMemoryStore, FileSystemStore, create_store
from .errors import (
    ClaimSystemError,
    UnregisteredSubjectError,
    UnknownCredentialTypeError,
    DuplicateCredentialTypeError,
    DuplicateSubdomainError,
    UnauthorizedIssuerError,
    AlreadyRegisteredError,
    ClaimNotFoundError,
    NotFoundError,
    KeyFormatError,
    EncodingError,
    DecryptionError,
    SigningError,
    StorageError,
)

__version__ = "1.0.0"
__all__ = [
    # Service
    "ClaimService",
    "SessionState",

    # Claims
    "ClaimDocument",
    "ClaimIssuer",
    "ClaimVerifier",
    "BulkIssuer",
    "BulkIssueResult",
    "BulkFailure",

    # Identity
    "RegistrationService",
    "RegistrationStatus",
    "CredentialTypeService",
    "DIDManager",
    "DIDDocument",
    "DIDMethod",

    # Keys
    "KeyManager",
    "KeyPair",
    "SigningCapability",
    "LocalAccountSigner",

    # Collaborators
    "RegistryClient",
    "InMemoryRegistry",
    "CredentialType",
    "ClaimRecord",
    "StoreClient",
    "StoreResult",
    "InMemoryStore",
    "FileSystemStore",
    "create_store",

    # Errors
    "ClaimSystemError",
    "UnregisteredSubjectError",
    "UnknownCredentialTypeError",
    "DuplicateCredentialTypeError",
    "DuplicateSubdomainError",
    "UnauthorizedIssuerError",
    "AlreadyRegisteredError",
    "ClaimNotFoundError",
    "NotFoundError",
    "KeyFormatError",
    "EncodingError",
    "DecryptionError",
    "SigningError",
    "StorageError",
]
