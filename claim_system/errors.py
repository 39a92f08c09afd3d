"""
Claim System Errors
===================

Error taxonomy shared by the codec, the collaborators and the
orchestrators. Every error raised on purpose by this package derives
from ClaimSystemError.
"""


class ClaimSystemError(Exception):
    """Base class for all claim lifecycle errors"""

    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


# ==================== PRECONDITIONS ====================

class UnregisteredSubjectError(ClaimSystemError):
    """The subject DID has not been registered"""


class UnknownCredentialTypeError(ClaimSystemError):
    """The credential type does not exist in the registry"""


class DuplicateCredentialTypeError(ClaimSystemError):
    """A credential type with this name already exists"""


class DuplicateSubdomainError(ClaimSystemError):
    """The subdomain is already mapped to another credential type"""


class UnauthorizedIssuerError(ClaimSystemError):
    """The issuer does not own the credential type"""


class AlreadyRegisteredError(ClaimSystemError):
    """The DID is already registered (treated as success by registration)"""


# ==================== LOOKUPS ====================

class NotFoundError(ClaimSystemError):
    """A collaborator has no record for the requested key"""


class ClaimNotFoundError(ClaimSystemError):
    """No claim pointer exists for (DID, credential type)"""


# ==================== CRYPTO ====================

class KeyFormatError(ClaimSystemError):
    """Key material is malformed or of the wrong type"""


class EncodingError(ClaimSystemError):
    """A claim document could not be serialised or parsed"""


class DecryptionError(ClaimSystemError):
    """Wrong key, corrupt or tampered envelope"""


class SigningError(ClaimSystemError):
    """A signature could not be produced or did not verify"""


# ==================== STORAGE ====================

class StorageError(ClaimSystemError):
    """Backend failure while storing or retrieving; safe to retry"""

    retryable = True
