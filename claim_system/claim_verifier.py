"""
Claim Verifier
==============

Resolves a claim pointer, fetches the ciphertext and decrypts it.

Error semantics:
- ClaimNotFoundError: the registry has no pointer for (DID, type)
- NotFoundError:      a pointer exists but the store lost the blob
- DecryptionError:    wrong key pair or tampering; never retried
"""

import logging
from typing import Any, Dict

from . import encryption
from .claim_document import ClaimDocument
from .did_manager import DIDManager
from .errors import ClaimNotFoundError, StorageError
from .registry import RegistryClient
from .store import StoreClient

logger = logging.getLogger(__name__)


class ClaimVerifier:

    def __init__(self, did_manager: DIDManager, registry: RegistryClient, store: StoreClient):
        self.did_manager = did_manager
        self.registry = registry
        self.store = store

    def verify(
        self,
        subject_address: str,
        credential_type: str,
        recipient_private_jwk: Dict[str, Any],
    ) -> ClaimDocument:
        """
        Verify and decrypt the claim of credential_type held by subject_address

        Returns:
            The original ClaimDocument
        """
        did = self.did_manager.derive(subject_address)

        content_address = self.registry.get_claim(did, credential_type)
        if not content_address:
            raise ClaimNotFoundError(f"No claim found for {did} with credential type {credential_type}")
        logger.debug("Found claim identifier: %s", content_address)

        try:
            envelope = self.store.retrieve(content_address)
        except OSError as e:
            raise StorageError(f"Storage backend failed: {e}") from e

        document = encryption.decrypt(envelope, recipient_private_jwk)

        logger.info("Claim verified and decrypted for %s (%s)", did, credential_type)
        return document
