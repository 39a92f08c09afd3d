"""
Claim Issuer
============

Issues a claim about a subject:

1. subject DID must be registered
2. credential type must exist
3. encrypt the document to the recipient key
4. store the ciphertext, obtaining its content address
5. the subject signs the (DID, content address, type) message
6. the issuer records the signed pointer in the registry

Nothing is stored or recorded unless steps 1 and 2 pass. A failure in
step 6 leaves an unreferenced blob behind; it is unreachable without its
address and is not rolled back.
"""

import logging
from typing import Any, Dict

from . import encryption
from .claim_document import ClaimDocument
from .did_manager import DIDManager
from .errors import SigningError, StorageError, UnknownCredentialTypeError, UnregisteredSubjectError
from .key_manager import SigningCapability
from .registry import RegistryClient
from .store import StoreClient, StoreResult

logger = logging.getLogger(__name__)


class ClaimIssuer:

    def __init__(
        self,
        did_manager: DIDManager,
        registry: RegistryClient,
        store: StoreClient,
        signer: SigningCapability,
        store_retries: int = 0,
    ):
        self.did_manager = did_manager
        self.registry = registry
        self.store = store
        self.signer = signer
        self.store_retries = max(0, store_retries)

    def _store(self, envelope: str) -> StoreResult:
        attempts = self.store_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self.store.store(envelope)
            except StorageError as e:
                if attempt == attempts:
                    raise
                logger.warning("Store attempt %d/%d failed: %s", attempt, attempts, e)
            except OSError as e:
                if attempt == attempts:
                    raise StorageError(f"Storage backend failed: {e}") from e
                logger.warning("Store attempt %d/%d failed: %s", attempt, attempts, e)

    def issue(
        self,
        subject_address: str,
        credential_type: str,
        document: ClaimDocument,
        recipient_public_jwk: Dict[str, Any],
        issuer_address: str,
    ) -> str:
        """
        Issue a claim

        Args:
            subject_address: Account the claim is about; also signs the pointer
            credential_type: Name of an existing credential type
            document: Claim payload
            recipient_public_jwk: Key the payload is encrypted to
            issuer_address: Owner of the credential type

        Returns:
            Content address of the stored ciphertext
        """
        did = self.did_manager.derive(subject_address)

        # 1-2. Preconditions, no side effects before these pass
        if not self.registry.is_registered(did):
            raise UnregisteredSubjectError(f"DID not registered for address {subject_address}")
        if not self.registry.credential_type_exists(credential_type):
            raise UnknownCredentialTypeError(f"Credential type {credential_type} does not exist")

        # 3. Encrypt
        envelope = encryption.encrypt(document, recipient_public_jwk)

        # 4. Persist
        result = self._store(envelope)
        logger.info("Claim stored: %s (%d bytes)", result.content_address, result.size)

        # 5. Subject authorises the pointer
        message_hash = self.registry.generate_claim_message(did, result.content_address, credential_type)
        try:
            signature = self.signer.sign(message_hash, subject_address)
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(f"Signer failed for {subject_address}: {e}") from e

        # 6. Record under the issuer's authority
        self.registry.record_claim(did, result.content_address, credential_type, signature, issuer_address)

        logger.info("Claim issued for %s (%s)", subject_address, credential_type)
        return result.content_address
