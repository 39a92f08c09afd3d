"""
Claim System Service
====================

Single owning handle for the claim lifecycle. Wires the registry, the
store and the signer into the orchestrators and holds the session's
recipient key pair.

Key pair rotation (set_key_pair) swaps the session atomically; callers
must not rotate while encrypt/decrypt calls with the old pair are in
flight.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Dict, Any, Sequence, Tuple

from .bulk_issuer import BulkIssuer, BulkIssueResult
from .claim_document import ClaimDocument
from .claim_issuer import ClaimIssuer
from .claim_verifier import ClaimVerifier
from .config import ClaimSettings, settings as default_settings
from .credential_types import CredentialTypeService
from .did_manager import DIDDocument, DIDManager
from .key_manager import KeyManager, KeyPair, LocalAccountSigner, SigningCapability
from .registration import RegistrationService, RegistrationStatus
from .registry import InMemoryRegistry, RegistryClient
from .store import StoreClient, create_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionState:
    """Immutable per-process crypto session"""
    keypair: Optional[KeyPair] = None


class ClaimService:
    """
    Main service class for claim operations

    Provides a unified interface for:
    - DID registration
    - Credential type management
    - Claim issuance (single and bulk)
    - Claim verification
    """

    def __init__(
        self,
        registry: RegistryClient,
        store: StoreClient,
        signer: SigningCapability,
        secondary_registry: Optional[RegistryClient] = None,
        did_method: str = "proofofme",
        key_manager: Optional[KeyManager] = None,
        keypair: Optional[KeyPair] = None,
        bulk_max_workers: int = 8,
        store_retries: int = 0,
    ):
        self.registry = registry
        self.store = store
        self.signer = signer
        self.key_manager = key_manager or KeyManager()
        self.did_manager = DIDManager(did_method)

        self._session = SessionState(keypair=keypair)
        self._session_lock = threading.Lock()

        self.registration = RegistrationService(self.did_manager, signer, registry, secondary_registry)
        self.credential_types = CredentialTypeService(registry)
        self.issuer = ClaimIssuer(self.did_manager, registry, store, signer, store_retries=store_retries)
        self.verifier = ClaimVerifier(self.did_manager, registry, store)
        self.bulk_issuer = BulkIssuer(max_workers=bulk_max_workers)

    @classmethod
    def from_settings(cls, config: Optional[ClaimSettings] = None) -> "ClaimService":
        """Build a service with in-memory ledgers and the configured store"""
        config = config or default_settings
        key_manager = KeyManager()
        keypair = key_manager.load_keypair(str(config.KEY_FILE)) if config.KEY_FILE else None

        return cls(
            registry=InMemoryRegistry(address="0x0000000000000000000000000000000000000001", name="primary"),
            secondary_registry=InMemoryRegistry(address="0x0000000000000000000000000000000000000002", name="secondary"),
            store=create_store(config.STORE_URI),
            signer=LocalAccountSigner(config.dev_account_keys()),
            did_method=config.DID_METHOD,
            key_manager=key_manager,
            keypair=keypair,
            bulk_max_workers=config.BULK_MAX_WORKERS,
            store_retries=config.STORE_RETRIES,
        )

    # ==================== SESSION ====================

    @property
    def session(self) -> SessionState:
        return self._session

    def ensure_initialized(self) -> KeyPair:
        """Generate a recipient key pair on first use"""
        session = self._session
        if session.keypair is not None:
            return session.keypair
        with self._session_lock:
            if self._session.keypair is None:
                self._session = SessionState(keypair=self.key_manager.generate_p256_keypair())
                logger.info("Generated recipient key pair %s", self._session.keypair.key_id)
            return self._session.keypair

    def export_public_key(self) -> Optional[Dict[str, Any]]:
        keypair = self._session.keypair
        return dict(keypair.public_jwk) if keypair else None

    def set_key_pair(self, public_jwk: Dict[str, Any], private_jwk: Dict[str, Any]) -> KeyPair:
        """Validate and install a key pair; raises KeyFormatError"""
        keypair = self.key_manager.import_keypair(public_jwk, private_jwk)
        with self._session_lock:
            self._session = SessionState(keypair=keypair)
        logger.info("Recipient key pair replaced with %s", keypair.key_id)
        return keypair

    # ==================== DIDs ====================

    def register_did(self, address: str) -> str:
        return self.registration.register_did(address)

    def is_did_registered(self, address: str) -> RegistrationStatus:
        return self.registration.is_did_registered(address)

    def did_document(self, address: str) -> DIDDocument:
        return self.did_manager.build_document(address, self.export_public_key())

    # ==================== CREDENTIAL TYPES ====================

    def create_credential_type(
        self,
        name: str,
        description: str,
        issuer_address: str,
        subdomain: Optional[str] = None,
    ) -> str:
        return self.credential_types.create(name, description, issuer_address, subdomain=subdomain)

    def credential_type_exists(self, name: str) -> bool:
        return self.credential_types.exists(name)

    def credential_type_by_subdomain(self, subdomain: str) -> str:
        return self.credential_types.resolve_by_subdomain(subdomain)

    def is_subdomain_available(self, subdomain: str) -> bool:
        return self.credential_types.is_subdomain_available(subdomain)

    # ==================== CLAIMS ====================

    def issue_claim(
        self,
        subject_address: str,
        credential_type: str,
        document: ClaimDocument,
        issuer_address: str,
    ) -> str:
        keypair = self.ensure_initialized()
        return self.issuer.issue(subject_address, credential_type, document, keypair.public_jwk, issuer_address)

    def bulk_issue_claims(
        self,
        subject_address: str,
        issuer_address: str,
        claims: Sequence[Tuple[str, ClaimDocument]],
    ) -> BulkIssueResult:
        keypair = self.ensure_initialized()

        def issue_one(credential_type: str, document: ClaimDocument) -> str:
            return self.issuer.issue(subject_address, credential_type, document, keypair.public_jwk, issuer_address)

        return self.bulk_issuer.issue_all(claims, issue_one)

    def verify_claim(self, subject_address: str, credential_type: str) -> ClaimDocument:
        keypair = self.ensure_initialized()
        return self.verifier.verify(subject_address, credential_type, keypair.private_jwk)

    # ==================== WORKFLOWS ====================

    def setup_issuer(
        self,
        issuer_address: str,
        credential_type: str,
        description: str,
        subdomain: Optional[str] = None,
    ) -> str:
        """Register the issuer DID and create its credential type if missing"""
        logger.info("Setting up issuer %s", issuer_address)
        did = self.register_did(issuer_address)
        if not self.credential_type_exists(credential_type):
            self.create_credential_type(credential_type, description, issuer_address, subdomain=subdomain)
        return did

    def issue_claim_to_user(
        self,
        subject_address: str,
        credential_type: str,
        document: ClaimDocument,
        issuer_address: str,
    ) -> str:
        """Register the subject on demand, then issue"""
        if not self.is_did_registered(subject_address).fully_registered:
            self.register_did(subject_address)
        return self.issue_claim(subject_address, credential_type, document, issuer_address)

    # ==================== STATISTICS ====================

    def get_statistics(self) -> Dict[str, Any]:
        keypair = self._session.keypair
        stats: Dict[str, Any] = {
            "did_method": self.did_manager.method,
            "key_id": keypair.key_id if keypair else None,
        }
        if hasattr(self.registry, "get_statistics"):
            stats["registry"] = self.registry.get_statistics()
        return stats
