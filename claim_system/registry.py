"""
Identity & Credential Registry
==============================

RegistryClient is the ledger seam: DID registration, credential types,
claim pointers and the message hashes that subjects sign.

InMemoryRegistry is a reference ledger that enforces the same rules the
on-chain registry does (signature checks, issuer ownership, unique names
and subdomains). One instance models one ledger partition.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timezone

from eth_utils import keccak, to_hex

from .errors import (
    AlreadyRegisteredError,
    DuplicateCredentialTypeError,
    DuplicateSubdomainError,
    NotFoundError,
    SigningError,
    UnauthorizedIssuerError,
    UnknownCredentialTypeError,
    UnregisteredSubjectError,
)
from .key_manager import recover_signer

logger = logging.getLogger(__name__)

_SEPARATOR = "\x00"


def registration_message_hash(did: str, registry_address: str) -> str:
    """keccak256 binding a DID to the registry that will hold it"""
    payload = _SEPARATOR.join(["register", registry_address.lower(), did])
    return to_hex(keccak(text=payload))


def claim_message_hash(did: str, content_address: str, credential_type: str, registry_address: str) -> str:
    """keccak256 binding (DID, content address, credential type) to a registry"""
    payload = _SEPARATOR.join(["claim", registry_address.lower(), did, content_address, credential_type])
    return to_hex(keccak(text=payload))


@dataclass
class CredentialType:
    """A named, issuer-owned claim category"""
    name: str
    description: str
    issuer_address: str
    subdomain: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "subdomain": self.subdomain,
            "description": self.description,
            "issuerAddress": self.issuer_address,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class ClaimRecord:
    """Ledger pointer from (DID, credential type) to stored ciphertext"""
    did: str
    credential_type: str
    content_address: str
    authorizing_signature: str


class RegistryClient(ABC):
    """Ledger operations the claim lifecycle depends on"""

    @property
    @abstractmethod
    def address(self) -> str:
        """Address of the registry; domain separator for signed messages"""

    # DIDs
    @abstractmethod
    def is_registered(self, did: str) -> bool:
        pass

    @abstractmethod
    def register_did(self, did: str, signature: str, from_address: str) -> None:
        pass

    @abstractmethod
    def generate_registration_message(self, did: str) -> str:
        pass

    # Credential types
    @abstractmethod
    def credential_type_exists(self, name: str) -> bool:
        pass

    @abstractmethod
    def create_credential_type(
        self, name: str, subdomain: Optional[str], description: str, from_address: str
    ) -> str:
        pass

    @abstractmethod
    def resolve_subdomain(self, subdomain: str) -> str:
        pass

    @abstractmethod
    def get_credential_type(self, name: str) -> CredentialType:
        pass

    # Claims
    @abstractmethod
    def record_claim(
        self, did: str, content_address: str, credential_type: str, signature: str, from_address: str
    ) -> None:
        pass

    @abstractmethod
    def get_claim(self, did: str, credential_type: str) -> Optional[str]:
        pass

    @abstractmethod
    def generate_claim_message(self, did: str, content_address: str, credential_type: str) -> str:
        pass


class InMemoryRegistry(RegistryClient):
    """
    In-process ledger partition

    Writes are serialised by an internal lock, as a ledger orders its
    transactions. Claim records are last-writer-wins per (DID, type).
    """

    def __init__(self, address: str = "0x0000000000000000000000000000000000000001", name: str = "primary"):
        self._address = address
        self.name = name
        self._lock = threading.Lock()
        self._registered: Dict[str, str] = {}                 # did -> controller address
        self._credential_types: Dict[str, CredentialType] = {}
        self._subdomains: Dict[str, str] = {}                 # subdomain -> name
        self._claims: Dict[Tuple[str, str], ClaimRecord] = {}
        self._tx_count = 0

    @property
    def address(self) -> str:
        return self._address

    def _next_tx(self, *parts: str) -> str:
        self._tx_count += 1
        return to_hex(keccak(text=_SEPARATOR.join([self._address, str(self._tx_count), *parts])))

    @staticmethod
    def _subject_address(did: str) -> str:
        return did.rsplit(":", 1)[-1]

    def _check_signer(self, message_hash: str, signature: str, did: str) -> None:
        signer = recover_signer(message_hash, signature)
        if signer.lower() != self._subject_address(did).lower():
            raise SigningError(f"Signature was not produced by the controller of {did}")

    # ==================== DIDs ====================

    def is_registered(self, did: str) -> bool:
        return did in self._registered

    def generate_registration_message(self, did: str) -> str:
        return registration_message_hash(did, self._address)

    def register_did(self, did: str, signature: str, from_address: str) -> None:
        self._check_signer(self.generate_registration_message(did), signature, did)
        with self._lock:
            if did in self._registered:
                raise AlreadyRegisteredError(f"{did} is already registered on {self.name}")
            self._registered[did] = from_address
            self._next_tx("registerDID", did)
        logger.debug("[%s] registered %s", self.name, did)

    # ==================== CREDENTIAL TYPES ====================

    def credential_type_exists(self, name: str) -> bool:
        return name in self._credential_types

    def create_credential_type(
        self, name: str, subdomain: Optional[str], description: str, from_address: str
    ) -> str:
        with self._lock:
            if name in self._credential_types:
                raise DuplicateCredentialTypeError(f"Credential type '{name}' already exists")
            if subdomain:
                owner = self._subdomains.get(subdomain)
                if owner is not None and owner != name:
                    raise DuplicateSubdomainError(f"Subdomain '{subdomain}' is taken by '{owner}'")
                self._subdomains[subdomain] = name
            self._credential_types[name] = CredentialType(
                name=name,
                subdomain=subdomain or None,
                description=description,
                issuer_address=from_address,
            )
            tx = self._next_tx("createCredentialType", name)
        logger.debug("[%s] credential type %s created by %s", self.name, name, from_address)
        return tx

    def resolve_subdomain(self, subdomain: str) -> str:
        try:
            return self._subdomains[subdomain]
        except KeyError:
            raise NotFoundError(f"Subdomain '{subdomain}' is not mapped") from None

    def get_credential_type(self, name: str) -> CredentialType:
        try:
            return self._credential_types[name]
        except KeyError:
            raise UnknownCredentialTypeError(f"Credential type '{name}' does not exist") from None

    def list_credential_types(self) -> List[CredentialType]:
        return list(self._credential_types.values())

    # ==================== CLAIMS ====================

    def generate_claim_message(self, did: str, content_address: str, credential_type: str) -> str:
        return claim_message_hash(did, content_address, credential_type, self._address)

    def record_claim(
        self, did: str, content_address: str, credential_type: str, signature: str, from_address: str
    ) -> None:
        if not self.is_registered(did):
            raise UnregisteredSubjectError(f"{did} is not registered on {self.name}")
        ctype = self.get_credential_type(credential_type)
        if ctype.issuer_address.lower() != str(from_address).lower():
            raise UnauthorizedIssuerError(
                f"{from_address} is not the issuer of credential type '{credential_type}'"
            )
        self._check_signer(self.generate_claim_message(did, content_address, credential_type), signature, did)

        with self._lock:
            self._claims[(did, credential_type)] = ClaimRecord(
                did=did,
                credential_type=credential_type,
                content_address=content_address,
                authorizing_signature=signature,
            )
            self._next_tx("issueClaim", did, credential_type)
        logger.debug("[%s] claim %s recorded for %s", self.name, credential_type, did)

    def get_claim(self, did: str, credential_type: str) -> Optional[str]:
        record = self._claims.get((did, credential_type))
        return record.content_address if record else None

    def get_claim_record(self, did: str, credential_type: str) -> Optional[ClaimRecord]:
        return self._claims.get((did, credential_type))

    def get_statistics(self) -> Dict[str, int]:
        return {
            "registered_dids": len(self._registered),
            "credential_types": len(self._credential_types),
            "claims": len(self._claims),
        }
