"""
DID Manager - Derivation and rendering of claim subject DIDs

DID Format: did:proofofme:<address>

Reference: https://www.w3.org/TR/did-core/
"""

import json
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field
from enum import Enum

from eth_utils import is_hex_address, to_checksum_address


class DIDMethod(Enum):
    """Supported DID methods"""
    PROOFOFME = "proofofme"   # Address-anchored claim subjects
    ETH = "ethr"              # Ethereum DID


def normalize_address(address: str) -> str:
    """
    Normalise an account address

    Hex Ethereum addresses become EIP-55 checksummed so that one account
    always maps to one DID. Other identifiers are kept as given.
    """
    if not isinstance(address, str) or not address.strip():
        raise ValueError("Address must be a non-empty string")
    address = address.strip()
    if ":" in address:
        raise ValueError(f"Address must not contain ':': {address!r}")
    if is_hex_address(address):
        return to_checksum_address(address)
    return address


@dataclass
class DIDDocument:
    """
    W3C DID Document for a registered claim subject

    Reference: https://www.w3.org/TR/did-core/#core-properties
    """
    id: str
    controller: Optional[str] = None
    verification_method: List[Dict] = field(default_factory=list)
    authentication: List[str] = field(default_factory=list)
    key_agreement: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.controller:
            self.controller = self.id

    def to_dict(self) -> Dict[str, Any]:
        doc = {
            "@context": [
                "https://www.w3.org/ns/did/v1",
                "https://w3id.org/security/suites/jws-2020/v1",
            ],
            "id": self.id,
            "controller": self.controller,
            "verificationMethod": self.verification_method,
            "authentication": self.authentication,
        }
        if self.key_agreement:
            doc["keyAgreement"] = self.key_agreement
        return doc

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


class DIDManager:
    """
    Derives DIDs from account addresses

    Derivation is deterministic and side-effect free; registration state
    lives in the registry, not here.
    """

    def __init__(self, method: str = DIDMethod.PROOFOFME.value):
        if not method or ":" in method:
            raise ValueError(f"Invalid DID method: {method!r}")
        self.method = method

    def derive(self, address: str) -> str:
        """did:<method>:<address>"""
        return f"did:{self.method}:{normalize_address(address)}"

    def address_of(self, did: str) -> str:
        """Inverse of derive()"""
        prefix = f"did:{self.method}:"
        if not isinstance(did, str) or not did.startswith(prefix) or len(did) == len(prefix):
            raise ValueError(f"Not a did:{self.method} identifier: {did!r}")
        return did[len(prefix):]

    def build_document(self, address: str, public_jwk: Optional[Dict[str, Any]] = None) -> DIDDocument:
        """
        Render the DID document for an address

        Args:
            address: Subject account address
            public_jwk: Optional recipient key advertised for key agreement
        """
        did = self.derive(address)
        account = normalize_address(address)

        verification_methods = []
        authentication = []
        key_agreement = []

        if is_hex_address(account):
            vm_id = f"{did}#controller"
            verification_methods.append({
                "id": vm_id,
                "type": "EcdsaSecp256k1RecoveryMethod2020",
                "controller": did,
                "blockchainAccountId": f"eip155:1:{account}",
            })
            authentication.append(vm_id)

        if public_jwk:
            kid = public_jwk.get("kid") or "key-1"
            vm_id = f"{did}#{kid}"
            verification_methods.append({
                "id": vm_id,
                "type": "JsonWebKey2020",
                "controller": did,
                "publicKeyJwk": {k: v for k, v in public_jwk.items() if k != "d"},
            })
            key_agreement.append(vm_id)

        return DIDDocument(
            id=did,
            verification_method=verification_methods,
            authentication=authentication,
            key_agreement=key_agreement,
        )
