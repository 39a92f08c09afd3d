"""
Key Manager - Recipient key pairs and ledger signing for the claim system

Supports:
- P-256 (ECDH-ES): recipient key pairs that encrypt claim documents, as JWK
- secp256k1: Ethereum-style signing of registry messages
"""

import os
import json
import base64
import hashlib
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

# Cryptography imports
from cryptography.hazmat.primitives.asymmetric import ec

# Ethereum compatibility
from eth_account import Account
from eth_account.messages import encode_defunct

from .errors import KeyFormatError, SigningError

P256_COORD_SIZE = 32


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(data: str) -> bytes:
    if not isinstance(data, str):
        raise ValueError("base64url value must be a string")
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _utcnow() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass(frozen=True)
class KeyPair:
    """Recipient key pair held as JSON Web Keys"""
    public_jwk: Dict[str, Any]
    private_jwk: Optional[Dict[str, Any]] = None  # Only held locally, never shared
    key_id: str = ""
    created_at: str = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "key_id": self.key_id,
            "public_jwk": self.public_jwk,
            "created_at": self.created_at,
        }
        if self.private_jwk is not None:
            data["private_jwk"] = self.private_jwk
        return data


# ==================== JWK HELPERS ====================

def jwk_thumbprint(public_jwk: Dict[str, Any]) -> str:
    """RFC 7638 thumbprint of an EC public JWK"""
    required = {k: public_jwk.get(k) for k in ("crv", "kty", "x", "y")}
    if not all(isinstance(v, str) for v in required.values()):
        raise KeyFormatError("EC JWK requires string crv, kty, x and y members")
    canonical = json.dumps(required, sort_keys=True, separators=(",", ":"))
    return b64url_encode(hashlib.sha256(canonical.encode("utf-8")).digest())


def _coord(jwk: Dict[str, Any], name: str) -> int:
    try:
        raw = b64url_decode(jwk[name])
    except (KeyError, ValueError, TypeError) as e:
        raise KeyFormatError(f"JWK member '{name}' is missing or not base64url") from e
    if len(raw) != P256_COORD_SIZE:
        raise KeyFormatError(f"JWK member '{name}' must be {P256_COORD_SIZE} bytes")
    return int.from_bytes(raw, "big")


def _check_header(jwk: Any) -> None:
    if not isinstance(jwk, dict):
        raise KeyFormatError("JWK must be a JSON object")
    if jwk.get("kty") != "EC" or jwk.get("crv") != "P-256":
        raise KeyFormatError("Only EC P-256 keys are supported")


def load_public_key(public_jwk: Dict[str, Any]) -> ec.EllipticCurvePublicKey:
    """Import a P-256 public JWK"""
    _check_header(public_jwk)
    x, y = _coord(public_jwk, "x"), _coord(public_jwk, "y")
    try:
        return ec.EllipticCurvePublicNumbers(x, y, ec.SECP256R1()).public_key()
    except ValueError as e:
        raise KeyFormatError(f"Invalid P-256 public key: {e}") from e


def load_private_key(private_jwk: Dict[str, Any]) -> ec.EllipticCurvePrivateKey:
    """Import a P-256 private JWK, checking d against x/y"""
    _check_header(private_jwk)
    if "d" not in private_jwk:
        raise KeyFormatError("Private JWK has no 'd' member")
    d = _coord(private_jwk, "d")
    try:
        private_key = ec.derive_private_key(d, ec.SECP256R1())
    except ValueError as e:
        raise KeyFormatError(f"Invalid P-256 private key: {e}") from e

    numbers = private_key.public_key().public_numbers()
    if (numbers.x, numbers.y) != (_coord(private_jwk, "x"), _coord(private_jwk, "y")):
        raise KeyFormatError("Private JWK 'd' does not match its public coordinates")
    return private_key


def public_key_to_jwk(public_key: ec.EllipticCurvePublicKey) -> Dict[str, Any]:
    numbers = public_key.public_numbers()
    return {
        "kty": "EC",
        "crv": "P-256",
        "x": b64url_encode(numbers.x.to_bytes(P256_COORD_SIZE, "big")),
        "y": b64url_encode(numbers.y.to_bytes(P256_COORD_SIZE, "big")),
    }


def private_key_to_jwk(private_key: ec.EllipticCurvePrivateKey) -> Dict[str, Any]:
    jwk = public_key_to_jwk(private_key.public_key())
    jwk["d"] = b64url_encode(private_key.private_numbers().private_value.to_bytes(P256_COORD_SIZE, "big"))
    return jwk


class KeyManager:
    """
    Manages the recipient key pair used to encrypt claims

    Features:
    - Generate P-256 key pairs (ECDH-ES recipients)
    - Import and validate JWK key pairs
    - Save/Load key pairs
    """

    # ==================== KEY GENERATION ====================

    def generate_p256_keypair(self) -> KeyPair:
        """
        Generate a fresh P-256 recipient key pair

        Returns:
            KeyPair with public and private JWKs
        """
        private_key = ec.generate_private_key(ec.SECP256R1())
        public_jwk = public_key_to_jwk(private_key.public_key())
        kid = jwk_thumbprint(public_jwk)

        return KeyPair(
            public_jwk={**public_jwk, "kid": kid},
            private_jwk={**private_key_to_jwk(private_key), "kid": kid},
            key_id=kid,
        )

    # ==================== IMPORT / VALIDATION ====================

    def import_keypair(self, public_jwk: Dict[str, Any], private_jwk: Dict[str, Any]) -> KeyPair:
        """
        Validate and wrap an externally supplied key pair

        Raises:
            KeyFormatError: if either key is malformed or the halves do not match
        """
        public_key = load_public_key(public_jwk)
        private_key = load_private_key(private_jwk)

        if private_key.public_key().public_numbers() != public_key.public_numbers():
            raise KeyFormatError("Private key does not belong to the supplied public key")

        kid = jwk_thumbprint(public_jwk)
        public_clean = {k: v for k, v in public_jwk.items() if k != "d"}
        public_clean["kid"] = kid
        return KeyPair(public_jwk=public_clean, private_jwk={**private_jwk, "kid": kid}, key_id=kid)

    # ==================== PERSISTENCE ====================

    def save_keypair(self, keypair: KeyPair, filepath: str):
        """
        Save key pair to a JSON file

        The file is created owner-only (0600).
        WARNING: the private JWK is written in clear; use a KMS in production
        """
        fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            # mode only applies on creation; tighten an existing file too
            os.fchmod(fd, 0o600)
            json.dump(keypair.to_dict(), f, indent=2)

    def load_keypair(self, filepath: str) -> KeyPair:
        """Load and validate a key pair saved with save_keypair"""
        with open(filepath, "r") as f:
            data = json.load(f)

        try:
            keypair = self.import_keypair(data["public_jwk"], data["private_jwk"])
        except KeyError as e:
            raise KeyFormatError(f"Key file is missing {e}") from e
        return KeyPair(
            public_jwk=keypair.public_jwk,
            private_jwk=keypair.private_jwk,
            key_id=keypair.key_id,
            created_at=data.get("created_at") or keypair.created_at,
        )


# ==================== SIGNING ====================

class SigningCapability(ABC):
    """Wallet-side signer for registry message hashes"""

    @abstractmethod
    def sign(self, message_hash: str, address: str) -> str:
        """Sign a 0x-prefixed 32 byte hash on behalf of address"""


class LocalAccountSigner(SigningCapability):
    """
    Signs with locally held secp256k1 accounts (Ethereum personal_sign style)

    Intended for development and tests; production delegates to a wallet.
    """

    def __init__(self, private_keys: Iterable[str] = ()):
        self._accounts: Dict[str, Any] = {}
        for key in private_keys:
            self.add_account(key)

    def add_account(self, private_key: str) -> str:
        account = Account.from_key(private_key)
        self._accounts[account.address.lower()] = account
        return account.address

    def create_account(self) -> str:
        account = Account.create()
        self._accounts[account.address.lower()] = account
        return account.address

    @property
    def addresses(self) -> list:
        return [a.address for a in self._accounts.values()]

    def sign(self, message_hash: str, address: str) -> str:
        account = self._accounts.get(str(address).lower())
        if account is None:
            raise SigningError(f"No signing account for {address}")

        try:
            msg = encode_defunct(hexstr=message_hash)
        except (ValueError, TypeError) as e:
            raise SigningError(f"Message hash is not valid hex: {e}") from e

        signed = account.sign_message(msg)
        return "0x" + bytes(signed.signature).hex()


def recover_signer(message_hash: str, signature: str) -> str:
    """Recover the address that produced signature over message_hash"""
    try:
        msg = encode_defunct(hexstr=message_hash)
        return Account.recover_message(msg, signature=signature)
    except Exception as e:
        raise SigningError(f"Signature could not be recovered: {e}") from e
