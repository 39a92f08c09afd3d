"""
Encryption Codec
================

Encrypts claim documents to a recipient P-256 key as compact JWE
(ECDH-ES direct key agreement + A256GCM, RFC 7516 / RFC 7518).

The protected header names the algorithms, so decryption never relies
on caller state to choose them.
"""

import json
import os
import struct
from typing import Any, Dict, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.concatkdf import ConcatKDFHash

from .claim_document import ClaimDocument
from .errors import DecryptionError, EncodingError, KeyFormatError
from .key_manager import (
    b64url_decode,
    b64url_encode,
    jwk_thumbprint,
    load_private_key,
    load_public_key,
    public_key_to_jwk,
)

ALG_ECDH_ES = "ECDH-ES"
ENC_A256GCM = "A256GCM"

CEK_BITS = 256
IV_SIZE = 12
TAG_SIZE = 16

SUPPORTED_ENC = {ENC_A256GCM: CEK_BITS}


def _length_prefixed(value: bytes) -> bytes:
    return struct.pack(">I", len(value)) + value


def _concat_kdf(shared_secret: bytes, enc: str, key_bits: int) -> bytes:
    """RFC 7518 section 4.6.2 key derivation (empty apu/apv)"""
    other_info = (
        _length_prefixed(enc.encode("ascii"))
        + _length_prefixed(b"")
        + _length_prefixed(b"")
        + struct.pack(">I", key_bits)
    )
    kdf = ConcatKDFHash(algorithm=hashes.SHA256(), length=key_bits // 8, otherinfo=other_info)
    return kdf.derive(shared_secret)


def _strict_b64url(segment: str, name: str) -> bytes:
    """Decode, rejecting any non-canonical encoding of the same bytes"""
    try:
        raw = b64url_decode(segment)
    except (ValueError, TypeError) as e:
        raise DecryptionError(f"JWE {name} is not base64url") from e
    if b64url_encode(raw) != segment:
        raise DecryptionError(f"JWE {name} is not canonical base64url")
    return raw


def encrypt(document: ClaimDocument, recipient_public_jwk: Dict[str, Any]) -> str:
    """
    Encrypt a claim document for a recipient

    Args:
        document: The claim to protect
        recipient_public_jwk: Recipient P-256 public JWK

    Returns:
        Compact JWE string

    Raises:
        KeyFormatError: if the public key is malformed
        EncodingError: if the document cannot be serialised
    """
    recipient_key = load_public_key(recipient_public_jwk)
    if not isinstance(document, ClaimDocument):
        raise EncodingError("Only ClaimDocument instances can be encrypted")
    plaintext = document.to_canonical_bytes()

    ephemeral = ec.generate_private_key(ec.SECP256R1())
    shared_secret = ephemeral.exchange(ec.ECDH(), recipient_key)
    cek = _concat_kdf(shared_secret, ENC_A256GCM, CEK_BITS)

    header = {
        "alg": ALG_ECDH_ES,
        "enc": ENC_A256GCM,
        "typ": "JWE",
        "kid": jwk_thumbprint(recipient_public_jwk),
        "epk": public_key_to_jwk(ephemeral.public_key()),
    }
    protected = b64url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))

    iv = os.urandom(IV_SIZE)
    sealed = AESGCM(cek).encrypt(iv, plaintext, protected.encode("ascii"))
    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]

    # Direct key agreement: the encrypted key segment is empty
    return ".".join([protected, "", b64url_encode(iv), b64url_encode(ciphertext), b64url_encode(tag)])


def decrypt(envelope: Union[str, bytes], recipient_private_jwk: Dict[str, Any]) -> ClaimDocument:
    """
    Decrypt a compact JWE produced by encrypt()

    Raises:
        KeyFormatError: if the private key is malformed
        DecryptionError: wrong key, unsupported header, corrupt or tampered envelope
        EncodingError: if the plaintext is not a well-formed claim document
    """
    private_key = load_private_key(recipient_private_jwk)

    if isinstance(envelope, bytes):
        try:
            envelope = envelope.decode("ascii")
        except UnicodeDecodeError as e:
            raise DecryptionError("Envelope is not ASCII") from e
    if not isinstance(envelope, str):
        raise DecryptionError("Envelope must be a string")

    parts = envelope.split(".")
    if len(parts) != 5:
        raise DecryptionError(f"Compact JWE must have 5 segments, got {len(parts)}")
    protected, encrypted_key, iv_b64, ciphertext_b64, tag_b64 = parts

    try:
        header = json.loads(_strict_b64url(protected, "header").decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecryptionError("JWE header is not JSON") from e
    if not isinstance(header, dict):
        raise DecryptionError("JWE header must be a JSON object")

    alg, enc = header.get("alg"), header.get("enc")
    if not isinstance(alg, str) or not isinstance(enc, str):
        raise DecryptionError("JWE alg and enc must be strings")
    if alg != ALG_ECDH_ES:
        raise DecryptionError(f"Unsupported JWE alg: {alg!r}")
    if enc not in SUPPORTED_ENC:
        raise DecryptionError(f"Unsupported JWE enc: {enc!r}")
    if encrypted_key:
        raise DecryptionError("ECDH-ES envelopes carry no encrypted key")

    try:
        ephemeral_public = load_public_key(header.get("epk"))
    except KeyFormatError as e:
        raise DecryptionError(f"JWE epk is invalid: {e.message}") from e

    iv = _strict_b64url(iv_b64, "iv")
    ciphertext = _strict_b64url(ciphertext_b64, "ciphertext")
    tag = _strict_b64url(tag_b64, "tag")
    if len(iv) != IV_SIZE or len(tag) != TAG_SIZE:
        raise DecryptionError("JWE iv or tag has the wrong length")

    shared_secret = private_key.exchange(ec.ECDH(), ephemeral_public)
    cek = _concat_kdf(shared_secret, enc, SUPPORTED_ENC[enc])

    try:
        plaintext = AESGCM(cek).decrypt(iv, ciphertext + tag, protected.encode("ascii"))
    except InvalidTag as e:
        raise DecryptionError("Authentication tag mismatch: wrong key or tampered envelope") from e

    return ClaimDocument.from_bytes(plaintext)
