"""
Claim System Tests
==================

End-to-end checks of the claim lifecycle against in-memory collaborators
"""

import json
import os
import stat
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from eth_utils import to_checksum_address

from claim_system import encryption
from claim_system.bulk_issuer import BulkIssuer
from claim_system.claim_document import ClaimDocument
from claim_system.claim_service import ClaimService
from claim_system.did_manager import DIDManager
from claim_system.errors import (
    ClaimNotFoundError,
    DecryptionError,
    DuplicateCredentialTypeError,
    DuplicateSubdomainError,
    EncodingError,
    KeyFormatError,
    NotFoundError,
    SigningError,
    StorageError,
    UnauthorizedIssuerError,
    UnknownCredentialTypeError,
    UnregisteredSubjectError,
)
from claim_system.key_manager import KeyManager, LocalAccountSigner, b64url_decode, b64url_encode, recover_signer
from claim_system.registry import InMemoryRegistry
from claim_system.store import FileSystemStore, InMemoryStore, content_address_of, create_store


def make_document(subject: str = "did:proofofme:subject", **data) -> ClaimDocument:
    return ClaimDocument(
        claim_id="c1",
        subject_id=subject,
        issuer_id="did:proofofme:issuer",
        data=data or {"over18": True},
        issued_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def make_service(store=None, store_retries: int = 0):
    signer = LocalAccountSigner()
    service = ClaimService(
        registry=InMemoryRegistry(address="0x00000000000000000000000000000000000000a1", name="primary"),
        secondary_registry=InMemoryRegistry(address="0x00000000000000000000000000000000000000a2", name="secondary"),
        store=store if store is not None else InMemoryStore(),
        signer=signer,
        store_retries=store_retries,
    )
    return service, signer


class FlakyStore(InMemoryStore):
    """Fails the first `failures` store calls"""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.calls = 0

    def store(self, data):
        self.calls += 1
        if self.calls <= self.failures:
            raise StorageError("backend unavailable")
        return super().store(data)


class TestEncryption:
    """Test the JWE codec"""

    def setup_method(self):
        self.keys = KeyManager().generate_p256_keypair()
        self.document = make_document(over18=True, score=0.97, tags=["a", "b"])

    def test_round_trip(self):
        envelope = encryption.encrypt(self.document, self.keys.public_jwk)
        decrypted = encryption.decrypt(envelope, self.keys.private_jwk)

        assert decrypted == self.document
        assert decrypted.to_dict() == self.document.to_dict()

    def test_envelope_is_self_describing(self):
        envelope = encryption.encrypt(self.document, self.keys.public_jwk)
        parts = envelope.split(".")

        assert len(parts) == 5
        assert parts[1] == ""
        header = json.loads(b64url_decode(parts[0]))
        assert header["alg"] == "ECDH-ES"
        assert header["enc"] == "A256GCM"
        assert header["kid"] == self.keys.key_id
        assert header["epk"]["crv"] == "P-256"
        assert "over18" not in envelope

    def test_encryption_is_randomised(self):
        first = encryption.encrypt(self.document, self.keys.public_jwk)
        second = encryption.encrypt(self.document, self.keys.public_jwk)
        assert first != second

    def test_tampering_any_character_is_detected(self):
        envelope = encryption.encrypt(self.document, self.keys.public_jwk)

        for position, char in enumerate(envelope):
            replacement = "A" if char != "A" else "B"
            tampered = envelope[:position] + replacement + envelope[position + 1:]
            with pytest.raises(DecryptionError):
                encryption.decrypt(tampered, self.keys.private_jwk)

    def test_non_string_header_fields_are_rejected(self):
        envelope = encryption.encrypt(self.document, self.keys.public_jwk)
        parts = envelope.split(".")
        header = json.loads(b64url_decode(parts[0]))

        for field, value in (("enc", ["A256GCM"]), ("enc", {"v": 1}), ("alg", ["ECDH-ES"])):
            bad = dict(header, **{field: value})
            parts[0] = b64url_encode(json.dumps(bad).encode("utf-8"))
            with pytest.raises(DecryptionError):
                encryption.decrypt(".".join(parts), self.keys.private_jwk)

    def test_wrong_key_fails(self):
        other = KeyManager().generate_p256_keypair()
        envelope = encryption.encrypt(self.document, self.keys.public_jwk)

        with pytest.raises(DecryptionError):
            encryption.decrypt(envelope, other.private_jwk)

    def test_malformed_public_key(self):
        bad = dict(self.keys.public_jwk, x="AAAA")
        with pytest.raises(KeyFormatError):
            encryption.encrypt(self.document, bad)

        with pytest.raises(KeyFormatError):
            encryption.encrypt(self.document, {"kty": "RSA", "n": "x", "e": "AQAB"})

    def test_malformed_private_key(self):
        envelope = encryption.encrypt(self.document, self.keys.public_jwk)
        with pytest.raises(KeyFormatError):
            encryption.decrypt(envelope, self.keys.public_jwk)

    def test_unserialisable_document(self):
        document = make_document(blob=object())
        with pytest.raises(EncodingError):
            encryption.encrypt(document, self.keys.public_jwk)

    def test_plaintext_that_is_not_a_document(self):
        class NotADocument(ClaimDocument):
            def to_canonical_bytes(self) -> bytes:
                return b"[1, 2, 3]"

        envelope = encryption.encrypt(NotADocument(subject_id="s", issuer_id="i"), self.keys.public_jwk)
        with pytest.raises(EncodingError):
            encryption.decrypt(envelope, self.keys.private_jwk)

    def test_garbage_envelope(self):
        for garbage in ["", "not-a-jwe", "a.b.c.d.e", b"\xff\xfe"]:
            with pytest.raises(DecryptionError):
                encryption.decrypt(garbage, self.keys.private_jwk)


class TestClaimDocument:

    def test_from_dict_requires_fields(self):
        with pytest.raises(EncodingError):
            ClaimDocument.from_dict({"claimId": "c1"})

    def test_expiry(self):
        doc = make_document()
        assert doc.is_expired() is False

        doc.expiration_date = datetime.now(timezone.utc) - timedelta(days=1)
        assert doc.is_expired() is True

    def test_camel_case_form(self):
        doc = make_document()
        data = doc.to_dict()
        assert data["issuedAt"] == "2026-01-01T00:00:00Z"
        assert set(data) == {"claimId", "context", "data", "issuerId", "subjectId", "issuedAt"}
        assert ClaimDocument.from_dict(data) == doc


class TestKeyManager:
    """Test KeyManager functionality"""

    def setup_method(self):
        self.key_manager = KeyManager()

    def test_generate_p256(self):
        key = self.key_manager.generate_p256_keypair()

        assert key.public_jwk["kty"] == "EC"
        assert key.public_jwk["crv"] == "P-256"
        assert "d" not in key.public_jwk
        assert "d" in key.private_jwk
        assert key.key_id == key.public_jwk["kid"]

    def test_import_rejects_mismatched_halves(self):
        first = self.key_manager.generate_p256_keypair()
        second = self.key_manager.generate_p256_keypair()

        with pytest.raises(KeyFormatError):
            self.key_manager.import_keypair(first.public_jwk, second.private_jwk)

    def test_save_and_load(self, tmp_path):
        key = self.key_manager.generate_p256_keypair()
        path = tmp_path / "keys.json"

        self.key_manager.save_keypair(key, str(path))
        loaded = self.key_manager.load_keypair(str(path))

        assert loaded.public_jwk == key.public_jwk
        assert loaded.key_id == key.key_id
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_save_tightens_existing_file(self, tmp_path):
        path = tmp_path / "keys.json"
        path.write_text("{}")
        os.chmod(path, 0o644)

        self.key_manager.save_keypair(self.key_manager.generate_p256_keypair(), str(path))
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_local_signer(self):
        signer = LocalAccountSigner()
        address = signer.create_account()
        message_hash = "0x" + "ab" * 32

        signature = signer.sign(message_hash, address)
        assert recover_signer(message_hash, signature) == address

        with pytest.raises(SigningError):
            signer.sign(message_hash, "0x000000000000000000000000000000000000dEaD")


class TestDIDManager:

    def test_derive_is_checksummed(self):
        manager = DIDManager()
        lower = "0x742d35cc6634c0532925a3b844bc9e7595f8c1f5"

        did = manager.derive(lower)
        assert did == manager.derive(lower.upper().replace("0X", "0x"))
        assert did == f"did:proofofme:{to_checksum_address(lower)}"
        assert manager.address_of(did) == to_checksum_address(lower)

    def test_rejects_empty_address(self):
        with pytest.raises(ValueError):
            DIDManager().derive("")

    def test_document_advertises_key(self):
        keys = KeyManager().generate_p256_keypair()
        doc = DIDManager().build_document("0x742d35cc6634c0532925a3b844bc9e7595f8c1f5", keys.public_jwk)
        data = doc.to_dict()

        assert data["id"] == doc.id
        assert len(data["verificationMethod"]) == 2
        assert data["keyAgreement"] == [f"{doc.id}#{keys.key_id}"]


class TestStore:

    def test_content_addressing_is_deterministic(self):
        store = InMemoryStore()
        first = store.store(b"ciphertext")
        second = store.store(b"ciphertext")

        assert first == second
        assert first.content_address == content_address_of(b"ciphertext")
        assert first.size == len(b"ciphertext")
        assert len(store) == 1
        assert store.retrieve(first.content_address) == b"ciphertext"

    def test_unknown_address(self):
        store = InMemoryStore()
        with pytest.raises(NotFoundError):
            store.retrieve("0" * 64)
        with pytest.raises(NotFoundError):
            store.retrieve("not-an-address")

    def test_filesystem_store(self, tmp_path):
        store = create_store(f"file://{tmp_path / 'blobs'}")
        assert isinstance(store, FileSystemStore)

        result = store.store("envelope")
        assert store.store("envelope") == result
        assert store.retrieve(result.content_address) == b"envelope"
        assert (tmp_path / "blobs" / f"{result.content_address}.jwe").exists()

    def test_filesystem_store_detects_corruption(self, tmp_path):
        store = FileSystemStore(tmp_path)
        result = store.store(b"envelope")
        (tmp_path / f"{result.content_address}.jwe").write_bytes(b"changed")

        with pytest.raises(StorageError):
            store.retrieve(result.content_address)

    def test_unsupported_uri(self):
        with pytest.raises(ValueError):
            create_store("s3://bucket")


class TestRegistration:

    def setup_method(self):
        self.service, self.signer = make_service()
        self.address = self.signer.create_account()

    def test_register_is_idempotent(self):
        did = self.service.register_did(self.address)
        assert self.service.register_did(self.address) == did

        status = self.service.is_did_registered(self.address)
        assert status.primary and status.secondary
        assert status.fully_registered

    def test_unregistered(self):
        status = self.service.is_did_registered(self.address)
        assert status.fully_registered is False
        assert status.to_dict()["primary"] is False

    def test_partitions_can_disagree(self):
        registry = self.service.registration.primary
        did = self.service.did_manager.derive(self.address)
        signature = self.signer.sign(registry.generate_registration_message(did), self.address)
        registry.register_did(did, signature, self.address)

        status = self.service.is_did_registered(self.address)
        assert status.primary is True
        assert status.secondary is False
        assert status.fully_registered is False

        # Completing the registration fills in the missing partition only
        self.service.register_did(self.address)
        assert self.service.is_did_registered(self.address).fully_registered

    def test_registration_needs_subject_signature(self):
        with pytest.raises(SigningError):
            self.service.register_did("0x000000000000000000000000000000000000dEaD")

    def test_registry_rejects_foreign_signature(self):
        registry = self.service.registration.primary
        other = self.signer.create_account()
        did = self.service.did_manager.derive(self.address)
        signature = self.signer.sign(registry.generate_registration_message(did), other)

        with pytest.raises(SigningError):
            registry.register_did(did, signature, other)


class TestCredentialTypes:

    def setup_method(self):
        self.service, self.signer = make_service()
        self.issuer = self.signer.create_account()

    def test_create_and_exists(self):
        assert self.service.credential_type_exists("age-over-18") is False
        tx = self.service.create_credential_type("age-over-18", "Adult check", self.issuer, subdomain="age")

        assert tx.startswith("0x")
        assert self.service.credential_type_exists("age-over-18")
        assert self.service.credential_type_by_subdomain("age") == "age-over-18"
        assert self.service.is_subdomain_available("age") is False
        assert self.service.is_subdomain_available("kyc") is True

    def test_duplicate_name(self):
        self.service.create_credential_type("age-over-18", "Adult check", self.issuer)
        with pytest.raises(DuplicateCredentialTypeError):
            self.service.create_credential_type("age-over-18", "Again", self.issuer)

    def test_duplicate_subdomain(self):
        self.service.create_credential_type("age-over-18", "Adult check", self.issuer, subdomain="age")
        with pytest.raises(DuplicateSubdomainError):
            self.service.create_credential_type("age-over-21", "US adult", self.issuer, subdomain="age")
        assert self.service.credential_type_exists("age-over-21") is False

    def test_unmapped_subdomain(self):
        with pytest.raises(NotFoundError):
            self.service.credential_type_by_subdomain("nothing")


class TestIssuance:
    """Issue / verify scenario"""

    def setup_method(self):
        self.service, self.signer = make_service()
        self.subject = self.signer.create_account()
        self.issuer = self.signer.create_account()
        self.service.register_did(self.subject)
        self.service.create_credential_type("age-over-18", "Adult check", self.issuer, subdomain="age")
        self.document = make_document(subject=self.service.did_manager.derive(self.subject))

    def test_issue_and_verify(self):
        address = self.service.issue_claim(self.subject, "age-over-18", self.document, self.issuer)

        assert len(address) == 64
        assert self.service.verify_claim(self.subject, "age-over-18") == self.document
        with pytest.raises(ClaimNotFoundError):
            self.service.verify_claim(self.subject, "unknown-type")

    def test_record_is_signed_by_subject(self):
        self.service.issue_claim(self.subject, "age-over-18", self.document, self.issuer)
        registry = self.service.registry
        did = self.service.did_manager.derive(self.subject)
        record = registry.get_claim_record(did, "age-over-18")

        message_hash = registry.generate_claim_message(did, record.content_address, "age-over-18")
        assert recover_signer(message_hash, record.authorizing_signature) == self.subject

    def test_unregistered_subject_touches_nothing(self):
        stranger = self.signer.create_account()
        store, registry = self.service.store, self.service.registry

        with patch.object(store, "store", wraps=store.store) as store_spy, \
                patch.object(registry, "record_claim", wraps=registry.record_claim) as record_spy:
            with pytest.raises(UnregisteredSubjectError):
                self.service.issue_claim(stranger, "age-over-18", self.document, self.issuer)

        assert store_spy.call_count == 0
        assert record_spy.call_count == 0

    def test_unknown_credential_type_touches_nothing(self):
        store = self.service.store
        with patch.object(store, "store", wraps=store.store) as store_spy:
            with pytest.raises(UnknownCredentialTypeError):
                self.service.issue_claim(self.subject, "no-such-type", self.document, self.issuer)
        assert store_spy.call_count == 0

    def test_unauthorized_issuer(self):
        impostor = self.signer.create_account()

        with pytest.raises(UnauthorizedIssuerError):
            self.service.issue_claim(self.subject, "age-over-18", self.document, impostor)

        did = self.service.did_manager.derive(self.subject)
        assert self.service.registry.get_claim(did, "age-over-18") is None

    def test_subject_signature_refused(self):
        registry = self.service.registry
        with patch.object(self.signer, "sign", side_effect=SigningError("wallet refused")), \
                patch.object(registry, "record_claim", wraps=registry.record_claim) as record_spy:
            with pytest.raises(SigningError):
                self.service.issue_claim(self.subject, "age-over-18", self.document, self.issuer)

        assert record_spy.call_count == 0
        did = self.service.did_manager.derive(self.subject)
        assert registry.get_claim(did, "age-over-18") is None

    def test_reissue_overwrites_pointer(self):
        first = self.service.issue_claim(self.subject, "age-over-18", self.document, self.issuer)
        updated = make_document(subject=self.document.subject_id, over18=False)
        second = self.service.issue_claim(self.subject, "age-over-18", updated, self.issuer)

        assert first != second
        assert self.service.verify_claim(self.subject, "age-over-18") == updated

    def test_storage_failure_is_retried(self):
        service, signer = make_service(store=FlakyStore(failures=2), store_retries=2)
        subject, issuer = signer.create_account(), signer.create_account()
        service.register_did(subject)
        service.create_credential_type("kyc", "KYC passed", issuer)

        address = service.issue_claim(subject, "kyc", self.document, issuer)
        assert service.store.calls == 3
        assert service.verify_claim(subject, "kyc") == self.document
        assert len(address) == 64

    def test_storage_failure_surfaces(self):
        service, signer = make_service(store=FlakyStore(failures=5), store_retries=1)
        subject, issuer = signer.create_account(), signer.create_account()
        service.register_did(subject)
        service.create_credential_type("kyc", "KYC passed", issuer)

        with pytest.raises(StorageError) as exc_info:
            service.issue_claim(subject, "kyc", self.document, issuer)
        assert exc_info.value.retryable is True
        assert service.store.calls == 2

    def test_issue_claim_to_user_registers_subject(self):
        newcomer = self.signer.create_account()
        self.service.issue_claim_to_user(newcomer, "age-over-18", self.document, self.issuer)

        assert self.service.is_did_registered(newcomer).fully_registered
        assert self.service.verify_claim(newcomer, "age-over-18") == self.document

    def test_setup_issuer(self):
        issuer = self.signer.create_account()
        did = self.service.setup_issuer(issuer, "membership", "Club member", subdomain="club")

        assert did == self.service.did_manager.derive(issuer)
        assert self.service.credential_type_exists("membership")
        # Running it again is harmless
        self.service.setup_issuer(issuer, "membership", "Club member", subdomain="club")


class TestVerification:

    def setup_method(self):
        self.service, self.signer = make_service()
        self.subject = self.signer.create_account()
        self.issuer = self.signer.create_account()
        self.service.register_did(self.subject)
        self.service.create_credential_type("age-over-18", "Adult check", self.issuer)
        self.document = make_document()
        self.address = self.service.issue_claim(self.subject, "age-over-18", self.document, self.issuer)

    def test_lost_blob_is_not_missing_claim(self):
        self.service.store.delete(self.address)

        with pytest.raises(NotFoundError):
            self.service.verify_claim(self.subject, "age-over-18")

    def test_rotated_key_cannot_decrypt_old_claims(self):
        new_keys = KeyManager().generate_p256_keypair()
        self.service.set_key_pair(new_keys.public_jwk, new_keys.private_jwk)

        with pytest.raises(DecryptionError):
            self.service.verify_claim(self.subject, "age-over-18")

    def test_export_and_set_key_pair(self):
        exported = self.service.export_public_key()
        assert exported is not None
        assert "d" not in exported

        with pytest.raises(KeyFormatError):
            self.service.set_key_pair(exported, {"kty": "EC", "crv": "P-256"})
        # Failed rotation keeps the old pair
        assert self.service.export_public_key() == exported

    def test_export_before_first_use(self):
        service, _ = make_service()
        assert service.export_public_key() is None


class TestBulkIssuance:

    def setup_method(self):
        self.service, self.signer = make_service()
        self.subject = self.signer.create_account()
        self.issuer = self.signer.create_account()
        self.service.register_did(self.subject)
        for name in ("age-over-18", "kyc"):
            self.service.create_credential_type(name, name, self.issuer)

    def test_failures_are_isolated(self):
        claims = [
            ("age-over-18", make_document(over18=True)),
            ("kyc", make_document(kyc="passed")),
            ("does-not-exist", make_document(other=1)),
        ]

        result = self.service.bulk_issue_claims(self.subject, self.issuer, claims)

        assert len(result.content_addresses) == 2
        assert [index for index, _ in result.succeeded] == [0, 1]
        assert len(result.failed) == 1
        failure = result.failed[0]
        assert failure.index == 2
        assert failure.credential_type == "does-not-exist"
        assert failure.error_type == "UnknownCredentialTypeError"
        assert result.all_succeeded is False

    def test_all_succeed_in_order(self):
        claims = [("age-over-18", make_document(n=1)), ("kyc", make_document(n=2))]
        result = self.service.bulk_issue_claims(self.subject, self.issuer, claims)

        assert result.all_succeeded
        assert self.service.verify_claim(self.subject, "kyc").data == {"n": 2}
        assert result.to_dict()["succeeded"][1]["index"] == 1

    def test_items_run_concurrently(self):
        items = [("kyc", make_document(n=i)) for i in range(4)]
        barrier = threading.Barrier(len(items), timeout=5)

        def issue_one(credential_type, document):
            # every item must be in flight at once to pass the barrier
            barrier.wait()
            return content_address_of(document.to_canonical_bytes())

        result = BulkIssuer(max_workers=len(items)).issue_all(items, issue_one)

        assert result.all_succeeded
        assert [index for index, _ in result.succeeded] == [0, 1, 2, 3]

    def test_invalid_batches(self):
        with pytest.raises(ValueError):
            self.service.bulk_issue_claims(self.subject, self.issuer, [])
        with pytest.raises(ValueError):
            self.service.bulk_issue_claims(self.subject, self.issuer, [("kyc",)])
        with pytest.raises(ValueError):
            self.service.bulk_issue_claims(self.subject, self.issuer, [("kyc", {"not": "a document"})])
