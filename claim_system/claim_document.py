"""
Claim Document
==============

The attested payload that gets encrypted, stored and pointed to by the
registry. Storage and ledger layers only ever see its ciphertext.
"""

import json
import hashlib
import uuid
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .errors import EncodingError

DEFAULT_CONTEXT = ["https://www.w3.org/2018/credentials/v1"]

REQUIRED_FIELDS = ("claimId", "context", "data", "issuerId", "subjectId", "issuedAt")


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with trailing Z"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as e:
        raise EncodingError(f"Invalid timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ClaimDocument:
    """
    An attestation about a subject

    `context` is an ordered list of semantic namespaces, `data` is an open
    key/value map of the actual claims.
    """
    subject_id: str
    issuer_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    claim_id: str = ""
    context: List[str] = field(default_factory=lambda: list(DEFAULT_CONTEXT))
    issued_at: Optional[datetime] = None
    expiration_date: Optional[datetime] = None

    def __post_init__(self):
        if not self.claim_id:
            self.claim_id = f"urn:uuid:{uuid.uuid4()}"
        if self.issued_at is None:
            self.issued_at = datetime.now(timezone.utc)
        # Normalise so that documents compare equal after a round-trip
        self.issued_at = parse_timestamp(format_timestamp(self.issued_at))
        if self.expiration_date is not None:
            self.expiration_date = parse_timestamp(format_timestamp(self.expiration_date))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiration_date is None:
            return False
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now > self.expiration_date

    def to_dict(self) -> Dict[str, Any]:
        """Convert to camelCase JSON form"""
        doc = {
            "claimId": self.claim_id,
            "context": list(self.context),
            "data": self.data,
            "issuerId": self.issuer_id,
            "subjectId": self.subject_id,
            "issuedAt": format_timestamp(self.issued_at),
        }
        if self.expiration_date is not None:
            doc["expirationDate"] = format_timestamp(self.expiration_date)
        return doc

    def to_canonical_bytes(self) -> bytes:
        """Sorted keys, no whitespace, UTF-8"""
        try:
            canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise EncodingError(f"Claim document is not JSON serialisable: {e}") from e
        return canonical.encode("utf-8")

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def get_hash(self) -> str:
        return hashlib.sha256(self.to_canonical_bytes()).hexdigest()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClaimDocument":
        if not isinstance(data, dict):
            raise EncodingError("Claim document must be a JSON object")

        missing = [name for name in REQUIRED_FIELDS if name not in data]
        if missing:
            raise EncodingError(f"Claim document is missing: {', '.join(missing)}")
        if not isinstance(data["data"], dict):
            raise EncodingError("Claim document 'data' must be an object")
        if not isinstance(data["context"], list):
            raise EncodingError("Claim document 'context' must be a list")

        expiration = data.get("expirationDate")
        return cls(
            claim_id=data["claimId"],
            context=list(data["context"]),
            data=data["data"],
            issuer_id=data["issuerId"],
            subject_id=data["subjectId"],
            issued_at=parse_timestamp(data["issuedAt"]),
            expiration_date=parse_timestamp(expiration) if expiration else None,
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> "ClaimDocument":
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise EncodingError(f"Plaintext is not a JSON document: {e}") from e
        return cls.from_dict(data)
