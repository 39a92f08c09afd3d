"""
Bulk Issuance
=============

Fans out independent claim issuances to a bounded thread pool, joins
them all and reports per-item outcomes. One failed item never cancels or
hides its siblings.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence, Tuple

from .claim_document import ClaimDocument

logger = logging.getLogger(__name__)

IssueFn = Callable[[str, ClaimDocument], str]


@dataclass(frozen=True)
class BulkFailure:
    index: int
    credential_type: str
    error: str
    error_type: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "credentialType": self.credential_type,
            "error": self.error,
            "errorType": self.error_type,
        }


@dataclass
class BulkIssueResult:
    """Disjoint success and failure lists, each in input order"""
    succeeded: List[Tuple[int, str]] = field(default_factory=list)
    failed: List[BulkFailure] = field(default_factory=list)

    @property
    def content_addresses(self) -> List[str]:
        return [address for _, address in self.succeeded]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": [{"index": i, "contentAddress": a} for i, a in self.succeeded],
            "failed": [f.to_dict() for f in self.failed],
        }


def validate_items(items: Sequence[Tuple[str, ClaimDocument]]) -> List[Tuple[str, ClaimDocument]]:
    """Reject an empty or malformed batch as a whole"""
    if items is None or isinstance(items, (str, bytes)):
        raise ValueError("Bulk issuance needs a list of (credential_type, document) pairs")
    items = list(items)
    if not items:
        raise ValueError("Bulk issuance needs at least one claim")

    for position, item in enumerate(items):
        if not isinstance(item, (tuple, list)) or len(item) != 2:
            raise ValueError(f"Item {position} is not a (credential_type, document) pair")
        credential_type, document = item
        if not isinstance(credential_type, str) or not credential_type:
            raise ValueError(f"Item {position} has no credential type")
        if not isinstance(document, ClaimDocument):
            raise ValueError(f"Item {position} document is not a ClaimDocument")
    return [tuple(item) for item in items]


class BulkIssuer:

    def __init__(self, max_workers: int = 8):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers

    def issue_all(self, items: Sequence[Tuple[str, ClaimDocument]], issue_one: IssueFn) -> BulkIssueResult:
        """
        Issue every (credential_type, document) pair concurrently

        Args:
            items: Ordered claims to issue
            issue_one: Issues one claim and returns its content address

        Returns:
            BulkIssueResult; never raises for individual item failures
        """
        items = validate_items(items)
        workers = min(self.max_workers, len(items))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bulk-issue") as pool:
            futures = [pool.submit(issue_one, ctype, doc) for ctype, doc in items]

        result = BulkIssueResult()
        for index, ((ctype, _), future) in enumerate(zip(items, futures)):
            error = future.exception()
            if error is None:
                result.succeeded.append((index, future.result()))
            else:
                result.failed.append(BulkFailure(
                    index=index,
                    credential_type=ctype,
                    error=str(error) or type(error).__name__,
                    error_type=type(error).__name__,
                ))

        if result.failed:
            logger.warning(
                "Some claims failed: %s",
                "; ".join(f"Claim {f.index} ({f.credential_type}): {f.error}" for f in result.failed),
            )
        logger.info("Bulk issued %d/%d claims successfully", len(result.succeeded), len(items))
        return result
