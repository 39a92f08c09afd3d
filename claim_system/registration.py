"""
DID Registration
================

Registers subject DIDs on every ledger partition the system anchors to.
Registration is idempotent: an already registered DID is a success.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .did_manager import DIDManager
from .errors import AlreadyRegisteredError, SigningError
from .key_manager import SigningCapability
from .registry import RegistryClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationStatus:
    """Per-partition registration state; only both True is fully registered"""
    did: str
    primary: bool
    secondary: bool

    @property
    def fully_registered(self) -> bool:
        return self.primary and self.secondary

    def to_dict(self) -> Dict[str, object]:
        return {
            "did": self.did,
            "primary": self.primary,
            "secondary": self.secondary,
            "fullyRegistered": self.fully_registered,
        }


class RegistrationService:
    """Derives, signs and submits DID registrations"""

    def __init__(
        self,
        did_manager: DIDManager,
        signer: SigningCapability,
        primary: RegistryClient,
        secondary: Optional[RegistryClient] = None,
    ):
        self.did_manager = did_manager
        self.signer = signer
        self.primary = primary
        self.secondary = secondary

    @property
    def partitions(self) -> List[RegistryClient]:
        return [r for r in (self.primary, self.secondary) if r is not None]

    def _register_on(self, registry: RegistryClient, did: str, address: str) -> None:
        if registry.is_registered(did):
            return

        message_hash = registry.generate_registration_message(did)
        try:
            signature = self.signer.sign(message_hash, address)
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(f"Signer failed for {address}: {e}") from e

        try:
            registry.register_did(did, signature, address)
        except AlreadyRegisteredError:
            # Lost a race with another registration; the DID exists either way
            logger.debug("%s was registered concurrently", did)

    def register_did(self, address: str) -> str:
        """
        Register the DID of address on every partition

        Returns:
            The registered DID
        """
        did = self.did_manager.derive(address)
        for registry in self.partitions:
            self._register_on(registry, did, address)
        logger.info("DID registered for address %s", address)
        return did

    def is_did_registered(self, address: str) -> RegistrationStatus:
        did = self.did_manager.derive(address)
        primary = self.primary.is_registered(did)
        # A single-ledger deployment has nothing to disagree with
        secondary = self.secondary.is_registered(did) if self.secondary is not None else primary
        return RegistrationStatus(did=did, primary=primary, secondary=secondary)
