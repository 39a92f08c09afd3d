"""
Credential Types
================

Named, issuer-owned claim categories with an optional human readable
subdomain. Only the issuer that creates a type may later issue claims
under it; the registry enforces that at record time.
"""

import logging
from typing import Optional

from .errors import DuplicateCredentialTypeError, DuplicateSubdomainError, NotFoundError
from .registry import CredentialType, RegistryClient

logger = logging.getLogger(__name__)


class CredentialTypeService:

    def __init__(self, registry: RegistryClient):
        self.registry = registry

    def create(
        self,
        name: str,
        description: str,
        issuer_address: str,
        subdomain: Optional[str] = None,
    ) -> str:
        """
        Create a credential type owned by issuer_address

        Returns:
            Registry transaction handle

        Raises:
            DuplicateCredentialTypeError: name already exists
            DuplicateSubdomainError: subdomain maps to another type
        """
        if not name or not isinstance(name, str):
            raise ValueError("Credential type name must be a non-empty string")
        subdomain = subdomain or None

        if self.registry.credential_type_exists(name):
            raise DuplicateCredentialTypeError(f"Credential type '{name}' already exists")
        if subdomain is not None:
            try:
                owner = self.registry.resolve_subdomain(subdomain)
            except NotFoundError:
                owner = None
            if owner is not None and owner != name:
                raise DuplicateSubdomainError(f"Subdomain '{subdomain}' is taken by '{owner}'")

        tx = self.registry.create_credential_type(name, subdomain, description, issuer_address)
        if subdomain:
            logger.info("Credential type '%s' created with subdomain '%s'", name, subdomain)
        else:
            logger.info("Credential type '%s' created", name)
        return tx

    def exists(self, name: str) -> bool:
        return self.registry.credential_type_exists(name)

    def get(self, name: str) -> CredentialType:
        return self.registry.get_credential_type(name)

    def resolve_by_subdomain(self, subdomain: str) -> str:
        """Raises NotFoundError when unmapped"""
        return self.registry.resolve_subdomain(subdomain)

    def is_subdomain_available(self, subdomain: str) -> bool:
        try:
            self.resolve_by_subdomain(subdomain)
        except NotFoundError:
            return True
        return False
