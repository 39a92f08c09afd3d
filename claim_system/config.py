"""
config.py - Centralised settings for the claim system
"""
import logging
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Hardhat Account #0 (dev only)
DEV_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


class ClaimSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CLAIMS_", env_file=".env", extra="ignore")

    # Identity
    DID_METHOD: str = "proofofme"

    # Storage: memory:// or file:///abs/path
    STORE_URI: str = "memory://"
    STORE_RETRIES: int = 2

    # Bulk issuance fan-out
    BULK_MAX_WORKERS: int = 8

    # Recipient key pair (JSON with public_jwk / private_jwk)
    KEY_FILE: Optional[Path] = None

    # Comma separated private keys the local signer controls
    DEV_ACCOUNT_KEYS: str = DEV_PRIVATE_KEY

    LOG_LEVEL: str = "INFO"

    def dev_account_keys(self) -> List[str]:
        return [k.strip() for k in self.DEV_ACCOUNT_KEYS.split(",") if k.strip()]


settings = ClaimSettings()


def configure_logging(level: Optional[str] = None) -> None:
    """Set up a basic root handler for the claim system loggers"""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
