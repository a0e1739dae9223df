# src/credbridge/config.py
"""
Configuration models and environment loading.

All configuration objects are frozen pydantic models: they are built once
at startup and handed to constructors, never mutated afterwards.

Required environment variables (relay mode):
    SOURCE_RPC_URL:       JSON-RPC endpoint of the source ledger
    DESTINATION_RPC_URL:  JSON-RPC endpoint of the destination ledger
    ISSUER_ADDRESS:       issuer program on the source ledger
    MIRROR_ADDRESS:       mirror program on the destination ledger
    RELAYER_PRIVATE_KEY:  key that pays for destination submissions

Optional environment variables:
    SOURCE_CHAIN_ID, ATTESTATION_API_URL, POLL_INTERVAL,
    ATTESTATION_INTERVAL, ATTESTATION_MAX_ATTEMPTS, RESTART_BACKOFF,
    MAX_WORKERS, QUEUE_SIZE, MAX_BLOCK_RANGE, START_BLOCK, CURSOR_PATH,
    LOG_LEVEL, LOG_FORMAT
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic import ValidationError as PydanticValidationError

from credbridge.core.enums import WormholeChainId
from credbridge.core.errors import ConfigError
from credbridge.helper.encoding import normalize_address, to_emitter_address

DEFAULT_ATTESTATION_API_URL = "https://api.testnet.wormholescan.io"

REQUIRED_ENV = (
    "SOURCE_RPC_URL",
    "DESTINATION_RPC_URL",
    "ISSUER_ADDRESS",
    "MIRROR_ADDRESS",
    "RELAYER_PRIVATE_KEY",
)

# env var -> RelayerConfig field
RELAYER_ENV = {
    "SOURCE_CHAIN_ID": "source_chain_id",
    "ATTESTATION_API_URL": "attestation_api_url",
    "POLL_INTERVAL": "poll_interval",
    "ATTESTATION_INTERVAL": "attestation_interval",
    "ATTESTATION_MAX_ATTEMPTS": "attestation_max_attempts",
    "RESTART_BACKOFF": "restart_backoff",
    "MAX_WORKERS": "max_workers",
    "QUEUE_SIZE": "queue_size",
    "MAX_BLOCK_RANGE": "max_block_range",
    "START_BLOCK": "start_block",
    "CURSOR_PATH": "cursor_path",
}


# ======================================================================
# 1. Verifier (destination program) configuration
# ======================================================================

class VerifierConfig(BaseModel):
    """
    Immutable provenance configuration of the mirror program.

    Set once at deployment; there is deliberately no setter.
    """

    expected_source_chain: int = Field(
        ...,
        description="Guardian-network chain id on which the issuer is deployed.",
    )
    trusted_emitter: str = Field(
        ...,
        description="Issuer program address, stored in 32-byte wire form (hex, no prefix).",
    )

    class Config:
        frozen = True

    @field_validator("trusted_emitter")
    @classmethod
    def _pad_emitter(cls, value: str) -> str:
        return to_emitter_address(value)


# ======================================================================
# 2. Relayer configuration
# ======================================================================

class RelayerConfig(BaseModel):
    """Knobs of the off-chain relayer. Intervals are in seconds."""

    source_chain_id: int = Field(
        default=int(WormholeChainId.ETHEREUM),
        description="Guardian-network chain id of the source ledger (lookup key).",
    )
    attestation_api_url: str = DEFAULT_ATTESTATION_API_URL
    poll_interval: float = Field(default=30.0, gt=0)
    attestation_interval: float = Field(default=60.0, ge=0)
    attestation_max_attempts: int = Field(default=10, ge=1)
    restart_backoff: float = Field(default=10.0, ge=0)
    max_workers: int = Field(default=8, ge=1)
    queue_size: int = Field(default=256, ge=1)
    max_block_range: int = Field(default=2000, ge=1)
    start_block: Optional[int] = Field(default=None, ge=0)
    cursor_path: Optional[Path] = None

    class Config:
        frozen = True


# ======================================================================
# 3. Network endpoints (EVM mode)
# ======================================================================

class NetworkConfig(BaseModel):
    source_rpc_url: str
    destination_rpc_url: str
    issuer_address: str
    mirror_address: str
    relayer_private_key: SecretStr

    class Config:
        frozen = True

    @field_validator("issuer_address", "mirror_address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        return normalize_address(value)


class AppConfig(BaseModel):
    network: NetworkConfig
    relayer: RelayerConfig
    log_level: str = "INFO"
    log_format: str = "console"

    class Config:
        frozen = True

    @field_validator("log_format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("console", "json"):
            raise ValueError("LOG_FORMAT must be 'console' or 'json'")
        return value


# ======================================================================
# 4. Loading
# ======================================================================

def read_environment(env_file: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> dict:
    """
    Merge a .env file (if any) under the process environment.

    Real environment variables win over the file, as with load_dotenv's
    default behaviour, but nothing is written back to os.environ.
    """
    merged: dict = {}
    path = env_file if env_file is not None else Path(".env")
    if path.exists():
        merged.update({k: v for k, v in dotenv_values(path).items() if v is not None})
    merged.update(os.environ if environ is None else environ)
    return merged


def load_config(env_file: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load configuration from environment variables.

    Raises:
        ConfigError: If required variables are missing (all of them are
            listed) or a value does not validate.
    """
    env = read_environment(env_file, environ)

    missing = [name for name in REQUIRED_ENV if not env.get(name)]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    relayer_fields = {field: env[name] for name, field in RELAYER_ENV.items() if env.get(name)}

    try:
        return AppConfig(
            network=NetworkConfig(
                source_rpc_url=env["SOURCE_RPC_URL"],
                destination_rpc_url=env["DESTINATION_RPC_URL"],
                issuer_address=env["ISSUER_ADDRESS"],
                mirror_address=env["MIRROR_ADDRESS"],
                relayer_private_key=env["RELAYER_PRIVATE_KEY"],
            ),
            relayer=RelayerConfig(**relayer_fields),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            log_format=env.get("LOG_FORMAT", "console"),
        )
    except (PydanticValidationError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
