"""
Configuration management for the tBTC client.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings

from .ethereum import EthereumConfig, default_expected_errors
from .retry import DEFAULT_BACKOFF_STEP
from .rpc import BitcoinRPCConfig


class Settings(BaseSettings):
    """Environment-based settings."""

    # Bitcoin node
    bitcoin_rpc_url: str = "http://localhost:8332"
    bitcoin_rpc_user: str = ""
    bitcoin_rpc_password: str = ""
    bitcoin_rpc_timeout: float = 30.0

    # Ethereum
    ethereum_rpc_url: str = "http://localhost:8545"
    chain_id: int = 1
    private_key: str = ""
    bridge_address: str = ""
    gas_limit: Optional[int] = None

    # Retries
    total_retry_attempts: int = 3
    backoff_step: float = DEFAULT_BACKOFF_STEP

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@dataclass
class ClientConfig:
    """Resolved configuration handed to the Bitcoin and Ethereum handles."""

    bitcoin: BitcoinRPCConfig
    ethereum: EthereumConfig

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClientConfig":
        bitcoin = BitcoinRPCConfig(
            url=settings.bitcoin_rpc_url,
            user=settings.bitcoin_rpc_user,
            password=settings.bitcoin_rpc_password,
            timeout=settings.bitcoin_rpc_timeout,
            total_retry_attempts=settings.total_retry_attempts,
            backoff_step=settings.backoff_step,
        )
        ethereum = EthereumConfig(
            rpc_url=settings.ethereum_rpc_url,
            chain_id=settings.chain_id,
            private_key=settings.private_key,
            bridge_address=settings.bridge_address,
            total_retry_attempts=settings.total_retry_attempts,
            backoff_step=settings.backoff_step,
            gas_limit=settings.gas_limit,
            expected_errors=default_expected_errors(),
        )
        return cls(bitcoin=bitcoin, ethereum=ethereum)

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "ClientConfig":
        """Load configuration from environment."""
        settings = Settings(_env_file=env_path) if env_path else Settings()
        return cls.from_settings(settings)
