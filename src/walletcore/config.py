"""
Configuration management using pydantic-settings.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from walletcore.constants import (
    DEFAULT_FEE_RATE,
    DUST_RELAY_FEE,
    MAX_DATA_SIZE,
    MAX_FEE_ITERATIONS,
    MIN_RELAY_INCREMENT,
)
from walletcore.models import NetworkType


class WalletSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WALLETCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    network: NetworkType = NetworkType.MAINNET
    log_level: str = "INFO"

    # Scripts derived past the last used index when recognizing wallet outputs
    lookahead: int = Field(default=20, ge=1, le=1000)

    max_fee_iterations: int = Field(default=MAX_FEE_ITERATIONS, ge=1)
    default_fee_rate: float = Field(default=DEFAULT_FEE_RATE, ge=0)  # sat/vB
    min_relay_increment: float = Field(default=MIN_RELAY_INCREMENT, ge=0)  # sat/vB
    dust_relay_fee: float = Field(default=DUST_RELAY_FEE, ge=0)  # sat/vB
    max_data_size: int = Field(default=MAX_DATA_SIZE, ge=0)  # OP_RETURN payload bytes


def get_settings() -> WalletSettings:
    return WalletSettings()
