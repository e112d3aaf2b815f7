"""
Tests for settings loading.
"""

import pytest
from pydantic import ValidationError

from walletcore.config import WalletSettings, get_settings
from walletcore.constants import DUST_RELAY_FEE, MAX_DATA_SIZE, MIN_RELAY_INCREMENT
from walletcore.models import NetworkType


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep stray WALLETCORE_ variables and .env files out of the tests."""
    monkeypatch.chdir(tmp_path)
    for name in [
        "WALLETCORE_NETWORK",
        "WALLETCORE_LOOKAHEAD",
        "WALLETCORE_DUST_RELAY_FEE",
        "WALLETCORE_LOG_LEVEL",
    ]:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = get_settings()
    assert settings.network == NetworkType.MAINNET
    assert settings.lookahead == 20
    assert settings.dust_relay_fee == DUST_RELAY_FEE
    assert settings.min_relay_increment == MIN_RELAY_INCREMENT
    assert settings.max_data_size == MAX_DATA_SIZE


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("WALLETCORE_NETWORK", "regtest")
    monkeypatch.setenv("WALLETCORE_LOOKAHEAD", "50")
    monkeypatch.setenv("walletcore_dust_relay_fee", "1.5")

    settings = WalletSettings()
    assert settings.network == NetworkType.REGTEST
    assert settings.lookahead == 50
    assert settings.dust_relay_fee == 1.5


def test_env_file(tmp_path):
    (tmp_path / ".env").write_text("WALLETCORE_LOG_LEVEL=DEBUG\n")
    assert WalletSettings().log_level == "DEBUG"


@pytest.mark.parametrize(
    "field, value",
    [("lookahead", 0), ("default_fee_rate", -1.0), ("max_fee_iterations", 0)],
)
def test_rejects_out_of_range(field, value):
    with pytest.raises(ValidationError):
        WalletSettings(**{field: value})


def test_rejects_unknown_network(monkeypatch):
    monkeypatch.setenv("WALLETCORE_NETWORK", "moonnet")
    with pytest.raises(ValidationError):
        WalletSettings()
