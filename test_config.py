"""Environment classification and chain registry."""

import pytest

import buyer.config as config
from buyer.chains.registry import (
    CHAIN_REGISTRY,
    DEFAULT_CHAIN,
    ChainRegistry,
    default_payment_method,
)


def test_api_base_url_by_key_prefix():
    assert config.api_base_url("sk_production_123", env="") == config.PRODUCTION_API_BASE
    assert config.api_base_url("sk_staging_123", env="") == config.STAGING_API_BASE
    assert config.api_base_url("", env="") == config.STAGING_API_BASE


def test_explicit_env_overrides_key_prefix():
    assert config.api_base_url("sk_staging_123", env="production") == config.PRODUCTION_API_BASE
    assert config.api_base_url("sk_production_123", env="staging") == config.STAGING_API_BASE


def test_default_payment_method(monkeypatch):
    monkeypatch.setattr(config, "CROSSMINT_ENV", "")
    assert default_payment_method("sk_production_1") == "polygon"
    assert default_payment_method("sk_staging_1") == "polygon-amoy"
    assert default_payment_method("sk_production_1", "base") == "base"


def test_chain_resolution():
    assert CHAIN_REGISTRY.resolve("base").rpc_url == "https://mainnet.base.org"
    assert CHAIN_REGISTRY.resolve("base-sepolia").chain_id == 84532
    assert CHAIN_REGISTRY.resolve("polygon").mainnet
    assert CHAIN_REGISTRY.rpc_url("polygon-amoy") == "https://rpc-amoy.polygon.technology/"


def test_unknown_chain_falls_back_to_testnet(capsys):
    chain = CHAIN_REGISTRY.resolve("xyz")
    assert chain.name == DEFAULT_CHAIN == "polygon-amoy"
    assert not chain.mainnet
    assert "Unknown payment method 'xyz'" in capsys.readouterr().out
    assert not CHAIN_REGISTRY.is_supported("xyz")


def test_rpc_override():
    reg = ChainRegistry({"base": "https://base.example/rpc"})
    assert reg.rpc_url("base") == "https://base.example/rpc"
    assert reg.get("base").chain_id == 8453
    assert reg.rpc_url("polygon") == "https://polygon-rpc.com/"
    assert reg.names() == ("polygon", "polygon-amoy", "base", "base-sepolia")


def test_private_key_validation():
    assert config._validate_private_key("0x" + "ab" * 32, "K")
    with pytest.raises(ValueError, match="64 hex chars"):
        config._validate_private_key("0x1234", "K")
    with pytest.raises(ValueError, match="invalid hex"):
        config._validate_private_key("zz" * 32, "K")


def test_mask_secret():
    assert config.mask_secret("") == "(not set)"
    assert config.mask_secret("short") == "***"
    assert config.mask_secret("sk_production_abcdefgh") == "sk_pro...efgh"
