from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from sentryield_bot.config import settings
from sentryield_bot.config.settings import AdapterId, RuntimeConfig, load_app_config
from sentryield_bot.errors import ConfigurationError


def test_app_config_loads_profiles_and_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "app.toml"
    config_path.write_text(
        """
[default.runtime]
scan_interval_seconds = 120
max_rotations_per_day = 2

[default.policy]
max_payback_hours = 48

[default.price_oracle]
stable_symbols = "usdc, ausd"

[default.price_oracle.feed_ids]
usdc = "usd-coin"
ausd = "agora-dollar"

[staging.runtime]
scan_interval_seconds = 60

[staging.rpc]
url = "https://rpc.staging.example"
"""
    )
    monkeypatch.setenv("APP_CONFIG_FILE", str(config_path))
    monkeypatch.setenv("BOT_MODE", "staging")
    monkeypatch.setenv("POLICY__ROTATION_DELTA_APY_BPS", "150")

    settings.get_app_config.cache_clear()
    cfg = settings.get_app_config()

    assert cfg.config_file == config_path
    assert cfg.runtime.scan_interval_seconds == 60
    assert cfg.runtime.max_rotations_per_day == 2
    assert cfg.policy.max_payback_hours == 48
    assert cfg.policy.rotation_delta_apy_bps == 150
    assert str(cfg.rpc.url).startswith("https://rpc.staging.example")
    assert cfg.price_oracle.stable_symbols == ["USDC", "AUSD"]
    assert cfg.price_oracle.feed_ids["AUSD"] == "agora-dollar"
    assert settings.get_app_config() is cfg


def test_defaults_are_safe() -> None:
    cfg = load_app_config()

    assert cfg.runtime.dry_run is True
    assert cfg.runtime.live_mode_armed is False
    assert [pool.id for pool in cfg.enabled_pools()] == ["curvance-usdc-market"]
    assert set(cfg.pool_by_id()) >= {"curvance-usdc-market", "morpho-usdc-vault", "neverland-usdc-vault"}
    curvance = cfg.pool_by_id()["curvance-usdc-market"]
    assert curvance.lp_token == curvance.pool
    assert curvance.adapter_id is AdapterId.CURVANCE


def test_config_is_immutable() -> None:
    cfg = load_app_config()
    with pytest.raises(ValidationError):
        cfg.runtime.dry_run = False  # type: ignore[misc]


def test_live_mode_requires_vault_and_key() -> None:
    with pytest.raises(ConfigurationError, match="executor_private_key"):
        load_app_config(runtime=RuntimeConfig(dry_run=False))
    with pytest.raises(ConfigurationError, match="vault_address"):
        load_app_config(runtime=RuntimeConfig(dry_run=False, executor_private_key="0x" + "22" * 32))


def test_live_mode_requires_complete_pool_addresses() -> None:
    runtime = RuntimeConfig(
        dry_run=False,
        executor_private_key="0x" + "22" * 32,
        vault_address="0x00000000000000000000000000000000000000bb",
    )
    # The default enabled Curvance market has no adapter target configured.
    with pytest.raises(ConfigurationError, match="curvance-usdc-market"):
        load_app_config(runtime=runtime)


def test_duplicate_pool_ids_rejected() -> None:
    pool = {"id": "dup", "protocol": "Curvance", "adapter_id": "curvance"}
    with pytest.raises(ConfigurationError, match="Duplicate pool id"):
        load_app_config(pools=[pool, pool])


def test_unknown_adapter_rejected() -> None:
    with pytest.raises(ConfigurationError):
        load_app_config(pools=[{"id": "x", "protocol": "Uniswap", "adapter_id": "uniswap"}])


def test_secrets_hidden_from_repr() -> None:
    runtime = RuntimeConfig(executor_private_key="0xsecret")
    assert "0xsecret" not in repr(runtime)


def test_malformed_addresses_rejected_at_startup() -> None:
    pool = {"id": "bad", "protocol": "Morpho", "adapter_id": "morpho", "target": "0xdeadbeef"}
    with pytest.raises(ConfigurationError, match="target"):
        load_app_config(pools=[pool])
    with pytest.raises(ValidationError, match="20-byte hex address"):
        RuntimeConfig(vault_address="0x12")
