"""Configuration management for the rotation bot and the migration monitor."""

from __future__ import annotations

import os
import tomllib
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..errors import ConfigurationError
from ..utils.constants import (
    CURVANCE_USDC_MARKET,
    CURVANCE_USDC_MARKET_7C9D,
    CURVANCE_USDC_MARKET_8EE9,
    MONAD_CHAIN_ID,
    MONAD_RPC_URL,
    USDC_DECIMALS,
    USDC_TOKEN_ADDRESS,
    ZERO_ADDRESS,
    is_hex_address,
    is_zero_address,
)

DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
MODE_ENV_VAR = "BOT_MODE"


class AdapterId(str, Enum):
    """Closed set of venue adapters the engine knows how to talk to."""

    CURVANCE = "curvance"
    MORPHO = "morpho"
    GEARBOX = "gearbox"
    TOWNSQUARE = "townsquare"
    NEVERLAND = "neverland"
    DEX1 = "dex1"


class PoolPair(str, Enum):
    AUSD_MON = "AUSD/MON"
    USDC_MON = "USDC/MON"
    WMON_MON = "WMON/MON"
    SHMON_MON = "shMON/MON"
    KMON_MON = "kMON/MON"


def _resolve_config_path() -> Path:
    env_value = os.getenv(CONFIG_FILE_ENV_VAR)
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        return candidate
    return Path.cwd() / DEFAULT_CONFIG_FILE


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {**base}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(cast(Dict[str, Any], result[key]), value)
        else:
            result[key] = value
    return result


def _select_profile(data: Dict[str, Any]) -> Dict[str, Any]:
    if not data:
        return {}
    base_section = cast(Dict[str, Any], data.get("default", {}))
    requested = (os.getenv(MODE_ENV_VAR) or "").strip().lower()
    if requested and requested != "default" and isinstance(data.get(requested), dict):
        return _deep_merge(base_section, cast(Dict[str, Any], data[requested]))
    if base_section:
        return base_section
    return data


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        return {}, path
    return _select_profile(payload), path


def _normalize_symbol(value: str) -> str:
    return value.strip().upper()


def _check_address(value: str) -> str:
    value = value.strip()
    if not is_hex_address(value):
        raise ValueError(f"expected a 0x-prefixed 20-byte hex address, got {value!r}")
    return value


class RPCConfig(BaseModel):
    """JSON-RPC endpoint for on-chain reads."""

    model_config = ConfigDict(frozen=True)

    url: AnyHttpUrl = Field(default=MONAD_RPC_URL)
    chain_id: int = Field(default=MONAD_CHAIN_ID, ge=1)
    request_timeout: float = Field(default=10.0, ge=1.0, le=60.0)
    request_concurrency: int = Field(default=4, ge=1, le=32)


class StableTokenConfig(BaseModel):
    """The stable asset the vault holds between positions."""

    model_config = ConfigDict(frozen=True)

    symbol: str = "USDC"
    address: str = USDC_TOKEN_ADDRESS
    decimals: int = Field(default=USDC_DECIMALS, ge=0, le=36)

    @field_validator("symbol")
    @classmethod
    def _upper(cls, value: str) -> str:
        return _normalize_symbol(value)

    @field_validator("address")
    @classmethod
    def _address(cls, value: str) -> str:
        return _check_address(value)


class PriceOracleConfig(BaseModel):
    """Upstream price feed (CoinGecko-compatible ``/simple/price``)."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.coingecko.com/api/v3"
    stable_symbols: List[str] = Field(default_factory=lambda: ["USDC"])
    feed_ids: Dict[str, str] = Field(
        default_factory=lambda: {"USDC": "usd-coin", "MON": "monad", "AUSD": ""}
    )
    timeout_seconds: float = Field(default=8.0, gt=0.0, le=60.0)
    cache_ttl_seconds: float = Field(default=30.0, ge=0.0)
    rate_limit_cooldown_seconds: float = Field(default=300.0, ge=1.0)
    stale_fallback_ttl_seconds: float = Field(default=300.0, ge=0.0)
    warning_cooldown_seconds: float = Field(default=300.0, ge=0.0)

    @field_validator("stable_symbols", mode="before")
    @classmethod
    def _parse_symbols(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            value = value.split(",")
        symbols = [_normalize_symbol(str(item)) for item in value]
        return list(dict.fromkeys(symbol for symbol in symbols if symbol)) or ["USDC"]

    @field_validator("feed_ids", mode="before")
    @classmethod
    def _upper_keys(cls, value: Any) -> Dict[str, str]:
        if not isinstance(value, dict):
            return value
        return {_normalize_symbol(str(key)): str(item).strip() for key, item in value.items()}


class PoolConfig(BaseModel):
    """Static description of one yield venue."""

    model_config = ConfigDict(frozen=True)

    id: str
    protocol: str
    pair: PoolPair = PoolPair.USDC_MON
    tier: str = "S"
    enabled: bool = False
    adapter_id: AdapterId
    token_in: str = USDC_TOKEN_ADDRESS
    token_in_symbol: str = "USDC"
    token_decimals: int = Field(default=USDC_DECIMALS, ge=0, le=36)
    target: str = ZERO_ADDRESS
    pool: str = ZERO_ADDRESS
    lp_token: str = ZERO_ADDRESS
    base_apy_bps: float = Field(default=0.0, ge=0.0)
    reward_token_symbol: str = "USDC"
    reward_rate_per_second: float = Field(default=0.0, ge=0.0)
    protocol_fee_bps: float = Field(default=0.0, ge=0.0)
    rotation_cost_bps: float = Field(default=0.0, ge=0.0)

    @field_validator("reward_token_symbol", "token_in_symbol")
    @classmethod
    def _upper(cls, value: str) -> str:
        return _normalize_symbol(value)

    @field_validator("target", "pool", "lp_token", "token_in")
    @classmethod
    def _addresses(cls, value: str) -> str:
        return _check_address(value)

    @model_validator(mode="before")
    @classmethod
    def _default_lp_token(cls, data: Any) -> Any:
        # Lending markets mint their receipt token from the market contract itself.
        if isinstance(data, dict) and not data.get("lp_token") and data.get("pool"):
            data = dict(data)
            data["lp_token"] = data["pool"]
        return data

    def has_complete_addresses(self) -> bool:
        return not any(
            is_zero_address(address)
            for address in (self.target, self.pool, self.lp_token, self.token_in)
        )


def default_pools() -> List[PoolConfig]:
    return [
        PoolConfig(
            id="curvance-usdc-market",
            protocol="Curvance",
            enabled=True,
            adapter_id=AdapterId.CURVANCE,
            pool=CURVANCE_USDC_MARKET,
            lp_token=CURVANCE_USDC_MARKET,
            base_apy_bps=420,
            protocol_fee_bps=8,
            rotation_cost_bps=12,
        ),
        PoolConfig(
            id="curvance-usdc-market-8ee9",
            protocol="Curvance",
            adapter_id=AdapterId.CURVANCE,
            pool=CURVANCE_USDC_MARKET_8EE9,
            lp_token=CURVANCE_USDC_MARKET_8EE9,
            base_apy_bps=420,
            protocol_fee_bps=8,
            rotation_cost_bps=12,
        ),
        PoolConfig(
            id="curvance-usdc-market-7c9d",
            protocol="Curvance",
            adapter_id=AdapterId.CURVANCE,
            pool=CURVANCE_USDC_MARKET_7C9D,
            lp_token=CURVANCE_USDC_MARKET_7C9D,
            base_apy_bps=420,
            protocol_fee_bps=8,
            rotation_cost_bps=12,
        ),
        PoolConfig(
            id="morpho-usdc-vault",
            protocol="Morpho",
            adapter_id=AdapterId.MORPHO,
            base_apy_bps=390,
            protocol_fee_bps=8,
            rotation_cost_bps=14,
        ),
        PoolConfig(
            id="morpho-usdc-vault-7899",
            protocol="Morpho",
            adapter_id=AdapterId.MORPHO,
            base_apy_bps=390,
            protocol_fee_bps=8,
            rotation_cost_bps=14,
        ),
        PoolConfig(
            id="gearbox-usdc-vault",
            protocol="Gearbox",
            adapter_id=AdapterId.GEARBOX,
            base_apy_bps=380,
            protocol_fee_bps=9,
            rotation_cost_bps=15,
        ),
        PoolConfig(
            id="townsquare-usdc-vault",
            protocol="TownSquare",
            adapter_id=AdapterId.TOWNSQUARE,
            base_apy_bps=360,
            protocol_fee_bps=9,
            rotation_cost_bps=16,
        ),
        PoolConfig(
            id="neverland-usdc-vault",
            protocol="Neverland",
            adapter_id=AdapterId.NEVERLAND,
            base_apy_bps=350,
            protocol_fee_bps=10,
            rotation_cost_bps=16,
        ),
    ]


class RuntimeConfig(BaseModel):
    """Process-wide run toggles. Dry-run and arming are independent gates."""

    model_config = ConfigDict(frozen=True)

    dry_run: bool = True
    live_mode_armed: bool = False
    vault_address: str = ZERO_ADDRESS
    executor_private_key: Optional[str] = Field(default=None, repr=False)
    explorer_tx_base_url: str = "https://monadexplorer.com/tx/"
    scan_interval_seconds: float = Field(default=300.0, ge=1.0)
    default_trade_amount_raw: int = Field(default=1_000_000, ge=0)
    enter_only_mode: bool = False
    max_rotations_per_day: int = Field(default=1, ge=0)
    cooldown_seconds: float = Field(default=21_600.0, ge=0.0)
    min_hold_seconds: float = Field(default=0.0, ge=0.0)
    decision_history_size: int = Field(default=200, ge=1)

    @field_validator("vault_address")
    @classmethod
    def _vault_address(cls, value: str) -> str:
        return _check_address(value)


class PolicyConfig(BaseModel):
    """Thresholds the rotation policy and guards are evaluated against."""

    model_config = ConfigDict(frozen=True)

    rotation_delta_apy_bps: float = Field(default=200.0, ge=0.0)
    max_payback_hours: float = Field(default=72.0, ge=0.0)
    depeg_threshold_bps: float = Field(default=100.0, ge=0.0)
    max_price_impact_bps: float = Field(default=30.0, ge=0.0)
    apr_cliff_drop_bps: float = Field(default=5_000.0, ge=0.0)
    tx_deadline_seconds: int = Field(default=1_800, ge=1)


class MigrationConfig(BaseModel):
    """Inputs for the blue/green vault cutover report."""

    model_config = ConfigDict(frozen=True)

    old_vault_address: Optional[str] = None
    new_vault_address: Optional[str] = None
    old_bot_state_url: Optional[str] = None
    new_bot_state_url: Optional[str] = None
    state_auth_token: Optional[str] = Field(default=None, repr=False)
    report_path: Optional[Path] = None
    http_timeout_seconds: float = Field(default=10.0, gt=0.0, le=60.0)

    @field_validator(
        "old_vault_address",
        "new_vault_address",
        "old_bot_state_url",
        "new_bot_state_url",
        "state_auth_token",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(frozen=True)

    log_level: str = Field(default="INFO")
    json_logs: bool = True


class AppConfig(BaseSettings):
    """Aggregated application configuration, immutable once loaded."""

    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    rpc: RPCConfig = Field(default_factory=RPCConfig)
    price_oracle: PriceOracleConfig = Field(default_factory=PriceOracleConfig)
    stable_token: StableTokenConfig = Field(default_factory=StableTokenConfig)
    pools: List[PoolConfig] = Field(default_factory=default_pools)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    migration: MigrationConfig = Field(default_factory=MigrationConfig)
    config_file: Optional[Path] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def file_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            payload, path = _load_toml_config()
            if path is not None:
                payload = {**payload, "config_file": str(path)}
            return payload

        # Runtime environment variables win over static config file defaults.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _validate_startup(self) -> "AppConfig":
        seen: set[str] = set()
        for pool in self.pools:
            if pool.id in seen:
                raise ValueError(f"Duplicate pool id: {pool.id}")
            seen.add(pool.id)
        if self.runtime.dry_run:
            return self
        if not self.runtime.executor_private_key:
            raise ValueError("runtime.executor_private_key is required when dry_run=false")
        if is_zero_address(self.runtime.vault_address):
            raise ValueError("runtime.vault_address is required when dry_run=false")
        incomplete = [
            pool.id for pool in self.pools if pool.enabled and not pool.has_complete_addresses()
        ]
        if incomplete:
            raise ValueError(
                "Enabled pools require non-zero target/pool/lp_token/token_in addresses "
                f"when dry_run=false: {', '.join(incomplete)}"
            )
        for symbol in self.price_oracle.stable_symbols:
            if not self.price_oracle.feed_ids.get(symbol):
                raise ValueError(
                    f"Missing price feed id for {symbol} while stable_symbols includes {symbol}."
                )
        return self

    def pool_by_id(self) -> Dict[str, PoolConfig]:
        return {pool.id: pool for pool in self.pools}

    def enabled_pools(self) -> List[PoolConfig]:
        return [pool for pool in self.pools if pool.enabled]


def load_app_config(**overrides: Any) -> AppConfig:
    """Build and validate the configuration, raising ``ConfigurationError`` on any problem."""

    try:
        return AppConfig(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return load_app_config()


__all__ = [
    "AdapterId",
    "AppConfig",
    "MigrationConfig",
    "MonitoringConfig",
    "PolicyConfig",
    "PoolConfig",
    "PoolPair",
    "PriceOracleConfig",
    "RPCConfig",
    "RuntimeConfig",
    "StableTokenConfig",
    "default_pools",
    "get_app_config",
    "load_app_config",
]
