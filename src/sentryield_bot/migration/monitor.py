"""Read-only readiness report for a blue/green vault cutover."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..config.settings import AppConfig, PoolConfig, get_app_config
from ..errors import ConfigurationError, RpcError, UnsupportedFunctionError
from ..ingestion.evm_rpc import EvmRpcClient, is_hex_address
from ..monitoring.logger import get_logger
from ..utils.constants import is_zero_address, utc_now

STATUS_TOKEN_HEADER = "x-bot-status-token"

logger = get_logger(__name__)


class CheckStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass(slots=True, frozen=True)
class CheckRow:
    id: str
    status: CheckStatus
    detail: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "status": self.status.value, "detail": self.detail}


@dataclass(slots=True)
class PoolBalanceRow:
    pool_id: str
    lp_token: str
    balance_raw: Optional[int]
    decimals: int
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "poolId": self.pool_id,
            "lpToken": self.lp_token,
            "balanceRaw": None if self.balance_raw is None else str(self.balance_raw),
            "balanceFormatted": format_units(self.balance_raw, self.decimals),
            "error": self.error,
        }


@dataclass(slots=True)
class VaultSnapshot:
    address: str
    stable_balance_raw: Optional[int]
    stable_decimals: int
    pool_lp_balances: List[PoolBalanceRow] = field(default_factory=list)
    supports_user_flow: bool = False
    deposit_token: Optional[str] = None
    total_user_shares_raw: Optional[int] = None
    has_open_lp_position: Optional[bool] = None
    errors: List[str] = field(default_factory=list)

    @property
    def has_lp_exposure(self) -> bool:
        return any(row.balance_raw for row in self.pool_lp_balances)

    @property
    def unreadable_pools(self) -> List[str]:
        return [row.pool_id for row in self.pool_lp_balances if row.balance_raw is None]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "usdcBalanceRaw": None if self.stable_balance_raw is None else str(self.stable_balance_raw),
            "usdcBalanceFormatted": format_units(self.stable_balance_raw, self.stable_decimals),
            "poolLpBalances": [row.to_dict() for row in self.pool_lp_balances],
            "hasLpExposure": self.has_lp_exposure,
            "supportsUserFlow": self.supports_user_flow,
            "depositToken": self.deposit_token,
            "totalUserSharesRaw": None
            if self.total_user_shares_raw is None
            else str(self.total_user_shares_raw),
            "hasOpenLpPosition": self.has_open_lp_position,
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class EndpointSnapshot:
    url: str
    http_status: Optional[int]
    healthy: Optional[bool] = None
    ready: Optional[bool] = None
    reason: Optional[str] = None
    runtime: Optional[Dict[str, Any]] = None
    state_counts: Dict[str, Optional[int]] = field(
        default_factory=lambda: {"snapshots": None, "decisions": None, "tweets": None}
    )
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "httpStatus": self.http_status,
            "healthy": self.healthy,
            "ready": self.ready,
            "reason": self.reason,
            "runtime": self.runtime,
            "stateCounts": dict(self.state_counts),
            "error": self.error,
        }


@dataclass(slots=True, frozen=True)
class MigrationReport:
    generated_at: str
    chain_id: int
    rpc_url: str
    old_vault: VaultSnapshot
    new_vault: VaultSnapshot
    old_service: Optional[EndpointSnapshot]
    new_service: Optional[EndpointSnapshot]
    checks: Sequence[CheckRow]

    @property
    def has_failures(self) -> bool:
        return any(check.status is CheckStatus.FAIL for check in self.checks)

    @property
    def exit_code(self) -> int:
        return 1 if self.has_failures else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "chainId": self.chain_id,
            "rpcUrl": self.rpc_url,
            "oldVault": self.old_vault.to_dict(),
            "newVault": self.new_vault.to_dict(),
            "oldService": self.old_service.to_dict() if self.old_service else None,
            "newService": self.new_service.to_dict() if self.new_service else None,
            "checks": [check.to_dict() for check in self.checks],
        }


def format_units(raw: Optional[int], decimals: int) -> Optional[str]:
    if raw is None:
        return None
    value = Decimal(raw).scaleb(-decimals)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def _array_length(container: Optional[Dict[str, Any]], key: str) -> Optional[int]:
    if not container:
        return None
    value = container.get(key)
    return len(value) if isinstance(value, list) else None


def read_vault_snapshot(
    rpc: EvmRpcClient,
    vault_address: str,
    pools: Sequence[PoolConfig],
    stable_token: str,
    stable_decimals: int,
) -> VaultSnapshot:
    """Balances plus the optional v2 user-flow view functions of one vault.

    Missing user-flow functions mean an older vault and are not errors.
    """

    snapshot = VaultSnapshot(address=vault_address, stable_balance_raw=None, stable_decimals=stable_decimals)
    try:
        snapshot.stable_balance_raw = rpc.balance_of(stable_token, vault_address)
    except RpcError as exc:
        snapshot.errors.append(f"stable balance: {exc}")

    for pool in pools:
        row = PoolBalanceRow(
            pool_id=pool.id, lp_token=pool.lp_token, balance_raw=None, decimals=pool.token_decimals
        )
        try:
            row.balance_raw = rpc.balance_of(pool.lp_token, vault_address)
        except RpcError as exc:
            row.error = str(exc)
        snapshot.pool_lp_balances.append(row)

    try:
        snapshot.deposit_token = rpc.call(vault_address, "depositToken()", returns="address")
        snapshot.supports_user_flow = True
    except UnsupportedFunctionError:
        snapshot.supports_user_flow = False
    except RpcError as exc:
        snapshot.errors.append(f"depositToken: {exc}")

    try:
        snapshot.total_user_shares_raw = int(rpc.call(vault_address, "totalUserShares()"))
    except UnsupportedFunctionError:
        snapshot.total_user_shares_raw = None
    except RpcError as exc:
        snapshot.errors.append(f"totalUserShares: {exc}")

    try:
        snapshot.has_open_lp_position = bool(rpc.call(vault_address, "hasOpenLpPosition()", returns="bool"))
    except UnsupportedFunctionError:
        snapshot.has_open_lp_position = None
    except RpcError as exc:
        snapshot.errors.append(f"hasOpenLpPosition: {exc}")
    return snapshot


def read_state_endpoint(
    session: requests.Session,
    url: str,
    auth_token: Optional[str],
    timeout: float,
) -> EndpointSnapshot:
    headers = {"Accept": "application/json", "Cache-Control": "no-store"}
    if auth_token:
        headers[STATUS_TOKEN_HEADER] = auth_token
    try:
        response = session.get(url, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        logger.warning("Status endpoint %s unreachable: %s", url, exc)
        return EndpointSnapshot(url=url, http_status=None, error=str(exc))
    try:
        payload = response.json()
    except ValueError:
        payload = None
    body = payload if isinstance(payload, dict) else {}
    state = body.get("state") if isinstance(body.get("state"), dict) else None
    runtime = body.get("runtime") if isinstance(body.get("runtime"), dict) else None
    return EndpointSnapshot(
        url=url,
        http_status=response.status_code,
        healthy=body["healthy"] if isinstance(body.get("healthy"), bool) else None,
        ready=body["ready"] if isinstance(body.get("ready"), bool) else None,
        reason=body["reason"] if isinstance(body.get("reason"), str) else None,
        runtime=runtime,
        state_counts={key: _array_length(state, key) for key in ("snapshots", "decisions", "tweets")},
    )


def build_checks(
    old_vault: VaultSnapshot,
    new_vault: VaultSnapshot,
    old_service: Optional[EndpointSnapshot],
    new_service: Optional[EndpointSnapshot],
    expected_deposit_token: str,
) -> List[CheckRow]:
    """Ordered cutover checklist; FAIL blocks the cutover, WARN is informational."""

    checks: List[CheckRow] = []

    if old_vault.has_lp_exposure:
        checks.append(
            CheckRow(
                "old_vault.lp_drained",
                CheckStatus.FAIL,
                "Old vault still has LP exposure. Exit to USDC before cutover.",
            )
        )
    elif old_vault.unreadable_pools:
        checks.append(
            CheckRow(
                "old_vault.lp_drained",
                CheckStatus.WARN,
                f"LP balances unreadable for: {', '.join(old_vault.unreadable_pools)}",
            )
        )
    else:
        checks.append(CheckRow("old_vault.lp_drained", CheckStatus.PASS, "Old vault LP balances are zero."))

    if new_vault.supports_user_flow:
        checks.append(
            CheckRow("new_vault.user_flow", CheckStatus.PASS, "New vault exposes user deposit/withdraw flow.")
        )
    else:
        checks.append(
            CheckRow(
                "new_vault.user_flow",
                CheckStatus.FAIL,
                "New vault does not expose v2 user flow functions.",
            )
        )

    deposit_token = new_vault.deposit_token
    matches = bool(deposit_token) and deposit_token.lower() == expected_deposit_token.lower()
    checks.append(
        CheckRow(
            "new_vault.deposit_token",
            CheckStatus.PASS if matches else CheckStatus.WARN,
            f"newVault.depositToken={deposit_token or 'n/a'} expected={expected_deposit_token}",
        )
    )

    if new_service is None:
        checks.append(
            CheckRow(
                "railway.new_service_ready",
                CheckStatus.WARN,
                "New bot state URL not set; readiness could not be verified.",
            )
        )
    else:
        ready = new_service.http_status == 200 and new_service.healthy is True and new_service.ready is True
        checks.append(
            CheckRow(
                "railway.new_service_ready",
                CheckStatus.PASS if ready else CheckStatus.FAIL,
                f"status={new_service.http_status}, healthy={new_service.healthy}, "
                f"ready={new_service.ready}, reason={new_service.reason or new_service.error or 'n/a'}",
            )
        )

    if old_service is None:
        checks.append(
            CheckRow(
                "railway.old_service_reachable",
                CheckStatus.WARN,
                "Old bot state URL not set; rollback endpoint was not checked.",
            )
        )
    else:
        status = old_service.http_status
        reachable = status is not None and 200 <= status < 500
        checks.append(
            CheckRow(
                "railway.old_service_reachable",
                CheckStatus.PASS if reachable else CheckStatus.WARN,
                f"status={status}, healthy={old_service.healthy}, ready={old_service.ready}",
            )
        )
    return checks


def _required_vault(value: Optional[str], name: str) -> str:
    if not value:
        raise ConfigurationError(f"Missing required setting: migration.{name}")
    if not is_hex_address(value) or is_zero_address(value):
        raise ConfigurationError(f"Invalid address in migration.{name}: {value}")
    return value


class MigrationMonitor:
    """Gathers both vault snapshots and both service snapshots in parallel."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        rpc: Optional[EvmRpcClient] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config()
        self._migration = self._config.migration
        self._rpc = rpc or EvmRpcClient(self._config.rpc)
        self._session = session or requests.Session()

    def generate(self) -> MigrationReport:
        old_vault = _required_vault(self._migration.old_vault_address, "old_vault_address")
        new_vault = _required_vault(self._migration.new_vault_address, "new_vault_address")
        pools = [pool for pool in self._config.pools if not is_zero_address(pool.lp_token)]
        stable = self._config.stable_token

        with ThreadPoolExecutor(max_workers=4, thread_name_prefix="migration") as executor:
            old_future = executor.submit(
                read_vault_snapshot, self._rpc, old_vault, pools, stable.address, stable.decimals
            )
            new_future = executor.submit(
                read_vault_snapshot, self._rpc, new_vault, pools, stable.address, stable.decimals
            )
            old_service_future = self._submit_endpoint(executor, self._migration.old_bot_state_url)
            new_service_future = self._submit_endpoint(executor, self._migration.new_bot_state_url)
            old_snapshot = old_future.result()
            new_snapshot = new_future.result()
            old_service = old_service_future.result() if old_service_future else None
            new_service = new_service_future.result() if new_service_future else None

        checks = build_checks(old_snapshot, new_snapshot, old_service, new_service, stable.address)
        report = MigrationReport(
            generated_at=utc_now().isoformat(),
            chain_id=self._config.rpc.chain_id,
            rpc_url=str(self._config.rpc.url),
            old_vault=old_snapshot,
            new_vault=new_snapshot,
            old_service=old_service,
            new_service=new_service,
            checks=checks,
        )
        logger.info(
            "Migration report generated",
            extra={"failures": sum(check.status is CheckStatus.FAIL for check in checks)},
        )
        return report

    def _submit_endpoint(self, executor: ThreadPoolExecutor, url: Optional[str]):
        if not url:
            return None
        return executor.submit(
            read_state_endpoint,
            self._session,
            url,
            self._migration.state_auth_token,
            self._migration.http_timeout_seconds,
        )


__all__ = [
    "CheckRow",
    "CheckStatus",
    "EndpointSnapshot",
    "MigrationMonitor",
    "MigrationReport",
    "PoolBalanceRow",
    "VaultSnapshot",
    "build_checks",
    "format_units",
    "read_state_endpoint",
    "read_vault_snapshot",
]
