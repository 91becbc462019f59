"""Vault cutover readiness checks."""

from .monitor import (
    CheckRow,
    CheckStatus,
    EndpointSnapshot,
    MigrationMonitor,
    MigrationReport,
    VaultSnapshot,
    build_checks,
)

__all__ = [
    "CheckRow",
    "CheckStatus",
    "EndpointSnapshot",
    "MigrationMonitor",
    "MigrationReport",
    "VaultSnapshot",
    "build_checks",
]
