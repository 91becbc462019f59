"""CLI: ``python -m sentryield_bot.migration``."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from ..config.settings import get_app_config
from ..errors import ConfigurationError
from ..monitoring import bootstrap_observability
from ..monitoring.logger import get_logger
from .monitor import MigrationMonitor, MigrationReport

logger = get_logger(__name__)


def render_summary(report: MigrationReport) -> List[str]:
    lines = ["=== Sentryield Migration Report ==="]
    for label, vault in (("old vault", report.old_vault), ("new vault", report.new_vault)):
        data = vault.to_dict()
        lines.append(f"{label}: {vault.address}")
        lines.append(f"  usdc: {data['usdcBalanceFormatted']} ({data['usdcBalanceRaw']} raw)")
        for row in data["poolLpBalances"]:
            lines.append(
                f"  lp[{row['poolId']}]: {row['balanceFormatted']} ({row['balanceRaw']} raw) "
                f"token={row['lpToken']}"
            )
    shares = report.new_vault.total_user_shares_raw
    lines.append(
        f"  userFlow: {report.new_vault.supports_user_flow} "
        f"totalUserShares={shares if shares is not None else 'n/a'}"
    )
    for check in report.checks:
        lines.append(f"{check.status.value:<4} | {check.id} | {check.detail}")
    return lines


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Compare old and new vault deployments before cutover")
    parser.add_argument(
        "--report-path",
        type=Path,
        default=None,
        help="Write the JSON report here (default: migration.report_path).",
    )
    args = parser.parse_args(argv)

    try:
        config = get_app_config()
        bootstrap_observability(config)
        report = MigrationMonitor(config).generate()
    except ConfigurationError as exc:
        logger.error("Migration report aborted: %s", exc)
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    body = json.dumps(report.to_dict(), indent=2)
    output_path = args.report_path or config.migration.report_path
    if output_path:
        Path(output_path).write_text(body, encoding="utf-8")

    for line in render_summary(report):
        print(line)
    if output_path:
        print(f"Report written to: {output_path}")
    print("JSON_REPORT_START")
    print(body)
    print("JSON_REPORT_END")
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
