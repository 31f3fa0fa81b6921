"""Reconcile stale pending Paystack references by hand.

Runs the same sweep as the payments worker, or a single reference. Settled
references are skipped by the reconciliation gate, so re-running is safe.

Usage examples:
  # Preview only (default dry-run): list the stale pending references
  ENV_FILE=.env.prod python scripts/payments/reconcile_pending.py

  # Reconcile all stale references
  ENV_FILE=.env.prod python scripts/payments/reconcile_pending.py --apply

  # One reference, including rows flagged for manual review
  ENV_FILE=.env.prod python scripts/payments/reconcile_pending.py --apply \
      --reference txn_1718000000000_ab12cd34e --include-flagged

  # Also pay referral bonuses that were left unpaid
  ENV_FILE=.env.prod python scripts/payments/reconcile_pending.py --apply --repair-bonuses
"""

from __future__ import annotations

import argparse
import asyncio
import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv


def _load_env_file() -> None:
    project_root = Path(__file__).resolve().parents[2]
    env_file = os.environ.get("ENV_FILE", ".env.prod")
    env_path = (project_root / env_file).resolve()
    if not env_path.exists():
        # In containers, env vars are often injected without mounting the env file.
        if os.environ.get("DATABASE_URL"):
            print(f"Env file not found at {env_path}; using existing environment vars.")
            return
        raise FileNotFoundError(f"Env file not found: {env_path}")
    load_dotenv(env_path, override=True)


async def _print_plan(reference: str | None) -> None:
    from libs.common.config import get_settings
    from libs.common.datetime_utils import utc_now
    from libs.db.config import AsyncSessionLocal
    from services.payments_service.tasks import collect_stale_references

    if reference:
        print(f"Would reconcile: {reference}")
        return

    settings = get_settings()
    cutoff = utc_now() - timedelta(minutes=settings.RECONCILE_STALE_AFTER_MINUTES)
    async with AsyncSessionLocal() as session:
        references = await collect_stale_references(
            session, cutoff=cutoff, limit=settings.RECONCILE_BATCH_SIZE
        )

    print("Dry run summary")
    print(f"Stale pending references: {len(references)}")
    print("")
    print("Sample (first 20):")
    for ref in references[:20]:
        print(f"- {ref}")


async def _reconcile_one(reference: str, include_flagged: bool) -> None:
    from libs.db.config import AsyncSessionLocal
    from services.payments_service.services.reconciliation import reconcile

    async with AsyncSessionLocal() as session:
        result = await reconcile(
            session, reference, source="script", include_flagged=include_flagged
        )
    print(
        f"{result.reference}: {result.status.value} kind={result.kind} "
        f"gateway={result.gateway_status} already_settled={result.already_settled}"
    )
    if result.message:
        print(f"  {result.message}")


async def _apply(args: argparse.Namespace) -> None:
    from services.payments_service.tasks import (
        reconcile_stale_references,
        run_referral_bonus_repair,
    )

    if args.reference:
        await _reconcile_one(args.reference, args.include_flagged)
    else:
        report = await reconcile_stale_references()
        print("")
        print("Sweep complete")
        print(f"Checked: {report.checked}")
        print(f"Completed: {len(report.completed)}")
        print(f"Failed: {len(report.failed)}")
        print(f"Still pending: {len(report.pending)}")
        print(f"Errors: {len(report.errors)}")
        for ref in report.errors:
            print(f"[FAIL] {ref}")

    if args.repair_bonuses:
        bonus = await run_referral_bonus_repair()
        print("")
        print("Referral bonus repair complete")
        print(f"Awarded: {len(bonus.awarded)}")
        print(f"Repaired: {len(bonus.repaired)}")
        print(f"Failures: {len(bonus.failed)}")


async def _main() -> None:
    parser = argparse.ArgumentParser(
        description="Reconcile stale pending Paystack references."
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Apply changes (default is dry-run).",
    )
    parser.add_argument(
        "--reference",
        default=None,
        help="Reconcile only this reference.",
    )
    parser.add_argument(
        "--include-flagged",
        action="store_true",
        help="Also process a reference flagged for manual review.",
    )
    parser.add_argument(
        "--repair-bonuses",
        action="store_true",
        help="Run the referral bonus repair after reconciling.",
    )
    args = parser.parse_args()

    _load_env_file()

    from libs.common.logging import configure_logging

    configure_logging()
    await _print_plan(args.reference)

    if not args.apply:
        print("")
        print("Dry-run only. Re-run with --apply to execute.")
        return

    await _apply(args)


if __name__ == "__main__":
    asyncio.run(_main())
