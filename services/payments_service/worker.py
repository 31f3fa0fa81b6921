"""ARQ worker for payment reconciliation and referral bonus repair."""

from arq import cron
from libs.common.arq_config import get_redis_settings
from libs.common.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def startup(ctx: dict):
    configure_logging()


async def task_reconcile_stale_references(ctx: dict):
    from services.payments_service.tasks import reconcile_stale_references

    logger.info("Running: reconcile_stale_references")
    await reconcile_stale_references()


async def task_repair_referral_bonuses(ctx: dict):
    from services.payments_service.tasks import run_referral_bonus_repair

    logger.info("Running: repair_referral_bonuses")
    await run_referral_bonus_repair()


class WorkerSettings:
    redis_settings = get_redis_settings()
    on_startup = startup

    functions = [
        task_reconcile_stale_references,
        task_repair_referral_bonuses,
    ]

    cron_jobs = [
        cron(
            task_reconcile_stale_references,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
            run_at_startup=True,
        ),
        cron(
            task_repair_referral_bonuses,
            minute={3, 18, 33, 48},
            run_at_startup=True,
        ),
    ]
