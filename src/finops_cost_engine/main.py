"""FinOps cost engine entry point: runs one scheduled analytics cycle.

Intended to be invoked by an external scheduler (cron, Kubernetes CronJob).
Each cycle evaluates budgets, runs the post-sync analytics for every tenant
provider with recent data, and emits weekly digests on the configured weekday.
SIGINT/SIGTERM stop the cycle between tenants.
"""

import asyncio
import signal
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from finops_cost_engine.adapters.locks import InProcessKeyedLock
from finops_cost_engine.core.pipeline import SweepResult, TenantSweep
from finops_cost_engine.database import create_engine_and_sessionmaker
from finops_cost_engine.dependencies import build_services, tenant_unit
from finops_cost_engine.observability import configure_logging, get_logger
from finops_cost_engine.settings import Settings

logger = get_logger(__name__)


async def run_scheduled_cycle(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    today: date | None = None,
    stop_event: asyncio.Event | None = None,
) -> dict[str, SweepResult]:
    """Run the budget, analytics and digest sweeps once.

    Returns:
        SweepResult per sweep name; failed tenants are retried next cycle.
    """
    run_date = today or datetime.now(tz=timezone.utc).date()
    stop_event = stop_event or asyncio.Event()
    process_lock = None if settings.use_advisory_locks else InProcessKeyedLock()
    since = run_date - timedelta(days=settings.baseline_refresh_days)
    evaluation_time = (
        datetime.now(tz=timezone.utc) if today is None else datetime.combine(run_date, time.min, tzinfo=timezone.utc)
    )

    async with session_factory() as session:
        discovery = build_services(session, settings, process_lock)
        budget_tenants = await discovery.budget_repo.list_tenant_ids_with_active_budgets()
        data_tenants = await discovery.daily_cost_repo.list_tenant_ids(since)

    logger.info(
        "scheduled_cycle_started",
        run_date=run_date.isoformat(),
        budget_tenants=len(budget_tenants),
        data_tenants=len(data_tenants),
    )

    async def evaluate_budgets(tenant_id: str) -> int:
        async with tenant_unit(session_factory, tenant_id, settings, process_lock) as services:
            return len(await services.budgets.evaluate_all(tenant_id, now=evaluation_time))

    async def analyse(tenant_id: str) -> int:
        async with tenant_unit(session_factory, tenant_id, settings, process_lock) as services:
            scopes = await services.daily_cost_repo.list_provider_scopes(tenant_id, since)
            for provider_id, account_id in scopes:
                await services.pipeline.process_sync(
                    tenant_id, provider_id, account_id=account_id, as_of=run_date
                )
            return len(scopes)

    async def send_digest(tenant_id: str) -> bool:
        async with tenant_unit(session_factory, tenant_id, settings, process_lock) as services:
            digest = await services.digests.build_and_emit(tenant_id, as_of=run_date)
            return digest.emitted

    results: dict[str, SweepResult] = {}
    results["budgets"] = await TenantSweep("budgets", stop_event).run(budget_tenants, evaluate_budgets)
    results["analytics"] = await TenantSweep("analytics", stop_event).run(data_tenants, analyse)
    if run_date.weekday() == settings.weekly_digest_weekday:
        results["weekly_digest"] = await TenantSweep("weekly_digest", stop_event).run(data_tenants, send_digest)

    logger.info(
        "scheduled_cycle_completed",
        run_date=run_date.isoformat(),
        failed_tenants=sorted({t for r in results.values() for t in r.failed}),
    )
    return results


async def _run(settings: Settings) -> int:
    engine, session_factory = create_engine_and_sessionmaker(settings)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)

    try:
        results = await run_scheduled_cycle(settings, session_factory, stop_event=stop_event)
    finally:
        await engine.dispose()
    return 1 if any(r.failed for r in results.values()) else 0


def main() -> None:
    """Console entry point (``finops-cost-engine``)."""
    settings = Settings()
    configure_logging(settings)
    logger.info("finops-cost-engine starting", service=settings.service_name)
    raise SystemExit(asyncio.run(_run(settings)))


if __name__ == "__main__":
    main()
