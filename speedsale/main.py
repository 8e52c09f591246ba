"""Command-line interface entry point for the SpeedSale pipeline."""

from __future__ import annotations

import argparse
import asyncio
from typing import Any, Iterable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from speedsale.alerts.matcher import AlertMatcher
from speedsale.alerts.notifier import EmailNotifier
from speedsale.config import database_url, load_config, scraping_setting
from speedsale.extractors.dynamic import DynamicStrategy
from speedsale.extractors.static import HttpFetcher, StaticStrategy
from speedsale.health import HealthState, ping_healthcheck, run_health_check
from speedsale.logging_config import get_logger, set_level
from speedsale.orchestrator import ScrapeOrchestrator, log_results
from speedsale.retailers.profiles import StrategyKind
from speedsale.retailers.registry import RetailerRegistry, build_registry
from speedsale.storage import repo
from speedsale.storage.db import get_engine, init_db, make_session

LOGGER = get_logger(__name__)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the application."""

    parser = argparse.ArgumentParser(
        description="Run the SpeedSale shoe price scraping and alerting pipeline."
    )
    actions = parser.add_mutually_exclusive_group(required=True)
    actions.add_argument(
        "--retailer",
        type=str,
        help="Scrape a single retailer by id (e.g. sportsshoes).",
    )
    actions.add_argument(
        "--due",
        action="store_true",
        help="Scrape every enabled retailer whose scraping interval has elapsed.",
    )
    actions.add_argument(
        "--all",
        dest="run_all",
        action="store_true",
        help="Scrape every enabled retailer regardless of when it last ran.",
    )
    actions.add_argument(
        "--alerts",
        action="store_true",
        help="Run one alert matching pass over all watchlists.",
    )
    actions.add_argument(
        "--health",
        action="store_true",
        help="Check store reachability and count enabled retailers.",
    )
    actions.add_argument(
        "--serve",
        action="store_true",
        help="Run scraping, alerts and health checks on their cron schedules until interrupted.",
    )
    actions.add_argument(
        "--test-email",
        dest="test_email",
        type=str,
        metavar="ADDRESS",
        help="Send a sample price alert to ADDRESS and exit.",
    )
    parser.add_argument(
        "--category",
        type=str,
        help="Category key to scrape (only with --retailer).",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to the YAML configuration file (default: config.yml).",
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Number of scrape jobs to run concurrently (overrides scraping.max_workers).",
    )

    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.category and not args.retailer:
        parser.error("--category requires --retailer")
    if args.workers is not None and args.workers <= 0:
        parser.error("--workers must be a positive integer")
    if args.retailer is not None and not args.retailer.strip():
        parser.error("--retailer must not be empty")

    return args


def build_orchestrator(
    config: dict[str, Any],
    registry: RetailerRegistry,
    session_factory: sessionmaker[Session],
    *,
    workers: int | None = None,
) -> ScrapeOrchestrator:
    strategies = {
        StrategyKind.STATIC: StaticStrategy(
            HttpFetcher(timeout=float(scraping_setting(config, "request_timeout_s")))
        ),
        StrategyKind.DYNAMIC: DynamicStrategy(
            navigation_timeout_ms=int(scraping_setting(config, "navigation_timeout_ms")),
            pagination_timeout_ms=int(scraping_setting(config, "pagination_timeout_ms")),
        ),
    }
    return ScrapeOrchestrator(
        registry,
        session_factory,
        strategies,
        max_workers=workers or int(scraping_setting(config, "max_workers")),
        default_interval_hours=int(scraping_setting(config, "default_interval_hours")),
    )


def build_alert_matcher(config: dict[str, Any], session_factory: sessionmaker[Session]) -> AlertMatcher:
    app_url = str(config.get("app_url") or "")
    alerts_conf = config.get("alerts") or {}
    return AlertMatcher(
        session_factory,
        EmailNotifier(app_url=app_url or None),
        default_threshold=float(alerts_conf.get("default_threshold", 10)),
        app_url=app_url or "https://speedsale.vercel.app",
    )


def _prepare_store(config: dict[str, Any], registry: RetailerRegistry) -> tuple[Engine, sessionmaker[Session]]:
    database = config.get("database") or {}
    engine = get_engine(database_url(config), busy_timeout=database.get("busy_timeout"))
    init_db(engine)
    session_factory = make_session(engine)
    with session_factory() as session:
        created = repo.sync_retailers(session, registry)
        session.commit()
    if created:
        LOGGER.info("Registered retailers | created=%d", created)
    return engine, session_factory


async def _health_pass(
    config: dict[str, Any], engine: Engine, session_factory: sessionmaker[Session]
) -> HealthState:
    report = await asyncio.to_thread(run_health_check, engine, session_factory)
    if report.state is not HealthState.DOWN:
        await asyncio.to_thread(ping_healthcheck, config.get("healthcheck_url"))
    return report.state


async def _serve(
    config: dict[str, Any],
    orchestrator: ScrapeOrchestrator,
    matcher: AlertMatcher,
    engine: Engine,
    session_factory: sessionmaker[Session],
) -> None:
    schedule = config.get("schedule") or {}
    scheduler = AsyncIOScheduler()

    async def scheduled_scrape() -> None:
        try:
            log_results(await orchestrator.run_due())
        except Exception:
            LOGGER.exception("Scheduled scraping failed")

    async def scheduled_alerts() -> None:
        try:
            await asyncio.to_thread(matcher.match_and_notify)
        except Exception:
            LOGGER.exception("Scheduled alert pass failed")

    async def scheduled_health() -> None:
        try:
            await _health_pass(config, engine, session_factory)
        except Exception:
            LOGGER.exception("Scheduled health check failed")

    jobs = (
        ("scrape", scheduled_scrape, schedule.get("scrape_cron") or "0 */6 * * *"),
        ("alerts", scheduled_alerts, schedule.get("alerts_cron") or "0 */12 * * *"),
        ("health", scheduled_health, schedule.get("health_cron") or "0 * * * *"),
    )
    for name, func, expression in jobs:
        scheduler.add_job(
            func,
            CronTrigger.from_crontab(expression, timezone="UTC"),
            id=name,
            max_instances=1,
            coalesce=True,
        )
        LOGGER.info("Scheduled job | name=%s cron=%s", name, expression)

    scheduler.start()
    LOGGER.info("Scheduler started; press Ctrl+C to stop")

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        LOGGER.info("Shutdown signal received; stopping scheduler")
    finally:
        scheduler.shutdown(wait=False)


async def _async_main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    LOGGER.info(
        "Parsed arguments: retailer=%s category=%s due=%s all=%s alerts=%s health=%s serve=%s test_email=%s workers=%s",
        args.retailer,
        args.category,
        args.due,
        args.run_all,
        args.alerts,
        args.health,
        args.serve,
        bool(args.test_email),
        args.workers,
    )

    config = load_config(args.config)
    set_level((config.get("logging") or {}).get("level"))

    if args.test_email:
        notifier = EmailNotifier(app_url=config.get("app_url") or None)
        sent = await asyncio.to_thread(notifier.send_test_email, args.test_email)
        LOGGER.info("Test email %s | to=%s", "sent" if sent else "not sent", args.test_email)
        return 0 if sent else 1

    registry = build_registry(config)
    try:
        engine, session_factory = _prepare_store(config, registry)
    except SQLAlchemyError as exc:
        if args.health:
            LOGGER.error(
                "Health check failed | state=%s detail=store setup failed: %s", HealthState.DOWN.value, exc
            )
        else:
            LOGGER.error("Store unavailable | error=%s", exc)
        return 1

    if args.health:
        state = await _health_pass(config, engine, session_factory)
        return 1 if state is HealthState.DOWN else 0

    matcher = build_alert_matcher(config, session_factory)
    if args.alerts:
        await asyncio.to_thread(matcher.match_and_notify)
        return 0

    orchestrator = build_orchestrator(config, registry, session_factory, workers=args.workers)

    if args.retailer:
        result = await orchestrator.run_retailer(args.retailer.strip(), args.category)
        log_results([result])
        return 0 if result.success else 1

    if args.due or args.run_all:
        results = await (orchestrator.run_due() if args.due else orchestrator.run_all())
        log_results(results)
        return 0 if all(result.success for result in results) else 1

    await _serve(config, orchestrator, matcher, engine, session_factory)
    return 0


def main() -> None:
    try:
        exit_code = asyncio.run(_async_main())
    except KeyboardInterrupt:  # pragma: no cover - interactive safety
        LOGGER.info("Interrupted by user")
        return
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
