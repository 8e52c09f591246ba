"""Scrape job orchestration: profile checks, strategy dispatch, reconciliation."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from speedsale.errors import ConfigurationError, PersistenceError, ScrapeError
from speedsale.extractors.base import ExtractionStrategy
from speedsale.extractors.dom_utils import pause
from speedsale.logging_config import get_logger
from speedsale.reconciler import CatalogReconciler
from speedsale.retailers.profiles import RetailerProfile, StrategyKind
from speedsale.retailers.registry import RetailerRegistry
from speedsale.schemas import JobPriority, ScrapeJob, ScrapeResult
from speedsale.storage import repo
from speedsale.storage.models_sql import Retailer

LOGGER = get_logger(__name__)

DEFAULT_INTERVAL_HOURS = 24


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def next_run_at(state: Retailer, *, default_interval_hours: int = DEFAULT_INTERVAL_HOURS) -> datetime:
    last = _as_utc(state.last_scraped) if state.last_scraped else datetime.min.replace(tzinfo=timezone.utc)
    hours = state.scraping_interval_hours or default_interval_hours
    return last + timedelta(hours=hours)


def is_due(
    state: Retailer | None,
    now: datetime,
    *,
    default_interval_hours: int = DEFAULT_INTERVAL_HOURS,
) -> bool:
    """A retailer is due when enabled and ``now >= last_scraped + interval``."""

    if state is None or not state.enabled:
        return False
    if state.last_scraped is None:
        return True
    return _as_utc(now) >= next_run_at(state, default_interval_hours=default_interval_hours)


class ScrapeOrchestrator:
    """Runs scrape jobs and never lets an exception escape a job."""

    def __init__(
        self,
        registry: RetailerRegistry,
        session_factory: sessionmaker[Session],
        strategies: Mapping[StrategyKind, ExtractionStrategy],
        *,
        reconciler: CatalogReconciler | None = None,
        max_workers: int = 2,
        default_interval_hours: int = DEFAULT_INTERVAL_HOURS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._registry = registry
        self._session_factory = session_factory
        self._strategies = dict(strategies)
        self._reconciler = reconciler or CatalogReconciler(session_factory, clock=clock)
        self._max_workers = max(1, max_workers)
        self._default_interval_hours = default_interval_hours
        self._clock = clock

    # ---- single job ----

    async def run_job(self, job: ScrapeJob) -> ScrapeResult:
        """Run one job to completion, capturing every failure into the result."""

        started = time.monotonic()
        result = ScrapeResult(retailer_id=job.retailer_id)
        try:
            await self._execute(job, result)
        except ScrapeError as exc:
            result.errors.append(f"{exc.stage}: {exc}")
            LOGGER.error(
                "Scrape job failed | retailer=%s category=%s stage=%s error=%s",
                job.retailer_id,
                job.category,
                exc.stage,
                exc,
            )
        except Exception as exc:  # noqa: BLE001 - job boundary
            result.errors.append(f"unexpected: {exc}")
            LOGGER.exception(
                "Unexpected scrape failure | retailer=%s category=%s", job.retailer_id, job.category
            )
        finally:
            result.duration_ms = int((time.monotonic() - started) * 1000)

        LOGGER.info(
            "Scrape job finished | retailer=%s success=%s found=%d saved=%d duration_ms=%d",
            result.retailer_id,
            result.success,
            result.products_found,
            result.products_saved,
            result.duration_ms,
        )
        return result

    async def _execute(self, job: ScrapeJob, result: ScrapeResult) -> None:
        profile = self._check_profile(job.retailer_id)
        category = job.category or profile.default_category

        strategy = self._strategies.get(profile.strategy)
        if strategy is None:
            raise ConfigurationError(
                f"Unknown scraping strategy: {profile.strategy}", retailer=profile.id
            )

        LOGGER.info(
            "Processing scrape job | retailer=%s category=%s strategy=%s priority=%s",
            profile.id,
            category,
            profile.strategy.value,
            job.priority.value,
        )
        products = await strategy.extract(profile, category)
        result.products_found = len(products)

        if not products:
            result.errors.append("No products found during scraping")
            LOGGER.warning("Zero products | retailer=%s category=%s", profile.id, category)
            return

        try:
            result.products_saved = await asyncio.to_thread(
                self._reconciler.reconcile, products, profile.id
            )
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Catalog reconciliation failed: {exc}", retailer=profile.id, category=category
            ) from exc
        result.success = True

    def _check_profile(self, retailer_id: str) -> RetailerProfile:
        profile = self._registry.get(retailer_id)
        if profile is None:
            raise ConfigurationError("Retailer configuration not found", retailer=retailer_id)
        if not profile.enabled:
            raise ConfigurationError("Retailer is disabled in configuration", retailer=retailer_id)

        try:
            with self._session_factory() as session:
                state = repo.get_retailer(session, retailer_id)
                enabled = bool(state and state.enabled)
                registered = state is not None
        except SQLAlchemyError as exc:
            raise ConfigurationError(f"Database error: {exc}", retailer=retailer_id) from exc

        if not registered:
            raise ConfigurationError("Retailer is not registered in the database", retailer=retailer_id)
        if not enabled:
            raise ConfigurationError("Retailer is disabled in database", retailer=retailer_id)
        return profile

    # ---- batches ----

    async def run_retailer(self, retailer_id: str, category: str | None = None) -> ScrapeResult:
        return await self.run_job(
            ScrapeJob(retailer_id=retailer_id, category=category, priority=JobPriority.HIGH)
        )

    async def run_jobs(self, jobs: list[ScrapeJob]) -> list[ScrapeResult]:
        """Run *jobs* on a bounded worker pool, highest priority first.

        Jobs for one retailer are additionally capped by its ``max_concurrent``
        and each job holds its slot through the retailer's rate-limit delay.
        """

        if not jobs:
            return []

        ordered = sorted(jobs, key=lambda job: job.priority.rank)
        workers = asyncio.Semaphore(self._max_workers)
        per_retailer: dict[str, asyncio.Semaphore] = {}
        for job in ordered:
            if job.retailer_id not in per_retailer:
                profile = self._registry.get(job.retailer_id)
                limit = profile.rate_limit.max_concurrent if profile else 1
                per_retailer[job.retailer_id] = asyncio.Semaphore(max(1, limit))

        async def _worker(job: ScrapeJob) -> ScrapeResult:
            async with per_retailer[job.retailer_id], workers:
                result = await self.run_job(job)
                profile = self._registry.get(job.retailer_id)
                if profile is not None:
                    await pause(profile.rate_limit.delay_ms)
                return result

        return list(await asyncio.gather(*(_worker(job) for job in ordered)))

    async def run_all(self) -> list[ScrapeResult]:
        """Scrape every enabled retailer regardless of when it last ran."""

        jobs = [
            ScrapeJob(retailer_id=profile.id, priority=JobPriority.HIGH)
            for profile in self._registry.enabled()
        ]
        LOGGER.info("Starting scrape for all enabled retailers | count=%d", len(jobs))
        return await self.run_jobs(jobs)

    async def run_due(self) -> list[ScrapeResult]:
        """Scrape only the enabled retailers whose interval has elapsed."""

        now = self._clock()
        jobs: list[ScrapeJob] = []
        results: list[ScrapeResult] = []
        for profile in self._registry.enabled():
            try:
                with self._session_factory() as session:
                    state = repo.get_retailer(session, profile.id)
                    due = is_due(state, now, default_interval_hours=self._default_interval_hours)
                    next_at = (
                        next_run_at(state, default_interval_hours=self._default_interval_hours)
                        if state is not None and not due
                        else None
                    )
            except SQLAlchemyError as exc:
                LOGGER.error("Failed to read retailer state | retailer=%s error=%s", profile.id, exc)
                results.append(ScrapeResult(retailer_id=profile.id, errors=[f"config: {exc}"]))
                continue

            if due:
                jobs.append(ScrapeJob(retailer_id=profile.id, priority=JobPriority.MEDIUM))
            elif state is None or not state.enabled:
                LOGGER.info("Skipping retailer | retailer=%s reason=disabled-in-database", profile.id)
            else:
                LOGGER.info(
                    "Skipping retailer | retailer=%s next_run=%s",
                    profile.id,
                    next_at.isoformat() if next_at else None,
                )

        LOGGER.info("Due retailers | due=%d checked=%d", len(jobs), len(self._registry.enabled()))
        results.extend(await self.run_jobs(jobs))
        return results


def summarize_results(results: list[ScrapeResult]) -> dict[str, int]:
    return {
        "jobs": len(results),
        "successful": sum(1 for result in results if result.success),
        "failed": sum(1 for result in results if not result.success),
        "found": sum(result.products_found for result in results),
        "saved": sum(result.products_saved for result in results),
    }


def log_results(results: list[ScrapeResult]) -> None:
    summary = summarize_results(results)
    LOGGER.info(
        "Scraping results | jobs=%d successful=%d failed=%d found=%d saved=%d",
        summary["jobs"],
        summary["successful"],
        summary["failed"],
        summary["found"],
        summary["saved"],
    )
    for result in results:
        LOGGER.info(
            "  %s %s: %d found, %d saved",
            "SUCCESS" if result.success else "FAILED",
            result.retailer_id,
            result.products_found,
            result.products_saved,
        )
        for error in result.errors:
            LOGGER.info("      - %s", error)
