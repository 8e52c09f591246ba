"""Store health checks and the optional external heartbeat ping."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlparse

import requests
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from speedsale.logging_config import get_logger
from speedsale.storage import repo
from speedsale.storage.db import ping

LOGGER = get_logger(__name__)


class HealthState(str, Enum):
    """Overall pipeline health classification."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass
class HealthReport:
    state: HealthState
    store_reachable: bool
    enabled_retailers: int
    detail: str = ""


def classify(store_reachable: bool, enabled_retailers: int) -> HealthState:
    if not store_reachable:
        return HealthState.DOWN
    if enabled_retailers <= 0:
        return HealthState.DEGRADED
    return HealthState.HEALTHY


def run_health_check(engine: Engine, session_factory: sessionmaker[Session]) -> HealthReport:
    """Check store reachability and count the enabled retailers."""

    if not ping(engine):
        report = HealthReport(HealthState.DOWN, False, 0, "store unreachable")
        LOGGER.error("Health check failed | state=%s detail=%s", report.state.value, report.detail)
        return report

    try:
        with session_factory() as session:
            enabled = repo.count_enabled_retailers(session)
    except SQLAlchemyError as exc:
        report = HealthReport(HealthState.DOWN, False, 0, f"retailer query failed: {exc}")
        LOGGER.error("Health check failed | state=%s detail=%s", report.state.value, report.detail)
        return report

    state = classify(True, enabled)
    detail = f"{enabled} retailers enabled"
    if state is HealthState.HEALTHY:
        LOGGER.info("Health check passed | %s", detail)
    else:
        LOGGER.warning("Health check degraded | %s", detail)
    return HealthReport(state, True, enabled, detail)


def ping_healthcheck(url: str | None) -> bool:
    """Ping an external heartbeat URL; returns whether it answered below 400."""

    if not url:
        LOGGER.info("healthcheck: disabled")
        return False
    host = urlparse(str(url)).netloc or urlparse(str(url)).path
    verify_env = os.getenv("HEALTHCHECK_VERIFY")
    verify = True if verify_env is None else verify_env.strip().lower() not in {"0", "false", "no"}
    try:
        response = requests.get(url, timeout=5, verify=verify)
    except requests.RequestException as exc:
        LOGGER.warning("Healthcheck ping failed for host=%s: %s", host, exc)
        return False
    if response.status_code >= 400:
        LOGGER.warning(
            "Healthcheck returned status %s for host=%s",
            response.status_code,
            host,
        )
        return False
    LOGGER.info(
        "healthcheck ok | host=%s status=%s",
        host,
        response.status_code,
    )
    return True
