import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from .alerts import AlertComposer
from .config import get_thresholds
from .kinds import EventKind, FAILED_LOGIN_KINDS, IMMEDIATE_KINDS
from .models import Alert, Anomaly, Event

logger = logging.getLogger(__name__)


THRESHOLD_WINDOW = timedelta(minutes=5)
DEDUP_WINDOW = timedelta(seconds=60)

LOGIN_BURST_WINDOW = timedelta(seconds=30)
LOGIN_BURST_THRESHOLD = 5


def count_events(
    db: Session,
    kinds: Iterable[str],
    since: datetime,
    until: datetime,
    hostname: Optional[str] = None,
) -> int:
    stmt = (
        select(func.count(Event.id))
        .where(Event.kind.in_(list(kinds)))
        .where(Event.timestamp >= since)
        .where(Event.timestamp <= until)
    )
    if hostname is not None:
        stmt = stmt.where(Event.hostname == hostname)
    return db.execute(stmt).scalar_one()


# =========================
# IMMEDIATE THRESHOLDS
# =========================

def check_immediate_thresholds(db: Session, event: Event, composer: AlertComposer) -> List[Anomaly]:
    if EventKind.parse(event.kind) not in IMMEDIATE_KINDS:
        logger.debug("Skipping threshold check for %s", event.kind)
        return []

    since = event.timestamp - THRESHOLD_WINDOW
    until = event.timestamp
    host = event.hostname

    failed_login_count = count_events(db, FAILED_LOGIN_KINDS, since, until, host)
    file_create_count = count_events(db, [EventKind.FILE_CREATE.value], since, until, host)
    file_modify_count = count_events(db, [EventKind.FILE_MODIFY.value], since, until, host)
    file_delete_count = count_events(db, [EventKind.FILE_DELETE.value], since, until, host)

    thresholds = get_thresholds(db)

    checks = [
        ("SevereFileModifyBurst", file_modify_count, thresholds.max_file_modifies, "file modifications"),
        ("SevereFileDeleteBurst", file_delete_count, thresholds.max_file_deletes, "file deletions"),
        ("SevereFileCreateBurst", file_create_count, thresholds.max_file_creates, "file creations"),
        ("SevereFailedLoginBurst", failed_login_count, thresholds.max_failed_logins, "failed logins"),
    ]

    raised = []
    for anomaly_type, count, threshold, label in checks:
        if count < threshold:
            continue
        anomaly = insert_if_not_duplicate(
            db,
            composer,
            hostname=host,
            anomaly_type=anomaly_type,
            description=f"{count} {label} in last 5 minutes (≥{threshold})",
            detected_at=event.timestamp,
        )
        if anomaly is not None:
            raised.append(anomaly)
    return raised


def recent_anomaly_exists(db: Session, anomaly_type: str, hostname: str, detected_at: datetime) -> bool:
    stmt = (
        select(Anomaly.id)
        .where(Anomaly.type == anomaly_type)
        .where(Anomaly.hostname == hostname)
        .where(Anomaly.timestamp >= detected_at - DEDUP_WINDOW)
        .limit(1)
    )
    return db.execute(stmt).first() is not None


def insert_if_not_duplicate(
    db: Session,
    composer: AlertComposer,
    hostname: str,
    anomaly_type: str,
    description: str,
    detected_at: datetime,
) -> Optional[Anomaly]:
    # Not a lock: concurrent requests can both pass this check.
    if recent_anomaly_exists(db, anomaly_type, hostname, detected_at):
        logger.debug("Duplicate %s for %s in last minute, skipping", anomaly_type, hostname)
        return None

    anomaly = Anomaly(
        type=anomaly_type,
        description=description,
        hostname=hostname,
        timestamp=detected_at,
    )
    db.add(anomaly)
    db.commit()
    db.refresh(anomaly)

    logger.warning("Anomaly detected: %s on %s", anomaly.description, anomaly.hostname)

    try:
        composer.raise_alert(anomaly.type, anomaly.description, anomaly.hostname, "START")
    except Exception:
        logger.exception("Failed sending alert for %s on %s", anomaly.type, anomaly.hostname)
        db.rollback()

    return anomaly


# =========================
# LOGIN FAILURE BURSTS
# =========================

def detect_login_failure(db: Session, event: Event, per_host: bool = False) -> List[Anomaly]:
    # burst count spans all hosts unless per_host is set
    if event.kind != EventKind.LOGIN_FAILURE.value:
        return []

    anomalies = [
        Anomaly(
            type="LoginFailure",
            description=f"Login failure on {event.hostname}: {event.path_or_message}",
            hostname=event.hostname,
            timestamp=event.timestamp,
        )
    ]

    count = count_events(
        db,
        [EventKind.LOGIN_FAILURE.value],
        since=event.timestamp - LOGIN_BURST_WINDOW,
        until=event.timestamp,
        hostname=event.hostname if per_host else None,
    )

    alert = None
    if count >= LOGIN_BURST_THRESHOLD:
        description = f"{count} login failures in last 30 seconds (≥{LOGIN_BURST_THRESHOLD})"
        anomalies.append(
            Anomaly(
                type="LoginFailureBurst",
                description=description,
                hostname=event.hostname,
                timestamp=event.timestamp,
            )
        )
        alert = Alert(
            type="LoginFailureBurst",
            phase="START",
            message=description,
            channel="None",
            hostname=event.hostname,
            timestamp=event.timestamp,
        )

    db.add_all(anomalies)
    if alert is not None:
        db.add(alert)
    db.commit()

    if alert is not None:
        logger.warning("Login failure burst: %s (host %s)", alert.message, event.hostname)

    return anomalies
