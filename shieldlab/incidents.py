"""Rate-vs-baseline file activity incidents (START, continue, END, cooldown)."""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import config
from .alerts import AlertComposer
from .baseline import file_rates
from .kinds import EventKind, FILE_KINDS
from .models import Anomaly, FileActivityBaseline, IncidentState, utcnow

logger = logging.getLogger(__name__)

DETECTION_WINDOW = timedelta(minutes=5)

FILE_Z_THRESHOLD = 4.0
RANSOMWARE_Z_SINGLE = 3.0
RANSOMWARE_Z_COMBINED = 7.0

FILE_ANOMALY_TYPES = {
    EventKind.FILE_CREATE.value: ("FileCreateAnomaly", "create"),
    EventKind.FILE_MODIFY.value: ("FileModifyAnomaly", "modify"),
    EventKind.FILE_DELETE.value: ("FileDeleteAnomaly", "delete"),
    EventKind.FILE_RENAME.value: ("FileRenameAnomaly", "rename"),
}
RANSOMWARE_TYPE = "FileRansomwareBehavior"
INCIDENT_TYPES = [t for t, _ in FILE_ANOMALY_TYPES.values()] + [RANSOMWARE_TYPE]


def zscore(current: float, mean: float, std: float) -> float:
    if std <= 0.000001:
        return 0.0
    return (current - mean) / std


def evaluate_host(baseline: FileActivityBaseline, rates: Dict[str, float]) -> Dict[str, int]:
    """Incident types firing for one host, mapped to their event counts."""
    minutes = DETECTION_WINDOW.total_seconds() / 60
    firing: Dict[str, int] = {}
    z: Dict[str, float] = {}

    for kind, (anomaly_type, prefix) in FILE_ANOMALY_TYPES.items():
        rate = rates.get(kind, 0.0)
        z[kind] = zscore(rate, getattr(baseline, f"{prefix}_avg"), getattr(baseline, f"{prefix}_std"))
        if z[kind] >= FILE_Z_THRESHOLD:
            firing[anomaly_type] = round(rate * minutes)

    z_modify = z[EventKind.FILE_MODIFY.value]
    z_rename = z[EventKind.FILE_RENAME.value]
    if (
        z_modify >= RANSOMWARE_Z_SINGLE
        and z_rename >= RANSOMWARE_Z_SINGLE
        and z_modify + z_rename >= RANSOMWARE_Z_COMBINED
    ):
        firing[RANSOMWARE_TYPE] = round(
            (rates.get(EventKind.FILE_MODIFY.value, 0.0) + rates.get(EventKind.FILE_RENAME.value, 0.0)) * minutes
        )

    return firing


def get_incident(db: Session, incident_type: str, hostname: str) -> Optional[IncidentState]:
    stmt = (
        select(IncidentState)
        .where(IncidentState.type == incident_type)
        .where(IncidentState.hostname == hostname)
    )
    return db.execute(stmt).scalars().first()


def start_or_continue(
    db: Session,
    composer: AlertComposer,
    hostname: str,
    incident_type: str,
    count: int,
    now: datetime,
) -> bool:
    """True when a new incident was started."""
    incident = get_incident(db, incident_type, hostname)

    if incident is not None and incident.is_active:
        incident.last_event_time = now
        incident.count = max(incident.count, count)
        db.commit()
        return False

    if incident is not None and incident.cooldown_until is not None and now < incident.cooldown_until:
        logger.debug("%s on %s still cooling down, not restarting", incident_type, hostname)
        return False

    if incident is None:
        incident = IncidentState(type=incident_type, hostname=hostname)
        db.add(incident)

    incident.is_active = True
    incident.start_time = now
    incident.last_event_time = now
    incident.count = count
    incident.cooldown_until = None

    db.add(Anomaly(
        type=incident_type,
        hostname=hostname,
        description=f"Incident STARTED. Initial count: {count}.",
        timestamp=now,
    ))
    db.commit()

    logger.warning("Incident %s started on %s (count %s)", incident_type, hostname, count)
    composer.raise_alert(
        incident_type,
        f"Incident STARTED at {now:%Y-%m-%d %H:%M:%SZ}. Initial count: {count}.",
        hostname,
        "START",
    )
    return True


def close_incident(db: Session, composer: AlertComposer, incident: IncidentState, now: datetime) -> None:
    logger.info("Closing incident %s on %s", incident.type, incident.hostname)

    duration = (incident.last_event_time - incident.start_time).total_seconds()
    incident.is_active = False
    incident.cooldown_until = now + timedelta(minutes=config.INCIDENT_COOLDOWN_MINUTES)
    incident_type, hostname, count = incident.type, incident.hostname, incident.count

    db.add(Anomaly(
        type=incident_type,
        hostname=hostname,
        description=f"Incident ENDED. Total events: {count}. Duration: {duration:.1f}s",
        timestamp=now,
    ))
    db.commit()

    composer.raise_alert(incident_type, f"Incident ENDED. Total events: {count}.", hostname, "END")


def detect_file_deviations(db: Session, composer: AlertComposer, now: Optional[datetime] = None) -> List[str]:
    """Evaluate every detection-enabled baseline; returns the incident types started."""
    now = now or utcnow()
    rates_by_host = file_rates(db, now - DETECTION_WINDOW, now)

    baselines = db.execute(
        select(FileActivityBaseline).where(FileActivityBaseline.detection_enabled.is_(True))
    ).scalars().all()

    started = []
    for baseline in baselines:
        hostname = baseline.hostname
        rates = rates_by_host.get(hostname, {kind: 0.0 for kind in FILE_KINDS})
        firing = evaluate_host(baseline, rates)

        for incident_type in INCIDENT_TYPES:
            if incident_type in firing:
                if start_or_continue(db, composer, hostname, incident_type, firing[incident_type], now):
                    started.append(incident_type)
                continue

            incident = get_incident(db, incident_type, hostname)
            if incident is not None and incident.is_active:
                close_incident(db, composer, incident, now)

    return started
