import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .kinds import FAILED_LOGIN_KINDS
from .models import Anomaly, Event, utcnow

logger = logging.getLogger(__name__)

RESCAN_WINDOW = timedelta(minutes=5)
RESCAN_THRESHOLD = 5


def scan_failed_logins(db: Session, now: Optional[datetime] = None) -> List[Anomaly]:
    """
    Re-evaluate the last five minutes of failed logins, per host.

    Independent of the per-event detectors: no dedup against anything they
    raised, so one burst can surface here as well.
    """
    now = now or utcnow()
    cutoff = now - RESCAN_WINDOW

    stmt = (
        select(Event.hostname)
        .where(Event.kind.in_(FAILED_LOGIN_KINDS))
        .where(Event.timestamp >= cutoff)
        .where(Event.timestamp <= now)
    )
    counts = Counter(db.execute(stmt).scalars().all())

    anomalies = []
    for hostname, count in sorted(counts.items()):
        logger.info("FailedLogin host=%s count=%s", hostname, count)
        if count < RESCAN_THRESHOLD:
            continue
        anomalies.append(
            Anomaly(
                type="FailedLoginBurst",
                description=f"{count} failed logins in last 5 minutes (≥{RESCAN_THRESHOLD})",
                hostname=hostname,
                timestamp=now,
            )
        )

    if anomalies:
        db.add_all(anomalies)
        db.commit()
        for anomaly in anomalies:
            logger.warning("Anomaly detected: %s on %s", anomaly.description, anomaly.hostname)

    return anomalies
