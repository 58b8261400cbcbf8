import logging
import math
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import config
from .kinds import EventKind, FILE_KINDS
from .models import Event, FileActivityBaseline, utcnow

logger = logging.getLogger(__name__)

BASELINE_HISTORY = timedelta(hours=6)
# still-settling data is left out of the window
BASELINE_SETTLE = timedelta(minutes=5)
ALPHA = 0.3

# kind -> baseline column prefix
RATE_FIELDS = {
    EventKind.FILE_CREATE.value: "create",
    EventKind.FILE_MODIFY.value: "modify",
    EventKind.FILE_DELETE.value: "delete",
    EventKind.FILE_RENAME.value: "rename",
}


def smooth(old_value: float, new_value: float, alpha: float = ALPHA) -> float:
    if old_value == 0:
        return new_value
    return alpha * new_value + (1 - alpha) * old_value


def update_std(old_std: float, value: float, mean: float) -> float:
    diff = value - mean
    return math.sqrt((old_std * old_std + diff * diff) / 2)


def file_rates(db: Session, start: datetime, end: datetime) -> Dict[str, Dict[str, float]]:
    """Per-host events-per-minute for each file kind between start and end."""
    minutes = (end - start).total_seconds() / 60
    if minutes <= 0:
        return {}

    stmt = (
        select(Event.hostname, Event.kind)
        .where(Event.kind.in_(FILE_KINDS))
        .where(Event.timestamp >= start)
        .where(Event.timestamp <= end)
    )
    counts: Dict[str, Counter] = defaultdict(Counter)
    for hostname, kind in db.execute(stmt).all():
        counts[hostname][kind] += 1

    return {
        hostname: {kind: per_kind[kind] / minutes for kind in FILE_KINDS}
        for hostname, per_kind in counts.items()
    }


def update_baselines(db: Session, now: Optional[datetime] = None) -> List[FileActivityBaseline]:
    now = now or utcnow()
    window_start = now - BASELINE_HISTORY
    window_end = now - BASELINE_SETTLE
    min_observation = timedelta(minutes=config.BASELINE_MIN_OBSERVATION_MINUTES)

    updated = []
    for hostname, rates in file_rates(db, window_start, window_end).items():
        baseline = db.execute(
            select(FileActivityBaseline).where(FileActivityBaseline.hostname == hostname)
        ).scalars().first()

        if baseline is None:
            baseline = FileActivityBaseline(
                hostname=hostname,
                create_avg=0.0, modify_avg=0.0, delete_avg=0.0, rename_avg=0.0,
                create_std=0.0, modify_std=0.0, delete_std=0.0, rename_std=0.0,
                first_seen=now,
                detection_enabled=False,
            )
            db.add(baseline)

        for kind, prefix in RATE_FIELDS.items():
            rate = rates[kind]
            avg = smooth(getattr(baseline, f"{prefix}_avg"), rate)
            std = update_std(getattr(baseline, f"{prefix}_std"), rate, avg)
            setattr(baseline, f"{prefix}_avg", avg)
            setattr(baseline, f"{prefix}_std", std)

        if not baseline.detection_enabled and now - baseline.first_seen >= min_observation:
            baseline.detection_enabled = True
            logger.info("Baseline detection enabled for %s", hostname)

        baseline.last_updated = now
        updated.append(baseline)

    db.commit()
    logger.info("Baselines updated for %d host(s)", len(updated))
    return updated
