import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from . import geo
from .alerts import AlertComposer
from .detection import check_immediate_thresholds, detect_login_failure
from .models import Event
from .normalizer import GeoLookup, enrich, normalize

logger = logging.getLogger(__name__)


def ingest_event(
    db: Session,
    payload: Mapping[str, Any],
    composer: AlertComposer,
    now: Optional[datetime] = None,
    lookup: Optional[GeoLookup] = geo.lookup,
    per_host_login_bursts: bool = False,
) -> Event:
    """
    Normalize, enrich, store, then run the per-event detectors.

    Only a failure to store the event propagates. Whatever happens in the
    detectors afterwards is logged and the stored event is returned.
    """
    event = normalize(payload, now=now)
    enrich(event, lookup)

    db.add(event)
    db.commit()
    db.refresh(event)

    logger.info(
        "[%s] %s:%s -> %s @ %s",
        event.timestamp.isoformat(), event.source, event.kind, event.path_or_message, event.hostname,
    )

    run_detectors(db, event, composer, per_host_login_bursts=per_host_login_bursts)
    return event


def run_detectors(db: Session, event: Event, composer: AlertComposer, per_host_login_bursts: bool = False) -> None:
    event_id = event.id

    try:
        check_immediate_thresholds(db, event, composer)
    except Exception:
        logger.exception("Immediate threshold check failed for event %s", event_id)
        db.rollback()

    try:
        detect_login_failure(db, event, per_host=per_host_login_bursts)
    except Exception:
        logger.exception("Login failure detection failed for event %s", event_id)
        db.rollback()
