"""Canonicalizes inbound events, tags severity, attaches coarse geolocation."""
import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from .geo import GeoLocation
from .kinds import Severity
from .models import Event, utcnow

logger = logging.getLogger(__name__)

GeoLookup = Callable[[str], Optional[GeoLocation]]


def normalize_kind(kind: Optional[str]) -> str:
    return (kind or "").strip().lower()


def normalize_os(operating_system: Optional[str]) -> str:
    value = (operating_system or "").strip().lower()
    return value or "unknown"


def classify(kind: str) -> Severity:
    # order matters: "loginfailureburst" also contains "loginfailure"
    if "loginfailureburst" in kind:
        return Severity.CRITICAL
    if "loginfailure" in kind:
        return Severity.WARNING
    if "unauthorized" in kind:
        return Severity.CRITICAL
    return Severity.INFO


def normalize(payload: Mapping[str, Any], now: Optional[datetime] = None) -> Event:
    """
    Build an Event from a raw submission.
    Any client-supplied timestamp is discarded; the ingestion clock wins.
    """
    kind = normalize_kind(payload.get("kind"))

    return Event(
        source=(payload.get("source") or "").strip().lower(),
        kind=kind,
        path_or_message=payload.get("path_or_message") or "",
        timestamp=now or utcnow(),
        hostname=(payload.get("hostname") or "").strip(),
        operating_system=normalize_os(payload.get("operating_system")),
        severity=classify(kind).value,
        username=payload.get("username") or None,
        ip_address=(payload.get("ip_address") or "").strip() or None,
        windows_event_id=payload.get("windows_event_id"),
        log_name=payload.get("log_name") or None,
    )


def enrich(event: Event, lookup: Optional[GeoLookup]) -> Event:
    if not event.ip_address or lookup is None:
        return event

    try:
        geo = lookup(event.ip_address)
    except Exception:
        logger.warning("Geo enrichment failed for %s", event.ip_address, exc_info=True)
        return event

    if geo is not None:
        event.country = geo.country
        event.city = geo.city
    return event
