import ipaddress
import json
import logging
from dataclasses import dataclass
from typing import Optional
from urllib import request as urlrequest
from urllib.error import URLError, HTTPError

from . import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoLocation:
    country: Optional[str]
    city: Optional[str]


def _is_public(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return addr.is_global


def lookup(ip: str, timeout: Optional[float] = 5) -> Optional[GeoLocation]:
    """
    Best-effort coarse geolocation (ip-api.com JSON format).
    Returns None on any failure; never raises.
    """
    if not config.GEOIP_ENABLED or not ip or not _is_public(ip):
        return None

    url = config.GEOIP_URL.format(ip=ip)
    try:
        req = urlrequest.Request(url, headers={"Accept": "application/json"})
        with urlrequest.urlopen(req, timeout=timeout) as resp:
            payload = json.loads(resp.read().decode("utf-8", errors="replace"))
    except HTTPError as e:
        logger.info("Geo lookup for %s failed: HTTP %s", ip, e.code)
        return None
    except URLError as e:
        logger.info("Geo lookup for %s failed: %s", ip, e.reason)
        return None
    except (ValueError, OSError) as e:
        logger.info("Geo lookup for %s failed: %s", ip, e)
        return None

    if not isinstance(payload, dict) or payload.get("status") != "success":
        logger.debug("Geo lookup for %s returned no result: %r", ip, payload)
        return None

    return GeoLocation(country=payload.get("country"), city=payload.get("city"))
