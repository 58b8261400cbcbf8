import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, desc
from sqlalchemy.orm import Session

from .models import UserConfiguration


# =========================
# PROCESS SETTINGS
# =========================

def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
ALERT_EMAIL_FROM = os.getenv("ALERT_EMAIL_FROM", "")

TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "")
TWILIO_FROM_NUMBER = os.getenv("TWILIO_FROM_NUMBER", "")

GEOIP_URL = os.getenv("GEOIP_URL", "http://ip-api.com/json/{ip}")
GEOIP_ENABLED = _env_bool("GEOIP_ENABLED", True)

RESCAN_INTERVAL_SECONDS = int(os.getenv("RESCAN_INTERVAL_SECONDS", "300"))
BASELINE_INTERVAL_SECONDS = int(os.getenv("BASELINE_INTERVAL_SECONDS", "300"))
BACKGROUND_TASKS_ENABLED = _env_bool("BACKGROUND_TASKS_ENABLED", True)

BASELINE_MIN_OBSERVATION_MINUTES = int(os.getenv("BASELINE_MIN_OBSERVATION_MINUTES", "60"))
INCIDENT_COOLDOWN_MINUTES = int(os.getenv("INCIDENT_COOLDOWN_MINUTES", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# =========================
# USER CONFIGURATION
# =========================

DEFAULT_MAX_FAILED_LOGINS = 15
DEFAULT_MAX_FILE_DELETES = 20
DEFAULT_MAX_FILE_CREATES = 75
DEFAULT_MAX_FILE_MODIFIES = 100

PHONE_RE = re.compile(r"^\+\d{8,15}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ConfigurationError(ValueError):
    """Raised when a configuration write carries invalid values."""


@dataclass(frozen=True)
class Thresholds:
    max_failed_logins: int = DEFAULT_MAX_FAILED_LOGINS
    max_file_deletes: int = DEFAULT_MAX_FILE_DELETES
    max_file_creates: int = DEFAULT_MAX_FILE_CREATES
    max_file_modifies: int = DEFAULT_MAX_FILE_MODIFIES


@dataclass(frozen=True)
class Contacts:
    email: Optional[str] = None
    phone_number: Optional[str] = None
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    @property
    def has_email(self) -> bool:
        return bool(self.email and self.email.strip())

    @property
    def has_phone(self) -> bool:
        return bool(self.phone_number and self.phone_number.strip())

    @property
    def has_telegram(self) -> bool:
        return bool(
            self.telegram_bot_token and self.telegram_bot_token.strip()
            and self.telegram_chat_id and self.telegram_chat_id.strip()
        )


def get_configuration(db: Session) -> Optional[UserConfiguration]:
    """Most recently applicable configuration row, or None."""
    stmt = (
        select(UserConfiguration)
        .order_by(desc(UserConfiguration.updated_at), desc(UserConfiguration.id))
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def get_thresholds(db: Session) -> Thresholds:
    cfg = get_configuration(db)
    if cfg is None:
        return Thresholds()

    return Thresholds(
        max_failed_logins=_or_default(cfg.max_failed_logins, DEFAULT_MAX_FAILED_LOGINS),
        max_file_deletes=_or_default(cfg.max_file_deletes, DEFAULT_MAX_FILE_DELETES),
        max_file_creates=_or_default(cfg.max_file_creates, DEFAULT_MAX_FILE_CREATES),
        max_file_modifies=_or_default(cfg.max_file_modifies, DEFAULT_MAX_FILE_MODIFIES),
    )


def get_contacts(db: Session) -> Contacts:
    cfg = get_configuration(db)
    if cfg is None:
        return Contacts()

    return Contacts(
        email=cfg.email or None,
        phone_number=cfg.phone_number or None,
        telegram_bot_token=cfg.telegram_bot_token or None,
        telegram_chat_id=cfg.telegram_chat_id or None,
    )


def _or_default(value: Optional[int], default: int) -> int:
    return default if value is None else value


def validate_configuration(values: dict) -> None:
    for key in ("max_failed_logins", "max_file_deletes", "max_file_creates", "max_file_modifies"):
        if key in values and values[key] is not None and values[key] < 0:
            raise ConfigurationError("Thresholds must be non-negative.")

    email = (values.get("email") or "").strip()
    if email and not EMAIL_RE.match(email):
        raise ConfigurationError("Invalid email address.")

    phone = (values.get("phone_number") or "").strip()
    if phone and not PHONE_RE.match(phone):
        raise ConfigurationError("Phone must be E.164 (e.g., +15551234567).")


def ensure_configuration(db: Session) -> UserConfiguration:
    """Return the current row, persisting one filled with defaults if absent."""
    cfg = get_configuration(db)
    if cfg is not None:
        return cfg

    now = datetime.now(timezone.utc)
    cfg = UserConfiguration(
        max_failed_logins=DEFAULT_MAX_FAILED_LOGINS,
        max_file_deletes=DEFAULT_MAX_FILE_DELETES,
        max_file_creates=DEFAULT_MAX_FILE_CREATES,
        max_file_modifies=DEFAULT_MAX_FILE_MODIFIES,
        phone_number="",
        email="",
        telegram_bot_token="",
        telegram_chat_id="",
        created_at=now,
        updated_at=now,
    )
    db.add(cfg)
    db.commit()
    db.refresh(cfg)
    return cfg


def upsert_configuration(db: Session, values: dict) -> UserConfiguration:
    """
    Apply a partial update to the configuration singleton.
    Keys that are absent (or None) keep their current value.
    """
    validate_configuration(values)

    cfg = ensure_configuration(db)
    for key, value in values.items():
        if value is None or not hasattr(cfg, key):
            continue
        if isinstance(value, str):
            value = value.strip()
        setattr(cfg, key, value)

    cfg.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(cfg)
    return cfg
