from sqlalchemy import DateTime, Integer, String, Text, Boolean, Float, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator
from datetime import datetime, timezone

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Stores naive UTC, hands back aware UTC.
    SQLite has no timezone support, so window arithmetic stays consistent
    only if every value is converted before it hits the database.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    source: Mapped[str] = mapped_column(String(32), index=True)  # agent / logparser
    kind: Mapped[str] = mapped_column(String(64), index=True)
    path_or_message: Mapped[str] = mapped_column(Text, default="")
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    hostname: Mapped[str] = mapped_column(String(128), index=True)
    operating_system: Mapped[str] = mapped_column(String(64), default="unknown")
    severity: Mapped[str] = mapped_column(String(16), index=True)  # Info / Warning / Critical
    username: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    windows_event_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    log_name: Mapped[str | None] = mapped_column(String(64), nullable=True)


class Anomaly(Base):
    __tablename__ = "anomalies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    type: Mapped[str] = mapped_column(String(64), index=True)
    description: Mapped[str] = mapped_column(Text)
    hostname: Mapped[str] = mapped_column(String(128), index=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)


class Alert(Base):
    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    type: Mapped[str] = mapped_column(String(64), index=True)
    phase: Mapped[str] = mapped_column(String(16), default="")
    message: Mapped[str] = mapped_column(Text)
    channel: Mapped[str] = mapped_column(String(64), default="")
    hostname: Mapped[str] = mapped_column(String(128), index=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)


class IncidentState(Base):
    __tablename__ = "incident_states"
    __table_args__ = (UniqueConstraint("type", "hostname", name="ux_incident_type_host"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    type: Mapped[str] = mapped_column(String(64))
    hostname: Mapped[str] = mapped_column(String(128))
    start_time: Mapped[datetime] = mapped_column(UTCDateTime)
    last_event_time: Mapped[datetime] = mapped_column(UTCDateTime)
    count: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    cooldown_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class FileActivityBaseline(Base):
    __tablename__ = "file_activity_baselines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    hostname: Mapped[str] = mapped_column(String(128), unique=True, index=True)

    # events per minute
    create_avg: Mapped[float] = mapped_column(Float, default=0.0)
    modify_avg: Mapped[float] = mapped_column(Float, default=0.0)
    delete_avg: Mapped[float] = mapped_column(Float, default=0.0)
    rename_avg: Mapped[float] = mapped_column(Float, default=0.0)

    create_std: Mapped[float] = mapped_column(Float, default=0.0)
    modify_std: Mapped[float] = mapped_column(Float, default=0.0)
    delete_std: Mapped[float] = mapped_column(Float, default=0.0)
    rename_std: Mapped[float] = mapped_column(Float, default=0.0)

    first_seen: Mapped[datetime] = mapped_column(UTCDateTime)
    detection_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    last_updated: Mapped[datetime] = mapped_column(UTCDateTime)


class HostRiskState(Base):
    __tablename__ = "host_risk_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    hostname: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    risk_score: Mapped[float] = mapped_column(Float, default=0.0)
    last_updated: Mapped[datetime] = mapped_column(UTCDateTime)


class UserConfiguration(Base):
    __tablename__ = "user_configurations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    max_failed_logins: Mapped[int] = mapped_column(Integer, default=15)
    max_file_deletes: Mapped[int] = mapped_column(Integer, default=20)
    max_file_creates: Mapped[int] = mapped_column(Integer, default=75)
    max_file_modifies: Mapped[int] = mapped_column(Integer, default=100)
    phone_number: Mapped[str] = mapped_column(String(32), default="")  # E.164: +15551234567
    email: Mapped[str] = mapped_column(String(256), default="")
    telegram_bot_token: Mapped[str | None] = mapped_column(String(256), nullable=True)
    telegram_chat_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
