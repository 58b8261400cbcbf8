# tests/conftest.py
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shieldlab.db import Base
from shieldlab import models  # noqa: F401
from shieldlab.alerts import AlertComposer
from shieldlab.models import UserConfiguration


T0 = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


class RecordingEmail:
    channel = "Email"

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def is_configured(self, contacts):
        return contacts.has_email

    def deliver(self, contacts, text):
        self.sent.append((contacts.email, text))
        if self.fail:
            raise RuntimeError("smtp down")


class RecordingSms:
    channel = "Sms"

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def is_configured(self, contacts):
        return contacts.has_phone

    def deliver(self, contacts, text):
        self.sent.append((contacts.phone_number, text))
        if self.fail:
            raise RuntimeError("twilio down")


class RecordingTelegram:
    channel = "Telegram"

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def is_configured(self, contacts):
        return contacts.has_telegram

    def deliver(self, contacts, text):
        self.sent.append((contacts.telegram_bot_token, contacts.telegram_chat_id, text))
        if self.fail:
            raise RuntimeError("telegram down")


class Clock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def email():
    return RecordingEmail()


@pytest.fixture
def sms():
    return RecordingSms()


@pytest.fixture
def telegram():
    return RecordingTelegram()


@pytest.fixture
def composer(db, email, sms, telegram, clock):
    return AlertComposer(db, notifiers=[email, sms, telegram], clock=clock)


def save_config(db, **overrides):
    values = dict(
        max_failed_logins=15,
        max_file_deletes=20,
        max_file_creates=75,
        max_file_modifies=100,
        phone_number="",
        email="",
        telegram_bot_token="",
        telegram_chat_id="",
        created_at=T0,
        updated_at=T0,
    )
    values.update(overrides)
    cfg = UserConfiguration(**values)
    db.add(cfg)
    db.commit()
    return cfg
