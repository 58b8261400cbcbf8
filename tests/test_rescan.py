# tests/test_rescan.py
import threading
from datetime import timedelta

from sqlalchemy import create_engine, select, func
from sqlalchemy.orm import sessionmaker

from shieldlab.db import Base
from shieldlab.models import Anomaly, Event, utcnow
from shieldlab.rescan import scan_failed_logins
from shieldlab.workers import BackgroundServices, PeriodicTask

from conftest import T0


def add_failed_logins(db, count, at, hostname="H1", kind="failedlogin"):
    db.add_all([
        Event(source="logparser", kind=kind, path_or_message="4625", hostname=hostname,
              operating_system="windows", severity="Info", timestamp=at + timedelta(seconds=i))
        for i in range(count)
    ])
    db.commit()


def burst_count(db):
    return db.execute(select(func.count(Anomaly.id)).where(Anomaly.type == "FailedLoginBurst")).scalar_one()


def test_rescan_flags_hosts_at_threshold(db):
    add_failed_logins(db, 5, T0 - timedelta(minutes=2), hostname="H1")
    add_failed_logins(db, 4, T0 - timedelta(minutes=2), hostname="H2")

    raised = scan_failed_logins(db, now=T0)

    assert [a.hostname for a in raised] == ["H1"]
    assert "5 failed logins" in raised[0].description


def test_rescan_ignores_events_older_than_five_minutes(db):
    add_failed_logins(db, 10, T0 - timedelta(minutes=6))
    assert scan_failed_logins(db, now=T0) == []


def test_rescan_does_not_deduplicate(db):
    add_failed_logins(db, 5, T0 - timedelta(minutes=1))
    scan_failed_logins(db, now=T0)
    scan_failed_logins(db, now=T0 + timedelta(seconds=10))
    assert burst_count(db) == 2


def test_periodic_task_runs_immediately_and_stops():
    ran = threading.Event()
    task = PeriodicTask("heartbeat", interval=3600, func=ran.set)

    task.start()
    assert ran.wait(2)
    task.stop(timeout=2)
    assert task.running is False


def test_periodic_task_survives_failing_passes():
    calls = []
    done = threading.Event()

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        if len(calls) >= 3:
            done.set()

    task = PeriodicTask("flaky", interval=0.01, func=flaky)
    task.start()
    try:
        assert done.wait(5)
    finally:
        task.stop(timeout=2)
    assert len(calls) >= 3


def test_run_once_reports_failure():
    def boom():
        raise RuntimeError("boom")

    assert PeriodicTask("boom", 1, boom).run_once() is False


def test_background_services_rescan_on_start(tmp_path, monkeypatch):
    engine = create_engine(f"sqlite:///{tmp_path / 'bg.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False)

    db = factory()
    add_failed_logins(db, 6, utcnow() - timedelta(minutes=1), hostname="H9")
    db.close()

    done = threading.Event()
    original = BackgroundServices.rescan_pass

    def rescan_and_signal(self, db):
        original(self, db)
        done.set()

    monkeypatch.setattr(BackgroundServices, "rescan_pass", rescan_and_signal)

    services = BackgroundServices(factory, rescan_interval=3600, baseline_interval=3600)
    services.start()
    try:
        assert done.wait(5)
    finally:
        services.stop(timeout=5)

    assert all(not task.running for task in services.tasks)
    db = factory()
    try:
        assert burst_count(db) == 1
    finally:
        db.close()
    engine.dispose()
