# tests/test_incidents.py
from datetime import timedelta

from sqlalchemy import select

from shieldlab import config
from shieldlab.incidents import detect_file_deviations, evaluate_host, zscore
from shieldlab.models import Alert, Anomaly, Event, FileActivityBaseline, IncidentState

from conftest import T0


def make_baseline(db, hostname="H1", enabled=True, **values):
    fields = dict(
        create_avg=0.1, modify_avg=0.1, delete_avg=0.1, rename_avg=0.1,
        create_std=0.1, modify_std=0.1, delete_std=0.1, rename_std=0.1,
    )
    fields.update(values)
    baseline = FileActivityBaseline(
        hostname=hostname,
        first_seen=T0 - timedelta(days=1),
        last_updated=T0,
        detection_enabled=enabled,
        **fields,
    )
    db.add(baseline)
    db.commit()
    return baseline


def add_events(db, kind, count, at, hostname="H1"):
    db.add_all([
        Event(source="agent", kind=kind, path_or_message=f"f{i}", hostname=hostname,
              operating_system="windows", severity="Info", timestamp=at)
        for i in range(count)
    ])
    db.commit()


def anomalies(db, anomaly_type):
    return db.execute(select(Anomaly).where(Anomaly.type == anomaly_type).order_by(Anomaly.id)).scalars().all()


def test_zscore_ignores_flat_baselines():
    assert zscore(10.0, 0.0, 0.0) == 0.0
    assert zscore(3.0, 1.0, 0.5) == 4.0


def test_ransomware_correlation_needs_modify_and_rename():
    baseline = FileActivityBaseline(
        hostname="H1",
        create_avg=0.0, modify_avg=1.0, delete_avg=0.0, rename_avg=1.0,
        create_std=0.0, modify_std=1.0, delete_std=0.0, rename_std=1.0,
    )
    firing = evaluate_host(baseline, {"filecreate": 0.0, "filemodify": 4.5, "filedelete": 0.0, "filerename": 4.5})
    assert "FileRansomwareBehavior" in firing
    assert "FileModifyAnomaly" not in firing

    firing = evaluate_host(baseline, {"filecreate": 0.0, "filemodify": 9.0, "filedelete": 0.0, "filerename": 1.0})
    assert "FileRansomwareBehavior" not in firing
    assert "FileModifyAnomaly" in firing


def test_incident_starts_once_then_continues(db, composer):
    make_baseline(db)
    add_events(db, "filecreate", 20, T0 - timedelta(minutes=1))

    assert detect_file_deviations(db, composer, now=T0) == ["FileCreateAnomaly"]
    assert detect_file_deviations(db, composer, now=T0 + timedelta(seconds=30)) == []

    started = anomalies(db, "FileCreateAnomaly")
    assert len(started) == 1
    assert started[0].description == "Incident STARTED. Initial count: 20."

    alert = db.execute(select(Alert).where(Alert.type == "FileCreateAnomaly")).scalar_one()
    assert alert.phase == "START"

    incident = db.execute(select(IncidentState)).scalar_one()
    assert incident.is_active is True
    assert incident.last_event_time == T0 + timedelta(seconds=30)


def test_incident_ends_and_cools_down(db, composer, monkeypatch):
    monkeypatch.setattr(config, "INCIDENT_COOLDOWN_MINUTES", 10)
    make_baseline(db)
    add_events(db, "filecreate", 20, T0 - timedelta(minutes=1))
    detect_file_deviations(db, composer, now=T0)

    # activity aged out of the 5 minute window
    ended_at = T0 + timedelta(minutes=10)
    detect_file_deviations(db, composer, now=ended_at)

    rows = anomalies(db, "FileCreateAnomaly")
    assert len(rows) == 2
    assert rows[1].description.startswith("Incident ENDED. Total events: 20.")
    phases = db.execute(select(Alert.phase).where(Alert.type == "FileCreateAnomaly").order_by(Alert.id)).scalars().all()
    assert phases == ["START", "END"]

    incident = db.execute(select(IncidentState)).scalar_one()
    assert incident.is_active is False
    assert incident.cooldown_until == ended_at + timedelta(minutes=10)

    # burst during cooldown is suppressed
    add_events(db, "filecreate", 20, ended_at + timedelta(minutes=1))
    assert detect_file_deviations(db, composer, now=ended_at + timedelta(minutes=2)) == []

    # and allowed again afterwards
    add_events(db, "filecreate", 20, ended_at + timedelta(minutes=11))
    assert detect_file_deviations(db, composer, now=ended_at + timedelta(minutes=12)) == ["FileCreateAnomaly"]


def test_hosts_without_enabled_detection_are_skipped(db, composer):
    make_baseline(db, enabled=False)
    add_events(db, "filedelete", 50, T0 - timedelta(minutes=1))

    assert detect_file_deviations(db, composer, now=T0) == []
    assert db.execute(select(IncidentState)).scalars().all() == []
