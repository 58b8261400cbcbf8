# tests/test_baseline.py
import math
from datetime import timedelta

import pytest
from sqlalchemy import select

from shieldlab import config
from shieldlab.baseline import smooth, update_baselines, update_std
from shieldlab.models import Event, FileActivityBaseline

from conftest import T0


def add_events(db, kind, count, at, hostname="H1"):
    db.add_all([
        Event(source="agent", kind=kind, path_or_message=f"f{i}", hostname=hostname,
              operating_system="windows", severity="Info", timestamp=at)
        for i in range(count)
    ])
    db.commit()


def get_baseline(db, hostname="H1"):
    return db.execute(
        select(FileActivityBaseline).where(FileActivityBaseline.hostname == hostname)
    ).scalars().first()


def test_smooth_adopts_first_sample():
    assert smooth(0, 4.2) == 4.2
    assert smooth(1.0, 2.0) == pytest.approx(0.3 * 2.0 + 0.7 * 1.0)


def test_update_std_two_term_average():
    assert update_std(0.0, 1.0, 1.0) == 0.0
    assert update_std(2.0, 3.0, 1.0) == pytest.approx(math.sqrt((4 + 4) / 2))


def test_first_pass_creates_baseline_from_observed_rate(db):
    # window is 6h minus the last 5 min = 355 minutes
    add_events(db, "filecreate", 71, T0 - timedelta(hours=3))

    update_baselines(db, now=T0)
    baseline = get_baseline(db)

    assert baseline.create_avg == pytest.approx(71 / 355)
    assert baseline.create_std == pytest.approx(0.0)
    assert baseline.modify_avg == 0.0
    assert baseline.first_seen == T0
    assert baseline.last_updated == T0
    assert baseline.detection_enabled is False


def test_following_passes_are_smoothed(db):
    add_events(db, "filecreate", 71, T0 - timedelta(hours=3))
    update_baselines(db, now=T0)

    add_events(db, "filecreate", 142, T0 - timedelta(hours=2))
    later = T0 + timedelta(minutes=5)
    update_baselines(db, now=later)

    first = 71 / 355
    second = 213 / 355
    expected_avg = 0.3 * second + 0.7 * first
    baseline = get_baseline(db)
    assert baseline.create_avg == pytest.approx(expected_avg)
    assert baseline.create_std == pytest.approx(math.sqrt((second - expected_avg) ** 2 / 2))
    assert baseline.last_updated == later
    assert baseline.first_seen == T0


def test_recent_events_are_not_learned(db):
    add_events(db, "filedelete", 500, T0 - timedelta(minutes=2))
    update_baselines(db, now=T0)
    assert get_baseline(db) is None


def test_one_row_per_host(db):
    add_events(db, "filemodify", 10, T0 - timedelta(hours=1), hostname="H1")
    add_events(db, "filerename", 10, T0 - timedelta(hours=1), hostname="H2")

    update_baselines(db, now=T0)
    update_baselines(db, now=T0 + timedelta(minutes=5))

    rows = db.execute(select(FileActivityBaseline)).scalars().all()
    assert sorted(r.hostname for r in rows) == ["H1", "H2"]
    assert get_baseline(db, "H2").rename_avg > 0


def test_detection_enabled_after_minimum_observation(db, monkeypatch):
    monkeypatch.setattr(config, "BASELINE_MIN_OBSERVATION_MINUTES", 60)
    add_events(db, "filecreate", 30, T0 - timedelta(hours=3))

    update_baselines(db, now=T0)
    update_baselines(db, now=T0 + timedelta(minutes=30))
    assert get_baseline(db).detection_enabled is False

    update_baselines(db, now=T0 + timedelta(minutes=61))
    assert get_baseline(db).detection_enabled is True
