from datetime import timedelta

import database
import models
import utils


def test_sqlite_shares_connections_across_threads():
    options = database.engine_options("sqlite:///./analytics.db")

    assert options["connect_args"] == {"check_same_thread": False}
    assert "pool_size" not in options


def test_pool_sizing_comes_from_environment(monkeypatch):
    monkeypatch.setenv("DB_POOL_SIZE", "5")
    monkeypatch.setenv("DB_MAX_OVERFLOW", "2")

    options = database.engine_options("postgresql://analytics@localhost/analytics")

    assert options["pool_size"] == 5
    assert options["max_overflow"] == 2
    assert options["pool_recycle"] == 3600
    assert options["pool_pre_ping"] is True


def test_get_db_closes_the_session():
    sessions = database.get_db()
    db = next(sessions)
    assert db.query(models.CustomReport).count() == 0
    sessions.close()


def test_timestamps_default_to_naive_utc(db):
    before = utils.get_utc_now()
    db.add(models.CustomReport(id="report-1", website_id="site-a", name="Defaults", date_range={"preset": "7d"}))
    db.add(models.ScheduledReport(id="scheduled-1", website_id="site-a", report_id="report-1",
                                   schedule={"frequency": "daily", "time": "09:00"}))
    db.commit()

    report = db.query(models.CustomReport).one()
    scheduled = db.query(models.ScheduledReport).one()

    for stamp in (report.created_at, report.updated_at, scheduled.created_at, scheduled.updated_at):
        assert stamp.tzinfo is None
        assert before - timedelta(seconds=1) <= stamp <= utils.get_utc_now() + timedelta(seconds=1)
