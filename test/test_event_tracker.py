from datetime import datetime

import pytest

import event_tracker
import models
import utils
from errors import ValidationError

NOW = datetime(2026, 10, 19, 10, 0, 0)


def _event(**overrides):
    event = {
        "website_id": "site-a",
        "session_id": "s1",
        "visitor_id": "v1",
        "event_type": "pageview",
        "event_category": "page",
        "event_action": "view",
        "path": "/pricing",
    }
    event.update(overrides)
    return event


def test_track_event_assigns_id_and_server_timestamp(db):
    stored = event_tracker.track_event(
        db,
        _event(timestamp="2001-01-01T00:00:00", user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile Safari/604.1"),
        now=NOW,
    )

    assert stored.id.startswith("evt-")
    assert stored.timestamp == NOW
    assert stored.device.type == "mobile"
    assert stored.device.os == "iOS"

    row = db.query(models.Event).filter(models.Event.id == stored.id).one()
    assert row.partition_day == NOW.date()


def test_track_event_ids_are_unique(db):
    first = event_tracker.track_event(db, _event(), now=NOW)
    second = event_tracker.track_event(db, _event(), now=NOW)
    assert first.id != second.id


def test_track_event_missing_fields(db):
    with pytest.raises(ValidationError) as exc:
        event_tracker.track_event(db, _event(session_id=None, event_action=""), now=NOW)
    assert set(exc.value.missing_fields) == {"session_id", "event_action"}
    assert db.query(models.Event).count() == 0


def test_track_event_accepts_free_form_type_and_category(db):
    stored = event_tracker.track_event(db, _event(event_type="video_scrub", event_category="media"), now=NOW)
    assert stored.event_category == "media"


def test_batch_with_missing_website_ids(db):
    events = [_event(session_id=f"s{i}") for i in range(10)]
    for i in (2, 5, 8):
        del events[i]["website_id"]

    result = event_tracker.track_batch(db, "site-a", events, now=NOW)

    assert result == {"saved": 7, "errors": 3}
    assert db.query(models.Event).count() == 7


def test_batch_rejects_events_for_another_website(db):
    events = [_event(), _event(website_id="site-b"), "not an event", _event(event_value="lots")]
    result = event_tracker.track_batch(db, "site-a", events, now=NOW)
    assert result == {"saved": 1, "errors": 3}


def test_location_is_kept_when_supplied(db):
    stored = event_tracker.track_event(
        db, _event(ip="8.8.8.8", location={"country": "France", "city": "Paris"}), now=NOW
    )
    assert stored.location.country == "France"


def test_location_lookup_skipped_for_private_ip(db, monkeypatch):
    monkeypatch.setenv("GEOIP_DB_PATH", "/nonexistent.mmdb")
    stored = event_tracker.track_event(db, _event(ip="192.168.1.20"), now=NOW)
    assert stored.location is None


@pytest.mark.parametrize("user_agent,expected", [
    (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1",
        {"type": "mobile", "os": "iOS", "browser": "Safari"},
    ),
    (
        "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1",
        {"type": "tablet", "os": "iOS", "browser": "Safari"},
    ),
    (
        "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36",
        {"type": "mobile", "os": "Android", "browser": "Chrome"},
    ),
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
        {"type": "desktop", "os": "Windows", "browser": "Edge"},
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:121.0) Gecko/20100101 Firefox/121.0",
        {"type": "desktop", "os": "macOS", "browser": "Firefox"},
    ),
    (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 OPR/106.0.0.0",
        {"type": "desktop", "os": "Linux", "browser": "Opera"},
    ),
    (None, {"type": "desktop", "os": "Unknown", "browser": "Unknown"}),
])
def test_classify_user_agent(user_agent, expected):
    assert utils.classify_user_agent(user_agent) == expected


@pytest.mark.parametrize("referrer,expected", [
    (None, "direct"),
    ("", "direct"),
    ("https://www.google.com/search?q=site", "Google"),
    ("https://m.facebook.com/", "Facebook"),
    ("https://blog.example.org/post", "blog.example.org"),
    ("not a url", "unknown"),
])
def test_source_from_referrer(referrer, expected):
    assert utils.get_source_from_referrer(referrer) == expected
