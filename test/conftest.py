"""
Shared fixtures: a throwaway SQLite database, event factories and a fake
delivery sender.
"""

import os
import tempfile
import uuid
from datetime import datetime

import pytest

# Must be set before database.py is imported
_db_dir = tempfile.mkdtemp(prefix="analytics-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'analytics.db')}"

from database import Base, SessionLocal, engine
import event_store
import models


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def build_event(**overrides) -> models.Event:
    values = {
        "id": f"evt-{uuid.uuid4().hex}",
        "website_id": "site-a",
        "session_id": "s1",
        "visitor_id": "v1",
        "event_type": "pageview",
        "event_category": "page",
        "event_action": "view",
        "path": "/",
        "device": {"type": "desktop", "os": "Windows", "browser": "Chrome"},
        "event_metadata": {},
        "timestamp": datetime(2026, 10, 18, 10, 0, 0),
    }
    values.update(overrides)
    return models.Event(**values)


@pytest.fixture
def add_event(db):
    """Append an event with an explicit timestamp straight to the store"""
    def _add(**overrides):
        return event_store.append(db, build_event(**overrides))
    return _add


class RecordingSender:
    """Stands in for the email transport"""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def __call__(self, recipient, subject, body, attachment=None):
        if recipient in self.fail_for:
            return False
        self.sent.append({
            "recipient": recipient,
            "subject": subject,
            "body": body,
            "attachment": attachment,
        })
        return True


@pytest.fixture
def sender():
    return RecordingSender()
