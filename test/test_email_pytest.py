#!/usr/bin/env python3
"""
Pytest-compatible email delivery tests against a fake SMTP server
"""

import asyncio
import smtplib
import time

import pytest

import email_utils
import schemas


class FakeSMTP:
    """Records what the client does instead of talking to a server"""

    instances = []
    fail_login = False

    def __init__(self, host, port):
        self.host = host
        self.port = port
        self.tls = False
        self.logged_in_as = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        pass

    def starttls(self, context=None):
        self.tls = True

    def login(self, user, password):
        if FakeSMTP.fail_login:
            raise smtplib.SMTPAuthenticationError(535, b"Username and Password not accepted")
        self.logged_in_as = user

    def send_message(self, message):
        self.messages.append(message)


@pytest.fixture
def smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_login = False
    monkeypatch.setattr(email_utils.smtplib, "SMTP", FakeSMTP)
    monkeypatch.setenv("MAIL_USERNAME", "reports@example.com")
    monkeypatch.setenv("MAIL_PASSWORD", "app-password")
    monkeypatch.setenv("MAIL_SERVER", "smtp.example.com")
    monkeypatch.setenv("MAIL_PORT", "587")
    monkeypatch.setenv("MAIL_FROM_NAME", "Analytics Reports")
    return FakeSMTP


@pytest.mark.asyncio
async def test_email_sending(smtp):
    """Test a report email goes out over TLS with its attachment"""
    attachment = schemas.ReportAttachment(
        filename="Weekly.csv",
        content="Chart: total\nvalue,change\n30,100.0\n\n",
        content_type="text/csv",
    )

    result = await email_utils.send_email_async(
        recipient="ops@example.com",
        subject="Scheduled Report: Weekly",
        body="<h2>Weekly</h2>",
        attachment=attachment,
    )

    assert result is True
    server = smtp.instances[0]
    assert (server.host, server.port) == ("smtp.example.com", 587)
    assert server.tls is True
    assert server.logged_in_as == "reports@example.com"

    message = server.messages[0]
    assert message["To"] == "ops@example.com"
    assert message["From"] == "Analytics Reports <reports@example.com>"
    assert message["Subject"] == "Scheduled Report: Weekly"
    parts = message.get_payload()
    assert parts[1].get_filename() == "Weekly.csv"
    assert parts[1].get_content_type() == "text/csv"
    assert b"value,change" in parts[1].get_payload(decode=True)


@pytest.mark.asyncio
async def test_no_tls_outside_submission_port(smtp, monkeypatch):
    """Test STARTTLS is only negotiated on port 587"""
    monkeypatch.setenv("MAIL_PORT", "2525")

    assert await email_utils.send_email_async("ops@example.com", "Hi", "<p>Hi</p>") is True
    assert smtp.instances[0].tls is False


@pytest.mark.asyncio
async def test_email_config_incomplete(smtp, monkeypatch):
    """Test missing credentials fail without connecting"""
    monkeypatch.delenv("MAIL_PASSWORD")

    assert await email_utils.send_email_async("ops@example.com", "Hi", "<p>Hi</p>") is False
    assert smtp.instances == []


@pytest.mark.asyncio
async def test_authentication_error_returns_false(smtp):
    """Test a rejected login is reported as a failed send"""
    smtp.fail_login = True

    assert await email_utils.send_email_async("ops@example.com", "Hi", "<p>Hi</p>") is False
    assert smtp.instances[0].messages == []


@pytest.mark.asyncio
async def test_slow_server_does_not_block_event_loop(smtp, monkeypatch):
    """Test the SMTP exchange runs outside the event loop"""

    class SlowSMTP(FakeSMTP):
        def __init__(self, host, port):
            time.sleep(0.5)
            super().__init__(host, port)

    monkeypatch.setattr(email_utils.smtplib, "SMTP", SlowSMTP)
    ticks = []

    async def ticker():
        while True:
            ticks.append(time.monotonic())
            await asyncio.sleep(0.02)

    ticking = asyncio.create_task(ticker())
    try:
        result = await email_utils.send_email_async("ops@example.com", "Hi", "<p>Hi</p>")
    finally:
        ticking.cancel()

    assert result is True
    gaps = [later - earlier for earlier, later in zip(ticks, ticks[1:])]
    assert len(ticks) > 10
    assert max(gaps) < 0.25


def test_blocking_send_for_sync_callers(smtp):
    """Test the synchronous entry point delivers on its own"""
    assert email_utils.send_email("ops@example.com", "Hi", "<p>Hi</p>") is True
    assert smtp.instances[0].messages[0]["To"] == "ops@example.com"
