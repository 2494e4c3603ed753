"""Scheduled report delivery.

next_send is recomputed whenever a definition is saved and whenever it
fires, and it is the only thing consulted to decide whether an item is
due. An item whose delivery fails keeps its next_send, so it stays due
and is retried on the next tick.
"""
import asyncio
import calendar
import logging
import re
import threading
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

import email_utils
import models
import report_builder
import schemas
import utils
from errors import DeliveryError, PartitionIOError, ScheduleComputationError, StoreUnavailableError

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

Sender = Callable[[str, str, str, Optional[schemas.ReportAttachment]], Awaitable[bool]]

_website_guards = defaultdict(threading.Lock)
_guards_lock = threading.Lock()


# Recurrence

def _parse_time(value: str):
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise ScheduleComputationError(f"Invalid schedule time '{value}', expected HH:MM")
    return int(match.group(1)), int(match.group(2))


def _resolve_timezone(name: Optional[str]):
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleComputationError(f"Unknown timezone '{name}'") from e


def _clamped(year: int, month: int, day_of_month: int, hour: int, minute: int) -> datetime:
    # Short months fire on their last day
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(day_of_month, last_day), hour, minute)


def compute_next_send(schedule: schemas.Schedule, now: Optional[datetime] = None) -> datetime:
    """Next fire time as naive UTC, strictly after now"""
    now = now or utils.get_utc_now()
    hour, minute = _parse_time(schedule.time)
    tz = _resolve_timezone(schedule.timezone)

    # Work in the schedule's local wall-clock time
    local_now = now
    if tz is not None:
        local_now = now.replace(tzinfo=timezone.utc).astimezone(tz).replace(tzinfo=None)

    next_send = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    frequency = schedule.frequency

    if frequency == "daily":
        if next_send <= local_now:
            next_send += timedelta(days=1)

    elif frequency == "weekly":
        target_day = schedule.day_of_week if schedule.day_of_week is not None else 0
        if not 0 <= target_day <= 6:
            raise ScheduleComputationError(f"day_of_week must be 0-6, got {target_day}")
        # 0 = Sunday
        current_day = (next_send.weekday() + 1) % 7
        days_until_target = (target_day - current_day + 7) % 7
        if days_until_target == 0 and next_send <= local_now:
            next_send += timedelta(days=7)
        else:
            next_send += timedelta(days=days_until_target)

    elif frequency == "monthly":
        day_of_month = schedule.day_of_month if schedule.day_of_month is not None else 1
        if not 1 <= day_of_month <= 31:
            raise ScheduleComputationError(f"day_of_month must be 1-31, got {day_of_month}")
        next_send = _clamped(next_send.year, next_send.month, day_of_month, hour, minute)
        if next_send <= local_now:
            year, month = (next_send.year + 1, 1) if next_send.month == 12 else (next_send.year, next_send.month + 1)
            next_send = _clamped(year, month, day_of_month, hour, minute)

    elif frequency == "custom":
        interval = schedule.interval_days
        if not interval or interval < 1:
            raise ScheduleComputationError("custom schedules need interval_days >= 1")
        if next_send <= local_now:
            periods = (local_now - next_send) // timedelta(days=interval) + 1
            next_send += timedelta(days=interval * periods)

    else:
        raise ScheduleComputationError(f"Unknown frequency '{frequency}'")

    if tz is not None:
        next_send = next_send.replace(tzinfo=tz).astimezone(timezone.utc).replace(tzinfo=None)
    return next_send


def _refresh_next_send(db_scheduled: models.ScheduledReport, now: datetime) -> None:
    try:
        db_scheduled.next_send = compute_next_send(schemas.Schedule(**db_scheduled.schedule), now)
    except ScheduleComputationError as e:
        logger.warning(f"⚠ Disabling scheduled report {db_scheduled.id}: {e}")
        db_scheduled.enabled = False
        db_scheduled.next_send = None


# Scheduled report store

def list_scheduled(db: Session, website_id: str) -> List[models.ScheduledReport]:
    return db.query(models.ScheduledReport).filter(
        models.ScheduledReport.website_id == website_id
    ).order_by(models.ScheduledReport.created_at).all()


def get_scheduled(db: Session, website_id: str, scheduled_id: str) -> Optional[models.ScheduledReport]:
    return db.query(models.ScheduledReport).filter(
        models.ScheduledReport.website_id == website_id,
        models.ScheduledReport.id == scheduled_id
    ).first()


def save_scheduled(
    db: Session,
    website_id: str,
    scheduled: schemas.ScheduledReportCreate,
    now: Optional[datetime] = None
) -> models.ScheduledReport:
    """Create or update a scheduled report and recompute its next send time"""
    now = now or utils.get_utc_now()
    scheduled_id = scheduled.id or f"scheduled-{uuid.uuid4().hex[:12]}"

    db_scheduled = get_scheduled(db, website_id, scheduled_id)
    if db_scheduled is None:
        db_scheduled = models.ScheduledReport(id=scheduled_id, website_id=website_id, created_at=now)
        db.add(db_scheduled)

    db_scheduled.report_id = scheduled.report_id
    db_scheduled.schedule = scheduled.schedule.model_dump(mode="json")
    db_scheduled.recipients = [str(r) for r in scheduled.recipients]
    db_scheduled.format = scheduled.format
    db_scheduled.enabled = scheduled.enabled
    db_scheduled.updated_at = now
    _refresh_next_send(db_scheduled, now)

    db.commit()
    db.refresh(db_scheduled)
    logger.info(f"Saved scheduled report {scheduled_id} for {website_id}, next send {db_scheduled.next_send}")
    return db_scheduled


def delete_scheduled(db: Session, website_id: str, scheduled_id: str) -> bool:
    db_scheduled = get_scheduled(db, website_id, scheduled_id)
    if db_scheduled is None:
        return False
    db.delete(db_scheduled)
    db.commit()
    return True


def to_schema(db_scheduled: models.ScheduledReport) -> schemas.ScheduledReportResponse:
    return schemas.ScheduledReportResponse.model_validate(db_scheduled)


def list_due(db: Session, website_id: str, now: Optional[datetime] = None) -> List[models.ScheduledReport]:
    now = now or utils.get_utc_now()
    return db.query(models.ScheduledReport).filter(
        models.ScheduledReport.website_id == website_id,
        models.ScheduledReport.enabled == True,
        models.ScheduledReport.next_send.isnot(None),
        models.ScheduledReport.next_send <= now
    ).order_by(models.ScheduledReport.next_send).all()


def websites_with_schedules(db: Session) -> List[str]:
    rows = db.query(models.ScheduledReport.website_id).filter(
        models.ScheduledReport.enabled == True
    ).distinct().all()
    return [r[0] for r in rows]


# Delivery

def _email_body(report: schemas.CustomReportResponse, format: str, now: datetime) -> str:
    _, start, end = report_builder.report_period(report, now)
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2>{report_builder.html_escape(report.name)}</h2>
        <p>Report generated on {now:%Y-%m-%d %H:%M} UTC</p>
        <p>Date Range: {start:%Y-%m-%d} - {end:%Y-%m-%d}</p>
        <p>See attached {format.upper()} file.</p>
    </div>
    """


def render_scheduled_report(
    db: Session,
    db_scheduled: models.ScheduledReport,
    now: datetime
) -> Tuple[str, str, schemas.ReportAttachment]:
    """Subject, body and attachment for one scheduled report"""
    db_report = report_builder.get_report(db, db_scheduled.website_id, db_scheduled.report_id)
    if db_report is None:
        raise DeliveryError(f"Report {db_scheduled.report_id} not found")

    try:
        report = report_builder.to_schema(db_report)
        data = report_builder.generate_report_data(db, report, now)
        attachment = report_builder.export_report(report, data, db_scheduled.format, now)
    except (ValueError, KeyError, PartitionIOError) as e:
        raise DeliveryError(f"Export of report {db_scheduled.report_id} failed: {e}") from e

    subject = f"Scheduled Report: {report.name}"
    return subject, _email_body(report, db_scheduled.format, now), attachment


async def send_scheduled_report(
    db: Session,
    db_scheduled: models.ScheduledReport,
    sender: Sender,
    now: datetime
) -> None:
    """Render the bound report and hand it to the sender for every recipient"""
    # Report building is synchronous database work
    subject, body, attachment = await asyncio.to_thread(render_scheduled_report, db, db_scheduled, now)

    failed = []
    for recipient in db_scheduled.recipients:
        try:
            delivered = await sender(recipient, subject, body, attachment)
        except Exception as e:
            logger.error(f"Sender raised for {recipient}: {e}")
            delivered = False
        if not delivered:
            failed.append(recipient)

    if failed:
        raise DeliveryError(f"Delivery failed for {', '.join(failed)}")


def _mark_sent(db: Session, db_scheduled: models.ScheduledReport, now: datetime) -> None:
    db_scheduled.last_sent = now
    db_scheduled.updated_at = now
    _refresh_next_send(db_scheduled, now)
    db.commit()


async def process_due(
    db: Session,
    website_id: str,
    sender: Optional[Sender] = None,
    now: Optional[datetime] = None
) -> dict:
    """Send every due scheduled report of a website"""
    sender = sender or email_utils.send_email_async
    now = now or utils.get_utc_now()

    with _guards_lock:
        guard = _website_guards[website_id]
    if not guard.acquire(blocking=False):
        logger.warning(f"Scheduled reports for {website_id} already being processed, skipping tick")
        return {"sent": 0, "errors": 0}

    sent = 0
    errors = 0
    try:
        for db_scheduled in await asyncio.to_thread(list_due, db, website_id, now):
            scheduled_id = db_scheduled.id
            try:
                await send_scheduled_report(db, db_scheduled, sender, now)
                await asyncio.to_thread(_mark_sent, db, db_scheduled, now)
            except StoreUnavailableError:
                raise
            except DeliveryError as e:
                logger.error(f"❌ Failed to send scheduled report {scheduled_id}: {e}")
                errors += 1
                continue
            except Exception:
                db.rollback()
                logger.exception(f"❌ Unexpected failure on scheduled report {scheduled_id}")
                errors += 1
                continue

            sent += 1
            logger.info(f"✅ Sent scheduled report {scheduled_id}, next send {db_scheduled.next_send}")
    finally:
        guard.release()

    return {"sent": sent, "errors": errors}
