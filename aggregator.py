"""Daily aggregation of raw events.

aggregate_day() reads one UTC day of events for a website and writes one
AggregatedDailyRecord. A recomputation replaces the stored record rather
than merging into it, so running it twice on the same input stores the
same JSON.
"""
import logging
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

import event_store
import models
import schemas
import utils
from errors import AggregationGapError, PartitionIOError, StoreUnavailableError

logger = logging.getLogger(__name__)

TOP_PAGES_LIMIT = 10
CONVERSION_EVENT_TYPES = ("conversion", "purchase")


def _revenue_of(event: models.Event) -> float:
    revenue = 0.0
    if event.event_value:
        revenue += event.event_value
    metadata_revenue = (event.event_metadata or {}).get("revenue")
    if metadata_revenue:
        try:
            revenue += float(metadata_revenue)
        except (TypeError, ValueError):
            pass
    return revenue


def compute_metrics(events: List[models.Event]) -> schemas.DailyMetrics:
    """Fold one window of events into daily metrics"""
    unique_visitors = set()
    sessions = {}
    pages = {}
    by_type = {}
    by_category = {}
    devices = {"desktop": 0, "mobile": 0, "tablet": 0}
    sources = {}
    countries = {}
    conversions = 0
    revenue = 0.0

    for event in events:
        unique_visitors.add(event.visitor_id)

        # Sessions
        session = sessions.get(event.session_id)
        if session is None:
            session = sessions[event.session_id] = {
                "start": event.timestamp,
                "end": event.timestamp,
                "page_events": 0,
            }
        session["start"] = min(session["start"], event.timestamp)
        session["end"] = max(session["end"], event.timestamp)
        if utils.is_page_event(event):
            session["page_events"] += 1

        # Page views
        if event.path:
            page = pages.setdefault(event.path, {"views": 0, "visitors": set()})
            page["views"] += 1
            page["visitors"].add(event.visitor_id)

        by_type[event.event_type] = by_type.get(event.event_type, 0) + 1
        by_category[event.event_category] = by_category.get(event.event_category, 0) + 1

        device_type = (event.device or {}).get("type")
        if device_type in devices:
            devices[device_type] += 1

        source = utils.get_source_from_referrer(event.referrer)
        sources[source] = sources.get(source, 0) + 1

        country = (event.location or {}).get("country")
        if country:
            countries[country] = countries.get(country, 0) + 1

        if event.event_type in CONVERSION_EVENT_TYPES:
            conversions += 1
            revenue += _revenue_of(event)

    total_sessions = len(sessions)
    durations = [(s["end"] - s["start"]).total_seconds() for s in sessions.values()]
    bounced = sum(1 for s in sessions.values() if s["page_events"] == 1)
    total_page_views = sum(p["views"] for p in pages.values())

    top_pages = sorted(
        (
            schemas.TopPage(path=path, views=p["views"], unique_views=len(p["visitors"]))
            for path, p in pages.items()
        ),
        key=lambda p: p.views,
        reverse=True
    )[:TOP_PAGES_LIMIT]

    return schemas.DailyMetrics(
        visitors=schemas.VisitorCounts(
            total=len(unique_visitors),
            unique=len(unique_visitors),
            # No cross-day visitor ledger: every visitor in the window is new
            new=len(unique_visitors),
            returning=0,
        ),
        sessions=schemas.SessionStats(
            total=total_sessions,
            average_duration=sum(durations) / total_sessions if total_sessions else 0,
            bounce_rate=bounced / total_sessions * 100 if total_sessions else 0,
        ),
        page_views=schemas.PageViewStats(
            total=total_page_views,
            average_per_session=total_page_views / total_sessions if total_sessions else 0,
            top_pages=top_pages,
        ),
        events=schemas.EventCounts(total=len(events), by_type=by_type, by_category=by_category),
        devices=schemas.DeviceCounts(**devices),
        traffic=schemas.TrafficCounts(sources=sources, countries=countries),
        conversions=schemas.ConversionStats(
            total=conversions,
            rate=conversions / total_sessions * 100 if total_sessions else 0,
            revenue=revenue if revenue > 0 else None,
        ),
    )


def aggregate_day(db: Session, website_id: str, day: date) -> schemas.AggregatedDailyRecord:
    """Aggregate one day of events and replace the stored record"""
    events = event_store.read(db, website_id, utils.get_start_of_day(day), utils.get_end_of_day(day))
    record = schemas.AggregatedDailyRecord(
        website_id=website_id,
        date=day,
        metrics=compute_metrics(events),
    )
    save_record(db, record)
    logger.info(f"Aggregated {len(events)} events for {website_id} on {day}")
    return record


def batch_aggregate(db: Session, website_id: str, start: date, end: date) -> dict:
    """Aggregate every day in [start, end]; one day's failure does not stop the rest"""
    aggregated = 0
    errors = 0

    for day in utils.iter_days(start, end):
        try:
            aggregate_day(db, website_id, day)
            aggregated += 1
        except StoreUnavailableError:
            raise
        except (PartitionIOError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(f"Failed to aggregate {website_id} on {day}: {e}")
            errors += 1

    return {"aggregated": aggregated, "errors": errors}


# Aggregate store

def save_record(db: Session, record: schemas.AggregatedDailyRecord) -> None:
    """Replace the record for (website_id, date) in one transaction"""
    try:
        db.query(models.AggregatedDaily).filter(
            models.AggregatedDaily.website_id == record.website_id,
            models.AggregatedDaily.date == record.date
        ).delete(synchronize_session=False)
        db.add(models.AggregatedDaily(
            website_id=record.website_id,
            date=record.date,
            metrics=record.metrics.model_dump(mode="json"),
            computed_at=utils.get_utc_now(),
        ))
        db.commit()
    except OperationalError as e:
        db.rollback()
        raise StoreUnavailableError(str(e)) from e
    except SQLAlchemyError:
        db.rollback()
        raise


def get_record(db: Session, website_id: str, day: date) -> schemas.AggregatedDailyRecord:
    row = db.query(models.AggregatedDaily).filter(
        models.AggregatedDaily.website_id == website_id,
        models.AggregatedDaily.date == day
    ).first()
    if row is None:
        raise AggregationGapError(website_id, day)
    return schemas.AggregatedDailyRecord(website_id=website_id, date=day, metrics=row.metrics)


def load_days(
    db: Session, website_id: str, start: date, end: date
) -> List[Tuple[date, Optional[schemas.AggregatedDailyRecord]]]:
    """Every day in range paired with its record, None where nothing was aggregated"""
    days = []
    for day in utils.iter_days(start, end):
        try:
            days.append((day, get_record(db, website_id, day)))
        except AggregationGapError as e:
            logger.debug(str(e))
            days.append((day, None))
    return days


def get_aggregated_data(
    db: Session, website_id: str, start: date, end: date
) -> List[schemas.AggregatedDailyRecord]:
    """Stored records in range, oldest first"""
    return [record for _, record in load_days(db, website_id, start, end) if record is not None]
