"""Dashboard query engine.

Summaries come from aggregated daily records for the requested period and
the equal-length period right before it. The real-time block reads raw
events for the trailing five minutes so it does not wait on aggregation.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

import aggregator
import event_store
import schemas
import utils

logger = logging.getLogger(__name__)

RANGE_DAYS = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_CUSTOM_DAYS = 7
REAL_TIME_WINDOW = timedelta(minutes=5)
RANKING_LIMIT = 10


def resolve_period(
    range: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> Tuple[datetime, datetime]:
    now = now or utils.get_utc_now()

    if range == "24h":
        return now - timedelta(hours=24), now
    if range == "custom":
        end = end or now
        start = start or end - timedelta(days=DEFAULT_CUSTOM_DAYS)
        if start > end:
            raise ValueError("start must not be after end")
        return start, end
    return now - timedelta(days=RANGE_DAYS.get(range, 7)), now


def previous_period(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    """The window of identical length ending where the current one starts"""
    return start - (end - start), start


def _load(db: Session, website_id: str, start: datetime, end: datetime, end_exclusive: bool = False):
    last = end - timedelta(microseconds=1) if end_exclusive and end > start else end
    return aggregator.load_days(db, website_id, start.date(), last.date())


def summarize(records: List[schemas.AggregatedDailyRecord]) -> dict:
    """Fold daily records into period totals"""
    totals = {
        "visitors": {"total": 0, "unique": 0, "new": 0, "returning": 0},
        "sessions": {"total": 0, "average_duration": 0.0, "bounce_rate": 0.0},
        "page_views": {"total": 0, "average_per_session": 0.0, "top_pages": {}},
        "devices": {"desktop": 0, "mobile": 0, "tablet": 0},
        "sources": {},
        "countries": {},
        "conversions": {"total": 0, "rate": 0.0, "revenue": 0.0},
    }
    if not records:
        return totals

    for record in records:
        m = record.metrics
        totals["visitors"]["total"] += m.visitors.total
        totals["visitors"]["unique"] += m.visitors.unique
        totals["visitors"]["new"] += m.visitors.new
        totals["visitors"]["returning"] += m.visitors.returning
        totals["sessions"]["total"] += m.sessions.total
        totals["sessions"]["average_duration"] += m.sessions.average_duration
        totals["sessions"]["bounce_rate"] += m.sessions.bounce_rate
        totals["page_views"]["total"] += m.page_views.total
        totals["conversions"]["total"] += m.conversions.total
        totals["conversions"]["revenue"] += m.conversions.revenue or 0

        for page in m.page_views.top_pages:
            merged = totals["page_views"]["top_pages"].setdefault(page.path, {"views": 0, "unique_views": 0})
            merged["views"] += page.views
            merged["unique_views"] += page.unique_views

        for device, count in m.devices.model_dump().items():
            totals["devices"][device] += count
        for source, count in m.traffic.sources.items():
            totals["sources"][source] = totals["sources"].get(source, 0) + count
        for country, count in m.traffic.countries.items():
            totals["countries"][country] = totals["countries"].get(country, 0) + count

    # Rates and averages are per-day figures, averaged over the days we have
    days = len(records)
    totals["sessions"]["average_duration"] /= days
    totals["sessions"]["bounce_rate"] /= days

    sessions = totals["sessions"]["total"]
    if sessions:
        totals["page_views"]["average_per_session"] = totals["page_views"]["total"] / sessions
        totals["conversions"]["rate"] = totals["conversions"]["total"] / sessions * 100

    return totals


def _ranked(current: dict, previous: dict, key: str, entry_cls):
    total = sum(current.values())
    entries = [
        entry_cls(**{
            key: name,
            "visitors": count,
            "percentage": count / total * 100 if total else 0,
            "change": utils.calculate_change(count, previous.get(name, 0)),
        })
        for name, count in current.items()
    ]
    entries.sort(key=lambda e: e.visitors, reverse=True)
    return entries[:RANKING_LIMIT]


def get_real_time(db: Session, website_id: str, now: Optional[datetime] = None) -> schemas.RealTime:
    now = now or utils.get_utc_now()
    recent = event_store.read(db, website_id, now - REAL_TIME_WINDOW, now)
    return schemas.RealTime(
        active_visitors=len({e.visitor_id for e in recent}),
        active_sessions=len({e.session_id for e in recent}),
        current_page_views=sum(1 for e in recent if utils.is_page_event(e)),
    )


def get_dashboard(
    db: Session,
    website_id: str,
    range: str = "7d",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> schemas.DashboardMetrics:
    now = now or utils.get_utc_now()
    if range not in schemas.DASHBOARD_RANGES:
        logger.warning(f"Unknown dashboard range '{range}', using 7d")
        range = "7d"

    start, end = resolve_period(range, start, end, now)
    prev_start, prev_end = previous_period(start, end)

    current_days = _load(db, website_id, start, end)
    previous_days = _load(db, website_id, prev_start, prev_end, end_exclusive=True)

    current = summarize([r for _, r in current_days if r is not None])
    previous = summarize([r for _, r in previous_days if r is not None])
    change = utils.calculate_change

    # Top pages
    previous_pages = previous["page_views"]["top_pages"]
    top_pages = [
        schemas.RankedPage(
            path=path,
            views=page["views"],
            unique_views=page["unique_views"],
            change=change(page["views"], previous_pages.get(path, {}).get("views", 0)),
        )
        for path, page in current["page_views"]["top_pages"].items()
    ]
    top_pages.sort(key=lambda p: p.views, reverse=True)

    devices = _ranked(
        {name.capitalize(): count for name, count in current["devices"].items()},
        {name.capitalize(): count for name, count in previous["devices"].items()},
        "device",
        schemas.DeviceEntry,
    )

    # Missing days are zero-filled in the series
    time_series = [
        schemas.TimeSeriesPoint(
            date=day,
            visitors=record.metrics.visitors.total if record else 0,
            page_views=record.metrics.page_views.total if record else 0,
            conversions=record.metrics.conversions.total if record else 0,
        )
        for day, record in current_days
    ]
    visitor_growth = 0.0
    if len(time_series) > 1:
        visitor_growth = change(time_series[-1].visitors, time_series[0].visitors)

    current_rate = current["conversions"]["rate"]
    previous_rate = previous["conversions"]["rate"]
    if current_rate > previous_rate:
        conversion_trend = "up"
    elif current_rate < previous_rate:
        conversion_trend = "down"
    else:
        conversion_trend = "stable"

    return schemas.DashboardMetrics(
        website_id=website_id,
        period=schemas.Period(start=start, end=end, range=range),
        visitors=schemas.VisitorSummary(
            **current["visitors"],
            change=change(current["visitors"]["total"], previous["visitors"]["total"]),
        ),
        sessions=schemas.SessionSummary(
            **current["sessions"],
            change=change(current["sessions"]["total"], previous["sessions"]["total"]),
        ),
        page_views=schemas.PageViewSummary(
            total=current["page_views"]["total"],
            average_per_session=current["page_views"]["average_per_session"],
            top_pages=top_pages[:RANKING_LIMIT],
            change=change(current["page_views"]["total"], previous["page_views"]["total"]),
        ),
        traffic=schemas.TrafficSummary(
            sources=_ranked(current["sources"], previous["sources"], "source", schemas.SourceEntry),
            devices=devices,
            countries=_ranked(current["countries"], previous["countries"], "country", schemas.CountryEntry),
        ),
        conversions=schemas.ConversionSummary(
            total=current["conversions"]["total"],
            rate=current_rate,
            revenue=current["conversions"]["revenue"] or None,
            change=change(current["conversions"]["total"], previous["conversions"]["total"]),
        ),
        trends=schemas.Trends(
            time_series=time_series,
            visitor_growth=visitor_growth,
            conversion_trend=conversion_trend,
        ),
        real_time=get_real_time(db, website_id, now),
    )
