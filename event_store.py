"""Raw event persistence, partitioned by (website_id, UTC calendar day).

Writers to one partition are serialized with a per-partition lock so the
append and the retention eviction never interleave with another writer.
Readers go through their own session and see a committed snapshot.
"""
import logging
import os
import threading
from collections import defaultdict
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

import models
import schemas
import utils
from errors import PartitionIOError, StoreUnavailableError

load_dotenv()

logger = logging.getLogger(__name__)

EVENT_PARTITION_CAP = int(os.getenv("EVENT_PARTITION_CAP", 10000))

FILTER_FIELDS = ("event_type", "event_category", "session_id", "visitor_id")

_partition_locks = defaultdict(threading.Lock)
_registry_lock = threading.Lock()


def _partition_lock(website_id: str, day) -> threading.Lock:
    with _registry_lock:
        return _partition_locks[(website_id, day)]


def append(db: Session, event: models.Event, cap: Optional[int] = None) -> models.Event:
    """Append one event to its partition, evicting the oldest over the cap"""
    cap = cap or EVENT_PARTITION_CAP
    day = event.timestamp.date()
    event.partition_day = day

    with _partition_lock(event.website_id, day):
        try:
            db.add(event)
            db.flush()

            in_partition = db.query(models.Event).filter(
                models.Event.website_id == event.website_id,
                models.Event.partition_day == day
            )
            overflow = in_partition.count() - cap
            if overflow > 0:
                oldest = in_partition.filter(models.Event.id != event.id).order_by(
                    models.Event.timestamp, models.Event.id
                ).limit(overflow).all()
                for stale in oldest:
                    db.delete(stale)
                logger.warning(
                    f"Partition {event.website_id}/{day} over cap {cap}, evicted {overflow} oldest events"
                )

            db.commit()
        except OperationalError as e:
            db.rollback()
            raise StoreUnavailableError(str(e)) from e
        except SQLAlchemyError:
            db.rollback()
            raise

    return event


def read(
    db: Session,
    website_id: str,
    start: datetime,
    end: datetime,
    filters: Optional[dict] = None
) -> List[models.Event]:
    """Events with start <= timestamp <= end, oldest first"""
    filters = filters or {}
    days = list(utils.iter_days(start.date(), end.date()))
    if not days:
        return []

    query = db.query(models.Event).filter(
        models.Event.website_id == website_id,
        models.Event.partition_day.in_(days),
        models.Event.timestamp >= start,
        models.Event.timestamp <= end
    )
    for field in FILTER_FIELDS:
        value = filters.get(field)
        if value:
            query = query.filter(getattr(models.Event, field) == value)

    try:
        return query.order_by(models.Event.timestamp, models.Event.id).all()
    except OperationalError as e:
        raise StoreUnavailableError(str(e)) from e
    except SQLAlchemyError as e:
        raise PartitionIOError(website_id, f"{days[0]}..{days[-1]}", e) from e


def to_schema(event: models.Event) -> schemas.EventResponse:
    try:
        return schemas.EventResponse(
            id=event.id,
            website_id=event.website_id,
            session_id=event.session_id,
            visitor_id=event.visitor_id,
            event_type=event.event_type,
            event_category=event.event_category,
            event_action=event.event_action,
            event_label=event.event_label,
            event_value=event.event_value,
            path=event.path,
            referrer=event.referrer,
            user_agent=event.user_agent,
            ip=event.ip,
            device=event.device or {},
            location=event.location,
            metadata=event.event_metadata or {},
            timestamp=event.timestamp,
        )
    except ValueError as e:
        raise PartitionIOError(event.website_id, event.partition_day, e) from e
