import logging
import uuid
from datetime import datetime
from typing import List, Optional, Union

import pydantic
from sqlalchemy.orm import Session

import event_store
import models
import schemas
import utils
from errors import ValidationError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("website_id", "session_id", "visitor_id", "event_type", "event_category", "event_action")


def validate_event(data: Union[schemas.EventCreate, dict]) -> schemas.EventCreate:
    """Check required-field presence, nothing more"""
    if isinstance(data, dict):
        try:
            data = schemas.EventCreate(**data)
        except pydantic.ValidationError as e:
            fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
            raise ValidationError(fields) from e

    missing = [f for f in REQUIRED_FIELDS if not getattr(data, f)]
    if missing:
        raise ValidationError(missing)
    return data


def track_event(
    db: Session,
    data: Union[schemas.EventCreate, dict],
    now: Optional[datetime] = None
) -> schemas.EventResponse:
    """Validate, enrich and store a single event"""
    event = validate_event(data)

    if event.event_category not in schemas.EVENT_CATEGORIES:
        logger.debug(f"Non-standard event category '{event.event_category}' for {event.website_id}")

    # Location from IP when the client did not send one
    location = event.location.model_dump() if event.location else None
    if location is None and event.ip:
        location = utils.get_location_from_ip(event.ip) or None

    db_event = models.Event(
        id=f"evt-{uuid.uuid4().hex}",
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
        device=utils.classify_user_agent(event.user_agent),
        location=location,
        event_metadata=event.metadata,
        # Client timestamps are not trusted
        timestamp=now or utils.get_utc_now(),
    )

    event_store.append(db, db_event)
    return event_store.to_schema(db_event)


def track_batch(
    db: Session,
    website_id: str,
    events: List[dict],
    now: Optional[datetime] = None
) -> dict:
    """Store every valid event in the batch; bad entries are counted and skipped"""
    saved = 0
    errors = 0

    for index, raw in enumerate(events):
        try:
            if not isinstance(raw, dict):
                raise ValidationError(REQUIRED_FIELDS)
            event = validate_event(raw)
            if event.website_id != website_id:
                raise ValidationError(["website_id"])
            track_event(db, event, now=now)
            saved += 1
        except ValidationError as e:
            logger.warning(f"Skipping event {index} in batch for {website_id}: {e}")
            errors += 1

    logger.info(f"Batch for {website_id}: {saved} saved, {errors} rejected")
    return {"saved": saved, "errors": errors}
