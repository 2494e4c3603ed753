from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from database import get_db
from datetime import datetime, timedelta
from typing import Optional
import event_store
import event_tracker
import schemas
import utils

router = APIRouter()

@router.post("/events/track")
def track_event(event: schemas.EventCreate, request: Request, db: Session = Depends(get_db)):
    """Track a single event"""
    # Enrich with request data if the client did not send it
    if not event.user_agent:
        event.user_agent = request.headers.get("user-agent")
    if not event.ip and request.client:
        event.ip = request.client.host
    if not event.event_category:
        event.event_category = "custom"

    stored = event_tracker.track_event(db, event)
    return {"success": True, "event": stored}

@router.post("/events/batch", response_model=schemas.BatchTrackResponse)
def track_batch(batch: schemas.BatchTrackRequest, db: Session = Depends(get_db)):
    """Track a batch of events; bad entries are counted, not fatal"""
    result = event_tracker.track_batch(db, batch.website_id, batch.events)
    return schemas.BatchTrackResponse(**result)

@router.get("/{website_id}/events")
def get_events(
    website_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    event_type: Optional[str] = None,
    event_category: Optional[str] = None,
    session_id: Optional[str] = None,
    visitor_id: Optional[str] = None,
    db: Session = Depends(get_db)
):
    end = end_date or utils.get_utc_now()
    start = start_date or end - timedelta(days=7)

    events = event_store.read(db, website_id, start, end, {
        "event_type": event_type,
        "event_category": event_category,
        "session_id": session_id,
        "visitor_id": visitor_id,
    })
    return {
        "success": True,
        "events": [event_store.to_schema(e) for e in events],
        "count": len(events)
    }
