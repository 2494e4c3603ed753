from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from database import get_db
from datetime import date, timedelta
from typing import Optional
import aggregator
import schemas
import utils

router = APIRouter()

@router.post("/{website_id}/aggregate")
def aggregate_day(website_id: str, body: Optional[schemas.AggregateRequest] = None, db: Session = Depends(get_db)):
    """Aggregate one day (default today) and replace its stored record"""
    target = (body.date if body else None) or utils.get_utc_now().date()
    record = aggregator.aggregate_day(db, website_id, target)
    return {"success": True, "data": record}

@router.post("/{website_id}/aggregate/batch", response_model=schemas.AggregateBatchResponse)
def aggregate_batch(website_id: str, body: schemas.AggregateBatchRequest, db: Session = Depends(get_db)):
    if body.start_date > body.end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")
    result = aggregator.batch_aggregate(db, website_id, body.start_date, body.end_date)
    return schemas.AggregateBatchResponse(**result)

@router.get("/{website_id}/aggregated")
def get_aggregated(
    website_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db)
):
    end = end_date or utils.get_utc_now().date()
    start = start_date or end - timedelta(days=7)
    data = aggregator.get_aggregated_data(db, website_id, start, end)
    return {"success": True, "data": data, "count": len(data)}
