from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from database import get_db
from datetime import datetime
from typing import Optional
import dashboard_service
import schemas

router = APIRouter()

@router.get("/{website_id}/dashboard")
def get_dashboard(
    website_id: str,
    range: schemas.DashboardRange = "7d",
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db)
):
    try:
        metrics = dashboard_service.get_dashboard(db, website_id, range, start_date, end_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "metrics": metrics}
