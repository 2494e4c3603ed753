from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from database import get_db
import report_builder
import report_scheduler
import schemas

router = APIRouter()

def _get_or_404(db: Session, website_id: str, scheduled_id: str):
    db_scheduled = report_scheduler.get_scheduled(db, website_id, scheduled_id)
    if not db_scheduled:
        raise HTTPException(status_code=404, detail="Scheduled report not found")
    return db_scheduled

@router.get("/{website_id}/scheduled-reports")
def get_scheduled_reports(website_id: str, db: Session = Depends(get_db)):
    scheduled = [report_scheduler.to_schema(s) for s in report_scheduler.list_scheduled(db, website_id)]
    return {"success": True, "scheduled": scheduled, "count": len(scheduled)}

@router.get("/{website_id}/scheduled-reports/due")
def get_due_reports(website_id: str, db: Session = Depends(get_db)):
    due = [report_scheduler.to_schema(s) for s in report_scheduler.list_due(db, website_id)]
    return {"success": True, "scheduled": due, "count": len(due)}

@router.post("/{website_id}/scheduled-reports/process", response_model=schemas.ProcessResult)
async def process_scheduled_reports(website_id: str, db: Session = Depends(get_db)):
    """Cron entry point: send every due scheduled report"""
    result = await report_scheduler.process_due(db, website_id)
    return schemas.ProcessResult(**result)

@router.get("/{website_id}/scheduled-reports/{scheduled_id}", response_model=schemas.ScheduledReportResponse)
def get_scheduled_report(website_id: str, scheduled_id: str, db: Session = Depends(get_db)):
    return report_scheduler.to_schema(_get_or_404(db, website_id, scheduled_id))

@router.post("/{website_id}/scheduled-reports", response_model=schemas.ScheduledReportResponse)
def create_scheduled_report(website_id: str, scheduled: schemas.ScheduledReportCreate, db: Session = Depends(get_db)):
    if not report_builder.get_report(db, website_id, scheduled.report_id):
        raise HTTPException(status_code=404, detail="Report not found")
    return report_scheduler.to_schema(report_scheduler.save_scheduled(db, website_id, scheduled))

@router.put("/{website_id}/scheduled-reports/{scheduled_id}", response_model=schemas.ScheduledReportResponse)
def update_scheduled_report(
    website_id: str,
    scheduled_id: str,
    scheduled: schemas.ScheduledReportCreate,
    db: Session = Depends(get_db)
):
    _get_or_404(db, website_id, scheduled_id)
    if not report_builder.get_report(db, website_id, scheduled.report_id):
        raise HTTPException(status_code=404, detail="Report not found")
    scheduled.id = scheduled_id
    return report_scheduler.to_schema(report_scheduler.save_scheduled(db, website_id, scheduled))

@router.delete("/{website_id}/scheduled-reports/{scheduled_id}")
def delete_scheduled_report(website_id: str, scheduled_id: str, db: Session = Depends(get_db)):
    if not report_scheduler.delete_scheduled(db, website_id, scheduled_id):
        raise HTTPException(status_code=404, detail="Scheduled report not found")
    return {"success": True, "message": "Scheduled report deleted"}
