from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session
from database import get_db
import report_builder
import schemas

router = APIRouter()

def _get_or_404(db: Session, website_id: str, report_id: str):
    db_report = report_builder.get_report(db, website_id, report_id)
    if not db_report:
        raise HTTPException(status_code=404, detail="Report not found")
    return db_report

@router.get("/{website_id}/reports")
def get_reports(website_id: str, db: Session = Depends(get_db)):
    reports = [report_builder.to_schema(r) for r in report_builder.list_reports(db, website_id)]
    return {"success": True, "reports": reports, "count": len(reports)}

@router.get("/{website_id}/reports/{report_id}", response_model=schemas.CustomReportResponse)
def get_report(website_id: str, report_id: str, db: Session = Depends(get_db)):
    return report_builder.to_schema(_get_or_404(db, website_id, report_id))

@router.post("/{website_id}/reports", response_model=schemas.CustomReportResponse)
def create_report(website_id: str, report: schemas.CustomReportCreate, db: Session = Depends(get_db)):
    return report_builder.to_schema(report_builder.save_report(db, website_id, report))

@router.put("/{website_id}/reports/{report_id}", response_model=schemas.CustomReportResponse)
def update_report(website_id: str, report_id: str, report: schemas.CustomReportCreate, db: Session = Depends(get_db)):
    _get_or_404(db, website_id, report_id)
    report.id = report_id
    return report_builder.to_schema(report_builder.save_report(db, website_id, report))

@router.delete("/{website_id}/reports/{report_id}")
def delete_report(website_id: str, report_id: str, db: Session = Depends(get_db)):
    if not report_builder.delete_report(db, website_id, report_id):
        raise HTTPException(status_code=404, detail="Report not found")
    return {"success": True, "message": "Report deleted successfully"}

@router.post("/{website_id}/reports/{report_id}/generate")
def generate_report(website_id: str, report_id: str, db: Session = Depends(get_db)):
    db_report = _get_or_404(db, website_id, report_id)
    try:
        data = report_builder.generate_report_data(db, report_builder.to_schema(db_report))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    report_builder.mark_generated(db, db_report)
    return {"success": True, "data": data}

@router.get("/{website_id}/reports/{report_id}/export")
def export_report(website_id: str, report_id: str, format: schemas.ReportFormat = "csv", db: Session = Depends(get_db)):
    report = report_builder.to_schema(_get_or_404(db, website_id, report_id))
    try:
        data = report_builder.generate_report_data(db, report)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    attachment = report_builder.export_report(report, data, format)
    return Response(
        content=attachment.content,
        media_type=attachment.content_type,
        headers={"Content-Disposition": f'attachment; filename="{attachment.filename}"'}
    )
