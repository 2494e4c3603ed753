"""Custom report definitions and rendering.

A report is resolved on demand: the dashboard metrics for its date range
are computed once, and every chart picks its shape out of them through a
lookup table keyed by (metric, chart type). Pairs missing from the table
render as an empty chart.
"""
import csv
import html
import io
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

import dashboard_service
import models
import schemas
import utils

logger = logging.getLogger(__name__)


# Report definition store

def list_reports(db: Session, website_id: str) -> List[models.CustomReport]:
    return db.query(models.CustomReport).filter(
        models.CustomReport.website_id == website_id
    ).order_by(models.CustomReport.created_at).all()


def get_report(db: Session, website_id: str, report_id: str) -> Optional[models.CustomReport]:
    return db.query(models.CustomReport).filter(
        models.CustomReport.website_id == website_id,
        models.CustomReport.id == report_id
    ).first()


def save_report(db: Session, website_id: str, report: schemas.CustomReportCreate) -> models.CustomReport:
    """Create the report, or replace its definition when the id already exists"""
    now = utils.get_utc_now()
    report_id = report.id or f"report-{uuid.uuid4().hex[:12]}"

    db_report = get_report(db, website_id, report_id)
    if db_report is None:
        db_report = models.CustomReport(id=report_id, website_id=website_id, created_at=now)
        db.add(db_report)

    db_report.name = report.name
    db_report.description = report.description
    db_report.date_range = report.date_range.model_dump(mode="json")
    db_report.charts = [chart.model_dump(mode="json") for chart in report.charts]
    db_report.filters = [f.model_dump(mode="json") for f in report.filters]
    db_report.updated_at = now

    db.commit()
    db.refresh(db_report)
    logger.info(f"Saved report {report_id} for {website_id}")
    return db_report


def delete_report(db: Session, website_id: str, report_id: str) -> bool:
    db_report = get_report(db, website_id, report_id)
    if db_report is None:
        return False
    db.delete(db_report)
    db.commit()
    logger.info(f"Deleted report {report_id} for {website_id}")
    return True


def mark_generated(db: Session, db_report: models.CustomReport, when: Optional[datetime] = None) -> None:
    db_report.last_generated = when or utils.get_utc_now()
    db.commit()


def to_schema(db_report: models.CustomReport) -> schemas.CustomReportResponse:
    return schemas.CustomReportResponse.model_validate(db_report)


# Chart data resolution

def _series(field: str) -> Callable:
    def resolve(metrics: schemas.DashboardMetrics):
        return [
            {"date": point.date.isoformat(), "value": getattr(point, field)}
            for point in metrics.trends.time_series
        ]
    return resolve


def _summary(section: str) -> Callable:
    def resolve(metrics: schemas.DashboardMetrics):
        summary = getattr(metrics, section)
        return {"value": summary.total, "change": round(summary.change, 2)}
    return resolve


def _ranked_rows(metrics: schemas.DashboardMetrics, dimension: str) -> List[dict]:
    if dimension == "top_pages":
        entries = metrics.page_views.top_pages
    else:
        entries = getattr(metrics.traffic, dimension)
    return [entry.model_dump() for entry in entries]


def _table(dimension: str) -> Callable:
    def resolve(metrics: schemas.DashboardMetrics):
        return _ranked_rows(metrics, dimension)
    return resolve


def _labels(dimension: str, label_key: str, value_key: str) -> Callable:
    def resolve(metrics: schemas.DashboardMetrics):
        return [
            {"label": row[label_key], "value": row[value_key]}
            for row in _ranked_rows(metrics, dimension)
        ]
    return resolve


def _conversion_funnel(metrics: schemas.DashboardMetrics):
    return [
        {"stage": "visitors", "value": metrics.visitors.total},
        {"stage": "sessions", "value": metrics.sessions.total},
        {"stage": "conversions", "value": metrics.conversions.total},
    ]


RANKED_DIMENSIONS = {
    "top_pages": ("path", "views"),
    "traffic_sources": ("source", "visitors"),
    "devices": ("device", "visitors"),
    "countries": ("country", "visitors"),
}


def _build_resolvers() -> Dict[Tuple[str, str], Callable]:
    resolvers = {}

    for metric in ("visitors", "page_views", "conversions"):
        resolvers[(metric, "line")] = _series(metric)
        resolvers[(metric, "area")] = _series(metric)

    for metric in ("visitors", "sessions", "page_views", "conversions"):
        resolvers[(metric, "metric")] = _summary(metric)

    for dimension, (label, value) in RANKED_DIMENSIONS.items():
        # traffic_sources lives under metrics.traffic.sources
        source = "sources" if dimension == "traffic_sources" else dimension
        resolvers[(dimension, "table")] = _table(source)
        resolvers[(dimension, "pie")] = _labels(source, label, value)
        resolvers[(dimension, "bar")] = _labels(source, label, value)

    resolvers[("conversions", "funnel")] = _conversion_funnel
    return resolvers


CHART_RESOLVERS = _build_resolvers()


def _matches(row: dict, report_filter: schemas.ReportFilter) -> bool:
    # Filters on fields a row does not carry do not apply to it
    if report_filter.field not in row:
        return True

    actual = row[report_filter.field]
    expected = report_filter.value
    op = report_filter.operator
    try:
        if op == "equals":
            return actual == expected
        if op == "contains":
            return str(expected).lower() in str(actual).lower()
        if op == "greaterThan":
            return float(actual) > float(expected)
        if op == "lessThan":
            return float(actual) < float(expected)
        if op == "between":
            low, high = expected
            return float(low) <= float(actual) <= float(high)
        if op == "in":
            return actual in expected
    except (TypeError, ValueError):
        return False
    return False


def apply_filters(rows: List[dict], filters: List[schemas.ReportFilter]) -> List[dict]:
    return [row for row in rows if all(_matches(row, f) for f in filters)]


def report_period(report: schemas.CustomReportResponse, now: Optional[datetime] = None) -> Tuple[str, datetime, datetime]:
    date_range = report.date_range
    range = date_range.preset or "custom"
    start, end = dashboard_service.resolve_period(range, date_range.start, date_range.end, now)
    return range, start, end


def generate_report_data(
    db: Session,
    report: schemas.CustomReportResponse,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Resolve every chart of the report to its data, keyed by chart id"""
    range, start, end = report_period(report, now)
    metrics = dashboard_service.get_dashboard(db, report.website_id, range, start, end, now)

    data = {}
    for chart in report.charts:
        resolver = CHART_RESOLVERS.get((chart.data_source.metric, chart.type))
        if resolver is None:
            logger.debug(f"No data for chart {chart.id}: ({chart.data_source.metric}, {chart.type})")
            data[chart.id] = []
            continue

        try:
            chart_data = resolver(metrics)
            if isinstance(chart_data, list):
                chart_data = apply_filters(chart_data, report.filters + chart.data_source.filters)
        except Exception as e:
            logger.error(f"Chart {chart.id} of report {report.id} failed to render: {e}")
            chart_data = []
        data[chart.id] = chart_data

    return data


# Exports

def html_escape(value) -> str:
    return html.escape(str(value))


def _rows_of(chart_data) -> List[dict]:
    if isinstance(chart_data, dict):
        return [chart_data]
    return list(chart_data or [])


def to_csv(data: Dict[str, Any]) -> str:
    """One labeled block per chart: label line, header line, rows, blank line"""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")

    for chart_id, chart_data in data.items():
        writer.writerow([f"Chart: {chart_id}"])
        rows = _rows_of(chart_data)
        if rows:
            headers = list(rows[0].keys())
            writer.writerow(headers)
            for row in rows:
                writer.writerow([row.get(h) for h in headers])
        writer.writerow([])

    return output.getvalue()


def to_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2, default=str)


def to_document(
    report: schemas.CustomReportResponse,
    data: Dict[str, Any],
    generated_at: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> str:
    """Self-contained HTML document, one table per chart, for PDF conversion"""
    generated_at = generated_at or utils.get_utc_now()
    _, start, end = report_period(report, now or generated_at)
    titles = {chart.id: chart.title for chart in report.charts}

    sections = []
    for chart_id, chart_data in data.items():
        rows = _rows_of(chart_data)
        if rows:
            headers = list(rows[0].keys())
            head = "".join(f"<th>{html_escape(h)}</th>" for h in headers)
            body = "".join(
                "<tr>" + "".join(f"<td>{html_escape(row.get(h, ''))}</td>" for h in headers) + "</tr>"
                for row in rows
            )
            table = f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"
        else:
            table = "<p>No data available</p>"
        sections.append(
            f'<div class="chart"><h3>{html_escape(titles.get(chart_id, chart_id))}</h3>{table}</div>'
        )

    generated = generated_at.strftime("%Y-%m-%d %H:%M:%S")
    charts_html = "".join(sections)

    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{html_escape(report.name)}</title>
    <style>
        body {{ font-family: Arial, sans-serif; padding: 20px; color: #333; }}
        h1 {{ color: #333; }}
        .chart {{ margin: 20px 0; border: 1px solid #ddd; padding: 15px; }}
        table {{ width: 100%; border-collapse: collapse; }}
        th, td {{ border: 1px solid #ddd; padding: 8px; text-align: left; }}
        th {{ background-color: #f2f2f2; }}
    </style>
</head>
<body>
    <h1>{html_escape(report.name)}</h1>
    <p>Generated: {generated} UTC</p>
    <p>Date Range: {start:%Y-%m-%d} - {end:%Y-%m-%d}</p>
    {charts_html}
</body>
</html>"""


def export_report(
    report: schemas.CustomReportResponse,
    data: Dict[str, Any],
    format: str,
    now: Optional[datetime] = None
) -> schemas.ReportAttachment:
    if format == "csv":
        return schemas.ReportAttachment(filename=f"{report.name}.csv", content=to_csv(data), content_type="text/csv")
    if format == "excel":
        return schemas.ReportAttachment(
            filename=f"{report.name}.csv",
            content=to_csv(data),
            content_type="application/vnd.ms-excel"
        )
    if format == "json":
        return schemas.ReportAttachment(filename=f"{report.name}.json", content=to_json(data), content_type="application/json")
    if format == "pdf":
        return schemas.ReportAttachment(
            filename=f"{report.name}.html",
            content=to_document(report, data, now=now),
            content_type="text/html"
        )
    raise ValueError(f"Unsupported report format: {format}")
