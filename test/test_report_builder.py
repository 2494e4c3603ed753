import csv
import io
import json
from datetime import date, datetime

import pytest

import aggregator
import report_builder
import schemas

NOW = datetime(2026, 10, 19, 0, 0, 0)


@pytest.fixture
def seeded(db):
    aggregator.save_record(db, schemas.AggregatedDailyRecord(
        website_id="site-a",
        date=date(2026, 10, 15),
        metrics=schemas.DailyMetrics.model_validate({
            "visitors": {"total": 30, "unique": 30, "new": 30},
            "sessions": {"total": 25},
            "page_views": {"total": 100, "top_pages": [
                {"path": "/", "views": 60, "unique_views": 25},
                {"path": "/blog/launch", "views": 30, "unique_views": 12},
                {"path": "/pricing", "views": 10, "unique_views": 8},
            ]},
            "devices": {"desktop": 20, "mobile": 10},
            "traffic": {"sources": {"Google": 20, "direct": 10}, "countries": {"India": 30}},
            "conversions": {"total": 5},
        }),
    ))
    return db


def make_report(db, charts, filters=None, **fields):
    definition = {
        "name": "Weekly overview",
        "date_range": {"preset": "7d"},
        "charts": charts,
        "filters": filters or [],
    }
    definition.update(fields)
    db_report = report_builder.save_report(db, "site-a", schemas.CustomReportCreate.model_validate(definition))
    return report_builder.to_schema(db_report)


def chart(chart_id, metric, chart_type, title=None, filters=None):
    return {
        "id": chart_id,
        "type": chart_type,
        "title": title or chart_id,
        "data_source": {"metric": metric, "filters": filters or []},
    }


def test_report_crud(db):
    report = make_report(db, [chart("c1", "visitors", "line")], description="first")

    assert report.id.startswith("report-")
    assert report.date_range.preset == "7d"
    assert [r.id for r in report_builder.list_reports(db, "site-a")] == [report.id]
    assert report_builder.list_reports(db, "site-b") == []

    replaced = make_report(db, [], id=report.id, name="Renamed")
    assert replaced.id == report.id
    assert replaced.name == "Renamed"
    assert replaced.charts == []
    assert replaced.created_at == report.created_at
    assert len(report_builder.list_reports(db, "site-a")) == 1

    assert report_builder.get_report(db, "site-b", report.id) is None
    assert report_builder.delete_report(db, "site-a", report.id) is True
    assert report_builder.delete_report(db, "site-a", report.id) is False


def test_date_range_defaults_to_last_week(db):
    report = make_report(db, [], date_range={})

    range, start, end = report_builder.report_period(report, NOW)

    assert range == "7d"
    assert (start, end) == (datetime(2026, 10, 12), NOW)


def test_custom_date_range(db):
    report = make_report(db, [], date_range={"start": "2026-10-01T00:00:00", "end": "2026-10-05T00:00:00"})

    range, start, end = report_builder.report_period(report, NOW)

    assert range == "custom"
    assert start == datetime(2026, 10, 1)
    assert end == datetime(2026, 10, 5)


def test_mark_generated(db):
    make_report(db, [])
    db_report = report_builder.list_reports(db, "site-a")[0]

    report_builder.mark_generated(db, db_report, NOW)

    assert report_builder.to_schema(db_report).last_generated == NOW


def test_top_pages_table_exports_to_csv(seeded):
    report = make_report(seeded, [chart("pages", "top_pages", "table", "Top pages")])

    data = report_builder.generate_report_data(seeded, report, NOW)
    lines = report_builder.to_csv(data).split("\n")

    assert lines[0] == "Chart: pages"
    assert lines[1] == "path,views,unique_views,change"
    assert [line.split(",")[0] for line in lines[2:5]] == ["/", "/blog/launch", "/pricing"]
    assert lines[5] == ""
    assert len(list(csv.reader(io.StringIO("\n".join(lines[1:5]))))) == 4


def test_chart_shapes(seeded):
    report = make_report(seeded, [
        chart("trend", "visitors", "line"),
        chart("total", "visitors", "metric"),
        chart("sources", "traffic_sources", "pie"),
        chart("devices", "devices", "bar"),
        chart("funnel", "conversions", "funnel"),
    ])

    data = report_builder.generate_report_data(seeded, report, NOW)

    assert len(data["trend"]) == 8
    assert {"date": "2026-10-15", "value": 30} in data["trend"]
    assert data["total"] == {"value": 30, "change": 100.0}
    assert data["sources"] == [{"label": "Google", "value": 20}, {"label": "direct", "value": 10}]
    assert data["devices"][0] == {"label": "Desktop", "value": 20}
    assert data["funnel"] == [
        {"stage": "visitors", "value": 30},
        {"stage": "sessions", "value": 25},
        {"stage": "conversions", "value": 5},
    ]


def test_unknown_metric_chart_pair_is_empty(seeded):
    report = make_report(seeded, [chart("odd", "devices", "line"), chart("nope", "bounce", "table")])

    data = report_builder.generate_report_data(seeded, report, NOW)

    assert data == {"odd": [], "nope": []}


def test_failing_chart_renders_empty(seeded, monkeypatch):
    def broken(metrics):
        raise KeyError("visitors")

    monkeypatch.setitem(report_builder.CHART_RESOLVERS, ("visitors", "line"), broken)
    report = make_report(seeded, [chart("trend", "visitors", "line"), chart("total", "visitors", "metric")])

    data = report_builder.generate_report_data(seeded, report, NOW)

    assert data["trend"] == []
    assert data["total"]["value"] == 30


def test_report_and_chart_filters_narrow_rows(seeded):
    report = make_report(
        seeded,
        [
            chart("pages", "top_pages", "table", filters=[{"field": "path", "operator": "contains", "value": "BLOG"}]),
            chart("all_pages", "top_pages", "table"),
            chart("total", "page_views", "metric"),
        ],
        filters=[{"field": "views", "operator": "greaterThan", "value": 20}],
    )

    data = report_builder.generate_report_data(seeded, report, NOW)

    assert [row["path"] for row in data["pages"]] == ["/blog/launch"]
    assert [row["path"] for row in data["all_pages"]] == ["/", "/blog/launch"]
    assert data["total"]["value"] == 100


@pytest.mark.parametrize("operator,value,expected", [
    ("equals", "/pricing", ["/pricing"]),
    ("lessThan", 30, ["/pricing"]),
    ("between", [10, 30], ["/blog", "/pricing"]),
    ("in", ["/", "/pricing"], ["/", "/pricing"]),
])
def test_filter_operators(operator, value, expected):
    rows = [
        {"path": "/", "views": 60},
        {"path": "/blog", "views": 30},
        {"path": "/pricing", "views": 10},
    ]
    field = "path" if operator in ("equals", "in") else "views"
    report_filter = schemas.ReportFilter(field=field, operator=operator, value=value)

    assert [r["path"] for r in report_builder.apply_filters(rows, [report_filter])] == expected


def test_filters_skip_rows_without_the_field_and_reject_bad_values():
    rows = [{"label": "Google", "value": 20}, {"label": "direct", "value": "n/a"}]

    absent = schemas.ReportFilter(field="country", operator="equals", value="India")
    assert report_builder.apply_filters(rows, [absent]) == rows

    numeric = schemas.ReportFilter(field="value", operator="greaterThan", value=5)
    assert report_builder.apply_filters(rows, [numeric]) == [rows[0]]


def test_document_export(seeded):
    report = make_report(
        seeded,
        [chart("pages", "top_pages", "table", "Top <pages>"), chart("odd", "devices", "line", "Empty one")],
        name="Q4 <Review>",
    )
    data = report_builder.generate_report_data(seeded, report, NOW)

    document = report_builder.to_document(report, data, generated_at=NOW, now=NOW)

    assert "<h1>Q4 &lt;Review&gt;</h1>" in document
    assert "Generated: 2026-10-19 00:00:00 UTC" in document
    assert "Date Range: 2026-10-12 - 2026-10-19" in document
    assert "<h3>Top &lt;pages&gt;</h3>" in document
    assert "<td>/blog/launch</td>" in document
    assert "No data available" in document


def test_export_formats(seeded):
    report = make_report(seeded, [chart("total", "visitors", "metric")])
    data = report_builder.generate_report_data(seeded, report, NOW)

    as_json = report_builder.export_report(report, data, "json", NOW)
    assert as_json.content_type == "application/json"
    assert json.loads(as_json.content) == {"total": {"value": 30, "change": 100.0}}

    as_csv = report_builder.export_report(report, data, "csv", NOW)
    assert as_csv.filename == "Weekly overview.csv"
    assert as_csv.content == "Chart: total\nvalue,change\n30,100.0\n\n"

    assert report_builder.export_report(report, data, "excel", NOW).content_type == "application/vnd.ms-excel"

    as_pdf = report_builder.export_report(report, data, "pdf", NOW)
    assert as_pdf.content_type == "text/html"
    assert as_pdf.content.startswith("<!DOCTYPE html>")

    with pytest.raises(ValueError):
        report_builder.export_report(report, data, "docx", NOW)
