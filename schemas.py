from pydantic import BaseModel, EmailStr, Field, model_validator
from datetime import datetime, date
from typing import Optional, List, Dict, Any, Literal

# Alias for fields named "date" that carry a default
DateType = date

EVENT_CATEGORIES = ("page", "user", "ecommerce", "custom", "performance", "error")
DASHBOARD_RANGES = ("24h", "7d", "30d", "90d", "custom")

DashboardRange = Literal["24h", "7d", "30d", "90d", "custom"]
ChartType = Literal["line", "bar", "pie", "area", "table", "metric", "funnel"]
FilterOperator = Literal["equals", "contains", "greaterThan", "lessThan", "between", "in"]
ReportFormat = Literal["pdf", "csv", "excel", "json"]
Frequency = Literal["daily", "weekly", "monthly", "custom"]


# Events

class DeviceInfo(BaseModel):
    type: Literal["desktop", "mobile", "tablet"] = "desktop"
    os: str = "Unknown"
    browser: str = "Unknown"


class Location(BaseModel):
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None


class EventCreate(BaseModel):
    # Required fields are checked by the tracker so one bad entry in a batch
    # is counted rather than rejecting the whole request
    website_id: Optional[str] = None
    session_id: Optional[str] = None
    visitor_id: Optional[str] = None
    event_type: Optional[str] = None
    event_category: Optional[str] = None
    event_action: Optional[str] = None
    event_label: Optional[str] = None
    event_value: Optional[float] = None
    path: Optional[str] = None
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
    ip: Optional[str] = None
    location: Optional[Location] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EventResponse(BaseModel):
    id: str
    website_id: str
    session_id: str
    visitor_id: str
    event_type: str
    event_category: str
    event_action: str
    event_label: Optional[str] = None
    event_value: Optional[float] = None
    path: Optional[str] = None
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
    ip: Optional[str] = None
    device: DeviceInfo
    location: Optional[Location] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class BatchTrackRequest(BaseModel):
    website_id: str
    events: List[Dict[str, Any]]


class BatchTrackResponse(BaseModel):
    success: bool = True
    saved: int
    errors: int


# Aggregated daily record

class VisitorCounts(BaseModel):
    total: int = 0
    unique: int = 0
    new: int = 0
    returning: int = 0


class SessionStats(BaseModel):
    total: int = 0
    average_duration: float = 0.0
    bounce_rate: float = 0.0


class TopPage(BaseModel):
    path: str
    views: int
    unique_views: int


class PageViewStats(BaseModel):
    total: int = 0
    average_per_session: float = 0.0
    top_pages: List[TopPage] = Field(default_factory=list)


class EventCounts(BaseModel):
    total: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_category: Dict[str, int] = Field(default_factory=dict)


class DeviceCounts(BaseModel):
    desktop: int = 0
    mobile: int = 0
    tablet: int = 0


class TrafficCounts(BaseModel):
    sources: Dict[str, int] = Field(default_factory=dict)
    countries: Dict[str, int] = Field(default_factory=dict)


class ConversionStats(BaseModel):
    total: int = 0
    rate: float = 0.0
    revenue: Optional[float] = None


class DailyMetrics(BaseModel):
    visitors: VisitorCounts = Field(default_factory=VisitorCounts)
    sessions: SessionStats = Field(default_factory=SessionStats)
    page_views: PageViewStats = Field(default_factory=PageViewStats)
    events: EventCounts = Field(default_factory=EventCounts)
    devices: DeviceCounts = Field(default_factory=DeviceCounts)
    traffic: TrafficCounts = Field(default_factory=TrafficCounts)
    conversions: ConversionStats = Field(default_factory=ConversionStats)


class AggregatedDailyRecord(BaseModel):
    website_id: str
    date: date
    metrics: DailyMetrics


class AggregateRequest(BaseModel):
    date: Optional[DateType] = None


class AggregateBatchRequest(BaseModel):
    start_date: date
    end_date: date


class AggregateBatchResponse(BaseModel):
    success: bool = True
    aggregated: int
    errors: int


# Dashboard

class Period(BaseModel):
    start: datetime
    end: datetime
    range: DashboardRange


class VisitorSummary(VisitorCounts):
    change: float = 0.0


class SessionSummary(SessionStats):
    change: float = 0.0


class RankedPage(TopPage):
    change: float = 0.0


class PageViewSummary(BaseModel):
    total: int = 0
    average_per_session: float = 0.0
    top_pages: List[RankedPage] = Field(default_factory=list)
    change: float = 0.0


class SourceEntry(BaseModel):
    source: str
    visitors: int
    percentage: float
    change: float


class DeviceEntry(BaseModel):
    device: str
    visitors: int
    percentage: float
    change: float


class CountryEntry(BaseModel):
    country: str
    visitors: int
    percentage: float
    change: float


class TrafficSummary(BaseModel):
    sources: List[SourceEntry] = Field(default_factory=list)
    devices: List[DeviceEntry] = Field(default_factory=list)
    countries: List[CountryEntry] = Field(default_factory=list)


class ConversionSummary(ConversionStats):
    change: float = 0.0


class TimeSeriesPoint(BaseModel):
    date: date
    visitors: int
    page_views: int
    conversions: int


class Trends(BaseModel):
    time_series: List[TimeSeriesPoint] = Field(default_factory=list)
    visitor_growth: float = 0.0
    conversion_trend: Literal["up", "down", "stable"] = "stable"


class RealTime(BaseModel):
    active_visitors: int = 0
    active_sessions: int = 0
    current_page_views: int = 0


class DashboardMetrics(BaseModel):
    website_id: str
    period: Period
    visitors: VisitorSummary
    sessions: SessionSummary
    page_views: PageViewSummary
    traffic: TrafficSummary
    conversions: ConversionSummary
    trends: Trends
    real_time: RealTime


# Custom reports

class ReportFilter(BaseModel):
    field: str
    operator: FilterOperator
    value: Any = None


class DataSource(BaseModel):
    metric: str
    dimension: Optional[str] = None
    filters: List[ReportFilter] = Field(default_factory=list)


class ChartPosition(BaseModel):
    x: int = 0
    y: int = 0
    w: int = 6
    h: int = 4


class ChartSpec(BaseModel):
    id: str
    type: ChartType
    title: str
    data_source: DataSource
    position: ChartPosition = Field(default_factory=ChartPosition)
    config: Optional[Dict[str, Any]] = None


class DateRange(BaseModel):
    preset: Optional[Literal["24h", "7d", "30d", "90d"]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @model_validator(mode="after")
    def default_to_week(self):
        if self.preset is None and self.start is None and self.end is None:
            self.preset = "7d"
        return self


class CustomReportCreate(BaseModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    date_range: DateRange = Field(default_factory=DateRange)
    charts: List[ChartSpec] = Field(default_factory=list)
    filters: List[ReportFilter] = Field(default_factory=list)


class CustomReportResponse(BaseModel):
    id: str
    website_id: str
    name: str
    description: Optional[str] = None
    date_range: DateRange
    charts: List[ChartSpec]
    filters: List[ReportFilter]
    created_at: datetime
    updated_at: datetime
    last_generated: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReportAttachment(BaseModel):
    filename: str
    content: str
    content_type: str


# Scheduled reports

class Schedule(BaseModel):
    frequency: Frequency
    day_of_week: Optional[int] = None    # 0 = Sunday
    day_of_month: Optional[int] = None
    time: str = "09:00"                  # HH:MM, 24h
    timezone: Optional[str] = None
    interval_days: Optional[int] = None  # frequency == "custom"


class ScheduledReportCreate(BaseModel):
    id: Optional[str] = None
    report_id: str
    schedule: Schedule
    recipients: List[EmailStr]
    format: ReportFormat = "pdf"
    enabled: bool = True


class ScheduledReportResponse(BaseModel):
    id: str
    website_id: str
    report_id: str
    schedule: Schedule
    recipients: List[str]
    format: ReportFormat
    enabled: bool
    last_sent: Optional[datetime] = None
    next_send: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProcessResult(BaseModel):
    success: bool = True
    sent: int
    errors: int
