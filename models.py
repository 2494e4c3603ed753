from sqlalchemy import Column, Integer, String, DateTime, Date, Float, Boolean, Text, JSON, Index, UniqueConstraint
import utils
from database import Base


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_partition", "website_id", "partition_day"),
        Index("ix_events_website_timestamp", "website_id", "timestamp"),
    )

    id = Column(String, primary_key=True, index=True)
    website_id = Column(String, nullable=False)
    partition_day = Column(Date, nullable=False)
    session_id = Column(String, nullable=False, index=True)
    visitor_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False)
    event_category = Column(String, nullable=False)
    event_action = Column(String, nullable=False)
    event_label = Column(String)
    event_value = Column(Float)
    path = Column(String)
    referrer = Column(String)
    user_agent = Column(Text)
    ip = Column(String)
    device = Column(JSON)      # {"type": ..., "os": ..., "browser": ...}
    location = Column(JSON)    # {"country": ..., "region": ..., "city": ...}
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSON)
    timestamp = Column(DateTime, nullable=False, default=utils.get_utc_now)


class AggregatedDaily(Base):
    __tablename__ = "aggregated_daily"
    __table_args__ = (
        UniqueConstraint("website_id", "date", name="uq_aggregated_daily_website_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    website_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False)
    metrics = Column(JSON, nullable=False)
    computed_at = Column(DateTime, default=utils.get_utc_now)


class CustomReport(Base):
    __tablename__ = "custom_reports"

    id = Column(String, primary_key=True)
    website_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    date_range = Column(JSON, nullable=False)
    charts = Column(JSON, nullable=False, default=list)
    filters = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=utils.get_utc_now)
    updated_at = Column(DateTime, default=utils.get_utc_now)
    last_generated = Column(DateTime)


class ScheduledReport(Base):
    __tablename__ = "scheduled_reports"

    id = Column(String, primary_key=True)
    website_id = Column(String, primary_key=True)
    report_id = Column(String, nullable=False)
    schedule = Column(JSON, nullable=False)
    recipients = Column(JSON, nullable=False, default=list)
    format = Column(String, nullable=False, default="pdf")
    enabled = Column(Boolean, default=True)
    last_sent = Column(DateTime)
    next_send = Column(DateTime, index=True)
    created_at = Column(DateTime, default=utils.get_utc_now)
    updated_at = Column(DateTime, default=utils.get_utc_now)
