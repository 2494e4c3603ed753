"""Error taxonomy for the analytics engine.

Failures local to one event, one day or one scheduled item are recovered
by the services and surfaced as counts. Only StoreUnavailableError is
meant to abort the enclosing request.
"""


class AnalyticsError(Exception):
    """Base class for analytics engine errors"""


class ValidationError(AnalyticsError):
    """Inbound event is missing a required field"""

    def __init__(self, missing_fields):
        self.missing_fields = list(missing_fields)
        super().__init__(f"Missing required fields: {', '.join(self.missing_fields)}")


class PartitionIOError(AnalyticsError):
    """A (website, day) event partition could not be read or decoded"""

    def __init__(self, website_id, day, reason):
        self.website_id = website_id
        self.day = day
        super().__init__(f"Partition {website_id}/{day} unreadable: {reason}")


class AggregationGapError(AnalyticsError):
    """No aggregated record exists for a day inside a queried range"""

    def __init__(self, website_id, day):
        self.website_id = website_id
        self.day = day
        super().__init__(f"No aggregated record for {website_id} on {day}")


class DeliveryError(AnalyticsError):
    """Export or send failed for one scheduled report"""


class ScheduleComputationError(AnalyticsError):
    """Recurrence fields of a scheduled report are invalid"""


class StoreUnavailableError(AnalyticsError):
    """The backing database cannot be reached at all"""
