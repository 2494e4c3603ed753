from datetime import datetime, date, timedelta, timezone
from urllib.parse import urlparse
import os
import ipaddress
import geoip2.database
import geoip2.errors
from typing import Iterator, Optional


def get_utc_now() -> datetime:
    """Current time as naive UTC, matching the stored timestamps"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_start_of_day(day: date) -> datetime:
    """00:00:00.000 of the given day"""
    return datetime(day.year, day.month, day.day)


def get_end_of_day(day: date) -> datetime:
    """23:59:59.999 of the given day"""
    return get_start_of_day(day) + timedelta(days=1) - timedelta(milliseconds=1)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every calendar day from start to end inclusive"""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def calculate_change(current: float, previous: float) -> float:
    """Percentage change versus the previous period"""
    if not previous:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def is_page_event(event) -> bool:
    """Pageview events and anything carrying a path count as page-producing"""
    return bool(event.path) or event.event_type == "pageview"


def classify_user_agent(user_agent_string: Optional[str]) -> dict:
    """Derive device type, OS and browser from a user agent string"""
    ua = (user_agent_string or "").lower()

    # Device type
    if "tablet" in ua or "ipad" in ua:
        device_type = "tablet"
    elif "android" in ua or "mobile" in ua:
        device_type = "mobile"
    else:
        device_type = "desktop"

    # OS, fixed precedence
    if "windows" in ua:
        os_name = "Windows"
    elif ("mac os" in ua or "macintosh" in ua) and "iphone" not in ua and "ipad" not in ua:
        os_name = "macOS"
    elif "linux" in ua and "android" not in ua:
        os_name = "Linux"
    elif "android" in ua:
        os_name = "Android"
    elif "iphone" in ua or "ipad" in ua or "ios" in ua:
        os_name = "iOS"
    else:
        os_name = "Unknown"

    # Browser, Chrome and Safari tokens appear in other engines' strings too
    if "chrome" in ua and "edg" not in ua and "opr" not in ua:
        browser = "Chrome"
    elif "firefox" in ua:
        browser = "Firefox"
    elif "safari" in ua and "chrome" not in ua:
        browser = "Safari"
    elif "edg" in ua:
        browser = "Edge"
    elif "opera" in ua or "opr" in ua:
        browser = "Opera"
    else:
        browser = "Unknown"

    return {"type": device_type, "os": os_name, "browser": browser}


# Hostname fragment -> source name, checked in order
SOCIAL_PLATFORMS = [
    ("facebook", "Facebook"),
    ("twitter", "Twitter"),
    ("x.com", "Twitter"),
    ("linkedin", "LinkedIn"),
    ("instagram", "Instagram"),
    ("youtube", "YouTube"),
    ("pinterest", "Pinterest"),
]

SEARCH_ENGINES = [
    ("google", "Google"),
    ("bing", "Bing"),
    ("yahoo", "Yahoo"),
    ("duckduckgo", "DuckDuckGo"),
]


def get_source_from_referrer(referrer: Optional[str]) -> str:
    """Classify traffic source from a referrer URL"""
    if not referrer:
        return "direct"

    hostname = (urlparse(referrer).hostname or "").lower()
    if not hostname:
        return "unknown"

    for fragment, name in SOCIAL_PLATFORMS + SEARCH_ENGINES:
        if fragment in hostname:
            return name

    return hostname


def is_private_ip(ip_address: str) -> bool:
    try:
        ip = ipaddress.ip_address(ip_address)
    except ValueError:
        return True
    return ip.is_private or ip.is_loopback or ip.is_reserved


def get_location_from_ip(ip_address: Optional[str]) -> dict:
    """Get location data from IP address using GeoIP2"""
    if not ip_address or is_private_ip(ip_address):
        return {}

    geoip_path = os.getenv("GEOIP_DB_PATH", "./GeoLite2-City.mmdb")
    if not os.path.exists(geoip_path):
        return {}

    try:
        with geoip2.database.Reader(geoip_path) as reader:
            response = reader.city(ip_address)
    except geoip2.errors.AddressNotFoundError:
        return {}

    return {
        "country": response.country.name,
        "region": response.subdivisions.most_specific.name if response.subdivisions else None,
        "city": response.city.name,
    }
