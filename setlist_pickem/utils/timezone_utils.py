"""
Timezone utilities and show lock-time resolution.

Show dates are calendar days with no time component. Day, month and year are
always taken from the UTC representation of whatever value is passed in; the
server's local timezone is never consulted.
"""

import logging
from datetime import date, datetime, timezone

import pytz

from setlist_pickem.utils.exceptions import ConfigurationError, TimezoneResolutionError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_HOUR = 19
DEFAULT_LOCK_MINUTE = 0

# Region codes (US states, Canadian provinces, a few countries) to IANA zones
REGION_TIMEZONES = {
    # Eastern Time
    "CT": "America/New_York",
    "DE": "America/New_York",
    "FL": "America/New_York",
    "GA": "America/New_York",
    "MA": "America/New_York",
    "MD": "America/New_York",
    "ME": "America/New_York",
    "NC": "America/New_York",
    "NH": "America/New_York",
    "NJ": "America/New_York",
    "NY": "America/New_York",
    "OH": "America/New_York",
    "PA": "America/New_York",
    "RI": "America/New_York",
    "SC": "America/New_York",
    "VA": "America/New_York",
    "VT": "America/New_York",
    "WV": "America/New_York",
    "DC": "America/New_York",
    "MI": "America/Detroit",
    # Central Time
    "AL": "America/Chicago",
    "AR": "America/Chicago",
    "IA": "America/Chicago",
    "IL": "America/Chicago",
    "IN": "America/Chicago",
    "KS": "America/Chicago",
    "KY": "America/Chicago",
    "LA": "America/Chicago",
    "MN": "America/Chicago",
    "MO": "America/Chicago",
    "MS": "America/Chicago",
    "ND": "America/Chicago",
    "NE": "America/Chicago",
    "OK": "America/Chicago",
    "SD": "America/Chicago",
    "TN": "America/Chicago",
    "TX": "America/Chicago",
    "WI": "America/Chicago",
    # Mountain Time
    "AZ": "America/Phoenix",  # no DST
    "CO": "America/Denver",
    "ID": "America/Denver",
    "MT": "America/Denver",
    "NM": "America/Denver",
    "UT": "America/Denver",
    "WY": "America/Denver",
    # Pacific Time
    "CA": "America/Los_Angeles",
    "NV": "America/Los_Angeles",
    "OR": "America/Los_Angeles",
    "WA": "America/Los_Angeles",
    # Alaska / Hawaii
    "AK": "America/Anchorage",
    "HI": "America/Honolulu",
    # Canadian provinces
    "AB": "America/Edmonton",
    "BC": "America/Vancouver",
    "MB": "America/Winnipeg",
    "NB": "America/Halifax",
    "NL": "America/St_Johns",
    "NS": "America/Halifax",
    "NT": "America/Yellowknife",
    "NU": "America/Iqaluit",
    "ON": "America/Toronto",
    "PE": "America/Halifax",
    "QC": "America/Montreal",
    "SK": "America/Regina",
    "YT": "America/Whitehorse",
    # Countries
    "UK": "Europe/London",
    "ENGLAND": "Europe/London",
    "UNITED KINGDOM": "Europe/London",
    "MEXICO": "America/Mexico_City",
    "JAPAN": "Asia/Tokyo",
}

TIMEZONE_ABBREVIATIONS = {
    "America/New_York": "ET",
    "America/Detroit": "ET",
    "America/Chicago": "CT",
    "America/Denver": "MT",
    "America/Los_Angeles": "PT",
    "America/Phoenix": "MST",
    "America/Anchorage": "AKT",
    "America/Honolulu": "HST",
}


def get_utc_time():
    """Get current time in UTC"""
    return datetime.now(timezone.utc)


def normalize_show_date(value):
    """
    Reduce a stored show date to its calendar day.

    Accepts a date, a datetime (naive values are treated as UTC) or an ISO
    string such as "2024-07-19" or "2024-07-19T00:00:00.000Z".

    Raises:
        ValueError: value cannot be interpreted as a date
    """
    if value is None:
        raise ValueError("Show date is required")

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return date(value.year, value.month, value.day)

    if isinstance(value, date):
        return value

    if isinstance(value, str):
        text = value.strip()
        if "T" in text or " " in text:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                raise ValueError(f"Invalid show date: {value!r}") from None
            return normalize_show_date(parsed)
        try:
            return date.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid show date: {value!r}") from None

    raise ValueError(f"Unsupported show date type: {type(value).__name__}")


def format_show_date(value):
    """YYYY-MM-DD from UTC day components, the format the setlist feed expects"""
    return normalize_show_date(value).isoformat()


def timezone_for_region(region):
    """Map a state/province/country code to an IANA timezone, or None"""
    if not region:
        return None
    return REGION_TIMEZONES.get(region.strip().upper())


def get_timezone_abbr(tz_name):
    return TIMEZONE_ABBREVIATIONS.get(tz_name, tz_name)


def _load_timezone(name):
    if not name:
        return None
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone identifier: {name!r}")
        return None


class LockTimeResolver:
    """
    Computes the instant after which picks for a show are frozen.

    The lock is the configured local show-start time (19:00 by default) on
    the show's calendar day in the venue's timezone.
    """

    def __init__(
        self,
        lock_hour=DEFAULT_LOCK_HOUR,
        lock_minute=DEFAULT_LOCK_MINUTE,
        fallback_timezone=None,
    ):
        if not (0 <= lock_hour <= 23 and 0 <= lock_minute <= 59):
            raise ConfigurationError(
                f"Invalid show lock time {lock_hour:02d}:{lock_minute:02d}"
            )
        self.lock_hour = lock_hour
        self.lock_minute = lock_minute
        self.fallback_timezone = fallback_timezone

    @classmethod
    def from_config(cls, app_config):
        return cls(
            lock_hour=app_config.get("SHOW_LOCK_HOUR", DEFAULT_LOCK_HOUR),
            lock_minute=app_config.get("SHOW_LOCK_MINUTE", DEFAULT_LOCK_MINUTE),
            fallback_timezone=app_config.get("FALLBACK_TIMEZONE"),
        )

    def resolve_timezone(self, tz_name=None, region=None):
        """
        Pick the venue timezone: explicit identifier, then region mapping,
        then the configured fallback.

        Raises:
            TimezoneResolutionError: nothing usable was found
        """
        tz = _load_timezone(tz_name)
        if tz is not None:
            return tz

        region_tz = _load_timezone(timezone_for_region(region))
        if region_tz is not None:
            if tz_name:
                logger.info(
                    f"Timezone {tz_name!r} unusable, using {region_tz.zone} from region {region!r}"
                )
            return region_tz

        fallback = _load_timezone(self.fallback_timezone)
        if fallback is not None:
            logger.warning(
                f"No timezone for region {region!r}, using fallback {fallback.zone}"
            )
            return fallback

        raise TimezoneResolutionError(
            f"Cannot resolve timezone (timezone={tz_name!r}, region={region!r})"
        )

    def lock_instant(self, show_date, tz_name=None, region=None):
        """
        Lock instant for a show as an aware UTC datetime.

        Raises:
            TimezoneResolutionError: no timezone could be resolved
            ValueError: show_date is malformed
        """
        day = normalize_show_date(show_date)
        venue_tz = self.resolve_timezone(tz_name, region)

        local_lock = venue_tz.localize(
            datetime(day.year, day.month, day.day, self.lock_hour, self.lock_minute)
        )
        return local_lock.astimezone(pytz.UTC)

    def try_lock_instant(self, show_date, tz_name=None, region=None):
        """Like lock_instant, but logs and returns None when undeterminable"""
        try:
            return self.lock_instant(show_date, tz_name, region)
        except Exception as e:
            logger.warning(
                f"Could not determine lock time for show on {show_date!r}: {e}"
            )
            return None

    def is_locked(self, show_date, tz_name=None, region=None, now=None):
        """
        True once the lock instant has passed.

        Fails closed to "not locked" when the lock time cannot be determined,
        so a resolver problem never freezes picks early.
        """
        lock_at = self.try_lock_instant(show_date, tz_name, region)
        if lock_at is None:
            return False

        now = now or get_utc_time()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now >= lock_at

    def lock_instant_for_show(self, show):
        return self.try_lock_instant(show.show_date, show.timezone, show.state)

    def is_show_locked(self, show, now=None):
        return self.is_locked(show.show_date, show.timezone, show.state, now=now)


def get_lock_resolver():
    """Resolver built from the current app's configuration"""
    from flask import current_app

    return LockTimeResolver.from_config(current_app.config)


def format_lock_time(lock_instant, tz_name, format_str="%a %m/%d at %I:%M %p"):
    """Format a lock instant in the venue's timezone"""
    if lock_instant is None:
        return "TBD"

    venue_tz = _load_timezone(tz_name) or pytz.UTC
    local_time = lock_instant.astimezone(venue_tz)
    return f"{local_time.strftime(format_str)} {get_timezone_abbr(venue_tz.zone)}"
