"""
Time Bucketing Module

Resolves dashboard range keywords into concrete half-open intervals and the
bucket plan used to group events for time-series display.

Buckets:
- Today: hourly, local midnight to next local midnight
- Week: daily, Monday 00:00 to the following Monday, labelled Mon..Sun
- Month: weekly blocks anchored on day 1 (1-7, 8-14, 15-21, 22-28, 29-end)
- Year: monthly, Jan 1 to the next Jan 1
- Custom: caller-supplied [start, end), explicit or auto-selected granularity

All boundaries are computed in the caller's timezone so DST transitions never
shift a bucket onto the wrong calendar day.
"""

from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from .errors import InvalidRangeError
from .models import Granularity, RangeKeyword, TimeRange

logger = structlog.get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MICROSECOND = timedelta(microseconds=1)

DAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
                "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

FIXED_GRANULARITY = {
    RangeKeyword.TODAY: Granularity.HOURLY,
    RangeKeyword.WEEK: Granularity.DAILY,
    RangeKeyword.MONTH: Granularity.WEEKLY,
    RangeKeyword.YEAR: Granularity.MONTHLY,
}

# Custom ranges pick the finest granularity that keeps the chart readable
AUTO_HOURLY_MAX = timedelta(days=2)
AUTO_DAILY_MAX = timedelta(days=92)


def to_epoch_micros(ts: datetime) -> int:
    """Exact integer microseconds since the Unix epoch for an aware datetime"""
    return (ts - EPOCH) // ONE_MICROSECOND


@dataclass(frozen=True)
class BucketPlan:
    """
    Resolved interval and bucket boundaries for one query.

    ``boundaries`` holds ``bucket_count + 1`` aware datetimes in the query
    timezone; bucket ``i`` is ``[boundaries[i], boundaries[i + 1])``.

    Example:
        plan = resolve("Week", datetime.now(tz), "Europe/Paris")
        idx = plan.index_of(event.timestamp)
    """
    keyword: RangeKeyword
    granularity: Granularity
    timezone: str
    boundaries: Tuple[datetime, ...]
    labels: Tuple[str, ...]
    _edges: Tuple[int, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if len(self.boundaries) != len(self.labels) + 1:
            raise ValueError("boundaries must have exactly one more entry than labels")
        object.__setattr__(self, "_edges", tuple(to_epoch_micros(b) for b in self.boundaries))

    @property
    def start(self) -> datetime:
        return self.boundaries[0]

    @property
    def end(self) -> datetime:
        return self.boundaries[-1]

    @property
    def bucket_count(self) -> int:
        return len(self.labels)

    @property
    def start_micros(self) -> int:
        return self._edges[0]

    @property
    def end_micros(self) -> int:
        return self._edges[-1]

    def contains(self, ts: datetime) -> bool:
        """Half-open membership test: start inclusive, end exclusive"""
        micros = to_epoch_micros(ts)
        return self._edges[0] <= micros < self._edges[-1]

    def index_of(self, ts: Union[datetime, int]) -> int:
        """
        Bucket index for an instant.

        Returns -1 before the interval and ``bucket_count`` at or after its end.
        Accepts an aware datetime or epoch microseconds.
        """
        micros = ts if isinstance(ts, int) else to_epoch_micros(ts)
        if micros >= self._edges[-1]:
            return self.bucket_count
        return bisect_right(self._edges, micros) - 1

    def buckets(self) -> List[Tuple[datetime, datetime, str]]:
        return [
            (self.boundaries[i], self.boundaries[i + 1], self.labels[i])
            for i in range(self.bucket_count)
        ]

    @property
    def cache_key(self) -> str:
        return (
            f"{self.keyword.value}:{self.granularity.value}:{self.timezone}:"
            f"{self.start_micros}:{self.end_micros}"
        )


# =============================================================================
# HELPERS
# =============================================================================

def get_zone(name: str) -> ZoneInfo:
    """Look up an IANA timezone, mapping lookup failures to InvalidRangeError"""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidRangeError(f"Unknown timezone: {name}", detail={"timezone": name}, cause=e)


def localize(ts: datetime, tz: ZoneInfo) -> datetime:
    """Naive datetimes are wall time in ``tz``; aware ones are converted"""
    if ts.tzinfo is None or ts.utcoffset() is None:
        return ts.replace(tzinfo=tz)
    return ts.astimezone(tz)


def local_midnight(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def add_months(day: date, months: int) -> date:
    """Shift a date by whole months, clipping the day to the target month"""
    index = day.month - 1 + months
    year = day.year + index // 12
    month = index % 12 + 1
    last_day = _days_in_month(year, month)
    return day.replace(year=year, month=month, day=min(day.day, last_day))


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        return 31
    return (date(year, month + 1, 1) - date(year, month, 1)).days


def _hourly_boundaries(start: datetime, end: datetime, tz: ZoneInfo) -> List[datetime]:
    """Hours step in absolute time so DST days yield 23 or 25 buckets"""
    boundaries = []
    cursor = start.astimezone(timezone.utc)
    while cursor < end:
        boundaries.append(cursor.astimezone(tz))
        cursor += timedelta(hours=1)
    boundaries.append(end)
    return boundaries


def _calendar_boundaries(
    start: datetime,
    end: datetime,
    tz: ZoneInfo,
    granularity: Granularity,
) -> List[datetime]:
    """Wall-clock steps from ``start``, last bucket clipped to ``end``"""
    boundaries = []
    wall = start.replace(tzinfo=None)
    step = 0
    while True:
        if granularity == Granularity.DAILY:
            candidate_wall = wall + timedelta(days=step)
        elif granularity == Granularity.WEEKLY:
            candidate_wall = wall + timedelta(weeks=step)
        else:
            shifted = add_months(wall.date(), step)
            candidate_wall = datetime.combine(shifted, wall.time())
        candidate = candidate_wall.replace(tzinfo=tz)
        if to_epoch_micros(candidate) >= to_epoch_micros(end):
            break
        boundaries.append(candidate)
        step += 1
    boundaries.append(end)
    return boundaries


def _custom_labels(boundaries: List[datetime], granularity: Granularity) -> List[str]:
    fmt = {
        Granularity.HOURLY: "%m-%d %H:%M",
        Granularity.DAILY: "%Y-%m-%d",
        Granularity.WEEKLY: "%Y-%m-%d",
        Granularity.MONTHLY: "%Y-%m",
    }[granularity]
    return [b.strftime(fmt) for b in boundaries[:-1]]


def parse_keyword(value: Union[str, RangeKeyword]) -> RangeKeyword:
    if isinstance(value, RangeKeyword):
        return value
    try:
        return RangeKeyword(str(value).strip().title())
    except ValueError as e:
        raise InvalidRangeError(f"Unknown range keyword: {value}", detail={"range": value}, cause=e)


def parse_granularity(value: Union[str, Granularity, None]) -> Optional[Granularity]:
    if value is None or isinstance(value, Granularity):
        return value
    try:
        return Granularity(str(value).strip().lower())
    except ValueError as e:
        raise InvalidRangeError(f"Unknown granularity: {value}", detail={"granularity": value}, cause=e)


# =============================================================================
# RESOLUTION
# =============================================================================

def resolve(
    keyword: Union[str, RangeKeyword],
    reference: datetime,
    tz_name: str,
    custom_range: Optional[TimeRange] = None,
    granularity: Union[str, Granularity, None] = None,
) -> BucketPlan:
    """
    Resolve a range keyword into a bucket plan.

    Args:
        keyword: Today, Week, Month, Year or Custom
        reference: Instant the calendar ranges are anchored on
        tz_name: IANA timezone all boundaries are computed in
        custom_range: Required for Custom
        granularity: Optional bucket width; only Custom may choose freely

    Returns:
        BucketPlan covering the resolved interval

    Raises:
        InvalidRangeError: Unknown keyword/timezone/granularity, missing or
            empty custom range
    """
    keyword = parse_keyword(keyword)
    requested = parse_granularity(granularity)
    tz = get_zone(tz_name)
    ref = localize(reference, tz)

    if keyword == RangeKeyword.CUSTOM:
        return _resolve_custom(custom_range, requested, tz, tz_name)

    fixed = FIXED_GRANULARITY[keyword]
    if requested is not None and requested != fixed:
        raise InvalidRangeError(
            f"{keyword.value} ranges are bucketed {fixed.value}, not {requested.value}",
            detail={"range": keyword.value, "granularity": requested.value},
        )

    today = ref.date()

    if keyword == RangeKeyword.TODAY:
        start = local_midnight(today, tz)
        end = local_midnight(today + timedelta(days=1), tz)
        boundaries = _hourly_boundaries(start, end, tz)
        labels = [b.strftime("%H:%M") for b in boundaries[:-1]]

    elif keyword == RangeKeyword.WEEK:
        monday = today - timedelta(days=today.weekday())
        boundaries = [local_midnight(monday + timedelta(days=i), tz) for i in range(8)]
        labels = list(DAY_LABELS)

    elif keyword == RangeKeyword.MONTH:
        first = today.replace(day=1)
        last_day = _days_in_month(first.year, first.month)
        starts = [day for day in (1, 8, 15, 22, 29) if day <= last_day]
        boundaries = [local_midnight(first.replace(day=d), tz) for d in starts]
        boundaries.append(local_midnight(add_months(first, 1), tz))
        labels = [
            f"{d}-{min(d + 6, last_day)}" for d in starts
        ]

    else:
        jan_first = date(today.year, 1, 1)
        boundaries = [local_midnight(add_months(jan_first, i), tz) for i in range(13)]
        labels = list(MONTH_LABELS)

    return BucketPlan(
        keyword=keyword,
        granularity=fixed,
        timezone=tz_name,
        boundaries=tuple(boundaries),
        labels=tuple(labels),
    )


def _resolve_custom(
    custom_range: Optional[TimeRange],
    requested: Optional[Granularity],
    tz: ZoneInfo,
    tz_name: str,
) -> BucketPlan:
    if custom_range is None:
        raise InvalidRangeError("Custom range requires start and end")

    start = localize(custom_range.start, tz)
    end = localize(custom_range.end, tz)
    if to_epoch_micros(start) >= to_epoch_micros(end):
        raise InvalidRangeError(
            "Range start must be before end",
            detail={"start": start.isoformat(), "end": end.isoformat()},
        )

    span = end.astimezone(timezone.utc) - start.astimezone(timezone.utc)
    if requested is None:
        if span <= AUTO_HOURLY_MAX:
            requested = Granularity.HOURLY
        elif span <= AUTO_DAILY_MAX:
            requested = Granularity.DAILY
        else:
            requested = Granularity.MONTHLY

    if requested == Granularity.HOURLY:
        boundaries = _hourly_boundaries(start, end, tz)
    else:
        boundaries = _calendar_boundaries(start, end, tz, requested)

    return BucketPlan(
        keyword=RangeKeyword.CUSTOM,
        granularity=requested,
        timezone=tz_name,
        boundaries=tuple(boundaries),
        labels=tuple(_custom_labels(boundaries, requested)),
    )


def previous_plan(plan: BucketPlan) -> BucketPlan:
    """
    Plan for the period preceding ``plan``.

    Calendar keywords map to the previous calendar period (yesterday, last
    week, last month, last year); custom ranges map to the equal-length window
    ending where ``plan`` starts.
    """
    if plan.keyword != RangeKeyword.CUSTOM:
        return resolve(plan.keyword, plan.start - ONE_MICROSECOND, plan.timezone)

    start_utc = plan.start.astimezone(timezone.utc)
    span = plan.end.astimezone(timezone.utc) - start_utc
    return resolve(
        RangeKeyword.CUSTOM,
        plan.start,
        plan.timezone,
        custom_range=TimeRange(start=start_utc - span, end=start_utc),
        granularity=plan.granularity,
    )
