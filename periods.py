from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class AnalyticsWindow:
    slug: str
    months: Optional[int]
    label: str


WINDOWS: dict[str, AnalyticsWindow] = {
    "3months": AnalyticsWindow("3months", 3, "Last 3 months"),
    "6months": AnalyticsWindow("6months", 6, "Last 6 months"),
    "12months": AnalyticsWindow("12months", 12, "Last 12 months"),
    "all": AnalyticsWindow("all", None, "All records"),
}

DEFAULT_WINDOW = "6months"


def resolve_window(slug: Optional[str]) -> AnalyticsWindow:
    if not slug:
        return WINDOWS[DEFAULT_WINDOW]
    try:
        return WINDOWS[slug]
    except KeyError as exc:
        raise ValueError(f"Unknown analytics window: {slug}") from exc


def local_timezone() -> tzinfo:
    return ZoneInfo(get_settings().timezone)


def local_now(tz: Optional[tzinfo] = None) -> datetime:
    return datetime.now(tz or local_timezone())


def coerce_created_at(value: Union[datetime, str, None]) -> datetime:
    """Normalize a stored timestamp to an aware datetime.

    Naive values are read as UTC. Anything that cannot be parsed falls back
    to the Unix epoch so it still lands in a bucket.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return EPOCH
    else:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_local(value: Union[datetime, str, None], tz: Optional[tzinfo] = None) -> datetime:
    return coerce_created_at(value).astimezone(tz or local_timezone())


def month_key(value: Union[datetime, str, None], tz: Optional[tzinfo] = None) -> str:
    local = to_local(value, tz)
    return f"{local.year}-{local.month:02d}"


def current_month_key(now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> str:
    tz = tz or local_timezone()
    return month_key(now or local_now(tz), tz)


def is_current_month(
    value: Union[datetime, str, None],
    *,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> bool:
    tz = tz or local_timezone()
    return month_key(value, tz) == current_month_key(now, tz)


def _add_months(year: int, month: int, count: int) -> tuple[int, int]:
    month_index = (year * 12) + (month - 1) + count
    return month_index // 12, (month_index % 12) + 1


def window_cutoff(
    window: AnalyticsWindow,
    *,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> Optional[datetime]:
    if window.months is None:
        return None
    tz = tz or local_timezone()
    local = to_local(now or local_now(tz), tz)
    year, month = _add_months(local.year, local.month, -window.months)
    return datetime(year, month, 1, tzinfo=tz)
