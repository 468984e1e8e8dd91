"""Month-bucketed rollups over service records.

Everything here is a pure function of the records passed in. Records are read
through attribute access only (``price``, ``include_in_total``, ``created_at``,
``service_type``, ``username``), so ORM rows, ``ServiceOut`` models and test
doubles all work.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from periods import AnalyticsWindow, month_key, to_local, window_cutoff


UNTYPED_LABEL = "Untyped"
UNKNOWN_USER_LABEL = "Unknown user"

ZERO = Decimal("0")


def price_of(record) -> Decimal:
    price = getattr(record, "price", None)
    if price is None:
        return ZERO
    if isinstance(price, Decimal):
        return price
    return Decimal(str(price))


def is_counted(record) -> bool:
    # Only an explicit False excludes a record; a missing flag still counts.
    return getattr(record, "include_in_total", True) is not False


@dataclass(frozen=True)
class Rollup:
    service_count: int
    total_amount: Decimal
    authorized_amount: Decimal
    pending_amount: Decimal
    authorized_count: int
    pending_count: int

    @property
    def avg_service_value(self) -> Decimal:
        if self.service_count == 0:
            return ZERO
        return self.total_amount / self.service_count


def rollup(records: Iterable) -> Rollup:
    count = authorized_count = pending_count = 0
    total = authorized = pending = ZERO
    for record in records:
        price = price_of(record)
        count += 1
        total += price
        if is_counted(record):
            authorized += price
            authorized_count += 1
        else:
            pending += price
            pending_count += 1
    return Rollup(
        service_count=count,
        total_amount=total,
        authorized_amount=authorized,
        pending_amount=pending,
        authorized_count=authorized_count,
        pending_count=pending_count,
    )


@dataclass(frozen=True)
class MonthGroup:
    month: str
    services: tuple
    total: Decimal
    pending_total: Decimal


@dataclass(frozen=True)
class MonthlyStats:
    month: str
    service_count: int
    total_amount: Decimal
    authorized_amount: Decimal
    pending_amount: Decimal
    avg_service_value: Decimal


@dataclass(frozen=True)
class OverallStats:
    total_services: int
    authorized_services: int
    pending_services: int
    total_amount: Decimal
    authorized_amount: Decimal
    pending_amount: Decimal
    avg_service_value: Decimal


@dataclass(frozen=True)
class ServiceTypeStats:
    type: str
    count: int
    total_amount: Decimal
    percentage: float


@dataclass(frozen=True)
class UserStats:
    username: str
    service_count: int
    total_amount: Decimal
    authorized_amount: Decimal
    pending_amount: Decimal


@dataclass(frozen=True)
class AnalyticsSummary:
    window: AnalyticsWindow
    overall: OverallStats
    monthly: list[MonthlyStats]
    by_type: list[ServiceTypeStats]
    by_user: list[UserStats]


def _bucket(records: Iterable, key) -> dict[str, list]:
    buckets: dict[str, list] = {}
    for record in records:
        buckets.setdefault(key(record), []).append(record)
    return buckets


def bucket_by_month(records: Iterable, tz: Optional[tzinfo] = None) -> dict[str, list]:
    return _bucket(records, lambda r: month_key(getattr(r, "created_at", None), tz))


def group_by_month(records: Iterable, tz: Optional[tzinfo] = None) -> list[MonthGroup]:
    groups = []
    for month, items in bucket_by_month(records, tz).items():
        stats = rollup(items)
        groups.append(
            MonthGroup(
                month=month,
                services=tuple(items),
                total=stats.authorized_amount,
                pending_total=stats.pending_amount,
            )
        )
    groups.sort(key=lambda g: g.month, reverse=True)
    return groups


def monthly_stats(records: Iterable, tz: Optional[tzinfo] = None) -> list[MonthlyStats]:
    stats = []
    for month, items in bucket_by_month(records, tz).items():
        r = rollup(items)
        stats.append(
            MonthlyStats(
                month=month,
                service_count=r.service_count,
                total_amount=r.total_amount,
                authorized_amount=r.authorized_amount,
                pending_amount=r.pending_amount,
                avg_service_value=r.avg_service_value,
            )
        )
    stats.sort(key=lambda s: s.month, reverse=True)
    return stats


def overall_stats(records: Iterable) -> OverallStats:
    r = rollup(records)
    return OverallStats(
        total_services=r.service_count,
        authorized_services=r.authorized_count,
        pending_services=r.pending_count,
        total_amount=r.total_amount,
        authorized_amount=r.authorized_amount,
        pending_amount=r.pending_amount,
        avg_service_value=r.avg_service_value,
    )


def service_type_stats(records: Sequence) -> list[ServiceTypeStats]:
    total_services = len(records)
    buckets = _bucket(records, lambda r: getattr(r, "service_type", None) or UNTYPED_LABEL)
    stats = [
        ServiceTypeStats(
            type=label,
            count=len(items),
            total_amount=sum((price_of(r) for r in items), ZERO),
            percentage=(len(items) / total_services * 100) if total_services else 0.0,
        )
        for label, items in buckets.items()
    ]
    stats.sort(key=lambda s: s.total_amount, reverse=True)
    return stats


def user_stats(records: Iterable) -> list[UserStats]:
    buckets = _bucket(records, lambda r: getattr(r, "username", None) or UNKNOWN_USER_LABEL)
    stats = []
    for username, items in buckets.items():
        r = rollup(items)
        stats.append(
            UserStats(
                username=username,
                service_count=r.service_count,
                total_amount=r.total_amount,
                authorized_amount=r.authorized_amount,
                pending_amount=r.pending_amount,
            )
        )
    stats.sort(key=lambda s: s.total_amount, reverse=True)
    return stats


def filter_window(
    records: Iterable,
    window: AnalyticsWindow,
    *,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> list:
    cutoff = window_cutoff(window, now=now, tz=tz)
    if cutoff is None:
        return list(records)
    return [r for r in records if to_local(getattr(r, "created_at", None), tz) >= cutoff]


def build_summary(
    records: Iterable,
    window: AnalyticsWindow,
    *,
    include_users: bool = False,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> AnalyticsSummary:
    filtered = filter_window(records, window, now=now, tz=tz)
    return AnalyticsSummary(
        window=window,
        overall=overall_stats(filtered),
        monthly=monthly_stats(filtered, tz),
        by_type=service_type_stats(filtered),
        by_user=user_stats(filtered) if include_users else [],
    )
