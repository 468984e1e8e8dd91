from datetime import datetime, tzinfo
from typing import Optional

from analytics import AnalyticsSummary
from identity import AuthState
from periods import local_now


def report_title(auth: AuthState) -> str:
    if auth.is_admin:
        return "Analytics report (Admin - all services)"
    name = auth.user.first_name if auth.is_signed_in else None
    return f"Analytics report - {name or 'User'}"


def gather_report_data(
    summary: AnalyticsSummary,
    auth: AuthState,
    *,
    generated_at: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> dict[str, object]:
    """Context for the printable analytics report.

    The report is rebuilt from the in-memory summary on every request and is
    never stored.
    """
    generated_at = generated_at or local_now(tz)
    user = auth.user if auth.is_signed_in else None
    return {
        "title": report_title(auth),
        "is_admin": auth.is_admin,
        "user_name": (user.first_name or user.username) if user else "N/A",
        "window": summary.window,
        "generated_at": generated_at,
        "overall": summary.overall,
        "monthly": summary.monthly,
        "by_type": summary.by_type,
        "by_user": summary.by_user,
    }
