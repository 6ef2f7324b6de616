"""Email bodies for escalation, holiday-plan submission and leave decisions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from html import escape

from backend.common.constants import DATE_FORMAT
from backend.config import settings


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def _fmt(d: date) -> str:
    return d.strftime(DATE_FORMAT)


def _days(value: Decimal) -> str:
    return f"{value.normalize():f}" if isinstance(value, Decimal) else str(value)


def _wrap(title: str, paragraphs: list[str], link: str) -> str:
    body = "".join(f"<p>{escape(p)}</p>" for p in paragraphs)
    url = f"{settings.APP_BASE_URL.rstrip('/')}{link}"
    return (
        f"<html><body><h2>{escape(title)}</h2>{body}"
        f'<p><a href="{escape(url)}">Open in {escape(settings.COMPANY_NAME)}</a></p>'
        f"</body></html>"
    )


def escalation_email(
    *,
    employee_name: str,
    leave_type: str,
    start_date: date,
    end_date: date,
    days: Decimal,
    escalated_from_name: str,
    escalated_to_name: str,
    escalation_reason: str,
    link: str,
) -> RenderedEmail:
    subject = f"[{settings.COMPANY_NAME}] Leave request from {employee_name} escalated to you"
    lines = [
        f"Dear {escalated_to_name},",
        f"The {leave_type} request from {employee_name} "
        f"({_fmt(start_date)} to {_fmt(end_date)}, {_days(days)} days) "
        f"was waiting on {escalated_from_name} and has been escalated to you.",
        f"Reason: {escalation_reason}",
    ]
    return RenderedEmail(subject, _wrap("Leave request escalated", lines, link), "\n\n".join(lines))


def holiday_plan_submission_email(
    *,
    employee_name: str,
    manager_name: str,
    year: int,
    total_days: int,
    submission_date: date,
    link: str,
) -> RenderedEmail:
    subject = f"[{settings.COMPANY_NAME}] {employee_name} submitted a {year} holiday plan"
    lines = [
        f"Dear {manager_name},",
        f"{employee_name} submitted their holiday plan for {year} on "
        f"{_fmt(submission_date)} with {total_days} planned days.",
    ]
    return RenderedEmail(subject, _wrap("Holiday plan submitted", lines, link), "\n\n".join(lines))


def leave_decision_email(
    *,
    employee_name: str,
    leave_type: str,
    start_date: date,
    end_date: date,
    decision: str,
    comments: str | None,
    link: str,
) -> RenderedEmail:
    subject = f"[{settings.COMPANY_NAME}] Your leave request was {decision}"
    lines = [
        f"Dear {employee_name},",
        f"Your {leave_type} request for {_fmt(start_date)} to {_fmt(end_date)} was {decision}.",
    ]
    if comments:
        lines.append(f"Comments: {comments}")
    return RenderedEmail(subject, _wrap(f"Leave request {decision}", lines, link), "\n\n".join(lines))
