"""
Quotation lifecycle: the status state machine and the validity window.

    draft --send--> sent
    draft|sent --accept--> accepted   (terminal)
    draft|sent --reject--> rejected   (terminal)

"send" on a sent quotation is a no-op unless QUOTATION_STRICT_SEND is set,
in which case it is refused like any other invalid transition.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

import structlog

from quoteflow.config import settings
from quoteflow.database import utcnow
from quoteflow.errors import DocumentLockedError, InvalidTransitionError, ValidationError
from quoteflow.models.quotation import Quotation

logger = structlog.get_logger()

SEND = "send"
ACCEPT = "accept"
REJECT = "reject"
EVENTS = (SEND, ACCEPT, REJECT)

DRAFT = "draft"
SENT = "sent"
ACCEPTED = "accepted"
REJECTED = "rejected"

TERMINAL_STATUSES = frozenset({ACCEPTED, REJECTED})
EDITABLE_STATUSES = frozenset({DRAFT, SENT})

TRANSITIONS = {
    (DRAFT, SEND): SENT,
    (DRAFT, ACCEPT): ACCEPTED,
    (SENT, ACCEPT): ACCEPTED,
    (DRAFT, REJECT): REJECTED,
    (SENT, REJECT): REJECTED,
}


@dataclass(frozen=True)
class TransitionPlan:
    event: str
    from_status: str
    to_status: str
    is_noop: bool = False


def today() -> date:
    return utcnow().date()


def plan_transition(
    current_status: str, event: str, strict_send: Optional[bool] = None
) -> TransitionPlan:
    if event not in EVENTS:
        raise ValidationError(
            f"Unknown event '{event}'. Expected one of {list(EVENTS)}",
            field="event",
        )
    if strict_send is None:
        strict_send = settings.QUOTATION_STRICT_SEND

    if current_status in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Cannot {event} a quotation that is already {current_status}"
        )

    if current_status == SENT and event == SEND:
        if strict_send:
            raise InvalidTransitionError("Quotation is already marked as sent")
        return TransitionPlan(event, SENT, SENT, is_noop=True)

    target = TRANSITIONS.get((current_status, event))
    if target is None:
        raise InvalidTransitionError(
            f"Cannot {event} a quotation in '{current_status}' status"
        )
    return TransitionPlan(event, current_status, target)


def transition_values(
    plan: TransitionPlan,
    actor_id: Optional[str],
    notes: Optional[str] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Column values written alongside the new status."""
    now = now or utcnow()
    values = {"status": plan.to_status}
    if plan.event == SEND:
        values["sent_at"] = now
    elif plan.event == ACCEPT:
        values.update(
            accepted_at=now,
            accepted_by=actor_id,
            accepted_notes=notes,
        )
    elif plan.event == REJECT:
        values.update(
            rejected_at=now,
            rejected_by=actor_id,
            rejection_reason=reason,
            rejection_notes=notes,
        )
    return values


def ensure_editable(quotation: Quotation) -> None:
    if quotation.status not in EDITABLE_STATUSES:
        raise DocumentLockedError(
            f"Cannot modify a {quotation.status} quotation"
        )


def resolve_dates(
    issue_date: Optional[date] = None,
    expiry_date: Optional[date] = None,
    validity_days: Optional[int] = None,
) -> tuple[date, date]:
    """Default missing dates and enforce expiry_date >= issue_date."""
    if validity_days is None:
        validity_days = settings.QUOTATION_VALIDITY_DAYS
    issue = issue_date or today()
    expiry = expiry_date or issue + timedelta(days=validity_days)
    validate_dates(issue, expiry)
    return issue, expiry


def validate_dates(issue_date: date, expiry_date: date) -> None:
    if expiry_date < issue_date:
        raise ValidationError(
            "expiry_date must be on or after issue_date", field="expiry_date"
        )


def is_expired(quotation: Quotation, on: Optional[date] = None) -> bool:
    # The expiry date itself is still a valid day
    if quotation.expiry_date is None:
        return False
    return (on or today()) > quotation.expiry_date
