# Overview: Reusable precondition predicates evaluated under lock by the balance protocol.

"""
Every precondition is a callable (holder, current, proposed) -> None that
raises PreconditionFailed when the business rule does not hold.

- holder:   the locked holder row
- current:  balance read under lock
- proposed: balance that would be written

Messages are user-facing. Balance templates may use {available}, {current}
and {requested} ({available} is rendered with the formatter given); status
templates may use {status}.
"""

from __future__ import annotations

from ..time_utils import today
from .balance_service import PreconditionFailed


def _render(message: str, current: int, proposed: int, formatter) -> str:
    return message.format(
        available=formatter(current),
        current=current,
        requested=abs(current - proposed),
    )


def sufficient_balance(message: str = "Insufficient balance. Available: {available}", *, formatter=str):
    """Reject any mutation that would leave the balance below zero."""
    def check(holder, current: int, proposed: int) -> None:
        if proposed < 0:
            raise PreconditionFailed(_render(message, current, proposed, formatter))
    return check


def status_in(*statuses: str, attr: str = "status", message: str | None = None):
    def check(holder, current: int, proposed: int) -> None:
        status = getattr(holder, attr)
        if status not in statuses:
            raise PreconditionFailed((message or "Invalid status: {status}").format(status=status))
    return check


def status_not_in(*statuses: str, attr: str = "status", message: str | None = None):
    def check(holder, current: int, proposed: int) -> None:
        status = getattr(holder, attr)
        if status in statuses:
            raise PreconditionFailed((message or "Invalid status: {status}").format(status=status))
    return check


def not_expired(*, attr: str = "expiry_date", message: str = "Expired"):
    """Reject when the holder's expiry date is before today (expiry day itself is valid)."""
    def check(holder, current: int, proposed: int) -> None:
        expiry = getattr(holder, attr)
        if expiry is not None and expiry < today():
            raise PreconditionFailed(message)
    return check


def at_least(minimum: int, message: str):
    """Require the size of the change to be at least `minimum` (e.g. minimum points to redeem)."""
    def check(holder, current: int, proposed: int) -> None:
        if abs(proposed - current) < minimum:
            raise PreconditionFailed(message.format(minimum=minimum, requested=abs(proposed - current)))
    return check


def positive_delta(message: str = "Amount must be greater than 0"):
    def check(holder, current: int, proposed: int) -> None:
        if proposed <= current:
            raise PreconditionFailed(message)
    return check
