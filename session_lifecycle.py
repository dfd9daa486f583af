"""
Assignment state machine for mowing sessions.

    unassigned --assign--> assigned --confirm--> confirmed
         ^                    |                      |
         +------withdraw------+-------withdraw-------+

Transitions only change attributes on the session object; the caller owns
committing them and sending any notifications.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from date_window import ARRIVAL_DAYS, session_window


class SessionState(str, Enum):
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    CONFIRMED = "confirmed"


class LifecycleError(Exception):
    """Base class for rejected session transitions."""


class InvalidTransition(LifecycleError):
    pass


class ValidationError(LifecycleError):
    pass


@dataclass(frozen=True)
class AssistanceRequest:
    primary_date: str
    arrival_date: str
    arrival_day: str
    arrival_time: str


def session_state(session) -> SessionState:
    if not session.user_id:
        return SessionState.UNASSIGNED
    if session.confirmed:
        return SessionState.CONFIRMED
    return SessionState.ASSIGNED


def _clear_confirmation(session) -> None:
    session.confirmed = False
    session.arrival_day = None
    session.arrival_time = None
    session.needs_assistance = False


def assign(session, user_id) -> SessionState:
    """Put ``user_id`` on the session, replacing any current assignee.

    A new assignee starts unconfirmed. Re-assigning the same user leaves the
    session untouched, and ``None`` is treated as a withdrawal.
    """
    if user_id is None:
        return withdraw(session)
    if session.user_id == user_id:
        return session_state(session)
    session.user_id = user_id
    _clear_confirmation(session)
    return SessionState.ASSIGNED


def confirm(session, needs_assistance: bool, arrival_day: Optional[str] = None,
            arrival_time: Optional[str] = None) -> Optional[AssistanceRequest]:
    """Confirm an assigned session.

    Returns the assistance details to notify about, or None when no help was
    requested.
    """
    state = session_state(session)
    if state is not SessionState.ASSIGNED:
        raise InvalidTransition(f"Cannot confirm a session that is {state.value}")

    request = None
    if needs_assistance:
        arrival_time = (arrival_time or "").strip()
        if not arrival_time:
            raise ValidationError("Arrival time is required when assistance is requested")
        arrival_day = arrival_day or "primary"
        if arrival_day not in ARRIVAL_DAYS:
            raise ValidationError(f"Arrival day must be one of: {', '.join(ARRIVAL_DAYS)}")
        window = session_window(session.date)
        request = AssistanceRequest(
            primary_date=window.primary,
            arrival_date=window.date_for(arrival_day),
            arrival_day=arrival_day,
            arrival_time=arrival_time,
        )
    else:
        arrival_day = None
        arrival_time = None

    session.confirmed = True
    session.needs_assistance = bool(needs_assistance)
    session.arrival_day = arrival_day
    session.arrival_time = arrival_time
    return request


def withdraw(session) -> SessionState:
    state = session_state(session)
    if state is SessionState.UNASSIGNED:
        raise InvalidTransition("Session is not assigned")
    session.user_id = None
    _clear_confirmation(session)
    return SessionState.UNASSIGNED
