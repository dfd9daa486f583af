"""
Match calendar dates to the session whose window covers them.

Sessions are any objects with ``id``, ``date``, ``user_id`` and ``confirmed``
attributes (the ``MowingSession`` model, or a plain record in tests). Nothing here
touches the database or mutates its inputs.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from date_window import DayCell, SessionWindow, parse_date_string, session_window
from session_lifecycle import session_state


class WindowPosition(str, Enum):
    START = "start"
    PRIMARY = "primary"
    END = "end"


@dataclass(frozen=True)
class SessionMatch:
    session: object
    position: WindowPosition
    window: SessionWindow

    @property
    def is_primary(self) -> bool:
        return self.position is WindowPosition.PRIMARY


def _tie_break_key(session):
    # Earliest primary date wins; ids only settle exact duplicates.
    session_id = getattr(session, "id", None)
    return (session.date, session_id is None, session_id or 0)


def overlapping_sessions(date_str: str, sessions: Iterable) -> List:
    """Every session whose window contains ``date_str``, in tie-break order."""
    parse_date_string(date_str)
    covering = [s for s in sessions if session_window(s.date).contains(date_str)]
    return sorted(covering, key=_tie_break_key)


def match_session(date_str: str, sessions: Iterable) -> Optional[SessionMatch]:
    """Find the session covering a date and where the date sits in its window.

    Returns None when no window covers the date. If windows overlap, the
    session with the earliest primary date is chosen.
    """
    covering = overlapping_sessions(date_str, sessions)
    if not covering:
        return None
    session = covering[0]
    window = session_window(session.date)
    return SessionMatch(
        session=session,
        position=WindowPosition(window.position_of(date_str)),
        window=window,
    )


def find_by_primary_date(date_str: str, sessions: Iterable):
    parse_date_string(date_str)
    candidates = sorted((s for s in sessions if s.date == date_str), key=_tie_break_key)
    return candidates[0] if candidates else None


def annotate_calendar(cells: Iterable[DayCell], sessions: Iterable, users_by_id: Dict) -> List[dict]:
    """Attach session details to each day cell of a month grid.

    Overflow cells from neighbouring months are left bare. A session whose
    user id no longer resolves to a user is still shown, labelled
    "Unassigned" with ``userResolved`` False.
    """
    sessions = list(sessions)
    annotated = []
    for cell in cells:
        entry = cell.to_dict()
        entry.update({
            "sessionId": None,
            "sessionDate": None,
            "position": None,
            "isPrimary": False,
            "status": None,
            "label": None,
            "userId": None,
            "userResolved": False,
        })
        match = match_session(cell.date, sessions) if cell.is_current_month else None
        if match:
            session = match.session
            user = users_by_id.get(session.user_id) if session.user_id else None
            entry.update({
                "sessionId": session.id,
                "sessionDate": session.date,
                "position": match.position.value,
                "isPrimary": match.is_primary,
                "status": session_state(session).value,
                "label": user.name if user else "Unassigned",
                "userId": session.user_id,
                "userResolved": user is not None,
            })
        annotated.append(entry)
    return annotated
