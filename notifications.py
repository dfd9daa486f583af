"""
Outgoing email for the lawn roster: assistance requests, coverage requests
and confirmation reminders. Sending failures are logged and reported to the
caller as False; they never raise.
"""
from datetime import datetime, timedelta
from urllib.parse import quote, urlencode

from flask import current_app
from flask_mail import Mail, Message
from icalendar import Alarm, Calendar, Event

from date_window import format_long, format_range, parse_date_string, session_window

mail = Mail()

_TIME_FORMATS = ("%I:%M %p", "%I:%M%p", "%I %p", "%H:%M")


def parse_arrival_time(value):
    """Best-effort parse of a free-text arrival time such as '10:30 AM'."""
    text = (value or "").strip().upper()
    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def send_email(recipients, subject, body, html=None, ical_attachment=None, ical_filename=None):
    """Send an email using Flask-Mail with optional iCal attachment."""
    if isinstance(recipients, str):
        recipients = [recipients]
    recipients = [r for r in recipients if r]

    redirect_to = current_app.config.get("MAIL_TEST_RECIPIENT")
    if redirect_to:
        recipients = [redirect_to]
    if not recipients:
        current_app.logger.info(f"Email '{subject}' skipped: no recipients")
        return False

    msg = Message(subject, recipients=recipients, body=body, html=html)
    if ical_attachment and ical_filename:
        msg.attach(ical_filename, "text/calendar", ical_attachment)

    try:
        mail.send(msg)
        current_app.logger.info(f"Email '{subject}' sent to {len(recipients)} recipient(s)")
        return True
    except Exception as e:
        current_app.logger.error(f"Email send failed for '{subject}': {e}")
        return False


# ==========================
# CALENDAR ATTACHMENTS
# ==========================

def _new_calendar(method=None):
    cal = Calendar()
    cal.add('prodid', '-//Lawn Roster//Mowing Sessions//EN')
    cal.add('version', '2.0')
    if method:
        cal.add('method', method)
    return cal


def session_event(session, user=None):
    """One all-day event spanning the session's three-day window."""
    window = session_window(session.date)
    start, _, end = window.as_dates()
    location = current_app.config.get("SESSION_LOCATION")

    event = Event()
    event.add('summary', f"Lawn mowing: {user.name}" if user else "Lawn mowing (unassigned)")
    event.add('dtstart', start)
    # DTEND is exclusive for all-day events
    event.add('dtend', end + timedelta(days=1))
    event.add('location', location)
    event.add('description', (
        f"Primary date: {format_long(window.primary)}\n"
        f"Come any time {format_range(window.before, window.after)}.\n"
        f"Duration: {current_app.config.get('SESSION_DURATION')}"
    ))
    event.add('uid', f"session-{session.id}@lawnroster")
    return event


def build_session_ical(session, user=None):
    cal = _new_calendar(method='PUBLISH')
    cal.add_component(session_event(session, user))
    return cal.to_ical()


def build_sessions_feed(sessions, users_by_id):
    cal = _new_calendar()
    cal.add('x-wr-calname', 'Lawn Mowing Roster')
    for s in sessions:
        cal.add_component(session_event(s, users_by_id.get(s.user_id)))
    return cal.to_ical()


def _assistance_times(arrival_date, arrival_time):
    """Start/end for the assistance visit; all-day when the time is unreadable."""
    day = parse_date_string(arrival_date)
    parsed = parse_arrival_time(arrival_time)
    if parsed is None:
        return day, day + timedelta(days=1)
    start = datetime.combine(day, parsed)
    return start, start + timedelta(hours=2)


def build_assistance_ical(user, request):
    start, end = _assistance_times(request.arrival_date, request.arrival_time)
    event = Event()
    event.add('summary', f"Lawn mowing assistance with {user.name}")
    event.add('dtstart', start)
    event.add('dtend', end)
    event.add('location', current_app.config.get("SESSION_LOCATION"))
    event.add('description', f"{user.name} needs help getting started with the lawn mower.")

    alarm = Alarm()
    alarm.add('action', 'DISPLAY')
    alarm.add('description', f"Lawn mowing assistance with {user.name} tomorrow")
    alarm.add('trigger', timedelta(hours=-24))
    event.add_component(alarm)

    cal = _new_calendar(method='REQUEST')
    cal.add_component(event)
    return cal.to_ical()


def google_calendar_link(title, start, end, details, location):
    if isinstance(start, datetime):
        dates = f"{start.strftime('%Y%m%dT%H%M%S')}/{end.strftime('%Y%m%dT%H%M%S')}"
    else:
        dates = f"{start.strftime('%Y%m%d')}/{end.strftime('%Y%m%d')}"
    query = urlencode({
        "action": "TEMPLATE",
        "text": title,
        "dates": dates,
        "details": details,
        "location": location,
    }, quote_via=quote)
    return f"https://calendar.google.com/calendar/render?{query}"


# ==========================
# NOTIFICATIONS
# ==========================

def send_assistance_request(session, user, request):
    """Tell the roster organiser that an assignee wants help on arrival."""
    location = current_app.config.get("SESSION_LOCATION")
    primary_long = format_long(request.primary_date)
    arrival_long = format_long(request.arrival_date)
    start, end = _assistance_times(request.arrival_date, request.arrival_time)
    link = google_calendar_link(
        f"Lawn Mowing Assistance with {user.name}",
        start,
        end,
        f"{user.name} needs help with lawn mowing session.\n\n"
        f"Assistance requested for: {arrival_long} at {request.arrival_time}",
        location,
    )

    subject = f"Assistance Needed: Lawn Mowing Session with {user.name}"
    body = f"""{user.name} ({user.email}) needs your assistance for their lawn mowing session.

Session Details:
Primary Date: {primary_long}
Arrival Date: {arrival_long}
Arrival Time: {request.arrival_time}
Location: {location}

Add to Google Calendar: {link}
"""
    html = f"""
<h2>Assistance Needed for Lawn Mowing Session</h2>
<p><strong>{user.name}</strong> ({user.email}) needs your assistance for their lawn mowing session.</p>
<h3>Session Details:</h3>
<ul>
  <li><strong>Primary Date:</strong> {primary_long}</li>
  <li><strong>Arrival Date:</strong> {arrival_long}</li>
  <li><strong>Arrival Time:</strong> {request.arrival_time}</li>
  <li><strong>Location:</strong> {location}</li>
</ul>
<p><a href="{link}">Add to Google Calendar</a></p>
"""
    return send_email(
        current_app.config.get("ASSISTANCE_EMAIL"),
        subject,
        body,
        html=html,
        ical_attachment=build_assistance_ical(user, request),
        ical_filename="assistance.ics",
    )


def send_coverage_request(session, requester, recipients):
    """Ask everyone in ``recipients`` to pick up a session."""
    if not recipients:
        return False
    window = session_window(session.date)
    formatted_date = format_long(window.primary)
    formatted_range = format_range(window.before, window.after)
    location = current_app.config.get("SESSION_LOCATION")
    duration = current_app.config.get("SESSION_DURATION")
    link = f"{current_app.config.get('BASE_URL', '').rstrip('/')}/?session={session.id}"

    subject = f"Coverage Needed: Lawn Mowing Session on {formatted_date}"
    body = f"""Hi Team,

{requester.name} ({requester.email}) needs coverage for the lawn mowing session.

Session Details:
Date: {formatted_date}
Date Range: {formatted_range}
Location: {location}
Duration: {duration}

Please use the link below to view and assign yourself to this session:
{link}

Thank you!
"""
    html = f"""
<h2>Coverage Needed for Lawn Mowing Session</h2>
<p>Hi Team,</p>
<p><strong>{requester.name}</strong> ({requester.email}) needs coverage for the lawn mowing session.</p>
<h3>Session Details:</h3>
<ul>
  <li><strong>Date:</strong> {formatted_date}</li>
  <li><strong>Date Range:</strong> {formatted_range}</li>
  <li><strong>Location:</strong> {location}</li>
  <li><strong>Duration:</strong> {duration}</li>
</ul>
<p><a href="{link}">View &amp; Assign Session</a></p>
<p>Thank you!</p>
"""
    return send_email([u.email for u in recipients], subject, body, html=html)


def send_unconfirmed_reminder(session, user):
    window = session_window(session.date)
    subject = f"Reminder: please confirm your lawn mowing session ({format_range(window.before, window.after)})"
    body = f"""Hello {user.name},

You are rostered for the lawn mowing session on {format_long(window.primary)}.
You can come any time {format_range(window.before, window.after)}.

Please confirm your session details (and let us know if you need help getting started):
{current_app.config.get('BASE_URL', '').rstrip('/')}/?session={session.id}

Thank you!
"""
    return send_email(
        user.email,
        subject,
        body,
        ical_attachment=build_session_ical(session, user),
        ical_filename="lawn-mowing.ics",
    )


def send_open_sessions_digest(sessions, volunteers):
    """Weekly nudge listing sessions that still need someone."""
    if not sessions or not volunteers:
        return False
    lines = []
    for s in sessions:
        window = session_window(s.date)
        lines.append(f"- {format_long(window.primary)} (any time {format_range(window.before, window.after)})")
    link = current_app.config.get('BASE_URL', '').rstrip('/')

    subject = f"{len(sessions)} lawn mowing session(s) still need a volunteer"
    body = f"""Hi Team,

The following lawn mowing sessions are still open:

{chr(10).join(lines)}

If you can take one, assign yourself here:
{link}

Thank you!
"""
    return send_email([u.email for u in volunteers], subject, body)
