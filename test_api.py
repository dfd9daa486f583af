"""
End-to-end tests of the roster JSON API using the Flask test client.
"""
from datetime import date, timedelta

import app as roster_app
from app import (
    MowingSession, User, db, get_local_today, import_roster_rows,
    seed_sessions_from_schedule, send_unconfirmed_reminders,
)
from conftest import login, make_session
from date_window import format_date
from notifications import mail


def upcoming(days):
    return format_date(get_local_today() + timedelta(days=days))


# ==========================
# AUTH
# ==========================

def test_health(client):
    assert client.get('/api').get_json()["message"].startswith("Lawn Mowing Roster")


def test_volunteer_logs_in_by_name(client, volunteers):
    response = login(client, 'Alice')
    assert response.status_code == 200
    assert response.get_json()["user"]["email"] == 'alice@roster.org'
    assert client.get('/api/auth/me').get_json()["user"]["name"] == 'Alice'


def test_admin_login_requires_password(client, admin):
    assert login(client, 'Roster Admin').status_code == 401
    assert login(client, 'Roster Admin', 'wrong').status_code == 401
    response = login(client, 'Roster Admin', 'admin123')
    assert response.status_code == 200
    assert response.get_json()["user"]["isAdmin"] is True


def test_unknown_user_and_missing_name(client, volunteers):
    assert login(client, 'Nobody').status_code == 404
    response = client.post('/api/auth/login', json={})
    assert response.status_code == 400
    assert response.get_json()["error"] == "validation_error"


def test_endpoints_require_login(client, volunteers):
    assert client.get('/api/sessions').status_code == 401
    login(client, 'Alice')
    client.post('/api/auth/logout')
    assert client.get('/api/auth/me').status_code == 401


# ==========================
# USERS
# ==========================

def test_admin_manages_users(client, admin, volunteers):
    login(client, 'Roster Admin', 'admin123')
    response = client.post('/api/users', json={'name': 'Dave', 'email': 'dave@roster.org', 'phone': '021 555'})
    assert response.status_code == 201
    dave_id = response.get_json()["user"]["id"]

    assert client.post('/api/users', json={'name': 'Dave', 'email': 'other@roster.org'}).status_code == 409
    assert client.post('/api/users', json={'name': 'Erin', 'email': 'not-an-email'}).status_code == 400

    response = client.put(f'/api/users/{dave_id}', json={'name': 'David', 'email': 'dave@roster.org'})
    assert response.get_json()["user"]["name"] == 'David'
    assert client.put(f'/api/users/{dave_id}', json={'name': 'Alice', 'email': 'dave@roster.org'}).status_code == 409

    assert client.delete(f'/api/users/{dave_id}').status_code == 200
    assert client.delete(f'/api/users/{dave_id}').status_code == 404
    assert client.delete(f'/api/users/{admin.id}').status_code == 403


def test_volunteer_cannot_create_users_or_edit_others(client, volunteers):
    alice, bob, _ = volunteers
    login(client, 'Alice')
    assert client.post('/api/users', json={'name': 'Eve', 'email': 'eve@roster.org'}).status_code == 403
    assert client.put(f'/api/users/{bob.id}', json={'name': 'Bobby', 'email': 'bob@roster.org'}).status_code == 403
    response = client.put(f'/api/users/{alice.id}', json={'name': 'Alice', 'email': 'alice@new.org'})
    assert response.status_code == 200
    assert response.get_json()["user"]["email"] == 'alice@new.org'


def test_deleted_user_leaves_unresolved_session(client, admin, volunteers):
    alice_id = volunteers[0].id
    s = make_session("2025-11-08", user=volunteers[0])
    session_id = s.id
    login(client, 'Roster Admin', 'admin123')
    client.delete(f'/api/users/{alice_id}')

    session_json = client.get(f'/api/sessions/{session_id}').get_json()["session"]
    assert session_json["userId"] == alice_id
    assert session_json["userResolved"] is False

    days = client.get('/api/calendar?year=2025&month=11').get_json()["days"]
    cell = next(d for d in days if d["date"] == "2025-11-08")
    assert cell["label"] == "Unassigned"
    assert cell["userResolved"] is False


# ==========================
# SESSIONS
# ==========================

def test_admin_creates_sessions(client, admin):
    login(client, 'Roster Admin', 'admin123')
    response = client.post('/api/sessions', json={'date': '2025-11-08'})
    assert response.status_code == 201
    created = response.get_json()["session"]
    assert created["status"] == "unassigned"
    assert created["window"] == {"before": "2025-11-07", "primary": "2025-11-08", "after": "2025-11-09"}

    assert client.post('/api/sessions', json={'date': '2025-11-08'}).status_code == 409
    assert client.post('/api/sessions', json={'date': '2025-13-01'}).status_code == 400
    assert client.post('/api/sessions', json={}).status_code == 400

    assert client.delete(f'/api/sessions/{created["id"]}').status_code == 200
    assert client.get(f'/api/sessions/{created["id"]}').status_code == 404


def test_sessions_at_edge_of_date_range_are_rejected(client, admin):
    login(client, 'Roster Admin', 'admin123')
    for value in ("9999-12-31", "0001-01-01"):
        response = client.post('/api/sessions', json={'date': value})
        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_date"

    assert client.get('/api/sessions').get_json()["sessions"] == []
    assert client.get('/api/calendar?year=2025&month=11').status_code == 200


def test_assign_requires_integer_user_id(client, admin, volunteers):
    s = make_session("2025-11-08")
    login(client, 'Roster Admin', 'admin123')
    for bad in (1.5, True, str(volunteers[0].id)):
        response = client.put(f'/api/sessions/{s.id}', json={'userId': bad})
        assert response.status_code == 400
    assert client.put(f'/api/sessions/{s.id}', json={}).status_code == 400
    assert client.get(f'/api/sessions/{s.id}').get_json()["session"]["userId"] is None


def test_volunteer_claims_and_confirms_open_session(client, volunteers):
    alice, bob, _ = volunteers
    s = make_session("2025-11-08")

    login(client, 'Alice')
    response = client.put(f'/api/sessions/{s.id}', json={'userId': alice.id})
    assert response.status_code == 200
    assert response.get_json()["session"]["status"] == "assigned"

    with mail.record_messages() as outbox:
        response = client.put(f'/api/sessions/{s.id}/confirm', json={'needsAssistance': False})
    assert response.status_code == 200
    body = response.get_json()
    assert body["session"]["status"] == "confirmed"
    assert body["emailSent"] is None
    assert outbox == []

    assert client.put(f'/api/sessions/{s.id}/confirm', json={}).status_code == 409

    login(client, 'Bob')
    assert client.put(f'/api/sessions/{s.id}', json={'userId': bob.id}).status_code == 403
    assert client.put(f'/api/sessions/{s.id}/confirm', json={}).status_code == 403


def test_confirm_with_assistance_sends_one_email(client, volunteers):
    alice = volunteers[0]
    s = make_session("2025-11-08", user=alice)
    login(client, 'Alice')

    with mail.record_messages() as outbox:
        response = client.put(f'/api/sessions/{s.id}/confirm', json={
            'needsAssistance': True,
            'arrivalDay': 'before',
            'arrivalTime': '10:30 AM',
        })
    assert response.status_code == 200
    body = response.get_json()
    assert body["emailSent"] is True
    assert body["session"]["arrivalDay"] == "before"
    assert body["session"]["needsAssistance"] is True

    assert len(outbox) == 1
    message = outbox[0]
    assert message.recipients == ['organiser@roster.org']
    assert 'Alice' in message.subject
    assert 'Friday, November 7, 2025' in message.body
    assert 'calendar.google.com' in message.body
    assert message.attachments[0].filename == 'assistance.ics'


def test_assistance_without_arrival_time_is_rejected(client, volunteers):
    s = make_session("2025-11-08", user=volunteers[0])
    login(client, 'Alice')
    with mail.record_messages() as outbox:
        response = client.put(f'/api/sessions/{s.id}/confirm', json={'needsAssistance': True, 'arrivalDay': 'after'})
    assert response.status_code == 400
    assert outbox == []
    assert client.get(f'/api/sessions/{s.id}').get_json()["session"]["status"] == "assigned"

    bad_day = client.put(f'/api/sessions/{s.id}/confirm', json={
        'needsAssistance': True, 'arrivalDay': 'monday', 'arrivalTime': '9am',
    })
    assert bad_day.status_code == 400


def test_admin_reassigns_and_resets_confirmation(client, admin, volunteers):
    alice, bob, _ = volunteers
    s = make_session("2025-11-08", user=alice, confirmed=True)
    login(client, 'Roster Admin', 'admin123')

    same = client.put(f'/api/sessions/{s.id}', json={'userId': alice.id}).get_json()["session"]
    assert same["status"] == "confirmed"

    moved = client.put(f'/api/sessions/{s.id}', json={'userId': bob.id}).get_json()["session"]
    assert moved["userId"] == bob.id
    assert moved["confirmed"] is False

    assert client.put(f'/api/sessions/{s.id}', json={'userId': 9999}).status_code == 404
    cleared = client.put(f'/api/sessions/{s.id}', json={'userId': None}).get_json()["session"]
    assert cleared["status"] == "unassigned"


def test_withdraw(client, admin, volunteers):
    alice = volunteers[0]
    s = make_session("2025-11-08", user=alice, confirmed=True)
    login(client, 'Alice')
    response = client.put(f'/api/sessions/{s.id}/withdraw')
    assert response.status_code == 200
    assert response.get_json()["session"]["userId"] is None
    assert client.put(f'/api/sessions/{s.id}/withdraw').status_code == 403

    login(client, 'Roster Admin', 'admin123')
    assert client.put(f'/api/sessions/{s.id}/withdraw').status_code == 409


def test_request_coverage_emails_other_volunteers(client, admin, volunteers):
    alice = volunteers[0]
    s = make_session("2025-11-08", user=alice)
    login(client, 'Alice')

    with mail.record_messages() as outbox:
        response = client.post(f'/api/sessions/{s.id}/request-coverage')
    assert response.status_code == 200
    body = response.get_json()
    assert body["recipients"] == ['Bob', 'Carol']
    assert body["emailSent"] is True

    assert len(outbox) == 1
    assert sorted(outbox[0].recipients) == ['bob@roster.org', 'carol@roster.org']
    assert f'?session={s.id}' in outbox[0].body
    assert 'Fri, Nov 7 - Sun, Nov 9, 2025' in outbox[0].body


def test_request_coverage_by_another_volunteer_includes_them(client, admin, volunteers):
    s = make_session("2025-11-08", user=volunteers[0])
    login(client, 'Bob')

    with mail.record_messages() as outbox:
        response = client.post(f'/api/sessions/{s.id}/request-coverage')
    assert response.get_json()["recipients"] == ['Bob', 'Carol']
    assert sorted(outbox[0].recipients) == ['bob@roster.org', 'carol@roster.org']


def test_request_coverage_redirects_in_testing_mode(app, client, volunteers):
    s = make_session("2025-11-08", user=volunteers[0])
    login(client, 'Alice')
    app.config['MAIL_TEST_RECIPIENT'] = 'tester@roster.org'
    try:
        with mail.record_messages() as outbox:
            response = client.post(f'/api/sessions/{s.id}/request-coverage')
    finally:
        app.config['MAIL_TEST_RECIPIENT'] = None
    assert response.get_json()["message"] == "Email sent to testing account"
    assert outbox[0].recipients == ['tester@roster.org']


def test_list_sessions_by_status(client, volunteers):
    alice = volunteers[0]
    make_session("2025-11-08")
    make_session("2025-11-15", user=alice)
    make_session("2025-11-22", user=alice, confirmed=True)
    login(client, 'Bob')

    all_dates = [s["date"] for s in client.get('/api/sessions').get_json()["sessions"]]
    assert all_dates == ["2025-11-08", "2025-11-15", "2025-11-22"]
    assigned = client.get('/api/sessions?status=assigned').get_json()["sessions"]
    assert [s["date"] for s in assigned] == ["2025-11-15"]
    assert client.get('/api/sessions?status=pending').status_code == 400


def test_my_sessions_lists_upcoming_only(client, volunteers):
    alice, bob, _ = volunteers
    make_session(upcoming(-14), user=alice)
    make_session(upcoming(7), user=alice)
    make_session(upcoming(14), user=bob)
    login(client, 'Alice')
    sessions = client.get('/api/my-sessions').get_json()["sessions"]
    assert [s["date"] for s in sessions] == [upcoming(7)]


# ==========================
# CALENDAR / MATCH / ICAL
# ==========================

def test_calendar_month_grid(client, volunteers):
    make_session("2025-11-08", user=volunteers[0])
    login(client, 'Alice')
    body = client.get('/api/calendar?year=2025&month=11').get_json()
    assert body["monthName"] == "November"
    assert body["prev"] == {"year": 2025, "month": 10}
    assert body["next"] == {"year": 2025, "month": 12}

    days = body["days"]
    assert len(days) == 42
    assert days[0]["date"] == "2025-10-26"
    by_date = {d["date"]: d for d in days}
    assert by_date["2025-11-07"]["position"] == "start"
    assert by_date["2025-11-08"]["label"] == "Alice"
    assert by_date["2025-11-08"]["isPrimary"] is True
    assert by_date["2025-11-09"]["position"] == "end"
    assert all(d["isToday"] is False for d in days)


def test_calendar_rejects_bad_month(client, volunteers):
    login(client, 'Alice')
    assert client.get('/api/calendar?year=9999&month=12').status_code == 400
    assert client.get('/api/calendar?year=1&month=1').status_code == 400
    assert client.get('/api/calendar?year=2025&month=13').status_code == 400
    assert client.get('/api/calendar?year=abc&month=1').status_code == 400


def test_match_endpoint(client, volunteers):
    first = make_session("2025-11-08")
    second = make_session("2025-11-10")
    login(client, 'Alice')

    body = client.get('/api/sessions/match?date=2025-11-09').get_json()
    assert body["match"]["session"]["id"] == first.id
    assert body["match"]["position"] == "end"
    assert body["overlappingSessionIds"] == [second.id]

    assert client.get('/api/sessions/match?date=2025-11-20').get_json()["match"] is None
    assert client.get('/api/sessions/match?date=nope').status_code == 400


def test_ical_feed(client, volunteers):
    s = make_session(upcoming(10), user=volunteers[0])
    response = client.get('/calendar.ics')
    assert response.status_code == 200
    assert response.headers['Content-Type'].startswith('text/calendar')
    text = response.get_data(as_text=True)
    assert 'BEGIN:VEVENT' in text
    assert 'Lawn mowing: Alice' in text

    single = client.get(f'/sessions/{s.id}.ics')
    assert 'BEGIN:VEVENT' in single.get_data(as_text=True)


# ==========================
# SEEDING / IMPORT / REMINDERS
# ==========================

def test_seed_sessions_from_schedule_is_idempotent(app):
    created = seed_sessions_from_schedule(weeks=4, weekday=5, start=date(2025, 11, 3))
    assert created == 4
    dates = [s.date for s in MowingSession.query.order_by(MowingSession.date)]
    assert dates == ["2025-11-08", "2025-11-15", "2025-11-22", "2025-11-29"]
    assert seed_sessions_from_schedule(weeks=4, weekday=5, start=date(2025, 11, 3)) == 0


def test_import_roster_rows(app, volunteers):
    result = import_roster_rows([
        {"Date": "2025-11-08", "Email": "Alice@roster.org", "Confirmed": "TRUE"},
        {"Date": "2025-11-15", "Email": "", "Confirmed": "FALSE"},
        {"Date": "2025-11-22", "Email": "stranger@roster.org", "Confirmed": "TRUE"},
        {"Date": "22/11/2025", "Email": "bob@roster.org", "Confirmed": "FALSE"},
    ])
    assert result["created"] == 3
    assert len(result["errors"]) == 2

    sessions = {s.date: s for s in MowingSession.query.all()}
    assert sessions["2025-11-08"].user_id == volunteers[0].id
    assert sessions["2025-11-08"].confirmed is True
    assert sessions["2025-11-22"].user_id is None
    assert sessions["2025-11-22"].confirmed is False

    again = import_roster_rows([{"Date": "2025-11-08", "Email": "", "Confirmed": ""}])
    assert again == {"created": 0, "skipped": 1, "errors": []}

    edge = import_roster_rows([{"Date": "9999-12-31", "Email": "", "Confirmed": ""}])
    assert edge["created"] == 0
    assert len(edge["errors"]) == 1
    assert MowingSession.query.filter_by(date="9999-12-31").first() is None


def test_import_roster_cli(app, volunteers, tmp_path):
    csv_path = tmp_path / "roster.csv"
    csv_path.write_text("Date,Email,Confirmed\n2025-11-08,bob@roster.org,FALSE\n")
    result = app.test_cli_runner().invoke(args=["import-roster", str(csv_path)])
    assert "Imported 1 sessions" in result.output
    assert MowingSession.query.filter_by(date="2025-11-08").one().user_id == volunteers[1].id


def test_unconfirmed_reminders(app, volunteers):
    alice, bob, _ = volunteers
    make_session("2025-11-08", user=alice)
    make_session("2025-11-09", user=bob, confirmed=True)
    make_session("2025-11-22", user=bob)
    make_session("2025-11-10")

    with mail.record_messages() as outbox:
        sent = send_unconfirmed_reminders(run_date=date(2025, 11, 5), days_ahead=3)
    assert sent == 1
    assert outbox[0].recipients == ['alice@roster.org']


def test_auto_seed_waits_for_tables(app, client, monkeypatch):
    monkeypatch.setitem(app.config, 'AUTO_SEED', True)
    monkeypatch.setattr(roster_app, '_auto_seed_done', False)

    db.drop_all()
    assert client.get('/api').status_code == 200
    assert roster_app._auto_seed_done is False

    db.create_all()
    client.get('/api')
    assert roster_app._auto_seed_done is True
    assert User.query.filter_by(is_admin=True).count() == 1
    assert MowingSession.query.count() == 12
