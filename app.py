from datetime import datetime, timedelta, timezone
from functools import wraps
import calendar
import csv
import os
import re

from flask import Flask, jsonify, make_response, request, session, abort
from flask_sqlalchemy import SQLAlchemy
from flask_caching import Cache
from flask_wtf import FlaskForm
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.datastructures import MultiDict
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash
from wtforms import BooleanField, PasswordField, StringField
from wtforms.validators import AnyOf, DataRequired, Email, Length, Optional
from dotenv import load_dotenv
import click

# Load environment variables from .env file BEFORE importing Config so it can read envs
load_dotenv()

from config import Config
from date_window import (
    ARRIVAL_DAYS, InvalidDateError, adjacent_month, calendar_days, format_date,
    is_today, local_today, parse_date_string, session_window,
)
from notifications import (
    build_session_ical, build_sessions_feed, mail, send_assistance_request,
    send_coverage_request, send_open_sessions_digest, send_unconfirmed_reminder,
)
from session_lifecycle import (
    InvalidTransition, ValidationError, session_state,
)
from session_matcher import annotate_calendar, match_session, overlapping_sessions
import session_lifecycle

app = Flask(__name__)
app.config.from_object(Config)
os.makedirs(app.instance_path, exist_ok=True)
db = SQLAlchemy(app)
mail.init_app(app)
cache = Cache(app)


@app.after_request
def after_request(response):
    # Security headers
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    if request.path.startswith('/api'):
        response.headers['Cache-Control'] = 'no-store'
    return response


def get_local_today():
    """Current date in the roster's timezone (not UTC)."""
    return local_today(app.config.get("APP_TIMEZONE", "Pacific/Auckland"))


# Default weekly schedule used when the database is first created.
# weekday: Monday=0 ... Sunday=6
STATIC_SCHEDULE = {"weekday": 5, "weeks": 12}

# ==========================
# MODELS
# ==========================

class User(db.Model):
    """
    Roster volunteers and admins.
    - is_admin = True: manages users and sessions, logs in with a password.
    - is_admin = False: volunteer, logs in by name only.
    """
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), unique=True, nullable=False, index=True)  # login key
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(40), nullable=True, default="")
    is_admin = db.Column(db.Boolean, default=False, index=True)
    password_hash = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password or "")


class MowingSession(db.Model):
    """
    One scheduled mowing slot. ``date`` is the primary date as YYYY-MM-DD;
    the assignee may come the day before, the day itself or the day after.

    ``user_id`` is deliberately not a foreign key: removing a volunteer leaves
    the reference in place and the calendar shows the slot as unresolved.
    """
    __tablename__ = "mowing_sessions"

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.String(10), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    confirmed = db.Column(db.Boolean, nullable=False, default=False)
    arrival_day = db.Column(db.String(10), nullable=True)  # before, primary, after
    arrival_time = db.Column(db.String(40), nullable=True)
    needs_assistance = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    @property
    def state(self):
        return session_state(self)

    @property
    def window(self):
        return session_window(self.date)


class AuditLog(db.Model):
    """
    Audit trail for logins and roster changes.
    """
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    action = db.Column(db.String(100), nullable=False, index=True)
    resource_type = db.Column(db.String(50), nullable=True)
    resource_id = db.Column(db.Integer, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), index=True)


# ==========================
# FORMS
# ==========================

class LoginForm(FlaskForm):
    name = StringField("Name", validators=[DataRequired(), Length(max=80)])
    password = PasswordField("Password", validators=[Optional()])


class UserForm(FlaskForm):
    name = StringField("Name", validators=[DataRequired(), Length(max=80)])
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)])
    phone = StringField("Phone", validators=[Optional(), Length(max=40)])


class SessionForm(FlaskForm):
    date = StringField("Date", validators=[DataRequired(), Length(min=10, max=10)])


class ConfirmSessionForm(FlaskForm):
    needs_assistance = BooleanField("I need help getting started")
    arrival_day = StringField("Arrival day", validators=[Optional(), AnyOf(ARRIVAL_DAYS)])
    arrival_time = StringField("Arrival time", validators=[Optional(), Length(max=40)])


_CAMEL_RE = re.compile(r'(?<!^)(?=[A-Z])')


def json_form(form_class):
    """Build a form from the JSON body; camelCase keys map onto snake_case fields."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    formdata = MultiDict()
    for key, value in payload.items():
        if value is None or isinstance(value, (dict, list)):
            continue
        if not isinstance(value, bool):
            value = str(value)
        formdata[_CAMEL_RE.sub('_', key).lower()] = value
    return form_class(formdata=formdata, meta={'csrf': False})


def form_error_response(form):
    field, errors = next(iter(form.errors.items()))
    return jsonify({
        "error": "validation_error",
        "message": f"{field}: {errors[0]}",
        "fields": form.errors,
    }), 400


# ==========================
# ERROR HANDLERS
# ==========================

@app.errorhandler(InvalidDateError)
def handle_invalid_date(e):
    return jsonify({"error": "invalid_date", "message": str(e)}), 400


@app.errorhandler(ValidationError)
def handle_validation_error(e):
    return jsonify({"error": "validation_error", "message": str(e)}), 400


@app.errorhandler(InvalidTransition)
def handle_invalid_transition(e):
    return jsonify({"error": "invalid_transition", "message": str(e)}), 409


@app.errorhandler(SQLAlchemyError)
def handle_database_error(e):
    db.session.rollback()
    app.logger.error(f"Database error on {request.path}: {e}")
    return jsonify({"error": "database_error", "message": "The roster could not be updated"}), 500


@app.errorhandler(HTTPException)
def handle_http_error(e):
    if not request.path.startswith('/api'):
        return e
    return jsonify({
        "error": (e.name or "error").lower().replace(" ", "_"),
        "message": e.description,
    }), e.code


# ==========================
# SECURITY FUNCTIONS
# ==========================

def log_audit_event(action, user_id=None, resource_type=None, resource_id=None, details=None):
    """Log security and administrative events."""
    try:
        audit_log = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            ip_address=request.environ.get('HTTP_X_FORWARDED_FOR', request.remote_addr),
            details=details
        )
        db.session.add(audit_log)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        app.logger.warning(f"Failed to log audit event {action}: {e}")


def invalidate_roster_caches():
    try:
        cache.clear()
    except Exception as cache_error:
        app.logger.warning(f"Failed to clear cache: {cache_error}")


# ==========================
# AUTH HELPERS
# ==========================

def get_current_user():
    user_id = session.get("user_id")
    if not user_id:
        return None
    return db.session.get(User, user_id)


def login_required(view_func):
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        if not get_current_user():
            return jsonify({"error": "login_required", "message": "Please log in to continue."}), 401
        return view_func(*args, **kwargs)
    return wrapper


def admin_required(view_func):
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        user = get_current_user()
        if not user:
            return jsonify({"error": "login_required", "message": "Please log in to continue."}), 401
        if not user.is_admin:
            return jsonify({"error": "admin_required", "message": "Admin access required."}), 403
        return view_func(*args, **kwargs)
    return wrapper


def can_manage_session(user, mowing_session):
    return bool(user.is_admin or (mowing_session.user_id and mowing_session.user_id == user.id))


# ==========================
# SERIALIZATION
# ==========================

def users_by_id():
    return {u.id: u for u in User.query.all()}


def serialize_user(user):
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone or "",
        "isAdmin": bool(user.is_admin),
    }


def serialize_session(s, users=None):
    if users is None:
        user = db.session.get(User, s.user_id) if s.user_id else None
    else:
        user = users.get(s.user_id)
    return {
        "id": s.id,
        "date": s.date,
        "userId": s.user_id,
        "user": {"id": user.id, "name": user.name} if user else None,
        "userResolved": user is not None,
        "confirmed": bool(s.confirmed),
        "status": s.state.value,
        "arrivalDay": s.arrival_day,
        "arrivalTime": s.arrival_time,
        "needsAssistance": bool(s.needs_assistance),
        "window": s.window.to_dict(),
    }


def all_sessions():
    return MowingSession.query.order_by(MowingSession.date.asc(), MowingSession.id.asc()).all()


# ==========================
# SEEDING / IMPORT
# ==========================

def ensure_admin_user():
    """Create the configured admin account if no admin exists yet."""
    if User.query.filter_by(is_admin=True).first():
        return None
    admin = User(
        name=app.config["ADMIN_NAME"],
        email=app.config["ADMIN_EMAIL"],
        phone=app.config.get("ADMIN_PHONE") or "",
        is_admin=True,
    )
    admin.set_password(app.config["ADMIN_PASSWORD"])
    db.session.add(admin)
    db.session.commit()
    app.logger.info(f"Created default admin: {admin.name}")
    return admin


def iter_weekdays(start, weekday, count):
    days_ahead = (weekday - start.weekday()) % 7
    d = start + timedelta(days=days_ahead)
    for _ in range(count):
        yield d
        d += timedelta(days=7)


def seed_sessions_from_schedule(weeks=None, weekday=None, start=None) -> int:
    """Create unassigned weekly sessions for the next N weeks.
    Dates that already have a session are left alone.
    Returns number of sessions created.
    """
    weeks = STATIC_SCHEDULE["weeks"] if weeks is None else weeks
    weekday = STATIC_SCHEDULE["weekday"] if weekday is None else weekday
    start = start or get_local_today()

    existing = {s.date for s in MowingSession.query.with_entities(MowingSession.date)}
    created = 0
    for d in iter_weekdays(start, weekday, weeks):
        date_str = format_date(d)
        if date_str in existing:
            continue
        db.session.add(MowingSession(date=date_str, user_id=None, confirmed=False))
        existing.add(date_str)
        created += 1
    db.session.commit()
    return created


ROSTER_CSV_HEADERS = {"date", "email", "confirmed"}


def import_roster_rows(rows) -> dict:
    """Create sessions from roster rows with Date, Email and Confirmed columns.
    Unknown emails produce unassigned sessions; existing dates are skipped.
    """
    emails = {u.email.lower(): u.id for u in User.query.all()}
    existing = {s.date for s in MowingSession.query.with_entities(MowingSession.date)}
    result = {"created": 0, "skipped": 0, "errors": []}

    for line_no, row in enumerate(rows, start=2):
        row = {k.strip().lower(): (v or "").strip() for k, v in row.items() if k is not None}
        try:
            date_str = session_window(row.get("date", "")).primary
        except InvalidDateError as e:
            result["errors"].append(f"Line {line_no}: {e}")
            continue
        if date_str in existing:
            result["skipped"] += 1
            continue

        email = row.get("email", "").lower()
        user_id = emails.get(email) if email else None
        if email and user_id is None:
            result["errors"].append(f"Line {line_no}: no user with email {email}; left unassigned")
        confirmed = bool(user_id) and row.get("confirmed", "").lower() in ("true", "yes", "y", "1")

        db.session.add(MowingSession(date=date_str, user_id=user_id, confirmed=confirmed))
        existing.add(date_str)
        result["created"] += 1

    db.session.commit()
    return result


def import_roster_csv(path) -> dict:
    with open(path, newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        headers = {(h or "").strip().lower() for h in (reader.fieldnames or [])}
        if not ROSTER_CSV_HEADERS.issubset(headers):
            raise ValueError("Roster CSV must have Date, Email and Confirmed columns")
        return import_roster_rows(reader)


def bootstrap_roster():
    """Create the admin account and the initial sessions on an empty database."""
    ensure_admin_user()
    if MowingSession.query.count():
        return 0
    seed_csv = app.config.get("SEED_ROSTER_CSV")
    if seed_csv:
        return import_roster_csv(seed_csv)["created"]
    return seed_sessions_from_schedule()


# Flask 3 removed before_first_request; emulate a one-time hook using a sentinel.
_auto_seed_done = False

@app.before_request
def ensure_roster_exists():
    global _auto_seed_done
    if _auto_seed_done or not app.config.get("AUTO_SEED", True):
        return
    try:
        if User.query.count() == 0:
            count = bootstrap_roster()
            app.logger.info(f"Auto-seeded roster with {count} sessions (DB was empty).")
    except SQLAlchemyError as e:
        # Tables may not exist yet; try again on the next request.
        db.session.rollback()
        app.logger.warning(f"Auto-seed skipped due to error: {e}")
        return
    _auto_seed_done = True


# ==========================
# REMINDERS
# ==========================

def send_unconfirmed_reminders(run_date=None, days_ahead=None) -> int:
    """Email assignees whose unconfirmed session window opens within ``days_ahead`` days."""
    today = run_date or get_local_today()
    days_ahead = app.config.get("REMINDER_DAYS_AHEAD", 3) if days_ahead is None else days_ahead
    users = users_by_id()

    sent = 0
    for s in MowingSession.query.filter(MowingSession.user_id.isnot(None), MowingSession.confirmed.is_(False)):
        window_start = parse_date_string(s.window.before)
        if not today <= window_start <= today + timedelta(days=days_ahead):
            continue
        user = users.get(s.user_id)
        if not user:
            app.logger.warning(f"Session {s.id} on {s.date} is assigned to missing user {s.user_id}")
            continue
        if send_unconfirmed_reminder(s, user):
            sent += 1
    return sent


def send_open_session_reminder(run_date=None, days_ahead=14) -> int:
    """Send volunteers the list of unassigned sessions coming up."""
    today = run_date or get_local_today()
    horizon = format_date(today + timedelta(days=days_ahead))
    open_sessions = (
        MowingSession.query
        .filter(MowingSession.user_id.is_(None))
        .filter(MowingSession.date >= format_date(today), MowingSession.date <= horizon)
        .order_by(MowingSession.date.asc())
        .all()
    )
    if not open_sessions:
        return 0
    volunteers = User.query.filter_by(is_admin=False).order_by(User.name.asc()).all()
    return len(volunteers) if send_open_sessions_digest(open_sessions, volunteers) else 0


# ==========================
# API: Auth
# ==========================

@app.route("/api")
def api_health():
    return jsonify({"message": "Lawn Mowing Roster API is running!"})


@app.route("/api/auth/login", methods=["POST"])
def api_login():
    form = json_form(LoginForm)
    if not form.validate():
        return form_error_response(form)

    name = form.name.data.strip()
    user = User.query.filter_by(name=name).first()
    if not user:
        log_audit_event('login_attempt_invalid_user', details={'name': name})
        return jsonify({"error": "user_not_found", "message": "User not found"}), 404

    # Only admins have passwords
    if user.is_admin and not user.check_password(form.password.data):
        log_audit_event('login_failure', user.id)
        return jsonify({"error": "incorrect_password", "message": "Incorrect password"}), 401

    session.clear()
    session["user_id"] = user.id
    log_audit_event('login_success', user.id)
    return jsonify({"user": serialize_user(user)})


@app.route("/api/auth/logout", methods=["POST"])
def api_logout():
    user = get_current_user()
    if user:
        log_audit_event('logout', user.id)
    session.pop("user_id", None)
    return jsonify({"message": "Logged out"})


@app.route("/api/auth/me")
@login_required
def api_me():
    return jsonify({"user": serialize_user(get_current_user())})


# ==========================
# API: Users
# ==========================

@app.route("/api/users")
@login_required
def api_users():
    users = User.query.order_by(User.name.asc()).all()
    return jsonify({"users": [serialize_user(u) for u in users]})


@app.route("/api/users", methods=["POST"])
@admin_required
def api_create_user():
    form = json_form(UserForm)
    if not form.validate():
        return form_error_response(form)

    name = form.name.data.strip()
    if User.query.filter_by(name=name).first():
        return jsonify({"error": "duplicate_name", "message": "User with this name already exists"}), 409

    user = User(name=name, email=form.email.data.strip(), phone=(form.phone.data or "").strip())
    db.session.add(user)
    db.session.commit()
    app.logger.info(f"User created: {user.name} (ID: {user.id})")
    log_audit_event('user_created', get_current_user().id, 'user', user.id)
    invalidate_roster_caches()
    return jsonify({"user": serialize_user(user)}), 201


@app.route("/api/users/<int:user_id>", methods=["PUT"])
@login_required
def api_update_user(user_id):
    current = get_current_user()
    if not current.is_admin and current.id != user_id:
        return jsonify({"error": "forbidden", "message": "You can only edit your own details"}), 403
    user = db.get_or_404(User, user_id, description="User not found")

    form = json_form(UserForm)
    if not form.validate():
        return form_error_response(form)

    name = form.name.data.strip()
    clash = User.query.filter(User.name == name, User.id != user.id).first()
    if clash:
        return jsonify({"error": "duplicate_name", "message": "User with this name already exists"}), 409

    user.name = name
    user.email = form.email.data.strip()
    user.phone = (form.phone.data or "").strip()
    db.session.commit()
    log_audit_event('user_updated', current.id, 'user', user.id)
    invalidate_roster_caches()
    return jsonify({"user": serialize_user(user)})


@app.route("/api/users/<int:user_id>", methods=["DELETE"])
@admin_required
def api_delete_user(user_id):
    user = db.get_or_404(User, user_id, description="User not found")
    if user.is_admin:
        return jsonify({"error": "forbidden", "message": "Cannot delete admin user"}), 403

    name = user.name
    # Sessions keep the stale user_id; the calendar reports them as unresolved.
    db.session.delete(user)
    db.session.commit()
    log_audit_event('user_deleted', get_current_user().id, 'user', user_id, {'name': name})
    invalidate_roster_caches()
    return jsonify({"message": "User deleted successfully"})


# ==========================
# API: Sessions
# ==========================

@app.route("/api/sessions")
@login_required
def api_sessions():
    status = request.args.get("status")
    if status and status not in ("unassigned", "assigned", "confirmed"):
        abort(400, description="status must be unassigned, assigned or confirmed")
    users = users_by_id()
    sessions = [s for s in all_sessions() if not status or s.state.value == status]
    return jsonify({"sessions": [serialize_session(s, users) for s in sessions]})


@app.route("/api/sessions", methods=["POST"])
@admin_required
def api_create_session():
    form = json_form(SessionForm)
    if not form.validate():
        return form_error_response(form)
    date_str = session_window(form.date.data.strip()).primary

    if MowingSession.query.filter_by(date=date_str).first():
        return jsonify({"error": "date_taken", "message": "Session already exists for this date"}), 409

    s = MowingSession(date=date_str, user_id=None, confirmed=False)
    db.session.add(s)
    db.session.commit()
    log_audit_event('session_created', get_current_user().id, 'session', s.id, {'date': date_str})
    invalidate_roster_caches()
    return jsonify({"session": serialize_session(s)}), 201


@app.route("/api/sessions/<int:session_id>")
@login_required
def api_session_detail(session_id):
    s = db.get_or_404(MowingSession, session_id, description="Session not found")
    return jsonify({"session": serialize_session(s)})


@app.route("/api/sessions/<int:session_id>", methods=["PUT"])
@login_required
def api_assign_session(session_id):
    """Assign a user to a session; ``userId: null`` withdraws the current assignee."""
    user = get_current_user()
    s = db.get_or_404(MowingSession, session_id, description="Session not found")

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or "userId" not in payload:
        abort(400, description="userId is required (null to withdraw)")
    target_id = payload["userId"]
    if target_id is not None:
        if not isinstance(target_id, int) or isinstance(target_id, bool):
            abort(400, description="userId must be a user id or null")
        db.get_or_404(User, target_id, description="User not found")

    if not user.is_admin:
        own_session = bool(s.user_id) and s.user_id == user.id
        claiming_open = s.user_id is None and target_id == user.id
        if not (own_session or claiming_open):
            return jsonify({"error": "forbidden", "message": "You cannot change this session's assignee"}), 403

    previous = s.user_id
    session_lifecycle.assign(s, target_id)
    db.session.commit()
    log_audit_event('session_assigned', user.id, 'session', s.id, {'from': previous, 'to': target_id})
    invalidate_roster_caches()
    return jsonify({"session": serialize_session(s)})


@app.route("/api/sessions/<int:session_id>/confirm", methods=["PUT"])
@login_required
def api_confirm_session(session_id):
    user = get_current_user()
    s = db.get_or_404(MowingSession, session_id, description="Session not found")
    if not can_manage_session(user, s):
        return jsonify({"error": "forbidden", "message": "Only the assignee can confirm this session"}), 403

    form = json_form(ConfirmSessionForm)
    if not form.validate():
        return form_error_response(form)

    assistance = session_lifecycle.confirm(
        s,
        needs_assistance=form.needs_assistance.data,
        arrival_day=form.arrival_day.data or None,
        arrival_time=form.arrival_time.data or None,
    )
    db.session.commit()
    log_audit_event('session_confirmed', user.id, 'session', s.id, {'needs_assistance': bool(assistance)})
    invalidate_roster_caches()

    email_sent = None
    if assistance:
        assignee = db.session.get(User, s.user_id)
        if assignee:
            email_sent = send_assistance_request(s, assignee, assistance)
        else:
            app.logger.warning(f"Session {s.id} confirmed for missing user {s.user_id}; assistance email skipped")
            email_sent = False
    return jsonify({"session": serialize_session(s), "emailSent": email_sent})


@app.route("/api/sessions/<int:session_id>/withdraw", methods=["PUT"])
@login_required
def api_withdraw_session(session_id):
    user = get_current_user()
    s = db.get_or_404(MowingSession, session_id, description="Session not found")
    if not can_manage_session(user, s):
        return jsonify({"error": "forbidden", "message": "Only the assignee can withdraw from this session"}), 403

    previous = s.user_id
    session_lifecycle.withdraw(s)
    db.session.commit()
    log_audit_event('session_withdrawn', user.id, 'session', s.id, {'from': previous})
    invalidate_roster_caches()
    return jsonify({"session": serialize_session(s)})


@app.route("/api/sessions/<int:session_id>/request-coverage", methods=["POST"])
@login_required
def api_request_coverage(session_id):
    """Email every volunteer except the current assignee."""
    requester = get_current_user()
    s = db.get_or_404(MowingSession, session_id, description="Session not found")

    recipients = [
        u for u in User.query.filter_by(is_admin=False).order_by(User.name.asc()).all()
        if u.id != s.user_id
    ]
    email_sent = send_coverage_request(s, requester, recipients)
    log_audit_event('coverage_requested', requester.id, 'session', s.id, {
        'recipients': len(recipients),
        'email_sent': email_sent,
    })

    redirect_to = app.config.get("MAIL_TEST_RECIPIENT")
    return jsonify({
        "message": "Email sent to testing account" if redirect_to else "Email sent successfully",
        "recipients": [u.name for u in recipients],
        "emailSent": email_sent,
    })


@app.route("/api/sessions/<int:session_id>", methods=["DELETE"])
@admin_required
def api_delete_session(session_id):
    s = db.get_or_404(MowingSession, session_id, description="Session not found")
    date_str = s.date
    db.session.delete(s)
    db.session.commit()
    log_audit_event('session_deleted', get_current_user().id, 'session', session_id, {'date': date_str})
    invalidate_roster_caches()
    return jsonify({"message": "Session deleted successfully"})


@app.route("/api/sessions/match")
@login_required
def api_match_session():
    """Which session (if any) covers ``?date=YYYY-MM-DD`` and where in its window."""
    date_str = request.args.get("date", "")
    sessions = all_sessions()
    match = match_session(date_str, sessions)
    if match is None:
        return jsonify({"date": date_str, "match": None})
    overlaps = overlapping_sessions(date_str, sessions)
    return jsonify({
        "date": date_str,
        "match": {
            "position": match.position.value,
            "isPrimary": match.is_primary,
            "session": serialize_session(match.session),
        },
        "overlappingSessionIds": [o.id for o in overlaps if o.id != match.session.id],
    })


@app.route("/api/my-sessions")
@login_required
def api_my_sessions():
    user = get_current_user()
    today = format_date(get_local_today())
    sessions = (
        MowingSession.query
        .filter(MowingSession.user_id == user.id, MowingSession.date >= today)
        .order_by(MowingSession.date.asc())
        .all()
    )
    users = {user.id: user}
    return jsonify({"sessions": [serialize_session(s, users) for s in sessions]})


# ==========================
# API: Calendar
# ==========================

@cache.memoize()
def month_cells(year, month):
    """Annotated 42-day grid for a month (cached until the roster changes)."""
    return annotate_calendar(calendar_days(year, month), all_sessions(), users_by_id())


def _int_arg(name, default):
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        abort(400, description=f"{name} must be an integer")


@app.route("/api/calendar")
@login_required
def api_calendar():
    """Month grid with each day's session, for ?year=YYYY&month=1-12."""
    today = get_local_today()
    year = _int_arg("year", today.year)
    month = _int_arg("month", today.month)
    if not 1 <= month <= 12 or not 1 <= year <= 9999:
        abort(400, description="month must be 1-12 and year 1-9999")

    days = [dict(cell, isToday=is_today(cell["date"], today)) for cell in month_cells(year, month)]
    prev_year, prev_month = adjacent_month(year, month, -1)
    next_year, next_month = adjacent_month(year, month, 1)
    return jsonify({
        "year": year,
        "month": month,
        "monthName": calendar.month_name[month],
        "prev": {"year": prev_year, "month": prev_month},
        "next": {"year": next_year, "month": next_month},
        "days": days,
    })


# ==========================
# ICAL EXPORT
# ==========================

@app.route("/calendar.ics")
def calendar_ics():
    """Export upcoming sessions as an iCal feed."""
    cutoff = format_date(get_local_today() - timedelta(days=1))
    sessions = (
        MowingSession.query
        .filter(MowingSession.date >= cutoff)
        .order_by(MowingSession.date.asc())
        .all()
    )
    response = make_response(build_sessions_feed(sessions, users_by_id()))
    response.headers['Content-Type'] = 'text/calendar; charset=utf-8'
    response.headers['Content-Disposition'] = 'attachment; filename=lawn-roster.ics'
    return response


@app.route("/sessions/<int:session_id>.ics")
def session_ics(session_id):
    s = db.get_or_404(MowingSession, session_id)
    user = db.session.get(User, s.user_id) if s.user_id else None
    response = make_response(build_session_ical(s, user))
    response.headers['Content-Type'] = 'text/calendar; charset=utf-8'
    response.headers['Content-Disposition'] = f'attachment; filename=lawn-mowing-{s.date}.ics'
    return response


# ==========================
# CLI COMMANDS
# ==========================

@app.cli.command("init-db")
def init_db_command():
    """
    Initialize the database, the admin account and the first sessions.
    Run with: flask --app app.py init-db
    """
    db.create_all()
    created = bootstrap_roster()
    print(f"Database initialized ({created} sessions created).")


@app.cli.command("seed-sessions")
def seed_sessions_command():
    """Add weekly sessions for the next N weeks.
    Usage: flask --app app.py seed-sessions
    Optionally set WEEKS (default 12) and WEEKDAY (0=Monday ... 6=Sunday, default 5).
    """
    weeks = int(os.environ.get("WEEKS", STATIC_SCHEDULE["weeks"]))
    weekday = int(os.environ.get("WEEKDAY", STATIC_SCHEDULE["weekday"]))
    count = seed_sessions_from_schedule(weeks=weeks, weekday=weekday)
    invalidate_roster_caches()
    print(f"Seeded {count} sessions.")


@app.cli.command("import-roster")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
def import_roster_command(csv_path):
    """Import sessions from a CSV with Date, Email and Confirmed columns.
    Usage: flask --app app.py import-roster roster.csv
    """
    try:
        result = import_roster_csv(csv_path)
    except ValueError as e:
        raise click.ClickException(str(e))
    invalidate_roster_caches()
    for error in result["errors"]:
        print(f"  {error}")
    print(f"Imported {result['created']} sessions ({result['skipped']} existing dates skipped).")


@app.cli.command("send-reminders")
def send_reminders_command():
    """Email assignees who have not confirmed an upcoming session."""
    count = send_unconfirmed_reminders()
    print(f"Sent {count} reminder emails.")


if __name__ == "__main__":
    with app.app_context():
        db.create_all()
    app.run(debug=True)
