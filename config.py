import os


def _env_flag(name, default):
    return os.environ.get(name, default).lower() == "true"


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "change-this-in-production")

    # Database configuration
    # Use DATABASE_URL if provided (Render/Heroku), otherwise a local SQLite file
    if os.getenv('DATABASE_URL'):
        raw_url = os.environ.get("DATABASE_URL")
        # Hosted Postgres may hand out postgres://; SQLAlchemy expects postgresql+psycopg2://
        if raw_url.startswith("postgres://"):
            raw_url = raw_url.replace("postgres://", "postgresql+psycopg2://", 1)
        elif raw_url.startswith("postgresql://"):
            raw_url = raw_url.replace("postgresql://", "postgresql+psycopg2://", 1)
        SQLALCHEMY_DATABASE_URI = raw_url
    else:
        basedir = os.path.abspath(os.path.dirname(__file__))
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{os.path.join(basedir, 'instance', 'lawn_roster.sqlite3')}"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Email configuration (Gmail SMTP by default)
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", 587))
    MAIL_USE_TLS = _env_flag("MAIL_USE_TLS", "True")
    MAIL_USE_SSL = _env_flag("MAIL_USE_SSL", "False")
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.environ.get("MAIL_DEFAULT_SENDER", MAIL_USERNAME or "noreply@lawnroster.org")
    # Without credentials there is nowhere to send; Flask-Mail still records messages.
    MAIL_SUPPRESS_SEND = _env_flag(
        "MAIL_SUPPRESS_SEND",
        "False" if (MAIL_USERNAME and MAIL_PASSWORD) else "True",
    )
    # Testing mode: when set, every outgoing email goes to this single address
    MAIL_TEST_RECIPIENT = os.environ.get("MAIL_TEST_RECIPIENT") or None

    # Who receives "assistance needed" emails
    ASSISTANCE_EMAIL = os.environ.get("ASSISTANCE_EMAIL", MAIL_USERNAME or "admin@lawnroster.org")

    # Bootstrap admin account (the only account that needs a password)
    ADMIN_NAME = os.environ.get("ADMIN_NAME", "Roster Admin")
    ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@lawnroster.org")
    ADMIN_PHONE = os.environ.get("ADMIN_PHONE", "")
    ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "admin123")

    # Session details shown in emails and calendar exports
    BASE_URL = os.environ.get("BASE_URL", "http://localhost:5000")
    SESSION_LOCATION = os.environ.get("SESSION_LOCATION", "2 Headingly Lane, Richmond 7020, New Zealand")
    SESSION_DURATION = os.environ.get("SESSION_DURATION", "2-3hr")
    APP_TIMEZONE = os.environ.get("APP_TIMEZONE", "Pacific/Auckland")

    # Seed the default admin and schedule on the first request if the DB is empty
    AUTO_SEED = _env_flag("AUTO_SEED", "True")
    SEED_ROSTER_CSV = os.environ.get("SEED_ROSTER_CSV") or None

    # Reminder worker
    REMINDER_DAYS_AHEAD = int(os.environ.get("REMINDER_DAYS_AHEAD", "3"))

    # Caching: Redis when REDIS_URL is set, in-process otherwise
    if os.environ.get("REDIS_URL"):
        CACHE_TYPE = os.environ.get("CACHE_TYPE", "RedisCache")
        CACHE_REDIS_URL = os.environ.get("REDIS_URL")
    else:
        CACHE_TYPE = os.environ.get("CACHE_TYPE", "SimpleCache")
    CACHE_DEFAULT_TIMEOUT = int(os.environ.get("CACHE_DEFAULT_TIMEOUT", 300))

    # The JSON API has no HTML forms to carry a CSRF token
    WTF_CSRF_ENABLED = _env_flag("WTF_CSRF_ENABLED", "False")

    # Session cookie settings
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")
    SESSION_COOKIE_SECURE = _env_flag("SESSION_COOKIE_SECURE", "False")
