import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as servicebook.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "servicebook.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # busy timeout for SQLite writers waiting on BEGIN IMMEDIATE
    SQLALCHEMY_ENGINE_OPTIONS = (
        {"connect_args": {"timeout": 10}}
        if SQLALCHEMY_DATABASE_URI.startswith("sqlite")
        else {"pool_pre_ping": True}
    )

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "servicebook_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60
    # last_seen_at is refreshed at most this often
    SESSION_TOUCH_SECONDS = 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

    # Reservation holds
    HOLD_MINUTES = int(os.getenv("HOLD_MINUTES", "5"))
    TRANSACTION_TIMEOUT_SECONDS = int(os.getenv("TRANSACTION_TIMEOUT_SECONDS", "10"))
    MIN_CHECKOUT_AMOUNT = int(os.getenv("MIN_CHECKOUT_AMOUNT", "50"))

    # Money split
    DEFAULT_COMMISSION_RATE = float(os.getenv("DEFAULT_COMMISSION_RATE", "10"))
    DEFAULT_STAFF_SHARE_PERCENT = float(os.getenv("DEFAULT_STAFF_SHARE_PERCENT", "50"))
    CURRENCY = os.getenv("CURRENCY", "inr")

    # Field tracking
    EARLY_START_GRACE_MINUTES = int(os.getenv("EARLY_START_GRACE_MINUTES", "30"))
    SERVICE_TIMEZONE = os.getenv("SERVICE_TIMEZONE", "UTC")

    # Background sweeps
    SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    REAPER_INTERVAL_SECONDS = int(os.getenv("REAPER_INTERVAL_SECONDS", "30"))
    REMINDER_INTERVAL_SECONDS = int(os.getenv("REMINDER_INTERVAL_SECONDS", "300"))
    REMINDER_LEAD_MINUTES = 30
    REMINDER_WINDOW_MINUTES = 5

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_SUCCESS_URL = os.getenv("STRIPE_SUCCESS_URL")
    STRIPE_CANCEL_URL = os.getenv("STRIPE_CANCEL_URL")
    FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:5173")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
    SMTP_TIMEOUT_SECONDS = int(os.getenv("SMTP_TIMEOUT_SECONDS", "10"))
    EMAIL_SUBJECT_PREFIX = os.getenv("EMAIL_SUBJECT_PREFIX", "[ServiceBook] ")
    EMAIL_ASYNC = os.getenv("EMAIL_ASYNC", "true").lower() == "true"

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SCHEDULER_ENABLED = False
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
    STRIPE_SUCCESS_URL = "http://localhost:5173/pay/success"
    STRIPE_CANCEL_URL = "http://localhost:5173/pay/cancel"
    SMTP_HOST = None
    EMAIL_ASYNC = False
    BCRYPT_ROUNDS = 4
