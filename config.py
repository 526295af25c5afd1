"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # Public URL of this service, used to build the processor notification_url
    PUBLIC_BASE_URL = os.getenv('PUBLIC_BASE_URL', 'http://localhost:5000')
    # Where /payments/return sends the browser after verifying (empty = JSON response)
    FRONTEND_SUCCESS_URL = os.getenv('FRONTEND_SUCCESS_URL', '')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'qrorder')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'qrorder')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'qrorder')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', '0') == '1'

    # Mercado Pago
    MP_WEBHOOK_SECRET = os.getenv('MP_WEBHOOK_SECRET', '')
    MP_CURRENCY_ID = os.getenv('MP_CURRENCY_ID', 'ARS')
    MP_PAYMENT_SEARCH_WINDOW = os.getenv('MP_PAYMENT_SEARCH_WINDOW', 'NOW-7DAYS')

    # Pricing audit
    PRICE_TOLERANCE = os.getenv('PRICE_TOLERANCE', '0.05')
    SUSPICIOUS_TIP_RATIO = os.getenv('SUSPICIOUS_TIP_RATIO', '0.5')

    # Abuse limiting (per restaurant + client session)
    ACTIVE_ORDER_LIMIT = int(os.getenv('ACTIVE_ORDER_LIMIT', '5'))
    ACTIVE_ORDER_WINDOW_MINUTES = int(os.getenv('ACTIVE_ORDER_WINDOW_MINUTES', '60'))

    # Takeaway orders are refused server-side outside opening hours
    ENFORCE_TAKEAWAY_HOURS = os.getenv('ENFORCE_TAKEAWAY_HOURS', 'true').lower() == 'true'

    # Client session (not a credential, see services/client_session.py)
    CLIENT_SESSION_COOKIE = os.getenv('CLIENT_SESSION_COOKIE', 'tpay_client_session_id')
    CLIENT_SESSION_MAX_AGE = int(os.getenv('CLIENT_SESSION_MAX_AGE', str(60 * 60 * 24 * 365)))

    # Email configuration
    MAIL_SERVER = os.getenv('SMTP_HOST', 'smtp.gmail.com')
    MAIL_PORT = int(os.getenv('SMTP_PORT', 587))
    MAIL_USE_TLS = True
    MAIL_USE_SSL = False
    MAIL_USERNAME = os.getenv('SMTP_USER') or ''
    MAIL_PASSWORD = os.getenv('SMTP_PASSWORD') or ''
    MAIL_DEFAULT_SENDER = (
        os.getenv('SMTP_FROM')
        or MAIL_USERNAME
        or 'no-reply@localhost'
    )
    MAIL_SUPPRESS_SEND = os.getenv('MAIL_SUPPRESS_SEND', 'false').lower() == 'true'
    # Sandbox restaurants send confirmations here instead of to the payer
    SANDBOX_EMAIL_OVERRIDE = os.getenv('SANDBOX_EMAIL_OVERRIDE', '')
    # Webhook deliveries send the confirmation email from a background thread
    NOTIFICATIONS_ASYNC = os.getenv('NOTIFICATIONS_ASYNC', 'true').lower() == 'true'


class TestingConfig(Config):
    """Configuration used by the pytest suite (in-memory SQLite)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    MP_WEBHOOK_SECRET = ''
    MAIL_SUPPRESS_SEND = True
    NOTIFICATIONS_ASYNC = False
    PUBLIC_BASE_URL = 'https://orders.example.com'
    FRONTEND_SUCCESS_URL = ''
