import os
from dotenv import load_dotenv

load_dotenv()


def _env_float(name, default):
    return float(os.environ.get(name, default))


def _env_int(name, default):
    return int(os.environ.get(name, default))


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or (
        'dev-secret-key-change-in-production'
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or (
        'sqlite:///evidence_orders.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Negotiation and payment windows (hours).
    QUOTE_EXPIRY_HOURS = _env_int('QUOTE_EXPIRY_HOURS', 24)
    PAYMENT_DUE_HOURS = _env_int('PAYMENT_DUE_HOURS', 24)
    DEFAULT_PAYMENT_METHOD = os.environ.get('DEFAULT_PAYMENT_METHOD', 'UPI')

    # Delivery OTP.
    DELIVERY_OTP_VALID_HOURS = _env_int('DELIVERY_OTP_VALID_HOURS', 4)
    DELIVERY_OTP_MAX_ATTEMPTS = _env_int('DELIVERY_OTP_MAX_ATTEMPTS', 3)
    # Radius around the agreed delivery point (km).
    DELIVERY_GEOFENCE_KM = _env_float('DELIVERY_GEOFENCE_KM', 0.5)

    # Disputes without activity for this long are escalated to an admin.
    DISPUTE_AUTO_ESCALATE_DAYS = _env_int('DISPUTE_AUTO_ESCALATE_DAYS', 3)

    # Background sweeps
    SCHEDULER_ENABLED = (
        os.environ.get('SCHEDULER_ENABLED', 'false').lower() == 'true'
    )
    SWEEP_INTERVAL_MINUTES = _env_int('SWEEP_INTERVAL_MINUTES', 15)

    LOG_FILE = os.environ.get('LOG_FILE', 'app.log')

    # Pagination configuration
    ITEMS_PER_PAGE = 20


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SCHEDULER_ENABLED = False
