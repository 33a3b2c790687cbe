"""
Django settings for the bizledger project.

Only the ledger app is installed: authentication, sessions and the UI live
in the presentation layer that sits in front of this core.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "bizledger-insecure-dev-key")
DEBUG = os.environ.get("DJANGO_DEBUG", "false").lower() in ("1", "true", "yes")
ALLOWED_HOSTS = os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost").split(",")

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "ledger_core",
]

MIDDLEWARE = []

# SQLite by default, Postgres (row locks via select_for_update) in production
DATABASES = {
    "default": {
        "ENGINE": os.environ.get(
            "DATABASE_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.environ.get(
            "DATABASE_NAME", str(BASE_DIR / "bizledger.sqlite3")),
        "USER": os.environ.get("DATABASE_USER", ""),
        "PASSWORD": os.environ.get("DATABASE_PASSWORD", ""),
        "HOST": os.environ.get("DATABASE_HOST", ""),
        "PORT": os.environ.get("DATABASE_PORT", ""),
        # every request runs in a transaction; services add savepoints
        "ATOMIC_REQUESTS": True,
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

USE_TZ = True
TIME_ZONE = os.environ.get("DJANGO_TIME_ZONE", "Asia/Kolkata")

# ---------- Ledger app settings (read through ledger_core.conf) ----------
BIZLEDGER = {
    "INVOICE_NUMBER_PREFIX": "INV-",
    "PO_NUMBER_PREFIX": "PO-",
    "GRN_NUMBER_PREFIX": "GRN-",
    "NUMBER_WIDTH": 6,
    "INVOICE_NUMBER_MAX_RETRIES": 5,
    "POST_GRN_TO_LEDGER": True,
    "ALLOW_NEGATIVE_STOCK": False,
    "RECONCILIATION_WINDOW_DAYS": 3,
    "AUTO_MATCH_MIN_SCORE": 0.9,
}

# ---------- Celery ----------
CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "memory://")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", None)
CELERY_TASK_ALWAYS_EAGER = os.environ.get(
    "CELERY_TASK_ALWAYS_EAGER", "false").lower() in ("1", "true", "yes")

# ---------- Logging ----------
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "ledger_core": {
            "handlers": ["console"],
            "level": os.environ.get("LEDGER_LOG_LEVEL", "INFO"),
            "propagate": True,
        },
    },
}
