"""
Django settings for the fleetsite project.

Everything deployment specific comes from environment variables.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_float(name, default):
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_optional_float(name, default):
    """Like _env_float, but an empty value or "none" turns the option off."""
    value = os.getenv(name)
    if value is None:
        return default
    if value.strip().lower() in ("", "none", "off"):
        return None
    return float(value)


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-secret-change-me")
DEBUG = _env_bool("DJANGO_DEBUG", True)
ALLOWED_HOSTS = [h.strip() for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h.strip()]

INSTALLED_APPS = [
    "livefleet.apps.LiveFleetConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "fleetsite.urls"
WSGI_APPLICATION = "fleetsite.wsgi.application"

# Live state is kept in memory only.
DATABASES = {}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "livefleet",
        "OPTIONS": {"MAX_ENTRIES": 2000},
    }
}

USE_TZ = True
TIME_ZONE = "UTC"

LIVEFLEET = {
    "PUSH_URL": os.getenv("LIVEFLEET_PUSH_URL", ""),
    "POLL_URL": os.getenv("LIVEFLEET_POLL_URL", ""),
    "POLL_INTERVAL": _env_float("LIVEFLEET_POLL_INTERVAL", 10.0),
    "HEARTBEAT_INTERVAL": _env_float("LIVEFLEET_HEARTBEAT_INTERVAL", 30.0),
    "LIVENESS_TIMEOUT": _env_optional_float("LIVEFLEET_LIVENESS_TIMEOUT", 90.0),
    "RECONNECT_DELAY": _env_float("LIVEFLEET_RECONNECT_DELAY", 5.0),
    "RECONNECT_FACTOR": _env_float("LIVEFLEET_RECONNECT_FACTOR", 1.0),
    "RECONNECT_MAX_DELAY": _env_float("LIVEFLEET_RECONNECT_MAX_DELAY", 60.0),
    "RECONNECT_JITTER": _env_float("LIVEFLEET_RECONNECT_JITTER", 0.0),
    "OSRM_URL": os.getenv("LIVEFLEET_OSRM_URL", "http://localhost:5000"),
    "ROUTING_TIMEOUT": _env_float("LIVEFLEET_ROUTING_TIMEOUT", 10.0),
    "AUTOSTART": _env_bool("LIVEFLEET_AUTOSTART", False),
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "livefleet": {
            "handlers": ["console"],
            "level": os.getenv("LIVEFLEET_LOG_LEVEL", "INFO"),
        },
    },
}
