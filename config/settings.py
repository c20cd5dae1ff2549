import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

ENV = os.getenv("ENVIRONMENT", "dev")

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-secret-key")
DEBUG = os.getenv("DJANGO_DEBUG", "true" if ENV == "dev" else "false").lower() == "true"
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "rest_framework",
    "django_filters",
    "apps.tenants",
    "apps.services",
    "apps.users",
    "apps.scheduling",
]

MIDDLEWARE = [
    "config.correlation.CorrelationIdMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "apps.tenants.middleware.TenantMiddleware",
]

ROOT_URLCONF = "config.urls"

DATABASES = {
    "default": {
        "ENGINE": os.getenv("DB_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.getenv("DB_NAME", str(BASE_DIR / "db.sqlite3")),
        "USER": os.getenv("DB_USER", ""),
        "PASSWORD": os.getenv("DB_PASSWORD", ""),
        "HOST": os.getenv("DB_HOST", ""),
        "PORT": os.getenv("DB_PORT", ""),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

USE_TZ = True
TIME_ZONE = os.getenv("TIME_ZONE", "UTC")

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_FILTER_BACKENDS": ["django_filters.rest_framework.DjangoFilterBackend"],
    "DEFAULT_THROTTLE_CLASSES": ["rest_framework.throttling.UserRateThrottle"],
    "DEFAULT_THROTTLE_RATES": {"user": os.getenv("API_USER_THROTTLE_RATE", "1000/min")},
}

AWS_REGION = os.getenv("AWS_REGION", "eu-west-2")

SCHEDULING = {
    "MAX_RECURRENCE_OCCURRENCES": int(os.getenv("MAX_RECURRENCE_OCCURRENCES", "52")),
    # pending appointments older than this are auto-cancelled
    "CONFIRMATION_TIMEOUT_MINUTES": int(os.getenv("CONFIRMATION_TIMEOUT_MINUTES", "1440")),
    # confirmed/waiting appointments this long past start become no-shows
    "NO_SHOW_GRACE_MINUTES": int(os.getenv("NO_SHOW_GRACE_MINUTES", "30")),
    "REMINDERS": [
        {"kind": "first", "hours_before": 24, "channels": ["email", "whatsapp"]},
        {"kind": "second", "hours_before": 2, "channels": ["sms", "whatsapp"]},
    ],
    "REMINDER_QUEUE_URL": os.getenv("REMINDER_QUEUE_URL", ""),
    "REMINDER_BATCH_SIZE": int(os.getenv("REMINDER_BATCH_SIZE", "500")),
    # failed publishes are retried until a reminder has this many attempts
    "REMINDER_MAX_ATTEMPTS": int(os.getenv("REMINDER_MAX_ATTEMPTS", "3")),
    "SLOT_INTERVAL_MINUTES": int(os.getenv("SLOT_INTERVAL_MINUTES", "30")),
    # bookable window offered by the slot search, relative to now
    "MIN_ADVANCE_BOOKING_MINUTES": int(os.getenv("MIN_ADVANCE_BOOKING_MINUTES", "60")),
    "MAX_ADVANCE_BOOKING_MINUTES": int(os.getenv("MAX_ADVANCE_BOOKING_MINUTES", "43200")),
    "MAX_AVAILABILITY_DAYS": int(os.getenv("MAX_AVAILABILITY_DAYS", "31")),
}

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "correlation_id": {"()": "config.correlation.CorrelationIdFilter"},
    },
    "formatters": {
        "json": {
            "format": '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
            '"message": "%(message)s", "correlation_id": "%(correlation_id)s"}',
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["correlation_id"],
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
    },
}
