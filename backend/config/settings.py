"""Django settings for the trade insights backend.

Everything configurable comes from environment variables. There is no
database: uploads are parsed per request and never stored.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool = False) -> bool:
    return os.environ.get(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-only-insecure-key")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h.strip() for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "analytics",
    "api",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

DATABASES = {}

USE_TZ = True
TIME_ZONE = "UTC"

# Large exports; Django's default 2.5 MB in-memory cap is too small
DATA_UPLOAD_MAX_MEMORY_SIZE = 50 * 1024 * 1024
FILE_UPLOAD_MAX_MEMORY_SIZE = 50 * 1024 * 1024

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.MultiPartParser",
        "rest_framework.parsers.FormParser",
    ],
    "UNAUTHENTICATED_USER": None,
}

# --------------------------
# Trade insights
# --------------------------
INSIGHTS_DEFAULT_TIMEZONE = os.environ.get("INSIGHTS_DEFAULT_TIMEZONE", "UTC")
INSIGHTS_SUMMARY = {
    "URL": os.environ.get("INSIGHTS_SUMMARY_URL", "https://api.openai.com/v1/chat/completions"),
    "MODEL": os.environ.get("INSIGHTS_SUMMARY_MODEL", "gpt-4"),
    "API_KEY": os.environ.get("OPENAI_API_KEY", ""),
    "TIMEOUT": float(os.environ.get("INSIGHTS_SUMMARY_TIMEOUT", "30")),
}

LOG_LEVEL = os.environ.get("INSIGHTS_LOG_LEVEL", "INFO").upper()
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
        "analytics": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "api": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
