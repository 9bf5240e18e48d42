"""Django settings for the bulk distances project."""

from __future__ import annotations

import json
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
PROJECT_ROOT = BASE_DIR.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "change-me-in-production")
DEBUG = os.getenv("DJANGO_DEBUG", "1") == "1"
ALLOWED_HOSTS = [host for host in os.getenv("DJANGO_ALLOWED_HOSTS", "").split(",") if host]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.staticfiles",
    "bulk_distances",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": PROJECT_ROOT / "db.sqlite3",
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "bulk-distances-cache",
    }
}

# The quota ledger and the current batch live in the session, so sessions must
# outlive the browser tab.
SESSION_ENGINE = "django.contrib.sessions.backends.db"
SESSION_COOKIE_AGE = int(os.getenv("SESSION_COOKIE_AGE", str(60 * 60 * 24 * 365)))

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
DATA_UPLOAD_MAX_MEMORY_SIZE = MAX_UPLOAD_BYTES + 1024 * 1024
FILE_UPLOAD_MAX_MEMORY_SIZE = MAX_UPLOAD_BYTES + 1024 * 1024

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "loggers": {
        "bulk_distances": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "httpx": {
            "handlers": ["console"],
            "level": "WARNING",
        },
    },
}

GEOAPIFY_API_KEY = os.getenv("GEOAPIFY_API_KEY", "")
GEOAPIFY_BASE_URL = os.getenv("GEOAPIFY_BASE_URL", "https://api.geoapify.com")
GEOAPIFY_TIMEOUT_SECONDS = float(os.getenv("GEOAPIFY_TIMEOUT_SECONDS", "10"))
GEOAPIFY_RETRY_COUNT = int(os.getenv("GEOAPIFY_RETRY_COUNT", "0"))
ROUTING_MODE = os.getenv("ROUTING_MODE", "drive")

ROUTE_CACHE_TTL_SECONDS = int(os.getenv("ROUTE_CACHE_TTL_SECONDS", "600"))
GEOCODE_CACHE_TTL_SECONDS = int(os.getenv("GEOCODE_CACHE_TTL_SECONDS", "86400"))

RESOLVER_CONCURRENCY = int(os.getenv("RESOLVER_CONCURRENCY", "1"))

FREE_ROW_ALLOWANCE = int(os.getenv("FREE_ROW_ALLOWANCE", "10"))
PER_ROW_PRICE = os.getenv("PER_ROW_PRICE", "0.10")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "EUR")

PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID", "")
PAYPAL_RECIPIENT = os.getenv("PAYPAL_RECIPIENT", "")
PAYPAL_CHECKOUT_URL = os.getenv("PAYPAL_CHECKOUT_URL", "https://www.paypal.com/cgi-bin/webscr")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

EXPORT_FILENAME = os.getenv("EXPORT_FILENAME", "calculated_distances.xlsx")
TEMPLATE_FILENAME = os.getenv("TEMPLATE_FILENAME", "distance_template.xlsx")

# kg CO2 per vehicle kilometre.
EMISSION_FACTORS_KG_PER_KM = json.loads(
    os.getenv(
        "EMISSION_FACTORS_KG_PER_KM",
        json.dumps(
            {
                "electric_car": 0.047,
                "hybrid_car": 0.120,
                "petrol_car": 0.170,
                "diesel_car": 0.168,
                "van": 0.230,
                "truck": 0.850,
            }
        ),
    )
)
DEFAULT_VEHICLE = os.getenv("DEFAULT_VEHICLE", "petrol_car")
REFERENCE_VEHICLE = os.getenv("REFERENCE_VEHICLE", "truck")
