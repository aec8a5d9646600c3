"""Django settings for the orders web service.

Values come from the environment so the same image runs in every
environment. PostgreSQL is used when ``DB_HOST`` is set, otherwise a
local SQLite file (tests and development).
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-secret-key")
DEBUG = env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",")

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "rest_framework",
    "apps.orders",
    "apps.monitoring",
]

MIDDLEWARE = [
    "gateway.middleware.RequestIdMiddleware",
    "gateway.middleware.ApiSizeLimitMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {"context_processors": ["django.template.context_processors.request"]},
    }
]

if os.getenv("DB_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "HOST": os.getenv("DB_HOST"),
            "PORT": os.getenv("DB_PORT", "5432"),
            "NAME": os.getenv("DB_NAME", "orders"),
            "USER": os.getenv("DB_USER", "orders_user"),
            "PASSWORD": os.getenv("DB_PASSWORD", "orders-pass"),
            "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "UTC"

# ---- Django REST framework ----
REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": ["rest_framework.parsers.JSONParser"],
    "DEFAULT_THROTTLE_RATES": {
        "orders_list": os.getenv("THROTTLE_ORDERS_LIST", "120/min"),
        "orders_detail": os.getenv("THROTTLE_ORDERS_DETAIL", "300/min"),
        "orders_create": os.getenv("THROTTLE_ORDERS_CREATE", "60/min"),
        "orders_admin": os.getenv("THROTTLE_ORDERS_ADMIN", "120/min"),
        "webhooks": os.getenv("THROTTLE_WEBHOOKS", "600/min"),
    },
}

# ---- Payment gateway ----
GATEWAY_BASE_URL = os.getenv("GATEWAY_BASE_URL", "https://api.flutterwave.com/v3")
GATEWAY_SECRET_KEY = os.getenv("GATEWAY_SECRET_KEY", "")
GATEWAY_WEBHOOK_HASH = os.getenv("GATEWAY_WEBHOOK_HASH", "")
GATEWAY_CREATE_TIMEOUT_SECS = float(os.getenv("GATEWAY_CREATE_TIMEOUT_SECS", "30"))
GATEWAY_VERIFY_TIMEOUT_SECS = float(os.getenv("GATEWAY_VERIFY_TIMEOUT_SECS", "15"))
GATEWAY_REFUND_TIMEOUT_SECS = float(os.getenv("GATEWAY_REFUND_TIMEOUT_SECS", "30"))
GATEWAY_RETRY_MAX = int(os.getenv("GATEWAY_RETRY_MAX", "3"))
GATEWAY_RETRY_BASE_DELAY = float(os.getenv("GATEWAY_RETRY_BASE_DELAY", "1.0"))
GATEWAY_RETRY_MAX_DELAY = float(os.getenv("GATEWAY_RETRY_MAX_DELAY", "5.0"))

CIRCUIT_FAIL_THRESHOLD = int(os.getenv("CIRCUIT_FAIL_THRESHOLD", "5"))
CIRCUIT_RESET_TIMEOUT = float(os.getenv("CIRCUIT_RESET_TIMEOUT", "30"))

CHECKOUT_REDIRECT_URL = os.getenv(
    "CHECKOUT_REDIRECT_URL", "http://localhost:3000/checkout/complete?orderId={order_id}"
)
STORE_NAME = os.getenv("STORE_NAME", "Store")
# Unpaid orders older than this are cancelled by `release_expired_orders`
PENDING_ORDER_TTL_MINUTES = int(os.getenv("PENDING_ORDER_TTL_MINUTES", "15"))

# ---- Inventory service ----
INVENTORY_BASE_URL = os.getenv("INVENTORY_BASE_URL", "http://inventory:9001")
HTTP_TIMEOUT_SECS = float(os.getenv("HTTP_TIMEOUT_SECS", "2.0"))
HTTP_RETRY_MAX = int(os.getenv("HTTP_RETRY_MAX", "2"))
HTTP_RETRY_BACKOFF_BASE = float(os.getenv("HTTP_RETRY_BACKOFF_BASE", "0.15"))
HTTP_RETRY_MAX_SLEEP = float(os.getenv("HTTP_RETRY_MAX_SLEEP", "0.5"))

USE_HTTP_ADAPTERS = env_bool("USE_HTTP_ADAPTERS", True)

# ---- Mail ----
EMAIL_BACKEND = os.getenv("EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend")
DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", "orders@localhost")

# ---- Logging ----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "gateway.logging_filters.RequestIdFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["request_id"],
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django.request": {"level": "WARNING"},
        "orders": {"level": LOG_LEVEL},
    },
}
