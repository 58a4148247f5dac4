from .base import *
import logging
import os
import dj_database_url
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

DEBUG = False
SECRET_KEY = os.environ["DJANGO_SECRET_KEY"]
ALLOWED_HOSTS = [h for h in os.getenv("ALLOWED_HOSTS", "").split(",") if h]
CSRF_TRUSTED_ORIGINS = [o for o in os.getenv("CSRF_TRUSTED_ORIGINS", "").split(",") if o]

# PostgreSQL in production; row locks on compliance records rely on it
DATABASES = {
    "default": dj_database_url.parse(
        os.environ["DATABASE_URL"],
        conn_max_age=600,
        ssl_require=env_bool("DB_SSL_REQUIRE", "true"),
    )
}

# HTTPS & cookies (toggle locally with envs)
SECURE_SSL_REDIRECT = env_bool("SECURE_SSL_REDIRECT", "true")
SESSION_COOKIE_SECURE = env_bool("SESSION_COOKIE_SECURE", "true")
CSRF_COOKIE_SECURE   = env_bool("CSRF_COOKIE_SECURE", "true")
SECURE_HSTS_SECONDS = int(os.getenv("SECURE_HSTS_SECONDS", "31536000"))
SECURE_HSTS_INCLUDE_SUBDOMAINS = env_bool("SECURE_HSTS_INCLUDE_SUBDOMAINS", "true")
SECURE_HSTS_PRELOAD = env_bool("SECURE_HSTS_PRELOAD", "true")

# JSON only; the browsable API stays a development convenience
REST_FRAMEWORK["DEFAULT_RENDERER_CLASSES"] = ["rest_framework.renderers.JSONRenderer"]

if os.getenv("COMPLIANCE_DEFAULT_DUE_DAYS"):
    COMPLIANCE["DEFAULT_DUE_DAYS"] = int(os.environ["COMPLIANCE_DEFAULT_DUE_DAYS"])

LOGGING["loggers"]["compliance_app"]["level"] = os.getenv("COMPLIANCE_LOG_LEVEL", "INFO")

dsn = os.getenv("SENTRY_DSN")
if dsn:
    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            DjangoIntegration(),
            # store outages are logged at ERROR by the engine
            LoggingIntegration(level=None, event_level=logging.ERROR),
        ],
        send_default_pii=False,
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0")),
        environment=os.getenv("SENTRY_ENVIRONMENT", "production"),
    )
