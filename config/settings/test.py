from .base import *

DEBUG = False
SECRET_KEY = "test-secret-key"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

LOGGING["loggers"]["compliance_app"]["level"] = "WARNING"
LOGGING["loggers"]["catalog"]["level"] = "WARNING"
LOGGING["loggers"]["profiles"]["level"] = "WARNING"
