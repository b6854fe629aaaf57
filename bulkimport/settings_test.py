from .settings_template import *  # NOQA ignore=F405
from .settings_template import IMPORTER

DEBUG = False

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

ALLOWED_HOSTS = ["127.0.0.1", "0.0.0.0", "testserver"]  # nosec

CACHES = {
    "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
    "rate_limit": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
}

IMPORTER = {
    **IMPORTER,
    "API_BASE_URL": "http://api.example.com/api",
    "RATE_LIMIT_STORE": "importer.ratelimit.stores.LocMemRateLimitStore",
}

CELERY_TASK_ALWAYS_EAGER = False
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]
