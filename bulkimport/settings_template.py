import os

import sentry_sdk
import structlog
from django.core.management.utils import get_random_secret_key
from sentry_sdk.integrations.django import DjangoIntegration

from bulkimport import get_version

DEFAULT_AUTO_FIELD = "django.db.models.AutoField"

# Build paths inside the project like this: os.path.join(SITE_ROOT_DIR, ...)
BULKIMPORT_APP_DIR = os.path.abspath(os.path.dirname(__file__))
SITE_ROOT_DIR = os.path.dirname(BULKIMPORT_APP_DIR)

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", get_random_secret_key())

BULKIMPORT_ENVIRONMENT = os.environ.get("BULKIMPORT_ENVIRONMENT", "development")

ALLOWED_HOSTS = ["*"]

DEBUG = False

LANGUAGE_CODE = "en-us"
ROOT_URLCONF = "bulkimport.urls"
STATIC_ROOT = "static-files"
STATIC_URL = "/static/"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True
WSGI_APPLICATION = "bulkimport.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": "bulkimport",
        "USER": "bulkimport",
        "PASSWORD": os.getenv("POSTGRESQL_PW"),
        "HOST": os.getenv("POSTGRESQL_HOST", "localhost"),
        "PORT": os.getenv("POSTGRESQL_PORT", "5432"),
        "CONN_MAX_AGE": 0,
    }
}

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.humanize",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "django_structlog",
    "importer.apps.ImporterConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
    "django_structlog.middlewares.RequestMiddleware",
]

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    }
]

REDIS_ADDRESS = os.environ.get("REDIS_ADDRESS", "localhost")
REDIS_PORT = os.environ.get("REDIS_PORT", "")
if REDIS_PORT.isdigit():
    REDIS_PORT = int(REDIS_PORT)
else:
    REDIS_PORT = 6379

if REDIS_ADDRESS and REDIS_PORT:
    CACHES = {
        "default": {
            "BACKEND": "django_redis.cache.RedisCache",
            "LOCATION": f"redis://{REDIS_ADDRESS}:{REDIS_PORT}/1",
            "OPTIONS": {
                "CLIENT_CLASS": "django_redis.client.DefaultClient",
            },
        },
        # Shared by every worker for cooldown and tier counter keys
        "rate_limit": {
            "BACKEND": "django_redis.cache.RedisCache",
            "LOCATION": f"redis://{REDIS_ADDRESS}:{REDIS_PORT}/2",
            "OPTIONS": {
                "CLIENT_CLASS": "django_redis.client.DefaultClient",
            },
        },
    }
    RATE_LIMIT_STORE_BACKEND = "importer.ratelimit.stores.RedisRateLimitStore"
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        },
        "rate_limit": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
    }
    RATE_LIMIT_STORE_BACKEND = "importer.ratelimit.stores.LocMemRateLimitStore"

CELERY_BROKER_URL = f"redis://{REDIS_ADDRESS}:{REDIS_PORT}/0"
CELERY_RESULT_BACKEND = f"redis://{REDIS_ADDRESS}:{REDIS_PORT}/0"

CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_IMPORTS = ("importer.tasks",)

CELERY_BROKER_HEARTBEAT = 0
CELERY_BROKER_CONNECTION_RETRY = True
CELERY_BROKER_CONNECTION_RETRY_ON_STARTUP = True
CELERY_BROKER_TRANSPORT_OPTIONS = {
    "confirm_publish": True,
    "max_retries": 3,
    "interval_start": 0,
    "interval_step": 0.2,
    "interval_max": 0.5,
    # Must exceed the longest coordinated sleep plus a request, or the broker
    # redelivers items that are still sleeping
    "visibility_timeout": 2 * 60 * 60,
}
# Workers sleep for up to a full tier window, so a prefetched backlog would
# only wait behind the sleeping task
CELERY_WORKER_PREFETCH_MULTIPLIER = 1

IMPORTER = {
    "API_BASE_URL": os.getenv("IMPORTER_API_BASE_URL", "http://localhost:8000/api"),
    "ITEMS_PER_PAGE": int(os.getenv("IMPORTER_ITEMS_PER_PAGE", "10")),
    # (max requests, window seconds); every tier is enforced at once
    "RATE_LIMIT_TIERS": [(20, 10), (400, 60), (10000, 24 * 60 * 60)],
    "RATE_LIMIT_STORE": RATE_LIMIT_STORE_BACKEND,
    "RATE_LIMIT_CACHE": "rate_limit",
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "long": {
            "format": "[{asctime} {levelname} {name}:{lineno}] {message}",
            "datefmt": "%Y-%m-%dT%H:%M:%S",
            "style": "{",
        },
        "short": {
            "format": "[{levelname} {name}] {message}",
            "datefmt": "%Y-%m-%dT%H:%M:%S",
            "style": "{",
        },
        "structlog_json": {
            "()": structlog.stdlib.ProcessorFormatter,
            "processor": structlog.processors.JSONRenderer(),
        },
        "structlog_console": {
            "()": structlog.stdlib.ProcessorFormatter,
            "processor": structlog.dev.ConsoleRenderer(),
        },
    },
    "handlers": {
        "stream": {
            "class": "logging.StreamHandler",
            "level": "INFO",
            "formatter": "long",
        },
        "null": {"level": "INFO", "class": "logging.NullHandler"},
        "structlog_stream": {
            "class": "logging.StreamHandler",
            "level": "INFO",
            "formatter": "structlog_json",
        },
        "structlog_console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG",
            "formatter": "structlog_console",
        },
    },
    "loggers": {
        "django": {"handlers": ["stream"], "level": "INFO"},
        "celery": {"handlers": ["stream"], "level": "INFO"},
        "importer": {"handlers": ["stream"], "level": "INFO"},
        "structlog": {
            "handlers": ["structlog_stream"],
            "level": "INFO",
            "propagate": False,
        },
        "django_structlog": {
            "handlers": ["structlog_stream"],
            "level": "INFO",
            "propagate": False,
        },
    },
}

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

SENTRY_BACKEND_DSN = os.environ.get("SENTRY_BACKEND_DSN", "")

APPLICATION_VERSION = get_version()

sentry_sdk.init(
    dsn=SENTRY_BACKEND_DSN,
    environment=BULKIMPORT_ENVIRONMENT,
    release=APPLICATION_VERSION,
    integrations=[DjangoIntegration()],
)
