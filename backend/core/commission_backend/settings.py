from decimal import Decimal
from pathlib import Path

import environ

BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, ["localhost", "127.0.0.1", "testserver"]),
    CORS_ALLOWED_ORIGINS=(list, []),
    CSRF_TRUSTED_ORIGINS=(list, []),
)
environ.Env.read_env(BASE_DIR / ".env")


SECRET_KEY = env("SECRET_KEY", default="django-insecure-change-me")

DEBUG = env("DEBUG")
ALLOWED_HOSTS = env("ALLOWED_HOSTS")

USE_X_FORWARDED_HOST = env.bool("USE_X_FORWARDED_HOST", default=True)
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "corsheaders",
    "rest_framework",
    "rest_framework.authtoken",
    "audit.apps.AuditConfig",
    "catalog.apps.CatalogConfig",
    "commission.apps.CommissionConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]
ROOT_URLCONF = "commission_backend.urls"

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
    },
]

WSGI_APPLICATION = "commission_backend.wsgi.application"

DATABASE_ENGINE = env("DATABASE_ENGINE", default="django.db.backends.sqlite3").strip()
if DATABASE_ENGINE == "django.db.backends.sqlite3":
    DATABASES = {
        "default": {
            "ENGINE": DATABASE_ENGINE,
            "NAME": env("SQLITE_NAME", default=str(BASE_DIR / "db.sqlite3")),
            # Writers take the database lock at BEGIN, before any tier volume read.
            "OPTIONS": {
                "transaction_mode": "IMMEDIATE",
                "timeout": env.int("SQLITE_TIMEOUT_SECONDS", default=20),
            },
            # A file, not shared-cache memory, so threads block instead of failing.
            "TEST": {"NAME": env("SQLITE_TEST_NAME", default=str(BASE_DIR / "test_db.sqlite3"))},
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": DATABASE_ENGINE,
            "NAME": env("DATABASE_NAME", default="commission_db"),
            "USER": env("DATABASE_USER", default="commission_user"),
            "PASSWORD": env("DATABASE_PASSWORD", default=""),
            "HOST": env("DATABASE_HOST", default="127.0.0.1"),
            "PORT": env("DATABASE_PORT", default="5432"),
            "CONN_MAX_AGE": env.int("DATABASE_CONN_MAX_AGE", default=60),
            "OPTIONS": {"sslmode": env("DATABASE_SSLMODE", default="disable")},
        }
    }

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = env("TIME_ZONE", default="UTC")
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

CORS_ALLOWED_ORIGINS = env("CORS_ALLOWED_ORIGINS")
CSRF_TRUSTED_ORIGINS = env("CSRF_TRUSTED_ORIGINS")

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework.authentication.TokenAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    ),
    "EXCEPTION_HANDLER": "commission.exceptions.commission_exception_handler",
}

# Active commission rules are cached here; point CACHE_URL at redis to share across processes.
CACHES = {"default": env.cache("CACHE_URL", default="locmemcache://commission")}

# Rate applied when no rule matches and the vendor has no subscription plan.
COMMISSION_DEFAULT_PLAN_RATE = Decimal(env("COMMISSION_DEFAULT_PLAN_RATE", default="10"))
COMMISSION_RULE_CACHE_TTL_SECONDS = env.int("COMMISSION_RULE_CACHE_TTL_SECONDS", default=30)
COMMISSION_RULES_PAGE_SIZE = env.int("COMMISSION_RULES_PAGE_SIZE", default=50)

COMMISSION_LOG_LEVEL = env("COMMISSION_LOG_LEVEL", default="INFO").strip().upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "commission": {
            "handlers": ["console"],
            "level": COMMISSION_LOG_LEVEL,
            "propagate": False,
        },
        "audit": {
            "handlers": ["console"],
            "level": COMMISSION_LOG_LEVEL,
            "propagate": False,
        },
    },
}
