"""
Django settings for the Matchmaker API.
"""
import os
from pathlib import Path
import environ
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration

# Build paths inside the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Initialize environment variables
env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, ['localhost', '127.0.0.1']),
    DB_CONN_MAX_AGE=(int, 600),
    RATE_LIMIT_ENABLED=(bool, True),
    JSON_LOGS=(bool, False),
    LOG_LEVEL=(str, 'INFO'),
)

# Read .env file if it exists
environ.Env.read_env(os.path.join(BASE_DIR, '.env'))

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = env('SECRET_KEY', default='django-insecure-matchmaker-development-key')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = env('DEBUG')

ALLOWED_HOSTS = env('ALLOWED_HOSTS')

# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Third-party apps
    'rest_framework',
    'drf_spectacular',
    'corsheaders',
    'django_ratelimit',

    # Matchmaker apps
    'apps.core',
    'apps.rbac',
    'apps.workspaces',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',

    # Custom middleware
    'apps.core.middleware.RequestIDMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# Database
DATABASES = {
    'default': env.db('DATABASE_URL', default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}
DATABASES['default']['CONN_MAX_AGE'] = env('DB_CONN_MAX_AGE')

# Configure based on database engine
if 'postgresql' in DATABASES['default']['ENGINE']:
    DATABASES['default']['OPTIONS'] = {
        'connect_timeout': 10,
    }

# Cache (rate limiting counters)
CACHES = {
    'default': env.cache('CACHE_URL', default='locmemcache://'),
}

# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Custom User Model
# Workspace membership and roles live in apps.rbac, so the identity does too
AUTH_USER_MODEL = 'rbac.User'

# Authentication Backends
AUTHENTICATION_BACKENDS = [
    'apps.rbac.backends.EmailAuthBackend',
]

# REST Framework
REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
    ],
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'apps.core.authentication.JWTAuthentication',
    ],
    # Authorization is decided per handler by apps.rbac.guard
    'DEFAULT_PERMISSION_CLASSES': [],
    'EXCEPTION_HANDLER': 'apps.core.exceptions.custom_exception_handler',
}

# DRF Spectacular (OpenAPI)
SPECTACULAR_SETTINGS = {
    'TITLE': 'Matchmaker API',
    'DESCRIPTION': '''
Workspace-scoped authorization, tenant resolution and member invitations.

## Authentication

Requests carry a bearer token: `Authorization: Bearer <token>` obtained from
`/v1/auth/register`.

## Workspace selection

The workspace a request applies to is taken from, in order: the
`workspace_id` path segment, the `workspace_id` body field, the
`workspace_id` query parameter, the `X-Workspace-Slug` header, and finally
the caller's default workspace (the one they own, else the most recently
joined).

## Roles

`owner`, `admin`, `member`, `viewer`. Capabilities are derived from the role
only; see `GET /v1/workspaces/current` for the caller's capability map.
    ''',
    'VERSION': '1.0.0',
    'SERVE_INCLUDE_SCHEMA': False,
    'COMPONENT_SPLIT_REQUEST': True,
    'SCHEMA_PATH_PREFIX': r'/v1/',
    'SECURITY': [
        {
            'JWTAuth': []
        }
    ],
    'APPEND_COMPONENTS': {
        'securitySchemes': {
            'JWTAuth': {
                'type': 'http',
                'scheme': 'bearer',
                'bearerFormat': 'JWT',
            }
        }
    },
    'TAGS': [
        {'name': 'Authentication', 'description': 'User registration'},
        {'name': 'Workspaces', 'description': 'Workspace listing, creation and tenant resolution'},
        {'name': 'Members', 'description': 'Membership listing, role changes, removal and leave'},
        {'name': 'Invitations', 'description': 'Invitation issue, lookup, acceptance and cancellation'},
        {'name': 'Audit', 'description': 'Audit log viewing'},
    ],
}

# ============================================================================
# SECURITY SETTINGS
# ============================================================================

if not DEBUG:
    SECURE_SSL_REDIRECT = env.bool('SECURE_SSL_REDIRECT', default=False)
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True

SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = 'DENY'

# CORS Configuration
CORS_ALLOW_ALL_ORIGINS = DEBUG
CORS_ALLOWED_ORIGINS = env.list('CORS_ALLOWED_ORIGINS', default=[])
CORS_ALLOW_CREDENTIALS = True
CORS_ALLOW_HEADERS = [
    'accept',
    'accept-encoding',
    'authorization',
    'content-type',
    'origin',
    'user-agent',
    'x-csrftoken',
    'x-requested-with',
    'x-request-id',
    'x-workspace-slug',
]

# Rate Limiting
RATE_LIMIT_ENABLED = env('RATE_LIMIT_ENABLED')
RATELIMIT_USE_CACHE = 'default'
RATELIMIT_ENABLE = RATE_LIMIT_ENABLED

# locmem is per-process; fine for development, use a shared CACHE_URL in production
SILENCED_SYSTEM_CHECKS = ['django_ratelimit.E003', 'django_ratelimit.W001']

# Logging Configuration
LOG_LEVEL = env('LOG_LEVEL')
JSON_LOGS = env('JSON_LOGS')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'json': {
            '()': 'apps.core.logging.JSONFormatter',
        },
        'verbose': {
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
            'style': '{',
        },
    },
    'filters': {
        'request_context': {
            '()': 'apps.core.middleware.LoggingFilter',
        },
    },
    'handlers': {
        'console': {
            'level': LOG_LEVEL,
            'class': 'logging.StreamHandler',
            'formatter': 'json' if JSON_LOGS else 'verbose',
            'filters': ['request_context'],
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'apps': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'security': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}

# Sentry Configuration
SENTRY_DSN = env('SENTRY_DSN', default=None)
SENTRY_ENVIRONMENT = env('SENTRY_ENVIRONMENT', default='development')
SENTRY_RELEASE = env('SENTRY_RELEASE', default=None)

if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[
            DjangoIntegration(),
        ],
        environment=SENTRY_ENVIRONMENT,
        release=SENTRY_RELEASE,
        traces_sample_rate=0.1 if not DEBUG else 1.0,
        send_default_pii=False,
        attach_stacktrace=True,
    )

# Email Configuration
EMAIL_BACKEND = env('EMAIL_BACKEND', default='django.core.mail.backends.console.EmailBackend')
EMAIL_HOST = env('EMAIL_HOST', default='localhost')
EMAIL_PORT = env.int('EMAIL_PORT', default=587)
EMAIL_USE_TLS = env.bool('EMAIL_USE_TLS', default=True)
EMAIL_HOST_USER = env('EMAIL_HOST_USER', default='')
EMAIL_HOST_PASSWORD = env('EMAIL_HOST_PASSWORD', default='')
DEFAULT_FROM_EMAIL = env('DEFAULT_FROM_EMAIL', default='noreply@matchmaker.app')

# Frontend Configuration (invitation links point here)
FRONTEND_URL = env('FRONTEND_URL', default='http://localhost:5173')

# JWT Authentication Configuration
JWT_SECRET_KEY = env('JWT_SECRET_KEY', default='matchmaker-development-jwt-signing-key-change-me')

if len(JWT_SECRET_KEY) < 32:
    raise environ.ImproperlyConfigured(
        "JWT_SECRET_KEY must be at least 32 characters long. "
        "Current length: {}.".format(len(JWT_SECRET_KEY))
    )

if JWT_SECRET_KEY == SECRET_KEY:
    raise environ.ImproperlyConfigured(
        "JWT_SECRET_KEY must be different from SECRET_KEY."
    )

JWT_ALGORITHM = env('JWT_ALGORITHM', default='HS256')
JWT_EXPIRATION_HOURS = env.int('JWT_EXPIRATION_HOURS', default=24)

# Workspace authorization
INVITATION_EXPIRY_DAYS = env.int('INVITATION_EXPIRY_DAYS', default=7)
WORKSPACE_ID_FIELD = env('WORKSPACE_ID_FIELD', default='workspace_id')
WORKSPACE_SLUG_HEADER = env('WORKSPACE_SLUG_HEADER', default='X-Workspace-Slug')
AUDIT_AUTHORIZED_REQUESTS = env.bool('AUDIT_AUTHORIZED_REQUESTS', default=True)
