import os
from decimal import Decimal
from pathlib import Path

import environ


BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.Env(
    DEBUG=(bool, False),
    PLATFORM_FEE_RATE=(Decimal, Decimal('0.025')),
    DEFAULT_AUTO_APPROVE_DAYS=(int, 7),
    DISPUTE_AUTO_RESOLVE_CONFIDENCE=(int, 80),
    DISPUTE_AUTO_REVIEW_ON_OPEN=(bool, True),
    CONTENT_MODERATION_MAX_LENGTH=(int, 5000),
)
environ.Env.read_env(os.path.join(BASE_DIR, '.env'))

SECRET_KEY = env('SECRET_KEY', default='django-insecure-milestone-escrow-dev-key')
DEBUG = env('DEBUG')
ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['localhost', '127.0.0.1'])


INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    'rest_framework',
    'django_filters',
    'drf_yasg',
    'auditlog',

    'accounts',
    'projects',
    'escrow',
    'payments',
    'disputes',
    'fraud',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'auditlog.middleware.AuditlogMiddleware',
    'milestone_escrow.middleware.RequestAuditMiddleware',
]

ROOT_URLCONF = 'milestone_escrow.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'milestone_escrow.wsgi.application'

DATABASES = {
    'default': env.db('DATABASE_URL', default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}

AUTH_USER_MODEL = 'accounts.CustomUser'

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': (
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ),
    'DEFAULT_PERMISSION_CLASSES': (
        'rest_framework.permissions.IsAuthenticated',
    ),
    'DEFAULT_FILTER_BACKENDS': (
        'django_filters.rest_framework.DjangoFilterBackend',
    ),
    'EXCEPTION_HANDLER': 'milestone_escrow.exceptions.tagged_exception_handler',
}

SWAGGER_SETTINGS = {
    'SECURITY_DEFINITIONS': {
        'Bearer': {'type': 'apiKey', 'name': 'Authorization', 'in': 'header'},
    },
}


# Email (notification transport)
EMAIL_BACKEND = env('EMAIL_BACKEND', default='django.core.mail.backends.console.EmailBackend')
DEFAULT_FROM_EMAIL = env('DEFAULT_FROM_EMAIL', default='no-reply@milestone-escrow.local')
SITE_NAME = env('SITE_NAME', default='Milestone Escrow')


# Escrow and payment release
PLATFORM_FEE_RATE = env('PLATFORM_FEE_RATE')
DEFAULT_AUTO_APPROVE_DAYS = env('DEFAULT_AUTO_APPROVE_DAYS')
SUPPORTED_CURRENCIES = env.list(
    'SUPPORTED_CURRENCIES',
    default=['USD', 'EUR', 'GBP', 'JPY', 'CAD', 'AUD', 'CHF', 'CNY', 'INR', 'ETB'],
)

PAYMENT_PROVIDER = env('PAYMENT_PROVIDER', default='stripe')
STRIPE_SECRET_KEY = env('STRIPE_SECRET_KEY', default='')
STRIPE_CURRENCY = env('STRIPE_CURRENCY', default='usd')
CHAPA_SECRET_KEY = env('CHAPA_SECRET_KEY', default='')
CHAPA_BASE_URL = env('CHAPA_BASE_URL', default='https://api.chapa.co/v1')
PAYMENT_PROVIDER_TIMEOUT = env.int('PAYMENT_PROVIDER_TIMEOUT', default=30)


# Collaborators (dotted paths)
DISPUTE_REVIEWER = env('DISPUTE_REVIEWER', default='disputes.review.HeuristicDisputeReviewer')
CONTENT_MODERATOR = env('CONTENT_MODERATOR', default='projects.moderation.WordListModerator')
NOTIFIER = env('NOTIFIER', default='projects.notifications.EmailNotifier')


# Disputes
DISPUTE_AUTO_RESOLVE_CONFIDENCE = env('DISPUTE_AUTO_RESOLVE_CONFIDENCE')
DISPUTE_AUTO_REVIEW_ON_OPEN = env('DISPUTE_AUTO_REVIEW_ON_OPEN')
MEDIATORS_GROUP = 'Mediators'
ARBITRATORS_GROUP = 'Arbitrators'


# Content moderation
CONTENT_MODERATION_FLAGGED_TERMS = env.list(
    'CONTENT_MODERATION_FLAGGED_TERMS',
    default=[
        'hate', 'violence', 'harassment', 'spam', 'abuse', 'threat',
        'harmful', 'discriminatory', 'offensive', 'explicit',
    ],
)
CONTENT_MODERATION_MAX_LENGTH = env('CONTENT_MODERATION_MAX_LENGTH')


# Fraud gate overrides; see fraud.scoring.DEFAULT_POLICY for the keys.
FRAUD_RISK_POLICY = {}


LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'audit': {
            'handlers': ['console'],
            'level': env('AUDIT_LOG_LEVEL', default='INFO'),
            'propagate': False,
        },
        'projects': {'handlers': ['console'], 'level': 'INFO'},
        'escrow': {'handlers': ['console'], 'level': 'INFO'},
        'payments': {'handlers': ['console'], 'level': 'INFO'},
        'disputes': {'handlers': ['console'], 'level': 'INFO'},
        'fraud': {'handlers': ['console'], 'level': 'INFO'},
    },
    'root': {
        'handlers': ['console'],
        'level': env('LOG_LEVEL', default='WARNING'),
    },
}
