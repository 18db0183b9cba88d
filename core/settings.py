"""
Django settings for the HOS compliance engine project.

Values come from environment variables, optionally loaded from a .env file:
- DJANGO_SECRET_KEY
- DJANGO_DEBUG
- DJANGO_TIME_ZONE
- HOS_LOG_LEVEL
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / '.env')

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-hos-compliance-dev-key')

DEBUG = os.environ.get('DJANGO_DEBUG', 'False').lower() == 'true'

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')
    if host.strip()
]

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'compliance',
]

# Timestamps on log entries must be timezone-aware
USE_TZ = True
TIME_ZONE = os.environ.get('DJANGO_TIME_ZONE', 'UTC')

# The engine does no persistence; an in-memory database keeps the test
# runner and contrib apps happy.
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# =============================================================================
# HOS configuration
# =============================================================================
# Keys match compliance.services.hos_service.HOSConfig fields. Regulatory
# limits default to the FMCSA values; only the display thresholds are
# expected to be tuned per deployment.
HOS_CONFIG = {
    'break_warning_minutes': int(os.environ.get('HOS_BREAK_WARNING_MINUTES', 60)),
}

# =============================================================================
# Logging
# =============================================================================
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
        'compliance': {
            'handlers': ['console'],
            'level': os.environ.get('HOS_LOG_LEVEL', 'INFO'),
            'propagate': True,
        },
    },
}
