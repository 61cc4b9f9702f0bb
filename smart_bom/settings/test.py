"""
Settings for the pytest suite.

The test database is file backed so that threads opened by the concurrency
tests share it and wait on SQLite's write lock.
"""

from .base import *

DEPLOYMENT_MODE = 'test'

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db_test.sqlite3',
        'OPTIONS': {
            'timeout': 30,
            'transaction_mode': 'IMMEDIATE',
        },
        'TEST': {
            'NAME': BASE_DIR / 'test_db.sqlite3',
        },
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'smartbom-test',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'null': {
            'class': 'logging.NullHandler',
        },
    },
    'loggers': {
        'stock': {'handlers': ['null'], 'level': 'DEBUG', 'propagate': True},
        'main': {'handlers': ['null'], 'level': 'DEBUG', 'propagate': True},
    },
}
