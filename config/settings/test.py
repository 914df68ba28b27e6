"""
Test settings for Ortho Insight.

SQLite, eager Celery and no real credentials.
"""

from .base import *  # noqa: F401, F403

SECRET_KEY = 'test-secret-key'
DEBUG = False
ALLOWED_HOSTS = ['testserver', 'localhost']

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'

GREYFINCH_API_URL = 'https://greyfinch.test/graphql'
GREYFINCH_API_KEY = ''
GREYFINCH_API_SECRET = ''

OPENAI_API_KEY = ''
UPSTREAM_TIMEOUT_SECONDS = 5
