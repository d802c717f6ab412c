"""
Settings for the pytest suite
"""
from .base import *  # noqa: F401,F403

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
DEFAULT_FROM_EMAIL = 'GreenTap Health <orders@greentap.test>'

REST_FRAMEWORK = {
    **REST_FRAMEWORK,  # noqa: F405
    'DEFAULT_THROTTLE_CLASSES': [],
}

RAZORPAY_KEY_ID = 'rzp_test_key'
RAZORPAY_KEY_SECRET = 'rzp_test_secret'
RAZORPAY_WEBHOOK_SECRET = 'rzp_webhook_secret'
RAZORPAY_API_URL = 'https://api.razorpay.test/v1'

SHIPROCKET_EMAIL = 'ops@greentap.test'
SHIPROCKET_PASSWORD = 'shiprocket-pass'
SHIPROCKET_API_URL = 'https://shiprocket.test/v1/external'
SHIPROCKET_PICKUP_POSTCODE = '110001'
SHIPROCKET_WEBHOOK_TOKEN = 'ship-hook-token'
SHIPPING_AUTO_BOOK_ON_PAYMENT = False

TWILIO_ACCOUNT_SID = ''
TWILIO_AUTH_TOKEN = ''
TWILIO_FROM_NUMBER = ''

PROVIDER_HTTP_TIMEOUT = 2.0

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'console': {'class': 'logging.StreamHandler'},
    },
    'root': {'handlers': ['console'], 'level': 'WARNING'},
}
