"""
Django settings for the storefront project.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-storefront-dev-key')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv('DEBUG', 'True') == 'True'
ALLOWED_HOSTS = [
    host.strip()
    for host in os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',')
    if host.strip()
]

SITE_URL = os.getenv('SITE_URL', 'http://localhost:8000')

# Browser origins allowed to call /api/ with the session cookie
CORS_ALLOWED_ORIGINS = [
    origin.strip().rstrip('/')
    for origin in (os.getenv('CORS_ALLOWED_ORIGINS') or SITE_URL).split(',')
    if origin.strip()
]

CSRF_TRUSTED_ORIGINS = [
    SITE_URL,
    *[origin for origin in CORS_ALLOWED_ORIGINS if origin != SITE_URL],
]

# ---------- Store identity ----------
STORE_NAME = os.getenv('STORE_NAME', 'Elegance Sarees')
SUPPORT_PHONE = os.getenv('SUPPORT_PHONE', '+91 98765 43210')
SUPPORT_EMAIL = os.getenv('SUPPORT_EMAIL', 'admin@elegancesarees.com')

# ---------- Pricing ----------
FREE_SHIPPING_THRESHOLD = os.getenv('FREE_SHIPPING_THRESHOLD', '999')
SHIPPING_FEE = os.getenv('SHIPPING_FEE', '99')
TAX_RATE = os.getenv('TAX_RATE', '18')
CURRENCY = 'INR'

# ---------- UPI ----------
UPI_ID = os.getenv('UPI_ID', '')
UPI_QR_BASE_URL = "https://api.qrserver.com/v1/create-qr-code/"

# pending UPI orders are auto-cancelled after this many minutes
PENDING_ORDER_TIMEOUT_MINUTES = int(os.getenv('PENDING_ORDER_TIMEOUT_MINUTES', '30'))
CRON_SECRET = os.getenv('CRON_SECRET')

# ---------- Razorpay ----------
RAZORPAY_BASE_URL = os.getenv('RAZORPAY_BASE_URL', 'https://api.razorpay.com/v1')
RAZORPAY_KEY_ID = os.getenv('RAZORPAY_KEY_ID', '')
RAZORPAY_KEY_SECRET = os.getenv('RAZORPAY_KEY_SECRET', '')
RAZORPAY_WEBHOOK_SECRET = os.getenv('RAZORPAY_WEBHOOK_SECRET', '')

# ---------- WhatsApp Business API ----------
WHATSAPP_BASE_URL = os.getenv('WHATSAPP_BASE_URL', 'https://graph.facebook.com/v18.0')
WHATSAPP_ACCESS_TOKEN = os.getenv('WHATSAPP_ACCESS_TOKEN', '')
WHATSAPP_PHONE_NUMBER_ID = os.getenv('WHATSAPP_PHONE_NUMBER_ID', '')
WHATSAPP_BUSINESS_ACCOUNT_ID = os.getenv('WHATSAPP_BUSINESS_ACCOUNT_ID', '')
WHATSAPP_WEBHOOK_VERIFY_TOKEN = os.getenv('WHATSAPP_WEBHOOK_VERIFY_TOKEN', '')

# ---------- Cart abandonment ----------
CART_ABANDONMENT_MINUTES = int(os.getenv('CART_ABANDONMENT_MINUTES', '30'))
CART_MAX_REMINDERS = int(os.getenv('CART_MAX_REMINDERS', '3'))
CART_SESSION_TTL_HOURS = int(os.getenv('CART_SESSION_TTL_HOURS', '24'))
CART_SWEEP_INTERVAL_SECONDS = int(os.getenv('CART_SWEEP_INTERVAL_SECONDS', '300'))

# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'catalog',
    'accounts',
    'orders',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'storefront.middleware.ApiCorsMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'storefront.middleware.AdminRoleMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'storefront.urls'
WSGI_APPLICATION = 'storefront.wsgi.application'

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

# Database
if os.getenv('DB_NAME'):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql_psycopg2',
            'NAME': os.getenv('DB_NAME'),
            'USER': os.getenv('DB_USER'),
            'PASSWORD': os.getenv('DB_PASSWORD'),
            'HOST': os.getenv('DB_HOST'),
            'PORT': os.getenv('DB_PORT'),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

# Cache (cart abandonment store and webhook idempotency markers)
CACHES = {
    'default': {
        'BACKEND': os.getenv('CACHE_BACKEND', 'django.core.cache.backends.locmem.LocMemCache'),
        'LOCATION': os.getenv('CACHE_LOCATION', 'storefront'),
    }
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
TIME_ZONE = 'Asia/Kolkata'
USE_I18N = True
USE_TZ = True

# Static files
STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Media files (product images, payment-proof screenshots)
MEDIA_URL = '/media/'
MEDIA_ROOT = BASE_DIR / 'media'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Email Configuration (SMTP relay; the provider API key is the password)
EMAIL_BACKEND = os.getenv('EMAIL_BACKEND', 'django.core.mail.backends.smtp.EmailBackend')
EMAIL_HOST = os.getenv('EMAIL_HOST', 'smtp.resend.com')
EMAIL_PORT = int(os.getenv('EMAIL_PORT', '587'))
EMAIL_USE_TLS = True
EMAIL_HOST_USER = os.getenv('EMAIL_HOST_USER', 'resend')
EMAIL_HOST_PASSWORD = os.getenv('EMAIL_HOST_PASSWORD', '')
DEFAULT_FROM_EMAIL = os.getenv('DEFAULT_FROM_EMAIL', SUPPORT_EMAIL)
EMAIL_TIMEOUT = 10

# Admin email for order notifications
ADMIN_ORDER_EMAIL = os.getenv('ADMIN_ORDER_EMAIL')

LOGIN_URL = '/admin/login/'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '{asctime} {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.getenv('LOG_LEVEL', 'INFO'),
    },
}
