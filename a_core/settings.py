from pathlib import Path
import os
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

env_path = BASE_DIR / ".env"
load_dotenv(dotenv_path=str(env_path), encoding="utf-8-sig")
SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "django-insecure-dev-only")

DEBUG = os.environ.get("DJANGO_DEBUG", "1") not in ("0", "false", "False")

ALLOWED_HOSTS = ['localhost', '127.0.0.1']

INSTALLED_APPS = [
    'a_users',
    'a_messaging',
]

LANGUAGE_CODE = 'en-us'
# Viewer timezone used when formatting "last seen" strings
TIME_ZONE = os.environ.get("DJANGO_TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
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
        "level": os.environ.get("DJANGO_LOG_LEVEL", "INFO"),
    },
}

# Firebase
FIREBASE_CREDENTIALS = os.environ.get("FIREBASE_CREDENTIALS", str(BASE_DIR / "firebase-key.json"))
FIREBASE_STORAGE_BUCKET = os.environ.get("FIREBASE_STORAGE_BUCKET", "")

# Chat
CHAT_USER_SEARCH_LIMIT = 20
CHAT_MIN_PHONE_DIGITS = 10
CHAT_DEFAULT_SENDER_NAME = "Someone"
CHAT_DEFAULT_GROUP_NAME = "A group"
# Attempts at the conditional SENT -> DELIVERED write before giving up
CHAT_DELIVERY_MAX_ATTEMPTS = 3
CHAT_DISPATCHER_WORKERS = 4
