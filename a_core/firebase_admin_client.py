import firebase_admin
from firebase_admin import credentials, firestore, messaging, storage
from django.conf import settings


def get_app():
    """Initialise the default Firebase app on first use."""
    if not firebase_admin._apps:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS)
        options = {}
        if settings.FIREBASE_STORAGE_BUCKET:
            options["storageBucket"] = settings.FIREBASE_STORAGE_BUCKET
        firebase_admin.initialize_app(cred, options)
    return firebase_admin.get_app()


def get_db():
    return firestore.client(app=get_app())


def get_bucket():
    """Lazy-load Firebase Storage bucket."""
    return storage.bucket(app=get_app())


def get_messaging():
    # firebase_admin.messaging is module-level API; make sure the app exists first
    get_app()
    return messaging
