from django.apps import AppConfig


class AMessagingConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'a_messaging'
