from django.apps import AppConfig


class ShopsyncConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'shopsync'
    verbose_name = 'Platform sync'
