from django.apps import AppConfig


class ShipstreamConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.shipstream'
    verbose_name = 'ShipStream - Shipping & Tracking'
