from django.apps import AppConfig


class ShopcoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.shopcore'
    verbose_name = 'ShopCore - Catalog & Orders'
