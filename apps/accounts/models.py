"""
Accounts Models - Storefront customers
Tables: Users
"""
from django.contrib.auth.hashers import check_password, make_password
from django.db import models

from apps.core.models import BaseModel


class User(BaseModel):
    """
    Customer account, identified by mobile number.
    Passwords are stored with Django's configured password hasher.
    """
    ROLE_USER = 'user'
    ROLE_ADMIN = 'admin'
    ROLE_CHOICES = [
        (ROLE_USER, 'Customer'),
        (ROLE_ADMIN, 'Administrator'),
    ]

    mobile = models.CharField(max_length=10, unique=True)
    password = models.CharField(max_length=128)
    first_name = models.CharField(max_length=100, blank=True, default='')
    last_name = models.CharField(max_length=100, blank=True, default='')
    email = models.EmailField(unique=True, blank=True, null=True)
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_USER)
    is_active = models.BooleanField(default=True)
    last_login = models.DateTimeField(blank=True, null=True)
    preferences = models.JSONField(default=dict, blank=True)
    health_profile = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = 'accounts_users'
        verbose_name = 'User'
        verbose_name_plural = 'Users'

    def __str__(self):
        return f"{self.full_name or 'Customer'} ({self.mobile})"

    # DRF's IsAuthenticated permission reads these
    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def is_anonymous(self) -> bool:
        return False

    @property
    def is_admin(self) -> bool:
        return self.role == self.ROLE_ADMIN

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def set_password(self, raw_password: str):
        self.password = make_password(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password(raw_password, self.password)
