"""
Account operations: registration, login, profile maintenance
"""
import logging
import re
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.exceptions import UnauthorizedException, ValidationException
from .models import User
from .tokens import issue_token

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 4
PROFILE_FIELDS = ('first_name', 'last_name', 'email', 'preferences', 'health_profile')


def normalize_mobile(mobile: str) -> str:
    """Strip formatting and require a 10-digit mobile number."""
    clean = re.sub(r'\D', '', mobile or '')
    if not re.fullmatch(r'[0-9]{10}', clean):
        raise ValidationException("Please enter a valid 10-digit mobile number", field='mobile')
    return clean


def register_user(mobile: str, password: str, first_name: str = '', last_name: str = '',
                  email: Optional[str] = None) -> User:
    clean_mobile = normalize_mobile(mobile)
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationException(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long", field='password'
        )

    if User.objects.filter(mobile=clean_mobile).exists():
        raise ValidationException("User with this mobile number already exists", field='mobile')
    if email and User.objects.filter(email=email).exists():
        raise ValidationException("User with this email already exists", field='email')

    user = User(
        mobile=clean_mobile,
        first_name=first_name or '',
        last_name=last_name or '',
        email=email or None,
    )
    user.set_password(password)
    try:
        with transaction.atomic():
            user.save()
    except IntegrityError:
        # lost a race with a concurrent registration
        raise ValidationException("Mobile number or email already registered")

    logger.info(f"Registered user {user.id}")
    return user


def authenticate_user(mobile: str, password: str) -> Dict[str, Any]:
    """Check credentials and return a fresh token with the user."""
    clean_mobile = normalize_mobile(mobile)
    user = User.objects.filter(mobile=clean_mobile, is_active=True).first()
    if user is None or not user.check_password(password or ''):
        raise UnauthorizedException("Invalid mobile number or password")

    user.last_login = timezone.now()
    user.save(update_fields=['last_login', 'updated_at'])
    return {'token': issue_token(user), 'user': user}


def update_profile(user: User, data: Dict[str, Any]) -> User:
    changed = []
    for field in PROFILE_FIELDS:
        if field in data:
            setattr(user, field, data[field])
            changed.append(field)

    if 'email' in changed and user.email:
        if User.objects.filter(email=user.email).exclude(id=user.id).exists():
            raise ValidationException("User with this email already exists", field='email')

    if changed:
        user.save(update_fields=changed + ['updated_at'])
    return user


def change_password(user: User, current_password: str, new_password: str) -> None:
    if not user.check_password(current_password or ''):
        raise ValidationException("Current password is incorrect", field='current_password')
    if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationException(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long", field='new_password'
        )
    user.set_password(new_password)
    user.save(update_fields=['password', 'updated_at'])
    logger.info(f"Password changed for user {user.id}")
