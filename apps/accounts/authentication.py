"""
DRF authentication and permission classes for bearer tokens
"""
import logging

from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.permissions import BasePermission

from apps.core.exceptions import UnauthorizedException
from .models import User
from .tokens import read_token

logger = logging.getLogger(__name__)


class BearerTokenAuthentication(BaseAuthentication):
    """
    Authenticate `Authorization: Bearer <token>` headers.

    Requests without the header stay anonymous so that public endpoints keep
    working; protected views add IsAuthenticated.
    """
    keyword = 'Bearer'

    def authenticate(self, request):
        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() != self.keyword.lower().encode():
            return None

        if len(auth) != 2:
            raise exceptions.AuthenticationFailed('Invalid token header')

        try:
            token = auth[1].decode()
        except UnicodeError:
            raise exceptions.AuthenticationFailed('Invalid token header')

        try:
            payload = read_token(token)
        except UnauthorizedException as e:
            raise exceptions.AuthenticationFailed(e.message)

        user = User.objects.filter(id=payload.get('uid'), is_active=True).first()
        if user is None:
            logger.warning(f"Token for unknown or inactive user {payload.get('uid')}")
            raise exceptions.AuthenticationFailed('User not found or inactive')

        return user, payload

    def authenticate_header(self, request):
        return self.keyword


class IsAdminRole(BasePermission):
    """
    Allows access only to authenticated users with the admin role.
    """
    message = 'Admin access required'

    def has_permission(self, request, view):
        user = request.user
        return bool(user and getattr(user, 'is_authenticated', False) and getattr(user, 'is_admin', False))
