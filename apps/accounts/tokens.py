"""
Stateless bearer tokens.

Tokens are Django signed payloads carrying the user id, mobile and role.
They expire after AUTH_TOKEN_MAX_AGE seconds (seven days by default).
"""
import logging
from typing import Any, Dict

from django.conf import settings
from django.core import signing

from apps.core.exceptions import UnauthorizedException

logger = logging.getLogger(__name__)

TOKEN_SALT = 'apps.accounts.bearer'


def issue_token(user) -> str:
    """Sign a token for the given user."""
    payload = {
        'uid': str(user.id),
        'mobile': user.mobile,
        'role': user.role,
    }
    return signing.dumps(payload, salt=TOKEN_SALT, compress=True)


def read_token(token: str) -> Dict[str, Any]:
    """
    Verify a token and return its payload.
    Raises UnauthorizedException when the token is tampered or expired.
    """
    try:
        return signing.loads(token, salt=TOKEN_SALT, max_age=settings.AUTH_TOKEN_MAX_AGE)
    except signing.SignatureExpired:
        raise UnauthorizedException("Token has expired")
    except signing.BadSignature:
        raise UnauthorizedException("Invalid or expired token")
