import logging
from datetime import datetime, timedelta, timezone

import jwt
from django.conf import settings
from django.contrib.auth import get_user_model
from rest_framework import authentication, exceptions

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def issue_admin_token(user):
    now = datetime.now(timezone.utc)
    payload = {
        'id': user.pk,
        'email': user.email,
        'iat': now,
        'exp': now + timedelta(hours=settings.JWT_EXPIRY_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


class JWTAuthentication(authentication.BaseAuthentication):
    """Admin token from ``Authorization: Bearer <token>`` (the bare token is accepted too)."""

    def authenticate(self, request):
        header = request.META.get('HTTP_AUTHORIZATION', '')
        if not header:
            return None
        token = header[7:] if header.startswith('Bearer ') else header

        try:
            payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise exceptions.AuthenticationFailed('Token expired')
        except jwt.InvalidTokenError:
            raise exceptions.AuthenticationFailed('Invalid token')

        user = get_user_model().objects.filter(pk=payload.get('id'), is_active=True).first()
        if user is None:
            logger.warning('Token for unknown admin id %s', payload.get('id'))
            raise exceptions.AuthenticationFailed('Invalid token')
        return user, payload

    def authenticate_header(self, request):
        return 'Bearer'
