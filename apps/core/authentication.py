"""
Custom DRF authentication classes.
"""
import logging
from rest_framework.authentication import BaseAuthentication, get_authorization_header

logger = logging.getLogger(__name__)


class JWTAuthentication(BaseAuthentication):
    """
    DRF authentication class that resolves `Authorization: Bearer <token>`
    to a User.

    A missing, malformed or expired token leaves the request anonymous;
    the workspace guard then refuses it as unauthenticated.
    """

    keyword = b'bearer'

    def authenticate(self, request):
        """
        Return (user, token) for a valid bearer token, None otherwise.
        """
        from apps.rbac.services import AuthService

        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() != self.keyword:
            return None

        if len(auth) != 2:
            logger.debug("Malformed Authorization header")
            return None

        try:
            token = auth[1].decode()
        except UnicodeError:
            return None

        user = AuthService.get_user_from_jwt(token)
        if user is None:
            return None

        return (user, token)

    def authenticate_header(self, request):
        return 'Bearer'
