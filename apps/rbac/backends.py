"""
Email-based authentication backend, used by Django admin and login.
"""
from django.contrib.auth.backends import BaseBackend
from django.contrib.auth import get_user_model

User = get_user_model()


class EmailAuthBackend(BaseBackend):
    """
    Authenticate using email address instead of username.
    """

    def authenticate(self, request, username=None, password=None, **kwargs):
        # Django admin passes email as 'username'
        email = username or kwargs.get('email')

        if not email or not password:
            return None

        try:
            user = User.objects.get(email=email)
        except User.DoesNotExist:
            # Run the hasher once to even out timing for unknown users
            User().set_password(password)
            return None

        if user.check_password(password) and user.is_active:
            return user
        return None

    def get_user(self, user_id):
        try:
            return User.objects.get(pk=user_id)
        except User.DoesNotExist:
            return None
