"""
URL configuration for authentication endpoints.
"""
from django.urls import path

from apps.rbac.views_auth import RegistrationView

urlpatterns = [
    path('register', RegistrationView.as_view(), name='auth-register'),
]
