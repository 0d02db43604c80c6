"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'].update({
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    })
    settings.RATELIMIT_ENABLE = False
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Create tables for apps without migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def make_user(db):
    """Factory for users."""
    from apps.rbac.models import User

    def _make_user(email, password='s3cure-Passw0rd!', **extra):
        return User.objects.create_user(email=email, password=password, **extra)

    return _make_user


@pytest.fixture
def owner(make_user):
    return make_user('alice@x.com', first_name='Alice')


@pytest.fixture
def workspace(owner):
    """Workspace 'acme' owned by alice."""
    from apps.workspaces.services import WorkspaceService
    return WorkspaceService.create_workspace(owner=owner, name='Acme', slug='acme')


@pytest.fixture
def add_member(db):
    """Add a user to a workspace with a role."""
    from apps.rbac.models import Membership

    def _add_member(workspace, user, role='member'):
        return Membership.objects.create(workspace=workspace, user=user, role=role)

    return _add_member


@pytest.fixture
def client_for():
    """API client authenticated as the given user."""
    from rest_framework.test import APIClient
    from apps.rbac.services import AuthService

    def _client_for(user):
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {AuthService.generate_jwt(user)}")
        return client

    return _client_for
