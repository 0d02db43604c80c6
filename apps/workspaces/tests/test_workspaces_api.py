"""
API tests for workspace listing, creation and current-workspace resolution.
"""
import uuid

import pytest

from apps.rbac.models import AuditLog, Membership
from apps.rbac.roles import Capability, Role
from apps.workspaces.services import WorkspaceService


@pytest.mark.django_db
class TestWorkspaceList:

    def test_lists_caller_workspaces(self, client_for, owner, workspace):
        response = client_for(owner).get('/v1/workspaces')

        assert response.status_code == 200
        assert response.data == [{
            'id': str(workspace.id),
            'name': 'Acme',
            'slug': 'acme',
            'role': 'owner',
            'is_owner': True,
            'joined_at': response.data[0]['joined_at'],
        }]

    def test_anonymous(self, api_client):
        response = api_client.get('/v1/workspaces')

        assert response.status_code == 401
        assert response.data['error']['code'] == 'UNAUTHENTICATED'

    def test_create(self, client_for, owner):
        response = client_for(owner).post('/v1/workspaces', {'name': 'Blue Sky'}, format='json')

        assert response.status_code == 201
        assert response.data['slug'] == 'blue-sky'
        assert response.data['owner'] == owner.id

    def test_create_requires_name(self, client_for, owner):
        response = client_for(owner).post('/v1/workspaces', {'name': '   '}, format='json')

        assert response.status_code == 400
        assert 'name' in response.data


@pytest.mark.django_db
class TestCurrentWorkspace:

    URL = '/v1/workspaces/current'

    def test_defaults_to_owned_workspace(self, client_for, owner, workspace):
        response = client_for(owner).get(self.URL)

        assert response.status_code == 200
        assert response.data['workspace']['slug'] == 'acme'
        assert response.data['role'] == 'owner'
        assert response.data['is_owner'] is True
        assert response.data['capabilities'][Capability.CHANGE_ROLES.value] is True
        assert len(response.data['capabilities']) == len(Capability)

    def test_query_parameter_selects_workspace(self, client_for, owner, workspace, make_user):
        bob = make_user('bob@x.com')
        other = WorkspaceService.create_workspace(bob, 'Bobs')
        Membership.objects.create(workspace=other, user=owner, role=Role.VIEWER)

        response = client_for(owner).get(self.URL, {'workspace_id': str(other.id)})

        assert response.data['workspace']['slug'] == 'bobs'
        assert response.data['role'] == 'viewer'
        assert response.data['is_owner'] is False
        assert response.data['capabilities']['canInviteMembers'] is False
        assert response.data['capabilities']['canViewLists'] is True

    def test_slug_header(self, client_for, workspace, make_user, add_member):
        bob = make_user('bob@x.com')
        add_member(workspace, bob, Role.MEMBER)
        WorkspaceService.create_workspace(bob, 'Bobs')

        response = client_for(bob).get(self.URL, HTTP_X_WORKSPACE_SLUG='acme')

        assert response.data['workspace']['slug'] == 'acme'
        assert response.data['role'] == 'member'

    def test_unknown_workspace_id_does_not_fall_back(self, client_for, owner, workspace):
        response = client_for(owner).get(self.URL, {'workspace_id': str(uuid.uuid4())})

        assert response.status_code == 400
        assert response.data['error']['code'] == 'TENANT_REQUIRED'

    def test_no_workspace_at_all(self, client_for, make_user):
        response = client_for(make_user('drifter@x.com')).get(self.URL)

        assert response.status_code == 400
        assert response.data['error']['code'] == 'TENANT_REQUIRED'

    def test_foreign_workspace(self, client_for, workspace, make_user):
        response = client_for(make_user('carol@x.com')).get(self.URL, HTTP_X_WORKSPACE_SLUG='acme')

        assert response.status_code == 403
        assert response.data['error']['code'] == 'NOT_A_MEMBER'

    def test_audited(self, client_for, owner, workspace):
        client_for(owner).get(self.URL)

        entry = AuditLog.objects.get(action='workspace.current')
        assert entry.workspace_id == workspace.id
        assert entry.resource_id == str(workspace.id)

    def test_request_id_is_echoed(self, client_for, owner, workspace):
        response = client_for(owner).get(self.URL, HTTP_X_REQUEST_ID='req-123')

        assert response['X-Request-ID'] == 'req-123'
        assert AuditLog.objects.get(action='workspace.current').request_id == 'req-123'
