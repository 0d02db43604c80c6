"""
Tests for the requires_capability view decorator.
"""
import pytest
from rest_framework.response import Response
from rest_framework.test import APIRequestFactory, force_authenticate
from rest_framework.views import APIView

from apps.core.permissions import requires_capability
from apps.rbac.models import AuditLog
from apps.rbac.roles import Capability, Role


class ExportView(APIView):

    @requires_capability(Capability.EXPORT_DATA, action='data.export', resource='list', resource_id_kwarg='list_id')
    def get(self, request, workspace_id, list_id, context):
        return Response({'role': context.role.value, 'list_id': list_id})


class OwnerOnlyView(APIView):

    @requires_capability(roles=[Role.OWNER])
    def get(self, request, workspace_id, context):
        return Response({'owner': context.is_owner})


def call(view_class, user, **kwargs):
    request = APIRequestFactory().get('/v1/whatever')
    force_authenticate(request, user=user)
    return view_class.as_view()(request, **kwargs)


@pytest.mark.django_db
class TestRequiresCapability:

    def test_passes_context(self, owner, workspace):
        response = call(ExportView, owner, workspace_id=workspace.id, list_id='l-1')

        assert response.status_code == 200
        assert response.data == {'role': 'owner', 'list_id': 'l-1'}
        entry = AuditLog.objects.get(action='data.export')
        assert entry.resource == 'list'
        assert entry.resource_id == 'l-1'

    def test_refusal_is_rendered(self, workspace, make_user, add_member):
        viewer = make_user('vic@x.com')
        add_member(workspace, viewer, Role.VIEWER)

        response = call(ExportView, viewer, workspace_id=workspace.id, list_id='l-1')

        assert response.status_code == 403
        assert response.data['error']['details']['required_capability'] == 'canExportData'

    def test_role_set(self, owner, workspace, make_user, add_member):
        admin = make_user('ada@x.com')
        add_member(workspace, admin, Role.ADMIN)

        assert call(OwnerOnlyView, owner, workspace_id=workspace.id).data == {'owner': True}
        assert call(OwnerOnlyView, admin, workspace_id=workspace.id).status_code == 403

    def test_metadata_on_wrapper(self):
        assert ExportView.get.required_capability == Capability.EXPORT_DATA
        assert OwnerOnlyView.get.required_roles == [Role.OWNER]
