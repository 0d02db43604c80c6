"""
Workspace REST API views.
"""
import logging

from django.conf import settings
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import Unauthenticated
from apps.rbac.guard import authorize
from apps.workspaces.models import Workspace
from apps.workspaces.resolver import resolve_tenant
from apps.workspaces.serializers import (
    WorkspaceCreateSerializer, WorkspaceMembershipSerializer, WorkspaceSerializer,
)
from apps.workspaces.services import WorkspaceService

logger = logging.getLogger(__name__)


def _require_user(request):
    if not request.user or not request.user.is_authenticated:
        raise Unauthenticated()
    return request.user


@extend_schema_view(
    get=extend_schema(
        tags=['Workspaces'],
        summary="List the caller's workspaces",
        description='Workspaces the caller belongs to, with the role held in each.',
        responses={200: WorkspaceMembershipSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['Workspaces'],
        summary='Create a workspace',
        description='The caller becomes the owner of the new workspace.',
        request=WorkspaceCreateSerializer,
        responses={201: WorkspaceSerializer},
    ),
)
class WorkspaceListCreateView(APIView):
    """
    GET  /v1/workspaces
    POST /v1/workspaces
    """

    def get(self, request):
        user = _require_user(request)
        memberships = WorkspaceService.workspaces_for(user)
        return Response(WorkspaceMembershipSerializer(memberships, many=True).data)

    def post(self, request):
        user = _require_user(request)
        serializer = WorkspaceCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        workspace = WorkspaceService.create_workspace(
            owner=user,
            name=serializer.validated_data['name'],
            slug=serializer.validated_data.get('slug') or None,
            request=request,
        )
        return Response(WorkspaceSerializer(workspace).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['Workspaces'],
        summary='Resolve the current workspace',
        description='''
Resolve the workspace this request targets and return the caller's role
and capability map in it.

The workspace is taken from, in order: the `workspace_id` body field, the
`workspace_id` query parameter, the `X-Workspace-Slug` header, and finally
the caller's default workspace (the one they own, else the most recently
joined).
        ''',
        parameters=[
            OpenApiParameter('workspace_id', OpenApiTypes.UUID, OpenApiParameter.QUERY, required=False),
            OpenApiParameter('X-Workspace-Slug', OpenApiTypes.STR, OpenApiParameter.HEADER, required=False),
        ],
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    )
)
class CurrentWorkspaceView(APIView):
    """
    GET /v1/workspaces/current
    """

    def get(self, request):
        _require_user(request)
        workspace_id = resolve_tenant(request)
        context = authorize(
            request,
            route_kwargs={settings.WORKSPACE_ID_FIELD: workspace_id},
            action='workspace.current',
            resource='workspace',
            resource_id=workspace_id,
        )
        workspace = Workspace.objects.get(id=context.workspace_id)

        return Response({
            'workspace': WorkspaceSerializer(workspace).data,
            'role': context.role.value if context.role else None,
            'is_owner': workspace.owner_id == context.user_id,
            'capabilities': context.capabilities.as_dict(),
        })
