"""
RBAC REST API views.

Implements endpoints for:
- Member listing, role changes, removal and leaving
- Invitations (create/refresh, list, cancel, public lookup, accept)
- Audit log viewing

Role change, removal and leave only require membership at the guard; the
membership service applies owner protection before any capability check.
Their guard entries record the request; the service records the change.
"""
import logging

from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from django_ratelimit.exceptions import Ratelimited
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import MemberNotFound, Unauthenticated
from apps.core.permissions import requires_capability
from apps.rbac.models import AuditLog, Invitation, Membership, User
from apps.rbac.roles import Capability
from apps.rbac.serializers import (
    AuditLogSerializer, InvitationDetailSerializer, InvitationSerializer,
    InviteMemberSerializer, MembershipSerializer, RoleChangeSerializer,
)
from apps.rbac.services import InvitationService, MembershipService
from apps.workspaces.models import Workspace

logger = logging.getLogger(__name__)


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


def _workspace(context):
    return Workspace.objects.get(id=context.workspace_id)


def _target_user(user_id):
    user = User.objects.filter(id=user_id).first()
    if user is None:
        raise MemberNotFound()
    return user


def _reject_if_limited(request):
    if getattr(request, 'limited', False):
        raise Ratelimited()


# ===== MEMBERS =====

@extend_schema_view(
    get=extend_schema(
        tags=['Members'],
        summary='List workspace members',
        description='**Required capability:** `canViewMembersList`',
        responses={200: MembershipSerializer(many=True), 403: OpenApiTypes.OBJECT},
    )
)
class WorkspaceMembersView(APIView):
    """
    GET /v1/workspaces/{workspace_id}/members
    """

    @requires_capability(Capability.VIEW_MEMBERS_LIST, action='members.list', resource='membership')
    def get(self, request, workspace_id, context):
        memberships = Membership.objects.for_workspace(context.workspace_id).order_by('joined_at')
        return Response(MembershipSerializer(memberships, many=True).data)


@extend_schema_view(
    patch=extend_schema(
        tags=['Members'],
        summary='Change a member role',
        description='''
**Required capability:** `canChangeRoles`

The owner's role cannot be changed (`OWNER_PROTECTED`), and only the
workspace owner can grant the `owner` role.
        ''',
        request=RoleChangeSerializer,
        responses={200: MembershipSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    )
)
class MemberRoleView(APIView):
    """
    PATCH /v1/workspaces/{workspace_id}/members/{user_id}/role
    """

    @requires_capability(action='members.role_change_requested', resource='membership', resource_id_kwarg='user_id')
    def patch(self, request, workspace_id, user_id, context):
        serializer = RoleChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        membership = MembershipService.change_role(
            actor=request.user,
            workspace=_workspace(context),
            target_user=_target_user(user_id),
            new_role=serializer.validated_data['role'],
            request=request,
        )
        return Response(MembershipSerializer(membership).data)


@extend_schema_view(
    delete=extend_schema(
        tags=['Members'],
        summary='Remove a member',
        description='''
**Required capability:** `canRemoveMembers`

The owner cannot be removed; members leave through the leave endpoint
rather than removing themselves.
        ''',
        responses={204: None, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    )
)
class MemberDetailView(APIView):
    """
    DELETE /v1/workspaces/{workspace_id}/members/{user_id}
    """

    @requires_capability(action='members.removal_requested', resource='membership', resource_id_kwarg='user_id')
    def delete(self, request, workspace_id, user_id, context):
        MembershipService.remove_member(
            actor=request.user,
            workspace=_workspace(context),
            target_user=_target_user(user_id),
            request=request,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    post=extend_schema(
        tags=['Members'],
        summary='Leave a workspace',
        description='Any member except the owner may leave.',
        request=None,
        responses={204: None, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    )
)
class LeaveWorkspaceView(APIView):
    """
    POST /v1/workspaces/{workspace_id}/leave
    """

    @requires_capability(action='members.leave_requested', resource='membership')
    def post(self, request, workspace_id, context):
        MembershipService.leave(request.user, _workspace(context), request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


# ===== INVITATIONS =====

@extend_schema_view(
    get=extend_schema(
        tags=['Invitations'],
        summary='List pending invitations',
        description='**Required capability:** `canManageInvitations`',
        responses={200: InvitationSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['Invitations'],
        summary='Invite or re-invite an email address',
        description='''
**Required capability:** `canInviteMembers`

Re-inviting an address with an open invitation refreshes its role and
expiry and keeps its link; the response is then 200 instead of 201.
        ''',
        request=InviteMemberSerializer,
        responses={201: InvitationSerializer, 200: InvitationSerializer, 409: OpenApiTypes.OBJECT},
    ),
)
class WorkspaceInvitationsView(APIView):
    """
    GET  /v1/workspaces/{workspace_id}/invitations
    POST /v1/workspaces/{workspace_id}/invitations
    """

    @requires_capability(Capability.MANAGE_INVITATIONS, action='invitations.list', resource='invitation')
    def get(self, request, workspace_id, context):
        invitations = Invitation.objects.pending_for(context.workspace_id)
        return Response(InvitationSerializer(invitations, many=True).data)

    @requires_capability(Capability.INVITE_MEMBERS, action='invitations.create', resource='invitation')
    def post(self, request, workspace_id, context):
        serializer = InviteMemberSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        invitation, created = InvitationService.invite(
            actor=request.user,
            workspace=_workspace(context),
            email=serializer.validated_data['email'],
            role=serializer.validated_data['role'],
            request=request,
        )
        return Response(
            InvitationSerializer(invitation).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


@extend_schema_view(
    delete=extend_schema(
        tags=['Invitations'],
        summary='Cancel an invitation',
        description='**Required capability:** `canManageInvitations`. Cancelling a missing invitation is not an error.',
        responses={204: None, 403: OpenApiTypes.OBJECT},
    )
)
class InvitationCancelView(APIView):
    """
    DELETE /v1/workspaces/{workspace_id}/invitations/{invitation_id}
    """

    @requires_capability(
        Capability.MANAGE_INVITATIONS,
        action='invitations.cancel',
        resource='invitation',
        resource_id_kwarg='invitation_id',
    )
    def delete(self, request, workspace_id, invitation_id, context):
        InvitationService.cancel(request.user, _workspace(context), invitation_id, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['Invitations'],
        summary='Look up an invitation by token',
        description='No authentication required. Does not accept the invitation.',
        responses={
            200: InvitationDetailSerializer,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
            410: OpenApiTypes.OBJECT,
        },
    )
)
@method_decorator(ratelimit(key='ip', rate='30/m', method='GET', block=False), name='dispatch')
class InvitationLookupView(APIView):
    """
    GET /v1/invitations/{token}
    """
    authentication_classes = []
    permission_classes = []

    def get(self, request, token):
        _reject_if_limited(request)
        detail = InvitationService.lookup(token)
        return Response(InvitationDetailSerializer(detail).data)


@extend_schema_view(
    post=extend_schema(
        tags=['Invitations'],
        summary='Accept an invitation',
        description='''
The authenticated user's email must match the invited address exactly.
        ''',
        request=None,
        responses={
            201: MembershipSerializer,
            401: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
            410: OpenApiTypes.OBJECT,
        },
    )
)
@method_decorator(ratelimit(key='ip', rate='10/m', method='POST', block=False), name='dispatch')
class InvitationAcceptView(APIView):
    """
    POST /v1/invitations/{token}/accept
    """

    def post(self, request, token):
        _reject_if_limited(request)
        if not request.user or not request.user.is_authenticated:
            raise Unauthenticated()

        membership = InvitationService.accept(request.user, token, request=request)
        return Response(MembershipSerializer(membership).data, status=status.HTTP_201_CREATED)


# ===== AUDIT =====

@extend_schema_view(
    get=extend_schema(
        tags=['Audit'],
        summary='List workspace audit log',
        description='''
**Required capability:** `canViewAuditLogs`

Platform administrators may read any workspace's audit log.
        ''',
        responses={200: AuditLogSerializer(many=True)},
    )
)
class AuditLogListView(APIView):
    """
    GET /v1/workspaces/{workspace_id}/audit-logs
    """

    @requires_capability(
        Capability.VIEW_AUDIT_LOGS,
        action='audit_logs.list',
        resource='audit_log',
        allow_platform_admin=True,
    )
    def get(self, request, workspace_id, context):
        queryset = AuditLog.objects.for_workspace(context.workspace_id).select_related('user')

        action = request.query_params.get('action')
        if action:
            queryset = queryset.filter(action=action)

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        return paginator.get_paginated_response(AuditLogSerializer(page, many=True).data)
