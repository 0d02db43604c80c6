"""
URL configuration for membership, invitation and audit endpoints.
"""
from django.urls import path

from apps.rbac import views

urlpatterns = [
    path('workspaces/<uuid:workspace_id>/members',
         views.WorkspaceMembersView.as_view(), name='workspace-members'),
    path('workspaces/<uuid:workspace_id>/members/<uuid:user_id>',
         views.MemberDetailView.as_view(), name='workspace-member-detail'),
    path('workspaces/<uuid:workspace_id>/members/<uuid:user_id>/role',
         views.MemberRoleView.as_view(), name='workspace-member-role'),
    path('workspaces/<uuid:workspace_id>/leave',
         views.LeaveWorkspaceView.as_view(), name='workspace-leave'),
    path('workspaces/<uuid:workspace_id>/invitations',
         views.WorkspaceInvitationsView.as_view(), name='workspace-invitations'),
    path('workspaces/<uuid:workspace_id>/invitations/<uuid:invitation_id>',
         views.InvitationCancelView.as_view(), name='workspace-invitation-cancel'),
    path('workspaces/<uuid:workspace_id>/audit-logs',
         views.AuditLogListView.as_view(), name='workspace-audit-logs'),
    path('invitations/<str:token>',
         views.InvitationLookupView.as_view(), name='invitation-lookup'),
    path('invitations/<str:token>/accept',
         views.InvitationAcceptView.as_view(), name='invitation-accept'),
]
