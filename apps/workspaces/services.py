"""
Workspace lifecycle service.
"""
import logging

from django.db import transaction
from django.utils import timezone
from django.utils.text import slugify

from apps.rbac.models import AuditLog, Membership
from apps.rbac.roles import Role
from apps.workspaces.models import Workspace

logger = logging.getLogger(__name__)


class WorkspaceService:
    """
    Creates workspaces and lists a user's workspaces.
    """

    @classmethod
    def unique_slug(cls, value: str) -> str:
        base_slug = slugify(value)[:90] or 'workspace'
        slug = base_slug
        counter = 1
        while Workspace.objects.filter(slug=slug).exists():
            slug = f"{base_slug}-{counter}"
            counter += 1
        return slug

    @classmethod
    @transaction.atomic
    def create_workspace(cls, owner, name: str, slug: str = None, request=None) -> Workspace:
        """
        Create a workspace with `owner` as designated owner and owner member.

        Args:
            owner: User who will own the workspace
            name: Display name
            slug: Preferred slug (derived from name if not given); suffixed
                with -1, -2, ... until unique

        Returns:
            Workspace instance
        """
        workspace = Workspace.objects.create(
            name=name,
            slug=cls.unique_slug(slug or name),
            owner=owner,
        )
        Membership.objects.create(
            workspace=workspace,
            user=owner,
            role=Role.OWNER,
            joined_at=timezone.now(),
        )

        AuditLog.log_action(
            action='workspace.created',
            user=owner,
            workspace=workspace,
            resource='workspace',
            resource_id=workspace.id,
            metadata={'slug': workspace.slug},
            request=request,
        )
        logger.info(
            "Workspace created",
            extra={'workspace_id': str(workspace.id), 'user_id': str(owner.id)}
        )
        return workspace

    @classmethod
    def workspaces_for(cls, user):
        """Memberships of the user, with their workspaces, newest first."""
        return Membership.objects.for_user(user).order_by('-joined_at')
