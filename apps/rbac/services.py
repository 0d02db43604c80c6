"""
RBAC services: authentication, invitation lifecycle and membership changes.

Every operation returns a typed value or raises one of the named
MatchmakerException subclasses; none of them answer with a bare boolean.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

import jwt
from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.exceptions import (
    AlreadyAccepted, AlreadyMember, EmailMismatch, Expired, Forbidden,
    InvitationNotFound, MemberNotFound, NotAMember, OwnerProtected,
    SelfRemovalNotAllowed,
)
from apps.core.logging import SecurityLogger
from apps.rbac.models import AuditLog, Invitation, Membership, User, generate_invitation_token
from apps.rbac.notifications import send_invitation_email
from apps.rbac.roles import Capability, Role, permissions_for

logger = logging.getLogger(__name__)


def _actor_membership(actor, workspace) -> Membership:
    membership = Membership.objects.membership_of(actor, workspace)
    if membership is None:
        SecurityLogger.log_authorization_denied(
            user_id=getattr(actor, 'id', None),
            workspace_id=workspace.id,
            reason=NotAMember.code,
        )
        raise NotAMember()
    return membership


def _require_capability(membership: Membership, capability: Capability):
    if permissions_for(membership.role).has(capability):
        return
    SecurityLogger.log_authorization_denied(
        user_id=membership.user_id,
        workspace_id=membership.workspace_id,
        reason=Forbidden.code,
        role=membership.role,
        required=capability.value,
    )
    raise Forbidden(
        f"Insufficient permissions: {capability.value} required",
        role=membership.role,
        required_capability=capability.value,
    )


def _parse_role(role) -> Role:
    parsed = Role.from_value(role)
    if parsed is None:
        raise ValueError(f"Unknown role: {role!r}")
    return parsed


def _is_owner_membership(membership: Membership, workspace) -> bool:
    return membership.role == Role.OWNER or membership.user_id == workspace.owner_id


class AuthService:
    """
    Service for authentication operations: registration and JWT handling.
    """

    @classmethod
    def generate_jwt(cls, user: User) -> str:
        now = datetime.utcnow()
        payload = {
            'user_id': str(user.id),
            'email': user.email,
            'exp': now + timedelta(hours=settings.JWT_EXPIRATION_HOURS),
            'iat': now,
        }
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """
        Return the decoded payload, or None if the token is invalid or expired.
        """
        try:
            return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            logger.debug("Expired JWT presented")
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def get_user_from_jwt(cls, token: str) -> Optional[User]:
        payload = cls.validate_jwt(token)
        if not payload:
            return None

        user_id = payload.get('user_id')
        if not user_id:
            return None

        try:
            return User.objects.get(id=user_id, is_active=True)
        except (User.DoesNotExist, ValueError):
            return None

    @classmethod
    @transaction.atomic
    def register_user(cls, email: str, password: str, first_name: str = '',
                      last_name: str = '') -> Dict[str, Any]:
        """
        Register a new user together with a personal workspace they own.

        Returns:
            Dict with user, workspace and token

        Raises:
            ValueError: if the email is already registered
        """
        from apps.workspaces.services import WorkspaceService

        email = User.objects.normalize_email(email)
        if User.objects.filter(email=email).exists():
            raise ValueError(f"User with email '{email}' already exists")

        user = User.objects.create_user(
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
        )

        display_name = first_name.strip() or email.split('@', 1)[0]
        workspace = WorkspaceService.create_workspace(
            owner=user,
            name=f"{display_name}'s Workspace",
        )

        logger.info(
            "User registered",
            extra={'user_id': str(user.id), 'workspace_id': str(workspace.id)}
        )

        return {
            'user': user,
            'workspace': workspace,
            'token': cls.generate_jwt(user),
        }


@dataclass(frozen=True)
class InvitationDetail:
    """What an invitee may see about an invitation before accepting it."""

    id: Any
    workspace_id: Any
    workspace_name: str
    workspace_slug: str
    email: str
    role: str
    invited_by_name: Optional[str]
    invited_by_email: Optional[str]
    expires_at: datetime
    accepted_at: Optional[datetime]


class InvitationService:
    """
    Invitation lifecycle: invite (or refresh), lookup, accept, cancel.

    An invitation is open until accepted or deleted. Expiry is a time
    comparison made when the invitation is read or accepted.
    """

    @classmethod
    def _expiry_from(cls, now):
        return now + timedelta(days=settings.INVITATION_EXPIRY_DAYS)

    @classmethod
    def invite(cls, actor: User, workspace, email: str, role=Role.MEMBER,
               request=None) -> Tuple[Invitation, bool]:
        """
        Invite an email address to a workspace, or refresh its open invitation.

        An open invitation keeps its token and gets the new role and a
        fresh expiry. An expired, unaccepted one is replaced by a new
        invitation with a new token. The notification email is sent after
        the write commits; delivery failures are logged only.

        Returns:
            (invitation, created)

        Raises:
            NotAMember, Forbidden, AlreadyMember
        """
        membership = _actor_membership(actor, workspace)
        _require_capability(membership, Capability.INVITE_MEMBERS)

        role = _parse_role(role)
        if role == Role.OWNER and actor.id != workspace.owner_id:
            SecurityLogger.log_privilege_escalation_attempt(
                actor_id=actor.id,
                workspace_id=workspace.id,
                operation='invite_as_owner',
            )
            raise Forbidden(
                'Only the workspace owner can invite another owner',
                role=membership.role,
                required_roles=[Role.OWNER.value],
            )

        email = User.objects.normalize_email(email)
        if Membership.objects.filter(workspace=workspace, user__email=email).exists():
            raise AlreadyMember(f"{email} is already a member of this workspace")

        try:
            with transaction.atomic():
                invitation, created = cls._upsert(actor, workspace, email, role)
        except IntegrityError:
            # A concurrent invite for the same address won; refresh that row
            with transaction.atomic():
                invitation, created = cls._upsert(actor, workspace, email, role)

        AuditLog.log_action(
            action='invitation.created' if created else 'invitation.refreshed',
            user=actor,
            workspace=workspace,
            resource='invitation',
            resource_id=invitation.id,
            metadata={'role': role.value},
            request=request,
        )

        send_invitation_email(invitation)
        return invitation, created

    @classmethod
    def _upsert(cls, actor, workspace, email, role):
        now = timezone.now()
        existing = (
            Invitation.objects.select_for_update()
            .filter(workspace=workspace, email=email, accepted_at__isnull=True)
            .first()
        )

        if existing is not None and not existing.is_expired(now):
            existing.role = role
            existing.expires_at = cls._expiry_from(now)
            existing.invited_by = actor
            existing.save(update_fields=['role', 'expires_at', 'invited_by', 'updated_at'])
            logger.info(
                "Invitation refreshed",
                extra={'invitation_id': str(existing.id), 'workspace_id': str(workspace.id)}
            )
            return existing, False

        if existing is not None:
            logger.info(
                "Expired invitation superseded",
                extra={'invitation_id': str(existing.id), 'workspace_id': str(workspace.id)}
            )
            existing.delete()

        invitation = Invitation.objects.create(
            workspace=workspace,
            email=email,
            role=role,
            token=generate_invitation_token(),
            invited_by=actor,
            expires_at=cls._expiry_from(now),
        )
        logger.info(
            "Invitation created",
            extra={'invitation_id': str(invitation.id), 'workspace_id': str(workspace.id)}
        )
        return invitation, True

    @classmethod
    def lookup(cls, token: str) -> InvitationDetail:
        """
        Describe an invitation without consuming it.

        Raises:
            InvitationNotFound, AlreadyAccepted, Expired
        """
        invitation = Invitation.objects.by_token(token)
        if invitation is None:
            raise InvitationNotFound()
        if invitation.is_accepted:
            raise AlreadyAccepted()
        if invitation.is_expired():
            raise Expired()

        inviter = invitation.invited_by
        return InvitationDetail(
            id=invitation.id,
            workspace_id=invitation.workspace_id,
            workspace_name=invitation.workspace.name,
            workspace_slug=invitation.workspace.slug,
            email=invitation.email,
            role=invitation.role,
            invited_by_name=inviter.get_full_name() if inviter else None,
            invited_by_email=inviter.email if inviter else None,
            expires_at=invitation.expires_at,
            accepted_at=invitation.accepted_at,
        )

    @classmethod
    def accept(cls, user: User, token: str, request=None) -> Membership:
        """
        Accept an invitation as `user`.

        The user's email must equal the invitee email exactly.

        Raises:
            InvitationNotFound, EmailMismatch, AlreadyMember,
            AlreadyAccepted, Expired
        """
        invitation = Invitation.objects.by_token(token)
        if invitation is None:
            raise InvitationNotFound()

        if user.email != invitation.email:
            SecurityLogger.log_invitation_email_mismatch(
                user_id=user.id,
                invitation_id=invitation.id,
                user_email=user.email,
                invitee_email=invitation.email,
            )
            raise EmailMismatch()

        if Membership.objects.membership_of(user, invitation.workspace_id) is not None:
            raise AlreadyMember()
        if invitation.is_accepted:
            raise AlreadyAccepted()
        if invitation.is_expired():
            raise Expired()

        membership = cls.consume(invitation, user)

        AuditLog.log_action(
            action='invitation.accepted',
            user=user,
            workspace=invitation.workspace,
            resource='invitation',
            resource_id=invitation.id,
            metadata={'role': invitation.role},
            request=request,
        )
        return membership

    @classmethod
    def consume(cls, invitation: Invitation, user: User) -> Membership:
        """
        Mark the invitation accepted and create the membership, atomically.

        Only one caller can flip `accepted_at` from null; the membership
        uniqueness constraint backs this up. Losers get AlreadyAccepted
        or AlreadyMember.
        """
        now = timezone.now()
        with transaction.atomic():
            updated = Invitation.objects.filter(
                pk=invitation.pk, accepted_at__isnull=True,
            ).update(accepted_at=now, accepted_by=user, updated_at=now)
            if updated == 0:
                raise AlreadyAccepted()

            try:
                with transaction.atomic():
                    membership = Membership.objects.create(
                        workspace_id=invitation.workspace_id,
                        user=user,
                        role=invitation.role,
                        invited_by_id=invitation.invited_by_id,
                        joined_at=now,
                    )
            except IntegrityError:
                raise AlreadyMember()

        invitation.accepted_at = now
        invitation.accepted_by = user
        logger.info(
            "Invitation accepted",
            extra={
                'invitation_id': str(invitation.id),
                'workspace_id': str(invitation.workspace_id),
                'user_id': str(user.id),
            }
        )
        return membership

    @classmethod
    def cancel(cls, actor: User, workspace, invitation_id, request=None) -> bool:
        """
        Delete an open invitation. Returns False when it was already gone.

        Raises:
            NotAMember, Forbidden
        """
        membership = _actor_membership(actor, workspace)
        _require_capability(membership, Capability.MANAGE_INVITATIONS)

        deleted, _ = Invitation.objects.filter(
            pk=invitation_id, workspace=workspace, accepted_at__isnull=True,
        ).delete()

        if deleted:
            AuditLog.log_action(
                action='invitation.cancelled',
                user=actor,
                workspace=workspace,
                resource='invitation',
                resource_id=invitation_id,
                request=request,
            )
        return bool(deleted)


class MembershipService:
    """
    Membership changes: role change, removal and leaving.

    The owner membership (owner role, or the workspace's designated owner)
    can never be demoted, removed or left.
    """

    @classmethod
    def change_role(cls, actor: User, workspace, target_user: User, new_role,
                    request=None) -> Membership:
        """
        Raises:
            NotAMember, MemberNotFound, OwnerProtected, Forbidden
        """
        actor_membership = _actor_membership(actor, workspace)
        new_role = _parse_role(new_role)

        target = Membership.objects.membership_of(target_user, workspace)
        if target is None:
            raise MemberNotFound()

        if _is_owner_membership(target, workspace):
            SecurityLogger.log_event(
                'owner_protection_triggered',
                actor_id=str(actor.id),
                workspace_id=str(workspace.id),
                operation='change_role',
            )
            raise OwnerProtected("The workspace owner's role cannot be changed")

        _require_capability(actor_membership, Capability.CHANGE_ROLES)

        if new_role == Role.OWNER and actor.id != workspace.owner_id:
            SecurityLogger.log_privilege_escalation_attempt(
                actor_id=actor.id,
                workspace_id=workspace.id,
                operation='promote_to_owner',
            )
            raise Forbidden(
                'Only the workspace owner can grant the owner role',
                role=actor_membership.role,
                required_roles=[Role.OWNER.value],
            )

        old_role = target.role
        target.role = new_role
        target.save(update_fields=['role', 'updated_at'])

        AuditLog.log_action(
            action='membership.role_changed',
            user=actor,
            workspace=workspace,
            resource='membership',
            resource_id=target.id,
            metadata={'user_id': str(target_user.id), 'from': old_role, 'to': new_role.value},
            request=request,
        )
        return target

    @classmethod
    def remove_member(cls, actor: User, workspace, target_user: User, request=None):
        """
        Raises:
            NotAMember, MemberNotFound, OwnerProtected,
            SelfRemovalNotAllowed, Forbidden
        """
        actor_membership = _actor_membership(actor, workspace)

        target = Membership.objects.membership_of(target_user, workspace)
        if target is None:
            raise MemberNotFound()

        if _is_owner_membership(target, workspace):
            SecurityLogger.log_event(
                'owner_protection_triggered',
                actor_id=str(actor.id),
                workspace_id=str(workspace.id),
                operation='remove_member',
            )
            raise OwnerProtected('The workspace owner cannot be removed')

        if target.user_id == actor.id:
            raise SelfRemovalNotAllowed()

        _require_capability(actor_membership, Capability.REMOVE_MEMBERS)

        target_id = target.id
        target.delete()

        AuditLog.log_action(
            action='membership.removed',
            user=actor,
            workspace=workspace,
            resource='membership',
            resource_id=target_id,
            metadata={'user_id': str(target_user.id)},
            request=request,
        )

    @classmethod
    def leave(cls, user: User, workspace, request=None):
        """
        Raises:
            NotAMember, OwnerProtected
        """
        membership = Membership.objects.membership_of(user, workspace)
        if membership is None:
            raise NotAMember()

        if _is_owner_membership(membership, workspace):
            raise OwnerProtected('The workspace owner cannot leave the workspace')

        membership_id = membership.id
        membership.delete()

        AuditLog.log_action(
            action='membership.left',
            user=user,
            workspace=workspace,
            resource='membership',
            resource_id=membership_id,
            request=request,
        )
