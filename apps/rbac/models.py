"""
RBAC models for workspace-scoped access control.

Implements:
- Global User identity (can belong to multiple workspaces)
- Membership (workspace, user, role) with one row per pair
- Invitation with an opaque single-use token
- AuditLog (append-only trail of authorization-relevant actions)
"""
import logging
import secrets
from datetime import timedelta

from django.conf import settings
from django.contrib.auth.hashers import make_password, check_password
from django.db import models, transaction
from django.db.models import Q
from django.utils import timezone

from apps.core.models import BaseModel
from apps.rbac.roles import Role

logger = logging.getLogger(__name__)


class UserManager(models.Manager):
    """
    Manager for User queries.

    Compatible with Django's authentication system and admin interface.
    """

    def active(self):
        """Return only active users."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find user by email."""
        return self.filter(email=email).first()

    def create_user(self, email, password=None, **extra_fields):
        """
        Create a new user with hashed password.
        """
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """
        Create a platform administrator.

        Required for Django's createsuperuser command.
        """
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('email_verified', True)

        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True')

        return self.create_user(email, password, **extra_fields)

    def normalize_email(self, email):
        """
        Strip surrounding whitespace and lowercase the domain part.
        """
        email = (email or '').strip()
        try:
            email_name, domain_part = email.rsplit('@', 1)
        except ValueError:
            pass
        else:
            email = email_name + '@' + domain_part.lower()
        return email

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    Global user identity - can belong to many workspaces.

    Authentication happens at the User level, authorization at the
    Membership level. `is_superuser` is the platform-admin flag; it never
    stands in for a membership on ordinary workspace endpoints.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )

    # Status
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Platform administrator (cross-workspace operational access)"
    )
    email_verified = models.BooleanField(
        default=False,
        help_text="Whether email has been verified"
    )
    last_login = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last login timestamp"
    )

    # Profile
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at']),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        """Alias for password_hash, Django admin expects a 'password' field."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        """Return full name or email if name not set."""
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    def get_username(self):
        return self.email

    @property
    def is_platform_admin(self):
        return self.is_superuser

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        """Django admin access is reserved for platform admins."""
        return self.is_superuser

    def has_perm(self, perm, obj=None):
        return self.is_superuser

    def has_perms(self, perm_list, obj=None):
        return self.is_superuser

    def has_module_perms(self, app_label):
        return self.is_superuser

    def natural_key(self):
        return (self.email,)


class MembershipManager(models.Manager):
    """
    Read side of the membership store.

    Every lookup hits the database; nothing is cached between requests.
    """

    def membership_of(self, user, workspace):
        """Return the (workspace, user) membership or None."""
        if user is None or workspace is None:
            return None
        return self.filter(workspace=workspace, user=user).first()

    def for_user(self, user):
        """Get all memberships held by a user."""
        return self.filter(user=user).select_related('workspace')

    def for_workspace(self, workspace):
        """Get all memberships of a workspace."""
        return self.filter(workspace=workspace).select_related('user')

    def default_workspace_id(self, user):
        """
        The workspace the user owns, else the most recently joined one.

        Ownership means being the designated owner on the workspace record.
        """
        from apps.workspaces.models import Workspace

        owned = (
            Workspace.objects.filter(owner=user)
            .order_by('created_at')
            .values_list('id', flat=True)
            .first()
        )
        if owned is not None:
            return owned

        return (
            self.filter(user=user)
            .order_by('-joined_at', '-created_at')
            .values_list('workspace_id', flat=True)
            .first()
        )


class Membership(BaseModel):
    """
    A user's role in one workspace.

    At most one row exists per (workspace, user).
    """

    workspace = models.ForeignKey(
        'workspaces.Workspace',
        on_delete=models.CASCADE,
        related_name='memberships',
        help_text="Workspace this membership belongs to"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='memberships',
        help_text="User who is a member"
    )
    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.MEMBER,
        help_text="Workspace role"
    )
    invited_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        help_text="User whose invitation created this membership"
    )
    joined_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the user joined the workspace"
    )

    objects = MembershipManager()

    class Meta:
        db_table = 'workspace_memberships'
        ordering = ['-joined_at']
        constraints = [
            models.UniqueConstraint(
                fields=['workspace', 'user'],
                name='unique_membership_per_workspace',
            ),
        ]
        indexes = [
            models.Index(fields=['user', 'joined_at']),
        ]

    def __str__(self):
        return f"{self.user_id} @ {self.workspace_id} ({self.role})"

    @property
    def is_owner(self):
        return self.role == Role.OWNER


def generate_invitation_token():
    return secrets.token_urlsafe(32)


def default_invitation_expiry():
    return timezone.now() + timedelta(days=settings.INVITATION_EXPIRY_DAYS)


class InvitationManager(models.Manager):
    """Manager for Invitation queries."""

    def by_token(self, token):
        if not token:
            return None
        return self.filter(token=token).select_related('workspace', 'invited_by').first()

    def unaccepted(self):
        return self.filter(accepted_at__isnull=True)

    def pending_for(self, workspace):
        """Unaccepted invitations of a workspace, expired ones included."""
        return self.unaccepted().filter(workspace=workspace).select_related('invited_by')

    def unaccepted_for(self, workspace, email):
        return self.unaccepted().filter(workspace=workspace, email=email).first()


class Invitation(BaseModel):
    """
    An invitation for an email address to join a workspace with a role.

    Open until accepted (terminal) or deleted by cancellation. Expiry is
    evaluated at read time and only blocks acceptance.
    """

    workspace = models.ForeignKey(
        'workspaces.Workspace',
        on_delete=models.CASCADE,
        related_name='invitations',
    )
    email = models.EmailField(
        help_text="Invitee email address, compared exactly on acceptance"
    )
    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.MEMBER,
    )
    token = models.CharField(
        max_length=64,
        unique=True,
        default=generate_invitation_token,
        help_text="Opaque single-use token"
    )
    invited_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='invitations_sent',
    )
    expires_at = models.DateTimeField(default=default_invitation_expiry)
    accepted_at = models.DateTimeField(null=True, blank=True)
    accepted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )

    objects = InvitationManager()

    class Meta:
        db_table = 'workspace_invitations'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['workspace', 'email'],
                condition=Q(accepted_at__isnull=True),
                name='unique_unaccepted_invitation',
            ),
        ]

    def __str__(self):
        return f"{self.email} -> {self.workspace_id} ({self.role})"

    def is_expired(self, now=None):
        return (now or timezone.now()) > self.expires_at

    @property
    def is_accepted(self):
        return self.accepted_at is not None

    def is_open(self, now=None):
        return not self.is_accepted and not self.is_expired(now)


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries."""

    def for_workspace(self, workspace):
        return self.filter(workspace=workspace)

    def for_user(self, user):
        return self.filter(user=user)

    def by_action(self, action):
        return self.filter(action=action)

    def by_request(self, request_id):
        return self.filter(request_id=request_id)


class AuditLog(BaseModel):
    """
    Append-only trail of authorization-relevant actions.

    Entries are never updated; one is written per successful guard check
    and per membership or invitation mutation.
    """

    workspace = models.ForeignKey(
        'workspaces.Workspace',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='audit_logs',
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="User who performed the action (null for system actions)"
    )

    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'invitation.accepted')"
    )
    resource = models.CharField(max_length=50, blank=True)
    resource_id = models.CharField(max_length=64, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    # Request context
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)
    request_id = models.CharField(max_length=64, blank=True, db_index=True)

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['workspace', 'created_at']),
            models.Index(fields=['user', 'created_at']),
            models.Index(fields=['resource', 'resource_id']),
        ]

    def __str__(self):
        return f"{self.workspace_id or 'platform'} - {self.user_id or 'system'} - {self.action}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError('Audit log entries are append-only')
        super().save(*args, **kwargs)

    @classmethod
    def log_action(cls, action, user=None, workspace=None, resource='',
                   resource_id=None, metadata=None, request=None):
        """
        Append an audit entry.

        Failures are logged and swallowed; a savepoint keeps an enclosing
        transaction usable.

        Args:
            action: Action being performed
            user: User performing the action
            workspace: Workspace (instance or id) the action happened in
            resource: Kind of resource acted on
            resource_id: ID of the resource, if any
            metadata: Additional context
            request: Django/DRF request (for IP, user agent, request ID)
        """
        if user is not None and not user.is_authenticated:
            user = None

        log_data = {
            'action': action,
            'user': user,
            'resource': resource or '',
            'resource_id': str(resource_id) if resource_id is not None else '',
            'metadata': metadata or {},
        }
        if isinstance(workspace, models.Model):
            log_data['workspace'] = workspace
        else:
            log_data['workspace_id'] = workspace

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_id'] = getattr(request, 'request_id', None) or ''

        try:
            with transaction.atomic():
                return cls.objects.create(**log_data)
        except Exception as e:
            logger.error(
                f"Failed to create audit log: {e}",
                extra={'action': action, 'workspace_id': log_data.get('workspace_id') or getattr(workspace, 'id', None)},
                exc_info=True
            )
            return None

    @staticmethod
    def _get_client_ip(request):
        """Extract client IP from request."""
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
