"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Registration
- Memberships and role changes
- Invitations (create, list, public detail)
- Audit logs
"""
from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from apps.rbac.models import AuditLog, Invitation, Membership, User
from apps.rbac.roles import Role


# ===== AUTHENTICATION SERIALIZERS =====

class RegistrationSerializer(serializers.Serializer):
    """Serializer for user registration."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )
    first_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')

    def validate_email(self, value):
        value = User.objects.normalize_email(value)
        if User.objects.filter(email=value).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return value

    def validate_password(self, value):
        validate_password(value)
        return value


class UserSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(source='get_full_name', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'email', 'first_name', 'last_name', 'full_name', 'email_verified']
        read_only_fields = fields


# ===== MEMBERSHIP SERIALIZERS =====

class MembershipSerializer(serializers.ModelSerializer):
    """A workspace member as seen by other members."""

    user = UserSerializer(read_only=True)

    class Meta:
        model = Membership
        fields = ['id', 'user', 'role', 'joined_at']
        read_only_fields = fields


class RoleChangeSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=Role.choices)


# ===== INVITATION SERIALIZERS =====

class InviteMemberSerializer(serializers.Serializer):
    """Serializer for inviting an email address to a workspace."""

    email = serializers.EmailField(required=True)
    role = serializers.ChoiceField(choices=Role.choices, default=Role.MEMBER)

    def validate_email(self, value):
        # Same normalization as user emails; acceptance compares exactly
        return User.objects.normalize_email(value)


class InvitationSerializer(serializers.ModelSerializer):
    """Invitation as listed to workspace admins."""

    invited_by_email = serializers.EmailField(source='invited_by.email', read_only=True, default=None)
    is_expired = serializers.SerializerMethodField()

    class Meta:
        model = Invitation
        fields = [
            'id', 'email', 'role', 'invited_by_email',
            'expires_at', 'accepted_at', 'is_expired', 'created_at',
        ]
        read_only_fields = fields

    def get_is_expired(self, obj) -> bool:
        return obj.is_expired()


class InvitationDetailSerializer(serializers.Serializer):
    """Public view of an invitation, shown before acceptance."""

    id = serializers.UUIDField()
    workspace = serializers.SerializerMethodField()
    email = serializers.EmailField()
    role = serializers.CharField()
    invited_by = serializers.SerializerMethodField()
    expires_at = serializers.DateTimeField()
    accepted_at = serializers.DateTimeField(allow_null=True)

    def get_workspace(self, detail) -> dict:
        return {
            'id': str(detail.workspace_id),
            'name': detail.workspace_name,
            'slug': detail.workspace_slug,
        }

    def get_invited_by(self, detail) -> dict:
        return {
            'name': detail.invited_by_name,
            'email': detail.invited_by_email,
        }


# ===== AUDIT SERIALIZERS =====

class AuditLogSerializer(serializers.ModelSerializer):
    """Serializer for AuditLog model."""

    user_email = serializers.EmailField(source='user.email', read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            'id', 'user_email', 'action', 'resource', 'resource_id',
            'metadata', 'ip_address', 'user_agent', 'request_id', 'created_at',
        ]
        read_only_fields = fields
