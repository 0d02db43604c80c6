"""
Workspace serializers.
"""
from rest_framework import serializers

from apps.workspaces.models import Workspace


class WorkspaceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Workspace
        fields = ['id', 'name', 'slug', 'owner', 'created_at']
        read_only_fields = fields


class WorkspaceCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    slug = serializers.SlugField(max_length=90, required=False, allow_blank=True)

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Workspace name cannot be empty.")
        return value.strip()


class WorkspaceMembershipSerializer(serializers.Serializer):
    """A workspace from the point of view of one of its members."""

    id = serializers.UUIDField(source='workspace.id')
    name = serializers.CharField(source='workspace.name')
    slug = serializers.CharField(source='workspace.slug')
    role = serializers.CharField()
    is_owner = serializers.SerializerMethodField()
    joined_at = serializers.DateTimeField()

    def get_is_owner(self, membership) -> bool:
        return membership.workspace.owner_id == membership.user_id
