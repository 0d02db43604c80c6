"""
Django admin configuration for RBAC app.
"""
from django.contrib import admin

from .models import User, Membership, Invitation, AuditLog


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ['email', 'first_name', 'last_name', 'is_active', 'is_superuser', 'email_verified', 'created_at']
    list_filter = ['is_active', 'is_superuser', 'email_verified']
    search_fields = ['email', 'first_name', 'last_name']
    ordering = ['-created_at']
    exclude = ['password_hash']
    readonly_fields = ['created_at', 'updated_at', 'last_login']


@admin.register(Membership)
class MembershipAdmin(admin.ModelAdmin):
    list_display = ['user', 'workspace', 'role', 'joined_at']
    list_filter = ['role']
    search_fields = ['user__email', 'workspace__slug']
    raw_id_fields = ['user', 'workspace', 'invited_by']


@admin.register(Invitation)
class InvitationAdmin(admin.ModelAdmin):
    list_display = ['email', 'workspace', 'role', 'token_preview', 'expires_at', 'accepted_at']
    list_filter = ['role']
    search_fields = ['email', 'workspace__slug']
    readonly_fields = ['token', 'accepted_at', 'accepted_by', 'created_at', 'updated_at']
    raw_id_fields = ['workspace', 'invited_by', 'accepted_by']

    def token_preview(self, obj):
        """Show first 8 characters of token."""
        return f"{obj.token[:8]}..." if obj.token else ""
    token_preview.short_description = 'Token'


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['action', 'user', 'workspace', 'resource', 'resource_id', 'created_at']
    list_filter = ['action', 'resource']
    search_fields = ['action', 'user__email', 'request_id']
    readonly_fields = [f.name for f in AuditLog._meta.fields]

    def has_change_permission(self, request, obj=None):
        return False
