from django.contrib import admin

from .models import Workspace


@admin.register(Workspace)
class WorkspaceAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'owner', 'created_at']
    search_fields = ['name', 'slug', 'owner__email']
    raw_id_fields = ['owner']

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            return ['slug', 'created_at', 'updated_at']
        return ['created_at', 'updated_at']
