"""
URL configuration for the Matchmaker API.
"""
from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    path('admin/', admin.site.urls),

    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # API v1
    path('v1/', include('apps.core.urls')),
    path('v1/auth/', include('apps.rbac.urls_auth')),  # Register
    path('v1/', include('apps.workspaces.urls')),  # Workspace listing, creation, current tenant
    path('v1/', include('apps.rbac.urls')),  # Members, invitations, audit logs
]
