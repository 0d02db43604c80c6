"""
URL configuration for workspace endpoints.
"""
from django.urls import path

from apps.workspaces import views

urlpatterns = [
    path('workspaces', views.WorkspaceListCreateView.as_view(), name='workspace-list'),
    path('workspaces/current', views.CurrentWorkspaceView.as_view(), name='workspace-current'),
]
