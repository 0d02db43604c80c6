"""
Workspace model.
"""
from django.conf import settings
from django.db import models

from apps.core.models import BaseModel


class WorkspaceManager(models.Manager):
    """Manager for Workspace queries."""

    def by_slug(self, slug):
        if not slug:
            return None
        return self.filter(slug=slug).first()

    def owned_by(self, user):
        return self.filter(owner=user)


class Workspace(BaseModel):
    """
    Tenant container.

    `owner` is the designated owner identity; that user always holds an
    owner membership in the workspace. The slug is globally unique and is
    not changed after creation.
    """

    name = models.CharField(max_length=255, help_text="Display name")
    slug = models.SlugField(
        max_length=100,
        unique=True,
        help_text="Globally unique, human-facing workspace selector"
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='owned_workspaces',
        help_text="Designated owner of the workspace"
    )

    objects = WorkspaceManager()

    class Meta:
        db_table = 'workspaces'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.name} ({self.slug})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            stored = type(self).objects.filter(pk=self.pk).values_list('slug', flat=True).first()
            if stored is not None and stored != self.slug:
                raise ValueError('Workspace slug cannot be changed')
        super().save(*args, **kwargs)
