"""
Tenant resolution.

A request names its workspace in one of several places. Each place is a
candidate source: a pure provider that extracts an optional raw value from
the request, paired with a lookup that turns the raw value into the id of
an existing workspace. Sources are tried in order and the first one that
yields a non-empty value decides the outcome.

The resolver only computes an id. It never writes and never checks
membership; "found but not a member" is the guard's concern.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence

from django.conf import settings

from apps.core.exceptions import TenantRequired
from apps.workspaces.models import Workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateSource:
    name: str
    provide: Callable[[Any, Mapping, Any], Any]
    lookup: Callable[[Any], Optional[uuid.UUID]]


def _is_empty(value):
    return value is None or (isinstance(value, str) and not value.strip())


def workspace_id_if_exists(value) -> Optional[uuid.UUID]:
    """Return the id when it names an existing workspace, else None."""
    try:
        workspace_id = value if isinstance(value, uuid.UUID) else uuid.UUID(str(value).strip())
    except (TypeError, ValueError, AttributeError):
        return None
    if Workspace.objects.filter(id=workspace_id).exists():
        return workspace_id
    return None


def workspace_id_for_slug(value) -> Optional[uuid.UUID]:
    return (
        Workspace.objects.filter(slug=str(value).strip())
        .values_list('id', flat=True)
        .first()
    )


def _field_name():
    return settings.WORKSPACE_ID_FIELD


def from_route(request, route_kwargs, user):
    return route_kwargs.get(_field_name())


def from_body(request, route_kwargs, user):
    data = getattr(request, 'data', None)
    if data is None:
        data = getattr(request, 'POST', None)
    if not hasattr(data, 'get'):
        return None
    return data.get(_field_name())


def from_query(request, route_kwargs, user):
    params = getattr(request, 'query_params', None)
    if params is None:
        params = getattr(request, 'GET', {})
    return params.get(_field_name())


def from_slug_header(request, route_kwargs, user):
    return request.headers.get(settings.WORKSPACE_SLUG_HEADER)


def from_default_workspace(request, route_kwargs, user):
    if user is None or not getattr(user, 'is_authenticated', False):
        return None
    from apps.rbac.models import Membership

    return Membership.objects.default_workspace_id(user)


DEFAULT_SOURCES: Sequence[CandidateSource] = (
    CandidateSource('route', from_route, workspace_id_if_exists),
    CandidateSource('body', from_body, workspace_id_if_exists),
    CandidateSource('query', from_query, workspace_id_if_exists),
    CandidateSource('header_slug', from_slug_header, workspace_id_for_slug),
    CandidateSource('default', from_default_workspace, workspace_id_if_exists),
)


def resolve_workspace(request, user, route_kwargs=None,
                      sources: Sequence[CandidateSource] = DEFAULT_SOURCES) -> Optional[uuid.UUID]:
    """
    Return the id of the workspace the request targets, or None.

    The first source with a non-empty candidate wins. If that candidate
    does not name an existing workspace the result is None; later sources
    are not consulted.
    """
    route_kwargs = route_kwargs or {}
    for source in sources:
        candidate = source.provide(request, route_kwargs, user)
        if _is_empty(candidate):
            continue

        workspace_id = source.lookup(candidate)
        if workspace_id is None:
            logger.info(
                "Workspace candidate did not resolve",
                extra={'source': source.name, 'path': getattr(request, 'path', None)}
            )
        return workspace_id

    return None


def resolve_tenant(request, route_kwargs=None) -> uuid.UUID:
    """
    Resolve the workspace for a read-mostly endpoint.

    Raises:
        TenantRequired: if no workspace could be resolved
    """
    user = getattr(request, 'user', None)
    workspace_id = resolve_workspace(request, user, route_kwargs)
    if workspace_id is None:
        raise TenantRequired()
    return workspace_id
