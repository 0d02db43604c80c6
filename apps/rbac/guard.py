"""
Authorization guard.

`authorize` answers one question per request: may this caller do this in
that workspace. Checks run in a fixed order and stop at the first failure:

1. Unauthenticated  - no verified caller (decided before any store access)
2. TenantRequired   - no workspace could be resolved
3. NotAMember       - caller holds no membership in the workspace
4. Forbidden        - the role lacks the capability or is not an allowed role

On success the caller gets an immutable WorkspaceContext to hand to the
handler; nothing is written onto the request. Role is re-read from the
store on every call.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from django.conf import settings

from apps.core.exceptions import Forbidden, NotAMember, TenantRequired, Unauthenticated
from apps.core.logging import SecurityLogger
from apps.rbac.models import AuditLog, Membership
from apps.rbac.roles import (
    ALL_CAPABILITIES, Capability, CapabilitySet, Role, permissions_for,
)
from apps.workspaces.resolver import resolve_workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkspaceContext:
    """Result of a successful authorization."""

    user_id: uuid.UUID
    workspace_id: uuid.UUID
    role: Optional[Role]
    capabilities: CapabilitySet
    platform_override: bool = False

    def can(self, capability) -> bool:
        return self.capabilities.has(capability)

    @property
    def is_owner(self) -> bool:
        return self.role == Role.OWNER


def _required_label(capability, roles):
    if capability is not None:
        return str(getattr(capability, 'value', capability))
    if roles is not None:
        return [str(getattr(role, 'value', role)) for role in roles]
    return None


def _deny(exc, user, workspace_id, request, capability=None, roles=None):
    SecurityLogger.log_authorization_denied(
        user_id=getattr(user, 'id', None),
        workspace_id=workspace_id,
        reason=exc.code,
        role=getattr(exc, 'role', None),
        required=_required_label(capability, roles),
        path=getattr(request, 'path', None),
    )
    raise exc


def authorize(request, capability=None, roles: Optional[Iterable] = None,
              route_kwargs=None, action: Optional[str] = None,
              resource: Optional[str] = None, resource_id=None,
              allow_platform_admin: bool = False) -> WorkspaceContext:
    """
    Authorize the request's caller against the request's workspace.

    Args:
        request: DRF or Django request; `request.user` is the caller
        capability: Capability (or its wire name) the caller must hold
        roles: Alternatively, the set of roles allowed through
        route_kwargs: URL kwargs of the view, for path-based resolution
        action: Audit action name (defaults to the capability name)
        resource: Audit resource kind
        resource_id: Audit resource id, if any
        allow_platform_admin: Let platform admins through without a
            membership. Only operational endpoints pass True.

    Returns:
        WorkspaceContext

    Raises:
        Unauthenticated, TenantRequired, NotAMember, Forbidden
    """
    user = getattr(request, 'user', None)
    if user is None or not getattr(user, 'is_authenticated', False):
        raise Unauthenticated()

    workspace_id = resolve_workspace(request, user, route_kwargs)
    if workspace_id is None:
        _deny(TenantRequired(), user, None, request, capability, roles)

    if allow_platform_admin and getattr(user, 'is_platform_admin', False):
        context = WorkspaceContext(
            user_id=user.id,
            workspace_id=workspace_id,
            role=None,
            capabilities=ALL_CAPABILITIES,
            platform_override=True,
        )
        logger.info(
            "Platform admin override",
            extra={'user_id': str(user.id), 'workspace_id': str(workspace_id)}
        )
        _record(request, user, context, capability, action, resource, resource_id)
        return context

    membership = Membership.objects.membership_of(user, workspace_id)
    if membership is None:
        _deny(NotAMember(), user, workspace_id, request, capability, roles)

    role = Role.from_value(membership.role)
    capabilities = permissions_for(role)

    if capability is not None and not capabilities.has(capability):
        required = str(getattr(capability, 'value', capability))
        _deny(
            Forbidden(
                f"Insufficient permissions: {required} required",
                role=membership.role,
                required_capability=required,
            ),
            user, workspace_id, request, capability, roles,
        )

    if roles is not None:
        allowed = {Role.from_value(r) for r in roles} - {None}
        if role not in allowed:
            required_roles = sorted(r.value for r in allowed)
            _deny(
                Forbidden(
                    f"Insufficient role: {' or '.join(required_roles)} required",
                    role=membership.role,
                    required_roles=required_roles,
                ),
                user, workspace_id, request, capability, roles,
            )

    context = WorkspaceContext(
        user_id=user.id,
        workspace_id=workspace_id,
        role=role,
        capabilities=capabilities,
    )
    _record(request, user, context, capability, action, resource, resource_id)
    return context


def _record(request, user, context, capability, action, resource, resource_id):
    if not settings.AUDIT_AUTHORIZED_REQUESTS:
        return
    if action is None:
        capability = Capability.from_value(capability)
        action = capability.value if capability is not None else 'workspace.access'
    metadata = {'role': context.role.value if context.role else None}
    if context.platform_override:
        metadata['platform_override'] = True
    AuditLog.log_action(
        action=action,
        user=user,
        workspace=context.workspace_id,
        resource=resource or '',
        resource_id=resource_id,
        metadata=metadata,
        request=request,
    )
