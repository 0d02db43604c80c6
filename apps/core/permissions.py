"""
Decorator for enforcing workspace capabilities on DRF view methods.
"""
from functools import wraps


def requires_capability(capability=None, roles=None, action=None, resource=None,
                        resource_id_kwarg=None, allow_platform_admin=False):
    """
    Run the authorization guard before a view method.

    The handler receives the resulting WorkspaceContext as `context=`.
    Refusals propagate as exceptions and are rendered by the exception
    handler.

    Usage:
        class MembersView(APIView):
            @requires_capability(Capability.VIEW_MEMBERS_LIST, resource='membership')
            def get(self, request, workspace_id, context):
                ...
    """
    def decorator(view_method):
        @wraps(view_method)
        def wrapper(self, request, *args, **kwargs):
            from apps.rbac.guard import authorize

            context = authorize(
                request,
                capability=capability,
                roles=roles,
                route_kwargs=kwargs,
                action=action,
                resource=resource,
                resource_id=kwargs.get(resource_id_kwarg) if resource_id_kwarg else None,
                allow_platform_admin=allow_platform_admin,
            )
            return view_method(self, request, *args, context=context, **kwargs)

        wrapper.required_capability = capability
        wrapper.required_roles = roles
        return wrapper

    return decorator
