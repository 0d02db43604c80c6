"""
Workspaces application.

Workspaces are the tenants of the system: a named, slugged container with
one designated owner. Also hosts the tenant resolver.
"""
